"""
Health Endpoints

The database is required for every review operation; Redis is not, so a
Redis outage reports "degraded" rather than "unhealthy".
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Response
from pydantic import BaseModel
from redis.exceptions import RedisError

from ratings.config import get_settings
from ratings.database.connection import check_database_health
from ratings.serving.cache import get_redis

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    version: str
    environment: str
    timestamp: datetime
    checks: Dict[str, Any]


async def check_redis_health() -> Dict[str, Any]:
    timeout = get_settings().redis.operation_timeout
    try:
        await asyncio.wait_for(get_redis().ping(), timeout=timeout)
    except (RuntimeError, RedisError, OSError, asyncio.TimeoutError) as e:
        return {"status": "unhealthy", "error": str(e) or type(e).__name__}
    return {"status": "healthy"}


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    settings = get_settings()
    checks = {
        "database": await check_database_health(),
        "redis": await check_redis_health(),
    }

    if checks["database"]["status"] != "healthy":
        overall = "unhealthy"
    elif checks["redis"]["status"] != "healthy":
        overall = "degraded"
    else:
        overall = "healthy"

    return HealthResponse(
        status=overall,
        version=settings.version,
        environment=settings.app_env,
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> Dict[str, str]:
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(response: Response) -> Dict[str, str]:
    """503 until the database answers."""
    if (await check_database_health())["status"] != "healthy":
        response.status_code = 503
        return {"status": "not_ready", "reason": "database_unavailable"}
    return {"status": "ready"}
