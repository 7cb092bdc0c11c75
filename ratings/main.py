"""
FastAPI Production Application

Main entry point for the Product Ratings API.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from ratings.config import get_settings
from ratings.config.logging import configure_logging
from ratings.database.connection import close_database, get_session_factory, init_database
from ratings.serving.api.dependencies import build_services
from ratings.serving.api.main import create_api_app
from ratings.serving.cache import RedisCacheBackend, close_redis, init_redis

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    configure_logging()
    settings = get_settings()

    logger.info("Starting Product Ratings API", environment=settings.app_env)

    database_ready = False
    try:
        await init_database()
        database_ready = True
    except Exception as e:
        logger.error("Database init failed, review endpoints will answer 503", error=str(e))

    # Reads fall back to the database while Redis is down
    try:
        await init_redis()
    except Exception as e:
        logger.warning("Redis init failed, serving without cache", error=str(e))

    if database_ready:
        build_services(app, get_session_factory(), RedisCacheBackend(), settings)

    yield

    logger.info("Shutting down...")
    await close_database()
    await close_redis()


app = create_api_app(lifespan=lifespan)


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
