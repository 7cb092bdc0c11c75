"""
Database Engine

One async SQLAlchemy engine per process. The stores never touch the engine
directly: they open a session per call from the factory returned by
get_session_factory().

Run ``python -m ratings.database.connection`` to create the schema.
"""

import asyncio
import time
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from ratings.config import get_settings
from ratings.database.models import Base

logger = structlog.get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Sessions whose objects stay readable after commit."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def _ping(engine: AsyncEngine) -> None:
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


async def init_database() -> AsyncEngine:
    """
    Create the process-wide engine and check that the database answers.

    Raises whatever the driver raises when the database is unreachable; the
    engine is discarded in that case.
    """
    global _engine, _session_factory

    if _engine is not None:
        return _engine

    db = get_settings().database
    engine = create_async_engine(db.async_url, echo=db.echo, pool_pre_ping=True, poolclass=NullPool)
    try:
        await _ping(engine)
    except Exception as e:
        logger.error("Database unreachable", host=db.host, database=db.db, error=str(e))
        await engine.dispose()
        raise

    _engine = engine
    _session_factory = build_session_factory(engine)
    logger.info("Database ready", host=db.host, database=db.db)
    return _engine


async def close_database() -> None:
    global _engine, _session_factory

    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("Database engine disposed")


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("init_database() has not run")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("init_database() has not run")
    return _session_factory


async def create_schema(engine: Optional[AsyncEngine] = None) -> None:
    """Create the products and reviews tables if missing."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Schema ready", tables=sorted(Base.metadata.tables))


async def check_database_health() -> Dict[str, Any]:
    """{"status": "healthy", "latency_ms": ...} or {"status": "unhealthy", "error": ...}"""
    if _engine is None:
        return {"status": "unhealthy", "error": "not initialized"}
    started = time.perf_counter()
    try:
        await _ping(_engine)
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}
    return {"status": "healthy", "latency_ms": round((time.perf_counter() - started) * 1000, 2)}


async def _bootstrap() -> None:
    await init_database()
    try:
        await create_schema()
    finally:
        await close_database()


def main() -> None:
    asyncio.run(_bootstrap())


if __name__ == "__main__":
    main()
