"""
Redis Cache Module

Cache backend for the read paths:
- Connection pooling
- Namespaced keys
- TTL per write
- Prefix eviction via SCAN

Every failure surfaces as CacheUnavailable; callers decide how to degrade.
"""

import asyncio
from typing import Awaitable, Optional, Protocol, TypeVar

import structlog
from redis.asyncio import Redis, ConnectionPool
from redis.exceptions import RedisError

from ratings.config import get_settings
from ratings.reviews.errors import CacheUnavailable

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Global Redis connection
_redis_pool: Optional[ConnectionPool] = None
_redis_client: Optional[Redis] = None


async def init_redis() -> Redis:
    """Initialize Redis connection pool"""
    global _redis_pool, _redis_client

    if _redis_client is not None:
        return _redis_client

    settings = get_settings()
    _redis_pool = ConnectionPool.from_url(
        settings.redis.get_url(),
        max_connections=settings.redis.max_connections,
        socket_timeout=settings.redis.socket_timeout,
        decode_responses=True,
    )
    _redis_client = Redis(connection_pool=_redis_pool)

    try:
        await _redis_client.ping()
        logger.info("Redis connection established")
    except Exception as e:
        logger.error("Redis connection failed", error=str(e))
        raise

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection pool"""
    global _redis_pool, _redis_client

    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None

    if _redis_pool:
        await _redis_pool.disconnect()
        _redis_pool = None

    logger.info("Redis connection closed")


def get_redis() -> Redis:
    """Get Redis client instance"""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


class CacheBackend(Protocol):
    """Key/value store with TTLs; may be unavailable at any time"""

    async def get(self, key: str) -> Optional[str]: ...

    async def set_with_ttl(self, key: str, value: str, ttl: int) -> None: ...

    async def evict(self, key: str) -> None: ...

    async def evict_by_prefix(self, prefix: str) -> int: ...


class RedisCacheBackend:
    """
    CacheBackend on Redis.

    Keys are stored under ``key_prefix`` so several services can share one
    Redis database. The client is resolved per call, which lets the
    application start (and serve from the database) while Redis is down.

    Example:
        backend = RedisCacheBackend()
        await backend.set_with_ttl("products::id=42", payload, ttl=3600)
    """

    def __init__(
        self,
        client: Optional[Redis] = None,
        key_prefix: Optional[str] = None,
        timeout: Optional[float] = None,
        scan_batch: int = 500,
    ):
        settings = get_settings()
        self._client = client
        self.key_prefix = settings.redis.key_prefix if key_prefix is None else key_prefix
        self.timeout = settings.redis.operation_timeout if timeout is None else timeout
        self.scan_batch = scan_batch

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _redis(self) -> Redis:
        if self._client is not None:
            return self._client
        try:
            return get_redis()
        except RuntimeError as e:
            raise CacheUnavailable(str(e)) from e

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise CacheUnavailable(f"cache {operation} timed out") from e
        except (RedisError, OSError) as e:
            raise CacheUnavailable(f"cache {operation} failed: {e}") from e

    async def get(self, key: str) -> Optional[str]:
        return await self._call("get", self._redis().get(self._key(key)))

    async def set_with_ttl(self, key: str, value: str, ttl: int) -> None:
        await self._call("set", self._redis().setex(self._key(key), ttl, value))

    async def evict(self, key: str) -> None:
        await self._call("evict", self._redis().delete(self._key(key)))

    async def evict_by_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``; returns how many were removed."""
        client = self._redis()
        return await self._call("evict_by_prefix", self._delete_matching(client, f"{self._key(prefix)}*"))

    async def _delete_matching(self, client: Redis, pattern: str) -> int:
        deleted = 0
        batch = []
        async for key in client.scan_iter(match=pattern, count=self.scan_batch):
            batch.append(key)
            if len(batch) >= self.scan_batch:
                deleted += await client.delete(*batch)
                batch = []
        if batch:
            deleted += await client.delete(*batch)
        return deleted
