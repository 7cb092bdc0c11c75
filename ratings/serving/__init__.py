"""
Serving Module
"""
from .cache import init_redis, close_redis, get_redis, CacheBackend, RedisCacheBackend

__all__ = [
    "init_redis",
    "close_redis",
    "get_redis",
    "CacheBackend",
    "RedisCacheBackend",
]
