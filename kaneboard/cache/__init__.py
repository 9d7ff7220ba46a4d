"""
Redis caching layer for Kaneboard.

Provides:
- Redis client that degrades to "no cache" when Redis is unavailable
- The @cached decorator used in front of dashboard health lookups
- Hit/miss statistics
"""

from .redis_client import get_redis, close_redis, cache, CacheClient
from .decorators import cached
from .stats import stats, CacheStats

__all__ = [
    "get_redis",
    "close_redis",
    "cache",
    "CacheClient",
    "cached",
    "stats",
    "CacheStats",
]
