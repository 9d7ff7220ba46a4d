"""
Redis caching client.

Caching is optional: with no REDIS_URL, or with Redis down, every call
degrades to a miss and nothing raises.
"""
import redis.asyncio as redis
import json
import logging
from typing import Any, Optional
from config.settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

# Global Redis client
_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """
    Get or create Redis client.

    Returns None if Redis URL is not configured or unreachable.
    """
    global _redis_client

    if not settings.redis_url:
        logger.debug("Redis URL not configured - caching disabled")
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5,
            )
            await _redis_client.ping()
            logger.info("Redis client created and connected")
        except Exception as e:
            logger.warning(f"Redis unavailable, caching disabled: {e}")
            _redis_client = None
            return None

    return _redis_client


async def close_redis():
    """Close Redis connection."""
    global _redis_client

    if _redis_client:
        try:
            await _redis_client.aclose()
            logger.info("Redis connection closed")
        except Exception as e:
            logger.error(f"Error closing Redis: {e}")
        finally:
            _redis_client = None


class CacheClient:
    """JSON values in Redis under the configured key prefix."""

    def __init__(self, prefix: Optional[str] = None):
        self.prefix = prefix if prefix is not None else settings.cache_prefix

    async def get(self, key: str) -> Optional[Any]:
        """
        Get cached value.

        Args:
            key: Cache key (prefix will be added automatically)

        Returns:
            Cached value or None if not found/Redis unavailable
        """
        client = await get_redis()
        if not client:
            return None

        full_key = f"{self.prefix}{key}"

        try:
            value = await client.get(full_key)
            if value:
                return json.loads(value)
            return None
        except json.JSONDecodeError as e:
            logger.error(f"Failed to decode cached value for {key}: {e}")
            await self.delete(key)
            return None
        except Exception as e:
            logger.warning(f"Cache get error for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int = 120) -> bool:
        """
        Set cached value with TTL.

        Args:
            key: Cache key (prefix will be added automatically)
            value: Value to cache (must be JSON-serializable)
            ttl: Time to live in seconds

        Returns:
            True if successful, False otherwise
        """
        client = await get_redis()
        if not client:
            return False

        full_key = f"{self.prefix}{key}"

        try:
            await client.setex(full_key, ttl, json.dumps(value))
            return True
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to serialize value for {key}: {e}")
            return False
        except Exception as e:
            logger.warning(f"Cache set error for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        client = await get_redis()
        if not client:
            return False

        try:
            await client.delete(f"{self.prefix}{key}")
            return True
        except Exception as e:
            logger.warning(f"Cache delete error for {key}: {e}")
            return False


# Global cache instance
cache = CacheClient()
