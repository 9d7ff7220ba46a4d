"""
Caching decorator for read-mostly service calls.
"""
import functools
import hashlib
import logging
from typing import Callable
from .redis_client import cache
from .stats import stats

logger = logging.getLogger(__name__)


def _generate_cache_key(
    func_name: str,
    args: tuple,
    kwargs: dict,
    key_prefix: str = "",
    skip_first_arg: bool = False
) -> str:
    """
    Build a cache key from the prefix and call arguments.

    Scalars are kept readable ("dashboard:risky-projects:user:7"); anything
    else is reduced to a short hash.
    """
    key_parts = [key_prefix or func_name]

    start_idx = 1 if skip_first_arg and args else 0
    for arg in args[start_idx:]:
        if isinstance(arg, (str, int, float, bool)):
            key_parts.append(str(arg))
        else:
            key_parts.append(hashlib.md5(repr(arg).encode()).hexdigest()[:8])

    for k, v in sorted(kwargs.items()):
        if isinstance(v, (str, int, float, bool)):
            key_parts.append(f"{k}={v}")
        else:
            key_parts.append(f"{k}={hashlib.md5(str(v).encode()).hexdigest()[:8]}")

    return ":".join(key_parts)


def cached(
    ttl: int = 120,
    key_prefix: str = "",
    skip_none: bool = True
):
    """
    Cache an async function's JSON-serializable result in Redis.

    Args:
        ttl: Time to live in seconds
        key_prefix: Prefix for cache key (default: function name)
        skip_none: Don't cache None results

    Usage:
        @cached(ttl=120, key_prefix="dashboard:risky-projects:user")
        async def risky_projects(self, user_id: int):
            ...
    """
    def decorator(func: Callable):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            # Methods: leave `self` out of the key
            skip_first = bool(args) and hasattr(args[0].__class__, func.__name__)

            cache_key = _generate_cache_key(
                func.__name__,
                args,
                kwargs,
                key_prefix,
                skip_first_arg=skip_first
            )

            cached_value = await cache.get(cache_key)
            if cached_value is not None:
                stats.record_hit()
                logger.debug(f"Cache HIT: {cache_key}")
                return cached_value

            stats.record_miss()
            logger.debug(f"Cache MISS: {cache_key}")
            result = await func(*args, **kwargs)

            if result is not None or not skip_none:
                await cache.set(cache_key, result, ttl)
                logger.debug(f"Cache SET: {cache_key} (TTL: {ttl}s)")

            return result

        return wrapper

    return decorator
