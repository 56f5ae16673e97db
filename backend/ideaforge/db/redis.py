"""Process-wide Redis client for the job queue, rate limit counters and dedup cache.

Socket timeouts are short: the rate limiter and dedup cache treat Redis
errors as "allow" and "miss", which only helps if a dead Redis fails fast.
"""

import redis.asyncio as redis

from ideaforge.core.config import get_settings

_redis: redis.Redis | None = None


def create_redis(url: str | None = None) -> redis.Redis:
    settings = get_settings()
    return redis.from_url(
        url or settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_timeout,
        health_check_interval=30,
    )


async def init_redis(url: str | None = None) -> None:
    """Create the shared client and verify it can reach the server."""
    global _redis

    if _redis is not None:
        return

    _redis = create_redis(url)
    await _redis.ping()


async def close_redis() -> None:
    global _redis

    if _redis is not None:
        await _redis.aclose()
        _redis = None


def get_redis() -> redis.Redis:
    """FastAPI dependency returning the shared client.

    Raises RuntimeError if init_redis() has not been called.
    """
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis
