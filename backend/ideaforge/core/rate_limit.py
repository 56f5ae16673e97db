"""Fixed-window rate limiting keyed by identity and endpoint.

The Redis limiter buckets requests into ``floor(now / window) * window`` windows
and increments the bucket counter atomically with a MULTI/EXEC pipeline, so
concurrent requests on any instance never exceed the limit. If Redis is
unreachable the limiter fails open: the request is allowed and a warning is
logged. ``InMemoryRateLimiter`` offers the same interface for single-instance
deployments and tests.
"""

import asyncio
import math
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one rate limit check."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime

    def retry_after(self, now: datetime | None = None) -> int:
        """Whole seconds until the current window resets (at least 1)."""
        now = now or datetime.now(UTC)
        return max(1, math.ceil((self.reset_at - now).total_seconds()))

    def headers(self, now: datetime | None = None) -> dict[str, str]:
        """X-RateLimit-* headers, plus Retry-After when denied."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at.timestamp())),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after(now))
        return headers


def window_bounds(now: datetime, window_seconds: int) -> tuple[int, datetime]:
    """Return (window_start epoch seconds, reset_at) for ``now``."""
    epoch = int(now.timestamp())
    window_start = (epoch // window_seconds) * window_seconds
    reset_at = datetime.fromtimestamp(window_start + window_seconds, tz=UTC)
    return window_start, reset_at


class RateLimiter(Protocol):
    async def check_rate_limit(
        self,
        identity: str,
        endpoint: str,
        limit: int,
        window_seconds: int,
        now: datetime | None = None,
    ) -> RateLimitResult: ...


class RedisRateLimiter:
    """Distributed fixed-window rate limiter backed by Redis counters."""

    KEY_PREFIX = "ratelimit"

    def __init__(self, redis: Redis):
        self.redis = redis

    def _key(self, endpoint: str, identity: str, window_start: int) -> str:
        return f"{self.KEY_PREFIX}:{endpoint}:{identity}:{window_start}"

    async def check_rate_limit(
        self,
        identity: str,
        endpoint: str,
        limit: int,
        window_seconds: int,
        now: datetime | None = None,
    ) -> RateLimitResult:
        """Count this request against the identity's window.

        Args:
            identity: User id, or anonymous identity derived from the client address
            endpoint: Logical endpoint name (e.g. "refine-text")
            limit: Requests allowed per window
            window_seconds: Window length
            now: Current time (for deterministic testing)

        Returns:
            RateLimitResult; ``allowed`` is True when the backend is unavailable
        """
        now = now or datetime.now(UTC)
        window_start, reset_at = window_bounds(now, window_seconds)
        key = self._key(endpoint, identity, window_start)

        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expireat(key, int(reset_at.timestamp()) + 1)
                count, _ = await pipe.execute()
        except (RedisError, OSError) as exc:
            logger.warning(
                "rate_limit_backend_unavailable",
                endpoint=endpoint,
                identity=identity,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return RateLimitResult(allowed=True, limit=limit, remaining=limit, reset_at=reset_at)

        count = int(count)
        return RateLimitResult(
            allowed=count <= limit,
            limit=limit,
            remaining=max(limit - count, 0),
            reset_at=reset_at,
        )


class InMemoryRateLimiter:
    """Single-instance fixed-window limiter. Not shared across processes."""

    def __init__(self):
        self._counts: dict[tuple[str, str, int], int] = {}
        self._lock = asyncio.Lock()

    async def check_rate_limit(
        self,
        identity: str,
        endpoint: str,
        limit: int,
        window_seconds: int,
        now: datetime | None = None,
    ) -> RateLimitResult:
        now = now or datetime.now(UTC)
        window_start, reset_at = window_bounds(now, window_seconds)
        bucket = (endpoint, identity, window_start)

        async with self._lock:
            # Drop buckets from expired windows
            for stale in [k for k in self._counts if k[2] + window_seconds <= window_start]:
                del self._counts[stale]
            count = self._counts.get(bucket, 0) + 1
            self._counts[bucket] = count

        return RateLimitResult(
            allowed=count <= limit,
            limit=limit,
            remaining=max(limit - count, 0),
            reset_at=reset_at,
        )
