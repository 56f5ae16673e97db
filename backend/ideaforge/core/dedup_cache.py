"""Short-TTL result cache for idempotent refine requests.

Entries are keyed by identity plus a hash of the normalized input, so two
requests that differ only in case or whitespace share a result. Racing
writers for the same key resolve last-write-wins. Cache backend errors are
logged and treated as a miss.
"""

import hashlib
import json
import re

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = structlog.get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_input(text: str) -> str:
    """Trim, collapse whitespace runs and lower-case."""
    return _WHITESPACE.sub(" ", text.strip()).lower()


def input_hash(identity: str, text: str) -> str:
    return hashlib.sha256(f"{identity}\x00{normalize_input(text)}".encode()).hexdigest()


class DedupCache:
    """Redis-backed dedup cache with per-entry TTL."""

    KEY_PREFIX = "refine:cache"

    def __init__(self, redis: Redis, ttl_seconds: int = 60):
        self.redis = redis
        self.ttl_seconds = ttl_seconds

    def key(self, identity: str, text: str) -> str:
        return f"{self.KEY_PREFIX}:{input_hash(identity, text)}"

    async def get(self, identity: str, text: str) -> dict | None:
        """Return the cached result for this identity and input, or None."""
        try:
            raw = await self.redis.get(self.key(identity, text))
        except (RedisError, OSError) as exc:
            logger.warning("dedup_cache_read_failed", error=str(exc), error_type=type(exc).__name__)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("dedup_cache_entry_corrupt", identity=identity)
            return None

    async def set(self, identity: str, text: str, result: dict) -> None:
        """Store ``result`` for the TTL, overwriting any existing entry."""
        try:
            await self.redis.set(self.key(identity, text), json.dumps(result), ex=self.ttl_seconds)
        except (RedisError, OSError) as exc:
            logger.warning("dedup_cache_write_failed", error=str(exc), error_type=type(exc).__name__)
