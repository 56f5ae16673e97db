"""RefineService: cheap, synchronous text refinement behind a dedup cache and rate limit."""

import structlog

from ideaforge.agent.runner import Runner
from ideaforge.core.config import get_settings
from ideaforge.core.dedup_cache import DedupCache
from ideaforge.core.exceptions import NonRetryableError, RateLimited
from ideaforge.core.rate_limit import RateLimiter, RateLimitResult
from ideaforge.core.retry import retry_with_backoff

logger = structlog.get_logger(__name__)

REFINE_ENDPOINT = "refine-text"
MIN_WORDS_TO_REFINE = 3
MAX_REFINED_WORDS = 40
SKIP_GUIDANCE = "Add a little more detail (who it is for and what problem it solves) and we can refine it."


def cap_words(text: str, max_words: int = MAX_REFINED_WORDS) -> str:
    """Collapse whitespace and cut to ``max_words`` words."""
    words = text.split()
    if len(words) > max_words:
        return " ".join(words[:max_words]) + "."
    return " ".join(words)


class RefineService:
    """Dedup first (a hit costs neither quota nor an AI call), then rate limit, then AI."""

    def __init__(self, runner: Runner, cache: DedupCache, limiter: RateLimiter):
        self.runner = runner
        self.cache = cache
        self.limiter = limiter
        self.settings = get_settings()

    async def refine(self, identity: str, text: str) -> tuple[dict, RateLimitResult | None]:
        """Refine ``text`` for ``identity``.

        Returns:
            (result body, rate limit result or None when served without counting)

        Raises:
            RateLimited: The identity's window is exhausted
        """
        raw_text = text.strip()

        if len(raw_text.split()) < MIN_WORDS_TO_REFINE:
            return {
                "raw_text": raw_text,
                "refined_text": raw_text,
                "skip_refinement": True,
                "message": SKIP_GUIDANCE,
            }, None

        cached = await self.cache.get(identity, raw_text)
        if cached is not None:
            logger.info("refine_cache_hit", identity=identity)
            # The key is normalized; echo this caller's own text back
            return {**cached, "raw_text": raw_text}, None

        limit = await self.limiter.check_rate_limit(
            identity,
            REFINE_ENDPOINT,
            self.settings.refine_rate_limit,
            self.settings.refine_rate_window_seconds,
        )
        if not limit.allowed:
            logger.info("refine_rate_limited", identity=identity, reset_at=limit.reset_at.isoformat())
            raise RateLimited(
                retry_after=limit.retry_after(),
                headers=limit.headers(),
                message="Rate limit exceeded. Please try again shortly.",
            )

        refined = await retry_with_backoff(
            lambda: self.runner.refine_text(raw_text),
            max_retries=self.settings.ai_max_retries,
            base_delay=self.settings.ai_retry_base_delay,
            max_delay=self.settings.ai_retry_max_delay,
            retry_if=lambda exc: not isinstance(exc, NonRetryableError),
            operation_name="refine_text",
        )

        result = {
            "raw_text": raw_text,
            "refined_text": cap_words(refined),
            "skip_refinement": False,
            "message": None,
        }
        await self.cache.set(identity, raw_text, result)
        logger.info("refine_completed", identity=identity, input_length=len(raw_text), output_length=len(refined))
        return result, limit
