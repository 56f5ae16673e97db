"""Retry with exponential backoff for flaky upstream calls.

Wraps tenacity so callers get one policy everywhere: ``max_retries`` retries
after the first attempt, delays of ``base_delay * 2**attempt`` (1s, 2s, 4s
with the defaults) capped at ``max_delay``, last error re-raised.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _always(exc: BaseException) -> bool:
    return isinstance(exc, Exception)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    retry_if: Callable[[BaseException], bool] | None = None,
    operation_name: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds or retries are exhausted.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        max_retries: Retries after the initial attempt
        base_delay: Delay in seconds before the first retry
        max_delay: Upper bound for any single delay
        retry_if: Predicate on the raised exception; False stops immediately.
            Defaults to retrying every ``Exception``.
        operation_name: Label for log events
        sleep: Coroutine used to wait between attempts

    Returns:
        The operation's result

    Raises:
        The last exception raised by ``operation``
    """
    predicate = retry_if or _always

    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "operation_retrying",
            operation=operation_name,
            attempt=retry_state.attempt_number,
            sleep_seconds=retry_state.next_action.sleep if retry_state.next_action else 0,
            error=str(exc),
            error_type=type(exc).__name__,
        )

    result = None
    async for attempt in AsyncRetrying(
        retry=retry_if_exception(lambda exc: _always(exc) and predicate(exc)),
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=base_delay, min=0, max=max_delay),
        reraise=True,
        before_sleep=_log_retry,
        sleep=sleep,
    ):
        with attempt:
            result = await operation()
    return result
