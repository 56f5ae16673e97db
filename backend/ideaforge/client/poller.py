"""Polling client that waits for a background idea job to finish.

Polls ``GET /api/ideas/{id}`` on a tiered schedule (3s, 5s, 8s, then 10s,
each with +/-20% jitter), sending the last ETag so unchanged reads come back
as empty 304s. Stops as soon as the status leaves the stage's in-flight
status. A timeout is informational only: the server job keeps running and a
later poll may still observe completion.
"""

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from typing import Literal

import httpx
import structlog

from ideaforge.core.exceptions import ClientTimeout
from ideaforge.queue.schemas import IdeaStatus

logger = structlog.get_logger(__name__)

Stage = Literal["questions", "stage1"]

# stage -> (in-flight status, overall timeout seconds, soft warning seconds)
STAGE_LIMITS: dict[str, tuple[IdeaStatus, float, float | None]] = {
    "questions": (IdeaStatus.GENERATING_QUESTIONS, 60.0, None),
    "stage1": (IdeaStatus.GENERATING_STAGE1, 600.0, 180.0),
}


class PollingTimeout(ClientTimeout):
    """The job did not finish within the client's patience. Nothing was cancelled."""

    default_message = "This is taking longer than expected. We'll keep working on it in the background."

    def __init__(self, idea_id: str, elapsed: float, last_status: str | None):
        self.idea_id = idea_id
        self.elapsed = elapsed
        self.last_status = last_status
        super().__init__()


class IdeaPoller:
    """Observe one idea until its current background job resolves."""

    TIERS = (3.0, 5.0, 8.0, 10.0)
    JITTER = 0.2

    def __init__(
        self,
        client: httpx.AsyncClient,
        idea_id: str,
        *,
        token: str | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ):
        self.client = client
        self.idea_id = idea_id
        self.token = token
        self._sleep = sleep
        self._clock = clock
        self._rng = rng

        self.etag: str | None = None
        self.idea: dict | None = None
        self.polls = 0

        self._visible = asyncio.Event()
        self._visible.set()
        self._paused_at: float | None = None
        self._paused_total = 0.0

    def next_interval(self, poll_number: int) -> float:
        """Delay after the ``poll_number``-th poll (0-based), jittered."""
        base = self.TIERS[min(poll_number, len(self.TIERS) - 1)]
        return base * (1 + self.JITTER * (2 * self._rng() - 1))

    def pause(self) -> None:
        """Stop polling (client hidden). Paused time does not count toward timeouts."""
        if self._visible.is_set():
            self._visible.clear()
            self._paused_at = self._clock()
            logger.debug("polling_paused", idea_id=self.idea_id)

    def resume(self) -> None:
        if not self._visible.is_set():
            if self._paused_at is not None:
                self._paused_total += self._clock() - self._paused_at
                self._paused_at = None
            self._visible.set()
            logger.debug("polling_resumed", idea_id=self.idea_id)

    def _active_elapsed(self, started: float) -> float:
        return self._clock() - started - self._paused_total

    async def fetch(self) -> tuple[dict, float | None]:
        """One conditional GET.

        Returns:
            (idea, server-requested delay or None). On 304 the cached idea is returned.

        Raises:
            httpx.HTTPStatusError: 4xx other than 429 (auth, ownership, not found)
        """
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self.etag and self.idea is not None:
            headers["If-None-Match"] = self.etag

        self.polls += 1
        try:
            response = await self.client.get(f"/api/ideas/{self.idea_id}", headers=headers)
        except httpx.TransportError as exc:
            logger.warning("poll_transport_error", idea_id=self.idea_id, error=str(exc))
            return self.idea or {}, None

        if response.status_code == 304:
            return self.idea or {}, None

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            return self.idea or {}, float(retry_after) if retry_after and retry_after.isdigit() else None

        if response.status_code >= 500:
            logger.warning("poll_server_error", idea_id=self.idea_id, status_code=response.status_code)
            return self.idea or {}, None

        response.raise_for_status()
        self.etag = response.headers.get("ETag")
        self.idea = response.json()["idea"]
        return self.idea, None

    async def wait_for(
        self,
        stage: Stage,
        on_soft_warning: Callable[[float], None] | None = None,
    ) -> dict:
        """Poll until the stage's job resolves and return the idea.

        Args:
            stage: "questions" (60s timeout) or "stage1" (600s, warning at 180s)
            on_soft_warning: Called once with the elapsed seconds at the soft warning

        Raises:
            PollingTimeout: The overall timeout elapsed first
        """
        in_flight, timeout, soft_warning = STAGE_LIMITS[stage]
        started = self._clock()
        warned = False
        poll_number = 0

        while True:
            await self._visible.wait()

            idea, server_delay = await self.fetch()
            status = idea.get("status")
            if status is not None and status != in_flight.value:
                logger.info("poll_resolved", idea_id=self.idea_id, status=status, polls=self.polls)
                return idea

            elapsed = self._active_elapsed(started)
            if elapsed >= timeout:
                logger.info("poll_timeout", idea_id=self.idea_id, elapsed=elapsed, status=status)
                raise PollingTimeout(self.idea_id, elapsed, status)
            if soft_warning is not None and not warned and elapsed >= soft_warning:
                warned = True
                if on_soft_warning is not None:
                    on_soft_warning(elapsed)

            delay = server_delay if server_delay is not None else self.next_interval(poll_number)
            poll_number += 1
            await self._sleep(min(delay, max(timeout - elapsed, 0.0)))
