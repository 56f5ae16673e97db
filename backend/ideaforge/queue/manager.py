"""JobQueue: durable Redis job queue with leases and a dead-letter list."""

import json
from datetime import UTC, datetime

import structlog
from redis.asyncio import Redis

from ideaforge.queue.schemas import JobPayload

logger = structlog.get_logger(__name__)


class JobQueue:
    """FIFO job queue on a Redis sorted set, with at-least-once delivery.

    - ``queue:pending`` holds job ids scored by an atomic counter (FIFO)
    - ``queue:processing`` holds leased job ids scored by lease deadline
    - ``queue:job:{id}`` holds the serialized JobPayload
    - ``queue:dead_letter`` lists jobs that exhausted their deliveries

    A worker that dies mid-job leaves its lease behind; ``requeue_stale``
    hands such jobs out again, so handlers must tolerate redelivery.
    """

    PENDING_KEY = "queue:pending"
    PROCESSING_KEY = "queue:processing"
    COUNTER_KEY = "queue:counter"
    DEAD_LETTER_KEY = "queue:dead_letter"

    def __init__(self, redis: Redis):
        self.redis = redis

    def _payload_key(self, job_id: str) -> str:
        return f"queue:job:{job_id}"

    async def enqueue(self, job: JobPayload) -> int:
        """Store the payload and append the job. Returns its 1-indexed position."""
        counter = await self.redis.incr(self.COUNTER_KEY)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.set(self._payload_key(job.job_id), job.model_dump_json())
            pipe.zadd(self.PENDING_KEY, {job.job_id: counter})
            await pipe.execute()
        return await self.get_position(job.job_id)

    async def dequeue(self, lease_seconds: int, now: datetime | None = None) -> JobPayload | None:
        """Pop the oldest job and lease it until ``now + lease_seconds``.

        Returns None if the queue is empty.
        """
        now = now or datetime.now(UTC)
        result = await self.redis.zpopmin(self.PENDING_KEY, count=1)
        if not result:
            return None

        job_id, _score = result[0]
        await self.redis.zadd(self.PROCESSING_KEY, {job_id: now.timestamp() + lease_seconds})

        raw = await self.redis.get(self._payload_key(job_id))
        if raw is None:
            logger.error("job_payload_missing", job_id=job_id)
            await self.redis.zrem(self.PROCESSING_KEY, job_id)
            return None
        return JobPayload.model_validate_json(raw)

    async def ack(self, job_id: str) -> None:
        """Mark a job done: drop its lease and payload."""
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.zrem(self.PROCESSING_KEY, job_id)
            pipe.delete(self._payload_key(job_id))
            await pipe.execute()

    async def dead_letter(self, job: JobPayload, reason: str, now: datetime | None = None) -> None:
        """Move a job to the dead-letter list so operators can see it."""
        now = now or datetime.now(UTC)
        entry = json.dumps(
            {
                "job": job.model_dump(mode="json"),
                "reason": reason,
                "failed_at": now.isoformat(),
            }
        )
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.rpush(self.DEAD_LETTER_KEY, entry)
            pipe.zrem(self.PROCESSING_KEY, job.job_id)
            pipe.delete(self._payload_key(job.job_id))
            await pipe.execute()
        logger.error("job_dead_lettered", job_id=job.job_id, kind=job.kind.value, idea_id=job.idea_id, reason=reason)

    async def requeue_stale(self, max_deliveries: int, now: datetime | None = None) -> list[JobPayload]:
        """Redeliver jobs whose lease expired.

        Jobs that already used ``max_deliveries`` deliveries are dead-lettered
        instead and returned, so the caller can resolve their ideas.
        """
        now = now or datetime.now(UTC)
        expired = await self.redis.zrangebyscore(self.PROCESSING_KEY, "-inf", now.timestamp())
        exhausted: list[JobPayload] = []

        for job_id in expired:
            # Another worker may have claimed this lease first
            if not await self.redis.zrem(self.PROCESSING_KEY, job_id):
                continue
            raw = await self.redis.get(self._payload_key(job_id))
            if raw is None:
                continue
            job = JobPayload.model_validate_json(raw)

            if job.attempt >= max_deliveries:
                await self.dead_letter(job, reason="lease_expired_max_deliveries", now=now)
                exhausted.append(job)
                continue

            redelivery = job.model_copy(update={"attempt": job.attempt + 1})
            await self.enqueue(redelivery)
            logger.warning("job_requeued_after_lease_expiry", job_id=job_id, attempt=redelivery.attempt)

        return exhausted

    async def get_position(self, job_id: str) -> int:
        """Get 1-indexed position of job in queue.

        Returns 0 if job not in queue.
        """
        rank = await self.redis.zrank(self.PENDING_KEY, job_id)
        return rank + 1 if rank is not None else 0

    async def get_length(self) -> int:
        """Return current number of pending jobs."""
        return await self.redis.zcard(self.PENDING_KEY)

    async def get_dead_letters(self) -> list[dict]:
        return [json.loads(entry) for entry in await self.redis.lrange(self.DEAD_LETTER_KEY, 0, -1)]
