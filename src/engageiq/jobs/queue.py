"""Redis-backed priority job queue.

One ``JobQueue`` per named queue, with:
- Priority ordering (higher first), FIFO among equal priorities
- Atomic job claiming via ZPOPMAX (at most one worker gets a job)
- Delayed jobs and backoff-retry
- Idempotent enqueue by job id
- Bounded retention of completed and failed jobs

Redis layout under ``{prefix}{queue}:``:
- ``job:{id}``   job record (JSON)
- ``waiting``    ZSET, score = priority * 1e12 - sequence
- ``delayed``    ZSET, score = ready time in ms
- ``active``     ZSET, score = last heartbeat in ms (claim time until the first)
- ``completed``  LIST of ids, newest first, trimmed to ``remove_on_complete``
- ``failed``     LIST of ids, newest first, trimmed to ``remove_on_fail``
- ``seq``        insertion counter

Example:
    queue = JobQueue(redis, DEFAULT_QUEUE_CONFIGS[QueueName.DATA_SYNC])

    job = await queue.add(DataSyncJob("42", "twitter", "7"), job_id="sync-42-twitter-7")

    claimed = await queue.claim()
    try:
        await queue.complete(claimed, await process(claimed))
    except Exception as e:
        await queue.fail(claimed, str(e))
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, cast
from uuid import uuid4

import orjson

from engageiq.cache.redis import decode
from engageiq.jobs.backoff import Backoff
from engageiq.jobs.config import QueueConfig
from engageiq.jobs.payloads import (
    JobPayload,
    QueueName,
    check_payload,
    payload_from_dict,
    payload_to_dict,
)

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "engageiq:queue:"
DEFAULT_JOB_TTL = 86400 * 7  # 7 days

# Keeps priority dominant over the insertion sequence in the waiting score
PRIORITY_SCALE = 1e12


class JobStatus(str, Enum):
    """Job lifecycle state."""

    WAITING = "waiting"
    DELAYED = "delayed"  # Waiting, but not before ready_at
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_finished(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class Job:
    """Job definition with metadata and state."""

    id: str
    queue: QueueName
    payload: JobPayload
    priority: int = 5
    attempts: int = 0
    max_attempts: int = 3
    backoff: Backoff = field(default_factory=Backoff)
    status: JobStatus = JobStatus.WAITING
    created_at: float = field(default_factory=time.time)
    ready_at: float | None = None
    started_at: float | None = None
    finished_at: float | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    deferrals: int = 0
    repeat: str | None = None  # Name of the schedule that produced the job

    def to_dict(self) -> dict[str, Any]:
        """Serialize job to dictionary."""
        return {
            "id": self.id,
            "queue": self.queue.value,
            "payload": payload_to_dict(self.payload),
            "priority": self.priority,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "backoff": self.backoff.to_dict(),
            "status": self.status.value,
            "created_at": self.created_at,
            "ready_at": self.ready_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "result": self.result,
            "error": self.error,
            "deferrals": self.deferrals,
            "repeat": self.repeat,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Job:
        """Deserialize job from dictionary."""
        queue = QueueName(data["queue"])
        return cls(
            id=data["id"],
            queue=queue,
            payload=payload_from_dict(queue, data.get("payload") or {}),
            priority=data.get("priority", 5),
            attempts=data.get("attempts", 0),
            max_attempts=data.get("max_attempts", 3),
            backoff=Backoff.from_dict(data.get("backoff") or {}),
            status=JobStatus(data["status"]),
            created_at=data.get("created_at", 0.0),
            ready_at=data.get("ready_at"),
            started_at=data.get("started_at"),
            finished_at=data.get("finished_at"),
            result=data.get("result"),
            error=data.get("error"),
            deferrals=data.get("deferrals", 0),
            repeat=data.get("repeat"),
        )


class JobQueue:
    """Redis-backed queue for one ``QueueName``.

    Claiming pops from a sorted set, which Redis performs atomically, so
    competing workers in any number of processes never receive the same job.
    """

    def __init__(
        self,
        client: Redis,
        config: QueueConfig,
        prefix: str = DEFAULT_PREFIX,
        job_ttl: int = DEFAULT_JOB_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.config = config
        self.name = config.name
        self.job_ttl = job_ttl
        self._clock = clock
        self._base = f"{prefix}{config.name.value}:"

    def _key(self, suffix: str) -> str:
        return f"{self._base}{suffix}"

    def _job_key(self, job_id: str) -> str:
        return self._key(f"job:{job_id}")

    async def _save(self, job: Job) -> None:
        await self.client.set(self._job_key(job.id), orjson.dumps(job.to_dict()), ex=self.job_ttl)

    async def _schedule(self, job: Job, delay: float) -> None:
        """Persist ``job`` and put it on the waiting or delayed set."""
        now = self._clock()
        if delay > 0:
            job.status = JobStatus.DELAYED
            job.ready_at = now + delay
            await self._save(job)
            await self.client.zadd(self._key("delayed"), {job.id: job.ready_at * 1000})
        else:
            job.status = JobStatus.WAITING
            job.ready_at = now
            await self._save(job)
            await self._push_waiting(job)

    async def _push_waiting(self, job: Job) -> None:
        seq = int(await self.client.incr(self._key("seq")))
        await self.client.zadd(self._key("waiting"), {job.id: job.priority * PRIORITY_SCALE - seq})

    async def _trim(self, list_name: str, keep: int) -> None:
        """Drop finished jobs beyond the retention count, records included."""
        list_key = self._key(list_name)
        stale = await self.client.lrange(list_key, keep, -1)
        if not stale:
            return
        await self.client.delete(*(self._job_key(cast(str, decode(i))) for i in stale))
        if keep > 0:
            await self.client.ltrim(list_key, 0, keep - 1)
        else:
            await self.client.delete(list_key)

    # -------------------------------------------------------------------------
    # Producer side
    # -------------------------------------------------------------------------

    async def add(
        self,
        payload: JobPayload,
        priority: int | None = None,
        delay: float | None = None,
        job_id: str | None = None,
        repeat: str | None = None,
    ) -> Job:
        """Add a job to the queue.

        With ``job_id``, the call is idempotent while a job with that id is
        waiting, delayed or active: the existing job is returned unchanged.
        A finished job with the same id is replaced.

        Args:
            payload: Payload variant for this queue
            priority: Higher runs first (defaults to the queue's default)
            delay: Seconds before the job becomes claimable
            job_id: Idempotency key
            repeat: Name of the schedule producing the job

        Returns:
            The queued job, or the existing one for a duplicate id
        """
        check_payload(self.name, payload)

        job = Job(
            id=job_id or uuid4().hex,
            queue=self.name,
            payload=payload,
            priority=priority if priority is not None else self.config.default_priority,
            max_attempts=self.config.max_attempts,
            backoff=self.config.backoff,
            created_at=self._clock(),
            repeat=repeat,
        )
        delay = delay if delay is not None else self.config.default_delay

        if job_id is not None:
            # Reserve the id atomically so concurrent producers create one job
            reserved = await self.client.set(
                self._job_key(job.id), orjson.dumps(job.to_dict()), nx=True, ex=self.job_ttl
            )
            if not reserved:
                existing = await self.get_job(job.id)
                if existing is not None and not existing.status.is_finished:
                    logger.info(f"Job {job.id} already {existing.status.value}, skipping")
                    return existing
                await self.client.lrem(self._key("completed"), 0, job.id)
                await self.client.lrem(self._key("failed"), 0, job.id)

        await self._schedule(job, delay)
        logger.info(f"Job added: {job.id} ({self.name.value}, priority {job.priority})")
        return job

    # -------------------------------------------------------------------------
    # Consumer side
    # -------------------------------------------------------------------------

    async def promote_delayed(self) -> int:
        """Move delayed jobs whose ready time has passed to the waiting set."""
        now_ms = self._clock() * 1000
        due = await self.client.zrangebyscore(self._key("delayed"), "-inf", now_ms)
        promoted = 0

        for raw_id in due:
            job_id = cast(str, decode(raw_id))
            # Only the caller whose ZREM succeeds promotes the job
            if not await self.client.zrem(self._key("delayed"), job_id):
                continue
            job = await self.get_job(job_id)
            if job is None:
                continue
            job.status = JobStatus.WAITING
            await self._save(job)
            await self._push_waiting(job)
            promoted += 1

        return promoted

    async def claim(self) -> Job | None:
        """Claim the highest-priority waiting job, or None if there is none."""
        await self.promote_delayed()

        while True:
            popped = await self.client.zpopmax(self._key("waiting"), 1)
            if not popped:
                return None

            job_id = cast(str, decode(popped[0][0]))
            job = await self.get_job(job_id)
            if job is None:
                # Record expired or removed
                continue

            now = self._clock()
            job.status = JobStatus.ACTIVE
            job.started_at = now
            job.attempts += 1
            await self._save(job)
            await self.client.zadd(self._key("active"), {job.id: now * 1000})

            logger.info(f"Job claimed: {job.id} (attempt {job.attempts}/{job.max_attempts})")
            return job

    async def complete(self, job: Job, result: dict[str, Any] | None = None) -> None:
        """Mark job as completed and apply completed-job retention."""
        job.status = JobStatus.COMPLETED
        job.finished_at = self._clock()
        job.result = result
        job.error = None

        await self.client.zrem(self._key("active"), job.id)
        await self._save(job)
        await self.client.lpush(self._key("completed"), job.id)
        await self._trim("completed", self.config.remove_on_complete)

        logger.info(f"Job completed: {job.id}")

    async def fail(self, job: Job, error: str, retry: bool = True) -> bool:
        """Record a failed attempt.

        Retries after the job's backoff delay while attempts remain, otherwise
        moves the job to the failed list for good.

        Returns:
            True if a retry was scheduled
        """
        job.error = error
        await self.client.zrem(self._key("active"), job.id)

        if retry and job.attempts < job.max_attempts:
            delay = job.backoff.delay_for(job.attempts)
            await self._schedule(job, delay)
            logger.warning(
                f"Job {job.id} failed, retrying in {delay:.1f}s "
                f"(attempt {job.attempts}/{job.max_attempts}): {error}"
            )
            return True

        job.status = JobStatus.FAILED
        job.finished_at = self._clock()
        await self._save(job)
        await self.client.lpush(self._key("failed"), job.id)
        await self._trim("failed", self.config.remove_on_fail)

        logger.error(f"Job failed permanently: {job.id} after {job.attempts} attempts: {error}")
        return False

    async def heartbeat(self, job: Job) -> None:
        """Refresh the claim of a job that is still running.

        Only updates an existing claim, so a late heartbeat never re-adds a
        job that has already completed or failed.
        """
        await self.client.zadd(self._key("active"), {job.id: self._clock() * 1000}, xx=True)

    async def defer(self, job: Job, delay: float, reason: str = "") -> None:
        """Put an active job back after ``delay`` without consuming an attempt."""
        job.attempts = max(job.attempts - 1, 0)
        job.deferrals += 1
        job.error = reason or None
        await self.client.zrem(self._key("active"), job.id)
        await self._schedule(job, delay)
        logger.info(f"Job deferred: {job.id} for {delay:.0f}s {reason}".rstrip())

    # -------------------------------------------------------------------------
    # Inspection and maintenance
    # -------------------------------------------------------------------------

    async def get_job(self, job_id: str) -> Job | None:
        data = await self.client.get(self._job_key(job_id))
        if data is None:
            return None
        return Job.from_dict(orjson.loads(data))

    async def remove(self, job_id: str) -> bool:
        """Remove a job from every structure of this queue."""
        for set_name in ("waiting", "delayed", "active"):
            await self.client.zrem(self._key(set_name), job_id)
        for list_name in ("completed", "failed"):
            await self.client.lrem(self._key(list_name), 0, job_id)
        return bool(await self.client.delete(self._job_key(job_id)))

    async def list_jobs(self, status: JobStatus, limit: int = 100) -> list[Job]:
        """List jobs in ``status``, in the order they would be processed or shown."""
        if status == JobStatus.WAITING:
            ids = await self.client.zrevrange(self._key("waiting"), 0, limit - 1)
        elif status in (JobStatus.DELAYED, JobStatus.ACTIVE):
            ids = await self.client.zrange(self._key(status.value), 0, limit - 1)
        else:
            ids = await self.client.lrange(self._key(status.value), 0, limit - 1)

        jobs: list[Job] = []
        for raw_id in ids:
            job = await self.get_job(cast(str, decode(raw_id)))
            if job is not None:
                jobs.append(job)
        return jobs

    async def counts(self) -> dict[str, int]:
        """Job counts per state."""
        return {
            "waiting": int(await self.client.zcard(self._key("waiting"))),
            "active": int(await self.client.zcard(self._key("active"))),
            "completed": int(await self.client.llen(self._key("completed"))),
            "failed": int(await self.client.llen(self._key("failed"))),
            "delayed": int(await self.client.zcard(self._key("delayed"))),
        }

    async def clean_failed(self, older_than: float = 0) -> int:
        """Delete retained failed jobs that finished more than ``older_than`` seconds ago."""
        cutoff = self._clock() - older_than
        removed = 0

        for raw_id in await self.client.lrange(self._key("failed"), 0, -1):
            job_id = cast(str, decode(raw_id))
            job = await self.get_job(job_id)
            if job is not None and (job.finished_at or 0) > cutoff:
                continue
            await self.client.lrem(self._key("failed"), 0, job_id)
            await self.client.delete(self._job_key(job_id))
            removed += 1

        return removed

    async def recover_stalled(self, older_than: float) -> int:
        """Return jobs with no heartbeat for ``older_than`` seconds to waiting.

        Covers workers that died mid-job; live workers keep refreshing their
        claims, so ``older_than`` must exceed the worker heartbeat interval.
        The interrupted attempt still counts.
        """
        cutoff_ms = (self._clock() - older_than) * 1000
        stalled = await self.client.zrangebyscore(self._key("active"), "-inf", cutoff_ms)
        recovered = 0

        for raw_id in stalled:
            job_id = cast(str, decode(raw_id))
            if not await self.client.zrem(self._key("active"), job_id):
                continue
            job = await self.get_job(job_id)
            if job is None:
                continue
            await self._schedule(job, 0)
            recovered += 1
            logger.warning(f"Recovered stalled job: {job_id}")

        return recovered
