"""Job queue service facade.

Owns one ``JobQueue`` per ``QueueName``, the workers consuming them and the
recurring-job scheduler. Producers (API routes, the scheduler, other job
handlers) only talk to this object.

Example:
    service = JobQueueService(redis_client)
    service.register_processor(QueueName.DATA_SYNC, handlers.data_sync)
    service.schedule_periodic_jobs()
    await service.start()

    await service.add_data_sync_job("42", "twitter", "7")

    await service.shutdown()
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from redis.exceptions import RedisError

from engageiq.cache.redis import close_redis
from engageiq.config import Settings
from engageiq.config import settings as default_settings
from engageiq.distributed.leader import LeaderElection
from engageiq.errors import QueueBackendError, QueueClosedError
from engageiq.jobs.config import DEFAULT_QUEUE_CONFIGS, QueueConfig, platform_priority
from engageiq.jobs.payloads import (
    AnalyticsJob,
    CleanupJob,
    DataSyncJob,
    EmailJob,
    JobPayload,
    QueueName,
    ReportJob,
)
from engageiq.jobs.queue import Job, JobQueue
from engageiq.jobs.scheduler import DEFAULT_SCHEDULES, JobScheduler, ScheduledJob
from engageiq.jobs.worker import JobHandler, QueueWorker

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

REPORT_PRIORITY = 5


class JobQueueService:
    """Named queues, their processors and the recurring-job scheduler."""

    def __init__(
        self,
        client: Redis,
        config: Settings | None = None,
        queue_configs: Mapping[QueueName, QueueConfig] | None = None,
        clock: Callable[[], float] = time.time,
        owns_client: bool = False,
    ) -> None:
        self.client = client
        self.config = config or default_settings
        self._clock = clock
        self._owns_client = owns_client
        configs = {**DEFAULT_QUEUE_CONFIGS, **(queue_configs or {})}

        self.queues: dict[QueueName, JobQueue] = {
            name: JobQueue(
                client,
                configs[name],
                prefix=self.config.queue_key_prefix,
                job_ttl=self.config.queue_job_ttl,
                clock=clock,
            )
            for name in QueueName
        }
        self._processors: dict[QueueName, JobHandler] = {}
        self._workers: dict[QueueName, QueueWorker] = {}
        self._closed = False
        self._started = False

        leader = None
        if self.config.scheduler_leader_election:
            leader = LeaderElection(
                client,
                name="job-scheduler",
                instance_id=f"{self.config.app_name}-{self.config.instance_id}",
            )
        self.scheduler = JobScheduler(
            self,
            check_interval=self.config.scheduler_check_interval,
            leader=leader,
            clock=clock,
        )

    @property
    def is_closed(self) -> bool:
        return self._closed

    def queue(self, name: QueueName | str) -> JobQueue:
        return self.queues[QueueName(name)]

    # -------------------------------------------------------------------------
    # Processors and workers
    # -------------------------------------------------------------------------

    def register_processor(self, queue: QueueName | str, handler: JobHandler) -> None:
        """Register the processor for a queue (exactly one per queue)."""
        name = QueueName(queue)
        if name in self._processors:
            raise ValueError(f"Queue {name.value} already has a processor")
        self._processors[name] = handler
        logger.info(f"Registered processor for queue: {name.value}")

    def has_processor(self, queue: QueueName | str) -> bool:
        return QueueName(queue) in self._processors

    def worker(self, queue: QueueName | str) -> QueueWorker:
        """Worker for a queue with a registered processor."""
        name = QueueName(queue)
        if name not in self._workers:
            handler = self._processors.get(name)
            if handler is None:
                raise KeyError(f"No processor registered for queue: {name.value}")
            self._workers[name] = QueueWorker(
                self.queues[name],
                handler,
                poll_interval=self.config.queue_poll_interval,
                job_timeout=self.config.queue_job_timeout,
                heartbeat_interval=self.config.queue_heartbeat_interval,
            )
        return self._workers[name]

    async def start(self) -> None:
        """Start a worker per registered processor, and the scheduler if enabled."""
        if self._closed:
            raise QueueClosedError("Job service has been shut down")
        if self._started:
            return

        for name in self._processors:
            await self.worker(name).start()
        if self.config.enable_scheduler:
            await self.scheduler.start()
        self._started = True
        logger.info(f"Job service started ({len(self._processors)} queues)")

    async def shutdown(self, timeout: float | None = None) -> None:
        """Stop accepting jobs, wait for active ones and close connections.

        Args:
            timeout: Seconds to wait for active jobs (defaults to settings)
        """
        if self._closed:
            return

        logger.info("Shutting down job queues...")
        self._closed = True
        timeout = timeout if timeout is not None else self.config.queue_shutdown_timeout

        if self._started and self.config.enable_scheduler:
            await self.scheduler.stop()
        for worker in self._workers.values():
            await worker.stop(timeout=timeout)
        self._started = False

        if self._owns_client:
            await close_redis(self.client)
        logger.info("All job queues shut down")

    # -------------------------------------------------------------------------
    # Producers
    # -------------------------------------------------------------------------

    async def enqueue(
        self,
        queue: QueueName | str,
        payload: JobPayload,
        priority: int | None = None,
        delay: float | None = None,
        job_id: str | None = None,
        repeat: str | None = None,
    ) -> Job:
        """Add a job to a named queue.

        Raises:
            QueueClosedError: After ``shutdown()``
            QueueBackendError: If Redis cannot be reached
        """
        if self._closed:
            raise QueueClosedError("Job service has been shut down")

        try:
            return await self.queue(queue).add(
                payload, priority=priority, delay=delay, job_id=job_id, repeat=repeat
            )
        except RedisError as e:
            logger.error(f"Failed to enqueue job on {QueueName(queue).value}: {e}")
            raise QueueBackendError(str(e)) from e

    def schedule_recurring(
        self,
        queue: QueueName | str,
        payload: JobPayload,
        cron: str,
        job_id: str,
        name: str | None = None,
        priority: int | None = None,
    ) -> ScheduledJob:
        """Register a recurring job; every fire reuses ``job_id``."""
        return self.scheduler.add_job(
            name or job_id,
            QueueName(queue),
            cron,
            payload,
            job_id=job_id,
            priority=priority,
        )

    def schedule_periodic_jobs(self) -> list[ScheduledJob]:
        """Install the built-in recurring jobs."""
        scheduled = [
            self.schedule_recurring(queue, payload, cron, job_id=name)
            for name, (queue, cron, payload) in DEFAULT_SCHEDULES.items()
        ]
        logger.info("Periodic jobs scheduled successfully")
        return scheduled

    async def add_data_sync_job(
        self, user_id: str, platform: str, account_id: str, delay: float = 0
    ) -> Job:
        """Sync one linked account; re-adding before it finishes is a no-op."""
        return await self.enqueue(
            QueueName.DATA_SYNC,
            DataSyncJob(user_id=user_id, platform=platform, account_id=account_id),
            priority=platform_priority(platform),
            delay=delay,
            job_id=f"sync-{user_id}-{platform}-{account_id}",
        )

    async def add_report_generation_job(
        self,
        user_id: str,
        report_id: str,
        report_type: str = "custom",
        format: str = "json",
        data: dict[str, Any] | None = None,
    ) -> Job:
        return await self.enqueue(
            QueueName.REPORT_GENERATION,
            ReportJob(
                user_id=user_id,
                report_id=report_id,
                report_type=report_type,
                format=format,
                data=data or {},
            ),
            priority=REPORT_PRIORITY,
            job_id=f"report-{user_id}-{report_id}",
        )

    async def add_email_job(
        self, to: str, subject: str, template: str, data: dict[str, Any] | None = None
    ) -> Job:
        return await self.enqueue(
            QueueName.EMAIL,
            EmailJob(to=to, subject=subject, template=template, data=data or {}),
            job_id=f"email-{uuid4().hex}",
        )

    async def add_analytics_job(
        self, user_id: str, analytics_type: str, data: dict[str, Any] | None = None
    ) -> Job:
        timestamp_ms = int(self._clock() * 1000)
        return await self.enqueue(
            QueueName.ANALYTICS_PROCESSING,
            AnalyticsJob(user_id=user_id, analytics_type=analytics_type, data=data or {}),
            job_id=f"analytics-{user_id}-{analytics_type}-{timestamp_ms}",
        )

    async def add_cleanup_job(
        self, cleanup_type: str = "cleanup", max_age_days: int = 90, delay: float | None = None
    ) -> Job:
        return await self.enqueue(
            QueueName.CLEANUP,
            CleanupJob(cleanup_type=cleanup_type, max_age_days=max_age_days),
            delay=delay,
        )

    # -------------------------------------------------------------------------
    # Inspection and maintenance
    # -------------------------------------------------------------------------

    async def get_queue_stats(self) -> dict[str, dict[str, int]]:
        """Per-queue job counts.

        Raises:
            QueueBackendError: If Redis cannot be reached
        """
        try:
            return {name.value: await queue.counts() for name, queue in self.queues.items()}
        except RedisError as e:
            logger.error(f"Failed to read queue stats: {e}")
            raise QueueBackendError(str(e)) from e

    async def get_job(self, queue: QueueName | str, job_id: str) -> Job | None:
        return await self.queue(queue).get_job(job_id)

    async def clean_failed(self, older_than: float = 0) -> int:
        """Drop failed jobs older than ``older_than`` seconds on every queue."""
        total = 0
        for queue in self.queues.values():
            total += await queue.clean_failed(older_than)
        return total

    async def recover_stalled(self, older_than: float) -> int:
        """Return claims with no recent heartbeat on every queue to waiting."""
        total = 0
        for queue in self.queues.values():
            total += await queue.recover_stalled(older_than)
        return total
