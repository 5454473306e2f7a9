"""Cron-like scheduler for recurring jobs.

Holds a list of (cron expression, job template) pairs and, on a periodic
tick, enqueues the templates whose expression has fired. Each template
carries a fixed job id, so a run that overlaps the previous still-active
instance is deduplicated by the queue's idempotency rule.

Example:
    scheduler = JobScheduler(service)
    scheduler.add_job("data-cleanup", QueueName.CLEANUP, "0 2 * * 0", CleanupJob())
    scheduler.add_job("weekly-reports", QueueName.REPORT_GENERATION, "0 9 * * 1", ReportJob())

    await scheduler.start()
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from engageiq.distributed.leader import LeaderElection
from engageiq.jobs.payloads import (
    AnalyticsJob,
    CleanupJob,
    DataSyncJob,
    JobPayload,
    QueueName,
    ReportJob,
    check_payload,
)

if TYPE_CHECKING:
    from engageiq.jobs.service import JobQueueService

logger = logging.getLogger(__name__)

MINUTES_PER_LEAP_YEAR = 366 * 24 * 60


@dataclass
class ScheduledJob:
    """A recurring job definition."""

    name: str
    queue: QueueName
    cron: str
    payload: JobPayload
    job_id: str
    priority: int | None = None
    enabled: bool = True
    last_run: datetime | None = None
    next_run: datetime | None = None


class CronExpression:
    """Parse and evaluate cron expressions.

    Supports standard 5-field cron format:
    - minute (0-59)
    - hour (0-23)
    - day of month (1-31)
    - month (1-12)
    - day of week (0-6, 0=Sunday; 7 is accepted as Sunday)

    A 6-field expression with a leading seconds field is accepted; the
    seconds field is ignored since schedules are checked per minute.

    Special characters:
    - * : any value
    - */n : every n values
    - n-m : range from n to m
    - n-m/s : every s values from n to m
    - n,m : specific values n and m

    When both day of month and day of week are restricted, a time matches
    if either does (standard cron behaviour).
    """

    def __init__(self, expression: str) -> None:
        self.expression = expression
        self._parse(expression)

    def _parse(self, expression: str) -> None:
        parts = expression.strip().split()
        if len(parts) == 6:
            parts = parts[1:]
        if len(parts) != 5:
            raise ValueError(f"Invalid cron expression (expected 5 parts): {expression}")

        self.minute = self._parse_field(parts[0], 0, 59)
        self.hour = self._parse_field(parts[1], 0, 23)
        self.day_of_month = self._parse_field(parts[2], 1, 31)
        self.month = self._parse_field(parts[3], 1, 12)
        self.day_of_week = {d % 7 for d in self._parse_field(parts[4], 0, 7)}
        self._dom_restricted = parts[2] != "*"
        self._dow_restricted = parts[4] != "*"

    def _parse_field(self, field: str, min_val: int, max_val: int) -> set[int]:
        """Parse a single cron field."""
        values: set[int] = set()

        for part in field.split(","):
            step = 1
            if "/" in part:
                part, step_text = part.split("/", 1)
                step = int(step_text)
                if step < 1:
                    raise ValueError(f"Invalid step in cron field: {field}")

            if part == "*":
                start, end = min_val, max_val
            elif "-" in part:
                start, end = map(int, part.split("-", 1))
            else:
                start = int(part)
                end = max_val if step > 1 else start

            if start < min_val or end > max_val or start > end:
                raise ValueError(f"Cron field out of range {min_val}-{max_val}: {field}")
            values.update(range(start, end + 1, step))

        return values

    def matches(self, dt: datetime) -> bool:
        """Check if datetime matches this cron expression."""
        if dt.minute not in self.minute or dt.hour not in self.hour:
            return False
        if dt.month not in self.month:
            return False

        # Python weekday: 0=Mon ... 6=Sun; cron: 0=Sun ... 6=Sat
        dom_match = dt.day in self.day_of_month
        dow_match = (dt.weekday() + 1) % 7 in self.day_of_week
        if self._dom_restricted and self._dow_restricted:
            return dom_match or dow_match
        return dom_match and dow_match

    def next_run(self, after: datetime | None = None) -> datetime:
        """Calculate the first matching minute strictly after ``after``."""
        if after is None:
            after = datetime.now(UTC)

        current = after.replace(second=0, microsecond=0)
        for _ in range(MINUTES_PER_LEAP_YEAR):
            current += timedelta(minutes=1)
            if self.matches(current):
                return current

        raise ValueError(f"No matching time found for: {self.expression}")


class JobScheduler:
    """Enqueues recurring jobs when their cron expression fires.

    With a ``leader``, only the instance holding the lease enqueues; other
    instances keep advancing their schedules so they can take over on the
    next cron time when the lease moves.
    """

    def __init__(
        self,
        service: JobQueueService,
        check_interval: float = 60.0,
        leader: LeaderElection | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.service = service
        self.check_interval = check_interval
        self.leader = leader
        self._clock = clock
        self._jobs: dict[str, ScheduledJob] = {}
        self._crons: dict[str, CronExpression] = {}
        self._running = False
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), UTC)

    def add_job(
        self,
        name: str,
        queue: QueueName,
        cron: str,
        payload: JobPayload,
        job_id: str | None = None,
        priority: int | None = None,
        enabled: bool = True,
    ) -> ScheduledJob:
        """Register a recurring job.

        Args:
            name: Unique schedule name
            queue: Queue the template is enqueued on
            cron: Cron expression (5-field, or 6-field with seconds)
            payload: Job template
            job_id: Fixed id for every instance (defaults to ``name``)
            priority: Job priority (defaults to the queue's default)
            enabled: Whether the schedule is active

        Returns:
            ScheduledJob instance
        """
        check_payload(queue, payload)
        cron_expr = CronExpression(cron)

        job = ScheduledJob(
            name=name,
            queue=queue,
            cron=cron,
            payload=payload,
            job_id=job_id or name,
            priority=priority,
            enabled=enabled,
            next_run=cron_expr.next_run(self._now()),
        )

        self._jobs[name] = job
        self._crons[name] = cron_expr

        logger.info(f"Scheduled job added: {name} ({cron}), next run: {job.next_run}")
        return job

    def remove_job(self, name: str) -> bool:
        if name in self._jobs:
            del self._jobs[name]
            del self._crons[name]
            logger.info(f"Scheduled job removed: {name}")
            return True
        return False

    def enable_job(self, name: str) -> bool:
        if name in self._jobs:
            self._jobs[name].enabled = True
            return True
        return False

    def disable_job(self, name: str) -> bool:
        if name in self._jobs:
            self._jobs[name].enabled = False
            return True
        return False

    def list_jobs(self) -> list[ScheduledJob]:
        return list(self._jobs.values())

    def get_job(self, name: str) -> ScheduledJob | None:
        return self._jobs.get(name)

    # -------------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Start the scheduling loop in the background."""
        if self._running:
            return

        self._running = True
        self._stop_event.clear()
        if self.leader is not None:
            await self.leader.start()
            logger.info("Scheduler started with leader election")
        else:
            logger.info("Scheduler started (no leader election)")
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Stop the loop and release leadership."""
        self._running = False
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        if self.leader is not None:
            await self.leader.stop()
        logger.info("Scheduler stopped")

    async def run(self) -> None:
        """Run the scheduler until stopped."""
        await self.start()
        if self._task is not None:
            await self._task

    async def _loop(self) -> None:
        while self._running:
            if self.leader is None or self.leader.is_leader:
                await self.check_schedules()
            else:
                self.skip_due()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.check_interval)
            except asyncio.TimeoutError:
                pass

    async def check_schedules(self, now: datetime | None = None) -> list[str]:
        """Enqueue every enabled job whose next run time has passed.

        Returns:
            Names of the schedules that were enqueued
        """
        now = now or self._now()
        fired: list[str] = []

        for name, job in self._jobs.items():
            if not job.enabled or job.next_run is None or now < job.next_run:
                continue

            try:
                queued = await self.service.enqueue(
                    job.queue,
                    job.payload,
                    priority=job.priority,
                    job_id=job.job_id,
                    repeat=name,
                )
            except Exception as e:
                logger.error(f"Failed to submit scheduled job {name}: {e}")
                continue

            logger.info(f"Scheduled job submitted: {name} -> {queued.id}")
            job.last_run = now
            job.next_run = self._crons[name].next_run(now)
            fired.append(name)

        return fired

    def skip_due(self, now: datetime | None = None) -> list[str]:
        """Advance every due schedule to its next run without enqueueing.

        Followers call this each tick, so an instance that gains leadership
        only fires on the next cron time rather than replaying missed ones.

        Returns:
            Names of the schedules that were advanced
        """
        now = now or self._now()
        skipped: list[str] = []

        for name, job in self._jobs.items():
            if job.next_run is None or now < job.next_run:
                continue
            job.next_run = self._crons[name].next_run(now)
            skipped.append(name)

        return skipped

    async def run_now(self, name: str) -> str | None:
        """Enqueue a scheduled job immediately.

        Returns:
            Job id if submitted, None if the schedule is unknown
        """
        job = self._jobs.get(name)
        if job is None:
            return None

        queued = await self.service.enqueue(
            job.queue,
            job.payload,
            priority=job.priority,
            job_id=job.job_id,
            repeat=name,
        )
        logger.info(f"Manually triggered scheduled job: {name} -> {queued.id}")
        return queued.id


# name -> (queue, cron, template); the name doubles as the fixed job id
DEFAULT_SCHEDULES: dict[str, tuple[QueueName, str, JobPayload]] = {
    "periodic-data-sync": (QueueName.DATA_SYNC, "0 */6 * * *", DataSyncJob(periodic=True)),
    "weekly-reports": (
        QueueName.REPORT_GENERATION,
        "0 9 * * 1",
        ReportJob(report_type="weekly_reports"),
    ),
    "data-cleanup": (QueueName.CLEANUP, "0 2 * * 0", CleanupJob(cleanup_type="cleanup")),
    "hourly-analytics": (
        QueueName.ANALYTICS_PROCESSING,
        "0 * * * *",
        AnalyticsJob(analytics_type="hourly_analytics"),
    ),
}
