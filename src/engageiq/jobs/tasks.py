"""Job handlers for the named queues.

One handler per queue:
- data-sync: sync one linked account, or fan out periodic per-account jobs
- report-generation: aggregate stored analytics into a saved report
- email: deliver a templated email
- analytics-processing: engagement, growth and performance aggregates
- cleanup: drop old analytics, expired cache entries and old failed jobs

Example:
    handlers = TaskHandlers(sync_manager, store, cache, service, email_sender)
    register_all_handlers(service, handlers)
    await service.start()
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, cast

from engageiq.cache.keys import CacheKeys
from engageiq.errors import JobDeferred, JobError, PermanentJobError
from engageiq.jobs.payloads import (
    AnalyticsJob,
    CleanupJob,
    DataSyncJob,
    EmailJob,
    QueueName,
    ReportJob,
)
from engageiq.jobs.worker import JobHandler, job_handler
from engageiq.sync.ports import AnalyticsRecord

if TYPE_CHECKING:
    from engageiq.cache.service import CacheService
    from engageiq.jobs.queue import Job
    from engageiq.jobs.service import JobQueueService
    from engageiq.sync.manager import SyncManager
    from engageiq.sync.ports import AnalyticsStore, EmailSender

logger = logging.getLogger(__name__)

ANALYTICS_CACHE_TTL = 1800
REPORT_PERIODS = {"weekly_reports": 7, "monthly_reports": 30}
DEFAULT_REPORT_DAYS = 30
STALLED_JOB_AGE = 3600  # Seconds without a worker heartbeat before a claim counts as stalled


def summarize(records: list[AnalyticsRecord]) -> dict[str, Any]:
    """Totals per platform for a set of records."""
    by_platform: dict[str, dict[str, float]] = defaultdict(lambda: {"count": 0, "engagement": 0})
    for record in records:
        stats = by_platform[record.platform]
        stats["count"] += 1
        stats["engagement"] += record.value

    total = sum(r.value for r in records)
    return {
        "records": len(records),
        "total_engagement": total,
        "average_engagement": round(total / len(records), 2) if records else 0.0,
        "platforms": dict(by_platform),
    }


def growth(records: list[AnalyticsRecord], now: datetime, days: int = 7) -> dict[str, Any]:
    """Engagement of the last ``days`` compared with the period before."""
    current_start = now - timedelta(days=days)
    previous_start = current_start - timedelta(days=days)
    current = sum(r.value for r in records if r.date >= current_start)
    previous = sum(r.value for r in records if previous_start <= r.date < current_start)
    rate = round((current - previous) / previous * 100, 2) if previous else None
    return {"current": current, "previous": previous, "growth_percent": rate, "days": days}


def top_content(records: list[AnalyticsRecord], limit: int = 5) -> list[dict[str, Any]]:
    ranked = sorted(records, key=lambda r: r.value, reverse=True)[:limit]
    return [
        {
            "platform": r.platform,
            "account_id": r.account_id,
            "content_id": r.data.get("content_id"),
            "value": r.value,
            "date": r.date.isoformat(),
        }
        for r in ranked
    ]


class TaskHandlers:
    """Handlers bound to the collaborators they need."""

    def __init__(
        self,
        sync_manager: SyncManager,
        store: AnalyticsStore,
        cache: CacheService,
        service: JobQueueService,
        email_sender: EmailSender | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.sync_manager = sync_manager
        self.store = store
        self.cache = cache
        self.service = service
        self.email_sender = email_sender
        self._clock = clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), UTC)

    # -------------------------------------------------------------------------
    # data-sync
    # -------------------------------------------------------------------------

    @job_handler(QueueName.DATA_SYNC)
    async def data_sync(self, job: Job) -> dict[str, Any]:
        """Sync one linked account.

        Rate limits defer the job by the platform cooldown; expired
        credentials and missing accounts fail it without retries.
        """
        payload = cast(DataSyncJob, job.payload)
        if payload.periodic or payload.user_id is None:
            return await self._periodic_sync()

        accounts = await self.store.list_accounts(payload.user_id, payload.platform)
        account = next((a for a in accounts if a.id == payload.account_id), None)
        if account is None:
            raise PermanentJobError(
                f"Linked account {payload.account_id} not found for user {payload.user_id}"
            )

        result = await self.sync_manager.sync_account(payload.user_id, account)
        if result.success:
            await self.cache.invalidate_tags([f"user:{payload.user_id}", "analytics"])
            return result.to_dict()

        message = "; ".join(result.errors)
        if result.retry_after is not None:
            raise JobDeferred(result.retry_after, reason=message)
        if result.error_kind is not None and result.error_kind.is_terminal:
            raise PermanentJobError(message)
        raise JobError(message)

    async def _periodic_sync(self) -> dict[str, Any]:
        """Enqueue one sync job per linked account of every user."""
        users = await self.store.list_user_ids()
        enqueued = 0
        for user_id in users:
            try:
                for account in await self.store.list_accounts(user_id):
                    await self.service.add_data_sync_job(user_id, account.platform, account.id)
                    enqueued += 1
            except Exception as e:
                logger.error(f"Periodic sync failed for user {user_id}: {e}")

        logger.info(f"Periodic sync: {enqueued} account job(s) for {len(users)} user(s)")
        return {"users": len(users), "jobs_enqueued": enqueued}

    # -------------------------------------------------------------------------
    # report-generation
    # -------------------------------------------------------------------------

    @job_handler(QueueName.REPORT_GENERATION)
    async def report_generation(self, job: Job) -> dict[str, Any]:
        payload = cast(ReportJob, job.payload)
        now = self._now()
        days = int(
            payload.data.get("days", REPORT_PERIODS.get(payload.report_type, DEFAULT_REPORT_DAYS))
        )
        records = await self.store.load_analytics(payload.user_id, now - timedelta(days=days))

        report_id = payload.report_id or f"{payload.report_type}-{now:%Y%m%d}"
        report = {
            "report_id": report_id,
            "user_id": payload.user_id,
            "type": payload.report_type,
            "format": payload.format,
            "generated_at": now.isoformat(),
            "period_days": days,
            "summary": summarize(records),
            "top_content": top_content(records),
        }
        await self.store.save_report(report_id, report)
        await self.cache.invalidate(CacheKeys.report("*"))

        logger.info(f"Report generated: {report_id} ({len(records)} records)")
        return {"report_id": report_id, "records": len(records)}

    # -------------------------------------------------------------------------
    # email
    # -------------------------------------------------------------------------

    @job_handler(QueueName.EMAIL)
    async def email(self, job: Job) -> dict[str, Any]:
        payload = cast(EmailJob, job.payload)
        if self.email_sender is None:
            raise PermanentJobError("No email sender configured")

        message_id = await self.email_sender.send(
            payload.to, payload.subject, payload.template, payload.data
        )
        logger.info(f"Email sent to {payload.to}: {payload.subject}")
        return {"message_id": message_id, "to": payload.to}

    # -------------------------------------------------------------------------
    # analytics-processing
    # -------------------------------------------------------------------------

    @job_handler(QueueName.ANALYTICS_PROCESSING)
    async def analytics_processing(self, job: Job) -> dict[str, Any]:
        payload = cast(AnalyticsJob, job.payload)
        now = self._now()

        if payload.analytics_type == "engagement":
            records = await self.store.load_analytics(payload.user_id, now - timedelta(days=30))
            result: dict[str, Any] = summarize(records)
        elif payload.analytics_type == "growth":
            days = int(payload.data.get("days", 7))
            records = await self.store.load_analytics(
                payload.user_id, now - timedelta(days=2 * days)
            )
            result = growth(records, now, days)
        elif payload.analytics_type == "performance":
            records = await self.store.load_analytics(payload.user_id, now - timedelta(days=30))
            result = {"top_content": top_content(records, int(payload.data.get("limit", 5)))}
        else:
            records = await self.store.load_analytics(payload.user_id, now - timedelta(hours=1))
            result = summarize(records)

        result["type"] = payload.analytics_type
        result["processed_at"] = now.isoformat()

        tags = ["analytics"] + ([f"user:{payload.user_id}"] if payload.user_id else [])
        await self.cache.set(
            CacheKeys.processed(payload.user_id, payload.analytics_type),
            result,
            ttl=ANALYTICS_CACHE_TTL,
            tags=tags,
        )
        return result

    # -------------------------------------------------------------------------
    # cleanup
    # -------------------------------------------------------------------------

    @job_handler(QueueName.CLEANUP)
    async def cleanup(self, job: Job) -> dict[str, Any]:
        payload = cast(CleanupJob, job.payload)
        cutoff = self._now() - timedelta(days=payload.max_age_days)

        deleted_records = await self.store.delete_analytics_before(cutoff)
        swept = self.cache.local.sweep()
        failed_jobs = await self.service.clean_failed(older_than=payload.max_age_days * 86400)
        recovered = await self.service.recover_stalled(STALLED_JOB_AGE)

        logger.info(
            f"Cleanup complete: {deleted_records} records, {swept} cache entries, "
            f"{failed_jobs} failed jobs, {recovered} stalled jobs recovered"
        )
        return {
            "deleted_records": deleted_records,
            "expired_cache_entries": swept,
            "failed_jobs_removed": failed_jobs,
            "stalled_jobs_recovered": recovered,
        }

    def handlers(self) -> dict[QueueName, JobHandler]:
        """Bound handlers keyed by the queue they are marked for."""
        found: dict[QueueName, JobHandler] = {}
        for attr in dir(type(self)):
            queue = getattr(getattr(type(self), attr), "__job_queue__", None)
            if queue is not None:
                found[queue] = getattr(self, attr)
        return found


def register_all_handlers(service: JobQueueService, handlers: TaskHandlers) -> None:
    """Register every handler with the job service."""
    registered = handlers.handlers()
    for queue, handler in registered.items():
        service.register_processor(queue, handler)

    logger.info(f"Registered {len(registered)} job handlers")
