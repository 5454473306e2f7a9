"""Background job processing.

Provides Redis-backed named job queues with:
- Priority ordering and idempotent job ids
- Retry with fixed or exponential backoff
- Per-queue concurrency ceilings
- Cron-like recurring jobs with leader election
- Rate-limit deferral without consuming attempts

Example:
    from engageiq.jobs import JobQueueService, QueueName, EmailJob

    service = JobQueueService(redis_client)
    service.register_processor(QueueName.EMAIL, send_email)
    await service.start()

    await service.enqueue(QueueName.EMAIL, EmailJob("a@b.c", "Hi", "welcome"))
"""

from engageiq.jobs.backoff import Backoff, BackoffStrategy
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
from engageiq.jobs.queue import Job, JobQueue, JobStatus
from engageiq.jobs.scheduler import DEFAULT_SCHEDULES, CronExpression, JobScheduler, ScheduledJob
from engageiq.jobs.service import JobQueueService
from engageiq.jobs.worker import JobHandler, QueueWorker, job_handler

__all__ = [
    # Payloads
    "QueueName",
    "JobPayload",
    "DataSyncJob",
    "ReportJob",
    "EmailJob",
    "AnalyticsJob",
    "CleanupJob",
    # Queue
    "Backoff",
    "BackoffStrategy",
    "QueueConfig",
    "DEFAULT_QUEUE_CONFIGS",
    "platform_priority",
    "Job",
    "JobQueue",
    "JobStatus",
    # Worker
    "JobHandler",
    "QueueWorker",
    "job_handler",
    # Scheduler
    "CronExpression",
    "JobScheduler",
    "ScheduledJob",
    "DEFAULT_SCHEDULES",
    # Service
    "JobQueueService",
]
