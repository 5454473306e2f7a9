"""Per-queue retry, retention and concurrency settings."""

from __future__ import annotations

from dataclasses import dataclass

from engageiq.jobs.backoff import Backoff, BackoffStrategy
from engageiq.jobs.payloads import QueueName


@dataclass(frozen=True)
class QueueConfig:
    """Configuration of one named queue."""

    name: QueueName
    concurrency: int = 1
    max_attempts: int = 3
    backoff: Backoff = Backoff()
    # Number of finished jobs kept for inspection
    remove_on_complete: int = 100
    remove_on_fail: int = 50
    default_delay: float = 0.0
    default_priority: int = 5


DEFAULT_QUEUE_CONFIGS: dict[QueueName, QueueConfig] = {
    QueueName.DATA_SYNC: QueueConfig(
        name=QueueName.DATA_SYNC,
        concurrency=5,
        max_attempts=3,
        backoff=Backoff(BackoffStrategy.EXPONENTIAL, delay=2.0),
        remove_on_complete=100,
        remove_on_fail=50,
    ),
    QueueName.REPORT_GENERATION: QueueConfig(
        name=QueueName.REPORT_GENERATION,
        concurrency=2,
        max_attempts=2,
        backoff=Backoff(BackoffStrategy.FIXED, delay=1.0),
        remove_on_complete=50,
        remove_on_fail=25,
    ),
    QueueName.EMAIL: QueueConfig(
        name=QueueName.EMAIL,
        concurrency=10,
        max_attempts=5,
        backoff=Backoff(BackoffStrategy.EXPONENTIAL, delay=1.0),
        remove_on_complete=200,
        remove_on_fail=100,
        default_priority=3,
    ),
    QueueName.ANALYTICS_PROCESSING: QueueConfig(
        name=QueueName.ANALYTICS_PROCESSING,
        concurrency=3,
        max_attempts=3,
        backoff=Backoff(BackoffStrategy.EXPONENTIAL, delay=1.0),
        remove_on_complete=200,
        remove_on_fail=100,
        default_priority=4,
    ),
    QueueName.CLEANUP: QueueConfig(
        name=QueueName.CLEANUP,
        concurrency=1,
        max_attempts=1,
        backoff=Backoff(BackoffStrategy.FIXED, delay=1.0),
        remove_on_complete=10,
        remove_on_fail=5,
    ),
}

PLATFORM_PRIORITIES = {"twitter": 10, "instagram": 8, "youtube": 6}
DEFAULT_PRIORITY = 5


def platform_priority(platform: str) -> int:
    """Data-sync priority for a platform (higher runs first)."""
    return PLATFORM_PRIORITIES.get(platform, DEFAULT_PRIORITY)
