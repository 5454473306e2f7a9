"""Typed job payloads, one variant per queue.

Each queue carries exactly one payload type, so handler dispatch can match
on ``QueueName`` exhaustively instead of probing loosely-typed dicts.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, TypeAlias


class QueueName(str, Enum):
    """Named job queues."""

    DATA_SYNC = "data-sync"
    REPORT_GENERATION = "report-generation"
    EMAIL = "email"
    ANALYTICS_PROCESSING = "analytics-processing"
    CLEANUP = "cleanup"


@dataclass(frozen=True)
class DataSyncJob:
    """Sync one linked account, or fan out to every account when periodic."""

    user_id: str | None = None
    platform: str | None = None
    account_id: str | None = None
    periodic: bool = False


@dataclass(frozen=True)
class ReportJob:
    user_id: str | None = None
    report_id: str | None = None
    report_type: str = "weekly_reports"
    format: str = "json"
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EmailJob:
    to: str
    subject: str
    template: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AnalyticsJob:
    user_id: str | None = None
    analytics_type: str = "hourly_analytics"
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CleanupJob:
    cleanup_type: str = "cleanup"
    max_age_days: int = 90


JobPayload: TypeAlias = DataSyncJob | ReportJob | EmailJob | AnalyticsJob | CleanupJob

PAYLOAD_TYPES: dict[QueueName, type[JobPayload]] = {
    QueueName.DATA_SYNC: DataSyncJob,
    QueueName.REPORT_GENERATION: ReportJob,
    QueueName.EMAIL: EmailJob,
    QueueName.ANALYTICS_PROCESSING: AnalyticsJob,
    QueueName.CLEANUP: CleanupJob,
}


def payload_to_dict(payload: JobPayload) -> dict[str, Any]:
    return asdict(payload)


def payload_from_dict(queue: QueueName, data: dict[str, Any]) -> JobPayload:
    """Rebuild the payload variant for ``queue``.

    Unknown keys are ignored so older job records stay readable.
    """
    payload_type = PAYLOAD_TYPES[queue]
    known = payload_type.__dataclass_fields__
    return payload_type(**{k: v for k, v in data.items() if k in known})


def check_payload(queue: QueueName, payload: JobPayload) -> None:
    """Raise TypeError if ``payload`` is not the variant ``queue`` carries."""
    expected = PAYLOAD_TYPES[queue]
    if not isinstance(payload, expected):
        raise TypeError(
            f"Queue {queue.value} expects {expected.__name__}, got {type(payload).__name__}"
        )
