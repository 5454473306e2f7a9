"""Error kinds shared by the job queue and platform sync.

Upstream platform failures are classified into a closed set of kinds so
the sync routine can branch on them. Job control exceptions tell the
worker how to transition a job when its handler cannot finish.
"""

from __future__ import annotations

from enum import Enum


class UpstreamErrorKind(str, Enum):
    """Classification of an upstream platform failure."""

    EXPIRED_CREDENTIAL = "expired_credential"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        """Whether retrying without outside intervention is pointless."""
        return self in (UpstreamErrorKind.EXPIRED_CREDENTIAL, UpstreamErrorKind.NOT_FOUND)


class UpstreamError(Exception):
    """Raised by platform clients when an upstream call fails."""

    def __init__(
        self,
        message: str,
        kind: UpstreamErrorKind = UpstreamErrorKind.UNKNOWN,
        platform: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.platform = platform
        self.retry_after = retry_after

    @classmethod
    def from_status(
        cls,
        status_code: int,
        message: str,
        platform: str | None = None,
        retry_after: float | None = None,
    ) -> "UpstreamError":
        """Classify an HTTP status returned by a platform API."""
        if status_code == 401:
            kind = UpstreamErrorKind.EXPIRED_CREDENTIAL
        elif status_code == 404:
            kind = UpstreamErrorKind.NOT_FOUND
        elif status_code == 429:
            kind = UpstreamErrorKind.RATE_LIMITED
        elif status_code >= 500:
            kind = UpstreamErrorKind.SERVER_ERROR
        else:
            kind = UpstreamErrorKind.UNKNOWN
        return cls(message, kind=kind, platform=platform, retry_after=retry_after)


class JobError(Exception):
    """Base class for job control exceptions raised by handlers."""


class PermanentJobError(JobError):
    """The job cannot succeed; fail it without further retries."""


class JobDeferred(JobError):
    """Put the job back after ``delay`` seconds without consuming an attempt."""

    def __init__(self, delay: float, reason: str = "") -> None:
        super().__init__(reason or f"deferred for {delay:.0f}s")
        self.delay = delay
        self.reason = reason


class QueueBackendError(Exception):
    """The queue backend could not be reached for an enqueue or stats call."""


class QueueClosedError(Exception):
    """Raised when enqueueing after the job service has been shut down."""
