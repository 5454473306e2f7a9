"""Collaborator interfaces for platform sync and job handlers.

The sync routine and the job handlers depend only on these interfaces:
- PlatformClient: fetches recent content for one linked account
- AnalyticsStore: persistence of linked accounts, records and reports
- EmailSender: delivery of templated notification emails

InMemoryAnalyticsStore backs single-instance development setups and tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class LinkedAccount:
    """A social account a user has connected."""

    id: str
    user_id: str
    platform: str
    username: str = ""
    access_token: str | None = None


@dataclass(frozen=True)
class AnalyticsRecord:
    """One normalized analytics data point."""

    user_id: str
    platform: str
    account_id: str
    metric_type: str
    value: float
    date: datetime
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def dedupe_key(self) -> tuple[str, str, str, str]:
        """Identity used for duplicate-skipping inserts."""
        content_id = str(self.data.get("content_id", ""))
        return (self.platform, self.account_id, self.metric_type, content_id)


class PlatformClient(ABC):
    """Upstream platform API used by sync jobs.

    Implementations raise ``UpstreamError`` with a classified kind when a
    call fails.
    """

    platform: str

    @abstractmethod
    async def fetch_recent_content(self, account: LinkedAccount) -> list[dict[str, Any]]:
        """Fetch the account's recent posts, tweets or videos."""
        ...

    @abstractmethod
    async def health_check(self) -> dict[str, Any]:
        """Return ``{"status": "healthy"|"unhealthy", "details": str}``."""
        ...


class AnalyticsStore(ABC):
    """Persistence collaborator for sync, reports and cleanup."""

    @abstractmethod
    async def list_accounts(
        self, user_id: str, platform: str | None = None
    ) -> list[LinkedAccount]: ...

    @abstractmethod
    async def list_user_ids(self) -> list[str]: ...

    @abstractmethod
    async def batch_insert_analytics(
        self, records: Iterable[AnalyticsRecord], skip_duplicates: bool = True
    ) -> int:
        """Insert records and return how many were written."""
        ...

    @abstractmethod
    async def load_analytics(
        self, user_id: str | None = None, since: datetime | None = None
    ) -> list[AnalyticsRecord]: ...

    @abstractmethod
    async def delete_analytics_before(self, cutoff: datetime) -> int: ...

    @abstractmethod
    async def save_report(self, report_id: str, data: dict[str, Any]) -> None: ...


class EmailSender(ABC):
    """Outbound email collaborator."""

    @abstractmethod
    async def send(self, to: str, subject: str, template: str, data: dict[str, Any]) -> str:
        """Send an email and return the provider message id."""
        ...


class InMemoryAnalyticsStore(AnalyticsStore):
    """Process-local store.

    Suitable for single-instance development and tests; records are lost
    on restart.
    """

    def __init__(self, accounts: Iterable[LinkedAccount] = ()) -> None:
        self.accounts: list[LinkedAccount] = list(accounts)
        self.records: list[AnalyticsRecord] = []
        self.reports: dict[str, dict[str, Any]] = {}
        self._seen: set[tuple[str, str, str, str]] = set()

    def add_account(self, account: LinkedAccount) -> None:
        self.accounts.append(account)

    async def list_accounts(
        self, user_id: str, platform: str | None = None
    ) -> list[LinkedAccount]:
        return [
            a
            for a in self.accounts
            if a.user_id == user_id and (platform is None or a.platform == platform)
        ]

    async def list_user_ids(self) -> list[str]:
        return sorted({a.user_id for a in self.accounts})

    async def batch_insert_analytics(
        self, records: Iterable[AnalyticsRecord], skip_duplicates: bool = True
    ) -> int:
        inserted = 0
        for record in records:
            if skip_duplicates and record.dedupe_key in self._seen:
                continue
            self._seen.add(record.dedupe_key)
            self.records.append(record)
            inserted += 1
        return inserted

    async def load_analytics(
        self, user_id: str | None = None, since: datetime | None = None
    ) -> list[AnalyticsRecord]:
        return [
            r
            for r in self.records
            if (user_id is None or r.user_id == user_id) and (since is None or r.date >= since)
        ]

    async def delete_analytics_before(self, cutoff: datetime) -> int:
        kept = [r for r in self.records if r.date >= cutoff]
        removed = len(self.records) - len(kept)
        self.records = kept
        return removed

    async def save_report(self, report_id: str, data: dict[str, Any]) -> None:
        self.reports[report_id] = data
