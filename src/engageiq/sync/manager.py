"""Platform sync: fetch, normalize and store analytics per linked account.

Each account is synced in isolation. A failing account records its error
in its own ``SyncResult`` and never aborts the others. Rate-limited
accounts carry a ``retry_after`` cooldown that the data-sync job handler
turns into a queue deferral instead of the queue's generic backoff.

Example:
    manager = SyncManager(store, [twitter_client, instagram_client])
    results = await manager.sync_all_platforms("42")
    failed = [r for r in results if not r.success]
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from engageiq.errors import UpstreamError, UpstreamErrorKind
from engageiq.sync.normalize import normalize
from engageiq.sync.ports import AnalyticsStore, LinkedAccount, PlatformClient

logger = logging.getLogger(__name__)

# Seconds to wait after an upstream rate-limit response
RATE_LIMIT_COOLDOWNS = {
    "twitter": 15 * 60,
    "instagram": 60 * 60,
    "youtube": 60,
}
DEFAULT_COOLDOWN = 60


def rate_limit_cooldown(platform: str, retry_after: float | None = None) -> float:
    """Cooldown for a rate-limited platform, honouring a longer upstream hint."""
    cooldown = float(RATE_LIMIT_COOLDOWNS.get(platform, DEFAULT_COOLDOWN))
    if retry_after is not None:
        cooldown = max(cooldown, retry_after)
    return cooldown


@dataclass
class SyncResult:
    """Outcome of syncing one linked account."""

    platform: str
    account_id: str | None = None
    success: bool = True
    items_processed: int = 0
    errors: list[str] = field(default_factory=list)
    duration: float = 0.0
    error_kind: UpstreamErrorKind | None = None
    retry_after: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "account_id": self.account_id,
            "success": self.success,
            "items_processed": self.items_processed,
            "errors": list(self.errors),
            "duration": self.duration,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "retry_after": self.retry_after,
        }


class SyncManager:
    """Runs platform syncs for users' linked accounts."""

    def __init__(
        self,
        store: AnalyticsStore,
        clients: Iterable[PlatformClient] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.clients: dict[str, PlatformClient] = {c.platform: c for c in clients}
        self._clock = clock

    async def sync_account(self, user_id: str, account: LinkedAccount) -> SyncResult:
        """Sync one account. Never raises; failures land in the result."""
        start = self._clock()
        result = SyncResult(platform=account.platform, account_id=account.id)
        label = account.username or account.id

        client = self.clients.get(account.platform)
        if client is None:
            result.errors.append(f"No client configured for platform {account.platform}")
        else:
            try:
                items = await client.fetch_recent_content(account)
                records = normalize(account, items)
                await self.store.batch_insert_analytics(records, skip_duplicates=True)
                result.items_processed = len(items)
            except UpstreamError as e:
                result.errors.append(f"{account.platform} account {label}: {e}")
                result.error_kind = e.kind
                if e.kind == UpstreamErrorKind.RATE_LIMITED:
                    result.retry_after = rate_limit_cooldown(account.platform, e.retry_after)
                    logger.warning(
                        f"Rate limit hit for {account.platform}, "
                        f"cooling down {result.retry_after:.0f}s"
                    )
                else:
                    logger.error(f"Error syncing {account.platform} for user {user_id}: {e}")
            except Exception as e:
                result.errors.append(f"{account.platform} account {label}: {e}")
                result.error_kind = UpstreamErrorKind.UNKNOWN
                logger.error(f"Error syncing {account.platform} for user {user_id}: {e}")

        result.success = not result.errors
        result.duration = self._clock() - start
        return result

    async def _sync_accounts(
        self, user_id: str, accounts: list[LinkedAccount]
    ) -> list[SyncResult]:
        return list(await asyncio.gather(*(self.sync_account(user_id, a) for a in accounts)))

    async def sync_platform(self, user_id: str, platform: str) -> list[SyncResult]:
        """Sync every account the user has linked on ``platform``."""
        accounts = await self.store.list_accounts(user_id, platform)
        return await self._sync_accounts(user_id, accounts)

    async def sync_all_platforms(self, user_id: str) -> list[SyncResult]:
        """Sync every linked account of a user, one result per account."""
        accounts = await self.store.list_accounts(user_id)
        results = await self._sync_accounts(user_id, accounts)
        failed = sum(1 for r in results if not r.success)
        logger.info(f"Synced {len(results)} account(s) for user {user_id}, {failed} failed")
        return results

    async def get_api_health_status(self) -> dict[str, dict[str, Any]]:
        """Health of every configured platform client."""

        async def check(client: PlatformClient) -> dict[str, Any]:
            try:
                return await client.health_check()
            except Exception as e:
                return {"status": "unhealthy", "details": str(e)}

        platforms = list(self.clients)
        statuses = await asyncio.gather(*(check(self.clients[p]) for p in platforms))
        return dict(zip(platforms, statuses))

    async def validate_credentials(self) -> dict[str, Any]:
        """Report clients whose health check fails."""
        health = await self.get_api_health_status()
        issues = [
            f"{platform}: {status.get('details', 'unhealthy')}"
            for platform, status in health.items()
            if status.get("status") != "healthy"
        ]
        return {"valid": not issues, "issues": issues}
