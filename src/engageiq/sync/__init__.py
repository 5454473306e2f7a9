"""Platform sync for linked social accounts."""

from engageiq.sync.manager import (
    RATE_LIMIT_COOLDOWNS,
    SyncManager,
    SyncResult,
    rate_limit_cooldown,
)
from engageiq.sync.normalize import normalize
from engageiq.sync.ports import (
    AnalyticsRecord,
    AnalyticsStore,
    EmailSender,
    InMemoryAnalyticsStore,
    LinkedAccount,
    PlatformClient,
)

__all__ = [
    "AnalyticsRecord",
    "AnalyticsStore",
    "EmailSender",
    "InMemoryAnalyticsStore",
    "LinkedAccount",
    "PlatformClient",
    "RATE_LIMIT_COOLDOWNS",
    "SyncManager",
    "SyncResult",
    "normalize",
    "rate_limit_cooldown",
]
