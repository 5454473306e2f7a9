"""Cache layer for the analytics endpoints.

Provides a two-tier cache:
- Process-local tier for repeated lookups (bounded, insertion-order eviction)
- Shared Redis tier with per-key TTL
- Pattern, exact-key and tag invalidation
- Health and utilization reporting
"""

from engageiq.cache.keys import CacheKeys
from engageiq.cache.local import CacheEntry, LocalCache
from engageiq.cache.redis import close_redis, create_redis
from engageiq.cache.service import CacheService, HealthReport

__all__ = [
    "CacheEntry",
    "CacheKeys",
    "CacheService",
    "HealthReport",
    "LocalCache",
    "close_redis",
    "create_redis",
]
