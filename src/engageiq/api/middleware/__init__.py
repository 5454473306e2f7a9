"""Middleware for the EngageIQ API.

- Response caching through the two-tier cache
- Cache invalidation after mutations
- Cache utilization headers
- Correlation context for request logging
"""

from engageiq.api.middleware.caching import (
    CacheInvalidationMiddleware,
    CacheRule,
    CacheStatsMiddleware,
    ResponseCacheMiddleware,
    analytics_rule,
    smart_rule,
    social_rule,
    tag_rule,
    user_rule,
)
from engageiq.api.middleware.correlation import CorrelationMiddleware

__all__ = [
    "CacheInvalidationMiddleware",
    "CacheRule",
    "CacheStatsMiddleware",
    "CorrelationMiddleware",
    "ResponseCacheMiddleware",
    "analytics_rule",
    "smart_rule",
    "social_rule",
    "tag_rule",
    "user_rule",
]
