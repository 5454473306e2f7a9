"""Cache key schema for response caching.

Key format: {namespace}:{route}:{user}:{query}

Where:
- namespace: "cache", "analytics", "social", "user" or "tag:<tags>"
- route: request path (or route template)
- user: user identifier or "anonymous"
- query: URL-encoded query parameters, sorted by name

Keys are relative; the cache service adds its Redis prefix.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any
from urllib.parse import urlencode

ANONYMOUS = "anonymous"


def _query_string(query: Mapping[str, Any] | Iterable[tuple[str, Any]] | None) -> str:
    if not query:
        return ""
    items = query.items() if isinstance(query, Mapping) else query
    return urlencode(sorted((str(k), str(v)) for k, v in items))


class CacheKeys:
    """Cache key generator following consistent naming convention."""

    TAG_INDEX = "tags"

    @classmethod
    def request(
        cls,
        route: str,
        user_id: str | None = None,
        query: Mapping[str, Any] | Iterable[tuple[str, Any]] | None = None,
    ) -> str:
        """Deterministic fingerprint of (route, user, query parameters)."""
        return f"cache:{route}:{user_id or ANONYMOUS}:{_query_string(query)}"

    @classmethod
    def analytics(
        cls,
        user_id: str | None,
        platform: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> str:
        """Key for an analytics aggregate over a date range."""
        return (
            f"analytics:{user_id or ANONYMOUS}:{platform or 'all'}:"
            f"{start_date or ''}:{end_date or ''}"
        )

    @classmethod
    def processed(cls, user_id: str | None, analytics_type: str) -> str:
        """Key for the output of an analytics-processing job."""
        return f"analytics:{user_id or ANONYMOUS}:processed:{analytics_type}"

    @classmethod
    def report(cls, report_id: str) -> str:
        return f"report:{report_id}"

    @classmethod
    def social(cls, platform: str, action: str, user_id: str | None = None) -> str:
        """Key for short-lived social platform data."""
        return f"social:{platform}:{action}:{user_id or ANONYMOUS}"

    @classmethod
    def user(
        cls,
        user_id: str,
        path: str,
        query: Mapping[str, Any] | Iterable[tuple[str, Any]] | None = None,
    ) -> str:
        """Key for a per-user response."""
        return f"user:{user_id}:{path}:{_query_string(query)}"

    @classmethod
    def tagged(cls, tags: Iterable[str], path: str, user_id: str | None = None) -> str:
        """Key for a response cached under a tag group."""
        return f"tag:{':'.join(tags)}:{path}:{user_id or ANONYMOUS}"

    @classmethod
    def tag_index(cls, tag: str) -> str:
        """Key of the set holding all cache keys carrying ``tag``."""
        return f"{cls.TAG_INDEX}:{tag}"

    @classmethod
    def user_warm_keys(cls, user_id: str) -> list[str]:
        """Keys pre-populated when warming the cache for a user."""
        return [
            f"user:{user_id}:analytics",
            f"user:{user_id}:social_accounts",
            f"user:{user_id}:recent_posts",
            f"user:{user_id}:dashboard_data",
        ]

    @classmethod
    def user_pattern(cls, user_id: str) -> str:
        """Pattern matching every per-user key.

        Use with CacheService.invalidate after a mutation.
        """
        return f"user:{user_id}:*"

    @classmethod
    def parse_key(cls, key: str) -> dict[str, str] | None:
        """Parse a request key into its components.

        Returns None if the key is not a request fingerprint.
        """
        parts = key.split(":")
        if len(parts) < 4 or parts[0] != "cache":
            return None

        return {
            "namespace": parts[0],
            "route": ":".join(parts[1:-2]),
            "user_id": parts[-2],
            "query": parts[-1],
        }
