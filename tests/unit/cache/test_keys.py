"""Tests for cache key generation."""

from engageiq.cache.keys import CacheKeys


class TestCacheKeys:
    """Test cache key generation."""

    def test_request_key_sorts_query(self) -> None:
        """Query parameter order does not change the fingerprint."""
        a = CacheKeys.request("/analytics", "42", {"b": "2", "a": "1"})
        b = CacheKeys.request("/analytics", "42", [("a", "1"), ("b", "2")])
        assert a == b == "cache:/analytics:42:a=1&b=2"

    def test_request_key_anonymous(self) -> None:
        assert CacheKeys.request("/reports") == "cache:/reports:anonymous:"

    def test_request_key_differs_by_user(self) -> None:
        assert CacheKeys.request("/x", "1") != CacheKeys.request("/x", "2")

    def test_analytics_key(self) -> None:
        key = CacheKeys.analytics("42", "twitter", "2026-01-01", "2026-01-31")
        assert key == "analytics:42:twitter:2026-01-01:2026-01-31"

    def test_analytics_key_defaults(self) -> None:
        assert CacheKeys.analytics(None) == "analytics:anonymous:all::"

    def test_processed_key_matches_user_pattern(self) -> None:
        """Processed analytics fall under the per-user analytics pattern."""
        assert CacheKeys.processed("42", "growth") == "analytics:42:processed:growth"

    def test_social_and_user_keys(self) -> None:
        assert CacheKeys.social("instagram", "posts", "7") == "social:instagram:posts:7"
        assert CacheKeys.user("7", "/users/me", {"page": 2}) == "user:7:/users/me:page=2"
        assert CacheKeys.user_pattern("7") == "user:7:*"

    def test_tagged_key(self) -> None:
        assert CacheKeys.tagged(["a", "b"], "/feed") == "tag:a:b:/feed:anonymous"
        assert CacheKeys.tag_index("user:7") == "tags:user:7"

    def test_user_warm_keys(self) -> None:
        keys = CacheKeys.user_warm_keys("7")
        assert len(keys) == 4
        assert all(k.startswith("user:7:") for k in keys)

    def test_parse_valid_key(self) -> None:
        """Request key is parsed into its components."""
        result = CacheKeys.parse_key("cache:/analytics/overview:42:platform=twitter")
        assert result == {
            "namespace": "cache",
            "route": "/analytics/overview",
            "user_id": "42",
            "query": "platform=twitter",
        }

    def test_parse_invalid_key_returns_none(self) -> None:
        assert CacheKeys.parse_key("invalid") is None
        assert CacheKeys.parse_key("user:1:/x:") is None
