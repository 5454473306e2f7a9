"""Tests for the two-tier cache service."""

from engageiq.cache.service import CacheService
from tests.fakes import FakeClock, FakeRedis


class TestReadWrite:
    async def test_miss_returns_none(self, cache: CacheService) -> None:
        assert await cache.get("missing") is None
        assert cache.misses == 1

    async def test_set_then_get_hits_local(self, cache: CacheService) -> None:
        await cache.set("k", {"views": 10}, ttl=300)

        assert await cache.get("k") == {"views": 10}
        assert cache.hits_local == 1
        assert cache.hits_remote == 0

    async def test_value_written_to_redis_with_prefix(
        self, cache: CacheService, redis: FakeRedis
    ) -> None:
        await cache.set("k", [1, 2], ttl=300)

        assert await redis.get("engageiq:cache:k") == b"[1,2]"
        assert await redis.ttl("engageiq:cache:k") == 300

    async def test_local_ttl_is_capped(self, cache: CacheService, clock: FakeClock) -> None:
        """After the local cap expires the remote tier still answers."""
        await cache.set("k", "v", ttl=3600)
        clock.advance(61)

        assert "k" not in cache.local
        assert await cache.get("k") == "v"
        assert cache.hits_remote == 1
        # The remote hit repopulated the local tier
        assert "k" in cache.local

    async def test_remote_expiry_is_a_miss(self, cache: CacheService, clock: FakeClock) -> None:
        await cache.set("k", "v", ttl=30)
        clock.advance(31)
        assert await cache.get("k") is None

    async def test_unserializable_value_is_skipped(self, cache: CacheService) -> None:
        await cache.set("k", object())
        assert await cache.get("k") is None

    async def test_default_ttl(self, cache: CacheService, redis: FakeRedis) -> None:
        await cache.set("k", 1)
        assert await redis.ttl("engageiq:cache:k") == 3600


class TestInvalidation:
    async def test_invalidate_pattern(self, cache: CacheService) -> None:
        await cache.set("user:1:a", 1)
        await cache.set("user:1:b", 2)
        await cache.set("user:2:a", 3)

        assert await cache.invalidate("user:1:*") == 2

        assert await cache.get("user:1:a") is None
        assert await cache.get("user:1:b") is None
        assert await cache.get("user:2:a") == 3

    async def test_invalidate_multiple(self, cache: CacheService) -> None:
        await cache.set("a", 1)
        await cache.set("b", 2)
        await cache.set("c", 3)

        assert await cache.invalidate_multiple(["a", "b", "missing"]) == 2
        assert await cache.get("a") is None
        assert await cache.get("c") == 3
        assert await cache.invalidate_multiple([]) == 0

    async def test_invalidate_tags(self, cache: CacheService, clock: FakeClock) -> None:
        await cache.set("k1", 1, tags=["user:1"])
        await cache.set("k2", 2, tags=["analytics"])
        await cache.set("k3", 3)

        assert await cache.invalidate_tags(["user:1"]) == 1

        assert await cache.get("k1") is None
        assert await cache.get("k2") == 2
        assert await cache.get("k3") == 3

    async def test_invalidate_tags_reaches_remote_only_entries(
        self, cache: CacheService, clock: FakeClock
    ) -> None:
        await cache.set("k1", 1, tags=["analytics"])
        cache.local.clear()

        assert await cache.invalidate_tags(["analytics"]) == 1
        assert await cache.get("k1") is None

    async def test_flush(self, cache: CacheService, redis: FakeRedis) -> None:
        await cache.set("a", 1)
        await redis.set("other:key", b"x")

        await cache.flush()

        assert await cache.get("a") is None
        assert await redis.get("other:key") == b"x"


class TestRedisFailures:
    async def test_writes_and_reads_degrade_to_local(
        self, cache: CacheService, redis: FakeRedis
    ) -> None:
        redis.down = True

        await cache.set("k", {"a": 1})
        assert await cache.get("k") == {"a": 1}

        cache.local.clear()
        assert await cache.get("k") is None

    async def test_invalidate_still_clears_local(
        self, cache: CacheService, redis: FakeRedis
    ) -> None:
        await cache.set("user:1:a", 1)
        redis.down = True

        assert await cache.invalidate("user:1:*") == 0
        assert "user:1:a" not in cache.local
        assert await cache.invalidate_tags(["x"]) == 0


class TestHealthAndStats:
    async def test_healthy(self, cache: CacheService) -> None:
        report = await cache.health_check()
        assert report["status"] == "healthy"

    async def test_unhealthy_when_ping_fails(
        self, cache: CacheService, redis: FakeRedis
    ) -> None:
        redis.down = True
        report = await cache.health_check()
        assert report["status"] == "unhealthy"
        assert "Connection refused" in report["details"]

    async def test_degraded_when_value_does_not_round_trip(
        self, cache: CacheService, redis: FakeRedis
    ) -> None:
        redis.drop_writes = True
        report = await cache.health_check()
        assert report["status"] == "degraded"

    async def test_stats_report_measured_hit_rate(self, cache: CacheService) -> None:
        await cache.set("k", 1)
        await cache.get("k")
        await cache.get("missing")

        stats = await cache.get_stats()

        assert stats["local"] == {"size": 1, "max_size": 5}
        assert stats["remote"] == {"connected": True, "memory_usage": "1.00M"}
        assert stats["hit_rate"] == 0.5

    async def test_stats_when_disconnected(self, cache: CacheService, redis: FakeRedis) -> None:
        redis.down = True
        stats = await cache.get_stats()
        assert stats["remote"]["connected"] is False
        assert stats["hit_rate"] == 0.0


class TestWarm:
    async def test_warm_loads_missing_keys_once(self, cache: CacheService) -> None:
        calls: list[str] = []

        async def loader(key: str) -> dict[str, str] | None:
            calls.append(key)
            return None if key.endswith("recent_posts") else {"key": key}

        assert await cache.warm("7", loader) == 3
        assert await cache.get("user:7:analytics") == {"key": "user:7:analytics"}

        calls.clear()
        assert await cache.warm("7", loader) == 0
        assert calls == ["user:7:recent_posts"]

    async def test_warmed_keys_are_tagged_by_user(self, cache: CacheService) -> None:
        async def loader(key: str) -> int:
            return 1

        await cache.warm("7", loader)
        assert await cache.invalidate_tags(["user:7"]) == 4
