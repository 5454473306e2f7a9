"""Tests for per-account platform sync."""

import pytest

from engageiq.errors import UpstreamError, UpstreamErrorKind
from engageiq.sync.manager import SyncManager, rate_limit_cooldown
from engageiq.sync.ports import InMemoryAnalyticsStore, LinkedAccount
from tests.fakes import FakePlatformClient

POST = {"id": "p1", "likes_count": 5, "comments_count": 1, "timestamp": "2026-01-04T10:00:00Z"}
TWEET = {"id": "t1", "like_count": 2, "retweet_count": 1, "created_at": "2026-01-04T10:00:00Z"}
VIDEO = {"id": "v1", "likes_count": 8, "comments_count": 2, "published_at": "2026-01-04"}


@pytest.fixture
def store() -> InMemoryAnalyticsStore:
    return InMemoryAnalyticsStore(
        [
            LinkedAccount(id="tw", user_id="u1", platform="twitter", username="bird"),
            LinkedAccount(id="ig", user_id="u1", platform="instagram", username="gram"),
            LinkedAccount(id="yt", user_id="u1", platform="youtube", username="tube"),
        ]
    )


@pytest.fixture
def clients() -> dict[str, FakePlatformClient]:
    return {
        "twitter": FakePlatformClient("twitter", items=[TWEET]),
        "instagram": FakePlatformClient("instagram", items=[POST]),
        "youtube": FakePlatformClient("youtube", items=[VIDEO]),
    }


@pytest.fixture
def manager(
    store: InMemoryAnalyticsStore, clients: dict[str, FakePlatformClient]
) -> SyncManager:
    return SyncManager(store, clients.values())


class TestSyncAllPlatforms:
    async def test_all_accounts_succeed(
        self, manager: SyncManager, store: InMemoryAnalyticsStore
    ) -> None:
        results = await manager.sync_all_platforms("u1")

        assert [r.platform for r in results] == ["twitter", "instagram", "youtube"]
        assert all(r.success for r in results)
        assert len(store.records) == 3

    async def test_one_failure_does_not_abort_the_others(
        self,
        manager: SyncManager,
        store: InMemoryAnalyticsStore,
        clients: dict[str, FakePlatformClient],
    ) -> None:
        clients["instagram"].error = UpstreamError.from_status(500, "upstream exploded")

        results = await manager.sync_all_platforms("u1")

        assert len(results) == 3
        by_platform = {r.platform: r for r in results}
        assert by_platform["twitter"].success
        assert by_platform["youtube"].success
        failed = by_platform["instagram"]
        assert not failed.success
        assert failed.error_kind == UpstreamErrorKind.SERVER_ERROR
        assert "upstream exploded" in failed.errors[0]
        assert {r.platform for r in store.records} == {"twitter", "youtube"}

    async def test_user_without_accounts(self, manager: SyncManager) -> None:
        assert await manager.sync_all_platforms("nobody") == []


class TestSyncAccount:
    async def test_rate_limit_sets_cooldown(
        self,
        manager: SyncManager,
        store: InMemoryAnalyticsStore,
        clients: dict[str, FakePlatformClient],
    ) -> None:
        clients["twitter"].error = UpstreamError("slow down", kind=UpstreamErrorKind.RATE_LIMITED)

        result = await manager.sync_account("u1", store.accounts[0])

        assert not result.success
        assert result.error_kind == UpstreamErrorKind.RATE_LIMITED
        assert result.retry_after == 900

    async def test_unexpected_error_is_captured(
        self,
        manager: SyncManager,
        store: InMemoryAnalyticsStore,
        clients: dict[str, FakePlatformClient],
    ) -> None:
        clients["youtube"].error = KeyError("items")

        result = await manager.sync_account("u1", store.accounts[2])

        assert not result.success
        assert result.error_kind == UpstreamErrorKind.UNKNOWN
        assert result.retry_after is None

    async def test_missing_client(self, store: InMemoryAnalyticsStore) -> None:
        result = await SyncManager(store).sync_account("u1", store.accounts[0])

        assert not result.success
        assert result.errors == ["No client configured for platform twitter"]

    async def test_duplicates_are_skipped(
        self, manager: SyncManager, store: InMemoryAnalyticsStore
    ) -> None:
        await manager.sync_account("u1", store.accounts[0])
        await manager.sync_account("u1", store.accounts[0])

        assert len(store.records) == 1

    async def test_sync_platform_only_touches_that_platform(
        self, manager: SyncManager, clients: dict[str, FakePlatformClient]
    ) -> None:
        results = await manager.sync_platform("u1", "youtube")

        assert [r.account_id for r in results] == ["yt"]
        assert clients["twitter"].calls == []

    async def test_result_to_dict(
        self, manager: SyncManager, store: InMemoryAnalyticsStore
    ) -> None:
        data = (await manager.sync_account("u1", store.accounts[1])).to_dict()

        assert data["platform"] == "instagram"
        assert data["items_processed"] == 1
        assert data["error_kind"] is None


class TestCooldowns:
    @pytest.mark.parametrize(
        ("platform", "expected"),
        [("twitter", 900), ("instagram", 3600), ("youtube", 60), ("mastodon", 60)],
    )
    def test_platform_cooldown(self, platform: str, expected: float) -> None:
        assert rate_limit_cooldown(platform) == expected

    def test_longer_upstream_hint_wins(self) -> None:
        assert rate_limit_cooldown("youtube", retry_after=120) == 120
        assert rate_limit_cooldown("twitter", retry_after=30) == 900


class TestHealth:
    async def test_health_status_per_client(
        self, manager: SyncManager, clients: dict[str, FakePlatformClient]
    ) -> None:
        clients["instagram"].healthy = False

        health = await manager.get_api_health_status()

        assert health["twitter"]["status"] == "healthy"
        assert health["instagram"] == {
            "status": "unhealthy",
            "details": "instagram API unreachable",
        }

    async def test_validate_credentials(
        self, manager: SyncManager, clients: dict[str, FakePlatformClient]
    ) -> None:
        assert await manager.validate_credentials() == {"valid": True, "issues": []}

        clients["youtube"].healthy = False
        report = await manager.validate_credentials()

        assert report["valid"] is False
        assert report["issues"] == ["youtube: youtube API unreachable"]
