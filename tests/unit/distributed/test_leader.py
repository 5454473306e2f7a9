"""Tests for lease-based leader election."""

from unittest.mock import AsyncMock

import pytest

from engageiq.distributed.leader import LeaderElection, generate_instance_id
from tests.fakes import FakeClock, FakeRedis


@pytest.fixture
def first(redis: FakeRedis) -> LeaderElection:
    return LeaderElection(
        redis, "job-scheduler", instance_id="a", lease_ttl=30  # type: ignore[arg-type]
    )


@pytest.fixture
def second(redis: FakeRedis) -> LeaderElection:
    return LeaderElection(
        redis, "job-scheduler", instance_id="b", lease_ttl=30  # type: ignore[arg-type]
    )


class TestLeaderElection:
    async def test_only_one_instance_leads(
        self, first: LeaderElection, second: LeaderElection
    ) -> None:
        assert await first.tick() is True
        assert await second.tick() is False
        assert await second.get_current_leader() == "a"

    async def test_leader_renews_lease(
        self, first: LeaderElection, second: LeaderElection, clock: FakeClock
    ) -> None:
        await first.tick()
        clock.advance(20)
        assert await first.tick() is True
        clock.advance(20)

        assert await second.tick() is False

    async def test_expired_lease_moves_leadership(
        self, first: LeaderElection, second: LeaderElection, clock: FakeClock
    ) -> None:
        await first.tick()
        clock.advance(31)

        assert await second.tick() is True
        assert await first.tick() is False
        assert not first.is_leader

    async def test_release_only_by_owner(
        self, first: LeaderElection, second: LeaderElection
    ) -> None:
        await first.tick()

        assert await second.release() is False
        assert await first.get_current_leader() == "a"

        assert await first.release() is True
        assert await first.get_current_leader() is None
        assert await second.tick() is True

    async def test_context_manager(self, first: LeaderElection, second: LeaderElection) -> None:
        async with first as election:
            assert election.is_leader
            async with second:
                assert not second.is_leader
        assert await first.get_current_leader() is None

    async def test_stop_releases_lock(self, first: LeaderElection) -> None:
        await first.tick()
        await first.start()
        await first.stop()

        assert not first.is_leader
        assert await first.get_current_leader() is None

    async def test_lock_key(self, first: LeaderElection) -> None:
        assert first.lock_key == "engageiq:leader:job-scheduler"

    async def test_backend_error_propagates_from_tick(self) -> None:
        client = AsyncMock()
        client.set.side_effect = ConnectionError("down")
        election = LeaderElection(client, "job-scheduler", instance_id="a")

        with pytest.raises(ConnectionError):
            await election.tick()
        assert not election.is_leader


def test_generate_instance_id_is_unique() -> None:
    assert generate_instance_id() != generate_instance_id()
