"""Global pytest configuration and fixtures.

Every fixture shares one FakeClock, so cache expiry, job delays and cron
schedules run on simulated time.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from engageiq.cache.service import CacheService
from engageiq.config import Settings
from engageiq.jobs.service import JobQueueService
from tests.fakes import FakeClock, FakeRedis


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def redis(clock: FakeClock) -> FakeRedis:
    return FakeRedis(clock)


@pytest.fixture
def settings() -> Settings:
    """Small, deterministic settings; no leader election or background scheduler."""
    return Settings(
        env="test",
        instance_id="test",
        cache_local_max_size=5,
        cache_local_max_ttl=60,
        cache_default_ttl=3600,
        queue_poll_interval=0.01,
        queue_shutdown_timeout=1.0,
        enable_scheduler=False,
        scheduler_leader_election=False,
        enable_metrics=False,
    )


@pytest.fixture
def cache(redis: FakeRedis, settings: Settings, clock: FakeClock) -> CacheService:
    return CacheService(redis, settings, clock=clock)  # type: ignore[arg-type]


@pytest.fixture
async def jobs(
    redis: FakeRedis, settings: Settings, clock: FakeClock
) -> AsyncIterator[JobQueueService]:
    service = JobQueueService(redis, settings, clock=clock)  # type: ignore[arg-type]
    yield service
    await service.shutdown(timeout=1.0)
