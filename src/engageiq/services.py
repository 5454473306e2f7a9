"""Process-wide service container.

Built once at startup and passed to the API and the worker command; nothing
below it reaches for a global client.

Example:
    services = Services.build(settings)
    await services.start(run_workers=True)
    ...
    await services.close()
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from engageiq.cache.redis import close_redis, create_redis
from engageiq.cache.service import CacheService
from engageiq.config import Settings
from engageiq.jobs.service import JobQueueService
from engageiq.jobs.tasks import TaskHandlers, register_all_handlers
from engageiq.sync.manager import SyncManager
from engageiq.sync.ports import AnalyticsStore, EmailSender, InMemoryAnalyticsStore, PlatformClient

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """The cache, the job service and their collaborators."""

    config: Settings
    redis: Redis
    cache: CacheService
    jobs: JobQueueService
    store: AnalyticsStore
    sync: SyncManager
    owns_redis: bool = True

    @classmethod
    def build(
        cls,
        config: Settings,
        redis: Redis | None = None,
        store: AnalyticsStore | None = None,
        clients: Iterable[PlatformClient] = (),
        email_sender: EmailSender | None = None,
    ) -> Services:
        """Wire the services; no connection is opened until first use."""
        owns_redis = redis is None
        client = redis if redis is not None else create_redis(config)
        store = store or InMemoryAnalyticsStore()

        cache = CacheService(client, config)
        jobs = JobQueueService(client, config)
        sync = SyncManager(store, clients)
        register_all_handlers(jobs, TaskHandlers(sync, store, cache, jobs, email_sender))

        return cls(
            config=config,
            redis=client,
            cache=cache,
            jobs=jobs,
            store=store,
            sync=sync,
            owns_redis=owns_redis,
        )

    async def start(self, run_workers: bool = False) -> None:
        """Start the cache sweeper and, optionally, the workers and scheduler."""
        await self.cache.start()
        if run_workers:
            self.jobs.schedule_periodic_jobs()
            await self.jobs.start()
        logger.info(f"Services started (workers: {'on' if run_workers else 'off'})")

    async def close(self) -> None:
        await self.jobs.shutdown()
        await self.cache.close()
        if self.owns_redis:
            await close_redis(self.redis)
        logger.info("Services closed")
