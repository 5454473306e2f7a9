"""Two-tier response cache.

Reads check the process-local tier first, then the shared Redis tier; a
remote hit repopulates the local tier with a short TTL. Writes go to both
tiers. The local TTL never exceeds ``local_max_ttl`` (60s by default), so
a process sees another process's invalidation within that window.

Every remote call is guarded: on failure the error is logged and the call
degrades to a miss or a no-op. The cache is an optimization, callers must
always be able to recompute from the source of truth.

Example:
    cache = CacheService(redis_client)
    await cache.start()

    data = await cache.get("analytics:42:all::")
    if data is None:
        data = await compute_overview(42)
        await cache.set("analytics:42:all::", data, ttl=1800, tags=["analytics", "user:42"])

    # After a mutation
    await cache.invalidate_tags(["user:42"])
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING, Any, Literal, TypedDict, cast

import orjson

from engageiq.cache.keys import CacheKeys
from engageiq.cache.local import LocalCache
from engageiq.cache.redis import decode
from engageiq.config import Settings
from engageiq.config import settings as default_settings
from engageiq.observability.metrics import record_cache_error, record_cache_hit, record_cache_miss

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

HEALTH_CHECK_KEY = "health_check_test"
_GLOB_CHARS = re.compile(r"[*?\[]")

HealthState = Literal["healthy", "degraded", "unhealthy"]


class HealthReport(TypedDict):
    status: HealthState
    details: str


class CacheService:
    """Local + Redis cache with TTL, pattern and tag invalidation."""

    def __init__(
        self,
        client: Redis,
        config: Settings | None = None,
        local: LocalCache | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        config = config or default_settings
        self.client = client
        self.prefix = config.cache_key_prefix
        self.default_ttl = config.cache_default_ttl
        self.local_max_ttl = config.cache_local_max_ttl
        self.local = local or LocalCache(
            max_size=config.cache_local_max_size,
            sweep_interval=config.cache_sweep_interval,
            clock=clock,
        )
        self.hits_local = 0
        self.hits_remote = 0
        self.misses = 0

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _local_ttl(self, ttl: float) -> float:
        return min(ttl, self.local_max_ttl)

    async def start(self) -> None:
        """Start the local expiry sweep."""
        self.local.start_sweeper()

    async def close(self) -> None:
        await self.local.stop_sweeper()

    # -------------------------------------------------------------------------
    # Read / write
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> Any | None:
        """Return the cached value or None on a miss."""
        entry = self.local.get_entry(key)
        if entry is not None:
            self.hits_local += 1
            record_cache_hit("local")
            return entry.value

        try:
            raw = await self.client.get(self._key(key))
            if raw is None:
                self.misses += 1
                record_cache_miss()
                return None

            value = orjson.loads(raw)
            remaining = await self.client.ttl(self._key(key))
        except Exception as e:
            logger.warning(f"Remote cache get failed for {key}: {e}")
            record_cache_error("get")
            self.misses += 1
            record_cache_miss()
            return None

        # TTL replies -1 for no expiry and -2 if the key vanished meanwhile
        local_ttl = self._local_ttl(remaining if remaining > 0 else self.local_max_ttl)
        self.local.set(key, value, local_ttl)
        self.hits_remote += 1
        record_cache_hit("remote")
        return value

    async def set(
        self,
        key: str,
        value: Any,
        ttl: int | None = None,
        tags: Iterable[str] = (),
    ) -> None:
        """Write ``value`` to both tiers.

        The remote copy lives for ``ttl`` seconds, the local copy for
        ``min(ttl, local_max_ttl)``.
        """
        ttl = ttl if ttl is not None else self.default_ttl
        tags = tuple(tags)

        try:
            payload = orjson.dumps(value)
        except TypeError as e:
            logger.warning(f"Value for {key} is not serializable, not caching: {e}")
            return

        try:
            await self.client.setex(self._key(key), ttl, payload)
            for tag in tags:
                await self._index_tag(tag, key, ttl)
        except Exception as e:
            logger.warning(f"Remote cache set failed for {key}: {e}")
            record_cache_error("set")

        self.local.set(key, value, self._local_ttl(ttl), tags=tags)

    async def _index_tag(self, tag: str, key: str, ttl: int) -> None:
        index_key = self._key(CacheKeys.tag_index(tag))
        await self.client.sadd(index_key, key)
        current = await self.client.ttl(index_key)
        if current < ttl:
            await self.client.expire(index_key, ttl)

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------

    async def invalidate(self, pattern: str) -> int:
        """Delete keys matching a glob ``pattern`` from both tiers.

        Locally, every key containing the pattern's literal prefix (the text
        before the first wildcard) is dropped. Returns the number of remote
        keys deleted.
        """
        deleted = 0
        try:
            keys = await self.client.keys(self._key(pattern))
            if keys:
                deleted = int(await self.client.delete(*keys))
        except Exception as e:
            logger.warning(f"Remote cache invalidate failed for {pattern}: {e}")
            record_cache_error("invalidate")

        literal = _GLOB_CHARS.split(pattern, maxsplit=1)[0]
        removed_local = self.local.delete_containing(literal)
        logger.debug(f"Invalidated {pattern}: {deleted} remote, {removed_local} local")
        return deleted

    async def invalidate_multiple(self, keys: Iterable[str]) -> int:
        """Delete exactly ``keys`` from both tiers."""
        keys = list(keys)
        if not keys:
            return 0

        deleted = 0
        try:
            deleted = int(await self.client.delete(*(self._key(k) for k in keys)))
        except Exception as e:
            logger.warning(f"Remote cache invalidate of {len(keys)} keys failed: {e}")
            record_cache_error("invalidate")

        self.local.delete_many(keys)
        return deleted

    async def invalidate_tags(self, tags: Iterable[str]) -> int:
        """Delete every key cached under any of ``tags`` from both tiers."""
        tags = list(tags)
        members: set[str] = set()

        try:
            for tag in tags:
                index_key = self._key(CacheKeys.tag_index(tag))
                for member in await self.client.smembers(index_key):
                    members.add(cast(str, decode(member)))
                await self.client.delete(index_key)
            if members:
                await self.client.delete(*(self._key(k) for k in members))
        except Exception as e:
            logger.warning(f"Remote cache tag invalidation failed for {tags}: {e}")
            record_cache_error("invalidate")

        self.local.delete_tagged(tags)
        self.local.delete_many(members)
        return len(members)

    async def flush(self) -> None:
        """Drop every key under this cache's prefix."""
        try:
            async for key in self.client.scan_iter(match=self._key("*")):
                await self.client.delete(key)
        except Exception as e:
            logger.warning(f"Remote cache flush failed: {e}")
            record_cache_error("flush")
        self.local.clear()

    # -------------------------------------------------------------------------
    # Warming
    # -------------------------------------------------------------------------

    async def warm(
        self,
        user_id: str,
        loader: Callable[[str], Awaitable[Any | None]],
        ttl: int | None = None,
    ) -> int:
        """Pre-populate the user's common keys that are not cached yet.

        Returns the number of keys loaded.
        """
        loaded = 0
        for key in CacheKeys.user_warm_keys(user_id):
            if await self.get(key) is not None:
                continue
            value = await loader(key)
            if value is not None:
                await self.set(key, value, ttl=ttl, tags=[f"user:{user_id}"])
                loaded += 1
        logger.info(f"Warmed {loaded} cache keys for user {user_id}")
        return loaded

    # -------------------------------------------------------------------------
    # Stats and health
    # -------------------------------------------------------------------------

    def hit_rate(self) -> float:
        """Measured hits / lookups since start (0.0 before any lookup)."""
        hits = self.hits_local + self.hits_remote
        total = hits + self.misses
        return hits / total if total else 0.0

    async def get_stats(self) -> dict[str, Any]:
        connected = False
        memory_usage = "unknown"
        try:
            await self.client.ping()
            connected = True
            info = await self.client.info("memory")
            memory_usage = str(info.get("used_memory_human", "unknown"))
        except Exception as e:
            logger.warning(f"Remote cache stats unavailable: {e}")

        return {
            "local": {"size": len(self.local), "max_size": self.local.max_size},
            "remote": {"connected": connected, "memory_usage": memory_usage},
            "hits": {"local": self.hits_local, "remote": self.hits_remote},
            "misses": self.misses,
            "hit_rate": round(self.hit_rate(), 4),
        }

    async def health_check(self) -> HealthReport:
        """Round-trip a value through the remote tier.

        unhealthy: Redis does not answer PING.
        degraded: Redis answers but the written value does not come back.
        """
        try:
            await self.client.ping()
        except Exception as e:
            return {"status": "unhealthy", "details": f"Cache error: {e}"}

        key = self._key(HEALTH_CHECK_KEY)
        try:
            await self.client.setex(key, 10, orjson.dumps({"test": True}))
            raw = await self.client.get(key)
            await self.client.delete(key)
            value = orjson.loads(raw) if raw is not None else None
        except Exception as e:
            return {"status": "degraded", "details": f"Cache round trip failed: {e}"}

        if isinstance(value, dict) and value.get("test") is True:
            return {"status": "healthy", "details": "All cache layers operational"}
        return {"status": "degraded", "details": "Cache operations not working properly"}
