"""Leader election for the recurring-job scheduler.

Several worker processes may run the scheduler; only the leader enqueues
recurring jobs. Fixed job ids already deduplicate overlapping fires, the
lease just avoids the redundant round trips.

The election is lease-based:
1. The leader acquires a lock with a TTL (SET NX EX)
2. The leader renews the lock periodically
3. If the leader dies, the lock expires and another instance claims it

Example:
    election = LeaderElection(redis, "job-scheduler")
    await election.start()

    while running:
        if election.is_leader:
            await scheduler.check_schedules()
        await asyncio.sleep(60)

    await election.stop()
"""

from __future__ import annotations

import asyncio
import logging
import os
from types import TracebackType
from typing import TYPE_CHECKING, Awaitable, cast
from uuid import uuid4

from engageiq.cache.redis import decode

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

LOCK_PREFIX = "engageiq:leader:"
DEFAULT_LEASE_TTL = 30  # Seconds
RENEWAL_INTERVAL = 10  # Renew well before the lease expires

RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


def generate_instance_id() -> str:
    """Unique id for this process, readable in the lock value."""
    hostname = os.environ.get("HOSTNAME", os.environ.get("POD_NAME", "unknown"))
    return f"{hostname}-{uuid4().hex[:8]}"


class LeaderElection:
    """Redis lease lock held by at most one instance at a time.

    Args:
        client: Redis client shared with the job service
        name: Name of the leadership role (e.g., "job-scheduler")
        instance_id: Identifier for this instance (generated if None)
        lease_ttl: Lock TTL in seconds
        renewal_interval: Seconds between acquire/renew attempts
    """

    def __init__(
        self,
        client: Redis,
        name: str,
        instance_id: str | None = None,
        lease_ttl: int = DEFAULT_LEASE_TTL,
        renewal_interval: float = RENEWAL_INTERVAL,
    ):
        self.client = client
        self.name = name
        self.instance_id = instance_id or generate_instance_id()
        self.lease_ttl = lease_ttl
        self.renewal_interval = renewal_interval

        self._lock_key = f"{LOCK_PREFIX}{name}"
        self._is_leader = False
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def is_leader(self) -> bool:
        return self._is_leader

    @property
    def lock_key(self) -> str:
        return self._lock_key

    async def start(self) -> None:
        """Start the background acquire/renew loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._election_loop())
        logger.info(f"Started leader election for '{self.name}' as {self.instance_id}")

    async def stop(self) -> None:
        """Stop the loop and hand leadership over by releasing the lock."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._is_leader:
            await self.release()

        logger.info(f"Stopped leader election for '{self.name}'")

    async def _election_loop(self) -> None:
        while self._running:
            try:
                await self.tick()
                await asyncio.sleep(self.renewal_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in election loop for '{self.name}': {e}")
                self._is_leader = False
                await asyncio.sleep(self.renewal_interval)

    async def tick(self) -> bool:
        """One election round: renew if leading, otherwise try to acquire.

        Returns:
            Whether this instance leads after the round
        """
        if self._is_leader:
            if not await self.renew():
                self._is_leader = False
                logger.warning(f"Lost leadership for '{self.name}'")
        elif await self.acquire():
            self._is_leader = True
            logger.info(f"Elected as leader for '{self.name}'")
        return self._is_leader

    async def acquire(self) -> bool:
        """Try to take the lock."""
        acquired = await self.client.set(
            self._lock_key,
            self.instance_id,
            nx=True,
            ex=self.lease_ttl,
        )
        return bool(acquired)

    async def renew(self) -> bool:
        """Extend the lease if this instance still owns the lock."""
        owner = decode(await self.client.get(self._lock_key))
        if owner is None:
            return False
        if owner != self.instance_id:
            logger.warning(f"Lock for '{self.name}' taken by {owner}")
            return False

        await self.client.expire(self._lock_key, self.lease_ttl)
        logger.debug(f"Renewed leadership for '{self.name}'")
        return True

    async def release(self) -> bool:
        """Delete the lock only if this instance owns it (atomic via Lua)."""
        result = await cast(
            Awaitable[int],
            self.client.eval(RELEASE_SCRIPT, 1, self._lock_key, self.instance_id),
        )
        self._is_leader = False
        if result:
            logger.info(f"Released leadership for '{self.name}'")
            return True
        return False

    async def get_current_leader(self) -> str | None:
        return decode(await self.client.get(self._lock_key))

    async def __aenter__(self) -> "LeaderElection":
        """Try to acquire leadership once."""
        self._is_leader = await self.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._is_leader:
            await self.release()
