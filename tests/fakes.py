"""In-process test doubles for Redis and the wall clock.

FakeRedis implements the subset of the redis.asyncio API used by the cache,
the job queues and leader election. Replies are bytes, as with a client
created with ``decode_responses=False``. Key expiry follows the shared
FakeClock, so tests advance time instead of sleeping.
"""

from __future__ import annotations

import fnmatch
import math
from collections.abc import AsyncIterator, Mapping
from datetime import UTC, datetime
from typing import Any

from redis.exceptions import ConnectionError

from engageiq.sync.ports import EmailSender, LinkedAccount, PlatformClient

START = datetime(2026, 1, 5, tzinfo=UTC)  # A Monday, 00:00 UTC


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, start: float | None = None) -> None:
        self.now = start if start is not None else START.timestamp()

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def set(self, dt: datetime) -> None:
        self.now = dt.timestamp()


def _b(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode()


def _slice(items: list[Any], start: int, end: int) -> list[Any]:
    n = len(items)
    start = start if start >= 0 else max(n + start, 0)
    end = end if end >= 0 else n + end
    return items[start : end + 1]


def _score(bound: Any) -> float:
    if bound in ("-inf", b"-inf"):
        return -math.inf
    if bound in ("+inf", "inf", b"+inf"):
        return math.inf
    return float(bound)


class FakeRedis:
    """Single-process stand-in for ``redis.asyncio.Redis``.

    Set ``down`` to make every call raise ``ConnectionError``; set
    ``drop_writes`` to make string writes silently vanish.
    """

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.clock = clock or FakeClock()
        self.data: dict[str, Any] = {}
        self.expires: dict[str, float] = {}
        self.down = False
        self.drop_writes = False
        self.closed = False

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _check(self) -> None:
        if self.down:
            raise ConnectionError("Connection refused")

    def _k(self, key: Any) -> str:
        return key.decode() if isinstance(key, bytes) else str(key)

    def _alive(self, key: str) -> bool:
        deadline = self.expires.get(key)
        if deadline is not None and deadline <= self.clock():
            self.data.pop(key, None)
            self.expires.pop(key, None)
        return key in self.data

    def _get(self, key: Any, factory: type) -> Any:
        name = self._k(key)
        if not self._alive(name):
            return None
        value = self.data[name]
        if not isinstance(value, factory):
            raise TypeError(f"WRONGTYPE for key {name}")
        return value

    def _ensure(self, key: Any, factory: type) -> Any:
        name = self._k(key)
        value = self._get(name, factory)
        if value is None:
            value = self.data[name] = factory()
        return value

    def _drop_if_empty(self, key: Any) -> None:
        name = self._k(key)
        if name in self.data and not self.data[name]:
            del self.data[name]
            self.expires.pop(name, None)

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    async def ping(self) -> bool:
        self._check()
        return True

    async def info(self, section: str | None = None) -> dict[str, Any]:
        self._check()
        return {"used_memory_human": "1.00M"}

    async def aclose(self) -> None:
        self.closed = True

    # -------------------------------------------------------------------------
    # Keys and strings
    # -------------------------------------------------------------------------

    async def get(self, key: Any) -> bytes | None:
        self._check()
        return self._get(key, bytes)  # type: ignore[no-any-return]

    async def set(
        self, key: Any, value: Any, ex: int | None = None, nx: bool = False
    ) -> bool | None:
        self._check()
        name = self._k(key)
        if nx and self._alive(name):
            return None
        if self.drop_writes:
            return True
        self.data[name] = _b(value)
        self.expires.pop(name, None)
        if ex is not None:
            self.expires[name] = self.clock() + ex
        return True

    async def setex(self, key: Any, ttl: int, value: Any) -> bool:
        return bool(await self.set(key, value, ex=ttl))

    async def delete(self, *keys: Any) -> int:
        self._check()
        removed = 0
        for key in keys:
            name = self._k(key)
            if self._alive(name):
                del self.data[name]
                self.expires.pop(name, None)
                removed += 1
        return removed

    async def keys(self, pattern: Any = "*") -> list[bytes]:
        self._check()
        glob = self._k(pattern)
        return [
            name.encode()
            for name in list(self.data)
            if self._alive(name) and fnmatch.fnmatchcase(name, glob)
        ]

    async def scan_iter(self, match: Any = None) -> AsyncIterator[bytes]:
        for key in await self.keys(match or "*"):
            yield key

    async def ttl(self, key: Any) -> int:
        self._check()
        name = self._k(key)
        if not self._alive(name):
            return -2
        deadline = self.expires.get(name)
        if deadline is None:
            return -1
        return math.ceil(deadline - self.clock())

    async def expire(self, key: Any, seconds: int) -> bool:
        self._check()
        name = self._k(key)
        if not self._alive(name):
            return False
        self.expires[name] = self.clock() + seconds
        return True

    async def incr(self, key: Any) -> int:
        self._check()
        name = self._k(key)
        current = int(self._get(name, bytes) or 0) + 1
        self.data[name] = _b(current)
        return current

    async def eval(self, script: str, numkeys: int, *args: Any) -> int:
        """Only the compare-and-delete script used to release a lease."""
        self._check()
        keys, argv = args[:numkeys], args[numkeys:]
        if await self.get(keys[0]) == _b(argv[0]):
            return await self.delete(keys[0])
        return 0

    # -------------------------------------------------------------------------
    # Sets
    # -------------------------------------------------------------------------

    async def sadd(self, key: Any, *members: Any) -> int:
        self._check()
        target = self._ensure(key, set)
        before = len(target)
        target.update(_b(m) for m in members)
        return len(target) - before

    async def smembers(self, key: Any) -> set[bytes]:
        self._check()
        return set(self._get(key, set) or ())

    # -------------------------------------------------------------------------
    # Sorted sets
    # -------------------------------------------------------------------------

    def _sorted(self, key: Any) -> list[tuple[bytes, float]]:
        zset = self._get(key, dict) or {}
        return sorted(zset.items(), key=lambda item: (item[1], item[0]))

    async def zadd(self, key: Any, mapping: Mapping[Any, float], xx: bool = False) -> int:
        self._check()
        zset = self._ensure(key, dict)
        added = 0
        for member, score in mapping.items():
            if _b(member) not in zset:
                if xx:
                    continue
                added += 1
            zset[_b(member)] = float(score)
        self._drop_if_empty(key)
        return added

    async def zpopmax(self, key: Any, count: int = 1) -> list[tuple[bytes, float]]:
        self._check()
        popped = list(reversed(self._sorted(key)))[:count]
        zset = self._get(key, dict) or {}
        for member, _ in popped:
            del zset[member]
        self._drop_if_empty(key)
        return popped

    async def zrangebyscore(self, key: Any, min: Any, max: Any) -> list[bytes]:
        self._check()
        low, high = _score(min), _score(max)
        return [member for member, score in self._sorted(key) if low <= score <= high]

    async def zrem(self, key: Any, *members: Any) -> int:
        self._check()
        zset = self._get(key, dict) or {}
        removed = sum(1 for m in members if zset.pop(_b(m), None) is not None)
        self._drop_if_empty(key)
        return removed

    async def zcard(self, key: Any) -> int:
        self._check()
        return len(self._get(key, dict) or {})

    async def zrange(self, key: Any, start: int, end: int) -> list[bytes]:
        self._check()
        return [member for member, _ in _slice(self._sorted(key), start, end)]

    async def zrevrange(self, key: Any, start: int, end: int) -> list[bytes]:
        self._check()
        ordered = list(reversed(self._sorted(key)))
        return [member for member, _ in _slice(ordered, start, end)]

    # -------------------------------------------------------------------------
    # Lists
    # -------------------------------------------------------------------------

    async def lpush(self, key: Any, *values: Any) -> int:
        self._check()
        target = self._ensure(key, list)
        for value in values:
            target.insert(0, _b(value))
        return len(target)

    async def lrange(self, key: Any, start: int, end: int) -> list[bytes]:
        self._check()
        return list(_slice(self._get(key, list) or [], start, end))

    async def ltrim(self, key: Any, start: int, end: int) -> bool:
        self._check()
        target = self._get(key, list)
        if target is not None:
            target[:] = _slice(target, start, end)
            self._drop_if_empty(key)
        return True

    async def llen(self, key: Any) -> int:
        self._check()
        return len(self._get(key, list) or [])

    async def lrem(self, key: Any, count: int, value: Any) -> int:
        self._check()
        target = self._get(key, list)
        if target is None:
            return 0
        needle = _b(value)
        kept = [item for item in target if item != needle]
        removed = len(target) - len(kept)
        target[:] = kept
        self._drop_if_empty(key)
        return removed


class FakePlatformClient(PlatformClient):
    """Platform client returning canned items or raising a canned error."""

    def __init__(
        self,
        platform: str,
        items: list[dict[str, Any]] | None = None,
        error: Exception | None = None,
        healthy: bool = True,
    ) -> None:
        self.platform = platform
        self.items = items or []
        self.error = error
        self.healthy = healthy
        self.calls: list[str] = []

    async def fetch_recent_content(self, account: LinkedAccount) -> list[dict[str, Any]]:
        self.calls.append(account.id)
        if self.error is not None:
            raise self.error
        return list(self.items)

    async def health_check(self) -> dict[str, Any]:
        if not self.healthy:
            raise RuntimeError(f"{self.platform} API unreachable")
        return {"status": "healthy", "details": "ok"}


class FakeEmailSender(EmailSender):
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str, dict[str, Any]]] = []

    async def send(self, to: str, subject: str, template: str, data: dict[str, Any]) -> str:
        self.sent.append((to, subject, template, data))
        return f"msg-{len(self.sent)}"
