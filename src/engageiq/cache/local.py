"""Process-local cache tier.

A bounded, insertion-ordered map in front of the shared Redis tier. When
full, the oldest-inserted entry is evicted (insertion order, not access
recency), which keeps eviction O(1). A background sweep drops expired
entries independently of capacity pressure.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 1000
DEFAULT_SWEEP_INTERVAL = 60.0


@dataclass
class CacheEntry:
    """One cached value held by the local tier."""

    key: str
    value: Any
    expires_at: float
    tags: frozenset[str] = field(default_factory=frozenset)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class LocalCache:
    """Bounded in-process cache with TTL and insertion-order eviction."""

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._sweeper: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and not entry.is_expired(self._clock())

    def keys(self) -> list[str]:
        """Keys currently held, oldest insertion first (expired included)."""
        return list(self._entries)

    def get_entry(self, key: str) -> CacheEntry | None:
        """Return the live entry for ``key``, dropping it if expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry

    def get(self, key: str) -> Any | None:
        entry = self.get_entry(key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: Any, ttl: float, tags: Iterable[str] = ()) -> None:
        """Store ``value`` for ``ttl`` seconds.

        Overwriting an existing key keeps its insertion position.
        """
        if key not in self._entries and len(self._entries) >= self.max_size:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            logger.debug(f"Local cache full, evicted {oldest}")

        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            expires_at=self._clock() + ttl,
            tags=frozenset(tags),
        )

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def delete_many(self, keys: Iterable[str]) -> int:
        return sum(1 for key in keys if self.delete(key))

    def delete_containing(self, fragment: str) -> int:
        """Delete every key containing ``fragment``."""
        matched = [key for key in self._entries if fragment in key]
        for key in matched:
            del self._entries[key]
        return len(matched)

    def delete_tagged(self, tags: Iterable[str]) -> int:
        """Delete every entry carrying at least one of ``tags``."""
        wanted = set(tags)
        matched = [key for key, entry in self._entries.items() if entry.tags & wanted]
        for key in matched:
            del self._entries[key]
        return len(matched)

    def clear(self) -> None:
        self._entries.clear()

    def sweep(self) -> int:
        """Remove expired entries. Returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired local cache entries")
        return len(expired)

    # -------------------------------------------------------------------------
    # Background sweep
    # -------------------------------------------------------------------------

    def start_sweeper(self) -> None:
        """Start the periodic expiry sweep on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()
