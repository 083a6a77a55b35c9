# timetable/services/cache.py
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from timetable.services.logging import get_logger, log_kv

T = TypeVar("T")

LOG = get_logger("timetable.cache")

_MISSING = object()


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    stored_at: float
    expires_at: float


class TTLCache:
    """
    In-memory key -> value store with per-entry TTL.

    - Expired entries found by `get` are dropped on the spot.
    - At `max_entries`, inserting a *new* key evicts the oldest-inserted one
      (a memory cap, not an LRU).
    - `start()` launches a background task that sweeps expired entries every
      `sweep_interval` seconds so cold keys don't pile up.

    No de-duplication of concurrent misses: two coroutines missing the same
    key both run their producer and the last write wins.
    """

    def __init__(
        self,
        default_ttl: float = 30 * 60,
        max_entries: int = 1000,
        sweep_interval: float = 5 * 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self.sweep_interval = sweep_interval
        self.clock = clock
        # dicts keep insertion order, which is what eviction relies on
        self.store: Dict[str, CacheEntry] = {}
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self.store)

    def get(self, key: str, default: Any = None) -> Any:
        entry = self.store.get(key)
        if entry is None:
            return default
        if self.clock() > entry.expires_at:
            self.store.pop(key, None)
            return default
        return entry.value

    def has(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")

        if key in self.store:
            # replacement re-inserts at the back
            del self.store[key]
        elif len(self.store) >= self.max_entries:
            oldest = next(iter(self.store))
            del self.store[oldest]
            log_kv(LOG, logging.INFO, "cache.evict", key=oldest, size=len(self.store))

        now = self.clock()
        self.store[key] = CacheEntry(value=value, stored_at=now, expires_at=now + ttl)

    def delete(self, key: str) -> bool:
        return self.store.pop(key, None) is not None

    def clear(self) -> None:
        self.store.clear()

    async def request(
        self,
        producer: Callable[[], Awaitable[T]],
        *,
        key: str,
        ttl: Optional[float] = None,
        skip_cache: bool = False,
    ) -> T:
        """
        Read-through: return the cached value for `key`, or await `producer()`,
        store its result and return it. `skip_cache` forces the producer but
        still stores the fresh result. A producer that raises stores nothing.
        """
        if not skip_cache:
            cached = self.get(key, _MISSING)
            if cached is not _MISSING:
                log_kv(LOG, logging.DEBUG, "cache.hit", key=key)
                return cached
            log_kv(LOG, logging.DEBUG, "cache.miss", key=key)

        result = await producer()
        self.set(key, result, ttl)
        return result

    def sweep(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self.clock()
        expired = [k for k, e in self.store.items() if now > e.expires_at]
        for k in expired:
            del self.store[k]
        if expired:
            log_kv(LOG, logging.INFO, "cache.sweep", removed=len(expired), size=len(self.store))
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        """Per-entry age and time left, in seconds relative to now (the clock is monotonic)."""
        now = self.clock()
        return {
            "size": len(self.store),
            "max_entries": self.max_entries,
            "default_ttl": self.default_ttl,
            "entries": [
                {
                    "key": k,
                    "age_s": round(now - e.stored_at, 3),
                    "expires_in_s": round(max(e.expires_at - now, 0.0), 3),
                    "expired": now > e.expires_at,
                }
                for k, e in self.store.items()
            ],
        }

    # ---- Background sweeper ----
    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep()
            except Exception:
                LOG.exception("cache.sweep_failed")

    @property
    def running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    def start(self) -> None:
        """Start the sweeper on the running event loop (idempotent)."""
        if self.running:
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())

    async def stop(self) -> None:
        """Cancel the sweeper and drop everything."""
        task, self._sweeper = self._sweeper, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.clear()

    async def __aenter__(self) -> "TTLCache":
        self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()
