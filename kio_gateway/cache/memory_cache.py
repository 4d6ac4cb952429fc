"""
Sharded in-process cache.

Keys are spread over N shards by hash; each shard is a dict with its own
lock, so unrelated keys never contend. Capacity is global: once the total
number of entries exceeds max_entries, the oldest insertions across all
shards are evicted first, regardless of which shard they live in. A re-set
key counts as a new insertion and reads never refresh position.
Expired entries are dropped on read and by a periodic background sweep.
Values are copied on the way in and out; callers never share state with it.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import threading
import time
from collections import deque
from collections.abc import Callable
from typing import Any, Optional

import structlog

from kio_gateway.cache.base import CacheEntry, CacheStats

logger = structlog.get_logger()


class _Shard:
    __slots__ = ("entries", "lock", "hits", "misses")

    def __init__(self) -> None:
        self.entries: dict[str, CacheEntry] = {}
        self.lock = threading.Lock()
        self.hits = 0
        self.misses = 0


class MemoryCache:
    def __init__(
        self,
        max_entries: int = 10000,
        shards: int = 16,
        default_ttl: float = 15 * 60,
        sweep_interval: Optional[float] = 60.0,
        key_prefix: str = "",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self._shard_count = max(1, shards)
        self._shards = [_Shard() for _ in range(self._shard_count)]
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self._prefix = f"{key_prefix}:" if key_prefix else ""
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._sweeper: Optional[asyncio.Task] = None
        # (sequence, full_key) in insertion order; records whose key was
        # deleted or re-set since are stale and skipped on eviction
        self._order: deque[tuple[int, str]] = deque()
        self._order_lock = threading.Lock()
        self._sequence = itertools.count(1)

    def _shard_for(self, full_key: str) -> _Shard:
        return self._shards[hash(full_key) % self._shard_count]

    def _locate(self, key: str) -> tuple[str, _Shard]:
        full_key = self._prefix + key
        return full_key, self._shard_for(full_key)

    def _size(self) -> int:
        return sum(len(shard.entries) for shard in self._shards)

    async def get(self, key: str) -> Optional[Any]:
        full_key, shard = self._locate(key)
        with shard.lock:
            entry = shard.entries.get(full_key)
            if entry is None:
                shard.misses += 1
                return None
            if self._clock() >= entry.expires_at:
                del shard.entries[full_key]
                shard.misses += 1
                return None
            shard.hits += 1
            value = entry.value
        return copy.deepcopy(value)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        self._ensure_sweeper()
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        now = self._clock()
        sequence = next(self._sequence)
        entry = CacheEntry(
            value=copy.deepcopy(value),
            created_at=now,
            expires_at=now + ttl,
            sequence=sequence,
        )
        full_key, shard = self._locate(key)
        with shard.lock:
            shard.entries[full_key] = entry
        with self._order_lock:
            self._order.append((sequence, full_key))
            self._evict_overflow()
            if len(self._order) > 2 * self.max_entries:
                self._rebuild_order()

    def _evict_overflow(self) -> None:
        # Caller holds _order_lock; shard locks are only ever taken inside it
        evicted = 0
        while self._order and self._size() > self.max_entries:
            sequence, full_key = self._order.popleft()
            shard = self._shard_for(full_key)
            with shard.lock:
                entry = shard.entries.get(full_key)
                if entry is None or entry.sequence != sequence:
                    continue
                del shard.entries[full_key]
            evicted += 1
        if evicted:
            logger.debug("cache_evicted", count=evicted, max_entries=self.max_entries)

    def _rebuild_order(self) -> None:
        # Caller holds _order_lock
        live: list[tuple[int, str]] = []
        for shard in self._shards:
            with shard.lock:
                live.extend((e.sequence, k) for k, e in shard.entries.items())
        live.sort()
        self._order = deque(live)

    async def delete(self, key: str) -> bool:
        full_key, shard = self._locate(key)
        with shard.lock:
            return shard.entries.pop(full_key, None) is not None

    async def has(self, key: str) -> bool:
        """Presence check that does not touch hit/miss counters."""
        full_key, shard = self._locate(key)
        with shard.lock:
            entry = shard.entries.get(full_key)
            if entry is None:
                return False
            if self._clock() >= entry.expires_at:
                del shard.entries[full_key]
                return False
            return True

    async def clear(self) -> None:
        with self._order_lock:
            self._order.clear()
            for shard in self._shards:
                with shard.lock:
                    shard.entries.clear()
                    shard.hits = 0
                    shard.misses = 0

    def stats(self) -> CacheStats:
        hits = misses = size = 0
        for shard in self._shards:
            with shard.lock:
                hits += shard.hits
                misses += shard.misses
                size += len(shard.entries)
        return CacheStats(hits=hits, misses=misses, size=size)

    def sweep(self) -> int:
        """Remove expired entries from every shard. Returns the number removed.

        Also rebuilds the eviction order from the live entries so records
        left behind by deletes, expiries and re-sets do not pile up.
        """
        removed = 0
        now = self._clock()
        with self._order_lock:
            for shard in self._shards:
                with shard.lock:
                    expired = [k for k, e in shard.entries.items() if now >= e.expires_at]
                    for k in expired:
                        del shard.entries[k]
                    removed += len(expired)
            self._rebuild_order()
        if removed:
            logger.debug("cache_sweep", removed=removed)
        return removed

    def _ensure_sweeper(self) -> None:
        if self._sweep_interval is None or self._sweeper is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._sweeper = loop.create_task(self._sweep_loop())

    async def _sweep_loop(self) -> None:
        assert self._sweep_interval is not None
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep()

    async def close(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
