"""Tests for the sharded in-memory cache."""

import asyncio

import pytest

from kio_gateway.cache import Cache, CacheStats, MemoryCache, create_cache
from kio_gateway.config import CacheConfig
from kio_gateway.errors import ConfigError


def _cache(clock, **kwargs) -> MemoryCache:
    kwargs.setdefault("sweep_interval", None)
    return MemoryCache(clock=clock, **kwargs)


class TestMemoryCache:
    @pytest.mark.asyncio
    async def test_set_get_and_miss(self, clock) -> None:
        cache = _cache(clock)
        assert await cache.get("missing") is None
        await cache.set("k", {"a": 1}, 60)
        assert await cache.get("k") == {"a": 1}
        stats = cache.stats()
        assert (stats.hits, stats.misses, stats.size) == (1, 1, 1)
        assert stats.hit_rate == 0.5

    @pytest.mark.asyncio
    async def test_expired_entry_is_never_returned(self, clock) -> None:
        cache = _cache(clock)
        await cache.set("k", "v", 10)
        clock.advance(9.9)
        assert await cache.get("k") == "v"
        clock.advance(0.1)
        assert await cache.get("k") is None
        assert cache.stats().size == 0

    @pytest.mark.asyncio
    async def test_default_ttl_applies(self, clock) -> None:
        cache = _cache(clock, default_ttl=5)
        await cache.set("k", "v")
        clock.advance(5)
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_fifo_eviction(self, clock) -> None:
        cache = _cache(clock, max_entries=2, shards=1)
        await cache.set("a", 1, 60)
        await cache.set("b", 2, 60)
        await cache.get("a")  # reads do not refresh position
        await cache.set("c", 3, 60)
        assert await cache.get("a") is None
        assert await cache.get("b") == 2
        assert await cache.get("c") == 3

    @pytest.mark.asyncio
    async def test_reset_key_becomes_newest(self, clock) -> None:
        cache = _cache(clock, max_entries=2, shards=1)
        await cache.set("a", 1, 60)
        await cache.set("b", 2, 60)
        await cache.set("a", 10, 60)
        await cache.set("c", 3, 60)
        assert await cache.get("b") is None
        assert await cache.get("a") == 10

    @pytest.mark.asyncio
    async def test_capacity_never_exceeded(self, clock) -> None:
        cache = _cache(clock, max_entries=32, shards=4)
        for i in range(200):
            await cache.set(f"key-{i}", i, 60)
        assert cache.stats().size <= 32

    @pytest.mark.asyncio
    async def test_more_shards_than_capacity_keeps_every_entry(self, clock) -> None:
        cache = _cache(clock, max_entries=10, shards=16)
        for i in range(10):
            await cache.set(f"key-{i}", i, 60)
        assert cache.stats().size == 10
        assert all([await cache.has(f"key-{i}") for i in range(10)])

        await cache.set("key-10", 10, 60)
        assert cache.stats().size == 10
        assert await cache.has("key-0") is False
        assert all([await cache.has(f"key-{i}") for i in range(1, 11)])

    @pytest.mark.asyncio
    async def test_eviction_is_global_across_shards(self, clock) -> None:
        cache = _cache(clock, max_entries=4, shards=2)
        keys = [f"k{i}" for i in range(8)]
        for i, key in enumerate(keys):
            await cache.set(key, i, 60)
        # Only the four newest survive, whichever shard they hash to
        present = [key for key in keys if await cache.has(key)]
        assert present == keys[4:]

    @pytest.mark.asyncio
    async def test_sweep_drops_stale_eviction_records(self, clock) -> None:
        cache = _cache(clock, max_entries=3)
        for _ in range(20):
            await cache.set("same", 1, 60)
        assert len(cache._order) <= 6
        cache.sweep()
        assert len(cache._order) == 1
        await cache.set("b", 2, 60)
        await cache.set("c", 3, 60)
        await cache.set("d", 4, 60)
        assert await cache.has("same") is False
        assert cache.stats().size == 3

    @pytest.mark.asyncio
    async def test_delete_has_clear(self, clock) -> None:
        cache = _cache(clock)
        await cache.set("k", 1, 60)
        assert await cache.has("k") is True
        assert await cache.delete("k") is True
        assert await cache.delete("k") is False
        assert await cache.has("k") is False
        await cache.set("x", 1, 60)
        await cache.clear()
        assert cache.stats() == CacheStats()

    @pytest.mark.asyncio
    async def test_stats_dump_includes_hit_rate(self, clock) -> None:
        cache = _cache(clock)
        await cache.set("k", 1, 60)
        await cache.get("k")
        await cache.get("other")
        dumped = cache.stats().model_dump()
        assert dumped == {"hits": 1, "misses": 1, "size": 1, "hit_rate": 0.5}
        assert CacheStats().model_dump()["hit_rate"] == 0.0

    @pytest.mark.asyncio
    async def test_values_are_isolated_from_callers(self, clock) -> None:
        cache = _cache(clock)
        value = {"results": [1]}
        await cache.set("k", value, 60)
        value["results"].append(2)
        got = await cache.get("k")
        got["results"].append(3)
        assert await cache.get("k") == {"results": [1]}

    @pytest.mark.asyncio
    async def test_has_does_not_count(self, clock) -> None:
        cache = _cache(clock)
        await cache.has("nothing")
        assert cache.stats().misses == 0

    @pytest.mark.asyncio
    async def test_sweep_removes_expired(self, clock) -> None:
        cache = _cache(clock)
        await cache.set("short", 1, 1)
        await cache.set("long", 2, 100)
        clock.advance(2)
        assert cache.sweep() == 1
        assert cache.stats().size == 1

    @pytest.mark.asyncio
    async def test_background_sweeper_starts_and_stops(self) -> None:
        cache = MemoryCache(sweep_interval=0.01, default_ttl=0.001)
        await cache.set("k", 1)
        await asyncio.sleep(0.05)
        assert cache.stats().size == 0
        await cache.close()
        assert cache._sweeper is None

    @pytest.mark.asyncio
    async def test_concurrent_writers(self, clock) -> None:
        cache = _cache(clock, max_entries=10000, shards=8)

        async def writer(n: int) -> None:
            for i in range(50):
                await cache.set(f"{n}:{i}", i, 60)

        await asyncio.gather(*(writer(n) for n in range(10)))
        assert cache.stats().size == 500

    def test_protocol_conformance(self, clock) -> None:
        assert isinstance(_cache(clock), Cache)

    def test_rejects_non_positive_capacity(self) -> None:
        with pytest.raises(ValueError):
            MemoryCache(max_entries=0)


class TestCreateCache:
    def test_memory_backend(self) -> None:
        cache = create_cache(CacheConfig(KIO_CACHE_BACKEND="memory"))
        assert isinstance(cache, MemoryCache)

    def test_redis_requires_url(self) -> None:
        with pytest.raises(ConfigError):
            create_cache(CacheConfig(KIO_CACHE_BACKEND="redis", KIO_REDIS_URL=None))
