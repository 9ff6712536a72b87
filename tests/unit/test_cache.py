"""Tests for the TTL cache manager."""

import asyncio
import random

import pytest

from servers.event_search.cache import CacheManager, MemoryBackend

from conftest import FakeClock


@pytest.fixture
def cache(fake_clock: FakeClock) -> CacheManager:
    return CacheManager(max_size=10, default_ttl=60, cleanup_interval=300, clock=fake_clock)


class TestCacheBasics:
    """Tests for get/set/delete."""

    def test_get_returns_stored_value(self, cache: CacheManager):
        cache.set("a", {"x": 1})
        assert cache.get("a") == {"x": 1}

    def test_miss_returns_none(self, cache: CacheManager):
        assert cache.get("missing") is None

    def test_overwrite(self, cache: CacheManager):
        cache.set("a", 1)
        cache.set("a", 2)
        assert cache.get("a") == 2
        assert cache.size() == 1

    def test_delete(self, cache: CacheManager):
        cache.set("a", 1)
        assert cache.delete("a") is True
        assert cache.delete("a") is False
        assert cache.get("a") is None

    def test_clear(self, cache: CacheManager):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear()
        assert cache.size() == 0
        assert cache.keys() == []

    def test_has_does_not_count(self, cache: CacheManager):
        cache.set("a", 1)
        assert cache.has("a")
        assert not cache.has("b")
        stats = cache.get_stats()
        assert stats.hits == 0
        assert stats.misses == 0

    def test_peek_does_not_count(self, cache: CacheManager):
        cache.set("a", 1)
        assert cache.peek("a") == 1
        assert cache.get_stats().hits == 0


class TestExpiry:
    """Tests for TTL behavior."""

    def test_fresh_at_exact_ttl(self, cache: CacheManager, fake_clock: FakeClock):
        cache.set("a", "value", ttl=30)
        fake_clock.advance(30)
        assert cache.get("a") == "value"

    def test_expired_just_after_ttl(self, cache: CacheManager, fake_clock: FakeClock):
        cache.set("a", "value", ttl=30)
        fake_clock.advance(30.001)

        assert cache.get("a") is None
        assert "a" not in cache.keys()
        stats = cache.get_stats()
        assert stats.misses == 1
        assert stats.expirations == 1

    def test_default_ttl(self, cache: CacheManager, fake_clock: FakeClock):
        cache.set("a", "value")
        fake_clock.advance(61)
        assert cache.get("a") is None

    def test_has_and_peek_respect_ttl(self, cache: CacheManager, fake_clock: FakeClock):
        cache.set("a", "value", ttl=5)
        fake_clock.advance(6)
        assert not cache.has("a")
        assert cache.peek("a") is None

    def test_cleanup_removes_only_expired(self, cache: CacheManager, fake_clock: FakeClock):
        cache.set("short", 1, ttl=5)
        cache.set("long", 2, ttl=500)
        fake_clock.advance(10)

        assert cache.cleanup() == 1
        assert cache.keys() == ["long"]

    def test_set_sweeps_after_interval(self, cache: CacheManager, fake_clock: FakeClock):
        cache.set("short", 1, ttl=5)
        fake_clock.advance(301)

        cache.set("new", 2)

        assert "short" not in cache.keys()
        assert cache.get_stats().expirations == 1


class TestEviction:
    """Tests for approximate LFU eviction."""

    def test_size_never_exceeds_max(self, fake_clock: FakeClock):
        cache = CacheManager(max_size=5, clock=fake_clock)
        for i in range(50):
            cache.set(f"k{i}", i)
            fake_clock.advance(1)
            assert cache.size() <= 5

    def test_evicts_least_hit_entry(self, fake_clock: FakeClock):
        cache = CacheManager(max_size=3, clock=fake_clock)
        for key in ("a", "b", "c"):
            cache.set(key, key)
            fake_clock.advance(1)
        cache.get("a")
        cache.get("c")

        cache.set("d", "d")

        assert sorted(cache.keys()) == ["a", "c", "d"]
        assert cache.get_stats().evictions == 1

    def test_ties_evict_oldest(self, fake_clock: FakeClock):
        cache = CacheManager(max_size=3, clock=fake_clock)
        for key in ("a", "b", "c"):
            cache.set(key, key)
            fake_clock.advance(1)

        cache.set("d", "d")

        assert sorted(cache.keys()) == ["b", "c", "d"]

    def test_overwrite_at_capacity_does_not_evict(self, fake_clock: FakeClock):
        cache = CacheManager(max_size=2, clock=fake_clock)
        cache.set("a", 1)
        cache.set("b", 2)

        cache.set("a", 3)

        assert sorted(cache.keys()) == ["a", "b"]
        assert cache.get_stats().evictions == 0

    def test_sampled_eviction_on_large_cache(self, fake_clock: FakeClock):
        cache = CacheManager(
            max_size=200,
            sample_size=20,
            exact_scan_threshold=100,
            clock=fake_clock,
            rng=random.Random(7),
        )
        for i in range(200):
            cache.set(f"k{i}", i)
        hot = [f"k{i}" for i in range(0, 200, 2)]
        for key in hot:
            cache.get(key)

        for i in range(50):
            cache.set(f"new{i}", i)

        assert cache.size() == 200
        # Sampled eviction prefers zero-hit entries over hot ones
        assert sum(1 for key in hot if cache.has(key)) == len(hot)


class TestStats:
    """Tests for cache statistics."""

    def test_hit_rate(self, cache: CacheManager):
        cache.set("a", 1)
        cache.get("a")
        cache.get("a")
        cache.get("a")
        cache.get("b")

        stats = cache.get_stats()

        assert stats.hits == 3
        assert stats.misses == 1
        assert stats.hit_rate == pytest.approx(0.75)
        assert stats.size == 1
        assert stats.sets == 1

    def test_empty_hit_rate(self, cache: CacheManager):
        assert cache.get_stats().hit_rate == 0.0

    def test_clear_resets_counters(self, cache: CacheManager):
        cache.set("a", 1)
        cache.get("a")
        cache.clear()
        stats = cache.get_stats()
        assert stats.hits == 0
        assert stats.misses == 0

    def test_api_shape(self, cache: CacheManager):
        assert set(cache.get_stats().to_api()) >= {"hits", "misses", "size", "hitRate"}


class TestGetOrSet:
    """Tests for the async read-through helper."""

    @pytest.mark.asyncio
    async def test_factory_called_once(self, cache: CacheManager):
        calls = 0

        async def factory():
            nonlocal calls
            calls += 1
            return ["event"]

        assert await cache.get_or_set("k", factory) == ["event"]
        assert await cache.get_or_set("k", factory) == ["event"]
        assert calls == 1

    @pytest.mark.asyncio
    async def test_factory_errors_propagate(self, cache: CacheManager):
        async def factory():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await cache.get_or_set("k", factory)
        assert not cache.has("k")


class TestCleanupTask:
    """Tests for the periodic sweep task."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        cache = CacheManager(cleanup_interval=0.01, backend=MemoryBackend())
        cache.set("gone", 1, ttl=0)

        cache.start_cleanup()
        await asyncio.sleep(0.05)
        await cache.stop_cleanup()

        assert cache.size() == 0

    @pytest.mark.asyncio
    async def test_stop_without_start(self, cache: CacheManager):
        await cache.stop_cleanup()
