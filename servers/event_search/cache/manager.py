"""TTL cache with approximate least-frequently-used eviction."""

import asyncio
import contextlib
import random
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog

from ..models import ApiModel
from .backends import CacheBackend, CacheEntry, MemoryBackend

logger = structlog.get_logger()

T = TypeVar("T")


class CacheStats(ApiModel):
    """Counters reported by CacheManager.get_stats()."""

    hits: int
    misses: int
    size: int
    hit_rate: float
    sets: int = 0
    evictions: int = 0
    expirations: int = 0


class CacheManager:
    """Key/value cache with per-entry TTL in front of slow lookups.

    Expired entries are never returned; they are deleted lazily on read
    and by a periodic sweep. When the cache is full, one entry is evicted
    per insert: the lowest hit count wins, oldest first on ties. Small
    caches are scanned exactly, large ones through a random sample.
    """

    def __init__(
        self,
        backend: CacheBackend | None = None,
        max_size: int = 1000,
        default_ttl: float = 300.0,
        cleanup_interval: float = 300.0,
        sample_size: int = 20,
        exact_scan_threshold: int = 100,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
        name: str = "default",
    ):
        """Initialize cache manager.

        Args:
            backend: Where entries live (in-process dict by default)
            max_size: Entry count that triggers eviction
            default_ttl: Seconds an entry stays fresh when set() gets no ttl
            cleanup_interval: Seconds between expired-entry sweeps
            sample_size: Keys sampled per eviction once the cache is large
            exact_scan_threshold: Up to this size every entry is considered
            clock: Wall clock in seconds
            rng: Random source for eviction sampling
            name: Name for logging and identification
        """
        self.backend = backend if backend is not None else MemoryBackend()
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.cleanup_interval = cleanup_interval
        self.sample_size = sample_size
        self.exact_scan_threshold = exact_scan_threshold
        self.name = name
        self._clock = clock
        self._rng = rng or random.Random()

        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._evictions = 0
        self._expirations = 0
        self._last_sweep = clock()
        self._cleanup_task: Optional[asyncio.Task] = None

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None on a miss or expired entry."""
        entry = self.backend.load(key)
        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(self._clock()):
            self.backend.remove(key)
            self._expirations += 1
            self._misses += 1
            return None

        entry.hits += 1
        self.backend.save(entry)
        self._hits += 1
        return entry.data

    def peek(self, key: str) -> Optional[Any]:
        """Fresh value without touching hit counts or stats."""
        entry = self.backend.load(key)
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry.data

    def has(self, key: str) -> bool:
        """True if a fresh entry exists. Does not count as a hit."""
        entry = self.backend.load(key)
        return entry is not None and not entry.is_expired(self._clock())

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store ``value`` under ``key`` for ``ttl`` seconds."""
        now = self._clock()
        if now - self._last_sweep >= self.cleanup_interval:
            self.cleanup()

        if self.backend.load(key) is None:
            while len(self.backend) >= self.max_size > 0:
                if not self._evict_one():
                    break

        entry = CacheEntry(
            key=key,
            data=value,
            timestamp=now,
            ttl=self.default_ttl if ttl is None else ttl,
        )
        if self.backend.save(entry):
            self._sets += 1

    def delete(self, key: str) -> bool:
        return self.backend.remove(key)

    def clear(self) -> None:
        self.backend.clear()
        self._hits = 0
        self._misses = 0
        logger.info("cache_cleared", cache=self.name)

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
        ttl: Optional[float] = None,
    ) -> T:
        """Return the cached value, or await ``factory`` and cache its result."""
        cached = self.get(key)
        if cached is not None:
            return cached
        value = await factory()
        self.set(key, value, ttl)
        return value

    def keys(self) -> list[str]:
        return self.backend.keys()

    def size(self) -> int:
        return len(self.backend)

    def _evict_one(self) -> bool:
        keys = self.backend.keys()
        if not keys:
            return False

        if len(keys) <= self.exact_scan_threshold:
            candidates = keys
        else:
            candidates = self._rng.sample(keys, min(self.sample_size, len(keys)))

        victim: Optional[str] = None
        victim_rank: Optional[tuple[int, float]] = None
        for key in candidates:
            entry = self.backend.load(key)
            if entry is None:
                # Index points at a vanished entry; dropping it frees a slot
                victim = key
                break
            rank = (entry.hits, entry.timestamp)
            if victim_rank is None or rank < victim_rank:
                victim, victim_rank = key, rank

        if victim is None:
            return False
        self.backend.remove(victim)
        self._evictions += 1
        logger.debug("cache_evicted", cache=self.name, key=victim, rank=victim_rank)
        return True

    def cleanup(self) -> int:
        """Remove every expired entry. Returns how many were removed."""
        now = self._clock()
        self._last_sweep = now
        removed = 0
        for key in self.backend.keys():
            entry = self.backend.load(key)
            if entry is None or entry.is_expired(now):
                self.backend.remove(key)
                removed += 1
        if removed:
            self._expirations += removed
            logger.debug("cache_cleanup", cache=self.name, removed=removed)
        return removed

    def start_cleanup(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())

    async def stop_cleanup(self) -> None:
        if self._cleanup_task is None:
            return
        self._cleanup_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._cleanup_task
        self._cleanup_task = None

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            self.cleanup()

    def get_stats(self) -> CacheStats:
        total = self._hits + self._misses
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            size=self.size(),
            hit_rate=self._hits / total if total else 0.0,
            sets=self._sets,
            evictions=self._evictions,
            expirations=self._expirations,
        )
