"""TTL cache with pluggable storage backends."""

from .backends import (
    CacheBackend,
    CacheEntry,
    FileStore,
    KeyValueStore,
    MemoryBackend,
    QuotaExceededError,
    SessionStore,
    StorageBackend,
)
from .manager import CacheManager, CacheStats

__all__ = [
    "CacheBackend",
    "CacheEntry",
    "CacheManager",
    "CacheStats",
    "FileStore",
    "KeyValueStore",
    "MemoryBackend",
    "QuotaExceededError",
    "SessionStore",
    "StorageBackend",
]
