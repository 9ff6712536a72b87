"""
Storage backends for the cache manager.

- MemoryBackend: plain in-process dict
- StorageBackend: entries serialized into a Web-Storage-shaped key/value
  store. Such stores cannot enumerate by prefix, so the backend keeps its
  own managed-key index inside the store.

Two stores are provided: FileStore (persistent, survives restarts) and
SessionStore (lives as long as the session object, with a byte quota).
"""

import errno
import hashlib
import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional, Protocol

from pydantic import BaseModel, ValidationError
import structlog

logger = structlog.get_logger()


class CacheEntry(BaseModel):
    """A cached value with its freshness metadata (times in seconds)."""

    key: str
    data: Any
    timestamp: float
    ttl: float
    hits: int = 0

    def is_expired(self, now: float) -> bool:
        return now > self.timestamp + self.ttl


class QuotaExceededError(Exception):
    """Raised by a store when a write would exceed its capacity."""


class CacheBackend(ABC):
    """Interface every cache backend implements."""

    @abstractmethod
    def load(self, key: str) -> Optional[CacheEntry]:
        ...

    @abstractmethod
    def save(self, entry: CacheEntry) -> bool:
        """Persist ``entry``. Returns False when the write was skipped."""

    @abstractmethod
    def remove(self, key: str) -> bool:
        ...

    @abstractmethod
    def keys(self) -> list[str]:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...

    def __len__(self) -> int:
        return len(self.keys())


class MemoryBackend(CacheBackend):
    def __init__(self):
        self._entries: dict[str, CacheEntry] = {}

    def load(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def save(self, entry: CacheEntry) -> bool:
        self._entries[entry.key] = entry
        return True

    def remove(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def keys(self) -> list[str]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class KeyValueStore(Protocol):
    """The subset of the Web Storage API the storage backend relies on."""

    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...


class SessionStore:
    """In-process store scoped to one session, with a byte quota.

    Sizes are counted as two bytes per character, as browsers do.
    """

    def __init__(self, quota_bytes: int = 5 * 1024 * 1024):
        self.quota_bytes = quota_bytes
        self._items: dict[str, str] = {}

    @staticmethod
    def _size(key: str, value: str) -> int:
        return (len(key) + len(value)) * 2

    @property
    def used_bytes(self) -> int:
        return sum(self._size(k, v) for k, v in self._items.items())

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        current = self._items.get(key)
        freed = self._size(key, current) if current is not None else 0
        if self.used_bytes - freed + self._size(key, value) > self.quota_bytes:
            raise QuotaExceededError(f"Session storage quota of {self.quota_bytes} bytes exceeded")
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def __len__(self) -> int:
        return len(self._items)


class FileStore:
    """Persistent store keeping one file per key under ``directory``."""

    def __init__(self, directory: str | Path, max_bytes: Optional[int] = None):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.max_bytes = max_bytes

    def _path(self, key: str) -> Path:
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    def used_bytes(self) -> int:
        return sum(p.stat().st_size for p in self.directory.glob("*.json"))

    def get_item(self, key: str) -> Optional[str]:
        try:
            return self._path(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set_item(self, key: str, value: str) -> None:
        target = self._path(key)
        encoded = value.encode("utf-8")

        if self.max_bytes is not None:
            existing = target.stat().st_size if target.exists() else 0
            if self.used_bytes() - existing + len(encoded) > self.max_bytes:
                raise QuotaExceededError(f"File store quota of {self.max_bytes} bytes exceeded")

        fd, tmp_name = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(encoded)
            os.replace(tmp_name, target)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            if e.errno == errno.ENOSPC:
                raise QuotaExceededError(str(e)) from e
            raise

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class StorageBackend(CacheBackend):
    """Cache backend over a KeyValueStore with a persistent key index."""

    def __init__(self, store: KeyValueStore, namespace: str = "event-cache"):
        self.store = store
        self.namespace = namespace
        self.index_key = f"{namespace}:__keys__"

    def _item_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _read_index(self) -> list[str]:
        raw = self.store.get_item(self.index_key)
        if not raw:
            return []
        try:
            keys = json.loads(raw)
        except ValueError:
            logger.warning("cache_index_corrupt", namespace=self.namespace)
            return []
        return [k for k in keys if isinstance(k, str)] if isinstance(keys, list) else []

    def _write_index(self, keys: list[str]) -> None:
        self.store.set_item(self.index_key, json.dumps(keys))

    def load(self, key: str) -> Optional[CacheEntry]:
        raw = self.store.get_item(self._item_key(key))
        if raw is None:
            return None
        try:
            return CacheEntry.model_validate_json(raw)
        except ValidationError:
            logger.warning("cache_entry_corrupt", namespace=self.namespace, key=key)
            self.remove(key)
            return None

    def save(self, entry: CacheEntry) -> bool:
        try:
            self.store.set_item(self._item_key(entry.key), entry.model_dump_json())
            keys = self._read_index()
            if entry.key not in keys:
                keys.append(entry.key)
                self._write_index(keys)
        except QuotaExceededError as e:
            logger.warning(
                "cache_quota_exceeded",
                namespace=self.namespace,
                key=entry.key,
                error=str(e),
            )
            self.remove(entry.key)
            return False
        return True

    def remove(self, key: str) -> bool:
        keys = self._read_index()
        self.store.remove_item(self._item_key(key))
        if key not in keys:
            return False
        keys.remove(key)
        self._write_index(keys)
        return True

    def keys(self) -> list[str]:
        return self._read_index()

    def clear(self) -> None:
        for key in self._read_index():
            self.store.remove_item(self._item_key(key))
        self.store.remove_item(self.index_key)
