"""Bounded least-recently-used caches for embeddings and query results.

Architectural role:
    - `EmbeddingCache` memoizes provider output by exact input text so the same
      string is never embedded twice while it stays resident.
    - `LRUCache` also backs the query-result cache in `recall.core.memory_service`,
      which is flushed wholesale on every write.

Concurrency:
    Each cache guards its state with its own `threading.Lock`; callers on different
    threads (foreground requests, background maintenance, search workers) may use
    the same instance.
"""

import threading
from collections import OrderedDict

from recall.errors import ConfigurationError


_MISSING = object()


class LRUCache:
    """Fixed-capacity mapping that evicts the least-recently-used key first."""

    def __init__(self, capacity: int):
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity < 1:
            raise ConfigurationError(f"cache capacity must be a positive integer, got {capacity!r}")

        self.capacity = capacity
        self._data = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key, default=None):
        """Return the cached value and mark `key` most recently used."""
        with self._lock:
            value = self._data.get(key, _MISSING)
            if value is _MISSING:
                return default
            self._data.move_to_end(key)
            return value

    def set(self, key, value) -> None:
        with self._lock:
            if key in self._data:
                self._data[key] = value
                self._data.move_to_end(key)
                return

            if len(self._data) >= self.capacity:
                self._data.popitem(last=False)

            self._data[key] = value

    def remove_all(self) -> None:
        with self._lock:
            self._data.clear()

    def keys(self):
        """Snapshot of keys, least recently used first."""
        with self._lock:
            return list(self._data.keys())

    def __contains__(self, key) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class EmbeddingCache:
    """Text -> vector LRU cache with hit/miss accounting."""

    def __init__(self, capacity: int):
        self._cache = LRUCache(capacity)
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, text: str):
        vector = self._cache.get(text)
        with self._lock:
            if vector is None:
                self.misses += 1
            else:
                self.hits += 1
        return vector

    def peek(self, text: str):
        """Lookup without touching hit/miss counters."""
        return self._cache.get(text)

    def set(self, text: str, vector) -> None:
        self._cache.set(text, vector)

    def clear(self) -> None:
        self._cache.remove_all()

    @property
    def hit_rate(self) -> float:
        with self._lock:
            total = self.hits + self.misses
            return self.hits / total if total else 0.0

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, text) -> bool:
        return text in self._cache
