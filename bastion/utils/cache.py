"""LRU cache with optional time-based expiration.

Owned by the composition root and injected into whatever needs it; nothing in
the detection pipeline depends on a cache being present.
"""

import time
from collections import OrderedDict
from typing import Any

from .logging import get_logger

logger = get_logger("utils.cache")


class LRUCache:
    """Bounded in-memory cache, least-recently-used eviction, optional per-key TTL."""

    def __init__(self, max_entries: int = 1000, default_ttl: float | None = None):
        self._max_entries = max_entries
        self._default_ttl = default_ttl
        self._store: OrderedDict[str, tuple[Any, float | None]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: str) -> bool:
        return self.get(key, _count=False) is not None

    def get(self, key: str, _count: bool = True) -> Any | None:
        """Get a cached value if present and not expired; marks it most recently used."""
        entry = self._store.get(key)
        if entry is None:
            if _count:
                self.misses += 1
            return None
        value, expires_at = entry
        if expires_at is not None and time.monotonic() > expires_at:
            del self._store[key]
            if _count:
                self.misses += 1
            return None
        self._store.move_to_end(key)
        if _count:
            self.hits += 1
        return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Set a cached value; ``ttl`` overrides the default (None = no expiry)."""
        ttl = ttl if ttl is not None else self._default_ttl
        expires_at = time.monotonic() + ttl if ttl is not None else None
        self._store[key] = (value, expires_at)
        self._store.move_to_end(key)
        while len(self._store) > self._max_entries:
            evicted, _ = self._store.popitem(last=False)
            logger.debug("cache_evicted", key=evicted)

    def stats(self) -> dict:
        return {
            "size": len(self._store),
            "max_entries": self._max_entries,
            "hits": self.hits,
            "misses": self.misses,
        }
