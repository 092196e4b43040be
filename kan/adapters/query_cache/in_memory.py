"""In-memory TTL cache for query results.

Thread-safe with LRU eviction. Entries can be invalidated by partial key
descriptors: they are marked stale and reloaded on the next fetch.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from kan.adapters.query_cache.base import QueryKey

logger = logging.getLogger(__name__)

# Distinguishes "nothing cached" from a cached None
_MISSING = object()


@dataclass
class CacheItem:
    """Container for cached values with expiration metadata."""

    key: QueryKey
    value: Any
    expires_at: float
    stale: bool = False


@dataclass
class _PendingLoad:
    """Loader currently running for one cache id."""

    key: QueryKey
    generation: int = 0
    loaders: int = 0


class InMemoryQueryCache:
    """Thread-safe, in-memory TTL cache with LRU eviction.

    Attributes:
        ttl_seconds: Time-to-live applied to all entries.
        max_entries: Maximum number of cached items (None for unlimited).
    """

    def __init__(self, ttl_seconds: int = 300, max_entries: int | None = 1024) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._store: OrderedDict[str, CacheItem] = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._invalidations = 0
        self._pending: dict[str, _PendingLoad] = {}

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"InMemoryQueryCache(ttl_seconds={self._ttl}, max_entries={self._max_entries}, "
            f"size={len(self._store)}, hits={self._hits}, misses={self._misses})"
        )

    def get(self, key: QueryKey) -> Any | None:
        """Return the fresh cached value for ``key``, or None.

        Stale and expired entries count as misses; expired ones are dropped.
        """

        with self._lock:
            value = self._lookup_locked(key)
        return None if value is _MISSING else value

    def set(self, key: QueryKey, value: Any) -> None:
        """Store a fresh value with TTL, evicting as needed."""

        with self._lock:
            self._put_locked(key, value, stale=False)

    async def fetch(self, key: QueryKey, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value, loading and storing it when missing or stale.

        A cached None is a hit. If ``key`` is invalidated while the loader is
        running, the loaded value is returned but stored stale, so the next
        fetch loads again. Loader failures propagate and leave the cache
        untouched.
        """

        cache_id = key.cache_id()
        with self._lock:
            value = self._lookup_locked(key)
            if value is not _MISSING:
                return value
            pending = self._pending.get(cache_id)
            if pending is None:
                pending = self._pending[cache_id] = _PendingLoad(key=key)
            pending.loaders += 1
            generation = pending.generation

        try:
            value = await loader()
            with self._lock:
                superseded = pending.generation != generation
                self._put_locked(key, value, stale=superseded)
        finally:
            with self._lock:
                pending.loaders -= 1
                if pending.loaders == 0 and self._pending.get(cache_id) is pending:
                    del self._pending[cache_id]

        if superseded:
            logger.debug("query_cache.load_superseded", extra={"query_path": key.path})
        return value

    async def invalidate(self, key: QueryKey) -> int:
        """Mark every entry selected by ``key`` stale.

        Loads already running for a selected key will store their result
        stale as well.

        Returns:
            Number of stored entries marked.
        """

        with self._lock:
            marked = 0
            for item in self._store.values():
                if key.matches(item.key) and not item.stale:
                    item.stale = True
                    marked += 1
            for pending in self._pending.values():
                if key.matches(pending.key):
                    pending.generation += 1
            self._invalidations += marked

        logger.debug("query_cache.invalidated", extra={"query_path": key.path, "marked": marked})
        return marked

    def remove(self, key: QueryKey) -> int:
        """Drop every entry selected by ``key``; returns how many were removed."""

        with self._lock:
            selected = [cache_id for cache_id, item in self._store.items() if key.matches(item.key)]
            for cache_id in selected:
                self._evict_single(cache_id)
            return len(selected)

    def clear(self) -> None:
        """Remove all cached entries and reset counters."""

        with self._lock:
            self._store.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            self._invalidations = 0

    def stats(self) -> dict[str, int | None]:
        """Return lightweight cache metrics without exposing values."""

        with self._lock:
            return {
                "ttl_seconds": self._ttl,
                "max_entries": self._max_entries,
                "entries": len(self._store),
                "stale": sum(1 for item in self._store.values() if item.stale),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "invalidations": self._invalidations,
            }

    def _lookup_locked(self, key: QueryKey) -> Any:
        cache_id = key.cache_id()
        item = self._store.get(cache_id)
        if item is None:
            self._misses += 1
            logger.debug("query_cache.miss", extra={"query_path": key.path, "reason": "not_found"})
            return _MISSING

        if self._is_expired(item):
            self._evict_single(cache_id)
            self._misses += 1
            logger.debug("query_cache.miss", extra={"query_path": key.path, "reason": "expired"})
            return _MISSING

        if item.stale:
            self._misses += 1
            logger.debug("query_cache.miss", extra={"query_path": key.path, "reason": "stale"})
            return _MISSING

        self._hits += 1
        self._store.move_to_end(cache_id)
        return item.value

    def _put_locked(self, key: QueryKey, value: Any, *, stale: bool) -> None:
        cache_id = key.cache_id()
        self._evict_expired_locked()
        self._store[cache_id] = CacheItem(
            key=key, value=value, expires_at=time.time() + self._ttl, stale=stale
        )
        self._store.move_to_end(cache_id)
        self._evict_if_over_capacity_locked()

        logger.debug(
            "query_cache.set",
            extra={"query_path": key.path, "size": len(self._store), "ttl_s": self._ttl, "stale": stale},
        )

    def _evict_single(self, cache_id: str) -> None:
        if self._store.pop(cache_id, None) is not None:
            self._evictions += 1

    def _evict_expired_locked(self) -> None:
        now = time.time()
        expired = [cache_id for cache_id, item in self._store.items() if item.expires_at <= now]
        for cache_id in expired:
            self._evict_single(cache_id)

    def _evict_if_over_capacity_locked(self) -> None:
        if self._max_entries is None:
            return

        while len(self._store) > self._max_entries:
            # popitem(last=False) removes the least recently used entry
            self._store.popitem(last=False)
            self._evictions += 1

    def _is_expired(self, item: CacheItem) -> bool:
        return time.time() > item.expires_at
