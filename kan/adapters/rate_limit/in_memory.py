"""In-memory fixed-window bucket store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: each bucket carries its own lock, the key map has another.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field

from kan.adapters.rate_limit.base import AbstractBucketStore, RateLimitBucket, RateLimitResult


@dataclass
class _BucketEntry:
    count: int
    window_start: float
    window_seconds: int
    lock: threading.Lock = field(default_factory=threading.Lock)
    evicted: bool = False


class InMemoryBucketStore(AbstractBucketStore):
    """Bucket store keeping one fixed window per key in a dict.

    A window opens on the first request from a key and lasts
    ``window_seconds``; the first request at or after its end opens a new one.

    Locking:
        The registry lock only guards insertion/removal of entries. The
        admission decision runs under the entry's own lock, so unrelated keys
        never contend. Eviction marks an entry dead under its lock; an
        increment that raced it sees the flag and retries on a fresh entry.
    """

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._entries: dict[str, _BucketEntry] = {}

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._entries)

    def _get_or_create_entry(self, key: str, now: float, window_seconds: int) -> _BucketEntry:
        with self._registry_lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = _BucketEntry(count=0, window_start=now, window_seconds=window_seconds)
                self._entries[key] = entry
            return entry

    def get(self, key: str) -> RateLimitBucket | None:
        with self._registry_lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        with entry.lock:
            if entry.evicted:
                return None
            return RateLimitBucket(count=entry.count, window_start=entry.window_start)

    def increment(
        self,
        key: str,
        *,
        limit: int,
        window_seconds: int,
        now: float,
        cost: int = 1,
    ) -> RateLimitResult:
        """Consume ``cost`` units for ``key`` if the window has room.

        Raises:
            ValueError: If key is empty, or cost, limit or window are invalid.
        """
        if not key:
            raise ValueError("key must be a non-empty string")
        if cost < 1:
            raise ValueError("cost must be >= 1")
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")

        while True:
            entry = self._get_or_create_entry(key, now, window_seconds)
            with entry.lock:
                if entry.evicted:
                    continue

                # The bucket adopts the caller's window so eviction can judge it alone
                entry.window_seconds = window_seconds
                if now >= entry.window_start + window_seconds:
                    entry.count = 0
                    entry.window_start = now

                reset_at = entry.window_start + window_seconds
                if entry.count + cost <= limit:
                    entry.count += cost
                    return RateLimitResult(
                        allowed=True,
                        limit=limit,
                        remaining=max(0, limit - entry.count),
                        reset_at=int(math.ceil(reset_at)),
                        retry_after_seconds=None,
                    )

                return RateLimitResult(
                    allowed=False,
                    limit=limit,
                    remaining=max(0, limit - entry.count),
                    reset_at=int(math.ceil(reset_at)),
                    retry_after_seconds=max(0, int(math.ceil(reset_at - now))),
                )

    def reset(self, key: str) -> None:
        with self._registry_lock:
            entry = self._entries.pop(key, None)
        if entry is not None:
            with entry.lock:
                entry.evicted = True

    def evict_expired(self, *, now: float) -> int:
        removed = 0
        with self._registry_lock:
            for key, entry in list(self._entries.items()):
                # Skip entries an increment is holding right now
                if not entry.lock.acquire(blocking=False):
                    continue
                try:
                    if now >= entry.window_start + entry.window_seconds:
                        entry.evicted = True
                        del self._entries[key]
                        removed += 1
                finally:
                    entry.lock.release()
        return removed
