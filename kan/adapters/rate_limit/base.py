"""Rate limit bucket store interfaces.

The gate depends on this abstraction (not the concrete implementation) so the
backing store can be swapped (e.g., an external atomic counter service for
multi-process deployments) without touching the HTTP layer.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitBucket:
    """Usage of one identity within its current window.

    Attributes:
        count: Units consumed in the window ``[window_start, window_start + duration)``.
        window_start: UNIX time in seconds when the window opened.
    """

    count: int
    window_start: float


@dataclass(frozen=True)
class RateLimitResult:
    """Result of an admission check.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window.
        remaining: Remaining requests in the current window (0 when blocked).
        reset_at: UNIX epoch seconds when the current window resets.
        retry_after_seconds: Suggested wait time in seconds when blocked.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after_seconds: int | None


class AbstractBucketStore(ABC):
    """Interface for fixed-window bucket stores."""

    @abstractmethod
    def get(self, key: str) -> RateLimitBucket | None:
        """Return a snapshot of the bucket for ``key``, or None if unseen."""
        raise NotImplementedError

    @abstractmethod
    def increment(
        self,
        key: str,
        *,
        limit: int,
        window_seconds: int,
        now: float,
        cost: int = 1,
    ) -> RateLimitResult:
        """Atomically admit or reject ``cost`` units for ``key``.

        Implementations must treat the reset/compare/increment sequence as a
        single unit per key: concurrent callers never see the same count.

        Args:
            key: Unique identifier (e.g., scoped API key hash, IP address).
            limit: Max units per window.
            window_seconds: Window length in seconds.
            now: Current UNIX time in seconds.
            cost: Units to consume (default 1).

        Returns:
            RateLimitResult describing whether it was allowed.
        """
        raise NotImplementedError

    @abstractmethod
    def reset(self, key: str) -> None:
        """Forget the bucket for ``key``."""
        raise NotImplementedError

    @abstractmethod
    def evict_expired(self, *, now: float) -> int:
        """Drop buckets whose own window has elapsed; returns how many were removed.

        Each bucket is judged by the window length it was last incremented
        with, so gates with different durations can share one store.
        """
        raise NotImplementedError
