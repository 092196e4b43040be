"""Rate limit bucket stores.

The gate starts with a per-process in-memory store and can later move to a
shared store without changing the API layer.
"""

from kan.adapters.rate_limit.base import AbstractBucketStore, RateLimitBucket, RateLimitResult
from kan.adapters.rate_limit.in_memory import InMemoryBucketStore

__all__ = [
    "AbstractBucketStore",
    "InMemoryBucketStore",
    "RateLimitBucket",
    "RateLimitResult",
]
