"""Query cache adapters.

An in-process cache keyed by query descriptors, plus the protocol the card
invalidation service relies on so another facility can stand in for it.
"""

from kan.adapters.query_cache.base import QueryInvalidator, QueryKey
from kan.adapters.query_cache.in_memory import InMemoryQueryCache

__all__ = ["InMemoryQueryCache", "QueryInvalidator", "QueryKey"]
