"""Query cache key descriptors and the invalidation capability."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, runtime_checkable


@dataclass(frozen=True)
class QueryKey:
    """Identifies a unit of cached query data, or a set of them.

    Attributes:
        path: Procedure namespace, e.g. ``("card", "byId")``.
        input: Procedure input. As a descriptor it matches partially: every
            field given must equal the entry's field, and an empty input
            matches every entry on the path.
    """

    path: tuple[str, ...]
    input: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.path:
            raise ValueError("path must name at least one segment")

    def cache_id(self) -> str:
        """Stable string form used as the storage key."""
        return json.dumps([list(self.path), dict(self.input)], sort_keys=True, default=str)

    def matches(self, other: "QueryKey") -> bool:
        """Whether this descriptor selects the entry keyed by ``other``."""
        if self.path != other.path:
            return False
        return all(
            name in other.input and other.input[name] == value
            for name, value in self.input.items()
        )


@runtime_checkable
class QueryInvalidator(Protocol):
    """Anything that can mark cached query results stale."""

    async def invalidate(self, key: QueryKey) -> Any:
        ...
