"""itembank_shared.interface — The ItemStore contract.

Every backend implements the same six operations with identical observable
semantics. Backends are interchangeable through this Protocol; they do not
share a base class.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, runtime_checkable

from itembank_shared.models import Item


@dataclass
class ListQuery:
    """Parameters for ``list_latest``.

    ``offset`` is the in-memory backend's legacy position parameter and is
    ignored when ``next_token`` is set or by the DynamoDB backend.
    """

    limit: Optional[int] = None
    next_token: Optional[str] = None
    offset: Optional[int] = None
    filters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ListPage:
    """One page of latest items.

    ``count`` is the number of items in this page for every backend. It is
    not a total over all matching items.
    """

    items: List[Item]
    next_token: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.items)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"items": self.items, "count": self.count}
        if self.next_token:
            out["nextToken"] = self.next_token
        return out


@runtime_checkable
class ItemStore(Protocol):
    def create(self, payload: Mapping[str, Any]) -> Item:
        """Persist version 1 of a new item and return it."""
        ...

    def get_latest(self, item_id: str) -> Item:
        """Return the highest version of ``item_id``. Raises ItemNotFound."""
        ...

    def update(self, item_id: str, changes: Mapping[str, Any]) -> Item:
        """Append a version with ``changes`` applied. Raises ItemNotFound."""
        ...

    def create_version(self, item_id: str) -> Item:
        """Append a copy of the current payload as a new version. Raises ItemNotFound."""
        ...

    def list_latest(self, query: Optional[ListQuery] = None) -> ListPage:
        """Latest versions only, most recently modified first."""
        ...

    def audit_trail(self, item_id: str) -> List[Item]:
        """Every version in ascending order; empty for an unknown id."""
        ...


def clamp_limit(limit: Optional[int], default: int, maximum: int) -> int:
    if limit is None:
        return default
    return max(1, min(int(limit), maximum))
