"""itembank_shared.models — Exam item shape and version arithmetic.

Items are plain JSON-shaped dicts:

    {
        "id": "...",
        "subject": "AP Biology",
        "itemType": "multiple-choice",
        "difficulty": 3,
        "content": {"question", "options", "correctAnswer", "explanation"},
        "metadata": {"author", "status", "tags",
                     "version", "created", "lastModified", "isLatest"},
        "securityLevel": "standard",
    }

The version keys inside ``metadata`` belong to the store. Callers may send
them in a payload but they are always overwritten. Top-level keys outside
``DOMAIN_FIELDS`` (including ``id``) are dropped.
"""

from __future__ import annotations

import copy
import enum
import uuid
from typing import Any, Dict, Mapping, Optional, Tuple

Item = Dict[str, Any]

__all__ = [
    "DOMAIN_FIELDS",
    "FILTER_FIELDS",
    "ITEM_STATUSES",
    "ITEM_TYPES",
    "Item",
    "LatestFlag",
    "MERGED_GROUPS",
    "SECURITY_LEVELS",
    "VERSION_KEYS",
    "demoted",
    "field_value",
    "last_modified_of",
    "matches",
    "new_item",
    "next_version",
    "snapshot_version",
    "version_of",
]

DOMAIN_FIELDS = ("subject", "itemType", "difficulty", "content", "metadata", "securityLevel")
# Field groups merged key-by-key on update; everything else is replaced.
MERGED_GROUPS = ("content", "metadata")
VERSION_KEYS = ("version", "created", "lastModified", "isLatest")

ITEM_TYPES = ("multiple-choice", "free-response", "essay")
ITEM_STATUSES = ("draft", "review", "approved", "archived")
SECURITY_LEVELS = ("standard", "secure", "highly-secure")

# Equality filters accepted by list_latest, mapped to their path in the item.
FILTER_FIELDS: Dict[str, Tuple[str, ...]] = {
    "subject": ("subject",),
    "status": ("metadata", "status"),
    "itemType": ("itemType",),
    "securityLevel": ("securityLevel",),
}


class LatestFlag(str, enum.Enum):
    """Value of the latest-version index partition key."""

    TRUE = "true"
    FALSE = "false"

    @classmethod
    def of(cls, is_latest: bool) -> "LatestFlag":
        return cls.TRUE if is_latest else cls.FALSE

    @property
    def is_latest(self) -> bool:
        return self is LatestFlag.TRUE


def version_of(item: Mapping[str, Any]) -> int:
    return int((item.get("metadata") or {}).get("version", 0))


def last_modified_of(item: Mapping[str, Any]) -> int:
    return int((item.get("metadata") or {}).get("lastModified", 0))


def field_value(item: Mapping[str, Any], path: Tuple[str, ...]) -> Any:
    value: Any = item
    for part in path:
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
    return value


def matches(item: Mapping[str, Any], filters: Optional[Mapping[str, Any]]) -> bool:
    """True when every filter equals the item's value at the filter's path."""
    for name, expected in (filters or {}).items():
        path = FILTER_FIELDS.get(name)
        if path is None:
            raise ValueError(f"Unsupported filter: {name}")
        if field_value(item, path) != expected:
            return False
    return True


def _domain_copy(payload: Mapping[str, Any]) -> Item:
    out: Item = {}
    for key, value in payload.items():
        if key not in DOMAIN_FIELDS:
            continue
        if key in MERGED_GROUPS:
            value = {k: v for k, v in (value or {}).items() if not (key == "metadata" and k in VERSION_KEYS)}
        out[key] = copy.deepcopy(value)
    return out


def new_item(payload: Mapping[str, Any], now_ms: int, item_id: Optional[str] = None) -> Item:
    """Build version 1 of a new item from a validated create payload."""
    item = _domain_copy(payload)
    item["id"] = item_id or str(uuid.uuid4())
    metadata = dict(item.get("metadata") or {})
    metadata.update({
        "created": now_ms,
        "lastModified": now_ms,
        "version": 1,
        "isLatest": True,
    })
    item["metadata"] = metadata
    return item


def next_version(latest: Mapping[str, Any], changes: Mapping[str, Any], now_ms: int) -> Item:
    """Apply ``changes`` on top of ``latest`` and stamp the following version.

    ``content`` and ``metadata`` are merged key by key; other fields present
    in ``changes`` replace the previous value. ``lastModified`` always moves
    forward, even if the clock has not.
    """
    item = copy.deepcopy(dict(latest))
    for key, value in _domain_copy(changes).items():
        if key in MERGED_GROUPS and isinstance(value, Mapping):
            merged = dict(item.get(key) or {})
            merged.update(value)
            item[key] = merged
        else:
            item[key] = value

    prev_meta = latest.get("metadata") or {}
    metadata = dict(item.get("metadata") or {})
    metadata.update({
        "version": int(prev_meta.get("version", 0)) + 1,
        "created": prev_meta.get("created", now_ms),
        "lastModified": max(int(now_ms), int(prev_meta.get("lastModified", 0)) + 1),
        "isLatest": True,
    })
    item["metadata"] = metadata
    return item


def snapshot_version(latest: Mapping[str, Any], now_ms: int) -> Item:
    """Checkpoint: the current payload unchanged under the next version number."""
    return next_version(latest, {}, now_ms)


def demoted(item: Mapping[str, Any]) -> Item:
    out = copy.deepcopy(dict(item))
    metadata = dict(out.get("metadata") or {})
    metadata["isLatest"] = False
    out["metadata"] = metadata
    return out
