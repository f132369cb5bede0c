"""itembank_shared.memory — In-process ItemStore for tests and local development.

Data is lost when the process exits. Holds two maps: ``id -> latest`` and
``id -> every version in ascending order``. A single lock covers each
read-modify-write so concurrent callers never lose an update, and the two
maps are always mutually consistent.
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional

from itembank_shared import config
from itembank_shared.errors import InvalidContinuationToken, ItemNotFound
from itembank_shared.interface import ListPage, ListQuery, clamp_limit
from itembank_shared.models import (
    Item,
    demoted,
    last_modified_of,
    matches,
    new_item,
    next_version,
    snapshot_version,
)
from itembank_shared.pagination import decode_token, encode_token
from itembank_shared.serialization import _now_ms

logger = logging.getLogger(__name__)


class MemoryItemStore:
    def __init__(self, clock: Callable[[], int] = _now_ms):
        self._clock = clock
        self._latest: Dict[str, Item] = {}
        self._history: Dict[str, List[Item]] = {}
        self._lock = threading.RLock()

    def create(self, payload: Mapping[str, Any]) -> Item:
        with self._lock:
            item = new_item(payload, self._clock())
            self._latest[item["id"]] = item
            self._history[item["id"]] = [copy.deepcopy(item)]
        logger.info("item created: %s", item["id"])
        return copy.deepcopy(item)

    def get_latest(self, item_id: str) -> Item:
        with self._lock:
            item = self._latest.get(item_id)
            if item is None:
                raise ItemNotFound(item_id)
            return copy.deepcopy(item)

    def update(self, item_id: str, changes: Mapping[str, Any]) -> Item:
        return self._append(item_id, lambda latest: next_version(latest, changes, self._clock()))

    def create_version(self, item_id: str) -> Item:
        return self._append(item_id, lambda latest: snapshot_version(latest, self._clock()))

    def _append(self, item_id: str, build: Callable[[Item], Item]) -> Item:
        with self._lock:
            latest = self._latest.get(item_id)
            if latest is None:
                raise ItemNotFound(item_id)
            item = build(latest)
            history = self._history.setdefault(item_id, [])
            if history:
                history[-1] = demoted(history[-1])
            history.append(copy.deepcopy(item))
            self._latest[item_id] = item
        logger.info("item version appended: %s v%d", item_id, item["metadata"]["version"])
        return copy.deepcopy(item)

    def list_latest(self, query: Optional[ListQuery] = None) -> ListPage:
        query = query or ListQuery()
        limit = clamp_limit(query.limit, config.DEFAULT_PAGE_SIZE, config.MAX_PAGE_SIZE)
        start = self._start_position(query)

        with self._lock:
            found = [item for item in self._latest.values() if matches(item, query.filters)]
            found.sort(key=lambda item: (last_modified_of(item), item["id"]), reverse=True)
            page = [copy.deepcopy(item) for item in found[start:start + limit]]
            end = start + len(page)
            has_more = end < len(found)

        return ListPage(items=page, next_token=encode_token({"offset": end}) if has_more else None)

    @staticmethod
    def _start_position(query: ListQuery) -> int:
        if query.next_token:
            position = decode_token(query.next_token)
            offset = position.get("offset")
            if not isinstance(offset, int) or isinstance(offset, bool) or offset < 0:
                raise InvalidContinuationToken("not an in-memory position")
            return offset
        return max(0, int(query.offset or 0))

    def audit_trail(self, item_id: str) -> List[Item]:
        with self._lock:
            return copy.deepcopy(self._history.get(item_id, []))
