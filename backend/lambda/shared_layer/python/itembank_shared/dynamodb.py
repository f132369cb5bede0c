"""itembank_shared.dynamodb — DynamoDB-backed ItemStore.

Table layout (see tools/create_local_table.py):

    Primary key       id (S, HASH)  + version (N, RANGE)
    LatestVersionIndex latestVersion (S, HASH) + lastModified (N, RANGE), projection ALL

Every version is its own record holding the full item plus three top-level
key attributes copied out of ``metadata``: ``version``, ``lastModified`` and
``latestVersion`` ("true"/"false", since index keys cannot be booleans).
Those attributes are stripped again before an item is returned.

Access patterns:
    get_latest   Query id, version DESC, Limit 1
    audit_trail  Query id, version ASC, all pages
    list_latest  Query LatestVersionIndex latestVersion="true", lastModified DESC

Known race (no multi-record transaction is used):
    update/create_version write twice: demote the old latest, then put the
    new one. Between the two writes a concurrent list_latest can see zero
    latest records for the id (never two). Two updates racing on one id both
    read version N and both try to write N+1:

    - version-fence (default): the put of N+1 is conditional on the key not
      existing, so the loser gets ConflictingWrite and should re-read and
      retry.
    - last-writer-wins: the put is unconditional; the later write silently
      replaces the earlier one.

    The demotion is idempotent, so an interrupted update leaves the item
    readable through get_latest and the next update repairs the index.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from botocore.exceptions import BotoCoreError, ClientError

from itembank_shared import config
from itembank_shared.aws_clients import _get_ddb
from itembank_shared.errors import (
    BackendUnavailable,
    ConflictingWrite,
    InvalidContinuationToken,
    ItemNotFound,
)
from itembank_shared.interface import ListPage, ListQuery, clamp_limit
from itembank_shared.models import (
    FILTER_FIELDS,
    Item,
    LatestFlag,
    last_modified_of,
    new_item,
    next_version,
    snapshot_version,
    version_of,
)
from itembank_shared.pagination import decode_token, encode_token
from itembank_shared.serialization import _deserialize, _now_ms, _serialize, _serialize_item

logger = logging.getLogger(__name__)

# Top-level attributes that exist only to serve the primary key and the index.
INDEX_ATTRIBUTES = ("version", "latestVersion", "lastModified")
_START_KEY_ATTRIBUTES = ("id", "version", "latestVersion", "lastModified")


def _to_record(item: Mapping[str, Any]) -> Dict[str, Any]:
    metadata = item.get("metadata") or {}
    record = dict(item)
    record["version"] = version_of(item)
    record["lastModified"] = last_modified_of(item)
    record["latestVersion"] = LatestFlag.of(bool(metadata.get("isLatest"))).value
    return record


def _from_record(record: Mapping[str, Any]) -> Item:
    item = {k: v for k, v in record.items() if k not in INDEX_ATTRIBUTES}
    metadata = dict(item.get("metadata") or {})
    metadata["isLatest"] = LatestFlag(record.get("latestVersion", LatestFlag.FALSE.value)).is_latest
    item["metadata"] = metadata
    return item


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


class DynamoItemStore:
    def __init__(
        self,
        table_name: Optional[str] = None,
        index_name: Optional[str] = None,
        client: Any = None,
        write_policy: Optional[str] = None,
        clock: Callable[[], int] = _now_ms,
    ):
        self.table_name = table_name or config.ITEMS_TABLE
        self.index_name = index_name or config.LATEST_VERSION_INDEX
        self.write_policy = (write_policy or config.WRITE_POLICY).strip().lower()
        if self.write_policy not in (config.WRITE_POLICY_FENCE, config.WRITE_POLICY_LWW):
            raise ValueError(f"Unknown write policy: {self.write_policy}")
        self._client = client
        self._clock = clock

    @property
    def client(self):
        if self._client is None:
            self._client = _get_ddb()
        return self._client

    # ------------------------------------------------------------------
    # Low-level calls
    # ------------------------------------------------------------------

    def _call(self, operation: str, **params: Any) -> Dict[str, Any]:
        """Invoke a client method, turning I/O failures into BackendUnavailable.

        Conditional check failures are re-raised untouched for the caller.
        """
        try:
            return getattr(self.client, operation)(TableName=self.table_name, **params)
        except ClientError as exc:
            if _error_code(exc) == "ConditionalCheckFailedException":
                raise
            logger.error("%s on %s failed: %s", operation, self.table_name, exc)
            raise BackendUnavailable(operation, _error_code(exc) or str(exc)) from exc
        except BotoCoreError as exc:
            logger.error("%s on %s failed: %s", operation, self.table_name, exc)
            raise BackendUnavailable(operation, str(exc)) from exc

    def _query_latest_record(self, item_id: str) -> Optional[Dict[str, Any]]:
        resp = self._call(
            "query",
            KeyConditionExpression="#id = :id",
            ExpressionAttributeNames={"#id": "id"},
            ExpressionAttributeValues={":id": _serialize(item_id)},
            ScanIndexForward=False,
            Limit=1,
            ConsistentRead=True,
        )
        items = resp.get("Items") or []
        if not items:
            return None
        return _deserialize(items[0])

    def _put_new(self, item: Item) -> None:
        params: Dict[str, Any] = {"Item": _serialize_item(_to_record(item))}
        if self.write_policy == config.WRITE_POLICY_FENCE:
            params["ConditionExpression"] = "attribute_not_exists(#id)"
            params["ExpressionAttributeNames"] = {"#id": "id"}
        try:
            self._call("put_item", **params)
        except ClientError as exc:
            logger.warning("version collision: %s v%d", item["id"], version_of(item))
            raise ConflictingWrite(item["id"], version_of(item)) from exc

    def _demote(self, item_id: str, version: int) -> None:
        try:
            self._call(
                "update_item",
                Key={"id": _serialize(item_id), "version": _serialize(version)},
                UpdateExpression="SET #lv = :false, #meta.#isLatest = :no",
                ConditionExpression="attribute_exists(#id)",
                ExpressionAttributeNames={
                    "#id": "id",
                    "#lv": "latestVersion",
                    "#meta": "metadata",
                    "#isLatest": "isLatest",
                },
                ExpressionAttributeValues={
                    ":false": _serialize(LatestFlag.FALSE.value),
                    ":no": _serialize(False),
                },
            )
        except ClientError as exc:
            raise ConflictingWrite(item_id, version) from exc

    # ------------------------------------------------------------------
    # ItemStore
    # ------------------------------------------------------------------

    def create(self, payload: Mapping[str, Any]) -> Item:
        item = new_item(payload, self._clock())
        try:
            self._call(
                "put_item",
                Item=_serialize_item(_to_record(item)),
                ConditionExpression="attribute_not_exists(#id)",
                ExpressionAttributeNames={"#id": "id"},
            )
        except ClientError as exc:
            raise ConflictingWrite(item["id"], 1) from exc
        logger.info("item created: %s", item["id"])
        return item

    def get_latest(self, item_id: str) -> Item:
        record = self._query_latest_record(item_id)
        if record is None:
            raise ItemNotFound(item_id)
        return _from_record(record)

    def update(self, item_id: str, changes: Mapping[str, Any]) -> Item:
        return self._append(item_id, lambda latest: next_version(latest, changes, self._clock()))

    def create_version(self, item_id: str) -> Item:
        return self._append(item_id, lambda latest: snapshot_version(latest, self._clock()))

    def _append(self, item_id: str, build: Callable[[Item], Item]) -> Item:
        record = self._query_latest_record(item_id)
        if record is None:
            raise ItemNotFound(item_id)
        latest = _from_record(record)
        item = build(latest)

        # Demote first: readers briefly see no latest version rather than two.
        self._demote(item_id, version_of(latest))
        self._put_new(item)
        logger.info("item version appended: %s v%d", item_id, version_of(item))
        return item

    def list_latest(self, query: Optional[ListQuery] = None) -> ListPage:
        query = query or ListQuery()
        limit = clamp_limit(query.limit, config.DEFAULT_PAGE_SIZE, config.MAX_PAGE_SIZE)

        names: Dict[str, str] = {"#lv": "latestVersion"}
        values: Dict[str, Any] = {":lv": _serialize(LatestFlag.TRUE.value)}
        params: Dict[str, Any] = {
            "IndexName": self.index_name,
            "KeyConditionExpression": "#lv = :lv",
            "ScanIndexForward": False,  # newest first
            "Limit": limit,
        }

        # Filters are applied by DynamoDB after Limit, so a page may come back
        # short even though more matches exist further along the index.
        clauses: List[str] = []
        for i, (name, expected) in enumerate(sorted((query.filters or {}).items())):
            path = FILTER_FIELDS.get(name)
            if path is None:
                raise ValueError(f"Unsupported filter: {name}")
            parts = []
            for j, segment in enumerate(path):
                placeholder = f"#f{i}_{j}"
                names[placeholder] = segment
                parts.append(placeholder)
            values[f":f{i}"] = _serialize(expected)
            clauses.append(f"{'.'.join(parts)} = :f{i}")
        if clauses:
            params["FilterExpression"] = " AND ".join(clauses)

        params["ExpressionAttributeNames"] = names
        params["ExpressionAttributeValues"] = values

        if query.next_token:
            params["ExclusiveStartKey"] = self._start_key(query.next_token)

        resp = self._call("query", **params)
        items = [_from_record(_deserialize(raw)) for raw in resp.get("Items") or []]
        last_key = resp.get("LastEvaluatedKey")
        return ListPage(items=items, next_token=encode_token(last_key) if last_key else None)

    @staticmethod
    def _start_key(token: str) -> Dict[str, Any]:
        position = decode_token(token)
        for attr in _START_KEY_ATTRIBUTES:
            value = position.get(attr)
            if not isinstance(value, dict) or len(value) != 1:
                raise InvalidContinuationToken("not a latest-index position")
        if position["latestVersion"] != {"S": LatestFlag.TRUE.value}:
            raise InvalidContinuationToken("not a latest-index position")
        return position

    def audit_trail(self, item_id: str) -> List[Item]:
        params: Dict[str, Any] = {
            "KeyConditionExpression": "#id = :id",
            "ExpressionAttributeNames": {"#id": "id"},
            "ExpressionAttributeValues": {":id": _serialize(item_id)},
            "ScanIndexForward": True,
            "ConsistentRead": True,
        }
        out: List[Item] = []
        while True:
            resp = self._call("query", **params)
            out.extend(_from_record(_deserialize(raw)) for raw in resp.get("Items") or [])
            lek = resp.get("LastEvaluatedKey")
            if not lek:
                break
            params["ExclusiveStartKey"] = lek
        return out
