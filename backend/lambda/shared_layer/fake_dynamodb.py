"""fake_dynamodb.py — Minimal in-process stand-in for the DynamoDB client calls
made by itembank_shared.dynamodb. Test support only.

Understands exactly the request shapes DynamoItemStore sends:
    put_item     with optional attribute_not_exists(#id) condition
    update_item  the latest-flag demotion
    query        by id on the table, or by latestVersion on the index,
                 with Limit / ExclusiveStartKey / FilterExpression
"""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional, Tuple

from boto3.dynamodb.types import TypeDeserializer
from botocore.exceptions import ClientError

_DESER = TypeDeserializer()

_KEY_ATTRS = ("id", "version")
_INDEX_KEY_ATTRS = ("id", "version", "latestVersion", "lastModified")


def _plain(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {k: _DESER.deserialize(v) for k, v in raw.items()}


def _conditional_failure(operation: str) -> ClientError:
    return ClientError(
        {"Error": {"Code": "ConditionalCheckFailedException", "Message": "The conditional request failed"}},
        operation,
    )


class FakeDynamoClient:
    def __init__(self, table_name: str = "ExamItems", index_name: str = "LatestVersionIndex"):
        self.table_name = table_name
        self.index_name = index_name
        self.records: Dict[Tuple[str, int], Dict[str, Any]] = {}
        self.calls: List[str] = []

    def _key(self, raw: Dict[str, Any]) -> Tuple[str, int]:
        return raw["id"]["S"], int(raw["version"]["N"])

    def _check_table(self, table_name: str) -> None:
        assert table_name == self.table_name, f"unexpected table {table_name}"

    def put_item(self, TableName: str, Item: Dict[str, Any], ConditionExpression: Optional[str] = None,
                 ExpressionAttributeNames: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        self._check_table(TableName)
        self.calls.append("put_item")
        key = self._key(Item)
        if ConditionExpression:
            assert ConditionExpression == "attribute_not_exists(#id)"
            if key in self.records:
                raise _conditional_failure("PutItem")
        self.records[key] = copy.deepcopy(Item)
        return {}

    def update_item(self, TableName: str, Key: Dict[str, Any], UpdateExpression: str,
                    ConditionExpression: str, ExpressionAttributeNames: Dict[str, str],
                    ExpressionAttributeValues: Dict[str, Any]) -> Dict[str, Any]:
        self._check_table(TableName)
        self.calls.append("update_item")
        assert UpdateExpression == "SET #lv = :false, #meta.#isLatest = :no"
        key = self._key(Key)
        record = self.records.get(key)
        if record is None:
            raise _conditional_failure("UpdateItem")
        record["latestVersion"] = ExpressionAttributeValues[":false"]
        record["metadata"]["M"]["isLatest"] = ExpressionAttributeValues[":no"]
        return {}

    def query(self, TableName: str, KeyConditionExpression: str, ExpressionAttributeValues: Dict[str, Any],
              ExpressionAttributeNames: Optional[Dict[str, str]] = None, IndexName: Optional[str] = None,
              ScanIndexForward: bool = True, Limit: Optional[int] = None,
              ExclusiveStartKey: Optional[Dict[str, Any]] = None, FilterExpression: Optional[str] = None,
              ConsistentRead: bool = False) -> Dict[str, Any]:
        self._check_table(TableName)
        self.calls.append("query")
        names = ExpressionAttributeNames or {}

        if IndexName:
            assert IndexName == self.index_name
            assert not ConsistentRead, "GSI queries cannot be consistent"
            flag = ExpressionAttributeValues[":lv"]
            candidates = [r for r in self.records.values() if r["latestVersion"] == flag]

            def sort_key(r):
                return int(r["lastModified"]["N"]), r["id"]["S"], int(r["version"]["N"])

            key_attrs = _INDEX_KEY_ATTRS
        else:
            item_id = ExpressionAttributeValues[":id"]
            candidates = [r for r in self.records.values() if r["id"] == item_id]

            def sort_key(r):
                return int(r["version"]["N"])

            key_attrs = _KEY_ATTRS

        candidates.sort(key=sort_key, reverse=not ScanIndexForward)

        if ExclusiveStartKey:
            start = sort_key(ExclusiveStartKey)
            keys = [sort_key(r) for r in candidates]
            candidates = candidates[keys.index(start) + 1:] if start in keys else []

        evaluated = candidates[:Limit] if Limit else candidates
        remaining = len(candidates) > len(evaluated)

        found = [r for r in evaluated if self._passes(r, FilterExpression, names, ExpressionAttributeValues)]
        resp: Dict[str, Any] = {"Items": copy.deepcopy(found), "Count": len(found)}
        if remaining and evaluated:
            last = evaluated[-1]
            resp["LastEvaluatedKey"] = {a: copy.deepcopy(last[a]) for a in key_attrs}
        return resp

    @staticmethod
    def _passes(record: Dict[str, Any], expression: Optional[str], names: Dict[str, str],
                values: Dict[str, Any]) -> bool:
        if not expression:
            return True
        plain = _plain(record)
        for clause in expression.split(" AND "):
            lhs, rhs = [part.strip() for part in clause.split("=")]
            value: Any = plain
            for placeholder in lhs.split("."):
                value = value.get(names[placeholder]) if isinstance(value, dict) else None
            if value != _DESER.deserialize(values[rhs]):
                return False
        return True
