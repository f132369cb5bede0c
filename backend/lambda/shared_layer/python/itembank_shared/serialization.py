"""itembank_shared.serialization — DynamoDB serialization/deserialization.

TypeSerializer/TypeDeserializer wrappers plus the epoch-millis clock used
for ``created``/``lastModified``.
"""

from __future__ import annotations

import time
from decimal import Decimal
from typing import Any, Dict

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

__all__ = [
    "_deserialize",
    "_deserialize_value",
    "_now_ms",
    "_serialize",
    "_serialize_item",
]

_SER = TypeSerializer()
_DESER = TypeDeserializer()


def _to_ddb_safe(value: Any) -> Any:
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_ddb_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_ddb_safe(v) for v in value]
    return value


def _from_ddb(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == int(value) else float(value)
    if isinstance(value, dict):
        return {k: _from_ddb(v) for k, v in value.items()}
    if isinstance(value, (list, set)):
        return [_from_ddb(v) for v in value]
    return value


def _serialize(value: Any) -> Dict[str, Any]:
    """Serialize a Python value for DynamoDB (floats become Decimal)."""
    return _SER.serialize(_to_ddb_safe(value))


def _serialize_item(item: Dict[str, Any]) -> Dict[str, Any]:
    return {k: _serialize(v) for k, v in item.items() if v is not None}


def _deserialize_value(attr: Dict[str, Any]) -> Any:
    return _from_ddb(_DESER.deserialize(attr))


def _deserialize(item: Dict[str, Any]) -> Dict[str, Any]:
    """Deserialize a DynamoDB item to a plain Python dict, Decimals included."""
    return {k: _deserialize_value(v) for k, v in item.items()}


def _now_ms() -> int:
    """Current Unix epoch in milliseconds."""
    return int(time.time() * 1000)
