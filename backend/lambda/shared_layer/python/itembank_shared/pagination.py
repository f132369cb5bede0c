"""itembank_shared.pagination — Opaque continuation tokens.

A token wraps a backend's resume position (DynamoDB's LastEvaluatedKey, or
the in-memory backend's offset) in a versioned envelope, encoded as
URL-safe base64 of compact JSON. Callers must never build or inspect one.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Dict

from itembank_shared.errors import InvalidContinuationToken

__all__ = ["TOKEN_FORMAT_VERSION", "decode_token", "encode_token"]

TOKEN_FORMAT_VERSION = 1


def encode_token(position: Dict[str, Any]) -> str:
    envelope = {"v": TOKEN_FORMAT_VERSION, "k": position}
    raw = json.dumps(envelope, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_token(token: str) -> Dict[str, Any]:
    if not isinstance(token, str) or not token.strip():
        raise InvalidContinuationToken("empty token")
    text = token.strip()
    padded = text + "=" * (-len(text) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        envelope = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise InvalidContinuationToken("not a valid token encoding") from exc

    if not isinstance(envelope, dict) or envelope.get("v") != TOKEN_FORMAT_VERSION:
        raise InvalidContinuationToken("unsupported token format")
    position = envelope.get("k")
    if not isinstance(position, dict) or not position:
        raise InvalidContinuationToken("missing resume position")
    return position
