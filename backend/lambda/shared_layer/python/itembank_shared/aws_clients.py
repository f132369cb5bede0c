"""itembank_shared.aws_clients — Lazy-singleton DynamoDB client.

The client is built on first use so cold starts that only hit the
in-memory backend never construct one. ``DYNAMODB_ENDPOINT`` points it at
DynamoDB Local for development.
"""

from __future__ import annotations

from typing import Optional

import boto3
from botocore.config import Config

from itembank_shared import config

__all__ = ["_get_ddb", "_reset_clients"]

_ddb = None


def _get_ddb(region: Optional[str] = None, endpoint: Optional[str] = None):
    """Get (or create) the DynamoDB client singleton."""
    global _ddb
    if _ddb is None:
        kwargs = {
            "region_name": region or config.DYNAMODB_REGION,
            "config": Config(retries={"max_attempts": 5, "mode": "standard"}),
        }
        endpoint_url = endpoint or config.DYNAMODB_ENDPOINT
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        _ddb = boto3.client("dynamodb", **kwargs)
    return _ddb


def _reset_clients() -> None:
    global _ddb
    _ddb = None
