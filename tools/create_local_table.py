#!/usr/bin/env python3
"""Create the exam items table (and its latest-version index) in DynamoDB Local.

Usage:
    python3 tools/create_local_table.py --endpoint http://localhost:8000

The schema matches what itembank_shared.dynamodb expects:
    id (S, HASH) + version (N, RANGE)
    LatestVersionIndex: latestVersion (S, HASH) + lastModified (N, RANGE), projection ALL
"""

from __future__ import annotations

import argparse
import os
import sys
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError


def table_definition(table_name: str, index_name: str) -> Dict[str, Any]:
    return {
        "TableName": table_name,
        "AttributeDefinitions": [
            {"AttributeName": "id", "AttributeType": "S"},
            {"AttributeName": "version", "AttributeType": "N"},
            # "true"/"false": index keys cannot be booleans.
            {"AttributeName": "latestVersion", "AttributeType": "S"},
            {"AttributeName": "lastModified", "AttributeType": "N"},
        ],
        "KeySchema": [
            {"AttributeName": "id", "KeyType": "HASH"},
            {"AttributeName": "version", "KeyType": "RANGE"},
        ],
        "GlobalSecondaryIndexes": [
            {
                "IndexName": index_name,
                "KeySchema": [
                    {"AttributeName": "latestVersion", "KeyType": "HASH"},
                    {"AttributeName": "lastModified", "KeyType": "RANGE"},
                ],
                "Projection": {"ProjectionType": "ALL"},
            }
        ],
        "BillingMode": "PAY_PER_REQUEST",
    }


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument(
        "--endpoint",
        default=os.environ.get("DYNAMODB_ENDPOINT") or "http://localhost:8000",
        help="DynamoDB endpoint URL (default: $DYNAMODB_ENDPOINT or http://localhost:8000)",
    )
    parser.add_argument(
        "--table",
        default=os.environ.get("ITEMS_TABLE") or os.environ.get("DYNAMODB_TABLE_NAME", "ExamItems"),
    )
    parser.add_argument("--index", default=os.environ.get("LATEST_VERSION_INDEX", "LatestVersionIndex"))
    parser.add_argument("--region", default=os.environ.get("DYNAMODB_REGION", "us-east-1"))
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    client = boto3.client("dynamodb", region_name=args.region, endpoint_url=args.endpoint)

    print(f"[INFO] Creating table '{args.table}' at {args.endpoint}...")
    try:
        resp = client.create_table(**table_definition(args.table, args.index))
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") == "ResourceInUseException":
            print(f"[OK] Table '{args.table}' already exists. Skipping creation.")
            return 0
        print(f"[ERROR] Failed to create table: {exc}")
        return 1
    except BotoCoreError as exc:
        print(f"[ERROR] Failed to reach DynamoDB at {args.endpoint}: {exc}")
        return 1

    desc = resp.get("TableDescription") or {}
    print(f"[OK] Table '{args.table}' created.")
    print(f"  Table ARN: {desc.get('TableArn', '')}")
    print(f"  Table Status: {desc.get('TableStatus', '')}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
