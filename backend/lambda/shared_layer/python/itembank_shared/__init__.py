"""itembank_shared — Versioned exam item store for the itembank Lambdas.

Provides:
    - ItemStore contract with in-memory and DynamoDB backends
    - Backend selection from environment configuration
    - Opaque continuation tokens for latest-item listing
    - DynamoDB serialization helpers and a lazy client singleton
"""

from itembank_shared.errors import (
    BackendUnavailable,
    ConflictingWrite,
    InvalidContinuationToken,
    ItemNotFound,
    ItemStoreError,
)
from itembank_shared.interface import ItemStore, ListPage, ListQuery
from itembank_shared.storage import create_store

__all__ = [
    "BackendUnavailable",
    "ConflictingWrite",
    "InvalidContinuationToken",
    "ItemNotFound",
    "ItemStore",
    "ItemStoreError",
    "ListPage",
    "ListQuery",
    "create_store",
]

__version__ = "1.0.0"
