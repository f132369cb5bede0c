"""itembank_shared.errors — Store error taxonomy.

Handlers map these to HTTP status codes:
    ItemNotFound              -> 404
    InvalidContinuationToken  -> 400
    ConflictingWrite          -> 409
    BackendUnavailable        -> 500
"""

from __future__ import annotations

from typing import Optional


class ItemStoreError(Exception):
    """Base class for every error raised by an ItemStore backend."""


class ItemNotFound(ItemStoreError):
    def __init__(self, item_id: str):
        super().__init__(f"Item not found: {item_id}")
        self.item_id = item_id


class InvalidContinuationToken(ItemStoreError, ValueError):
    def __init__(self, reason: str = "malformed token"):
        super().__init__(f"Invalid continuation token: {reason}")
        self.reason = reason


class BackendUnavailable(ItemStoreError):
    """I/O failure against the underlying service. Never retried by the store."""

    def __init__(self, operation: str, detail: Optional[str] = None):
        message = f"Backend unavailable during {operation}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.operation = operation


class ConflictingWrite(ItemStoreError):
    """Another writer produced the same version first; re-read and retry."""

    def __init__(self, item_id: str, version: int):
        super().__init__(
            f"Item {item_id} was modified concurrently (version {version} already exists)."
        )
        self.item_id = item_id
        self.version = version
