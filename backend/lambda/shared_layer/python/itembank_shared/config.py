"""itembank_shared.config — Environment configuration and logging.

Every setting is read once at import time, the same way the Lambda runtime
sees it on a cold start. Tests override the module attributes directly.
"""

from __future__ import annotations

import logging
import os

__all__ = [
    "CORS_ORIGIN",
    "DEFAULT_PAGE_SIZE",
    "DYNAMODB_ENDPOINT",
    "DYNAMODB_REGION",
    "ITEMS_TABLE",
    "LATEST_VERSION_INDEX",
    "LOG_LEVEL",
    "MAX_PAGE_SIZE",
    "USE_DYNAMODB",
    "WRITE_POLICY",
    "WRITE_POLICY_FENCE",
    "WRITE_POLICY_LWW",
    "logger",
]


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger(__name__).warning("Invalid %s=%r; using %d", name, raw, default)
        return default


# ---------------------------------------------------------------------------
# Backend selection
# ---------------------------------------------------------------------------

USE_DYNAMODB: bool = _env_flag("USE_DYNAMODB")
ITEMS_TABLE: str = os.environ.get("ITEMS_TABLE") or os.environ.get("DYNAMODB_TABLE_NAME", "ExamItems")
LATEST_VERSION_INDEX: str = os.environ.get("LATEST_VERSION_INDEX", "LatestVersionIndex")
DYNAMODB_ENDPOINT: str = os.environ.get("DYNAMODB_ENDPOINT", "").strip()
DYNAMODB_REGION: str = os.environ.get("DYNAMODB_REGION") or os.environ.get("AWS_REGION", "us-east-1")

# version-fence: the new version's put is conditional on the key being unused,
# so two updates that read the same latest cannot both land.
# last-writer-wins: unconditional put; a racing update may be silently lost.
WRITE_POLICY_FENCE = "version-fence"
WRITE_POLICY_LWW = "last-writer-wins"
WRITE_POLICY: str = os.environ.get("ITEM_STORE_WRITE_POLICY", WRITE_POLICY_FENCE).strip().lower()

# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------

DEFAULT_PAGE_SIZE: int = _env_int("DEFAULT_PAGE_SIZE", 10)
MAX_PAGE_SIZE: int = _env_int("MAX_PAGE_SIZE", 100)

# ---------------------------------------------------------------------------
# HTTP / logging
# ---------------------------------------------------------------------------

CORS_ORIGIN: str = os.environ.get("CORS_ORIGIN", "*")
LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO").upper()

logger = logging.getLogger("itembank")
logger.setLevel(LOG_LEVEL)
