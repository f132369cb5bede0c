"""itembank_shared.storage — Backend selection.

``USE_DYNAMODB=true`` selects the DynamoDB backend; anything else gets the
in-memory backend, which keeps local development free of AWS setup.
"""

from __future__ import annotations

import logging
from typing import Optional

from itembank_shared import config
from itembank_shared.dynamodb import DynamoItemStore
from itembank_shared.interface import ItemStore
from itembank_shared.memory import MemoryItemStore

logger = logging.getLogger(__name__)

__all__ = ["create_store"]


def create_store(use_dynamodb: Optional[bool] = None) -> ItemStore:
    if use_dynamodb is None:
        use_dynamodb = config.USE_DYNAMODB
    if use_dynamodb:
        logger.info(
            "Using DynamoDB item storage: table=%s index=%s endpoint=%s policy=%s",
            config.ITEMS_TABLE,
            config.LATEST_VERSION_INDEX,
            config.DYNAMODB_ENDPOINT or "default",
            config.WRITE_POLICY,
        )
        return DynamoItemStore()
    logger.info("Using in-memory item storage")
    return MemoryItemStore()
