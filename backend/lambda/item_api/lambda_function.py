"""item_api/lambda_function.py

Lambda API for versioned exam items.
Creates, reads, updates, versions and lists items, and returns the full
version history of an item. Storage is delegated to itembank_shared.

Routes (via API Gateway proxy, REST v1 or HTTP v2 payloads):
    POST    /api/items                      — create item (version 1)
    GET     /api/items?<filters>            — list latest versions
    GET     /api/items/{id}                 — latest version of one item
    PUT     /api/items/{id}                 — partial update, new version
    POST    /api/items/{id}/versions        — checkpoint current payload as new version
    GET     /api/items/{id}/audit           — every version, ascending
    OPTIONS /api/items[/*]                  — CORS preflight

List query parameters:
    limit (1-100), nextToken, offset (in-memory only),
    subject, status, itemType, securityLevel

List responses are {"items", "count", "nextToken"?}. "count" is the number of
items in the returned page and replaces the earlier "total" field; no total
over all matches is reported. Keep paging while "nextToken" is present.

Environment variables:
    USE_DYNAMODB             "true" for DynamoDB, default in-memory
    ITEMS_TABLE              default: ExamItems
    LATEST_VERSION_INDEX     default: LatestVersionIndex
    DYNAMODB_ENDPOINT        optional, e.g. http://localhost:8000
    DYNAMODB_REGION          default: us-east-1
    ITEM_STORE_WRITE_POLICY  version-fence | last-writer-wins
    CORS_ORIGIN              default: *
"""

from __future__ import annotations

import base64
import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from itembank_shared import config
from itembank_shared.errors import (
    BackendUnavailable,
    ConflictingWrite,
    InvalidContinuationToken,
    ItemNotFound,
)
from itembank_shared.interface import ItemStore, ListQuery
from itembank_shared.models import FILTER_FIELDS, ITEM_STATUSES, ITEM_TYPES, SECURITY_LEVELS
from itembank_shared.storage import create_store

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

CORS_ORIGIN = config.CORS_ORIGIN
MAX_PAGE_SIZE = config.MAX_PAGE_SIZE
MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 5

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger()
logger.setLevel(config.LOG_LEVEL)

# ---------------------------------------------------------------------------
# Store (lazy singleton)
# ---------------------------------------------------------------------------

_store: Optional[ItemStore] = None


def _get_store() -> ItemStore:
    global _store
    if _store is None:
        _store = create_store()
    return _store


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def _cors_headers() -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": CORS_ORIGIN,
        "Access-Control-Allow-Methods": "GET, POST, PUT, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization",
    }


def _response(status_code: int, payload: Any) -> Dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {**_cors_headers(), "Content-Type": "application/json"},
        "body": json.dumps(payload),
    }


def _error(status_code: int, message: str, **extra: Any) -> Dict[str, Any]:
    code = str(extra.pop("code", "") or "").strip().upper()
    if not code:
        if status_code == 400:
            code = "INVALID_INPUT"
        elif status_code == 404:
            code = "NOT_FOUND"
        elif status_code == 405:
            code = "METHOD_NOT_ALLOWED"
        elif status_code == 409:
            code = "CONFLICT"
        else:
            code = "INTERNAL_ERROR"
    retryable = bool(extra.pop("retryable", status_code >= 500 or code == "CONFLICT"))
    details = dict(extra)
    body: Dict[str, Any] = {
        "success": False,
        "error": message,
        "error_envelope": {
            "code": code,
            "message": message,
            "retryable": retryable,
            "details": details,
        },
    }
    body.update(details)
    return _response(status_code, body)


def _json_body(event: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Parse the JSON object body. Returns None when no body was sent."""
    raw = event.get("body")
    if raw in (None, ""):
        return None
    if event.get("isBase64Encoded"):
        raw = base64.b64decode(raw).decode("utf-8")
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON body: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValueError("JSON body must be an object")
    return parsed


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _check_enum(errors: List[Dict[str, str]], field: str, value: Any, allowed: Tuple[str, ...]) -> None:
    if value not in allowed:
        errors.append({"field": field, "message": f"{field} must be one of: {', '.join(allowed)}"})


def _validate_fields(body: Dict[str, Any], partial: bool) -> List[Dict[str, str]]:
    """Field checks shared by create (all required) and update (present only)."""
    errors: List[Dict[str, str]] = []

    def present(container: Dict[str, Any], key: str) -> bool:
        return key in container or not partial

    if present(body, "subject") and not _non_empty_str(body.get("subject")):
        errors.append({"field": "subject", "message": "Subject is required"})
    if present(body, "itemType"):
        _check_enum(errors, "itemType", body.get("itemType"), ITEM_TYPES)
    if present(body, "difficulty"):
        difficulty = body.get("difficulty")
        if not _is_int(difficulty) or not MIN_DIFFICULTY <= difficulty <= MAX_DIFFICULTY:
            errors.append({
                "field": "difficulty",
                "message": f"Difficulty must be between {MIN_DIFFICULTY} and {MAX_DIFFICULTY}",
            })
    if present(body, "securityLevel"):
        _check_enum(errors, "securityLevel", body.get("securityLevel"), SECURITY_LEVELS)

    if present(body, "content"):
        content = body.get("content")
        if not isinstance(content, dict):
            errors.append({"field": "content", "message": "content must be an object"})
        else:
            for key in ("question", "correctAnswer", "explanation"):
                if present(content, key) and not _non_empty_str(content.get(key)):
                    errors.append({"field": f"content.{key}", "message": f"{key} is required"})
            options = content.get("options")
            if options is not None and not (
                isinstance(options, list) and all(isinstance(o, str) for o in options)
            ):
                errors.append({"field": "content.options", "message": "options must be an array of strings"})

    if present(body, "metadata"):
        metadata = body.get("metadata")
        if not isinstance(metadata, dict):
            errors.append({"field": "metadata", "message": "metadata must be an object"})
        else:
            if present(metadata, "author") and not _non_empty_str(metadata.get("author")):
                errors.append({"field": "metadata.author", "message": "Author is required"})
            if present(metadata, "status"):
                _check_enum(errors, "metadata.status", metadata.get("status"), ITEM_STATUSES)
            tags = metadata.get("tags", [])
            if not (isinstance(tags, list) and all(isinstance(t, str) for t in tags)):
                errors.append({"field": "metadata.tags", "message": "tags must be an array of strings"})
    return errors


def _parse_list_query(qs: Dict[str, Any]) -> Tuple[Optional[ListQuery], Optional[str]]:
    query = ListQuery()
    if qs.get("limit") not in (None, ""):
        try:
            query.limit = int(qs["limit"])
        except (TypeError, ValueError):
            return None, "limit must be an integer."
        if not 1 <= query.limit <= MAX_PAGE_SIZE:
            return None, f"limit must be between 1 and {MAX_PAGE_SIZE}."
    if qs.get("offset") not in (None, ""):
        try:
            query.offset = int(qs["offset"])
        except (TypeError, ValueError):
            return None, "offset must be an integer."
        if query.offset < 0:
            return None, "offset must not be negative."
    query.next_token = (qs.get("nextToken") or "").strip() or None

    for name in FILTER_FIELDS:
        value = (qs.get(name) or "").strip()
        if value:
            query.filters[name] = value
    if "status" in query.filters and query.filters["status"] not in ITEM_STATUSES:
        return None, f"status must be one of: {', '.join(ITEM_STATUSES)}"
    return query, None


# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------


def _handle_create(event: Dict[str, Any]) -> Dict[str, Any]:
    body = _json_body(event)
    if not body:
        return _error(400, "Request body is required")
    errors = _validate_fields(body, partial=False)
    if errors:
        return _error(400, "Validation failed", details=errors)
    item = _get_store().create(body)
    return _response(201, item)


def _handle_get(item_id: str) -> Dict[str, Any]:
    return _response(200, _get_store().get_latest(item_id))


def _handle_update(event: Dict[str, Any], item_id: str) -> Dict[str, Any]:
    body = _json_body(event)
    if not body:
        return _error(400, "Request body is required with at least one field to update")
    errors = _validate_fields(body, partial=True)
    if errors:
        return _error(400, "Validation failed", details=errors)
    return _response(200, _get_store().update(item_id, body))


def _handle_create_version(item_id: str) -> Dict[str, Any]:
    return _response(201, _get_store().create_version(item_id))


def _handle_list(qs: Dict[str, Any]) -> Dict[str, Any]:
    query, err = _parse_list_query(qs)
    if err:
        return _error(400, "Invalid query parameters", details=[{"field": "query", "message": err}])
    return _response(200, _get_store().list_latest(query).to_dict())


def _handle_audit(item_id: str) -> Dict[str, Any]:
    versions = _get_store().audit_trail(item_id)
    return _response(200, {"id": item_id, "versions": versions, "count": len(versions)})


# ---------------------------------------------------------------------------
# Path parsing
# ---------------------------------------------------------------------------

_ITEM_PATH = re.compile(r"/items(?:/(?P<itemId>[^/]+))?(?P<action>/versions|/audit)?/?$")


def _parse_request(event: Dict[str, Any]) -> Tuple[str, Optional[str], Optional[str], Dict[str, Any]]:
    """Parse method, item id, sub-resource and query params from event."""
    method = (
        (event.get("requestContext") or {}).get("http", {}).get("method")
        or event.get("httpMethod")
        or ""
    ).upper()
    raw_path = event.get("rawPath") or event.get("path") or ""
    path_params = event.get("pathParameters") or {}

    item_id = path_params.get("id") or path_params.get("itemId")
    action = None
    match = _ITEM_PATH.search(raw_path)
    if match:
        item_id = item_id or match.group("itemId")
        action = (match.group("action") or "").strip("/") or None

    qs = event.get("queryStringParameters") or {}
    logger.info(
        "request parse: method=%s raw_path=%s item_id=%s action=%s qs_keys=%s",
        method, raw_path, item_id, action, sorted(qs.keys()),
    )
    return method, item_id, action, qs


def _route(method: str, item_id: Optional[str], action: Optional[str], event: Dict, qs: Dict) -> Dict[str, Any]:
    if item_id is None:
        if method == "POST":
            return _handle_create(event)
        if method == "GET":
            return _handle_list(qs)
        return _error(405, f"Method {method} not allowed.")

    if action == "versions":
        if method == "POST":
            return _handle_create_version(item_id)
        return _error(405, f"Method {method} not allowed.")
    if action == "audit":
        if method == "GET":
            return _handle_audit(item_id)
        return _error(405, f"Method {method} not allowed.")

    if method == "GET":
        return _handle_get(item_id)
    if method == "PUT":
        return _handle_update(event, item_id)
    return _error(405, f"Method {method} not allowed.")


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------


def lambda_handler(event: Dict, context: Any) -> Dict:
    method, item_id, action, qs = _parse_request(event)

    # CORS preflight
    if method == "OPTIONS":
        return {"statusCode": 204, "headers": _cors_headers(), "body": ""}

    if not _ITEM_PATH.search(event.get("rawPath") or event.get("path") or "") and item_id is None:
        return _error(404, "Route not found")

    try:
        return _route(method, item_id, action, event, qs)
    except ValueError as exc:
        if isinstance(exc, InvalidContinuationToken):
            return _error(400, str(exc), code="INVALID_TOKEN")
        return _error(400, str(exc))
    except ItemNotFound:
        logger.info("item not found: %s", item_id)
        return _error(404, "Item not found")
    except ConflictingWrite as exc:
        return _error(409, str(exc))
    except BackendUnavailable as exc:
        return _error(500, "Item storage is unavailable.", retryable=True, operation=exc.operation)
    except Exception:
        logger.exception("unhandled error: method=%s item_id=%s", method, item_id)
        return _error(500, "Internal server error")
