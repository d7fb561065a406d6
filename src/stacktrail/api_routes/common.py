"""Shared helpers and constants for API route modules."""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

    from fastapi.responses import JSONResponse
    from starlette.requests import Request

from stacktrail.core import StackTrailDB

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

INGEST_KEY_HEADER = "x-stacktrail-ingest-key"
LEGACY_INGEST_KEY_HEADER = "x-cet-ingest-key"
_BOOL_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_BOOL_FALSE_VALUES = frozenset({"0", "false", "no", "off"})

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error_response(
    message: str,
    code: str,
    status_code: int,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Return a structured error response and log the error."""
    from fastapi.responses import JSONResponse

    logger.warning("API error [%s] %s: %s", status_code, code, message)
    return JSONResponse(
        {"error": {"message": message, "code": code, "details": details or {}}},
        status_code=status_code,
    )


def _storage_error(exc: sqlite3.Error) -> JSONResponse:
    return _error_response(f"Storage unavailable: {exc}", "STORAGE_UNAVAILABLE", 503)


async def _parse_json_body(request: Request) -> dict[str, Any] | JSONResponse:
    """Parse and validate a JSON object body, returning 400 on failure."""
    import json

    try:
        body = await request.json()
    except (json.JSONDecodeError, ValueError, UnicodeDecodeError):
        return _error_response("Invalid JSON body", "VALIDATION_ERROR", 400)
    if not isinstance(body, dict):
        return _error_response("Request body must be a JSON object", "VALIDATION_ERROR", 400)
    return body


def _safe_int(value: str, name: str, *, min_value: int | None = None, max_value: int | None = None) -> int | JSONResponse:
    """Parse a query-param string to int, returning a 400 error response on failure."""
    try:
        result = int(value)
    except (ValueError, TypeError):
        return _error_response(
            f'Invalid value for {name}: "{value}". Must be an integer.',
            "VALIDATION_ERROR",
            400,
        )
    if min_value is not None and result < min_value:
        return _error_response(
            f"Invalid value for {name}: {result}. Must be >= {min_value}.",
            "VALIDATION_ERROR",
            400,
        )
    if max_value is not None and result > max_value:
        return _error_response(
            f"Invalid value for {name}: {result}. Must be <= {max_value}.",
            "VALIDATION_ERROR",
            400,
        )
    return result


def _parse_pagination(
    params: Mapping[str, str],
    default_limit: int,
    max_limit: int,
) -> tuple[int, int] | JSONResponse:
    """Extract ``limit`` and ``offset`` from query params with validation.

    Returns ``(limit, offset)`` on success or a 400 ``JSONResponse`` on error.
    """
    limit = _safe_int(params.get("limit", str(default_limit)), "limit", min_value=1, max_value=max_limit)
    if not isinstance(limit, int):
        return limit
    offset = _safe_int(params.get("offset", "0"), "offset", min_value=0)
    if not isinstance(offset, int):
        return offset
    return limit, offset


def _parse_bool_value(raw: str, name: str) -> bool | JSONResponse:
    value = raw.strip().lower()
    if value in _BOOL_TRUE_VALUES:
        return True
    if value in _BOOL_FALSE_VALUES:
        return False
    return _error_response(
        f'Invalid value for {name}: "{raw}". Must be one of true/false, 1/0, yes/no, on/off.',
        "VALIDATION_ERROR",
        400,
        {"param": name, "value": raw},
    )


def _get_bool_param(params: Mapping[str, str], name: str, default: bool) -> bool | JSONResponse:
    """Extract a boolean query param, returning *default* when absent."""
    raw = params.get(name)
    if raw is None:
        return default
    return _parse_bool_value(raw, name)


def _check_ingest_key(request: Request, db: StackTrailDB, project_key: str) -> JSONResponse | None:
    """Authorize a write to *project_key*; returns an error response or None.

    Skipped entirely when ``require_ingest_key`` is disabled in config.
    """
    if not db.config.get("require_ingest_key", True):
        return None
    provided = request.headers.get(INGEST_KEY_HEADER) or request.headers.get(LEGACY_INGEST_KEY_HEADER) or ""
    if not provided.strip():
        return _error_response("Missing ingest key", "MISSING_INGEST_KEY", 401)
    try:
        valid = db.verify_ingest_key(project_key, provided)
    except KeyError:
        return _error_response(f"Unknown project: {project_key}", "PROJECT_NOT_FOUND", 404)
    if not valid:
        logger.warning("Invalid ingest key for project %s", project_key, extra={"project": project_key})
        return _error_response("Invalid ingest key", "INVALID_INGEST_KEY", 401)
    return None
