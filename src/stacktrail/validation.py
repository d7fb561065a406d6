"""Shared validation functions for all entry points.

Pure functions, no FastAPI or Click dependencies. Each returns
``(cleaned, None)`` on success or ``(empty, error_message)`` on failure.
"""

from __future__ import annotations

import unicodedata
from typing import Any

_MAX_PROJECT_KEY_LENGTH = 128
_MAX_NAME_LENGTH = 200
VALID_LEVELS = frozenset({"error", "warning", "info"})

# Client SDKs send camelCase; events are stored snake_case.
_FIELD_ALIASES = {
    "projectKey": "project_key",
    "userAgent": "user_agent",
    "occurredAt": "occurred_at",
}


def _has_control_chars(value: str) -> str | None:
    for ch in value:
        if unicodedata.category(ch).startswith("C"):
            return f"U+{ord(ch):04X}"
    return None


def sanitize_project_key(value: Any) -> tuple[str, str | None]:
    """Validate a project key: non-empty string, bounded length, no control characters."""
    if not isinstance(value, str):
        return ("", "project_key must be a string")
    bad = _has_control_chars(value)
    if bad:
        return ("", f"project_key must not contain control characters (found {bad})")
    cleaned = value.strip()
    if not cleaned:
        return ("", "project_key must not be empty")
    if len(cleaned) > _MAX_PROJECT_KEY_LENGTH:
        return ("", f"project_key must be at most {_MAX_PROJECT_KEY_LENGTH} characters")
    return (cleaned, None)


def sanitize_name(value: Any, *, fallback: str) -> tuple[str, str | None]:
    """Validate a display name; None or blank falls back to *fallback*."""
    if value is None:
        return (fallback, None)
    if not isinstance(value, str):
        return ("", "name must be a string")
    cleaned = value.strip()
    return ((cleaned or fallback)[:_MAX_NAME_LENGTH], None)


def normalize_event_payload(body: Any) -> tuple[dict[str, Any], str | None]:
    """Validate an incoming error report and return it with snake_case keys.

    Required: ``project_key`` and a non-empty ``message``. Optional: ``stack``,
    ``url``, ``user_agent`` (strings), ``level`` (error/warning/info) and
    ``occurred_at`` (epoch milliseconds or ISO-8601 string). Unknown fields
    are kept verbatim.
    """
    if not isinstance(body, dict):
        return ({}, "Request body must be a JSON object")

    payload: dict[str, Any] = {}
    for key, value in body.items():
        target = _FIELD_ALIASES.get(key, key)
        if target in payload and key != target:
            continue  # snake_case wins over the alias
        payload[target] = value

    key, err = sanitize_project_key(payload.get("project_key"))
    if err:
        return ({}, err)
    payload["project_key"] = key

    message = payload.get("message")
    if not isinstance(message, str) or not message.strip():
        return ({}, "message must be a non-empty string")

    for name in ("stack", "url", "user_agent"):
        if payload.get(name) is not None and not isinstance(payload[name], str):
            return ({}, f"{name} must be a string")

    level = payload.get("level")
    if level is not None and level not in VALID_LEVELS:
        return ({}, f"level must be one of: {', '.join(sorted(VALID_LEVELS))}")

    occurred_at = payload.get("occurred_at")
    if occurred_at is not None and (isinstance(occurred_at, bool) or not isinstance(occurred_at, int | float | str)):
        return ({}, "occurred_at must be epoch milliseconds or an ISO-8601 string")

    return (payload, None)
