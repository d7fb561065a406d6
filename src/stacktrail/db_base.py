"""Shared utilities, types, and Protocol for DB mixins."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import AbstractContextManager
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from stacktrail.core import Issue
    from stacktrail.types.core import ProjectConfig


def _now_iso() -> str:
    return to_iso(datetime.now(UTC))


def to_iso(value: datetime) -> str:
    """Render *value* as a fixed-width UTC ISO timestamp.

    Millisecond precision is always emitted so stored timestamps compare
    correctly as plain strings (``ORDER BY`` and ``max()`` in SQL).
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds")


def coerce_timestamp(value: Any) -> str:
    """Accept epoch milliseconds, a datetime, or an ISO string and return ``to_iso()`` form.

    Raises ValueError for anything else (including bools and unparseable strings).
    """
    if isinstance(value, bool):
        raise ValueError("occurred_at must be epoch milliseconds or an ISO-8601 string")
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, int | float):
        try:
            return to_iso(datetime.fromtimestamp(value / 1000, UTC))
        except (OverflowError, OSError, ValueError) as exc:
            raise ValueError(f"occurred_at out of range: {value}") from exc
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValueError(f"occurred_at is not a valid ISO-8601 timestamp: {value!r}") from exc
        return to_iso(parsed)
    raise ValueError("occurred_at must be epoch milliseconds or an ISO-8601 string")


class DBMixinProtocol(Protocol):
    """Shared attributes and methods that DB mixins access via self.

    Mixins inherit this Protocol so mypy can type-check self.conn,
    self.get_issue(), etc. without ``type: ignore`` on every call.
    Actual implementations are provided by StackTrailDB at composition time.
    """

    db_path: Path
    config: ProjectConfig
    _conn: sqlite3.Connection | None
    _write_lock: threading.RLock

    @property
    def conn(self) -> sqlite3.Connection: ...

    def _immediate(self) -> AbstractContextManager[sqlite3.Connection]: ...

    def _generate_unique_id(self, table: str, prefix: str) -> str: ...

    def get_issue(self, issue_id: str, *, project_key: str | None = None) -> Issue: ...
