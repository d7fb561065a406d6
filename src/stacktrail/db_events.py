"""EventsMixin: the ingest pipeline and event queries.

``ingest`` runs validate → fingerprint → group → insert inside one
``BEGIN IMMEDIATE`` transaction, so the issue update and the event row
commit or roll back together. Source-map resolution never happens here;
see ``stacktrail.resolver.augment_with_mapped_frames``.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from stacktrail.db_base import DBMixinProtocol, _now_iso, coerce_timestamp
from stacktrail.fingerprint import STRATEGY_EXACT, compute_fingerprint
from stacktrail.validation import normalize_event_payload, sanitize_project_key

if TYPE_CHECKING:
    from stacktrail.core import Event
    from stacktrail.db_issues import GroupingResult

logger = logging.getLogger(__name__)

DEFAULT_EVENT_PAGE_SIZE = 50
MAX_EVENT_PAGE_SIZE = 200
DEFAULT_INGEST_RETRIES = 5
_RETRY_BASE_DELAY = 0.02
_RETRY_MAX_DELAY = 0.5


@dataclass(frozen=True)
class IngestResult:
    event_id: str
    issue_id: str
    is_new_issue: bool

    def to_dict(self) -> dict[str, Any]:
        return {"event_id": self.event_id, "issue_id": self.issue_id, "is_new_issue": self.is_new_issue}


def _is_retryable(exc: sqlite3.Error) -> bool:
    if isinstance(exc, sqlite3.IntegrityError):
        return True
    text = str(exc).lower()
    return "locked" in text or "busy" in text


class EventsMixin(DBMixinProtocol):
    """Event ingestion and per-issue event listing."""

    if TYPE_CHECKING:

        def ensure_project(self, project_key: str) -> None: ...

        def assign_event(
            self, project_key: str, fingerprint: str, message: str, occurred_at: str
        ) -> GroupingResult: ...

    def _build_event(self, row: sqlite3.Row) -> Event:
        from stacktrail.core import Event

        try:
            payload = json.loads(row["payload"])
        except (TypeError, ValueError):
            payload = {}
        return Event(
            id=row["id"],
            issue_id=row["issue_id"],
            project_key=row["project_key"],
            occurred_at=row["occurred_at"],
            payload=payload if isinstance(payload, dict) else {"value": payload},
        )

    def ingest(
        self,
        project_key: str,
        message: str,
        stack: str | None = None,
        /,
        *,
        occurred_at: Any = None,
        **payload: Any,
    ) -> IngestResult:
        """Record one error report and group it into an issue.

        *payload* holds the remaining report fields (url, user_agent, level,
        anything else) and is stored verbatim alongside message and stack.
        The leading parameters are positional-only so that any field name,
        ``self`` included, can travel in *payload*.
        Raises ValueError on invalid input. Lock contention and grouping
        races are retried up to ``ingest_max_retries`` times; the last
        sqlite3 error propagates when retries run out.
        """
        key, err = sanitize_project_key(project_key)
        if err:
            raise ValueError(err)
        if not isinstance(message, str) or not message.strip():
            msg = "message must be a non-empty string"
            raise ValueError(msg)
        if stack is not None and not isinstance(stack, str):
            msg = "stack must be a string"
            raise ValueError(msg)

        occurred = coerce_timestamp(occurred_at) if occurred_at is not None else _now_iso()
        strategy = str(self.config.get("fingerprint_strategy", STRATEGY_EXACT))
        fp = compute_fingerprint(message, stack, strategy=strategy)

        record: dict[str, Any] = dict(payload)
        record.update(project_key=key, message=message)
        if stack is not None:
            record["stack"] = stack
        if occurred_at is not None:
            record["occurred_at"] = occurred_at
        body = json.dumps(record, default=str)

        retries = max(0, int(self.config.get("ingest_max_retries", DEFAULT_INGEST_RETRIES)))
        started = time.monotonic()
        attempt = 0
        while True:
            try:
                with self._immediate() as conn:
                    self.ensure_project(key)
                    grouping = self.assign_event(key, fp, message, occurred)
                    event_id = self._generate_unique_id("events", "evt")
                    conn.execute(
                        "INSERT INTO events (id, issue_id, project_key, occurred_at, payload) VALUES (?, ?, ?, ?, ?)",
                        (event_id, grouping.issue_id, key, occurred, body),
                    )
                break
            except (sqlite3.IntegrityError, sqlite3.OperationalError) as exc:
                if attempt >= retries or not _is_retryable(exc):
                    logger.warning(
                        "Ingest failed after %d attempt(s)",
                        attempt + 1,
                        extra={"project": key, "error": str(exc)},
                    )
                    raise
                delay = min(_RETRY_MAX_DELAY, _RETRY_BASE_DELAY * (2**attempt))
                logger.debug("Retrying ingest after %s", exc, extra={"project": key, "error": str(exc)})
                attempt += 1
                time.sleep(delay)

        logger.debug(
            "Ingested event %s",
            event_id,
            extra={
                "project": key,
                "issue_id": grouping.issue_id,
                "event_id": event_id,
                "duration_ms": round((time.monotonic() - started) * 1000, 2),
            },
        )
        return IngestResult(event_id=event_id, issue_id=grouping.issue_id, is_new_issue=grouping.is_new_issue)

    def ingest_payload(self, body: Any) -> IngestResult:
        """Validate a raw report (as posted by SDKs, camelCase accepted) and ingest it."""
        payload, err = normalize_event_payload(body)
        if err:
            raise ValueError(err)
        project_key = payload.pop("project_key")
        message = payload.pop("message")
        stack = payload.pop("stack", None)
        occurred_at = payload.pop("occurred_at", None)
        return self.ingest(project_key, message, stack, occurred_at=occurred_at, **payload)

    def get_event(self, event_id: str) -> Event:
        row = self.conn.execute("SELECT * FROM events WHERE id = ?", (event_id,)).fetchone()
        if row is None:
            raise KeyError(event_id)
        return self._build_event(row)

    def list_events(
        self,
        issue_id: str,
        *,
        project_key: str | None = None,
        limit: int = DEFAULT_EVENT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[Event]:
        """Events of an issue, newest first. KeyError if the issue is unknown."""
        issue = self.get_issue(issue_id, project_key=project_key)
        if limit < 1:
            limit = DEFAULT_EVENT_PAGE_SIZE
        limit = min(limit, MAX_EVENT_PAGE_SIZE)
        offset = max(offset, 0)
        rows = self.conn.execute(
            "SELECT * FROM events WHERE issue_id = ? AND project_key = ? "
            "ORDER BY occurred_at DESC, rowid DESC LIMIT ? OFFSET ?",
            (issue.id, issue.project_key, limit, offset),
        ).fetchall()
        return [self._build_event(r) for r in rows]
