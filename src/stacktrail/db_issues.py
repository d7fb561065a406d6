"""IssuesMixin: fingerprint grouping and the open/resolved issue lifecycle.

Grouping rules for an incoming event of (project, fingerprint):

1. an open issue exists → count += 1, last_seen = max(last_seen, occurred_at);
2. otherwise a new issue is created, linked through ``previous_issue_id``
   to the most recently resolved issue of the same fingerprint, if any.

At most one open issue per (project, fingerprint) is enforced by the
partial unique index ``idx_issues_open_fingerprint``.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import TYPE_CHECKING

from stacktrail.db_base import DBMixinProtocol, _now_iso

if TYPE_CHECKING:
    from stacktrail.core import Issue

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 200
DEFAULT_ISSUE_PAGE_SIZE = 200
DEFAULT_PAGE_SIZE_LIMIT = 1000


@dataclass(frozen=True)
class GroupingResult:
    issue_id: str
    is_new_issue: bool
    previous_issue_id: str | None = None


class IssuesMixin(DBMixinProtocol):
    """Issue grouping, lookup, listing and resolve/reopen."""

    def _build_issue(self, row: sqlite3.Row) -> Issue:
        from stacktrail.core import Issue

        return Issue(
            id=row["id"],
            project_key=row["project_key"],
            title=row["title"],
            count=row["count"],
            first_seen=row["first_seen"],
            last_seen=row["last_seen"],
            fingerprint=row["fingerprint"],
            resolved_at=row["resolved_at"],
            previous_issue_id=row["previous_issue_id"],
        )

    def _page_size_limit(self) -> int:
        return int(self.config.get("page_size_limit", DEFAULT_PAGE_SIZE_LIMIT))

    # -- Grouping -------------------------------------------------------------

    def assign_event(self, project_key: str, fingerprint: str, message: str, occurred_at: str) -> GroupingResult:
        """Attach an event to its issue, creating one when no issue is open.

        Must run inside the caller's write transaction (see ``ingest``).
        May raise sqlite3.IntegrityError if another writer created the open
        issue first; the caller retries.
        """
        open_row = self.conn.execute(
            "SELECT id FROM issues WHERE project_key = ? AND fingerprint = ? AND resolved_at IS NULL",
            (project_key, fingerprint),
        ).fetchone()
        if open_row is not None:
            self.conn.execute(
                "UPDATE issues SET count = count + 1, last_seen = MAX(last_seen, ?) WHERE id = ?",
                (occurred_at, open_row["id"]),
            )
            logger.debug(
                "Grouped event into open issue %s",
                open_row["id"],
                extra={"project": project_key, "issue_id": open_row["id"]},
            )
            return GroupingResult(issue_id=open_row["id"], is_new_issue=False)

        predecessor = self.conn.execute(
            "SELECT id FROM issues WHERE project_key = ? AND fingerprint = ? AND resolved_at IS NOT NULL "
            "ORDER BY last_seen DESC, resolved_at DESC, id DESC LIMIT 1",
            (project_key, fingerprint),
        ).fetchone()
        previous_id = predecessor["id"] if predecessor is not None else None

        issue_id = self._generate_unique_id("issues", "iss")
        self.conn.execute(
            "INSERT INTO issues (id, project_key, title, count, first_seen, last_seen, fingerprint, "
            "resolved_at, previous_issue_id) VALUES (?, ?, ?, 1, ?, ?, ?, NULL, ?)",
            (issue_id, project_key, message[:TITLE_MAX_LENGTH], occurred_at, occurred_at, fingerprint, previous_id),
        )
        logger.info(
            "New issue %s%s",
            issue_id,
            f" (regression of {previous_id})" if previous_id else "",
            extra={"project": project_key, "issue_id": issue_id},
        )
        return GroupingResult(issue_id=issue_id, is_new_issue=True, previous_issue_id=previous_id)

    # -- Queries --------------------------------------------------------------

    def get_issue(self, issue_id: str, *, project_key: str | None = None) -> Issue:
        """Fetch one issue. KeyError if unknown or outside *project_key*."""
        row = self.conn.execute("SELECT * FROM issues WHERE id = ?", (issue_id,)).fetchone()
        if row is None or (project_key is not None and row["project_key"] != project_key):
            raise KeyError(issue_id)
        return self._build_issue(row)

    def list_issues(
        self,
        project_key: str,
        *,
        include_resolved: bool = False,
        limit: int = DEFAULT_ISSUE_PAGE_SIZE,
        offset: int = 0,
    ) -> list[Issue]:
        """Issues of *project_key*, most recently seen first."""
        if limit < 1:
            limit = DEFAULT_ISSUE_PAGE_SIZE
        limit = min(limit, self._page_size_limit())
        offset = max(offset, 0)
        open_filter = "" if include_resolved else " AND resolved_at IS NULL"
        rows = self.conn.execute(
            f"SELECT * FROM issues WHERE project_key = ?{open_filter} ORDER BY last_seen DESC, id DESC LIMIT ? OFFSET ?",
            (project_key, limit, offset),
        ).fetchall()
        return [self._build_issue(r) for r in rows]

    def count_issues(self, project_key: str, *, include_resolved: bool = False) -> int:
        open_filter = "" if include_resolved else " AND resolved_at IS NULL"
        row = self.conn.execute(
            f"SELECT COUNT(*) FROM issues WHERE project_key = ?{open_filter}",
            (project_key,),
        ).fetchone()
        return int(row[0])

    def get_issue_history(self, issue_id: str) -> list[Issue]:
        """The issue followed by its predecessors via ``previous_issue_id``, newest first."""
        chain: list[Issue] = []
        seen: set[str] = set()
        current: str | None = issue_id
        while current is not None and current not in seen:
            seen.add(current)
            try:
                issue = self.get_issue(current)
            except KeyError:
                if not chain:
                    raise
                break
            chain.append(issue)
            current = issue.previous_issue_id
        return chain

    # -- Lifecycle ------------------------------------------------------------

    def set_resolved(self, issue_id: str, resolved: bool = True, *, project_key: str | None = None) -> str | None:
        """Resolve (``resolved=True``) or reopen an issue; returns the new resolved_at.

        Resolving an already resolved issue keeps its timestamp. Reopening
        raises ValueError when another issue with the same fingerprint is
        already open. KeyError if the issue is unknown.
        """
        with self._immediate() as conn:
            row = conn.execute(
                "SELECT id, project_key, fingerprint, resolved_at FROM issues WHERE id = ?",
                (issue_id,),
            ).fetchone()
            if row is None or (project_key is not None and row["project_key"] != project_key):
                raise KeyError(issue_id)

            if resolved:
                if row["resolved_at"] is not None:
                    return str(row["resolved_at"])
                resolved_at = _now_iso()
                conn.execute("UPDATE issues SET resolved_at = ? WHERE id = ?", (resolved_at, issue_id))
                logger.info("Resolved issue %s", issue_id, extra={"project": row["project_key"], "issue_id": issue_id})
                return resolved_at

            if row["resolved_at"] is None:
                return None
            other = conn.execute(
                "SELECT id FROM issues WHERE project_key = ? AND fingerprint = ? AND resolved_at IS NULL AND id != ?",
                (row["project_key"], row["fingerprint"], issue_id),
            ).fetchone()
            if other is not None:
                msg = f"Cannot reopen {issue_id}: issue {other['id']} with the same fingerprint is already open"
                raise ValueError(msg)
            conn.execute("UPDATE issues SET resolved_at = NULL WHERE id = ?", (issue_id,))
            logger.info("Reopened issue %s", issue_id, extra={"project": row["project_key"], "issue_id": issue_id})
            return None

    def resolve_issue(self, issue_id: str, *, project_key: str | None = None) -> Issue:
        self.set_resolved(issue_id, True, project_key=project_key)
        return self.get_issue(issue_id)

    def reopen_issue(self, issue_id: str, *, project_key: str | None = None) -> Issue:
        self.set_resolved(issue_id, False, project_key=project_key)
        return self.get_issue(issue_id)
