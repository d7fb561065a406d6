"""ProjectsMixin: project registry and ingest-key authorization.

All methods access ``self.conn`` via Python's MRO when composed into
``StackTrailDB``.
"""

from __future__ import annotations

import logging
import secrets
import sqlite3
from typing import TYPE_CHECKING

from stacktrail.db_base import DBMixinProtocol, _now_iso
from stacktrail.validation import sanitize_name, sanitize_project_key

if TYPE_CHECKING:
    from stacktrail.core import Project

logger = logging.getLogger(__name__)

_MAX_PROJECTS_LISTED = 200


def make_ingest_key() -> str:
    """48 hex chars of randomness."""
    return secrets.token_hex(24)


class ProjectsMixin(DBMixinProtocol):
    """Project CRUD plus the ingest-key check used by the ingest routes."""

    def _build_project(self, row: sqlite3.Row) -> Project:
        from stacktrail.core import Project

        return Project(
            project_key=row["project_key"],
            name=row["name"],
            created_at=row["created_at"],
            ingest_key=row["ingest_key"],
        )

    def create_project(self, project_key: str, name: str | None = None) -> Project:
        """Create *project_key* with a fresh ingest key, or rename it if it exists."""
        key, err = sanitize_project_key(project_key)
        if err:
            raise ValueError(err)
        display, err = sanitize_name(name, fallback=key)
        if err:
            raise ValueError(err)

        with self._write_lock:
            existing = self.conn.execute("SELECT project_key FROM projects WHERE project_key = ?", (key,)).fetchone()
            if existing is not None:
                if name is not None:
                    self.conn.execute("UPDATE projects SET name = ? WHERE project_key = ?", (display, key))
            else:
                self.conn.execute(
                    "INSERT INTO projects (project_key, name, created_at, ingest_key) VALUES (?, ?, ?, ?)",
                    (key, display, _now_iso(), make_ingest_key()),
                )
                logger.info("Created project %s", key, extra={"project": key})
            self.conn.commit()
        return self.get_project(key)

    def ensure_project(self, project_key: str) -> None:
        """Register *project_key* if unknown. Caller owns the transaction."""
        self.conn.execute(
            "INSERT OR IGNORE INTO projects (project_key, name, created_at, ingest_key) VALUES (?, ?, ?, ?)",
            (project_key, project_key, _now_iso(), make_ingest_key()),
        )

    def get_project(self, project_key: str) -> Project:
        row = self.conn.execute("SELECT * FROM projects WHERE project_key = ?", (project_key,)).fetchone()
        if row is None:
            raise KeyError(project_key)
        return self._build_project(row)

    def list_projects(self, *, limit: int = _MAX_PROJECTS_LISTED) -> list[Project]:
        limit = max(1, min(limit, _MAX_PROJECTS_LISTED))
        rows = self.conn.execute(
            "SELECT * FROM projects ORDER BY created_at DESC, project_key LIMIT ?",
            (limit,),
        ).fetchall()
        return [self._build_project(r) for r in rows]

    def get_ingest_key(self, project_key: str) -> str:
        return self.get_project(project_key).ingest_key or ""

    def rotate_ingest_key(self, project_key: str) -> str:
        new_key = make_ingest_key()
        with self._write_lock:
            cur = self.conn.execute("UPDATE projects SET ingest_key = ? WHERE project_key = ?", (new_key, project_key))
            if cur.rowcount == 0:
                self.conn.rollback()
                raise KeyError(project_key)
            self.conn.commit()
        logger.info("Rotated ingest key", extra={"project": project_key})
        return new_key

    def delete_project(self, project_key: str) -> None:
        """Delete a project and every issue, event and source map it owns."""
        with self._write_lock:
            cur = self.conn.execute("DELETE FROM projects WHERE project_key = ?", (project_key,))
            if cur.rowcount == 0:
                self.conn.rollback()
                raise KeyError(project_key)
            self.conn.execute("DELETE FROM sourcemaps WHERE project_key = ?", (project_key,))
            self.conn.execute("DELETE FROM events WHERE project_key = ?", (project_key,))
            self.conn.execute("DELETE FROM issues WHERE project_key = ?", (project_key,))
            self.conn.commit()
        logger.info("Deleted project %s", project_key, extra={"project": project_key})

    def verify_ingest_key(self, project_key: str, provided: str | None) -> bool:
        """Constant-time comparison of *provided* against the stored key.

        Raises KeyError for an unknown project (or one without a key).
        """
        stored = self.get_ingest_key(project_key).strip()
        if not stored:
            raise KeyError(project_key)
        candidate = (provided or "").strip()
        if not candidate:
            return False
        return secrets.compare_digest(stored.encode(), candidate.encode())
