"""Schema migrations for the stacktrail database.

Each migration is keyed by the ``PRAGMA user_version`` it upgrades FROM and
receives a raw sqlite3.Connection. Migrations must be idempotent (guarded by
IF NOT EXISTS or a column-existence check) so a half-applied upgrade can be
re-run safely.

The runner applies every pending step in order, each inside its own
``BEGIN IMMEDIATE`` transaction, bumping user_version on success.

Adding a migration:
  1. Bump CURRENT_SCHEMA_VERSION in db_schema.py
  2. Write ``migrate_v<N>_to_v<N+1>(conn)`` below and register it in MIGRATIONS
  3. Update SCHEMA_SQL to the post-migration layout
  4. Cover it in tests/test_migrations.py
"""

from __future__ import annotations

import logging
import secrets
import sqlite3
from typing import Protocol

logger = logging.getLogger(__name__)


class MigrationFn(Protocol):
    """Protocol for migration functions."""

    def __call__(self, conn: sqlite3.Connection) -> None: ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def add_column(
    conn: sqlite3.Connection,
    table: str,
    column: str,
    col_type: str = "TEXT",
    default: str | None = None,
) -> bool:
    """Add *column* to *table* unless it already exists.

    ``default`` is a SQL literal (``"''"``, ``"0"``) or None for no DEFAULT
    clause. Returns True when the column was actually added.
    """
    if column in _columns(conn, table):
        return False
    default_clause = f" DEFAULT {default}" if default is not None else ""
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}{default_clause}")
    return True


def add_index(
    conn: sqlite3.Connection,
    index_name: str,
    table: str,
    columns: list[str],
    *,
    unique: bool = False,
    where: str | None = None,
) -> None:
    """Create an index (idempotent via IF NOT EXISTS); ``where`` makes it partial."""
    unique_kw = "UNIQUE " if unique else ""
    cols = ", ".join(columns)
    where_clause = f" WHERE {where}" if where else ""
    conn.execute(f"CREATE {unique_kw}INDEX IF NOT EXISTS {index_name} ON {table}({cols}){where_clause}")


# ---------------------------------------------------------------------------
# Migrations
# ---------------------------------------------------------------------------


def migrate_v1_to_v2(conn: sqlite3.Connection) -> None:
    """v1 → v2: fingerprint grouping, resolve cycles and per-project ingest keys.

    Changes:
      - projects: add 'ingest_key', generated for every existing project
      - issues: add 'fingerprint' (backfilled with the issue id so legacy
        issues never merge), 'resolved_at' and 'previous_issue_id'
      - indexes on (fingerprint, project_key), the partial unique open-issue
        index, and sourcemaps(project_key, uploaded_at)
    """
    add_column(conn, "projects", "ingest_key")
    rows = conn.execute("SELECT project_key FROM projects WHERE ingest_key IS NULL OR ingest_key = ''").fetchall()
    for row in rows:
        conn.execute(
            "UPDATE projects SET ingest_key = ? WHERE project_key = ?",
            (secrets.token_hex(24), row[0]),
        )

    add_column(conn, "issues", "fingerprint")
    conn.execute("UPDATE issues SET fingerprint = id WHERE fingerprint IS NULL OR fingerprint = ''")
    add_column(conn, "issues", "resolved_at")
    add_column(conn, "issues", "previous_issue_id")

    add_index(conn, "idx_issues_fingerprint_project", "issues", ["fingerprint", "project_key"])
    add_index(
        conn,
        "idx_issues_open_fingerprint",
        "issues",
        ["project_key", "fingerprint"],
        unique=True,
        where="resolved_at IS NULL",
    )
    add_index(conn, "idx_sourcemaps_project_uploaded", "sourcemaps", ["project_key", "uploaded_at DESC"])


MIGRATIONS: dict[int, MigrationFn] = {
    1: migrate_v1_to_v2,
}


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class MigrationError(Exception):
    """Raised when a migration fails."""

    def __init__(self, from_version: int, to_version: int, cause: Exception) -> None:
        self.from_version = from_version
        self.to_version = to_version
        self.cause = cause
        super().__init__(f"Migration v{from_version} → v{to_version} failed: {cause}")


def apply_pending_migrations(conn: sqlite3.Connection, target_version: int) -> int:
    """Bring the database at *conn* up to *target_version*.

    Returns the number of migrations applied. Raises MigrationError when a
    step fails (earlier steps stay committed) and ValueError when the
    database is newer than this code.
    """
    current: int = conn.execute("PRAGMA user_version").fetchone()[0]

    if current == target_version:
        return 0

    if current > target_version:
        msg = (
            f"Database schema v{current} is newer than this version of stacktrail "
            f"(expects v{target_version}). Downgrade is not supported."
        )
        raise ValueError(msg)

    applied = 0
    for version in range(current, target_version):
        migration = MIGRATIONS.get(version)
        if migration is None:
            msg = f"No migration registered for v{version} → v{version + 1}"
            raise MigrationError(version, version + 1, KeyError(msg))

        logger.info("Applying migration v%d → v%d", version, version + 1)
        try:
            conn.execute("BEGIN IMMEDIATE")
            migration(conn)
            conn.execute(f"PRAGMA user_version = {version + 1}")
            conn.commit()
        except Exception as exc:
            conn.rollback()
            raise MigrationError(version, version + 1, exc) from exc
        applied += 1

    return applied
