"""Tests for the schema migration framework.

Testing strategy:
  1. Framework tests: the runner's edge cases (no-op, downgrade, failure)
  2. Schema equivalence: a migrated DB must match a fresh DB at the same version
  3. Per-migration tests: data preserved and transformed, constraints enforced
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from unittest.mock import patch

import pytest

from stacktrail.core import StackTrailDB
from stacktrail.db_schema import CURRENT_SCHEMA_VERSION, SCHEMA_SQL, SCHEMA_V1_SQL
from stacktrail.migrations import (
    MigrationError,
    add_column,
    add_index,
    apply_pending_migrations,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_db(tmp_path: Path, name: str = "test.db") -> sqlite3.Connection:
    """Create a raw SQLite connection with stacktrail PRAGMAs."""
    conn = sqlite3.connect(str(tmp_path / name))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def _get_table_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def _get_index_names(conn: sqlite3.Connection) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type='index' AND name NOT LIKE 'sqlite_%'").fetchall()
    return {row[0] for row in rows}


def _get_schema_version(conn: sqlite3.Connection) -> int:
    return conn.execute("PRAGMA user_version").fetchone()[0]


def _make_v1_db(tmp_path: Path) -> Path:
    """A legacy v1 database with two projects, two issues and one event."""
    path = tmp_path / "legacy.db"
    conn = sqlite3.connect(str(path))
    conn.executescript(SCHEMA_V1_SQL)
    now = "2025-06-01T10:00:00.000+00:00"
    conn.execute("INSERT INTO projects VALUES ('demo', 'Demo', ?)", (now,))
    conn.execute("INSERT INTO projects VALUES ('web', 'Web', ?)", (now,))
    conn.execute("INSERT INTO issues VALUES ('iss-legacy1', 'demo', 'boom', 3, ?, ?)", (now, now))
    conn.execute("INSERT INTO issues VALUES ('iss-legacy2', 'demo', 'boom', 1, ?, ?)", (now, now))
    conn.execute(
        "INSERT INTO events VALUES ('evt-legacy1', 'iss-legacy1', 'demo', ?, ?)",
        (now, '{"project_key": "demo", "message": "boom"}'),
    )
    conn.execute("PRAGMA user_version = 1")
    conn.commit()
    conn.close()
    return path


# ---------------------------------------------------------------------------
# Migration runner tests
# ---------------------------------------------------------------------------


class TestRunner:
    def test_noop_at_target(self, tmp_path: Path) -> None:
        conn = _make_db(tmp_path)
        conn.executescript(SCHEMA_SQL)
        conn.execute(f"PRAGMA user_version = {CURRENT_SCHEMA_VERSION}")
        assert apply_pending_migrations(conn, CURRENT_SCHEMA_VERSION) == 0

    def test_downgrade_refused(self, tmp_path: Path) -> None:
        conn = _make_db(tmp_path)
        conn.execute("PRAGMA user_version = 99")
        with pytest.raises(ValueError, match="Downgrade is not supported"):
            apply_pending_migrations(conn, CURRENT_SCHEMA_VERSION)

    def test_missing_migration(self, tmp_path: Path) -> None:
        conn = _make_db(tmp_path)
        conn.execute("PRAGMA user_version = 1")
        with patch.dict("stacktrail.migrations.MIGRATIONS", {}, clear=True), pytest.raises(MigrationError):
            apply_pending_migrations(conn, 2)

    def test_failed_migration_rolls_back(self, tmp_path: Path) -> None:
        conn = _make_db(tmp_path)
        conn.execute("CREATE TABLE t (id INTEGER)")
        conn.execute("PRAGMA user_version = 1")
        conn.commit()

        def broken(c: sqlite3.Connection) -> None:
            c.execute("ALTER TABLE t ADD COLUMN extra TEXT")
            c.execute("SELECT * FROM does_not_exist")

        with patch.dict("stacktrail.migrations.MIGRATIONS", {1: broken}), pytest.raises(MigrationError) as info:
            apply_pending_migrations(conn, 2)
        assert info.value.from_version == 1
        assert info.value.to_version == 2
        assert _get_schema_version(conn) == 1
        assert "extra" not in _get_table_columns(conn, "t")


class TestHelpers:
    def test_add_column_idempotent(self, tmp_path: Path) -> None:
        conn = _make_db(tmp_path)
        conn.execute("CREATE TABLE t (id INTEGER)")
        assert add_column(conn, "t", "note", "TEXT", "''") is True
        assert add_column(conn, "t", "note", "TEXT", "''") is False
        assert "note" in _get_table_columns(conn, "t")

    def test_add_partial_unique_index(self, tmp_path: Path) -> None:
        conn = _make_db(tmp_path)
        conn.execute("CREATE TABLE t (k TEXT, done TEXT)")
        add_index(conn, "idx_t_open", "t", ["k"], unique=True, where="done IS NULL")
        add_index(conn, "idx_t_open", "t", ["k"], unique=True, where="done IS NULL")
        conn.execute("INSERT INTO t VALUES ('a', 'x')")
        conn.execute("INSERT INTO t VALUES ('a', 'y')")
        conn.execute("INSERT INTO t VALUES ('a', NULL)")
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute("INSERT INTO t VALUES ('a', NULL)")


# ---------------------------------------------------------------------------
# v1 → v2
# ---------------------------------------------------------------------------


class TestMigrateV1ToV2:
    def test_schema_matches_fresh(self, tmp_path: Path) -> None:
        legacy = _make_v1_db(tmp_path)
        with StackTrailDB(legacy) as migrated:
            migrated.initialize()
            assert migrated.get_schema_version() == CURRENT_SCHEMA_VERSION
            with StackTrailDB(tmp_path / "fresh.db") as fresh:
                fresh.initialize()
                for table in ("projects", "issues", "events", "sourcemaps"):
                    assert _get_table_columns(migrated.conn, table) == _get_table_columns(fresh.conn, table)
                assert _get_index_names(migrated.conn) == _get_index_names(fresh.conn)

    def test_data_preserved_and_backfilled(self, tmp_path: Path) -> None:
        with StackTrailDB(_make_v1_db(tmp_path)) as db:
            db.initialize()
            issue = db.get_issue("iss-legacy1")
            assert issue.count == 3
            assert issue.fingerprint == "iss-legacy1"
            assert issue.resolved_at is None
            assert issue.previous_issue_id is None
            assert db.get_event("evt-legacy1").payload["message"] == "boom"

    def test_ingest_keys_generated(self, tmp_path: Path) -> None:
        with StackTrailDB(_make_v1_db(tmp_path)) as db:
            db.initialize()
            keys = {db.get_ingest_key("demo"), db.get_ingest_key("web")}
            assert len(keys) == 2
            assert all(len(k) == 48 for k in keys)

    def test_legacy_issues_never_merge_with_new_events(self, tmp_path: Path) -> None:
        with StackTrailDB(_make_v1_db(tmp_path)) as db:
            db.initialize()
            result = db.ingest("demo", "boom")
            assert result.is_new_issue
            assert result.issue_id not in {"iss-legacy1", "iss-legacy2"}

    def test_open_issue_constraint_enforced(self, tmp_path: Path) -> None:
        with StackTrailDB(_make_v1_db(tmp_path)) as db:
            db.initialize()
            with pytest.raises(sqlite3.IntegrityError):
                db.conn.execute(
                    "INSERT INTO issues (id, project_key, title, count, first_seen, last_seen, fingerprint) "
                    "VALUES ('iss-dup', 'demo', 'boom', 1, 'x', 'x', 'iss-legacy1')"
                )
            db.conn.rollback()

    def test_rerun_is_idempotent(self, tmp_path: Path) -> None:
        legacy = _make_v1_db(tmp_path)
        with StackTrailDB(legacy) as db:
            db.initialize()
            key = db.get_ingest_key("demo")
            db.conn.execute("PRAGMA user_version = 1")
            db.initialize()
            assert db.get_schema_version() == CURRENT_SCHEMA_VERSION
            assert db.get_ingest_key("demo") == key
