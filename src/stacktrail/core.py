"""Core database operations for the stacktrail error tracker.

Single source of truth for all SQLite operations. Both the CLI and the HTTP
API import from this module. No daemon, no queue: direct SQLite with WAL mode.

Convention-based discovery: each installation has a `.stacktrail/` directory
containing `stacktrail.db` (SQLite), `config.json` and `stacktrail.log`.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import sqlite3
import threading
import uuid
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from stacktrail.db_base import _now_iso
from stacktrail.db_events import EventsMixin
from stacktrail.db_issues import IssuesMixin
from stacktrail.db_projects import ProjectsMixin
from stacktrail.db_schema import CURRENT_SCHEMA_VERSION, SCHEMA_SQL
from stacktrail.db_sourcemaps import SourceMapsMixin
from stacktrail.fingerprint import VALID_STRATEGIES
from stacktrail.types.core import EventDict, ISOTimestamp, IssueDict, ProjectConfig, ProjectDict, SourceMapDict

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Convention-based discovery
# ---------------------------------------------------------------------------

STACKTRAIL_DIR_NAME = ".stacktrail"
DB_FILENAME = "stacktrail.db"
CONFIG_FILENAME = "config.json"

FALLBACK_BEST_EFFORT = "best_effort"
FALLBACK_STRICT = "strict"
VALID_FALLBACK_MODES: frozenset[str] = frozenset({FALLBACK_BEST_EFFORT, FALLBACK_STRICT})

DEFAULT_CONFIG = ProjectConfig(
    version=1,
    default_project="demo",
    require_ingest_key=True,
    max_map_bytes=10 * 1024 * 1024,
    max_archive_bytes=50 * 1024 * 1024,
    max_candidate_maps=50,
    max_frames=200,
    sourcemap_fallback=FALLBACK_BEST_EFFORT,
    fingerprint_strategy="exact",
    busy_timeout_ms=5000,
    ingest_max_retries=5,
    page_size_limit=1000,
)


def find_stacktrail_root(start: Path | None = None) -> Path:
    """Walk up from start (default cwd) looking for .stacktrail/ directory.

    Returns the .stacktrail/ directory path (not the project root).
    """
    current = (start or Path.cwd()).resolve()
    for parent in [current, *current.parents]:
        candidate = parent / STACKTRAIL_DIR_NAME
        if candidate.is_dir():
            return candidate
    msg = f"No {STACKTRAIL_DIR_NAME}/ directory found in {current} or any parent"
    raise FileNotFoundError(msg)


def _apply_env_overrides(config: ProjectConfig) -> ProjectConfig:
    fallback = os.environ.get("STACKTRAIL_SOURCEMAP_FALLBACK", "").strip().lower()
    if fallback:
        config["sourcemap_fallback"] = fallback
    strategy = os.environ.get("STACKTRAIL_FINGERPRINT_STRATEGY", "").strip().lower()
    if strategy:
        config["fingerprint_strategy"] = strategy

    if config.get("sourcemap_fallback") not in VALID_FALLBACK_MODES:
        logger.warning("Unknown sourcemap_fallback %r, using %r", config.get("sourcemap_fallback"), FALLBACK_BEST_EFFORT)
        config["sourcemap_fallback"] = FALLBACK_BEST_EFFORT
    if config.get("fingerprint_strategy") not in VALID_STRATEGIES:
        logger.warning("Unknown fingerprint_strategy %r, using 'exact'", config.get("fingerprint_strategy"))
        config["fingerprint_strategy"] = "exact"
    return config


def default_config() -> ProjectConfig:
    """Built-in defaults with environment overrides applied."""
    return _apply_env_overrides(ProjectConfig(**DEFAULT_CONFIG))


def read_config(stacktrail_dir: Path) -> ProjectConfig:
    """Read .stacktrail/config.json over the defaults. Returns defaults if missing or corrupt."""
    config = ProjectConfig(**DEFAULT_CONFIG)
    config_path = stacktrail_dir / CONFIG_FILENAME
    if config_path.exists():
        try:
            loaded = json.loads(config_path.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Failed to read %s, using defaults: %s", config_path, exc)
        else:
            if isinstance(loaded, dict):
                config.update(loaded)  # type: ignore[typeddict-item]
            else:
                logger.warning("Ignoring %s: expected a JSON object", config_path)
    return _apply_env_overrides(config)


def write_config(stacktrail_dir: Path, config: dict[str, Any] | ProjectConfig) -> None:
    """Write .stacktrail/config.json."""
    config_path = stacktrail_dir / CONFIG_FILENAME
    config_path.write_text(json.dumps(config, indent=2) + "\n")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class Project:
    project_key: str
    name: str
    created_at: str = ""
    ingest_key: str | None = None

    def to_dict(self) -> ProjectDict:
        return ProjectDict(project_key=self.project_key, name=self.name, created_at=ISOTimestamp(self.created_at))


@dataclass
class Issue:
    id: str
    project_key: str
    title: str
    count: int = 1
    first_seen: str = ""
    last_seen: str = ""
    fingerprint: str = ""
    resolved_at: str | None = None
    previous_issue_id: str | None = None

    @property
    def status(self) -> str:
        return "open" if self.resolved_at is None else "resolved"

    def to_dict(self) -> IssueDict:
        return IssueDict(
            id=self.id,
            project_key=self.project_key,
            title=self.title,
            count=self.count,
            first_seen=ISOTimestamp(self.first_seen),
            last_seen=ISOTimestamp(self.last_seen),
            fingerprint=self.fingerprint,
            resolved_at=ISOTimestamp(self.resolved_at) if self.resolved_at else None,
            previous_issue_id=self.previous_issue_id,
            status=self.status,
        )


@dataclass
class Event:
    id: str
    issue_id: str
    project_key: str
    occurred_at: str
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> EventDict:
        return EventDict(
            id=self.id,
            issue_id=self.issue_id,
            project_key=self.project_key,
            occurred_at=ISOTimestamp(self.occurred_at),
            payload=self.payload,
        )


@dataclass
class SourceMap:
    id: str
    project_key: str
    file_name: str
    uploaded_at: str = ""
    content: str = ""
    size: int = 0

    def to_dict(self) -> SourceMapDict:
        return SourceMapDict(
            id=self.id,
            project_key=self.project_key,
            file_name=self.file_name,
            uploaded_at=ISOTimestamp(self.uploaded_at),
            size=self.size,
        )


# ---------------------------------------------------------------------------
# StackTrailDB
# ---------------------------------------------------------------------------


class StackTrailDB(ProjectsMixin, IssuesMixin, EventsMixin, SourceMapsMixin):
    """Direct SQLite operations. No daemon. Importable by CLI and API.

    One instance owns one connection. Writes are serialized by
    ``_write_lock`` within the process and by ``BEGIN IMMEDIATE`` across
    processes; open separate instances for truly parallel writers.
    """

    def __init__(
        self,
        db_path: str | Path,
        *,
        config: ProjectConfig | None = None,
        check_same_thread: bool = True,
    ) -> None:
        self.db_path = Path(db_path)
        self.config: ProjectConfig = config if config is not None else default_config()
        self._conn: sqlite3.Connection | None = None
        self._check_same_thread = check_same_thread
        self._write_lock = threading.RLock()

    @classmethod
    def from_project(cls, project_path: Path | None = None) -> StackTrailDB:
        """Create a StackTrailDB by discovering .stacktrail/ from project_path (or cwd)."""
        stacktrail_dir = find_stacktrail_root(project_path)
        db = cls(stacktrail_dir / DB_FILENAME, config=read_config(stacktrail_dir))
        db.initialize()
        return db

    def __enter__(self) -> StackTrailDB:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                isolation_level="DEFERRED",
                check_same_thread=self._check_same_thread,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.execute(f"PRAGMA busy_timeout={int(self.config.get('busy_timeout_ms', 5000))}")
        return self._conn

    @property
    def fallback_enabled(self) -> bool:
        return self.config.get("sourcemap_fallback", FALLBACK_BEST_EFFORT) != FALLBACK_STRICT

    def initialize(self) -> None:
        """Create tables (if new) or migrate (if existing).

        A fresh database (user_version == 0) gets SCHEMA_SQL and is stamped
        with CURRENT_SCHEMA_VERSION; an existing one is migrated forward.
        """
        current_version = self.get_schema_version()

        if current_version == 0:
            self.conn.executescript(SCHEMA_SQL)
            self.conn.execute(f"PRAGMA user_version = {CURRENT_SCHEMA_VERSION}")
        elif current_version < CURRENT_SCHEMA_VERSION:
            from stacktrail.migrations import apply_pending_migrations

            apply_pending_migrations(self.conn, CURRENT_SCHEMA_VERSION)

        self.conn.commit()

    def get_schema_version(self) -> int:
        """Return the current schema version from PRAGMA user_version."""
        result: int = self.conn.execute("PRAGMA user_version").fetchone()[0]
        return result

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @contextlib.contextmanager
    def _immediate(self) -> Iterator[sqlite3.Connection]:
        """``BEGIN IMMEDIATE`` write transaction: commit on success, roll back on error."""
        with self._write_lock:
            conn = self.conn
            if conn.in_transaction:
                conn.commit()
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            conn.commit()

    def _generate_unique_id(self, table: str, prefix: str) -> str:
        """Generate a unique ID using O(1) EXISTS checks against the PK index.

        *table* is always a hardcoded literal at the call site (never user input).
        """
        for _ in range(10):
            candidate = f"{prefix}-{uuid.uuid4().hex[:12]}"
            if self.conn.execute(f"SELECT 1 FROM {table} WHERE id = ?", (candidate,)).fetchone() is None:
                return candidate
        return f"{prefix}-{uuid.uuid4().hex}"

    def stats(self) -> dict[str, Any]:
        """Row counts per table, used by ``/api/health`` and ``stacktrail init``."""
        counts = {
            table: self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]  # noqa: S608
            for table in ("projects", "issues", "events", "sourcemaps")
        }
        open_issues = self.conn.execute("SELECT COUNT(*) FROM issues WHERE resolved_at IS NULL").fetchone()[0]
        return {**counts, "open_issues": open_issues, "schema_version": self.get_schema_version(), "checked_at": _now_iso()}
