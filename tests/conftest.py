"""Shared pytest fixtures for stacktrail tests."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from stacktrail.core import (
    DB_FILENAME,
    STACKTRAIL_DIR_NAME,
    StackTrailDB,
    default_config,
    write_config,
)
from stacktrail.resolver import default_cache
from tests._helpers import APP_STACK, PopulatedDB, make_map


@pytest.fixture(autouse=True)
def _clear_map_cache() -> Generator[None, None, None]:
    default_cache().clear()
    yield
    default_cache().clear()


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("STACKTRAIL_DB", "STACKTRAIL_SOURCEMAP_FALLBACK", "STACKTRAIL_FINGERPRINT_STRATEGY", "STACKTRAIL_PORT"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def db(tmp_path: Path) -> Generator[StackTrailDB, None, None]:
    """Fresh StackTrailDB for each test."""
    d = StackTrailDB(tmp_path / "stacktrail.db", config=default_config())
    d.initialize()
    yield d
    d.close()


@pytest.fixture
def populated_db(db: StackTrailDB) -> PopulatedDB:
    """StackTrailDB with a representative data set.

    Creates:
    - project "demo" (explicit) and project "web"
    - issue ``open``: two events of the same report in "demo"
    - issue ``resolved``: one event in "demo", then resolved
    - issue ``other``: one event in "web"
    - one source map for app.js in "demo"
    """
    db.create_project("demo", "Demo")
    db.create_project("web")
    first = db.ingest("demo", "TypeError: x is undefined", APP_STACK, occurred_at="2026-01-01T00:00:00Z")
    db.ingest("demo", "TypeError: x is undefined", APP_STACK, occurred_at="2026-01-01T00:05:00Z")
    gone = db.ingest("demo", "RangeError: bad length", occurred_at="2026-01-01T00:01:00Z")
    db.set_resolved(gone.issue_id)
    other = db.ingest("web", "ReferenceError: y is not defined", occurred_at="2026-01-01T00:02:00Z")
    source_map = db.upload_source_map("demo", "app.js.map", make_map())
    return PopulatedDB(
        db=db,
        ids={
            "open": first.issue_id,
            "open_event": first.event_id,
            "resolved": gone.issue_id,
            "other": other.issue_id,
            "map": source_map.id,
        },
    )


@pytest.fixture
def stacktrail_project(tmp_path: Path) -> Path:
    """A tmp directory set up as a stacktrail installation (.stacktrail/ with config + db).

    Returns the project root (parent of .stacktrail/).
    """
    stacktrail_dir = tmp_path / STACKTRAIL_DIR_NAME
    stacktrail_dir.mkdir()
    write_config(stacktrail_dir, {"version": 1, "default_project": "demo"})

    d = StackTrailDB(stacktrail_dir / DB_FILENAME)
    d.initialize()
    d.create_project("demo")
    d.close()
    return tmp_path


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()
