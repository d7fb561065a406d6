"""Tests for structured logging."""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import threading
from pathlib import Path

from stacktrail.core import StackTrailDB
from stacktrail.logging import setup_logging


def _records(path: Path) -> list[dict[str, object]]:
    return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]


class TestSetupLogging:
    def test_creates_log_file(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        logger.info("test_message", extra={"project": "demo", "issue_id": "iss-1"})
        for handler in logger.handlers:
            handler.flush()
        (record,) = _records(tmp_path / "stacktrail.log")
        assert record["msg"] == "test_message"
        assert record["level"] == "INFO"
        assert record["project"] == "demo"
        assert record["issue_id"] == "iss-1"

    def test_exception_recorded(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        try:
            raise RuntimeError("kaboom")
        except RuntimeError:
            logger.exception("failed", extra={"duration_ms": 1.5})
        for handler in logger.handlers:
            handler.flush()
        record = _records(tmp_path / "stacktrail.log")[-1]
        assert record["exception"] == "kaboom"
        assert record["duration_ms"] == 1.5

    def test_child_loggers_reach_the_file(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        with StackTrailDB(tmp_path / "stacktrail.db") as db:
            db.initialize()
            result = db.ingest("demo", "boom")
        for handler in logger.handlers:
            handler.flush()
        records = _records(tmp_path / "stacktrail.log")
        assert any(r.get("issue_id") == result.issue_id and r["logger"] == "stacktrail.db_issues" for r in records)

    def test_idempotent_setup(self, tmp_path: Path) -> None:
        logger1 = setup_logging(tmp_path)
        logger2 = setup_logging(tmp_path)
        assert logger1 is logger2
        assert len(logger1.handlers) == 1

    def test_new_directory_replaces_handler(self, tmp_path: Path) -> None:
        (tmp_path / "a").mkdir()
        (tmp_path / "b").mkdir()
        setup_logging(tmp_path / "a")
        logger = setup_logging(tmp_path / "b")
        assert len(logger.handlers) == 1
        assert logger.handlers[0].baseFilename == os.path.abspath(str(tmp_path / "b" / "stacktrail.log"))  # type: ignore[attr-defined]

    def test_no_duplicate_handlers_under_concurrency(self, tmp_path: Path) -> None:
        results: list[logging.Logger] = []
        barrier = threading.Barrier(4)

        def call_setup() -> None:
            barrier.wait()
            results.append(setup_logging(tmp_path))

        threads = [threading.Thread(target=call_setup) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 4
        assert all(r is results[0] for r in results)
        file_handlers = [
            h
            for h in logging.getLogger("stacktrail").handlers
            if isinstance(h, logging.handlers.RotatingFileHandler)
            and h.baseFilename == os.path.abspath(str(tmp_path / "stacktrail.log"))
        ]
        assert len(file_handlers) == 1

    def setup_method(self) -> None:
        self.teardown_method()

    def teardown_method(self) -> None:
        """Clean up the stacktrail logger handlers between tests."""
        logger = logging.getLogger("stacktrail")
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)
