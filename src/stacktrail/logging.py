"""JSONL event log for a .stacktrail/ directory.

One JSON object per line in ``stacktrail.log``. Grouping and upload code
passes context through ``extra=``; the keys in ``_STRUCTURED_FIELDS`` are
copied into the entry, e.g.
``logger.info("New issue", extra={"project": key, "issue_id": issue_id})``.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

_LOG_FILENAME = "stacktrail.log"
_ROOT_LOGGER = "stacktrail"
_setup_lock = threading.Lock()
_MAX_BYTES = 5 * 1024 * 1024  # 5MB
_BACKUP_COUNT = 3

_STRUCTURED_FIELDS = ("project", "issue_id", "event_id", "source_map_id", "duration_ms", "error")


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update({name: getattr(record, name) for name in _STRUCTURED_FIELDS if hasattr(record, name)})
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = str(record.exc_info[1])
        return json.dumps(entry, default=str)


def _file_handlers(logger: logging.Logger) -> list[RotatingFileHandler]:
    return [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]


def setup_logging(stacktrail_dir: Path, *, level: int = logging.INFO) -> logging.Logger:
    """Point the ``stacktrail`` logger at ``<stacktrail_dir>/stacktrail.log``.

    A second call for the same directory changes nothing; a call for another
    directory closes the old file handler first.
    """
    logger = logging.getLogger(_ROOT_LOGGER)
    log_path = stacktrail_dir / _LOG_FILENAME
    target = os.path.abspath(str(log_path))

    with _setup_lock:
        for handler in _file_handlers(logger):
            if handler.baseFilename == target:
                return logger
            logger.removeHandler(handler)
            handler.close()

        handler = RotatingFileHandler(str(log_path), maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT)
        handler.setFormatter(_JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel(level)
    return logger
