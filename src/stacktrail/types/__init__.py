# types/ modules import only from typing, the stdlib and each other.
# Importing core.py, db_base.py or a mixin from here creates an import cycle.
"""Typed return-value contracts for stacktrail core and API layers."""

from __future__ import annotations

from stacktrail.types.api import ArchiveUploadResult, IngestResponse, ResolveResponse, UploadedMap
from stacktrail.types.core import (
    EventDict,
    ISOTimestamp,
    IssueDict,
    PaginatedResult,
    ProjectConfig,
    ProjectDict,
    SourceMapDict,
)
from stacktrail.types.frames import FrameDict, GeneratedPosition, OriginalPosition

__all__ = [
    "ArchiveUploadResult",
    "EventDict",
    "FrameDict",
    "GeneratedPosition",
    "ISOTimestamp",
    "IngestResponse",
    "IssueDict",
    "OriginalPosition",
    "PaginatedResult",
    "ProjectConfig",
    "ProjectDict",
    "ResolveResponse",
    "SourceMapDict",
    "UploadedMap",
]
