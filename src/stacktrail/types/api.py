"""TypedDicts for API-level return values shared by the HTTP and CLI layers."""

from __future__ import annotations

from typing import TypedDict

from stacktrail.types.core import ISOTimestamp


class IngestResponse(TypedDict):
    event_id: str
    issue_id: str
    is_new_issue: bool


class ResolveResponse(TypedDict):
    success: bool
    resolved_at: ISOTimestamp | None


class UploadedMap(TypedDict):
    id: str
    file_name: str
    uploaded_at: ISOTimestamp


class ArchiveUploadResult(TypedDict):
    """Outcome of a batch upload: stored maps plus non-fatal per-entry warnings."""

    uploaded: list[UploadedMap]
    warnings: list[str]
