"""Foundational TypedDicts for dataclass to_dict() returns."""

from __future__ import annotations

from typing import Any, NewType, TypedDict

ISOTimestamp = NewType("ISOTimestamp", str)


class ProjectConfig(TypedDict, total=False):
    """Shape of .stacktrail/config.json."""

    version: int
    default_project: str
    require_ingest_key: bool
    max_map_bytes: int
    max_archive_bytes: int
    max_candidate_maps: int
    max_frames: int
    sourcemap_fallback: str
    fingerprint_strategy: str
    busy_timeout_ms: int
    ingest_max_retries: int
    page_size_limit: int


class PaginatedResult(TypedDict):
    """Envelope returned by paginated query methods."""

    results: list[dict[str, Any]]
    total: int
    limit: int
    offset: int
    has_more: bool


class ProjectDict(TypedDict):
    project_key: str
    name: str
    created_at: ISOTimestamp


class IssueDict(TypedDict):
    id: str
    project_key: str
    title: str
    count: int
    first_seen: ISOTimestamp
    last_seen: ISOTimestamp
    fingerprint: str
    resolved_at: ISOTimestamp | None
    previous_issue_id: str | None
    status: str


class EventDict(TypedDict, total=False):
    id: str
    issue_id: str
    project_key: str
    occurred_at: ISOTimestamp
    payload: dict[str, Any]
    mapped_frames: list[dict[str, Any]]


class SourceMapDict(TypedDict):
    id: str
    project_key: str
    file_name: str
    uploaded_at: ISOTimestamp
    size: int
