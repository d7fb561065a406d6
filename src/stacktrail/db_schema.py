"""Database schema definitions for the stacktrail error tracker.

Contains the canonical SQL schema, the legacy V1 schema (for migration tests),
and the current schema version constant.
"""

from __future__ import annotations

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS projects (
    project_key TEXT PRIMARY KEY,
    name        TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    ingest_key  TEXT
);

CREATE TABLE IF NOT EXISTS issues (
    id                TEXT PRIMARY KEY,
    project_key       TEXT NOT NULL,
    title             TEXT NOT NULL,
    count             INTEGER NOT NULL DEFAULT 1,
    first_seen        TEXT NOT NULL,
    last_seen         TEXT NOT NULL,
    fingerprint       TEXT NOT NULL,
    resolved_at       TEXT,
    previous_issue_id TEXT,

    CHECK (count >= 1)
);

CREATE INDEX IF NOT EXISTS idx_issues_project_last_seen ON issues(project_key, last_seen DESC);
CREATE INDEX IF NOT EXISTS idx_issues_fingerprint_project ON issues(fingerprint, project_key);
-- At most one open issue per (project, fingerprint).
CREATE UNIQUE INDEX IF NOT EXISTS idx_issues_open_fingerprint
  ON issues(project_key, fingerprint) WHERE resolved_at IS NULL;

CREATE TABLE IF NOT EXISTS events (
    id          TEXT PRIMARY KEY,
    issue_id    TEXT NOT NULL REFERENCES issues(id) ON DELETE CASCADE,
    project_key TEXT NOT NULL,
    occurred_at TEXT NOT NULL,
    payload     TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_issue_occurred ON events(issue_id, occurred_at DESC);

CREATE TABLE IF NOT EXISTS sourcemaps (
    id          TEXT PRIMARY KEY,
    project_key TEXT NOT NULL,
    file_name   TEXT NOT NULL,
    content     TEXT NOT NULL,
    uploaded_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sourcemaps_project_uploaded ON sourcemaps(project_key, uploaded_at DESC);
"""

# V1 schema (before fingerprints, resolve cycles and ingest keys), kept for migration tests.
SCHEMA_V1_SQL = """\
CREATE TABLE IF NOT EXISTS projects (
    project_key TEXT PRIMARY KEY,
    name        TEXT NOT NULL,
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS issues (
    id          TEXT PRIMARY KEY,
    project_key TEXT NOT NULL,
    title       TEXT NOT NULL,
    count       INTEGER NOT NULL,
    first_seen  TEXT NOT NULL,
    last_seen   TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_issues_project_last_seen ON issues(project_key, last_seen DESC);

CREATE TABLE IF NOT EXISTS events (
    id          TEXT PRIMARY KEY,
    issue_id    TEXT NOT NULL REFERENCES issues(id),
    project_key TEXT NOT NULL,
    occurred_at TEXT NOT NULL,
    payload     TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_issue_occurred ON events(issue_id, occurred_at DESC);

CREATE TABLE IF NOT EXISTS sourcemaps (
    id          TEXT PRIMARY KEY,
    project_key TEXT NOT NULL,
    file_name   TEXT NOT NULL,
    content     TEXT NOT NULL,
    uploaded_at TEXT NOT NULL
);
"""

CURRENT_SCHEMA_VERSION = 2
