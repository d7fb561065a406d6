"""SourceMapsMixin: storage of uploaded source maps.

Maps are immutable once stored. When a map declares a ``file`` property it
is stored as ``<file>.map`` so later lookups match the generated filename.
"""

from __future__ import annotations

import json
import logging
import posixpath
import sqlite3
from typing import TYPE_CHECKING

from stacktrail.archives import DEFAULT_MAX_MAP_BYTES, read_archive
from stacktrail.db_base import DBMixinProtocol, _now_iso
from stacktrail.matching import declared_file
from stacktrail.types.api import ArchiveUploadResult, UploadedMap

if TYPE_CHECKING:
    from stacktrail.core import Project, SourceMap

logger = logging.getLogger(__name__)

FILE_NAME_MAX_LENGTH = 200
DEFAULT_MAX_ARCHIVE_BYTES = 50 * 1024 * 1024


def stored_file_name(file_name: str, content: str) -> str:
    """Name a map is stored under: ``<declared file>.map`` if declared, else *file_name*."""
    declared = declared_file(content)
    if declared:
        return f"{declared}.map"[:FILE_NAME_MAX_LENGTH]
    return file_name[:FILE_NAME_MAX_LENGTH]


class SourceMapsMixin(DBMixinProtocol):
    """Upload, archive upload, listing and deletion of source maps."""

    if TYPE_CHECKING:

        def get_project(self, project_key: str) -> Project: ...

    def _build_source_map(self, row: sqlite3.Row) -> SourceMap:
        from stacktrail.core import SourceMap

        keys = row.keys()
        return SourceMap(
            id=row["id"],
            project_key=row["project_key"],
            file_name=row["file_name"],
            uploaded_at=row["uploaded_at"],
            content=row["content"] if "content" in keys else "",
            size=row["size"] if "size" in keys else len(row["content"] or ""),
        )

    def _max_map_bytes(self) -> int:
        return int(self.config.get("max_map_bytes", DEFAULT_MAX_MAP_BYTES))

    def _insert_map(self, project_key: str, file_name: str, content: str) -> UploadedMap:
        map_id = self._generate_unique_id("sourcemaps", "map")
        name = stored_file_name(file_name, content)
        uploaded_at = _now_iso()
        self.conn.execute(
            "INSERT INTO sourcemaps (id, project_key, file_name, content, uploaded_at) VALUES (?, ?, ?, ?, ?)",
            (map_id, project_key, name, content, uploaded_at),
        )
        logger.info("Stored source map %s", name, extra={"project": project_key, "source_map_id": map_id})
        return UploadedMap(id=map_id, file_name=name, uploaded_at=uploaded_at)

    def upload_source_map(self, project_key: str, file_name: str, content: str) -> SourceMap:
        """Store one map. ValueError for a missing name, oversized or non-JSON content."""
        self.get_project(project_key)
        if not isinstance(file_name, str) or not file_name.strip():
            msg = "file_name is required"
            raise ValueError(msg)
        if not isinstance(content, str) or not content:
            msg = "map content is required"
            raise ValueError(msg)
        if len(content.encode("utf-8")) > self._max_map_bytes():
            msg = f"Source map exceeds max map size ({self._max_map_bytes()} bytes)"
            raise ValueError(msg)
        try:
            parsed = json.loads(content)
        except ValueError as exc:
            msg = f"Source map is not valid JSON: {exc}"
            raise ValueError(msg) from exc
        if not isinstance(parsed, dict):
            msg = "Source map must be a JSON object"
            raise ValueError(msg)

        with self._immediate():
            uploaded = self._insert_map(project_key, posixpath.basename(file_name.strip()) or file_name, content)
        return self.get_source_map(uploaded["id"], project_key=project_key)

    def upload_archive(
        self,
        project_key: str,
        data: bytes,
        *,
        filename: str | None = None,
    ) -> ArchiveUploadResult:
        """Store every valid ``.map`` entry of a zip / tar / tar.gz archive.

        Bad entries are reported in ``warnings``; the caller decides whether
        an empty ``uploaded`` list is a failure. ValueError when the archive
        is oversized or unreadable.
        """
        self.get_project(project_key)
        max_archive = int(self.config.get("max_archive_bytes", DEFAULT_MAX_ARCHIVE_BYTES))
        if len(data) > max_archive:
            msg = f"Archive exceeds max archive size ({max_archive} bytes)"
            raise ValueError(msg)

        contents = read_archive(data, filename=filename, max_map_bytes=self._max_map_bytes())
        uploaded: list[UploadedMap] = []
        if contents.maps:
            with self._immediate():
                for path, text in contents.maps:
                    uploaded.append(self._insert_map(project_key, posixpath.basename(path), text))
        return ArchiveUploadResult(uploaded=uploaded, warnings=list(contents.warnings))

    def get_source_map(self, map_id: str, *, project_key: str | None = None) -> SourceMap:
        row = self.conn.execute("SELECT * FROM sourcemaps WHERE id = ?", (map_id,)).fetchone()
        if row is None or (project_key is not None and row["project_key"] != project_key):
            raise KeyError(map_id)
        return self._build_source_map(row)

    def list_source_maps(self, project_key: str, *, include_content: bool = False) -> list[SourceMap]:
        """Maps of a project, newest upload first."""
        columns = "id, project_key, file_name, uploaded_at, LENGTH(CAST(content AS BLOB)) AS size"
        if include_content:
            columns += ", content"
        rows = self.conn.execute(
            f"SELECT {columns} FROM sourcemaps WHERE project_key = ? ORDER BY uploaded_at DESC, rowid DESC",
            (project_key,),
        ).fetchall()
        return [self._build_source_map(r) for r in rows]

    def delete_source_map(self, project_key: str, map_id: str) -> None:
        with self._write_lock:
            cur = self.conn.execute("DELETE FROM sourcemaps WHERE id = ? AND project_key = ?", (map_id, project_key))
            if cur.rowcount == 0:
                self.conn.rollback()
                raise KeyError(map_id)
            self.conn.commit()
        logger.info("Deleted source map %s", map_id, extra={"project": project_key, "source_map_id": map_id})
