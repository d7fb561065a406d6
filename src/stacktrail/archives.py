"""Extraction of ``.map`` files from uploaded zip / tar / tar.gz archives.

Every entry is isolated: an oversized, undecodable or non-JSON entry
becomes a warning and the remaining entries are still returned.
"""

from __future__ import annotations

import io
import json
import logging
import tarfile
import zipfile
import zlib
from collections.abc import Iterator
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_MAX_MAP_BYTES = 10 * 1024 * 1024  # 10MB per entry

_ZIP_MAGIC = (b"PK\x03\x04", b"PK\x05\x06")
_GZIP_MAGIC = b"\x1f\x8b"


@dataclass
class ArchiveContents:
    maps: list[tuple[str, str]] = field(default_factory=list)  # (entry path, JSON text)
    warnings: list[str] = field(default_factory=list)


def detect_format(data: bytes, filename: str | None = None) -> str:
    """Return ``"zip"`` or ``"tar"`` from magic bytes, falling back to the filename."""
    if data.startswith(_ZIP_MAGIC):
        return "zip"
    if data.startswith(_GZIP_MAGIC) or data[257:262] == b"ustar":
        return "tar"
    name = (filename or "").lower()
    if name.endswith(".zip"):
        return "zip"
    if name.endswith((".tar", ".tgz", ".tar.gz")):
        return "tar"
    msg = "Unrecognized archive format (expected zip, tar or tar.gz)"
    raise ValueError(msg)


def _iter_zip(data: bytes, max_map_bytes: int, warnings: list[str]) -> Iterator[tuple[str, bytes]]:
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        for info in zf.infolist():
            if info.is_dir() or not info.filename.lower().endswith(".map"):
                continue
            if info.file_size > max_map_bytes:
                warnings.append(f"{info.filename}: exceeds max map size")
                continue
            try:
                with zf.open(info) as fh:
                    raw = fh.read(max_map_bytes + 1)
            except (zipfile.BadZipFile, zlib.error, OSError, RuntimeError, EOFError) as exc:
                warnings.append(f"{info.filename}: {exc}")
                continue
            if len(raw) > max_map_bytes:
                warnings.append(f"{info.filename}: exceeds max map size")
                continue
            yield info.filename, raw


def _iter_tar(data: bytes, max_map_bytes: int, warnings: list[str]) -> Iterator[tuple[str, bytes]]:
    with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tf:
        for member in tf:
            if not member.isfile() or not member.name.lower().endswith(".map"):
                continue
            if member.size > max_map_bytes:
                warnings.append(f"{member.name}: exceeds max map size")
                continue
            try:
                fh = tf.extractfile(member)
                raw = fh.read() if fh is not None else b""
            except (tarfile.TarError, zlib.error, OSError, EOFError) as exc:
                warnings.append(f"{member.name}: {exc}")
                continue
            yield member.name, raw


def read_archive(
    data: bytes,
    *,
    filename: str | None = None,
    max_map_bytes: int = DEFAULT_MAX_MAP_BYTES,
) -> ArchiveContents:
    """Extract ``.map`` entries from *data*.

    Raises ValueError when the archive cannot be opened at all. Per-entry
    problems, and a stream that breaks off after some entries were read,
    are collected in ``warnings``.
    """
    if not data:
        msg = "Archive is empty"
        raise ValueError(msg)

    fmt = detect_format(data, filename)
    contents = ArchiveContents()
    entries = _iter_zip if fmt == "zip" else _iter_tar
    try:
        for path, raw in entries(data, max_map_bytes, contents.warnings):
            try:
                text = raw.decode("utf-8-sig")
            except UnicodeDecodeError:
                contents.warnings.append(f"{path}: not valid UTF-8")
                continue
            try:
                parsed = json.loads(text)
            except ValueError:
                contents.warnings.append(f"{path}: invalid JSON map")
                continue
            if not isinstance(parsed, dict):
                contents.warnings.append(f"{path}: invalid JSON map")
                continue
            contents.maps.append((path, text))
    except (zipfile.BadZipFile, tarfile.TarError, zlib.error, EOFError, OSError) as exc:
        if not contents.maps and not contents.warnings:
            msg = f"Failed to read {fmt} archive: {exc}"
            raise ValueError(msg) from exc
        # Entries read before the failure are kept.
        contents.warnings.append(f"archive ended early: {exc}")

    if contents.warnings:
        logger.warning("Archive upload produced %d warning(s)", len(contents.warnings), extra={"error": contents.warnings})
    return contents
