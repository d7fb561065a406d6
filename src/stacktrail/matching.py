"""Heuristic matching between generated filenames and uploaded source maps.

Built bundles embed content hashes (``bundle.a1b2c3d4.js``) that differ
between the file named in a stack trace and the map uploaded for it, so
names are compared on a normalized token rather than verbatim.
"""

from __future__ import annotations

import json
import posixpath
import re

_MAP_SUFFIX_RE = re.compile(r"\.map$", re.IGNORECASE)
_EXTENSION_RE = re.compile(r"\.[a-z][a-z0-9]{0,4}$", re.IGNORECASE)
_HASH_SUFFIX_RE = re.compile(r"[._-][a-z0-9]{6,32}$", re.IGNORECASE)
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]", re.IGNORECASE)


def basename(name: str) -> str:
    """Last path component of a filename or URL (query and fragment dropped)."""
    name = name.split("?", 1)[0].split("#", 1)[0]
    return posixpath.basename(name.replace("\\", "/"))


def normalize_filename(name: str | None) -> str:
    """Reduce *name* to a comparable token.

    ``normalize_filename("dist/bundle-a1b2c3d4e5f6.js.map") == "bundle"``
    """
    if not name:
        return ""
    token = basename(str(name))
    token = _MAP_SUFFIX_RE.sub("", token)
    token = _EXTENSION_RE.sub("", token)
    token = _HASH_SUFFIX_RE.sub("", token)
    token = _NON_ALNUM_RE.sub("", token)
    return token.lower()


def _related(a: str, b: str) -> bool:
    if not a or not b:
        return False
    return a == b or a in b or b in a


def is_candidate(map_file_name: str, declared_file: str | None, generated_file: str) -> bool:
    """Whether a map stored as *map_file_name* plausibly belongs to *generated_file*."""
    generated_base = basename(generated_file or "")
    generated_norm = normalize_filename(generated_base)

    if _related(normalize_filename(map_file_name), generated_norm):
        return True
    if declared_file and _related(normalize_filename(declared_file), generated_norm):
        return True
    return bool(generated_base) and generated_base in (map_file_name or "")


def declared_file(content: str) -> str | None:
    """The ``file`` property declared by a source map, or None."""
    try:
        raw = json.loads(content)
    except (TypeError, ValueError):
        return None
    if isinstance(raw, dict) and isinstance(raw.get("file"), str) and raw["file"]:
        return raw["file"]
    return None
