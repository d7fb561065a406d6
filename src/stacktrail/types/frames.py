"""TypedDicts for parsed and symbolicated stack frames."""

from __future__ import annotations

from typing import TypedDict


class GeneratedPosition(TypedDict):
    file: str
    line: int
    column: int


class OriginalPosition(TypedDict):
    """Original location as reported by the source map.

    ``line`` is 1-based and ``column`` 0-based, the usual source-map convention.
    """

    source: str
    line: int | None
    column: int | None
    name: str | None


class FrameDict(TypedDict, total=False):
    generated: GeneratedPosition
    function: str | None
    original: OriginalPosition
    source_map_id: str
