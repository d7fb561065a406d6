"""Source-map resolution of stack frames.

Resolution runs on read, never at ingest. It is read-only, bounded by
``max_candidate_maps`` per pass, and cancellable between maps and frames.

Lookup order for one frame:

1. maps whose filename (or declared ``file``) matches the frame's file,
   newest first;
2. when nothing matched and fallback is enabled, every map in the same
   order regardless of filename.

The first lookup yielding an original position with a source wins.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections import OrderedDict
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import sourcemap

from stacktrail.matching import declared_file, is_candidate
from stacktrail.stacktrace import DEFAULT_MAX_FRAMES, Frame, parse_stack
from stacktrail.types.core import EventDict
from stacktrail.types.frames import FrameDict, OriginalPosition

logger = logging.getLogger(__name__)

DEFAULT_MAX_CANDIDATE_MAPS = 50

CancelCheck = Callable[[], bool] | threading.Event


class MapRecord(Protocol):
    """Anything carrying a stored map's id, filename and raw JSON content."""

    id: str
    file_name: str
    content: str


@dataclass(frozen=True)
class Resolution:
    original: OriginalPosition
    source_map_id: str


@dataclass(frozen=True)
class _ParsedMap:
    index: Any | None


class SourceMapCache:
    """Bounded, thread-safe cache of parsed maps keyed by map id.

    Stored maps are immutable, so an id always denotes the same content.
    Parse failures are cached too (``index`` is None) so a broken map is
    parsed and logged once. The declared ``file`` of each map is kept in
    a separate, larger table so candidate filtering never decodes a map.
    """

    def __init__(self, maxsize: int = 128, declared_maxsize: int = 4096) -> None:
        self.maxsize = maxsize
        self.declared_maxsize = declared_maxsize
        self._entries: OrderedDict[str, _ParsedMap] = OrderedDict()
        self._declared: OrderedDict[str, str | None] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._declared.clear()

    def discard(self, map_id: str) -> None:
        with self._lock:
            self._entries.pop(map_id, None)
            self._declared.pop(map_id, None)

    def declared(self, record: MapRecord) -> str | None:
        """The map's declared ``file``, read with a plain JSON parse."""
        with self._lock:
            if record.id in self._declared:
                self._declared.move_to_end(record.id)
                return self._declared[record.id]

        value = declared_file(record.content)
        with self._lock:
            self._declared[record.id] = value
            while len(self._declared) > self.declared_maxsize:
                self._declared.popitem(last=False)
        return value

    def get(self, record: MapRecord) -> _ParsedMap:
        with self._lock:
            entry = self._entries.get(record.id)
            if entry is not None:
                self._entries.move_to_end(record.id)
                return entry

        entry = _parse(record)
        with self._lock:
            self._entries[record.id] = entry
            self._entries.move_to_end(record.id)
            while len(self._entries) > self.maxsize:
                self._entries.popitem(last=False)
        return entry


_default_cache = SourceMapCache()


def default_cache() -> SourceMapCache:
    return _default_cache


def _parse(record: MapRecord) -> _ParsedMap:
    try:
        index = sourcemap.loads(record.content)
    except (ValueError, KeyError, TypeError, IndexError) as exc:
        logger.warning(
            "Skipping unparseable source map %s (%s)",
            record.file_name,
            exc,
            extra={"source_map_id": record.id, "error": str(exc)},
        )
        index = None
    return _ParsedMap(index=index)


def _is_cancelled(cancel: CancelCheck | None) -> bool:
    if cancel is None:
        return False
    if isinstance(cancel, threading.Event):
        return cancel.is_set()
    return bool(cancel())


def _lookup(parsed: _ParsedMap, frame: Frame) -> OriginalPosition | None:
    """Original position for *frame*, or None.

    Greatest lower bound on the frame's generated line: the closest mapping
    at or before the column. A column before the first mapping of the line
    has no original position.
    """
    if parsed.index is None or frame.line < 1 or frame.column < 0:
        return None
    line0 = frame.line - 1
    try:
        token = parsed.index.lookup(line0, frame.column)
    except (IndexError, KeyError, TypeError, ValueError):
        return None
    if token is None or token.dst_line != line0 or token.dst_col > frame.column:
        return None
    if not token.src:
        return None
    return OriginalPosition(
        source=token.src,
        line=token.src_line + 1 if token.src_line is not None else None,
        column=token.src_col,
        name=token.name or None,
    )


def _matches(record: MapRecord, frame: Frame, cache: SourceMapCache) -> bool:
    if is_candidate(record.file_name, None, frame.file):
        return True
    declared = cache.declared(record)
    return declared is not None and is_candidate(record.file_name, declared, frame.file)


def _scan(
    frame: Frame,
    maps: Iterable[MapRecord],
    *,
    cache: SourceMapCache,
    limit: int,
    cancel: CancelCheck | None,
    filter_candidates: bool,
) -> Resolution | None:
    scanned = 0
    for record in maps:
        if scanned >= limit or _is_cancelled(cancel):
            return None
        if filter_candidates and not _matches(record, frame, cache):
            continue
        scanned += 1
        original = _lookup(cache.get(record), frame)
        if original is not None:
            return Resolution(original=original, source_map_id=record.id)
    return None


def resolve_frame(
    frame: Frame,
    maps: Sequence[MapRecord],
    *,
    fallback: bool = True,
    max_candidate_maps: int = DEFAULT_MAX_CANDIDATE_MAPS,
    cancel: CancelCheck | None = None,
    cache: SourceMapCache | None = None,
) -> Resolution | None:
    """Resolve *frame* against *maps* (newest first). None when unresolvable or cancelled."""
    if not maps:
        return None
    cache = cache or _default_cache
    found = _scan(frame, maps, cache=cache, limit=max_candidate_maps, cancel=cancel, filter_candidates=True)
    if found is None and fallback and not _is_cancelled(cancel):
        found = _scan(frame, maps, cache=cache, limit=max_candidate_maps, cancel=cancel, filter_candidates=False)
    if found is not None:
        logger.debug(
            "Resolved %s:%d:%d -> %s",
            frame.file,
            frame.line,
            frame.column,
            found.original["source"],
            extra={"source_map_id": found.source_map_id},
        )
    return found


def map_frames(
    stack: str | None,
    maps: Sequence[MapRecord],
    *,
    fallback: bool = True,
    max_frames: int = DEFAULT_MAX_FRAMES,
    max_candidate_maps: int = DEFAULT_MAX_CANDIDATE_MAPS,
    cancel: CancelCheck | None = None,
    cache: SourceMapCache | None = None,
) -> tuple[list[FrameDict], int]:
    """Annotate every frame of *stack*; returns ``(frames, resolved_count)``.

    Unresolved frames keep their generated location and carry no ``original``.
    """
    out: list[FrameDict] = []
    resolved = 0
    for frame in parse_stack(stack, max_frames=max_frames):
        entry = frame.to_dict()
        if not _is_cancelled(cancel):
            found = resolve_frame(
                frame,
                maps,
                fallback=fallback,
                max_candidate_maps=max_candidate_maps,
                cancel=cancel,
                cache=cache,
            )
            if found is not None:
                entry["original"] = found.original
                entry["source_map_id"] = found.source_map_id
                resolved += 1
        out.append(entry)
    return out, resolved


def augment_with_mapped_frames(
    events: Iterable[EventDict],
    maps: Sequence[MapRecord],
    *,
    fallback: bool = True,
    max_frames: int = DEFAULT_MAX_FRAMES,
    max_candidate_maps: int = DEFAULT_MAX_CANDIDATE_MAPS,
    cancel: CancelCheck | None = None,
    cache: SourceMapCache | None = None,
) -> list[EventDict]:
    """Return copies of *events*, adding ``mapped_frames`` where any frame resolved.

    Events without a string stack, or with no resolvable frame, are
    returned unchanged. The input events are never mutated.
    """
    result: list[EventDict] = []
    for event in events:
        payload = event.get("payload") or {}
        stack = payload.get("stack") if isinstance(payload, dict) else None
        if not maps or not isinstance(stack, str) or not stack or _is_cancelled(cancel):
            result.append(event)
            continue
        frames, resolved = map_frames(
            stack,
            maps,
            fallback=fallback,
            max_frames=max_frames,
            max_candidate_maps=max_candidate_maps,
            cancel=cancel,
            cache=cache,
        )
        if resolved:
            annotated = copy.copy(event)
            annotated["mapped_frames"] = [dict(f) for f in frames]
            result.append(annotated)
        else:
            result.append(event)
    return result
