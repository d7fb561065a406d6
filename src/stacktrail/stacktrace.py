"""Stack trace parsing.

Extracts structured frames from free-text JavaScript-style stack traces:

    at handleClick (https://cdn.example.com/app.4f2a9c.js:1:2045)
    at async loadData (webpack:///src/api.ts:12:7)
    at app.js:10:5

Lines that do not look like a frame are skipped; heterogeneous stacks from
different runtimes are expected input, not an error.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from stacktrail.types.frames import FrameDict, GeneratedPosition

DEFAULT_MAX_FRAMES = 200

# "at fn (file:line:col)" or "at file:line:col"; file is lazy so URLs with ports survive.
_FRAME_RE = re.compile(r"^\s*at\s+(?:(.*?)\s+\()?(.+?):(\d+):(\d+)\)?\s*$")
_ASYNC_PREFIX = "async "


@dataclass(frozen=True)
class Frame:
    function: str | None
    file: str
    line: int
    column: int

    def generated(self) -> GeneratedPosition:
        return GeneratedPosition(file=self.file, line=self.line, column=self.column)

    def to_dict(self) -> FrameDict:
        return FrameDict(generated=self.generated(), function=self.function)


def _clean_function(raw: str | None) -> str | None:
    if raw is None:
        return None
    name = raw.strip()
    if name.startswith(_ASYNC_PREFIX):
        name = name[len(_ASYNC_PREFIX) :].strip()
    return name or None


def parse_stack(text: str | None, *, max_frames: int = DEFAULT_MAX_FRAMES) -> list[Frame]:
    """Parse *text* into frames, top of stack first.

    Stops after *max_frames* frames. Returns an empty list for empty or
    non-string input.
    """
    if not isinstance(text, str) or not text:
        return []

    frames: list[Frame] = []
    for line in text.splitlines():
        if len(frames) >= max_frames:
            break
        m = _FRAME_RE.match(line)
        if m is None:
            continue
        fn, file, line_no, col_no = m.groups()
        frames.append(Frame(function=_clean_function(fn), file=file, line=int(line_no), column=int(col_no)))
    return frames
