"""Error fingerprints: the identity used to group events into issues."""

from __future__ import annotations

import hashlib

from stacktrail.matching import normalize_filename
from stacktrail.stacktrace import parse_stack

STRATEGY_EXACT = "exact"
STRATEGY_FRAMES = "frames"
VALID_STRATEGIES = frozenset({STRATEGY_EXACT, STRATEGY_FRAMES})


def _digest(source: str) -> str:
    return hashlib.sha256(source.encode("utf-8")).hexdigest()


def fingerprint(message: str, stack: str | None = None) -> str:
    """SHA-256 hex of ``message + "\\n" + stack`` with surrounding whitespace stripped.

    The stack is hashed verbatim, so a redeploy that shifts line numbers
    produces a new fingerprint.
    """
    return _digest(f"{message}\n{stack or ''}".strip())


def normalize_stack(stack: str | None) -> str:
    """Canonical form of *stack* with line/column numbers and bundle hashes removed.

    One ``function@file`` entry per parsed frame. Empty when nothing parses.
    """
    return "\n".join(f"{frame.function or ''}@{normalize_filename(frame.file)}" for frame in parse_stack(stack))


def compute_fingerprint(message: str, stack: str | None = None, *, strategy: str = STRATEGY_EXACT) -> str:
    """Fingerprint with the configured *strategy*.

    ``"frames"`` hashes the normalized stack and falls back to the exact
    fingerprint when the stack has no recognizable frames.
    """
    if strategy == STRATEGY_EXACT:
        return fingerprint(message, stack)
    if strategy == STRATEGY_FRAMES:
        canonical = normalize_stack(stack)
        if not canonical:
            return fingerprint(message, stack)
        return _digest(f"{message}\n{canonical}".strip())
    msg = f"Unknown fingerprint strategy {strategy!r}. Valid: {', '.join(sorted(VALID_STRATEGIES))}"
    raise ValueError(msg)
