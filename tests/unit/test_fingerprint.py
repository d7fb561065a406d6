"""Tests for error fingerprints."""

from __future__ import annotations

import hashlib

import pytest

from stacktrail.fingerprint import (
    STRATEGY_EXACT,
    STRATEGY_FRAMES,
    compute_fingerprint,
    fingerprint,
    normalize_stack,
)

STACK = "TypeError: x\n    at render (https://cdn.example.com/app.4f2a9c1d.js:1:2045)\n    at main (vendor.js:3:14)"


class TestFingerprint:
    def test_is_sha256_of_message_and_stack(self) -> None:
        expected = hashlib.sha256(b"boom\nat a (x.js:1:1)").hexdigest()
        assert fingerprint("boom", "at a (x.js:1:1)") == expected

    def test_deterministic(self) -> None:
        assert fingerprint("boom", STACK) == fingerprint("boom", STACK)
        assert len(fingerprint("boom", STACK)) == 64

    def test_missing_stack_equals_empty_stack(self) -> None:
        assert fingerprint("boom") == fingerprint("boom", None) == fingerprint("boom", "")
        assert fingerprint("boom") == hashlib.sha256(b"boom").hexdigest()

    def test_surrounding_whitespace_ignored(self) -> None:
        assert fingerprint("\n  boom", "stack  \n") == fingerprint("boom", "stack")

    def test_sensitive_to_message(self) -> None:
        assert fingerprint("boom", STACK) != fingerprint("bang", STACK)

    def test_sensitive_to_line_numbers(self) -> None:
        shifted = STACK.replace(":1:2045", ":1:2046")
        assert fingerprint("boom", STACK) != fingerprint("boom", shifted)


class TestNormalizeStack:
    def test_one_entry_per_frame_without_positions(self) -> None:
        assert normalize_stack(STACK) == "render@app\nmain@vendor"

    def test_empty_when_no_frames(self) -> None:
        assert normalize_stack("just a message") == ""
        assert normalize_stack(None) == ""


class TestComputeFingerprint:
    def test_exact_is_default(self) -> None:
        assert compute_fingerprint("boom", STACK) == fingerprint("boom", STACK)
        assert compute_fingerprint("boom", STACK, strategy=STRATEGY_EXACT) == fingerprint("boom", STACK)

    def test_frames_ignores_line_shifts_and_bundle_hashes(self) -> None:
        redeployed = STACK.replace("app.4f2a9c1d.js:1:2045", "app.77e0b3aa.js:1:3120")
        assert compute_fingerprint("boom", STACK, strategy=STRATEGY_FRAMES) == compute_fingerprint(
            "boom", redeployed, strategy=STRATEGY_FRAMES
        )

    def test_frames_still_sensitive_to_message(self) -> None:
        a = compute_fingerprint("boom", STACK, strategy=STRATEGY_FRAMES)
        b = compute_fingerprint("bang", STACK, strategy=STRATEGY_FRAMES)
        assert a != b

    def test_frames_falls_back_to_exact_without_frames(self) -> None:
        assert compute_fingerprint("boom", "no frames", strategy=STRATEGY_FRAMES) == fingerprint("boom", "no frames")

    def test_unknown_strategy_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown fingerprint strategy"):
            compute_fingerprint("boom", STACK, strategy="fuzzy")
