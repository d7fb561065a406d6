"""Tests for generated-file to source-map name matching."""

from __future__ import annotations

import pytest

from stacktrail.matching import basename, declared_file, is_candidate, normalize_filename
from tests._helpers import make_map


class TestBasename:
    def test_url(self) -> None:
        assert basename("https://cdn.example.com/static/app.js?v=3#x") == "app.js"

    def test_windows_path(self) -> None:
        assert basename("C:\\build\\dist\\app.js") == "app.js"


class TestNormalizeFilename:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("bundle-a1b2c3d4e5f6.js.map", "bundle"),
            ("dist/bundle-a1b2c3d4e5f6.js.map", "bundle"),
            ("app.4f2a9c1d.js", "app"),
            ("app.js", "app"),
            ("app.js.map", "app"),
            ("Main_Chunk.JS", "mainchunk"),
            ("https://cdn.example.com/vendor~main.js?v=2", "vendormain"),
        ],
    )
    def test_examples(self, name: str, expected: str) -> None:
        assert normalize_filename(name) == expected

    def test_empty(self) -> None:
        assert normalize_filename("") == ""
        assert normalize_filename(None) == ""

    def test_short_suffix_is_not_a_hash(self) -> None:
        assert normalize_filename("page-abc.js") == "pageabc"


class TestIsCandidate:
    def test_hashed_bundle_matches_its_map(self) -> None:
        assert is_candidate("bundle-a1b2c3d4e5f6.js.map", None, "https://cdn.example.com/bundle-99ffee0011.js")

    def test_declared_file_matches(self) -> None:
        assert is_candidate("upload.map", "app.js", "app.js")

    def test_containment_matches(self) -> None:
        assert is_candidate("main.js.map", None, "main.chunk.js")

    def test_unrelated_rejected(self) -> None:
        assert not is_candidate("vendor.js.map", None, "app.js")

    def test_empty_generated_file_never_matches(self) -> None:
        assert not is_candidate("app.js.map", None, "")


class TestDeclaredFile:
    def test_reads_file_property(self) -> None:
        assert declared_file(make_map(file="app.js")) == "app.js"

    def test_missing_or_invalid(self) -> None:
        assert declared_file(make_map(file=None)) is None
        assert declared_file("{not json") is None
        assert declared_file('["array"]') is None
        assert declared_file('{"file": ""}') is None
