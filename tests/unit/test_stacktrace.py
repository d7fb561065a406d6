"""Tests for stack trace parsing."""

from __future__ import annotations

from stacktrail.stacktrace import Frame, parse_stack


class TestParseStack:
    def test_named_frame(self) -> None:
        frames = parse_stack("    at handleClick (https://cdn.example.com/app.js:1:2045)")
        assert frames == [Frame(function="handleClick", file="https://cdn.example.com/app.js", line=1, column=2045)]

    def test_anonymous_frame(self) -> None:
        assert parse_stack("at app.js:10:5") == [Frame(function=None, file="app.js", line=10, column=5)]

    def test_url_with_port_keeps_full_file(self) -> None:
        (frame,) = parse_stack("at load (http://localhost:8080/static/main.js:12:7)")
        assert frame.file == "http://localhost:8080/static/main.js"
        assert (frame.line, frame.column) == (12, 7)

    def test_async_prefix_dropped(self) -> None:
        (frame,) = parse_stack("    at async loadData (webpack:///src/api.ts:12:7)")
        assert frame.function == "loadData"
        assert frame.file == "webpack:///src/api.ts"

    def test_non_frame_lines_skipped(self) -> None:
        text = "TypeError: x is undefined\n    at a (a.js:1:1)\n    some noise\n    at b.js:2:2\n"
        frames = parse_stack(text)
        assert [f.file for f in frames] == ["a.js", "b.js"]

    def test_order_is_top_of_stack_first(self) -> None:
        frames = parse_stack("at first (a.js:1:1)\nat second (b.js:2:2)")
        assert [f.function for f in frames] == ["first", "second"]

    def test_max_frames(self) -> None:
        text = "\n".join(f"at f{i} (a.js:{i + 1}:0)" for i in range(10))
        assert len(parse_stack(text, max_frames=3)) == 3
        assert len(parse_stack(text)) == 10

    def test_empty_and_non_string_input(self) -> None:
        assert parse_stack("") == []
        assert parse_stack(None) == []
        assert parse_stack(42) == []  # type: ignore[arg-type]

    def test_firefox_style_lines_ignored(self) -> None:
        assert parse_stack("render@https://example.com/app.js:1:10") == []


class TestFrame:
    def test_to_dict(self) -> None:
        frame = Frame(function="fn", file="app.js", line=3, column=9)
        assert frame.to_dict() == {"generated": {"file": "app.js", "line": 3, "column": 9}, "function": "fn"}
