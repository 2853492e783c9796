"""Tests for agent output line parsing."""

import json

from agentcast.runtime.stream_events import (
    EventKind,
    assistant_text,
    is_error_result,
    parse_stream_line,
    result_text,
    tool_calls,
    usage,
)


def _line(obj):
    return json.dumps(obj) + "\n"


class TestParseStreamLine:
    def test_plain_text(self):
        event = parse_stream_line("hello world\n")
        assert event.kind == EventKind.TEXT
        assert event.text == "hello world"
        assert event.data is None
        assert event.parse_error is None

    def test_stderr_is_always_text(self):
        event = parse_stream_line(_line({"type": "result"}), "stderr")
        assert event.kind == EventKind.TEXT
        assert event.stream == "stderr"

    def test_known_types(self):
        for name, kind in [
            ("system", EventKind.SYSTEM),
            ("assistant", EventKind.ASSISTANT),
            ("user", EventKind.USER),
            ("result", EventKind.RESULT),
            ("error", EventKind.ERROR),
        ]:
            assert parse_stream_line(_line({"type": name})).kind == kind

    def test_unknown_type_keeps_data(self):
        event = parse_stream_line(_line({"type": "telemetry", "n": 1}))
        assert event.kind == EventKind.UNKNOWN
        assert event.data == {"type": "telemetry", "n": 1}

    def test_malformed_json_is_forwarded_as_text(self):
        event = parse_stream_line('{"type": "result", \n')
        assert event.kind == EventKind.TEXT
        assert event.parse_error is not None
        assert event.text == '{"type": "result", '

    def test_json_array_is_text(self):
        assert parse_stream_line("[1, 2]").kind == EventKind.TEXT


class TestAccessors:
    def test_assistant_text_and_tool_calls(self):
        event = parse_stream_line(_line({
            "type": "assistant",
            "message": {"content": [
                {"type": "text", "text": "Checking. "},
                {"type": "tool_use", "name": "validate", "input": {"candidate": 1}},
                {"type": "text", "text": "Done."},
            ]},
        }))
        assert assistant_text(event) == "Checking. Done."
        assert tool_calls(event) == [("validate", {"candidate": 1})]

    def test_result_text_and_usage(self):
        event = parse_stream_line(_line({
            "type": "result",
            "result": "finished",
            "usage": {"input_tokens": 10, "cache_read_input_tokens": 5, "output_tokens": 7},
        }))
        assert result_text(event) == "finished"
        assert usage(event) == (15, 7)
        assert not is_error_result(event)

    def test_error_result(self):
        event = parse_stream_line(_line({"type": "result", "is_error": True, "result": "API error"}))
        assert is_error_result(event)

    def test_usage_absent(self):
        assert usage(parse_stream_line(_line({"type": "result"}))) is None
        assert usage(parse_stream_line("plain")) is None
