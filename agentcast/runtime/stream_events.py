"""
stream_events.py - Parse agent output lines into events.

Agents such as ``claude --output-format stream-json`` emit one JSON object per
stdout line. Each line becomes one OutputEvent:

- JSON object with a known ``type``  -> SYSTEM / ASSISTANT / USER / RESULT / ERROR
- JSON object with another ``type``  -> UNKNOWN (data kept)
- anything else                      -> TEXT

A line that looks like JSON but does not decode is still forwarded as TEXT,
with ``parse_error`` set, so a malformed stream is visible to the caller.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class EventKind(str, Enum):
    TEXT = "text"
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    RESULT = "result"
    ERROR = "error"
    UNKNOWN = "unknown"


_KNOWN_TYPES = {
    "system": EventKind.SYSTEM,
    "assistant": EventKind.ASSISTANT,
    "user": EventKind.USER,
    "result": EventKind.RESULT,
    "error": EventKind.ERROR,
}


@dataclass(frozen=True)
class OutputEvent:
    """One line of agent output.

    Attributes:
        stream: "stdout" or "stderr".
        kind: Event kind.
        text: The raw line without its trailing newline.
        data: Decoded JSON object for structured events.
        parse_error: Decoder message when the line looked like JSON but wasn't.
    """

    stream: str
    kind: EventKind
    text: str
    data: Optional[Dict[str, Any]] = field(default=None, compare=False)
    parse_error: Optional[str] = None

    @property
    def is_structured(self) -> bool:
        return self.data is not None


def parse_stream_line(line: str, stream: str = "stdout") -> OutputEvent:
    """Convert one output line into an OutputEvent."""
    text = line.rstrip("\r\n")
    if stream != "stdout":
        return OutputEvent(stream=stream, kind=EventKind.TEXT, text=text)

    stripped = text.strip()
    if not stripped.startswith("{"):
        return OutputEvent(stream=stream, kind=EventKind.TEXT, text=text)

    try:
        data = json.loads(stripped)
    except json.JSONDecodeError as e:
        return OutputEvent(stream=stream, kind=EventKind.TEXT, text=text, parse_error=str(e))

    if not isinstance(data, dict):
        return OutputEvent(stream=stream, kind=EventKind.TEXT, text=text)

    kind = _KNOWN_TYPES.get(str(data.get("type", "")), EventKind.UNKNOWN)
    return OutputEvent(stream=stream, kind=kind, text=text, data=data)


# =============================================================================
# Event accessors
# =============================================================================


def _content_blocks(event: OutputEvent) -> List[Dict[str, Any]]:
    if event.data is None:
        return []
    message = event.data.get("message")
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if isinstance(content, str):
        return [{"type": "text", "text": content}]
    if isinstance(content, list):
        return [b for b in content if isinstance(b, dict)]
    return []


def assistant_text(event: OutputEvent) -> str:
    """Concatenated text blocks of an assistant event ("" for other kinds)."""
    if event.kind != EventKind.ASSISTANT:
        return ""
    return "".join(
        str(b.get("text", "")) for b in _content_blocks(event) if b.get("type") == "text"
    )


def tool_calls(event: OutputEvent) -> List[Tuple[str, Dict[str, Any]]]:
    """(name, input) pairs for each tool_use block of an assistant event."""
    if event.kind != EventKind.ASSISTANT:
        return []
    calls = []
    for block in _content_blocks(event):
        if block.get("type") == "tool_use":
            tool_input = block.get("input")
            calls.append((str(block.get("name", "")), tool_input if isinstance(tool_input, dict) else {}))
    return calls


def result_text(event: OutputEvent) -> Optional[str]:
    if event.kind != EventKind.RESULT or event.data is None:
        return None
    result = event.data.get("result")
    return result if isinstance(result, str) else None


def is_error_result(event: OutputEvent) -> bool:
    if event.kind == EventKind.ERROR:
        return True
    return event.kind == EventKind.RESULT and bool((event.data or {}).get("is_error"))


def usage(event: OutputEvent) -> Optional[Tuple[int, int]]:
    """(input_tokens, output_tokens) reported by a result event, if present.

    Cached-prompt tokens are counted as input.
    """
    if event.kind != EventKind.RESULT or event.data is None:
        return None
    reported = event.data.get("usage")
    if not isinstance(reported, dict):
        return None
    try:
        input_tokens = int(reported.get("input_tokens", 0))
        input_tokens += int(reported.get("cache_read_input_tokens", 0) or 0)
        input_tokens += int(reported.get("cache_creation_input_tokens", 0) or 0)
        output_tokens = int(reported.get("output_tokens", 0))
    except (TypeError, ValueError):
        return None
    return input_tokens, output_tokens
