#!/usr/bin/env python3
"""
Claude CLI stream-json Parser
Turns raw stdout chunks into typed events, one per complete NDJSON line
"""

import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


# ============================================================================
# Event Types
# ============================================================================

@dataclass
class ContentDelta:
    """Incremental text from a content_block_delta stream event."""
    text: str
    payload: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class AssistantMessage:
    """A full assistant message; carries the model that produced it."""
    model_name: Optional[str]
    payload: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class Result:
    """Terminal summary: full response text plus usage accounting."""
    text: str
    usage: Dict[str, Any] = field(default_factory=dict)
    model_usage: Dict[str, Any] = field(default_factory=dict)
    is_error: bool = False
    session_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class StreamMessage:
    """Decoded JSON line that is none of the above (system, tool events, ...)."""
    payload: Dict[str, Any]


@dataclass
class Raw:
    """Line that was not a JSON object, kept verbatim."""
    line: str


BackendEvent = Union[ContentDelta, AssistantMessage, Result, StreamMessage, Raw]


# ============================================================================
# Structural Predicates
# ============================================================================

def is_content_delta(message: Dict[str, Any]) -> bool:
    if message.get("type") != "stream_event":
        return False
    event = message.get("event")
    if not isinstance(event, dict) or event.get("type") != "content_block_delta":
        return False
    delta = event.get("delta")
    return isinstance(delta, dict) and isinstance(delta.get("text"), str)


def is_assistant_message(message: Dict[str, Any]) -> bool:
    inner = message.get("message")
    return (
        message.get("type") == "assistant"
        and isinstance(inner, dict)
        and inner.get("role") == "assistant"
    )


def is_result_message(message: Dict[str, Any]) -> bool:
    return message.get("type") == "result" and "usage" in message


def tool_use_name(message: Dict[str, Any]) -> Optional[str]:
    """Name of the tool when the message opens a tool_use content block."""
    if message.get("type") != "stream_event":
        return None
    event = message.get("event") or {}
    if event.get("type") != "content_block_start":
        return None
    block = event.get("content_block") or {}
    if block.get("type") == "tool_use" and block.get("name"):
        return block["name"]
    return None


def classify(message: Dict[str, Any]) -> BackendEvent:
    """Map one decoded stream-json object onto its event type."""
    if is_content_delta(message):
        return ContentDelta(text=message["event"]["delta"]["text"], payload=message)
    if is_assistant_message(message):
        return AssistantMessage(model_name=message["message"].get("model"), payload=message)
    if is_result_message(message):
        result_text = message.get("result")
        return Result(
            text=result_text if isinstance(result_text, str) else "",
            usage=message.get("usage") or {},
            model_usage=message.get("modelUsage") or {},
            is_error=bool(message.get("is_error")),
            session_id=message.get("session_id"),
            payload=message,
        )
    return StreamMessage(payload=message)


# ============================================================================
# Incremental Parser
# ============================================================================

class StreamParser:
    """
    Rolling-buffer NDJSON parser.

    feed() accepts bytes or str in arbitrary chunk sizes. Complete lines are
    decoded and classified in order; the trailing partial line waits for the
    next chunk. Anything that is not a JSON object comes back as Raw.
    """

    def __init__(self):
        self.buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: Union[bytes, str]) -> List[BackendEvent]:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self.buffer += chunk
        lines = self.buffer.split("\n")
        self.buffer = lines.pop()
        return self._parse_lines(lines)

    def flush(self) -> List[BackendEvent]:
        """Parse whatever is left once the stream has ended."""
        self.buffer += self._decoder.decode(b"", final=True)
        remaining, self.buffer = self.buffer, ""
        return self._parse_lines([remaining])

    def _parse_lines(self, lines: List[str]) -> List[BackendEvent]:
        events: List[BackendEvent] = []
        for line in lines:
            trimmed = line.strip()
            if not trimmed:
                continue
            try:
                message = json.loads(trimmed)
            except json.JSONDecodeError:
                events.append(Raw(line=trimmed))
                continue
            if not isinstance(message, dict):
                events.append(Raw(line=trimmed))
                continue
            events.append(classify(message))
        return events
