"""Tests for cli_adapters.stream_parser."""

import json

from cli_adapters.stream_parser import (
    StreamParser, ContentDelta, AssistantMessage, Result, StreamMessage, Raw, tool_use_name
)
from helpers import delta_line, assistant_line, result_line, tool_start_line


# ---------------------------------------------------------------------------
# Line buffering
# ---------------------------------------------------------------------------

def test_multiple_lines_in_one_chunk_keep_order():
    parser = StreamParser()
    chunk = "\n".join([delta_line("a"), delta_line("b"), delta_line("c")]) + "\n"

    events = parser.feed(chunk.encode())

    assert [e.text for e in events] == ["a", "b", "c"]
    assert parser.buffer == ""


def test_line_spanning_chunks_is_held_until_complete():
    parser = StreamParser()
    line = delta_line("hello world") + "\n"
    cut = len(line) // 2

    assert parser.feed(line[:cut].encode()) == []
    events = parser.feed(line[cut:].encode())

    assert len(events) == 1
    assert isinstance(events[0], ContentDelta)
    assert events[0].text == "hello world"


def test_multibyte_character_split_across_chunks():
    parser = StreamParser()
    data = (delta_line("日本語") + "\n").encode("utf-8")
    # Split inside the first multi-byte character
    split = data.index("日".encode("utf-8")) + 1

    events = parser.feed(data[:split]) + parser.feed(data[split:])

    assert [e.text for e in events] == ["日本語"]


def test_byte_at_a_time():
    parser = StreamParser()
    data = (delta_line("x") + "\n" + result_line("x") + "\n").encode()

    events = []
    for i in range(len(data)):
        events.extend(parser.feed(data[i:i + 1]))

    assert isinstance(events[0], ContentDelta)
    assert isinstance(events[1], Result)


def test_flush_parses_unterminated_last_line():
    parser = StreamParser()
    assert parser.feed(result_line("done")) == []

    events = parser.flush()

    assert len(events) == 1
    assert events[0].text == "done"
    assert parser.flush() == []


def test_blank_lines_are_skipped():
    parser = StreamParser()
    events = parser.feed("\n\n   \n" + delta_line("a") + "\n\n")
    assert len(events) == 1


# ---------------------------------------------------------------------------
# Undecodable input
# ---------------------------------------------------------------------------

def test_invalid_json_becomes_raw_verbatim():
    parser = StreamParser()
    events = parser.feed("not json at all\n" + delta_line("ok") + "\n")

    assert events[0] == Raw(line="not json at all")
    assert events[1].text == "ok"


def test_non_object_json_becomes_raw():
    parser = StreamParser()
    events = parser.feed("[1, 2, 3]\n42\n")
    assert events == [Raw(line="[1, 2, 3]"), Raw(line="42")]


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def test_assistant_message_carries_model():
    events = StreamParser().feed(assistant_line("claude-sonnet-4-5-20250929") + "\n")
    assert isinstance(events[0], AssistantMessage)
    assert events[0].model_name == "claude-sonnet-4-5-20250929"


def test_result_carries_usage_and_model_usage():
    events = StreamParser().feed(result_line("final", input_tokens=3, output_tokens=4) + "\n")
    result = events[0]
    assert isinstance(result, Result)
    assert result.text == "final"
    assert result.usage == {"input_tokens": 3, "output_tokens": 4}
    assert list(result.model_usage) == ["claude-opus-4-6"]


def test_result_without_usage_is_not_terminal():
    events = StreamParser().feed(json.dumps({"type": "result", "result": "x"}) + "\n")
    assert isinstance(events[0], StreamMessage)


def test_system_and_tool_events_are_stream_messages():
    line = json.dumps({"type": "system", "subtype": "init", "session_id": "abc"})
    events = StreamParser().feed(line + "\n" + tool_start_line("Bash") + "\n")
    assert all(isinstance(e, StreamMessage) for e in events)
    assert events[0].payload["subtype"] == "init"


def test_tool_use_name():
    assert tool_use_name(json.loads(tool_start_line("WebSearch"))) == "WebSearch"
    assert tool_use_name(json.loads(delta_line("x"))) is None
    text_block = {
        "type": "stream_event",
        "event": {"type": "content_block_start", "content_block": {"type": "text", "text": ""}},
    }
    assert tool_use_name(text_block) is None
