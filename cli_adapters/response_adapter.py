#!/usr/bin/env python3
"""
Claude CLI -> OpenAI Response Translation
Bleed stripping, <tool_call> extraction and chunk/response builders
"""

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config import BLEED_SENTINELS, DEFAULT_RESPONSE_MODEL, TOOL_CALL_OPEN, TOOL_CALL_CLOSE
from models import MalformedToolCallError

from .stream_parser import Result

logger = logging.getLogger(__name__)

TOOL_CALL_RE = re.compile(re.escape(TOOL_CALL_OPEN) + r"(.*?)" + re.escape(TOOL_CALL_CLOSE), re.DOTALL)


# ============================================================================
# Text Post-processing
# ============================================================================

def strip_assistant_bleed(text: str) -> str:
    """Cut the text at the first hallucinated next-turn header, if any."""
    cut = len(text)
    for sentinel in BLEED_SENTINELS:
        idx = text.find(sentinel)
        if idx != -1 and idx < cut:
            cut = idx
    return text[:cut]


@dataclass
class ParsedToolCalls:
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    text_without_tool_calls: str = ""

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


def decode_tool_call(inner: str, position: int) -> Dict[str, Any]:
    """
    Turn one marker payload into an OpenAI tool call.
    arguments is always a JSON string, whatever shape the model wrote.
    """
    try:
        payload = json.loads(inner.strip())
    except json.JSONDecodeError as e:
        raise MalformedToolCallError(f"invalid JSON in tool call: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedToolCallError("tool call payload is not an object")

    arguments = payload.get("arguments")
    if not isinstance(arguments, str):
        arguments = json.dumps(
            arguments if arguments is not None else {},
            separators=(",", ":"),
            ensure_ascii=False,
        )

    return {
        "id": payload.get("id") or f"call_{position}",
        "type": "function",
        "function": {
            "name": str(payload.get("name") or "unknown"),
            "arguments": arguments,
        },
    }


def parse_tool_calls(text: str) -> ParsedToolCalls:
    """Extract every <tool_call> marker; malformed ones are logged and dropped."""
    tool_calls: List[Dict[str, Any]] = []

    def _replace(match: re.Match) -> str:
        try:
            tool_calls.append(decode_tool_call(match.group(1), len(tool_calls) + 1))
        except MalformedToolCallError as e:
            logger.warning(f"Dropping malformed tool call: {e} payload={match.group(1)[:200]!r}")
        return ""

    remaining = TOOL_CALL_RE.sub(_replace, text).strip()
    return ParsedToolCalls(tool_calls=tool_calls, text_without_tool_calls=remaining)


def normalize_model_name(model: Optional[str]) -> str:
    """Collapse CLI model ids onto the family names we advertise."""
    if not model:
        return DEFAULT_RESPONSE_MODEL
    for family in ("opus", "sonnet", "haiku"):
        if family in model:
            return f"claude-{family}-4"
    return model


# ============================================================================
# Streaming Chunks
# ============================================================================

def make_chunk(
    request_id: str,
    model: str,
    created: int,
    delta: Dict[str, Any],
    finish_reason: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "id": f"chatcmpl-{request_id}",
        "object": "chat.completion.chunk",
        "created": created,
        "model": normalize_model_name(model),
        "choices": [{
            "index": 0,
            "delta": delta,
            "finish_reason": finish_reason,
        }],
    }


def create_content_chunk(request_id: str, model: str, created: int, text: str, first: bool = False) -> Dict[str, Any]:
    delta: Dict[str, Any] = {"role": "assistant", "content": text} if first else {"content": text}
    return make_chunk(request_id, model, created, delta)


def create_done_chunk(request_id: str, model: str, created: int) -> Dict[str, Any]:
    return make_chunk(request_id, model, created, {}, finish_reason="stop")


def create_tool_call_chunks(
    tool_calls: List[Dict[str, Any]],
    request_id: str,
    model: str,
    created: int,
) -> List[Dict[str, Any]]:
    """Announce all calls with empty arguments, then one arguments chunk per call, then finish."""
    announce = {
        "role": "assistant",
        "tool_calls": [
            {
                "index": i,
                "id": call["id"],
                "type": "function",
                "function": {"name": call["function"]["name"], "arguments": ""},
            }
            for i, call in enumerate(tool_calls)
        ],
    }
    chunks = [make_chunk(request_id, model, created, announce)]
    for i, call in enumerate(tool_calls):
        chunks.append(make_chunk(request_id, model, created, {
            "tool_calls": [{"index": i, "function": {"arguments": call["function"]["arguments"]}}],
        }))
    chunks.append(make_chunk(request_id, model, created, {}, finish_reason="tool_calls"))
    return chunks


def create_error_event(message: str, error_type: str = "server_error", code: Optional[str] = None) -> Dict[str, Any]:
    return {"error": {"message": message, "type": error_type, "code": code}}


def format_sse(payload: Any) -> str:
    if isinstance(payload, str):
        return f"data: {payload}\n\n"
    return f"data: {json.dumps(payload)}\n\n"


# ============================================================================
# Non-streaming Response
# ============================================================================

def cli_result_to_openai(result: Result, request_id: str, fallback_model: Optional[str] = None) -> Dict[str, Any]:
    """Full chat.completion object from the terminal result; text is bleed-stripped here."""
    model_name = next(iter(result.model_usage), None) or fallback_model or DEFAULT_RESPONSE_MODEL
    safe_text = strip_assistant_bleed(result.text or "")
    parsed = parse_tool_calls(safe_text)

    if parsed.has_tool_calls:
        choice = {
            "index": 0,
            "message": {"role": "assistant", "content": None, "tool_calls": parsed.tool_calls},
            "finish_reason": "tool_calls",
        }
    else:
        choice = {
            "index": 0,
            "message": {"role": "assistant", "content": parsed.text_without_tool_calls or safe_text},
            "finish_reason": "stop",
        }

    prompt_tokens = int(result.usage.get("input_tokens") or 0)
    completion_tokens = int(result.usage.get("output_tokens") or 0)
    return {
        "id": f"chatcmpl-{request_id}",
        "object": "chat.completion",
        "created": int(time.time()),
        "model": normalize_model_name(model_name),
        "choices": [choice],
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        },
    }
