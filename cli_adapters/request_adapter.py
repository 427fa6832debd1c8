#!/usr/bin/env python3
"""
OpenAI -> Claude CLI Request Translation
Flattens a chat-completions message list into the single prompt and
system prompt the CLI accepts in --print mode.
"""

import json
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Union

from config import (
    MODEL_MAP, MODEL_PREFIXES, DEFAULT_MODEL, MAX_PROMPT_BYTES,
    CLI_TOOL_INSTRUCTION, EXTERNAL_TOOLS_INSTRUCTION, SUBAGENT_PREAMBLE
)
from models import ChatCompletionRequest, ContentPart, Message, Tool
from utils.helpers import emit_log as _emit_log

logger = logging.getLogger(__name__)

# Silent-reply token some callers store as an assistant turn
NO_REPLY = "NO_REPLY"


@dataclass
class CliInput:
    prompt: str
    model: str
    system_prompt: Optional[str]
    is_resuming: bool = False


def extract_text(content: Union[str, List[ContentPart], None]) -> str:
    """Plain text of a message; only text parts of multi-part content are kept."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return "\n".join(
        part.text for part in content
        if part.type == "text" and isinstance(part.text, str)
    )


def extract_model(model: Optional[str]) -> str:
    """Map a request model string onto a CLI --model value."""
    if not model:
        return DEFAULT_MODEL
    if model in MODEL_MAP:
        return MODEL_MAP[model]

    stripped = model
    for prefix in MODEL_PREFIXES:
        if stripped.startswith(prefix):
            stripped = stripped[len(prefix):]
            break
    if stripped in MODEL_MAP:
        return MODEL_MAP[stripped]
    # Full model names pass straight through to the CLI
    if stripped.startswith("claude-"):
        return stripped
    return DEFAULT_MODEL


def tools_enabled(request: ChatCompletionRequest) -> bool:
    """Caller tools are active when present, non-empty and not disabled by tool_choice."""
    return bool(request.tools) and request.tool_choice != "none"


def _render_tool_calls(message: Message) -> List[str]:
    markers = []
    for call in message.tool_calls or []:
        try:
            arguments = json.loads(call.function.arguments) if call.function.arguments else {}
        except json.JSONDecodeError:
            arguments = call.function.arguments
        payload = {"id": call.id, "name": call.function.name, "arguments": arguments}
        markers.append(f"<tool_call>{json.dumps(payload)}</tool_call>")
    return markers


def _render_message(message: Message) -> Optional[str]:
    text = extract_text(message.content)

    if message.role == "user":
        return f"[User]\n{text}"

    if message.role == "assistant":
        body = [] if not text or text.strip() == NO_REPLY else [text.strip()]
        body.extend(_render_tool_calls(message))
        if not body:
            return None
        return "[Assistant]\n" + "\n".join(body)

    if message.role == "tool":
        label = message.name or message.tool_call_id or "tool"
        return f"[Tool result: {label}]\n{text}"

    return text or None


def messages_to_prompt(messages: Sequence[Message]) -> str:
    """Whole conversation as one prompt; system messages travel separately."""
    parts = []
    for message in messages:
        if message.role == "system":
            continue
        rendered = _render_message(message)
        if rendered:
            parts.append(rendered)
    return "\n\n".join(parts).strip()


def extract_resume_prompt(messages: Sequence[Message]) -> str:
    """
    Prompt for a resumed session: only the turns after the last assistant
    message, since the CLI already holds the rest in its session file.
    A lone trailing user turn is sent as its raw text.
    """
    last_assistant = -1
    for i, message in enumerate(messages):
        if message.role == "assistant":
            last_assistant = i

    tail = [m for m in messages[last_assistant + 1:] if m.role != "system"]
    if not tail:
        return messages_to_prompt(messages)
    if len(tail) == 1 and tail[0].role == "user":
        return extract_text(tail[0].content)
    return messages_to_prompt(tail)


def _describe_tools(tools: Sequence[Tool]) -> str:
    lines = []
    for tool in tools:
        fn = tool.function
        line = f"- {fn.name}"
        if fn.description:
            line += f": {fn.description}"
        lines.append(line)
        if fn.parameters:
            lines.append(f"  parameters: {json.dumps(fn.parameters)}")
    return "\n".join(lines)


def extract_system_prompt(messages: Sequence[Message], tools: Optional[Sequence[Tool]] = None) -> Optional[str]:
    """Caller system messages plus the gateway's CLI (and external tool) instructions."""
    base = "\n\n".join(extract_text(m.content) for m in messages if m.role == "system")
    prompt = base + CLI_TOOL_INSTRUCTION
    if tools:
        prompt += EXTERNAL_TOOLS_INSTRUCTION + _describe_tools(tools)
    return prompt.strip() or None


def subagent_preamble(elapsed: str, tools: List[str], cwd) -> str:
    return SUBAGENT_PREAMBLE.format(
        elapsed=elapsed,
        tools=" -> ".join(tools) or "working",
        cwd=cwd,
    )


def truncate_prompt(prompt: str, trace: Optional[Callable] = None, limit: int = MAX_PROMPT_BYTES) -> str:
    """Keep the tail of an oversized prompt so it fits in one argv entry."""
    encoded = prompt.encode("utf-8")
    if len(encoded) <= limit:
        return prompt
    _emit_log(
        trace,
        "prompt.truncated",
        f"Prompt too large ({len(encoded)} bytes), truncated to {limit} bytes",
        level=logging.WARNING,
    )
    return encoded[-limit:].decode("utf-8", errors="ignore")


def openai_to_cli(
    request: ChatCompletionRequest,
    has_existing_session: bool = False,
    has_tools: bool = False,
    trace: Optional[Callable] = None,
) -> CliInput:
    if has_existing_session:
        prompt = extract_resume_prompt(request.messages)
        # The resumed session already carries its system prompt
        system_prompt = None
    else:
        prompt = messages_to_prompt(request.messages)
        system_prompt = extract_system_prompt(request.messages, request.tools if has_tools else None)

    return CliInput(
        prompt=truncate_prompt(prompt, trace=trace),
        model=extract_model(request.model),
        system_prompt=system_prompt,
        is_resuming=has_existing_session,
    )
