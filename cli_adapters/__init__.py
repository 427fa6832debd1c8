"""Claude CLI adapters: process supervision and protocol translation"""
from .stream_parser import (
    StreamParser, ContentDelta, AssistantMessage, Result, StreamMessage, Raw, tool_use_name
)
from .claude_adapter import ClaudeSubprocess, SubprocessOptions, build_args, build_env, verify_claude
from .request_adapter import CliInput, extract_model, openai_to_cli, tools_enabled, subagent_preamble
from .response_adapter import (
    strip_assistant_bleed, parse_tool_calls, ParsedToolCalls, cli_result_to_openai,
    create_content_chunk, create_done_chunk, create_tool_call_chunks, create_error_event,
    normalize_model_name, format_sse
)

__all__ = [
    'StreamParser', 'ContentDelta', 'AssistantMessage', 'Result', 'StreamMessage', 'Raw',
    'tool_use_name', 'ClaudeSubprocess', 'SubprocessOptions', 'build_args', 'build_env',
    'verify_claude', 'CliInput', 'extract_model', 'openai_to_cli', 'tools_enabled',
    'subagent_preamble', 'strip_assistant_bleed', 'parse_tool_calls', 'ParsedToolCalls',
    'cli_result_to_openai', 'create_content_chunk', 'create_done_chunk',
    'create_tool_call_chunks', 'create_error_event', 'normalize_model_name', 'format_sse'
]
