#!/usr/bin/env python3
"""
Streaming Response Pipeline
Turns one ClaudeSubprocess's events into OpenAI chat.completion.chunk SSE
lines. Plain-text mode forwards deltas through the bleed filter; tool mode
buffers everything and synthesizes tool-call chunks from the final text.
"""

import asyncio
import logging
import time
from typing import AsyncGenerator, Callable, List, Optional, Tuple, Any

from config import DEFAULT_RESPONSE_MODEL
from models import GatewayError, IdleTimeoutError, AbnormalExitError, ResumeFailureError
from cli_adapters.claude_adapter import ClaudeSubprocess
from cli_adapters.stream_parser import ContentDelta, AssistantMessage, Result, tool_use_name
from cli_adapters.response_adapter import (
    strip_assistant_bleed, parse_tool_calls, create_content_chunk, create_done_chunk,
    create_tool_call_chunks, create_error_event, format_sse
)
from routing.active_requests import ActiveRequestRegistry
from routing.subagent_router import RequestLease
from utils.helpers import emit_log as _emit_log, truncate as _truncate

from .bleed_filter import BleedFilter

logger = logging.getLogger(__name__)

DONE = "data: [DONE]\n\n"


def attach_tool_tracking(
    subprocess: ClaudeSubprocess,
    request_id: str,
    registry: ActiveRequestRegistry,
    progress=None,
    trace: Optional[Callable] = None,
):
    """Feed tool_use starts into the registry (for /health) and the progress message."""
    def _on_message(message):
        name = tool_use_name(message)
        if not name:
            return
        _emit_log(trace, "stream.tool_use", f"tool={name}")
        registry.track_tool(request_id, name)
        if progress is not None:
            progress.report(name)

    subprocess.on("message", _on_message)


def notify_timeout(notifier, error: Exception):
    if notifier is not None and isinstance(error, IdleTimeoutError):
        notifier.notify(f"Request timed out and was terminated: {error}")


class StreamingPipeline:
    """
    Subscribe before the subprocess starts, then iterate stream().

    cleanup() kills the backend if no result arrived, removes the progress
    message and releases the lease. It runs when the generator finishes for
    any reason (including client disconnect) and is idempotent.
    """

    def __init__(
        self,
        subprocess: ClaudeSubprocess,
        request_id: str,
        lease: RequestLease,
        tools_mode: bool = False,
        progress=None,
        notifier=None,
        trace: Optional[Callable] = None,
    ):
        self.subprocess = subprocess
        self.request_id = request_id
        self.lease = lease
        self.tools_mode = tools_mode
        self.progress = progress
        self.notifier = notifier
        self.trace = trace

        self.created = int(time.time())
        self.model = DEFAULT_RESPONSE_MODEL
        self.is_complete = False
        self.cleaned_up = False
        self.bleed = BleedFilter()
        self.tool_buffer: List[str] = []
        self._first_content = True
        self._emitted_text = False
        self._queue: "asyncio.Queue[Tuple[str, Any]]" = asyncio.Queue()

        subprocess.on("content_delta", lambda event: self._queue.put_nowait(("delta", event)))
        subprocess.on("assistant", lambda event: self._queue.put_nowait(("assistant", event)))
        subprocess.on("result", lambda event: self._queue.put_nowait(("result", event)))
        subprocess.on("error", lambda error: self._queue.put_nowait(("error", error)))
        subprocess.on("close", lambda code: self._queue.put_nowait(("close", code)))

    # ------------------------------------------------------------------
    # Chunk helpers
    # ------------------------------------------------------------------

    def _content(self, text: str) -> str:
        chunk = create_content_chunk(self.request_id, self.model, self.created, text, first=self._first_content)
        self._first_content = False
        self._emitted_text = True
        return format_sse(chunk)

    def _error(self, error: Exception) -> str:
        if isinstance(error, GatewayError):
            payload = create_error_event(str(error), error.error_type, error.code)
        else:
            payload = create_error_event(str(error))
        return format_sse(payload)

    # ------------------------------------------------------------------
    # Terminal steps
    # ------------------------------------------------------------------

    def _finish_plain(self, result: Result) -> List[str]:
        lines = []
        tail = self.bleed.finish()
        if tail:
            lines.append(self._content(tail))
        elif not self._emitted_text and not self.bleed.accumulated and result.text:
            # Some runs only carry the text on the result event
            fallback = strip_assistant_bleed(result.text)
            if fallback:
                lines.append(self._content(fallback))
        lines.append(format_sse(create_done_chunk(self.request_id, self.model, self.created)))
        return lines

    def _finish_tools(self, result: Result) -> List[str]:
        buffered = "".join(self.tool_buffer) or result.text
        parsed = parse_tool_calls(strip_assistant_bleed(buffered))
        if parsed.has_tool_calls:
            _emit_log(
                self.trace,
                "stream.tool_calls",
                f"count={len(parsed.tool_calls)} names={[c['function']['name'] for c in parsed.tool_calls]}",
            )
            return [
                format_sse(chunk)
                for chunk in create_tool_call_chunks(parsed.tool_calls, self.request_id, self.model, self.created)
            ]
        lines = []
        if parsed.text_without_tool_calls:
            lines.append(self._content(parsed.text_without_tool_calls))
        lines.append(format_sse(create_done_chunk(self.request_id, self.model, self.created)))
        return lines

    def _flush_partial(self) -> List[str]:
        """Text still held back when the CLI exits without a result."""
        if self.tools_mode:
            text = parse_tool_calls(strip_assistant_bleed("".join(self.tool_buffer))).text_without_tool_calls
        else:
            text = self.bleed.finish()
        return [self._content(text)] if text else []

    def _close_error(self, code: Optional[int]) -> GatewayError:
        """Close without a result is an error even on exit code 0."""
        stderr = _truncate(self.subprocess.stderr_text())
        if self.subprocess.resume_failed:
            return ResumeFailureError(self.lease.effective_conversation_id, stderr)
        return AbnormalExitError(code, stderr)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def stream(self) -> AsyncGenerator[str, None]:
        try:
            # Confirms the connection before the CLI produces anything
            yield ":ok\n\n"
            while True:
                kind, value = await self._queue.get()

                if kind == "delta":
                    delta: ContentDelta = value
                    if self.tools_mode:
                        self.tool_buffer.append(delta.text)
                        continue
                    was_bled = self.bleed.bled
                    safe = self.bleed.feed(delta.text)
                    if safe:
                        yield self._content(safe)
                    if self.bleed.bled and not was_bled:
                        _emit_log(self.trace, "stream.bleed", "next-turn header detected; halting deltas", level=logging.WARNING)

                elif kind == "assistant":
                    message: AssistantMessage = value
                    if message.model_name:
                        self.model = message.model_name

                elif kind == "result":
                    self.is_complete = True
                    self._cleanup_progress()
                    lines = self._finish_tools(value) if self.tools_mode else self._finish_plain(value)
                    for line in lines:
                        yield line
                    yield DONE
                    _emit_log(self.trace, "stream.complete", f"usage={value.usage}")
                    return

                elif kind == "error":
                    _emit_log(self.trace, "stream.error", str(value), level=logging.ERROR)
                    notify_timeout(self.notifier, value)
                    yield self._error(value)
                    yield DONE
                    return

                elif kind == "close":
                    for line in self._flush_partial():
                        yield line
                    error = self._close_error(value)
                    _emit_log(self.trace, "stream.abnormal_close", str(error), level=logging.ERROR)
                    yield self._error(error)
                    yield DONE
                    return
        finally:
            self.cleanup()

    def _cleanup_progress(self):
        if self.progress is not None:
            self.progress.cleanup()

    def cleanup(self):
        if self.cleaned_up:
            return
        self.cleaned_up = True
        if not self.is_complete and self.subprocess.is_running():
            _emit_log(self.trace, "stream.disconnect", "response ended before result; terminating CLI")
            self.subprocess.kill()
        self._cleanup_progress()
        self.lease.release()
