#!/usr/bin/env python3
"""
Non-streaming Response Assembler
Waits for the terminal result and returns one chat.completion object.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from cli_adapters.claude_adapter import ClaudeSubprocess
from cli_adapters.response_adapter import cli_result_to_openai
from cli_adapters.stream_parser import Result
from models import AbnormalExitError, ResumeFailureError
from utils.helpers import emit_log as _emit_log, truncate as _truncate

from .stream_handler import notify_timeout

logger = logging.getLogger(__name__)


class NonStreamingAssembler:
    """Subscribe before start(); response() resolves on close (or raises on error)."""

    def __init__(
        self,
        subprocess: ClaudeSubprocess,
        request_id: str,
        session_label: Optional[str] = None,
        notifier=None,
        trace: Optional[Callable] = None,
    ):
        self.subprocess = subprocess
        self.request_id = request_id
        self.session_label = session_label
        self.notifier = notifier
        self.trace = trace
        self.result: Optional[Result] = None
        self.model: Optional[str] = None
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()

        subprocess.on("assistant", self._on_assistant)
        subprocess.on("result", self._on_result)
        subprocess.on("error", self._on_error)
        subprocess.on("close", self._on_close)

    @property
    def is_complete(self) -> bool:
        return self.result is not None

    def _on_assistant(self, message):
        if message.model_name:
            self.model = message.model_name

    def _on_result(self, result: Result):
        self.result = result

    def _on_error(self, error: Exception):
        _emit_log(self.trace, "response.error", str(error), level=logging.ERROR)
        notify_timeout(self.notifier, error)
        if not self._future.done():
            self._future.set_exception(error)

    def _on_close(self, code: Optional[int]):
        if self._future.done():
            return
        if self.result is not None:
            self._future.set_result(cli_result_to_openai(self.result, self.request_id, fallback_model=self.model))
            return
        stderr = _truncate(self.subprocess.stderr_text())
        if self.subprocess.resume_failed:
            error = ResumeFailureError(self.session_label, stderr)
        else:
            error = AbnormalExitError(code, stderr)
        _emit_log(self.trace, "response.no_result", str(error), level=logging.ERROR)
        self._future.set_exception(error)

    async def response(self) -> Dict[str, Any]:
        return await self._future
