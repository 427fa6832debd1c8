#!/usr/bin/env python3
"""
Claude CLI Adapter
Spawns and supervises one Claude CLI process per request and publishes its
stream-json output as typed events
"""

import asyncio
import collections
import logging
import os
import signal
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from config import (
    CLAUDE_CLI_PATH, CLAUDE_INSTALL_HINT, ACTIVITY_TIMEOUT, PROXY_CWD,
    STREAM_READ_LIMIT, EXTRA_BIN_DIR, GATEWAY_TOKEN, GATEWAY_URL,
    RESUME_FAILURE_PATTERNS
)
from models import SpawnFailureError, IdleTimeoutError
from utils.helpers import emit_log as _emit_log, safe_cmd as _safe_cmd, truncate as _truncate

from .stream_parser import (
    StreamParser, BackendEvent, ContentDelta, AssistantMessage, Result, StreamMessage, Raw
)

logger = logging.getLogger(__name__)

EVENT_NAMES = (
    "message", "content_delta", "assistant", "result",
    "error", "close", "raw", "resume_failed",
)

READ_CHUNK_SIZE = 64 * 1024


@dataclass
class SubprocessOptions:
    model: str
    session_id: Optional[str] = None         # start a new CLI session with this id
    resume_session_id: Optional[str] = None  # resume an existing CLI session
    system_prompt: Optional[str] = None
    cwd: Optional[Union[str, Path]] = None
    timeout: Optional[float] = None          # activity timeout override, seconds


def build_args(prompt: str, options: SubprocessOptions) -> List[str]:
    """Build the CLI argument vector. The prompt is always the last argv entry."""
    args = [
        "--print",
        "--output-format", "stream-json",
        "--verbose",
        "--include-partial-messages",
        "--model", options.model,
        "--dangerously-skip-permissions",
    ]

    # --resume for continuing, --session-id for new; never both
    if options.resume_session_id:
        args.extend(["--resume", options.resume_session_id])
    elif options.session_id:
        args.extend(["--session-id", options.session_id])

    if options.system_prompt:
        args.extend(["--system-prompt", options.system_prompt])

    args.extend(["--", prompt])
    return args


def build_env() -> Dict[str, str]:
    """Inherited environment plus the gateway's PATH entry and credentials."""
    env = dict(os.environ)
    # Set when the gateway itself runs under Claude Code; the child would refuse to start
    env.pop("CLAUDECODE", None)
    env["PATH"] = os.pathsep.join([
        str(EXTRA_BIN_DIR),
        os.environ.get("PATH", "/usr/local/bin:/usr/bin:/bin"),
    ])
    if GATEWAY_TOKEN:
        env["GATEWAY_TOKEN"] = GATEWAY_TOKEN
    env["GATEWAY_URL"] = GATEWAY_URL
    return env


def is_resume_failure(text: str) -> bool:
    lowered = text.lower()
    return any(pattern in lowered for pattern in RESUME_FAILURE_PATTERNS)


class ClaudeSubprocess:
    """
    Owns one Claude CLI process.

    Listeners are registered with on(event, callback) for the events in
    EVENT_NAMES. result fires at most once, close fires exactly once after
    the process has exited and stdout has been drained.
    """

    def __init__(
        self,
        cli_path: str = CLAUDE_CLI_PATH,
        activity_timeout: float = ACTIVITY_TIMEOUT,
        trace: Optional[Callable] = None,
    ):
        self.cli_path = cli_path
        self.activity_timeout = activity_timeout
        self.trace = trace
        self.process: Optional[asyncio.subprocess.Process] = None
        self.parser = StreamParser()
        self.is_killed = False
        self.exit_code: Optional[int] = None
        self.stderr_tail = collections.deque(maxlen=50)
        self._listeners: Dict[str, List[Callable]] = {name: [] for name in EVENT_NAMES}
        self._timeout_handle: Optional[asyncio.TimerHandle] = None
        self._supervisor_task: Optional[asyncio.Task] = None
        self._result_emitted = False
        self._resume_failed = False
        self._closed = False
        self._started_at = 0.0
        self._first_event_at: Optional[float] = None
        self._event_count = 0

    # ------------------------------------------------------------------
    # Listener registration
    # ------------------------------------------------------------------

    def on(self, event: str, callback: Callable) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unknown subprocess event: {event}")
        self._listeners[event].append(callback)

    def _emit(self, event: str, *args: Any) -> None:
        for callback in list(self._listeners[event]):
            try:
                callback(*args)
            except Exception:
                logger.exception(f"Listener for '{event}' failed")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, prompt: str, options: SubprocessOptions) -> None:
        """Spawn the CLI. Returns once the process is running; output arrives via events."""
        args = build_args(prompt, options)
        cwd = Path(options.cwd or PROXY_CWD)
        cwd.mkdir(parents=True, exist_ok=True)
        if options.timeout:
            self.activity_timeout = options.timeout

        _emit_log(self.trace, "claude.stream.start", f"cwd={cwd} cmd={_truncate(_safe_cmd([self.cli_path, *args]), limit=600)}")
        self._started_at = time.time()
        try:
            self.process = await asyncio.create_subprocess_exec(
                self.cli_path,
                *args,
                cwd=str(cwd),
                env=build_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_READ_LIMIT,
            )
        except FileNotFoundError as e:
            _emit_log(self.trace, "claude.stream.spawn_error", str(e), level=logging.ERROR)
            raise SpawnFailureError(CLAUDE_INSTALL_HINT) from e
        except OSError as e:
            _emit_log(self.trace, "claude.stream.spawn_error", str(e), level=logging.ERROR)
            raise SpawnFailureError(f"Failed to start Claude CLI: {e}") from e

        _emit_log(self.trace, "claude.stream.spawned", f"pid={self.process.pid}")
        self._reset_activity_timeout()
        self._supervisor_task = asyncio.create_task(self._supervise())

    async def wait(self) -> Optional[int]:
        """Wait until close has been emitted; returns the exit code."""
        if self._supervisor_task is not None:
            await asyncio.shield(self._supervisor_task)
        return self.exit_code

    def kill(self, sig: int = signal.SIGTERM) -> None:
        """Signal the process once; later calls and a pending timeout are no-ops."""
        if self.is_killed or self.process is None:
            return
        self.is_killed = True
        self._clear_activity_timeout()
        try:
            self.process.send_signal(sig)
            _emit_log(self.trace, "claude.stream.killed", f"pid={self.process.pid} signal={sig}")
        except ProcessLookupError:
            pass

    def is_running(self) -> bool:
        return (
            self.process is not None
            and not self.is_killed
            and self.process.returncode is None
        )

    @property
    def resume_failed(self) -> bool:
        return self._resume_failed

    def stderr_text(self) -> str:
        return "\n".join(self.stderr_tail)

    # ------------------------------------------------------------------
    # Output handling
    # ------------------------------------------------------------------

    async def _supervise(self) -> None:
        try:
            await asyncio.gather(self._read_stdout(), self._read_stderr())
        except Exception as e:
            _emit_log(self.trace, "claude.stream.read_error", str(e), level=logging.WARNING)

        code = await self.process.wait()
        self._clear_activity_timeout()
        self._dispatch(self.parser.flush())
        self.exit_code = code
        _emit_log(
            self.trace,
            "claude.stream.done",
            f"rc={code} elapsed={time.time() - self._started_at:.2f}s events={self._event_count}",
        )
        if not self._closed:
            self._closed = True
            self._emit("close", code)

    async def _read_stdout(self) -> None:
        if not self.process.stdout:
            return
        while True:
            chunk = await self.process.stdout.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            # CLI is still producing output
            self._reset_activity_timeout()
            self._dispatch(self.parser.feed(chunk))

    async def _read_stderr(self) -> None:
        if not self.process.stderr:
            return
        async for line in self.process.stderr:
            text = line.decode("utf-8", errors="replace").strip()
            if not text:
                continue
            self.stderr_tail.append(text)
            _emit_log(self.trace, "claude.stream.stderr", _truncate(text, limit=500), level=logging.WARNING)
            if not self._resume_failed and is_resume_failure(text):
                self._resume_failed = True
                self._emit("resume_failed", text)

    def _dispatch(self, events: List[BackendEvent]) -> None:
        for event in events:
            self._event_count += 1
            if self._first_event_at is None:
                self._first_event_at = time.time()
                _emit_log(
                    self.trace,
                    "claude.stream.first_event",
                    f"type={type(event).__name__} ttfb={self._first_event_at - self._started_at:.2f}s",
                )

            if isinstance(event, Raw):
                _emit_log(self.trace, "claude.stream.raw", _truncate(event.line), level=logging.DEBUG)
                self._emit("raw", event.line)
                continue

            self._emit("message", event.payload)
            if isinstance(event, ContentDelta):
                self._emit("content_delta", event)
            elif isinstance(event, AssistantMessage):
                self._emit("assistant", event)
            elif isinstance(event, Result):
                if self._result_emitted:
                    _emit_log(self.trace, "claude.stream.duplicate_result", "ignored", level=logging.WARNING)
                    continue
                self._result_emitted = True
                _emit_log(self.trace, "claude.stream.result", f"chars={len(event.text)} is_error={event.is_error}")
                self._emit("result", event)

    # ------------------------------------------------------------------
    # Activity timeout
    # ------------------------------------------------------------------

    def _reset_activity_timeout(self) -> None:
        self._clear_activity_timeout()
        if self.is_killed:
            return
        loop = asyncio.get_running_loop()
        self._timeout_handle = loop.call_later(self.activity_timeout, self._on_activity_timeout)

    def _clear_activity_timeout(self) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

    def _on_activity_timeout(self) -> None:
        self._timeout_handle = None
        if self.is_killed or self.process is None:
            return
        self.is_killed = True
        try:
            self.process.terminate()
        except ProcessLookupError:
            pass
        error = IdleTimeoutError(self.activity_timeout)
        _emit_log(self.trace, "claude.stream.timeout", str(error), level=logging.ERROR)
        self._emit("error", error)


async def verify_claude(cli_path: str = CLAUDE_CLI_PATH) -> Dict[str, Any]:
    """Check that the CLI is installed; returns {'ok', 'version'} or {'ok', 'error'}."""
    try:
        process = await asyncio.create_subprocess_exec(
            cli_path, "--version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError:
        return {"ok": False, "error": CLAUDE_INSTALL_HINT}

    try:
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=15)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return {"ok": False, "error": "Claude CLI --version timed out"}

    if process.returncode == 0:
        return {"ok": True, "version": stdout.decode(errors="replace").strip()}
    return {"ok": False, "error": "Claude CLI returned non-zero exit code"}
