#!/usr/bin/env python3
"""
Helper Utilities
Common helper functions for logging and formatting
"""

import logging
import shlex
import uuid
from typing import Callable, Optional

logger = logging.getLogger(__name__)

TraceFn = Callable[..., None]


def make_trace_logger() -> tuple[str, TraceFn]:
    """Create a per-request trace logger with a short id."""
    trace_id = uuid.uuid4().hex[:8]

    def log(stage: str, message: str, level: int = logging.INFO):
        logger.log(level, f"[{trace_id}] {stage} | {message}")

    return trace_id, log

def emit_log(log_fn: Optional[TraceFn], stage: str, message: str, level: int = logging.INFO):
    """Emit a log line using the trace logger if provided."""
    if log_fn:
        log_fn(stage, message, level)
    else:
        logger.log(level, f"{stage} | {message}")

def safe_cmd(cmd: list[str]) -> str:
    """Return a shell-safe string for logging."""
    return " ".join(shlex.quote(str(part)) for part in cmd)

def truncate(text: str, limit: int = 200) -> str:
    """Truncate long text for logs."""
    if len(text) <= limit:
        return text
    return text[:limit] + "... [truncated]"

def format_elapsed(seconds: float) -> str:
    """Render a duration as '42s' or '3m 7s'."""
    s = int(seconds)
    if s < 60:
        return f"{s}s"
    m, rem = divmod(s, 60)
    return f"{m}m {rem}s"
