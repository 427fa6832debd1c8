#!/usr/bin/env python3
"""
Configuration and Constants for Claude CLI Gateway
Centralizes all environment variables, paths, and configuration settings
"""

import os
import logging
from pathlib import Path

# ============================================================================
# Version and Basic Configuration
# ============================================================================

VERSION = "1.0.0"
BRIDGE_HOST = os.getenv("CLAUDE_GATEWAY_HOST", "127.0.0.1")
BRIDGE_PORT = int(os.getenv("CLAUDE_GATEWAY_PORT", "3456"))

# ============================================================================
# Workspace and Session Storage
# ============================================================================

GATEWAY_HOME = Path(os.getenv("CLAUDE_GATEWAY_HOME", Path.home() / ".claude-gateway")).expanduser()

# Stable cwd so the CLI's own session files resolve the same way on every request
PROXY_CWD = Path(os.getenv("CLAUDE_PROXY_CWD", GATEWAY_HOME / "workspace")).expanduser()
SUBAGENT_CWD = Path(os.getenv("CLAUDE_SUBAGENT_CWD", GATEWAY_HOME / "workspace-subagent")).expanduser()

SESSION_MAP_FILE = Path(os.getenv("CLAUDE_SESSION_FILE", GATEWAY_HOME / "sessions.json")).expanduser()
SESSION_TTL = int(os.getenv("CLAUDE_SESSION_TTL", str(24 * 60 * 60)))  # 24 hours
SESSION_CLEANUP_INTERVAL = int(os.getenv("CLAUDE_SESSION_CLEANUP_INTERVAL", "3600"))

# ============================================================================
# CLI Path, Environment and Timeouts
# ============================================================================

CLAUDE_CLI_PATH = os.getenv("CLAUDE_CLI_PATH", "claude")
CLAUDE_INSTALL_HINT = "Claude CLI not found. Install with: npm install -g @anthropic-ai/claude-code"

# No stdout for this long = stuck CLI. Total runtime is not capped.
ACTIVITY_TIMEOUT = float(os.getenv("CLAUDE_ACTIVITY_TIMEOUT", "600"))  # 10 minutes default

# Stream reader limit (image data can produce very long lines)
STREAM_READ_LIMIT = 4 * 1024 * 1024

# argv entries are bounded by the OS (MAX_ARG_STRLEN is 128KB on Linux)
MAX_PROMPT_BYTES = int(os.getenv("CLAUDE_MAX_PROMPT_BYTES", "100000"))

EXTRA_BIN_DIR = Path(os.getenv("CLAUDE_EXTRA_BIN_DIR", GATEWAY_HOME / "bin")).expanduser()
GATEWAY_TOKEN = os.getenv("GATEWAY_TOKEN")
GATEWAY_URL = os.getenv("GATEWAY_URL", "http://localhost:18789")

# Stderr phrases that mean --resume pointed at a session the CLI does not have
RESUME_FAILURE_PATTERNS = [
    "session not found",
    "failed to resume",
    "could not find session",
    "--resume requires",
    "no conversation found with session id",
]

# ============================================================================
# Auto-Subagent Routing
# ============================================================================

SUBAGENT_BUSY_THRESHOLD = float(os.getenv("CLAUDE_SUBAGENT_BUSY_THRESHOLD", "30"))
SUBAGENT_SUFFIX = "::subagent"
MAX_TOOL_HISTORY = 20

# ============================================================================
# Output Post-processing
# ============================================================================

# Next-turn headers the CLI sometimes hallucinates after its own reply
BLEED_SENTINELS = ["\n[User]", "\n[Human]", "\nHuman:"]

TOOL_CALL_OPEN = "<tool_call>"
TOOL_CALL_CLOSE = "</tool_call>"

# ============================================================================
# Notifications (Telegram)
# ============================================================================

TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
TELEGRAM_NOTIFY_ID = os.getenv("TELEGRAM_NOTIFY_ID")
TELEGRAM_API_URL = os.getenv("TELEGRAM_API_URL", "https://api.telegram.org")
PROGRESS_MIN_INTERVAL = float(os.getenv("CLAUDE_PROGRESS_MIN_INTERVAL", "3"))

# ============================================================================
# Supported Models
# ============================================================================

DEFAULT_MODEL = "opus"
DEFAULT_RESPONSE_MODEL = "claude-sonnet-4"

SUPPORTED_MODELS = {
    "claude-opus-4": {"owned_by": "anthropic"},
    "claude-sonnet-4": {"owned_by": "anthropic"},
    "claude-haiku-4": {"owned_by": "anthropic"},
}

# Request model string -> CLI --model value (aliases always track the latest release)
MODEL_MAP = {
    "opus": "opus",
    "sonnet": "sonnet",
    "haiku": "haiku",

    "claude-opus-4": "opus",
    "claude-opus-4-6": "opus",
    "claude-opus-4-5": "claude-opus-4-5-20251101",
    "claude-opus-4-5-20251101": "claude-opus-4-5-20251101",
    "claude-opus-4-1": "claude-opus-4-1-20250805",
    "claude-opus-4-1-20250805": "claude-opus-4-1-20250805",
    "claude-opus-4-0": "claude-opus-4-20250514",
    "claude-opus-4-20250514": "claude-opus-4-20250514",

    "claude-sonnet-4": "sonnet",
    "claude-sonnet-4-6": "sonnet",
    "claude-sonnet-4-5": "sonnet",
    "claude-sonnet-4-5-20250929": "sonnet",
    "claude-sonnet-4-0": "claude-sonnet-4-20250514",
    "claude-sonnet-4-20250514": "claude-sonnet-4-20250514",

    "claude-haiku-4": "haiku",
    "claude-haiku-4-5": "haiku",
    "claude-haiku-4-5-20251001": "haiku",
}

MODEL_PREFIXES = ("claude-code-cli/", "maxproxy/")

# ============================================================================
# System Prompt Additions
# ============================================================================

# Appended to the system prompt of every new session
CLI_TOOL_INSTRUCTION = """
## Tool Usage
You are running inside Claude Code CLI. Use your native tools (Bash, Read, Write,
Edit, Grep, Glob, WebFetch, WebSearch) for all operations.
- Never write tool calls for your native tools as XML text; they are not executed.
- Never invent command output. Run the command.
- A command that prints nothing for 10 minutes is killed. Print progress for long jobs.

## Response Format
- Your final response is delivered to the user as-is.
- Reply in the same language the user used.
"""

# Appended when the caller supplies its own tool definitions
EXTERNAL_TOOLS_INSTRUCTION = """
## External Tools
The caller can run the tools listed below on your behalf. To call one, reply with
one marker per call and nothing else:
<tool_call>{"id": "call_1", "name": "TOOL_NAME", "arguments": {...}}</tool_call>
The results come back in the next message as [Tool result: ...] blocks.
Available tools:
"""

SUBAGENT_PREAMBLE = """
## IMPORTANT: You are a temporary secondary agent
The primary agent for this conversation is busy (running for {elapsed}, tools: {tools}).
Handle the user's new request yourself. You have full tool access.
Your working directory is isolated from the primary agent's: {cwd}
"""

# ============================================================================
# Logging Configuration
# ============================================================================

LOG_LEVEL = os.getenv("CLAUDE_GATEWAY_LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
