#!/usr/bin/env python3
"""
Telegram Notifications
Best-effort operator notices (busy routing, timeouts) and a live progress
message that tracks the CLI's tool calls while a request runs.
Nothing here may fail a request: errors are logged and dropped.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

import httpx

from config import (
    TELEGRAM_BOT_TOKEN, TELEGRAM_NOTIFY_ID, TELEGRAM_API_URL, PROGRESS_MIN_INTERVAL
)

logger = logging.getLogger(__name__)

TOOL_LABELS = {
    "Bash": "Running command",
    "Read": "Reading file",
    "Write": "Writing file",
    "Edit": "Editing file",
    "Grep": "Searching content",
    "Glob": "Finding files",
    "WebSearch": "Searching the web",
    "WebFetch": "Fetching page",
    "TodoRead": "Reading todos",
    "TodoWrite": "Updating todos",
}

MAX_PROGRESS_LABELS = 6


class TelegramApi:
    """Thin Bot API client; call() returns the decoded reply or None."""

    def __init__(self, token: str, base_url: str = TELEGRAM_API_URL, client: Optional[httpx.AsyncClient] = None):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=10.0)
        return self._client

    async def call(self, method: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        url = f"{self.base_url}/bot{self.token}/{method}"
        try:
            resp = await self._get_client().post(url, json=params)
            data = resp.json()
        except Exception as e:
            logger.error(f"Telegram {method} error: {e}")
            return None
        if not data.get("ok"):
            logger.warning(f"Telegram {method} failed: {data.get('description')}")
        return data

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class _TaskSet:
    """Keeps fire-and-forget tasks referenced until they finish."""

    def __init__(self):
        self.tasks: Set[asyncio.Task] = set()

    def spawn(self, coro) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning("No running event loop; notification dropped")
            return None
        task = loop.create_task(coro)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task


# ============================================================================
# Notifiers
# ============================================================================

class NullNotifier:
    """Used when Telegram is not configured."""

    def notify(self, message: str) -> None:
        logger.debug(f"Notification (disabled): {message}")

    def progress_reporter(self) -> Optional["ProgressReporter"]:
        return None

    async def aclose(self):
        pass


class TelegramNotifier:
    def __init__(self, api: TelegramApi, chat_id: str):
        self.api = api
        self.chat_id = chat_id
        self._tasks = _TaskSet()

    def notify(self, message: str) -> None:
        """Dispatch a sendMessage in the background; never raises, never blocks."""
        self._tasks.spawn(self.api.call("sendMessage", {"chat_id": self.chat_id, "text": message}))

    def progress_reporter(self) -> "ProgressReporter":
        return ProgressReporter(self.api, self.chat_id)

    async def aclose(self):
        await self.api.aclose()


def build_notifier():
    if TELEGRAM_BOT_TOKEN and TELEGRAM_NOTIFY_ID:
        logger.info("Telegram notifications enabled")
        return TelegramNotifier(TelegramApi(TELEGRAM_BOT_TOKEN), TELEGRAM_NOTIFY_ID)
    return NullNotifier()


# ============================================================================
# Progress Reporter
# ============================================================================

class ProgressState(Enum):
    NOT_SENT = "not_sent"
    SENT = "sent"
    DELETED = "deleted"


class ProgressReporter:
    """
    One progress message per request: sent on the first tool call, edited on
    later ones, deleted on cleanup. Edits are spaced at least min_interval
    apart; a report inside the window schedules one deferred flush.
    """

    def __init__(
        self,
        api: TelegramApi,
        chat_id: str,
        min_interval: float = PROGRESS_MIN_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api = api
        self.chat_id = chat_id
        self.min_interval = min_interval
        self.clock = clock
        self.state = ProgressState.NOT_SENT
        self.message_id: Optional[int] = None
        self.labels: List[str] = []
        self.last_update_at: Optional[float] = None
        self._deferred: Optional[asyncio.TimerHandle] = None
        self._sending = False
        self._tasks = _TaskSet()

    def build_text(self) -> str:
        if not self.labels:
            return "⏳ Working..."
        lines = [f"⏳ {self.labels[0]}..."]
        lines.extend(f"     {label}..." for label in self.labels[1:])
        return "\n".join(lines)

    def report(self, tool_name: str) -> None:
        if self.state is ProgressState.DELETED:
            return
        label = TOOL_LABELS.get(tool_name, tool_name)
        if self.labels and self.labels[-1] == label:
            return
        self.labels.append(label)
        if len(self.labels) > MAX_PROGRESS_LABELS:
            self.labels = self.labels[-MAX_PROGRESS_LABELS:]

        if self._deferred is not None:
            return  # the pending flush will pick up the new label
        elapsed = None if self.last_update_at is None else self.clock() - self.last_update_at
        if elapsed is None or elapsed >= self.min_interval:
            self.last_update_at = self.clock()
            self._tasks.spawn(self._flush())
        else:
            loop = asyncio.get_running_loop()
            self._deferred = loop.call_later(self.min_interval - elapsed, self._run_deferred)

    def _run_deferred(self):
        self._deferred = None
        if self.state is ProgressState.DELETED:
            return
        self.last_update_at = self.clock()
        self._tasks.spawn(self._flush())

    async def _flush(self):
        if self.state is ProgressState.DELETED:
            return
        text = self.build_text()
        if self.message_id is None:
            if self._sending:
                return
            self._sending = True
            try:
                result = await self.api.call("sendMessage", {
                    "chat_id": self.chat_id,
                    "text": text,
                    "disable_notification": True,
                })
            finally:
                self._sending = False
            if result and result.get("ok"):
                self.message_id = result["result"]["message_id"]
                if self.state is ProgressState.DELETED:
                    # cleanup ran while the send was in flight
                    await self._delete()
                else:
                    self.state = ProgressState.SENT
                    logger.debug(f"Sent progress message #{self.message_id}")
        else:
            await self.api.call("editMessageText", {
                "chat_id": self.chat_id,
                "message_id": self.message_id,
                "text": text,
            })

    async def _delete(self):
        if self.message_id is None:
            return
        await self.api.call("deleteMessage", {"chat_id": self.chat_id, "message_id": self.message_id})
        logger.debug(f"Deleted progress message #{self.message_id}")

    def cleanup(self) -> None:
        """Stop updating and remove the message. Safe to call more than once."""
        if self.state is ProgressState.DELETED:
            return
        had_message = self.state is ProgressState.SENT
        self.state = ProgressState.DELETED
        if self._deferred is not None:
            self._deferred.cancel()
            self._deferred = None
        if had_message:
            self._tasks.spawn(self._delete())
