#!/usr/bin/env python3
"""
Auto-Subagent Routing
Sends a request to an isolated secondary Claude session when the primary
session for the same conversation has been busy longer than the threshold.
At most two backend contexts run per conversation: primary + one subagent.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from config import SUBAGENT_BUSY_THRESHOLD, SUBAGENT_SUFFIX, SUBAGENT_CWD
from utils.helpers import emit_log as _emit_log, format_elapsed

from .active_requests import ActiveRequestRegistry, ActiveRequestRecord

logger = logging.getLogger(__name__)


@dataclass
class SubagentSession:
    sub_conversation_id: str
    created_at: float
    last_used_at: float
    request_count: int = 0
    active: bool = True
    inherited_tool_history: List[str] = field(default_factory=list)


@dataclass
class RequestLease:
    """Routing outcome for one request. release() is safe to call any number of times."""
    request_id: str
    conversation_id: Optional[str]
    effective_conversation_id: Optional[str]
    is_subagent: bool = False
    cwd: Optional[Path] = None
    primary_elapsed: Optional[float] = None
    primary_tools: List[str] = field(default_factory=list)
    _on_release: Optional[Callable[[], None]] = field(default=None, repr=False)
    released: bool = False

    def release(self):
        if self.released:
            return
        self.released = True
        if self._on_release:
            self._on_release()


class SubagentRouter:
    def __init__(
        self,
        registry: ActiveRequestRegistry,
        notifier=None,
        threshold: float = SUBAGENT_BUSY_THRESHOLD,
        subagent_cwd: Path = SUBAGENT_CWD,
    ):
        self.registry = registry
        self.notifier = notifier
        self.threshold = threshold
        self.subagent_cwd = Path(subagent_cwd)
        # primary conversation id -> SubagentSession
        self.sessions: Dict[str, SubagentSession] = {}
        # sub conversation id -> lock (asyncio.Lock wakes waiters FIFO)
        self.mutexes: Dict[str, asyncio.Lock] = {}

    @staticmethod
    def subagent_id(conversation_id: str) -> str:
        return f"{conversation_id}{SUBAGENT_SUFFIX}"

    def get_mutex(self, sub_conversation_id: str) -> asyncio.Lock:
        mutex = self.mutexes.get(sub_conversation_id)
        if mutex is None:
            mutex = self.mutexes[sub_conversation_id] = asyncio.Lock()
        return mutex

    def get_or_create_session(self, conversation_id: str, primary: ActiveRequestRecord) -> SubagentSession:
        now = time.time()
        session = self.sessions.get(conversation_id)
        if session is None:
            session = SubagentSession(
                sub_conversation_id=self.subagent_id(conversation_id),
                created_at=now,
                last_used_at=now,
                inherited_tool_history=list(primary.tool_history),
            )
            self.sessions[conversation_id] = session
        else:
            session.last_used_at = now
            session.active = True
            session.inherited_tool_history = list(primary.tool_history)
        return session

    def deactivate(self, conversation_id: str):
        session = self.sessions.get(conversation_id)
        if session:
            session.active = False

    def _notify(self, message: str):
        if self.notifier is not None:
            self.notifier.notify(message)

    async def route(
        self,
        request_id: str,
        conversation_id: Optional[str],
        model: str,
        trace: Optional[Callable] = None,
    ) -> RequestLease:
        """
        Decide where a request runs and register it.

        Busy is judged once, here; a primary request that crosses the threshold
        later is not rerouted. A subagent request holds the subagent's mutex
        until the returned lease is released.
        """
        if not conversation_id:
            self.registry.register(request_id, model)
            return RequestLease(
                request_id=request_id,
                conversation_id=None,
                effective_conversation_id=None,
                _on_release=lambda: self.registry.unregister(request_id),
            )

        primary = self.registry.find_busy_primary(conversation_id, self.threshold)
        if primary is None:
            self.deactivate(conversation_id)
            self.registry.register(request_id, model, conversation_id)
            return RequestLease(
                request_id=request_id,
                conversation_id=conversation_id,
                effective_conversation_id=conversation_id,
                _on_release=lambda: self.registry.unregister(request_id),
            )

        sub_id = self.subagent_id(conversation_id)
        session = self.get_or_create_session(conversation_id, primary)
        primary_elapsed = primary.elapsed()
        primary_tools = " -> ".join(primary.tool_history) or "working"

        sub_busy = self.registry.find_active(sub_id)
        if sub_busy:
            sub_tools = " -> ".join(sub_busy.tool_history) or "working"
            self._notify(
                "Primary and secondary agents are both busy\n"
                f"- primary: {primary_tools} ({format_elapsed(primary_elapsed)})\n"
                f"- secondary: {sub_tools} ({format_elapsed(sub_busy.elapsed())})\n"
                "Your message will be handled when the secondary agent finishes."
            )
            _emit_log(trace, "router.queued", f"conversation={conversation_id} waiting for {sub_id}")
        else:
            self._notify(
                f"Primary agent busy for {format_elapsed(primary_elapsed)}; "
                "a secondary agent is handling your message"
            )

        mutex = self.get_mutex(sub_id)
        await mutex.acquire()

        session.request_count += 1
        self.registry.register(request_id, model, sub_id, is_subagent=True)
        _emit_log(
            trace,
            "router.subagent",
            f"{conversation_id} -> {sub_id} (request #{session.request_count})",
        )

        def _release():
            self.registry.unregister(request_id)
            mutex.release()

        return RequestLease(
            request_id=request_id,
            conversation_id=conversation_id,
            effective_conversation_id=sub_id,
            is_subagent=True,
            cwd=self.subagent_cwd,
            primary_elapsed=primary_elapsed,
            primary_tools=list(primary.tool_history),
            _on_release=_release,
        )

    def snapshot(self) -> List[dict]:
        now = time.time()
        return [
            {
                "conversationId": conversation_id,
                "subConvId": s.sub_conversation_id,
                "active": s.active,
                "createdAt": _iso(s.created_at),
                "lastUsedAt": _iso(s.last_used_at),
                "requestCount": s.request_count,
                "age": format_elapsed(now - s.created_at),
            }
            for conversation_id, s in self.sessions.items()
        ]


def _iso(ts: float) -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(ts))
