#!/usr/bin/env python3
"""
Active Request Registry
In-memory table of in-flight requests, used for busy detection and /health
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from config import MAX_TOOL_HISTORY
from utils.helpers import format_elapsed

logger = logging.getLogger(__name__)


@dataclass
class ActiveRequestRecord:
    id: str
    started_at: float
    model: str
    conversation_id: Optional[str] = None
    is_subagent: bool = False
    last_tool: Optional[str] = None
    tool_history: List[str] = field(default_factory=list)

    def elapsed(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.time()) - self.started_at


class ActiveRequestRegistry:
    """
    request_id -> ActiveRequestRecord.

    All access happens on the event loop thread, so each method is a single
    atomic step with respect to other handlers.
    """

    def __init__(self):
        self.records: Dict[str, ActiveRequestRecord] = {}

    def register(
        self,
        request_id: str,
        model: str,
        conversation_id: Optional[str] = None,
        is_subagent: bool = False,
    ) -> ActiveRequestRecord:
        existing = self.records.get(request_id)
        if existing:
            logger.warning(f"Request {request_id} already registered; keeping the original record")
            return existing
        record = ActiveRequestRecord(
            id=request_id,
            started_at=time.time(),
            model=model,
            conversation_id=conversation_id,
            is_subagent=is_subagent,
        )
        self.records[request_id] = record
        return record

    def get(self, request_id: str) -> Optional[ActiveRequestRecord]:
        return self.records.get(request_id)

    def track_tool(self, request_id: str, tool_name: str):
        """Record a tool invocation; consecutive repeats collapse into one entry."""
        record = self.records.get(request_id)
        if not record:
            return
        record.last_tool = tool_name
        if not record.tool_history or record.tool_history[-1] != tool_name:
            record.tool_history.append(tool_name)
            if len(record.tool_history) > MAX_TOOL_HISTORY:
                del record.tool_history[:-MAX_TOOL_HISTORY]

    def unregister(self, request_id: str) -> bool:
        """Remove a record; unknown ids are ignored."""
        return self.records.pop(request_id, None) is not None

    def find_busy_primary(self, conversation_id: str, threshold: float) -> Optional[ActiveRequestRecord]:
        """Oldest non-subagent request for this conversation running longer than threshold."""
        now = time.time()
        busy = [
            r for r in self.records.values()
            if r.conversation_id == conversation_id
            and not r.is_subagent
            and r.elapsed(now) > threshold
        ]
        return min(busy, key=lambda r: r.started_at) if busy else None

    def find_active(self, conversation_id: str) -> Optional[ActiveRequestRecord]:
        """Any in-flight request running against this (possibly subagent) conversation id."""
        for record in self.records.values():
            if record.conversation_id == conversation_id:
                return record
        return None

    def __len__(self) -> int:
        return len(self.records)

    def snapshot(self) -> List[dict]:
        now = time.time()
        return [
            {
                "id": r.id,
                "model": r.model,
                "elapsed": format_elapsed(r.elapsed(now)),
                "lastTool": r.last_tool,
                "toolHistory": list(r.tool_history),
                "conversationId": r.conversation_id,
                "isSubagent": r.is_subagent,
            }
            for r in self.records.values()
        ]
