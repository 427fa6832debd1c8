#!/usr/bin/env python3
"""
Session Management for Claude CLI Gateway
Persistent mapping between caller conversation IDs and Claude CLI session IDs
"""

import asyncio
import json
import logging
import threading
import time
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Optional, Union

from config import SESSION_MAP_FILE, SESSION_TTL

logger = logging.getLogger(__name__)


@dataclass
class ConversationSession:
    conversation_id: str
    backend_session_id: str
    created_at: float
    last_used_at: float
    model: str


class SessionStore:
    """
    conversation_id -> ConversationSession, persisted as JSON.

    The file is read on first access. Every mutation writes the whole map back;
    write errors are logged and never reach the request. Concurrent writes for
    the same conversation are last-write-wins.
    """

    def __init__(self, path: Union[str, Path] = SESSION_MAP_FILE, ttl: float = SESSION_TTL):
        self.path = Path(path)
        self.ttl = ttl
        self.sessions: Dict[str, ConversationSession] = {}
        self.loaded = False
        self._write_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self):
        """Load mappings from disk (no-op after the first call)."""
        if self.loaded:
            return
        self.loaded = True
        try:
            if not self.path.exists():
                return
            with open(self.path, 'r') as f:
                data = json.load(f)
            if not isinstance(data, dict):
                logger.warning("Session map format unrecognized, starting fresh")
                return
            for conversation_id, record in data.items():
                try:
                    self.sessions[conversation_id] = ConversationSession(**record)
                except TypeError:
                    logger.warning(f"Skipping malformed session record for {conversation_id}")
            logger.info(f"Loaded {len(self.sessions)} session mappings from {self.path}")
        except Exception as e:
            logger.error(f"Error loading session map: {e}")
            self.sessions = {}

    def _snapshot(self) -> Dict[str, dict]:
        return {cid: asdict(session) for cid, session in self.sessions.items()}

    def _write(self, snapshot: Dict[str, dict]):
        try:
            with self._write_lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
                with open(tmp_path, 'w') as f:
                    json.dump(snapshot, f, indent=2)
                tmp_path.replace(self.path)
        except Exception as e:
            logger.error(f"Error saving session map: {e}")

    def save(self):
        """Persist the current map; runs in the default executor when a loop is active."""
        snapshot = self._snapshot()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write(snapshot)
            return
        loop.run_in_executor(None, self._write, snapshot)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def get(self, conversation_id: str) -> Optional[ConversationSession]:
        self.load()
        return self.sessions.get(conversation_id)

    def get_or_create(self, conversation_id: str, model: str) -> str:
        """Return the CLI session id for a conversation, minting a fresh one if absent."""
        self.load()
        existing = self.sessions.get(conversation_id)
        if existing:
            existing.last_used_at = time.time()
            existing.model = model
            self.save()
            return existing.backend_session_id

        now = time.time()
        session = ConversationSession(
            conversation_id=conversation_id,
            backend_session_id=str(uuid.uuid4()),
            created_at=now,
            last_used_at=now,
            model=model,
        )
        self.sessions[conversation_id] = session
        self.save()
        logger.info(f"New session {session.backend_session_id} for conversation {conversation_id}")
        return session.backend_session_id

    def touch(self, conversation_id: str):
        self.load()
        session = self.sessions.get(conversation_id)
        if session:
            session.last_used_at = time.time()
            self.save()

    def delete(self, conversation_id: str) -> bool:
        self.load()
        if self.sessions.pop(conversation_id, None) is None:
            return False
        self.save()
        logger.info(f"Deleted session mapping for conversation {conversation_id}")
        return True

    def cleanup(self) -> int:
        """Drop mappings unused for longer than the TTL; returns how many were removed."""
        self.load()
        cutoff = time.time() - self.ttl
        expired = [cid for cid, s in self.sessions.items() if s.last_used_at < cutoff]
        for cid in expired:
            del self.sessions[cid]
        if expired:
            self.save()
            logger.info(f"Cleaned up {len(expired)} expired sessions")
        return len(expired)

    def get_all(self) -> Dict[str, dict]:
        """All mappings as plain dicts (for the debug endpoint)."""
        self.load()
        return self._snapshot()

    def size(self) -> int:
        self.load()
        return len(self.sessions)
