"""Session registry: one orchestrator per conversation, owned by the host."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
import threading
from typing import Callable, Dict, List, Optional
import uuid

from .orchestrator import DialogueOrchestrator

logger = logging.getLogger("automation_builder")


@dataclass
class SessionRecord:
    """A live conversation and its bookkeeping."""
    session_id: str
    orchestrator: DialogueOrchestrator
    created_at: datetime
    expires_at: Optional[datetime]
    last_used_at: datetime = field(default_factory=datetime.now)
    organization_id: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return bool(self.expires_at and (now or datetime.now()) > self.expires_at)


class SessionRegistry:
    """Creates and tracks orchestrators per conversation.

    Each orchestrator owns its own state, so the registry lock only guards
    the mapping itself and is never held across a turn.
    """

    def __init__(self, factory: Callable[[], DialogueOrchestrator], ttl_hours: int = 24):
        self._factory = factory
        self._sessions: Dict[str, SessionRecord] = {}
        self._lock = threading.RLock()
        self.ttl_hours = ttl_hours
        logger.info(f"Initialized SessionRegistry with TTL: {ttl_hours} hours")

    def open_session(self, session_id: Optional[str] = None, organization_id: Optional[str] = None) -> SessionRecord:
        with self._lock:
            if session_id:
                existing = self.get_session(session_id)
                if existing is not None:
                    logger.debug(f"Session {session_id} already open, returning existing record")
                    return existing

            session_id = session_id or str(uuid.uuid4())
            now = datetime.now()
            record = SessionRecord(
                session_id=session_id,
                orchestrator=self._factory(),
                created_at=now,
                expires_at=now + timedelta(hours=self.ttl_hours),
                last_used_at=now,
                organization_id=organization_id,
            )
            self._sessions[session_id] = record
            logger.debug(f"Opened session {session_id}")
            return record

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        """Look up a session, dropping it if it has expired."""
        with self._lock:
            record = self._sessions.get(session_id)
            if not record:
                return None
            if record.is_expired():
                logger.debug(f"Session {session_id} has expired")
                del self._sessions[session_id]
                return None
            record.last_used_at = datetime.now()
            return record

    def close_session(self, session_id: str) -> bool:
        with self._lock:
            if self._sessions.pop(session_id, None) is None:
                return False
            logger.debug(f"Closed session {session_id}")
            return True

    def list_sessions(self, limit: int = 10, organization_id: Optional[str] = None) -> List[SessionRecord]:
        """List live sessions, most recently used first."""
        with self._lock:
            self.cleanup_expired()
            sessions = list(self._sessions.values())
            if organization_id:
                sessions = [s for s in sessions if s.organization_id == organization_id]
            sessions.sort(key=lambda s: s.last_used_at, reverse=True)
            return sessions[:limit]

    def cleanup_expired(self) -> int:
        with self._lock:
            now = datetime.now()
            expired_ids = [
                session_id for session_id, record in self._sessions.items()
                if record.is_expired(now)
            ]
            for session_id in expired_ids:
                del self._sessions[session_id]
            if expired_ids:
                logger.info(f"Cleaned up {len(expired_ids)} expired sessions")
            return len(expired_ids)
