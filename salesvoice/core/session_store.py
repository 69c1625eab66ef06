"""
SessionStore - in-memory arena of conversation sessions.

Sessions are keyed by connection id. Only connect/disconnect and the owning
connection's orchestrator path touch an entry, so the lock here only guards
the dict itself, never a session's contents.
"""

import asyncio
import time
from typing import Dict, List, Optional

import structlog

from .models import Session, SessionState

logger = structlog.get_logger(__name__)


class SessionStore:
    """Indexed store of live sessions."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()

    async def upsert(self, session: Session) -> None:
        async with self._lock:
            replaced = session.id in self._sessions
            self._sessions[session.id] = session
        logger.debug("Session stored", session_id=session.id, replaced=replaced)

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    async def remove(self, session_id: str) -> Optional[Session]:
        async with self._lock:
            session = self._sessions.pop(session_id, None)
        if session:
            logger.debug("Session removed", session_id=session_id)
        return session

    def all(self) -> List[Session]:
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def stats(self) -> Dict[str, object]:
        now = time.time()
        by_state: Dict[str, int] = {state.value: 0 for state in SessionState}
        sessions = []
        for session in self._sessions.values():
            by_state[session.state.value] += 1
            entry = session.to_dict()
            entry["age_sec"] = round(now - session.created_at, 1)
            sessions.append(entry)
        return {
            "active_sessions": len(self._sessions),
            "by_state": by_state,
            "sessions": sessions,
        }
