"""Per-session conversation history, memory and TTL lifecycle."""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from aether.models.session import Session, SessionMemory

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default"


class SessionStore:
    """Owns the session table.

    Callers get the live Session back from get_or_create, but history and
    memory changes go through record_message and update_memory.
    """

    def __init__(self, ttl_seconds: float = 24 * 60 * 60):
        self._sessions: dict[str, Session] = {}
        self._ttl = timedelta(seconds=ttl_seconds)

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def get_or_create(self, session_id: str | None = None) -> Session:
        """Fetch a session, creating it on first use. Refreshes last_activity."""
        session_id = session_id or DEFAULT_SESSION_ID
        session = self._sessions.get(session_id)
        if session is None:
            session = Session(id=session_id)
            self._sessions[session_id] = session
            logger.debug(f"Created session {session_id}")
        session.last_activity = datetime.now()
        return session

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def clear(self, session_id: str | None) -> bool:
        """Remove a session immediately."""
        if not session_id:
            return False
        return self._sessions.pop(session_id, None) is not None

    def sweep_expired(self, now: datetime | None = None) -> int:
        """Remove every session idle for longer than the TTL."""
        now = now or datetime.now()
        expired = [
            sid for sid, session in self._sessions.items()
            if now - session.last_activity > self._ttl
        ]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info(f"Cleaned up {len(expired)} expired session(s)")
        return len(expired)

    def record_message(self, session_id: str, message: dict[str, Any]) -> None:
        """Append one turn record to the session history."""
        session = self.get_or_create(session_id)
        session.messages.append(message)

    def messages(self, session_id: str) -> list[dict[str, Any]]:
        """A copy of the session history, safe to hand to a backend."""
        return list(self.get_or_create(session_id).messages)

    def update_memory(self, session_id: str, mutate: Callable[[SessionMemory], None]) -> None:
        """Apply an in-place update to the session's memory."""
        session = self.get_or_create(session_id)
        mutate(session.memory)

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
