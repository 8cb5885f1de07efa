"""In-memory ring buffer of executed AI actions."""

import logging
from collections import deque
from typing import Any

from aether.models.events import AuditEntry

logger = logging.getLogger(__name__)


class AuditLog:
    """Append-only, capacity-bounded audit trail.

    Oldest entries are dropped silently once capacity is reached. This is a
    diagnostic trail, not a durable ledger; see EventStore for the optional
    SQLite mirror.
    """

    def __init__(self, capacity: int = 1000):
        self._entries: deque[AuditEntry] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def append(self, entry: AuditEntry) -> None:
        self._entries.append(entry)
        logger.info(
            f"AI Action: {entry.action} params={entry.params} "
            f"succeeded={entry.succeeded} session={entry.session_id}"
        )

    def recent(self, limit: int = 50) -> list[AuditEntry]:
        """Most recent entries, newest last."""
        if limit <= 0:
            return []
        entries = list(self._entries)
        return entries[-limit:]

    def to_dicts(self, limit: int = 50) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self.recent(limit)]

    def __len__(self) -> int:
        return len(self._entries)
