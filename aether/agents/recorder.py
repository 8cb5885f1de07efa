"""Fan-out for executed actions: audit log, session memory, optional DB mirror, dashboard."""

import logging
from typing import Any, Awaitable, Callable

from aether.models.events import AuditEntry
from aether.storage.audit_log import AuditLog
from aether.storage.event_store import EventStore
from aether.storage.memory_tracker import MemoryTracker

logger = logging.getLogger(__name__)

Broadcast = Callable[[str, Any], Awaitable[None]]


class ActionRecorder:
    """Records every executed action, successful or not.

    Every outcome lands in the audit log and the session's recent actions;
    only successes move the "last created/played" memory slots. Mirror and
    broadcast failures are logged and never reach the caller.
    """

    def __init__(
        self,
        audit: AuditLog,
        memory: MemoryTracker,
        event_store: EventStore | None = None,
        broadcast: Broadcast | None = None,
    ):
        self._audit = audit
        self._memory = memory
        self._event_store = event_store
        self._broadcast = broadcast

    def detach_event_store(self) -> None:
        self._event_store = None

    async def record(
        self,
        session_id: str,
        action: str,
        params: dict[str, Any] | None,
        result: dict[str, Any] | None,
    ) -> AuditEntry:
        result = result or {}
        succeeded = bool(result.get("success"))
        entry = AuditEntry(
            session_id=session_id,
            action=action,
            params=params or {},
            succeeded=succeeded,
            message=result.get("message") if succeeded else result.get("error"),
        )
        self._audit.append(entry)

        self._memory.record_outcome(session_id, action, result, params, succeeded=succeeded)

        if self._event_store is not None:
            try:
                await self._event_store.log_entry(entry)
            except Exception as e:
                logger.warning(f"Failed to mirror audit entry to database: {e}")

        if self._broadcast is not None:
            try:
                await self._broadcast("ai_action", entry.to_dict())
            except Exception as e:
                logger.debug(f"Action broadcast failed: {e}")

        return entry
