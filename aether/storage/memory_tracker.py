"""Short-term memory of what a session recently created and played.

Lets follow-ups like "make that last scene warmer" resolve to a concrete
scene or chase id without the user repeating it.
"""

import logging
from datetime import datetime
from typing import Any

from aether.models.session import EntityRef, RecentAction, SessionMemory
from aether.storage.session_store import SessionStore

logger = logging.getLogger(__name__)

RECENT_ACTIONS_CAPACITY = 10

# action -> (memory slot, typed id field, label used in summaries)
TRACKED_ACTIONS: dict[str, tuple[str, str, str]] = {
    "create_scene": ("last_created_scene", "scene_id", "Last created scene"),
    "create_chase": ("last_created_chase", "chase_id", "Last created chase"),
    "play_scene": ("last_played_scene", "scene_id", "Last played scene"),
    "play_chase": ("last_played_chase", "chase_id", "Last played chase"),
}

# typed id field -> the param a caller uses to name the entity
NAME_PARAMS: dict[str, str] = {"scene_id": "scene_name", "chase_id": "chase_name"}

EXTRA_FIELDS: dict[str, tuple[str, ...]] = {
    "scene_id": ("fade_ms", "universe", "channel_count"),
    "chase_id": ("bpm", "loop", "step_count", "fade_ms"),
}


def _format_age(then: datetime, now: datetime) -> str:
    seconds = max(0, int((now - then).total_seconds()))
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{seconds // 60}min ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    return f"{seconds // 86400}d ago"


class MemoryTracker:
    """Purely additive bookkeeping over SessionStore memory. Never raises."""

    def __init__(self, sessions: SessionStore, capacity: int = RECENT_ACTIONS_CAPACITY):
        self._sessions = sessions
        self._capacity = capacity

    def record_outcome(
        self,
        session_id: str,
        action_type: str,
        result_data: dict[str, Any] | None,
        params: dict[str, Any] | None = None,
        succeeded: bool = True,
    ) -> None:
        """Note one executed action. Failures only show up in recent actions."""
        result_data = result_data or {}
        params = params or {}
        tracked = TRACKED_ACTIONS.get(action_type)

        entity: EntityRef | None = None
        if tracked:
            _, id_field, _ = tracked
            entity_id = result_data.get(id_field) or result_data.get("id") or params.get(id_field)
            name = (
                result_data.get("name")
                or params.get("name")
                or params.get(NAME_PARAMS.get(id_field, ""))
            )
            extra = {
                key: result_data[key]
                for key in EXTRA_FIELDS.get(id_field, ())
                if key in result_data
            }
            entity = EntityRef(
                id=str(entity_id) if entity_id is not None else None,
                name=name,
                extra=extra,
            )

        id_or_name = None
        if entity:
            id_or_name = entity.name or entity.id
        else:
            for key in ("name", "scene_id", "chase_id", "id"):
                if params.get(key) is not None:
                    id_or_name = str(params[key])
                    break

        def _apply(memory: SessionMemory) -> None:
            if tracked and entity and succeeded:
                setattr(memory, tracked[0], entity)
            memory.recent_actions.append(
                RecentAction(action=action_type, id_or_name=id_or_name, succeeded=succeeded)
            )
            overflow = len(memory.recent_actions) - self._capacity
            if overflow > 0:
                del memory.recent_actions[:overflow]

        self._sessions.update_memory(session_id, _apply)

    def summarize(self, session_id: str, now: datetime | None = None) -> str:
        """Human-readable digest for prompt construction; empty if nothing to say."""
        session = self._sessions.get(session_id)
        if session is None or session.memory.is_empty:
            return ""

        now = now or datetime.now()
        memory = session.memory
        lines = []
        for slot, _, label in TRACKED_ACTIONS.values():
            entity: EntityRef | None = getattr(memory, slot)
            if entity:
                ident = f" [id {entity.id}]" if entity.id and entity.name else ""
                lines.append(f"{label}: '{entity.label}'{ident} ({_format_age(entity.timestamp, now)})")

        if memory.recent_actions:
            recent = ", ".join(
                (f"{a.action}({a.id_or_name})" if a.id_or_name else a.action)
                + ("" if a.succeeded else " [failed]")
                for a in memory.recent_actions[-5:]
            )
            lines.append(f"Recent actions: {recent}")

        return "\n".join(lines)
