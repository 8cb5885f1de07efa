"""Pydantic models for chat sessions and their short-term memory."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class EntityRef(BaseModel):
    """A scene or chase the session recently created or played."""
    id: str | None = None
    name: str | None = None
    timestamp: datetime = Field(default_factory=datetime.now)
    extra: dict[str, Any] = {}

    @property
    def label(self) -> str:
        return self.name or self.id or "unnamed"


class RecentAction(BaseModel):
    action: str
    id_or_name: str | None = None
    succeeded: bool = True
    timestamp: datetime = Field(default_factory=datetime.now)


class SessionMemory(BaseModel):
    last_created_scene: EntityRef | None = None
    last_created_chase: EntityRef | None = None
    last_played_scene: EntityRef | None = None
    last_played_chase: EntityRef | None = None
    recent_actions: list[RecentAction] = []

    @property
    def is_empty(self) -> bool:
        return not (
            self.last_created_scene
            or self.last_created_chase
            or self.last_played_scene
            or self.last_played_chase
            or self.recent_actions
        )


class Session(BaseModel):
    """One logical conversation: history, memory and activity timestamps."""
    id: str
    messages: list[dict[str, Any]] = []
    memory: SessionMemory = Field(default_factory=SessionMemory)
    created_at: datetime = Field(default_factory=datetime.now)
    last_activity: datetime = Field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "messages": self.messages,
            "memory": self.memory.model_dump(mode="json"),
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
        }
