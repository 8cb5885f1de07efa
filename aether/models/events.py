"""Pydantic models for audit entries and streamed chat events."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class AuditEntry(BaseModel):
    """One executed action. Never mutated after it is appended."""
    timestamp: datetime = Field(default_factory=datetime.now)
    session_id: str = ""
    action: str
    params: dict[str, Any] = {}
    succeeded: bool = True
    message: str | None = None

    model_config = {"frozen": True}

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "session_id": self.session_id,
            "action": self.action,
            "params": self.params,
            "succeeded": self.succeeded,
            "message": self.message,
        }


class ChatEventType(str, Enum):
    TEXT = "text"
    TOOLS = "tools"
    TOOL_STATUS = "tool_status"
    CONFIRMATION_REQUIRED = "confirmation_required"


class ChatEvent(BaseModel):
    """A typed fragment of a streamed reply."""
    type: ChatEventType
    content: Any = None
    tool: str | None = None
    status: str | None = None  # executing | complete | error
    result: dict[str, Any] | None = None
    error: str | None = None
    reason: str | None = None
    severity: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(exclude_none=True)
        data["type"] = self.type.value
        return data
