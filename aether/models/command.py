"""Pydantic models for reasoning steps, tool calls and chat replies."""

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel

from aether.models.confirmation import ConfirmationDecision


class ChatMode(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class AIMode(str, Enum):
    """Operator-selected backend policy."""
    ONLINE = "online"
    OFFLINE = "offline"
    HYBRID = "hybrid"


class ReachabilityState(str, Enum):
    UNKNOWN = "unknown"
    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"


class AIConfigUpdate(BaseModel):
    """Partial runtime configuration change. Unknown keys are rejected."""
    mode: AIMode | None = None
    model: str | None = None
    fallback_models: list[str] | None = None

    model_config = {"extra": "forbid"}


class ToolCall(BaseModel):
    """A tool invocation proposed by the reasoning backend."""
    id: str
    name: str
    arguments: dict[str, Any] = {}

    def to_message_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": json.dumps(self.arguments)},
        }


class ReasoningStep(BaseModel):
    """One complete reply from the reasoning backend."""
    text: str = ""
    tool_calls: list[ToolCall] = []
    finish_reason: str = "stop"

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


class StreamChunk(BaseModel):
    """Incremental piece of a streamed reasoning step.

    kind is "text" (a fragment), "tool_call" (a fully assembled call) or
    "finish" (the terminal signal carrying finish_reason).
    """
    kind: str
    text: str = ""
    tool_call: ToolCall | None = None
    finish_reason: str | None = None


class LoopOutcome(BaseModel):
    """Result of one run of the tool execution loop."""
    text: str = ""
    tools_used: list[str] = []
    needs_confirmation: bool = False
    confirmation: ConfirmationDecision | None = None
    depth_exhausted: bool = False


class ChatResponse(BaseModel):
    message: str
    mode: ChatMode
    session_id: str
    needs_confirmation: bool | None = None
    action: str | None = None
    tools_used: list[str] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(exclude_none=True)
        data["mode"] = self.mode.value
        return data
