"""Pydantic models for the live controller snapshot used in safety decisions."""

from typing import Any

from pydantic import BaseModel


class PlaybackContext(BaseModel):
    state: str = "unknown"  # playing | idle | unknown
    active: dict[str, Any] = {}

    @property
    def description(self) -> str:
        """Short label for whatever is playing, for prompts and warnings."""
        for key, value in self.active.items():
            if isinstance(value, dict):
                return str(value.get("name") or value.get("id") or key)
            return str(value)
        return "unknown"


class NodesContext(BaseModel):
    online: int = 0
    offline: int = 0
    total: int = 0
    warnings: list[str] = []


class TimeContext(BaseModel):
    time_of_day: str = "unknown"
    hour: int = 0
    day_of_week: str = ""


class SystemContext(BaseModel):
    healthy: bool = False


class LiveContext(BaseModel):
    """Best-effort snapshot of the lighting controller."""
    playback: PlaybackContext = PlaybackContext()
    nodes: NodesContext = NodesContext()
    time: TimeContext = TimeContext()
    system: SystemContext = SystemContext()
    ai_mode: str = "offline"

    @property
    def is_playing(self) -> bool:
        return self.playback.state == "playing"
