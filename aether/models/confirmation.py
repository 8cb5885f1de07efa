"""Pydantic models for risk tiers, confirmation decisions and the risk policy."""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class ConfirmationTier(str, Enum):
    SAFE = "safe"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ConfirmationDecision(BaseModel):
    """Outcome of evaluating one proposed action against the risk policy."""
    required: bool = False
    reason: str | None = None
    severity: ConfirmationTier | None = None


class PendingConfirmation(BaseModel):
    """An action waiting for the user's yes/no."""
    session_id: str
    action: str
    params: dict[str, Any] = {}
    reason: str = ""
    severity: ConfirmationTier = ConfirmationTier.HIGH
    token: int = 0
    created_at: datetime = Field(default_factory=datetime.now)
    expires_at: float = 0.0  # monotonic clock

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "params": self.params,
            "reason": self.reason,
            "severity": self.severity.value,
            "created_at": self.created_at.isoformat(),
        }


class ElevationRule(BaseModel):
    """Raise an animated action to high risk when it steps faster than a limit."""
    name: str
    actions: list[str] = []
    max_step_rate_hz: float = 10.0
    reason: str = "This effect steps at {rate:.1f} Hz, faster than {limit:.0f} Hz."


class RiskPolicy(BaseModel):
    """Action risk table plus dynamic elevation rules, loaded from YAML."""
    default_tier: ConfirmationTier = ConfirmationTier.MEDIUM
    tiers: dict[str, ConfirmationTier] = {}
    reasons: dict[str, str] = {}
    elevation: list[ElevationRule] = []

    @classmethod
    def from_yaml(cls, path: str) -> "RiskPolicy":
        """Load the policy file. A missing file is a hard error."""
        policy_path = Path(path)
        if not policy_path.exists():
            raise FileNotFoundError(f"Risk policy not found: {path}")

        with open(policy_path) as f:
            data = yaml.safe_load(f) or {}
        return cls.model_validate(data)
