"""Confirmation Gate -- risk tiers and the yes/no handshake for risky actions.

Every AI-initiated action passes through evaluate() before it reaches the
lighting controller. High-risk actions (deletions, flashing effects, chases
fast enough to flicker) always need an explicit yes; medium-risk actions
need one only while something is playing, because they would interrupt it.

At most one confirmation is pending per session. Each one carries a
generation token, so an expiry timer scheduled for an older confirmation
can never remove a newer one.
"""

import asyncio
import itertools
import logging
import re
import time
from typing import Any, Callable

from aether.models.confirmation import (
    ConfirmationDecision,
    ConfirmationTier,
    PendingConfirmation,
    RiskPolicy,
)
from aether.models.context import LiveContext

logger = logging.getLogger(__name__)

CONFIRM_PHRASES = (
    "yes", "y", "yep", "yeah", "yup", "sure", "ok", "okay", "confirm", "confirmed",
    "do it", "go ahead", "proceed", "affirmative", "absolutely", "please do",
)
DENY_PHRASES = (
    "no", "n", "nope", "nah", "cancel", "don't", "dont", "do not", "abort",
    "never mind", "nevermind", "negative", "forget it",
)

_TRAILING_PUNCT = re.compile(r"[\s.!?,]+$")
_WHITESPACE = re.compile(r"\s+")
_PREFIX_BOUNDARY = " ,.!?;:-"


def _matches(text: str, phrases: tuple[str, ...]) -> bool:
    for phrase in phrases:
        if text == phrase:
            return True
        if text.startswith(phrase) and text[len(phrase)] in _PREFIX_BOUNDARY:
            return True
    return False


def _render(template: str, **values: Any) -> str:
    try:
        return template.format(**values)
    except (KeyError, IndexError, ValueError):
        return template


def _describe_target(params: dict[str, Any]) -> str:
    for key in ("name", "scene_name", "chase_name", "scene_id", "chase_id", "id"):
        if params.get(key):
            return f"'{params[key]}'"
    return "(unspecified)"


def step_rate_hz(params: dict[str, Any]) -> float | None:
    """Fastest step rate implied by an animated action's timing parameters."""
    rates: list[float] = []

    def _from_ms(value: Any) -> None:
        try:
            ms = float(value)
        except (TypeError, ValueError):
            return
        rates.append(float("inf") if ms <= 0 else 1000.0 / ms)

    bpm = params.get("bpm")
    if bpm is not None:
        try:
            rates.append(float(bpm) / 60.0)
        except (TypeError, ValueError):
            pass

    for key in ("step_duration_ms", "step_ms", "interval_ms", "duration_ms"):
        if params.get(key) is not None:
            _from_ms(params[key])

    for key in ("rate_hz", "speed_hz"):
        if params.get(key) is not None:
            try:
                rates.append(float(params[key]))
            except (TypeError, ValueError):
                pass

    steps = params.get("steps")
    if isinstance(steps, list):
        for step in steps:
            if not isinstance(step, dict):
                continue
            for key in ("duration_ms", "hold_ms", "duration"):
                if step.get(key) is not None:
                    _from_ms(step[key])
                    break

    return max(rates) if rates else None


def confirmation_prompt(reason: str) -> str:
    """User-facing question for a pending confirmation."""
    return f"{reason} Reply 'yes' to proceed or 'no' to cancel."


class ConfirmationGate:
    """Classifies action risk and owns the pending-confirmation table."""

    def __init__(
        self,
        policy: RiskPolicy,
        expiry_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._policy = policy
        self._expiry = expiry_seconds
        self._clock = clock
        self._pending: dict[str, PendingConfirmation] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._generation = itertools.count(1)

    @property
    def policy(self) -> RiskPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # Risk classification
    # ------------------------------------------------------------------

    def tier_of(self, action: str) -> ConfirmationTier:
        return self._policy.tiers.get(action, self._policy.default_tier)

    def evaluate(
        self,
        action: str,
        params: dict[str, Any] | None,
        live_context: LiveContext | None = None,
    ) -> ConfirmationDecision:
        params = params or {}
        tier = self.tier_of(action)

        if tier == ConfirmationTier.SAFE:
            return ConfirmationDecision(required=False, severity=tier)

        for rule in self._policy.elevation:
            if action not in rule.actions:
                continue
            rate = step_rate_hz(params)
            if rate is not None and rate > rule.max_step_rate_hz:
                logger.info(f"Elevated {action} to high risk ({rule.name}: {rate:.1f} Hz)")
                return ConfirmationDecision(
                    required=True,
                    severity=ConfirmationTier.HIGH,
                    reason=_render(rule.reason, rate=rate, limit=rule.max_step_rate_hz, action=action),
                )

        if tier == ConfirmationTier.HIGH:
            template = self._policy.reasons.get(
                action, self._policy.reasons.get("default_high", "'{action}' is a high-risk action.")
            )
            return ConfirmationDecision(
                required=True,
                severity=tier,
                reason=_render(template, action=action, target=_describe_target(params)),
            )

        if tier == ConfirmationTier.MEDIUM:
            if live_context is not None and live_context.is_playing:
                template = self._policy.reasons.get(
                    "interrupt", "Something is currently playing. '{action}' will interrupt it."
                )
                return ConfirmationDecision(
                    required=True,
                    severity=tier,
                    reason=_render(template, action=action, playing=live_context.playback.description),
                )
            return ConfirmationDecision(required=False, severity=tier)

        logger.debug(f"Low-risk action {action} allowed without confirmation")
        return ConfirmationDecision(required=False, severity=tier)

    # ------------------------------------------------------------------
    # Pending confirmations
    # ------------------------------------------------------------------

    def set_pending(
        self,
        session_id: str,
        action: str,
        params: dict[str, Any] | None,
        reason: str,
        severity: ConfirmationTier = ConfirmationTier.HIGH,
    ) -> PendingConfirmation:
        """Store (or supersede) the session's pending confirmation."""
        self._cancel_timer(session_id)
        token = next(self._generation)
        pending = PendingConfirmation(
            session_id=session_id,
            action=action,
            params=params or {},
            reason=reason,
            severity=severity,
            token=token,
            expires_at=self._clock() + self._expiry,
        )
        self._pending[session_id] = pending

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            self._timers[session_id] = loop.call_later(
                self._expiry, self._expire, session_id, token
            )

        logger.info(f"Awaiting confirmation for {action} in session {session_id}: {reason}")
        return pending

    def take_pending(self, session_id: str) -> PendingConfirmation | None:
        """Atomically read and clear the session's pending confirmation."""
        pending = self._pending.pop(session_id, None)
        self._cancel_timer(session_id)
        if pending is not None and self._clock() >= pending.expires_at:
            logger.info(f"Pending confirmation for {pending.action} expired (session {session_id})")
            return None
        return pending

    def peek_pending(self, session_id: str) -> PendingConfirmation | None:
        pending = self._pending.get(session_id)
        if pending is not None and self._clock() >= pending.expires_at:
            return None
        return pending

    def discard(self, session_id: str) -> None:
        self._pending.pop(session_id, None)
        self._cancel_timer(session_id)

    def clear_all(self) -> None:
        for session_id in list(self._timers):
            self._cancel_timer(session_id)
        self._pending.clear()

    def _expire(self, session_id: str, token: int) -> None:
        self._timers.pop(session_id, None)
        pending = self._pending.get(session_id)
        if pending is not None and pending.token == token:
            del self._pending[session_id]
            logger.info(f"Pending confirmation for {pending.action} expired (session {session_id})")

    def _cancel_timer(self, session_id: str) -> None:
        handle = self._timers.pop(session_id, None)
        if handle is not None:
            handle.cancel()

    # ------------------------------------------------------------------
    # Reply classification
    # ------------------------------------------------------------------

    @staticmethod
    def classify_reply(text: str) -> str | None:
        """Return "confirm", "deny" or None when the text is not a yes/no reply."""
        normalized = _WHITESPACE.sub(" ", (text or "").lower().strip())
        normalized = _TRAILING_PUNCT.sub("", normalized)
        if not normalized:
            return None
        if _matches(normalized, DENY_PHRASES):
            return "deny"
        if _matches(normalized, CONFIRM_PHRASES):
            return "confirm"
        return None
