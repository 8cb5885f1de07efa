"""Shared fakes for the orchestration tests."""

from typing import Any

import pytest

from config.settings import settings
from aether.agents.confirmation import ConfirmationGate
from aether.agents.orchestrator import Orchestrator
from aether.models.command import ReasoningStep, StreamChunk, ToolCall
from aether.models.confirmation import RiskPolicy
from aether.models.context import LiveContext, PlaybackContext
from aether.storage.audit_log import AuditLog
from aether.storage.session_store import SessionStore


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBackend:
    """Scripted reasoning backend. Each call consumes the next step."""

    def __init__(self, steps: list[ReasoningStep] | None = None, fail: Exception | None = None):
        self.steps = list(steps or [])
        self.fail = fail
        self.calls: list[list[dict[str, Any]]] = []
        self.prompts: list[str] = []
        self.is_configured = True
        self.model = "test/model"
        self.fallback_models: list[str] = []
        self.closed = False

    def _next(self, system_prompt: str, messages: list[dict[str, Any]]) -> ReasoningStep:
        self.calls.append(messages)
        self.prompts.append(system_prompt)
        if self.fail is not None:
            raise self.fail
        if self.steps:
            return self.steps.pop(0)
        return ReasoningStep(text="ok")

    async def complete(self, system_prompt, messages, tools) -> ReasoningStep:
        return self._next(system_prompt, messages)

    async def stream(self, system_prompt, messages, tools):
        step = self._next(system_prompt, messages)
        words = step.text.split(" ") if step.text else []
        for index, word in enumerate(words):
            yield StreamChunk(kind="text", text=word if index == 0 else f" {word}")
        for call in step.tool_calls:
            yield StreamChunk(kind="tool_call", tool_call=call)
        yield StreamChunk(kind="finish", finish_reason=step.finish_reason)

    async def ping(self, timeout: float = 5.0) -> None:
        if self.fail is not None:
            raise self.fail

    async def close(self) -> None:
        self.closed = True


class FakeExecutor:
    """Records executions and answers from a canned result table."""

    def __init__(self, results: dict[str, Any] | None = None):
        self.results = results or {}
        self.executed: list[tuple[str, dict[str, Any]]] = []

    def tool_definitions(self) -> list[dict[str, Any]]:
        return []

    def list_actions(self) -> list[dict[str, Any]]:
        return [{"name": name, "description": "", "param_schema": {}} for name in self.results]

    async def execute(self, name: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        self.executed.append((name, dict(params or {})))
        result = self.results.get(name, {"success": True, "message": f"{name} ok"})
        if isinstance(result, Exception):
            raise result
        return dict(result)


class FakeDeviceAPI:
    def __init__(self, context: LiveContext | None = None):
        self.context = context or LiveContext(playback=PlaybackContext(state="idle"))
        self.closed = False

    async def fetch_live_context(self, ai_mode: str = "offline") -> LiveContext:
        return self.context.model_copy(update={"ai_mode": ai_mode})

    async def close(self) -> None:
        self.closed = True


def tool_step(name: str, arguments: dict[str, Any] | None = None, call_id: str = "call_1", text: str = "") -> ReasoningStep:
    return ReasoningStep(
        text=text,
        tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments or {})],
        finish_reason="tool_calls",
    )


def playing_context() -> LiveContext:
    return LiveContext(playback=PlaybackContext(state="playing", active={"scene": {"name": "Sunset"}}))


@pytest.fixture
def policy() -> RiskPolicy:
    return RiskPolicy.from_yaml(settings.risk_policy_path)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gate(policy, clock) -> ConfirmationGate:
    return ConfirmationGate(policy, expiry_seconds=60, clock=clock)


@pytest.fixture
def sessions() -> SessionStore:
    return SessionStore(ttl_seconds=3600)


@pytest.fixture
def make_orchestrator(gate, sessions):
    """Build an Orchestrator wired to fakes; keyword args override collaborators."""

    def _make(
        backend: FakeBackend | None = None,
        executor: FakeExecutor | None = None,
        device_api: FakeDeviceAPI | None = None,
        mode: str = "hybrid",
        **kwargs: Any,
    ) -> Orchestrator:
        return Orchestrator(
            backend=backend or FakeBackend(),
            device_api=device_api or FakeDeviceAPI(),
            executor=executor or FakeExecutor(),
            gate=gate,
            sessions=sessions,
            audit=AuditLog(100),
            broadcast=_noop_broadcast,
            mode=mode,
            system_prompt="You are a test lighting assistant.",
            word_delay=0,
            **kwargs,
        )

    return _make


async def _noop_broadcast(message_type: str, data: Any) -> None:
    return None
