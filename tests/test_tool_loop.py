import asyncio
import json

import pytest

from conftest import FakeBackend, FakeExecutor, playing_context, tool_step
from aether.agents.recorder import ActionRecorder
from aether.agents.tool_loop import ToolExecutionLoop
from aether.models.command import ReasoningStep, ToolCall
from aether.models.context import LiveContext, PlaybackContext
from aether.models.events import ChatEventType
from aether.storage.audit_log import AuditLog
from aether.storage.memory_tracker import MemoryTracker

IDLE = LiveContext(playback=PlaybackContext(state="idle"))


@pytest.fixture
def audit():
    return AuditLog()


def make_loop(backend, executor, gate, sessions, audit, max_depth=5):
    recorder = ActionRecorder(audit, MemoryTracker(sessions))
    return ToolExecutionLoop(backend, executor, gate, sessions, recorder, max_depth=max_depth)


@pytest.mark.asyncio
async def test_plain_reply_needs_one_call(gate, sessions, audit):
    backend = FakeBackend([ReasoningStep(text="Hello there")])
    loop = make_loop(backend, FakeExecutor(), gate, sessions, audit)
    sessions.record_message("s1", {"role": "user", "content": "hi"})

    outcome = await loop.run("s1", "system", IDLE)

    assert outcome.text == "Hello there"
    assert outcome.tools_used == []
    assert len(backend.calls) == 1
    assert sessions.messages("s1")[-1] == {"role": "assistant", "content": "Hello there"}


@pytest.mark.asyncio
async def test_tool_results_are_fed_back(gate, sessions, audit):
    executor = FakeExecutor({"list_scenes": {"success": True, "scenes": [{"scene_id": "a", "name": "Warm"}]}})
    backend = FakeBackend([
        tool_step("list_scenes", call_id="c1"),
        ReasoningStep(text="You have one scene: Warm."),
    ])
    loop = make_loop(backend, executor, gate, sessions, audit)

    outcome = await loop.run("s1", "system", IDLE)

    assert outcome.text == "You have one scene: Warm."
    assert outcome.tools_used == ["list_scenes"]
    second_call_history = backend.calls[1]
    assistant, tool_result = second_call_history[-2], second_call_history[-1]
    assert assistant["tool_calls"][0]["id"] == "c1"
    assert tool_result["role"] == "tool"
    assert tool_result["tool_call_id"] == "c1"
    assert json.loads(tool_result["content"])["scenes"][0]["name"] == "Warm"
    assert [e.action for e in audit.recent()] == ["list_scenes"]


@pytest.mark.asyncio
async def test_depth_is_bounded(gate, sessions, audit):
    backend = FakeBackend([tool_step("get_status", call_id=f"c{i}") for i in range(20)])
    executor = FakeExecutor()
    loop = make_loop(backend, executor, gate, sessions, audit, max_depth=5)

    outcome = await loop.run("s1", "system", IDLE)

    assert len(backend.calls) == 5
    assert len(executor.executed) == 5
    assert outcome.depth_exhausted is True
    assert outcome.needs_confirmation is False


@pytest.mark.asyncio
async def test_gated_action_halts_turn(gate, sessions, audit):
    backend = FakeBackend([tool_step("delete_scene", {"scene_id": "s9"}, call_id="c1")])
    executor = FakeExecutor()
    loop = make_loop(backend, executor, gate, sessions, audit)

    outcome = await loop.run("s1", "system", IDLE)

    assert outcome.needs_confirmation is True
    assert "cannot be undone" in outcome.text
    assert executor.executed == []
    assert len(backend.calls) == 1
    pending = gate.peek_pending("s1")
    assert pending.action == "delete_scene"
    assert pending.params == {"scene_id": "s9"}
    last = sessions.messages("s1")[-1]
    assert last["tool_call_id"] == "c1"
    assert json.loads(last["content"])["status"] == "awaiting_confirmation"


@pytest.mark.asyncio
async def test_calls_after_gated_one_are_skipped_but_answered(gate, sessions, audit):
    step = ReasoningStep(
        tool_calls=[
            ToolCall(id="a", name="set_channels", arguments={"channels": {"1": 255}}),
            ToolCall(id="b", name="delete_chase", arguments={"chase_id": "x"}),
            ToolCall(id="c", name="list_scenes", arguments={}),
        ],
        finish_reason="tool_calls",
    )
    executor = FakeExecutor()
    loop = make_loop(FakeBackend([step]), executor, gate, sessions, audit)

    outcome = await loop.run("s1", "system", IDLE)

    assert outcome.needs_confirmation is True
    assert outcome.tools_used == ["set_channels"]
    assert [name for name, _ in executor.executed] == ["set_channels"]
    answered = [m["tool_call_id"] for m in sessions.messages("s1") if m["role"] == "tool"]
    assert answered == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_medium_action_gated_only_while_playing(gate, sessions, audit):
    executor = FakeExecutor()
    backend = FakeBackend([tool_step("play_scene", {"scene_id": "s1"}), ReasoningStep(text="Playing.")])
    loop = make_loop(backend, executor, gate, sessions, audit)
    outcome = await loop.run("idle-session", "system", IDLE)
    assert outcome.needs_confirmation is False
    assert executor.executed == [("play_scene", {"scene_id": "s1"})]

    backend = FakeBackend([tool_step("play_scene", {"scene_id": "s1"})])
    loop = make_loop(backend, FakeExecutor(), gate, sessions, audit)
    outcome = await loop.run("busy-session", "system", playing_context())
    assert outcome.needs_confirmation is True


@pytest.mark.asyncio
async def test_tool_failure_is_reported_to_the_model(gate, sessions, audit):
    executor = FakeExecutor({"play_scene": {"success": False, "error": "Scene 'zzz' not found"}})
    backend = FakeBackend([
        tool_step("play_scene", {"scene_name": "zzz"}),
        ReasoningStep(text="I couldn't find that scene."),
    ])
    loop = make_loop(backend, executor, gate, sessions, audit)

    outcome = await loop.run("s1", "system", IDLE)

    assert outcome.text == "I couldn't find that scene."
    fed_back = json.loads(backend.calls[1][-1]["content"])
    assert fed_back == {"success": False, "error": "Scene 'zzz' not found"}
    entry = audit.recent()[-1]
    assert entry.succeeded is False
    assert entry.message == "Scene 'zzz' not found"
    memory = sessions.get("s1").memory
    assert memory.last_played_scene is None
    assert [(a.action, a.id_or_name, a.succeeded) for a in memory.recent_actions] == [
        ("play_scene", "zzz", False)
    ]


@pytest.mark.asyncio
async def test_executor_exception_is_normalized(gate, sessions, audit):
    executor = FakeExecutor({"blackout": RuntimeError("socket closed")})
    backend = FakeBackend([tool_step("blackout"), ReasoningStep(text="Blackout failed.")])
    loop = make_loop(backend, executor, gate, sessions, audit)

    outcome = await loop.run("s1", "system", IDLE)

    assert outcome.text == "Blackout failed."
    assert json.loads(backend.calls[1][-1]["content"])["error"] == "socket closed"


@pytest.mark.asyncio
async def test_backend_error_propagates(gate, sessions, audit):
    loop = make_loop(FakeBackend(fail=RuntimeError("boom")), FakeExecutor(), gate, sessions, audit)
    with pytest.raises(RuntimeError):
        await loop.run("s1", "system", IDLE)


@pytest.mark.asyncio
async def test_streaming_emits_events_in_order(gate, sessions, audit):
    backend = FakeBackend([tool_step("get_status"), ReasoningStep(text="All quiet")])
    loop = make_loop(backend, FakeExecutor(), gate, sessions, audit)
    events = []

    async def emit(event):
        events.append(event)

    outcome = await loop.run("s1", "system", IDLE, emit=emit)

    types = [e.type for e in events]
    assert types[:3] == [ChatEventType.TOOLS, ChatEventType.TOOL_STATUS, ChatEventType.TOOL_STATUS]
    assert [e.status for e in events[1:3]] == ["executing", "complete"]
    assert all(t == ChatEventType.TEXT for t in types[3:])
    assert "".join(e.content for e in events[3:]).strip() == "All quiet"
    assert outcome.text.strip() == "All quiet"


@pytest.mark.asyncio
async def test_streaming_confirmation_event(gate, sessions, audit):
    backend = FakeBackend([tool_step("flash")])
    loop = make_loop(backend, FakeExecutor(), gate, sessions, audit)
    events = []

    async def emit(event):
        events.append(event)

    await loop.run("s1", "system", IDLE, emit=emit)

    assert events[-1].type == ChatEventType.CONFIRMATION_REQUIRED
    assert events[-1].tool == "flash"
    assert events[-1].severity == "high"


class SlowExecutor(FakeExecutor):
    async def execute(self, name, params=None):
        await asyncio.sleep(0.05)
        return await super().execute(name, params)


@pytest.mark.asyncio
async def test_cancelled_turn_still_audits_and_answers_running_call(gate, sessions, audit):
    step = ReasoningStep(
        tool_calls=[
            ToolCall(id="a", name="set_channels", arguments={"channels": {"1": 255}}),
            ToolCall(id="b", name="list_scenes", arguments={}),
        ],
        finish_reason="tool_calls",
    )
    executor = SlowExecutor()
    loop = make_loop(FakeBackend([step]), executor, gate, sessions, audit)

    task = asyncio.create_task(loop.run("s1", "system", IDLE))
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    await asyncio.sleep(0.1)

    assert executor.executed == [("set_channels", {"channels": {"1": 255}})]
    assert [(e.action, e.succeeded) for e in audit.recent()] == [("set_channels", True)]
    answered = {m["tool_call_id"]: json.loads(m["content"]) for m in sessions.messages("s1") if m["role"] == "tool"}
    assert set(answered) == {"a", "b"}
    assert answered["a"]["success"] is True
    assert answered["b"]["status"] == "skipped"


def _script():
    return {
        "tool chain": [
            ReasoningStep(
                tool_calls=[
                    ToolCall(id="c1", name="list_scenes", arguments={}),
                    ToolCall(id="c2", name="play_scene", arguments={"scene_id": "s1"}),
                ],
                finish_reason="tool_calls",
            ),
            tool_step("create_scene", {"name": "Warm", "channels": {"1": 200}}, call_id="c3"),
            ReasoningStep(text="Saved Warm and started Sunset."),
        ],
        "gated halt": [
            tool_step("set_channels", {"channels": {"1": 10}}, call_id="c1"),
            ReasoningStep(
                tool_calls=[
                    ToolCall(id="c2", name="delete_scene", arguments={"scene_id": "s1"}),
                    ToolCall(id="c3", name="get_status", arguments={}),
                ],
                finish_reason="tool_calls",
            ),
        ],
        "depth limit": [tool_step("get_status", call_id=f"c{i}") for i in range(8)],
    }


@pytest.mark.asyncio
@pytest.mark.parametrize("script", ["tool chain", "gated halt", "depth limit"])
async def test_buffered_and_streamed_turns_match(gate, sessions, script):
    results = {
        "create_scene": {"success": True, "scene_id": "new1", "name": "Warm"},
        "play_scene": {"success": False, "error": "HTTP 503: busy"},
    }
    runs = {}
    for mode in ("buffered", "streamed"):
        audit = AuditLog()
        loop = make_loop(FakeBackend(_script()[script]), FakeExecutor(results), gate, sessions, audit)
        events = []

        async def emit(event):
            events.append(event)

        outcome = await loop.run(mode, "system", IDLE, emit=emit if mode == "streamed" else None)
        pending = gate.take_pending(mode)
        memory = sessions.get(mode).memory
        runs[mode] = {
            "outcome": outcome.model_dump(),
            "history": sessions.messages(mode),
            "audit": [(e.action, e.params, e.succeeded, e.message) for e in audit.recent()],
            "recent": [(a.action, a.id_or_name, a.succeeded) for a in memory.recent_actions],
            "created": memory.last_created_scene.id if memory.last_created_scene else None,
            "pending": (pending.action, pending.params) if pending else None,
        }
        if mode == "streamed" and not outcome.needs_confirmation:
            assert "".join(e.content for e in events if e.type == ChatEventType.TEXT) == outcome.text

    assert runs["buffered"] == runs["streamed"]
