"""Tool Execution Loop -- reason, act, feed results back, repeat.

Each iteration makes one reasoning call. Proposed tool calls run in order
through the Confirmation Gate; the first one that needs a yes halts the whole
turn. Depth is bounded so a model that keeps calling tools cannot loop forever.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

from aether.agents.confirmation import ConfirmationGate, confirmation_prompt
from aether.agents.recorder import ActionRecorder
from aether.agents.tools.executor import ToolExecutor
from aether.integrations.openrouter import OpenRouterClient
from aether.models.command import LoopOutcome, ReasoningStep, StreamChunk, ToolCall
from aether.models.confirmation import ConfirmationDecision
from aether.models.context import LiveContext
from aether.models.events import ChatEvent, ChatEventType
from aether.storage.session_store import SessionStore

logger = logging.getLogger(__name__)

Emit = Callable[[ChatEvent], Awaitable[None]]


def tool_result_message(call_id: str, result: dict[str, Any]) -> dict[str, Any]:
    return {"role": "tool", "tool_call_id": call_id, "content": json.dumps(result, default=str)}


def assistant_message(step: ReasoningStep) -> dict[str, Any]:
    message: dict[str, Any] = {"role": "assistant", "content": step.text}
    if step.tool_calls:
        message["tool_calls"] = [tc.to_message_dict() for tc in step.tool_calls]
    return message


async def execute_and_record(
    executor: ToolExecutor,
    recorder: ActionRecorder,
    session_id: str,
    action: str,
    params: dict[str, Any],
) -> dict[str, Any]:
    """Run one action and audit it. Exceptions become a failed result."""
    try:
        result = await executor.execute(action, params)
    except Exception as e:
        logger.error(f"Tool {action} raised: {e}")
        result = {"success": False, "error": str(e)}
    await recorder.record(session_id, action, params, result)
    return result


class ToolExecutionLoop:
    def __init__(
        self,
        backend: OpenRouterClient,
        executor: ToolExecutor,
        gate: ConfirmationGate,
        sessions: SessionStore,
        recorder: ActionRecorder,
        max_depth: int = 5,
    ):
        self._backend = backend
        self._executor = executor
        self._gate = gate
        self._sessions = sessions
        self._recorder = recorder
        self._max_depth = max_depth

    @property
    def max_depth(self) -> int:
        return self._max_depth

    async def run(
        self,
        session_id: str,
        system_prompt: str,
        live_context: LiveContext,
        emit: Emit | None = None,
    ) -> LoopOutcome:
        """Drive the backend until it stops asking for tools.

        With emit set the backend is streamed and text fragments are pushed
        as they arrive; otherwise each step is a single buffered call.
        Backend errors propagate so the caller can fall back.
        """
        tools = self._executor.tool_definitions()
        texts: list[str] = []
        tools_used: list[str] = []

        for depth in range(self._max_depth):
            messages = self._sessions.messages(session_id)
            if emit is None:
                step = await self._backend.complete(system_prompt, messages, tools)
            else:
                step = await self._stream_step(system_prompt, messages, tools, emit)

            self._sessions.record_message(session_id, assistant_message(step))
            if step.text:
                texts.append(step.text)

            if not step.wants_tools:
                return LoopOutcome(text="\n".join(texts), tools_used=tools_used)

            logger.info(
                f"Depth {depth + 1}: model requested {[tc.name for tc in step.tool_calls]}"
            )
            if emit is not None:
                await emit(ChatEvent(
                    type=ChatEventType.TOOLS,
                    content=[{"name": tc.name, "arguments": tc.arguments} for tc in step.tool_calls],
                ))

            decision = await self._resolve_calls(
                session_id, step.tool_calls, live_context, tools_used, emit
            )
            if decision is not None:
                return LoopOutcome(
                    text=confirmation_prompt(decision.reason),
                    tools_used=tools_used,
                    needs_confirmation=True,
                    confirmation=decision,
                )

        logger.warning(f"Max tool depth ({self._max_depth}) reached for session {session_id}")
        return LoopOutcome(text="\n".join(texts), tools_used=tools_used, depth_exhausted=True)

    async def _stream_step(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        emit: Emit,
    ) -> ReasoningStep:
        text_parts: list[str] = []
        calls: list[ToolCall] = []
        finish_reason: str | None = None

        chunk: StreamChunk
        async for chunk in self._backend.stream(system_prompt, messages, tools):
            if chunk.kind == "text" and chunk.text:
                text_parts.append(chunk.text)
                await emit(ChatEvent(type=ChatEventType.TEXT, content=chunk.text))
            elif chunk.kind == "tool_call" and chunk.tool_call is not None:
                calls.append(chunk.tool_call)
            elif chunk.kind == "finish":
                finish_reason = chunk.finish_reason

        return ReasoningStep(
            text="".join(text_parts),
            tool_calls=calls,
            finish_reason=finish_reason or ("tool_calls" if calls else "stop"),
        )

    async def _resolve_calls(
        self,
        session_id: str,
        calls: list[ToolCall],
        live_context: LiveContext,
        tools_used: list[str],
        emit: Emit | None,
    ) -> ConfirmationDecision | None:
        """Run calls in order. Returns the decision that halted the turn, if any."""
        for index, call in enumerate(calls):
            decision = self._gate.evaluate(call.name, call.arguments, live_context)
            if decision.required:
                self._halt(session_id, calls[index:], decision)
                if emit is not None:
                    await emit(ChatEvent(
                        type=ChatEventType.CONFIRMATION_REQUIRED,
                        tool=call.name,
                        content=confirmation_prompt(decision.reason),
                        reason=decision.reason,
                        severity=decision.severity.value,
                    ))
                return decision

            if emit is not None:
                await emit(ChatEvent(type=ChatEventType.TOOL_STATUS, tool=call.name, status="executing"))

            # Once dispatched, a call is always audited and answered in history,
            # even if the turn is cancelled while it runs.
            try:
                result = await asyncio.shield(self._run_call(session_id, call, tools_used))
            except asyncio.CancelledError:
                self._answer_skipped(session_id, calls[index + 1:], "Turn cancelled before this call ran")
                raise

            if emit is not None:
                if result.get("success"):
                    await emit(ChatEvent(
                        type=ChatEventType.TOOL_STATUS, tool=call.name, status="complete", result=result
                    ))
                else:
                    await emit(ChatEvent(
                        type=ChatEventType.TOOL_STATUS, tool=call.name, status="error",
                        error=str(result.get("error") or "unknown error"),
                    ))
        return None

    async def _run_call(self, session_id: str, call: ToolCall, tools_used: list[str]) -> dict[str, Any]:
        result = await execute_and_record(
            self._executor, self._recorder, session_id, call.name, call.arguments
        )
        tools_used.append(call.name)
        self._sessions.record_message(session_id, tool_result_message(call.id, result))
        return result

    def _halt(self, session_id: str, remaining: list[ToolCall], decision: ConfirmationDecision) -> None:
        """Park the gated call and answer every remaining call so history stays well-formed."""
        gated = remaining[0]
        self._gate.set_pending(
            session_id, gated.name, gated.arguments, decision.reason, decision.severity
        )
        self._sessions.record_message(session_id, tool_result_message(gated.id, {
            "success": False,
            "status": "awaiting_confirmation",
            "reason": decision.reason,
        }))
        self._answer_skipped(session_id, remaining[1:], "Turn halted awaiting user confirmation")

    def _answer_skipped(self, session_id: str, calls: list[ToolCall], reason: str) -> None:
        for skipped in calls:
            self._sessions.record_message(session_id, tool_result_message(skipped.id, {
                "success": False,
                "status": "skipped",
                "reason": reason,
            }))
