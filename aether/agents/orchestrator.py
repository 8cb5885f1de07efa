"""Orchestrator -- the single entry point for natural-language lighting control.

A turn goes: pending-confirmation check, live context snapshot, then either
the remote tool loop or the local intent matcher. Turns for the same session
are serialized; different sessions run concurrently.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from config.settings import settings
from aether.agents.base import BackgroundService, ServiceStatus
from aether.agents.confirmation import ConfirmationGate, confirmation_prompt
from aether.agents.local_intent import LocalIntentMatcher
from aether.agents.mode_arbiter import ModeArbiter
from aether.agents.prompts import build_system_prompt, load_system_prompt
from aether.agents.recorder import ActionRecorder, Broadcast
from aether.agents.stream import EventChannel
from aether.agents.tool_loop import Emit, ToolExecutionLoop, execute_and_record
from aether.agents.tools.executor import ToolExecutor
from aether.api.websocket import ws_manager
from aether.integrations.device_api import DeviceAPIClient
from aether.integrations.openrouter import OpenRouterClient
from aether.models.command import AIConfigUpdate, ChatMode, ChatResponse
from aether.models.confirmation import ConfirmationTier, PendingConfirmation, RiskPolicy
from aether.models.context import LiveContext
from aether.models.events import ChatEvent, ChatEventType
from aether.storage.audit_log import AuditLog
from aether.storage.event_store import EventStore
from aether.storage.memory_tracker import MemoryTracker
from aether.storage.session_store import DEFAULT_SESSION_ID, SessionStore

logger = logging.getLogger(__name__)

LOCAL_WORD_DELAY = 0.03
FAILURE_MESSAGE = "Sorry, I couldn't process that right now. Please try again."


class Orchestrator(BackgroundService):
    """Routes each message to the remote tool loop or the local fallback."""

    def __init__(
        self,
        backend: OpenRouterClient | None = None,
        device_api: DeviceAPIClient | None = None,
        executor: ToolExecutor | None = None,
        gate: ConfirmationGate | None = None,
        sessions: SessionStore | None = None,
        audit: AuditLog | None = None,
        event_store: EventStore | None = None,
        broadcast: Broadcast | None = None,
        mode: str | None = None,
        system_prompt: str | None = None,
        max_tool_depth: int | None = None,
        word_delay: float = LOCAL_WORD_DELAY,
    ):
        super().__init__(
            "orchestrator", "AETHER AI Orchestrator",
            interval=settings.session_sweep_interval_seconds,
        )
        self._device_api = device_api or DeviceAPIClient()
        self._backend = backend or OpenRouterClient()
        self._executor = executor or ToolExecutor(self._device_api)
        self._gate = gate or ConfirmationGate(
            RiskPolicy.from_yaml(settings.risk_policy_path),
            expiry_seconds=settings.confirmation_expiry_seconds,
        )
        self._sessions = sessions or SessionStore(settings.session_ttl_seconds)
        self._memory = MemoryTracker(self._sessions)
        self._audit = audit or AuditLog(settings.audit_log_capacity)
        if event_store is None and settings.audit_db_path:
            event_store = EventStore(settings.audit_db_path)
        self._event_store = event_store
        self._recorder = ActionRecorder(
            self._audit, self._memory, self._event_store,
            broadcast if broadcast is not None else ws_manager.broadcast,
        )
        self._local = LocalIntentMatcher(self._executor, self._gate)
        self._arbiter = ModeArbiter(
            self._backend,
            mode or settings.ai_mode,
            probe_interval=settings.health_probe_interval_seconds,
            probe_timeout=settings.health_probe_timeout_seconds,
        )
        self._loop = ToolExecutionLoop(
            self._backend, self._executor, self._gate, self._sessions, self._recorder,
            max_depth=max_tool_depth or settings.max_tool_depth,
        )
        self._system_prompt = system_prompt or load_system_prompt(settings.system_prompt_path)
        self._word_delay = word_delay
        self._session_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._detached_turns: set[asyncio.Task] = set()

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    @property
    def gate(self) -> ConfirmationGate:
        return self._gate

    @property
    def arbiter(self) -> ModeArbiter:
        return self._arbiter

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._event_store is not None:
            try:
                await self._event_store.initialize()
            except Exception as e:
                logger.warning(f"Audit database unavailable, continuing in-memory only: {e}")
                self._event_store = None
                self._recorder.detach_event_store()
        await self._arbiter.start()
        await super().start()
        logger.info(f"Orchestrator started in {self._arbiter.mode.value} mode")

    async def stop(self) -> None:
        await self._arbiter.stop()
        await super().stop()
        if self._detached_turns:
            logger.info(f"Waiting for {len(self._detached_turns)} streaming turn(s) to finish")
            await asyncio.gather(*self._detached_turns, return_exceptions=True)
        self._gate.clear_all()
        await self._backend.close()
        await self._device_api.close()
        if self._event_store is not None:
            await self._event_store.close()

    async def tick(self) -> None:
        """Drop sessions idle for longer than the TTL."""
        removed = self._sessions.sweep_expired()
        if removed:
            self._record_action(f"swept {removed} session(s)")

    @asynccontextmanager
    async def _session_turn(self, session_id: str):
        """Serialize turns per session.

        A lock lives exactly as long as some turn holds or waits for it, so two
        turns for one session can never end up on different locks.
        """
        lock = self._session_locks.get(session_id)
        if lock is None:
            lock = self._session_locks[session_id] = asyncio.Lock()
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if not self._lock_users[session_id]:
                del self._lock_users[session_id]
                del self._session_locks[session_id]

    # ------------------------------------------------------------------
    # Chat entry points
    # ------------------------------------------------------------------

    async def chat(self, text: str, session_id: str | None = None) -> ChatResponse:
        """Buffered turn: one complete reply."""
        session_id = session_id or DEFAULT_SESSION_ID
        async with self._session_turn(session_id):
            return await self._handle_turn(text, session_id)

    async def chat_stream(self, text: str, session_id: str | None = None) -> AsyncIterator[ChatEvent]:
        """Streaming turn: typed events as they happen, ending when the turn completes.

        If the caller stops iterating early the turn still runs to completion
        in the background, so executed actions are always audited and the
        session history stays well-formed.
        """
        session_id = session_id or DEFAULT_SESSION_ID
        channel = EventChannel()

        async def _produce() -> None:
            try:
                async with self._session_turn(session_id):
                    await self._handle_turn(text, session_id, emit=channel.put)
            finally:
                channel.close()

        task = asyncio.create_task(_produce())
        finished = False
        try:
            async for event in channel:
                yield event
            finished = True
        finally:
            if finished:
                await task
            elif not task.done():
                logger.info(f"Stream consumer for session {session_id} left; finishing the turn in the background")
                self._detached_turns.add(task)
                task.add_done_callback(self._detached_turns.discard)

    async def _handle_turn(self, text: str, session_id: str, emit: Emit | None = None) -> ChatResponse:
        self._status = ServiceStatus.RUNNING
        try:
            self._sessions.get_or_create(session_id)

            pending = self._gate.take_pending(session_id)
            if pending is not None:
                reply = self._gate.classify_reply(text)
                if reply == "confirm":
                    return await self._execute_confirmed(pending, text, session_id, emit)
                if reply == "deny":
                    return await self._cancel_pending(pending, text, session_id, emit)
                logger.info(
                    f"Reply is not yes/no; dropping pending {pending.action} "
                    f"and handling as a new request (session {session_id})"
                )

            live_context = await self._live_context()
            self._sessions.record_message(session_id, {"role": "user", "content": text})

            if self._arbiter.should_attempt_remote():
                try:
                    response = await self._chat_remote(session_id, live_context, emit)
                except Exception as e:
                    logger.warning(f"Remote reasoning failed, falling back to local: {e}")
                    self._arbiter.on_remote_failure()
                else:
                    self._arbiter.on_remote_success()
                    return response

            return await self._chat_local(text, session_id, live_context, emit)

        except Exception as e:
            logger.error(f"Orchestrator error: {e}", exc_info=True)
            self._status = ServiceStatus.ERROR
            self._error = str(e)
            if emit is not None:
                await emit(ChatEvent(type=ChatEventType.TEXT, content=FAILURE_MESSAGE))
            return ChatResponse(
                message=FAILURE_MESSAGE, mode=ChatMode.OFFLINE, session_id=session_id, error=str(e)
            )
        finally:
            if self._status == ServiceStatus.RUNNING:
                self._status = ServiceStatus.IDLE

    # ------------------------------------------------------------------
    # Remote path
    # ------------------------------------------------------------------

    async def _chat_remote(
        self, session_id: str, live_context: LiveContext, emit: Emit | None
    ) -> ChatResponse:
        system_prompt = build_system_prompt(
            self._system_prompt, live_context, self._memory.summarize(session_id)
        )
        outcome = await self._loop.run(session_id, system_prompt, live_context, emit)

        if outcome.needs_confirmation:
            self._sessions.record_message(session_id, {"role": "assistant", "content": outcome.text})
            pending = self._gate.peek_pending(session_id)
            return ChatResponse(
                message=outcome.text,
                mode=ChatMode.ONLINE,
                session_id=session_id,
                needs_confirmation=True,
                action=pending.action if pending else None,
                tools_used=outcome.tools_used or None,
            )

        message = outcome.text
        if not message:
            message = "Done." if outcome.tools_used else "I don't have anything to add."
            if emit is not None:
                await emit(ChatEvent(type=ChatEventType.TEXT, content=message))
        if outcome.depth_exhausted:
            logger.info(f"Turn for session {session_id} stopped at the tool depth limit")

        self._record_action(f"chat online, tools={outcome.tools_used}")
        return ChatResponse(
            message=message,
            mode=ChatMode.ONLINE,
            session_id=session_id,
            tools_used=outcome.tools_used or None,
        )

    # ------------------------------------------------------------------
    # Local path
    # ------------------------------------------------------------------

    async def _chat_local(
        self, text: str, session_id: str, live_context: LiveContext, emit: Emit | None
    ) -> ChatResponse:
        result = await self._local.process(text, live_context)
        message = result.get("message") or ""
        needs_confirmation = bool(result.get("needs_confirmation"))

        if needs_confirmation:
            tool = result.get("tool") or result.get("action")
            self._gate.set_pending(
                session_id,
                tool,
                result.get("params") or {},
                message,
                ConfirmationTier(result.get("severity", ConfirmationTier.HIGH.value)),
            )
            message = confirmation_prompt(message)
            if emit is not None:
                await emit(ChatEvent(
                    type=ChatEventType.CONFIRMATION_REQUIRED,
                    tool=tool,
                    content=message,
                    reason=result.get("message"),
                    severity=result.get("severity"),
                ))
        elif result.get("executed"):
            await self._recorder.record(
                session_id,
                result.get("tool") or result.get("action"),
                result.get("params") or {},
                result.get("result") or {"success": True, "message": message},
            )

        self._sessions.record_message(session_id, {"role": "assistant", "content": message})
        if emit is not None and not needs_confirmation:
            await self._stream_words(message, emit)

        self._record_action(f"chat offline, intent={result.get('action')}")
        return ChatResponse(
            message=message,
            mode=ChatMode.OFFLINE,
            session_id=session_id,
            needs_confirmation=True if needs_confirmation else None,
            action=result.get("action"),
        )

    async def _stream_words(self, message: str, emit: Emit) -> None:
        """Emit a locally produced reply word by word so clients render it like a stream."""
        for index, word in enumerate(message.split(" ")):
            await emit(ChatEvent(type=ChatEventType.TEXT, content=word if index == 0 else f" {word}"))
            if self._word_delay:
                await asyncio.sleep(self._word_delay)

    # ------------------------------------------------------------------
    # Confirmation replies
    # ------------------------------------------------------------------

    async def _execute_confirmed(
        self, pending: PendingConfirmation, text: str, session_id: str, emit: Emit | None
    ) -> ChatResponse:
        self._sessions.record_message(session_id, {"role": "user", "content": text})
        logger.info(f"User confirmed {pending.action} (session {session_id})")

        if emit is not None:
            await emit(ChatEvent(type=ChatEventType.TOOL_STATUS, tool=pending.action, status="executing"))
        result = await asyncio.shield(execute_and_record(
            self._executor, self._recorder, session_id, pending.action, pending.params
        ))

        if result.get("success"):
            detail = result.get("message")
            message = f"Done. {detail}" if detail else "Done."
        else:
            message = f"Failed: {result.get('error') or 'unknown error'}"

        if emit is not None:
            if result.get("success"):
                await emit(ChatEvent(
                    type=ChatEventType.TOOL_STATUS, tool=pending.action, status="complete", result=result
                ))
            else:
                await emit(ChatEvent(
                    type=ChatEventType.TOOL_STATUS, tool=pending.action, status="error",
                    error=str(result.get("error") or "unknown error"),
                ))
            await emit(ChatEvent(type=ChatEventType.TEXT, content=message))

        self._sessions.record_message(session_id, {"role": "assistant", "content": message})
        self._record_action(f"{pending.action} confirmed by user")
        return ChatResponse(
            message=message, mode=ChatMode.CONFIRMED, session_id=session_id, action=pending.action
        )

    async def _cancel_pending(
        self, pending: PendingConfirmation, text: str, session_id: str, emit: Emit | None
    ) -> ChatResponse:
        logger.info(f"User cancelled {pending.action} (session {session_id})")
        message = "Cancelled."
        self._sessions.record_message(session_id, {"role": "user", "content": text})
        self._sessions.record_message(session_id, {"role": "assistant", "content": message})
        if emit is not None:
            await emit(ChatEvent(type=ChatEventType.TEXT, content=message))
        return ChatResponse(
            message=message, mode=ChatMode.CANCELLED, session_id=session_id, action=pending.action
        )

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    async def _live_context(self) -> LiveContext:
        ai_mode = "online" if self._arbiter.is_online else "offline"
        try:
            return await self._device_api.fetch_live_context(ai_mode)
        except Exception as e:
            logger.warning(f"Live context unavailable: {e}")
            return LiveContext(ai_mode=ai_mode)

    async def get_context(self) -> dict[str, Any]:
        context = await self._live_context()
        return context.model_dump()

    # ------------------------------------------------------------------
    # Sessions, audit, direct execution
    # ------------------------------------------------------------------

    def clear_session(self, session_id: str | None = None) -> bool:
        session_id = session_id or DEFAULT_SESSION_ID
        self._gate.discard(session_id)
        cleared = self._sessions.clear(session_id)
        if cleared:
            logger.info(f"Cleared session {session_id}")
        return cleared

    def get_session(self, session_id: str | None = None) -> dict[str, Any]:
        session_id = session_id or DEFAULT_SESSION_ID
        session = self._sessions.get(session_id)
        pending = self._gate.peek_pending(session_id)
        return {
            "session_id": session_id,
            "exists": session is not None,
            "message_count": len(session.messages) if session else 0,
            "memory": session.memory.model_dump(mode="json") if session else None,
            "memory_summary": self._memory.summarize(session_id),
            "pending_confirmation": pending.to_dict() if pending else None,
        }

    def get_audit_log(self, limit: int = 50) -> list[dict[str, Any]]:
        return self._audit.to_dicts(limit)

    def list_actions(self) -> list[dict[str, Any]]:
        actions = self._executor.list_actions()
        for action in actions:
            action["tier"] = self._gate.tier_of(action["name"]).value
        return actions

    async def execute_tool(
        self,
        action: str,
        params: dict[str, Any] | None = None,
        confirmed: bool = False,
        session_id: str = "api",
    ) -> dict[str, Any]:
        """Direct execution for the HTTP surface. Gated actions need confirmed=True."""
        params = params or {}
        decision = self._gate.evaluate(action, params, await self._live_context())
        if decision.required and not confirmed:
            return {
                "success": False,
                "needs_confirmation": True,
                "reason": decision.reason,
                "severity": decision.severity.value,
            }
        result = await self._executor.execute(action, params)
        await self._recorder.record(session_id, action, params, result)
        return result

    # ------------------------------------------------------------------
    # Runtime configuration
    # ------------------------------------------------------------------

    def get_config(self) -> dict[str, Any]:
        return {
            "mode": self._arbiter.mode.value,
            "reachability": self._arbiter.state.value,
            "is_online": self._arbiter.is_online,
            "remote_configured": self._backend.is_configured,
            "model": self._backend.model,
            "fallback_models": list(self._backend.fallback_models),
            "max_tool_depth": self._loop.max_depth,
            "confirmation_expiry_seconds": settings.confirmation_expiry_seconds,
        }

    def set_config(self, updates: dict[str, Any]) -> dict[str, Any]:
        """Apply a partial config change. Raises ValueError (pydantic) on bad input."""
        update = AIConfigUpdate.model_validate(updates)
        if update.mode is not None:
            self._arbiter.mode = update.mode
        if update.model:
            self._backend.model = update.model
        if update.fallback_models is not None:
            self._backend.fallback_models = list(update.fallback_models)
        return self.get_config()

    async def check_health(self) -> dict[str, Any]:
        state = await self._arbiter.probe()
        return {"reachability": state.value, "is_online": self._arbiter.is_online}


# Singleton
orchestrator = Orchestrator()
