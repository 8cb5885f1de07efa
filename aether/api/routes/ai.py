"""Natural language lighting control API routes."""

import json
import logging
from typing import Any, AsyncIterator

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from aether.agents.orchestrator import orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])

SESSION_ID_PATTERN = r"^[a-zA-Z0-9_-]+$"


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=2000)
    session_id: str | None = Field(default=None, max_length=100, pattern=SESSION_ID_PATTERN)


class SessionRequest(BaseModel):
    session_id: str | None = Field(default=None, max_length=100, pattern=SESSION_ID_PATTERN)


class ToolExecuteRequest(BaseModel):
    action: str = Field(min_length=1, max_length=100)
    params: dict[str, Any] = {}
    confirmed: bool = False
    session_id: str = Field(default="api", max_length=100, pattern=SESSION_ID_PATTERN)


@router.post("/chat")
async def chat(req: ChatRequest) -> dict[str, Any]:
    """Send one message and wait for the complete reply."""
    response = await orchestrator.chat(req.message.strip(), req.session_id)
    return response.to_dict()


@router.post("/chat/stream")
async def chat_stream(req: ChatRequest) -> StreamingResponse:
    """Server-Sent Events: one `data:` frame per chat event, then `data: [DONE]`."""

    async def event_stream() -> AsyncIterator[str]:
        async for event in orchestrator.chat_stream(req.message.strip(), req.session_id):
            yield f"data: {json.dumps(event.to_dict(), default=str)}\n\n"
        yield "data: [DONE]\n\n"

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/session")
async def get_session(
    session_id: str | None = Query(default=None, max_length=100, pattern=SESSION_ID_PATTERN),
) -> dict[str, Any]:
    return orchestrator.get_session(session_id)


@router.post("/session/clear")
async def clear_session(req: SessionRequest) -> dict[str, Any]:
    cleared = orchestrator.clear_session(req.session_id)
    return {"success": True, "cleared": cleared}


@router.get("/context")
async def get_context() -> dict[str, Any]:
    """Live controller snapshot as the AI sees it."""
    return await orchestrator.get_context()


@router.get("/actions")
async def get_actions(limit: int = Query(default=50, ge=1, le=1000)) -> dict[str, Any]:
    """Recent executed actions, newest last."""
    return {"actions": orchestrator.get_audit_log(limit)}


@router.get("/tools")
async def list_tools() -> dict[str, Any]:
    return {"tools": orchestrator.list_actions()}


@router.post("/tools/execute")
async def execute_tool(req: ToolExecuteRequest) -> dict[str, Any]:
    """Run one tool directly. Actions that need confirmation return 409 unless confirmed."""
    result = await orchestrator.execute_tool(
        req.action, req.params, confirmed=req.confirmed, session_id=req.session_id
    )
    if result.get("needs_confirmation"):
        raise HTTPException(status_code=409, detail={
            "reason": result.get("reason"),
            "severity": result.get("severity"),
        })
    return result


@router.get("/config")
async def get_config() -> dict[str, Any]:
    return orchestrator.get_config()


@router.post("/config")
async def set_config(updates: dict[str, Any]) -> dict[str, Any]:
    try:
        return orchestrator.set_config(updates)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/health/check")
async def check_health() -> dict[str, Any]:
    """Probe the remote model now instead of waiting for the next interval."""
    return await orchestrator.check_health()
