"""HTTP client for the AETHER core lighting controller."""

import asyncio
import logging
from datetime import datetime
from typing import Any

import httpx

from config.settings import settings
from aether.models.context import (
    LiveContext,
    NodesContext,
    PlaybackContext,
    SystemContext,
    TimeContext,
)

logger = logging.getLogger(__name__)


class DeviceAPIError(Exception):
    """The lighting controller answered with an error status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def time_of_day(hour: int) -> str:
    if 5 <= hour < 7:
        return "early_morning"
    if 7 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 20:
        return "evening"
    if 20 <= hour < 23:
        return "night"
    return "late_night"


class DeviceAPIClient:
    """Thin async wrapper over the controller's REST API."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = (base_url or settings.aether_core_url).rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout or settings.device_api_timeout_seconds,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self._request("GET", path, params=params)

    async def post(self, path: str, body: dict[str, Any] | None = None) -> Any:
        return await self._request("POST", path, json=body or {})

    async def put(self, path: str, body: dict[str, Any] | None = None) -> Any:
        return await self._request("PUT", path, json=body or {})

    async def delete(self, path: str) -> Any:
        return await self._request("DELETE", path)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = await self._client.request(method, path, **kwargs)
        if resp.status_code >= 400:
            detail = resp.text[:200]
            try:
                body = resp.json()
                if isinstance(body, dict):
                    detail = body.get("error") or body.get("detail") or detail
            except ValueError:
                pass
            raise DeviceAPIError(f"HTTP {resp.status_code}: {detail}", resp.status_code)
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            return {"raw": resp.text}

    # ------------------------------------------------------------------
    # Live context
    # ------------------------------------------------------------------

    async def fetch_live_context(self, ai_mode: str = "offline") -> LiveContext:
        """Snapshot playback, nodes and health. Each failed read falls back to defaults."""
        playback, nodes, health = await asyncio.gather(
            self.get("/api/playback/status"),
            self.get("/api/nodes"),
            self.get("/api/health"),
            return_exceptions=True,
        )

        context = LiveContext(ai_mode=ai_mode)
        now = datetime.now()
        context.time = TimeContext(
            time_of_day=time_of_day(now.hour),
            hour=now.hour,
            day_of_week=now.strftime("%A"),
        )

        if isinstance(playback, dict):
            context.playback = PlaybackContext(
                state="playing" if playback else "idle",
                active=playback,
            )
        else:
            logger.debug(f"Playback status unavailable: {playback}")

        if isinstance(nodes, dict):
            nodes = nodes.get("nodes", [])
        if isinstance(nodes, list):
            paired = [
                n for n in nodes
                if isinstance(n, dict) and (n.get("is_paired") or n.get("is_builtin"))
            ]
            online = [n for n in paired if n.get("status") == "online"]
            offline = [n for n in paired if n.get("status") != "online"]
            context.nodes = NodesContext(
                online=len(online),
                offline=len(offline),
                total=len(paired),
                warnings=[f"{n.get('name') or n.get('node_id')} offline" for n in offline],
            )
        else:
            logger.debug(f"Node list unavailable: {nodes}")

        if isinstance(health, dict):
            context.system = SystemContext(healthy=health.get("status") == "healthy")

        return context

    async def close(self) -> None:
        await self._client.aclose()
