"""WebSocket hub that pushes executed actions and agent status to dashboards."""

import asyncio
import json
import logging
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks dashboard sockets and fans typed messages out to all of them."""

    def __init__(self):
        self._connections: list[WebSocket] = []
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.append(websocket)
        logger.info(f"Dashboard connected. Total: {len(self._connections)}")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            if websocket in self._connections:
                self._connections.remove(websocket)
        logger.info(f"Dashboard disconnected. Total: {len(self._connections)}")

    @staticmethod
    def _encode(message_type: str, data: Any) -> str:
        return json.dumps({"type": message_type, "data": data}, default=str)

    async def broadcast(self, message_type: str, data: Any) -> None:
        """Send to every dashboard; sockets that fail are dropped."""
        async with self._lock:
            connections = list(self._connections)
        if not connections:
            return

        payload = self._encode(message_type, data)
        results = await asyncio.gather(
            *(ws.send_text(payload) for ws in connections), return_exceptions=True
        )
        dead = [ws for ws, result in zip(connections, results) if isinstance(result, Exception)]
        if dead:
            async with self._lock:
                self._connections = [ws for ws in self._connections if ws not in dead]
            logger.debug(f"Dropped {len(dead)} stale dashboard connection(s)")

    async def send_to(self, websocket: WebSocket, message_type: str, data: Any) -> None:
        try:
            await websocket.send_text(self._encode(message_type, data))
        except Exception:
            await self.disconnect(websocket)

    @property
    def connection_count(self) -> int:
        return len(self._connections)


# Singleton
ws_manager = ConnectionManager()
