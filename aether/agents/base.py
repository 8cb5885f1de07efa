"""Background service lifecycle shared by the orchestrator and the backend probe."""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any

from aether.api.websocket import ws_manager

logger = logging.getLogger(__name__)


class ServiceStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"
    STOPPED = "stopped"


class BackgroundService(ABC):
    """A component with one periodic background tick and a status for dashboards.

    The tick runs once on start and then every `interval` seconds. A failing
    tick is logged and recorded as the service error; the loop keeps going.
    """

    def __init__(self, service_id: str, display_name: str, interval: float):
        self.service_id = service_id
        self.display_name = display_name
        self._interval = interval
        self._status = ServiceStatus.STOPPED
        self._last_action: str = ""
        self._last_run: datetime | None = None
        self._task: asyncio.Task | None = None
        self._error: str | None = None

    @property
    def status(self) -> ServiceStatus:
        return self._status

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def info(self) -> dict[str, Any]:
        return {
            "service_id": self.service_id,
            "display_name": self.display_name,
            "status": self._status.value,
            "last_action": self._last_action,
            "last_run": self._last_run.isoformat() if self._last_run else None,
            "error": self._error,
        }

    async def start(self) -> None:
        if self.running:
            return
        self._status = ServiceStatus.IDLE
        self._error = None
        self._task = asyncio.create_task(self._tick_loop(), name=f"{self.service_id}-tick")
        await self._publish_status()
        logger.info(f"Service {self.service_id} started (tick every {self._interval:g}s)")

    async def stop(self) -> None:
        if self.running:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._status = ServiceStatus.STOPPED
        await self._publish_status()
        logger.info(f"Service {self.service_id} stopped")

    @abstractmethod
    async def tick(self) -> None:
        """One round of periodic background work."""

    async def _tick_loop(self) -> None:
        try:
            while True:
                try:
                    await self.tick()
                except Exception as e:
                    logger.error(f"{self.service_id} tick failed: {e}", exc_info=True)
                    self._error = str(e)
                await asyncio.sleep(self._interval)
        except asyncio.CancelledError:
            pass

    def _record_action(self, action: str) -> None:
        self._last_action = action
        self._last_run = datetime.now()

    async def _publish_status(self) -> None:
        """Push service status to connected dashboards."""
        try:
            await ws_manager.broadcast("service_status", self.info)
        except Exception as e:
            logger.debug(f"Status broadcast failed: {e}")
