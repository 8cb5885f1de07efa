"""Mode Arbiter -- decides per message whether to try the remote model or go local."""

import asyncio
import logging

from aether.agents.base import BackgroundService
from aether.integrations.openrouter import OpenRouterClient
from aether.models.command import AIMode, ReachabilityState

logger = logging.getLogger(__name__)


class ModeArbiter(BackgroundService):
    """Tracks the configured mode and whether the remote backend is reachable.

    Reachability starts UNKNOWN, which still counts as worth trying. A live
    failure marks it UNREACHABLE until a probe or a later success says otherwise.
    """

    def __init__(
        self,
        backend: OpenRouterClient,
        mode: AIMode | str = AIMode.HYBRID,
        probe_interval: float = 60.0,
        probe_timeout: float = 5.0,
    ):
        super().__init__("mode_arbiter", "Remote Backend Probe", interval=probe_interval)
        self._backend = backend
        self._mode = AIMode(mode)
        self._state = ReachabilityState.UNKNOWN
        self._probe_timeout = probe_timeout

    @property
    def mode(self) -> AIMode:
        return self._mode

    @mode.setter
    def mode(self, value: AIMode | str) -> None:
        new_mode = AIMode(value)
        if new_mode != self._mode:
            logger.info(f"AI mode changed: {self._mode.value} -> {new_mode.value}")
        self._mode = new_mode

    @property
    def state(self) -> ReachabilityState:
        return self._state

    @property
    def is_online(self) -> bool | None:
        if self._state == ReachabilityState.UNKNOWN:
            return None
        return self._state == ReachabilityState.REACHABLE

    def should_attempt_remote(self) -> bool:
        if self._mode == AIMode.OFFLINE:
            return False
        if not self._backend.is_configured:
            return False
        return self._state != ReachabilityState.UNREACHABLE

    def on_remote_failure(self) -> None:
        if self._state != ReachabilityState.UNREACHABLE:
            logger.warning("Remote reasoning backend marked unreachable")
        self._state = ReachabilityState.UNREACHABLE

    def on_remote_success(self) -> None:
        if self._state != ReachabilityState.REACHABLE:
            logger.info("Remote reasoning backend reachable")
        self._state = ReachabilityState.REACHABLE

    async def probe(self) -> ReachabilityState:
        """Test the backend with a minimal request. Never raises."""
        if not self._backend.is_configured:
            self._state = ReachabilityState.UNREACHABLE
            return self._state
        try:
            await asyncio.wait_for(
                self._backend.ping(timeout=self._probe_timeout), self._probe_timeout
            )
        except Exception as e:
            logger.debug(f"Health probe failed: {e}")
            self.on_remote_failure()
        else:
            self.on_remote_success()
        self._record_action(f"probe: {self._state.value}")
        return self._state

    async def tick(self) -> None:
        await self.probe()
