"""Local Intent Matcher -- keyword/regex command handling when the LLM is unavailable.

Covers the common console phrases (blackout, stop, play a scene, colours,
levels, status). Every action still goes through the Confirmation Gate, so a
risky command asked offline waits for a yes just like it would online.
"""

import logging
import re
from typing import Any, Awaitable, Callable

from aether.agents.confirmation import ConfirmationGate
from aether.agents.tools.device_tools import find_by_name
from aether.agents.tools.executor import ToolExecutor
from aether.models.context import LiveContext

logger = logging.getLogger(__name__)

LIGHT_CHANNELS = ("1", "2", "3", "4")

COLORS: dict[str, dict[str, int]] = {
    "red": {"1": 255, "2": 0, "3": 0},
    "green": {"1": 0, "2": 255, "3": 0},
    "blue": {"1": 0, "2": 0, "3": 255},
    "white": {"1": 255, "2": 255, "3": 255, "4": 255},
    "warm": {"1": 255, "2": 180, "3": 100, "4": 200},
    "cool": {"1": 200, "2": 220, "3": 255, "4": 255},
    "purple": {"1": 128, "2": 0, "3": 255},
    "pink": {"1": 255, "2": 100, "3": 180},
    "orange": {"1": 255, "2": 128, "3": 0},
    "amber": {"1": 255, "2": 160, "3": 0},
    "yellow": {"1": 255, "2": 255, "3": 0},
    "cyan": {"1": 0, "2": 255, "3": 255},
    "magenta": {"1": 255, "2": 0, "3": 255},
    "lime": {"1": 128, "2": 255, "3": 0},
}

BLACKOUT_WORDS = (
    "blackout", "black out", "lights off", "kill it", "kill", "all off",
    "turn off", "off", "darkness", "dark",
)
STOP_WORDS = ("stop all", "stop", "halt", "pause", "freeze", "hold")
NAMED_LEVELS: tuple[tuple[int, tuple[str, ...]], ...] = (
    (100, ("full on", "full", "maximum", "max", "all on", "brightest", "bright")),
    (25, ("dim", "low", "subtle", "soft")),
    (50, ("half", "medium", "mid")),
)

HELP_TEXT = (
    "Offline commands I understand:\n"
    "- \"blackout\" / \"lights off\"\n"
    "- \"stop\"\n"
    "- \"play <scene>\" or \"play chase <chase>\"\n"
    "- \"red\", \"warm\", \"cool\"... (colours)\n"
    "- \"50%\", \"full\", \"dim\" (levels)\n"
    "- \"status\", \"nodes\"\n"
    "- \"bump\" / \"flash\""
)

_PLAY_CHASE = re.compile(r"^(?:play|run|start)\s+(?:the\s+)?chase\s+(.+)$")
_PLAY_SCENE = re.compile(r"^(?:play|run|start|go to|load)\s+(?:the\s+)?(?:scene\s+)?(.+)$")
_CREATE = re.compile(r"\b(?:create|make|build|save)\b")
_PERCENT = re.compile(r"(\d+)\s*%|\b(?:dim|set|level)\s*(?:to\s*)?(\d+)\b")
_BUMP = re.compile(r"^(?:bump|flash|strobe)\b")
_STATUS = re.compile(r"\b(?:status|what'?s playing|what is playing|now playing)\b")
_NODES = re.compile(r"\b(?:nodes?|universes?)\b")
_HELP = re.compile(r"^(?:help|\?|commands|what can you do)\b")


def _has_word(text: str, phrases: tuple[str, ...]) -> bool:
    return any(re.search(rf"(?<![\w-]){re.escape(p)}(?![\w-])", text) for p in phrases)


def _level_channels(percent: int) -> dict[str, int]:
    dmx = round(max(0, min(100, percent)) / 100 * 255)
    return {ch: dmx for ch in LIGHT_CHANNELS}


class LocalIntentMatcher:
    """Deterministic fallback that maps short commands to tool calls."""

    def __init__(self, executor: ToolExecutor, gate: ConfirmationGate):
        self._executor = executor
        self._gate = gate
        self._parsers: list[Callable[[str, LiveContext], Awaitable[dict[str, Any] | None]]] = [
            self._parse_help,
            self._parse_stop,
            self._parse_play_chase,
            self._parse_play_scene,
            self._parse_create,
            self._parse_bump,
            self._parse_blackout,
            self._parse_color,
            self._parse_level,
            self._parse_status,
            self._parse_nodes,
        ]

    async def process(self, text: str, live_context: LiveContext | None = None) -> dict[str, Any]:
        """Match one message. Always returns a result dict with at least "message"."""
        normalized = re.sub(r"\s+", " ", (text or "").lower().strip())
        normalized = normalized.rstrip(".!")
        live_context = live_context or LiveContext()

        for parser in self._parsers:
            result = await parser(normalized, live_context)
            if result is not None:
                logger.debug(f"Local intent {result.get('action')} matched: {normalized!r}")
                return result

        return {
            "message": (
                "I'm in offline mode and didn't catch that. "
                "Try \"help\" for the commands I can handle without the AI."
            ),
            "action": None,
            "executed": False,
        }

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _run(
        self,
        intent: str,
        tool: str,
        params: dict[str, Any],
        live_context: LiveContext,
        success_message: str,
    ) -> dict[str, Any]:
        decision = self._gate.evaluate(tool, params, live_context)
        if decision.required:
            return {
                "message": decision.reason,
                "action": intent,
                "tool": tool,
                "params": params,
                "executed": False,
                "needs_confirmation": True,
                "severity": decision.severity.value,
            }

        result = await self._executor.execute(tool, params)
        if result.get("success"):
            message = success_message
        else:
            message = f"Failed: {result.get('error') or 'unknown error'}"
        return {
            "message": message,
            "action": intent,
            "tool": tool,
            "params": params,
            "executed": True,
            "result": result,
        }

    async def _lookup(self, tool: str, key: str) -> list[dict[str, Any]]:
        result = await self._executor.execute(tool, {})
        if not result.get("success"):
            return []
        return result.get(key) or []

    # ------------------------------------------------------------------
    # Parsers
    # ------------------------------------------------------------------

    async def _parse_help(self, text: str, ctx: LiveContext) -> dict[str, Any] | None:
        if _HELP.search(text):
            return {"message": HELP_TEXT, "action": "help", "executed": False}
        return None

    async def _parse_stop(self, text: str, ctx: LiveContext) -> dict[str, Any] | None:
        if text in STOP_WORDS or (text.startswith("stop ") and "chase" not in text):
            return await self._run("stop", "stop_playback", {}, ctx, "Stopped all playback.")
        return None

    async def _parse_play_chase(self, text: str, ctx: LiveContext) -> dict[str, Any] | None:
        match = _PLAY_CHASE.match(text)
        if not match:
            return None
        query = match.group(1).strip()
        chase = find_by_name(await self._lookup("list_chases", "chases"), query)
        if chase is None:
            return {"message": f"No chase matching \"{query}\".", "action": "play_chase", "executed": False}
        return await self._run(
            "play_chase", "play_chase",
            {"chase_id": chase["chase_id"], "chase_name": chase.get("name")},
            ctx, f"Playing chase \"{chase.get('name')}\".",
        )

    async def _parse_play_scene(self, text: str, ctx: LiveContext) -> dict[str, Any] | None:
        match = _PLAY_SCENE.match(text)
        if not match:
            return None
        query = match.group(1).strip()
        scenes = await self._lookup("list_scenes", "scenes")
        scene = find_by_name(scenes, query)
        if scene is None and query in COLORS:
            return None
        if scene is None:
            names = ", ".join(str(s.get("name")) for s in scenes[:5])
            suffix = f" Available: {names}" if names else ""
            return {"message": f"No scene matching \"{query}\".{suffix}", "action": "play_scene", "executed": False}
        return await self._run(
            "play_scene", "play_scene",
            {"scene_id": scene["scene_id"], "scene_name": scene.get("name"), "fade_ms": 1000},
            ctx, f"Playing \"{scene.get('name')}\".",
        )

    async def _parse_create(self, text: str, ctx: LiveContext) -> dict[str, Any] | None:
        if _CREATE.search(text) and ("scene" in text or "chase" in text):
            return {
                "message": (
                    "Creating scenes and chases needs the AI, which is offline right now. "
                    "You can still play saved looks, set colours and levels, or black out."
                ),
                "action": "create",
                "executed": False,
            }
        return None

    async def _parse_bump(self, text: str, ctx: LiveContext) -> dict[str, Any] | None:
        if _BUMP.match(text):
            return await self._run("bump", "flash", {"duration_ms": 150}, ctx, "Bump!")
        return None

    async def _parse_blackout(self, text: str, ctx: LiveContext) -> dict[str, Any] | None:
        if _has_word(text, BLACKOUT_WORDS):
            return await self._run("blackout", "blackout", {"fade_ms": 500}, ctx, "Blackout.")
        return None

    async def _parse_color(self, text: str, ctx: LiveContext) -> dict[str, Any] | None:
        for color, channels in COLORS.items():
            if _has_word(text, (color,)):
                return await self._run(
                    "set_color", "set_channels",
                    {"channels": dict(channels), "universe": 1, "fade_ms": 500},
                    ctx, f"Set to {color}.",
                )
        return None

    async def _parse_level(self, text: str, ctx: LiveContext) -> dict[str, Any] | None:
        match = _PERCENT.search(text)
        percent: int | None = None
        if match:
            percent = int(match.group(1) or match.group(2))
        else:
            for level, words in NAMED_LEVELS:
                if _has_word(text, words):
                    percent = level
                    break
        if percent is None:
            return None
        percent = max(0, min(100, percent))
        return await self._run(
            "set_level", "set_channels",
            {"channels": _level_channels(percent), "universe": 1, "fade_ms": 500},
            ctx, f"Level set to {percent}%.",
        )

    async def _parse_status(self, text: str, ctx: LiveContext) -> dict[str, Any] | None:
        if not _STATUS.search(text):
            return None
        result = await self._executor.execute("get_status", {})
        if not result.get("success"):
            return {"message": f"Couldn't read status: {result.get('error')}", "action": "status", "executed": False}
        current = result.get("current") or {}
        if current:
            name = current.get("name") or current.get("id") or "something"
            kind = current.get("type", "")
            message = f"Now playing: {name}" + (f" ({kind})" if kind else "")
        else:
            message = "Nothing is playing."
        if ctx.nodes.total:
            message += f"\nNodes: {ctx.nodes.online}/{ctx.nodes.total} online"
        return {"message": message, "action": "status", "executed": False}

    async def _parse_nodes(self, text: str, ctx: LiveContext) -> dict[str, Any] | None:
        if not _NODES.search(text):
            return None
        result = await self._executor.execute("list_nodes", {})
        if not result.get("success"):
            return {"message": f"Couldn't list nodes: {result.get('error')}", "action": "nodes", "executed": False}
        nodes = result.get("nodes") or []
        if not nodes:
            return {"message": "No nodes found.", "action": "nodes", "executed": False}
        lines = [
            f"{'[online]' if n.get('status') == 'online' else '[offline]'} "
            f"{n.get('name') or n.get('id')} (universe {n.get('universe') or '?'})"
            for n in nodes
        ]
        return {"message": "Nodes:\n" + "\n".join(lines), "action": "nodes", "executed": False}
