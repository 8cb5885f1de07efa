"""System prompt assembly for the remote reasoning backend."""

import logging
from pathlib import Path

from aether.models.context import LiveContext

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = """You are AETHER AI, the assistant built into a DMX lighting controller.
You help lighting operators run scenes, chases and direct channel levels using the tools provided.
Keep replies short and practical, like a lighting tech on headset.
Always check what exists (list_scenes, list_chases) before acting on something by name.
Never invent scene or chase ids."""


def load_system_prompt(path: str | Path | None) -> str:
    """Read the operator-editable prompt file, falling back to the built-in prompt."""
    if path:
        try:
            text = Path(path).read_text(encoding="utf-8").strip()
        except OSError as e:
            logger.warning(f"Could not read system prompt {path}: {e}; using built-in prompt")
        else:
            if text:
                return text
    return DEFAULT_SYSTEM_PROMPT


def build_context_prompt(context: LiveContext) -> str:
    lines = ["CURRENT SYSTEM STATE:"]

    if context.is_playing:
        lines.append(f"- Now playing: {context.playback.description}")
    elif context.playback.state == "idle":
        lines.append("- Now playing: nothing")
    else:
        lines.append("- Now playing: unknown (status unavailable)")

    if context.nodes.total:
        lines.append(f"- Nodes: {context.nodes.online}/{context.nodes.total} online")
    if context.nodes.warnings:
        lines.append(f"- Warnings: {'; '.join(context.nodes.warnings)}")

    if context.time.day_of_week:
        lines.append(
            f"- Time: {context.time.time_of_day.replace('_', ' ')} "
            f"({context.time.day_of_week}, {context.time.hour:02d}:00)"
        )
    lines.append(f"- Controller health: {'healthy' if context.system.healthy else 'degraded or unknown'}")
    return "\n".join(lines)


def build_system_prompt(base: str, context: LiveContext, memory_summary: str = "") -> str:
    parts = [base, build_context_prompt(context)]
    if memory_summary:
        parts.append(f"SESSION MEMORY:\n{memory_summary}")
    return "\n\n".join(parts)
