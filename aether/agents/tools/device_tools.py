"""LangChain tools for lighting control -- the actions the AI may call."""

import asyncio
import logging
from typing import Any

from langchain_core.tools import BaseTool, tool

from aether.integrations.device_api import DeviceAPIClient

logger = logging.getLogger(__name__)

FULL_CHANNELS = {"1": 255, "2": 255, "3": 255, "4": 255}


def _items(data: Any, key: str) -> list[dict[str, Any]]:
    """Controller list endpoints answer either a bare list or {key: [...]}."""
    if isinstance(data, dict):
        data = data.get(key, [])
    return [item for item in data if isinstance(item, dict)] if isinstance(data, list) else []


def _item_id(item: dict[str, Any], id_field: str) -> str | None:
    value = item.get(id_field) or item.get("id")
    return str(value) if value is not None else None


def find_by_name(items: list[dict[str, Any]], name: str) -> dict[str, Any] | None:
    """Fuzzy name match: either name contains the other, case-insensitive."""
    wanted = name.lower().strip()
    if not wanted:
        return None
    for item in items:
        if str(item.get("name", "")).lower() == wanted:
            return item
    for item in items:
        candidate = str(item.get("name", "")).lower()
        if candidate and (wanted in candidate or candidate in wanted):
            return item
    return None


def build_device_tools(api: DeviceAPIClient) -> list[BaseTool]:
    """Create the tool set bound to one controller client."""

    async def _resolve(kind: str, id_field: str, entity_id: str | None, name: str | None) -> dict[str, Any] | None:
        if entity_id:
            return {id_field: entity_id, "name": name}
        if not name:
            return None
        items = _items(await api.get(f"/api/{kind}"), kind)
        match = find_by_name(items, name)
        if match is None:
            return None
        return {id_field: _item_id(match, id_field), "name": match.get("name")}

    @tool
    async def get_status() -> dict:
        """Get the current playback status: which scene or chase is running, if any."""
        data = await api.get("/api/playback/status")
        return {"success": True, "playing": bool(data), "current": data or None}

    @tool
    async def list_scenes() -> dict:
        """List all saved scenes with their ids and names."""
        scenes = _items(await api.get("/api/scenes"), "scenes")
        return {
            "success": True,
            "count": len(scenes),
            "scenes": [{"scene_id": _item_id(s, "scene_id"), "name": s.get("name")} for s in scenes],
        }

    @tool
    async def list_chases() -> dict:
        """List all saved chases with their ids, names and tempo."""
        chases = _items(await api.get("/api/chases"), "chases")
        return {
            "success": True,
            "count": len(chases),
            "chases": [
                {"chase_id": _item_id(c, "chase_id"), "name": c.get("name"), "bpm": c.get("bpm")}
                for c in chases
            ],
        }

    @tool
    async def list_nodes() -> dict:
        """List DMX output nodes with their universe and online/offline status."""
        nodes = _items(await api.get("/api/nodes"), "nodes")
        online = [n for n in nodes if n.get("status") == "online"]
        return {
            "success": True,
            "count": len(nodes),
            "online": len(online),
            "nodes": [
                {
                    "id": n.get("node_id") or n.get("id"),
                    "name": n.get("name"),
                    "universe": n.get("universe"),
                    "status": n.get("status"),
                }
                for n in nodes
            ],
        }

    @tool
    async def list_fixtures() -> dict:
        """List patched fixtures and the channel ranges they occupy."""
        fixtures = _items(await api.get("/api/fixtures"), "fixtures")
        return {"success": True, "count": len(fixtures), "fixtures": fixtures}

    @tool
    async def set_channels(channels: dict[str, int], universe: int = 1, fade_ms: int = 500) -> dict:
        """Set DMX channel levels directly.

        Args:
            channels: Map of channel number (1-512) to value (0-255), e.g. {"1": 255, "2": 128}
            universe: DMX universe number (1-4)
            fade_ms: Fade time in milliseconds (0-10000)
        """
        clamped = {str(ch): max(0, min(255, int(v))) for ch, v in channels.items()}
        await api.post("/api/dmx/set", {
            "universe": universe,
            "channels": clamped,
            "fade_ms": max(0, min(10000, fade_ms)),
        })
        return {"success": True, "message": f"Set {len(clamped)} channel(s) on universe {universe}"}

    @tool
    async def blackout(universe: int | None = None, fade_ms: int = 500) -> dict:
        """Fade all output to zero.

        Args:
            universe: Only black out this universe; omit for all universes
            fade_ms: Fade time in milliseconds
        """
        body: dict[str, Any] = {"fade_ms": max(0, min(10000, fade_ms))}
        if universe is not None:
            body["universe"] = universe
        await api.post("/api/dmx/blackout", body)
        return {"success": True, "message": "Blackout executed"}

    @tool
    async def stop_playback() -> dict:
        """Stop whatever scene or chase is currently playing."""
        await api.post("/api/playback/stop")
        return {"success": True, "message": "Stopped all playback"}

    @tool
    async def create_scene(name: str, channels: dict[str, int], universe: int = 1, fade_ms: int = 1000) -> dict:
        """Save a new scene (a named snapshot of channel values).

        Args:
            name: Scene name, e.g. 'Warm Wash'
            channels: Map of channel number to value (0-255)
            universe: DMX universe number
            fade_ms: Default fade-in time when the scene is played
        """
        data = await api.post("/api/scenes", {
            "name": name,
            "universe": universe,
            "channels": {str(ch): max(0, min(255, int(v))) for ch, v in channels.items()},
            "fade_ms": fade_ms,
        })
        scene = data.get("scene", data) if isinstance(data, dict) else {}
        return {
            "success": True,
            "scene_id": _item_id(scene, "scene_id"),
            "name": scene.get("name") or name,
            "universe": universe,
            "channel_count": len(channels),
            "fade_ms": fade_ms,
            "message": f"Scene '{name}' created",
        }

    @tool
    async def play_scene(scene_id: str | None = None, scene_name: str | None = None, fade_ms: int = 1000) -> dict:
        """Play a saved scene, by id or by (partial) name.

        Args:
            scene_id: The scene id, if known
            scene_name: The scene name to search for when the id is not known
            fade_ms: Fade-in time in milliseconds
        """
        scene = await _resolve("scenes", "scene_id", scene_id, scene_name)
        if scene is None:
            return {"success": False, "error": f"Scene '{scene_name or scene_id}' not found"}
        await api.post(f"/api/scenes/{scene['scene_id']}/play", {"fade_ms": fade_ms})
        label = scene.get("name") or scene["scene_id"]
        return {
            "success": True,
            "scene_id": scene["scene_id"],
            "name": scene.get("name"),
            "fade_ms": fade_ms,
            "message": f"Playing scene '{label}'",
        }

    @tool
    async def delete_scene(scene_id: str) -> dict:
        """Permanently delete a saved scene.

        Args:
            scene_id: The id of the scene to delete
        """
        await api.delete(f"/api/scenes/{scene_id}")
        return {"success": True, "scene_id": scene_id, "message": f"Scene {scene_id} deleted"}

    @tool
    async def create_chase(
        name: str,
        steps: list[dict[str, Any]],
        bpm: int = 120,
        loop: bool = True,
        fade_ms: int = 0,
    ) -> dict:
        """Save a new chase (an animated sequence of steps).

        Args:
            name: Chase name, e.g. 'Rainbow Sweep'
            steps: Ordered steps, each like {"channels": {"1": 255}, "duration_ms": 500}
            bpm: Tempo in beats per minute; one step per beat unless a step sets duration_ms
            loop: Whether the chase repeats
            fade_ms: Crossfade between steps in milliseconds
        """
        data = await api.post("/api/chases", {
            "name": name,
            "steps": steps,
            "bpm": bpm,
            "loop": loop,
            "fade_ms": fade_ms,
        })
        chase = data.get("chase", data) if isinstance(data, dict) else {}
        return {
            "success": True,
            "chase_id": _item_id(chase, "chase_id"),
            "name": chase.get("name") or name,
            "bpm": bpm,
            "loop": loop,
            "step_count": len(steps),
            "message": f"Chase '{name}' created",
        }

    @tool
    async def play_chase(chase_id: str | None = None, chase_name: str | None = None, bpm: int | None = None) -> dict:
        """Play a saved chase, by id or by (partial) name.

        Args:
            chase_id: The chase id, if known
            chase_name: The chase name to search for when the id is not known
            bpm: Optional tempo override
        """
        chase = await _resolve("chases", "chase_id", chase_id, chase_name)
        if chase is None:
            return {"success": False, "error": f"Chase '{chase_name or chase_id}' not found"}
        body = {"bpm": bpm} if bpm else {}
        await api.post(f"/api/chases/{chase['chase_id']}/play", body)
        label = chase.get("name") or chase["chase_id"]
        result = {
            "success": True,
            "chase_id": chase["chase_id"],
            "name": chase.get("name"),
            "message": f"Playing chase '{label}'",
        }
        if bpm:
            result["bpm"] = bpm
        return result

    @tool
    async def delete_chase(chase_id: str) -> dict:
        """Permanently delete a saved chase.

        Args:
            chase_id: The id of the chase to delete
        """
        await api.delete(f"/api/chases/{chase_id}")
        return {"success": True, "chase_id": chase_id, "message": f"Chase {chase_id} deleted"}

    @tool
    async def rescan_nodes() -> dict:
        """Trigger node discovery to find DMX nodes that dropped off the network."""
        await api.post("/api/nodes/scan")
        return {"success": True, "message": "Node discovery started"}

    @tool
    async def flash(universe: int = 1, duration_ms: int = 150) -> dict:
        """Bump the rig to full for a moment, then black out.

        Args:
            universe: DMX universe number
            duration_ms: How long to hold full before blacking out
        """
        await api.post("/api/dmx/set", {"universe": universe, "channels": FULL_CHANNELS, "fade_ms": 0})
        await asyncio.sleep(max(0, duration_ms) / 1000.0)
        await api.post("/api/dmx/blackout", {"universe": universe, "fade_ms": 100})
        return {"success": True, "message": "Bump!"}

    return [
        get_status,
        list_scenes,
        list_chases,
        list_nodes,
        list_fixtures,
        set_channels,
        blackout,
        stop_playback,
        create_scene,
        play_scene,
        delete_scene,
        create_chase,
        play_chase,
        delete_chase,
        rescan_nodes,
        flash,
    ]
