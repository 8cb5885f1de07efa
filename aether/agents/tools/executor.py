"""Tool Executor -- routes a named action to its lighting tool and normalizes the result."""

import logging
from typing import Any

import httpx
from langchain_core.tools import BaseTool
from langchain_core.utils.function_calling import convert_to_openai_tool
from pydantic import ValidationError

from aether.agents.tools.device_tools import build_device_tools
from aether.integrations.device_api import DeviceAPIClient, DeviceAPIError

logger = logging.getLogger(__name__)


class ToolExecutor:
    """Maps action name + params to a controller call.

    Controller and validation errors come back as {"success": False, "error": ...};
    anything else propagates to the caller.
    """

    def __init__(self, api: DeviceAPIClient | None = None, tools: list[BaseTool] | None = None):
        if tools is None:
            tools = build_device_tools(api or DeviceAPIClient())
        self._tools: dict[str, BaseTool] = {t.name: t for t in tools}

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def tool_definitions(self) -> list[dict[str, Any]]:
        """Tool schemas in OpenAI function-calling format."""
        return [convert_to_openai_tool(t) for t in self._tools.values()]

    def list_actions(self) -> list[dict[str, Any]]:
        actions = []
        for definition in self.tool_definitions():
            fn = definition["function"]
            actions.append({
                "name": fn["name"],
                "description": fn.get("description", ""),
                "param_schema": fn.get("parameters", {}),
            })
        return actions

    async def execute(self, name: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        tool = self._tools.get(name)
        if tool is None:
            return {"success": False, "error": f"Unknown action: {name}"}

        try:
            result = await tool.ainvoke(params or {})
        except ValidationError as e:
            fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
            return {"success": False, "error": f"Invalid parameters for {name}: {fields or e}"}
        except DeviceAPIError as e:
            return {"success": False, "error": str(e)}
        except httpx.HTTPError as e:
            return {"success": False, "error": f"Lighting controller unreachable: {e}"}

        if not isinstance(result, dict):
            return {"success": True, "message": str(result)}
        result.setdefault("success", True)
        return result
