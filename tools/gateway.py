from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from models.errors import ToolNameCollisionError, ToolNotFoundError
from tools.connections import ToolConnection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolRoute:
    connection_key: str
    tool_name: str


class ToolGateway:
    """Single logical tool catalog over several tool connections.

    ``list_tools`` rebuilds the routing table wholesale and must not run
    concurrently with itself on the same instance.
    """

    def __init__(
        self,
        connections: Sequence[ToolConnection],
        collision_strategy: str = "namespace",
        namespace_separator: str = "::",
        namespace_key: str = "name",
    ) -> None:
        self.connections: Dict[str, ToolConnection] = {conn.key: conn for conn in connections}
        self.collision_strategy = collision_strategy
        self.namespace_separator = namespace_separator
        self.namespace_key = namespace_key
        self._routing: Dict[str, ToolRoute] = {}
        self._initialized = False
        self._initializing: asyncio.Task | None = None

    async def initialize(self) -> None:
        if self._initialized:
            return
        if self._initializing is None:
            self._initializing = asyncio.ensure_future(self._connect_all())
        task = self._initializing
        try:
            await asyncio.shield(task)
        finally:
            if task.done() and self._initializing is task:
                self._initializing = None

    async def _connect_all(self) -> None:
        if not self.connections:
            logger.warning("tool_gateway_no_connections")
        for conn in self.connections.values():
            await conn.connect()
            logger.info("tool_connection_ready", extra={"connection": conn.key, "url": conn.url})
        self._initialized = True

    async def shutdown(self) -> None:
        for conn in self.connections.values():
            await conn.close()
        self._routing.clear()
        self._initialized = False

    async def list_tools(self) -> List[Dict[str, Any]]:
        await self.initialize()
        self._routing.clear()
        tools: List[Dict[str, Any]] = []
        for conn in self.connections.values():
            for tool in await conn.list_tools():
                if not isinstance(tool.get("name"), str):
                    continue
                routed = self._resolve_tool_name(conn, tool["name"])
                if routed is None:
                    continue
                self._routing[routed] = ToolRoute(connection_key=conn.key, tool_name=tool["name"])
                tools.append({**tool, "name": routed})
        return tools

    async def call_tool(self, name: str, args: Dict[str, Any]) -> Dict[str, Any]:
        await self.initialize()
        if not self._routing:
            await self.list_tools()
        route = self._routing.get(name)
        if route is None:
            raise ToolNotFoundError(name)
        conn = self.connections[route.connection_key]
        return await conn.call_tool(route.tool_name, args)

    def has_tool(self, name: str) -> bool:
        return name in self._routing

    async def build_chat_model_tools(self) -> List[Dict[str, Any]]:
        tools = await self.list_tools()
        return [
            {
                "type": "function",
                "name": tool["name"],
                "description": tool.get("description"),
                "parameters": ensure_object_schema(tool.get("inputSchema")),
                "strict": False,
            }
            for tool in tools
        ]

    def _resolve_tool_name(self, conn: ToolConnection, tool_name: str) -> str | None:
        base_name = f"{conn.tool_name_prefix}{tool_name}" if conn.tool_name_prefix else tool_name
        if base_name not in self._routing:
            return base_name
        if self.collision_strategy == "skip":
            logger.warning("tool_name_collision_skipped", extra={"tool": base_name, "connection": conn.key})
            return None
        if self.collision_strategy == "error":
            raise ToolNameCollisionError(base_name)
        namespace = conn.url if self.namespace_key == "url" else conn.key
        namespaced = f"{namespace}{self.namespace_separator}{base_name}"
        if namespaced in self._routing:
            raise ToolNameCollisionError(namespaced)
        return namespaced


def ensure_object_schema(schema: Any) -> Dict[str, Any]:
    if not isinstance(schema, dict) or not schema:
        return {"type": "object", "properties": {}, "additionalProperties": False}
    out = dict(schema)
    if not out.get("type"):
        out["type"] = "object"
    if not out.get("properties"):
        out["properties"] = {}
    if "additionalProperties" not in out:
        out["additionalProperties"] = False
    return out
