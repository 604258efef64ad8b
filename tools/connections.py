from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List

from mcp import ClientSession, types
from mcp.client.streamable_http import streamablehttp_client
from mcp.shared.exceptions import McpError

from models.errors import ToolInvocationError, ToolNotFoundError

logger = logging.getLogger(__name__)


class ToolConnection(ABC):
    """One backend exposing a set of named tools."""

    def __init__(self, name: str, url: str = "", tool_name_prefix: str | None = None) -> None:
        self.name = name
        self.url = url
        self.tool_name_prefix = tool_name_prefix

    @property
    def key(self) -> str:
        return self.name or self.url

    @abstractmethod
    async def connect(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list_tools(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    async def call_tool(self, name: str, args: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class McpHttpConnection(ToolConnection):
    """MCP streamable-HTTP server reached through the ``mcp`` client SDK.

    The SDK's transport and ``ClientSession`` are entered and exited by one runner
    task, so ``connect`` and ``close`` may be awaited from different tasks.
    """

    def __init__(
        self,
        name: str,
        url: str,
        tool_name_prefix: str | None = None,
        client_name: str = "checkin-orchestrator",
        client_version: str = "1.0.0",
        timeout_seconds: float = 55.0,
        headers: Dict[str, str] | None = None,
    ) -> None:
        super().__init__(name=name, url=url, tool_name_prefix=tool_name_prefix)
        self.client_name = client_name
        self.client_version = client_version
        self.timeout_seconds = timeout_seconds
        self.headers = dict(headers or {})
        self.session_id: str | None = None
        self._session: ClientSession | None = None
        self._runner: asyncio.Task | None = None
        self._ready = asyncio.Event()
        self._stop = asyncio.Event()
        self._failure: BaseException | None = None

    @asynccontextmanager
    async def open_session(self) -> AsyncIterator[ClientSession]:
        async with streamablehttp_client(
            self.url,
            headers=self.headers or None,
            timeout=timedelta(seconds=self.timeout_seconds),
        ) as (read_stream, write_stream, get_session_id):
            client_info = types.Implementation(name=self.client_name, version=self.client_version)
            async with ClientSession(read_stream, write_stream, client_info=client_info) as session:
                await session.initialize()
                self.session_id = get_session_id()
                yield session

    async def connect(self) -> None:
        if self._session is not None:
            return
        self._ready = asyncio.Event()
        self._stop = asyncio.Event()
        self._failure = None
        self._runner = asyncio.create_task(self._run())
        await self._ready.wait()
        if self._session is None:
            raise ToolInvocationError(f"MCP connection to {self.name} failed: {self._failure!r}") from self._failure
        logger.info("mcp_connected", extra={"server": self.name, "url": self.url, "mcp_session": self.session_id})

    async def _run(self) -> None:
        try:
            async with self.open_session() as session:
                self._session = session
                self._ready.set()
                await self._stop.wait()
        except Exception as exc:
            self._failure = exc
            logger.warning("mcp_session_ended", extra={"server": self.name, "error": repr(exc)})
        finally:
            self._session = None
            self.session_id = None
            self._ready.set()

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise ToolInvocationError(f"MCP connection {self.name} is not connected")
        return self._session

    async def list_tools(self) -> List[Dict[str, Any]]:
        session = self._require_session()
        tools: List[Dict[str, Any]] = []
        cursor: str | None = None
        while True:
            try:
                result = await (session.list_tools(cursor=cursor) if cursor else session.list_tools())
            except McpError as exc:
                raise ToolInvocationError(f"MCP tools/list failed on {self.name}: {exc}") from exc
            tools.extend(tool.model_dump(by_alias=True, exclude_none=True) for tool in result.tools)
            cursor = result.nextCursor
            if not cursor:
                return tools

    async def call_tool(self, name: str, args: Dict[str, Any]) -> Dict[str, Any]:
        session = self._require_session()
        try:
            result = await session.call_tool(name, arguments=args)
        except McpError as exc:
            raise ToolInvocationError(f"MCP tools/call {name} failed on {self.name}: {exc}") from exc
        return result.model_dump(by_alias=True, exclude_none=True)

    async def close(self) -> None:
        if self._runner is None:
            return
        self._stop.set()
        await self._runner
        self._runner = None


ToolHandler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


@dataclass
class LocalTool:
    name: str
    description: str
    handler: ToolHandler
    input_schema: Dict[str, Any] = field(default_factory=dict)

    def describe(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "inputSchema": self.input_schema}


class LocalToolConnection(ToolConnection):
    """Hosts tools in-process; exposes the same surface as a remote MCP server."""

    def __init__(self, name: str, tools: Iterable[LocalTool], tool_name_prefix: str | None = None) -> None:
        super().__init__(name=name, url=f"local://{name}", tool_name_prefix=tool_name_prefix)
        self._tools: Dict[str, LocalTool] = {tool.name: tool for tool in tools}
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def list_tools(self) -> List[Dict[str, Any]]:
        return [tool.describe() for tool in self._tools.values()]

    async def call_tool(self, name: str, args: Dict[str, Any]) -> Dict[str, Any]:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return await tool.handler(args)

    async def close(self) -> None:
        self.connected = False
