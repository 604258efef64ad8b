from .checkin_tools import build_checkin_tool_connection, build_tool_gateway
from .connections import LocalTool, LocalToolConnection, McpHttpConnection, ToolConnection
from .gateway import ToolGateway, ToolRoute, ensure_object_schema
from .rest_adapter import RestToolAdapter, RestToolSpec

__all__ = [
    "LocalTool",
    "LocalToolConnection",
    "McpHttpConnection",
    "RestToolAdapter",
    "RestToolSpec",
    "ToolConnection",
    "ToolGateway",
    "ToolRoute",
    "build_checkin_tool_connection",
    "build_tool_gateway",
    "ensure_object_schema",
]
