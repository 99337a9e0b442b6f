"""MCP tool discovery for messages that enabled MCP servers.

The MCP servers themselves are reached through an :class:`MCPClient`
supplied by the host process; this module only fans out and filters.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from ..types import MCPServer, MCPTool

__all__ = ["MCPClient", "list_enabled_tools", "tool_to_param"]

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class MCPClient(Protocol):
    """Gateway to the MCP servers configured by the user."""

    async def list_tools(self, server: MCPServer) -> Sequence[MCPTool]:
        """Return every tool ``server`` exposes."""

    async def call_tool(self, tool: MCPTool, arguments: Mapping[str, Any]) -> Any:
        """Invoke ``tool`` and return its result payload."""


async def list_enabled_tools(client: MCPClient, servers: Sequence[MCPServer]) -> list[MCPTool]:
    """List the tools of every server concurrently, minus each server's disabled tools.

    A failure on any server propagates; callers decide whether to continue
    without tools.
    """

    async def _tools_for(server: MCPServer) -> list[MCPTool]:
        tools = await client.list_tools(server)
        disabled = set(server.disabled_tools or ())
        return [tool for tool in tools if tool.name not in disabled]

    groups = await asyncio.gather(*(_tools_for(server) for server in servers))
    tools = [tool for group in groups for tool in group]
    LOGGER.debug("Listed %d MCP tool(s) from %d server(s)", len(tools), len(servers))
    return tools


def tool_to_param(tool: MCPTool) -> dict[str, Any]:
    """Describe ``tool`` in the OpenAI function-calling format."""

    parameters = dict(tool.input_schema) if tool.input_schema else {"type": "object", "properties": {}}
    return {
        "type": "function",
        "function": {
            "name": tool.function_name,
            "description": tool.description or tool.name,
            "parameters": parameters,
        },
    }
