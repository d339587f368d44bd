"""Expose an MCP server's tools as an executor ToolRegistry."""

from __future__ import annotations

import logging
from typing import Any, Callable

from ollama_client.agent.tools import Tool, ToolRegistry
from ollama_client.mcp.http_client import MCPHttpClient, MCPTool
from ollama_client.mcp.stdio_client import MCPStdioClient

logger = logging.getLogger(__name__)


def mcp_tool_to_definition(tool: MCPTool) -> dict[str, Any]:
    """Convert an MCP tool to function-calling format.

    MCP: {"name": "foo", "description": "...", "inputSchema": {...}}
    Ollama: {"type": "function", "function": {"name": "foo", "description": "...", "parameters": {...}}}
    """
    parameters = tool.input_schema if isinstance(tool.input_schema, dict) else {"type": "object"}
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description or f"MCP tool: {tool.name}",
            "parameters": dict(parameters),
        },
    }


class ToolsBridge:
    """Adapts an MCP client (HTTP or stdio) so its remote tools run through an Executor.

    The tool listing is fetched once and cached; each registered callable
    forwards its keyword arguments to ``call_tool``.

    Example::

        async with MCPHttpClient(url) as mcp:
            tools = await ToolsBridge(mcp).registry()
            answer = await Executor(client, tools).arun(system, user)
    """

    def __init__(self, client: MCPHttpClient | MCPStdioClient) -> None:
        self.client = client
        self._cache: list[MCPTool] | None = None

    async def list_tools(self) -> list[MCPTool]:
        return await self.client.tools()

    async def registry(self) -> ToolRegistry:
        if self._cache is None:
            listing = await self.client.tools()
            self._cache = [t for t in listing if t.name]
            skipped = len(listing) - len(self._cache)
            if skipped:
                logger.warning("Skipped %d MCP tool(s) without a name", skipped)
        return ToolRegistry({
            t.name: Tool(name=t.name, fn=self._forwarder(t.name), definition=mcp_tool_to_definition(t))
            for t in self._cache
        })

    def _forwarder(self, name: str) -> Callable[..., Any]:
        client = self.client

        async def call(**arguments: Any) -> str:
            return await client.call_tool(name, {str(k): v for k, v in arguments.items()})

        call.__name__ = name
        return call
