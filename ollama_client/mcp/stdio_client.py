"""MCP client for a local server launched as a subprocess (stdio transport).

Usage:
    async with MCPStdioClient("npx", ["-y", "@modelcontextprotocol/server-filesystem", "/tmp"]) as mcp:
        for tool in await mcp.tools():
            print(tool.name)
        text = await mcp.call_tool("list_directory", {"path": "/tmp"})

Process handling and JSON-RPC framing come from the ``mcp`` SDK
(``pip install ollama-client[mcp]``). The interface matches MCPHttpClient,
so either one can back a ToolsBridge.
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import AsyncExitStack
from typing import Any, Awaitable, Sequence, TypeVar

from ollama_client.errors import LLMTimeoutError, MCPError
from ollama_client.mcp.http_client import MCPTool

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _import_mcp() -> tuple[Any, ...]:
    """Lazily import mcp client components.

    Returns:
        (stdio_client, StdioServerParameters, ClientSession, McpError)
    """
    try:
        from mcp.client.stdio import (
            StdioServerParameters,
            stdio_client,
        )
        from mcp import ClientSession
        from mcp.shared.exceptions import McpError
    except ImportError:
        raise ImportError(
            "mcp package is required for stdio MCP servers. "
            "Install with: pip install ollama-client[mcp]"
        ) from None
    return stdio_client, StdioServerParameters, ClientSession, McpError


def _result_text(content: Any) -> str:
    parts: list[str] = []
    for item in content or []:
        text = getattr(item, "text", None)
        parts.append(text if text is not None else str(item))
    return "\n".join(parts)


class MCPStdioClient:
    """Async MCP session with a server process speaking over stdin/stdout.

    Args:
        command: Executable to launch.
        args: Command-line arguments.
        env: Extra environment variables, layered over the current
            environment.
        cwd: Working directory for the server process.
        timeout: Seconds to wait for each response, the handshake included.
    """

    def __init__(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.command = command
        self.args = [str(a) for a in args]
        self.env = {str(k): str(v) for k, v in (env or {}).items()}
        self.cwd = cwd
        self.timeout = timeout
        self._stack: AsyncExitStack | None = None
        self._session: Any = None
        self._mcp_error: type[BaseException] | None = None
        self.server_info: dict[str, Any] = {}

    async def __aenter__(self) -> "MCPStdioClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Launch the server process and run the initialize handshake once."""
        if self._session is not None:
            return
        stdio_client, StdioServerParameters, ClientSession, McpError = _import_mcp()
        self._mcp_error = McpError
        params = StdioServerParameters(
            command=self.command,
            args=self.args,
            env={**os.environ, **self.env} if self.env else None,
            cwd=self.cwd,
        )

        stack = AsyncExitStack()
        await stack.__aenter__()
        try:
            read_stream, write_stream = await stack.enter_async_context(stdio_client(params))
            session = await stack.enter_async_context(ClientSession(read_stream, write_stream))
            init = await self._await(session.initialize(), "initialize")
        except BaseException:
            await stack.aclose()
            raise

        self._stack = stack
        self._session = session
        server_info = getattr(init, "serverInfo", None)
        self.server_info = server_info.model_dump() if hasattr(server_info, "model_dump") else {}
        logger.info(
            "Connected to MCP server %s (%s)",
            self.server_info.get("name", "unknown"), self.command,
        )

    async def close(self) -> None:
        """Shut down the session and the server process."""
        stack, self._stack = self._stack, None
        self._session = None
        if stack is not None:
            await stack.aclose()

    # -- operations -----------------------------------------------------------

    async def tools(self) -> list[MCPTool]:
        """Tools the server exposes (``tools/list``)."""
        await self.start()
        result = await self._await(self._session.list_tools(), "tools/list")
        return [
            MCPTool(
                name=str(t.name or ""),
                description=str(getattr(t, "description", None) or ""),
                input_schema=getattr(t, "inputSchema", None) or {"type": "object"},
            )
            for t in getattr(result, "tools", None) or []
        ]

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> str:
        """Invoke a remote tool and return its content blocks' text."""
        await self.start()
        result = await self._await(
            self._session.call_tool(str(name), {str(k): v for k, v in (arguments or {}).items()}),
            "tools/call",
        )
        if result is None:
            raise MCPError(f"tools/call {name!r} returned no result")
        if getattr(result, "isError", False):
            logger.warning("MCP tool %s reported an error result", name)
        return _result_text(getattr(result, "content", None))

    # -- wire -------------------------------------------------------------------

    async def _await(self, pending: Awaitable[T], method: str) -> T:
        try:
            return await asyncio.wait_for(pending, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise LLMTimeoutError(f"MCP server did not respond within {self.timeout}s", original=e) from e
        except Exception as e:
            if self._mcp_error is not None and isinstance(e, self._mcp_error):
                error = getattr(e, "error", None)
                code = getattr(error, "code", None)
                message = getattr(error, "message", None) or str(e)
                raise MCPError(f"{method} failed: MCP error {code}: {message}", code=code, original=e) from e
            raise
