"""MCP client over the Streamable HTTP transport (JSON-RPC 2.0 via POST).

Usage:
    async with MCPHttpClient("http://localhost:8000/mcp") as mcp:
        for tool in await mcp.tools():
            print(tool.name, tool.description)
        text = await mcp.call_tool("search", {"query": "ollama"})

The session id returned by the server on ``initialize`` (``MCP-Session-Id``
header) is echoed on every later request. Responses may come back as plain
JSON or as a ``text/event-stream`` body; in the latter case the JSON-RPC
message whose id matches the request is picked out.
"""

from __future__ import annotations

import json as _json
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from ollama_client import __version__
from ollama_client.errors import (
    LLMConnectionError,
    LLMHTTPError,
    LLMInvalidJSONError,
    LLMTimeoutError,
    MCPError,
)

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2025-11-25"
SESSION_HEADER = "MCP-Session-Id"
CLIENT_NAME = "ollama-client"


@dataclass(frozen=True)
class MCPTool:
    """A tool advertised by an MCP server."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object"})


def content_to_text(content: Any) -> str:
    """Join the ``text`` of each content block with newlines."""
    if not isinstance(content, list):
        return ""
    texts = [
        str(item["text"])
        for item in content
        if isinstance(item, dict) and item.get("text") is not None
    ]
    return "\n".join(texts)


def parse_sse_messages(raw: str) -> list[dict[str, Any]]:
    """All JSON payloads of an SSE body, in order.

    Multi-line ``data:`` fields are joined; ``[DONE]`` markers and
    undecodable payloads are skipped.
    """
    messages: list[dict[str, Any]] = []
    current: list[str] = []

    def flush() -> None:
        payload = "\n".join(current)
        current.clear()
        if not payload or payload == "[DONE]":
            return
        try:
            messages.append(_json.loads(payload))
        except _json.JSONDecodeError:
            logger.debug("Skipping undecodable SSE payload: %s", payload[:200])

    for line in raw.splitlines():
        if line.startswith("data:"):
            current.append(line[5:].strip())
        elif not line.strip() and current:
            flush()
    if current:
        flush()
    return messages


class MCPHttpClient:
    """Async JSON-RPC session against one MCP HTTP endpoint.

    Args:
        url: Endpoint receiving the JSON-RPC POSTs.
        timeout: Per-request timeout in seconds.
        headers: Extra HTTP headers (e.g. authentication).
        transport: Optional httpx transport, mainly for tests.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._headers = {str(k): str(v) for k, v in (headers or {}).items()}
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._request_id = 0
        self._session_id: str | None = None
        self._initialized = False
        self.server_info: dict[str, Any] = {}

    @property
    def session_id(self) -> str | None:
        return self._session_id

    async def __aenter__(self) -> "MCPHttpClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Run the initialize handshake once per session."""
        if self._initialized:
            return
        result = await self._request("initialize", {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": {"name": CLIENT_NAME, "version": __version__},
        })
        self.server_info = result.get("serverInfo") or {}
        await self._notify("notifications/initialized", {})
        self._initialized = True
        logger.info(
            "Connected to MCP server %s (%s)",
            self.server_info.get("name", "unknown"), self.url,
        )

    async def close(self) -> None:
        self._session_id = None
        self._initialized = False
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # -- operations -----------------------------------------------------------

    async def tools(self) -> list[MCPTool]:
        """Tools the server exposes (``tools/list``)."""
        await self.start()
        result = await self._request("tools/list", {})
        listing = result.get("tools")
        if not isinstance(listing, list):
            return []
        return [
            MCPTool(
                name=str(t.get("name") or ""),
                description=str(t.get("description") or ""),
                input_schema=t.get("inputSchema") or {"type": "object"},
            )
            for t in listing
            if isinstance(t, dict)
        ]

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> str:
        """Invoke a remote tool and return its content blocks' text."""
        await self.start()
        result = await self._request("tools/call", {
            "name": str(name),
            "arguments": {str(k): v for k, v in (arguments or {}).items()},
        })
        if not result:
            raise MCPError(f"tools/call {name!r} returned no result")
        if result.get("isError"):
            logger.warning("MCP tool %s reported an error result", name)
        return content_to_text(result.get("content"))

    # -- wire -------------------------------------------------------------------

    def _next_id(self) -> int:
        self._request_id += 1
        return self._request_id

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    def _request_headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
            "MCP-Protocol-Version": PROTOCOL_VERSION,
        }
        if self._session_id:
            headers[SESSION_HEADER] = self._session_id
        headers.update(self._headers)
        return headers

    async def _request(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        body = {"jsonrpc": "2.0", "id": self._next_id(), "method": method, "params": params}
        data = await self._post(body, method=method)
        if not data:
            return {}
        if data.get("error"):
            error = data["error"]
            if isinstance(error, dict):
                raise MCPError(
                    f"{method} failed: MCP error {error.get('code', 'unknown')}: "
                    f"{error.get('message', 'Unknown error')}",
                    code=error.get("code"),
                )
            raise MCPError(f"{method} failed: {error}")
        return data.get("result") or {}

    async def _notify(self, method: str, params: dict[str, Any]) -> None:
        await self._post({"jsonrpc": "2.0", "method": method, "params": params}, method=method)

    async def _post(self, body: dict[str, Any], *, method: str) -> dict[str, Any]:
        logger.debug("Sending MCP request: %s", method)
        try:
            res = await self._http().post(self.url, json=body, headers=self._request_headers())
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(f"MCP server did not respond within {self.timeout}s", original=e) from e
        except httpx.RequestError as e:
            raise LLMConnectionError(f"MCP connection failed: {e}", original=e) from e

        if method == "initialize":
            session = (res.headers.get(SESSION_HEADER) or "").strip()
            self._session_id = session or None

        if res.status_code == 202:
            return {}
        if not res.is_success:
            raise LLMHTTPError(
                f"MCP HTTP error: {res.status_code} {res.reason_phrase}",
                res.status_code,
            )

        content_type = res.headers.get("content-type", "").split(";")[0].strip()
        if content_type == "text/event-stream":
            return self._match_sse(res.text, body.get("id"))
        if not res.content:
            return {}
        try:
            return res.json()
        except ValueError as e:
            raise LLMInvalidJSONError(f"MCP response was not JSON: {res.text[:200]}", original=e) from e

    @staticmethod
    def _match_sse(raw: str, expected_id: Any) -> dict[str, Any]:
        messages = parse_sse_messages(raw)
        if expected_id is None:
            return messages[0] if messages else {}
        for msg in messages:
            # Server-initiated requests/notifications carry a method; skip them.
            if "method" in msg:
                continue
            if msg.get("id") == expected_id:
                return msg
        raise MCPError(f"MCP SSE response had no JSON-RPC response for id {expected_id!r}")
