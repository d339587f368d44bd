"""MCP (Model Context Protocol) over HTTP or stdio: session clients and executor bridge."""

from ollama_client.mcp.http_client import PROTOCOL_VERSION, MCPHttpClient, MCPTool
from ollama_client.mcp.stdio_client import MCPStdioClient
from ollama_client.mcp.tools_bridge import ToolsBridge, mcp_tool_to_definition

__all__ = [
    "MCPHttpClient",
    "MCPStdioClient",
    "MCPTool",
    "PROTOCOL_VERSION",
    "ToolsBridge",
    "mcp_tool_to_definition",
]
