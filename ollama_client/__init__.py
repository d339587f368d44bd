"""Client for an Ollama inference server, with a tool-calling agent loop.

Usage:
    from ollama_client import Client, Executor, Planner

    client = Client()  # config from OLLAMA_* env vars

    # Plain chat
    reply = client.chat([{"role": "user", "content": "Hello"}])
    print(reply["message"]["content"])

    # Structured output, validated against a JSON schema
    plan = Planner(client).run("List three steps", schema={"type": "array"})

    # Tool-calling loop
    def add(a: str, b: str) -> int:
        '''Add two integers.'''
        return int(a) + int(b)

    answer = Executor(client, {"add": add}).run(
        system="Use tools for arithmetic.", user="What is 2 + 40?",
    )

    # Async
    answer = await Executor(client, {"add": add}).arun(system="...", user="...")
"""

__version__ = "0.3.0"

from ollama_client.agent import (
    CallOutcome,
    Executor,
    Planner,
    Tool,
    ToolDefinition,
    ToolRegistry,
    messages,
)
from ollama_client.chat_session import ChatSession
from ollama_client.client import AsyncChatStream, ChatStream, Client, Hooks
from ollama_client.config import ClientConfig
from ollama_client.errors import (
    AgentError,
    InvalidArgumentsError,
    LLMConfigurationError,
    LLMConnectionError,
    LLMError,
    LLMHTTPError,
    LLMInvalidJSONError,
    LLMModelNotFoundError,
    LLMRetryExhaustedError,
    LLMSchemaViolationError,
    LLMTimeoutError,
    MCPError,
    MissingFunctionNameError,
    ProtocolError,
    StepBudgetExhaustedError,
    ToolInvocationError,
    UnknownToolError,
)
from ollama_client.mcp import MCPHttpClient, MCPStdioClient, MCPTool, ToolsBridge
from ollama_client.schema import any_json_schema
from ollama_client.streaming import StreamEvent, StreamingObserver

__all__ = [
    "AgentError",
    "AsyncChatStream",
    "CallOutcome",
    "ChatSession",
    "ChatStream",
    "Client",
    "ClientConfig",
    "Executor",
    "Hooks",
    "InvalidArgumentsError",
    "LLMConfigurationError",
    "LLMConnectionError",
    "LLMError",
    "LLMHTTPError",
    "LLMInvalidJSONError",
    "LLMModelNotFoundError",
    "LLMRetryExhaustedError",
    "LLMSchemaViolationError",
    "LLMTimeoutError",
    "MCPError",
    "MCPHttpClient",
    "MCPStdioClient",
    "MCPTool",
    "MissingFunctionNameError",
    "Planner",
    "ProtocolError",
    "StepBudgetExhaustedError",
    "StreamEvent",
    "StreamingObserver",
    "Tool",
    "ToolDefinition",
    "ToolInvocationError",
    "ToolRegistry",
    "ToolsBridge",
    "UnknownToolError",
    "__version__",
    "any_json_schema",
    "messages",
]
