"""Agent layer: message builders, tool registry, executor loop, planner."""

from ollama_client.agent import messages
from ollama_client.agent.executor import (
    DEFAULT_PARAMETER_ALIASES,
    CallOutcome,
    Executor,
    encode_tool_result,
    resolve_call,
)
from ollama_client.agent.planner import Planner
from ollama_client.agent.tools import (
    FunctionParameters,
    FunctionSpec,
    ParameterProperty,
    Tool,
    ToolDefinition,
    ToolRegistry,
    infer_parameters,
    normalize_arguments,
)

__all__ = [
    "CallOutcome",
    "DEFAULT_PARAMETER_ALIASES",
    "Executor",
    "FunctionParameters",
    "FunctionSpec",
    "ParameterProperty",
    "Planner",
    "Tool",
    "ToolDefinition",
    "ToolRegistry",
    "encode_tool_result",
    "infer_parameters",
    "messages",
    "normalize_arguments",
    "resolve_call",
]
