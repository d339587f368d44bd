"""Tool registrations and their exported function-calling definitions.

A registry maps a tool name to a Python callable, optionally paired with an
explicit definition. Callables without one get a permissive schema inferred
from their signature.

Usage:
    from ollama_client.agent.tools import ToolRegistry

    def read_file(path: str, limit: int = 100) -> str:
        '''Read a file from disk.'''
        ...

    registry = ToolRegistry({"read_file": read_file})
    registry.definitions()  # ready for Client.chat(tools=...)
"""

from __future__ import annotations

import copy
import dataclasses
import inspect
import json as _json
import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field

from ollama_client.errors import InvalidArgumentsError

logger = logging.getLogger(__name__)

OPEN_PARAMETERS: Mapping[str, Any] = MappingProxyType({"type": "object", "additionalProperties": True})


# ---------------------------------------------------------------------------
# Definition DTOs
# ---------------------------------------------------------------------------


class ParameterProperty(BaseModel):
    """One property of a function's parameter schema."""

    model_config = ConfigDict(extra="allow")

    type: str | list[str] | None = "string"
    description: str | None = None
    enum: list[Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class FunctionParameters(BaseModel):
    """JSON-schema object describing a function's arguments.

    Extra keys (``additionalProperties``, ``$defs``...) are kept as-is.
    """

    model_config = ConfigDict(extra="allow")

    type: str = "object"
    properties: dict[str, ParameterProperty] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(exclude_none=True)
        data["properties"] = {k: v.to_dict() for k, v in self.properties.items()}
        if not data["properties"]:
            del data["properties"]
        if not data["required"]:
            del data["required"]
        return data


class FunctionSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    description: str = ""
    parameters: FunctionParameters = Field(default_factory=FunctionParameters)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters.to_dict(),
        }


class ToolDefinition(BaseModel):
    """``{"type": "function", "function": {...}}`` as advertised to the model."""

    model_config = ConfigDict(extra="forbid")

    type: str = "function"
    function: FunctionSpec

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ToolDefinition":
        return cls.model_validate(dict(data))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "function": self.function.to_dict()}


# ---------------------------------------------------------------------------
# Schema inference and argument normalization
# ---------------------------------------------------------------------------


def infer_parameters(fn: Callable[..., Any]) -> dict[str, Any]:
    """Permissive parameter schema from a callable's signature.

    Every named parameter becomes a string property; parameters without a
    default are required. Unknown keys are disallowed only when at least one
    property was found, otherwise the open schema is returned.
    """
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return dict(OPEN_PARAMETERS)

    properties: dict[str, Any] = {}
    required: list[str] = []
    for name, param in sig.parameters.items():
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        properties[name] = {"type": "string", "description": f"Parameter: {name}"}
        if param.default is inspect.Parameter.empty:
            required.append(name)

    if not properties:
        return dict(OPEN_PARAMETERS)

    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    schema["additionalProperties"] = False
    return schema


def normalize_arguments(raw: Any) -> dict[str, Any]:
    """Turn a tool call's ``function.arguments`` into a dict.

    None, empty values and unexpected shapes become ``{}``. JSON text is
    decoded; undecodable text raises InvalidArgumentsError.
    """
    if raw is None or raw == "":
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, str):
        try:
            parsed = _json.loads(raw)
        except _json.JSONDecodeError as e:
            raise InvalidArgumentsError(e, raw) from e
        if not isinstance(parsed, dict):
            logger.debug("Tool arguments decoded to %s, using empty object", type(parsed).__name__)
            return {}
        return parsed
    return {}


def _summary(fn: Callable[..., Any]) -> str | None:
    doc = inspect.getdoc(fn)
    if not doc:
        return None
    first_line = doc.strip().split("\n")[0].strip()
    return first_line or None


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Tool:
    """One registered tool.

    ``definition`` set: exported verbatim. Unset: the schema is inferred
    from ``fn`` and described by ``description``, the docstring's first
    line, or ``"Tool: <name>"``.
    """

    name: str
    fn: Callable[..., Any]
    definition: ToolDefinition | Mapping[str, Any] | None = None
    description: str | None = None

    def to_definition(self) -> dict[str, Any]:
        if isinstance(self.definition, ToolDefinition):
            return self.definition.to_dict()
        if self.definition is not None:
            return copy.deepcopy(dict(self.definition))
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description or _summary(self.fn) or f"Tool: {self.name}",
                "parameters": infer_parameters(self.fn),
            },
        }


def _coerce_entry(name: str, entry: Any) -> Tool:
    if isinstance(entry, Tool):
        return entry if entry.name == name else dataclasses.replace(entry, name=name)
    if isinstance(entry, Mapping):
        fn = entry.get("callable")
        if not callable(fn):
            raise ValueError(f"Tool {name!r} has no associated callable")
        definition = entry.get("tool")
        if isinstance(definition, Mapping):
            definition = copy.deepcopy(dict(definition))
        return Tool(name=name, fn=fn, definition=definition, description=entry.get("description"))
    if callable(entry):
        return Tool(name=name, fn=entry)
    raise TypeError(
        f"Tool {name!r} must be a callable, a Tool, or a mapping with 'callable'; got {type(entry).__name__}"
    )


class ToolRegistry(Mapping[str, Tool]):
    """Read-only, case-sensitive name → Tool mapping.

    Accepts a mapping of name → (callable | Tool | {"tool": definition,
    "callable": fn}), or an iterable of callables and Tools named by
    ``Tool.name`` / ``__name__``. Safe to share between executors.
    """

    def __init__(self, tools: Mapping[str, Any] | Iterable[Any] | None = None) -> None:
        entries: dict[str, Tool] = {}
        if isinstance(tools, Mapping):
            for name, entry in tools.items():
                entries[name] = _coerce_entry(name, entry)
        elif tools is not None:
            for entry in tools:
                name = entry.name if isinstance(entry, Tool) else getattr(entry, "__name__", None)
                if not name:
                    raise ValueError(f"Cannot determine a tool name for {entry!r}")
                if name in entries:
                    raise ValueError(
                        f"Duplicate tool name {name!r}: "
                        f"{entries[name].fn!r} and {entry!r} have the same name."
                    )
                entries[name] = _coerce_entry(name, entry)
        self._tools: Mapping[str, Tool] = MappingProxyType(entries)

    def __getitem__(self, name: str) -> Tool:
        return self._tools[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __repr__(self) -> str:
        return f"ToolRegistry({sorted(self._tools)!r})"

    def names(self) -> list[str]:
        return sorted(self._tools)

    def definitions(self) -> list[dict[str, Any]]:
        """Exported definitions, sorted by tool name. Never includes the callables."""
        return [self._tools[name].to_definition() for name in self.names()]
