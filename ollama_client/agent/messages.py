"""Role-tagged message constructors for chat transcripts.

Plain dicts, ready for ``Client.chat``. Optional keys are left out rather
than sent as null.
"""

from __future__ import annotations

from typing import Any


def _text(content: Any) -> str:
    return "" if content is None else str(content)


def system(content: Any) -> dict[str, Any]:
    return {"role": "system", "content": _text(content)}


def user(content: Any) -> dict[str, Any]:
    return {"role": "user", "content": _text(content)}


def assistant(content: Any, tool_calls: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    msg: dict[str, Any] = {"role": "assistant", "content": _text(content)}
    if tool_calls is not None:
        msg["tool_calls"] = tool_calls
    return msg


def tool(content: Any, name: str | None = None, tool_call_id: str | None = None) -> dict[str, Any]:
    """Tool-result message, correlated to its request by ``tool_call_id``."""
    msg: dict[str, Any] = {"role": "tool", "content": _text(content)}
    if name is not None:
        msg["name"] = name
    if tool_call_id is not None:
        msg["tool_call_id"] = tool_call_id
    return msg
