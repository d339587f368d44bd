"""Presentation-only event surface for streaming agent loops and chat sessions.

Observers see what happens; they never decide what happens. A callback that
raises is logged and ignored so a broken UI cannot stop tool execution or
loop termination.

Example::

    def show(event: StreamEvent) -> None:
        if event.type == "token":
            print(event.text, end="", flush=True)

    executor = Executor(client, tools, observer=StreamingObserver(show))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Literal

logger = logging.getLogger(__name__)

EventType = Literal["state", "token", "tool_call_detected", "final"]
LifecycleState = Literal["assistant_streaming", "tool_executing", "tool_result_injected"]


@dataclass(frozen=True)
class StreamEvent:
    """One observable moment in a conversation.

    Attributes:
        type: ``state`` for lifecycle transitions (see ``state``), ``token``
            for a text delta, ``tool_call_detected`` for a tool call seen
            mid-stream, ``final`` for the resolved answer.
        text: Token delta or final answer text.
        name: Tool name for ``tool_call_detected``.
        state: Lifecycle state for ``state`` events.
        data: Raw tool-call fragment for ``tool_call_detected``.
    """

    type: EventType
    text: str | None = None
    name: str | None = None
    state: LifecycleState | None = None
    data: Any = None


class StreamingObserver:
    """Wraps a callback receiving StreamEvent objects."""

    def __init__(self, callback: Callable[[StreamEvent], None] | None = None) -> None:
        self._callback = callback

    def emit(
        self,
        type: EventType,
        *,
        text: str | None = None,
        name: str | None = None,
        state: LifecycleState | None = None,
        data: Any = None,
    ) -> None:
        if self._callback is None:
            return
        event = StreamEvent(type=type, text=text, name=name, state=state, data=data)
        try:
            self._callback(event)
        except Exception:
            logger.warning("Streaming observer failed on %s event; ignoring", type, exc_info=True)
