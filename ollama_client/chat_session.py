"""Stateful multi-turn chat for humans (REPLs, consoles).

Agents should use ``Executor``; a session never runs tools, it only keeps
the transcript and optionally streams tokens to an observer.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from ollama_client.agent import messages as msgs
from ollama_client.agent.tools import ToolRegistry
from ollama_client.client import Client
from ollama_client.streaming import StreamEvent, StreamingObserver

logger = logging.getLogger(__name__)


class ChatSession:
    """Conversation whose history is resent on every ``say``.

    Example::

        session = ChatSession(Client(), system="You are terse.",
                              observer=StreamingObserver(print_tokens))
        session.say("Hi")
        session.say("And again?")
        session.clear()
    """

    def __init__(
        self,
        client: Client,
        system: str | None = None,
        observer: StreamingObserver | Callable[[StreamEvent], None] | None = None,
    ) -> None:
        self.client = client
        if observer is not None and not isinstance(observer, StreamingObserver):
            observer = StreamingObserver(observer)
        self.observer = observer
        self.messages: list[dict[str, Any]] = []
        if system:
            self.messages.append(msgs.system(system))

    def say(
        self,
        text: str,
        *,
        model: str | None = None,
        format: dict[str, Any] | None = None,
        tools: ToolRegistry | list[dict[str, Any]] | None = None,
        options: dict[str, Any] | None = None,
    ) -> str:
        """Send *text* as the next user turn and return the assistant's reply."""
        self.messages.append(msgs.user(text))
        if isinstance(tools, ToolRegistry):
            tools = tools.definitions()

        response = self.client.chat(
            list(self.messages),
            model=model,
            format=format,
            tools=tools or None,
            options=options,
            on_chunk=self._on_chunk if self.observer is not None else None,
        )

        message = response.get("message") or {}
        content = message.get("content") or ""
        tool_calls = message.get("tool_calls")
        self.messages.append(msgs.assistant(content, tool_calls=tool_calls))

        if self.observer is not None:
            self.observer.emit("final", text=content)
        return content

    def clear(self) -> None:
        """Forget the conversation, keeping the system message if any."""
        system = next((m for m in self.messages if m.get("role") == "system"), None)
        self.messages = [system] if system else []

    def _on_chunk(self, chunk: dict[str, Any]) -> None:
        observer = self.observer
        if observer is None:
            return
        message = chunk.get("message") or {}
        delta = message.get("content")
        if delta:
            observer.emit("token", text=str(delta))
        for call in message.get("tool_calls") or []:
            fn = call.get("function") or {}
            name = fn.get("name") or call.get("name")
            if name:
                observer.emit("tool_call_detected", name=name, data=call)
