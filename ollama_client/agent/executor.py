"""Tool-calling agent loop.

The model never runs anything itself. It can only request tool calls by
name; the executor resolves each request against its registry, invokes the
Python callable, and feeds the result back as a ``role: "tool"`` message
until the model answers in plain text or the step budget runs out.

Usage:
    from ollama_client import Client
    from ollama_client.agent import Executor

    def list_dir(path: str) -> list[str]:
        '''List a directory.'''
        return sorted(os.listdir(path))

    executor = Executor(Client(), {"list_dir": list_dir}, max_steps=8)
    answer = executor.run(system="You are a file assistant.", user="What is in /tmp?")

Tool calls within a step run one at a time, in the order the model issued
them. Every failure (unknown tool, bad arguments, budget exhausted) ends the
run with a typed AgentError; transport errors come from the client as-is.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import inspect
import json as _json
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Literal

from pydantic import BaseModel

from ollama_client.agent import messages
from ollama_client.agent.tools import Tool, ToolRegistry, normalize_arguments
from ollama_client.errors import (
    MissingFunctionNameError,
    StepBudgetExhaustedError,
    ToolInvocationError,
    UnknownToolError,
)
from ollama_client.streaming import StreamEvent, StreamingObserver

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 20

# Best-effort renames applied once when a required parameter is missing:
# canonical parameter -> argument names models commonly use instead.
DEFAULT_PARAMETER_ALIASES: Mapping[str, tuple[str, ...]] = MappingProxyType({
    "path": ("directory", "file", "filename"),
})


def _run_sync(coro: Any) -> Any:
    """Run a coroutine synchronously, handling nested event loops."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop is not None and loop.is_running():
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Invocation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CallOutcome:
    """How tool arguments fit a callable, decided before calling it.

    ``style`` is ``keyword``, ``aliased`` (keyword after alias renames) or
    ``positional`` (the whole argument dict as the single argument).
    ``error`` is set when nothing fits.
    """

    args: tuple[Any, ...] = ()
    kwargs: dict[str, Any] = field(default_factory=dict)
    style: Literal["keyword", "aliased", "positional"] | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _missing_required(sig: inspect.Signature, arguments: Mapping[str, Any]) -> list[str]:
    return [
        name
        for name, param in sig.parameters.items()
        if param.default is inspect.Parameter.empty
        and param.kind in (inspect.Parameter.POSITIONAL_OR_KEYWORD, inspect.Parameter.KEYWORD_ONLY)
        and name not in arguments
    ]


def apply_parameter_aliases(
    arguments: Mapping[str, Any],
    sig: inspect.Signature,
    aliases: Mapping[str, tuple[str, ...]],
) -> dict[str, Any]:
    """Rename alias keys to the canonical parameter the callable declares."""
    aliased = dict(arguments)
    for target, sources in aliases.items():
        if target not in sig.parameters or target in aliased:
            continue
        for source in sources:
            if source in aliased:
                aliased[target] = aliased.pop(source)
                break
    return aliased


def resolve_call(
    fn: Callable[..., Any],
    arguments: Mapping[str, Any],
    aliases: Mapping[str, tuple[str, ...]] = DEFAULT_PARAMETER_ALIASES,
) -> CallOutcome:
    """Decide how to call *fn* with *arguments*.

    1. keyword call with the arguments as given
    2. on a missing required parameter, keyword call after alias renames
    3. positional call with the argument dict itself, only when no argument
       key names a declared parameter
    """
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        # No introspectable signature (some builtins): trust the keywords.
        return CallOutcome(kwargs=dict(arguments), style="keyword")

    try:
        sig.bind(**arguments)
        return CallOutcome(kwargs=dict(arguments), style="keyword")
    except TypeError as e:
        keyword_error = str(e)

    aliased = dict(arguments)
    if _missing_required(sig, arguments):
        aliased = apply_parameter_aliases(arguments, sig, aliases)
        if aliased != dict(arguments):
            try:
                sig.bind(**aliased)
                return CallOutcome(kwargs=aliased, style="aliased")
            except TypeError:
                pass

    # Arguments that name a declared parameter were meant as keywords.
    named = {
        name
        for name, param in sig.parameters.items()
        if param.kind not in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)
    }
    if named & (set(arguments) | set(aliased)):
        return CallOutcome(error=keyword_error)

    try:
        sig.bind(dict(arguments))
        return CallOutcome(args=(dict(arguments),), style="positional")
    except TypeError as e:
        return CallOutcome(error=str(e) or keyword_error)


def encode_tool_result(result: Any) -> str:
    """Tool return value as message content. Never drops the result.

    Strings pass through; anything else becomes compact JSON, or ``str()``
    when it has no valid JSON form (NaN and infinities included).
    """
    if isinstance(result, str):
        return result
    if isinstance(result, BaseModel):
        return result.model_dump_json()
    try:
        return _json.dumps(result, separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError):
        return str(result)


def _call_name(call: Any) -> str | None:
    if not isinstance(call, Mapping):
        return None
    fn_info = call.get("function")
    name = fn_info.get("name") if isinstance(fn_info, Mapping) else None
    return name or call.get("name")


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class Executor:
    """Runs one conversation per ``run`` call against a tool registry.

    Args:
        client: Transport with ``achat(messages, tools=...)`` and, when an
            observer is attached, ``astream_chat(messages, tools=...)``.
        tools: ToolRegistry, or anything ToolRegistry accepts.
        max_steps: Model round-trips allowed per run.
        observer: StreamingObserver (or a bare StreamEvent callback). When
            set, responses are streamed and surfaced as events.
        parameter_aliases: canonical parameter -> alternative argument names.

    One instance per concurrent conversation; ``messages`` holds the last
    run's transcript.
    """

    def __init__(
        self,
        client: Any,
        tools: ToolRegistry | Mapping[str, Any] | None = None,
        *,
        max_steps: int = DEFAULT_MAX_STEPS,
        observer: StreamingObserver | Callable[[StreamEvent], None] | None = None,
        parameter_aliases: Mapping[str, tuple[str, ...]] = DEFAULT_PARAMETER_ALIASES,
    ) -> None:
        if max_steps < 1:
            raise ValueError(f"max_steps must be >= 1, got {max_steps}")
        self.client = client
        self.tools = tools if isinstance(tools, ToolRegistry) else ToolRegistry(tools)
        self.max_steps = max_steps
        if observer is not None and not isinstance(observer, StreamingObserver):
            observer = StreamingObserver(observer)
        self.observer = observer
        self.parameter_aliases: Mapping[str, tuple[str, ...]] = MappingProxyType(
            {k: tuple(v) for k, v in parameter_aliases.items()}
        )
        self.messages: list[dict[str, Any]] = []

    def _emit(self, type: Any, **fields: Any) -> None:
        if self.observer is not None:
            self.observer.emit(type, **fields)

    def run(self, system: str, user: str) -> str:
        """Sync wrapper around :meth:`arun`."""
        return _run_sync(self.arun(system, user))

    async def arun(self, system: str, user: str) -> str:
        """Drive the conversation to a final answer and return its text.

        Raises:
            StepBudgetExhaustedError: max_steps passed without any
                non-empty assistant content.
            MissingFunctionNameError, InvalidArgumentsError,
            UnknownToolError, ToolInvocationError: a tool call could not
                be carried out.
        """
        transcript = [messages.system(system), messages.user(user)]
        self.messages = transcript
        definitions = self.tools.definitions()
        last_answer: str | None = None

        for step in range(1, self.max_steps + 1):
            self._emit("state", state="assistant_streaming")
            response = await self._next_turn(transcript, definitions)

            message = response.get("message") or {}
            content = message.get("content")
            tool_calls = message.get("tool_calls")

            if content is not None or tool_calls is not None:
                transcript.append(messages.assistant(content, tool_calls=tool_calls))
            if content:
                last_answer = str(content)

            if not tool_calls:
                logger.info("Executor resolved after %d step(s)", step)
                break

            logger.info("Step %d: model requested %d tool call(s)", step, len(tool_calls))
            for call in tool_calls:
                await self._dispatch(call, transcript)

        if last_answer is None:
            raise StepBudgetExhaustedError(self.max_steps)

        self._emit("final", text=last_answer)
        return last_answer

    async def _next_turn(
        self,
        transcript: list[dict[str, Any]],
        definitions: list[dict[str, Any]],
    ) -> dict[str, Any]:
        tools = definitions or None
        if self.observer is None:
            return await self.client.achat(list(transcript), tools=tools)

        stream = await self.client.astream_chat(list(transcript), tools=tools)
        detected: set[Any] = set()
        async for chunk in stream:
            delta = (chunk.get("message") or {}).get("content")
            if delta:
                self._emit("token", text=str(delta))
            for call in (chunk.get("message") or {}).get("tool_calls") or []:
                name = _call_name(call)
                if not name:
                    continue
                key = next((k for k in (call.get("id"), call.get("index")) if k is not None), None)
                if key is None:
                    # No id or index: calls differing in arguments are distinct.
                    fn_info = call.get("function")
                    raw_args = fn_info.get("arguments") if isinstance(fn_info, Mapping) else None
                    key = (name, _json.dumps(raw_args, sort_keys=True, default=str))
                if key in detected:
                    continue
                detected.add(key)
                self._emit("tool_call_detected", name=name, data=call)
        # Fragments are for display only; control uses the aggregated response.
        return stream.response

    async def _dispatch(self, call: Any, transcript: list[dict[str, Any]]) -> None:
        name = _call_name(call)
        if not name:
            raise MissingFunctionNameError(call)

        fn_info = call.get("function")
        arguments = normalize_arguments(fn_info.get("arguments") if isinstance(fn_info, Mapping) else None)

        tool = self.tools.get(name)
        if tool is None:
            raise UnknownToolError(name, list(self.tools))

        self._emit("state", state="tool_executing")
        t0 = time.monotonic()
        result = await self._invoke(tool, arguments)
        content = encode_tool_result(result)
        logger.debug(
            "Tool %s returned %d chars in %.3fs", name, len(content), time.monotonic() - t0,
        )

        tool_call_id = call.get("id") or call.get("tool_call_id")
        transcript.append(messages.tool(content, name=name, tool_call_id=tool_call_id))
        self._emit("state", state="tool_result_injected")

    async def _invoke(self, tool: Tool, arguments: dict[str, Any]) -> Any:
        outcome = resolve_call(tool.fn, arguments, self.parameter_aliases)
        if not outcome.ok:
            raise ToolInvocationError(tool.name, arguments, outcome.error or "arguments do not match")
        if outcome.style == "aliased":
            logger.warning(
                "TOOL_ARG_ALIAS tool=%s given=%s used=%s",
                tool.name, sorted(arguments), sorted(outcome.kwargs),
            )
        elif outcome.style == "positional":
            logger.debug("Tool %s called positionally with the argument object", tool.name)

        result = tool.fn(*outcome.args, **outcome.kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result
