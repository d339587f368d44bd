"""Transport client for an Ollama inference server, wrapping litellm.

One class, configured once, safe to share across threads (no mutable state
besides the immutable ``ClientConfig``):

- chat / achat: chat completion, optional tools, optional streaming callback
- stream_chat / astream_chat: iterator of partial chunks, then ``.response``
- generate / agenerate: one JSON answer validated against a JSON schema
- embed / aembed: embedding vectors for one text or a batch
- list_models / health: plain HTTP checks of the server
- show_model, pull_model, delete_model, copy_model, list_running, version:
  model management over the server's REST API

Responses are plain dicts shaped like Ollama's ``/api/chat`` body::

    {"model": "...", "message": {"role": "assistant", "content": "...",
     "tool_calls": [...]}, "done": True, "done_reason": "stop"}

Retries use jittered exponential backoff on retryable transport failures
(timeouts, connection errors, HTTP 408/429/500/502/503). JSON and schema
failures are retried too unless ``strict=True``.
"""

from __future__ import annotations

import asyncio
import json as _json
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterator

import httpx
import litellm

from ollama_client.capabilities import detect_capabilities
from ollama_client.config import ClientConfig
from ollama_client.errors import (
    LLMError,
    LLMInvalidJSONError,
    LLMModelNotFoundError,
    LLMRetryExhaustedError,
    LLMSchemaViolationError,
    is_retryable,
    wrap_error,
)
from ollama_client.schema import parse_json_response, validate

logger = logging.getLogger(__name__)

# Silence litellm's noisy default logging
litellm.suppress_debug_info = True

CHAT_PROVIDER = "ollama_chat"
GENERATE_PROVIDER = "ollama"

ChunkCallback = Callable[[dict[str, Any]], None]


# ---------------------------------------------------------------------------
# Hooks and backoff
# ---------------------------------------------------------------------------


@dataclass
class Hooks:
    """Observability hooks fired during server calls.

    Attributes:
        before_call: ``(model, messages, kwargs) → None``. Fired before each
            attempt, retries included.
        after_call: ``(response, meta) → None``. Fired after a successful
            call; ``meta`` carries endpoint, model, attempt and latency_ms.
        on_error: ``(error, attempt) → None``. Fired on each failed attempt.
    """

    before_call: Callable[[str, list[dict[str, Any]], dict[str, Any]], None] | None = None
    after_call: Callable[[dict[str, Any], dict[str, Any]], None] | None = None
    on_error: Callable[[Exception, int], None] | None = None


def exponential_backoff(attempt: int, base_delay: float = 0.5, max_delay: float = 8.0) -> float:
    """Exponential backoff with jitter, capped at *max_delay*."""
    delay = base_delay * (2 ** attempt)
    jitter = random.uniform(0.5, 1.5)
    return min(delay * jitter, max_delay)


# ---------------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------------


def _provider_model(model: str, provider: str) -> str:
    """Prefix a bare Ollama model name with the litellm provider."""
    if model.startswith(f"{CHAT_PROVIDER}/") or model.startswith(f"{GENERATE_PROVIDER}/"):
        return model
    return f"{provider}/{model}"


def _prepare_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Copy messages into the shape litellm expects.

    Assistant tool calls need string arguments and a type. Ids are passed
    on only when the model supplied one; without an id the server pairs
    tool results with calls by name. The caller's transcript is not touched.
    """
    prepared: list[dict[str, Any]] = []
    for msg in messages:
        out = dict(msg)
        calls = msg.get("tool_calls")
        if calls:
            fixed = []
            for call in calls:
                fn = dict(call.get("function") or {})
                args = fn.get("arguments")
                if not isinstance(args, str):
                    fn["arguments"] = _json.dumps(args if args is not None else {})
                prepared_call: dict[str, Any] = {"type": call.get("type") or "function", "function": fn}
                if call.get("id"):
                    prepared_call["id"] = call["id"]
                fixed.append(prepared_call)
            out["tool_calls"] = fixed
        prepared.append(out)
    return prepared


def _extract_tool_calls(message: Any) -> list[dict[str, Any]]:
    """Extract tool calls from a litellm message into plain dicts."""
    calls = getattr(message, "tool_calls", None)
    if not calls:
        return []
    result: list[dict[str, Any]] = []
    for tc in calls:
        result.append({
            "id": tc.id,
            "type": "function",
            "function": {
                "name": tc.function.name,
                "arguments": tc.function.arguments,
            },
        })
    return result


def _response_to_dict(response: Any, model: str) -> dict[str, Any]:
    """Convert a litellm ModelResponse into the Ollama chat body shape."""
    choice = response.choices[0]
    message: dict[str, Any] = {"role": "assistant"}
    content = choice.message.content
    if content is not None:
        message["content"] = content
    tool_calls = _extract_tool_calls(choice.message)
    if tool_calls:
        message["tool_calls"] = tool_calls
    return {
        "model": model,
        "message": message,
        "done": True,
        "done_reason": choice.finish_reason or "stop",
    }


def _chunk_to_dict(chunk: Any) -> dict[str, Any]:
    """Convert one streamed litellm chunk into a partial chat body."""
    message: dict[str, Any] = {"role": "assistant"}
    finish_reason = None
    if chunk.choices:
        choice = chunk.choices[0]
        finish_reason = getattr(choice, "finish_reason", None)
        delta = choice.delta
        text = getattr(delta, "content", None) if delta is not None else None
        if text:
            message["content"] = text
        calls = getattr(delta, "tool_calls", None) if delta is not None else None
        if calls:
            fragments = []
            for tc in calls:
                fn = getattr(tc, "function", None)
                fragments.append({
                    "index": getattr(tc, "index", None),
                    "id": getattr(tc, "id", None),
                    "type": "function",
                    "function": {
                        "name": getattr(fn, "name", None),
                        "arguments": getattr(fn, "arguments", None) or "",
                    },
                })
            message["tool_calls"] = fragments
    return {"message": message, "done": finish_reason is not None}


def _merge_tool_call_fragments(fragments: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Assemble streamed tool-call fragments into complete calls.

    Fragments sharing an index (or id) are one call; argument text is
    concatenated, name and id are taken from the first fragment carrying them.
    """
    merged: dict[Any, dict[str, Any]] = {}
    for frag in fragments:
        key = frag.get("index")
        if key is None:
            key = frag.get("id") or len(merged)
        call = merged.setdefault(key, {"id": None, "type": "function", "function": {"name": None, "arguments": ""}})
        if frag.get("id") and not call["id"]:
            call["id"] = frag["id"]
        fn = frag.get("function") or {}
        if fn.get("name") and not call["function"]["name"]:
            call["function"]["name"] = fn["name"]
        args = fn.get("arguments")
        if isinstance(args, str):
            call["function"]["arguments"] += args
        elif args:
            call["function"]["arguments"] = args
    return list(merged.values())


def _enhance_prompt_for_json(prompt: str, schema: dict[str, Any]) -> str:
    """Append an explicit JSON instruction unless the prompt already asks for JSON."""
    if "json" in prompt.lower():
        return prompt
    required = schema.get("required") or []
    properties = schema.get("properties") or {}
    if not required and not properties:
        summary = "a single JSON value"
    else:
        placeholders = {"string": "string_value", "number": 0, "integer": 0, "boolean": True, "array": []}
        example = {
            key: placeholders.get((properties.get(key) or {}).get("type"), {})
            for key in required
        }
        fields = ", ".join(f'"{k}"' for k in required)
        summary = f"Required fields: [{fields}]. Example structure:\n{_json.dumps(example, indent=2)}"
    return (
        f"{prompt}\n\nCRITICAL: Respond with ONLY valid JSON (no markdown code blocks, "
        f"no explanations). The JSON must include these exact required fields: {summary}"
    )


def _extract_embeddings(response: Any, model: str) -> list[list[float]]:
    """Pull the vectors out of a litellm EmbeddingResponse, in input order."""
    data = getattr(response, "data", None)
    if data is None and isinstance(response, dict):
        data = response.get("data")
    vectors: list[list[float]] = []
    for item in data or []:
        vector = item.get("embedding") if isinstance(item, dict) else getattr(item, "embedding", None)
        if vector is None:
            keys = sorted(item) if isinstance(item, dict) else type(item).__name__
            raise LLMError(f"Embedding not found in response for model '{model}'. Response keys: {keys}")
        if not vector:
            raise LLMError(
                f"Empty embedding returned for model '{model}'. The model may not support "
                f"embeddings or may not be installed; try `ollama pull {model}` or use an "
                "embedding model such as nomic-embed-text."
            )
        vectors.append(list(vector))
    if not vectors:
        raise LLMError(f"Embedding not found in response for model '{model}'")
    return vectors


def _find_similar_models(requested: str, available: list[str], limit: int = 5) -> list[str]:
    requested_lower = requested.lower()
    matches = [
        m for m in available
        if requested_lower in m.lower() or m.lower() in requested_lower
    ]
    if not matches:
        parts = [p for p in requested_lower.replace(":", " ").replace(".", " ").replace("_", " ").replace("-", " ").split() if p]
        for model in available:
            model_parts = model.lower().replace(":", " ").replace(".", " ").replace("_", " ").replace("-", " ").split()
            if any(p in mp or mp in p for p in parts for mp in model_parts):
                matches.append(model)
    return matches[:limit]


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class _StreamAccumulator:
    """Shared chunk bookkeeping for sync and async chat streams."""

    def __init__(self, model: str, hooks: Hooks | None, meta: dict[str, Any]) -> None:
        self._model = model
        self._hooks = hooks
        self._meta = meta
        self._started = time.monotonic()
        self._raw_chunks: list[Any] = []
        self._texts: list[str] = []
        self._fragments: list[dict[str, Any]] = []
        self._response: dict[str, Any] | None = None

    def _consume(self, raw: Any) -> dict[str, Any]:
        self._raw_chunks.append(raw)
        chunk = _chunk_to_dict(raw)
        message = chunk["message"]
        if message.get("content"):
            self._texts.append(message["content"])
        if message.get("tool_calls"):
            self._fragments.extend(message["tool_calls"])
        return chunk

    def _finalize(self) -> None:
        response: dict[str, Any] | None = None
        try:
            complete = litellm.stream_chunk_builder(self._raw_chunks)
            if complete:
                response = _response_to_dict(complete, self._model)
        except Exception:
            logger.debug("stream_chunk_builder failed; using locally aggregated chunks", exc_info=True)
        if response is None:
            message: dict[str, Any] = {"role": "assistant", "content": "".join(self._texts)}
            if self._fragments:
                message["tool_calls"] = _merge_tool_call_fragments(self._fragments)
            response = {"model": self._model, "message": message, "done": True, "done_reason": "stop"}
        self._response = response
        if self._hooks and self._hooks.after_call:
            meta = dict(self._meta, latency_ms=round((time.monotonic() - self._started) * 1000.0, 1))
            self._hooks.after_call(response, meta)

    @property
    def response(self) -> dict[str, Any]:
        """The aggregated response. Available after the stream is fully consumed."""
        if self._response is None:
            raise RuntimeError("Stream not yet consumed. Iterate first.")
        return self._response


class ChatStream(_StreamAccumulator):
    """Sync stream of partial chat bodies, then ``.response``.

    Example::

        stream = client.stream_chat(messages)
        for chunk in stream:
            print(chunk["message"].get("content", ""), end="", flush=True)
        print(stream.response["message"]["content"])
    """

    def __init__(self, response_iter: Any, model: str, hooks: Hooks | None = None, meta: dict[str, Any] | None = None) -> None:
        super().__init__(model, hooks, meta or {})
        self._iter = iter(response_iter)

    def __iter__(self) -> Iterator[dict[str, Any]]:
        return self

    def __next__(self) -> dict[str, Any]:
        try:
            raw = next(self._iter)
        except StopIteration:
            self._finalize()
            raise
        except Exception as e:
            raise wrap_error(e, requested_model=self._model) from e
        return self._consume(raw)


class AsyncChatStream(_StreamAccumulator):
    """Async stream of partial chat bodies, then ``.response``."""

    def __init__(self, response_iter: Any, model: str, hooks: Hooks | None = None, meta: dict[str, Any] | None = None) -> None:
        super().__init__(model, hooks, meta or {})
        self._iter = response_iter

    def __aiter__(self) -> "AsyncChatStream":
        return self

    async def __anext__(self) -> dict[str, Any]:
        try:
            raw = await self._iter.__anext__()
        except StopAsyncIteration:
            self._finalize()
            raise
        except Exception as e:
            raise wrap_error(e, requested_model=self._model) from e
        return self._consume(raw)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class Client:
    """Chat / generate client bound to one Ollama server.

    Args:
        config: Server URL, default model, timeout, retries, sampling
            options. Defaults to ``ClientConfig.from_env()``.
        hooks: Observability hooks (before_call, after_call, on_error).
    """

    def __init__(self, config: ClientConfig | None = None, *, hooks: Hooks | None = None) -> None:
        self.config = config or ClientConfig.from_env()
        self.hooks = hooks

    # -- request building ------------------------------------------------

    def _call_kwargs(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str,
        provider: str,
        tools: list[dict[str, Any]] | None = None,
        format: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        options = dict(options or {})
        call_kwargs: dict[str, Any] = {
            "model": _provider_model(model, provider),
            "messages": _prepare_messages(messages),
            "api_base": self.config.base_url,
            "timeout": self.config.timeout,
            "temperature": options.pop("temperature", self.config.temperature),
            "top_p": options.pop("top_p", self.config.top_p),
            "num_ctx": options.pop("num_ctx", self.config.num_ctx),
            **options,
        }
        if tools:
            call_kwargs["tools"] = tools
        if format:
            call_kwargs["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "response", "schema": format, "strict": True},
            }
        return call_kwargs

    def _fire_before(self, model: str, messages: list[dict[str, Any]], kwargs: dict[str, Any]) -> None:
        if self.hooks and self.hooks.before_call:
            self.hooks.before_call(model, messages, kwargs)

    def _fire_after(self, response: dict[str, Any], meta: dict[str, Any]) -> None:
        if self.hooks and self.hooks.after_call:
            self.hooks.after_call(response, meta)

    def _fire_error(self, error: Exception, attempt: int) -> None:
        if self.hooks and self.hooks.on_error:
            self.hooks.on_error(error, attempt)

    # -- retry policy ----------------------------------------------------

    def _classify(self, error: Exception, model: str) -> LLMError:
        err = wrap_error(error, requested_model=model)
        if isinstance(err, LLMModelNotFoundError) and not err.suggestions:
            err = self._enhance_not_found(err)
        return err

    def _next_delay(self, err: LLMError, attempt: int, *, strict: bool, label: str) -> float | None:
        """Backoff before the next attempt, or None when *err* should surface as-is.

        Raises LLMRetryExhaustedError when retries are used up.
        """
        if isinstance(err, (LLMInvalidJSONError, LLMSchemaViolationError)):
            if strict:
                return None
        elif not is_retryable(err):
            return None
        if attempt >= self.config.retries:
            raise LLMRetryExhaustedError(
                f"Failed after {attempt + 1} attempts: {err}",
                attempts=attempt + 1,
                original=err,
            ) from err
        delay = exponential_backoff(attempt)
        logger.warning(
            "%s attempt %d/%d failed (retrying in %.1fs): %s",
            label, attempt + 1, self.config.retries + 1, delay, err,
        )
        return delay

    def _enhance_not_found(self, err: LLMModelNotFoundError) -> LLMModelNotFoundError:
        if not err.requested_model:
            return err
        try:
            available = self.list_models()
        except LLMError:
            return err
        return LLMModelNotFoundError(
            str(err.original or err),
            requested_model=err.requested_model,
            suggestions=_find_similar_models(err.requested_model, available),
            original=err.original,
        )

    # -- response post-processing ------------------------------------------

    @staticmethod
    def _check_format(response: dict[str, Any], format: dict[str, Any] | None) -> None:
        if not format:
            return
        content = response["message"].get("content")
        if not content:
            raise LLMSchemaViolationError("Empty or nil response when format schema is required")
        parsed = parse_json_response(content)
        if parsed is None or parsed in ({}, [], ""):
            raise LLMSchemaViolationError("Empty or nil response when format schema is required")
        validate(parsed, format)

    @staticmethod
    def _parse_structured(response: Any, schema: dict[str, Any]) -> Any:
        content = response.choices[0].message.content
        parsed = parse_json_response(content)
        # A schema was requested, so free text or an empty document is a failure.
        if parsed is None or parsed in ({}, [], ""):
            raise LLMSchemaViolationError("Empty or nil response when schema is required")
        validate(parsed, schema)
        return parsed

    # -- chat ---------------------------------------------------------------

    def chat(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        format: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
        strict: bool = False,
        stream: bool = False,
        on_chunk: ChunkCallback | None = None,
    ) -> dict[str, Any]:
        """Run one chat completion and return the full response body.

        Args:
            messages: Transcript in Ollama/OpenAI message format.
            tools: Tool definitions (``{"type": "function", "function": ...}``).
            model: Model name; defaults to ``config.model``.
            format: JSON schema the assistant content must satisfy.
            options: Sampling overrides (temperature, top_p, num_ctx, ...).
            strict: Surface JSON/schema failures immediately instead of retrying.
            stream: Request incremental delivery.
            on_chunk: Called synchronously with every partial chunk while
                streaming. Control decisions should use the return value.
        """
        model = model or self.config.model
        if stream or on_chunk is not None:
            for attempt in range(self.config.retries + 1):
                chat_stream = self.stream_chat(messages, tools=tools, model=model, options=options, format=format)
                for chunk in chat_stream:
                    if on_chunk is not None:
                        on_chunk(chunk)
                response = chat_stream.response
                try:
                    self._check_format(response, format)
                except LLMError as err:
                    delay = self._next_delay(err, attempt, strict=strict, label="chat")
                    if delay is None:
                        raise
                    time.sleep(delay)
                    continue
                return response
            raise AssertionError("unreachable")

        call_kwargs = self._call_kwargs(
            messages, model=model, provider=CHAT_PROVIDER, tools=tools, format=format, options=options,
        )
        for attempt in range(self.config.retries + 1):
            self._fire_before(model, messages, call_kwargs)
            started = time.monotonic()
            try:
                raw = litellm.completion(**call_kwargs)
                response = _response_to_dict(raw, model)
                self._check_format(response, format)
            except Exception as e:
                err = self._classify(e, model)
                self._fire_error(err, attempt)
                delay = self._next_delay(err, attempt, strict=strict, label="chat")
                if delay is None:
                    raise err from e
                time.sleep(delay)
                continue
            if attempt > 0:
                logger.info("chat succeeded after %d retries", attempt)
            self._fire_after(response, {
                "endpoint": "/api/chat",
                "model": model,
                "attempt": attempt + 1,
                "latency_ms": round((time.monotonic() - started) * 1000.0, 1),
            })
            return response
        raise AssertionError("unreachable")

    async def achat(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        format: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
        strict: bool = False,
        stream: bool = False,
        on_chunk: ChunkCallback | None = None,
    ) -> dict[str, Any]:
        """Async version of :meth:`chat`. ``on_chunk`` stays a plain callable."""
        model = model or self.config.model
        if stream or on_chunk is not None:
            for attempt in range(self.config.retries + 1):
                chat_stream = await self.astream_chat(messages, tools=tools, model=model, options=options, format=format)
                async for chunk in chat_stream:
                    if on_chunk is not None:
                        on_chunk(chunk)
                response = chat_stream.response
                try:
                    self._check_format(response, format)
                except LLMError as err:
                    delay = self._next_delay(err, attempt, strict=strict, label="achat")
                    if delay is None:
                        raise
                    await asyncio.sleep(delay)
                    continue
                return response
            raise AssertionError("unreachable")

        call_kwargs = self._call_kwargs(
            messages, model=model, provider=CHAT_PROVIDER, tools=tools, format=format, options=options,
        )
        for attempt in range(self.config.retries + 1):
            self._fire_before(model, messages, call_kwargs)
            started = time.monotonic()
            try:
                raw = await litellm.acompletion(**call_kwargs)
                response = _response_to_dict(raw, model)
                self._check_format(response, format)
            except Exception as e:
                err = self._classify(e, model)
                self._fire_error(err, attempt)
                delay = self._next_delay(err, attempt, strict=strict, label="achat")
                if delay is None:
                    raise err from e
                await asyncio.sleep(delay)
                continue
            if attempt > 0:
                logger.info("achat succeeded after %d retries", attempt)
            self._fire_after(response, {
                "endpoint": "/api/chat",
                "model": model,
                "attempt": attempt + 1,
                "latency_ms": round((time.monotonic() - started) * 1000.0, 1),
            })
            return response
        raise AssertionError("unreachable")

    # -- streaming ----------------------------------------------------------

    def stream_chat(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        format: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
    ) -> ChatStream:
        """Open a streaming chat completion.

        Retries on **pre-stream** errors only. Once chunks flow, a failure
        is raised to the consumer (retrying would mean re-emitting tokens).
        """
        model = model or self.config.model
        call_kwargs = self._call_kwargs(
            messages, model=model, provider=CHAT_PROVIDER, tools=tools, format=format, options=options,
        )
        call_kwargs["stream"] = True
        for attempt in range(self.config.retries + 1):
            self._fire_before(model, messages, call_kwargs)
            try:
                raw_iter = litellm.completion(**call_kwargs)
            except Exception as e:
                err = self._classify(e, model)
                self._fire_error(err, attempt)
                delay = self._next_delay(err, attempt, strict=True, label="stream_chat")
                if delay is None:
                    raise err from e
                time.sleep(delay)
                continue
            meta = {"endpoint": "/api/chat", "model": model, "attempt": attempt + 1, "stream": True}
            return ChatStream(raw_iter, model, hooks=self.hooks, meta=meta)
        raise AssertionError("unreachable")

    async def astream_chat(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        format: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
    ) -> AsyncChatStream:
        """Async version of :meth:`stream_chat`."""
        model = model or self.config.model
        call_kwargs = self._call_kwargs(
            messages, model=model, provider=CHAT_PROVIDER, tools=tools, format=format, options=options,
        )
        call_kwargs["stream"] = True
        for attempt in range(self.config.retries + 1):
            self._fire_before(model, messages, call_kwargs)
            try:
                raw_iter = await litellm.acompletion(**call_kwargs)
            except Exception as e:
                err = self._classify(e, model)
                self._fire_error(err, attempt)
                delay = self._next_delay(err, attempt, strict=True, label="astream_chat")
                if delay is None:
                    raise err from e
                await asyncio.sleep(delay)
                continue
            meta = {"endpoint": "/api/chat", "model": model, "attempt": attempt + 1, "stream": True}
            return AsyncChatStream(raw_iter, model, hooks=self.hooks, meta=meta)
        raise AssertionError("unreachable")

    # -- structured generation ----------------------------------------------

    def generate(
        self,
        prompt: str,
        *,
        schema: dict[str, Any],
        model: str | None = None,
        strict: bool | None = None,
    ) -> Any:
        """Ask for one JSON answer and return it parsed and schema-validated.

        Free text is never accepted: an empty or non-JSON answer is a
        failure (retried unless ``strict``, which defaults to
        ``config.strict_json``).
        """
        model = model or self.config.model
        strict = self.config.strict_json if strict is None else strict
        messages = [{"role": "user", "content": _enhance_prompt_for_json(prompt, schema)}]
        call_kwargs = self._call_kwargs(messages, model=model, provider=GENERATE_PROVIDER, format=schema)
        for attempt in range(self.config.retries + 1):
            self._fire_before(model, messages, call_kwargs)
            started = time.monotonic()
            try:
                raw = litellm.completion(**call_kwargs)
                parsed = self._parse_structured(raw, schema)
            except Exception as e:
                err = self._classify(e, model)
                self._fire_error(err, attempt)
                delay = self._next_delay(err, attempt, strict=strict, label="generate")
                if delay is None:
                    raise err from e
                time.sleep(delay)
                continue
            self._fire_after({"response": parsed}, {
                "endpoint": "/api/generate",
                "model": model,
                "attempt": attempt + 1,
                "latency_ms": round((time.monotonic() - started) * 1000.0, 1),
            })
            return parsed
        raise AssertionError("unreachable")

    async def agenerate(
        self,
        prompt: str,
        *,
        schema: dict[str, Any],
        model: str | None = None,
        strict: bool | None = None,
    ) -> Any:
        """Async version of :meth:`generate`."""
        model = model or self.config.model
        strict = self.config.strict_json if strict is None else strict
        messages = [{"role": "user", "content": _enhance_prompt_for_json(prompt, schema)}]
        call_kwargs = self._call_kwargs(messages, model=model, provider=GENERATE_PROVIDER, format=schema)
        for attempt in range(self.config.retries + 1):
            self._fire_before(model, messages, call_kwargs)
            started = time.monotonic()
            try:
                raw = await litellm.acompletion(**call_kwargs)
                parsed = self._parse_structured(raw, schema)
            except Exception as e:
                err = self._classify(e, model)
                self._fire_error(err, attempt)
                delay = self._next_delay(err, attempt, strict=strict, label="agenerate")
                if delay is None:
                    raise err from e
                await asyncio.sleep(delay)
                continue
            self._fire_after({"response": parsed}, {
                "endpoint": "/api/generate",
                "model": model,
                "attempt": attempt + 1,
                "latency_ms": round((time.monotonic() - started) * 1000.0, 1),
            })
            return parsed
        raise AssertionError("unreachable")

    def generate_strict(self, prompt: str, *, schema: dict[str, Any], model: str | None = None) -> Any:
        """``generate`` that never retries JSON or schema failures."""
        return self.generate(prompt, schema=schema, model=model, strict=True)

    # -- embeddings -----------------------------------------------------------

    def _embedding_kwargs(self, input: str | list[str], model: str) -> dict[str, Any]:
        return {
            "model": _provider_model(model, GENERATE_PROVIDER),
            "input": [input] if isinstance(input, str) else list(input),
            "api_base": self.config.base_url,
            "timeout": self.config.timeout,
        }

    def embed(self, input: str | list[str], *, model: str | None = None) -> list[float] | list[list[float]]:
        """Embedding vector for *input*.

        A single string gives one vector; a list gives one vector per item,
        in order. An empty vector means the model cannot embed and is never
        retried.
        """
        model = model or self.config.model
        call_kwargs = self._embedding_kwargs(input, model)
        for attempt in range(self.config.retries + 1):
            self._fire_before(model, [], call_kwargs)
            started = time.monotonic()
            try:
                raw = litellm.embedding(**call_kwargs)
                vectors = _extract_embeddings(raw, model)
            except Exception as e:
                err = self._classify(e, model)
                self._fire_error(err, attempt)
                delay = self._next_delay(err, attempt, strict=True, label="embed")
                if delay is None:
                    raise err from e
                time.sleep(delay)
                continue
            self._fire_after({"embeddings": vectors}, {
                "endpoint": "/api/embed",
                "model": model,
                "attempt": attempt + 1,
                "latency_ms": round((time.monotonic() - started) * 1000.0, 1),
            })
            return vectors[0] if isinstance(input, str) else vectors
        raise AssertionError("unreachable")

    async def aembed(self, input: str | list[str], *, model: str | None = None) -> list[float] | list[list[float]]:
        """Async version of :meth:`embed`."""
        model = model or self.config.model
        call_kwargs = self._embedding_kwargs(input, model)
        for attempt in range(self.config.retries + 1):
            self._fire_before(model, [], call_kwargs)
            started = time.monotonic()
            try:
                raw = await litellm.aembedding(**call_kwargs)
                vectors = _extract_embeddings(raw, model)
            except Exception as e:
                err = self._classify(e, model)
                self._fire_error(err, attempt)
                delay = self._next_delay(err, attempt, strict=True, label="aembed")
                if delay is None:
                    raise err from e
                await asyncio.sleep(delay)
                continue
            self._fire_after({"embeddings": vectors}, {
                "endpoint": "/api/embed",
                "model": model,
                "attempt": attempt + 1,
                "latency_ms": round((time.monotonic() - started) * 1000.0, 1),
            })
            return vectors[0] if isinstance(input, str) else vectors
        raise AssertionError("unreachable")

    # -- server checks --------------------------------------------------------

    def list_models(self) -> list[str]:
        """Names of the models installed on the server."""
        url = f"{self.config.base_url.rstrip('/')}/api/tags"
        try:
            res = httpx.get(url, timeout=self.config.timeout)
            res.raise_for_status()
            body = res.json()
        except ValueError as e:
            raise LLMInvalidJSONError(f"Failed to parse models response: {e}", original=e) from e
        except httpx.HTTPError as e:
            raise wrap_error(e) from e
        return [m["name"] for m in body.get("models") or [] if "name" in m]

    def health(self) -> bool:
        """True when the server answers its version endpoint."""
        url = f"{self.config.base_url.rstrip('/')}/api/version"
        try:
            res = httpx.get(url, timeout=self.config.timeout)
        except httpx.HTTPError as e:
            logger.debug("Health check against %s failed: %s", url, e)
            return False
        return res.is_success

    # -- model management -------------------------------------------------------

    def _api(
        self,
        method: str,
        path: str,
        *,
        payload: dict[str, Any] | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ) -> Any:
        """One REST call to the server; returns the decoded JSON body ({} when empty)."""
        url = f"{self.config.base_url.rstrip('/')}{path}"
        try:
            res = httpx.request(method, url, json=payload, timeout=timeout or self.config.timeout)
            res.raise_for_status()
            return res.json() if res.content else {}
        except ValueError as e:
            raise LLMInvalidJSONError(f"Failed to parse {path} response: {e}", original=e) from e
        except httpx.HTTPError as e:
            if model:
                raise self._classify(e, model) from e
            raise wrap_error(e) from e

    def show_model(self, model: str | None = None, *, verbose: bool = False) -> dict[str, Any]:
        """Model details from ``/api/show`` plus inferred ``capabilities``."""
        model = model or self.config.model
        payload: dict[str, Any] = {"model": model}
        if verbose:
            payload["verbose"] = True
        body = self._api("POST", "/api/show", payload=payload, model=model)
        info = dict(body)
        info["capabilities"] = detect_capabilities({**info, "name": model})
        return info

    def pull_model(self, model: str) -> bool:
        """Download *model* onto the server. Blocks until the pull finishes."""
        logger.info("Pulling model %s", model)
        self._api(
            "POST", "/api/pull",
            payload={"model": model, "stream": False},
            timeout=self.config.timeout * 10,
        )
        return True

    def delete_model(self, model: str) -> bool:
        """Remove *model* from the server."""
        self._api("DELETE", "/api/delete", payload={"model": model}, model=model)
        return True

    def copy_model(self, source: str, destination: str) -> bool:
        """Copy *source* to a new model named *destination*."""
        self._api("POST", "/api/copy", payload={"source": source, "destination": destination}, model=source)
        return True

    def list_running(self) -> list[dict[str, Any]]:
        """Models currently loaded in memory, each with inferred ``capabilities``."""
        body = self._api("GET", "/api/ps")
        running = []
        for entry in body.get("models") or []:
            info = dict(entry)
            info["capabilities"] = detect_capabilities(info)
            running.append(info)
        return running

    def version(self) -> str:
        """Server version string."""
        body = self._api("GET", "/api/version")
        return str(body.get("version", ""))
