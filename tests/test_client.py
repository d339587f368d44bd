"""Tests for ollama_client.client. All mock litellm (no real server calls)."""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from ollama_client.client import (
    ChatStream,
    Client,
    Hooks,
    _enhance_prompt_for_json,
    _find_similar_models,
    _merge_tool_call_fragments,
    _prepare_messages,
    exponential_backoff,
)
from ollama_client.config import ClientConfig
from ollama_client.errors import (
    LLMConnectionError,
    LLMError,
    LLMHTTPError,
    LLMInvalidJSONError,
    LLMModelNotFoundError,
    LLMRetryExhaustedError,
    LLMSchemaViolationError,
    LLMTimeoutError,
)

MESSAGES = [{"role": "user", "content": "Hi"}]


@pytest.fixture(autouse=True)
def _no_sleep():
    """Retries must not actually wait."""
    with patch("ollama_client.client.time.sleep"), patch("ollama_client.client.asyncio.sleep", new=AsyncMock()):
        yield


def _client(**overrides: Any) -> Client:
    return Client(ClientConfig(**overrides))


def _mock_response(
    content: str | None = "Hello!",
    tool_calls: list | None = None,
    finish_reason: str = "stop",
) -> MagicMock:
    """Build a mock litellm response."""
    mock = MagicMock()
    mock.choices = [MagicMock()]
    mock.choices[0].message.content = content
    mock.choices[0].message.tool_calls = tool_calls
    mock.choices[0].finish_reason = finish_reason
    return mock


def _mock_tool_call(name: str, arguments: str, call_id: str = "call_1") -> SimpleNamespace:
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


def _chunk(content: str | None = None, tool_calls: list | None = None, finish_reason: str | None = None) -> SimpleNamespace:
    delta = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)])


def _http_status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "http://localhost:11434/api/chat")
    return httpx.HTTPStatusError("boom", request=request, response=httpx.Response(code, request=request))


# ---------------------------------------------------------------------------
# chat
# ---------------------------------------------------------------------------


class TestChat:
    @patch("ollama_client.client.litellm.completion")
    def test_returns_ollama_shaped_body(self, mock_comp: MagicMock) -> None:
        mock_comp.return_value = _mock_response("Hello!")
        result = _client().chat(MESSAGES)

        assert result == {
            "model": "llama3.1:8b",
            "message": {"role": "assistant", "content": "Hello!"},
            "done": True,
            "done_reason": "stop",
        }

    @patch("ollama_client.client.litellm.completion")
    def test_routes_through_ollama_chat_provider(self, mock_comp: MagicMock) -> None:
        mock_comp.return_value = _mock_response()
        _client(base_url="http://gpu:11434", model="qwen2.5:7b").chat(MESSAGES)

        kwargs = mock_comp.call_args.kwargs
        assert kwargs["model"] == "ollama_chat/qwen2.5:7b"
        assert kwargs["api_base"] == "http://gpu:11434"
        assert kwargs["temperature"] == 0.2
        assert kwargs["num_ctx"] == 8192

    @patch("ollama_client.client.litellm.completion")
    def test_model_and_options_override(self, mock_comp: MagicMock) -> None:
        mock_comp.return_value = _mock_response()
        result = _client().chat(MESSAGES, model="mistral", options={"temperature": 0.9, "seed": 7})

        kwargs = mock_comp.call_args.kwargs
        assert kwargs["model"] == "ollama_chat/mistral"
        assert kwargs["temperature"] == 0.9
        assert kwargs["seed"] == 7
        assert result["model"] == "mistral"

    @patch("ollama_client.client.litellm.completion")
    def test_passes_tools_and_extracts_tool_calls(self, mock_comp: MagicMock) -> None:
        tools = [{"type": "function", "function": {"name": "ping", "description": "", "parameters": {}}}]
        mock_comp.return_value = _mock_response(
            None, tool_calls=[_mock_tool_call("ping", '{"a": 1}')], finish_reason="tool_calls",
        )
        result = _client().chat(MESSAGES, tools=tools)

        assert mock_comp.call_args.kwargs["tools"] == tools
        assert "content" not in result["message"]
        assert result["message"]["tool_calls"] == [
            {"id": "call_1", "type": "function", "function": {"name": "ping", "arguments": '{"a": 1}'}}
        ]
        assert result["done_reason"] == "tool_calls"

    @patch("ollama_client.client.litellm.completion")
    def test_format_validates_content(self, mock_comp: MagicMock) -> None:
        schema = {"type": "object", "required": ["n"], "properties": {"n": {"type": "integer"}}}
        mock_comp.return_value = _mock_response('{"n": 3}')
        result = _client().chat(MESSAGES, format=schema)

        assert json.loads(result["message"]["content"]) == {"n": 3}
        assert mock_comp.call_args.kwargs["response_format"]["json_schema"]["schema"] == schema

    @patch("ollama_client.client.litellm.completion")
    def test_format_violation_strict_raises_immediately(self, mock_comp: MagicMock) -> None:
        schema = {"type": "object", "required": ["n"]}
        mock_comp.return_value = _mock_response('{"m": 1}')

        with pytest.raises(LLMSchemaViolationError):
            _client(retries=3).chat(MESSAGES, format=schema, strict=True)
        assert mock_comp.call_count == 1

    @patch("ollama_client.client.litellm.completion")
    def test_format_violation_retried_when_not_strict(self, mock_comp: MagicMock) -> None:
        schema = {"type": "object", "required": ["n"]}
        mock_comp.side_effect = [_mock_response("not json"), _mock_response('{"n": 1}')]

        result = _client(retries=2).chat(MESSAGES, format=schema)
        assert json.loads(result["message"]["content"]) == {"n": 1}
        assert mock_comp.call_count == 2

    @patch("ollama_client.client.litellm.completion")
    def test_does_not_mutate_transcript(self, mock_comp: MagicMock) -> None:
        mock_comp.return_value = _mock_response()
        transcript = [
            {"role": "assistant", "content": "", "tool_calls": [{"function": {"name": "f", "arguments": {"a": 1}}}]},
        ]
        _client().chat(transcript)

        assert transcript[0]["tool_calls"][0]["function"]["arguments"] == {"a": 1}
        sent = mock_comp.call_args.kwargs["messages"][0]["tool_calls"][0]
        assert sent["function"]["arguments"] == '{"a": 1}'
        assert "id" not in sent
        assert sent["type"] == "function"


class TestAchat:
    @pytest.mark.asyncio
    @patch("ollama_client.client.litellm.acompletion")
    async def test_returns_body(self, mock_acomp: AsyncMock) -> None:
        mock_acomp.return_value = _mock_response("async hi")
        result = await _client().achat(MESSAGES)
        assert result["message"]["content"] == "async hi"

    @pytest.mark.asyncio
    @patch("ollama_client.client.litellm.acompletion")
    async def test_retries_transient_errors(self, mock_acomp: AsyncMock) -> None:
        mock_acomp.side_effect = [_http_status_error(503), _mock_response("recovered")]
        result = await _client(retries=2).achat(MESSAGES)
        assert result["message"]["content"] == "recovered"
        assert mock_acomp.call_count == 2


# ---------------------------------------------------------------------------
# Retries and errors
# ---------------------------------------------------------------------------


class TestRetryPolicy:
    @patch("ollama_client.client.litellm.completion")
    def test_timeout_retried_then_exhausted(self, mock_comp: MagicMock) -> None:
        mock_comp.side_effect = httpx.ReadTimeout("slow")

        with pytest.raises(LLMRetryExhaustedError) as exc_info:
            _client(retries=2).chat(MESSAGES)

        assert mock_comp.call_count == 3
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.original, LLMTimeoutError)

    @patch("ollama_client.client.litellm.completion")
    def test_connection_error_retried(self, mock_comp: MagicMock) -> None:
        mock_comp.side_effect = [httpx.ConnectError("refused"), _mock_response("ok")]
        assert _client(retries=1).chat(MESSAGES)["message"]["content"] == "ok"

    @pytest.mark.parametrize("status", [400, 401, 422, 501])
    @patch("ollama_client.client.litellm.completion")
    def test_non_retryable_status_raised_at_once(self, mock_comp: MagicMock, status: int) -> None:
        mock_comp.side_effect = _http_status_error(status)

        with pytest.raises(LLMHTTPError) as exc_info:
            _client(retries=3).chat(MESSAGES)

        assert exc_info.value.status_code == status
        assert mock_comp.call_count == 1

    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503])
    @patch("ollama_client.client.litellm.completion")
    def test_retryable_status(self, mock_comp: MagicMock, status: int) -> None:
        mock_comp.side_effect = [_http_status_error(status), _mock_response("ok")]
        assert _client(retries=1).chat(MESSAGES)["message"]["content"] == "ok"

    @patch("ollama_client.client.litellm.completion")
    def test_unclassified_error_not_retried(self, mock_comp: MagicMock) -> None:
        mock_comp.side_effect = RuntimeError("weird failure")
        with pytest.raises(Exception, match="weird failure"):
            _client(retries=3).chat(MESSAGES)
        assert mock_comp.call_count == 1

    @patch("ollama_client.client.httpx.get")
    @patch("ollama_client.client.litellm.completion")
    def test_model_not_found_gets_suggestions(self, mock_comp: MagicMock, mock_get: MagicMock) -> None:
        mock_comp.side_effect = _http_status_error(404)
        mock_get.return_value = httpx.Response(
            200,
            json={"models": [{"name": "llama3.1:8b"}, {"name": "llama3.2:3b"}, {"name": "qwen2.5:7b"}]},
            request=httpx.Request("GET", "http://localhost:11434/api/tags"),
        )

        with pytest.raises(LLMModelNotFoundError) as exc_info:
            _client(retries=3).chat(MESSAGES, model="llama3")

        assert exc_info.value.requested_model == "llama3"
        assert exc_info.value.suggestions == ["llama3.1:8b", "llama3.2:3b"]
        assert "Did you mean" in str(exc_info.value)
        assert mock_comp.call_count == 1

    def test_backoff_is_capped(self) -> None:
        for attempt in range(10):
            assert 0 < exponential_backoff(attempt) <= 8.0


class TestHooks:
    @patch("ollama_client.client.litellm.completion")
    def test_hooks_fire(self, mock_comp: MagicMock) -> None:
        before, after, on_error = MagicMock(), MagicMock(), MagicMock()
        mock_comp.side_effect = [httpx.ConnectError("down"), _mock_response("ok")]
        client = Client(ClientConfig(retries=1), hooks=Hooks(before_call=before, after_call=after, on_error=on_error))

        client.chat(MESSAGES)

        assert before.call_count == 2
        assert before.call_args.args[0] == "llama3.1:8b"
        on_error.assert_called_once()
        assert isinstance(on_error.call_args.args[0], LLMConnectionError)
        assert on_error.call_args.args[1] == 0
        response, meta = after.call_args.args
        assert response["message"]["content"] == "ok"
        assert meta["endpoint"] == "/api/chat"
        assert meta["attempt"] == 2


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class TestStreaming:
    @patch("ollama_client.client.litellm.stream_chunk_builder", return_value=None)
    @patch("ollama_client.client.litellm.completion")
    def test_stream_chat_yields_chunks_then_response(self, mock_comp: MagicMock, _builder: MagicMock) -> None:
        mock_comp.return_value = iter([_chunk("Hel"), _chunk("lo"), _chunk(None, finish_reason="stop")])
        stream = _client().stream_chat(MESSAGES)

        assert isinstance(stream, ChatStream)
        with pytest.raises(RuntimeError, match="Stream not yet consumed"):
            _ = stream.response

        texts = [c["message"].get("content") for c in stream]
        assert texts == ["Hel", "lo", None]
        assert stream.response["message"]["content"] == "Hello"
        assert mock_comp.call_args.kwargs["stream"] is True

    @patch("ollama_client.client.litellm.stream_chunk_builder", return_value=None)
    @patch("ollama_client.client.litellm.completion")
    def test_tool_call_fragments_aggregate(self, mock_comp: MagicMock, _builder: MagicMock) -> None:
        frag1 = SimpleNamespace(index=0, id="c1", function=SimpleNamespace(name="add", arguments='{"a": '))
        frag2 = SimpleNamespace(index=0, id=None, function=SimpleNamespace(name=None, arguments="1}"))
        mock_comp.return_value = iter([_chunk(tool_calls=[frag1]), _chunk(tool_calls=[frag2])])

        stream = _client().stream_chat(MESSAGES)
        chunks = list(stream)

        assert chunks[0]["message"]["tool_calls"][0]["function"]["name"] == "add"
        assert stream.response["message"]["tool_calls"] == [
            {"id": "c1", "type": "function", "function": {"name": "add", "arguments": '{"a": 1}'}}
        ]

    @patch("ollama_client.client.litellm.stream_chunk_builder")
    @patch("ollama_client.client.litellm.completion")
    def test_prefers_litellm_chunk_builder(self, mock_comp: MagicMock, mock_builder: MagicMock) -> None:
        mock_comp.return_value = iter([_chunk("x")])
        mock_builder.return_value = _mock_response("built by litellm")

        stream = _client().stream_chat(MESSAGES)
        list(stream)
        assert stream.response["message"]["content"] == "built by litellm"

    @patch("ollama_client.client.litellm.stream_chunk_builder", return_value=None)
    @patch("ollama_client.client.litellm.completion")
    def test_chat_with_on_chunk_callback(self, mock_comp: MagicMock, _builder: MagicMock) -> None:
        mock_comp.return_value = iter([_chunk("a"), _chunk("b")])
        seen: list[dict[str, Any]] = []

        result = _client().chat(MESSAGES, on_chunk=seen.append)

        assert [c["message"]["content"] for c in seen] == ["a", "b"]
        assert result["message"]["content"] == "ab"

    @patch("ollama_client.client.litellm.completion")
    def test_mid_stream_failure_is_wrapped(self, mock_comp: MagicMock) -> None:
        def broken():  # type: ignore[no-untyped-def]
            yield _chunk("partial")
            raise httpx.ReadTimeout("dropped")

        mock_comp.return_value = broken()
        stream = _client().stream_chat(MESSAGES)

        with pytest.raises(LLMTimeoutError):
            list(stream)

    @pytest.mark.asyncio
    @patch("ollama_client.client.litellm.stream_chunk_builder", return_value=None)
    @patch("ollama_client.client.litellm.acompletion")
    async def test_astream_chat(self, mock_acomp: AsyncMock, _builder: MagicMock) -> None:
        async def agen():  # type: ignore[no-untyped-def]
            for piece in ("as", "ync"):
                yield _chunk(piece)

        mock_acomp.return_value = agen()
        stream = await _client().astream_chat(MESSAGES)
        pieces = [c["message"]["content"] async for c in stream]

        assert pieces == ["as", "ync"]
        assert stream.response["message"]["content"] == "async"


# ---------------------------------------------------------------------------
# generate
# ---------------------------------------------------------------------------


class TestGenerate:
    @patch("ollama_client.client.litellm.completion")
    def test_returns_parsed_json(self, mock_comp: MagicMock) -> None:
        schema = {"type": "object", "required": ["steps"], "properties": {"steps": {"type": "array"}}}
        mock_comp.return_value = _mock_response('Sure! {"steps": ["a", "b"]}')

        assert _client().generate("Plan it", schema=schema) == {"steps": ["a", "b"]}
        kwargs = mock_comp.call_args.kwargs
        assert kwargs["model"] == "ollama/llama3.1:8b"
        assert "CRITICAL" in kwargs["messages"][0]["content"]

    @patch("ollama_client.client.litellm.completion")
    def test_strict_invalid_json_not_retried(self, mock_comp: MagicMock) -> None:
        mock_comp.return_value = _mock_response("no json here")
        with pytest.raises(LLMInvalidJSONError):
            _client(retries=3).generate("x", schema={"type": "object"}, strict=True)
        assert mock_comp.call_count == 1

    @patch("ollama_client.client.litellm.completion")
    def test_strict_defaults_to_config(self, mock_comp: MagicMock) -> None:
        mock_comp.return_value = _mock_response("{}")
        with pytest.raises(LLMSchemaViolationError):
            _client(retries=3, strict_json=True).generate("x", schema={"type": "object"})
        assert mock_comp.call_count == 1

    @patch("ollama_client.client.litellm.completion")
    def test_lenient_retries_until_valid(self, mock_comp: MagicMock) -> None:
        mock_comp.side_effect = [_mock_response("[]"), _mock_response("[1]")]
        result = _client(retries=2, strict_json=False).generate("x", schema={"type": "array"})
        assert result == [1]

    @patch("ollama_client.client.litellm.completion")
    def test_lenient_exhaustion(self, mock_comp: MagicMock) -> None:
        mock_comp.return_value = _mock_response("nope")
        with pytest.raises(LLMRetryExhaustedError):
            _client(retries=1).generate("x", schema={"type": "object"}, strict=False)
        assert mock_comp.call_count == 2

    @pytest.mark.asyncio
    @patch("ollama_client.client.litellm.acompletion")
    async def test_agenerate(self, mock_acomp: AsyncMock) -> None:
        mock_acomp.return_value = _mock_response('"just a string"')
        assert await _client().agenerate("x", schema={"type": "string"}) == "just a string"

    def test_prompt_left_alone_when_json_mentioned(self) -> None:
        assert _enhance_prompt_for_json("Return JSON please", {"type": "object"}) == "Return JSON please"

    def test_prompt_lists_required_fields(self) -> None:
        schema = {"type": "object", "required": ["name"], "properties": {"name": {"type": "string"}}}
        prompt = _enhance_prompt_for_json("Describe a cat", schema)
        assert '"name"' in prompt
        assert prompt.startswith("Describe a cat")


# ---------------------------------------------------------------------------
# Server checks and helpers
# ---------------------------------------------------------------------------


class TestServerChecks:
    @patch("ollama_client.client.httpx.get")
    def test_list_models(self, mock_get: MagicMock) -> None:
        mock_get.return_value = httpx.Response(
            200,
            json={"models": [{"name": "a:1"}, {"name": "b:2"}]},
            request=httpx.Request("GET", "http://localhost:11434/api/tags"),
        )
        assert _client().list_models() == ["a:1", "b:2"]
        assert mock_get.call_args.args[0] == "http://localhost:11434/api/tags"

    @patch("ollama_client.client.httpx.get", side_effect=httpx.ConnectError("refused"))
    def test_list_models_connection_error(self, _get: MagicMock) -> None:
        with pytest.raises(LLMConnectionError):
            _client().list_models()

    @patch("ollama_client.client.httpx.get")
    def test_health_true(self, mock_get: MagicMock) -> None:
        mock_get.return_value = httpx.Response(
            200, json={"version": "0.5.1"}, request=httpx.Request("GET", "http://localhost:11434/api/version"),
        )
        assert _client().health() is True

    @patch("ollama_client.client.httpx.get", side_effect=httpx.ConnectError("refused"))
    def test_health_false_when_unreachable(self, _get: MagicMock) -> None:
        assert _client().health() is False


# ---------------------------------------------------------------------------
# embeddings
# ---------------------------------------------------------------------------


def _embedding_response(*vectors: list[float]) -> SimpleNamespace:
    return SimpleNamespace(data=[{"object": "embedding", "index": i, "embedding": v} for i, v in enumerate(vectors)])


class TestEmbed:
    @patch("ollama_client.client.litellm.embedding")
    def test_single_text_returns_one_vector(self, mock_embed: MagicMock) -> None:
        mock_embed.return_value = _embedding_response([0.1, 0.2, 0.3])
        vector = _client(model="nomic-embed-text").embed("hello")
        assert vector == [0.1, 0.2, 0.3]
        kwargs = mock_embed.call_args.kwargs
        assert kwargs["model"] == "ollama/nomic-embed-text"
        assert kwargs["input"] == ["hello"]
        assert kwargs["api_base"] == "http://localhost:11434"

    @patch("ollama_client.client.litellm.embedding")
    def test_batch_keeps_input_order(self, mock_embed: MagicMock) -> None:
        mock_embed.return_value = _embedding_response([1.0], [2.0])
        assert _client().embed(["a", "b"], model="mxbai-embed-large") == [[1.0], [2.0]]

    @patch("ollama_client.client.litellm.embedding")
    def test_empty_vector_names_pull_hint(self, mock_embed: MagicMock) -> None:
        mock_embed.return_value = _embedding_response([])
        with pytest.raises(LLMError, match="ollama pull llama3.1:8b"):
            _client(model="llama3.1:8b").embed("hello")
        assert mock_embed.call_count == 1

    @patch("ollama_client.client.litellm.embedding")
    def test_missing_vector_is_an_error(self, mock_embed: MagicMock) -> None:
        mock_embed.return_value = SimpleNamespace(data=[{"object": "embedding"}])
        with pytest.raises(LLMError, match="Embedding not found"):
            _client().embed("hello")

    @patch("ollama_client.client.litellm.embedding")
    def test_retries_transient_failure(self, mock_embed: MagicMock) -> None:
        mock_embed.side_effect = [httpx.ConnectError("refused"), _embedding_response([0.5])]
        assert _client(retries=2).embed("hello") == [0.5]
        assert mock_embed.call_count == 2

    @pytest.mark.asyncio
    @patch("ollama_client.client.litellm.aembedding", new_callable=AsyncMock)
    async def test_async(self, mock_embed: AsyncMock) -> None:
        mock_embed.return_value = _embedding_response([0.25, 0.75])
        assert await _client().aembed("hello") == [0.25, 0.75]


# ---------------------------------------------------------------------------
# model management
# ---------------------------------------------------------------------------


def _api_response(method: str, path: str, code: int = 200, **kwargs: Any) -> httpx.Response:
    return httpx.Response(code, request=httpx.Request(method, f"http://localhost:11434{path}"), **kwargs)


class TestModelManagement:
    @patch("ollama_client.client.httpx.request")
    def test_show_model_adds_capabilities(self, mock_request: MagicMock) -> None:
        mock_request.return_value = _api_response(
            "POST", "/api/show", json={"details": {"family": "llama", "families": ["llama"]}},
        )
        info = _client().show_model("llama3.1:8b")
        assert info["capabilities"] == {"tools": True, "thinking": False, "vision": False, "embeddings": False}
        assert mock_request.call_args.args == ("POST", "http://localhost:11434/api/show")
        assert mock_request.call_args.kwargs["json"] == {"model": "llama3.1:8b"}

    @patch("ollama_client.client.httpx.request")
    def test_show_model_verbose(self, mock_request: MagicMock) -> None:
        mock_request.return_value = _api_response("POST", "/api/show", json={})
        _client().show_model("qwen3:8b", verbose=True)
        assert mock_request.call_args.kwargs["json"] == {"model": "qwen3:8b", "verbose": True}

    @patch("ollama_client.client.httpx.get")
    @patch("ollama_client.client.httpx.request")
    def test_show_missing_model_suggests_installed(self, mock_request: MagicMock, mock_get: MagicMock) -> None:
        mock_request.return_value = _api_response("POST", "/api/show", 404, json={"error": "model not found"})
        mock_get.return_value = _api_response("GET", "/api/tags", json={"models": [{"name": "llama3.1:8b"}]})
        with pytest.raises(LLMModelNotFoundError) as exc_info:
            _client().show_model("llama3.1")
        assert exc_info.value.requested_model == "llama3.1"
        assert exc_info.value.suggestions == ["llama3.1:8b"]

    @patch("ollama_client.client.httpx.request")
    def test_pull_waits_longer(self, mock_request: MagicMock) -> None:
        mock_request.return_value = _api_response("POST", "/api/pull", json={"status": "success"})
        assert _client(timeout=30.0).pull_model("nomic-embed-text") is True
        assert mock_request.call_args.kwargs["json"] == {"model": "nomic-embed-text", "stream": False}
        assert mock_request.call_args.kwargs["timeout"] == 300.0

    @patch("ollama_client.client.httpx.request")
    def test_delete_and_copy(self, mock_request: MagicMock) -> None:
        mock_request.return_value = _api_response("DELETE", "/api/delete")
        client = _client()
        assert client.delete_model("old:1b") is True
        assert mock_request.call_args.args[0] == "DELETE"
        assert client.copy_model("llama3.1:8b", "mine:latest") is True
        assert mock_request.call_args.kwargs["json"] == {"source": "llama3.1:8b", "destination": "mine:latest"}

    @patch("ollama_client.client.httpx.request")
    def test_list_running_and_version(self, mock_request: MagicMock) -> None:
        mock_request.side_effect = [
            _api_response("GET", "/api/ps", json={"models": [{"name": "nomic-embed-text:latest", "details": {"family": "nomic-bert"}}]}),
            _api_response("GET", "/api/version", json={"version": "0.6.2"}),
        ]
        client = _client()
        running = client.list_running()
        assert running[0]["capabilities"]["embeddings"] is True
        assert client.version() == "0.6.2"

    @patch("ollama_client.client.httpx.request")
    def test_invalid_json_body(self, mock_request: MagicMock) -> None:
        mock_request.return_value = _api_response("GET", "/api/version", content=b"<html>")
        with pytest.raises(LLMInvalidJSONError):
            _client().version()

    @patch("ollama_client.client.httpx.request")
    def test_server_error_is_http_error(self, mock_request: MagicMock) -> None:
        mock_request.return_value = _api_response("GET", "/api/ps", 500, json={"error": "boom"})
        with pytest.raises(LLMHTTPError) as exc_info:
            _client().list_running()
        assert exc_info.value.status_code == 500


class TestHelpers:
    def test_prepare_messages_keeps_string_arguments(self) -> None:
        msgs = [{"role": "assistant", "content": "", "tool_calls": [
            {"id": "x", "type": "function", "function": {"name": "f", "arguments": '{"a": 1}'}},
        ]}]
        assert _prepare_messages(msgs) == msgs

    def test_prepare_messages_invents_no_tool_call_ids(self) -> None:
        msgs = [
            {"role": "assistant", "content": "", "tool_calls": [
                {"function": {"name": "f", "arguments": {}}},
                {"function": {"name": "g", "arguments": {}}},
            ]},
            {"role": "tool", "content": "r", "name": "f"},
        ]
        prepared = _prepare_messages(msgs)
        assert all("id" not in call for call in prepared[0]["tool_calls"])
        assert prepared[1] == {"role": "tool", "content": "r", "name": "f"}

    def test_merge_fragments_by_index(self) -> None:
        merged = _merge_tool_call_fragments([
            {"index": 0, "id": "a", "function": {"name": "f", "arguments": "{"}},
            {"index": 1, "id": "b", "function": {"name": "g", "arguments": "{}"}},
            {"index": 0, "id": None, "function": {"name": None, "arguments": "}"}},
        ])
        assert [m["function"]["arguments"] for m in merged] == ["{}", "{}"]
        assert [m["id"] for m in merged] == ["a", "b"]

    def test_find_similar_models(self) -> None:
        available = ["llama3.1:8b", "mistral:7b", "codellama:13b"]
        assert _find_similar_models("llama", available) == ["llama3.1:8b", "codellama:13b"]
        assert _find_similar_models("zzz", available) == []
