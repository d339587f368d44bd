"""Structured error types for ollama_client.

Callers can catch specific error types instead of parsing raw litellm or
httpx exceptions:

    from ollama_client.errors import LLMHTTPError, StepBudgetExhaustedError

    try:
        answer = executor.run(system="...", user="...")
    except StepBudgetExhaustedError as e:
        # The model kept calling tools and never answered
        print(e.max_steps)
    except LLMHTTPError as e:
        if e.retryable:
            ...
"""

from __future__ import annotations

from typing import Any

# Status codes worth retrying. 501 and 504-599 usually mean a permanent
# server-side problem, 4xx other than 408/429 a bad request.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 429, 500, 502, 503})


class LLMError(Exception):
    """Base for all ollama_client errors."""

    def __init__(self, message: str, original: Exception | None = None) -> None:
        super().__init__(message)
        self.original = original


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class LLMTimeoutError(LLMError):
    """Server did not answer within the configured timeout. Retried."""


class LLMConnectionError(LLMError):
    """Server could not be reached at all. Retried."""


class LLMHTTPError(LLMError):
    """Non-success HTTP status from the inference (or MCP) server."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        original: Exception | None = None,
    ) -> None:
        super().__init__(message, original=original)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        # Unknown status: retry.
        if self.status_code is None:
            return True
        return self.status_code in RETRYABLE_STATUS_CODES


class LLMModelNotFoundError(LLMHTTPError):
    """Model doesn't exist on the server (404). Never retried."""

    def __init__(
        self,
        message: str = "Resource not found",
        *,
        requested_model: str | None = None,
        suggestions: list[str] | None = None,
        original: Exception | None = None,
    ) -> None:
        super().__init__(f"HTTP 404: {message}", 404, original=original)
        self.requested_model = requested_model
        self.suggestions = list(suggestions or [])

    @property
    def retryable(self) -> bool:
        return False

    def __str__(self) -> str:
        msg = super().__str__()
        if not self.requested_model or not self.suggestions:
            return msg
        listing = "\n".join(f"  - {m}" for m in self.suggestions)
        return f"{msg}\n\nModel '{self.requested_model}' not found. Did you mean one of these?\n{listing}"


class LLMInvalidJSONError(LLMError):
    """Response body or content could not be parsed as JSON."""


class LLMSchemaViolationError(LLMError):
    """Parsed JSON did not satisfy the requested JSON schema."""


class LLMRetryExhaustedError(LLMError):
    """All retry attempts failed. ``original`` holds the last failure."""

    def __init__(self, message: str, *, attempts: int, original: Exception | None = None) -> None:
        super().__init__(message, original=original)
        self.attempts = attempts


class LLMConfigurationError(LLMError):
    """Configuration file missing or unreadable."""


# ---------------------------------------------------------------------------
# Agent executor
# ---------------------------------------------------------------------------


class AgentError(LLMError):
    """Base for failures raised by the tool-calling executor."""


class ProtocolError(AgentError):
    """The model produced a tool call the executor cannot interpret."""


class MissingFunctionNameError(ProtocolError):
    """A tool call arrived without a resolvable function name."""

    def __init__(self, call: Any) -> None:
        super().__init__(f"Tool call missing function name: {call!r}")
        self.call = call


class InvalidArgumentsError(AgentError):
    """Tool-call argument text was not parseable JSON."""

    def __init__(self, parse_error: Exception, raw: str) -> None:
        super().__init__(
            f"Failed to parse tool arguments JSON: {parse_error}. Arguments: {raw!r}",
            original=parse_error,
        )
        self.parse_error = parse_error
        self.raw = raw


class UnknownToolError(AgentError):
    """The model asked for a tool that is not registered."""

    def __init__(self, tool_name: str, available: list[str]) -> None:
        self.tool_name = tool_name
        self.available = sorted(available)
        super().__init__(
            f"Tool '{tool_name}' not found. Available: {', '.join(self.available)}"
        )


class ToolInvocationError(AgentError):
    """The tool's callable rejected the supplied arguments."""

    def __init__(self, tool_name: str, arguments: dict[str, Any], reason: str) -> None:
        super().__init__(
            f"Tool invocation failed for '{tool_name}': {reason}. "
            f"Arguments provided: {arguments!r}. "
            "Ensure the tool call includes all required parameters."
        )
        self.tool_name = tool_name
        self.arguments = arguments
        self.reason = reason


class StepBudgetExhaustedError(AgentError):
    """The loop hit max_steps without a non-empty assistant answer."""

    def __init__(self, max_steps: int) -> None:
        super().__init__(
            f"Executor exceeded max_steps={max_steps} (possible infinite tool loop)"
        )
        self.max_steps = max_steps


# ---------------------------------------------------------------------------
# MCP
# ---------------------------------------------------------------------------


class MCPError(LLMError):
    """JSON-RPC level failure reported by an MCP server."""

    def __init__(self, message: str, code: int | None = None, original: Exception | None = None) -> None:
        super().__init__(message, original=original)
        self.code = code


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def _litellm_error_types(module: Any, names: tuple[str, ...]) -> tuple[type[BaseException], ...]:
    """Resolve optional litellm exception classes without static attribute coupling."""
    out: list[type[BaseException]] = []
    for name in names:
        candidate = getattr(module, name, None)
        if isinstance(candidate, type) and issubclass(candidate, BaseException):
            out.append(candidate)
    return tuple(out)


def _status_code_of(error: Exception) -> int | None:
    code = getattr(error, "status_code", None)
    if isinstance(code, int):
        return code
    response = getattr(error, "response", None)
    code = getattr(response, "status_code", None)
    return code if isinstance(code, int) else None


def classify_error(error: Exception) -> type[LLMError]:
    """Classify any exception into an LLMError subtype.

    Uses litellm / httpx exception types when available, then the HTTP
    status code, then falls back to string matching.
    """
    import httpx
    import litellm as _lt

    if isinstance(error, httpx.TimeoutException):
        return LLMTimeoutError
    if isinstance(error, httpx.HTTPStatusError):
        if error.response.status_code == 404:
            return LLMModelNotFoundError
        return LLMHTTPError
    if isinstance(error, httpx.RequestError):
        return LLMConnectionError

    timeout_types = _litellm_error_types(_lt, ("Timeout",))
    if timeout_types and isinstance(error, timeout_types):
        return LLMTimeoutError

    connection_types = _litellm_error_types(_lt, ("APIConnectionError",))
    if connection_types and isinstance(error, connection_types):
        return LLMConnectionError

    not_found_types = _litellm_error_types(_lt, ("NotFoundError",))
    if not_found_types and isinstance(error, not_found_types):
        return LLMModelNotFoundError

    if _status_code_of(error) is not None:
        return LLMHTTPError

    error_str = str(error).lower()
    if "timeout" in error_str or "timed out" in error_str:
        return LLMTimeoutError
    if any(p in error_str for p in ("connection refused", "connection error", "unreachable", "name or service")):
        return LLMConnectionError
    if "404" in error_str or "not found" in error_str:
        return LLMModelNotFoundError

    return LLMError


def wrap_error(error: Exception, *, requested_model: str | None = None) -> LLMError:
    """Wrap an exception in the appropriate LLMError subclass.

    If the error is already an LLMError, returns it unchanged.
    """
    if isinstance(error, LLMError):
        return error
    cls = classify_error(error)
    if cls is LLMModelNotFoundError:
        return LLMModelNotFoundError(str(error), requested_model=requested_model, original=error)
    if cls is LLMHTTPError:
        code = _status_code_of(error)
        return LLMHTTPError(f"HTTP {code}: {error}", code, original=error)
    return cls(str(error), original=error)


def is_retryable(error: Exception) -> bool:
    """Decide whether a (wrapped) transport error is worth another attempt."""
    if isinstance(error, LLMHTTPError):
        return error.retryable
    return isinstance(error, (LLMTimeoutError, LLMConnectionError))
