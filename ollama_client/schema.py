"""JSON extraction and JSON-schema validation for structured outputs."""

from __future__ import annotations

import json as _json
import re
from typing import Any

import jsonschema

from ollama_client.errors import LLMInvalidJSONError, LLMSchemaViolationError


def any_json_schema() -> dict[str, Any]:
    """Permissive schema accepting any JSON value.

    Built fresh on every call so callers can never mutate a shared default.
    """
    return {
        "anyOf": [
            {"type": "object", "additionalProperties": True},
            {"type": "array"},
            {"type": "string"},
            {"type": "number"},
            {"type": "integer"},
            {"type": "boolean"},
            {"type": "null"},
        ]
    }


def validate(data: Any, schema: dict[str, Any]) -> None:
    """Validate *data* against *schema*, raising LLMSchemaViolationError."""
    try:
        jsonschema.validate(data, schema)
    except jsonschema.ValidationError as e:
        raise LLMSchemaViolationError(f"Schema validation failed: {e.message}", original=e) from e


def strip_fences(content: str) -> str:
    """Strip markdown code fences from LLM response content."""
    content = content.strip()
    content = re.sub(r"^```(?:json|python|xml|text)?\s*\n?", "", content)
    content = re.sub(r"\n?\s*```\s*$", "", content)
    return content.strip()


def extract_json_fragment(text: str | None) -> str:
    """Return the first complete JSON document found in *text*.

    Fast path: the whole (fence-stripped) body parses, primitives included.
    Otherwise scan from the first ``{`` or ``[`` to its matching closer,
    skipping over string literals.
    """
    if not text:
        raise LLMInvalidJSONError("Empty response body")

    stripped = strip_fences(text)
    try:
        _json.loads(stripped)
        return stripped
    except ValueError:
        pass

    match = re.search(r"[{\[]", text)
    if match is None:
        raise LLMInvalidJSONError(f"No JSON found in response. Response: {text[:200]}...")
    start = match.start()

    closers = {"{": "}", "[": "]"}
    stack: list[str] = []
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in closers:
            stack.append(closers[ch])
        elif ch in "}]":
            if not stack or stack.pop() != ch:
                raise LLMInvalidJSONError(f"Malformed JSON in response. Response: {text[start:start + 200]}...")
            if not stack:
                return text[start:i + 1]

    raise LLMInvalidJSONError(f"Incomplete JSON in response. Response: {text[start:start + 200]}...")


def parse_json_response(text: str | None) -> Any:
    """Extract and decode the JSON document embedded in a model response."""
    fragment = extract_json_fragment(text)
    try:
        return _json.loads(fragment)
    except _json.JSONDecodeError as e:
        raise LLMInvalidJSONError(
            f"Failed to parse extracted JSON: {e}. Extracted: {fragment[:200]}...",
            original=e,
        ) from e
