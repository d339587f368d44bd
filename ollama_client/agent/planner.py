"""Single-shot structured planner: one prompt in, one validated JSON value out."""

from __future__ import annotations

import json as _json
from typing import Any

from ollama_client.schema import any_json_schema


class Planner:
    """Stateless wrapper around ``Client.generate`` with strict validation.

    No loop, no tools, nothing retained between calls. Schema defaults to
    ``any_json_schema()`` (any JSON value).
    """

    def __init__(
        self,
        client: Any,
        system_prompt: str | None = None,
        schema: dict[str, Any] | None = None,
    ) -> None:
        self.client = client
        self.system_prompt = system_prompt
        self.schema = schema

    def build_prompt(
        self,
        prompt: str,
        *,
        context: Any = None,
        system_prompt: str | None = None,
    ) -> str:
        system = system_prompt or self.system_prompt
        full_prompt = str(prompt)
        if system:
            full_prompt = f"{system}\n\n{full_prompt}"
        if context:
            full_prompt = f"{full_prompt}\n\nContext (JSON):\n{_json.dumps(context, indent=2)}"
        return full_prompt

    def _schema(self, schema: dict[str, Any] | None) -> dict[str, Any]:
        return schema or self.schema or any_json_schema()

    def run(
        self,
        prompt: str,
        *,
        context: Any = None,
        schema: dict[str, Any] | None = None,
        system_prompt: str | None = None,
    ) -> Any:
        """Return the parsed JSON answer to *prompt*.

        Raises LLMInvalidJSONError / LLMSchemaViolationError immediately
        (strict mode) and transport errors from the client.
        """
        full_prompt = self.build_prompt(prompt, context=context, system_prompt=system_prompt)
        return self.client.generate(full_prompt, schema=self._schema(schema), strict=True)

    async def arun(
        self,
        prompt: str,
        *,
        context: Any = None,
        schema: dict[str, Any] | None = None,
        system_prompt: str | None = None,
    ) -> Any:
        full_prompt = self.build_prompt(prompt, context=context, system_prompt=system_prompt)
        return await self.client.agenerate(full_prompt, schema=self._schema(schema), strict=True)
