"""Typed runtime configuration for ollama_client."""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from ollama_client.errors import LLMConfigurationError

logger = logging.getLogger(__name__)

BASE_URL_ENV = "OLLAMA_BASE_URL"
MODEL_ENV = "OLLAMA_MODEL"
TIMEOUT_ENV = "OLLAMA_TIMEOUT"
RETRIES_ENV = "OLLAMA_RETRIES"
STRICT_JSON_ENV = "OLLAMA_STRICT_JSON"

DEFAULT_BASE_URL = "http://localhost:11434"
DEFAULT_MODEL = "llama3.1:8b"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class ClientConfig:
    """Runtime policy/config resolved once and passed explicitly through calls.

    Each ``Client`` holds its own instance, so concurrent agents never share
    a mutable settings object.
    """

    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    timeout: float = 30
    retries: int = 2
    strict_json: bool = True
    temperature: float = 0.2
    top_p: float = 0.9
    num_ctx: int = 8192

    def with_overrides(self, **changes: Any) -> "ClientConfig":
        """Return a copy with the given fields replaced."""
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Build typed config from environment variables, defaults elsewhere."""
        default = cls()
        timeout = _env_number(TIMEOUT_ENV, default.timeout, float)
        retries = _env_number(RETRIES_ENV, default.retries, int)

        strict_raw = os.environ.get(STRICT_JSON_ENV, "").strip().lower()
        if strict_raw in _TRUE:
            strict_json = True
        elif strict_raw in _FALSE:
            strict_json = False
        else:
            if strict_raw:
                logger.warning(
                    "Invalid %s=%r; expected on/off boolean. Defaulting to %s.",
                    STRICT_JSON_ENV,
                    strict_raw,
                    default.strict_json,
                )
            strict_json = default.strict_json

        return cls(
            base_url=os.environ.get(BASE_URL_ENV, DEFAULT_BASE_URL).rstrip("/"),
            model=os.environ.get(MODEL_ENV, DEFAULT_MODEL),
            timeout=timeout,
            retries=retries,
            strict_json=strict_json,
        )

    @classmethod
    def from_file(cls, path: str | Path) -> "ClientConfig":
        """Load configuration from a JSON or YAML file.

        Example YAML::

            base_url: http://localhost:11434
            model: llama3.1:8b
            timeout: 30
            retries: 3

        Unknown keys are ignored with a warning.
        """
        path = Path(path)
        try:
            text = path.read_text()
        except FileNotFoundError as e:
            raise LLMConfigurationError(f"Config file not found: {path}", original=e) from e

        try:
            if path.suffix.lower() in {".yaml", ".yml"}:
                data = yaml.safe_load(text) or {}
            else:
                data = json.loads(text)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise LLMConfigurationError(f"Failed to parse config {path}: {e}", original=e) from e

        if not isinstance(data, dict):
            raise LLMConfigurationError(f"Config {path} must contain a mapping, got {type(data).__name__}")

        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown config keys in %s: %s", path, ", ".join(unknown))
        return cls(**{k: v for k, v in data.items() if k in known})


def _env_number(name: str, default: Any, cast: type) -> Any:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        logger.warning("Invalid %s=%r; defaulting to %s.", name, raw, default)
        return default
