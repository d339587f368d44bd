"""Best-effort model capability detection from ``/api/show`` and ``/api/ps`` metadata.

The server does not report what a model can do, so capabilities are
inferred from the model family and name. Unknown models get all False.
"""

from __future__ import annotations

import re
from typing import Any

TOOLS_FAMILIES = frozenset({"llama", "qwen2", "qwen3", "qwen3vl", "command-r", "mistral", "gemma2"})
VISION_FAMILIES = frozenset({"llava", "clip", "qwen3vl", "mllama"})
EMBEDDING_FAMILIES = frozenset({"nomic-bert", "bert", "mxbai-embed-large"})

THINKING_PATTERNS = (re.compile(r"deepseek-r1"), re.compile(r"-r1"), re.compile(r"qwq"), re.compile(r"qwen3"))
VISION_PATTERNS = (re.compile(r"vision"), re.compile(r"vl"))
EMBEDDING_PATTERNS = (re.compile(r"embed"), re.compile(r"minilm"))


def _families(model_info: dict[str, Any]) -> set[str]:
    details = model_info.get("details") if isinstance(model_info.get("details"), dict) else {}
    families: set[str] = set()
    for source in (model_info, details):
        family = source.get("family")
        if isinstance(family, str) and family:
            families.add(family.lower())
        for fam in source.get("families") or []:
            if isinstance(fam, str):
                families.add(fam.lower())
    return families


def _name(model_info: dict[str, Any]) -> str:
    name = model_info.get("name") or model_info.get("model") or ""
    return str(name).lower()


def detect_capabilities(model_info: dict[str, Any] | None) -> dict[str, bool]:
    """Return ``{"tools", "thinking", "vision", "embeddings"}`` flags for a model."""
    if not isinstance(model_info, dict):
        return {"tools": False, "thinking": False, "vision": False, "embeddings": False}

    families = _families(model_info)
    name = _name(model_info)

    embeddings = bool(families & EMBEDDING_FAMILIES) or any(p.search(name) for p in EMBEDDING_PATTERNS)
    vision = bool(families & VISION_FAMILIES) or any(p.search(name) for p in VISION_PATTERNS)
    thinking = any(p.search(name) for p in THINKING_PATTERNS)
    # Code-completion models share the llama family but do not call tools.
    tools = bool(families & TOOLS_FAMILIES) and "codellama" not in name

    return {"tools": tools, "thinking": thinking, "vision": vision, "embeddings": embeddings}
