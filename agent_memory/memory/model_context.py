"""Context-window sizes for common chat models."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional

DEFAULT_MAX_INPUT_TOKENS = 128000
DEFAULT_MAX_OUTPUT_TOKENS = 4096

_PROVIDER_PREFIXES = ("models/", "azure/", "openai/", "anthropic/", "bedrock/", "gemini/", "vertex_ai/")
_DATE_SUFFIX = re.compile(r"-\d{4}-\d{2}-\d{2}$")
_CHANNEL_SUFFIX = re.compile(r"-(preview|beta|latest|exp)$")


@dataclass(frozen=True, slots=True)
class ModelInfo:
    max_input_tokens: int
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS


_MODELS: Dict[str, ModelInfo] = {
    "gpt-4o": ModelInfo(128000, 16384),
    "gpt-4o-mini": ModelInfo(128000, 16384),
    "gpt-4-turbo": ModelInfo(128000, 4096),
    "gpt-4": ModelInfo(8192, 4096),
    "gpt-4.1": ModelInfo(1047576, 32768),
    "gpt-4.1-mini": ModelInfo(1047576, 32768),
    "gpt-3.5-turbo": ModelInfo(16385, 4096),
    "o1": ModelInfo(200000, 100000),
    "o3-mini": ModelInfo(200000, 100000),
    "claude-3-5-sonnet": ModelInfo(200000, 8192),
    "claude-3-5-haiku": ModelInfo(200000, 8192),
    "claude-3-opus": ModelInfo(200000, 4096),
    "gemini-1.5-pro": ModelInfo(2097152, 8192),
    "gemini-1.5-flash": ModelInfo(1048576, 8192),
    "gemini-2.0-flash": ModelInfo(1048576, 8192),
    "gemini-2.5-pro": ModelInfo(1048576, 65535),
    "gemini-2.5-flash": ModelInfo(1048576, 65535),
}


def find_model_info(model: Optional[str]) -> Optional[ModelInfo]:
    """Look ``model`` up exactly, then without a provider prefix, then by its base name."""
    if not model:
        return None
    name = model.strip().lower()
    if name in _MODELS:
        return _MODELS[name]
    for prefix in _PROVIDER_PREFIXES:
        if name.startswith(prefix):
            name = name[len(prefix):]
            if name in _MODELS:
                return _MODELS[name]
            break
    base = _CHANNEL_SUFFIX.sub("", _DATE_SUFFIX.sub("", name))
    return _MODELS.get(base)


def context_window(model: Optional[str]) -> int:
    info = find_model_info(model)
    return info.max_input_tokens if info else DEFAULT_MAX_INPUT_TOKENS


def max_output_tokens(model: Optional[str]) -> int:
    info = find_model_info(model)
    return info.max_output_tokens if info else DEFAULT_MAX_OUTPUT_TOKENS


__all__ = [
    "DEFAULT_MAX_INPUT_TOKENS",
    "DEFAULT_MAX_OUTPUT_TOKENS",
    "ModelInfo",
    "context_window",
    "find_model_info",
    "max_output_tokens",
]
