"""Configuration loader for the agent memory engine."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Optional

from dotenv import load_dotenv

from .exceptions import ConfigError

_TRUE_VALUES = ("true", "1", "yes")
_BACKENDS = ("memory", "sqlite")
_CONFLICT_STRATEGIES = ("newest_wins", "importance_based", "merge")


def _coerce_optional(value: Optional[str]) -> Optional[str]:
    """Return stripped value or ``None`` when the input is empty."""
    if value is None:
        return None
    stripped = value.strip()
    return stripped if stripped else None


def _normalise_gemini_model(value: Optional[str]) -> str:
    model = _coerce_optional(value) or "gemini-1.5-pro"
    if model.startswith("models/"):
        # google-generativeai expects the bare model name.
        model = model.split("/", 1)[1]
    return model


def _mask(value: Optional[str]) -> str:
    if not value:
        return "<empty>"
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:4]}***{value[-4:]}"


def _env_int(name: str, default: int, logger: logging.Logger) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer for %s=%r, defaulting to %s", name, raw, default)
        return default


def _env_float(name: str, default: float, logger: logging.Logger) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid number for %s=%r, defaulting to %s", name, raw, default)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUE_VALUES


@dataclass(frozen=True)
class MemoryConfig:
    """Immutable runtime configuration for both memory tiers."""

    # Extraction coordinator
    max_buffer_turns: int = 10
    max_buffer_tokens: int = 2000
    max_turns_per_extraction: int = 5
    max_tokens_per_message: int = 1000
    async_extraction: bool = True
    extract_on_session_end: bool = True
    extraction_timeout: float = 30.0
    extraction_workers: int = 4
    enable_conflict_resolution: bool = False
    conflict_similarity_threshold: float = 0.8
    conflict_strategy: str = "newest_wins"

    # Long-term retrieval
    enable_decay: bool = True
    decay_threshold: float = 0.1
    min_viable_decay: float = 0.01
    memory_budget_ratio: float = 0.2
    max_recall_records: int = 5

    # Short-term buffer
    short_term_max_messages: int = 20
    short_term_max_tokens: int = 4000
    context_ratio: float = 0.8

    # Backends and collaborators
    backend: str = "memory"
    database_path: str = "data/memory/memories.db"
    index_path: str = "data/memory/memory.index"
    gemini_api_key: Optional[str] = field(default=None, repr=False)
    gemini_model: str = "gemini-1.5-pro"
    log_level: str = "INFO"
    env_path: Optional[str] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        for name in ("max_buffer_turns", "max_buffer_tokens", "max_turns_per_extraction",
                     "max_tokens_per_message", "extraction_workers", "short_term_max_messages",
                     "short_term_max_tokens"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)!r}.")
        for name in ("memory_budget_ratio", "context_ratio"):
            value = getattr(self, name)
            if not 0.0 < value <= 1.0:
                raise ConfigError(f"{name} must be within (0, 1], got {value!r}.")
        for name in ("decay_threshold", "min_viable_decay", "conflict_similarity_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"{name} must be within [0, 1], got {value!r}.")
        if self.conflict_strategy not in _CONFLICT_STRATEGIES:
            raise ConfigError(
                f"Unsupported conflict strategy '{self.conflict_strategy}'. "
                f"Supported strategies: {', '.join(_CONFLICT_STRATEGIES)}."
            )
        if self.backend not in _BACKENDS:
            raise ConfigError(
                f"Unsupported MEMORY_BACKEND '{self.backend}'. Supported backends: {', '.join(_BACKENDS)}."
            )

    @classmethod
    def load(
        cls,
        env_file: Optional[Path | str] = None,
        *,
        override_env: Optional[MutableMapping[str, str]] = None,
    ) -> "MemoryConfig":
        """Load configuration from ``.env`` and the current environment."""
        env_path = Path(env_file) if env_file is not None else Path.cwd() / ".env"

        logger = logging.getLogger(__name__)
        env_path_str: Optional[str] = None

        if env_path.exists():
            load_dotenv(dotenv_path=env_path, override=True)
            logger.debug("Loaded .env file", extra={"env_path": str(env_path)})
            env_path_str = str(env_path)
        elif env_file is not None:
            logger.warning(
                "Specified .env file not found; using process environment only",
                extra={"env_path": str(env_path)},
            )

        if override_env:
            for key, value in override_env.items():
                os.environ[key] = value

        backend = (os.getenv("MEMORY_BACKEND") or "memory").strip().lower()
        raw_key = os.getenv("GEMINI_API_KEY")

        config = cls(
            max_buffer_turns=_env_int("MEMORY_MAX_BUFFER_TURNS", 10, logger),
            max_buffer_tokens=_env_int("MEMORY_MAX_BUFFER_TOKENS", 2000, logger),
            max_turns_per_extraction=_env_int("MEMORY_MAX_TURNS_PER_EXTRACTION", 5, logger),
            max_tokens_per_message=_env_int("MEMORY_MAX_TOKENS_PER_MESSAGE", 1000, logger),
            async_extraction=_env_bool("MEMORY_ASYNC_EXTRACTION", True),
            extract_on_session_end=_env_bool("MEMORY_EXTRACT_ON_SESSION_END", True),
            extraction_timeout=_env_float("MEMORY_EXTRACTION_TIMEOUT", 30.0, logger),
            extraction_workers=_env_int("MEMORY_EXTRACTION_WORKERS", 4, logger),
            enable_conflict_resolution=_env_bool("MEMORY_ENABLE_CONFLICT_RESOLUTION", False),
            conflict_similarity_threshold=_env_float("MEMORY_CONFLICT_SIMILARITY_THRESHOLD", 0.8, logger),
            conflict_strategy=(os.getenv("MEMORY_CONFLICT_STRATEGY") or "newest_wins").strip().lower(),
            enable_decay=_env_bool("MEMORY_ENABLE_DECAY", True),
            decay_threshold=_env_float("MEMORY_DECAY_THRESHOLD", 0.1, logger),
            min_viable_decay=_env_float("MEMORY_MIN_VIABLE_DECAY", 0.01, logger),
            memory_budget_ratio=_env_float("MEMORY_BUDGET_RATIO", 0.2, logger),
            max_recall_records=_env_int("MEMORY_MAX_RECALL_RECORDS", 5, logger),
            short_term_max_messages=_env_int("SHORT_TERM_MAX_MESSAGES", 20, logger),
            short_term_max_tokens=_env_int("SHORT_TERM_MAX_TOKENS", 4000, logger),
            context_ratio=_env_float("SHORT_TERM_CONTEXT_RATIO", 0.8, logger),
            backend=backend,
            database_path=os.getenv("MEMORY_STORE_PATH") or "data/memory/memories.db",
            index_path=os.getenv("MEMORY_INDEX_PATH") or "data/memory/memory.index",
            gemini_api_key=_coerce_optional(raw_key),
            gemini_model=_normalise_gemini_model(os.getenv("GEMINI_MODEL")),
            log_level=(_coerce_optional(os.getenv("LOG_LEVEL")) or "INFO").upper(),
            env_path=env_path_str,
        )

        logger.debug(
            "Environment variables resolved",
            extra={"gemini_api_key": _mask(raw_key), "backend": backend},
        )
        return config

    def as_dict(self) -> Mapping[str, Any]:
        """Expose configuration values for debugging, with the API key masked."""
        return {
            "max_buffer_turns": self.max_buffer_turns,
            "max_buffer_tokens": self.max_buffer_tokens,
            "max_turns_per_extraction": self.max_turns_per_extraction,
            "max_tokens_per_message": self.max_tokens_per_message,
            "async_extraction": self.async_extraction,
            "extract_on_session_end": self.extract_on_session_end,
            "extraction_timeout": self.extraction_timeout,
            "extraction_workers": self.extraction_workers,
            "enable_conflict_resolution": self.enable_conflict_resolution,
            "conflict_similarity_threshold": self.conflict_similarity_threshold,
            "conflict_strategy": self.conflict_strategy,
            "enable_decay": self.enable_decay,
            "decay_threshold": self.decay_threshold,
            "min_viable_decay": self.min_viable_decay,
            "memory_budget_ratio": self.memory_budget_ratio,
            "max_recall_records": self.max_recall_records,
            "short_term_max_messages": self.short_term_max_messages,
            "short_term_max_tokens": self.short_term_max_tokens,
            "context_ratio": self.context_ratio,
            "backend": self.backend,
            "database_path": self.database_path,
            "index_path": self.index_path,
            "gemini_api_key": _mask(self.gemini_api_key),
            "gemini_model": self.gemini_model,
            "log_level": self.log_level,
        }
