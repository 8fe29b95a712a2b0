"""Core utilities shared across the memory engine."""

from .config import MemoryConfig
from .exceptions import (
    AgentMemoryError,
    ConfigError,
    EmbeddingMismatch,
    EngineError,
    ExtractionFailure,
    RecallDegraded,
    StorageError,
)
from .logger import get_logger, setup_logging

__all__ = [
    "AgentMemoryError",
    "ConfigError",
    "EmbeddingMismatch",
    "EngineError",
    "ExtractionFailure",
    "MemoryConfig",
    "RecallDegraded",
    "StorageError",
    "get_logger",
    "setup_logging",
]
