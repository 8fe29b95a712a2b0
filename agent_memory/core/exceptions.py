"""Custom exception hierarchy for the agent memory engine."""

from __future__ import annotations

from typing import Optional


class AgentMemoryError(Exception):
    """Base class for project-specific exceptions."""


class ConfigError(AgentMemoryError):
    """Raised when configuration loading or validation fails."""


class EngineError(AgentMemoryError):
    """Raised when an LLM or embedding collaborator cannot be set up or called."""


class StorageError(AgentMemoryError):
    """Raised when a metadata or vector backend rejects an operation."""


class ExtractionFailure(AgentMemoryError):
    """Raised when a chunk of conversation could not be turned into memories."""


class EmbeddingMismatch(ExtractionFailure):
    """Raised when the embedder returns a different number of vectors than requested."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Expected {expected} embeddings but received {actual}.")
        self.expected = expected
        self.actual = actual


class RecallDegraded(AgentMemoryError):
    """Returned alongside an empty recall when the query could not be embedded."""

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause
