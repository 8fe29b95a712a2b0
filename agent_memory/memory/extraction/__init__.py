"""Conversation-to-memory extraction."""

from .coordinator import (
    ExtractionCoordinator,
    ExtractionReport,
    SessionStatus,
    count_user_turns,
    split_into_chunks,
)
from .extractor import Embedder, LLMMemoryExtractor, MemoryExtractor, TextGenerator

__all__ = [
    "Embedder",
    "ExtractionCoordinator",
    "ExtractionReport",
    "LLMMemoryExtractor",
    "MemoryExtractor",
    "SessionStatus",
    "TextGenerator",
    "count_user_turns",
    "split_into_chunks",
]
