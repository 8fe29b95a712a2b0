"""Two-tier conversational memory: short-term buffer and namespaced long-term store."""

from .budget import ContextBudgetManager
from .conversation import Message, Role, ToolCall
from .decay import DecayCalculator, calculate_decay
from .deduplicator import ConflictStrategy, MemoryDeduplicator
from .extraction import (
    Embedder,
    ExtractionCoordinator,
    ExtractionReport,
    LLMMemoryExtractor,
    MemoryExtractor,
    SessionStatus,
)
from .memory_records import ExtractedMemory, MemoryRecord, MemoryType, ScoredMemory
from .metrics import MemoryMetrics
from .model_context import context_window
from .namespace import Namespace, NamespaceTemplate
from .retrieval import RetrievalEngine
from .search_filter import SearchFilter, SearchFilterBuilder
from .service import MemoryService, RecallOutcome
from .short_term import ShortTermBuffer, Summarizer
from .storage import (
    InMemoryMetadataStore,
    InMemoryVectorStore,
    MemoryRepository,
    MetadataStore,
    SqliteMetadataStore,
    VectorSearchResult,
    VectorStore,
)
from .summarizer import ConversationSummarizer

__all__ = [
    "ConflictStrategy",
    "ContextBudgetManager",
    "ConversationSummarizer",
    "DecayCalculator",
    "Embedder",
    "ExtractedMemory",
    "ExtractionCoordinator",
    "ExtractionReport",
    "InMemoryMetadataStore",
    "InMemoryVectorStore",
    "LLMMemoryExtractor",
    "MemoryDeduplicator",
    "MemoryExtractor",
    "MemoryMetrics",
    "MemoryRecord",
    "MemoryRepository",
    "MemoryService",
    "MemoryType",
    "Message",
    "MetadataStore",
    "Namespace",
    "NamespaceTemplate",
    "RecallOutcome",
    "RetrievalEngine",
    "Role",
    "ScoredMemory",
    "SearchFilter",
    "SearchFilterBuilder",
    "SessionStatus",
    "ShortTermBuffer",
    "SqliteMetadataStore",
    "Summarizer",
    "ToolCall",
    "VectorSearchResult",
    "VectorStore",
    "calculate_decay",
    "context_window",
]
