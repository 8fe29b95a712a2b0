"""Storage backends for memory records.

``FaissVectorStore`` lives in ``storage.vector_index`` and is imported on
demand, so the in-memory and SQLite backends work without FAISS installed.
"""

from .base import MetadataStore, VectorSearchResult, VectorStore
from .in_memory_store import InMemoryMetadataStore, InMemoryVectorStore
from .repository import MemoryRepository
from .sqlite_store import SqliteMetadataStore

__all__ = [
    "InMemoryMetadataStore",
    "InMemoryVectorStore",
    "MemoryRepository",
    "MetadataStore",
    "SqliteMetadataStore",
    "VectorSearchResult",
    "VectorStore",
]
