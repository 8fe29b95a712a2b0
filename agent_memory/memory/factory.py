"""Factory helpers for wiring up the memory engine from configuration."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from agent_memory.core.config import MemoryConfig
from agent_memory.core.exceptions import EngineError
from agent_memory.core.logger import get_logger

from .deduplicator import MemoryDeduplicator
from .extraction import Embedder, ExtractionCoordinator, LLMMemoryExtractor, MemoryExtractor
from .metrics import MemoryMetrics
from .service import MemoryService
from .short_term import ShortTermBuffer
from .storage import InMemoryMetadataStore, InMemoryVectorStore, MemoryRepository, SqliteMetadataStore

# Allow duplicated OpenMP runtimes (PyTorch/FAISS on macOS can each bundle libomp).
os.environ.setdefault("KMP_DUPLICATE_LIB_OK", "TRUE")


def create_embedder() -> Embedder:
    """Load the Qwen3 embedding model (imports torch/transformers on demand)."""
    from .embedding import QwenEmbeddingModel

    return QwenEmbeddingModel()


def create_memory_repository(
    config: MemoryConfig,
    *,
    embedder: Optional[Embedder] = None,
    database_path: Optional[str | Path] = None,
    index_path: Optional[str | Path] = None,
) -> MemoryRepository:
    """Build the repository for ``config.backend``.

    ``memory`` keeps everything in process; ``sqlite`` pairs a SQLite metadata
    store with a persisted FAISS index sized from the embedder.
    """
    logger = get_logger("MemoryRepositoryFactory")
    if config.backend == "memory":
        logger.debug("Initialising in-memory repository")
        return MemoryRepository(InMemoryMetadataStore(), InMemoryVectorStore())

    from .storage.vector_index import FaissVectorStore

    db_path = Path(database_path or config.database_path)
    faiss_path = Path(index_path or config.index_path)
    logger.debug("Initialising persistent repository", extra={"db_path": str(db_path), "index_path": str(faiss_path)})

    dimension = _embedding_dimension(embedder)
    return MemoryRepository(SqliteMetadataStore(db_path), FaissVectorStore(dimension, index_path=faiss_path))


def create_memory_service(
    config: Optional[MemoryConfig] = None,
    *,
    embedder: Optional[Embedder] = None,
    extractor: Optional[MemoryExtractor] = None,
    brain=None,  # noqa: ANN001 - AIBrain or any text generator
) -> MemoryService:
    """Create a fully wired MemoryService; missing collaborators are built from config."""
    config = config or MemoryConfig.load()
    embedder = embedder or create_embedder()

    if extractor is None:
        if brain is None:
            from agent_memory.ai_brain import AIBrain

            brain = AIBrain(config)
        extractor = LLMMemoryExtractor(brain)

    repository = create_memory_repository(config, embedder=embedder)
    metrics = MemoryMetrics()
    deduplicator = None
    if config.enable_conflict_resolution:
        deduplicator = MemoryDeduplicator(
            repository,
            similarity_threshold=config.conflict_similarity_threshold,
            strategy=config.conflict_strategy,
            brain=brain,
        )
    coordinator = ExtractionCoordinator(
        repository,
        extractor,
        embedder,
        config=config,
        metrics=metrics,
        deduplicator=deduplicator,
    )
    return MemoryService(repository, embedder, coordinator, config=config, metrics=metrics)


def create_short_term_buffer(
    config: Optional[MemoryConfig] = None,
    *,
    model: Optional[str] = None,
    brain=None,  # noqa: ANN001 - enables the rolling summary when given
) -> ShortTermBuffer:
    config = config or MemoryConfig()
    summarizer = None
    if brain is not None:
        from .summarizer import ConversationSummarizer

        summarizer = ConversationSummarizer(brain)
    if model:
        return ShortTermBuffer.for_model(
            model,
            max_messages=config.short_term_max_messages,
            ratio=config.context_ratio,
            summarizer=summarizer,
        )
    return ShortTermBuffer(
        max_messages=config.short_term_max_messages,
        max_tokens=config.short_term_max_tokens,
        summarizer=summarizer,
    )


def _embedding_dimension(embedder: Optional[Embedder]) -> int:
    if embedder is None:
        raise EngineError("A persistent backend needs an embedder to size the vector index.")
    dimension = getattr(embedder, "embedding_size", None)
    if dimension:
        return int(dimension)
    probe = embedder.embed(["dimension probe"])
    if not probe or not probe[0]:
        raise EngineError("Embedding model returned no vector for the dimension probe.")
    return len(probe[0])


__all__ = [
    "create_embedder",
    "create_memory_repository",
    "create_memory_service",
    "create_short_term_buffer",
]
