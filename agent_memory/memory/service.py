"""High-level facade for long-term memory capture, recall and upkeep."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence

from agent_memory.core.config import MemoryConfig
from agent_memory.core.exceptions import RecallDegraded
from agent_memory.core.logger import get_logger

from .budget import ContextBudgetManager
from .conversation import Message
from .extraction.coordinator import ExtractionCoordinator
from .extraction.extractor import Embedder
from .memory_records import MemoryRecord, MemoryType, ScoredMemory
from .metrics import MemoryMetrics
from .namespace import Namespace, common_ancestors
from .retrieval import RetrievalEngine
from .search_filter import SearchFilter
from .storage import MemoryRepository


@dataclass(slots=True)
class RecallOutcome:
    """Recall result; ``degraded`` is set when the query could not be embedded."""

    hits: List[ScoredMemory] = field(default_factory=list)
    degraded: Optional[RecallDegraded] = None

    @property
    def records(self) -> List[MemoryRecord]:
        return [hit.record for hit in self.hits]

    @property
    def is_degraded(self) -> bool:
        return self.degraded is not None


class MemoryService:
    """Bundles repository, retrieval and extraction for use by an agent runtime.

    Recall never raises because the embedder is down: it logs, returns no
    memories and lets :meth:`recall_detailed` callers see the degradation.
    """

    def __init__(
        self,
        repository: MemoryRepository,
        embedder: Embedder,
        coordinator: ExtractionCoordinator,
        *,
        config: Optional[MemoryConfig] = None,
        retrieval: Optional[RetrievalEngine] = None,
        budget_manager: Optional[ContextBudgetManager] = None,
        metrics: Optional[MemoryMetrics] = None,
    ) -> None:
        self._config = config or MemoryConfig()
        self._repository = repository
        self._embedder = embedder
        self._coordinator = coordinator
        self._retrieval = retrieval or RetrievalEngine(
            repository.metadata_store,
            repository.vector_store,
            min_viable_decay=self._config.min_viable_decay,
            enable_decay=self._config.enable_decay,
        )
        self._budget = budget_manager or ContextBudgetManager(
            memory_budget_ratio=self._config.memory_budget_ratio,
        )
        self._metrics = metrics or MemoryMetrics()
        self._logger = get_logger(self.__class__.__name__)

    @property
    def repository(self) -> MemoryRepository:
        return self._repository

    @property
    def coordinator(self) -> ExtractionCoordinator:
        return self._coordinator

    @property
    def metrics(self) -> MemoryMetrics:
        return self._metrics

    # --------------------------------------------------------------- capture

    def remember(
        self,
        namespace: Namespace,
        content: str,
        *,
        type: MemoryType = MemoryType.FACT,
        importance: Optional[float] = None,
        session_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> MemoryRecord:
        """Store a memory directly (outside extraction), embedding it first."""
        record = MemoryRecord.create(
            namespace,
            content,
            type=type,
            importance=importance,
            session_id=session_id,
            metadata={"source": "api", **(metadata or {})},
        )
        embeddings = self._embedder.embed([record.content])
        self._repository.save_all([record], embeddings)
        return record

    def on_message(self, namespace: Namespace, session_id: Optional[str], message: Message) -> None:
        self._coordinator.on_message(namespace, session_id, message)

    def flush(self, namespace: Namespace, session_id: Optional[str]) -> None:
        self._coordinator.flush(namespace, session_id)

    def end_session(self, namespace: Namespace, session_id: Optional[str]) -> bool:
        return self._coordinator.on_session_end(namespace, session_id)

    # ---------------------------------------------------------------- recall

    def recall(
        self,
        namespace: Namespace,
        query: str,
        *,
        top_k: Optional[int] = None,
        search_filter: Optional[SearchFilter] = None,
        types: Optional[Iterable[MemoryType]] = None,
    ) -> List[MemoryRecord]:
        return self.recall_detailed(
            namespace, query, top_k=top_k, search_filter=search_filter, types=types
        ).records

    def recall_detailed(
        self,
        namespace: Namespace,
        query: str,
        *,
        top_k: Optional[int] = None,
        search_filter: Optional[SearchFilter] = None,
        types: Optional[Iterable[MemoryType]] = None,
    ) -> RecallOutcome:
        return self._recall([namespace], query, top_k, self._merge_filter(search_filter, types))

    def recall_hierarchical(
        self,
        namespace: Namespace,
        query: str,
        *,
        top_k: Optional[int] = None,
        search_filter: Optional[SearchFilter] = None,
    ) -> RecallOutcome:
        """Recall from ``namespace`` and each enclosing namespace, merged by score."""
        return self._recall(list(common_ancestors(namespace)), query, top_k, search_filter)

    def recall_with_budget(
        self,
        namespace: Namespace,
        query: str,
        *,
        current_messages: Sequence[Message] = (),
        system_prompt: Optional[str] = None,
        search_filter: Optional[SearchFilter] = None,
    ) -> List[MemoryRecord]:
        budget = self._budget.calculate_available_budget(current_messages, system_prompt)
        records = self.recall(namespace, query, search_filter=search_filter)
        return self._budget.select_within_budget(records, budget)

    def format_as_context(self, records: Sequence[MemoryRecord]) -> str:
        return self._budget.format_memory_content(records)

    # ---------------------------------------------------------------- upkeep

    def forget(self, record_id: str) -> bool:
        return self._repository.delete(record_id)

    def forget_namespace(self, namespace: Namespace) -> int:
        return self._repository.delete_by_namespace(namespace)

    def sweep_decay(self, namespace: Optional[Namespace] = None) -> int:
        """Refresh stored decay values and delete memories below the decay threshold."""
        self._repository.update_decay(namespace)
        threshold = self._config.decay_threshold
        if namespace is None:
            return self._repository.cleanup_decayed(threshold)
        return self._repository.delete_decayed(namespace, threshold)

    def memory_count(self, namespace: Namespace) -> int:
        return self._repository.count(namespace)

    def close(self) -> None:
        self._coordinator.shutdown()

    # ------------------------------------------------------------- internals

    def _recall(
        self,
        namespaces: List[Namespace],
        query: str,
        top_k: Optional[int],
        search_filter: Optional[SearchFilter],
    ) -> RecallOutcome:
        limit = self._config.max_recall_records if top_k is None else top_k
        started = time.perf_counter()
        try:
            query_embedding = self._embed_query(query)
        except Exception as exc:
            self._logger.warning("Query embedding failed, recall degraded to empty: %s", exc)
            self._metrics.record_recall(
                match_count=0, latency_ms=(time.perf_counter() - started) * 1000, degraded=True
            )
            return RecallOutcome(degraded=RecallDegraded(f"Query embedding failed: {exc}", cause=exc))

        if len(namespaces) == 1:
            hits = self._retrieval.recall_scored(namespaces[0], query_embedding, limit, search_filter)
        else:
            hits = self._retrieval.recall_across(namespaces, query_embedding, limit, search_filter)
        self._metrics.record_recall(match_count=len(hits), latency_ms=(time.perf_counter() - started) * 1000)
        return RecallOutcome(hits=hits)

    def _embed_query(self, query: str) -> List[float]:
        embed_query = getattr(self._embedder, "embed_query", None)
        if callable(embed_query):
            return list(embed_query(query))
        vectors = self._embedder.embed([query])
        if len(vectors) != 1:
            raise ValueError(f"Embedder returned {len(vectors)} vectors for one query.")
        return list(vectors[0])

    @staticmethod
    def _merge_filter(
        search_filter: Optional[SearchFilter],
        types: Optional[Iterable[MemoryType]],
    ) -> Optional[SearchFilter]:
        if not types:
            return search_filter
        type_set = frozenset(types)
        if search_filter is None:
            return SearchFilter(types=type_set)
        narrowed = search_filter.types & type_set if search_filter.types else type_set
        return replace(search_filter, types=narrowed)


__all__ = ["MemoryService", "RecallOutcome"]
