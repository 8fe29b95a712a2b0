"""Namespace-scoped recall ranked by similarity, importance, freshness and use."""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from agent_memory.core.logger import get_logger

from .decay import DecayCalculator
from .memory_records import MemoryRecord, ScoredMemory
from .namespace import Namespace
from .search_filter import SearchFilter
from .storage.base import MetadataStore, VectorStore

MIN_VIABLE_DECAY = 0.01
_MIN_SEARCH_K = 20
_SEARCH_MULTIPLIER = 3


class RetrievalEngine:
    """Rank a namespace's memories against a query embedding.

    Stored decay values may be stale, so decay is recomputed at recall time and
    the filter is re-applied against the fresh value. Returned records are
    copies carrying that fresh decay; the access bump lands in the store only.
    """

    def __init__(
        self,
        metadata_store: MetadataStore,
        vector_store: VectorStore,
        *,
        decay_calculator: DecayCalculator | None = None,
        min_viable_decay: float = MIN_VIABLE_DECAY,
        enable_decay: bool = True,
    ) -> None:
        self._metadata = metadata_store
        self._vectors = vector_store
        self._decay = decay_calculator or DecayCalculator()
        self._min_viable_decay = min_viable_decay
        self._enable_decay = enable_decay
        self._logger = get_logger(self.__class__.__name__)

    def recall(
        self,
        namespace: Namespace,
        query_embedding: Sequence[float],
        top_k: int,
        search_filter: Optional[SearchFilter] = None,
    ) -> List[MemoryRecord]:
        return [hit.record for hit in self.recall_scored(namespace, query_embedding, top_k, search_filter)]

    def recall_scored(
        self,
        namespace: Namespace,
        query_embedding: Sequence[float],
        top_k: int,
        search_filter: Optional[SearchFilter] = None,
    ) -> List[ScoredMemory]:
        hits = self._rank(namespace, query_embedding, top_k, search_filter)
        if hits:
            self._metadata.record_access([hit.record.id for hit in hits])
        return hits

    def recall_across(
        self,
        namespaces: Iterable[Namespace],
        query_embedding: Sequence[float],
        top_k: int,
        search_filter: Optional[SearchFilter] = None,
    ) -> List[ScoredMemory]:
        """Run one scoped query per namespace and merge the hits by score."""
        merged: List[ScoredMemory] = []
        seen: set[Namespace] = set()
        for namespace in namespaces:
            if namespace in seen:
                continue
            seen.add(namespace)
            merged.extend(self._rank(namespace, query_embedding, top_k, search_filter))
        merged.sort(key=lambda hit: hit.score, reverse=True)
        hits = merged[:max(top_k, 0)]
        if hits:
            self._metadata.record_access([hit.record.id for hit in hits])
        return hits

    def _rank(
        self,
        namespace: Namespace,
        query_embedding: Sequence[float],
        top_k: int,
        search_filter: Optional[SearchFilter],
    ) -> List[ScoredMemory]:
        if top_k <= 0:
            return []

        candidates = self._metadata.find_by_namespace_with_filter(namespace, search_filter)
        if not candidates:
            return []
        by_id = {record.id: record for record in candidates}

        search_k = max(top_k * _SEARCH_MULTIPLIER, _MIN_SEARCH_K)
        matches = self._vectors.search(query_embedding, search_k, candidate_ids=list(by_id))

        scored: List[ScoredMemory] = []
        for match in matches:
            record = by_id.get(match.record_id)
            if record is None:
                continue
            if self._enable_decay:
                fresh = self._decay.calculate(record)
                if fresh < self._min_viable_decay:
                    continue
                record = record.copy(decay_factor=fresh)
                if search_filter is not None and not search_filter.matches(record):
                    continue
            scored.append(ScoredMemory(record, match.score, record.effective_score(match.score)))

        scored.sort(key=lambda hit: hit.score, reverse=True)
        hits = scored[:top_k]
        self._logger.debug(
            "Recall in %s: %d candidates, %d vector hits, %d returned",
            namespace,
            len(candidates),
            len(matches),
            len(hits),
        )
        return hits


__all__ = ["MIN_VIABLE_DECAY", "RetrievalEngine"]
