"""Process-local metadata and vector stores, useful for tests and single-process agents."""

from __future__ import annotations

import threading
from typing import Collection, Dict, List, Optional, Sequence

import numpy as np

from agent_memory.core.logger import get_logger

from ..memory_records import MemoryRecord, clamp_unit, utcnow
from ..namespace import Namespace
from .base import MetadataStore, VectorSearchResult, VectorStore


class InMemoryMetadataStore(MetadataStore):
    """Dictionary-backed store; hands out copies so callers never mutate stored state."""

    def __init__(self) -> None:
        self._records: Dict[str, MemoryRecord] = {}
        self._lock = threading.RLock()
        self._logger = get_logger(self.__class__.__name__)

    def save(self, record: MemoryRecord) -> None:
        with self._lock:
            self._records[record.id] = record.copy()

    def save_all(self, records) -> None:  # noqa: ANN001
        snapshot = [record.copy() for record in records]
        with self._lock:
            for record in snapshot:
                self._records[record.id] = record

    def find_by_id(self, record_id: str) -> Optional[MemoryRecord]:
        with self._lock:
            record = self._records.get(record_id)
            return record.copy() if record is not None else None

    def find_by_namespace(self, namespace: Namespace) -> List[MemoryRecord]:
        path = namespace.to_path()
        with self._lock:
            return [
                record.copy()
                for record in self._records.values()
                if record.namespace.to_path() == path
            ]

    def find_all(self) -> List[MemoryRecord]:
        with self._lock:
            return [record.copy() for record in self._records.values()]

    def delete(self, record_id: str) -> bool:
        with self._lock:
            return self._records.pop(record_id, None) is not None

    def delete_by_namespace(self, namespace: Namespace) -> List[str]:
        path = namespace.to_path()
        with self._lock:
            doomed = [rid for rid, record in self._records.items() if record.namespace.to_path() == path]
            for record_id in doomed:
                del self._records[record_id]
        if doomed:
            self._logger.debug("Deleted %d records from namespace %s", len(doomed), path)
        return doomed

    def record_access(self, record_ids: Collection[str]) -> None:
        now = utcnow()
        with self._lock:
            for record_id in record_ids:
                record = self._records.get(record_id)
                if record is None:
                    continue
                record.access_count += 1
                record.last_accessed_at = now

    def update_decay_factor(self, record_id: str, decay_factor: float) -> None:
        with self._lock:
            record = self._records.get(record_id)
            if record is not None:
                record.decay_factor = clamp_unit(decay_factor)

    def count(self, namespace: Namespace) -> int:
        path = namespace.to_path()
        with self._lock:
            return sum(1 for record in self._records.values() if record.namespace.to_path() == path)


class InMemoryVectorStore(VectorStore):
    """Brute-force cosine search over numpy vectors."""

    def __init__(self) -> None:
        self._vectors: Dict[str, np.ndarray] = {}
        self._lock = threading.RLock()

    def save(self, record_id: str, embedding: Sequence[float]) -> None:
        vector = np.asarray(embedding, dtype="float32").reshape(-1)
        with self._lock:
            self._vectors[record_id] = vector

    def delete(self, record_id: str) -> None:
        with self._lock:
            self._vectors.pop(record_id, None)

    def search(
        self,
        query: Sequence[float],
        top_k: int,
        candidate_ids: Optional[Collection[str]] = None,
    ) -> List[VectorSearchResult]:
        if top_k <= 0:
            return []
        query_vector = np.asarray(query, dtype="float32").reshape(-1)
        with self._lock:
            if candidate_ids is None:
                items = list(self._vectors.items())
            else:
                items = [(rid, self._vectors[rid]) for rid in candidate_ids if rid in self._vectors]
        results = [VectorSearchResult(rid, cosine_similarity(query_vector, vector)) for rid, vector in items]
        results.sort(key=lambda result: result.score, reverse=True)
        return results[:top_k]

    def count(self) -> int:
        with self._lock:
            return len(self._vectors)


def cosine_similarity(left: np.ndarray, right: np.ndarray) -> float:
    """Cosine similarity; zero-norm or mismatched vectors score 0."""
    if left.shape != right.shape:
        return 0.0
    norm = float(np.linalg.norm(left) * np.linalg.norm(right))
    if norm == 0.0:
        return 0.0
    return float(np.dot(left, right) / norm)


__all__ = ["InMemoryMetadataStore", "InMemoryVectorStore", "cosine_similarity"]
