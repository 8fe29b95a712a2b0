"""High-level memory repository pairing the metadata store with the vector store."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from agent_memory.core.exceptions import EmbeddingMismatch, StorageError
from agent_memory.core.logger import get_logger

from ..decay import DecayCalculator
from ..memory_records import MemoryRecord, MemoryType
from ..namespace import Namespace
from .base import MetadataStore, VectorStore

_DECAY_EPSILON = 0.001


class MemoryRepository:
    """Keeps records and their embeddings in step across both stores.

    Vectors are written first; if the metadata write then fails the vectors
    are removed again, so a record never exists without its embedding.
    Deletes cascade from metadata to vectors.
    """

    def __init__(
        self,
        metadata_store: MetadataStore,
        vector_store: VectorStore,
        *,
        decay_calculator: DecayCalculator | None = None,
    ) -> None:
        self._metadata = metadata_store
        self._vectors = vector_store
        self._decay = decay_calculator or DecayCalculator()
        self._logger = get_logger(self.__class__.__name__)

    @property
    def metadata_store(self) -> MetadataStore:
        return self._metadata

    @property
    def vector_store(self) -> VectorStore:
        return self._vectors

    def save(self, record: MemoryRecord, embedding: Sequence[float]) -> MemoryRecord:
        self.save_all([record], [embedding])
        return record

    def save_all(self, records: Sequence[MemoryRecord], embeddings: Sequence[Sequence[float]]) -> int:
        if len(records) != len(embeddings):
            raise EmbeddingMismatch(expected=len(records), actual=len(embeddings))
        if not records:
            return 0

        ids = [record.id for record in records]
        self._vectors.save_all(ids, embeddings)
        try:
            self._metadata.save_all(records)
        except Exception as exc:
            self._logger.error("Metadata write failed, rolling back %d vectors: %s", len(ids), exc)
            self._vectors.delete_all(ids)
            if isinstance(exc, StorageError):
                raise
            raise StorageError(f"Failed to persist memory records: {exc}") from exc

        self._logger.debug("Saved %d memory records", len(records))
        return len(records)

    def find_by_id(self, record_id: str) -> Optional[MemoryRecord]:
        return self._metadata.find_by_id(record_id)

    def find_by_namespace(self, namespace: Namespace) -> List[MemoryRecord]:
        return self._metadata.find_by_namespace(namespace)

    def delete(self, record_id: str) -> bool:
        existed = self._metadata.delete(record_id)
        self._vectors.delete(record_id)
        return existed

    def delete_by_namespace(self, namespace: Namespace) -> int:
        ids = self._metadata.delete_by_namespace(namespace)
        self._vectors.delete_all(ids)
        if ids:
            self._logger.info("Deleted %d memories from namespace %s", len(ids), namespace)
        return len(ids)

    def update_decay(self, namespace: Optional[Namespace] = None) -> int:
        """Recompute decay for a namespace (or every record) and persist the changed values."""
        records = self._metadata.find_all() if namespace is None else self._metadata.find_by_namespace(namespace)
        updates: Dict[str, float] = {}
        for record in records:
            fresh = self._decay.calculate(record)
            if abs(fresh - record.decay_factor) > _DECAY_EPSILON:
                updates[record.id] = fresh
        if updates:
            self._metadata.update_decay_factors(updates)
            self._logger.debug("Updated decay for %d records", len(updates))
        return len(updates)

    def delete_decayed(self, namespace: Namespace, threshold: float) -> int:
        decayed = self._metadata.find_decayed(namespace, threshold)
        return self._delete_records(decayed)

    def cleanup_decayed(self, threshold: float) -> int:
        decayed = self._metadata.find_all_decayed(threshold)
        return self._delete_records(decayed)

    def count(self, namespace: Namespace) -> int:
        return self._metadata.count(namespace)

    def count_by_type(self, namespace: Namespace) -> Dict[MemoryType, int]:
        return self._metadata.count_by_type(namespace)

    def _delete_records(self, records: Sequence[MemoryRecord]) -> int:
        deleted = 0
        for record in records:
            if self._metadata.delete(record.id):
                deleted += 1
        self._vectors.delete_all([record.id for record in records])
        if deleted:
            self._logger.info("Removed %d decayed memories", deleted)
        return deleted
