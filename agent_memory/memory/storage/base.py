"""Interfaces for memory metadata storage and vector similarity search."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Collection, Dict, Iterable, List, Mapping, Optional, Sequence

from ..memory_records import MemoryRecord, MemoryType
from ..namespace import Namespace
from ..search_filter import SearchFilter


class MetadataStore(ABC):
    """Namespace-partitioned persistence for memory records.

    Namespace reads are exact matches on the namespace path. Implementations
    must be safe for concurrent use and raise ``StorageError`` instead of
    silently dropping writes.
    """

    @abstractmethod
    def save(self, record: MemoryRecord) -> None:
        """Persist or upsert the given record."""

    def save_all(self, records: Iterable[MemoryRecord]) -> None:
        for record in records:
            self.save(record)

    @abstractmethod
    def find_by_id(self, record_id: str) -> Optional[MemoryRecord]:
        """Return the record or ``None`` when absent."""

    def find_by_ids(self, record_ids: Sequence[str]) -> List[MemoryRecord]:
        """Return records in the order requested, skipping unknown ids."""
        records: List[MemoryRecord] = []
        for record_id in record_ids:
            record = self.find_by_id(record_id)
            if record is not None:
                records.append(record)
        return records

    @abstractmethod
    def find_by_namespace(self, namespace: Namespace) -> List[MemoryRecord]:
        """Return every record stored under exactly ``namespace``."""

    def find_by_namespace_with_filter(
        self,
        namespace: Namespace,
        search_filter: Optional[SearchFilter] = None,
    ) -> List[MemoryRecord]:
        records = self.find_by_namespace(namespace)
        if search_filter is None or search_filter.is_empty:
            return records
        return [record for record in records if search_filter.matches(record)]

    @abstractmethod
    def find_all(self) -> List[MemoryRecord]:
        """Return every stored record across namespaces."""

    @abstractmethod
    def delete(self, record_id: str) -> bool:
        """Delete one record; return whether it existed."""

    @abstractmethod
    def delete_by_namespace(self, namespace: Namespace) -> List[str]:
        """Delete a namespace's records and return their ids."""

    def find_decayed(self, namespace: Namespace, threshold: float) -> List[MemoryRecord]:
        return [record for record in self.find_by_namespace(namespace) if record.decay_factor < threshold]

    def find_all_decayed(self, threshold: float) -> List[MemoryRecord]:
        return [record for record in self.find_all() if record.decay_factor < threshold]

    @abstractmethod
    def record_access(self, record_ids: Collection[str]) -> None:
        """Increment access counts and stamp ``last_accessed_at`` for a batch of ids."""

    @abstractmethod
    def update_decay_factor(self, record_id: str, decay_factor: float) -> None:
        """Persist a recomputed decay value."""

    def update_decay_factors(self, values: Mapping[str, float]) -> None:
        for record_id, decay_factor in values.items():
            self.update_decay_factor(record_id, decay_factor)

    def count(self, namespace: Namespace) -> int:
        return len(self.find_by_namespace(namespace))

    def count_by_type(self, namespace: Namespace) -> Dict[MemoryType, int]:
        counts: Dict[MemoryType, int] = {}
        for record in self.find_by_namespace(namespace):
            counts[record.type] = counts.get(record.type, 0) + 1
        return counts


class VectorStore(ABC):
    """Embedding storage with cosine-similarity search."""

    @abstractmethod
    def save(self, record_id: str, embedding: Sequence[float]) -> None:
        """Insert or replace the embedding for a record."""

    def save_all(self, record_ids: Sequence[str], embeddings: Sequence[Sequence[float]]) -> None:
        if len(record_ids) != len(embeddings):
            raise ValueError(
                f"save_all received {len(record_ids)} ids but {len(embeddings)} embeddings."
            )
        for record_id, embedding in zip(record_ids, embeddings):
            self.save(record_id, embedding)

    @abstractmethod
    def delete(self, record_id: str) -> None:
        """Remove an embedding; unknown ids are ignored."""

    def delete_all(self, record_ids: Iterable[str]) -> None:
        for record_id in record_ids:
            self.delete(record_id)

    @abstractmethod
    def search(
        self,
        query: Sequence[float],
        top_k: int,
        candidate_ids: Optional[Collection[str]] = None,
    ) -> List["VectorSearchResult"]:
        """Return up to ``top_k`` hits by descending cosine similarity.

        When ``candidate_ids`` is given, only those ids are considered; an
        empty collection therefore yields no hits.
        """

    @abstractmethod
    def count(self) -> int:
        """Return the number of stored embeddings."""


class VectorSearchResult:
    """Result entry returned by vector similarity searches."""

    __slots__ = ("record_id", "score")

    def __init__(self, record_id: str, score: float) -> None:
        self.record_id = record_id
        self.score = score

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VectorSearchResult):
            return NotImplemented
        return self.record_id == other.record_id and self.score == other.score

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"VectorSearchResult(record_id={self.record_id!r}, score={self.score!r})"


__all__ = ["MetadataStore", "VectorSearchResult", "VectorStore"]
