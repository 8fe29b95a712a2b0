"""FAISS-based vector store for memory embeddings."""

from __future__ import annotations

import hashlib
import json
import threading
from pathlib import Path
from typing import Collection, Dict, List, Optional, Sequence

import faiss
import numpy as np

from agent_memory.core.exceptions import StorageError
from agent_memory.core.logger import get_logger

from .base import VectorSearchResult, VectorStore


def _faiss_id(record_id: str) -> int:
    """Stable signed 63-bit id for a string record id."""
    digest = hashlib.blake2b(record_id.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") & 0x7FFFFFFFFFFFFFFF


class FaissVectorStore(VectorStore):
    """Cosine similarity search over an ``IndexIDMap2(IndexFlatIP)`` of normalised vectors.

    Record ids are hashed to int64 FAISS ids; the reverse map is kept beside
    the index file so a persisted index can be reopened.
    """

    def __init__(self, dimension: int, *, index_path: str | Path | None = None) -> None:
        if dimension <= 0:
            raise StorageError(f"FAISS dimension must be positive, got {dimension}.")
        self._dimension = dimension
        self._index_path = Path(index_path) if index_path else None
        self._logger = get_logger(self.__class__.__name__)
        self._lock = threading.RLock()
        self._index = faiss.IndexIDMap2(faiss.IndexFlatIP(dimension))
        self._ids: Dict[int, str] = {}
        if self._index_path and self._index_path.exists():
            self._load()

    @property
    def dimension(self) -> int:
        return self._dimension

    def save(self, record_id: str, embedding: Sequence[float]) -> None:
        self.save_all([record_id], [embedding])

    def save_all(self, record_ids: Sequence[str], embeddings: Sequence[Sequence[float]]) -> None:
        if len(record_ids) != len(embeddings):
            raise ValueError(
                f"save_all received {len(record_ids)} ids but {len(embeddings)} embeddings."
            )
        if not record_ids:
            return
        matrix = self._as_matrix(embeddings)
        faiss_ids = np.asarray([_faiss_id(record_id) for record_id in record_ids], dtype="int64")
        with self._lock:
            # Upsert: FAISS keeps duplicates, so drop any previous vector first.
            self._index.remove_ids(faiss_ids)
            self._index.add_with_ids(matrix, faiss_ids)
            for faiss_id, record_id in zip(faiss_ids.tolist(), record_ids):
                self._ids[faiss_id] = record_id
            self._save()

    def delete(self, record_id: str) -> None:
        self.delete_all([record_id])

    def delete_all(self, record_ids) -> None:  # noqa: ANN001
        faiss_ids = [_faiss_id(record_id) for record_id in record_ids]
        if not faiss_ids:
            return
        with self._lock:
            self._index.remove_ids(np.asarray(faiss_ids, dtype="int64"))
            for faiss_id in faiss_ids:
                self._ids.pop(faiss_id, None)
            self._save()

    def search(
        self,
        query: Sequence[float],
        top_k: int,
        candidate_ids: Optional[Collection[str]] = None,
    ) -> List[VectorSearchResult]:
        if top_k <= 0:
            return []
        vector = np.asarray(query, dtype="float32").reshape(1, -1)
        if vector.shape[1] != self._dimension:
            self._logger.warning(
                "Query dimension %d does not match index dimension %d", vector.shape[1], self._dimension
            )
            return []
        if not np.any(vector):
            return []
        faiss.normalize_L2(vector)

        with self._lock:
            if self._index.ntotal == 0:
                return []
            params = None
            limit = self._index.ntotal
            if candidate_ids is not None:
                allowed = np.asarray(
                    [_faiss_id(rid) for rid in candidate_ids if _faiss_id(rid) in self._ids],
                    dtype="int64",
                )
                if allowed.size == 0:
                    return []
                params = faiss.SearchParameters(sel=faiss.IDSelectorBatch(allowed))
                limit = int(allowed.size)
            k = min(top_k, limit)
            if params is not None:
                similarities, indices = self._index.search(vector, k, params=params)
            else:
                similarities, indices = self._index.search(vector, k)
            ids = dict(self._ids)

        results: List[VectorSearchResult] = []
        for score, faiss_id in zip(similarities[0], indices[0]):
            if faiss_id == -1:
                continue
            record_id = ids.get(int(faiss_id))
            if record_id is not None:
                results.append(VectorSearchResult(record_id, float(score)))
        return results

    def count(self) -> int:
        with self._lock:
            return int(self._index.ntotal)

    def _as_matrix(self, embeddings: Sequence[Sequence[float]]) -> np.ndarray:
        try:
            matrix = np.asarray(embeddings, dtype="float32")
        except ValueError as exc:
            raise StorageError(f"Embeddings are not a rectangular float matrix: {exc}") from exc
        if matrix.ndim != 2 or matrix.shape[1] != self._dimension:
            raise StorageError(
                f"Expected embeddings of dimension {self._dimension}, got shape {matrix.shape}."
            )
        matrix = np.ascontiguousarray(matrix)
        # Zero vectors stay zero after normalisation and score 0 against any query.
        faiss.normalize_L2(matrix)
        return matrix

    def _save(self) -> None:
        if not self._index_path:
            return
        self._index_path.parent.mkdir(parents=True, exist_ok=True)
        faiss.write_index(self._index, str(self._index_path))
        id_path = self._index_path.with_suffix(".ids.json")
        id_path.write_text(
            json.dumps({str(key): value for key, value in self._ids.items()}, ensure_ascii=False),
            encoding="utf-8",
        )
        self._logger.debug("FAISS index saved to %s", self._index_path)

    def _load(self) -> None:
        if not self._index_path:
            return
        index = faiss.read_index(str(self._index_path))
        if index.d != self._dimension:
            raise StorageError(
                f"Persisted index dimension {index.d} does not match configured dimension {self._dimension}."
            )
        self._index = index
        id_path = self._index_path.with_suffix(".ids.json")
        if id_path.exists():
            raw = json.loads(id_path.read_text(encoding="utf-8"))
            self._ids = {int(key): value for key, value in raw.items()}
        else:
            self._ids = {}
        self._logger.debug("FAISS index loaded from %s (%d vectors)", self._index_path, index.ntotal)


__all__ = ["FaissVectorStore"]
