"""SQLite-backed metadata store for memory records."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Collection, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from agent_memory.core.exceptions import StorageError
from agent_memory.core.logger import get_logger

from ..memory_records import MemoryRecord, MemoryType, clamp_unit, utcnow
from ..search_filter import SearchFilter
from ..namespace import Namespace
from .base import MetadataStore


_SCHEMA = """
CREATE TABLE IF NOT EXISTS memory_record (
    id TEXT PRIMARY KEY,
    namespace_path TEXT NOT NULL,
    content TEXT NOT NULL,
    type TEXT NOT NULL,
    importance REAL NOT NULL,
    access_count INTEGER NOT NULL DEFAULT 0,
    decay_factor REAL NOT NULL DEFAULT 1.0,
    session_id TEXT,
    created_at TEXT NOT NULL,
    last_accessed_at TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_memory_record_namespace ON memory_record(namespace_path);
CREATE INDEX IF NOT EXISTS idx_memory_record_type ON memory_record(type);
CREATE INDEX IF NOT EXISTS idx_memory_record_decay ON memory_record(decay_factor);
"""

_COLUMNS = (
    "id, namespace_path, content, type, importance, access_count, decay_factor, "
    "session_id, created_at, last_accessed_at, metadata"
)

_UPSERT = f"""
INSERT INTO memory_record ({_COLUMNS})
VALUES (:id, :namespace_path, :content, :type, :importance, :access_count, :decay_factor,
        :session_id, :created_at, :last_accessed_at, :metadata)
ON CONFLICT(id) DO UPDATE SET
    namespace_path=excluded.namespace_path,
    content=excluded.content,
    type=excluded.type,
    importance=excluded.importance,
    access_count=excluded.access_count,
    decay_factor=excluded.decay_factor,
    session_id=excluded.session_id,
    created_at=excluded.created_at,
    last_accessed_at=excluded.last_accessed_at,
    metadata=excluded.metadata
"""


def _timestamp(value: datetime) -> str:
    """Fixed-width UTC text so stored timestamps sort and compare lexically."""
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class SqliteMetadataStore(MetadataStore):
    """Persist memory records in a lightweight SQLite database.

    A connection is opened per call, so the store can be shared between the
    conversation thread and extraction workers.
    """

    def __init__(self, database_path: str | Path) -> None:
        self._path = Path(database_path)
        self._logger = get_logger(self.__class__.__name__)
        self._initialise()

    @property
    def path(self) -> Path:
        return self._path

    def save(self, record: MemoryRecord) -> None:
        self.save_all([record])

    def save_all(self, records) -> None:  # noqa: ANN001
        rows = [self._to_row(record) for record in records]
        if not rows:
            return
        with self._connect() as conn:
            conn.executemany(_UPSERT, rows)

    def find_by_id(self, record_id: str) -> Optional[MemoryRecord]:
        with self._connect() as conn:
            row = conn.execute(f"SELECT {_COLUMNS} FROM memory_record WHERE id = ?", (record_id,)).fetchone()
        return self._from_row(row) if row else None

    def find_by_ids(self, record_ids: Sequence[str]) -> List[MemoryRecord]:
        if not record_ids:
            return []
        placeholders = ",".join("?" for _ in record_ids)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM memory_record WHERE id IN ({placeholders})",
                tuple(record_ids),
            ).fetchall()
        by_id = {row[0]: self._from_row(row) for row in rows}
        return [by_id[record_id] for record_id in record_ids if record_id in by_id]

    def find_by_namespace(self, namespace: Namespace) -> List[MemoryRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM memory_record WHERE namespace_path = ? ORDER BY created_at",
                (namespace.to_path(),),
            ).fetchall()
        return [self._from_row(row) for row in rows]

    def find_by_namespace_with_filter(
        self,
        namespace: Namespace,
        search_filter: Optional[SearchFilter] = None,
    ) -> List[MemoryRecord]:
        if search_filter is None or search_filter.is_empty:
            return self.find_by_namespace(namespace)
        where, params = self._filter_clause(search_filter)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM memory_record WHERE namespace_path = ?{where} ORDER BY created_at",
                (namespace.to_path(), *params),
            ).fetchall()
        return [self._from_row(row) for row in rows]

    def find_all(self) -> List[MemoryRecord]:
        with self._connect() as conn:
            rows = conn.execute(f"SELECT {_COLUMNS} FROM memory_record ORDER BY created_at").fetchall()
        return [self._from_row(row) for row in rows]

    def find_decayed(self, namespace: Namespace, threshold: float) -> List[MemoryRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM memory_record WHERE namespace_path = ? AND decay_factor < ?",
                (namespace.to_path(), threshold),
            ).fetchall()
        return [self._from_row(row) for row in rows]

    def find_all_decayed(self, threshold: float) -> List[MemoryRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM memory_record WHERE decay_factor < ?",
                (threshold,),
            ).fetchall()
        return [self._from_row(row) for row in rows]

    def delete(self, record_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM memory_record WHERE id = ?", (record_id,))
        return cursor.rowcount > 0

    def delete_by_namespace(self, namespace: Namespace) -> List[str]:
        path = namespace.to_path()
        with self._connect() as conn:
            ids = [row[0] for row in conn.execute("SELECT id FROM memory_record WHERE namespace_path = ?", (path,))]
            conn.execute("DELETE FROM memory_record WHERE namespace_path = ?", (path,))
        return ids

    def record_access(self, record_ids: Collection[str]) -> None:
        if not record_ids:
            return
        now = _timestamp(utcnow())
        with self._connect() as conn:
            conn.executemany(
                "UPDATE memory_record SET access_count = access_count + 1, last_accessed_at = ? WHERE id = ?",
                [(now, record_id) for record_id in record_ids],
            )

    def update_decay_factor(self, record_id: str, decay_factor: float) -> None:
        self.update_decay_factors({record_id: decay_factor})

    def update_decay_factors(self, values: Mapping[str, float]) -> None:
        if not values:
            return
        with self._connect() as conn:
            conn.executemany(
                "UPDATE memory_record SET decay_factor = ? WHERE id = ?",
                [(clamp_unit(value), record_id) for record_id, value in values.items()],
            )

    def count(self, namespace: Namespace) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM memory_record WHERE namespace_path = ?",
                (namespace.to_path(),),
            ).fetchone()
        return int(row[0])

    def count_by_type(self, namespace: Namespace) -> Dict[MemoryType, int]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT type, COUNT(*) FROM memory_record WHERE namespace_path = ? GROUP BY type",
                (namespace.to_path(),),
            ).fetchall()
        counts: Dict[MemoryType, int] = {}
        for raw_type, total in rows:
            memory_type = MemoryType.parse(raw_type)
            if memory_type is not None:
                counts[memory_type] = int(total)
        return counts

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._path, timeout=30)
        except sqlite3.Error as exc:
            raise StorageError(f"Could not open memory database {self._path}: {exc}") from exc
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            self._logger.error("SQLite operation failed: %s", exc)
            raise StorageError(f"SQLite operation failed: {exc}") from exc
        finally:
            conn.close()

    def _initialise(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(_SCHEMA)
        self._logger.debug("SQLite memory store initialised at %s", self._path)

    @staticmethod
    def _filter_clause(search_filter: SearchFilter) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        if search_filter.types:
            values = sorted(memory_type.value for memory_type in search_filter.types)
            clauses.append(f"type IN ({','.join('?' for _ in values)})")
            params.extend(values)
        if search_filter.min_importance is not None:
            clauses.append("importance >= ?")
            params.append(search_filter.min_importance)
        if search_filter.min_decay_factor is not None:
            clauses.append("decay_factor >= ?")
            params.append(search_filter.min_decay_factor)
        if search_filter.created_after is not None:
            clauses.append("created_at >= ?")
            params.append(_timestamp(search_filter.created_after))
        if search_filter.created_before is not None:
            clauses.append("created_at <= ?")
            params.append(_timestamp(search_filter.created_before))
        return "".join(f" AND {clause}" for clause in clauses), params

    @staticmethod
    def _to_row(record: MemoryRecord) -> Dict[str, Any]:
        document = record.to_document()
        return {
            "id": document["id"],
            "namespace_path": document["namespace"],
            "content": document["content"],
            "type": document["type"],
            "importance": document["importance"],
            "access_count": document["access_count"],
            "decay_factor": document["decay_factor"],
            "session_id": document["session_id"],
            "created_at": _timestamp(record.created_at),
            "last_accessed_at": _timestamp(record.last_accessed_at or record.created_at),
            "metadata": json.dumps(document["metadata"], ensure_ascii=False, default=str),
        }

    @staticmethod
    def _from_row(row: Sequence[Any]) -> MemoryRecord:
        return MemoryRecord.from_document(
            {
                "id": row[0],
                "namespace": row[1],
                "content": row[2],
                "type": row[3],
                "importance": row[4],
                "access_count": row[5],
                "decay_factor": row[6],
                "session_id": row[7],
                "created_at": row[8],
                "last_accessed_at": row[9],
                "metadata": json.loads(row[10]) if row[10] else {},
            }
        )


__all__ = ["SqliteMetadataStore"]
