"""Data contracts for long-term memory records."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from .namespace import Namespace


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clamp_unit(value: float) -> float:
    """Clamp ``value`` into ``[0, 1]``."""
    return max(0.0, min(1.0, float(value)))


class MemoryType(str, Enum):
    """Kind of knowledge a record holds, with its default importance and daily decay rate."""

    FACT = "fact"
    PREFERENCE = "preference"
    GOAL = "goal"
    EPISODE = "episode"
    RELATIONSHIP = "relationship"

    @property
    def description(self) -> str:
        return _TYPE_PROFILE[self][0]

    @property
    def default_importance(self) -> float:
        return _TYPE_PROFILE[self][1]

    @property
    def decay_rate(self) -> float:
        return _TYPE_PROFILE[self][2]

    @classmethod
    def parse(cls, raw: object) -> Optional["MemoryType"]:
        """Map loose text (``"Fact"``, ``"preference"``) onto a member, or ``None``."""
        if isinstance(raw, MemoryType):
            return raw
        if not isinstance(raw, str):
            return None
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return None


_TYPE_PROFILE: Dict[MemoryType, tuple[str, float, float]] = {
    MemoryType.FACT: ("Objective information about the user", 0.7, 0.02),
    MemoryType.PREFERENCE: ("User likes, dislikes and style choices", 0.8, 0.015),
    MemoryType.GOAL: ("Things the user is working towards", 0.9, 0.01),
    MemoryType.EPISODE: ("Notable events and interactions", 0.6, 0.05),
    MemoryType.RELATIONSHIP: ("People and entities the user is connected to", 0.75, 0.01),
}


@dataclass(slots=True)
class MemoryRecord:
    """Long-term memory entry scoped to a namespace.

    ``id``, ``namespace`` and ``content`` never change after creation; the
    stores only touch ``access_count``, ``last_accessed_at`` and
    ``decay_factor``. Corrections are written as new records.
    """

    namespace: Namespace
    content: str
    type: MemoryType = MemoryType.FACT
    importance: float = 0.5
    id: str = field(default_factory=lambda: uuid4().hex)
    decay_factor: float = 1.0
    access_count: int = 0
    created_at: datetime = field(default_factory=utcnow)
    last_accessed_at: Optional[datetime] = None
    session_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.content, str) or not self.content.strip():
            raise ValueError("MemoryRecord.content must be a non-blank string.")
        if not isinstance(self.namespace, Namespace):
            raise TypeError("MemoryRecord.namespace must be a Namespace.")
        self.importance = clamp_unit(self.importance)
        self.decay_factor = clamp_unit(self.decay_factor)
        self.access_count = max(0, int(self.access_count))
        self.created_at = parse_datetime(self.created_at) or utcnow()
        self.last_accessed_at = parse_datetime(self.last_accessed_at) or self.created_at
        self.metadata = dict(self.metadata)

    @classmethod
    def create(
        cls,
        namespace: Namespace,
        content: str,
        *,
        type: MemoryType = MemoryType.FACT,
        importance: Optional[float] = None,
        session_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
    ) -> "MemoryRecord":
        """Build a fresh record, defaulting importance to the type's default."""
        return cls(
            namespace=namespace,
            content=content,
            type=type,
            importance=type.default_importance if importance is None else importance,
            session_id=session_id,
            metadata=dict(metadata or {}),
            created_at=created_at or utcnow(),
        )

    def effective_score(self, similarity: float) -> float:
        """Combine similarity with importance, freshness and a log-damped access boost."""
        access_boost = 1.0 + 0.1 * math.log1p(self.access_count)
        return similarity * self.importance * self.decay_factor * access_boost

    def copy(self, **changes: Any) -> "MemoryRecord":
        """Return an independent copy, optionally with some fields replaced."""
        changes.setdefault("metadata", dict(self.metadata))
        return replace(self, **changes)

    def to_document(self) -> Dict[str, Any]:
        """Flatten the record for JSON or database storage."""
        return {
            "id": self.id,
            "namespace": self.namespace.to_path(),
            "content": self.content,
            "type": self.type.value,
            "importance": self.importance,
            "decay_factor": self.decay_factor,
            "access_count": self.access_count,
            "created_at": self.created_at.isoformat(),
            "last_accessed_at": self.last_accessed_at.isoformat() if self.last_accessed_at else None,
            "session_id": self.session_id,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "MemoryRecord":
        created_at = parse_datetime(document.get("created_at")) or utcnow()
        return cls(
            id=str(document["id"]),
            namespace=Namespace.from_path(str(document["namespace"])),
            content=str(document["content"]),
            type=MemoryType.parse(document.get("type")) or MemoryType.FACT,
            importance=float(document.get("importance", 0.5)),
            decay_factor=float(document.get("decay_factor", 1.0)),
            access_count=int(document.get("access_count", 0)),
            created_at=created_at,
            last_accessed_at=parse_datetime(document.get("last_accessed_at")) or created_at,
            session_id=document.get("session_id"),
            metadata=dict(document.get("metadata") or {}),
        )


def parse_datetime(value: object) -> Optional[datetime]:
    """Read a datetime or ISO string as an aware value; naive input is taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value)
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(slots=True)
class ExtractedMemory:
    """Candidate memory produced by an extractor before it becomes a record."""

    content: str
    importance: Optional[float] = None
    type: Optional[MemoryType] = None


@dataclass(frozen=True, slots=True)
class ScoredMemory:
    """Recall hit carrying the raw similarity and the final effective score."""

    record: MemoryRecord
    similarity: float
    score: float


__all__ = [
    "ExtractedMemory",
    "MemoryRecord",
    "MemoryType",
    "ScoredMemory",
    "clamp_unit",
    "parse_datetime",
    "utcnow",
]
