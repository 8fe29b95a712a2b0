"""Optional constraints applied to namespace-scoped reads and recall."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import FrozenSet, Iterable, Optional

from .memory_records import MemoryRecord, MemoryType, parse_datetime


@dataclass(frozen=True)
class SearchFilter:
    """Conjunction of optional criteria; unset criteria never exclude a record."""

    types: FrozenSet[MemoryType] = field(default_factory=frozenset)
    min_importance: Optional[float] = None
    min_decay_factor: Optional[float] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "types", frozenset(self.types or ()))
        object.__setattr__(self, "created_after", parse_datetime(self.created_after))
        object.__setattr__(self, "created_before", parse_datetime(self.created_before))

    @classmethod
    def builder(cls) -> "SearchFilterBuilder":
        return SearchFilterBuilder()

    @classmethod
    def none(cls) -> "SearchFilter":
        return cls()

    @property
    def is_empty(self) -> bool:
        return (
            not self.types
            and self.min_importance is None
            and self.min_decay_factor is None
            and self.created_after is None
            and self.created_before is None
        )

    def matches(self, record: MemoryRecord) -> bool:
        if self.types and record.type not in self.types:
            return False
        if self.min_importance is not None and record.importance < self.min_importance:
            return False
        if self.min_decay_factor is not None and record.decay_factor < self.min_decay_factor:
            return False
        if self.created_after is not None and record.created_at < self.created_after:
            return False
        if self.created_before is not None and record.created_at > self.created_before:
            return False
        return True


class SearchFilterBuilder:
    """Fluent construction of a :class:`SearchFilter`."""

    def __init__(self) -> None:
        self._types: set[MemoryType] = set()
        self._min_importance: Optional[float] = None
        self._min_decay_factor: Optional[float] = None
        self._created_after: Optional[datetime] = None
        self._created_before: Optional[datetime] = None

    def types(self, *types: MemoryType | Iterable[MemoryType]) -> "SearchFilterBuilder":
        for item in types:
            if isinstance(item, MemoryType):
                self._types.add(item)
            else:
                self._types.update(item)
        return self

    def min_importance(self, value: float) -> "SearchFilterBuilder":
        self._min_importance = value
        return self

    def min_decay_factor(self, value: float) -> "SearchFilterBuilder":
        self._min_decay_factor = value
        return self

    def created_after(self, value: datetime) -> "SearchFilterBuilder":
        self._created_after = value
        return self

    def created_before(self, value: datetime) -> "SearchFilterBuilder":
        self._created_before = value
        return self

    def build(self) -> SearchFilter:
        return SearchFilter(
            types=frozenset(self._types),
            min_importance=self._min_importance,
            min_decay_factor=self._min_decay_factor,
            created_after=self._created_after,
            created_before=self._created_before,
        )


__all__ = ["SearchFilter", "SearchFilterBuilder"]
