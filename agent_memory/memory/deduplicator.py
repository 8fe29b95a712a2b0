"""Detects stored memories that a new candidate overlaps and decides which one survives."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from agent_memory.core.exceptions import EngineError
from agent_memory.core.logger import get_logger

from .memory_records import MemoryRecord, utcnow
from .search_filter import SearchFilter
from .storage.repository import MemoryRepository

if TYPE_CHECKING:
    from .extraction.extractor import TextGenerator

CONFLICT_SEARCH_TOP_K = 5
MERGE_MAX_OUTPUT_TOKENS = 256
_TEMPLATE_PATH = Path(__file__).resolve().parent / "prompts" / "memory_merge_prompt.md"


class ConflictStrategy(str, Enum):
    NEWEST_WINS = "newest_wins"
    IMPORTANCE_BASED = "importance_based"
    MERGE = "merge"


class MemoryDeduplicator:
    """Finds near-duplicate memories of the same type and resolves them.

    Stored content is never rewritten. The surviving memory is always a new
    record whose metadata lists the ids and text it supersedes, and deleting
    the superseded records is left to the caller.
    """

    def __init__(
        self,
        repository: MemoryRepository,
        *,
        similarity_threshold: float = 0.8,
        strategy: ConflictStrategy | str = ConflictStrategy.NEWEST_WINS,
        brain: Optional[TextGenerator] = None,
        template_path: Optional[Path] = None,
    ) -> None:
        self._repository = repository
        self._similarity_threshold = similarity_threshold
        self._strategy = ConflictStrategy(strategy)
        self._brain = brain
        self._template_path = template_path or _TEMPLATE_PATH
        self._logger = get_logger(self.__class__.__name__)

    @property
    def strategy(self) -> ConflictStrategy:
        return self._strategy

    def find_conflicts(self, candidate: MemoryRecord, embedding: Sequence[float]) -> List[MemoryRecord]:
        """Stored records of the candidate's type whose similarity reaches the threshold."""
        same_type = self._repository.metadata_store.find_by_namespace_with_filter(
            candidate.namespace,
            SearchFilter(types=frozenset({candidate.type})),
        )
        if not same_type:
            return []
        hits = self._repository.vector_store.search(
            embedding,
            CONFLICT_SEARCH_TOP_K,
            candidate_ids=[record.id for record in same_type],
        )
        matched = [hit.record_id for hit in hits if hit.score >= self._similarity_threshold]
        return self._repository.metadata_store.find_by_ids(matched)

    def resolve(self, candidate: MemoryRecord, conflicts: Sequence[MemoryRecord]) -> Optional[MemoryRecord]:
        """Return the record to store in place of ``conflicts``.

        ``None`` means an existing record already wins and the candidate
        should be skipped.
        """
        if not conflicts:
            return candidate
        if self._strategy is ConflictStrategy.IMPORTANCE_BASED:
            strongest = max(conflicts, key=lambda record: record.importance)
            if strongest.importance > candidate.importance:
                self._logger.debug("Skipping candidate; %s is more important", strongest.id)
                return None
            return self._supersede(candidate, conflicts)
        if self._strategy is ConflictStrategy.MERGE:
            merged = self._merge_content(candidate, conflicts)
            if merged:
                importance = max(record.importance for record in (candidate, *conflicts))
                merged_record = MemoryRecord.create(
                    candidate.namespace,
                    merged,
                    type=candidate.type,
                    importance=importance,
                    session_id=candidate.session_id,
                    metadata=candidate.metadata,
                )
                return self._supersede(merged_record, conflicts)
        return self._supersede(candidate, conflicts)

    def _supersede(self, survivor: MemoryRecord, replaced: Sequence[MemoryRecord]) -> MemoryRecord:
        metadata: Dict[str, Any] = dict(survivor.metadata)
        history: List[Dict[str, Any]] = []
        for record in replaced:
            earlier = record.metadata.get("merge_history")
            if isinstance(earlier, list):
                history.extend(earlier)
            history.append(
                {
                    "id": record.id,
                    "content": record.content,
                    "created_at": record.created_at.isoformat(),
                }
            )
        metadata["merge_history"] = history
        metadata["supersedes"] = [record.id for record in replaced]
        metadata["resolved_by"] = self._strategy.value
        metadata["resolved_at"] = utcnow().isoformat()
        return survivor.copy(metadata=metadata)

    def _merge_content(self, candidate: MemoryRecord, conflicts: Sequence[MemoryRecord]) -> Optional[str]:
        if self._brain is None:
            self._logger.warning("No LLM available for merging memories; keeping the newest")
            return None
        ordered = sorted([*conflicts, candidate], key=lambda record: record.created_at)
        lines = "\n".join(
            f"{index}. {record.content} ({record.created_at.date().isoformat()})"
            for index, record in enumerate(ordered, start=1)
        )
        prompt = self._load_template().replace("{{records}}", lines)
        try:
            response = self._brain.generate_text(
                prompt,
                temperature=0.3,
                max_output_tokens=MERGE_MAX_OUTPUT_TOKENS,
            )
        except EngineError as exc:
            self._logger.warning("Memory merge failed, keeping the newest: %s", exc)
            return None
        text = (getattr(response, "text", "") or "").strip()
        return text or None

    def _load_template(self) -> str:
        if not self._template_path.exists():  # pragma: no cover - packaging guard
            raise EngineError(f"Memory merge template not found: {self._template_path}")
        return self._template_path.read_text(encoding="utf-8")


__all__ = ["CONFLICT_SEARCH_TOP_K", "ConflictStrategy", "MemoryDeduplicator"]
