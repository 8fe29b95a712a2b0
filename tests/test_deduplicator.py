"""Tests for near-duplicate detection and resolution of stored memories."""

from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace

import pytest

from agent_memory.core.exceptions import EngineError
from agent_memory.memory.deduplicator import ConflictStrategy, MemoryDeduplicator
from agent_memory.memory.memory_records import MemoryRecord, MemoryType, utcnow
from agent_memory.memory.namespace import Namespace
from agent_memory.memory.storage import InMemoryMetadataStore, InMemoryVectorStore, MemoryRepository

ALICE = Namespace.for_user("alice")
BOB = Namespace.for_user("bob")
TEA = [1.0, 0.0, 0.1]
COFFEE = [0.0, 1.0, 0.1]


class DummyBrain:
    def __init__(self, reply: str = "", error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.prompts = []

    def generate_text(self, prompt: str, **kwargs):  # noqa: ANN003, ANN201
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.reply)


@pytest.fixture(name="repository")
def fixture_repository() -> MemoryRepository:
    return MemoryRepository(InMemoryMetadataStore(), InMemoryVectorStore())


def _store(repository, content, vector, namespace=ALICE, **kwargs):  # noqa: ANN001, ANN003, ANN202
    kwargs.setdefault("type", MemoryType.PREFERENCE)
    return repository.save(MemoryRecord.create(namespace, content, **kwargs), vector)


def _candidate(content: str, **kwargs) -> MemoryRecord:
    kwargs.setdefault("type", MemoryType.PREFERENCE)
    return MemoryRecord.create(ALICE, content, **kwargs)


def test_find_conflicts_matches_similar_records_of_the_same_type(repository):
    tea = _store(repository, "Alice likes green tea", TEA)
    _store(repository, "Alice likes coffee", COFFEE)
    _store(repository, "Alice's tea set came from Jeju", TEA, type=MemoryType.FACT)
    _store(repository, "Bob likes green tea", TEA, namespace=BOB)
    deduplicator = MemoryDeduplicator(repository)

    conflicts = deduplicator.find_conflicts(_candidate("Alice prefers black tea"), TEA)

    assert [record.id for record in conflicts] == [tea.id]


def test_find_conflicts_respects_threshold(repository):
    _store(repository, "Alice likes green tea", [1.0, 0.5, 0.0])
    deduplicator = MemoryDeduplicator(repository, similarity_threshold=0.95)

    assert deduplicator.find_conflicts(_candidate("Alice prefers black tea"), TEA) == []


def test_newest_wins_keeps_candidate_with_history(repository):
    old = _store(repository, "Alice likes green tea", TEA)
    candidate = _candidate("Alice prefers black tea", metadata={"source": "extraction"})

    resolved = MemoryDeduplicator(repository).resolve(candidate, [old])

    assert resolved.id == candidate.id
    assert resolved.content == "Alice prefers black tea"
    assert resolved.metadata["source"] == "extraction"
    assert resolved.metadata["supersedes"] == [old.id]
    assert resolved.metadata["resolved_by"] == "newest_wins"
    assert resolved.metadata["merge_history"] == [
        {"id": old.id, "content": "Alice likes green tea", "created_at": old.created_at.isoformat()}
    ]


def test_history_carries_over_across_resolutions(repository):
    first = _store(repository, "Alice likes green tea", TEA)
    deduplicator = MemoryDeduplicator(repository)
    second = deduplicator.resolve(_candidate("Alice likes oolong tea"), [first])

    third = deduplicator.resolve(_candidate("Alice prefers black tea"), [second])

    assert [entry["content"] for entry in third.metadata["merge_history"]] == [
        "Alice likes green tea",
        "Alice likes oolong tea",
    ]
    assert third.metadata["supersedes"] == [second.id]


def test_importance_strategy_skips_weaker_candidate(repository):
    strong = _store(repository, "Alice likes green tea", TEA, importance=0.9)
    deduplicator = MemoryDeduplicator(repository, strategy="importance_based")

    assert deduplicator.resolve(_candidate("Alice drinks tea", importance=0.4), [strong]) is None
    stronger = deduplicator.resolve(_candidate("Alice only drinks black tea", importance=0.95), [strong])
    assert stronger.metadata["supersedes"] == [strong.id]


def test_merge_strategy_asks_the_llm(repository):
    older = _store(repository, "Alice likes green tea", TEA, importance=0.9, created_at=utcnow() - timedelta(days=3))
    brain = DummyBrain("Alice switched from green tea to black tea")
    deduplicator = MemoryDeduplicator(repository, strategy=ConflictStrategy.MERGE, brain=brain)
    candidate = _candidate("Alice prefers black tea", importance=0.5, session_id="s1")

    merged = deduplicator.resolve(candidate, [older])

    assert merged.content == "Alice switched from green tea to black tea"
    assert merged.id not in (candidate.id, older.id)
    assert merged.importance == pytest.approx(0.9)
    assert merged.session_id == "s1"
    assert merged.metadata["supersedes"] == [older.id]
    prompt = brain.prompts[0]
    assert prompt.index("1. Alice likes green tea") < prompt.index("2. Alice prefers black tea")


@pytest.mark.parametrize(
    "brain",
    [None, DummyBrain(error=EngineError("quota exceeded")), DummyBrain(reply="   ")],
)
def test_merge_falls_back_to_newest(repository, brain):
    old = _store(repository, "Alice likes green tea", TEA)
    candidate = _candidate("Alice prefers black tea")

    resolved = MemoryDeduplicator(repository, strategy="merge", brain=brain).resolve(candidate, [old])

    assert resolved.id == candidate.id
    assert resolved.content == "Alice prefers black tea"
    assert resolved.metadata["supersedes"] == [old.id]


def test_resolve_without_conflicts_returns_candidate(repository):
    candidate = _candidate("Alice prefers black tea")

    assert MemoryDeduplicator(repository).resolve(candidate, []) is candidate


def test_unknown_strategy_is_rejected(repository):
    with pytest.raises(ValueError):
        MemoryDeduplicator(repository, strategy="coin_flip")
