"""Tests for namespace-scoped ranked recall."""

from __future__ import annotations

from datetime import timedelta

import pytest

from agent_memory.memory.memory_records import MemoryRecord, MemoryType, utcnow
from agent_memory.memory.namespace import Namespace
from agent_memory.memory.retrieval import RetrievalEngine
from agent_memory.memory.search_filter import SearchFilter
from agent_memory.memory.storage import InMemoryMetadataStore, InMemoryVectorStore, MemoryRepository

ALICE = Namespace.for_user("alice")
PROJECT = ALICE.child("project")
BOB = Namespace.for_user("bob")
QUERY = [1.0, 0.0]


@pytest.fixture(name="repository")
def fixture_repository() -> MemoryRepository:
    return MemoryRepository(InMemoryMetadataStore(), InMemoryVectorStore())


def _engine(repository: MemoryRepository, **kwargs) -> RetrievalEngine:
    return RetrievalEngine(repository.metadata_store, repository.vector_store, **kwargs)


def _store(repository: MemoryRepository, namespace: Namespace, content: str, vector, **kwargs) -> MemoryRecord:
    return repository.save(MemoryRecord.create(namespace, content, **kwargs), vector)


def test_recall_ranks_by_effective_score(repository):
    tea = _store(repository, ALICE, "Alice drinks green tea", [1.0, 0.0], importance=0.9)
    coffee = _store(repository, ALICE, "Alice avoids coffee", [0.9, 0.1], importance=0.3)
    _store(repository, BOB, "Bob drinks tea", [1.0, 0.0], importance=1.0)

    hits = _engine(repository).recall_scored(ALICE, QUERY, 5)

    assert [hit.record.id for hit in hits] == [tea.id, coffee.id]
    assert hits[0].similarity == pytest.approx(1.0)
    assert hits[0].score == pytest.approx(0.9)
    assert hits[0].score > hits[1].score


def test_recall_records_access(repository):
    record = _store(repository, ALICE, "Alice likes cats", [1.0, 0.0])

    _engine(repository).recall(ALICE, QUERY, 3)
    _engine(repository).recall(ALICE, QUERY, 3)

    assert repository.find_by_id(record.id).access_count == 2


def test_recall_respects_top_k(repository):
    for index in range(4):
        _store(repository, ALICE, f"memory {index}", [1.0, float(index)])

    assert len(_engine(repository).recall(ALICE, QUERY, 2)) == 2
    assert _engine(repository).recall(ALICE, QUERY, 0) == []
    assert _engine(repository).recall(Namespace.for_user("nobody"), QUERY, 5) == []


def test_long_forgotten_memories_are_skipped(repository):
    ancient = utcnow() - timedelta(days=400)
    _store(repository, ALICE, "Alice went to a concert", [1.0, 0.0], type=MemoryType.EPISODE, created_at=ancient)
    current = _store(repository, ALICE, "Alice plays chess", [0.5, 0.5])

    hits = _engine(repository).recall(ALICE, QUERY, 5)

    assert [record.id for record in hits] == [current.id]


def test_decay_can_be_disabled(repository):
    ancient = utcnow() - timedelta(days=400)
    old = _store(repository, ALICE, "Alice went to a concert", [1.0, 0.0], type=MemoryType.EPISODE, created_at=ancient)

    hits = _engine(repository, enable_decay=False).recall(ALICE, QUERY, 5)

    assert [record.id for record in hits] == [old.id]
    assert hits[0].decay_factor == 1.0


def test_filter_is_reapplied_to_fresh_decay(repository):
    month_old = utcnow() - timedelta(days=30)
    _store(repository, ALICE, "Alice used to live in Busan", [1.0, 0.0], created_at=month_old)
    fresh = _store(repository, ALICE, "Alice lives in Seoul", [0.8, 0.2])
    search_filter = SearchFilter(min_decay_factor=0.6)

    hits = _engine(repository).recall(ALICE, QUERY, 5, search_filter)

    assert [record.id for record in hits] == [fresh.id]


def test_returned_records_carry_recomputed_decay(repository):
    month_old = utcnow() - timedelta(days=30)
    record = _store(repository, ALICE, "Alice used to live in Busan", [1.0, 0.0], created_at=month_old)

    (hit,) = _engine(repository).recall(ALICE, QUERY, 1)

    assert hit.decay_factor == pytest.approx(0.5488, abs=1e-3)
    assert repository.find_by_id(record.id).decay_factor == 1.0


def test_type_filter_limits_candidates(repository):
    _store(repository, ALICE, "Alice is a nurse", [1.0, 0.0], type=MemoryType.FACT)
    goal = _store(repository, ALICE, "Alice wants to learn piano", [0.7, 0.3], type=MemoryType.GOAL)

    hits = _engine(repository).recall(ALICE, QUERY, 5, SearchFilter(types=frozenset({MemoryType.GOAL})))

    assert [record.id for record in hits] == [goal.id]


def test_recall_across_merges_namespaces(repository):
    specific = _store(repository, PROJECT, "Project deadline is Friday", [1.0, 0.0])
    general = _store(repository, ALICE, "Alice prefers short meetings", [0.6, 0.4])
    _store(repository, BOB, "Bob's deadline is Monday", [1.0, 0.0])

    hits = _engine(repository).recall_across([PROJECT, ALICE, PROJECT], QUERY, 5)

    assert [hit.record.id for hit in hits] == [specific.id, general.id]
    assert repository.find_by_id(general.id).access_count == 1


def test_recall_accepts_naive_timestamps(repository):
    naive_now = utcnow().replace(tzinfo=None)
    recent = _store(repository, ALICE, "Alice started pottery", [1.0, 0.0], created_at=naive_now - timedelta(days=2))
    _store(repository, ALICE, "Alice took a pottery trial", [0.9, 0.1], created_at=naive_now - timedelta(days=10))
    search_filter = SearchFilter.builder().created_after(naive_now - timedelta(days=5)).build()

    assert [record.id for record in _engine(repository).recall(ALICE, QUERY, 5)][0] == recent.id
    assert [record.id for record in _engine(repository).recall(ALICE, QUERY, 5, search_filter)] == [recent.id]
