"""Behavioural tests shared by every metadata store backend."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from agent_memory.core.exceptions import StorageError
from agent_memory.memory.memory_records import MemoryRecord, MemoryType
from agent_memory.memory.namespace import Namespace
from agent_memory.memory.search_filter import SearchFilter
from agent_memory.memory.storage import InMemoryMetadataStore, SqliteMetadataStore

ALICE = Namespace.for_user("alice")
BOB = Namespace.for_user("bob")


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryMetadataStore()
    return SqliteMetadataStore(tmp_path / "memory.db")


def _record(content: str, namespace: Namespace = ALICE, **kwargs) -> MemoryRecord:
    return MemoryRecord.create(namespace, content, **kwargs)


def test_save_and_find_by_id(store):
    record = _record("Alice lives in Seoul", metadata={"source": "api"}, session_id="s1")
    store.save(record)

    loaded = store.find_by_id(record.id)

    assert loaded is not None
    assert loaded.content == "Alice lives in Seoul"
    assert loaded.namespace == ALICE
    assert loaded.metadata == {"source": "api"}
    assert loaded.session_id == "s1"
    assert store.find_by_id("missing") is None


def test_namespaces_are_isolated(store):
    store.save_all([_record("alice fact"), _record("bob fact", BOB)])

    assert [record.content for record in store.find_by_namespace(ALICE)] == ["alice fact"]
    assert [record.content for record in store.find_by_namespace(BOB)] == ["bob fact"]
    assert store.find_by_namespace(ALICE.child("project")) == []
    assert len(store.find_all()) == 2


def test_save_upserts_existing_record(store):
    record = _record("first version")
    store.save(record)
    store.save(record.copy(importance=0.1))

    assert store.count(ALICE) == 1
    assert store.find_by_id(record.id).importance == pytest.approx(0.1)


def test_find_by_ids_preserves_order_and_skips_missing(store):
    first, second = _record("one"), _record("two")
    store.save_all([first, second])

    found = store.find_by_ids([second.id, "missing", first.id])

    assert [record.id for record in found] == [second.id, first.id]


def test_delete_reports_existence(store):
    record = _record("to forget")
    store.save(record)

    assert store.delete(record.id) is True
    assert store.delete(record.id) is False
    assert store.find_by_id(record.id) is None


def test_delete_by_namespace_returns_ids(store):
    kept = _record("bob keeps this", BOB)
    doomed = [_record("a"), _record("b")]
    store.save_all(doomed + [kept])

    deleted = store.delete_by_namespace(ALICE)

    assert sorted(deleted) == sorted(record.id for record in doomed)
    assert store.count(ALICE) == 0
    assert store.count(BOB) == 1


def test_record_access_bumps_count_and_timestamp(store):
    past = datetime.now(timezone.utc) - timedelta(days=5)
    record = _record("accessed", created_at=past)
    store.save(record)

    store.record_access([record.id, "unknown"])
    store.record_access([record.id])

    loaded = store.find_by_id(record.id)
    assert loaded.access_count == 2
    assert loaded.last_accessed_at > past


def test_decay_updates_and_queries(store):
    fresh, stale = _record("fresh"), _record("stale")
    other = _record("other stale", BOB)
    store.save_all([fresh, stale, other])

    store.update_decay_factor(stale.id, 0.05)
    store.update_decay_factors({other.id: 0.02})

    assert [record.id for record in store.find_decayed(ALICE, 0.1)] == [stale.id]
    assert sorted(record.id for record in store.find_all_decayed(0.1)) == sorted([stale.id, other.id])


def test_filtered_namespace_read(store):
    store.save_all(
        [
            _record("likes tea", type=MemoryType.PREFERENCE),
            _record("wants to run a marathon", type=MemoryType.GOAL),
            _record("minor fact", importance=0.2),
        ]
    )
    search_filter = SearchFilter.builder().types(MemoryType.PREFERENCE, MemoryType.GOAL).min_importance(0.85).build()

    found = store.find_by_namespace_with_filter(ALICE, search_filter)

    assert [record.content for record in found] == ["wants to run a marathon"]


def test_count_by_type(store):
    store.save_all(
        [
            _record("a", type=MemoryType.FACT),
            _record("b", type=MemoryType.FACT),
            _record("c", type=MemoryType.EPISODE),
        ]
    )

    assert store.count_by_type(ALICE) == {MemoryType.FACT: 2, MemoryType.EPISODE: 1}


def test_in_memory_store_returns_copies():
    store = InMemoryMetadataStore()
    record = _record("immutable")
    store.save(record)

    loaded = store.find_by_id(record.id)
    loaded.metadata["tampered"] = True
    record.access_count = 99

    reloaded = store.find_by_id(record.id)
    assert "tampered" not in reloaded.metadata
    assert reloaded.access_count == 0


def test_sqlite_store_persists_between_instances(tmp_path):
    path = tmp_path / "nested" / "memory.db"
    record = _record("durable", type=MemoryType.RELATIONSHIP)
    SqliteMetadataStore(path).save(record)

    reopened = SqliteMetadataStore(path)

    loaded = reopened.find_by_id(record.id)
    assert loaded.type is MemoryType.RELATIONSHIP
    assert loaded.created_at == record.created_at


def test_sqlite_store_wraps_driver_errors(tmp_path):
    directory = tmp_path / "not-a-file"
    directory.mkdir()

    with pytest.raises(StorageError):
        SqliteMetadataStore(directory)


def test_update_decay_factor_is_idempotent(store):
    record = _record("steady")
    store.save(record)

    store.update_decay_factor(record.id, 0.4)
    store.update_decay_factor(record.id, 0.4)

    assert store.find_by_id(record.id).decay_factor == pytest.approx(0.4)


def test_filtered_read_applies_decay_and_creation_bounds(store):
    now = datetime.now(timezone.utc)
    recent = _record("recent", created_at=now - timedelta(hours=1))
    faded = _record("faded", created_at=now - timedelta(hours=2))
    old = _record("old", created_at=now - timedelta(days=10))
    store.save_all([recent, faded, old])
    store.update_decay_factor(faded.id, 0.2)

    search_filter = (
        SearchFilter.builder()
        .min_decay_factor(0.5)
        .created_after(now - timedelta(days=1))
        .created_before(now)
        .build()
    )

    assert [record.id for record in store.find_by_namespace_with_filter(ALICE, search_filter)] == [recent.id]


def test_sqlite_filter_runs_in_the_database(tmp_path, monkeypatch):
    store = SqliteMetadataStore(tmp_path / "memory.db")
    seoul = timezone(timedelta(hours=9))
    morning_in_seoul = datetime(2025, 6, 1, 8, 0, tzinfo=seoul)
    store.save_all(
        [
            _record("likes tea", type=MemoryType.PREFERENCE, created_at=morning_in_seoul),
            _record("wants a marathon", type=MemoryType.GOAL, created_at=morning_in_seoul),
            _record("earlier tea", type=MemoryType.PREFERENCE, created_at=morning_in_seoul - timedelta(days=1)),
        ]
    )
    monkeypatch.setattr(store, "find_by_namespace", lambda namespace: pytest.fail("filter evaluated in Python"))

    search_filter = SearchFilter(
        types=frozenset({MemoryType.PREFERENCE}),
        created_after=datetime(2025, 5, 31, 22, 0, tzinfo=timezone.utc),
    )

    assert [record.content for record in store.find_by_namespace_with_filter(ALICE, search_filter)] == ["likes tea"]
