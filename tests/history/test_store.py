"""
Unit tests for generation history stores.

Every check runs against both the in-memory store and the SQL store on
in-memory SQLite.
"""

import warnings
from datetime import datetime, timedelta, timezone

import pytest

from harmony_ai.errors import InvalidStatusTransition, PersistenceError
from harmony_ai.history.store import MAX_PAGE_SIZE, InMemoryHistoryStore, SqlHistoryStore
from harmony_ai.models.generation import GenerationStatus
from harmony_ai.schemas.generation import GenerationRecord, HistoryFilters
from harmony_ai.schemas.operations import Operation

BASE_TIME = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["memory", "sql"])
def store(request, session_factory):
    if request.param == "memory":
        return InMemoryHistoryStore()
    return SqlHistoryStore(session_factory)


def make_record(record_id, user_id="user-1", operation="bio", minutes=0, **kwargs):
    return GenerationRecord(
        id=record_id,
        user_id=user_id,
        operation=operation,
        status=GenerationStatus.PENDING,
        input_snapshot={"payload": {"name": "Nova"}},
        created_at=BASE_TIME + timedelta(minutes=minutes),
        **kwargs,
    )


def complete(store, record_id, provider="gemini", degraded=False, processing_ms=100):
    store.update(record_id, status=GenerationStatus.PROCESSING)
    return store.update(
        record_id,
        status=GenerationStatus.COMPLETED,
        refined_output={"bio": "text"},
        provider_used=provider,
        degraded=degraded,
        processing_time_ms=processing_ms,
    )


def test_save_and_get(store):
    store.save(make_record("gen-1", artist_id="artist-1"))

    record = store.get("gen-1", "user-1")

    assert record.status == GenerationStatus.PENDING
    assert record.artist_id == "artist-1"
    assert record.input_snapshot == {"payload": {"name": "Nova"}}


def test_get_is_scoped_to_owner(store):
    """Test another user's record looks like a missing one."""
    store.save(make_record("gen-1"))

    assert store.get("gen-1", "user-2") is None
    assert store.get("missing", "user-1") is None


def test_duplicate_save_rejected(store):
    store.save(make_record("gen-1"))

    with pytest.raises(PersistenceError):
        store.save(make_record("gen-1"))


def test_lifecycle_sets_completed_at(store):
    """Test pending -> processing -> completed stamps the completion time."""
    store.save(make_record("gen-1"))

    record = complete(store, "gen-1")

    assert record.status == GenerationStatus.COMPLETED
    assert record.provider_used == "gemini"
    assert record.refined_output == {"bio": "text"}
    assert record.completed_at is not None


def test_terminal_records_never_change(store):
    """Test completed and failed records reject every status change."""
    store.save(make_record("gen-1"))
    store.save(make_record("gen-2"))
    complete(store, "gen-1")
    store.update("gen-2", status=GenerationStatus.FAILED, error_message="cancelled")

    with pytest.raises(InvalidStatusTransition):
        store.update("gen-1", status=GenerationStatus.FAILED)
    with pytest.raises(InvalidStatusTransition):
        store.update("gen-2", status=GenerationStatus.PROCESSING)

    assert store.get("gen-1", "user-1").status == GenerationStatus.COMPLETED
    assert store.get("gen-2", "user-1").error_message == "cancelled"


def test_pending_cannot_skip_to_completed(store):
    store.save(make_record("gen-1"))

    with pytest.raises(InvalidStatusTransition):
        store.update("gen-1", status=GenerationStatus.COMPLETED)


def test_update_emits_no_serializer_warnings(store):
    """Test a status update round-trips the record without pydantic serializer warnings."""
    store.save(make_record("gen-1"))

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        record = complete(store, "gen-1")
        record.model_dump()

    assert [str(w.message) for w in caught if "serializ" in str(w.message).lower()] == []
    assert record.status == GenerationStatus.COMPLETED
    assert record.completed_at is not None


def test_update_unknown_record(store):
    with pytest.raises(PersistenceError):
        store.update("missing", status=GenerationStatus.PROCESSING)


def test_update_rejects_identity_fields(store):
    store.save(make_record("gen-1"))

    with pytest.raises(PersistenceError):
        store.update("gen-1", user_id="user-2")


def test_list_newest_first_with_pagination(store):
    for i in range(5):
        store.save(make_record(f"gen-{i}", minutes=i))
    store.save(make_record("other", user_id="user-2"))

    page = store.list("user-1", page=2, limit=2)

    assert [r.id for r in page.items] == ["gen-2", "gen-1"]
    assert page.total == 5
    assert page.pages == 3


def test_list_limit_is_capped(store):
    store.save(make_record("gen-1"))

    page = store.list("user-1", limit=1000)

    assert page.limit == MAX_PAGE_SIZE


def test_list_filters(store):
    store.save(make_record("bio-1", operation="bio", minutes=1))
    store.save(make_record("img-1", operation="image", minutes=2))
    store.save(make_record("img-2", operation="image", minutes=3))
    complete(store, "img-1", provider="nanobanana")
    complete(store, "bio-1", provider="gemini")

    by_operation = store.list("user-1", HistoryFilters(operation=Operation.IMAGE))
    by_provider = store.list("user-1", HistoryFilters(provider="gemini"))
    by_status = store.list("user-1", HistoryFilters(status=GenerationStatus.PENDING))

    assert {r.id for r in by_operation.items} == {"img-1", "img-2"}
    assert [r.id for r in by_provider.items] == ["bio-1"]
    assert [r.id for r in by_status.items] == ["img-2"]


def test_delete_is_scoped_to_owner(store):
    store.save(make_record("gen-1"))

    assert store.delete("gen-1", "user-2") is False
    assert store.delete("gen-1", "user-1") is True
    assert store.get("gen-1", "user-1") is None
    assert store.delete("gen-1", "user-1") is False


def test_stats(store):
    """Test per-operation counts, provider usage and success rates."""
    store.save(make_record("bio-1", operation="bio"))
    store.save(make_record("bio-2", operation="bio"))
    store.save(make_record("img-1", operation="image"))
    store.save(make_record("other", user_id="user-2"))
    complete(store, "bio-1", provider="gemini", processing_ms=100)
    complete(store, "img-1", provider="local-template", degraded=True, processing_ms=300)
    store.update("bio-2", status=GenerationStatus.FAILED, error_message="boom")

    stats = store.stats("user-1")

    assert stats["total"] == 3
    assert stats["completed"] == 2
    assert stats["degraded"] == 1
    assert stats["success_rate"] == pytest.approx(2 / 3, abs=1e-4)
    assert stats["avg_processing_time_ms"] == 200.0
    assert stats["provider_usage"] == {"gemini": 1, "local-template": 1}
    assert stats["by_operation"]["bio"] == {"total": 2, "completed": 1, "failed": 1, "success_rate": 0.5}


def test_stats_for_new_user(store):
    stats = store.stats("nobody")

    assert stats["total"] == 0
    assert stats["success_rate"] == 0.0
    assert stats["by_operation"] == {}
