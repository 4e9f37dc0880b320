"""
Tests for the HistoryService.

Tests cover:
- Id assignment (store-owned, strictly increasing, never reused)
- Ordering by timestamp, newest first, ties by id
- Best-effort recording that never raises
- Point deletion and full erasure
- Degraded reads when the database is unavailable
- Concurrent appends from several threads
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from medinsight_history.errors import NotFound, StorageUnavailable
from medinsight_history.models.history_event import utcnow
from medinsight_history.schemas.history import HistoryEventCreate
from medinsight_history.services.history_service import HistoryService
from medinsight_history.services.live_query import HistoryQuery


T0 = datetime(2026, 3, 1, 9, 0, 0)


# --- Helper to reduce repetition ---

def record(service, module, action, timestamp=None, **fields):
    """Append an event and return its id."""
    return service.append(
        HistoryEventCreate(module=module, action=action, **fields),
        timestamp=timestamp,
    )


def failing_commit():
    raise OperationalError("COMMIT", {}, Exception("database is locked"))


# --- Append Tests ---

class TestAppend:

    def test_append_assigns_id_and_timestamp(self, db_session):
        service = HistoryService(db_session)
        before = utcnow()

        event_id = record(service, "Medical Image Analysis", "Image Analyzed")

        event = service.get_event(event_id)
        assert event.id == event_id
        assert event.module == "Medical Image Analysis"
        assert event.action == "Image Analyzed"
        assert event.timestamp.replace(tzinfo=None) >= before - timedelta(seconds=1)

    def test_ids_strictly_increase(self, db_session):
        service = HistoryService(db_session)
        ids = [record(service, "A", f"x{i}") for i in range(5)]

        assert ids == sorted(ids)
        assert len(set(ids)) == 5

    def test_ids_not_reused_after_deleting_newest(self, db_session):
        service = HistoryService(db_session)
        record(service, "A", "x1")
        newest = record(service, "A", "x2")
        service.delete_history_event(newest)

        assert record(service, "A", "x3") > newest

    def test_ids_not_reused_after_clear(self, db_session):
        service = HistoryService(db_session)
        last = record(service, "A", "x1")
        service.clear_history()

        assert record(service, "A", "x2") > last

    def test_optional_fields_round_trip(self, db_session):
        service = HistoryService(db_session)
        details = {"fileName": "scan.png", "fileSize": "1.2 MB", "tags": [1, 2]}

        event_id = record(
            service,
            "Medical Image Analysis",
            "Image Analyzed",
            input_summary="scan.png",
            output_summary="No abnormalities found.",
            details=details,
        )

        event = service.get_event(event_id)
        assert event.input_summary == "scan.png"
        assert event.output_summary == "No abnormalities found."
        assert event.details == details

    def test_optional_fields_default_to_none(self, db_session):
        service = HistoryService(db_session)
        event = service.get_event(record(service, "A", "x"))

        assert event.input_summary is None
        assert event.output_summary is None
        assert event.details is None


# --- Best-effort Recording Tests ---

class TestAddHistoryEvent:

    def test_returns_new_id(self, db_session):
        service = HistoryService(db_session)
        event_id = service.add_history_event(
            HistoryEventCreate(module="PDF Data Extraction", action="Data Extracted")
        )
        assert event_id is not None
        assert service.count() == 1

    def test_storage_failure_is_swallowed(self, db_session, session_factory, monkeypatch, caplog):
        service = HistoryService(db_session)
        monkeypatch.setattr(db_session, "commit", failing_commit)

        event_id = service.add_history_event(
            HistoryEventCreate(module="Intelligent Diagnosis", action="Suggested")
        )

        assert event_id is None
        assert "Failed to add history event" in caplog.text
        with session_factory() as other:
            assert HistoryService(other).count() == 0

    def test_unavailable_database_is_swallowed(self, unavailable_session):
        service = HistoryService(unavailable_session)
        assert service.add_history_event(
            HistoryEventCreate(module="A", action="x")
        ) is None

    def test_append_raises_storage_unavailable(self, unavailable_session):
        service = HistoryService(unavailable_session)
        with pytest.raises(StorageUnavailable):
            record(service, "A", "x")


# --- Read Tests ---

class TestGetAll:

    def test_newest_first(self, db_session):
        service = HistoryService(db_session)
        record(service, "A", "x1", timestamp=T0)
        record(service, "B", "x2", timestamp=T0 + timedelta(minutes=1))
        record(service, "A", "x3", timestamp=T0 + timedelta(minutes=2))

        actions = [e.action for e in service.get_all_history_events()]
        assert actions == ["x3", "x2", "x1"]

    def test_ordered_by_timestamp_not_insertion(self, db_session):
        service = HistoryService(db_session)
        record(service, "A", "late", timestamp=T0 + timedelta(hours=2))
        record(service, "A", "early", timestamp=T0)
        record(service, "A", "middle", timestamp=T0 + timedelta(hours=1))

        actions = [e.action for e in service.get_all_history_events()]
        assert actions == ["late", "middle", "early"]

    def test_equal_timestamps_newest_insert_first(self, db_session):
        service = HistoryService(db_session)
        first = record(service, "A", "first", timestamp=T0)
        second = record(service, "A", "second", timestamp=T0)

        ids = [e.id for e in service.get_all_history_events()]
        assert ids == [second, first]

    def test_filter_by_module(self, db_session):
        service = HistoryService(db_session)
        record(service, "A", "x1", timestamp=T0)
        record(service, "B", "x2", timestamp=T0 + timedelta(minutes=1))
        record(service, "A", "x3", timestamp=T0 + timedelta(minutes=2))

        events = service.get_all_history_events(HistoryQuery(module="A"))
        assert [e.action for e in events] == ["x3", "x1"]

    def test_empty_ledger(self, db_session):
        assert HistoryService(db_session).get_all_history_events() == []

    def test_unavailable_database_reads_as_empty(self, unavailable_session):
        assert HistoryService(unavailable_session).get_all_history_events() == []

    def test_get_event_not_found(self, db_session):
        with pytest.raises(NotFound):
            HistoryService(db_session).get_event(999)

    def test_records_are_immutable(self, db_session):
        service = HistoryService(db_session)
        event = service.get_event(record(service, "A", "x"))

        with pytest.raises(ValidationError):
            event.action = "changed"


# --- Delete Tests ---

class TestDelete:

    def test_delete_removes_exactly_one(self, db_session):
        service = HistoryService(db_session)
        keep = record(service, "A", "keep")
        drop = record(service, "A", "drop")

        assert service.delete_history_event(drop) is True
        assert [e.id for e in service.get_all_history_events()] == [keep]

    def test_delete_missing_id_is_noop(self, db_session):
        service = HistoryService(db_session)
        record(service, "A", "x")

        assert service.delete_history_event(12345) is False
        assert service.count() == 1

    def test_delete_unavailable_raises(self, unavailable_session):
        with pytest.raises(StorageUnavailable):
            HistoryService(unavailable_session).delete_history_event(1)


# --- Clear Tests ---

class TestClear:

    def test_clear_removes_everything(self, db_session):
        service = HistoryService(db_session)
        for i in range(3):
            record(service, "A", f"x{i}")

        assert service.clear_history() == 3
        assert service.get_all_history_events() == []

    def test_clear_empty_ledger(self, db_session):
        assert HistoryService(db_session).clear_history() == 0

    def test_clear_unavailable_raises(self, unavailable_session):
        with pytest.raises(StorageUnavailable):
            HistoryService(unavailable_session).clear_history()


# --- Concurrency Tests ---

class TestConcurrentAppend:

    def test_concurrent_appends_get_distinct_ids(self, session_factory):
        def append_one(i):
            with session_factory() as db:
                return record(HistoryService(db), "A", f"x{i}")

        with ThreadPoolExecutor(max_workers=8) as pool:
            ids = list(pool.map(append_one, range(20)))

        assert len(set(ids)) == 20
        assert sorted(ids) == list(range(1, 21))
        with session_factory() as db:
            assert HistoryService(db).count() == 20
