"""
History service: the only code that writes to the ledger.

This service enforces the ledger's rules:
1. Ids and append timestamps are assigned here, never by callers
2. Records are immutable; there is no update operation
3. Reads are ordered newest first (timestamp, then id)
4. Recording an event is best effort and never fails the caller
5. Deleting and clearing are user actions, so their failures surface

Every mutation commits its own transaction and marks the session,
so the change feed tells live queries about it after the commit.
"""

import logging
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medinsight_history.change_feed import ChangeKind, mark_changed
from medinsight_history.errors import NotFound, StorageUnavailable
from medinsight_history.models.history_event import HistoryEvent, utcnow
from medinsight_history.schemas.history import HistoryEventCreate, HistoryEventRecord
from medinsight_history.services.live_query import ALL_EVENTS, HistoryQuery

logger = logging.getLogger(__name__)


class HistoryService:
    """
    All ledger reads and writes pass through this service.

    The service takes a database session as a constructor
    argument and commits on it after each mutation.
    """

    def __init__(self, db: Session):
        self.db = db

    def append(
        self, request: HistoryEventCreate, timestamp: datetime | None = None
    ) -> int:
        """
        Persist one event and return its id.

        The timestamp is now unless given. Raises StorageUnavailable
        if the write fails; nothing is written in that case.
        """
        event = HistoryEvent(
            timestamp=timestamp if timestamp is not None else utcnow(),
            module=request.module,
            action=request.action,
            input_summary=request.input_summary,
            output_summary=request.output_summary,
            details=request.details,
        )
        try:
            self.db.add(event)
            self.db.flush()
            mark_changed(self.db, ChangeKind.APPEND)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageUnavailable(f"Could not append history event: {e}") from e
        return event.id

    def add_history_event(self, request: HistoryEventCreate) -> int | None:
        """
        Record an event on behalf of a workflow module.

        Never raises. A lost history entry must not fail the
        analysis that produced it, so storage errors are logged
        and None is returned instead of an id.
        """
        try:
            return self.append(request)
        except StorageUnavailable:
            logger.exception(
                "Failed to add history event (%s / %s)",
                request.module,
                request.action,
            )
            return None

    def get_all_history_events(
        self, query: HistoryQuery = ALL_EVENTS
    ) -> list[HistoryEventRecord]:
        """
        Return the events matching `query`, newest first.

        A storage failure reads as an empty history rather than
        an error, so views can still render.
        """
        try:
            return query.run(self.db)
        except SQLAlchemyError:
            logger.exception("Failed to read history events")
            self.db.rollback()
            return []

    def get_event(self, event_id: int) -> HistoryEventRecord:
        """Return one event. Raises NotFound or StorageUnavailable."""
        try:
            event = self.db.get(HistoryEvent, event_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageUnavailable(f"Could not read history event: {e}") from e
        if event is None:
            raise NotFound(f"History event {event_id} not found")
        return HistoryEventRecord.model_validate(event)

    def count(self) -> int:
        """Number of events in the ledger. Raises StorageUnavailable."""
        try:
            return self.db.execute(
                select(func.count()).select_from(HistoryEvent)
            ).scalar_one()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageUnavailable(f"Could not count history events: {e}") from e

    def delete_history_event(self, event_id: int) -> bool:
        """
        Delete one event by id.

        Deleting an id that does not exist changes nothing and is
        not an error; the return value tells whether a row went away.
        Raises StorageUnavailable if the database fails.
        """
        try:
            result = self.db.execute(
                delete(HistoryEvent).where(HistoryEvent.id == event_id)
            )
            deleted = result.rowcount > 0
            if deleted:
                mark_changed(self.db, ChangeKind.DELETE)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageUnavailable(f"Could not delete history event: {e}") from e

        if deleted:
            logger.info("Deleted history event %s", event_id)
        return deleted

    def clear_history(self) -> int:
        """
        Delete every event. Irreversible.

        Returns how many events were removed. Raises
        StorageUnavailable if the database fails.
        """
        try:
            result = self.db.execute(delete(HistoryEvent))
            removed = result.rowcount
            mark_changed(self.db, ChangeKind.CLEAR, count=removed)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageUnavailable(f"Could not clear history: {e}") from e

        logger.info("Cleared history (%s events removed)", removed)
        return removed
