"""
Process-wide history API.

Workflow modules and views call these functions directly; each
call opens the shared store on first use and works in its own
short-lived session.
"""

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy.orm import Session

from medinsight_history.change_feed import get_change_feed
from medinsight_history.errors import StorageUnavailable
from medinsight_history.models.base import get_session_factory, open_store
from medinsight_history.schemas.history import (
    HistoryEventCreate,
    HistoryEventRecord,
    ImportMode,
    ImportResult,
)
from medinsight_history.services.history_service import HistoryService
from medinsight_history.services.live_query import (
    HistoryQuery,
    Listener,
    LiveQuery,
    subscribe as subscribe_query,
)
from medinsight_history.services.transfer_service import HistoryTransferService

logger = logging.getLogger(__name__)


@contextmanager
def session_scope() -> Iterator[Session]:
    """Open the store if needed and yield a session that is always closed."""
    open_store()
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def add_history_event(
    module: str,
    action: str,
    input_summary: str | None = None,
    output_summary: str | None = None,
    details: Any = None,
) -> int | None:
    """Record a workflow event. Never raises; returns the id or None."""
    try:
        request = HistoryEventCreate(
            module=module,
            action=action,
            input_summary=input_summary,
            output_summary=output_summary,
            details=details,
        )
        with session_scope() as db:
            return HistoryService(db).add_history_event(request)
    except (StorageUnavailable, ValueError):
        logger.exception("Failed to add history event (%s / %s)", module, action)
        return None


def get_all_history_events(module: str | None = None) -> list[HistoryEventRecord]:
    """All events, newest first. An unavailable store reads as empty."""
    try:
        with session_scope() as db:
            return HistoryService(db).get_all_history_events(HistoryQuery(module=module))
    except StorageUnavailable:
        logger.exception("Failed to get history events")
        return []


def delete_history_event(event_id: int) -> bool:
    with session_scope() as db:
        return HistoryService(db).delete_history_event(event_id)


def clear_history() -> int:
    with session_scope() as db:
        return HistoryService(db).clear_history()


def export_history() -> list[dict[str, Any]]:
    with session_scope() as db:
        return HistoryTransferService(db).export_all()


def import_history(document: Any, mode: ImportMode | str) -> ImportResult:
    with session_scope() as db:
        return HistoryTransferService(db).import_document(document, ImportMode(mode))


def subscribe(
    query: HistoryQuery | None = None, listener: Listener | None = None
) -> LiveQuery:
    """Follow the ledger; see LiveQuery. Raises StorageUnavailable if it cannot open."""
    open_store()
    return subscribe_query(
        get_session_factory(),
        get_change_feed(),
        query=query or HistoryQuery(),
        listener=listener,
    )
