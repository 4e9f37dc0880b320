"""
Live queries over the history ledger.

A LiveQuery holds the current result of a HistoryQuery and
re-runs it whenever the change feed reports a committed
mutation. Views read `snapshot` or pass a listener that is
called with each new result; nobody polls.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Iterator

from sqlalchemy import Select, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from medinsight_history.change_feed import ChangeFeed, LedgerChange
from medinsight_history.models.history_event import HistoryEvent
from medinsight_history.schemas.history import HistoryEventRecord

logger = logging.getLogger(__name__)

Listener = Callable[[list[HistoryEventRecord]], None]


@dataclass(frozen=True)
class HistoryQuery:
    """
    Which records a view wants.

    The default is every record, newest first. Ties on timestamp
    fall back to id so later inserts still come first.
    """
    module: str | None = None

    def statement(self) -> Select:
        stmt = select(HistoryEvent)
        if self.module is not None:
            stmt = stmt.where(HistoryEvent.module == self.module)
        return stmt.order_by(HistoryEvent.timestamp.desc(), HistoryEvent.id.desc())

    def run(self, db: Session) -> list[HistoryEventRecord]:
        rows = db.execute(self.statement()).scalars().all()
        return [HistoryEventRecord.model_validate(row) for row in rows]


ALL_EVENTS = HistoryQuery()


class LiveQuery:
    """A continuously up-to-date result of one HistoryQuery."""

    def __init__(
        self,
        session_factory: sessionmaker,
        feed: ChangeFeed,
        query: HistoryQuery = ALL_EVENTS,
        listener: Listener | None = None,
    ):
        self.query = query
        self._session_factory = session_factory
        self._listener = listener
        self._lock = threading.Lock()
        # Held across load and swap so refreshes apply in commit order
        self._refresh_lock = threading.RLock()
        self._snapshot: list[HistoryEventRecord] = []
        self._unsubscribe: Callable[[], None] | None = None

        # Subscribe before the first load so no commit falls between them
        with self._refresh_lock:
            self._unsubscribe = feed.subscribe(self._on_change)
            self._snapshot = self._load() or []

    @property
    def snapshot(self) -> list[HistoryEventRecord]:
        with self._lock:
            return list(self._snapshot)

    @property
    def closed(self) -> bool:
        return self._unsubscribe is None

    def refresh(self) -> bool:
        """
        Re-run the query and replace the held snapshot.

        Returns True when the result changed, in which case the
        listener has been called with it. A storage failure keeps
        the previous snapshot.

        Refreshes are serialized, so a load that started earlier can
        never overwrite the result of a later one, and listeners see
        snapshots in the order they were taken.
        """
        with self._refresh_lock:
            result = self._load()
            if result is None:
                return False

            with self._lock:
                if result == self._snapshot:
                    return False
                self._snapshot = result

            if self._listener is not None:
                self._listener(list(result))
            return True

    def close(self) -> None:
        """Stop following the ledger. The last snapshot stays readable."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _load(self) -> list[HistoryEventRecord] | None:
        try:
            with self._session_factory() as db:
                return self.query.run(db)
        except SQLAlchemyError:
            logger.exception("Live history query failed, keeping previous snapshot")
            return None

    def _on_change(self, change: LedgerChange) -> None:
        self.refresh()

    def __iter__(self) -> Iterator[HistoryEventRecord]:
        return iter(self.snapshot)

    def __len__(self) -> int:
        return len(self.snapshot)

    def __enter__(self) -> "LiveQuery":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def subscribe(
    session_factory: sessionmaker,
    feed: ChangeFeed,
    query: HistoryQuery = ALL_EVENTS,
    listener: Listener | None = None,
) -> LiveQuery:
    """
    Start a live query.

    The query runs once immediately; the listener is only called for
    later changes, so an initial value should be read from `snapshot`.
    """
    return LiveQuery(session_factory, feed, query=query, listener=listener)
