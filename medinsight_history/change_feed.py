"""
Change feed: the publish side of the live query layer.

Every session created by the ledger's session factory is wired
to a ChangeFeed. Mutating service methods mark the session with
the kind of change they made; when that session commits, the
feed publishes one LedgerChange per mark to every subscriber.
A rollback discards the marks, so subscribers only ever hear
about committed state.
"""

import enum
import logging
import threading
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable

from sqlalchemy import event
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

# Key under Session.info holding the pending, uncommitted changes
PENDING_CHANGES_KEY = "history_pending_changes"


class ChangeKind(str, enum.Enum):
    """What kind of mutation committed."""
    APPEND = "append"
    DELETE = "delete"
    CLEAR = "clear"
    IMPORT = "import"


@dataclass(frozen=True)
class LedgerChange:
    kind: ChangeKind
    count: int = 1


Subscriber = Callable[[LedgerChange], None]


class ChangeFeed:
    """
    In-process publish/subscribe bus for committed ledger changes.

    Delivery is synchronous, on the thread that committed, so
    every subscriber has seen the new state before the mutating
    call returns to its caller.
    """

    def __init__(self):
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a subscriber and return a callable that removes it."""
        with self._lock:
            self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            with self._lock:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, change: LedgerChange) -> None:
        # Snapshot the list so subscribers may unsubscribe while being notified
        with self._lock:
            subscribers = list(self._subscribers)

        for subscriber in subscribers:
            try:
                subscriber(change)
            except Exception:
                # One broken view must not stop the others from refreshing
                logger.exception(
                    "History subscriber failed handling %s change", change.kind.value
                )


def mark_changed(session: Session, kind: ChangeKind, count: int = 1) -> None:
    """Record that this session's current transaction mutated the ledger."""
    session.info.setdefault(PENDING_CHANGES_KEY, []).append(
        LedgerChange(kind=kind, count=count)
    )


def attach_change_feed(factory: sessionmaker, feed: ChangeFeed) -> None:
    """Publish marked changes to `feed` whenever a session from `factory` commits."""

    def after_commit(session: Session) -> None:
        for change in session.info.pop(PENDING_CHANGES_KEY, []):
            feed.publish(change)

    def after_rollback(session: Session) -> None:
        session.info.pop(PENDING_CHANGES_KEY, None)

    event.listen(factory, "after_commit", after_commit)
    event.listen(factory, "after_rollback", after_rollback)


@lru_cache()
def get_change_feed() -> ChangeFeed:
    """Return the process-wide change feed."""
    return ChangeFeed()
