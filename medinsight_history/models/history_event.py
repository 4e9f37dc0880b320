"""
History event model.

One row per user-triggered workflow action. Rows are immutable:
once appended they are never updated, only deleted one at a
time or all together.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import String, DateTime, Text, JSON
from sqlalchemy.orm import Mapped, mapped_column

from medinsight_history.models.base import Base


def utcnow() -> datetime:
    """Current time as naive UTC, the form timestamps are stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class HistoryEvent(Base):
    """
    An entry in the activity ledger.

    The id is assigned by the database. AUTOINCREMENT stops SQLite
    from handing out the id of a deleted newest row again, so ids
    grow strictly for the life of the database, even across clears.
    """

    __tablename__ = "history_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, index=True
    )
    module: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    input_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    output_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Shape is owned by the producing module
    details: Mapped[Any] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<HistoryEvent {self.id} {self.module} / {self.action}>"
