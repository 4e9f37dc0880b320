"""
Pydantic schemas for the history ledger.

These define the record shape callers see and the shape of the
portable export/import document. Field names are snake_case in
Python and camelCase on the wire, matching documents exported
by earlier versions of the tool.
"""

import enum
import logging
from datetime import datetime, timezone
from typing import Any, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    StrictStr,
    field_validator,
)
from pydantic.alias_generators import to_camel

from medinsight_history.models.history_event import utcnow

logger = logging.getLogger(__name__)

WIRE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ImportMode(str, enum.Enum):
    """How an imported document is reconciled with the existing ledger."""
    REPLACE = "replace"
    APPEND = "append"


# --- Request Schemas ---

class HistoryEventCreate(BaseModel):
    """What a producer supplies when recording an event."""
    module: str = Field(min_length=1)
    action: str = Field(min_length=1)
    input_summary: str | None = None
    output_summary: str | None = None
    details: Any = None

    model_config = WIRE_CONFIG


class ImportedHistoryEvent(BaseModel):
    """
    One element of an import document.

    Only module, action and timestamp are required. Any id in the
    document is ignored; the store always assigns a fresh one.
    """
    module: StrictStr = Field(min_length=1)
    action: StrictStr = Field(min_length=1)
    timestamp: Union[StrictStr, StrictInt, StrictFloat]
    input_summary: str | None = None
    output_summary: str | None = None
    details: Any = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def recorded_at(self) -> datetime:
        """The timestamp as naive UTC, or now if it cannot be read."""
        return parse_timestamp(self.timestamp)


# --- Response Schemas ---

class HistoryEventRecord(BaseModel):
    """An immutable snapshot of a persisted event."""
    id: int
    timestamp: datetime
    module: str
    action: str
    input_summary: str | None = None
    output_summary: str | None = None
    details: Any = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        frozen=True,
    )

    @field_validator("timestamp")
    @classmethod
    def timestamp_is_utc(cls, v: datetime) -> datetime:
        # The database hands back naive UTC
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class RecordedResponse(BaseModel):
    """Result of a best-effort append; id is None when the write was lost."""
    id: int | None


class ImportResult(BaseModel):
    imported: int
    mode: ImportMode


# --- Timestamp coercion ---

def parse_timestamp(value: str | int | float) -> datetime:
    """
    Read an imported timestamp as naive UTC.

    Strings are ISO-8601 (a trailing Z or an offset is honoured,
    no offset means UTC). Numbers are milliseconds since the Unix
    epoch, the form JavaScript dates serialize to. Anything that
    cannot be read becomes the current time.
    """
    try:
        if isinstance(value, str):
            parsed = datetime.fromisoformat(value.strip())
        else:
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        logger.warning("Unreadable timestamp %r in import, using now", value)
        return utcnow()

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
