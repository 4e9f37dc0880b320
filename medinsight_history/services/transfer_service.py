"""
Transfer service: export the ledger to a portable document and
import such a document back.

Import runs in two phases:
1. Validation: the whole document must be a JSON array of event
   objects, each with a module, an action and a timestamp. One bad
   element rejects the document; nothing is written.
2. Reconciliation: REPLACE clears the ledger and writes every
   element; APPEND writes every element next to the existing ones.
   Imported ids are dropped and fresh ones assigned, while the
   imported timestamps are kept so the chronology survives.

Both reconciliation modes run in a single transaction. If the
write fails the transaction is rolled back and the ledger is left
exactly as it was before the import started.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medinsight_history.change_feed import ChangeKind, mark_changed
from medinsight_history.errors import (
    EmptyLedger,
    ImportFailed,
    InvalidSchema,
    MalformedImport,
    StorageUnavailable,
)
from medinsight_history.models.history_event import HistoryEvent
from medinsight_history.schemas.history import (
    ImportMode,
    ImportResult,
    ImportedHistoryEvent,
)
from medinsight_history.services.live_query import ALL_EVENTS

logger = logging.getLogger(__name__)

EXPORT_FILENAME_PREFIX = "medinsight-history"

_document_adapter = TypeAdapter(list[ImportedHistoryEvent])


class HistoryTransferService:

    def __init__(self, db: Session):
        self.db = db

    # --- Export ---

    def export_all(self) -> list[dict[str, Any]]:
        """
        Return every event, newest first, as JSON-ready dicts.

        Each dict carries every field, including the id and an
        ISO-8601 UTC timestamp. Raises EmptyLedger when there is
        nothing to export and StorageUnavailable if the read fails.
        """
        try:
            records = ALL_EVENTS.run(self.db)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageUnavailable(f"Could not read history for export: {e}") from e

        if not records:
            raise EmptyLedger("There are no history events to export")

        return [record.model_dump(mode="json", by_alias=True) for record in records]

    def export_json(self) -> str:
        """The export document rendered as indented JSON text."""
        return json.dumps(self.export_all(), indent=2, ensure_ascii=False)

    @staticmethod
    def export_filename(now: datetime | None = None) -> str:
        now = now or datetime.now(timezone.utc)
        return f"{EXPORT_FILENAME_PREFIX}-{now:%Y-%m-%d}.json"

    # --- Import ---

    @staticmethod
    def parse_document(document: str | bytes | Any) -> list[ImportedHistoryEvent]:
        """
        Validate an import document.

        Accepts raw JSON text or an already decoded value. Raises
        MalformedImport for text that is not JSON and InvalidSchema
        for JSON that is not a list of event objects.
        """
        if isinstance(document, (str, bytes, bytearray)):
            try:
                document = json.loads(document)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise MalformedImport(f"Import file is not valid JSON: {e}") from e

        if not isinstance(document, list):
            raise InvalidSchema(
                "Import document must be a JSON array of history events"
            )

        try:
            return _document_adapter.validate_python(document)
        except ValidationError as e:
            errors = e.errors(include_url=False, include_input=False)
            raise InvalidSchema(
                f"Import document has {len(errors)} invalid field(s); "
                "every event needs a module, an action and a timestamp",
                errors=errors,
            ) from e

    def import_document(
        self, document: str | bytes | Any, mode: ImportMode
    ) -> ImportResult:
        """
        Validate `document` and write it into the ledger under `mode`.

        Validation errors (MalformedImport, InvalidSchema) are raised
        before anything is written. A failed write raises ImportFailed.
        """
        mode = ImportMode(mode)
        events = self.parse_document(document)

        # Exports are newest first; inserting in reverse keeps ids in
        # chronological order, so timestamp ties survive a round trip
        rows = [
            HistoryEvent(
                timestamp=event.recorded_at(),
                module=event.module,
                action=event.action,
                input_summary=event.input_summary,
                output_summary=event.output_summary,
                details=event.details,
            )
            for event in reversed(events)
        ]

        try:
            if mode == ImportMode.REPLACE:
                self.db.execute(delete(HistoryEvent))
            self.db.add_all(rows)
            self.db.flush()
            mark_changed(self.db, ChangeKind.IMPORT, count=len(rows))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("History import (%s) failed: %s", mode.value, e)
            raise ImportFailed(
                f"The import file was valid but writing it failed: {e}"
            ) from e

        logger.info("Imported %s history events (%s)", len(rows), mode.value)
        return ImportResult(imported=len(rows), mode=mode)
