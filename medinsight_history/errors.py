"""
Error taxonomy for the history ledger.

Validation failures also derive from ValueError so callers
that only care about "bad input" can catch them generically.
"""


class HistoryError(Exception):
    """Base class for every ledger failure."""


class StorageUnavailable(HistoryError):
    """The embedded database could not be opened, read or written."""


class MalformedImport(HistoryError, ValueError):
    """The import payload is not parseable JSON."""


class InvalidSchema(HistoryError, ValueError):
    """The import payload is valid JSON but not a list of event records."""

    def __init__(self, message: str, errors: list[dict] | None = None):
        super().__init__(message)
        self.errors = errors or []


class ImportFailed(HistoryError):
    """The import document was valid but the bulk write did not complete."""


class EmptyLedger(HistoryError):
    """Export was requested while the ledger holds no records."""


class NotFound(HistoryError):
    """No record exists with the requested id."""
