"""Ledger services."""

from medinsight_history.services.history_service import HistoryService
from medinsight_history.services.live_query import (
    ALL_EVENTS,
    HistoryQuery,
    LiveQuery,
    subscribe,
)
from medinsight_history.services.transfer_service import HistoryTransferService

__all__ = [
    "HistoryService",
    "HistoryTransferService",
    "HistoryQuery",
    "LiveQuery",
    "ALL_EVENTS",
    "subscribe",
]
