"""
Database models package.

All models must be imported here so that Alembic can discover
them through Base.metadata when generating migrations.
"""

from medinsight_history.models.base import Base
from medinsight_history.models.history_event import HistoryEvent
from medinsight_history.models.schema_version import SchemaVersion, SCHEMA_VERSION

__all__ = [
    "Base",
    "HistoryEvent",
    "SchemaVersion",
    "SCHEMA_VERSION",
]
