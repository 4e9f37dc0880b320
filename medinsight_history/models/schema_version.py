"""
Schema version bookkeeping for the embedded ledger.

The layout carries an explicit version number. Opening the store
creates any missing tables, stamps a fresh database with the
current version, and runs the additive migration steps for every
version between the stored one and the current one.
"""

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import DateTime, Engine, inspect, select
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Mapped, mapped_column

from medinsight_history.errors import StorageUnavailable
from medinsight_history.models.base import Base
from medinsight_history.models.history_event import utcnow

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# version -> step that upgrades a database from version - 1.
# Steps must only add; existing rows and their ids stay untouched.
MIGRATIONS: dict[int, Callable[[Connection], None]] = {}


class SchemaVersion(Base):
    __tablename__ = "schema_version"

    version: Mapped[int] = mapped_column(primary_key=True, autoincrement=False)
    applied_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )


def get_schema_version(connection: Connection) -> int | None:
    """Return the highest applied version, or None for an unstamped database."""
    return connection.execute(
        select(SchemaVersion.version)
        .order_by(SchemaVersion.version.desc())
        .limit(1)
    ).scalar_one_or_none()


def check_supported_version(connection: Connection) -> int | None:
    """
    Return the stored version, refusing one newer than SCHEMA_VERSION.

    A database without the version table reads as unstamped.
    """
    if not inspect(connection).has_table(SchemaVersion.__tablename__):
        return None
    current = get_schema_version(connection)
    if current is not None and current > SCHEMA_VERSION:
        raise StorageUnavailable(
            f"History database is at schema version {current}, "
            f"this release supports up to {SCHEMA_VERSION}"
        )
    return current


def init_db(engine: Engine) -> int:
    """
    Bring the database at `engine` up to SCHEMA_VERSION.

    Returns the version the database is at afterwards. A database
    stamped by a newer release is refused rather than guessed at.
    """
    with engine.begin() as connection:
        current = check_supported_version(connection)
        Base.metadata.create_all(bind=connection)

        if current is None:
            connection.execute(
                SchemaVersion.__table__.insert().values(
                    version=SCHEMA_VERSION, applied_at=utcnow()
                )
            )
            return SCHEMA_VERSION

        for version in range(current + 1, SCHEMA_VERSION + 1):
            logger.info("Migrating history database to schema version %s", version)
            MIGRATIONS[version](connection)
            connection.execute(
                SchemaVersion.__table__.insert().values(
                    version=version, applied_at=utcnow()
                )
            )

    return SCHEMA_VERSION
