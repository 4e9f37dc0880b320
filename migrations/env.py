"""
Alembic environment for the history ledger.

The embedded store normally upgrades itself through init_db when
it is opened. Alembic is for managed deployments that migrate the
history database ahead of starting the service. Both paths share
the schema_version table, so a database stamped by a newer release
is refused here just as it is when the store opens.
"""

import logging
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from medinsight_history.config import get_settings
from medinsight_history.models import Base
from medinsight_history.models.schema_version import check_supported_version

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

target_metadata = Base.metadata

# The history database location always comes from the application settings
config.set_main_option("sqlalchemy.url", get_settings().DATABASE_URL)


def run_migrations_offline() -> None:
    """Emit the migration SQL without a database connection."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """
    Migrate the configured history database in place.

    SQLite cannot ALTER most things in place, so batch mode
    is on for every migration.
    """
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        stored = check_supported_version(connection)
        logger.info("History database at schema version %s", stored)
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=True,
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
