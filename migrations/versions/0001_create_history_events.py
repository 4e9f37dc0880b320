"""create history events

Schema version 1 of the history ledger: the history_events table
with its timestamp, module and action indexes, and the
schema_version bookkeeping table.

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "history_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("module", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("input_summary", sa.Text(), nullable=True),
        sa.Column("output_summary", sa.Text(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sqlite_autoincrement=True,
    )
    op.create_index(
        "ix_history_events_timestamp", "history_events", ["timestamp"]
    )
    op.create_index("ix_history_events_module", "history_events", ["module"])
    op.create_index("ix_history_events_action", "history_events", ["action"])

    op.create_table(
        "schema_version",
        sa.Column("version", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("applied_at", sa.DateTime(), nullable=False),
    )
    op.execute(
        "INSERT INTO schema_version (version, applied_at) "
        "VALUES (1, CURRENT_TIMESTAMP)"
    )


def downgrade() -> None:
    op.drop_table("schema_version")
    op.drop_index("ix_history_events_action", table_name="history_events")
    op.drop_index("ix_history_events_module", table_name="history_events")
    op.drop_index("ix_history_events_timestamp", table_name="history_events")
    op.drop_table("history_events")
