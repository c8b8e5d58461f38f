"""calls table

Revision ID: 0001_calls
Revises:
Create Date: 2026-10-17

"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_calls"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "calls",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("from", sa.String(length=128), nullable=False),
        sa.Column("to", sa.String(length=128), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration", sa.Float(), nullable=True),
    )
    op.create_index("ix_calls_from", "calls", ["from"])
    op.create_index("ix_calls_to", "calls", ["to"])
    op.create_index("ix_calls_start_time", "calls", ["start_time"])


def downgrade() -> None:
    op.drop_index("ix_calls_start_time", table_name="calls")
    op.drop_index("ix_calls_to", table_name="calls")
    op.drop_index("ix_calls_from", table_name="calls")
    op.drop_table("calls")
