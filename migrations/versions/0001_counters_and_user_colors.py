"""counters and user colors

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

import sqlalchemy as sa
from alembic import op

from sync_counter.database.base import JSONDocument

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "counters",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("value", sa.BigInteger(), nullable=False),
        sa.Column("daily_goal", sa.Integer(), nullable=False),
        sa.Column("daily_count", sa.Integer(), nullable=False),
        sa.Column("users", JSONDocument(), nullable=False),
        sa.Column("history", JSONDocument(), nullable=False),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("image_key", sa.String(), nullable=True),
        sa.Column("last_updated", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_counters_id", "counters", ["id"])

    op.create_table(
        "user_colors",
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("color", sa.String(length=7), nullable=False),
        sa.Column("last_updated", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("username"),
        sa.UniqueConstraint("color"),
    )
    op.create_index("ix_user_colors_username", "user_colors", ["username"])


def downgrade() -> None:
    op.drop_index("ix_user_colors_username", table_name="user_colors")
    op.drop_table("user_colors")
    op.drop_index("ix_counters_id", table_name="counters")
    op.drop_table("counters")
