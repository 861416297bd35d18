"""Track the timed part of a discount separately

Revision ID: 7e3b5d1f9a24
Revises: 4c2e9a7b1d03
Create Date: 2026-10-17 15:30:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "7e3b5d1f9a24"
down_revision = "4c2e9a7b1d03"
branch_labels = None
depends_on = None

_TABLES = ("users", "classroom_stats")


def upgrade() -> None:
    for table in _TABLES:
        op.add_column(
            table,
            sa.Column("timed_discount", sa.Float(), nullable=True, server_default="0"),
        )
        # Rows with a pending expiry held only timed discount until now
        op.execute(
            f"UPDATE {table} SET timed_discount = discount "
            "WHERE discount_expires_at IS NOT NULL"
        )


def downgrade() -> None:
    for table in _TABLES:
        op.drop_column(table, "timed_discount")
