"""Initial progression schema

Revision ID: 4c2e9a7b1d03
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "4c2e9a7b1d03"
down_revision = None
branch_labels = None
depends_on = None


def _user_fk(ondelete: str = "CASCADE") -> sa.ForeignKey:
    return sa.ForeignKey("users.id", ondelete=ondelete)


def _classroom_fk(ondelete: str = "CASCADE") -> sa.ForeignKey:
    return sa.ForeignKey("classrooms.id", ondelete=ondelete)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("role", sa.String(20), nullable=True),
        sa.Column("balance", sa.Integer(), nullable=True),
        sa.Column("multiplier", sa.Float(), nullable=True),
        sa.Column("luck", sa.Float(), nullable=True),
        sa.Column("discount", sa.Float(), nullable=True),
        sa.Column("shield_count", sa.Integer(), nullable=True),
        sa.Column("discount_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )

    op.create_table(
        "classrooms",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("teacher_id", sa.BigInteger(), _user_fk("SET NULL"), nullable=True),
        sa.Column("xp_settings", postgresql.JSONB(), nullable=True),
    )

    op.create_table(
        "classroom_stats",
        sa.Column("user_id", sa.BigInteger(), _user_fk(), primary_key=True),
        sa.Column("classroom_id", sa.BigInteger(), _classroom_fk(), primary_key=True),
        sa.Column("balance", sa.Integer(), nullable=True),
        sa.Column("multiplier", sa.Float(), nullable=True),
        sa.Column("luck", sa.Float(), nullable=True),
        sa.Column("discount", sa.Float(), nullable=True),
        sa.Column("shield_count", sa.Integer(), nullable=True),
        sa.Column("discount_expires_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "classroom_balances",
        sa.Column("user_id", sa.BigInteger(), _user_fk(), primary_key=True),
        sa.Column("classroom_id", sa.BigInteger(), _classroom_fk(), primary_key=True),
        sa.Column("balance", sa.Integer(), nullable=True),
    )

    op.create_table(
        "classroom_xp",
        sa.Column("user_id", sa.BigInteger(), _user_fk(), primary_key=True),
        sa.Column("classroom_id", sa.BigInteger(), _classroom_fk(), primary_key=True),
        sa.Column("xp", sa.Integer(), nullable=True),
        sa.Column("level", sa.Integer(), nullable=True),
    )

    op.create_table(
        "groups",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("classroom_id", sa.BigInteger(), _classroom_fk(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("group_multiplier", sa.Float(), nullable=True),
    )
    op.create_index("ix_groups_classroom", "groups", ["classroom_id"])

    op.create_table(
        "group_members",
        sa.Column(
            "group_id", sa.BigInteger(),
            sa.ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("user_id", sa.BigInteger(), _user_fk(), primary_key=True),
        sa.Column("status", sa.String(20), nullable=True),
    )

    op.create_table(
        "badges",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("classroom_id", sa.BigInteger(), _classroom_fk(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("icon", sa.String(20), nullable=True),
        sa.Column("level_required", sa.Integer(), nullable=False),
        sa.Column("reward_bits", sa.Integer(), nullable=True),
        sa.Column("reward_multiplier", sa.Float(), nullable=True),
        sa.Column("reward_luck", sa.Float(), nullable=True),
        sa.Column("reward_discount", sa.Float(), nullable=True),
        sa.Column("reward_shield", sa.Integer(), nullable=True),
        sa.Column("apply_personal_multiplier", sa.Boolean(), nullable=True),
        sa.Column("apply_group_multiplier", sa.Boolean(), nullable=True),
        sa.UniqueConstraint("classroom_id", "name", name="uq_badges_classroom_name"),
    )
    op.create_index(
        "ix_badges_classroom_level", "badges", ["classroom_id", "level_required"]
    )

    op.create_table(
        "earned_badges",
        sa.Column("user_id", sa.BigInteger(), _user_fk(), primary_key=True),
        sa.Column("classroom_id", sa.BigInteger(), _classroom_fk(), primary_key=True),
        sa.Column(
            "badge_id", sa.Integer(),
            sa.ForeignKey("badges.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column(
            "earned_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("user_id", sa.BigInteger(), _user_fk(), nullable=False),
        sa.Column(
            "classroom_id", sa.BigInteger(), _classroom_fk("SET NULL"), nullable=True
        ),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("assigned_by", sa.BigInteger(), nullable=True),
        sa.Column("calculation", postgresql.JSONB(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )
    op.create_index(
        "ix_transactions_user_classroom", "transactions",
        ["user_id", "classroom_id", "id"],
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("user_id", sa.BigInteger(), _user_fk(), nullable=False),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("classroom_id", sa.BigInteger(), nullable=True),
        sa.Column("badge_id", sa.Integer(), nullable=True),
        sa.Column("action_by", sa.BigInteger(), nullable=True),
        sa.Column("changes", postgresql.JSONB(), nullable=True),
        sa.Column("read", sa.Boolean(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )
    op.create_index(
        "ix_notifications_user_time", "notifications", ["user_id", "created_at"]
    )
    op.create_index(
        "ix_notifications_user_badge", "notifications", ["user_id", "badge_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_notifications_user_badge", table_name="notifications")
    op.drop_index("ix_notifications_user_time", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_transactions_user_classroom", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("earned_badges")
    op.drop_index("ix_badges_classroom_level", table_name="badges")
    op.drop_table("badges")
    op.drop_table("group_members")
    op.drop_index("ix_groups_classroom", table_name="groups")
    op.drop_table("groups")
    op.drop_table("classroom_xp")
    op.drop_table("classroom_balances")
    op.drop_table("classroom_stats")
    op.drop_table("classrooms")
    op.drop_table("users")
