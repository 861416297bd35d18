"""
classquest.database.models — SQLAlchemy 2.0 Data Models
=========================================================

Tables:
- users               — Student/teacher profiles + legacy global stat fields
- classrooms          — Classroom shell carrying the ``xp_settings`` document
- classroom_stats     — Per-(user, classroom) balance, passive attributes, shields
- classroom_balances  — Denormalized balance projection read by other subsystems
- classroom_xp        — Per-(user, classroom) XP and derived level
- groups              — Read-only group input with ``group_multiplier``
- group_members       — Group membership with approval status
- badges              — Read-only badge catalog with rewards
- earned_badges       — Append-only earned badge set
- transactions        — Append-only reward ledger
- notifications       — Notification records handed to the delivery sink
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from classquest.constants import DEFAULT_DISCOUNT, DEFAULT_LUCK, DEFAULT_MULTIPLIER


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all ClassQuest ORM models."""


# ---------------------------------------------------------------------------
# Users: one row per person; also holds the legacy global-scope stats
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[str] = mapped_column(String(20), default="student")

    # Legacy global-scope stats, used only when no classroom is given
    balance: Mapped[int] = mapped_column(Integer, default=0)
    multiplier: Mapped[float] = mapped_column(Float, default=DEFAULT_MULTIPLIER)
    luck: Mapped[float] = mapped_column(Float, default=DEFAULT_LUCK)
    discount: Mapped[float] = mapped_column(Float, default=DEFAULT_DISCOUNT)
    shield_count: Mapped[int] = mapped_column(Integer, default=0)
    # Portion of discount granted with an expiry; removed when it lapses
    timed_discount: Mapped[float] = mapped_column(Float, default=0.0)
    discount_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    classroom_stats: Mapped[list[ClassroomStats]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    classroom_xp: Mapped[list[ClassroomXP]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    @property
    def shield_active(self) -> bool:
        return (self.shield_count or 0) > 0

    def __repr__(self) -> str:
        return f"<User id={self.id} name={self.display_name!r}>"


# ---------------------------------------------------------------------------
# Classrooms: only the parts the engine reads
# ---------------------------------------------------------------------------
class Classroom(Base):
    __tablename__ = "classrooms"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    teacher_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    xp_settings: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    def __repr__(self) -> str:
        return f"<Classroom id={self.id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# ClassroomStats: per-(user, classroom) stat record, created lazily
# ---------------------------------------------------------------------------
class ClassroomStats(Base):
    __tablename__ = "classroom_stats"

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    classroom_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("classrooms.id", ondelete="CASCADE"), primary_key=True
    )
    balance: Mapped[int] = mapped_column(Integer, default=0)
    multiplier: Mapped[float] = mapped_column(Float, default=DEFAULT_MULTIPLIER)
    luck: Mapped[float] = mapped_column(Float, default=DEFAULT_LUCK)
    discount: Mapped[float] = mapped_column(Float, default=DEFAULT_DISCOUNT)
    shield_count: Mapped[int] = mapped_column(Integer, default=0)
    # Portion of discount granted with an expiry; removed when it lapses
    timed_discount: Mapped[float] = mapped_column(Float, default=0.0)
    discount_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    user: Mapped[User] = relationship(back_populates="classroom_stats")

    @property
    def shield_active(self) -> bool:
        return (self.shield_count or 0) > 0

    def __repr__(self) -> str:
        return f"<ClassroomStats user={self.user_id} classroom={self.classroom_id}>"


# ---------------------------------------------------------------------------
# ClassroomBalance: denormalized projection, written with ClassroomStats
# ---------------------------------------------------------------------------
class ClassroomBalance(Base):
    __tablename__ = "classroom_balances"

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    classroom_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("classrooms.id", ondelete="CASCADE"), primary_key=True
    )
    balance: Mapped[int] = mapped_column(Integer, default=0)

    def __repr__(self) -> str:
        return (
            f"<ClassroomBalance user={self.user_id} "
            f"classroom={self.classroom_id} balance={self.balance}>"
        )


# ---------------------------------------------------------------------------
# ClassroomXP: XP and level (level is always recomputed from xp)
# ---------------------------------------------------------------------------
class ClassroomXP(Base):
    __tablename__ = "classroom_xp"

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    classroom_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("classrooms.id", ondelete="CASCADE"), primary_key=True
    )
    xp: Mapped[int] = mapped_column(Integer, default=0)
    level: Mapped[int] = mapped_column(Integer, default=1)

    user: Mapped[User] = relationship(back_populates="classroom_xp")

    def __repr__(self) -> str:
        return (
            f"<ClassroomXP user={self.user_id} classroom={self.classroom_id} "
            f"xp={self.xp} lvl={self.level}>"
        )


# ---------------------------------------------------------------------------
# Groups: read-only input, mutated by group-management code elsewhere
# ---------------------------------------------------------------------------
class Group(Base):
    __tablename__ = "groups"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    classroom_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("classrooms.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    group_multiplier: Mapped[float] = mapped_column(Float, default=1.0)

    members: Mapped[list[GroupMember]] = relationship(
        back_populates="group", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_groups_classroom", "classroom_id"),
    )

    def __repr__(self) -> str:
        return f"<Group id={self.id} name={self.name!r} mult={self.group_multiplier}>"


class GroupMember(Base):
    __tablename__ = "group_members"

    group_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    status: Mapped[str] = mapped_column(String(20), default="pending")

    group: Mapped[Group] = relationship(back_populates="members")

    def __repr__(self) -> str:
        return f"<GroupMember group={self.group_id} user={self.user_id} {self.status}>"


# ---------------------------------------------------------------------------
# Badges: read-only catalog input
# ---------------------------------------------------------------------------
class Badge(Base):
    __tablename__ = "badges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    classroom_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("classrooms.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    icon: Mapped[str] = mapped_column(String(20), default="\U0001f3c5")  # 🏅
    level_required: Mapped[int] = mapped_column(Integer, nullable=False)

    # Rewards
    reward_bits: Mapped[int] = mapped_column(Integer, default=0)
    reward_multiplier: Mapped[float] = mapped_column(Float, default=0.0)
    reward_luck: Mapped[float] = mapped_column(Float, default=0.0)
    reward_discount: Mapped[float] = mapped_column(Float, default=0.0)
    reward_shield: Mapped[int] = mapped_column(Integer, default=0)
    apply_personal_multiplier: Mapped[bool] = mapped_column(Boolean, default=False)
    apply_group_multiplier: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        UniqueConstraint("classroom_id", "name", name="uq_badges_classroom_name"),
        Index("ix_badges_classroom_level", "classroom_id", "level_required"),
    )

    def __repr__(self) -> str:
        return f"<Badge id={self.id} name={self.name!r} lvl={self.level_required}>"


# ---------------------------------------------------------------------------
# EarnedBadge: append-only, unique per (user, classroom, badge)
# ---------------------------------------------------------------------------
class EarnedBadge(Base):
    __tablename__ = "earned_badges"

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    classroom_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("classrooms.id", ondelete="CASCADE"), primary_key=True
    )
    badge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("badges.id", ondelete="CASCADE"), primary_key=True
    )
    earned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    badge: Mapped[Badge] = relationship()

    def __repr__(self) -> str:
        return f"<EarnedBadge user={self.user_id} badge={self.badge_id}>"


# ---------------------------------------------------------------------------
# Transaction: append-only reward ledger
# ---------------------------------------------------------------------------
class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    classroom_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("classrooms.id", ondelete="SET NULL"), nullable=True
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    assigned_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    calculation: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_transactions_user_classroom", "user_id", "classroom_id", "id"),
    )

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} user={self.user_id} amount={self.amount}>"


# ---------------------------------------------------------------------------
# Notification: records handed to the external delivery mechanism
# ---------------------------------------------------------------------------
class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    classroom_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    badge_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    action_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    changes: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_notifications_user_time", "user_id", "created_at"),
        Index("ix_notifications_user_badge", "user_id", "badge_id"),
    )

    def __repr__(self) -> str:
        return f"<Notification id={self.id} user={self.user_id} type={self.type}>"
