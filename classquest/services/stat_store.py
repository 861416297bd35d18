"""
classquest.services.stat_store — Scoped Stat Records
=====================================================

Resolves *where* a user's stats live, exactly once, at the entry boundary:

* :class:`ClassroomScope` — the per-(user, classroom) ``classroom_stats`` row,
  created lazily with default passive attributes.
* :class:`LegacyScope` — the global fields on ``users``, used only when a
  trigger carries no classroom (backward compatibility, not an error path).

Both record types expose the same attributes (``balance``, ``multiplier``,
``luck``, ``discount``, ``shield_count``, ``timed_discount``,
``discount_expires_at``) so downstream code never branches on which one it
holds.  Records are bound to the caller's session; do not keep one across
an ``await``.

``timed_discount`` is the part of ``discount`` granted with an expiry.  When
``discount_expires_at`` passes, only that part is removed; permanent
discount from badges, level-ups and teacher edits stays.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from classquest.constants import (
    DEFAULT_DISCOUNT,
    DEFAULT_LUCK,
    DEFAULT_MULTIPLIER,
    MAX_DISCOUNT,
)
from classquest.database.models import (
    ClassroomStats,
    ClassroomXP,
    Group,
    GroupMember,
    User,
)
from classquest.engine.multipliers import coerce_multiplier, stack_group_multipliers
from classquest.engine.reward import StatBoost

logger = logging.getLogger(__name__)

StatRecord = ClassroomStats | User


# ---------------------------------------------------------------------------
# Scope resolution
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ClassroomScope:
    user_id: int
    classroom_id: int


@dataclass(frozen=True, slots=True)
class LegacyScope:
    user_id: int

    @property
    def classroom_id(self) -> None:
        return None


StatScope = ClassroomScope | LegacyScope


def resolve_scope(user_id: int, classroom_id: int | None) -> StatScope:
    """Pick the stat partition for a trigger."""
    if classroom_id is None:
        return LegacyScope(user_id)
    return ClassroomScope(user_id, classroom_id)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------
def get_user(session: Session, user_id: int) -> User:
    """Fetch a User row or raise ``ValueError``."""
    user = session.get(User, user_id)
    if user is None:
        raise ValueError(f"User not found: {user_id}")
    return user


def _as_aware(moment: datetime) -> datetime:
    # SQLite hands back naive datetimes; stored values are always UTC.
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=UTC)


def expire_effects(record: StatRecord, now: datetime | None = None) -> bool:
    """Remove the timed part of a discount whose window has passed.

    Returns True if anything expired.
    """
    expires_at = record.discount_expires_at
    if expires_at is None:
        return False
    now = now or datetime.now(UTC)
    if _as_aware(expires_at) > now:
        return False
    timed = record.timed_discount or 0
    remaining = min(MAX_DISCOUNT, max(0, (record.discount or 0) - timed))
    logger.info(
        "Timed discount of %s%% expired for %r at %s (%s%% remains)",
        timed, record, expires_at, remaining,
    )
    record.discount = remaining
    record.timed_discount = 0.0
    record.discount_expires_at = None
    return True


def grant_timed_discount(
    record: StatRecord, amount: float, duration: timedelta, now: datetime | None = None
) -> None:
    """Add *amount* discount that lapses after *duration*.

    Only the part that fits under the 100% cap is tracked as timed.  A new
    grant while one is active stacks and pushes the expiry out.
    """
    if amount <= 0:
        return
    before = record.discount or 0
    apply_boost(record, StatBoost(discount=amount))
    granted = (record.discount or 0) - before
    record.timed_discount = (record.timed_discount or 0) + granted
    now = now or datetime.now(UTC)
    expires_at = now + duration
    if record.discount_expires_at is not None:
        expires_at = max(expires_at, _as_aware(record.discount_expires_at))
    record.discount_expires_at = expires_at


def load_stats(
    session: Session,
    scope: StatScope,
    *,
    create: bool = True,
    for_update: bool = True,
    expire: bool = True,
) -> StatRecord | None:
    """Load the stat record for *scope*, creating a classroom row on demand.

    Rows are selected ``FOR UPDATE`` where the backend supports it so two
    writers on the same (user, classroom) serialize at the database.
    Expired timed effects are cleared on load unless *expire* is False
    (callers that snapshot first and expire afterwards).
    """
    lock = True if for_update else None
    match scope:
        case ClassroomScope(user_id=user_id, classroom_id=classroom_id):
            record = session.get(
                ClassroomStats, (user_id, classroom_id), with_for_update=lock
            )
            if record is None:
                if not create:
                    return None
                get_user(session, user_id)
                record = ClassroomStats(
                    user_id=user_id,
                    classroom_id=classroom_id,
                    balance=0,
                    multiplier=DEFAULT_MULTIPLIER,
                    luck=DEFAULT_LUCK,
                    discount=DEFAULT_DISCOUNT,
                    shield_count=0,
                    timed_discount=0.0,
                )
                session.add(record)
                session.flush()
        case LegacyScope(user_id=user_id):
            record = session.get(User, user_id, with_for_update=lock)
            if record is None:
                raise ValueError(f"User not found: {user_id}")

    if expire:
        expire_effects(record)
    return record


def current_xp(session: Session, user_id: int, classroom_id: int | None) -> int | None:
    """Classroom XP (0 before the first award); None in the legacy scope."""
    if classroom_id is None:
        return None
    entry = session.get(ClassroomXP, (user_id, classroom_id))
    return entry.xp if entry is not None else 0


# ---------------------------------------------------------------------------
# Multipliers
# ---------------------------------------------------------------------------
def personal_multiplier(session: Session, scope: StatScope) -> float:
    """Personal multiplier for *scope* without creating a stats row.

    A classroom scope with no row yet reads as ``1`` — it never falls back
    to the legacy global field.
    """
    record = load_stats(session, scope, create=False, for_update=False, expire=False)
    if record is None:
        return 1.0
    return coerce_multiplier(record.multiplier)


def group_multiplier(
    session: Session, user_id: int, classroom_id: int | None
) -> float:
    """Stacked multiplier of every group in the classroom where the user is
    an **approved** member.  ``1`` without a classroom or groups.
    """
    if classroom_id is None:
        return 1.0
    values = session.scalars(
        select(Group.group_multiplier)
        .join(GroupMember, GroupMember.group_id == Group.id)
        .where(
            Group.classroom_id == classroom_id,
            GroupMember.user_id == user_id,
            GroupMember.status == "approved",
        )
    ).all()
    return stack_group_multipliers(values)


# ---------------------------------------------------------------------------
# Mutation helpers
# ---------------------------------------------------------------------------
def apply_boost(record: StatRecord, boost: StatBoost) -> None:
    """Add *boost* to the record's passive attributes, clamping every field.

    multiplier/luck/shield stay ≥ 0; discount stays within [0, 100].
    """
    if boost.multiplier:
        current = record.multiplier if record.multiplier is not None else DEFAULT_MULTIPLIER
        record.multiplier = max(0.0, current + boost.multiplier)
    if boost.luck:
        current = record.luck if record.luck is not None else DEFAULT_LUCK
        record.luck = max(0.0, current + boost.luck)
    if boost.discount:
        current = record.discount or 0
        record.discount = min(MAX_DISCOUNT, max(0, current + boost.discount))
        if record.timed_discount:
            # A cut can eat into the timed part; it never exceeds the total
            record.timed_discount = min(record.timed_discount, record.discount)
    if boost.shield:
        record.shield_count = max(0, (record.shield_count or 0) + boost.shield)


def snapshot(
    record: StatRecord,
    xp: int | None = None,
    group_mult: float | None = None,
) -> dict:
    """Flat dict of the tracked fields for the change logger."""
    snap = {
        "balance": record.balance or 0,
        "multiplier": record.multiplier,
        "luck": record.luck,
        "discount": record.discount,
        "shield": record.shield_count or 0,
    }
    if group_mult is not None:
        snap["group_multiplier"] = group_mult
    if xp is not None:
        snap["xp"] = xp
    return snap
