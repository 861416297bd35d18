"""
classquest.services.reward_service — Reward Trigger Flows
==========================================================

Public entry points called by request handlers, item usage and feedback
moderation.  Each flow is one unit of work on its own session:

  1. Resolve the stat scope (classroom row, or legacy global fields)
  2. Calculate and write the balance change (ledger + projection)
  3. Run the progression chain (XP → level-up rewards → badges) inside a
     SAVEPOINT; a failure there is logged and rolled back on its own,
     the balance change stays
  4. Log the net stat changes once
  5. Commit, then hand the created notifications to the caller's sink in
     creation order

Every flow returns a :class:`RewardOutcome`.  Async callers should wrap
these in :meth:`classquest.services.scope_lock.ScopeLockRegistry.run_serialized`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from classquest.constants import (
    DEFAULT_DISCOUNT,
    DEFAULT_LUCK,
    DEFAULT_MULTIPLIER,
    NotificationType,
    TransactionType,
)
from classquest.database.models import Badge, ClassroomXP, Group, GroupMember, Notification
from classquest.engine.leveling import (
    LevelProgress,
    level_from_xp,
    level_progress,
    xp_for_bits,
    xp_for_stat_increases,
)
from classquest.engine.reward import RewardCalculation, StatBoost, calculate_reward
from classquest.engine.settings import XPSettings
from classquest.services.badge_service import evaluate_badges
from classquest.services.change_log import log_stat_changes
from classquest.services.ledger_service import credit
from classquest.services.level_up_service import (
    LevelUpResult,
    distribute_level_up_rewards,
    level_up_message,
)
from classquest.services.notification_service import NotificationOutbox, NotificationSink
from classquest.services.stat_store import (
    StatRecord,
    StatScope,
    apply_boost,
    current_xp,
    expire_effects,
    get_user,
    grant_timed_discount,
    group_multiplier,
    load_stats,
    personal_multiplier,
    resolve_scope,
    snapshot,
)
from classquest.services.xp_service import award_xp, load_xp_settings

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from classquest.config import EngineConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class Progression:
    """What the XP chain did for one event."""

    old_level: int
    level: int
    old_xp: int
    xp: int
    badges: list[Badge] = field(default_factory=list)
    level_rewards: list[LevelUpResult] = field(default_factory=list)

    @property
    def leveled_up(self) -> bool:
        return self.level > self.old_level


@dataclass(slots=True)
class RewardOutcome:
    user_id: int
    classroom_id: int | None
    calculation: RewardCalculation | None = None
    balance: int = 0
    progression: Progression | None = None
    progression_failed: bool = False
    notifications: list[Notification] = field(default_factory=list)

    @property
    def final_amount(self) -> int:
        return self.calculation.final_amount if self.calculation else 0

    @property
    def leveled_up(self) -> bool:
        return self.progression is not None and self.progression.leveled_up

    @property
    def badges_earned(self) -> list[Badge]:
        return self.progression.badges if self.progression else []


# ---------------------------------------------------------------------------
# Progression chain
# ---------------------------------------------------------------------------
def _distribute_through(
    session: Session,
    outbox: NotificationOutbox,
    scope: StatScope,
    record: StatRecord,
    progress: Progression,
    rewarded_level: int,
    settings: XPSettings,
) -> int:
    """Grant level-up rewards for every level above *rewarded_level*.

    Circular XP from the rewards can cross further levels; those are
    rewarded too.  Returns the highest level rewarded.
    """
    while progress.level > rewarded_level:
        result = distribute_level_up_rewards(
            session, outbox, scope, record,
            old_level=rewarded_level,
            new_level=progress.level,
            settings=settings,
        )
        rewarded_level = progress.level
        if result is None:
            break
        progress.level_rewards.append(result)
        if result.xp_award is not None:
            progress.level = result.xp_award.new_level
            progress.xp = result.xp_award.new_xp
    return rewarded_level


def run_progression(
    session: Session,
    outbox: NotificationOutbox,
    scope: StatScope,
    record: StatRecord,
    xp_amount: int,
    reason: str,
    settings: XPSettings,
) -> Progression | None:
    """Award XP and settle everything that follows from it.

    Order: XP award → level-up rewards for the crossed span → badge scan at
    the resulting level → level-up rewards for levels gained from badge XP →
    one ``level_up`` notification.  Returns ``None`` when no XP applies.
    """
    award = award_xp(session, scope.user_id, scope.classroom_id, xp_amount, reason, settings)
    if award is None:
        return None

    progress = Progression(
        old_level=award.old_level,
        level=award.new_level,
        old_xp=award.old_xp,
        xp=award.new_xp,
    )
    rewarded = _distribute_through(
        session, outbox, scope, record, progress, award.old_level, settings
    )

    badge_result = evaluate_badges(
        session, outbox, scope, record, level=progress.level, settings=settings
    )
    progress.badges.extend(badge_result.earned)
    if badge_result.xp_award is not None:
        progress.level = max(progress.level, badge_result.xp_award.new_level)
        progress.xp = badge_result.xp_award.new_xp

    _distribute_through(session, outbox, scope, record, progress, rewarded, settings)

    if progress.leveled_up:
        outbox.add(
            session,
            user_id=scope.user_id,
            type=NotificationType.LEVEL_UP,
            message=level_up_message(progress.level, progress.level_rewards),
            classroom_id=scope.classroom_id,
        )
    return progress


def _progress_best_effort(
    session: Session,
    outbox: NotificationOutbox,
    outcome: RewardOutcome,
    scope: StatScope,
    record: StatRecord,
    xp_amount: int,
    reason: str,
    settings: XPSettings,
) -> None:
    """Run the progression chain in a SAVEPOINT, keeping earlier writes on failure."""
    if xp_amount <= 0 or scope.classroom_id is None or not settings.enabled:
        return
    mark = outbox.mark()
    try:
        with session.begin_nested():   # SAVEPOINT
            outcome.progression = run_progression(
                session, outbox, scope, record, xp_amount, reason, settings
            )
    except Exception:
        outbox.discard_from(mark)
        outcome.progression = None
        outcome.progression_failed = True
        logger.exception(
            "Progression failed for user %d in classroom %s (%s); balance change kept",
            scope.user_id, scope.classroom_id, reason,
        )


def _snapshot(session: Session, scope: StatScope, record: StatRecord) -> dict:
    return snapshot(
        record,
        xp=current_xp(session, scope.user_id, scope.classroom_id),
        group_mult=group_multiplier(session, scope.user_id, scope.classroom_id),
    )


def _open_stats(
    session: Session, scope: StatScope
) -> tuple[StatRecord, dict]:
    """Lock the stat record and snapshot it, then apply lapsed timed effects.

    Expiry runs after the snapshot so the flow's change log reports it.
    """
    record = load_stats(session, scope, expire=False)
    before = _snapshot(session, scope, record)
    expire_effects(record)
    return record, before


def _deliver(
    session: Session, outbox: NotificationOutbox, outcome: RewardOutcome,
    sink: NotificationSink | None,
) -> RewardOutcome:
    outcome.notifications = outbox.pending
    session.commit()
    outbox.flush(sink)
    return outcome


# ---------------------------------------------------------------------------
# Bits
# ---------------------------------------------------------------------------
def _award_bits_in_session(
    session: Session,
    outbox: NotificationOutbox,
    *,
    user_id: int,
    classroom_id: int | None,
    amount: int,
    description: str,
    transaction_type: str,
    assigned_by: int | None,
    apply_personal: bool,
    apply_group: bool,
    context: str,
    config: EngineConfig | None,
    group_mult: float | None = None,
) -> RewardOutcome:
    scope = resolve_scope(user_id, classroom_id)
    settings = load_xp_settings(session, classroom_id, config)
    record, before = _open_stats(session, scope)

    if group_mult is None:
        group_mult = group_multiplier(session, user_id, classroom_id)
    calc = calculate_reward(
        amount,
        personal_multiplier(session, scope),
        group_mult,
        apply_personal=apply_personal,
        apply_group=apply_group,
    )
    outcome = RewardOutcome(user_id=user_id, classroom_id=classroom_id, calculation=calc)
    outcome.balance = credit(
        session, outbox, scope, record, calc,
        description=description,
        type=transaction_type,
        assigned_by=assigned_by,
    )

    if calc.final_amount > 0:
        xp_amount = xp_for_bits(calc.final_amount, calc.base_amount, settings)
        _progress_best_effort(
            session, outbox, outcome, scope, record, xp_amount, "bits_earned", settings
        )
        outcome.balance = record.balance

    log_stat_changes(
        session, outbox,
        user_id=user_id,
        classroom_id=classroom_id,
        prev=before,
        curr=_snapshot(session, scope, record),
        context=context,
        action_by=assigned_by,
    )
    return outcome


def award_bits(
    engine: Engine,
    *,
    user_id: int,
    classroom_id: int | None,
    amount: int,
    description: str = "Balance adjustment",
    assigned_by: int | None = None,
    apply_personal: bool = True,
    apply_group: bool = True,
    transaction_type: str = TransactionType.MANUAL_ADJUSTMENT,
    sink: NotificationSink | None = None,
    config: EngineConfig | None = None,
) -> RewardOutcome:
    """Grant (``amount > 0``) or debit (``amount < 0``) bits to one student.

    Positive amounts are multiplied per the flags and earn XP; debits are
    applied unmultiplied and clamp the balance at zero.
    """
    with Session(engine, expire_on_commit=False) as session:
        get_user(session, user_id)
        outbox = NotificationOutbox()
        outcome = _award_bits_in_session(
            session, outbox,
            user_id=user_id,
            classroom_id=classroom_id,
            amount=amount,
            description=description,
            transaction_type=transaction_type,
            assigned_by=assigned_by,
            apply_personal=apply_personal,
            apply_group=apply_group,
            context="teacher adjustment",
            config=config,
        )
        return _deliver(session, outbox, outcome, sink)


def reward_feedback(
    engine: Engine,
    *,
    user_id: int,
    classroom_id: int | None,
    amount: int,
    apply_personal: bool = False,
    apply_group: bool = False,
    sink: NotificationSink | None = None,
    config: EngineConfig | None = None,
) -> RewardOutcome:
    """Reward a student for submitting feedback.

    The multiplier flags come from the classroom's feedback reward
    configuration, which the caller reads.
    """
    if amount <= 0:
        raise ValueError("Feedback reward must be positive")
    with Session(engine, expire_on_commit=False) as session:
        get_user(session, user_id)
        outbox = NotificationOutbox()
        outcome = _award_bits_in_session(
            session, outbox,
            user_id=user_id,
            classroom_id=classroom_id,
            amount=amount,
            description="Feedback reward",
            transaction_type=TransactionType.FEEDBACK_REWARD,
            assigned_by=None,
            apply_personal=apply_personal,
            apply_group=apply_group,
            context="feedback reward",
            config=config,
        )
        return _deliver(session, outbox, outcome, sink)


def adjust_group_balance(
    engine: Engine,
    *,
    group_id: int,
    amount: int,
    description: str = "Group adjustment",
    assigned_by: int | None = None,
    apply_personal: bool = True,
    apply_group: bool = True,
    sink: NotificationSink | None = None,
    config: EngineConfig | None = None,
) -> list[RewardOutcome]:
    """Apply the same adjustment to every approved member of a group.

    Returns one outcome per member, ordered by user id.
    """
    with Session(engine, expire_on_commit=False) as session:
        group = session.get(Group, group_id)
        if group is None:
            raise ValueError(f"Group not found: {group_id}")

        member_ids = session.scalars(
            select(GroupMember.user_id)
            .where(GroupMember.group_id == group_id, GroupMember.status == "approved")
            .order_by(GroupMember.user_id)
        ).all()

        outbox = NotificationOutbox()
        outcomes: list[RewardOutcome] = []
        for user_id in member_ids:
            # Uses this group's own multiplier, not the stacked value across
            # all of the member's groups.
            outcomes.append(_award_bits_in_session(
                session, outbox,
                user_id=user_id,
                classroom_id=group.classroom_id,
                amount=amount,
                description=description,
                transaction_type=TransactionType.GROUP_ADJUSTMENT,
                assigned_by=assigned_by,
                apply_personal=apply_personal,
                apply_group=apply_group,
                context=f"group adjustment ({group.name})",
                config=config,
                group_mult=group.group_multiplier,
            ))

        pending = outbox.pending
        for outcome in outcomes:
            outcome.notifications = [n for n in pending if n.user_id == outcome.user_id]
        session.commit()
        outbox.flush(sink)
        logger.info(
            "Group %d adjustment of %d applied to %d member(s)", group_id, amount, len(outcomes)
        )
        return outcomes


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------
def apply_stat_boost(
    engine: Engine,
    *,
    user_id: int,
    classroom_id: int | None,
    boost: StatBoost,
    context: str = "bazaar item",
    action_by: int | None = None,
    discount_duration: timedelta | None = None,
    effects_text: str | None = None,
    sink: NotificationSink | None = None,
    config: EngineConfig | None = None,
) -> RewardOutcome:
    """Add passive-attribute deltas (item usage or a teacher stat edit).

    Negative deltas are allowed for teacher edits and clamp at the bounds.
    Each stat that goes up earns ``stat_increase_rate`` XP.  With
    *discount_duration*, the granted discount is tracked as timed and only
    that amount lapses after the duration.
    """
    with Session(engine, expire_on_commit=False) as session:
        get_user(session, user_id)
        outbox = NotificationOutbox()
        scope = resolve_scope(user_id, classroom_id)
        settings = load_xp_settings(session, classroom_id, config)
        record, before = _open_stats(session, scope)

        if discount_duration is not None and boost.discount > 0:
            apply_boost(record, replace(boost, discount=0.0))
            grant_timed_discount(record, boost.discount, discount_duration)
        else:
            apply_boost(record, boost)
        session.flush()

        outcome = RewardOutcome(
            user_id=user_id, classroom_id=classroom_id, balance=record.balance or 0
        )
        xp_amount = xp_for_stat_increases(boost.increase_count, settings)
        _progress_best_effort(
            session, outbox, outcome, scope, record, xp_amount, "stat_increase", settings
        )
        outcome.balance = record.balance or 0

        log_stat_changes(
            session, outbox,
            user_id=user_id,
            classroom_id=classroom_id,
            prev=before,
            curr=_snapshot(session, scope, record),
            context=context,
            action_by=action_by,
            effects_text=effects_text,
        )
        return _deliver(session, outbox, outcome, sink)


# ---------------------------------------------------------------------------
# XP
# ---------------------------------------------------------------------------
def grant_xp(
    engine: Engine,
    *,
    user_id: int,
    classroom_id: int,
    amount: int,
    assigned_by: int | None = None,
    sink: NotificationSink | None = None,
    config: EngineConfig | None = None,
) -> RewardOutcome:
    """Teacher awards XP directly; runs the full progression chain.

    XP is the primary write here, so a failure propagates and nothing is
    committed.
    """
    if amount <= 0:
        raise ValueError("XP grant must be positive")
    with Session(engine, expire_on_commit=False) as session:
        get_user(session, user_id)
        outbox = NotificationOutbox()
        scope = resolve_scope(user_id, classroom_id)
        settings = load_xp_settings(session, classroom_id, config)
        record, before = _open_stats(session, scope)

        outcome = RewardOutcome(user_id=user_id, classroom_id=classroom_id)
        outcome.progression = run_progression(
            session, outbox, scope, record, amount, "manual", settings
        )
        outcome.balance = record.balance or 0

        log_stat_changes(
            session, outbox,
            user_id=user_id,
            classroom_id=classroom_id,
            prev=before,
            curr=_snapshot(session, scope, record),
            context="teacher XP adjustment",
            action_by=assigned_by,
        )
        return _deliver(session, outbox, outcome, sink)


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class StudentSummary:
    balance: int
    multiplier: float
    luck: float
    discount: float
    shield_count: int
    group_multiplier: float
    xp: int | None
    level: int | None
    progress: LevelProgress | None


def get_student_summary(
    engine: Engine,
    *,
    user_id: int,
    classroom_id: int | None,
    config: EngineConfig | None = None,
) -> StudentSummary:
    """Current stats and level progress for a student's profile card."""
    with Session(engine, expire_on_commit=False) as session:
        get_user(session, user_id)
        scope = resolve_scope(user_id, classroom_id)
        settings = load_xp_settings(session, classroom_id, config)
        record = load_stats(session, scope, create=False, for_update=False)

        xp = level = progress = None
        if classroom_id is not None:
            entry = session.get(ClassroomXP, (user_id, classroom_id))
            xp = entry.xp if entry else 0
            level = level_from_xp(
                xp, settings.leveling_formula, settings.base_xp_for_level2, settings.max_level
            )
            progress = level_progress(
                xp, level, settings.leveling_formula, settings.base_xp_for_level2
            )

        if record is None:
            balance, multiplier, luck, discount, shields = (
                0, DEFAULT_MULTIPLIER, DEFAULT_LUCK, DEFAULT_DISCOUNT, 0
            )
        else:
            balance, multiplier, luck = record.balance or 0, record.multiplier, record.luck
            discount, shields = record.discount or 0, record.shield_count or 0

        summary = StudentSummary(
            balance=balance,
            multiplier=multiplier,
            luck=luck,
            discount=discount,
            shield_count=shields,
            group_multiplier=group_multiplier(session, user_id, classroom_id),
            xp=xp,
            level=level,
            progress=progress,
        )
        # load_stats may have cleared an expired timed discount
        session.commit()
        return summary
