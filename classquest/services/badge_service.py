"""
classquest.services.badge_service — Badge Unlocks & Rewards
============================================================

Scans a classroom's badge catalog at a level and, for each badge the
student has not earned yet:

  1. Inserts the ``earned_badges`` row (SAVEPOINT + IntegrityError guard)
  2. Credits the badge's bits through the reward calculator and ledger
  3. Adds its passive-attribute rewards
  4. Creates one ``badge_earned`` notification (deduped per badge)

XP from the unlocks (``badge_unlock_rate`` per badge plus XP for the reward
bits and stats) is summed over the whole scan and applied as **one** delta
afterwards.  By default that XP is not re-scanned; a classroom reaching a new
level through badge XP picks up further badges on its next award.  With
``badge_chain_passes > 1`` the scan repeats until no level is gained or the
cap is reached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from classquest.constants import NotificationType, TransactionType
from classquest.database.models import Badge, EarnedBadge
from classquest.engine.badges import badge_stat_boost, select_unlockable
from classquest.engine.leveling import xp_for_bits, xp_for_stat_increases
from classquest.engine.multipliers import coerce_multiplier
from classquest.engine.reward import (
    RewardCalculation,
    StatBoost,
    calculate_reward,
    describe_rewards,
    round_half_up,
)
from classquest.engine.settings import XPSettings
from classquest.services.ledger_service import credit
from classquest.services.notification_service import (
    NotificationOutbox,
    badge_notification_exists,
)
from classquest.services.stat_store import (
    StatRecord,
    StatScope,
    apply_boost,
    group_multiplier,
)
from classquest.services.xp_service import XPAward, award_xp

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BadgeResult:
    earned: list[Badge] = field(default_factory=list)
    badge_xp_awarded: int = 0
    bits_awarded: int = 0
    boost: StatBoost = field(default_factory=StatBoost)
    xp_award: XPAward | None = None

    @property
    def final_level(self) -> int | None:
        return self.xp_award.new_level if self.xp_award else None


def get_earned_badge_ids(session: Session, user_id: int, classroom_id: int) -> set[int]:
    """Badge IDs the user already holds in this classroom."""
    rows = session.scalars(
        select(EarnedBadge.badge_id).where(
            EarnedBadge.user_id == user_id,
            EarnedBadge.classroom_id == classroom_id,
        )
    ).all()
    return set(rows)


def badge_message(badge: Badge, calc: RewardCalculation | None, boost: StatBoost) -> str:
    """``🏅 You earned the "Scholar" badge! … Rewards: 60 ₿ (1.20x), +1 Shield``"""
    parts = describe_rewards(calc, boost)
    message = f'\U0001f3c5 You earned the "{badge.name}" badge!'
    if badge.description:
        message += f" {badge.description}"
    if parts:
        message += f" Rewards: {', '.join(parts)}"
    return message


def _claim(session: Session, user_id: int, classroom_id: int, badge: Badge) -> bool:
    """Insert the earned row; False if another writer got there first."""
    try:
        with session.begin_nested():   # SAVEPOINT
            session.add(EarnedBadge(
                user_id=user_id, classroom_id=classroom_id, badge_id=badge.id
            ))
            session.flush()
    except IntegrityError:
        logger.info("Badge %d already earned by user %d — skipping", badge.id, user_id)
        return False
    return True


def _unlock(
    session: Session,
    outbox: NotificationOutbox,
    scope: StatScope,
    record: StatRecord,
    badge: Badge,
    group_mult: float,
    settings: XPSettings,
    result: BadgeResult,
) -> int:
    """Apply one badge's rewards.  Returns the XP it contributes."""
    xp = 0

    calc = None
    if (badge.reward_bits or 0) > 0:
        calc = calculate_reward(
            badge.reward_bits,
            coerce_multiplier(record.multiplier),
            group_mult,
            apply_personal=bool(badge.apply_personal_multiplier),
            apply_group=bool(badge.apply_group_multiplier),
        )
        credit(
            session, outbox, scope, record, calc,
            description=f"Badge reward: {badge.name}",
            type=TransactionType.BADGE_REWARD,
            notify=False,
        )
        result.bits_awarded += calc.final_amount
        xp += xp_for_bits(calc.final_amount, calc.base_amount, settings)

    boost = badge_stat_boost(badge)
    if boost:
        apply_boost(record, boost)
        result.boost = result.boost + boost
        xp += xp_for_stat_increases(boost.increase_count, settings)

    xp += round_half_up(settings.badge_unlock_rate)

    if badge_notification_exists(session, scope.user_id, badge.id):
        logger.warning(
            "Skipping duplicate badge_earned notification for user %d badge %d",
            scope.user_id, badge.id,
        )
    else:
        outbox.add(
            session,
            user_id=scope.user_id,
            type=NotificationType.BADGE_EARNED,
            message=badge_message(badge, calc, boost),
            classroom_id=scope.classroom_id,
            badge_id=badge.id,
        )

    logger.info(
        "User %d earned badge %r in classroom %d", scope.user_id, badge.name, scope.classroom_id
    )
    return xp


def evaluate_badges(
    session: Session,
    outbox: NotificationOutbox,
    scope: StatScope,
    record: StatRecord,
    *,
    level: int,
    settings: XPSettings,
) -> BadgeResult:
    """Unlock every badge available at *level* and apply the scan's XP once.

    Parameters
    ----------
    scope, record : Classroom scope and its loaded stat record.
    level : The level to evaluate against (usually the freshly awarded one).
    settings : Classroom XP settings; ``badge_chain_passes`` bounds re-scans.

    Returns
    -------
    BadgeResult
        Badges earned in catalog order, total badge XP, and the XP award
        (``None`` if no XP was applied).
    """
    result = BadgeResult()
    classroom_id = scope.classroom_id
    if classroom_id is None:
        return result

    catalog = session.scalars(
        select(Badge).where(Badge.classroom_id == classroom_id)
    ).all()
    if not catalog:
        return result

    group_mult = group_multiplier(session, scope.user_id, classroom_id)
    passes = max(1, settings.badge_chain_passes)

    for _ in range(passes):
        earned_ids = get_earned_badge_ids(session, scope.user_id, classroom_id)
        unlocked = select_unlockable(catalog, earned_ids, level)
        if not unlocked:
            break

        pass_xp = 0
        for badge in unlocked:
            if not _claim(session, scope.user_id, classroom_id, badge):
                continue
            result.earned.append(badge)
            pass_xp += _unlock(
                session, outbox, scope, record, badge, group_mult, settings, result
            )

        award = award_xp(
            session, scope.user_id, classroom_id, pass_xp, "badge_unlock", settings
        )
        if award is None:
            break
        result.badge_xp_awarded += award.new_xp - award.old_xp
        if result.xp_award is None:
            result.xp_award = award
        else:
            result.xp_award = XPAward(
                old_xp=result.xp_award.old_xp,
                new_xp=award.new_xp,
                old_level=result.xp_award.old_level,
                new_level=award.new_level,
            )
        if not award.leveled_up:
            break
        level = award.new_level

    return result
