"""
classquest.services.level_up_service — Level-Up Reward Distribution
====================================================================

Grants the classroom's configured rewards for a level span.  Bits go through
the same calculator and ledger as every other reward (transaction type
``level_up_reward``).  When the classroom opts in, the rewards themselves
earn XP (the "circular economy"), applied as one delta after distribution.

The single ``level_up`` notification per event is built by
:func:`level_up_message` once the whole progression chain has settled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from classquest.constants import TransactionType
from classquest.engine.leveling import xp_for_bits, xp_for_stat_increases
from classquest.engine.level_rewards import LevelUpPlan, plan_level_up_rewards
from classquest.engine.multipliers import coerce_multiplier
from classquest.engine.reward import (
    RewardCalculation,
    StatBoost,
    calculate_reward,
    describe_rewards,
)
from classquest.engine.settings import XPSettings
from classquest.services.ledger_service import credit
from classquest.services.notification_service import NotificationOutbox
from classquest.services.stat_store import (
    StatRecord,
    StatScope,
    apply_boost,
    group_multiplier,
)
from classquest.services.xp_service import XPAward, award_xp

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LevelUpResult:
    plan: LevelUpPlan
    calculation: RewardCalculation | None = None
    xp_from_bits: int = 0
    xp_from_stats: int = 0
    xp_award: XPAward | None = None
    boost: StatBoost = field(default_factory=StatBoost)


def distribute_level_up_rewards(
    session: Session,
    outbox: NotificationOutbox,
    scope: StatScope,
    record: StatRecord,
    *,
    old_level: int,
    new_level: int,
    settings: XPSettings,
) -> LevelUpResult | None:
    """Apply the level-up rewards for ``old_level → new_level``.

    Returns ``None`` when rewards are disabled or no level was gained.
    """
    rewards = settings.level_up_rewards
    if not rewards.enabled:
        return None
    plan = plan_level_up_rewards(old_level, new_level, rewards)
    if plan is None:
        return None

    result = LevelUpResult(plan=plan, boost=plan.boost)

    if plan.base_bits > 0:
        calc = calculate_reward(
            plan.base_bits,
            coerce_multiplier(record.multiplier),
            group_multiplier(session, scope.user_id, scope.classroom_id),
            apply_personal=rewards.apply_personal_multiplier,
            apply_group=rewards.apply_group_multiplier,
        )
        credit(
            session, outbox, scope, record, calc,
            description=f"Level-up reward (Level {new_level})",
            type=TransactionType.LEVEL_UP_REWARD,
            notify=False,
        )
        result.calculation = calc
        if rewards.count_bits_toward_xp:
            result.xp_from_bits = xp_for_bits(calc.final_amount, calc.base_amount, settings)

    if plan.boost:
        apply_boost(record, plan.boost)
        if rewards.count_stats_toward_xp:
            result.xp_from_stats = xp_for_stat_increases(plan.boost.increase_count, settings)

    logger.info(
        "Level-up rewards for user %d (%d → %d): %s",
        scope.user_id, old_level, new_level,
        ", ".join(describe_rewards(result.calculation, plan.boost)) or "none",
    )

    feedback_xp = result.xp_from_bits + result.xp_from_stats
    if feedback_xp > 0:
        result.xp_award = award_xp(
            session, scope.user_id, scope.classroom_id, feedback_xp,
            "level_up_rewards", settings,
        )
    return result


def level_up_message(new_level: int, rewards: list[LevelUpResult]) -> str:
    """``🎉 You've reached Level 4! Rewards: 90 ₿, +1 Shield``

    *rewards* may hold several distributions when circular XP pushed the
    student over another threshold; their totals are summed.
    """
    message = f"\U0001f389 You've reached Level {new_level}!"
    if not rewards:
        return message

    boost = StatBoost()
    base_bits = 0
    final_bits = 0
    for part in rewards:
        boost = boost + part.boost
        if part.calculation is not None:
            base_bits += part.calculation.base_amount
            final_bits += part.calculation.final_amount

    calc = None
    if final_bits > 0:
        calc = RewardCalculation(
            base_amount=base_bits,
            total_multiplier=final_bits / base_bits if base_bits else 1.0,
            final_amount=final_bits,
        )
    parts = describe_rewards(calc, boost)
    if parts:
        message += f" Rewards: {', '.join(parts)}"
    return message
