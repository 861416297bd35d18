"""
classquest.engine.level_rewards — Level-Span Reward Planning
=============================================================

Pure calculation of what a student receives for crossing from ``old_level``
to ``new_level``.  Bits are planned here as a *base* amount; multipliers are
applied later by :func:`classquest.engine.reward.calculate_reward` like every
other bit reward.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from classquest.engine.reward import StatBoost
from classquest.engine.settings import LevelUpRewardSettings


@dataclass(frozen=True, slots=True)
class LevelUpPlan:
    old_level: int
    new_level: int
    base_bits: int = 0
    boost: StatBoost = field(default_factory=StatBoost)

    @property
    def levels_gained(self) -> int:
        return self.new_level - self.old_level


def plan_level_up_rewards(
    old_level: int,
    new_level: int,
    rewards: LevelUpRewardSettings,
) -> LevelUpPlan | None:
    """Compute the base rewards for a level-up span.

    Returns ``None`` when no level was gained.

    * scaled bits: Σ ``bits_per_level × L`` over every crossed level ``L``
    * flat bits:   ``bits_per_level × levels_gained``
    * stats:       per-level increment × levels gained
    * shields:     one per crossed level in ``shield_at_levels``
    """
    gained = new_level - old_level
    if gained <= 0:
        return None

    crossed = range(old_level + 1, new_level + 1)

    base_bits = 0
    if rewards.bits_per_level > 0:
        if rewards.scale_bits_by_level:
            base_bits = sum(rewards.bits_per_level * lvl for lvl in crossed)
        else:
            base_bits = rewards.bits_per_level * gained

    shields = sum(1 for lvl in crossed if lvl in rewards.shield_at_levels)

    return LevelUpPlan(
        old_level=old_level,
        new_level=new_level,
        base_bits=base_bits,
        boost=StatBoost(
            multiplier=rewards.multiplier_per_level * gained,
            luck=rewards.luck_per_level * gained,
            discount=rewards.discount_per_level * gained,
            shield=shields,
        ),
    )
