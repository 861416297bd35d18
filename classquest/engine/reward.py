"""
classquest.engine.reward — Reward Calculation
==============================================

Pure calculation, no DB I/O.  Every bit reward in the system (teacher
grants, group adjustments, feedback rewards, badge rewards, level-up rewards)
is computed here so stacking is identical at every trigger point.

Multipliers stack **additively**::

    total = 1 + (P − 1 if apply_personal) + (G − 1 if apply_group)

Two independent +50 % bonuses combine to +100 %, not +125 %.  Debits and
zero amounts never see a multiplier.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass

from classquest.engine.multipliers import coerce_multiplier

__all__ = [
    "RewardCalculation",
    "StatBoost",
    "calculate_reward",
    "describe_rewards",
    "round_half_up",
]


@dataclass(frozen=True, slots=True)
class RewardCalculation:
    """Audit record of one reward calculation, stored on the ledger row."""

    base_amount: int
    personal_multiplier: float = 1.0
    group_multiplier: float = 1.0
    total_multiplier: float = 1.0
    final_amount: int = 0

    @property
    def multiplied(self) -> bool:
        return self.final_amount != self.base_amount

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class StatBoost:
    """Additive passive-attribute deltas granted by one reward source."""

    multiplier: float = 0.0
    luck: float = 0.0
    discount: float = 0.0
    shield: int = 0

    @property
    def increase_count(self) -> int:
        """Number of distinct stats that went up (each earns stat XP)."""
        return sum(
            1 for value in (self.multiplier, self.luck, self.discount, self.shield)
            if value > 0
        )

    def __bool__(self) -> bool:
        return self.increase_count > 0

    def __add__(self, other: StatBoost) -> StatBoost:
        return StatBoost(
            multiplier=self.multiplier + other.multiplier,
            luck=self.luck + other.luck,
            discount=self.discount + other.discount,
            shield=self.shield + other.shield,
        )

    def describe(self) -> list[str]:
        """Human-readable parts, e.g. ``["+0.5 Multiplier", "+1 Shield"]``."""
        parts = []
        if self.multiplier > 0:
            parts.append(f"+{self.multiplier:.1f} Multiplier")
        if self.luck > 0:
            parts.append(f"+{self.luck:.1f} Luck")
        if self.discount > 0:
            parts.append(f"+{self.discount:g}% Discount")
        if self.shield > 0:
            parts.append(f"+{self.shield} Shield")
        return parts


def round_half_up(value: float) -> int:
    """Round halves away from zero for positives (``2.5 → 3``)."""
    return int(math.floor(value + 0.5))


def calculate_reward(
    base_amount: int,
    personal_multiplier: float = 1.0,
    group_multiplier: float = 1.0,
    *,
    apply_personal: bool = False,
    apply_group: bool = False,
) -> RewardCalculation:
    """Turn a base amount into a final amount.

    Parameters
    ----------
    base_amount : Signed amount requested by the trigger.
    personal_multiplier, group_multiplier : Raw multipliers (coerced to 1 when
        non-finite or ≤ 0).
    apply_personal, apply_group : Which multipliers this trigger honours.
    """
    personal = coerce_multiplier(personal_multiplier)
    group = coerce_multiplier(group_multiplier)

    if base_amount <= 0:
        return RewardCalculation(
            base_amount=base_amount,
            personal_multiplier=personal,
            group_multiplier=group,
            total_multiplier=1.0,
            final_amount=base_amount,
        )

    total = 1.0
    if apply_personal:
        total += personal - 1
    if apply_group:
        total += group - 1

    return RewardCalculation(
        base_amount=base_amount,
        personal_multiplier=personal,
        group_multiplier=group,
        total_multiplier=total,
        final_amount=round_half_up(base_amount * total),
    )


def describe_rewards(calc: RewardCalculation | None, boost: StatBoost) -> list[str]:
    """Reward summary parts for notifications, e.g. ``["60 ₿ (1.20x)", "+1 Shield"]``."""
    parts: list[str] = []
    if calc is not None and calc.final_amount > 0:
        if calc.multiplied:
            parts.append(f"{calc.final_amount} ₿ ({calc.total_multiplier:.2f}x)")
        else:
            parts.append(f"{calc.final_amount} ₿")
    parts.extend(boost.describe())
    return parts
