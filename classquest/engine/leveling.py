"""
classquest.engine.leveling — XP ↔ Level Formulas
=================================================

THE single canonical implementation of the leveling curves.  A level is
always a pure function of total XP; nothing stores a level without
recomputing it here.

Formulas (cumulative XP needed to *reach* level ``L``; level 1 needs 0):

* ``exponential`` — Σ floor(base × 1.5^(l−2)) for l in 2..L
  (level 2: 100, level 3: 250, level 4: 475 … for base 100)
* ``linear``      — base × (L − 1)
* ``logarithmic`` — Σ floor(base × l × log10(l + 1)) for l in 2..L

All three give ``level_from_xp(base) == 2``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

from classquest.constants import MAX_LEVEL, BitsXPBasis, LevelingFormula

if TYPE_CHECKING:
    from classquest.engine.settings import XPSettings

__all__ = [
    "LevelProgress",
    "level_from_xp",
    "level_progress",
    "xp_for_bits",
    "xp_for_level",
    "xp_for_stat_increases",
]


def _level_cost(level: int, formula: str, base_xp: int) -> int:
    """XP needed to go from ``level - 1`` to ``level`` (at least 1)."""
    if formula == LevelingFormula.EXPONENTIAL:
        cost = math.floor(base_xp * (1.5 ** (level - 2)))
    elif formula == LevelingFormula.LOGARITHMIC:
        cost = math.floor(base_xp * level * math.log10(level + 1))
    else:
        cost = base_xp
    return max(1, cost)


def xp_for_level(
    level: int,
    formula: str = LevelingFormula.EXPONENTIAL.value,
    base_xp: int = 100,
) -> int:
    """Total XP required to reach *level*."""
    if level <= 1:
        return 0
    return sum(_level_cost(lvl, formula, base_xp) for lvl in range(2, level + 1))


def level_from_xp(
    xp: int,
    formula: str = LevelingFormula.EXPONENTIAL.value,
    base_xp: int = 100,
    max_level: int = MAX_LEVEL,
) -> int:
    """Highest level whose cumulative threshold is ≤ *xp* (minimum 1)."""
    if xp <= 0:
        return 1
    level = 1
    threshold = 0
    while level < max_level:
        threshold += _level_cost(level + 1, formula, base_xp)
        if threshold > xp:
            break
        level += 1
    return level


@dataclass(frozen=True, slots=True)
class LevelProgress:
    xp_for_current_level: int
    xp_for_next_level: int
    xp_needed: int
    xp_in_current_level: int
    xp_required_for_level: int
    progress: int  # percent, 0..100


def level_progress(
    xp: int,
    level: int,
    formula: str = LevelingFormula.EXPONENTIAL.value,
    base_xp: int = 100,
) -> LevelProgress:
    """How far *xp* is through *level* toward the next one."""
    current = xp_for_level(level, formula, base_xp)
    nxt = xp_for_level(level + 1, formula, base_xp)
    span = max(1, nxt - current)
    into = xp - current
    return LevelProgress(
        xp_for_current_level=current,
        xp_for_next_level=nxt,
        xp_needed=nxt - xp,
        xp_in_current_level=into,
        xp_required_for_level=nxt - current,
        progress=max(0, min(100, math.floor(into / span * 100))),
    )


# ---------------------------------------------------------------------------
# XP earned from rewards
# ---------------------------------------------------------------------------
def xp_for_bits(final_bits: int, base_bits: int, settings: XPSettings) -> int:
    """XP earned for receiving bits, honouring the classroom's basis knob."""
    if settings.bits_earned_rate <= 0:
        return 0
    bits = base_bits if settings.bits_xp_basis == BitsXPBasis.BASE else final_bits
    if bits <= 0:
        return 0
    return math.floor(bits * settings.bits_earned_rate + 0.5)


def xp_for_stat_increases(count: int, settings: XPSettings) -> int:
    """XP earned for *count* distinct stat increases."""
    if count <= 0 or settings.stat_increase_rate <= 0:
        return 0
    return math.floor(count * settings.stat_increase_rate + 0.5)
