"""
classquest.engine.badges — Badge Unlock Selection
==================================================

Pure selection logic — no database I/O.  The service layer loads the
classroom's badge catalog and the user's earned set, asks this module which
badges unlock at a level, then applies them.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from classquest.engine.reward import StatBoost


class BadgeLike(Protocol):
    id: int
    name: str
    level_required: int


def select_unlockable(
    badges: Iterable[BadgeLike],
    already_earned: set[int],
    level: int,
) -> list[BadgeLike]:
    """Badges with ``level_required ≤ level`` not yet earned.

    Ascending by ``level_required`` (ties by id) so rewards apply in the
    order a student would have reached them.
    """
    unlockable = [
        badge for badge in badges
        if badge.level_required <= level and badge.id not in already_earned
    ]
    unlockable.sort(key=lambda b: (b.level_required, b.id))
    return unlockable


def badge_stat_boost(badge) -> StatBoost:
    """The passive-attribute part of a badge's rewards (negatives ignored)."""
    return StatBoost(
        multiplier=max(0.0, badge.reward_multiplier or 0.0),
        luck=max(0.0, badge.reward_luck or 0.0),
        discount=max(0.0, badge.reward_discount or 0.0),
        shield=max(0, badge.reward_shield or 0),
    )
