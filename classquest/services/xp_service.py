"""
classquest.services.xp_service — Classroom XP & Level Persistence
==================================================================

Loads a classroom's XP settings and applies XP deltas to ``classroom_xp``.
The level column is never written independently: every XP change recomputes
it with :func:`classquest.engine.leveling.level_from_xp`.

XP exists only inside a classroom.  Triggers without a classroom (the legacy
global scope) get disabled settings and never touch this table.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from classquest.config import EngineConfig
from classquest.database.models import Classroom, ClassroomXP
from classquest.engine.leveling import level_from_xp
from classquest.engine.settings import XPSettings, parse_xp_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class XPAward:
    old_xp: int
    new_xp: int
    old_level: int
    new_level: int

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.old_level


def load_xp_settings(
    session: Session,
    classroom_id: int | None,
    config: EngineConfig | None = None,
) -> XPSettings:
    """Parse the classroom's ``xp_settings`` document (defaults when unset)."""
    if classroom_id is None:
        return XPSettings(enabled=False)
    classroom = session.get(Classroom, classroom_id)
    if classroom is None:
        raise ValueError(f"Classroom not found: {classroom_id}")
    return parse_xp_settings(classroom.xp_settings, config)


def get_or_create_xp(session: Session, user_id: int, classroom_id: int) -> ClassroomXP:
    """Fetch or insert the ClassroomXP row (xp 0, level 1)."""
    entry = session.get(ClassroomXP, (user_id, classroom_id), with_for_update=True)
    if entry is None:
        entry = ClassroomXP(user_id=user_id, classroom_id=classroom_id, xp=0, level=1)
        session.add(entry)
        session.flush()
    return entry


def award_xp(
    session: Session,
    user_id: int,
    classroom_id: int | None,
    amount: int,
    reason: str,
    settings: XPSettings,
) -> XPAward | None:
    """Add *amount* XP and recompute the level.

    Returns ``None`` (and writes nothing) when XP is disabled, there is no
    classroom, or *amount* is not positive.
    """
    if classroom_id is None or not settings.enabled or amount <= 0:
        return None

    entry = get_or_create_xp(session, user_id, classroom_id)
    old_xp = entry.xp or 0
    old_level = level_from_xp(
        old_xp, settings.leveling_formula, settings.base_xp_for_level2, settings.max_level
    )

    entry.xp = old_xp + amount
    entry.level = level_from_xp(
        entry.xp, settings.leveling_formula, settings.base_xp_for_level2, settings.max_level
    )
    session.flush()

    award = XPAward(old_xp=old_xp, new_xp=entry.xp, old_level=old_level, new_level=entry.level)
    logger.debug(
        "XP +%d for user %d in classroom %d (%s): %d → %d",
        amount, user_id, classroom_id, reason, old_xp, entry.xp,
    )
    if award.leveled_up:
        logger.info(
            "User %d reached level %d in classroom %d (was %d)",
            user_id, award.new_level, classroom_id, old_level,
        )
    return award

