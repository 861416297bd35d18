"""
classquest.engine.settings — Per-Classroom XP Settings
=======================================================

Parses the ``classrooms.xp_settings`` JSON document into frozen dataclasses
so the rest of the engine never touches loosely-typed dicts.  Keys may be
given in snake_case or in the camelCase used by older documents
(``baseXPForLevel2``, ``levelUpRewards``, ``bitsEarned`` …).
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from classquest.constants import (
    DEFAULT_XP_SETTINGS,
    MAX_LEVEL,
    BitsXPBasis,
    LevelingFormula,
)

if TYPE_CHECKING:
    from classquest.config import EngineConfig

logger = logging.getLogger(__name__)

# Older documents used these names for the same knobs.
_LEGACY_ALIASES: dict[str, str] = {
    "bits_earned": "bits_earned_rate",
    "stat_increase": "stat_increase_rate",
    "badge_unlock": "badge_unlock_rate",
    "base_xp_for_level_2": "base_xp_for_level2",
}

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def _snake(key: str) -> str:
    # baseXPForLevel2 → base_xp_for_level2
    key = key.replace("XP", "Xp")
    snake = _CAMEL_RE.sub("_", key).lower()
    return _LEGACY_ALIASES.get(snake, snake)


def _normalize_keys(raw: dict[str, Any]) -> dict[str, Any]:
    return {_snake(k): v for k, v in raw.items()}


def _as_float(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number) or number < 0:
        return default
    return number


def parse_shield_levels(value: Any) -> frozenset[int]:
    """Accept ``[5, 10]`` or the comma-separated string form ``"5, 10"``."""
    if value is None or value == "":
        return frozenset()
    parts = value.split(",") if isinstance(value, str) else value
    levels: set[int] = set()
    for part in parts:
        try:
            levels.add(int(str(part).strip()))
        except ValueError:
            logger.warning("Ignoring non-numeric shield level %r", part)
    return frozenset(levels)


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LevelUpRewardSettings:
    enabled: bool = False
    bits_per_level: int = 0
    scale_bits_by_level: bool = False
    multiplier_per_level: float = 0.0
    luck_per_level: float = 0.0
    discount_per_level: float = 0.0
    shield_at_levels: frozenset[int] = field(default_factory=frozenset)
    apply_personal_multiplier: bool = False
    apply_group_multiplier: bool = False
    count_bits_toward_xp: bool = False
    count_stats_toward_xp: bool = False


@dataclass(frozen=True, slots=True)
class XPSettings:
    """Typed view of one classroom's XP configuration.

    ``badge_chain_passes`` and ``max_level`` come from the engine-wide
    :class:`~classquest.config.EngineConfig`, not the classroom document.
    """

    enabled: bool = True
    leveling_formula: str = LevelingFormula.EXPONENTIAL.value
    base_xp_for_level2: int = 100
    bits_earned_rate: float = 1.0
    bits_xp_basis: str = BitsXPBasis.FINAL.value
    stat_increase_rate: float = 10.0
    badge_unlock_rate: float = 25.0
    level_up_rewards: LevelUpRewardSettings = field(default_factory=LevelUpRewardSettings)
    badge_chain_passes: int = 1
    max_level: int = MAX_LEVEL


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------
def _parse_level_up_rewards(raw: dict[str, Any] | None) -> LevelUpRewardSettings:
    defaults: dict[str, Any] = dict(DEFAULT_XP_SETTINGS["level_up_rewards"])  # type: ignore[arg-type]
    data = {**defaults, **_normalize_keys(raw or {})}
    return LevelUpRewardSettings(
        enabled=bool(data["enabled"]),
        bits_per_level=int(_as_float(data["bits_per_level"], 0)),
        scale_bits_by_level=bool(data["scale_bits_by_level"]),
        multiplier_per_level=_as_float(data["multiplier_per_level"], 0.0),
        luck_per_level=_as_float(data["luck_per_level"], 0.0),
        discount_per_level=_as_float(data["discount_per_level"], 0.0),
        shield_at_levels=parse_shield_levels(data["shield_at_levels"]),
        apply_personal_multiplier=bool(data["apply_personal_multiplier"]),
        apply_group_multiplier=bool(data["apply_group_multiplier"]),
        count_bits_toward_xp=bool(data["count_bits_toward_xp"]),
        count_stats_toward_xp=bool(data["count_stats_toward_xp"]),
    )


def parse_xp_settings(
    raw: dict[str, Any] | None,
    config: EngineConfig | None = None,
) -> XPSettings:
    """Build :class:`XPSettings` from a classroom's stored document.

    Missing keys take the defaults in
    :data:`~classquest.constants.DEFAULT_XP_SETTINGS`; *config* supplies the
    engine-wide fallback formula/base and the badge chain cap.
    """
    defaults = dict(DEFAULT_XP_SETTINGS)
    if config is not None:
        defaults["leveling_formula"] = config.default_leveling_formula
        defaults["base_xp_for_level2"] = config.default_base_xp_for_level2
    data = {**defaults, **_normalize_keys(raw or {})}

    formula = str(data["leveling_formula"])
    if formula not in {f.value for f in LevelingFormula}:
        logger.warning("Unknown leveling formula %r — using linear", formula)
        formula = LevelingFormula.LINEAR.value

    basis = str(data["bits_xp_basis"])
    if basis not in {b.value for b in BitsXPBasis}:
        basis = BitsXPBasis.FINAL.value

    base_xp = int(_as_float(data["base_xp_for_level2"], 100)) or 100

    return XPSettings(
        enabled=bool(data["enabled"]),
        leveling_formula=formula,
        base_xp_for_level2=base_xp,
        bits_earned_rate=_as_float(data["bits_earned_rate"], 0.0),
        bits_xp_basis=basis,
        stat_increase_rate=_as_float(data["stat_increase_rate"], 0.0),
        badge_unlock_rate=_as_float(data["badge_unlock_rate"], 0.0),
        level_up_rewards=_parse_level_up_rewards(data.get("level_up_rewards")),
        badge_chain_passes=config.badge_chain_passes if config else 1,
        max_level=config.max_level if config else MAX_LEVEL,
    )
