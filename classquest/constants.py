"""
classquest.constants — Shared Constants
========================================

Single source of truth for notification kinds, ledger transaction types,
tracked audit fields, and the default per-classroom XP settings.
Import from here instead of duplicating string literals in services.
"""

from __future__ import annotations

import enum


# ---------------------------------------------------------------------------
# Notification kinds handed to the external delivery sink
# ---------------------------------------------------------------------------
class NotificationType(enum.StrEnum):
    WALLET_TRANSACTION = "wallet_transaction"
    STATS_ADJUSTED = "stats_adjusted"
    BADGE_EARNED = "badge_earned"
    LEVEL_UP = "level_up"


# ---------------------------------------------------------------------------
# Ledger transaction types
# ---------------------------------------------------------------------------
class TransactionType(enum.StrEnum):
    """Why a ledger row exists.  Stored verbatim on ``transactions.type``."""
    MANUAL_ADJUSTMENT = "manual_adjustment"
    GROUP_ADJUSTMENT = "group_adjustment"
    FEEDBACK_REWARD = "feedback_reward"
    BADGE_REWARD = "badge_reward"
    LEVEL_UP_REWARD = "level_up_reward"


class LevelingFormula(enum.StrEnum):
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    LOGARITHMIC = "logarithmic"


class BitsXPBasis(enum.StrEnum):
    """Which reward amount earns XP: before or after multipliers."""
    BASE = "base"
    FINAL = "final"


# ---------------------------------------------------------------------------
# Stat change audit
# ---------------------------------------------------------------------------
TRACKED_STAT_FIELDS: tuple[str, ...] = (
    "multiplier",
    "luck",
    "discount",
    "shield",
    "group_multiplier",
    "xp",
)

# ---------------------------------------------------------------------------
# Passive attribute defaults and bounds
# ---------------------------------------------------------------------------
DEFAULT_MULTIPLIER = 1.0
DEFAULT_LUCK = 1.0
DEFAULT_DISCOUNT = 0
MAX_DISCOUNT = 100

# Hard ceiling for the level search loop.
MAX_LEVEL = 1000

BIT_SYMBOL = "₿"  # ₿

# ---------------------------------------------------------------------------
# Per-classroom XP settings defaults (``classrooms.xp_settings`` JSON)
# ---------------------------------------------------------------------------
DEFAULT_XP_SETTINGS: dict[str, object] = {
    "enabled": True,
    "leveling_formula": LevelingFormula.EXPONENTIAL.value,
    "base_xp_for_level2": 100,
    "bits_earned_rate": 1.0,
    "bits_xp_basis": BitsXPBasis.FINAL.value,
    "stat_increase_rate": 10.0,
    "badge_unlock_rate": 25.0,
    "level_up_rewards": {
        "enabled": False,
        "bits_per_level": 0,
        "scale_bits_by_level": False,
        "multiplier_per_level": 0.0,
        "luck_per_level": 0.0,
        "discount_per_level": 0.0,
        "shield_at_levels": [],
        "apply_personal_multiplier": False,
        "apply_group_multiplier": False,
        "count_bits_toward_xp": False,
        "count_stats_toward_xp": False,
    },
}
