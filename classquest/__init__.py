"""
ClassQuest — Progression & Reward-Stacking Engine for Classrooms
=================================================================
Computes, applies, and audits the numbers behind classroom gamification:
bits (the virtual currency), passive stat bonuses, XP/levels, and badges,
all modulated by personal and group multipliers.  Every trigger point
(teacher grants, group adjustments, item usage, feedback rewards, badge
unlocks, level-ups) flows through the same calculation and ledger code.

Package layout::

    classquest/
    ├── config.py          # YAML → typed engine config
    ├── constants.py       # Notification kinds, transaction types, defaults
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # All ORM models
    ├── engine/
    │   ├── settings.py    # Per-classroom xp_settings → frozen dataclasses
    │   ├── multipliers.py # Personal / group multiplier coercion
    │   ├── reward.py      # Additive-stacking reward calculation
    │   ├── leveling.py    # XP ↔ level formulas
    │   ├── badges.py      # Badge unlock selection
    │   ├── level_rewards.py # Level-span reward planning
    │   └── changes.py     # Stat snapshot diffing
    └── services/
        ├── stat_store.py        # Scoped stat records + group lookup
        ├── ledger_service.py    # Clamped balance writes + transactions
        ├── xp_service.py        # XP settings + XP awards
        ├── badge_service.py     # Badge unlock application
        ├── level_up_service.py  # Level-up reward distribution
        ├── change_log.py        # stats_adjusted audit notifications
        ├── notification_service.py # Notification rows + outbox
        ├── scope_lock.py        # Per-(user, classroom) serialization
        └── reward_service.py    # Public trigger flows
"""

__version__ = "0.1.0"
