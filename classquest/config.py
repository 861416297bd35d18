"""
classquest.config — YAML Configuration Loader
==============================================

**Why this file exists:**
This module reads ``config.yaml`` for **engine-wide** settings (level search
ceiling, badge chain evaluation, fallback leveling formula).  Per-classroom
gameplay tuning (XP rates, level-up rewards) lives in the
``classrooms.xp_settings`` JSON column and is parsed by
:mod:`classquest.engine.settings`.

Usage::

    from classquest.config import load_config

    cfg = load_config()             # reads ./config.yaml by default
    print(cfg.badge_chain_passes)   # 1
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from classquest.constants import MAX_LEVEL, LevelingFormula


# ---------------------------------------------------------------------------
# Typed settings object (engine-wide only)
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Immutable configuration loaded from ``config.yaml``.

    ``badge_chain_passes`` controls how many badge scans a single XP award
    may trigger.  ``1`` keeps the legacy single-pass behaviour: XP earned
    from a badge unlock is only evaluated by the next independent award.
    Higher values re-scan until no new badge unlocks, up to the cap.
    """

    default_leveling_formula: str = LevelingFormula.EXPONENTIAL.value
    default_base_xp_for_level2: int = 100
    badge_chain_passes: int = 1
    max_level: int = MAX_LEVEL


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> EngineConfig:
    """Read *path* and return an :class:`EngineConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If a value is out of range.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    engine_raw: dict = raw.get("engine", raw)

    formula = str(
        engine_raw.get("default_leveling_formula", LevelingFormula.EXPONENTIAL.value)
    )
    if formula not in {f.value for f in LevelingFormula}:
        raise ValueError(f"Unknown leveling formula: {formula!r}")

    passes = int(engine_raw.get("badge_chain_passes", 1))
    if passes < 1:
        raise ValueError("badge_chain_passes must be >= 1")

    return EngineConfig(
        default_leveling_formula=formula,
        default_base_xp_for_level2=int(engine_raw.get("default_base_xp_for_level2", 100)),
        badge_chain_passes=passes,
        max_level=int(engine_raw.get("max_level", MAX_LEVEL)),
    )
