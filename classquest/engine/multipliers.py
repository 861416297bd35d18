"""
classquest.engine.multipliers — Personal & Group Multiplier Resolution
=======================================================================

Pure helpers: no DB I/O.  The group membership lookup itself lives in
:mod:`classquest.services.stat_store`; this module only turns raw values
into safe multipliers.

Canonical group aggregation is the **additive delta** form::

    group = 1 + Σ max(0, gᵢ − 1)

so two ×1.5 groups give ×2.0, and a ×1.0 group contributes nothing.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from typing import Any

logger = logging.getLogger(__name__)


def coerce_multiplier(value: Any) -> float:
    """Return *value* as a float, or ``1.0`` when absent, non-finite, or ≤ 0."""
    if value is None or isinstance(value, bool):
        return 1.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.warning("Non-numeric multiplier %r coerced to 1", value)
        return 1.0
    if not math.isfinite(number) or number <= 0:
        return 1.0
    return number


def stack_group_multipliers(values: Iterable[Any]) -> float:
    """Combine the multipliers of every group a user belongs to.

    Returns ``1.0`` for no groups.  Values below 1 are treated as neutral.
    """
    total = 1.0
    for value in values:
        mult = coerce_multiplier(value)
        if mult > 1:
            total += mult - 1
    return total
