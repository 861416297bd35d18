"""
classquest.engine.changes — Stat Snapshot Diffing
==================================================

Pure half of the change logger: normalizes before/after snapshots of the
tracked stat fields and lists what differs.  Values are compared as strings
after normalization so ``1``, ``1.0`` and ``"1.0"`` are the same value.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from classquest.constants import TRACKED_STAT_FIELDS

_ONE_DECIMAL_FIELDS = {"multiplier", "luck", "group_multiplier"}
_INTEGER_FIELDS = {"discount", "shield", "xp"}


@dataclass(frozen=True, slots=True)
class StatChange:
    field: str
    before: Any
    after: Any

    def to_dict(self) -> dict:
        return {"field": self.field, "from": self.before, "to": self.after}

    def __str__(self) -> str:
        return f"{self.field}: {self.before} → {self.after}"


def normalize_stat(field: str, value: Any) -> Any:
    """Round a raw value the way it is displayed to students."""
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return value
    if not math.isfinite(number):
        return value
    if field in _ONE_DECIMAL_FIELDS:
        return round(number, 1)
    if field in _INTEGER_FIELDS:
        rounded = int(math.floor(number + 0.5))
        return max(0, rounded) if field == "shield" else rounded
    return value


def diff_stats(
    prev: Mapping[str, Any],
    curr: Mapping[str, Any],
    fields: Iterable[str] = TRACKED_STAT_FIELDS,
) -> list[StatChange]:
    """List every tracked field whose normalized value differs.

    Fields absent from both snapshots are skipped.
    """
    changes: list[StatChange] = []
    for name in fields:
        before = normalize_stat(name, prev.get(name))
        after = normalize_stat(name, curr.get(name))
        if before is None and after is None:
            continue
        if str(before) != str(after):
            changes.append(StatChange(name, before, after))
    return changes


def summarize_changes(changes: Iterable[StatChange]) -> str:
    """``"luck: 1.0 → 1.5; shield: 0 → 1"``."""
    return "; ".join(str(change) for change in changes)
