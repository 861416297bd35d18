"""
classquest.services.change_log — Stat Change Notifications
===========================================================

One call per triggering event.  Diffs the before/after snapshots of the
tracked fields and, if anything moved, creates a single ``stats_adjusted``
notification for the student.  Teachers are never notified from here.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy.orm import Session

from classquest.constants import NotificationType
from classquest.database.models import Notification
from classquest.engine.changes import StatChange, diff_stats, summarize_changes
from classquest.services.notification_service import NotificationOutbox

logger = logging.getLogger(__name__)


def _coerce_extra(change: StatChange | Mapping[str, Any]) -> StatChange | None:
    if isinstance(change, StatChange):
        return change
    if change and change.get("field"):
        return StatChange(change["field"], change.get("from"), change.get("to"))
    return None


def stats_message(context: str, changes: list[StatChange], effects_text: str | None) -> str:
    summary = summarize_changes(changes)
    message = f"Your stats were updated via {context}: {summary}"
    if summary:
        message += "."
    if effects_text:
        message += f" Effects: {effects_text}."
    return message


def log_stat_changes(
    session: Session,
    outbox: NotificationOutbox,
    *,
    user_id: int,
    classroom_id: int | None,
    prev: Mapping[str, Any],
    curr: Mapping[str, Any],
    context: str,
    action_by: int | None = None,
    effects_text: str | None = None,
    force: bool = False,
    extra_changes: Iterable[StatChange | Mapping[str, Any]] = (),
) -> Notification | None:
    """Create the ``stats_adjusted`` notification for one event.

    Parameters
    ----------
    prev, curr : Snapshots from :func:`classquest.services.stat_store.snapshot`.
    context : Human-readable trigger ("teacher adjustment", "badge unlock" …).
    effects_text : Optional free text appended as ``Effects: …``.
    force : Create the notification even when no tracked field changed.
    extra_changes : Caller-supplied changes appended after the diff.

    Returns
    -------
    Notification | None
        The created row, or ``None`` when nothing changed and not forced.
    """
    changes = diff_stats(prev, curr)
    for extra in extra_changes:
        coerced = _coerce_extra(extra)
        if coerced is not None:
            changes.append(coerced)

    if not changes and not force:
        return None

    notification = outbox.add(
        session,
        user_id=user_id,
        type=NotificationType.STATS_ADJUSTED,
        message=stats_message(context, changes, effects_text),
        classroom_id=classroom_id,
        action_by=action_by,
        changes=[change.to_dict() for change in changes],
    )
    logger.debug(
        "Stat changes for user %d via %s: %s", user_id, context, summarize_changes(changes)
    )
    return notification
