"""
classquest.services.notification_service — Notification Rows & Outbox
======================================================================

The engine never delivers notifications itself.  Each flow collects the
rows it creates in a :class:`NotificationOutbox`; after the session
commits, :meth:`NotificationOutbox.flush` hands them to the caller's sink
(socket transport, push service …) in creation order.  Rows created inside
a rolled-back savepoint are discarded with :meth:`discard_from`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from classquest.constants import NotificationType
from classquest.database.models import Notification

logger = logging.getLogger(__name__)

# Either a plain callable or an object with a ``deliver(notification)`` method.
NotificationSink = Callable[[Notification], None]


def badge_notification_exists(session: Session, user_id: int, badge_id: int) -> bool:
    """True if a ``badge_earned`` notification already exists for the pair.

    Optimistic dedupe: two concurrent unlocks can both see False.
    """
    existing = session.scalar(
        select(Notification.id).where(
            Notification.user_id == user_id,
            Notification.badge_id == badge_id,
            Notification.type == NotificationType.BADGE_EARNED.value,
        ).limit(1)
    )
    return existing is not None


class NotificationOutbox:
    """Ordered buffer of notifications created during one unit of work."""

    def __init__(self) -> None:
        self._pending: list[Notification] = []

    @property
    def pending(self) -> list[Notification]:
        return list(self._pending)

    def add(
        self,
        session: Session,
        *,
        user_id: int,
        type: str,
        message: str,
        classroom_id: int | None = None,
        badge_id: int | None = None,
        action_by: int | None = None,
        changes: list[dict] | None = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=str(type),
            message=message,
            classroom_id=classroom_id,
            badge_id=badge_id,
            action_by=action_by,
            changes=changes,
            read=False,
        )
        session.add(notification)
        session.flush()
        self._pending.append(notification)
        return notification

    def mark(self) -> int:
        return len(self._pending)

    def discard_from(self, mark: int) -> None:
        """Forget notifications created after *mark* (their savepoint rolled back)."""
        del self._pending[mark:]

    def flush(self, sink: NotificationSink | None) -> int:
        """Deliver every pending notification in order, then clear the buffer.

        Delivery failures are logged per notification; the rows stay
        persisted for the next fetch by the client.
        """
        pending, self._pending = self._pending, []
        if sink is None:
            return 0
        deliver = sink if callable(sink) else sink.deliver
        delivered = 0
        for notification in pending:
            try:
                deliver(notification)
                delivered += 1
            except Exception:
                logger.exception(
                    "Failed to deliver %s notification %s to user %d",
                    notification.type, notification.id, notification.user_id,
                )
        return delivered
