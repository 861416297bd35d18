"""
classquest.services.ledger_service — Balance Writes & Transaction Ledger
=========================================================================

Every balance change in the engine goes through :func:`credit`:

  1. Clamp the new balance at zero
  2. Mirror it into the ``classroom_balances`` projection (same flush)
  3. Append an immutable ``transactions`` row with the calculation audit
  4. Optionally create the ``wallet_transaction`` notification

The ledger is append-only: rows are never updated or deleted, and readers
get them back in insertion order.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from classquest.constants import BIT_SYMBOL, NotificationType
from classquest.database.models import ClassroomBalance, Transaction
from classquest.engine.reward import RewardCalculation
from classquest.services.notification_service import NotificationOutbox
from classquest.services.stat_store import ClassroomScope, StatRecord, StatScope

logger = logging.getLogger(__name__)


def apply_delta(
    session: Session, scope: StatScope, record: StatRecord, amount: int
) -> int:
    """Add *amount* to the scoped balance, never going below zero.

    Returns the new balance.  For a classroom scope the denormalized
    ``classroom_balances`` row is written in the same flush.
    """
    new_balance = max(0, (record.balance or 0) + amount)
    record.balance = new_balance

    if isinstance(scope, ClassroomScope):
        projection = session.get(ClassroomBalance, (scope.user_id, scope.classroom_id))
        if projection is None:
            projection = ClassroomBalance(
                user_id=scope.user_id, classroom_id=scope.classroom_id, balance=0
            )
            session.add(projection)
        projection.balance = new_balance

    session.flush()
    return new_balance


def append_transaction(
    session: Session,
    *,
    user_id: int,
    classroom_id: int | None,
    amount: int,
    description: str,
    type: str,
    assigned_by: int | None = None,
    calculation: RewardCalculation | None = None,
) -> Transaction:
    """Insert one immutable ledger row."""
    row = Transaction(
        user_id=user_id,
        classroom_id=classroom_id,
        amount=amount,
        description=description,
        type=str(type),
        assigned_by=assigned_by,
        calculation=calculation.to_dict() if calculation is not None else None,
    )
    session.add(row)
    session.flush()
    return row


def wallet_message(amount: int) -> str:
    verb = "credited" if amount >= 0 else "debited"
    return f"You were {verb} {abs(amount)} {BIT_SYMBOL}."


def credit(
    session: Session,
    outbox: NotificationOutbox,
    scope: StatScope,
    record: StatRecord,
    calculation: RewardCalculation,
    *,
    description: str,
    type: str,
    assigned_by: int | None = None,
    notify: bool = True,
) -> int:
    """Apply a calculated reward (or debit) to the ledger.

    Zero amounts leave no ledger row.  Returns the new balance.
    """
    amount = calculation.final_amount
    if amount == 0:
        return record.balance or 0

    before = record.balance or 0
    new_balance = apply_delta(session, scope, record, amount)
    append_transaction(
        session,
        user_id=scope.user_id,
        classroom_id=scope.classroom_id,
        amount=amount,
        description=description,
        type=type,
        assigned_by=assigned_by,
        calculation=calculation,
    )
    if before + amount < 0:
        logger.warning(
            "Debit of %d for user %d clamped at zero (balance was %d)",
            amount, scope.user_id, before,
        )
    logger.info(
        "Ledger %s: user=%d classroom=%s amount=%+d balance=%d",
        type, scope.user_id, scope.classroom_id, amount, new_balance,
    )

    if notify:
        outbox.add(
            session,
            user_id=scope.user_id,
            type=NotificationType.WALLET_TRANSACTION,
            message=wallet_message(amount),
            classroom_id=scope.classroom_id,
            action_by=assigned_by,
        )
    return new_balance


def list_transactions(
    session: Session, user_id: int, classroom_id: int | None = None
) -> list[Transaction]:
    """Ledger rows for a user in insertion order, optionally one classroom."""
    stmt = select(Transaction).where(Transaction.user_id == user_id)
    if classroom_id is not None:
        stmt = stmt.where(Transaction.classroom_id == classroom_id)
    return list(session.scalars(stmt.order_by(Transaction.id)).all())
