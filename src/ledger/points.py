"""
Points ledger for WasteWatch
Citizen point balances, changed only through guarded atomic updates
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from src.core.exceptions import (
    InsufficientPointsError,
    NotFoundError,
    ValidationError,
)
from src.core.locks import KeyedLocks, entity_locks
from src.database.connection import DatabaseConnection
from src.database.models import User, UserRole

logger = logging.getLogger(__name__)


def _require_positive(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError(
            f"Point amount must be a positive integer, got {amount!r}",
            {"amount": amount},
        )
    return amount


class PointsLedger:
    """
    Adds and deducts citizen points.

    Every change is a single UPDATE statement. Deductions carry their own
    guard (points >= amount) so a balance can never go negative, even
    when another process races this one.
    """

    def __init__(self, db: DatabaseConnection, locks: Optional[KeyedLocks] = None):
        """
        Initialize the ledger.

        Args:
            db: Database connection
            locks: Per-entity lock registry (process-wide by default)
        """
        self.db = db
        self.locks = locks or entity_locks

    @contextmanager
    def _unit(
        self,
        session: Optional[Session],
        user_id: Optional[int] = None
    ) -> Generator[Session, None, None]:
        """
        Join the caller's transaction, or run in a fresh one.

        A fresh transaction takes the user's lock before it begins. A caller
        passing its session must already hold that lock: taking it inside an
        open write transaction would wait on the lock while holding the
        database, and deadlock against a writer doing the reverse.
        """
        if session is not None:
            yield session
        elif user_id is None:
            with self.db.get_session() as own_session:
                yield own_session
        else:
            with self.locks.hold(("user", user_id)), self.db.get_session() as own_session:
                yield own_session

    def get_balance(self, user_id: int, session: Optional[Session] = None) -> int:
        """Current point balance of a user."""
        with self._unit(session) as s:
            balance = s.execute(
                select(User.points).where(User.id == user_id)
            ).scalar_one_or_none()
        if balance is None:
            raise NotFoundError("User", user_id)
        return balance

    def add_points(
        self,
        user_id: int,
        amount: int,
        session: Optional[Session] = None
    ) -> int:
        """
        Credit points to a user.

        Args:
            user_id: User to credit
            amount: Positive number of points
            session: Join an open transaction; the caller holds the user lock

        Returns:
            New balance
        """
        _require_positive(amount)

        with self._unit(session, user_id) as s:
            result = s.execute(
                update(User)
                .where(User.id == user_id)
                .values(points=User.points + amount)
            )
            if result.rowcount == 0:
                raise NotFoundError("User", user_id)
            balance = self.get_balance(user_id, session=s)

        logger.info(f"Added {amount} points to user {user_id} (balance {balance})")
        return balance

    def deduct_points(
        self,
        user_id: int,
        amount: int,
        session: Optional[Session] = None
    ) -> int:
        """
        Debit points from a user.

        Raises:
            InsufficientPointsError: balance is lower than amount; the
                balance is left unchanged

        Returns:
            New balance
        """
        _require_positive(amount)

        with self._unit(session, user_id) as s:
            result = s.execute(
                update(User)
                .where(User.id == user_id, User.points >= amount)
                .values(points=User.points - amount)
            )
            if result.rowcount == 0:
                available = self.get_balance(user_id, session=s)
                logger.warning(
                    f"Rejected deduction of {amount} points from user {user_id} "
                    f"(balance {available})"
                )
                raise InsufficientPointsError(required=amount, available=available)
            balance = self.get_balance(user_id, session=s)

        logger.info(f"Deducted {amount} points from user {user_id} (balance {balance})")
        return balance

    def adjust_points(
        self,
        user_id: int,
        amount: int,
        operation: str,
        reason: str
    ) -> Dict[str, Any]:
        """
        Manual admin correction of a citizen balance.

        Args:
            user_id: Citizen to adjust
            amount: Positive number of points
            operation: "add" or "subtract"
            reason: Free-text justification, required

        Returns:
            Dictionary with old and new balance
        """
        if operation not in ("add", "subtract"):
            raise ValidationError("Operation must be add or subtract", {"operation": operation})
        if not reason or not reason.strip():
            raise ValidationError("Reason is required")

        with self.locks.hold(("user", user_id)), self.db.get_session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("User", user_id)
            if user.role != UserRole.CITIZEN:
                raise ValidationError("Points can only be adjusted for citizens")

            old_points = user.points
            if operation == "add":
                new_points = self.add_points(user_id, amount, session=session)
            else:
                new_points = self.deduct_points(user_id, amount, session=session)

        logger.info(f"Adjusted points of user {user_id}: {old_points} -> {new_points} ({reason.strip()})")

        return {
            "user_id": user_id,
            "old_points": old_points,
            "new_points": new_points,
            "adjustment": new_points - old_points,
            "reason": reason.strip(),
        }
