"""
User directory for WasteWatch
Account creation, collector availability and the citizen leaderboard
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError

from src.core.exceptions import NotFoundError, ValidationError
from src.database.connection import DatabaseConnection
from src.database.models import Report, ReportStatus, User, UserRole

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Statuses that count towards a collector's current workload
ACTIVE_TASK_STATUSES = (ReportStatus.ASSIGNED, ReportStatus.IN_PROGRESS)


class UserDirectory:
    """Reads and creates platform users. Points are left to the ledger."""

    def __init__(self, db: DatabaseConnection):
        self.db = db

    def create_user(
        self,
        name: str,
        email: str,
        role: UserRole = UserRole.CITIZEN,
        is_active: bool = True
    ) -> User:
        """
        Register a user with a zero balance.

        Raises:
            ValidationError: missing name, malformed or duplicate email
        """
        if not name or not name.strip():
            raise ValidationError("Name is required")
        email = (email or "").strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise ValidationError("Invalid email address", {"email": email})
        try:
            role = UserRole(role)
        except ValueError:
            raise ValidationError(f"Unknown role: {role}")

        user = User(name=name.strip(), email=email, role=role, is_active=is_active, points=0)
        try:
            with self.db.get_session() as session:
                session.add(user)
                session.flush()
        except IntegrityError:
            raise ValidationError("Email already registered", {"email": email})

        logger.info(f"User {user.id} created ({role.value})")
        return user

    def get_user(self, user_id: int) -> User:
        with self.db.get_session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("User", user_id)
            return user

    def list_users(
        self,
        role: Optional[UserRole] = None,
        search: Optional[str] = None,
        active_only: bool = False,
        limit: int = 100,
        offset: int = 0
    ) -> Tuple[List[User], int]:
        """
        Page of users, newest first.

        Args:
            role: Only this role
            search: Case-insensitive match on name or email
            active_only: Skip deactivated accounts

        Returns:
            Tuple of (users, total matching)
        """
        filters = []
        if role is not None:
            filters.append(User.role == role)
        if search and search.strip():
            pattern = f"%{search.strip().lower()}%"
            filters.append(or_(func.lower(User.name).like(pattern), User.email.like(pattern)))
        if active_only:
            filters.append(User.is_active.is_(True))

        with self.db.get_session() as session:
            total = session.execute(select(func.count(User.id)).where(*filters)).scalar_one()
            users = session.scalars(
                select(User)
                .where(*filters)
                .order_by(User.created_at.desc(), User.id.desc())
                .limit(limit)
                .offset(offset)
            ).all()
        return list(users), total

    def set_active(self, user_id: int, is_active: bool, actor_id: int) -> User:
        """
        Activate or deactivate an account.

        Deactivated citizens cannot submit reports and deactivated
        collectors cannot be assigned work.

        Raises:
            NotFoundError: unknown user
            ValidationError: the actor tried to deactivate their own account
        """
        if user_id == actor_id and not is_active:
            raise ValidationError("You cannot deactivate your own account")

        with self.db.get_session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("User", user_id)
            user.is_active = bool(is_active)

        logger.info(f"User {user_id} {'activated' if is_active else 'deactivated'} by {actor_id}")
        return user

    def list_available_collectors(self) -> List[Dict[str, Any]]:
        """
        Active collectors with their current workload, least busy first.

        Workload is the number of reports assigned to the collector that
        are not yet completed.
        """
        with self.db.get_session() as session:
            workload = (
                select(Report.assigned_to, func.count(Report.id).label("current_tasks"))
                .where(Report.status.in_(ACTIVE_TASK_STATUSES))
                .group_by(Report.assigned_to)
                .subquery()
            )
            rows = session.execute(
                select(User, func.coalesce(workload.c.current_tasks, 0))
                .outerjoin(workload, workload.c.assigned_to == User.id)
                .where(User.role == UserRole.COLLECTOR, User.is_active.is_(True))
                .order_by(func.coalesce(workload.c.current_tasks, 0), User.id)
            ).all()

        return [
            {
                "id": user.id,
                "name": user.name,
                "email": user.email,
                "current_tasks": int(current_tasks),
                "completed_tasks": user.completed_tasks,
            }
            for user, current_tasks in rows
        ]

    def leaderboard(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Top active citizens by points, ties broken by completed reports."""
        if limit < 1:
            raise ValidationError("Limit must be at least 1")
        with self.db.get_session() as session:
            users = session.scalars(
                select(User)
                .where(User.role == UserRole.CITIZEN, User.is_active.is_(True))
                .order_by(User.points.desc(), User.completed_reports.desc(), User.id)
                .limit(limit)
            ).all()

        return [
            {
                "rank": rank,
                "id": user.id,
                "name": user.name,
                "points": user.points,
                "total_reports": user.total_reports,
                "completed_reports": user.completed_reports,
            }
            for rank, user in enumerate(users, start=1)
        ]
