"""
Report lifecycle manager for crowdsourced waste reports
Moves reports from submission to cleanup and awards citizen points
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Generator, Iterable, List, Optional, Tuple, Type, Union

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from src.core.config import settings
from src.core.constants import REPORT_ID_PREFIX, REPORT_PRIORITIES, WASTE_TYPES
from src.core.exceptions import (
    AlreadyAwardedError,
    InvalidStateTransition,
    NotFoundError,
    PermissionDenied,
    ValidationError,
    WasteWatchError,
)
from src.core.geo_utils import is_valid_coordinate
from src.core.locks import KeyedLocks, entity_locks
from src.crowdsource.geo_queries import Hotspot, NearbyReport, find_hotspots, find_nearby
from src.crowdsource.waste_classifier import Classification
from src.database.connection import DatabaseConnection
from src.database.models import (
    ImageKind,
    Report,
    ReportStatus,
    User,
    UserRole,
    utcnow,
)
from src.ledger.points import PointsLedger

logger = logging.getLogger(__name__)

ReportRef = Union[int, str]


class ReportLifecycleManager:
    """
    Owns waste reports and their status machine.

    Every mutation runs in one transaction under the report's lock, and
    the report's version column rejects writes based on a stale read.
    Notifications go out only after the transaction commits.
    """

    def __init__(
        self,
        db: DatabaseConnection,
        points: PointsLedger,
        notifier: Optional[Any] = None,
        geocoder: Optional[Any] = None,
        clock: Callable[[], datetime] = utcnow,
        locks: Optional[KeyedLocks] = None
    ):
        """
        Initialize the lifecycle manager.

        Args:
            db: Database connection
            points: Ledger credited when points are awarded
            notifier: Object with notify(user_id, title, message, kind)
            geocoder: Object with reverse(lat, lng) -> Optional[str]
            clock: Source of "now" (naive UTC)
            locks: Per-entity lock registry
        """
        self.db = db
        self.points = points
        self.notifier = notifier
        self.geocoder = geocoder
        self.clock = clock
        self.locks = locks or entity_locks

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def submit(
        self,
        citizen_id: int,
        description: str,
        latitude: float,
        longitude: float,
        image_url: str,
        waste_type: str = "unknown",
        title: Optional[str] = None,
        address: Optional[str] = None,
        landmark: Optional[str] = None,
        priority: str = "medium",
        classification: Optional[Classification] = None
    ) -> Report:
        """
        Create a report in the submitted status.

        Args:
            citizen_id: Reporting citizen
            description: What was found, required
            latitude: Location latitude
            longitude: Location longitude
            image_url: Reference returned by the image store
            waste_type: One of WASTE_TYPES
            title: Optional short title
            address: Street address; looked up by the geocoder when omitted
            landmark: Optional nearby landmark
            priority: One of REPORT_PRIORITIES
            classification: Optional classifier annotation

        Returns:
            The created Report
        """
        if not description or not description.strip():
            raise ValidationError("Description is required")
        if not is_valid_coordinate(latitude, longitude):
            raise ValidationError(
                "Invalid coordinates",
                {"latitude": latitude, "longitude": longitude},
            )
        if not image_url:
            raise ValidationError("An image of the waste is required")
        if waste_type not in WASTE_TYPES:
            raise ValidationError(f"Unknown waste type: {waste_type}", {"allowed": WASTE_TYPES})
        if priority not in REPORT_PRIORITIES:
            raise ValidationError(f"Unknown priority: {priority}", {"allowed": REPORT_PRIORITIES})

        # Network call stays outside the transaction
        if not address and self.geocoder is not None:
            address = self.geocoder.reverse(latitude, longitude)

        now = self.clock()

        with self.db.get_session() as session:
            self._require_user(session, citizen_id, UserRole.CITIZEN)

            report = Report(
                citizen_id=citizen_id,
                title=title.strip() if title else None,
                description=description.strip(),
                waste_type=waste_type,
                priority=priority,
                latitude=latitude,
                longitude=longitude,
                address=address,
                landmark=landmark,
                points_awarded=0,
                created_at=now,
                updated_at=now,
            )
            if classification is not None:
                report.ml_is_waste = classification.is_waste
                report.ml_waste_type = classification.waste_type
                report.ml_confidence = classification.confidence
                report.ml_processed_at = now

            report.record_submission(citizen_id, now)
            report.attach_image(ImageKind.ORIGINAL, image_url, citizen_id, now)
            session.add(report)
            session.flush()
            report.report_id = Report.format_report_id(report.id)

            session.execute(
                update(User)
                .where(User.id == citizen_id)
                .values(total_reports=User.total_reports + 1)
            )

        logger.info(f"Report {report.report_id} submitted by citizen {citizen_id}")
        self._notify(
            citizen_id,
            "Report submitted",
            f"Your waste report {report.report_id} was received and awaits verification.",
        )
        return report

    def verify(
        self,
        report_id: ReportRef,
        admin_id: int,
        approve: bool,
        notes: Optional[str] = None
    ) -> Report:
        """Approve (verified) or reject a submitted report."""
        now = self.clock()
        new_status = ReportStatus.VERIFIED if approve else ReportStatus.REJECTED

        with self._report_unit(report_id) as (session, report):
            report.require_transition(new_status)
            self._require_user(session, admin_id, UserRole.ADMIN)

            report.transition_to(new_status, admin_id, notes, now)
            report.verified_by = admin_id
            report.verified_at = now
            report.verification_notes = notes

        logger.info(f"Report {report.report_id} {new_status.value} by admin {admin_id}")
        if approve:
            self._notify(
                report.citizen_id,
                "Report verified",
                f"Your waste report {report.report_id} was approved and will be scheduled for cleanup.",
            )
        else:
            reason = f" Reason: {notes}" if notes else ""
            self._notify(
                report.citizen_id,
                "Report rejected",
                f"Your waste report {report.report_id} was rejected.{reason}",
            )
        return report

    def assign(self, report_id: ReportRef, admin_id: int, collector_id: int) -> Report:
        """Dispatch a verified report to an active collector."""
        now = self.clock()

        with self._report_unit(report_id) as (session, report):
            report.require_transition(ReportStatus.ASSIGNED)
            self._require_user(session, admin_id, UserRole.ADMIN)

            collector = session.get(User, collector_id)
            if collector is None:
                raise NotFoundError("User", collector_id)
            if collector.role != UserRole.COLLECTOR or not collector.is_active:
                raise ValidationError(
                    f"User {collector_id} is not an active collector",
                    {"collector_id": collector_id},
                )

            report.assigned_to = collector_id
            report.transition_to(
                ReportStatus.ASSIGNED, admin_id, f"Assigned to collector {collector_id}", now
            )
            report.assigned_at = now

        logger.info(f"Report {report.report_id} assigned to collector {collector_id}")
        self._notify(
            collector_id,
            "New cleanup task",
            f"Waste report {report.report_id} was assigned to you.",
            kind="assignment",
        )
        self._notify(
            report.citizen_id,
            "Cleanup scheduled",
            f"A collector was assigned to your waste report {report.report_id}.",
        )
        return report

    def start(
        self,
        report_id: ReportRef,
        collector_id: int,
        before_image_url: Optional[str] = None
    ) -> Report:
        """Assigned collector begins the cleanup."""
        now = self.clock()

        with self._report_unit(report_id) as (session, report):
            report.require_transition(ReportStatus.IN_PROGRESS)
            self._require_assignee(report, collector_id)

            report.transition_to(ReportStatus.IN_PROGRESS, collector_id, "Cleanup started", now)
            if before_image_url:
                report.attach_image(ImageKind.BEFORE_CLEANUP, before_image_url, collector_id, now)

        logger.info(f"Report {report.report_id} cleanup started by collector {collector_id}")
        self._notify(
            report.citizen_id,
            "Cleanup started",
            f"Cleanup of your waste report {report.report_id} has started.",
        )
        return report

    def complete(
        self,
        report_id: ReportRef,
        collector_id: int,
        after_image_url: str,
        notes: Optional[str] = None
    ) -> Report:
        """Assigned collector finishes the cleanup, with proof."""
        if not after_image_url:
            raise ValidationError("An after-cleanup image is required")

        now = self.clock()

        ref = self._resolve_id(report_id)
        with self._report_unit(ref, extra_locks=[("user", collector_id)]) as (session, report):
            report.require_transition(ReportStatus.COMPLETED)
            self._require_assignee(report, collector_id)

            report.attach_image(ImageKind.AFTER_CLEANUP, after_image_url, collector_id, now)
            report.transition_to(ReportStatus.COMPLETED, collector_id, notes, now)
            report.completed_at = now
            report.completion_notes = notes

            started_at = report.history_time(ReportStatus.IN_PROGRESS)
            if started_at is not None:
                report.actual_cleanup_minutes = round((now - started_at).total_seconds() / 60)

            session.execute(
                update(User)
                .where(User.id == collector_id)
                .values(completed_tasks=User.completed_tasks + 1)
            )

        logger.info(
            f"Report {report.report_id} completed by collector {collector_id} "
            f"in {report.actual_cleanup_minutes} minutes"
        )
        self._notify(
            report.citizen_id,
            "Cleanup completed",
            f"The waste from your report {report.report_id} was cleaned up. Thank you!",
        )
        return report

    def award_points(self, report_id: ReportRef, points: int, admin_id: int) -> Report:
        """
        Credit the citizen for a completed report, at most once.

        Raises:
            ValidationError: points outside the configured bounds
            InvalidStateTransition: report is not completed
            AlreadyAwardedError: points were already awarded
        """
        low, high = settings.award_points_min, settings.award_points_max
        if isinstance(points, bool) or not isinstance(points, int) or not low <= points <= high:
            raise ValidationError(
                f"Points must be an integer between {low} and {high}",
                {"points": points},
            )

        now = self.clock()

        # The citizen's lock is taken before the transaction opens, like every
        # other balance change; citizen_id never changes after submit.
        citizen_id = self._citizen_of(report_id)

        with self._report_unit(
            report_id,
            extra_locks=[("user", citizen_id)],
            on_conflict=AlreadyAwardedError
        ) as (session, report):
            self._require_user(session, admin_id, UserRole.ADMIN)
            if report.status != ReportStatus.COMPLETED:
                raise InvalidStateTransition(
                    f"Points can only be awarded for completed reports; "
                    f"{report.report_id} is {report.status.value}",
                    {"current": report.status.value},
                )
            if report.points_awarded:
                logger.warning(f"Duplicate award attempt on report {report.report_id} by admin {admin_id}")
                raise AlreadyAwardedError(
                    f"Points were already awarded for report {report.report_id}",
                    {"points_awarded": report.points_awarded},
                )

            balance = self.points.add_points(report.citizen_id, points, session=session)
            report.points_awarded = points
            report.points_awarded_at = now
            report.updated_at = now

            session.execute(
                update(User)
                .where(User.id == report.citizen_id)
                .values(completed_reports=User.completed_reports + 1)
            )

        logger.info(
            f"Awarded {points} points for report {report.report_id} "
            f"to citizen {report.citizen_id} (balance {balance})"
        )
        self._notify(
            report.citizen_id,
            "Points earned!",
            f"You earned {points} points for your waste report {report.report_id}. Keep up the great work!",
            kind="reward",
        )
        return report

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_report(self, report_id: ReportRef) -> Report:
        with self.db.get_session() as session:
            return self._load_report(session, self._resolve_id(report_id))

    def list_reports(
        self,
        status: Optional[ReportStatus] = None,
        priority: Optional[str] = None,
        waste_type: Optional[str] = None,
        citizen_id: Optional[int] = None,
        assigned_to: Optional[int] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[Report], int]:
        """
        Filtered reports, newest first.

        Returns:
            Tuple of (page of reports, total matching count)
        """
        conditions = []
        if status is not None:
            conditions.append(Report.status == ReportStatus(status))
        if priority is not None:
            conditions.append(Report.priority == priority)
        if waste_type is not None:
            conditions.append(Report.waste_type == waste_type)
        if citizen_id is not None:
            conditions.append(Report.citizen_id == citizen_id)
        if assigned_to is not None:
            conditions.append(Report.assigned_to == assigned_to)
        if start_date is not None:
            conditions.append(Report.created_at >= start_date)
        if end_date is not None:
            conditions.append(Report.created_at <= end_date)

        with self.db.get_session() as session:
            total = session.execute(
                select(func.count(Report.id)).where(*conditions)
            ).scalar_one()
            reports = list(session.scalars(
                select(Report)
                .where(*conditions)
                .order_by(Report.created_at.desc(), Report.id.desc())
                .limit(limit)
                .offset(offset)
            ))

        return reports, total

    def get_statistics(self) -> Dict[str, Any]:
        """Report totals for the admin dashboard."""
        with self.db.get_session() as session:
            by_status = {
                ReportStatus(status).value: count
                for status, count in session.execute(
                    select(Report.status, func.count(Report.id)).group_by(Report.status)
                )
            }
            by_priority = dict(session.execute(
                select(Report.priority, func.count(Report.id)).group_by(Report.priority)
            ).all())
            by_waste_type = dict(session.execute(
                select(Report.waste_type, func.count(Report.id)).group_by(Report.waste_type)
            ).all())
            total_points, avg_cleanup = session.execute(
                select(
                    func.coalesce(func.sum(Report.points_awarded), 0),
                    func.avg(Report.actual_cleanup_minutes),
                )
            ).one()

        total = sum(by_status.values())
        completed = by_status.get(ReportStatus.COMPLETED.value, 0)

        return {
            "total_reports": total,
            "by_status": {status.value: by_status.get(status.value, 0) for status in ReportStatus},
            "by_priority": by_priority,
            "by_waste_type": by_waste_type,
            "completion_rate": round(completed / total, 4) if total > 0 else 0,
            "total_points_awarded": int(total_points),
            "avg_cleanup_minutes": round(float(avg_cleanup), 1) if avg_cleanup is not None else None,
        }

    def nearby(
        self,
        latitude: float,
        longitude: float,
        radius_km: Optional[float] = None,
        statuses: Optional[Iterable[ReportStatus]] = None
    ) -> List[NearbyReport]:
        """Reports within radius_km of a point, nearest first."""
        radius_km = settings.nearby_default_radius_km if radius_km is None else radius_km
        if not is_valid_coordinate(latitude, longitude):
            raise ValidationError(
                "Invalid coordinates",
                {"latitude": latitude, "longitude": longitude},
            )
        if not 0 < radius_km <= settings.nearby_max_radius_km:
            raise ValidationError(
                f"Radius must be greater than 0 and at most {settings.nearby_max_radius_km} km",
                {"radius_km": radius_km},
            )

        with self.db.get_session() as session:
            return find_nearby(session, latitude, longitude, radius_km, statuses)

    def hotspots(
        self,
        min_reports: Optional[int] = None,
        limit: Optional[int] = None,
        statuses: Optional[Iterable[ReportStatus]] = None
    ) -> List[Hotspot]:
        """Grid cells with at least min_reports reports, busiest first."""
        if min_reports is not None and min_reports < 1:
            raise ValidationError("min_reports must be at least 1", {"min_reports": min_reports})

        query = select(Report.latitude, Report.longitude, Report.status)
        if statuses is not None:
            query = query.where(Report.status.in_(list(statuses)))

        with self.db.get_session() as session:
            locations = session.execute(query).all()

        return find_hotspots(locations, min_reports=min_reports, limit=limit)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _report_unit(
        self,
        report_id: ReportRef,
        extra_locks: Iterable[Tuple[str, int]] = (),
        on_conflict: Type[WasteWatchError] = InvalidStateTransition
    ) -> Generator[Tuple[Session, Report], None, None]:
        """
        Lock the report, load it and run the caller's changes in one
        transaction. A concurrent write to the same report surfaces as
        on_conflict.
        """
        row_id = self._resolve_id(report_id)
        with self.locks.hold(("report", row_id), *extra_locks):
            try:
                with self.db.get_session() as session:
                    yield session, self._load_report(session, row_id)
            except StaleDataError:
                logger.warning(f"Concurrent update on report {row_id} rejected")
                raise on_conflict(
                    f"Report {Report.format_report_id(row_id)} was modified concurrently"
                )

    @staticmethod
    def _resolve_id(report_id: ReportRef) -> int:
        """Row id for either the row id or the human readable WR code."""
        if isinstance(report_id, int) and not isinstance(report_id, bool):
            return report_id
        text = str(report_id).strip().upper()
        digits = text[len(REPORT_ID_PREFIX):] if text.startswith(REPORT_ID_PREFIX) else text
        if not digits.isdigit():
            raise NotFoundError("Report", report_id)
        return int(digits)

    def _citizen_of(self, report_id: ReportRef) -> int:
        row_id = self._resolve_id(report_id)
        with self.db.get_session() as session:
            citizen_id = session.execute(
                select(Report.citizen_id).where(Report.id == row_id)
            ).scalar_one_or_none()
        if citizen_id is None:
            raise NotFoundError("Report", Report.format_report_id(row_id))
        return citizen_id

    @staticmethod
    def _load_report(session: Session, row_id: int) -> Report:
        report = session.get(Report, row_id)
        if report is None:
            raise NotFoundError("Report", Report.format_report_id(row_id))
        return report

    @staticmethod
    def _require_user(session: Session, user_id: int, role: UserRole) -> User:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        if user.role != role or not user.is_active:
            raise PermissionDenied(f"User {user_id} is not an active {role.value}")
        return user

    @staticmethod
    def _require_assignee(report: Report, collector_id: int) -> None:
        if report.assigned_to != collector_id:
            raise PermissionDenied(
                f"Report {report.report_id} is not assigned to collector {collector_id}"
            )

    def _notify(self, user_id: int, title: str, message: str, kind: str = "report_status") -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(user_id, title, message, kind=kind)
        except Exception as e:
            logger.error(f"Notification to user {user_id} failed: {e}")
