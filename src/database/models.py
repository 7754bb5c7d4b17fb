"""
SQLAlchemy models for WasteWatch
Reports with their append-only status history, users and the rewards ledger.
"""

from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, FrozenSet

from sqlalchemy import (
    Column, Integer, Float, String, Text, Boolean,
    DateTime, ForeignKey, Index, UniqueConstraint, CheckConstraint,
    Enum as SQLEnum, event
)
from sqlalchemy.orm import declarative_base, relationship

import enum

from src.core.constants import REPORT_ID_PREFIX, REPORT_ID_DIGITS
from src.core.exceptions import InvalidStateTransition

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp; every stored datetime is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum_values(enum_cls) -> List[str]:
    return [member.value for member in enum_cls]


class UserRole(str, enum.Enum):
    """Role supplied by the caller's identity."""
    CITIZEN = "citizen"
    COLLECTOR = "collector"
    ADMIN = "admin"


class ReportStatus(str, enum.Enum):
    """Waste report lifecycle status."""
    SUBMITTED = "submitted"
    VERIFIED = "verified"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"


# The only place report transitions are decided.
REPORT_TRANSITIONS: Dict[ReportStatus, FrozenSet[ReportStatus]] = {
    ReportStatus.SUBMITTED: frozenset({ReportStatus.VERIFIED, ReportStatus.REJECTED}),
    ReportStatus.VERIFIED: frozenset({ReportStatus.ASSIGNED}),
    ReportStatus.ASSIGNED: frozenset({ReportStatus.IN_PROGRESS}),
    ReportStatus.IN_PROGRESS: frozenset({ReportStatus.COMPLETED}),
    ReportStatus.COMPLETED: frozenset(),
    ReportStatus.REJECTED: frozenset(),
}

# Statuses in which a report carries a collector assignment
ASSIGNED_STATUSES = frozenset({
    ReportStatus.ASSIGNED,
    ReportStatus.IN_PROGRESS,
    ReportStatus.COMPLETED,
})


def can_transition(current: ReportStatus, new: ReportStatus) -> bool:
    """Check whether current -> new is an edge of the lifecycle graph."""
    return new in REPORT_TRANSITIONS.get(current, frozenset())


def is_valid_status_path(statuses: List[ReportStatus]) -> bool:
    """Check a status sequence starts at submitted and follows the graph."""
    if not statuses or statuses[0] != ReportStatus.SUBMITTED:
        return False
    return all(can_transition(a, b) for a, b in zip(statuses, statuses[1:]))


class ImageKind(str, enum.Enum):
    """Images attached to a report over its lifecycle."""
    ORIGINAL = "original"
    BEFORE_CLEANUP = "before_cleanup"
    AFTER_CLEANUP = "after_cleanup"


class RedemptionStatus(str, enum.Enum):
    """Coupon redemption status."""
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class User(Base):
    """
    Platform user.

    Citizens hold a points balance; collectors carry completed task counts.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(120), nullable=False, unique=True)
    role = Column(
        SQLEnum(UserRole, name="user_role", native_enum=False, values_callable=_enum_values),
        nullable=False,
        default=UserRole.CITIZEN,
    )
    is_active = Column(Boolean, nullable=False, default=True)

    # Citizen counters; points only change through the ledger
    points = Column(Integer, nullable=False, default=0)
    total_reports = Column(Integer, nullable=False, default=0)
    completed_reports = Column(Integer, nullable=False, default=0)

    # Collector counters
    completed_tasks = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("points >= 0", name="check_user_points_non_negative"),
        Index("idx_user_role_active", role, is_active),
    )

    def __repr__(self):
        return f"<User({self.id}, role={self.role.value}, points={self.points})>"

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "is_active": self.is_active,
            "points": self.points,
            "total_reports": self.total_reports,
            "completed_reports": self.completed_reports,
            "completed_tasks": self.completed_tasks,
        }


class Report(Base):
    """
    Waste report submitted by a citizen.

    Moves through the lifecycle only via transition_to(), which appends to
    the status history.
    """
    __tablename__ = "reports"

    id = Column(Integer, primary_key=True, index=True)
    report_id = Column(String(20), unique=True)

    citizen_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    # Report details
    title = Column(String(100))
    description = Column(Text, nullable=False)
    waste_type = Column(String(30), nullable=False, default="unknown")
    priority = Column(String(10), nullable=False, default="medium")

    # Location
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    address = Column(String(300))
    landmark = Column(String(200))

    # Status tracking
    status = Column(
        SQLEnum(ReportStatus, name="report_status", native_enum=False, values_callable=_enum_values),
        nullable=False,
        default=ReportStatus.SUBMITTED,
    )

    # Admin actions
    verified_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    verified_at = Column(DateTime)
    verification_notes = Column(Text)

    # Assignment and completion
    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=True)
    assigned_at = Column(DateTime)
    completed_at = Column(DateTime)
    completion_notes = Column(Text)
    actual_cleanup_minutes = Column(Integer)

    # Points
    points_awarded = Column(Integer, nullable=False, default=0)
    points_awarded_at = Column(DateTime)

    # Classifier annotation, never used as a gate
    ml_is_waste = Column(Boolean)
    ml_waste_type = Column(String(30))
    ml_confidence = Column(Float)
    ml_processed_at = Column(DateTime)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Optimistic concurrency: every UPDATE checks and bumps this
    version = Column(Integer, nullable=False)

    history = relationship(
        "StatusHistoryEntry",
        back_populates="report",
        order_by="StatusHistoryEntry.sequence",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    images = relationship(
        "ReportImage",
        back_populates="report",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("points_awarded >= 0", name="check_report_points_non_negative"),
        CheckConstraint("latitude >= -90 AND latitude <= 90", name="check_report_latitude"),
        CheckConstraint("longitude >= -180 AND longitude <= 180", name="check_report_longitude"),
        Index("idx_report_citizen_created", citizen_id, created_at),
        Index("idx_report_status_created", status, created_at),
        Index("idx_report_assigned_status", assigned_to, status),
        Index("idx_report_lat_lng", latitude, longitude),
    )

    def __repr__(self):
        return f"<Report({self.report_id}, status={self.status.value}, lat={self.latitude})>"

    @staticmethod
    def format_report_id(row_id: int) -> str:
        return f"{REPORT_ID_PREFIX}{row_id:0{REPORT_ID_DIGITS}d}"

    @property
    def status_path(self) -> List[ReportStatus]:
        return [entry.status for entry in self.history]

    def require_transition(self, new_status: ReportStatus) -> None:
        """Raise InvalidStateTransition unless new_status is reachable."""
        if not can_transition(self.status, new_status):
            raise InvalidStateTransition(
                f"Report {self.report_id} cannot move from "
                f"{self.status.value} to {new_status.value}",
                {"current": self.status.value, "requested": new_status.value},
            )

    def transition_to(
        self,
        new_status: ReportStatus,
        changed_by: Optional[int],
        notes: Optional[str] = None,
        at: Optional[datetime] = None
    ) -> "StatusHistoryEntry":
        """
        Move to new_status and append the change to the history.

        Raises:
            InvalidStateTransition: new_status is not reachable from the
                current status, or it needs a collector and none is set
        """
        self.require_transition(new_status)
        if new_status in ASSIGNED_STATUSES and self.assigned_to is None:
            raise InvalidStateTransition(
                f"Report {self.report_id} needs a collector before {new_status.value}",
                {"current": self.status.value, "requested": new_status.value},
            )
        at = at or utcnow()
        entry = self._append_history(new_status, changed_by, notes, at)
        self.status = new_status
        self.updated_at = at
        return entry

    def record_submission(self, citizen_id: int, at: datetime) -> "StatusHistoryEntry":
        """First history entry, written when the report is created."""
        if self.history:
            raise InvalidStateTransition(f"Report {self.report_id} already has history")
        self.status = ReportStatus.SUBMITTED
        return self._append_history(ReportStatus.SUBMITTED, citizen_id, "Report submitted", at)

    def _append_history(self, status, changed_by, notes, at) -> "StatusHistoryEntry":
        entry = StatusHistoryEntry(
            sequence=len(self.history) + 1,
            status=status,
            changed_by=changed_by,
            changed_at=at,
            notes=notes,
        )
        self.history.append(entry)
        return entry

    def history_time(self, status: ReportStatus) -> Optional[datetime]:
        """Timestamp of the first history entry with the given status."""
        for entry in self.history:
            if entry.status == status:
                return entry.changed_at
        return None

    def image(self, kind: ImageKind) -> Optional["ReportImage"]:
        for image in self.images:
            if image.kind == kind:
                return image
        return None

    def attach_image(
        self,
        kind: ImageKind,
        url: str,
        uploaded_by: Optional[int],
        at: Optional[datetime] = None
    ) -> "ReportImage":
        existing = self.image(kind)
        if existing is not None:
            raise InvalidStateTransition(
                f"Report {self.report_id} already has a {kind.value} image"
            )
        image = ReportImage(kind=kind, url=url, uploaded_by=uploaded_by, uploaded_at=at or utcnow())
        self.images.append(image)
        return image

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        classification = None
        if self.ml_processed_at is not None:
            classification = {
                "is_waste": self.ml_is_waste,
                "waste_type": self.ml_waste_type,
                "confidence": self.ml_confidence,
                "processed_at": self.ml_processed_at.isoformat(),
            }

        return {
            "id": self.id,
            "report_id": self.report_id,
            "citizen_id": self.citizen_id,
            "title": self.title,
            "description": self.description,
            "waste_type": self.waste_type,
            "priority": self.priority,
            "location": {
                "latitude": self.latitude,
                "longitude": self.longitude,
                "address": self.address,
                "landmark": self.landmark,
            },
            "images": {image.kind.value: image.to_dict() for image in self.images},
            "status": self.status.value,
            "assigned_to": self.assigned_to,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "verified_by": self.verified_by,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "verification_notes": self.verification_notes,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "completion_notes": self.completion_notes,
            "actual_cleanup_minutes": self.actual_cleanup_minutes,
            "points_awarded": self.points_awarded,
            "classification": classification,
            "status_history": [entry.to_dict() for entry in self.history],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class StatusHistoryEntry(Base):
    """
    One status change of a report.

    Rows are insert-only; see the before_update listener below.
    """
    __tablename__ = "report_status_history"

    id = Column(Integer, primary_key=True, index=True)
    report_id = Column(Integer, ForeignKey("reports.id"), nullable=False)
    sequence = Column(Integer, nullable=False)
    status = Column(
        SQLEnum(ReportStatus, name="report_status", native_enum=False, values_callable=_enum_values),
        nullable=False,
    )
    changed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    changed_at = Column(DateTime, nullable=False, default=utcnow)
    notes = Column(Text)

    report = relationship("Report", back_populates="history")

    __table_args__ = (
        UniqueConstraint("report_id", "sequence", name="uq_history_report_sequence"),
    )

    def __repr__(self):
        return f"<StatusHistoryEntry(report={self.report_id}, #{self.sequence} {self.status.value})>"

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "changed_by": self.changed_by,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
            "notes": self.notes,
        }


@event.listens_for(StatusHistoryEntry, "before_update")
def _refuse_history_rewrite(mapper, connection, target):
    raise InvalidStateTransition(
        f"Status history entry {target.id} is append-only and cannot be modified"
    )


class ReportImage(Base):
    """Image reference returned by the image store."""
    __tablename__ = "report_images"

    id = Column(Integer, primary_key=True, index=True)
    report_id = Column(Integer, ForeignKey("reports.id"), nullable=False)
    kind = Column(
        SQLEnum(ImageKind, name="image_kind", native_enum=False, values_callable=_enum_values),
        nullable=False,
    )
    url = Column(String(500), nullable=False)
    uploaded_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    uploaded_at = Column(DateTime, nullable=False, default=utcnow)

    report = relationship("Report", back_populates="images")

    __table_args__ = (
        UniqueConstraint("report_id", "kind", name="uq_report_image_kind"),
    )

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "uploaded_by": self.uploaded_by,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
        }


class Reward(Base):
    """
    Catalog item citizens can redeem points for.

    remaining_quantity only decreases through a guarded UPDATE.
    """
    __tablename__ = "rewards"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    reward_type = Column(String(20), nullable=False, default="coupon")
    partner_name = Column(String(100))
    terms = Column(Text)

    points_cost = Column(Integer, nullable=False)
    total_quantity = Column(Integer, nullable=False)
    remaining_quantity = Column(Integer, nullable=False)

    is_active = Column(Boolean, nullable=False, default=True)
    valid_from = Column(DateTime, nullable=False, default=utcnow)
    valid_until = Column(DateTime, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    redemptions = relationship("Redemption", back_populates="reward")

    __table_args__ = (
        CheckConstraint("points_cost >= 1", name="check_reward_points_cost"),
        CheckConstraint("total_quantity >= 1", name="check_reward_total_quantity"),
        CheckConstraint(
            "remaining_quantity >= 0 AND remaining_quantity <= total_quantity",
            name="check_reward_remaining_quantity",
        ),
        Index("idx_reward_active_validity", is_active, valid_from, valid_until),
        Index("idx_reward_points_cost", points_cost),
    )

    def __repr__(self):
        return f"<Reward({self.id}, cost={self.points_cost}, left={self.remaining_quantity})>"

    @property
    def redeemed_count(self) -> int:
        return self.total_quantity - self.remaining_quantity

    def is_available(self, now: Optional[datetime] = None) -> bool:
        """Active, in stock and inside its validity window."""
        now = now or utcnow()
        return (
            bool(self.is_active)
            and self.remaining_quantity > 0
            and self.valid_from <= now <= self.valid_until
        )

    def to_dict(self, now: Optional[datetime] = None) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "reward_type": self.reward_type,
            "partner_name": self.partner_name,
            "terms": self.terms,
            "points_cost": self.points_cost,
            "total_quantity": self.total_quantity,
            "remaining_quantity": self.remaining_quantity,
            "is_active": self.is_active,
            "is_available": self.is_available(now),
            "valid_from": self.valid_from.isoformat() if self.valid_from else None,
            "valid_until": self.valid_until.isoformat() if self.valid_until else None,
        }


class Redemption(Base):
    """
    Points exchanged for a reward, carrying a unique coupon code.

    Only status and used_at change after creation.
    """
    __tablename__ = "redemptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    reward_id = Column(Integer, ForeignKey("rewards.id"), nullable=False)

    points_used = Column(Integer, nullable=False)
    generated_code = Column(String(32), nullable=False, unique=True)

    status = Column(
        SQLEnum(RedemptionStatus, name="redemption_status", native_enum=False, values_callable=_enum_values),
        nullable=False,
        default=RedemptionStatus.ACTIVE,
    )
    used_at = Column(DateTime)
    expires_at = Column(DateTime, nullable=False)

    redeemed_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    reward = relationship("Reward", back_populates="redemptions", lazy="joined")

    __table_args__ = (
        Index("idx_redemption_user_redeemed", user_id, redeemed_at),
        Index("idx_redemption_reward", reward_id),
        Index("idx_redemption_status_expires", status, expires_at),
    )

    def __repr__(self):
        return f"<Redemption({self.id}, code={self.generated_code}, status={self.status.value})>"

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        reward = None
        if self.reward is not None:
            reward = {
                "id": self.reward.id,
                "title": self.reward.title,
                "reward_type": self.reward.reward_type,
                "partner_name": self.reward.partner_name,
                "terms": self.reward.terms,
            }
        return {
            "id": self.id,
            "user_id": self.user_id,
            "reward_id": self.reward_id,
            "points_used": self.points_used,
            "generated_code": self.generated_code,
            "status": self.status.value,
            "used_at": self.used_at.isoformat() if self.used_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "redeemed_at": self.redeemed_at.isoformat() if self.redeemed_at else None,
            "reward": reward,
        }
