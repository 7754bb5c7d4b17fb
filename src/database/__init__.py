"""
Database module for WasteWatch
SQLAlchemy persistence for reports, users and the rewards ledger
"""

from .connection import DatabaseConnection, get_db, init_db
from .models import (
    Base,
    User,
    UserRole,
    Report,
    ReportStatus,
    ReportImage,
    ImageKind,
    StatusHistoryEntry,
    Reward,
    Redemption,
    RedemptionStatus,
    REPORT_TRANSITIONS,
    can_transition,
    is_valid_status_path,
    utcnow,
)

__all__ = [
    "DatabaseConnection",
    "get_db",
    "init_db",
    "Base",
    "User",
    "UserRole",
    "Report",
    "ReportStatus",
    "ReportImage",
    "ImageKind",
    "StatusHistoryEntry",
    "Reward",
    "Redemption",
    "RedemptionStatus",
    "REPORT_TRANSITIONS",
    "can_transition",
    "is_valid_status_path",
    "utcnow",
]
