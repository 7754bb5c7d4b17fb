"""
WasteWatch - API service wiring
Builds the lifecycle manager, ledgers and collaborators the routes use.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from src.accounts.users import UserDirectory
from src.alerts.notifier import EmailChannel, LogChannel, NotificationDispatcher
from src.core.config import settings
from src.core.exceptions import NotFoundError
from src.crowdsource.image_store import LocalImageStore
from src.crowdsource.lifecycle import ReportLifecycleManager
from src.crowdsource.waste_classifier import MockWasteClassifier
from src.database.connection import DatabaseConnection, init_db
from src.ingestion.geocoder import NominatimGeocoder
from src.ledger.points import PointsLedger
from src.ledger.rewards import RewardsLedger

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a request handler needs."""
    db: DatabaseConnection
    users: UserDirectory
    points: PointsLedger
    rewards: RewardsLedger
    reports: ReportLifecycleManager
    image_store: Any
    classifier: Any
    notifier: NotificationDispatcher


def build_services(
    db: DatabaseConnection,
    image_store: Optional[Any] = None,
    classifier: Optional[Any] = None,
    notifier: Optional[NotificationDispatcher] = None,
    geocoder: Optional[Any] = None
) -> Services:
    """
    Wire services around a database.

    Collaborators not passed in are built from settings.
    """
    users = UserDirectory(db)

    if notifier is None:
        notifier = NotificationDispatcher([LogChannel()])
        if settings.email_notifications_enabled:
            notifier.add_channel(EmailChannel(resolve_email=_email_resolver(users)))

    if geocoder is None and settings.geocoding_enabled:
        geocoder = NominatimGeocoder()

    points = PointsLedger(db)
    return Services(
        db=db,
        users=users,
        points=points,
        rewards=RewardsLedger(db, points),
        reports=ReportLifecycleManager(db, points, notifier=notifier, geocoder=geocoder),
        image_store=image_store or LocalImageStore(),
        classifier=classifier or MockWasteClassifier(),
        notifier=notifier,
    )


def _email_resolver(users: UserDirectory):
    def resolve(user_id: int) -> Optional[str]:
        try:
            return users.get_user(user_id).email
        except NotFoundError:
            return None
    return resolve


_services: Optional[Services] = None


def get_services() -> Services:
    """FastAPI dependency; tests override it with their own Services."""
    global _services
    if _services is None:
        _services = build_services(init_db())
        logger.info("API services initialized")
    return _services
