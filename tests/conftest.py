"""
Pytest configuration and fixtures
"""
import pytest
import sys
from datetime import datetime, timedelta
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.accounts.users import UserDirectory
from src.alerts.notifier import InMemoryChannel, NotificationDispatcher
from src.core.locks import KeyedLocks
from src.crowdsource.lifecycle import ReportLifecycleManager
from src.database.connection import DatabaseConnection
from src.database.models import UserRole
from src.ledger.points import PointsLedger
from src.ledger.rewards import RewardsLedger


class FakeClock:
    """Settable naive UTC clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


NYC = (40.7128, -74.0060)
CHICAGO = (41.8781, -87.6298)


@pytest.fixture
def db(tmp_path):
    """Fresh SQLite database file per test."""
    database = DatabaseConnection(database_url=f"sqlite:///{tmp_path / 'wastewatch_test.db'}")
    database.create_tables()
    yield database
    database.close()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 15, 9, 0, 0))


@pytest.fixture
def locks():
    return KeyedLocks()


@pytest.fixture
def inbox():
    return InMemoryChannel()


@pytest.fixture
def notifier(inbox):
    return NotificationDispatcher([inbox])


@pytest.fixture
def directory(db):
    return UserDirectory(db)


@pytest.fixture
def points_ledger(db, locks):
    return PointsLedger(db, locks=locks)


@pytest.fixture
def rewards_ledger(db, points_ledger, clock, locks):
    return RewardsLedger(db, points_ledger, clock=clock, locks=locks)


@pytest.fixture
def lifecycle(db, points_ledger, notifier, clock, locks):
    return ReportLifecycleManager(db, points_ledger, notifier=notifier, clock=clock, locks=locks)


@pytest.fixture
def users(directory):
    """One user per role plus a second citizen and collector."""
    return {
        "citizen": directory.create_user("Ana Citizen", "ana@example.com", UserRole.CITIZEN),
        "citizen2": directory.create_user("Ben Citizen", "ben@example.com", UserRole.CITIZEN),
        "collector": directory.create_user("Carl Collector", "carl@example.com", UserRole.COLLECTOR),
        "collector2": directory.create_user("Dina Collector", "dina@example.com", UserRole.COLLECTOR),
        "admin": directory.create_user("Eve Admin", "eve@example.com", UserRole.ADMIN),
    }


@pytest.fixture
def make_reward(rewards_ledger, clock):
    """Factory for rewards valid for 30 days from the fake clock."""
    def factory(points_cost=100, total_quantity=5, **kwargs):
        kwargs.setdefault("valid_until", clock() + timedelta(days=30))
        return rewards_ledger.create_reward(
            title=kwargs.pop("title", "Cafe voucher"),
            description=kwargs.pop("description", "One free coffee"),
            points_cost=points_cost,
            total_quantity=total_quantity,
            **kwargs
        )
    return factory


@pytest.fixture
def submit_report(lifecycle, users):
    """Factory submitting a report for the first citizen."""
    def factory(latitude=NYC[0], longitude=NYC[1], **kwargs):
        return lifecycle.submit(
            citizen_id=kwargs.pop("citizen_id", users["citizen"].id),
            description=kwargs.pop("description", "Plastic bags dumped by the river"),
            latitude=latitude,
            longitude=longitude,
            image_url=kwargs.pop("image_url", "memory://original.jpg"),
            **kwargs
        )
    return factory


@pytest.fixture
def completed_report(lifecycle, submit_report, users, clock):
    """Report walked through to completed, 45 minutes of cleanup."""
    admin = users["admin"].id
    collector = users["collector"].id

    report = submit_report(waste_type="plastic")
    lifecycle.verify(report.id, admin, approve=True)
    lifecycle.assign(report.id, admin, collector)
    lifecycle.start(report.id, collector, before_image_url="memory://before.jpg")
    clock.advance(minutes=45)
    return lifecycle.complete(report.id, collector, "memory://after.jpg", "Cleared 3 bags")
