"""
Tests for concurrent redemption, awarding and deduction
"""
import threading
import time

import pytest

import sys
sys.path.insert(0, '.')

from src.core.exceptions import (
    AlreadyAwardedError,
    InsufficientPointsError,
    InvalidStateTransition,
    RewardUnavailableError,
)
from src.core.locks import KeyedLocks
from src.crowdsource.lifecycle import ReportLifecycleManager
from src.database.models import ReportStatus, UserRole
from src.ledger.points import PointsLedger
from src.ledger.rewards import RewardsLedger


def run_concurrently(targets):
    """Start all callables at once; return (results, errors) in call order."""
    barrier = threading.Barrier(len(targets))
    results = [None] * len(targets)
    errors = [None] * len(targets)

    def worker(index, target):
        barrier.wait()
        try:
            results[index] = target()
        except Exception as exc:
            errors[index] = exc

    threads = [threading.Thread(target=worker, args=(i, t)) for i, t in enumerate(targets)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return results, errors


@pytest.fixture
def crowd(directory, points_ledger):
    """Ten citizens holding 100 points each."""
    citizens = []
    for i in range(10):
        user = directory.create_user(f"Citizen {i}", f"citizen{i}@example.com", UserRole.CITIZEN)
        points_ledger.add_points(user.id, 100)
        citizens.append(user.id)
    return citizens


class TestConcurrentRedeem:
    """Last unit of stock goes to exactly one caller."""

    def test_single_unit_shared_locks(self, rewards_ledger, points_ledger, make_reward, crowd):
        reward = make_reward(points_cost=100, total_quantity=1)

        results, errors = run_concurrently(
            [lambda uid=uid: rewards_ledger.redeem(uid, reward.id) for uid in crowd]
        )

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert all(isinstance(e, RewardUnavailableError) for e in errors if e is not None)
        assert sum(e is not None for e in errors) == 9
        assert rewards_ledger.get_reward(reward.id).remaining_quantity == 0
        assert rewards_ledger.count_redemptions(reward.id) == 1

        balances = sorted(points_ledger.get_balance(uid) for uid in crowd)
        assert balances == [0] + [100] * 9

    def test_single_unit_without_shared_locks(self, db, make_reward, crowd, clock):
        """Each caller has its own lock registry, leaving the database guard alone."""
        reward = make_reward(points_cost=100, total_quantity=1)

        def attempt(uid):
            locks = KeyedLocks()
            ledger = RewardsLedger(db, PointsLedger(db, locks=locks), clock=clock, locks=locks)
            return ledger.redeem(uid, reward.id)

        results, errors = run_concurrently([lambda uid=uid: attempt(uid) for uid in crowd])

        assert sum(r is not None for r in results) == 1
        assert all(isinstance(e, RewardUnavailableError) for e in errors if e is not None)

        checker = RewardsLedger(db, PointsLedger(db), clock=clock)
        stored = checker.get_reward(reward.id)
        assert stored.remaining_quantity == 0
        assert checker.count_redemptions(reward.id) == stored.total_quantity - stored.remaining_quantity


class TestConcurrentAward:
    def test_award_once(self, lifecycle, points_ledger, completed_report, users):
        admin = users["admin"].id

        results, errors = run_concurrently(
            [lambda: lifecycle.award_points(completed_report.id, 50, admin) for _ in range(5)]
        )

        assert sum(r is not None for r in results) == 1
        assert sum(isinstance(e, AlreadyAwardedError) for e in errors) == 4
        assert points_ledger.get_balance(users["citizen"].id) == 50


class TestConcurrentDeduct:
    def test_balance_never_negative(self, points_ledger, users):
        citizen = users["citizen"].id
        points_ledger.add_points(citizen, 100)

        results, errors = run_concurrently(
            [lambda: points_ledger.deduct_points(citizen, 15) for _ in range(10)]
        )

        assert sum(r is not None for r in results) == 6
        assert sum(isinstance(e, InsufficientPointsError) for e in errors) == 4
        assert points_ledger.get_balance(citizen) == 10


class TestAwardAgainstDeduct:
    """Award and a balance change for the same citizen must not wait on each other forever."""

    def test_award_and_deduct_same_citizen(self, lifecycle, points_ledger, completed_report, users, monkeypatch):
        citizen = users["citizen"].id
        points_ledger.add_points(citizen, 20)

        loaded = threading.Event()
        original_load = ReportLifecycleManager._load_report

        def slow_load(session, row_id):
            report = original_load(session, row_id)
            loaded.set()
            time.sleep(0.5)
            return report

        monkeypatch.setattr(ReportLifecycleManager, "_load_report", staticmethod(slow_load))

        def deduct_during_award():
            assert loaded.wait(timeout=10)
            return points_ledger.deduct_points(citizen, 10)

        started = time.monotonic()
        results, errors = run_concurrently([
            lambda: lifecycle.award_points(completed_report.id, 50, users["admin"].id),
            deduct_during_award,
        ])
        elapsed = time.monotonic() - started

        assert errors == [None, None]
        assert elapsed < 10
        assert points_ledger.get_balance(citizen) == 60


class TestConcurrentTransition:
    """Only one of several racing transitions on a report wins."""

    def test_verify_once(self, lifecycle, submit_report, users):
        report = submit_report()
        admin = users["admin"].id

        results, errors = run_concurrently(
            [lambda: lifecycle.verify(report.id, admin, approve=True) for _ in range(5)]
        )

        assert sum(r is not None for r in results) == 1
        assert sum(isinstance(e, InvalidStateTransition) for e in errors) == 4
        assert lifecycle.get_report(report.id).status_path == [ReportStatus.SUBMITTED, ReportStatus.VERIFIED]

    def test_verify_once_without_shared_locks(self, db, points_ledger, clock, submit_report, users):
        """Separate lock registries leave the version column and the database lock in charge."""
        report = submit_report()
        admin = users["admin"].id

        def attempt():
            manager = ReportLifecycleManager(db, points_ledger, clock=clock, locks=KeyedLocks())
            return manager.verify(report.id, admin, approve=True)

        results, errors = run_concurrently([attempt for _ in range(5)])

        assert sum(r is not None for r in results) == 1
        assert sum(isinstance(e, InvalidStateTransition) for e in errors) == 4
