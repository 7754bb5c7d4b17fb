"""
Tests for the user directory
"""
import pytest

import sys
sys.path.insert(0, '.')

from src.core.exceptions import NotFoundError, PermissionDenied, ValidationError
from src.database.models import UserRole


class TestCreateUser:
    """Test suite for registration."""

    def test_email_normalized(self, directory):
        user = directory.create_user("  Fay  ", "Fay@Example.COM ")
        assert user.name == "Fay"
        assert user.email == "fay@example.com"
        assert user.role == UserRole.CITIZEN
        assert user.points == 0

    def test_duplicate_email(self, directory, users):
        with pytest.raises(ValidationError, match="already registered"):
            directory.create_user("Other Ana", "ANA@example.com")

    @pytest.mark.parametrize("email", ["", "no-at-sign", "a@b", "two@@example.com", "sp ace@example.com"])
    def test_invalid_email(self, directory, email):
        with pytest.raises(ValidationError):
            directory.create_user("Someone", email)

    def test_unknown_role(self, directory):
        with pytest.raises(ValidationError):
            directory.create_user("Someone", "someone@example.com", role="mayor")

    def test_get_unknown_user(self, directory):
        with pytest.raises(NotFoundError):
            directory.get_user(9999)

    def test_list_by_role(self, directory, users):
        collectors, total = directory.list_users(role=UserRole.COLLECTOR)
        assert total == 2
        assert {u.email for u in collectors} == {"carl@example.com", "dina@example.com"}

    def test_list_search_and_page(self, directory, users):
        found, total = directory.list_users(search="CITIZEN")
        assert total == 2
        assert {u.id for u in found} == {users["citizen"].id, users["citizen2"].id}

        by_email, _ = directory.list_users(search="eve@")
        assert [u.id for u in by_email] == [users["admin"].id]

        page, total = directory.list_users(limit=2, offset=4)
        assert total == 5
        assert len(page) == 1


class TestAccountStatus:
    """Test suite for activating and deactivating accounts."""

    def test_deactivate_and_reactivate(self, directory, users):
        collector = users["collector"].id

        assert directory.set_active(collector, False, users["admin"].id).is_active is False
        assert directory.get_user(collector).is_active is False
        assert directory.set_active(collector, True, users["admin"].id).is_active is True

    def test_cannot_deactivate_self(self, directory, users):
        admin = users["admin"].id
        with pytest.raises(ValidationError):
            directory.set_active(admin, False, admin)
        assert directory.get_user(admin).is_active is True

    def test_unknown_user(self, directory, users):
        with pytest.raises(NotFoundError):
            directory.set_active(9999, False, users["admin"].id)

    def test_deactivated_collector_cannot_be_assigned(self, directory, lifecycle, submit_report, users):
        admin = users["admin"].id
        report = submit_report()
        lifecycle.verify(report.id, admin, approve=True)

        directory.set_active(users["collector"].id, False, admin)

        with pytest.raises(ValidationError):
            lifecycle.assign(report.id, admin, users["collector"].id)
        assert users["collector"].id not in {c["id"] for c in directory.list_available_collectors()}

    def test_deactivated_citizen_cannot_submit(self, directory, submit_report, users):
        directory.set_active(users["citizen"].id, False, users["admin"].id)
        with pytest.raises(PermissionDenied):
            submit_report()


class TestLeaderboard:
    def test_order_and_rank(self, directory, points_ledger, users):
        points_ledger.add_points(users["citizen2"].id, 40)
        points_ledger.add_points(users["citizen"].id, 90)
        late = directory.create_user("Gil", "gil@example.com")
        points_ledger.add_points(late.id, 40)

        board = directory.leaderboard()

        assert [entry["id"] for entry in board] == [users["citizen"].id, users["citizen2"].id, late.id]
        assert [entry["rank"] for entry in board] == [1, 2, 3]
        assert board[0]["points"] == 90

    def test_excludes_staff_and_inactive(self, directory, users):
        directory.create_user("Hal", "hal@example.com", is_active=False)

        ids = {entry["id"] for entry in directory.leaderboard()}
        assert ids == {users["citizen"].id, users["citizen2"].id}

    def test_limit(self, directory, users):
        assert len(directory.leaderboard(limit=1)) == 1
        with pytest.raises(ValidationError):
            directory.leaderboard(limit=0)

    def test_completed_reports_break_ties(self, directory, lifecycle, points_ledger, completed_report, users):
        lifecycle.award_points(completed_report.id, 40, users["admin"].id)
        points_ledger.add_points(users["citizen2"].id, 40)

        board = directory.leaderboard()
        assert board[0]["id"] == users["citizen"].id
        assert board[0]["completed_reports"] == 1


class TestAvailableCollectors:
    def test_least_busy_first(self, directory, lifecycle, submit_report, users):
        admin = users["admin"].id
        for _ in range(2):
            report = submit_report()
            lifecycle.verify(report.id, admin, approve=True)
            lifecycle.assign(report.id, admin, users["collector"].id)

        collectors = directory.list_available_collectors()

        assert [c["id"] for c in collectors] == [users["collector2"].id, users["collector"].id]
        assert collectors[0]["current_tasks"] == 0
        assert collectors[1]["current_tasks"] == 2

    def test_completed_tasks_leave_workload(self, directory, completed_report, users):
        collectors = {c["id"]: c for c in directory.list_available_collectors()}
        carl = collectors[users["collector"].id]

        assert carl["current_tasks"] == 0
        assert carl["completed_tasks"] == 1
