# =============================================================================
# tests/test_ledger.py - Hour Ledger Tests
# =============================================================================
# Settling purchased hours against flown hours, per user and per client.
#
# Run with: pytest tests/test_ledger.py -v
# =============================================================================

import datetime
from unittest.mock import patch

import pytest

from app.exceptions import PermissionDeniedError, UserNotFoundError
from core.models.ledger import LedgerEventType, LedgerRole, PackageStatus, PackageUsage
from core.services.ledger_service import (
    LedgerService,
    allocate_packages,
    build_ledger,
    build_packages,
    compute_client_hours,
    usage_statistics,
)

from tests.conftest import INSTRUCTOR_ID, PILOT_ID

USER = str(PILOT_ID)
OTHER = "99999999-9999-9999-9999-999999999999"


def _invoice(issue_date="2024-01-01", hours=10, status="paid", user_id=USER, email="pilot@example.com"):
    return {
        "id": f"inv-{issue_date}",
        "smartbill_id": f"FS-{issue_date}",
        "issue_date": issue_date,
        "status": status,
        "currency": "RON",
        "invoice_clients": [{"name": "Ion Popescu", "email": email, "user_id": user_id}],
        "invoice_items": [
            {"name": "Ore zbor", "quantity": hours, "unit": "HUR", "total_amount": hours * 900},
            {"name": "Taxa aeroport", "quantity": 1, "unit": "BUC", "total_amount": 50},
        ],
    }


def _flight(flight_id, date, hours, pilot=USER, payer=None, instructor=None, flight_type="SCHOOL"):
    return {
        "id": flight_id,
        "pilotId": pilot,
        "payer_id": payer,
        "instructorId": instructor,
        "totalHours": hours,
        "date": date,
        "flightType": flight_type,
    }


@pytest.fixture
def flights():
    return [
        _flight("f1-aaaaaaaa-bbbb", "2024-01-05", 1.5),
        _flight("f2-aaaaaaaa-bbbb", "2024-01-06", 1.0, payer=OTHER),
        _flight("f3-aaaaaaaa-bbbb", "2024-01-07", 2.0, pilot=OTHER, payer=USER),
        _flight("f4-aaaaaaaa-bbbb", "2024-01-08", 0.5, flight_type="FERRY"),
        _flight("f5-aaaaaaaa-bbbb", "2024-01-09", 1.2, pilot=OTHER, instructor=USER),
    ]


# =============================================================================
# Ledger Tests
# =============================================================================

class TestBuildLedger:
    """Tests for the per-user ledger."""

    def test_balance_and_deductions(self, flights):
        """Only flights the user pays for (and that aren't FERRY/DEMO) deduct."""
        # Act
        ledger = build_ledger(USER, [_invoice()], flights)

        # Assert
        deducted = {e.flight_id: e.hours_deducted for e in ledger.entries if e.flight_id}
        assert deducted == {
            "f1-aaaaaaaa-bbbb": 1.5,
            "f2-aaaaaaaa-bbbb": 0.0,  # someone else pays
            "f3-aaaaaaaa-bbbb": 2.0,  # user pays for another pilot
            "f4-aaaaaaaa-bbbb": 0.0,  # ferry
            "f5-aaaaaaaa-bbbb": 0.0,  # instructing
        }
        assert ledger.summary.total_hours_added == 10
        assert ledger.summary.total_hours_deducted == 3.5
        assert ledger.summary.final_balance == 6.5
        assert ledger.entries[-1].balance == 6.5

    def test_roles(self, flights):
        ledger = build_ledger(USER, [], flights)

        roles = {e.flight_id: e.role for e in ledger.entries}
        assert roles["f1-aaaaaaaa-bbbb"] == LedgerRole.PILOT
        assert roles["f3-aaaaaaaa-bbbb"] == LedgerRole.PAYER
        assert roles["f5-aaaaaaaa-bbbb"] == LedgerRole.INSTRUCTOR

    def test_only_hour_lines_count(self):
        ledger = build_ledger(USER, [_invoice(hours=4)], [])

        assert len(ledger.entries) == 1
        assert ledger.entries[0].hours_added == 4
        assert ledger.entries[0].reference == "FS-2024-01-01"

    def test_unsettled_and_foreign_invoices_ignored(self):
        invoices = [_invoice(status="pending"), _invoice(user_id=OTHER)]

        ledger = build_ledger(USER, invoices, [])

        assert ledger.entries == []
        assert ledger.summary.final_balance == 0

    def test_invoice_before_flight_on_same_date(self):
        """Same-date entries keep invoices ahead of flights."""
        flights = [_flight("f-same-date-xxxx", "2024-02-01", 1.0)]

        ledger = build_ledger(USER, [_invoice(issue_date="2024-02-01", hours=2)], flights)

        assert [e.event_type for e in ledger.entries] == [
            LedgerEventType.INVOICE,
            LedgerEventType.FLIGHT,
        ]
        assert [e.balance for e in ledger.entries] == [2.0, 1.0]

    def test_flight_reference_uses_id_prefix(self, flights):
        ledger = build_ledger(USER, [], flights[:1])

        assert ledger.entries[0].reference == "F-f1-aaaaa"

    def test_hours_by_type(self, flights):
        ledger = build_ledger(USER, [], flights)

        by_type = ledger.summary.hours_by_type
        assert by_type["school"].hours == 4.5
        assert by_type["school"].count == 3
        assert by_type["ferry"].hours == 0.5
        assert "demo" not in by_type


# =============================================================================
# Client Hours Tests
# =============================================================================

class TestComputeClientHours:
    """Tests for purchased vs. flown hours per client."""

    @pytest.fixture
    def users(self):
        return [
            {"id": USER, "email": "pilot@example.com", "firstName": "Ion", "lastName": "Popescu"},
            {"id": OTHER, "email": "other@example.com", "firstName": "Ana", "lastName": "Ionescu"},
        ]

    def test_purchased_and_flown(self, flights, users):
        """Clients are matched by email case-insensitively; ferry flights don't count."""
        # Arrange
        invoices = [_invoice(email="Pilot@Example.com"), _invoice("2024-02-01", hours=5)]

        # Act
        result = compute_client_hours(invoices, flights, users)

        # Assert
        assert len(result) == 1
        client = result[0]
        assert client.email == "pilot@example.com"
        assert client.name == "Ion Popescu"
        assert client.purchased_hours == 15
        assert client.invoice_count == 2
        # f1 (1.5) and f2 (1.0) as pilot; f4 is a ferry
        assert client.flown_hours == 2.5
        assert client.flight_count == 3
        assert client.remaining_hours == 12.5

    def test_allowed_emails_filter(self, users):
        invoices = [_invoice(), _invoice(user_id=OTHER, email="other@example.com")]

        result = compute_client_hours(invoices, [], users, allowed_emails={"other@example.com"})

        assert [c.email for c in result] == ["other@example.com"]

    def test_sorted_by_remaining(self, users):
        invoices = [_invoice(hours=10), _invoice(user_id=OTHER, email="other@example.com", hours=2)]

        result = compute_client_hours(invoices, [], users)

        assert [c.remaining_hours for c in result] == [2, 10]


# =============================================================================
# Visibility Tests
# =============================================================================

class TestClientHoursVisibility:
    """Tests for who may see which clients."""

    def test_manager_sees_everyone(self, manager):
        assert LedgerService._allowed_emails(manager) is None

    def test_pilot_sees_self(self, pilot):
        assert LedgerService._allowed_emails(pilot) == {"pilot@example.com"}

    def test_prospect_denied(self, prospect):
        with pytest.raises(PermissionDeniedError):
            LedgerService._allowed_emails(prospect)

    def test_instructor_sees_their_pilots(self, instructor):
        with patch("core.services.ledger_service.SupabaseClient") as mock_supabase:
            mock_supabase.fetch_all.return_value = [{"pilotId": USER}, {"pilotId": USER}]
            users_query = mock_supabase.get_client.return_value.table.return_value
            users_query.select.return_value.in_.return_value.execute.return_value.data = [
                {"email": "Pilot@Example.com"}
            ]

            allowed = LedgerService._allowed_emails(instructor)

        mock_supabase.fetch_all.assert_called_once_with(
            "flight_logs", columns="pilotId", filters={"instructorId": str(INSTRUCTOR_ID)}
        )
        assert allowed == {"pilot@example.com"}


# =============================================================================
# Package Usage Tests
# =============================================================================

TODAY = datetime.date(2024, 6, 1)


def _package(total_hours=10, expiry_date=None):
    return PackageUsage(
        id="inv-1-1",
        invoice_id="FS-1",
        total_hours=total_hours,
        purchase_date="2024-01-01",
        expiry_date=expiry_date,
        currency="RON",
    )


class TestBuildPackages:
    """Tests for turning invoices into hour packages."""

    def test_one_package_per_hour_line_oldest_first(self):
        invoices = [_invoice("2024-02-01", hours=5), _invoice("2024-01-01", hours=10)]

        packages = build_packages(USER, invoices)

        assert [p.total_hours for p in packages] == [10, 5]
        assert packages[0].invoice_id == "FS-2024-01-01"
        assert packages[0].price == 9000
        assert packages[0].purchase_date == "2024-01-01"

    def test_unsettled_and_foreign_invoices_skipped(self):
        invoices = [_invoice(status="issued"), _invoice("2024-02-01", user_id=OTHER)]

        assert build_packages(USER, invoices) == []

    def test_invoice_number_fallback(self):
        invoice = _invoice()
        invoice["smartbill_id"] = None

        assert build_packages(USER, [invoice])[0].invoice_id == "INV-inv-2024-01-01"


class TestAllocatePackages:
    """Tests for charging flights to packages."""

    @pytest.fixture
    def packages(self):
        return build_packages(USER, [_invoice("2024-01-01", hours=10), _invoice("2024-02-01", hours=5)])

    def test_oldest_package_first_with_overdraw(self, packages):
        """Flights fill packages in order; the excess lands on the newest one."""
        # Arrange
        flights = [
            _flight("f5", "2024-02-05", 5),
            _flight("f1", "2024-01-05", 8),
            _flight("f2", "2024-01-10", 4, pilot=OTHER, payer=USER),
        ]

        # Act
        first, second = allocate_packages(USER, packages, flights, today=TODAY)

        # Assert: f2 is split 2h/2h, f5 gets the last 3h plus 2h overdraw
        assert (first.used_hours, first.chartered_hours, first.remaining_hours) == (8, 2, 0)
        assert first.status == PackageStatus.LOW_HOURS
        assert (second.used_hours, second.chartered_hours, second.remaining_hours) == (5, 2, -2)
        assert second.status == PackageStatus.OVERDRAWN
        assert [a.hours for a in second.allocated_flights] == [3, 2]
        assert second.allocated_chartered_flights[0].role == LedgerRole.PAYER
        assert second.allocated_chartered_flights[0].total_flight_hours == 4

    def test_only_deducting_flights_charged(self, packages):
        """Ferry flights and flights someone else paid for leave packages alone."""
        flights = [
            _flight("f1", "2024-01-05", 1.0, flight_type="FERRY"),
            _flight("f2", "2024-01-06", 2.0, payer=OTHER),
            _flight("f3", "2024-01-07", 1.5, pilot=OTHER, instructor=USER),
        ]

        first, second = allocate_packages(USER, packages, flights, today=TODAY)

        assert first.used_hours == 0
        assert first.remaining_hours == 10
        assert first.status == PackageStatus.IN_PROGRESS
        assert second.allocated_flights == []

    def test_expired_package(self):
        package = _package(expiry_date="2024-05-31")

        allocate_packages(USER, [package], [], today=TODAY)

        assert package.status == PackageStatus.EXPIRED

    def test_expiry_checked_before_overdraw(self):
        package = _package(total_hours=1, expiry_date="2024-05-31")

        allocate_packages(USER, [package], [_flight("f1", "2024-01-05", 3)], today=TODAY)

        assert package.remaining_hours == -2
        assert package.status == PackageStatus.EXPIRED

    def test_no_packages(self):
        assert allocate_packages(USER, [], [_flight("f1", "2024-01-05", 3)], today=TODAY) == []


def test_usage_statistics(flights):
    stats = usage_statistics(USER, flights)

    assert (stats.regular.hours, stats.regular.count) == (2.5, 2)
    assert (stats.chartered.hours, stats.chartered.count) == (2.0, 1)
    assert (stats.ferry.hours, stats.ferry.count) == (0.5, 1)
    assert stats.demo.count == 0
    assert stats.pilot_charter.count == 0


class TestGetPackageUsage:
    """Tests for loading a user's package report."""

    USER_ROW = {"id": USER, "email": "pilot@example.com", "firstName": "Ion", "lastName": "Popescu"}

    def test_unknown_user(self):
        with patch("core.services.ledger_service.SupabaseClient") as mock_supabase:
            mock_supabase.fetch_one.return_value = None

            with pytest.raises(UserNotFoundError):
                LedgerService.get_package_usage(PILOT_ID)

    def test_no_packages(self):
        """Without purchased hours the flights aren't loaded."""
        with patch("core.services.ledger_service.SupabaseClient") as mock_supabase:
            mock_supabase.fetch_one.return_value = self.USER_ROW
            mock_supabase.paginate.return_value = []

            report = LedgerService.get_package_usage(PILOT_ID)

        assert report.packages == []
        assert report.total_purchased_hours == 0
        assert mock_supabase.paginate.call_count == 1

    def test_totals(self, flights):
        # Arrange
        with patch("core.services.ledger_service.SupabaseClient") as mock_supabase:
            mock_supabase.fetch_one.return_value = self.USER_ROW
            mock_supabase.paginate.side_effect = [[_invoice(hours=10)], flights]

            # Act
            report = LedgerService.get_package_usage(PILOT_ID)

        # Assert: f1 1.5h flown, f3 2.0h chartered
        assert report.user["email"] == "pilot@example.com"
        assert report.total_purchased_hours == 10
        assert report.total_used_hours == 1.5
        assert report.total_chartered_hours == 2.0
        assert report.remaining_hours == 6.5
        assert report.flight_count == 5
        assert report.statistics.ferry.count == 1
