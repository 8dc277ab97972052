# =============================================================================
# tests/test_hour_packages.py - Hour Package and Proforma Tests
# =============================================================================
# VAT split, package pricing, proforma numbering and the order flow.
#
# Run with: pytest tests/test_hour_packages.py -v
# =============================================================================

import datetime
from unittest.mock import MagicMock, patch

import pytest
from postgrest.exceptions import APIError

from app.config import settings
from app.exceptions import HourPackageNotFoundError, UserNotFoundError
from core.services.hour_package_service import (
    PROFORMA_NUMBER_ATTEMPTS,
    HourPackageService,
    calculate_vat,
    next_document_number,
    package_price,
)
from lib.supabase_client import SupabaseClientError

from tests.conftest import PILOT_ID


# =============================================================================
# Pure Function Tests
# =============================================================================

class TestCalculateVat:
    """Tests for splitting prices into net and VAT."""

    def test_price_includes_vat(self):
        vat = calculate_vat(121, 21)

        assert vat.subtotal == 100
        assert vat.vat_amount == 21
        assert vat.total == 121

    def test_price_excludes_vat(self):
        vat = calculate_vat(100, 21, prices_include_vat=False)

        assert vat.subtotal == 100
        assert vat.total == 121

    def test_parts_add_up_after_rounding(self):
        """subtotal + vat always equals the total."""
        vat = calculate_vat(4975.0, 19)

        assert vat.subtotal == 4180.67
        assert round(vat.subtotal + vat.vat_amount, 2) == vat.total

    def test_zero_rate(self):
        vat = calculate_vat(250, 0)

        assert vat.vat_amount == 0
        assert vat.subtotal == vat.total == 250


class TestPackagePrice:
    """Tests for template pricing."""

    def test_total_price_wins(self):
        assert package_price({"total_price": 950, "hours": 10, "price_per_hour": 100}) == 950

    def test_falls_back_to_hours_times_rate(self):
        assert package_price({"total_price": None, "hours": 5, "price_per_hour": 120.5}) == 602.5


class TestNextDocumentNumber:
    """Tests for proforma numbering."""

    def test_first_number(self):
        assert next_document_number([]) == "0001"

    def test_max_plus_one(self):
        assert next_document_number(["0007", "0012", "0003"]) == "0013"

    def test_ignores_non_numeric(self):
        assert next_document_number(["0004", None, "A12", " 9 "]) == "0010"

    def test_grows_past_padding(self):
        assert next_document_number(["9999"]) == "10000"


# =============================================================================
# Order Tests (Mocked Database)
# =============================================================================

class TestOrderPackage:
    """Tests for ordering a package as a pending proforma."""

    @pytest.fixture
    def template(self):
        return {
            "id": "pkg-1",
            "name": "10h Cessna 152",
            "hours": 10,
            "price_per_hour": 100,
            "total_price": None,
            "currency": "EUR",
            "is_active": True,
        }

    @pytest.fixture
    def mocks(self, template):
        with patch("core.services.hour_package_service.SupabaseClient") as mock_supabase, \
                patch("core.services.hour_package_service.exchange_rates") as mock_rates, \
                patch("core.services.hour_package_service.InvoiceService") as mock_invoices, \
                patch("core.services.hour_package_service.ActivityLogger") as mock_activity:
            mock_supabase.fetch_one.return_value = template
            mock_supabase.fetch_user.return_value = {
                "id": str(PILOT_ID),
                "email": "pilot@example.com",
                "firstName": "Ion",
                "lastName": "Popescu",
            }
            mock_supabase.fetch_all.return_value = [{"number": "0007"}, {"number": "0002"}]
            table = mock_supabase.get_client.return_value.table.return_value
            table.insert.return_value.execute.return_value.data = [{"id": "inv-new"}]
            mock_rates.convert.return_value = 5000.0
            yield mock_supabase, mock_rates, mock_invoices, mock_activity

    def test_creates_pending_proforma(self, mocks):
        """Price is converted, VAT split and the next series number used."""
        # Arrange
        mock_supabase, mock_rates, mock_invoices, mock_activity = mocks
        table = mock_supabase.get_client.return_value.table.return_value

        # Act
        result = HourPackageService.order_package("pkg-1", PILOT_ID)

        # Assert
        mock_rates.convert.assert_called_once_with(1000.0, "EUR", settings.INVOICE_CURRENCY)
        invoice_row = table.insert.call_args_list[0].args[0]
        expected = calculate_vat(5000.0, settings.VAT_PERCENTAGE, settings.PRICES_INCLUDE_VAT)
        assert invoice_row["series"] == settings.PROFORMA_SERIES
        assert invoice_row["number"] == "0008"
        assert invoice_row["total_amount"] == expected.total
        assert invoice_row["vat_amount"] == expected.vat_amount
        assert invoice_row["status"] == "pending"
        assert invoice_row["payment_status"] == "pending"
        assert invoice_row["user_id"] == str(PILOT_ID)
        issue = datetime.date.fromisoformat(invoice_row["issue_date"])
        due = datetime.date.fromisoformat(invoice_row["due_date"])
        assert (due - issue).days == settings.PROFORMA_DUE_DAYS

        assert result is mock_invoices.get_invoice_by_id.return_value
        mock_invoices.get_invoice_by_id.assert_called_once_with("inv-new")
        mock_activity.package_ordered.assert_called_once()

    def test_client_row_uses_buyer_name(self, mocks):
        mock_supabase, _, _, _ = mocks
        table = mock_supabase.get_client.return_value.table.return_value

        HourPackageService.order_package("pkg-1", PILOT_ID)

        client_row = table.insert.call_args_list[1].args[0]
        assert client_row["invoice_id"] == "inv-new"
        assert client_row["name"] == "Ion Popescu"
        assert client_row["user_id"] == str(PILOT_ID)

    def test_inactive_template_rejected(self, mocks, template):
        template["is_active"] = False

        with pytest.raises(HourPackageNotFoundError):
            HourPackageService.order_package("pkg-1", PILOT_ID)

    def test_unknown_buyer(self, mocks):
        mock_supabase, _, _, _ = mocks
        mock_supabase.fetch_user.return_value = None

        with pytest.raises(UserNotFoundError):
            HourPackageService.order_package("pkg-1", PILOT_ID)


def _taken(number: str) -> APIError:
    return APIError({
        "message": 'duplicate key value violates unique constraint "invoices_series_number_key"',
        "code": "23505",
        "details": f"Key (series, number)=(PRO, {number}) already exists.",
        "hint": None,
    })


class TestProformaNumberConflicts:
    """Tests for two orders racing for the same number."""

    @pytest.fixture
    def mocks(self):
        with patch("core.services.hour_package_service.SupabaseClient") as mock_supabase, \
                patch("core.services.hour_package_service.exchange_rates") as mock_rates, \
                patch("core.services.hour_package_service.InvoiceService"), \
                patch("core.services.hour_package_service.ActivityLogger"):
            mock_supabase.fetch_one.return_value = {
                "id": "pkg-1", "name": "10h", "hours": 10, "price_per_hour": 100, "is_active": True,
            }
            mock_supabase.fetch_user.return_value = {"id": str(PILOT_ID), "email": "pilot@example.com"}
            mock_rates.convert.return_value = 5000.0
            yield mock_supabase

    def test_taken_number_reread_and_retried(self, mocks):
        """The loser of the race re-reads the series and takes the next number."""
        # Arrange: another order claims 0008 between our read and our insert
        mocks.fetch_all.side_effect = [
            [{"number": "0007"}],
            [{"number": "0007"}, {"number": "0008"}],
        ]
        table = mocks.get_client.return_value.table.return_value
        table.insert.return_value.execute.side_effect = [
            _taken("0008"),
            MagicMock(data=[{"id": "inv-new"}]),
            MagicMock(data=[{"id": 1}]),
        ]

        # Act
        HourPackageService.order_package("pkg-1", PILOT_ID)

        # Assert
        numbers = [c.args[0].get("number") for c in table.insert.call_args_list[:2]]
        assert numbers == ["0008", "0009"]
        assert table.insert.call_args_list[2].args[0]["invoice_id"] == "inv-new"

    def test_other_database_errors_propagate(self, mocks):
        mocks.fetch_all.return_value = []
        table = mocks.get_client.return_value.table.return_value
        table.insert.return_value.execute.side_effect = APIError(
            {"message": "permission denied", "code": "42501", "details": None, "hint": None}
        )

        with pytest.raises(APIError):
            HourPackageService.order_package("pkg-1", PILOT_ID)

        assert table.insert.call_count == 1

    def test_gives_up_after_repeated_conflicts(self, mocks):
        mocks.fetch_all.return_value = [{"number": "0007"}]
        table = mocks.get_client.return_value.table.return_value
        table.insert.return_value.execute.side_effect = _taken("0008")

        with pytest.raises(SupabaseClientError) as exc_info:
            HourPackageService.order_package("pkg-1", PILOT_ID)

        assert exc_info.value.code == "NUMBER_CONFLICT"
        assert table.insert.call_count == PROFORMA_NUMBER_ATTEMPTS
