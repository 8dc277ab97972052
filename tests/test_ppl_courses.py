# =============================================================================
# tests/test_ppl_courses.py - PPL Course Tranche Tests
# =============================================================================
# Tranche parsing from invoice line text, hour sizing, and allocating
# flown hours across tranches.
#
# Run with: pytest tests/test_ppl_courses.py -v
# =============================================================================

from unittest.mock import patch

import pytest

from app.config import settings
from core.models.invoice import InvoiceClient, InvoiceItem, InvoiceType, UnifiedInvoice
from core.services.ppl_course_service import (
    PPLCourseService,
    allocate_usage,
    calculate_tranche_hours,
    infer_total_tranches,
    is_ppl_course_item,
    parse_tranche_info,
    summarize_tranches,
)

from tests.conftest import PILOT_ID


# =============================================================================
# Parsing Tests
# =============================================================================

class TestIsPplCourseItem:
    """Tests for recognizing PPL training lines."""

    @pytest.mark.parametrize("name", [
        "Pregătire PPL(A) - tranșa 2/4",
        "Cursuri formare PPL tranșa 1 din 3",
        "PPL course tranșa 1 (2875 euro)",
    ])
    def test_ppl_lines(self, name):
        assert is_ppl_course_item(InvoiceItem(name=name))

    def test_marker_in_description(self):
        item = InvoiceItem(name="Servicii", description="Pregătire PPL(A) tranșa 1/2")

        assert is_ppl_course_item(item)

    def test_other_lines(self):
        assert not is_ppl_course_item(InvoiceItem(name="Ore zbor Cessna 152", unit="HUR"))


class TestParseTrancheInfo:
    """Tests for reading the tranche position."""

    def test_slash_form(self):
        info = parse_tranche_info("Pregătire PPL(A) - Tranșa 2/4")

        assert info.tranche_number == 2
        assert info.total_tranches == 4
        assert info.is_final is False

    def test_din_form_last_is_final(self):
        info = parse_tranche_info("Cursuri formare PPL tranșa 3 din 3")

        assert (info.tranche_number, info.total_tranches, info.is_final) == (3, 3, True)

    @pytest.mark.parametrize("text", ["transa 1 din 2", "tranşa 1 din 2"])
    def test_spelling_variants(self, text):
        assert parse_tranche_info(text).total_tranches == 2

    def test_amount_without_total(self):
        info = parse_tranche_info("PPL course tranșa 1 (2875 euro)")

        assert info.tranche_number == 1
        assert info.total_tranches is None
        assert info.amount == 2875

    def test_decimal_comma_amount(self):
        assert parse_tranche_info("tranșa 2 (1437,50 euro)").amount == 1437.5

    def test_numbered_final_sets_total(self):
        info = parse_tranche_info("Tranșa 4 finală")

        assert info.total_tranches == 4
        assert info.is_final is True

    def test_bare_final(self):
        info = parse_tranche_info("Ultima tranșa curs PPL")

        assert (info.tranche_number, info.total_tranches, info.is_final) == (1, 1, True)

    @pytest.mark.parametrize("text", [None, "", "Ore zbor"])
    def test_no_tranche(self, text):
        assert parse_tranche_info(text) is None


# =============================================================================
# Sizing Tests
# =============================================================================

class TestTrancheHours:
    """Tests for hours unlocked per tranche."""

    @pytest.mark.parametrize("amount, expected", [
        (1500, 6), (2000, 6), (2875, 4), (3500, 3), (5750, 2), (11500, 1),
    ])
    def test_infer_total_tranches(self, amount, expected):
        assert infer_total_tranches(amount) == expected

    def test_regular_tranche_is_floored(self):
        assert calculate_tranche_hours(1, 4, 45) == 11

    def test_final_tranche_takes_remainder(self):
        hours = [calculate_tranche_hours(n, 4, 45) for n in range(1, 5)]

        assert hours == [11, 11, 11, 12]

    @pytest.mark.parametrize("total", [1, 2, 3, 4, 5, 6, 7])
    def test_tranches_sum_to_course_hours(self, total):
        """All tranches together add up to the course hours."""
        hours = [calculate_tranche_hours(n, total, 45) for n in range(1, total + 1)]

        assert sum(hours) == 45

    def test_seven_tranches(self):
        hours = [calculate_tranche_hours(n, 7, 45) for n in range(1, 8)]

        assert hours == [6, 6, 6, 6, 6, 6, 9]

    def test_total_inferred_from_amount(self):
        assert calculate_tranche_hours(1, None, 45, amount=2875) == 11

    def test_default_course_hours(self):
        assert calculate_tranche_hours(1, 1) == settings.PPL_COURSE_HOURS

    def test_unknown_total_without_amount(self):
        with pytest.raises(ValueError):
            calculate_tranche_hours(1, None, 45)


# =============================================================================
# Usage Tests
# =============================================================================

class TestAllocateUsage:
    """Tests for spreading flown hours across tranches."""

    @pytest.fixture
    def tranches(self):
        return [
            {"id": "t2", "tranche_number": 2, "hours_allocated": 11},
            {"id": "t1", "tranche_number": 1, "hours_allocated": 11},
        ]

    def test_fills_in_tranche_order(self, tranches):
        updates = allocate_usage(tranches, 15)

        assert updates == [
            {"id": "t1", "used_hours": 11, "remaining_hours": 0, "status": "completed"},
            {"id": "t2", "used_hours": 4, "remaining_hours": 7, "status": "active"},
        ]

    def test_excess_hours_capped(self, tranches):
        updates = allocate_usage(tranches, 30)

        assert [u["used_hours"] for u in updates] == [11, 11]
        assert all(u["status"] == "completed" for u in updates)

    def test_nothing_flown(self, tranches):
        updates = allocate_usage(tranches, 0)

        assert [u["remaining_hours"] for u in updates] == [11, 11]


class TestSummarizeTranches:
    """Tests for course progress."""

    def test_progress(self):
        tranches = [
            {"hours_allocated": 11, "used_hours": 11, "remaining_hours": 0, "status": "completed"},
            {"hours_allocated": 11, "used_hours": 4, "remaining_hours": 7, "status": "active"},
        ]

        summary = summarize_tranches(tranches)

        assert summary.total_tranches == 2
        assert summary.completed_tranches == 1
        assert summary.total_hours_used == 15
        assert summary.progress == 68.18
        assert summary.is_completed is False

    def test_full_course_flown(self):
        hours = settings.PPL_COURSE_HOURS
        tranches = [
            {"hours_allocated": hours, "used_hours": hours, "remaining_hours": 0, "status": "completed"},
        ]

        assert summarize_tranches(tranches).is_completed is True

    def test_empty(self):
        summary = summarize_tranches([])

        assert summary.progress == 0
        assert summary.is_completed is False


# =============================================================================
# Invoice Processing Tests
# =============================================================================

class TestProcessInvoice:
    """Tests for storing tranches from an invoice."""

    @pytest.fixture
    def invoice(self):
        return UnifiedInvoice(
            id="inv-ppl-1",
            invoice_type=InvoiceType.FISCAL,
            issue_date="2024-03-01",
            currency="RON",
            client=InvoiceClient(name="Ion Popescu", user_id=str(PILOT_ID)),
            items=[
                InvoiceItem(name="Pregătire PPL(A)", description="Pregătire PPL(A) - tranșa 2/4", total_amount=2875),
                InvoiceItem(name="Taxa aeroport", total_amount=50),
            ],
        )

    def test_build_tranches(self, invoice):
        rows = PPLCourseService.build_tranches(invoice)

        assert len(rows) == 1
        row = rows[0]
        assert row["invoice_id"] == "inv-ppl-1"
        assert row["user_id"] == str(PILOT_ID)
        assert row["tranche_number"] == 2
        assert row["total_tranches"] == 4
        assert row["hours_allocated"] == row["remaining_hours"]
        assert row["status"] == "active"

    def test_line_without_tranche_skipped(self, invoice):
        invoice.items[0].description = "Pregătire PPL(A) avans"

        assert PPLCourseService.build_tranches(invoice) == []

    def test_existing_tranches_not_duplicated(self, invoice):
        """Re-processing an invoice only flags it again."""
        with patch("core.services.ppl_course_service.SupabaseClient") as mock_supabase:
            mock_supabase.fetch_all.return_value = [{"tranche_number": 2}]
            table = mock_supabase.get_client.return_value.table.return_value

            created = PPLCourseService.process_invoice(invoice)

        assert created == 0
        table.insert.assert_not_called()
        assert table.update.call_args.args[0]["is_ppl"] is True

    def test_new_tranches_inserted(self, invoice):
        with patch("core.services.ppl_course_service.SupabaseClient") as mock_supabase:
            mock_supabase.fetch_all.return_value = []
            table = mock_supabase.get_client.return_value.table.return_value

            created = PPLCourseService.process_invoice(invoice)

        assert created == 1
        assert len(table.insert.call_args.args[0]) == 1


class TestUpdateCourseUsage:
    """Tests for writing tranche usage from flown hours."""

    def test_every_pilot_flight_counts(self):
        """Ferry and demo flights flown as pilot still use course hours."""
        # Arrange
        tranches = [
            {"id": "t1", "tranche_number": 1, "hours_allocated": 11},
            {"id": "t2", "tranche_number": 2, "hours_allocated": 11},
        ]
        flights = [
            {"id": "f1", "totalHours": 10, "flightType": "SCHOOL"},
            {"id": "f2", "totalHours": 2, "flightType": "FERRY"},
            {"id": "f3", "totalHours": 1, "flightType": "DEMO"},
        ]

        # Act
        with patch("core.services.ppl_course_service.SupabaseClient") as mock_supabase:
            mock_supabase.fetch_all.side_effect = [tranches, flights]
            table = mock_supabase.get_client.return_value.table.return_value

            updates = PPLCourseService.update_course_usage(PILOT_ID)

        # Assert
        assert [u["used_hours"] for u in updates] == [11, 2]
        assert mock_supabase.fetch_all.call_args.kwargs["filters"] == {"pilotId": str(PILOT_ID)}
        assert table.update.call_count == 2

    def test_no_tranches_no_writes(self):
        with patch("core.services.ppl_course_service.SupabaseClient") as mock_supabase:
            mock_supabase.fetch_all.return_value = []

            assert PPLCourseService.update_course_usage(PILOT_ID) == []

        mock_supabase.get_client.assert_not_called()
