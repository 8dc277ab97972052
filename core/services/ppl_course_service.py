# =============================================================================
# core/services/ppl_course_service.py - PPL Course Tranches
# =============================================================================
# PPL courses are invoiced in tranches through the external invoicing
# system. Each tranche line unlocks part of the course's flight hours:
#
#   "Pregătire PPL(A) - tranșa 2/4"   -> tranche 2 of 4
#   "Cursuri formare PPL tranșa 1 din 3"
#   "PPL course tranșa 1 (2875 euro)" -> total inferred from the amount
#   "Ultima tranșa"                   -> single final tranche
#
# Flown hours are then allocated to the tranches in order to track usage.
# =============================================================================

import logging
import math
import re
from typing import Any
from uuid import UUID

from lib.supabase_client import SupabaseClient
from lib.utils import normalize_uuid, to_float, utc_now_iso
from core.models.invoice import InvoiceItem, UnifiedInvoice
from core.models.ppl_course import PPLCourseSummary, TrancheInfo, TrancheStatus
from core.services.invoice_service import (
    FISCAL_SELECT,
    PROFORMA_PAYMENT_METHOD,
    normalize_fiscal_invoice,
)
from app.config import settings

logger = logging.getLogger(__name__)

PPL_ITEM_MARKERS = ("pregătire ppl", "cursuri formare ppl", "ppl(a)", "ppl course")

_TRANCHE_OF = re.compile(r"tran[sșş]a\s+(\d+)\s+din\s+(\d+)")
_TRANCHE_SLASH = re.compile(r"tran[sșş]a\s+(\d+)(?:\s*/\s*(\d+))?")
_AMOUNT = re.compile(r"\((\d+(?:[.,]\d+)?)\s*(?:euro|ron|lei)?\)")
_BARE_FINAL = ("tranșa final", "tranşa final", "transa final", "ultima tranșa", "ultima tranşa", "ultima transa")


def is_ppl_course_item(item: InvoiceItem) -> bool:
    """True when an invoice line sells PPL training."""
    text = f"{item.name or ''} {item.description or ''}".lower()
    return any(marker in text for marker in PPL_ITEM_MARKERS)


def parse_tranche_info(text: str | None) -> TrancheInfo | None:
    """
    Parse the tranche position out of an invoice line.

    Returns:
        TrancheInfo, or None if the text names no tranche

    Example:
        parse_tranche_info("Tranșa 2/4")           # 2 of 4
        parse_tranche_info("tranșa 1 (2875 euro)") # 1 of ?, amount 2875
    """
    if not text:
        return None
    desc = text.lower()

    match = _TRANCHE_OF.search(desc)
    if match:
        number, total = int(match.group(1)), int(match.group(2))
        return TrancheInfo(tranche_number=number, total_tranches=total, is_final=number == total)

    match = _TRANCHE_SLASH.search(desc)
    if match:
        number = int(match.group(1))
        total = int(match.group(2)) if match.group(2) else None
        is_final = "final" in desc or "ultima" in desc

        amount_match = _AMOUNT.search(desc)
        amount = float(amount_match.group(1).replace(",", ".")) if amount_match else None

        if total is None and is_final:
            total = number
        return TrancheInfo(
            tranche_number=number,
            total_tranches=total,
            is_final=is_final,
            amount=amount,
        )

    if any(marker in desc for marker in _BARE_FINAL):
        return TrancheInfo(tranche_number=1, total_tranches=1, is_final=True)

    return None


def infer_total_tranches(amount: float) -> int:
    """Guess how many tranches a course was split into from one tranche's price."""
    if amount <= 2000:
        return 6
    if amount <= 3000:
        return 4
    if amount <= 4000:
        return 3
    if amount <= 6000:
        return 2
    return 1


def calculate_tranche_hours(
    tranche_number: int,
    total_tranches: int | None,
    course_hours: float | None = None,
    amount: float | None = None,
) -> float:
    """
    Hours unlocked by one tranche.

    Regular tranches get floor(course_hours / total); the final tranche gets
    the remainder so all tranches sum to course_hours.

    Raises:
        ValueError: If the total is unknown and no amount allows inferring it
    """
    if course_hours is None:
        course_hours = settings.PPL_COURSE_HOURS

    if not total_tranches:
        if not amount:
            raise ValueError("Cannot size a tranche without a total or an amount")
        total_tranches = infer_total_tranches(amount)

    if tranche_number == total_tranches:
        return course_hours - (total_tranches - 1) * math.floor(course_hours / total_tranches)
    return math.floor(course_hours / total_tranches)


def allocate_usage(tranches: list[dict[str, Any]], flown_hours: float) -> list[dict[str, Any]]:
    """
    Spread flown hours over tranches in tranche order.

    Returns:
        One update per tranche: {"id", "used_hours", "remaining_hours", "status"}
    """
    remaining_flight = max(0.0, flown_hours)
    updates = []

    for tranche in sorted(tranches, key=lambda t: t.get("tranche_number") or 0):
        allocated = to_float(tranche.get("hours_allocated"))
        used = min(remaining_flight, allocated)
        remaining = round(max(0.0, allocated - used), 2)
        remaining_flight -= used

        updates.append({
            "id": tranche["id"],
            "used_hours": round(used, 2),
            "remaining_hours": remaining,
            "status": (TrancheStatus.COMPLETED if remaining <= 0 else TrancheStatus.ACTIVE).value,
        })

    return updates


def summarize_tranches(tranches: list[dict[str, Any]]) -> PPLCourseSummary:
    allocated = sum(to_float(t.get("hours_allocated")) for t in tranches)
    used = sum(to_float(t.get("used_hours")) for t in tranches)
    remaining = sum(to_float(t.get("remaining_hours")) for t in tranches)

    return PPLCourseSummary(
        total_tranches=len(tranches),
        completed_tranches=sum(
            1 for t in tranches if t.get("status") == TrancheStatus.COMPLETED.value
        ),
        total_hours_allocated=round(allocated, 2),
        total_hours_used=round(used, 2),
        total_hours_remaining=round(remaining, 2),
        progress=round(used / allocated * 100, 2) if allocated > 0 else 0,
        is_completed=remaining <= 0 and allocated >= settings.PPL_COURSE_HOURS,
    )


class PPLCourseService:
    """
    Service for PPL course tranches.

    Provides a clean interface between API routes and database.
    """

    @staticmethod
    def build_tranches(invoice: UnifiedInvoice) -> list[dict[str, Any]]:
        """
        Tranche rows for every PPL line of an invoice.

        Lines without recognizable tranche info (or whose total can't be
        worked out) are skipped with a warning.
        """
        rows = []
        for item in invoice.items:
            if not is_ppl_course_item(item):
                continue

            info = parse_tranche_info(item.description or item.name)
            if info is None:
                logger.warning(f"No tranche info for PPL item '{item.name}' on invoice {invoice.id}")
                continue

            try:
                hours = calculate_tranche_hours(
                    info.tranche_number,
                    info.total_tranches,
                    settings.PPL_COURSE_HOURS,
                    info.amount,
                )
            except ValueError as e:
                logger.warning(f"Skipping PPL item '{item.name}' on invoice {invoice.id}: {e}")
                continue

            total = info.total_tranches or infer_total_tranches(info.amount)
            rows.append({
                "invoice_id": invoice.id,
                "user_id": invoice.client.user_id,
                "company_id": invoice.client.company_id,
                "tranche_number": info.tranche_number,
                "total_tranches": total,
                "hours_allocated": hours,
                "total_course_hours": settings.PPL_COURSE_HOURS,
                "amount": item.total_amount,
                "currency": invoice.currency or settings.INVOICE_CURRENCY,
                "description": item.description or item.name,
                "purchase_date": invoice.issue_date,
                "status": TrancheStatus.ACTIVE.value,
                "used_hours": 0,
                "remaining_hours": hours,
            })
        return rows

    @staticmethod
    def process_invoice(invoice: UnifiedInvoice) -> int:
        """
        Store the tranches of one invoice and flag it as a PPL invoice.

        Tranches already stored for the invoice are left alone.

        Returns:
            Number of tranches created
        """
        rows = PPLCourseService.build_tranches(invoice)
        if not rows:
            return 0

        client = SupabaseClient.get_client()
        existing = {
            row["tranche_number"]
            for row in SupabaseClient.fetch_all(
                "ppl_course_tranches",
                columns="tranche_number",
                filters={"invoice_id": invoice.id},
            )
        }
        new_rows = [row for row in rows if row["tranche_number"] not in existing]
        if new_rows:
            client.table("ppl_course_tranches").insert(new_rows).execute()

        hours_paid = sum(row["hours_allocated"] for row in rows)
        client.table("invoices").update({
            "is_ppl": True,
            "ppl_hours_paid": hours_paid,
            "updated_at": utc_now_iso(),
        }).eq("id", invoice.id).execute()

        logger.info(
            f"Invoice {invoice.id}: {len(new_rows)} PPL tranches created ({hours_paid}h paid)"
        )
        return len(new_rows)

    @staticmethod
    def process_pending_invoices() -> dict[str, int]:
        """
        Process every fiscal invoice not yet flagged as PPL.

        Returns:
            {"invoices_checked", "ppl_invoices", "tranches_created"}
        """
        client = SupabaseClient.get_client()

        def build_query():
            return (
                client.table("invoices")
                .select(FISCAL_SELECT)
                .or_("is_ppl.is.null,is_ppl.eq.false")
                .order("issue_date")
            )

        rows = SupabaseClient.paginate(build_query, label="invoices")
        invoices = [
            normalize_fiscal_invoice(row)
            for row in rows
            if row.get("payment_method") != PROFORMA_PAYMENT_METHOD
        ]

        ppl_invoices = 0
        created = 0
        for invoice in invoices:
            if not any(is_ppl_course_item(item) for item in invoice.items):
                continue
            ppl_invoices += 1
            created += PPLCourseService.process_invoice(invoice)

        logger.info(
            f"PPL processing: {len(invoices)} invoices checked, "
            f"{ppl_invoices} PPL, {created} tranches created"
        )
        return {
            "invoices_checked": len(invoices),
            "ppl_invoices": ppl_invoices,
            "tranches_created": created,
        }

    @staticmethod
    def get_user_tranches(user_id: str | UUID) -> list[dict[str, Any]]:
        return SupabaseClient.fetch_all(
            "ppl_course_tranches",
            filters={"user_id": normalize_uuid(user_id)},
            order_by="purchase_date",
            desc=True,
        )

    @staticmethod
    def update_course_usage(user_id: str | UUID) -> list[dict[str, Any]]:
        """
        Allocate the user's flown hours (as pilot) to their tranches.

        Returns:
            The per-tranche updates written
        """
        user_id_str = normalize_uuid(user_id)
        tranches = PPLCourseService.get_user_tranches(user_id_str)
        if not tranches:
            return []

        flights = SupabaseClient.fetch_all(
            "flight_logs", columns="id, totalHours", filters={"pilotId": user_id_str}
        )
        flown = sum(to_float(f.get("totalHours")) for f in flights)
        updates = allocate_usage(tranches, flown)

        client = SupabaseClient.get_client()
        for update in updates:
            client.table("ppl_course_tranches").update({
                "used_hours": update["used_hours"],
                "remaining_hours": update["remaining_hours"],
                "status": update["status"],
            }).eq("id", update["id"]).execute()

        logger.info(f"PPL usage for {user_id_str}: {flown}h over {len(tranches)} tranches")
        return updates
