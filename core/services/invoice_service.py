# =============================================================================
# core/services/invoice_service.py - Unified Invoice Business Logic
# =============================================================================
# Reads fiscal and proforma invoices and presents them as UnifiedInvoice.
#
# Fiscal invoices are linked to users only through invoice_clients.user_id,
# so they are selected with an inner join on that table. Proforma invoices
# carry user_id directly.
# =============================================================================

import datetime
import logging
from typing import Any
from uuid import UUID

from lib.supabase_client import SupabaseClient
from lib.utils import normalize_uuid, to_float, utc_now_iso
from core.models.invoice import (
    InvoiceClient,
    InvoiceItem,
    InvoicePackage,
    InvoiceSummary,
    InvoiceType,
    InvoiceTypeFilter,
    PaymentStatus,
    UnifiedInvoice,
)
from core.services.activity_logger import ActivityLogger
from app.config import settings
from app.exceptions import InvoiceNotFoundError

logger = logging.getLogger(__name__)

PROFORMA_PAYMENT_METHOD = "proforma"

_INVOICE_COLUMNS = (
    "id, smartbill_id, series, number, issue_date, due_date, status, "
    "total_amount, vat_amount, currency, import_date, created_at"
)
_CLIENT_COLUMNS = "name, email, phone, address, city, country, vat_code, user_id, company_id"
_ITEM_COLUMNS = "line_id, name, description, quantity, unit, unit_price, total_amount, vat_rate"
_PACKAGE_COLUMNS = "name, hours, price_per_hour, validity_days"

FISCAL_SELECT = (
    f"{_INVOICE_COLUMNS}, payment_method, is_ppl, ppl_hours_paid, edited_xml_content, "
    f"client:invoice_clients({_CLIENT_COLUMNS}), items:invoice_items({_ITEM_COLUMNS})"
)
# Filtering on the client's user_id needs the embed to be an inner join
FISCAL_SELECT_FOR_USER = FISCAL_SELECT.replace(
    "client:invoice_clients(", "client:invoice_clients!inner("
)
PROFORMA_SELECT = (
    f"{_INVOICE_COLUMNS}, payment_method, payment_status, payment_date, "
    f"payment_reference, user_id, package_id, "
    f"client:invoice_clients({_CLIENT_COLUMNS}), "
    f"package:hour_package_templates({_PACKAGE_COLUMNS})"
)


# =============================================================================
# Normalization
# =============================================================================

def _first_client(invoice: dict[str, Any]) -> InvoiceClient:
    embedded = invoice.get("client") or []
    if isinstance(embedded, dict):
        embedded = [embedded]
    if not embedded:
        return InvoiceClient()

    row = embedded[0]
    return InvoiceClient(
        name=row.get("name") or "",
        email=row.get("email") or "",
        phone=row.get("phone") or "",
        address=row.get("address") or "",
        city=row.get("city") or "",
        country=row.get("country") or "",
        vat_code=row.get("vat_code") or "",
        user_id=row.get("user_id"),
        company_id=row.get("company_id"),
    )


def _common_fields(invoice: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": invoice["id"],
        "smartbill_id": invoice.get("smartbill_id"),
        "series": invoice.get("series"),
        "number": invoice.get("number"),
        "issue_date": invoice.get("issue_date"),
        "due_date": invoice.get("due_date"),
        "total_amount": to_float(invoice.get("total_amount")),
        "vat_amount": to_float(invoice.get("vat_amount")),
        "currency": invoice.get("currency"),
        "import_date": invoice.get("import_date"),
        "created_at": invoice.get("created_at"),
        "client": _first_client(invoice),
    }


def normalize_fiscal_invoice(invoice: dict[str, Any]) -> UnifiedInvoice:
    """Fiscal invoices row (with embedded client and items) -> UnifiedInvoice."""
    items = [
        InvoiceItem(
            line_id=item.get("line_id") or index + 1,
            name=item.get("name") or "",
            description=item.get("description"),
            quantity=to_float(item.get("quantity")),
            unit=item.get("unit") or "",
            unit_price=to_float(item.get("unit_price")),
            total_amount=to_float(item.get("total_amount")),
            vat_rate=to_float(item.get("vat_rate")),
        )
        for index, item in enumerate(invoice.get("items") or [])
    ]

    return UnifiedInvoice(
        **_common_fields(invoice),
        status=invoice.get("status"),
        invoice_type=InvoiceType.FISCAL,
        items=items,
        is_ppl=bool(invoice.get("is_ppl")),
        ppl_hours_paid=to_float(invoice.get("ppl_hours_paid")),
        has_edits=bool(invoice.get("edited_xml_content")),
    )


def normalize_proforma_invoice(invoice: dict[str, Any]) -> UnifiedInvoice:
    """
    Proforma invoices row -> UnifiedInvoice.

    The package becomes a single synthetic hour line so proformas count
    towards purchased hours the same way fiscal hour lines do.
    """
    package_row = invoice.get("package")
    package = None
    items: list[InvoiceItem] = []

    if package_row:
        package = InvoicePackage(
            name=package_row.get("name") or "",
            hours=to_float(package_row.get("hours")),
            price_per_hour=to_float(package_row.get("price_per_hour")),
            validity_days=package_row.get("validity_days"),
        )
        items.append(InvoiceItem(
            line_id=1,
            name=package.name,
            description=f"Hour package: {package.hours:g} hours",
            quantity=package.hours,
            unit="HUR",
            unit_price=package.price_per_hour,
            total_amount=to_float(invoice.get("total_amount")),
            vat_rate=settings.VAT_PERCENTAGE,
        ))

    return UnifiedInvoice(
        **_common_fields(invoice),
        status=invoice.get("payment_status") or invoice.get("status"),
        invoice_type=InvoiceType.PROFORMA,
        payment_method=invoice.get("payment_method"),
        payment_status=invoice.get("payment_status"),
        payment_date=invoice.get("payment_date"),
        payment_reference=invoice.get("payment_reference"),
        items=items,
        package=package,
        user_id=invoice.get("user_id"),
    )


def matches_search(invoice: UnifiedInvoice, search: str) -> bool:
    """Case-insensitive match on series, number, external id and client."""
    term = search.strip().lower()
    if not term:
        return True
    haystack = (
        invoice.series,
        invoice.number,
        invoice.smartbill_id,
        invoice.client.name,
        invoice.client.email,
    )
    return any(term in (value or "").lower() for value in haystack)


def _parse_date(value: str | None) -> datetime.date | None:
    if not value:
        return None
    try:
        return datetime.date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def is_paid(invoice: UnifiedInvoice) -> bool:
    return invoice.status == "paid" or invoice.payment_status == "paid"


def is_overdue(invoice: UnifiedInvoice, today: datetime.date) -> bool:
    """Explicitly overdue, or unpaid past its due date."""
    if invoice.status == "overdue":
        return True
    if is_paid(invoice):
        return False
    due = _parse_date(invoice.due_date)
    return due is not None and due < today


def invoice_hours(invoice: UnifiedInvoice) -> float:
    """Flight hours bought with an invoice."""
    if invoice.invoice_type == InvoiceType.PROFORMA:
        return invoice.package.hours if invoice.package else 0.0
    return sum(item.quantity for item in invoice.items if item.is_hours)


def summarize(invoices: list[UnifiedInvoice], today: datetime.date | None = None) -> InvoiceSummary:
    """
    Aggregate a user's invoices.

    Args:
        invoices: Normalized invoices
        today: Reference date for overdue checks (defaults to today)

    Returns:
        InvoiceSummary
    """
    today = today or datetime.date.today()

    return InvoiceSummary(
        total_invoices=len(invoices),
        total_amount=round(sum(inv.total_amount for inv in invoices), 2),
        total_hours=round(sum(invoice_hours(inv) for inv in invoices), 2),
        currency=(invoices[0].currency if invoices else None) or settings.INVOICE_CURRENCY,
        fiscal_count=sum(1 for inv in invoices if inv.invoice_type == InvoiceType.FISCAL),
        proforma_count=sum(1 for inv in invoices if inv.invoice_type == InvoiceType.PROFORMA),
        paid_count=sum(1 for inv in invoices if is_paid(inv)),
        pending_count=sum(
            1 for inv in invoices
            if inv.status == "pending" or inv.payment_status == "pending"
        ),
        overdue_count=sum(1 for inv in invoices if is_overdue(inv, today)),
    )


# =============================================================================
# Service
# =============================================================================

class InvoiceService:
    """
    Service for invoice reads and payment status changes.

    Provides a clean interface between API routes and database.
    """

    @staticmethod
    def _apply_date_filters(query, start_date, end_date, status):
        if start_date:
            query = query.gte("issue_date", start_date.isoformat())
        if end_date:
            query = query.lte("issue_date", end_date.isoformat())
        if status and status != "all":
            query = query.eq("status", status)
        return query

    @staticmethod
    def get_fiscal_invoices(
        user_id: str,
        start_date: datetime.date | None = None,
        end_date: datetime.date | None = None,
        status: str | None = None,
    ) -> list[UnifiedInvoice]:
        client = SupabaseClient.get_client()
        query = (
            client.table("invoices")
            .select(FISCAL_SELECT_FOR_USER)
            .eq("client.user_id", user_id)
        )
        query = InvoiceService._apply_date_filters(query, start_date, end_date, status)
        response = query.execute()

        return [
            normalize_fiscal_invoice(row)
            for row in response.data or []
            # Proformas also get a client row; they are returned by the proforma query
            if row.get("payment_method") != PROFORMA_PAYMENT_METHOD
        ]

    @staticmethod
    def get_proforma_invoices(
        user_id: str,
        start_date: datetime.date | None = None,
        end_date: datetime.date | None = None,
        status: str | None = None,
    ) -> list[UnifiedInvoice]:
        client = SupabaseClient.get_client()
        query = (
            client.table("invoices")
            .select(PROFORMA_SELECT)
            .eq("user_id", user_id)
            .eq("payment_method", PROFORMA_PAYMENT_METHOD)
        )
        # Status is matched after normalization, where payment_status wins over status
        query = InvoiceService._apply_date_filters(query, start_date, end_date, None)
        response = query.execute()

        invoices = [normalize_proforma_invoice(row) for row in response.data or []]
        if status and status != "all":
            invoices = [inv for inv in invoices if inv.status == status]
        return invoices

    @staticmethod
    def get_user_invoices(
        user_id: str | UUID,
        start_date: datetime.date | None = None,
        end_date: datetime.date | None = None,
        status: str | None = None,
        search: str | None = None,
        invoice_type: InvoiceTypeFilter = InvoiceTypeFilter.ALL,
    ) -> list[UnifiedInvoice]:
        """
        Get every invoice of a user, newest first.

        Args:
            user_id: Invoice owner
            start_date: Issued on or after
            end_date: Issued on or before
            status: Invoice status ("all" or None for any)
            search: Free-text filter applied after loading
            invoice_type: all, fiscal or proforma

        Returns:
            List of UnifiedInvoice sorted by issue_date descending
        """
        user_id_str = normalize_uuid(user_id)
        invoices: list[UnifiedInvoice] = []

        if invoice_type in (InvoiceTypeFilter.ALL, InvoiceTypeFilter.FISCAL):
            invoices.extend(
                InvoiceService.get_fiscal_invoices(user_id_str, start_date, end_date, status)
            )
        if invoice_type in (InvoiceTypeFilter.ALL, InvoiceTypeFilter.PROFORMA):
            invoices.extend(
                InvoiceService.get_proforma_invoices(user_id_str, start_date, end_date, status)
            )

        if search:
            invoices = [inv for inv in invoices if matches_search(inv, search)]

        invoices.sort(key=lambda inv: inv.issue_date or "", reverse=True)
        logger.debug(f"Loaded {len(invoices)} invoices for user {user_id_str}")
        return invoices

    @staticmethod
    def get_user_invoice_summary(
        user_id: str | UUID,
        start_date: datetime.date | None = None,
        end_date: datetime.date | None = None,
    ) -> InvoiceSummary:
        invoices = InvoiceService.get_user_invoices(user_id, start_date, end_date)
        return summarize(invoices)

    @staticmethod
    def get_invoice_by_id(invoice_id: str | UUID) -> UnifiedInvoice | None:
        """
        Get one invoice, trying proforma first and fiscal second.

        Returns:
            UnifiedInvoice, or None if no invoice has this id
        """
        invoice_id_str = normalize_uuid(invoice_id)
        client = SupabaseClient.get_client()

        response = (
            client.table("invoices")
            .select(PROFORMA_SELECT)
            .eq("id", invoice_id_str)
            .eq("payment_method", PROFORMA_PAYMENT_METHOD)
            .limit(1)
            .execute()
        )
        if response.data:
            return normalize_proforma_invoice(response.data[0])

        row = SupabaseClient.fetch_one("invoices", "id", invoice_id_str, columns=FISCAL_SELECT)
        if row:
            return normalize_fiscal_invoice(row)
        return None

    @staticmethod
    def update_payment_status(
        invoice_id: str | UUID,
        payment_status: PaymentStatus,
        payment_reference: str | None,
        actor_id: str | UUID,
    ) -> UnifiedInvoice:
        """
        Set the payment status of an invoice.

        Marking an invoice paid also stamps payment_date and sets the
        invoice status to paid.

        Raises:
            InvoiceNotFoundError: If the invoice doesn't exist
        """
        invoice_id_str = normalize_uuid(invoice_id)
        if not SupabaseClient.fetch_one("invoices", "id", invoice_id_str, columns="id"):
            raise InvoiceNotFoundError(invoice_id_str)

        now = utc_now_iso()
        changes: dict[str, Any] = {
            "payment_status": payment_status.value,
            "payment_reference": payment_reference,
            "updated_at": now,
        }
        if payment_status == PaymentStatus.PAID:
            changes["payment_date"] = now
            changes["status"] = "paid"

        client = SupabaseClient.get_client()
        client.table("invoices").update(changes).eq("id", invoice_id_str).execute()

        logger.info(f"Invoice {invoice_id_str} payment status -> {payment_status.value}")
        ActivityLogger.invoice_payment_updated(actor_id, invoice_id_str, payment_status.value)

        invoice = InvoiceService.get_invoice_by_id(invoice_id_str)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id_str)
        return invoice
