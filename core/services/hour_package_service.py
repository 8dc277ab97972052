# =============================================================================
# core/services/hour_package_service.py - Hour Packages and Proforma Orders
# =============================================================================
# Manages sellable hour package templates and turns an order into a pending
# proforma invoice:
#   template -> price -> convert to invoice currency -> VAT split
#            -> next number in the proforma series -> invoices + invoice_clients
# =============================================================================

import datetime
import logging
from typing import Any
from uuid import UUID

from postgrest.exceptions import APIError

from lib.supabase_client import SupabaseClient, SupabaseClientError
from lib.utils import normalize_uuid, to_float, utc_now_iso
from core.models.hour_package import (
    HourPackageTemplateCreate,
    HourPackageTemplateUpdate,
    VatBreakdown,
)
from core.models.invoice import UnifiedInvoice
from core.services.activity_logger import ActivityLogger
from core.services.exchange_rate_service import exchange_rates
from core.services.invoice_service import InvoiceService, PROFORMA_PAYMENT_METHOD
from app.config import settings
from app.exceptions import HourPackageNotFoundError, InvoiceNotFoundError, UserNotFoundError

logger = logging.getLogger(__name__)

# Postgres unique_violation; invoices has a unique (series, number) index
UNIQUE_VIOLATION = "23505"

# Orders placed at the same moment can read the same highest number
PROFORMA_NUMBER_ATTEMPTS = 5


def calculate_vat(
    amount: float,
    vat_percentage: float,
    prices_include_vat: bool = True,
) -> VatBreakdown:
    """
    Split an amount into net, VAT and gross.

    Args:
        amount: Price as entered
        vat_percentage: VAT rate, e.g. 21 for 21%
        prices_include_vat: Whether `amount` already contains VAT

    Returns:
        VatBreakdown with every figure rounded to 2 decimals

    Example:
        calculate_vat(121, 21)         # subtotal=100, vat=21, total=121
        calculate_vat(100, 21, False)  # subtotal=100, vat=21, total=121
    """
    rate = vat_percentage / 100
    if prices_include_vat:
        total = amount
        subtotal = amount / (1 + rate)
    else:
        subtotal = amount
        total = amount * (1 + rate)

    subtotal = round(subtotal, 2)
    total = round(total, 2)
    return VatBreakdown(subtotal=subtotal, vat_amount=round(total - subtotal, 2), total=total)


def package_price(template: dict[str, Any]) -> float:
    """Template total, or hours * price per hour when none is set."""
    total = to_float(template.get("total_price"))
    if total > 0:
        return total
    return round(to_float(template.get("hours")) * to_float(template.get("price_per_hour")), 2)


def next_document_number(numbers: list[Any]) -> str:
    """Next number after the highest numeric one in a series, zero padded."""
    highest = 0
    for value in numbers:
        try:
            highest = max(highest, int(str(value).strip()))
        except (TypeError, ValueError):
            continue
    return f"{highest + 1:04d}"


class HourPackageService:
    """
    Service for hour package templates and orders.

    Provides a clean interface between API routes and database.
    """

    # -------------------------------------------------------------------------
    # Templates
    # -------------------------------------------------------------------------

    @staticmethod
    def list_templates(include_inactive: bool = False) -> list[dict[str, Any]]:
        filters = None if include_inactive else {"is_active": True}
        return SupabaseClient.fetch_all(
            "hour_package_templates", filters=filters, order_by="hours"
        )

    @staticmethod
    def get_template(package_id: str | UUID, active_only: bool = False) -> dict[str, Any]:
        """
        Get a package template.

        Raises:
            HourPackageNotFoundError: If it doesn't exist (or is inactive
                when active_only is set)
        """
        package_id_str = normalize_uuid(package_id)
        template = SupabaseClient.fetch_one("hour_package_templates", "id", package_id_str)
        if not template or (active_only and not template.get("is_active")):
            raise HourPackageNotFoundError(package_id_str)
        return template

    @staticmethod
    def create_template(data: HourPackageTemplateCreate) -> dict[str, Any]:
        row = data.model_dump(mode="json")
        if row.get("total_price") is None:
            row["total_price"] = round(data.hours * data.price_per_hour, 2)

        client = SupabaseClient.get_client()
        response = client.table("hour_package_templates").insert(row).execute()
        if not response.data:
            raise SupabaseClientError("Insert returned no data", code="INSERT_FAILED")

        template = response.data[0]
        logger.info(f"Created hour package {template['id']} ({data.name})")
        return template

    @staticmethod
    def update_template(package_id: str | UUID, data: HourPackageTemplateUpdate) -> dict[str, Any]:
        package_id_str = normalize_uuid(package_id)
        HourPackageService.get_template(package_id_str)

        changes = data.model_dump(mode="json", exclude_unset=True)
        if changes:
            changes["updated_at"] = utc_now_iso()
            client = SupabaseClient.get_client()
            client.table("hour_package_templates").update(changes).eq("id", package_id_str).execute()
            logger.info(f"Updated hour package {package_id_str}: {sorted(changes)}")

        return HourPackageService.get_template(package_id_str)

    @staticmethod
    def deactivate_template(package_id: str | UUID) -> None:
        """Soft delete: existing proformas keep pointing at the template."""
        package_id_str = normalize_uuid(package_id)
        HourPackageService.get_template(package_id_str)

        client = SupabaseClient.get_client()
        client.table("hour_package_templates").update(
            {"is_active": False, "updated_at": utc_now_iso()}
        ).eq("id", package_id_str).execute()
        logger.info(f"Deactivated hour package {package_id_str}")

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    @staticmethod
    def _next_proforma_number() -> str:
        rows = SupabaseClient.fetch_all(
            "invoices", columns="number", filters={"series": settings.PROFORMA_SERIES}
        )
        return next_document_number([row.get("number") for row in rows])

    @staticmethod
    def _insert_numbered_proforma(invoice_row: dict[str, Any]) -> dict[str, Any]:
        """
        Insert a proforma under the next free number in its series.

        A number taken by a concurrent order is rejected by the unique index;
        the number is then re-read and the insert tried again.

        Raises:
            SupabaseClientError: If no number could be claimed or the insert
                returned nothing
        """
        client = SupabaseClient.get_client()

        for attempt in range(1, PROFORMA_NUMBER_ATTEMPTS + 1):
            number = HourPackageService._next_proforma_number()
            try:
                response = (
                    client.table("invoices")
                    .insert({**invoice_row, "number": number})
                    .execute()
                )
            except APIError as e:
                if e.code != UNIQUE_VIOLATION:
                    raise
                logger.warning(
                    f"Proforma number {settings.PROFORMA_SERIES}-{number} already taken "
                    f"(attempt {attempt}/{PROFORMA_NUMBER_ATTEMPTS})"
                )
                continue

            if not response.data:
                raise SupabaseClientError("Insert returned no data", code="INSERT_FAILED")
            return {"number": number, **response.data[0]}

        raise SupabaseClientError(
            f"Could not allocate a {settings.PROFORMA_SERIES} number",
            code="NUMBER_CONFLICT",
            suggestion="Too many concurrent orders; retry the order",
        )

    @staticmethod
    def order_package(package_id: str | UUID, user_id: str | UUID) -> UnifiedInvoice:
        """
        Order an hour package, issuing a pending proforma invoice.

        Args:
            package_id: Active package template
            user_id: Buyer

        Returns:
            The new proforma as a UnifiedInvoice

        Raises:
            HourPackageNotFoundError: If the template is missing or inactive
            UserNotFoundError: If the buyer doesn't exist
            ExchangeRateUnavailableError: If the price can't be converted
        """
        user_id_str = normalize_uuid(user_id)
        template = HourPackageService.get_template(package_id, active_only=True)

        user = SupabaseClient.fetch_user(user_id_str)
        if not user:
            raise UserNotFoundError(user_id_str)

        price = package_price(template)
        source_currency = template.get("currency") or settings.DEFAULT_CURRENCY
        amount = exchange_rates.convert(price, source_currency, settings.INVOICE_CURRENCY)
        vat = calculate_vat(amount, settings.VAT_PERCENTAGE, settings.PRICES_INCLUDE_VAT)

        issue_date = datetime.date.today()
        due_date = issue_date + datetime.timedelta(days=settings.PROFORMA_DUE_DAYS)
        invoice_row = {
            "series": settings.PROFORMA_SERIES,
            "issue_date": issue_date.isoformat(),
            "due_date": due_date.isoformat(),
            "status": "pending",
            "total_amount": vat.total,
            "vat_amount": vat.vat_amount,
            "currency": settings.INVOICE_CURRENCY,
            "payment_method": PROFORMA_PAYMENT_METHOD,
            "payment_status": "pending",
            "user_id": user_id_str,
            "package_id": template["id"],
            "created_at": utc_now_iso(),
        }

        client = SupabaseClient.get_client()
        inserted = HourPackageService._insert_numbered_proforma(invoice_row)
        invoice_id = inserted["id"]
        number = inserted["number"]

        name = " ".join(
            part for part in (user.get("firstName"), user.get("lastName")) if part
        ) or user.get("email") or ""
        client.table("invoice_clients").insert({
            "invoice_id": invoice_id,
            "name": name,
            "email": user.get("email"),
            "phone": user.get("phone"),
            "address": user.get("address"),
            "city": user.get("city"),
            "country": user.get("country"),
            "vat_code": user.get("personalNumber") or user.get("veriffPersonIdNumber"),
            "user_id": user_id_str,
        }).execute()

        logger.info(
            f"Proforma {settings.PROFORMA_SERIES}-{number} for {template.get('name')}: "
            f"{vat.total} {settings.INVOICE_CURRENCY} (user {user_id_str})"
        )
        ActivityLogger.package_ordered(user_id_str, invoice_id, template.get("name") or "")

        invoice = InvoiceService.get_invoice_by_id(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return invoice
