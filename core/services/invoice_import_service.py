# =============================================================================
# core/services/invoice_import_service.py - Fiscal Invoice XML Import
# =============================================================================
# Stores fiscal invoices exported by the invoicing system as UBL 2.1
# e-invoice XML (the RO e-Factura format).
#
# An import writes one invoices row (status "imported"), one
# invoice_clients row and one invoice_items row per line. The client is
# linked to a user by email. PPL course lines create their tranches.
#
# An admin may send corrections with the XML; the corrected invoice is
# what gets stored and the corrections are kept as edited_xml_content
# (which is what marks an invoice as has_edits).
# =============================================================================

import logging
import re
import xml.etree.ElementTree as ET
from typing import Any
from uuid import UUID

from lib.supabase_client import SupabaseClient, SupabaseClientError
from lib.utils import normalize_email, normalize_uuid, utc_now_iso
from core.models.invoice import (
    InvoiceClient,
    InvoiceImportResult,
    InvoiceItem,
    InvoiceType,
    ParsedInvoice,
    UnifiedInvoice,
)
from core.services.activity_logger import ActivityLogger
from core.services.csv_import import DATABASE_ERRORS
from core.services.ppl_course_service import PPLCourseService, is_ppl_course_item
from app.config import settings
from app.exceptions import (
    InvalidInvoiceXmlError,
    InvoiceAlreadyImportedError,
    InvoiceNotFoundError,
)

logger = logging.getLogger(__name__)

IMPORTED_STATUS = "imported"
DEFAULT_SERIES = "FACT"
DEFAULT_LINE_UNIT = "HUR"
DEFAULT_CLIENT_NAME = "Unknown Client"
DEFAULT_CLIENT_COUNTRY = "Romania"

_INVOICE_ROOTS = ("invoice", "factura")


# =============================================================================
# XML Parsing
# =============================================================================
# UBL elements live in the cac/cbc namespaces; lookups match on local name
# so documents with other prefixes (or none) read the same.

def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child(element: ET.Element | None, *path: str) -> ET.Element | None:
    """First descendant following `path`, one local name per level."""
    for name in path:
        if element is None:
            return None
        element = next((c for c in element if _local(c.tag) == name), None)
    return element


def _children(element: ET.Element | None, name: str) -> list[ET.Element]:
    if element is None:
        return []
    return [c for c in element if _local(c.tag) == name]


def _text(element: ET.Element | None, *path: str) -> str | None:
    found = _child(element, *path)
    if found is None or found.text is None:
        return None
    return found.text.strip() or None


def parse_number(value: str | None) -> float:
    """Amount text to float; anything unreadable is 0."""
    if not value:
        return 0.0
    try:
        return float(re.sub(r"[^\d.-]", "", value))
    except ValueError:
        return 0.0


def split_invoice_id(invoice_id: str) -> tuple[str, str]:
    """
    Series and number of a full invoice id.

    Example:
        split_invoice_id("CA0766")  # ("CA", "0766")
    """
    series = re.match(r"^([A-Z]+)", invoice_id)
    number = re.search(r"(\d+)$", invoice_id)
    return (
        series.group(1) if series else DEFAULT_SERIES,
        number.group(1) if number else invoice_id,
    )


def _validate(root: ET.Element) -> list[str]:
    if _local(root.tag).lower() not in _INVOICE_ROOTS:
        return ["No invoice element found in XML"]

    errors = []
    if not _text(root, "ID"):
        errors.append("Invoice number (ID) not found")
    if not _text(root, "IssueDate"):
        errors.append("Invoice date not found")
    if _child(root, "LegalMonetaryTotal") is None:
        errors.append("Invoice total not found")
    if _child(root, "AccountingCustomerParty") is None:
        errors.append("Customer information not found")
    return errors


def _parse_client(party: ET.Element | None) -> InvoiceClient:
    """
    Billing party from AccountingCustomerParty/Party.

    The school's own VAT code and email (COMPANY_VAT_CODE, COMPANY_EMAIL)
    are never taken as the client's.
    """
    own_vat = settings.COMPANY_VAT_CODE.strip().upper()
    own_email = normalize_email(settings.COMPANY_EMAIL)

    vat_candidates = [_text(party, "PartyLegalEntity", "CompanyID")] + [
        _text(scheme, "CompanyID") for scheme in _children(party, "PartyTaxScheme")
    ]
    vat_code = next(
        (code for code in vat_candidates if code and code.upper() != own_vat),
        "",
    )

    email = _text(party, "Contact", "ElectronicMail") or ""
    if own_email and normalize_email(email) == own_email:
        email = ""

    return InvoiceClient(
        name=(
            _text(party, "PartyLegalEntity", "RegistrationName")
            or _text(party, "PartyName", "Name")
            or DEFAULT_CLIENT_NAME
        ),
        email=email,
        phone=_text(party, "Contact", "Telephone") or "",
        vat_code=vat_code,
        address=_text(party, "PostalAddress", "StreetName") or "",
        city=_text(party, "PostalAddress", "CityName") or "",
        country=_text(party, "PostalAddress", "Country", "IdentificationCode") or DEFAULT_CLIENT_COUNTRY,
    )


def _parse_line(line: ET.Element, line_id: int) -> InvoiceItem:
    item = _child(line, "Item")
    quantity = _child(line, "InvoicedQuantity")
    vat_rate = (
        _text(item, "ClassifiedTaxCategory", "Percent")
        or _text(line, "TaxTotal", "TaxSubtotal", "TaxCategory", "Percent")
    )

    return InvoiceItem(
        line_id=line_id,
        name=_text(item, "Name") or _text(item, "Description") or f"Item {line_id}",
        description=_text(item, "Description") or _text(item, "Name"),
        quantity=parse_number(quantity.text if quantity is not None else None),
        unit=(quantity.get("unitCode") if quantity is not None else None) or DEFAULT_LINE_UNIT,
        unit_price=parse_number(_text(line, "Price", "PriceAmount")),
        total_amount=parse_number(_text(line, "LineExtensionAmount")),
        vat_rate=parse_number(vat_rate) if vat_rate else settings.VAT_PERCENTAGE,
    )


def parse_invoice_xml(content: bytes | str, filename: str = "invoice.xml") -> ParsedInvoice:
    """
    Read a UBL 2.1 invoice.

    Args:
        content: The XML document
        filename: Original filename, for error messages

    Returns:
        ParsedInvoice; due date defaults to the issue date, currency to
        INVOICE_CURRENCY and line VAT to VAT_PERCENTAGE

    Raises:
        InvalidInvoiceXmlError: If the document is empty, malformed, or
            lacks the id, issue date, totals or customer
    """
    if not content or not content.strip():
        raise InvalidInvoiceXmlError(filename, ["XML content is empty"])

    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise InvalidInvoiceXmlError(filename, [f"XML parsing error: {e}"])

    errors = _validate(root)
    if errors:
        raise InvalidInvoiceXmlError(filename, errors)

    full_id = _text(root, "ID")
    series, number = split_invoice_id(full_id)
    issue_date = _text(root, "IssueDate")

    return ParsedInvoice(
        smartbill_id=full_id,
        series=series,
        number=number,
        issue_date=issue_date,
        due_date=_text(root, "DueDate") or issue_date,
        currency=_text(root, "DocumentCurrencyCode") or settings.INVOICE_CURRENCY,
        total_amount=parse_number(_text(root, "LegalMonetaryTotal", "PayableAmount")),
        vat_amount=parse_number(_text(root, "TaxTotal", "TaxAmount")),
        client=_parse_client(_child(root, "AccountingCustomerParty", "Party")),
        items=[
            _parse_line(line, index)
            for index, line in enumerate(_children(root, "InvoiceLine"), start=1)
        ],
    )


# =============================================================================
# Import Service
# =============================================================================

class InvoiceImportService:
    """
    Service for storing imported fiscal invoices.

    Provides a clean interface between API routes and database.
    """

    @staticmethod
    def find_existing(invoice: ParsedInvoice) -> dict[str, Any] | None:
        """Stored invoice with the same full id, or the same series and number."""
        existing = SupabaseClient.fetch_one(
            "invoices", "smartbill_id", invoice.smartbill_id, columns="id"
        )
        if existing:
            return existing

        same_number = SupabaseClient.fetch_all(
            "invoices", columns="id", filters={"series": invoice.series, "number": invoice.number}
        )
        return same_number[0] if same_number else None

    @staticmethod
    def find_user_id(email: str | None) -> str | None:
        """Id of the user registered with this email, if any."""
        email = normalize_email(email)
        if not email:
            return None
        user = SupabaseClient.fetch_one("users", "email", email, columns="id")
        return str(user["id"]) if user else None

    @staticmethod
    def import_invoice(
        content: bytes,
        filename: str,
        actor_id: str | UUID,
        edits: ParsedInvoice | None = None,
    ) -> InvoiceImportResult:
        """
        Store one XML invoice.

        Args:
            content: The XML document
            filename: Original filename, for error messages
            actor_id: Admin performing the import
            edits: Corrected invoice to store instead of the parsed one

        Returns:
            InvoiceImportResult

        Raises:
            InvalidInvoiceXmlError: If the XML can't be read
            InvoiceAlreadyImportedError: If the invoice is already stored
            SupabaseClientError: If a write fails (nothing is left behind)
        """
        parsed = parse_invoice_xml(content, filename)
        invoice = edits or parsed

        existing = InvoiceImportService.find_existing(invoice)
        if existing:
            raise InvoiceAlreadyImportedError(invoice.smartbill_id, str(existing["id"]))

        user_id = InvoiceImportService.find_user_id(invoice.client.email)
        xml_text = content.decode("utf-8", errors="replace") if isinstance(content, bytes) else content

        client = SupabaseClient.get_client()
        response = client.table("invoices").insert({
            "smartbill_id": invoice.smartbill_id,
            "series": invoice.series,
            "number": invoice.number,
            "issue_date": invoice.issue_date,
            "due_date": invoice.due_date,
            "status": IMPORTED_STATUS,
            "total_amount": invoice.total_amount,
            "vat_amount": invoice.vat_amount,
            "currency": invoice.currency,
            "import_date": utc_now_iso(),
            "xml_content": xml_text,
            "edited_xml_content": edits.model_dump_json() if edits else None,
        }).execute()
        if not response.data:
            raise SupabaseClientError("Insert returned no data", code="INSERT_FAILED")
        invoice_id = str(response.data[0]["id"])

        try:
            client.table("invoice_clients").insert({
                **invoice.client.model_dump(exclude={"user_id", "company_id"}),
                "invoice_id": invoice_id,
                "user_id": user_id,
            }).execute()
            if invoice.items:
                client.table("invoice_items").insert([
                    {**item.model_dump(), "invoice_id": invoice_id} for item in invoice.items
                ]).execute()
        except DATABASE_ERRORS:
            logger.error(f"Import of {invoice.smartbill_id} failed after insert; removing invoice {invoice_id}")
            InvoiceImportService._remove(invoice_id)
            raise

        stored = UnifiedInvoice(
            id=invoice_id,
            invoice_type=InvoiceType.FISCAL,
            smartbill_id=invoice.smartbill_id,
            issue_date=invoice.issue_date,
            currency=invoice.currency,
            client=invoice.client.model_copy(update={"user_id": user_id}),
            items=invoice.items,
        )
        is_ppl = any(is_ppl_course_item(item) for item in invoice.items)
        tranches = PPLCourseService.process_invoice(stored) if is_ppl else 0

        logger.info(
            f"Imported invoice {invoice.smartbill_id} as {invoice_id} "
            f"({len(invoice.items)} lines, user {user_id or 'unmatched'})"
        )
        ActivityLogger.log(
            actor_id,
            "INVOICE_IMPORTED",
            "invoice",
            invoice_id,
            f"Imported invoice {invoice.smartbill_id} from {filename}",
            {"smartbill_id": invoice.smartbill_id, "has_edits": edits is not None},
        )

        return InvoiceImportResult(
            invoice_id=invoice_id,
            smartbill_id=invoice.smartbill_id,
            user_id=user_id,
            item_count=len(invoice.items),
            is_ppl=is_ppl,
            ppl_tranches_created=tranches,
            has_edits=edits is not None,
        )

    @staticmethod
    def _remove(invoice_id: str) -> None:
        client = SupabaseClient.get_client()
        client.table("ppl_course_tranches").delete().eq("invoice_id", invoice_id).execute()
        client.table("invoice_items").delete().eq("invoice_id", invoice_id).execute()
        client.table("invoice_clients").delete().eq("invoice_id", invoice_id).execute()
        client.table("invoices").delete().eq("id", invoice_id).execute()

    @staticmethod
    def delete_invoice(invoice_id: str | UUID, actor_id: str | UUID) -> None:
        """
        Delete an invoice with its client, lines and PPL tranches.

        Raises:
            InvoiceNotFoundError: If the invoice doesn't exist
        """
        invoice_id_str = normalize_uuid(invoice_id)
        invoice = SupabaseClient.fetch_one("invoices", "id", invoice_id_str, columns="id, smartbill_id")
        if not invoice:
            raise InvoiceNotFoundError(invoice_id_str)

        InvoiceImportService._remove(invoice_id_str)

        logger.info(f"Deleted invoice {invoice_id_str} ({invoice.get('smartbill_id')})")
        ActivityLogger.log(
            actor_id,
            "INVOICE_DELETED",
            "invoice",
            invoice_id_str,
            f"Deleted invoice {invoice.get('smartbill_id') or invoice_id_str}",
        )
