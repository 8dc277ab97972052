# =============================================================================
# core/models/invoice.py - Unified Invoice Schemas
# =============================================================================
# Two kinds of invoice share the invoices table:
# - fiscal: imported from the external invoicing system, linked to a user
#   only through invoice_clients.user_id, lines in invoice_items
# - proforma: hour package orders (payment_method = 'proforma'), linked
#   through invoices.user_id and package_id
#
# Both are normalized to UnifiedInvoice so clients never need to care.
# Fiscal invoices arrive as e-invoice XML, read into ParsedInvoice.
# =============================================================================

from enum import Enum

from pydantic import BaseModel, Field


# Units that mean "flight hours" on an invoice line
HOUR_UNITS = frozenset({"HUR", "HOUR", "H"})


class InvoiceType(str, Enum):
    """Invoice origin."""
    FISCAL = "fiscal"
    PROFORMA = "proforma"


class InvoiceTypeFilter(str, Enum):
    """invoice_type query filter."""
    ALL = "all"
    FISCAL = "fiscal"
    PROFORMA = "proforma"


class PaymentStatus(str, Enum):
    """Payment states a client or admin can set on a proforma."""
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"


class InvoiceClient(BaseModel):
    """Billing party of an invoice (first invoice_clients row)."""
    name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    country: str = ""
    vat_code: str = ""
    user_id: str | None = None
    company_id: str | None = None


class InvoiceItem(BaseModel):
    """One invoice line."""
    line_id: int = 1
    name: str = ""
    description: str | None = None
    quantity: float = 0
    unit: str = ""
    unit_price: float = 0
    total_amount: float = 0
    vat_rate: float = 0

    @property
    def is_hours(self) -> bool:
        return (self.unit or "").upper() in HOUR_UNITS


class InvoicePackage(BaseModel):
    """Hour package a proforma was issued for."""
    name: str = ""
    hours: float = 0
    price_per_hour: float = 0
    validity_days: int | None = None


class UnifiedInvoice(BaseModel):
    """
    An invoice of either kind in a single shape.

    For proforma invoices `status` carries the payment status when one
    is set, and `items` holds one synthetic hour line built from the
    package.
    """

    id: str = Field(..., description="Invoice UUID")
    smartbill_id: str | None = Field(default=None, description="External invoicing system id")
    series: str | None = None
    number: str | None = None
    issue_date: str | None = None
    due_date: str | None = None
    status: str | None = None
    total_amount: float = 0
    vat_amount: float = 0
    currency: str | None = None
    import_date: str | None = None
    created_at: str | None = None
    invoice_type: InvoiceType

    # Payment information (proforma)
    payment_method: str | None = None
    payment_status: str | None = None
    payment_date: str | None = None
    payment_reference: str | None = None

    client: InvoiceClient = Field(default_factory=InvoiceClient)
    items: list[InvoiceItem] = Field(default_factory=list)
    package: InvoicePackage | None = None

    # Metadata
    user_id: str | None = None
    is_ppl: bool = False
    ppl_hours_paid: float = 0
    has_edits: bool = False

    @property
    def owner_id(self) -> str | None:
        """User the invoice belongs to (invoice user for proforma, client user for fiscal)."""
        return self.user_id or self.client.user_id


class InvoiceSummary(BaseModel):
    """Aggregate figures over a user's invoices."""
    total_invoices: int = 0
    total_amount: float = 0
    total_hours: float = 0
    currency: str
    fiscal_count: int = 0
    proforma_count: int = 0
    paid_count: int = 0
    pending_count: int = 0
    overdue_count: int = 0


# =============================================================================
# XML Import
# =============================================================================

class ParsedInvoice(BaseModel):
    """
    A fiscal invoice read from an e-invoice XML (UBL 2.1).

    Also the shape of the corrections an admin may send alongside the
    XML when importing; those are stored as the invoice's edited copy.
    """
    smartbill_id: str = Field(..., min_length=1, description="Full invoice id, e.g. CA0766")
    series: str
    number: str
    issue_date: str
    due_date: str
    currency: str
    total_amount: float = 0
    vat_amount: float = 0
    client: InvoiceClient = Field(default_factory=InvoiceClient)
    items: list[InvoiceItem] = Field(default_factory=list)


class InvoiceImportResult(BaseModel):
    invoice_id: str
    smartbill_id: str
    user_id: str | None = None
    item_count: int = 0
    is_ppl: bool = False
    ppl_tranches_created: int = 0
    has_edits: bool = False
