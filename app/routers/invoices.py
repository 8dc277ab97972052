# =============================================================================
# app/routers/invoices.py - Invoice Endpoints
# =============================================================================
# Single-invoice reads, payment status updates, and fiscal invoice XML
# import (admin). Listing lives under /users/{id}/invoices.
# =============================================================================

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Path, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from app.auth import ADMIN_ROLES, AuthUser, get_current_member, require_roles
from app.dependencies import ensure_self_or_admin, ensure_self_or_manager, read_upload
from app.exceptions import InvoiceNotFoundError
from core.models.invoice import InvoiceImportResult, ParsedInvoice, PaymentStatus, UnifiedInvoice
from core.services.invoice_import_service import InvoiceImportService
from core.services.invoice_service import InvoiceService

logger = logging.getLogger(__name__)

router = APIRouter()

XML_EXTENSIONS = [".xml"]


# =============================================================================
# Request Models
# =============================================================================

class PaymentStatusRequest(BaseModel):
    """New payment state of an invoice."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    payment_status: PaymentStatus = Field(..., examples=["paid"])
    payment_reference: str | None = Field(
        default=None,
        max_length=200,
        description="Bank transfer or card transaction reference",
    )


# =============================================================================
# Endpoints
# =============================================================================

@router.get("/{invoice_id}", response_model=UnifiedInvoice)
async def get_invoice(
    invoice_id: Annotated[UUID, Path(description="Invoice UUID")],
    member: AuthUser = Depends(get_current_member),
):
    """Get a fiscal or proforma invoice. Owner or manager only."""
    invoice = InvoiceService.get_invoice_by_id(invoice_id)
    if invoice is None:
        raise InvoiceNotFoundError(str(invoice_id))

    ensure_self_or_manager(member, invoice.owner_id, "view this invoice")
    return invoice


@router.put("/{invoice_id}/payment-status", response_model=UnifiedInvoice)
async def update_payment_status(
    invoice_id: Annotated[UUID, Path(description="Invoice UUID")],
    request: PaymentStatusRequest,
    member: AuthUser = Depends(get_current_member),
):
    """
    Record the outcome of a payment.

    Owner or admin only. Marking an invoice paid also stamps the payment
    date and sets the invoice status to paid.
    """
    invoice = InvoiceService.get_invoice_by_id(invoice_id)
    if invoice is None:
        raise InvoiceNotFoundError(str(invoice_id))

    ensure_self_or_admin(member, invoice.owner_id, "update this invoice")
    return InvoiceService.update_payment_status(
        invoice_id,
        request.payment_status,
        request.payment_reference,
        actor_id=member.id,
    )


# =============================================================================
# XML Import
# =============================================================================

@router.post("/import", response_model=InvoiceImportResult, status_code=status.HTTP_201_CREATED)
async def import_invoice(
    file: UploadFile = File(..., description="UBL 2.1 e-invoice XML"),
    edits: str | None = Form(
        default=None,
        description="Corrected invoice as JSON (same shape as the parsed invoice)",
    ),
    member: AuthUser = Depends(require_roles(*ADMIN_ROLES)),
):
    """
    Import a fiscal invoice from the invoicing system's XML export.

    Admin roles only. The client is linked to the user with the same
    email. Returns 409 if the invoice (same id, or same series and
    number) is already stored. When `edits` is sent, the corrected
    invoice is stored and flagged has_edits.
    """
    content = await read_upload(file, XML_EXTENSIONS)

    corrected = None
    if edits:
        try:
            corrected = ParsedInvoice.model_validate_json(edits)
        except ValidationError as e:
            raise RequestValidationError(e.errors())

    logger.info(f"Importing invoice XML {file.filename} ({len(content)} bytes)")
    return await run_in_threadpool(
        InvoiceImportService.import_invoice,
        content,
        file.filename or "invoice.xml",
        member.id,
        corrected,
    )


@router.delete("/{invoice_id}")
async def delete_invoice(
    invoice_id: Annotated[UUID, Path(description="Invoice UUID")],
    member: AuthUser = Depends(require_roles(*ADMIN_ROLES)),
):
    """Delete an invoice with its client, lines and PPL tranches. Admin only."""
    InvoiceImportService.delete_invoice(invoice_id, actor_id=member.id)
    return {"invoice_id": str(invoice_id), "message": "Invoice deleted"}
