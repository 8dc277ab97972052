# =============================================================================
# core/models/reconciliation.py - Invoice Client Reconciliation Schemas
# =============================================================================

from pydantic import BaseModel, Field


class UnlinkedClientGroup(BaseModel):
    """Invoice client rows sharing an email that matches no user."""
    email: str
    name: str = ""
    vat_code: str = ""
    row_count: int = 0


class LinkPlan(BaseModel):
    """
    What a reconciliation run would do.

    links maps invoice_clients.id -> users.id.
    """
    links: dict[str, str] = Field(default_factory=dict)
    already_linked: int = 0
    unlinked: list[UnlinkedClientGroup] = Field(default_factory=list)
    ambiguous_emails: list[str] = Field(default_factory=list)


class ReconciliationReport(BaseModel):
    total_clients: int = 0
    already_linked: int = 0
    linked: int = 0
    errors: int = 0
    dry_run: bool = False
    unlinked: list[UnlinkedClientGroup] = Field(default_factory=list)
