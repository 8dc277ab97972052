# =============================================================================
# app/routers/reconciliation.py - Data Reconciliation Endpoints
# =============================================================================
# Links legacy invoice clients to user accounts by email. Admin roles only.
# =============================================================================

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from app.auth import ADMIN_ROLES, AuthUser, require_roles
from core.models.reconciliation import ReconciliationReport
from core.services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/invoice-clients", response_model=ReconciliationReport)
async def reconcile_invoice_clients(
    member: AuthUser = Depends(require_roles(*ADMIN_ROLES)),
    dry_run: Annotated[bool, Query(description="Report without writing")] = False,
):
    """
    Link invoice clients without a user_id to the user with the same email.

    Existing links are never changed. Emails shared by several users are
    skipped and reported.
    """
    logger.info(f"Invoice client reconciliation (dry_run={dry_run}) by {member.id}")
    return ReconciliationService.reconcile_invoice_clients(dry_run=dry_run)
