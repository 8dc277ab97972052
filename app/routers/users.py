# =============================================================================
# app/routers/users.py - User Management Endpoints
# =============================================================================
# Profiles, roles, CSV import and per-user invoice views.
# All endpoints require authentication.
# =============================================================================

import datetime
import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, Path, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import StreamingResponse

from app.auth import ADMIN_ROLES, MANAGER_ROLES, AuthUser, get_current_member, require_roles
from app.dependencies import CSV_EXTENSIONS, ensure_self_or_manager, read_upload
from core.models.invoice import InvoiceSummary, InvoiceTypeFilter, UnifiedInvoice
from core.models.user import RoleAssignment, UserUpdate
from core.services.invoice_service import InvoiceService
from core.services.user_service import UserService

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Users
# =============================================================================

@router.get("")
async def list_users(
    member: AuthUser = Depends(require_roles(*MANAGER_ROLES)),
    page: Annotated[int, Query(ge=1, description="Page number")] = 1,
    page_size: Annotated[int, Query(ge=1, le=100, description="Items per page")] = 20,
    search: Annotated[str | None, Query(description="Match on name or email")] = None,
    role: Annotated[str | None, Query(description="Only users holding this role")] = None,
    status: Annotated[str | None, Query(description="Account status")] = None,
):
    """
    List users with their role names.

    Manager roles only.
    """
    users, total = UserService.list_users(
        page=page,
        page_size=page_size,
        search=search,
        role=role,
        status=status,
    )

    return {
        "users": users,
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.post("/import")
async def import_users(
    file: UploadFile = File(..., description="CSV file with one user per row"),
    member: AuthUser = Depends(require_roles(*ADMIN_ROLES)),
):
    """
    Create or update users from a CSV file.

    Admin roles only. Rows match existing users by email and overwrite
    their profile; new emails get an auth account, a profile and the
    row's role (PILOT when blank).
    """
    content = await read_upload(file, CSV_EXTENSIONS)

    logger.info(f"Importing users from {file.filename} ({len(content)} bytes)")
    return await run_in_threadpool(
        UserService.import_csv, content, file.filename or "upload.csv", member.id
    )


@router.get("/import/template")
async def user_import_template(
    member: AuthUser = Depends(require_roles(*ADMIN_ROLES)),
):
    """Download an example user import CSV."""
    return StreamingResponse(
        iter([UserService.import_template()]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=users_import_template.csv"},
    )


@router.get("/{user_id}")
async def get_user(
    user_id: Annotated[UUID, Path(description="User UUID")],
    member: AuthUser = Depends(get_current_member),
):
    """Get a user profile. Members can read their own, managers anyone's."""
    ensure_self_or_manager(member, user_id, "view this user")
    return UserService.get_user(user_id)


@router.patch("/{user_id}")
async def update_user(
    user_id: Annotated[UUID, Path(description="User UUID")],
    update: UserUpdate,
    member: AuthUser = Depends(get_current_member),
):
    """
    Update profile fields.

    Members may update their own contact details. Only managers may
    change the account status.
    """
    ensure_self_or_manager(member, user_id, "update this user")
    return UserService.update_user(
        user_id,
        update,
        actor_id=member.id,
        actor_is_manager=member.is_manager,
    )


@router.put("/{user_id}/roles")
async def set_user_roles(
    user_id: Annotated[UUID, Path(description="User UUID")],
    assignment: RoleAssignment,
    member: AuthUser = Depends(require_roles(*ADMIN_ROLES)),
):
    """
    Replace a user's role set.

    Admin roles only. Unknown role names are rejected with 400.
    """
    roles = UserService.set_roles(user_id, assignment.roles, actor_id=member.id)
    return {"user_id": str(user_id), "roles": roles}


# =============================================================================
# Invoices
# =============================================================================

@router.get("/{user_id}/invoices", response_model=list[UnifiedInvoice])
async def list_user_invoices(
    user_id: Annotated[UUID, Path(description="User UUID")],
    member: AuthUser = Depends(get_current_member),
    start_date: Annotated[datetime.date | None, Query(description="Issued on or after")] = None,
    end_date: Annotated[datetime.date | None, Query(description="Issued on or before")] = None,
    status: Annotated[str | None, Query(description="Invoice status, or 'all'")] = None,
    search: Annotated[str | None, Query(description="Series, number, client name or email")] = None,
    invoice_type: Annotated[InvoiceTypeFilter, Query(description="all, fiscal or proforma")] = InvoiceTypeFilter.ALL,
):
    """
    Every fiscal and proforma invoice of a user, newest first.
    """
    ensure_self_or_manager(member, user_id, "view these invoices")
    return InvoiceService.get_user_invoices(
        user_id,
        start_date=start_date,
        end_date=end_date,
        status=status,
        search=search,
        invoice_type=invoice_type,
    )


@router.get("/{user_id}/invoices/summary", response_model=InvoiceSummary)
async def get_user_invoice_summary(
    user_id: Annotated[UUID, Path(description="User UUID")],
    member: AuthUser = Depends(get_current_member),
    start_date: Annotated[datetime.date | None, Query(description="Issued on or after")] = None,
    end_date: Annotated[datetime.date | None, Query(description="Issued on or before")] = None,
):
    """Totals, hours and paid/pending/overdue counts over a user's invoices."""
    ensure_self_or_manager(member, user_id, "view these invoices")
    return InvoiceService.get_user_invoice_summary(user_id, start_date, end_date)
