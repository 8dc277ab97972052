# =============================================================================
# app/routers/usage.py - Hour Usage Endpoints
# =============================================================================
# Purchased vs. flown hours: a per-user ledger, per-package usage and a
# per-client overview.
# =============================================================================

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Path

from app.auth import AuthUser, get_current_member
from app.dependencies import ensure_self_or_manager
from core.models.ledger import ClientHours, Ledger, PackageUsageReport
from core.services.ledger_service import LedgerService

router = APIRouter()


# =============================================================================
# Endpoints
# =============================================================================

# Declared before /{user_id}/ledger so "client-hours" is never read as a user id
@router.get("/client-hours", response_model=list[ClientHours])
async def get_client_hours(
    member: AuthUser = Depends(get_current_member),
):
    """
    Purchased and flown hours per client.

    Managers see every client, pilots and students see themselves,
    instructors see the pilots they have flown with.
    """
    return LedgerService.get_client_hours(member)


@router.get("/{user_id}/ledger", response_model=Ledger)
async def get_ledger(
    user_id: Annotated[UUID, Path(description="User UUID")],
    member: AuthUser = Depends(get_current_member),
):
    """
    Chronological hour ledger of a user.

    Hour purchases add to the balance, flights the user pays for deduct
    from it. Self or manager only.
    """
    ensure_self_or_manager(member, user_id, "view this ledger")
    return LedgerService.get_ledger(user_id)


@router.get("/{user_id}/packages", response_model=PackageUsageReport)
async def get_package_usage(
    user_id: Annotated[UUID, Path(description="User UUID")],
    member: AuthUser = Depends(get_current_member),
):
    """
    How a user's purchased hour packages have been used.

    Flight hours the user pays for are charged to the oldest package
    with hours left. Once all are used up, the newest package goes
    negative and is reported as "overdrawn". Self or manager only.
    """
    ensure_self_or_manager(member, user_id, "view this usage")
    return LedgerService.get_package_usage(user_id)
