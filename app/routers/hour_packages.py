# =============================================================================
# app/routers/hour_packages.py - Hour Package Endpoints
# =============================================================================
# Package templates (manager maintained) and ordering, which issues a
# pending proforma invoice for the caller.
# =============================================================================

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, status
from pydantic import BaseModel, Field

from app.auth import MANAGER_ROLES, AuthUser, get_current_member, require_roles
from core.models.hour_package import HourPackageTemplateCreate, HourPackageTemplateUpdate
from core.models.invoice import UnifiedInvoice
from core.services.hour_package_service import HourPackageService

router = APIRouter()


# =============================================================================
# Request Models
# =============================================================================

class OrderRequest(BaseModel):
    """Package to order."""
    package_id: UUID = Field(..., description="Active hour package template id")


# =============================================================================
# Templates
# =============================================================================

@router.get("/templates")
async def list_templates(
    member: AuthUser = Depends(get_current_member),
    include_inactive: Annotated[bool, Query(description="Managers only")] = False,
):
    """
    List hour package templates.

    Only active templates are returned unless a manager asks for
    include_inactive.
    """
    templates = HourPackageService.list_templates(
        include_inactive=include_inactive and member.is_manager
    )
    return {"templates": templates, "total": len(templates)}


@router.post("/templates", status_code=status.HTTP_201_CREATED)
async def create_template(
    data: HourPackageTemplateCreate,
    member: AuthUser = Depends(require_roles(*MANAGER_ROLES)),
):
    return HourPackageService.create_template(data)


@router.patch("/templates/{package_id}")
async def update_template(
    package_id: Annotated[UUID, Path(description="Template UUID")],
    data: HourPackageTemplateUpdate,
    member: AuthUser = Depends(require_roles(*MANAGER_ROLES)),
):
    return HourPackageService.update_template(package_id, data)


@router.delete("/templates/{package_id}")
async def deactivate_template(
    package_id: Annotated[UUID, Path(description="Template UUID")],
    member: AuthUser = Depends(require_roles(*MANAGER_ROLES)),
):
    """Deactivate a template. Existing orders keep referring to it."""
    HourPackageService.deactivate_template(package_id)
    return {"package_id": str(package_id), "is_active": False}


# =============================================================================
# Orders
# =============================================================================

@router.post("/order", response_model=UnifiedInvoice, status_code=status.HTTP_201_CREATED)
async def order_package(
    request: OrderRequest,
    member: AuthUser = Depends(get_current_member),
):
    """
    Order an hour package for the caller.

    Issues a pending proforma invoice priced in the invoice currency, with
    VAT applied.
    """
    return HourPackageService.order_package(request.package_id, member.id)
