# =============================================================================
# app/routers/ppl_courses.py - PPL Course Endpoints
# =============================================================================
# PPL course tranches detected on fiscal invoices, and how many of their
# hours have been flown.
# =============================================================================

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Path

from app.auth import ADMIN_ROLES, MANAGER_ROLES, AuthUser, get_current_member, require_roles
from app.dependencies import ensure_self_or_manager
from core.services.ppl_course_service import PPLCourseService, summarize_tranches

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/process")
async def process_invoices(
    member: AuthUser = Depends(require_roles(*ADMIN_ROLES)),
):
    """
    Scan fiscal invoices not yet flagged as PPL and store their tranches.

    Admin roles only. Returns how many invoices were checked, how many
    carried PPL lines and how many tranches were created.
    """
    logger.info(f"PPL invoice processing started by {member.id}")
    return PPLCourseService.process_pending_invoices()


@router.get("/{user_id}")
async def get_user_course(
    user_id: Annotated[UUID, Path(description="User UUID")],
    member: AuthUser = Depends(get_current_member),
):
    """A user's PPL tranches with overall course progress."""
    ensure_self_or_manager(member, user_id, "view this course")
    tranches = PPLCourseService.get_user_tranches(user_id)

    return {
        "user_id": str(user_id),
        "tranches": tranches,
        "summary": summarize_tranches(tranches),
    }


@router.post("/{user_id}/usage")
async def update_course_usage(
    user_id: Annotated[UUID, Path(description="User UUID")],
    member: AuthUser = Depends(require_roles(*MANAGER_ROLES)),
):
    """
    Re-allocate the user's flown hours to their tranches, oldest first.

    Manager roles only.
    """
    updates = PPLCourseService.update_course_usage(user_id)
    return {"user_id": str(user_id), "updated": len(updates), "tranches": updates}
