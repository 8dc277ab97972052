# =============================================================================
# app/routers/veriff.py - Identity Verification Endpoints
# =============================================================================
# Provider callbacks plus verification session management.
#
# The webhook endpoint is unauthenticated; requests are trusted only after
# their HMAC signature checks out. Its status codes drive the provider's
# own retry logic:
#   200 ok / error  -> delivered, don't resend
#   202 retry       -> transient failure, resend later
#   400 / 401       -> missing or invalid signature
# =============================================================================

import json
import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Path, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from app.auth import ADMIN_ROLES, AuthUser, get_current_member, require_roles
from app.dependencies import ensure_self_or_manager
from core.services.veriff_webhook_service import (
    SIGNATURE_HEADERS,
    VeriffWebhookService,
    validate_signature,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Webhook
# =============================================================================

@router.post("/webhook")
async def receive_webhook(request: Request):
    """
    Receive a verification decision from the provider.

    The signature is read from x-veriff-signature, x-hmac-signature or
    veriff-signature and checked against the raw request body.
    """
    raw_body = await request.body()

    signature = next(
        (request.headers[name] for name in SIGNATURE_HEADERS if name in request.headers),
        None,
    )
    if not signature:
        logger.warning("Verification webhook without signature header")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing signature")

    if not validate_signature(raw_body, signature):
        logger.warning("Verification webhook with invalid signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        payload = json.loads(raw_body)
    except ValueError as e:
        # Malformed bodies will never parse, so tell the provider not to resend
        logger.error(f"Unparseable verification webhook body: {e}")
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "error", "message": "Invalid JSON body"},
        )

    # Processing talks to the database and, on approval, the provider API
    result = await run_in_threadpool(VeriffWebhookService.process, payload)

    if result.success:
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "ok", "message": result.message, "session_id": result.session_id},
        )
    if result.retryable:
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={"status": "retry", "message": result.message, "error": result.error},
        )
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={"status": "error", "message": result.message, "error": result.error},
    )


# =============================================================================
# Sessions and Status
# =============================================================================

@router.get("/status/{user_id}")
async def get_verification_status(
    user_id: Annotated[UUID, Path(description="User UUID")],
    member: AuthUser = Depends(get_current_member),
):
    """Stored verification snapshot of a user. Self or manager only."""
    ensure_self_or_manager(member, user_id, "view this verification")
    return VeriffWebhookService.get_status(user_id)


@router.post("/sessions", status_code=status.HTTP_201_CREATED)
async def create_verification_session(
    member: AuthUser = Depends(get_current_member),
):
    """
    Start identity verification for the caller.

    Returns the provider URL the user should be sent to.
    """
    return await run_in_threadpool(VeriffWebhookService.create_session, member.id)


@router.post("/sync/{user_id}")
async def sync_verification(
    user_id: Annotated[UUID, Path(description="User UUID")],
    member: AuthUser = Depends(require_roles(*ADMIN_ROLES)),
):
    """
    Re-read person and decision data from the provider.

    Uses the user's stored session. Admin roles only.
    """
    columns = await run_in_threadpool(VeriffWebhookService.sync_user, user_id)
    return {"user_id": str(user_id), "synced_fields": sorted(columns)}
