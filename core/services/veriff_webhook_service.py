# =============================================================================
# core/services/veriff_webhook_service.py - Identity Verification Webhooks
# =============================================================================
# Processes callbacks from the verification provider and keeps the user's
# verification columns in step:
#
#   submitted -> veriffStatus=submitted
#   approved  -> identityVerified=true, then person/decision synced from API
#   declined  -> identityVerified=false
#   other     -> veriffStatus=<status or action>
#
# Each callback is recorded in webhook_events through WebhookMonitor so
# failures can be retried and reported.
# =============================================================================

import hashlib
import hmac
import logging
from typing import Any
from uuid import UUID

from lib.supabase_client import SupabaseClient, SupabaseClientError
from lib.utils import normalize_uuid, utc_now_iso
from lib.veriff_client import VeriffApiError, VeriffClient
from core.models.webhook import (
    WebhookEventStatus,
    WebhookEventType,
    WebhookProcessingResult,
    WebhookType,
)
from core.services.activity_logger import ActivityLogger
from core.services.webhook_monitor import WebhookMonitor
from app.config import settings
from app.exceptions import UserNotFoundError

logger = logging.getLogger(__name__)

# Header names the provider has used for the body signature
SIGNATURE_HEADERS = ("x-veriff-signature", "x-hmac-signature", "veriff-signature")

# Error fragments that indicate a transient failure
RETRYABLE_ERROR_MARKERS = (
    "network",
    "timeout",
    "connection",
    "database",
    "temporary",
    "unavailable",
)


# =============================================================================
# Pure helpers
# =============================================================================

def validate_signature(raw_body: bytes, signature: str | None, secret: str | None = None) -> bool:
    """
    Check the HMAC-SHA256 signature of a webhook body.

    Args:
        raw_body: Request body exactly as received
        signature: Hex signature from the request header
        secret: Shared secret (defaults to VERIFF_WEBHOOK_SECRET)

    Returns:
        True only for a present, well-formed, matching signature
    """
    secret = secret if secret is not None else settings.VERIFF_WEBHOOK_SECRET
    if not secret or not signature:
        return False

    try:
        provided = bytes.fromhex(signature.strip())
    except ValueError:
        return False

    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return hmac.compare_digest(expected, provided)


def extract_user_id(payload: dict[str, Any]) -> str | None:
    """The user a callback belongs to: vendorData, else verification.id."""
    verification = payload.get("verification") or {}
    return payload.get("vendorData") or verification.get("vendorData") or verification.get("id")


def validate_payload(payload: Any) -> str | None:
    """
    Check a callback has what processing needs.

    Returns:
        None when valid, otherwise the reason it isn't
    """
    if not isinstance(payload, dict):
        return "Payload must be a JSON object"
    if not payload.get("id"):
        return "Missing session id"
    if not extract_user_id(payload):
        return "Missing user identifier (vendorData)"
    if not (payload.get("action") or payload.get("status")):
        return "Missing action or status"
    return None


def classify(payload: dict[str, Any]) -> WebhookType:
    """Map a callback's action (or status) to a WebhookType."""
    value = (payload.get("action") or payload.get("status") or "").lower()
    try:
        return WebhookType(value)
    except ValueError:
        return WebhookType.UNKNOWN


def is_retryable_error(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in RETRYABLE_ERROR_MARKERS)


def _value(block: dict[str, Any] | None, key: str) -> Any:
    """Read a fullauto field, which is either a scalar or {"value": ...}."""
    field = (block or {}).get(key)
    if isinstance(field, dict):
        return field.get("value") or None
    return field or None


def verification_columns(person: dict[str, Any] | None, decision: dict[str, Any] | None) -> dict[str, Any]:
    """
    users columns filled from synced person and decision data.

    Decision values win over person values; missing values are left out
    so existing data is never blanked.
    """
    decision = decision or {}
    person = person or {}
    decision_person = decision.get("person") or {}
    document = decision.get("document") or {}

    candidates = {
        "veriffPersonGivenName": _value(decision_person, "firstName") or person.get("firstName"),
        "veriffPersonLastName": _value(decision_person, "lastName") or person.get("lastName"),
        "veriffPersonIdNumber": _value(decision_person, "idNumber") or person.get("idNumber"),
        "veriffPersonDateOfBirth": _value(decision_person, "dateOfBirth") or person.get("dateOfBirth"),
        "veriffPersonNationality": _value(decision_person, "nationality") or person.get("nationality"),
        "veriffPersonGender": _value(decision_person, "gender") or person.get("gender"),
        "veriffDocumentType": _value(document, "type"),
        "veriffDocumentNumber": _value(document, "number"),
        "veriffDocumentCountry": _value(document, "country"),
        "veriffDocumentValidFrom": _value(document, "validFrom"),
        "veriffDocumentValidUntil": _value(document, "validUntil"),
        "veriffDecisionScore": decision.get("decisionScore"),
    }
    return {k: v for k, v in candidates.items() if v is not None}


# =============================================================================
# Service
# =============================================================================

class VeriffWebhookService:
    """
    Service for verification callbacks, sessions and status.

    Provides a clean interface between API routes and database.
    """

    @staticmethod
    def _update_user(user_id: str, changes: dict[str, Any]) -> None:
        changes["updatedAt"] = utc_now_iso()
        client = SupabaseClient.get_client()
        client.table("users").update(changes).eq("id", user_id).execute()

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    @staticmethod
    def process(
        payload: dict[str, Any],
        event_id: str | None = None,
        veriff: VeriffClient | None = None,
    ) -> WebhookProcessingResult:
        """
        Apply one verification callback.

        Args:
            payload: Parsed webhook body
            event_id: Existing webhook_events row (retries); a new one is
                recorded when omitted
            veriff: API client used for the post-approval sync

        Returns:
            WebhookProcessingResult; `retryable` is set for transient failures
        """
        webhook_type = classify(payload) if isinstance(payload, dict) else WebhookType.UNKNOWN
        session_id = payload.get("id") if isinstance(payload, dict) else None
        user_id = extract_user_id(payload) if isinstance(payload, dict) else None

        if event_id is None:
            event_id = WebhookMonitor.log_event(
                user_id,
                WebhookEventType.RECEIVED,
                webhook_type,
                session_id,
                WebhookEventStatus.PENDING,
                payload=payload if isinstance(payload, dict) else None,
            )

        problem = validate_payload(payload)
        if problem:
            logger.warning(f"Rejected verification webhook: {problem}")
            WebhookMonitor.mark_processed(event_id, success=False, error=problem)
            return WebhookProcessingResult(
                success=False,
                message="Invalid webhook payload",
                session_id=session_id,
                error=problem,
            )

        action = payload.get("action") or payload.get("status")
        logger.info(f"Processing {webhook_type.value} webhook for user {user_id}, session {session_id}")

        try:
            data = VeriffWebhookService._apply(webhook_type, payload, user_id, session_id, veriff)
        except (SupabaseClientError, VeriffApiError, UserNotFoundError) as e:
            message = getattr(e, "message", str(e))
            retryable = getattr(e, "retryable", False) or is_retryable_error(message)
            logger.error(f"Verification webhook for session {session_id} failed: {message}")
            WebhookMonitor.mark_processed(event_id, success=False, error=message)
            return WebhookProcessingResult(
                success=False,
                message="Webhook processing failed",
                user_id=user_id,
                session_id=session_id,
                action=action,
                error=message,
                retryable=retryable,
            )
        except Exception as e:
            # PostgREST and transport errors surface as library-specific types
            message = str(e)
            logger.exception(f"Unexpected error processing webhook for session {session_id}")
            WebhookMonitor.mark_processed(event_id, success=False, error=message)
            return WebhookProcessingResult(
                success=False,
                message="Webhook processing failed",
                user_id=user_id,
                session_id=session_id,
                action=action,
                error=message,
                retryable=is_retryable_error(message),
            )

        WebhookMonitor.mark_processed(event_id, success=True)
        return WebhookProcessingResult(
            success=True,
            message=f"Processed {webhook_type.value} webhook",
            user_id=user_id,
            session_id=session_id,
            action=action,
            data=data,
        )

    @staticmethod
    def _apply(
        webhook_type: WebhookType,
        payload: dict[str, Any],
        user_id: str,
        session_id: str,
        veriff: VeriffClient | None,
    ) -> dict[str, Any]:
        if not SupabaseClient.fetch_one("users", "id", user_id, columns="id"):
            raise UserNotFoundError(user_id)

        now = utc_now_iso()
        changes: dict[str, Any] = {
            "veriffSessionId": session_id,
            "veriffWebhookData": payload,
            "veriffWebhookReceivedAt": now,
        }
        data: dict[str, Any] = {"webhook_type": webhook_type.value}

        if webhook_type == WebhookType.SUBMITTED:
            changes.update({"veriffStatus": "submitted", "veriffSubmittedAt": now})
            VeriffWebhookService._update_user(user_id, changes)

        elif webhook_type == WebhookType.APPROVED:
            changes.update({
                "veriffStatus": "approved",
                "veriffApprovedAt": now,
                "identityVerified": True,
                "identityVerifiedAt": now,
            })
            VeriffWebhookService._update_user(user_id, changes)
            ActivityLogger.verification_event(user_id, session_id, "approved")

            try:
                VeriffWebhookService.sync_user(user_id, session_id, veriff)
                data["sync"] = "complete"
            except (VeriffApiError, SupabaseClientError) as e:
                # The approval itself is stored; the details can be synced later
                logger.warning(f"Post-approval sync for {user_id} failed: {e}")
                data["sync"] = "webhook_only"

        elif webhook_type == WebhookType.DECLINED:
            changes.update({
                "veriffStatus": "declined",
                "veriffDeclinedAt": now,
                "identityVerified": False,
            })
            VeriffWebhookService._update_user(user_id, changes)
            ActivityLogger.verification_event(user_id, session_id, "declined")

        else:
            changes["veriffStatus"] = payload.get("status") or payload.get("action") or "unknown"
            VeriffWebhookService._update_user(user_id, changes)

        return data

    # -------------------------------------------------------------------------
    # Sessions and sync
    # -------------------------------------------------------------------------

    @staticmethod
    def sync_user(
        user_id: str | UUID,
        session_id: str | None = None,
        veriff: VeriffClient | None = None,
    ) -> dict[str, Any]:
        """
        Pull person and decision data from the API into the user row.

        Args:
            user_id: User to update
            session_id: Session to read (defaults to the stored veriffSessionId)
            veriff: API client

        Returns:
            The columns written

        Raises:
            UserNotFoundError: If the user doesn't exist
            VeriffApiError: If there is no session or the API returned nothing
        """
        user_id_str = normalize_uuid(user_id)
        if session_id is None:
            user = SupabaseClient.fetch_one("users", "id", user_id_str, columns="id, veriffSessionId")
            if not user:
                raise UserNotFoundError(user_id_str)
            session_id = user.get("veriffSessionId")
        if not session_id:
            raise VeriffApiError(f"User {user_id_str} has no verification session")

        veriff = veriff or VeriffClient()
        data = veriff.get_comprehensive_data(session_id)
        if not data["person"] and not data["decision"]:
            raise VeriffApiError(f"No verification data available for session {session_id}")

        columns = verification_columns(data["person"], data["decision"])
        columns["veriffData"] = data
        columns["veriffUpdatedAt"] = utc_now_iso()
        VeriffWebhookService._update_user(user_id_str, columns)

        logger.info(f"Synced verification data for {user_id_str} ({len(columns)} columns)")
        return columns

    @staticmethod
    def create_session(user_id: str | UUID, veriff: VeriffClient | None = None) -> dict[str, Any]:
        """
        Start a verification session for a user.

        Returns:
            {"session_id", "url"}

        Raises:
            UserNotFoundError: If the user doesn't exist
            VeriffApiError: If the provider rejects the request
        """
        user_id_str = normalize_uuid(user_id)
        user = SupabaseClient.fetch_user(user_id_str)
        if not user:
            raise UserNotFoundError(user_id_str)

        veriff = veriff or VeriffClient()
        session = veriff.create_session(
            user_id_str,
            user.get("firstName") or "",
            user.get("lastName") or "",
            user.get("email") or "",
        )

        VeriffWebhookService._update_user(user_id_str, {
            "veriffSessionId": session["id"],
            "veriffSessionUrl": session.get("url"),
            "veriffStatus": "created",
            "veriffCreatedAt": utc_now_iso(),
        })
        ActivityLogger.verification_event(user_id_str, session["id"], "created")

        return {"session_id": session["id"], "url": session.get("url")}

    @staticmethod
    def get_status(user_id: str | UUID) -> dict[str, Any]:
        """
        Stored verification snapshot of a user.

        Raises:
            UserNotFoundError: If the user doesn't exist
        """
        user_id_str = normalize_uuid(user_id)
        user = SupabaseClient.fetch_user(user_id_str)
        if not user:
            raise UserNotFoundError(user_id_str)

        return {
            "user_id": user_id_str,
            "session_id": user.get("veriffSessionId"),
            "status": user.get("veriffStatus"),
            "identity_verified": bool(user.get("identityVerified")),
            "identity_verified_at": user.get("identityVerifiedAt"),
            "person": {
                "given_name": user.get("veriffPersonGivenName"),
                "last_name": user.get("veriffPersonLastName"),
                "id_number": user.get("veriffPersonIdNumber"),
                "date_of_birth": user.get("veriffPersonDateOfBirth"),
                "nationality": user.get("veriffPersonNationality"),
                "gender": user.get("veriffPersonGender"),
            },
            "document": {
                "type": user.get("veriffDocumentType"),
                "number": user.get("veriffDocumentNumber"),
                "country": user.get("veriffDocumentCountry"),
                "valid_until": user.get("veriffDocumentValidUntil"),
            },
            "decision_score": user.get("veriffDecisionScore"),
            "submitted_at": user.get("veriffSubmittedAt"),
            "approved_at": user.get("veriffApprovedAt"),
            "declined_at": user.get("veriffDeclinedAt"),
            "updated_at": user.get("veriffUpdatedAt"),
        }
