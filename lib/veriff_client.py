# =============================================================================
# lib/veriff_client.py - Identity Verification API Client
# =============================================================================
# Thin httpx client for the Veriff public API:
# - Session creation (POST /sessions)
# - Person data (GET /sessions/{id}/person)
# - Decision data (fullauto endpoint, falling back to /decision)
#
# Every request is signed:
#   X-AUTH-CLIENT:    API key
#   X-HMAC-SIGNATURE: hex(HMAC-SHA256(secret, payload))
# where payload is the JSON body for POST and the session id for GET.
#
# Transient failures (transport errors, 5xx, 429) are retried with
# exponential backoff; other 4xx responses fail immediately.
#
# Usage:
#   from lib.veriff_client import VeriffClient
#   data = VeriffClient().get_comprehensive_data(session_id)
# =============================================================================

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from typing import Any, Callable, TypeVar

import httpx

from app.config import settings
from lib.utils import ApplicationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Provider statuses worth retrying
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class VeriffApiError(ApplicationError):
    """
    Error talking to the verification provider.

    Attributes:
        status_code: HTTP status of the failed response (None for
            transport errors and configuration problems)
        retryable: Whether repeating the request may succeed
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            message,
            code="VERIFF_API_ERROR",
            suggestion=(
                "The provider is temporarily unavailable; try again later"
                if retryable
                else "Check VERIFF_API_KEY, VERIFF_API_SECRET and the session id"
            ),
            details=details,
        )
        self.status_code = status_code
        self.retryable = retryable


def sign_payload(secret: str, payload: str | bytes) -> str:
    """
    Compute the hex HMAC-SHA256 signature of a payload.

    Args:
        secret: Shared secret
        payload: Text or raw bytes to sign

    Returns:
        Lowercase hex digest
    """
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number `attempt` (0-based): base * 2**attempt, capped."""
    return min(base_delay * (2 ** attempt), max_delay)


class VeriffClient:
    """
    Signed, retrying client for the verification provider.

    Credentials and retry policy default to the application settings;
    tests pass an httpx.Client with a MockTransport and a no-op sleep.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        api_secret: str | None = None,
        max_retries: int | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = (base_url or settings.VERIFF_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.VERIFF_API_KEY
        self.api_secret = api_secret if api_secret is not None else settings.VERIFF_API_SECRET
        self.max_retries = max_retries if max_retries is not None else settings.VERIFF_MAX_RETRIES
        self.base_delay = base_delay if base_delay is not None else settings.VERIFF_RETRY_BASE_DELAY
        self.max_delay = max_delay if max_delay is not None else settings.VERIFF_RETRY_MAX_DELAY
        self._http = http_client or httpx.Client(timeout=30.0)
        self._sleep = sleep

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _with_retry(self, operation: Callable[[], T], operation_name: str) -> T:
        """Run `operation`, retrying retryable VeriffApiErrors with backoff."""
        attempts = self.max_retries + 1

        for attempt in range(attempts):
            try:
                return operation()
            except VeriffApiError as e:
                if not e.retryable or attempt == attempts - 1:
                    raise
                delay = backoff_delay(attempt, self.base_delay, self.max_delay)
                logger.warning(
                    f"{operation_name} failed (attempt {attempt + 1}/{attempts}): "
                    f"{e.message}. Retrying in {delay:.1f}s"
                )
                self._sleep(delay)

        # range(attempts) always returns or raises; kept for type checkers
        raise VeriffApiError(f"{operation_name} failed")

    def _request(
        self,
        method: str,
        endpoint: str,
        body: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Make one signed request and decode the JSON response.

        Raises:
            VeriffApiError: On missing credentials, transport errors or
                non-2xx responses
        """
        if not self.api_key or not self.api_secret:
            raise VeriffApiError(
                "Veriff API credentials not configured",
                retryable=False,
            )

        headers = {
            "Content-Type": "application/json",
            "X-AUTH-CLIENT": self.api_key,
        }
        content: str | None = None

        if method == "POST" and body is not None:
            content = json.dumps(body, separators=(",", ":"))
            headers["X-HMAC-SIGNATURE"] = sign_payload(self.api_secret, content)
        elif session_id:
            headers["X-HMAC-SIGNATURE"] = sign_payload(self.api_secret, session_id)

        url = f"{self.base_url}{endpoint}"
        logger.debug(
            f"{method} {url} (signature {headers.get('X-HMAC-SIGNATURE', '')[:10]}...)"
        )

        try:
            response = self._http.request(method, url, headers=headers, content=content)
        except httpx.TransportError as e:
            raise VeriffApiError(
                f"Network error calling Veriff: {e}",
                retryable=True,
                details={"endpoint": endpoint},
            )

        if response.status_code >= 400:
            message = f"HTTP {response.status_code}"
            try:
                message = response.json().get("message") or message
            except ValueError:
                pass
            raise VeriffApiError(
                f"Veriff API request failed: {message}",
                status_code=response.status_code,
                retryable=response.status_code in RETRYABLE_STATUS_CODES,
                details={"endpoint": endpoint},
            )

        if not response.content:
            return {}

        try:
            return response.json()
        except ValueError as e:
            raise VeriffApiError(f"Failed to parse Veriff API response: {e}")

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def create_session(
        self,
        user_id: str,
        first_name: str,
        last_name: str,
        email: str,
        callback_url: str | None = None,
    ) -> dict[str, Any]:
        """
        Create a verification session for a user.

        The user id travels as vendorData so webhooks can be matched back.

        Returns:
            Session dict with at least "id" and "url"
        """
        payload = {
            "verification": {
                "callback": callback_url or settings.VERIFF_CALLBACK_URL,
                "person": {
                    "firstName": first_name,
                    "lastName": last_name,
                    "email": email,
                },
                "vendorData": user_id,
            }
        }

        def operation() -> dict[str, Any]:
            response = self._request("POST", "/sessions", body=payload)
            session = response.get("verification") or response.get("session")
            if not session or not session.get("id"):
                raise VeriffApiError("Invalid session response from Veriff API")
            return session

        session = self._with_retry(operation, "Create Veriff session")
        logger.info(f"Created Veriff session {session['id']} for user {user_id}")
        return session

    def get_person(self, session_id: str) -> dict[str, Any] | None:
        """Fetch the person extracted for a session (None if not available yet)."""

        def operation() -> dict[str, Any] | None:
            response = self._request(
                "GET", f"/sessions/{session_id}/person", session_id=session_id
            )
            if response.get("status") != "success" or not response.get("person"):
                logger.warning(f"No person data available for session {session_id}")
                return None
            return response["person"]

        return self._with_retry(operation, "Get person data")

    def get_decision(self, session_id: str) -> dict[str, Any] | None:
        """
        Fetch the verification decision for a session.

        Tries the fullauto endpoint first; if it fails, reads the standard
        decision endpoint and reshapes it to the fullauto structure.
        """

        def operation() -> dict[str, Any] | None:
            try:
                return self._request(
                    "GET",
                    f"/sessions/{session_id}/decision/fullauto?version=1.0.0",
                    session_id=session_id,
                )
            except VeriffApiError as e:
                logger.warning(f"Fullauto decision failed, using standard endpoint: {e.message}")

            response = self._request(
                "GET", f"/sessions/{session_id}/decision", session_id=session_id
            )
            verification = response.get("verification")
            if response.get("status") != "success" or not verification:
                logger.warning(f"No decision data available for session {session_id}")
                return None
            return reshape_standard_decision(verification)

        return self._with_retry(operation, "Get decision data")

    def get_comprehensive_data(self, session_id: str) -> dict[str, Any]:
        """
        Fetch person and decision data; either may be None.

        Failures of one part are logged and do not prevent the other.
        """
        result: dict[str, Any] = {"person": None, "decision": None}

        try:
            result["person"] = self.get_person(session_id)
        except VeriffApiError as e:
            logger.error(f"Failed to fetch person data for {session_id}: {e.message}")

        try:
            result["decision"] = self.get_decision(session_id)
        except VeriffApiError as e:
            logger.error(f"Failed to fetch decision data for {session_id}: {e.message}")

        return result


def reshape_standard_decision(verification: dict[str, Any]) -> dict[str, Any]:
    """Convert a standard /decision verification block to the fullauto shape."""
    person = verification.get("person") or {}
    document = verification.get("document") or {}

    def field(value: Any) -> dict[str, Any]:
        return {"confidenceCategory": "high", "value": value or "", "sources": []}

    return {
        "decisionScore": verification.get("decisionScore") or 0,
        "decision": verification.get("status") or "unknown",
        "person": {
            "firstName": field(person.get("firstName") or person.get("givenName")),
            "lastName": field(person.get("lastName")),
            "dateOfBirth": field(person.get("dateOfBirth")),
            "gender": field(person.get("gender")),
            "idNumber": field(person.get("idNumber")),
            "nationality": field(person.get("nationality")),
        },
        "document": {
            "number": field(document.get("number")),
            "type": {"value": document.get("type") or ""},
            "country": {"value": document.get("country") or ""},
            "validFrom": field(document.get("validFrom")),
            "validUntil": field(document.get("validUntil")),
        },
        "insights": [],
    }
