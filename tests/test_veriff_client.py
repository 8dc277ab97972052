# =============================================================================
# tests/test_veriff_client.py - Verification API Client Tests
# =============================================================================
# Request signing, backoff, and the retry policy. HTTP is served by
# httpx.MockTransport; sleeps are recorded instead of waited.
#
# Run with: pytest tests/test_veriff_client.py -v
# =============================================================================

import json

import httpx
import pytest

from lib.veriff_client import (
    VeriffApiError,
    VeriffClient,
    backoff_delay,
    reshape_standard_decision,
    sign_payload,
)


def _client(handler, sleeps=None, **kwargs):
    """VeriffClient over a mock transport with recorded sleeps."""
    recorded = sleeps if sleeps is not None else []
    options = {
        "base_url": "https://veriff.test/v1",
        "api_key": "key",
        "api_secret": "secret",
        "max_retries": 3,
        "base_delay": 1.0,
        "max_delay": 10.0,
    }
    options.update(kwargs)
    return VeriffClient(
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        sleep=recorded.append,
        **options,
    )


def _session_response(request):
    return httpx.Response(
        201,
        json={"status": "success", "verification": {"id": "sess-1", "url": "https://magic.test/sess-1"}},
    )


# =============================================================================
# Helper Tests
# =============================================================================

class TestSigning:
    """Tests for request signatures."""

    def test_known_digest(self):
        # HMAC-SHA256("key", "The quick brown fox jumps over the lazy dog")
        signature = sign_payload("key", "The quick brown fox jumps over the lazy dog")

        assert signature == "f7bc83f430538424b13298e6aa6fb143ef4d59a14946175997479dbc2d1a3cd8"

    def test_bytes_and_text_agree(self):
        assert sign_payload("s", "abc") == sign_payload("s", b"abc")


class TestBackoffDelay:
    @pytest.mark.parametrize("attempt, expected", [(0, 1.0), (1, 2.0), (2, 4.0), (3, 8.0), (4, 10.0)])
    def test_doubles_and_caps(self, attempt, expected):
        assert backoff_delay(attempt, 1.0, 10.0) == expected


# =============================================================================
# Request Tests
# =============================================================================

class TestCreateSession:
    """Tests for session creation."""

    def test_signed_post(self):
        """POST bodies are signed and the user id travels as vendorData."""
        # Arrange
        seen = []

        def handler(request):
            seen.append(request)
            return _session_response(request)

        client = _client(handler)

        # Act
        session = client.create_session("user-1", "Ion", "Popescu", "ion@example.com")

        # Assert
        assert session["id"] == "sess-1"
        request = seen[0]
        assert request.url.path == "/v1/sessions"
        assert request.headers["X-AUTH-CLIENT"] == "key"
        assert request.headers["X-HMAC-SIGNATURE"] == sign_payload("secret", request.content)
        body = json.loads(request.content)
        assert body["verification"]["vendorData"] == "user-1"
        assert body["verification"]["person"]["email"] == "ion@example.com"

    def test_missing_credentials(self):
        client = _client(_session_response, api_key="", api_secret="")

        with pytest.raises(VeriffApiError) as exc_info:
            client.create_session("user-1", "Ion", "Popescu", "ion@example.com")

        assert exc_info.value.retryable is False

    def test_invalid_session_response(self):
        client = _client(lambda request: httpx.Response(200, json={"status": "success"}))

        with pytest.raises(VeriffApiError):
            client.create_session("user-1", "Ion", "Popescu", "ion@example.com")


class TestRetryPolicy:
    """Tests for retrying transient failures."""

    def test_retries_server_errors(self):
        """5xx responses are retried with exponential backoff."""
        # Arrange
        responses = [httpx.Response(503), httpx.Response(502)]
        sleeps = []

        def handler(request):
            return responses.pop(0) if responses else _session_response(request)

        client = _client(handler, sleeps=sleeps)

        # Act
        session = client.create_session("user-1", "Ion", "Popescu", "ion@example.com")

        # Assert
        assert session["id"] == "sess-1"
        assert sleeps == [1.0, 2.0]

    def test_client_errors_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={"message": "Invalid vendorData"})

        client = _client(handler)

        with pytest.raises(VeriffApiError) as exc_info:
            client.create_session("user-1", "Ion", "Popescu", "ion@example.com")

        assert len(calls) == 1
        assert exc_info.value.status_code == 400
        assert "Invalid vendorData" in exc_info.value.message

    def test_gives_up_after_max_retries(self):
        calls = []
        sleeps = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        client = _client(handler, sleeps=sleeps, max_retries=2)

        with pytest.raises(VeriffApiError) as exc_info:
            client.create_session("user-1", "Ion", "Popescu", "ion@example.com")

        assert len(calls) == 3
        assert len(sleeps) == 2
        assert exc_info.value.retryable is True

    def test_transport_errors_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return _session_response(request)

        client = _client(handler)

        assert client.create_session("user-1", "Ion", "Popescu", "ion@example.com")["id"] == "sess-1"
        assert len(attempts) == 2


# =============================================================================
# Decision Tests
# =============================================================================

class TestGetDecision:
    """Tests for reading a verification decision."""

    def test_get_requests_sign_session_id(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"decisionScore": 0.9, "person": {}})

        client = _client(handler)
        client.get_decision("sess-1")

        assert seen[0].headers["X-HMAC-SIGNATURE"] == sign_payload("secret", "sess-1")
        assert seen[0].url.path == "/v1/sessions/sess-1/decision/fullauto"

    def test_falls_back_to_standard_endpoint(self):
        def handler(request):
            if request.url.path.endswith("/fullauto"):
                return httpx.Response(404)
            return httpx.Response(200, json={
                "status": "success",
                "verification": {
                    "status": "approved",
                    "person": {"firstName": "Ion", "lastName": "Popescu"},
                    "document": {"type": "PASSPORT", "country": "RO"},
                },
            })

        decision = _client(handler).get_decision("sess-1")

        assert decision["decision"] == "approved"
        assert decision["person"]["firstName"]["value"] == "Ion"
        assert decision["document"]["type"] == {"value": "PASSPORT"}

    def test_comprehensive_data_tolerates_partial_failure(self):
        def handler(request):
            if request.url.path.endswith("/person"):
                return httpx.Response(200, json={"status": "success", "person": {"firstName": "Ion"}})
            return httpx.Response(404)

        data = _client(handler).get_comprehensive_data("sess-1")

        assert data["person"] == {"firstName": "Ion"}
        assert data["decision"] is None


class TestReshapeStandardDecision:
    def test_given_name_fallback(self):
        decision = reshape_standard_decision({"person": {"givenName": "Ana"}})

        assert decision["person"]["firstName"]["value"] == "Ana"
        assert decision["decision"] == "unknown"
        assert decision["decisionScore"] == 0
