# =============================================================================
# tests/test_api.py - HTTP Layer Tests
# =============================================================================
# Routing, role checks and status codes through FastAPI's TestClient.
# Authentication is overridden per test (see conftest.api_client) and the
# services are mocked, so no database or broker is needed.
#
# Run with: pytest tests/test_api.py -v
# =============================================================================

import hashlib
import hmac
import json
from unittest.mock import AsyncMock, patch

import pytest
import redis

from app.config import settings
from core.models.invoice import InvoiceImportResult
from core.models.ledger import PackageUsageReport
from core.models.webhook import WebhookMetrics, WebhookProcessingResult
from core.services.invoice_service import normalize_fiscal_invoice, normalize_proforma_invoice

from tests.conftest import INSTRUCTOR_ID, PILOT_ID

WEBHOOK_URL = "/api/v1/veriff/webhook"


def _signed(payload) -> tuple[bytes, dict[str, str]]:
    body = json.dumps(payload).encode() if not isinstance(payload, bytes) else payload
    signature = hmac.new(settings.VERIFF_WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()
    return body, {"x-veriff-signature": signature, "content-type": "application/json"}


# =============================================================================
# Health Tests
# =============================================================================

class TestHealth:
    """Tests for health endpoints."""

    def test_health(self, api_client):
        response = api_client().get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["version"] == settings.APP_VERSION

    def test_live(self, api_client):
        assert api_client().get("/api/v1/health/live").json()["status"] == "alive"

    def test_ready_when_everything_answers(self, api_client):
        with patch("app.routers.health.SupabaseClient"), \
                patch("app.routers.health.redis.Redis"):
            response = api_client().get("/api/v1/health/ready")

        assert response.json()["status"] == "ready"
        assert response.json()["checks"] == {
            "database": "healthy",
            "storage": "healthy",
            "broker": "healthy",
        }
        assert set(response.json()["latency_ms"]) == {"database", "storage", "broker"}
        assert response.json()["verification_configured"] is True

    def test_degraded_without_broker(self, api_client):
        with patch("app.routers.health.SupabaseClient"), \
                patch("app.routers.health.redis.Redis") as mock_redis:
            mock_redis.from_url.return_value.ping.side_effect = redis.ConnectionError("refused")
            response = api_client().get("/api/v1/health/ready")

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "degraded"
        assert body["checks"]["broker"].startswith("unhealthy")

    def test_database_failure_reported(self, api_client):
        with patch("app.routers.health.SupabaseClient") as mock_supabase, \
                patch("app.routers.health.redis.Redis"):
            mock_supabase.get_client.return_value.table.side_effect = RuntimeError("connection refused")
            response = api_client().get("/api/v1/health/ready")

        checks = response.json()["checks"]
        assert response.json()["status"] == "degraded"
        assert checks["database"] == "unhealthy: connection refused"
        assert checks["storage"] == "healthy"


# =============================================================================
# Role Check Tests
# =============================================================================

class TestRoleChecks:
    """Tests for endpoint access by role."""

    def test_pilot_cannot_list_users(self, api_client, pilot):
        response = api_client(pilot).get("/api/v1/users")

        assert response.status_code == 403
        assert response.json()["code"] == "PERMISSION_DENIED"

    def test_pilot_cannot_read_other_ledger(self, api_client, pilot):
        response = api_client(pilot).get(f"/api/v1/usage/{INSTRUCTOR_ID}/ledger")

        assert response.status_code == 403

    def test_manager_reads_any_ledger(self, api_client, manager):
        with patch("app.routers.usage.LedgerService") as mock_ledger:
            mock_ledger.get_ledger.return_value = {
                "user_id": str(INSTRUCTOR_ID),
                "entries": [],
                "summary": {},
            }
            response = api_client(manager).get(f"/api/v1/usage/{INSTRUCTOR_ID}/ledger")

        assert response.status_code == 200
        mock_ledger.get_ledger.assert_called_once()

    def test_webhook_admin_routes_need_admin(self, api_client, manager):
        response = api_client(manager).get("/api/v1/webhooks/failed")

        assert response.status_code == 403


# =============================================================================
# Invoice Tests
# =============================================================================

class TestInvoiceEndpoints:
    """Tests for invoice reads and payment updates."""

    def test_unknown_invoice(self, api_client, pilot):
        with patch("app.routers.invoices.InvoiceService") as mock_service:
            mock_service.get_invoice_by_id.return_value = None
            response = api_client(pilot).get(
                "/api/v1/invoices/aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa"
            )

        assert response.status_code == 404
        assert response.json()["code"] == "INVOICE_NOT_FOUND"

    def test_owner_reads_invoice(self, api_client, pilot, fiscal_invoice_row):
        invoice = normalize_fiscal_invoice(fiscal_invoice_row)

        with patch("app.routers.invoices.InvoiceService") as mock_service:
            mock_service.get_invoice_by_id.return_value = invoice
            response = api_client(pilot).get(
                "/api/v1/invoices/aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa"
            )

        assert response.status_code == 200
        assert response.json()["id"] == "inv-fiscal-1"

    def test_other_member_cannot_mark_paid(self, api_client, instructor, fiscal_invoice_row):
        """Only the owner or an admin may change payment status."""
        # Arrange
        invoice = normalize_fiscal_invoice(fiscal_invoice_row)

        # Act
        with patch("app.routers.invoices.InvoiceService") as mock_service:
            mock_service.get_invoice_by_id.return_value = invoice
            response = api_client(instructor).put(
                "/api/v1/invoices/aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa/payment-status",
                json={"paymentStatus": "paid"},
            )

        # Assert
        assert response.status_code == 403
        mock_service.update_payment_status.assert_not_called()

    def test_owner_marks_paid(self, api_client, pilot, proforma_invoice_row):
        invoice = normalize_proforma_invoice(proforma_invoice_row)

        with patch("app.routers.invoices.InvoiceService") as mock_service:
            mock_service.get_invoice_by_id.return_value = invoice
            mock_service.update_payment_status.return_value = invoice
            response = api_client(pilot).put(
                "/api/v1/invoices/aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa/payment-status",
                json={"paymentStatus": "paid", "paymentReference": "TRX-991"},
            )

        assert response.status_code == 200
        args = mock_service.update_payment_status.call_args.args
        assert args[1].value == "paid"
        assert args[2] == "TRX-991"

    def test_invalid_payment_status(self, api_client, pilot):
        response = api_client(pilot).put(
            "/api/v1/invoices/aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa/payment-status",
            json={"paymentStatus": "refunded"},
        )

        assert response.status_code == 422


# =============================================================================
# Flight Log Import Tests
# =============================================================================

class TestFlightLogImport:
    """Tests for the CSV upload endpoint."""

    def test_rejects_non_csv(self, api_client, manager):
        response = api_client(manager).post(
            "/api/v1/flight-logs/import",
            files={"file": ("logs.txt", b"aircraftId,pilotId\n", "text/plain")},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_FILE_TYPE"

    def test_pilot_cannot_import(self, api_client, pilot):
        response = api_client(pilot).post(
            "/api/v1/flight-logs/import",
            files={"file": ("logs.csv", b"aircraftId,pilotId\n", "text/csv")},
        )

        assert response.status_code == 403

    def test_import_result_returned(self, api_client, manager):
        result = {"imported": 3, "failed": 0, "errors": []}

        with patch("app.routers.flight_logs.FlightLogService") as mock_service:
            mock_service.import_csv.return_value = result
            response = api_client(manager).post(
                "/api/v1/flight-logs/import",
                files={"file": ("logs.csv", b"aircraftId,pilotId\n1,2\n", "text/csv")},
            )

        assert response.status_code == 200
        assert response.json() == result
        assert mock_service.import_csv.call_args.args[1] == "logs.csv"


# =============================================================================
# CSV and XML Import Tests
# =============================================================================

class TestFleetImport:
    """Tests for the fleet CSV upload endpoints."""

    def test_pilot_cannot_import(self, api_client, pilot):
        response = api_client(pilot).post(
            "/api/v1/fleet/import",
            files={"file": ("fleet.csv", b"registrationNumber\n", "text/csv")},
        )

        assert response.status_code == 403

    def test_rejects_non_csv(self, api_client, manager):
        response = api_client(manager).post(
            "/api/v1/fleet/import",
            files={"file": ("fleet.xlsx", b"PK", "application/octet-stream")},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_FILE_TYPE"

    def test_import_runs_in_threadpool(self, api_client, manager):
        result = {"imported": 2, "failed": 0, "errors": []}

        with patch("app.routers.fleet.AircraftService") as mock_service, \
                patch("app.routers.fleet.run_in_threadpool", new_callable=AsyncMock) as mock_pool:
            mock_pool.return_value = result
            response = api_client(manager).post(
                "/api/v1/fleet/import",
                files={"file": ("fleet.csv", b"registrationNumber,manufacturer,model\n", "text/csv")},
            )

        assert response.status_code == 200
        assert response.json() == result
        args = mock_pool.await_args.args
        assert args[0] is mock_service.import_csv
        assert args[2:] == ("fleet.csv", manager.id)

    def test_template_download(self, api_client, manager):
        with patch("app.routers.fleet.AircraftService") as mock_service:
            mock_service.import_template.return_value = "registrationNumber,manufacturer,model\n"
            response = api_client(manager).get("/api/v1/fleet/import/template")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "fleet_import_template.csv" in response.headers["content-disposition"]
        assert response.text.startswith("registrationNumber")


class TestUserImport:
    """Tests for the user CSV upload endpoints."""

    def test_manager_cannot_import(self, api_client, manager):
        response = api_client(manager).post(
            "/api/v1/users/import",
            files={"file": ("users.csv", b"email,firstName,lastName\n", "text/csv")},
        )

        assert response.status_code == 403

    def test_admin_imports(self, api_client, admin):
        result = {"created": 1, "updated": 1, "failed": 0, "errors": []}

        with patch("app.routers.users.UserService") as mock_service:
            mock_service.import_csv.return_value = result
            response = api_client(admin).post(
                "/api/v1/users/import",
                files={"file": ("users.csv", b"email,firstName,lastName\n", "text/csv")},
            )

        assert response.status_code == 200
        assert response.json() == result
        assert mock_service.import_csv.call_args.args[1:] == ("users.csv", admin.id)

    def test_template_is_not_a_user_id(self, api_client, admin):
        """The template route isn't captured by /users/{user_id}."""
        with patch("app.routers.users.UserService") as mock_service:
            mock_service.import_template.return_value = "email,firstName,lastName\n"
            response = api_client(admin).get("/api/v1/users/import/template")

        assert response.status_code == 200
        assert "users_import_template.csv" in response.headers["content-disposition"]
        mock_service.get_user.assert_not_called()


class TestPackageUsageEndpoint:
    """Tests for the per-user package report."""

    def test_pilot_cannot_read_other_packages(self, api_client, pilot):
        response = api_client(pilot).get(f"/api/v1/usage/{INSTRUCTOR_ID}/packages")

        assert response.status_code == 403

    def test_pilot_reads_own_packages(self, api_client, pilot):
        report = PackageUsageReport(user={"id": str(PILOT_ID)}, packages=[])

        with patch("app.routers.usage.LedgerService") as mock_ledger:
            mock_ledger.get_package_usage.return_value = report
            response = api_client(pilot).get(f"/api/v1/usage/{PILOT_ID}/packages")

        assert response.status_code == 200
        assert response.json()["packages"] == []
        assert response.json()["statistics"]["regular"] == {"hours": 0, "count": 0}


class TestInvoiceXmlImport:
    """Tests for the invoice XML upload and delete endpoints."""

    RESULT = InvoiceImportResult(
        invoice_id="77777777-7777-7777-7777-777777777777",
        smartbill_id="CA0766",
        user_id=str(PILOT_ID),
        item_count=2,
    )

    def test_manager_cannot_import(self, api_client, manager):
        response = api_client(manager).post(
            "/api/v1/invoices/import",
            files={"file": ("ca0766.xml", b"<Invoice/>", "application/xml")},
        )

        assert response.status_code == 403

    def test_rejects_non_xml(self, api_client, admin):
        response = api_client(admin).post(
            "/api/v1/invoices/import",
            files={"file": ("ca0766.pdf", b"%PDF", "application/pdf")},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_FILE_TYPE"

    def test_import_created(self, api_client, admin):
        with patch("app.routers.invoices.InvoiceImportService") as mock_service:
            mock_service.import_invoice.return_value = self.RESULT
            response = api_client(admin).post(
                "/api/v1/invoices/import",
                files={"file": ("ca0766.xml", b"<Invoice/>", "application/xml")},
            )

        assert response.status_code == 201
        assert response.json()["smartbill_id"] == "CA0766"
        assert mock_service.import_invoice.call_args.args[1:] == ("ca0766.xml", admin.id, None)

    def test_corrections_parsed(self, api_client, admin):
        edits = {
            "smartbill_id": "CA0766", "series": "CA", "number": "0766",
            "issue_date": "2024-03-01", "due_date": "2024-03-15", "currency": "RON",
            "total_amount": 12000,
        }

        with patch("app.routers.invoices.InvoiceImportService") as mock_service:
            mock_service.import_invoice.return_value = self.RESULT
            response = api_client(admin).post(
                "/api/v1/invoices/import",
                files={"file": ("ca0766.xml", b"<Invoice/>", "application/xml")},
                data={"edits": json.dumps(edits)},
            )

        assert response.status_code == 201
        corrected = mock_service.import_invoice.call_args.args[3]
        assert corrected.total_amount == 12000
        assert corrected.series == "CA"

    def test_invalid_corrections(self, api_client, admin):
        with patch("app.routers.invoices.InvoiceImportService") as mock_service:
            response = api_client(admin).post(
                "/api/v1/invoices/import",
                files={"file": ("ca0766.xml", b"<Invoice/>", "application/xml")},
                data={"edits": json.dumps({"series": "CA"})},
            )

        assert response.status_code == 422
        mock_service.import_invoice.assert_not_called()

    def test_delete_needs_admin(self, api_client, manager):
        response = api_client(manager).delete(
            "/api/v1/invoices/77777777-7777-7777-7777-777777777777"
        )

        assert response.status_code == 403

    def test_delete(self, api_client, admin):
        with patch("app.routers.invoices.InvoiceImportService") as mock_service:
            response = api_client(admin).delete(
                "/api/v1/invoices/77777777-7777-7777-7777-777777777777"
            )

        assert response.status_code == 200
        assert response.json()["message"] == "Invoice deleted"
        mock_service.delete_invoice.assert_called_once()


# =============================================================================
# Verification Webhook Tests
# =============================================================================

class TestVerificationWebhook:
    """Tests for the provider callback endpoint."""

    def test_missing_signature(self, api_client):
        response = api_client().post(WEBHOOK_URL, json={"id": "sess-1"})

        assert response.status_code == 400

    def test_invalid_signature(self, api_client):
        response = api_client().post(
            WEBHOOK_URL,
            content=b'{"id": "sess-1"}',
            headers={"x-hmac-signature": "00" * 32},
        )

        assert response.status_code == 401

    def test_unparseable_body_not_resent(self, api_client):
        body, headers = _signed(b"{not json")

        response = api_client().post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert response.json()["status"] == "error"

    def test_processed(self, api_client):
        body, headers = _signed({"id": "sess-1", "action": "approved", "vendorData": "u-1"})

        with patch("app.routers.veriff.VeriffWebhookService") as mock_service:
            mock_service.process.return_value = WebhookProcessingResult(
                success=True, message="Processed approved webhook", session_id="sess-1"
            )
            response = api_client().post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "message": "Processed approved webhook",
            "session_id": "sess-1",
        }
        mock_service.process.assert_called_once_with(json.loads(body))

    @pytest.mark.parametrize("retryable, expected_code, expected_status", [
        (True, 202, "retry"),
        (False, 200, "error"),
    ])
    def test_failures(self, api_client, retryable, expected_code, expected_status):
        """Transient failures ask the provider to resend; permanent ones don't."""
        body, headers = _signed({"id": "sess-1", "action": "submitted", "vendorData": "u-1"})

        with patch("app.routers.veriff.VeriffWebhookService") as mock_service:
            mock_service.process.return_value = WebhookProcessingResult(
                success=False,
                message="Webhook processing failed",
                error="Database connection lost",
                retryable=retryable,
            )
            response = api_client().post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == expected_code
        assert response.json()["status"] == expected_status


# =============================================================================
# Webhook Administration Tests
# =============================================================================

class TestWebhookRetryEndpoint:
    """Tests for queueing webhook retries."""

    def test_queues_task(self, api_client, admin):
        with patch("workers.tasks.retry_failed_webhooks") as mock_task:
            mock_task.delay.return_value.id = "task-42"
            response = api_client(admin).post("/api/v1/webhooks/retry")

        assert response.status_code == 202
        assert response.json() == {"task_id": "task-42", "status": "queued"}
        mock_task.delay.assert_called_once_with()

    def test_metrics(self, api_client, admin):
        with patch("app.routers.webhooks.WebhookMonitor") as mock_monitor:
            mock_monitor.get_metrics.return_value = WebhookMetrics(total=4, successful=3)
            response = api_client(admin).get("/api/v1/webhooks/metrics?hours=6")

        assert response.status_code == 200
        assert response.json()["successful"] == 3
        mock_monitor.get_metrics.assert_called_once_with(6.0)


class TestVerificationOffloading:
    """Provider and database calls run off the event loop."""

    def test_webhook_processed_in_threadpool(self, api_client):
        body, headers = _signed({"id": "sess-1", "action": "approved", "vendorData": "u-1"})
        result = WebhookProcessingResult(success=True, message="ok", session_id="sess-1")

        with patch("app.routers.veriff.VeriffWebhookService") as mock_service, \
                patch("app.routers.veriff.run_in_threadpool", new_callable=AsyncMock) as mock_pool:
            mock_pool.return_value = result
            response = api_client().post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 200
        mock_pool.assert_awaited_once_with(mock_service.process, json.loads(body))
        mock_service.process.assert_not_called()

    def test_session_created_in_threadpool(self, api_client, pilot):
        with patch("app.routers.veriff.VeriffWebhookService") as mock_service, \
                patch("app.routers.veriff.run_in_threadpool", new_callable=AsyncMock) as mock_pool:
            mock_pool.return_value = {"session_id": "sess-1", "url": "https://magic.test/sess-1"}
            response = api_client(pilot).post("/api/v1/veriff/sessions")

        assert response.status_code == 201
        mock_pool.assert_awaited_once_with(mock_service.create_session, pilot.id)

    def test_sync_in_threadpool(self, api_client, admin):
        with patch("app.routers.veriff.VeriffWebhookService") as mock_service, \
                patch("app.routers.veriff.run_in_threadpool", new_callable=AsyncMock) as mock_pool:
            mock_pool.return_value = {"veriffPersonGivenName": "Ion"}
            response = api_client(admin).post(f"/api/v1/veriff/sync/{INSTRUCTOR_ID}")

        assert response.status_code == 200
        assert response.json()["synced_fields"] == ["veriffPersonGivenName"]
        assert mock_pool.await_args.args[0] is mock_service.sync_user
