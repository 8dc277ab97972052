# =============================================================================
# tests/conftest.py - Pytest Configuration
# =============================================================================
# This module provides pytest fixtures and configuration for all tests.
#
# Key features:
# - Sets up mock environment variables before any imports
# - Provides members with different roles
# - Provides an API client whose authentication is overridden
# =============================================================================

import os
from uuid import UUID

# =============================================================================
# Set up test environment BEFORE any imports
# =============================================================================
# This must happen before importing app.config which loads settings immediately

os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("VERIFF_API_KEY", "test-veriff-key")
os.environ.setdefault("VERIFF_API_SECRET", "test-veriff-secret")
os.environ.setdefault("VERIFF_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DEBUG", "true")

import pytest

from app.auth.models import AuthUser


PILOT_ID = UUID("11111111-1111-1111-1111-111111111111")
INSTRUCTOR_ID = UUID("22222222-2222-2222-2222-222222222222")
MANAGER_ID = UUID("33333333-3333-3333-3333-333333333333")
ADMIN_ID = UUID("44444444-4444-4444-4444-444444444444")
PROSPECT_ID = UUID("55555555-5555-5555-5555-555555555555")


# =============================================================================
# Member Fixtures
# =============================================================================

@pytest.fixture
def pilot():
    """A member holding only the PILOT role."""
    return AuthUser(id=PILOT_ID, email="pilot@example.com", roles=("PILOT",))


@pytest.fixture
def instructor():
    return AuthUser(id=INSTRUCTOR_ID, email="cfi@example.com", roles=("INSTRUCTOR",))


@pytest.fixture
def manager():
    return AuthUser(id=MANAGER_ID, email="ops@example.com", roles=("BASE_MANAGER",))


@pytest.fixture
def admin():
    return AuthUser(id=ADMIN_ID, email="admin@example.com", roles=("ADMIN",))


@pytest.fixture
def prospect():
    return AuthUser(id=PROSPECT_ID, email="new@example.com", roles=("PROSPECT",))


# =============================================================================
# API Client
# =============================================================================

@pytest.fixture
def api_client():
    """
    TestClient factory authenticating every request as the given member.

    Usage:
        def test_x(api_client, pilot):
            client = api_client(pilot)
            client.get("/api/v1/...")
    """
    from fastapi.testclient import TestClient

    from app.auth import get_current_member
    from app.main import app

    def make_client(member: AuthUser | None = None) -> TestClient:
        app.dependency_overrides.clear()
        if member is not None:
            app.dependency_overrides[get_current_member] = lambda: member
        return TestClient(app)

    yield make_client
    app.dependency_overrides.clear()


# =============================================================================
# Sample Rows
# =============================================================================

@pytest.fixture
def fiscal_invoice_row():
    """A paid fiscal invoice as returned by the FISCAL_SELECT embed."""
    return {
        "id": "inv-fiscal-1",
        "smartbill_id": "FS-0042",
        "series": "FS",
        "number": "0042",
        "issue_date": "2024-03-01",
        "due_date": "2024-03-15",
        "status": "paid",
        "total_amount": 5000.0,
        "vat_amount": 867.77,
        "currency": "RON",
        "payment_method": None,
        "edited_xml_content": None,
        "client": [
            {
                "name": "Ion Popescu",
                "email": "Pilot@Example.com",
                "user_id": str(PILOT_ID),
            }
        ],
        "items": [
            {
                "line_id": 1,
                "name": "Ore de zbor",
                "quantity": 5,
                "unit": "HUR",
                "unit_price": 1000,
                "total_amount": 5000,
                "vat_rate": 19,
            }
        ],
    }


@pytest.fixture
def proforma_invoice_row():
    """A pending proforma for a 10 hour package."""
    return {
        "id": "inv-pro-1",
        "series": "PRO",
        "number": "0007",
        "issue_date": "2024-04-10",
        "due_date": "2024-04-25",
        "status": "pending",
        "payment_status": "pending",
        "payment_method": "proforma",
        "total_amount": 9000.0,
        "vat_amount": 1561.98,
        "currency": "RON",
        "user_id": str(PILOT_ID),
        "client": [{"name": "Ion Popescu", "email": "pilot@example.com", "user_id": str(PILOT_ID)}],
        "package": {"name": "10h Cessna", "hours": 10, "price_per_hour": 180, "validity_days": 365},
    }
