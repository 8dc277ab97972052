# =============================================================================
# app/main.py - FastAPI Application Entry Point
# =============================================================================
# This is the main entry point for the flight school operations API.
# It configures the FastAPI application with middleware, routers, and handlers.
#
# Usage:
#   uvicorn app.main:app --reload
# =============================================================================

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.exceptions import (
    FlightSchoolException,
    flight_school_exception_handler,
    upstream_exception_handler,
    validation_exception_handler,
)
from app.routers import (
    fleet,
    flight_logs,
    health,
    hour_packages,
    invoices,
    ppl_courses,
    reconciliation,
    usage,
    users,
    veriff,
    webhooks,
)
from app.auth import routes as auth_routes
from lib.supabase_client import SupabaseClientError
from lib.utils import ApplicationError

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# The supabase client logs every request at INFO
logging.getLogger("httpx").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Runs on startup and shutdown:
    - Startup: Log configuration, warn about missing integrations
    - Shutdown: Log
    """
    # Startup
    logger.info(f"Starting Flight School API in {settings.ENVIRONMENT} mode")
    logger.info(f"CORS origins: {settings.cors_origins_list}")

    if not settings.VERIFF_WEBHOOK_SECRET:
        logger.warning("VERIFF_WEBHOOK_SECRET is not set; verification webhooks will be rejected")
    if not settings.VERIFF_API_KEY or not settings.VERIFF_API_SECRET:
        logger.warning("Veriff API credentials are not set; verification sessions are disabled")

    yield

    # Shutdown
    logger.info("Shutting down Flight School API")


# Create FastAPI application
app = FastAPI(
    title="Flight School API",
    description="""
## Flight School Operations API

Back office for a flight school: members and roles, the fleet, flight
logging, billing and identity verification.

### Areas

| Area | What it covers |
|------|----------------|
| **Users** | Profiles, roles, per-user invoices, CSV import |
| **Fleet** | Aircraft, hobbs meter readings, CSV import |
| **Flight Logs** | Logging flights, CSV export and import |
| **Billing** | Fiscal and proforma invoices, e-invoice XML import, hour packages, PPL course tranches |
| **Usage** | Purchased vs. flown hours, per-package usage |
| **Verification** | Veriff sessions, webhooks and webhook monitoring |

### Authentication

Every endpoint except health checks and the Veriff webhook expects a
Supabase access token:

```bash
curl http://localhost:8000/api/v1/auth/me \\
  -H "Authorization: Bearer $TOKEN"
```
""",
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Auth", "description": "Current user and token checks"},
        {"name": "Users", "description": "Profiles, roles, per-user invoices and CSV import"},
        {"name": "Fleet", "description": "Aircraft, hobbs tracking and CSV import"},
        {"name": "Flight Logs", "description": "Flight logging, export and import"},
        {"name": "Invoices", "description": "Invoice details, payment status and XML import"},
        {"name": "Hour Packages", "description": "Package templates and orders"},
        {"name": "PPL Courses", "description": "PPL course tranches and progress"},
        {"name": "Usage", "description": "Hour ledger, package usage and client hours"},
        {"name": "Verification", "description": "Identity verification sessions and webhooks"},
        {"name": "Webhooks", "description": "Webhook monitoring and retry"},
        {"name": "Reconciliation", "description": "Data repair jobs"},
        {"name": "Health", "description": "API health and readiness checks"},
    ],
)


# =============================================================================
# Middleware
# =============================================================================

# CORS middleware - allows cross-origin requests
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list if settings.is_production else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Exception Handlers
# =============================================================================

@app.exception_handler(FlightSchoolException)
async def handle_flight_school_exception(request: Request, exc: FlightSchoolException):
    """Handle custom flight school exceptions."""
    return await flight_school_exception_handler(request, exc)


@app.exception_handler(RequestValidationError)
async def handle_validation_exception(request: Request, exc: RequestValidationError):
    return await validation_exception_handler(request, exc)


@app.exception_handler(SupabaseClientError)
@app.exception_handler(ApplicationError)
async def handle_upstream_exception(request: Request, exc: Exception):
    """Handle database and verification provider failures."""
    logger.error(f"Upstream error on {request.url.path}: {exc}")
    return await upstream_exception_handler(request, exc)


@app.exception_handler(Exception)
async def handle_general_exception(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "An unexpected error occurred",
            "code": "INTERNAL_ERROR",
        }
    )


# =============================================================================
# Routers
# =============================================================================

# Authentication endpoints (router carries its own /auth prefix)
app.include_router(
    auth_routes.router,
    prefix="/api/v1",
)

# Health check endpoints
app.include_router(
    health.router,
    prefix="/api/v1",
    tags=["Health"]
)

# User management endpoints
app.include_router(
    users.router,
    prefix="/api/v1/users",
    tags=["Users"]
)

# Fleet endpoints
app.include_router(
    fleet.router,
    prefix="/api/v1/fleet",
    tags=["Fleet"]
)

# Flight log endpoints
app.include_router(
    flight_logs.router,
    prefix="/api/v1/flight-logs",
    tags=["Flight Logs"]
)

# Invoice endpoints
app.include_router(
    invoices.router,
    prefix="/api/v1/invoices",
    tags=["Invoices"]
)

# Hour package endpoints
app.include_router(
    hour_packages.router,
    prefix="/api/v1/hour-packages",
    tags=["Hour Packages"]
)

# PPL course endpoints
app.include_router(
    ppl_courses.router,
    prefix="/api/v1/ppl-courses",
    tags=["PPL Courses"]
)

# Hour usage endpoints
app.include_router(
    usage.router,
    prefix="/api/v1/usage",
    tags=["Usage"]
)

# Identity verification endpoints
app.include_router(
    veriff.router,
    prefix="/api/v1/veriff",
    tags=["Verification"]
)

# Webhook monitoring endpoints
app.include_router(
    webhooks.router,
    prefix="/api/v1/webhooks",
    tags=["Webhooks"]
)

# Reconciliation endpoints
app.include_router(
    reconciliation.router,
    prefix="/api/v1/reconciliation",
    tags=["Reconciliation"]
)


# =============================================================================
# Root Endpoint
# =============================================================================

@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint - returns API info.
    """
    return {
        "name": "Flight School API",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "health": "/api/v1/health",
    }
