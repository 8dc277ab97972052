# =============================================================================
# app/routers/health.py - Health Check Endpoints
# =============================================================================
# Liveness, plus a readiness report over the services the API depends on:
#   database -> users table read
#   storage  -> bucket listing
#   broker   -> Redis PING (webhook retries and batch jobs queue here)
# Any failing check makes the report "degraded"; the endpoint still answers 200.
# =============================================================================

import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

import redis

from app.config import settings
from lib.supabase_client import SupabaseClient

logger = logging.getLogger(__name__)

router = APIRouter()

BROKER_TIMEOUT_SECONDS = 2


# =============================================================================
# Response Models
# =============================================================================

class HealthResponse(BaseModel):
    status: str
    timestamp: str
    environment: str
    version: str


class ReadinessResponse(BaseModel):
    """Per-dependency status ("healthy" or "unhealthy: <reason>") and check time."""
    status: str
    checks: dict[str, str]
    latency_ms: dict[str, float]
    verification_configured: bool
    timestamp: str


class LivenessResponse(BaseModel):
    status: str
    timestamp: str


# =============================================================================
# Dependency Checks
# =============================================================================

def _check_database() -> None:
    SupabaseClient.get_client().table("users").select("id").limit(1).execute()


def _check_storage() -> None:
    SupabaseClient.get_client().storage.list_buckets()


def _check_broker() -> None:
    redis.Redis.from_url(settings.REDIS_URL, socket_connect_timeout=BROKER_TIMEOUT_SECONDS).ping()


DEPENDENCY_CHECKS: dict[str, Callable[[], None]] = {
    "database": _check_database,
    "storage": _check_storage,
    "broker": _check_broker,
}


def run_checks() -> tuple[dict[str, str], dict[str, float]]:
    """
    Run every dependency check once.

    Returns:
        (status per dependency, milliseconds each check took)
    """
    checks: dict[str, str] = {}
    latency: dict[str, float] = {}

    for name, check in DEPENDENCY_CHECKS.items():
        started = time.perf_counter()
        try:
            check()
            checks[name] = "healthy"
        except Exception as e:
            logger.warning(f"Readiness check '{name}' failed: {e}")
            checks[name] = f"unhealthy: {str(e)[:50]}"
        latency[name] = round((time.perf_counter() - started) * 1000, 1)

    return checks, latency


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# Endpoints
# =============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Basic status for load balancers and monitoring."""
    return HealthResponse(
        status="healthy",
        timestamp=_now(),
        environment=settings.ENVIRONMENT,
        version=settings.APP_VERSION,
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check():
    """
    Whether the dependencies answer.

    Also reports whether verification API credentials are set. Missing
    credentials don't count as degraded.
    """
    checks, latency = await run_in_threadpool(run_checks)
    all_healthy = all(value == "healthy" for value in checks.values())

    return ReadinessResponse(
        status="ready" if all_healthy else "degraded",
        checks=checks,
        latency_ms=latency,
        verification_configured=bool(settings.VERIFF_API_KEY and settings.VERIFF_API_SECRET),
        timestamp=_now(),
    )


@router.get("/health/live", response_model=LivenessResponse)
async def liveness_check():
    """Process is up; used for restart decisions."""
    return LivenessResponse(status="alive", timestamp=_now())
