# =============================================================================
# app/routers/flight_logs.py - Flight Log Endpoints
# =============================================================================
# Logging flights, listing them, and CSV export/import.
# All endpoints require authentication.
# =============================================================================

import datetime
import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, Path, Query, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import StreamingResponse

from app.auth import MANAGER_ROLES, AuthUser, get_current_member, require_roles
from app.dependencies import CSV_EXTENSIONS, read_upload
from core.models.flight_log import (
    FlightLogCreate,
    FlightLogFilters,
    FlightLogUpdate,
    FlightType,
    ViewMode,
)
from core.services.flight_log_service import FlightLogService

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Helper Functions
# =============================================================================

def flight_log_filters(
    flight_type: Annotated[FlightType | None, Query(description="Flight category")] = None,
    pilot_id: Annotated[UUID | None, Query()] = None,
    aircraft_id: Annotated[UUID | None, Query()] = None,
    instructor_id: Annotated[UUID | None, Query()] = None,
    departure_airfield_id: Annotated[UUID | None, Query()] = None,
    arrival_airfield_id: Annotated[UUID | None, Query()] = None,
    date_from: Annotated[datetime.date | None, Query(description="Flown on or after")] = None,
    date_to: Annotated[datetime.date | None, Query(description="Flown on or before")] = None,
    view_mode: Annotated[ViewMode, Query(description="personal or company")] = ViewMode.PERSONAL,
) -> FlightLogFilters:
    """Collect list/export query parameters into FlightLogFilters."""
    return FlightLogFilters(
        flight_type=flight_type,
        pilot_id=pilot_id,
        aircraft_id=aircraft_id,
        instructor_id=instructor_id,
        departure_airfield_id=departure_airfield_id,
        arrival_airfield_id=arrival_airfield_id,
        date_from=date_from,
        date_to=date_to,
        view_mode=view_mode,
    )


# =============================================================================
# Listing and Export
# =============================================================================

@router.get("")
async def list_flight_logs(
    member: AuthUser = Depends(get_current_member),
    filters: FlightLogFilters = Depends(flight_log_filters),
    page: Annotated[int, Query(ge=1, description="Page number")] = 1,
    limit: Annotated[int, Query(ge=1, le=100, description="Items per page")] = 10,
):
    """
    List flight logs, newest first.

    view_mode=personal (default) shows the caller's own flights (and, for
    instructors, the flights they taught). view_mode=company shows all.
    """
    logs, total = FlightLogService.list_flight_logs(filters, member, page=page, limit=limit)

    return {
        "flight_logs": logs,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
    }


@router.get("/export")
async def export_flight_logs(
    member: AuthUser = Depends(get_current_member),
    filters: FlightLogFilters = Depends(flight_log_filters),
):
    """
    Download every matching flight log as CSV.

    Takes the same filters as the list endpoint, without pagination.
    """
    csv_text = FlightLogService.export_csv(filters, member)
    filename = f"flight_logs_{datetime.date.today().isoformat()}.csv"

    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.post("/import")
async def import_flight_logs(
    file: UploadFile = File(..., description="CSV file with one flight per row"),
    member: AuthUser = Depends(require_roles(*MANAGER_ROLES)),
):
    """
    Create flight logs from a CSV file.

    Header names are flight_logs column names (aircraftId, pilotId, date,
    departureTime, ...). Rows that fail validation are reported and
    skipped; the rest are imported.
    """
    content = await read_upload(file, CSV_EXTENSIONS)

    logger.info(f"Importing flight logs from {file.filename} ({len(content)} bytes)")
    return await run_in_threadpool(
        FlightLogService.import_csv, content, file.filename or "upload.csv", member
    )


# =============================================================================
# CRUD
# =============================================================================

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_flight_log(
    data: FlightLogCreate,
    member: AuthUser = Depends(get_current_member),
):
    """
    Log a flight.

    totalHours is computed from departureTime and arrivalTime. Non-managers
    may only log flights where they are the pilot or the instructor.
    """
    return FlightLogService.create_flight_log(data, member)


@router.get("/{flight_log_id}")
async def get_flight_log(
    flight_log_id: Annotated[UUID, Path(description="Flight log UUID")],
    member: AuthUser = Depends(get_current_member),
):
    return FlightLogService.get_flight_log(flight_log_id)


@router.patch("/{flight_log_id}")
async def update_flight_log(
    flight_log_id: Annotated[UUID, Path(description="Flight log UUID")],
    data: FlightLogUpdate,
    member: AuthUser = Depends(get_current_member),
):
    """
    Update a flight log.

    Allowed for the pilot, the instructor of record, or a manager.
    """
    return FlightLogService.update_flight_log(flight_log_id, data, member)


@router.delete("/{flight_log_id}")
async def delete_flight_log(
    flight_log_id: Annotated[UUID, Path(description="Flight log UUID")],
    member: AuthUser = Depends(get_current_member),
):
    """Delete a flight log (manager roles). The pilot's total is reduced."""
    FlightLogService.delete_flight_log(flight_log_id, member)
    return {"flight_log_id": str(flight_log_id), "message": "Flight log deleted"}
