# =============================================================================
# app/routers/fleet.py - Aircraft Endpoints
# =============================================================================
# Fleet CRUD, CSV import and hobbs meter tracking.
# Reads are open to any member; writes need a manager role.
# =============================================================================

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, Path, Query, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import StreamingResponse

from app.auth import MANAGER_ROLES, AuthUser, get_current_member, require_roles
from app.dependencies import CSV_EXTENSIONS, read_upload
from core.models.aircraft import AircraftCreate, AircraftStatus, AircraftUpdate
from core.services.aircraft_service import AircraftService

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Aircraft
# =============================================================================

@router.get("/aircraft")
async def list_aircraft(
    member: AuthUser = Depends(get_current_member),
    aircraft_status: Annotated[AircraftStatus | None, Query(alias="status", description="Filter by status")] = None,
    base_id: Annotated[str | None, Query(description="Home base airfield id")] = None,
):
    """
    List the fleet.

    Each aircraft carries its current hobbs reading under "hobbs"
    (null when no flight has recorded one yet).
    """
    aircraft = AircraftService.list_aircraft(
        status=aircraft_status.value if aircraft_status else None,
        base_id=base_id,
    )
    return {"aircraft": aircraft, "total": len(aircraft)}


@router.get("/aircraft/{aircraft_id}")
async def get_aircraft(
    aircraft_id: Annotated[UUID, Path(description="Aircraft UUID")],
    member: AuthUser = Depends(get_current_member),
):
    return AircraftService.get_aircraft(aircraft_id)


@router.post("/aircraft", status_code=status.HTTP_201_CREATED)
async def create_aircraft(
    data: AircraftCreate,
    member: AuthUser = Depends(require_roles(*MANAGER_ROLES)),
):
    """
    Add an aircraft to the fleet.

    Returns 409 if the registration number is already registered.
    """
    return AircraftService.create_aircraft(data, created_by=member.id)


@router.patch("/aircraft/{aircraft_id}")
async def update_aircraft(
    aircraft_id: Annotated[UUID, Path(description="Aircraft UUID")],
    data: AircraftUpdate,
    member: AuthUser = Depends(require_roles(*MANAGER_ROLES)),
):
    return AircraftService.update_aircraft(aircraft_id, data)


@router.delete("/aircraft/{aircraft_id}")
async def delete_aircraft(
    aircraft_id: Annotated[UUID, Path(description="Aircraft UUID")],
    member: AuthUser = Depends(require_roles(*MANAGER_ROLES)),
):
    """Delete an aircraft together with its hobbs record."""
    AircraftService.delete_aircraft(aircraft_id)
    return {"aircraft_id": str(aircraft_id), "message": "Aircraft deleted"}


# =============================================================================
# Import
# =============================================================================

@router.post("/import")
async def import_fleet(
    file: UploadFile = File(..., description="CSV file with one aircraft per row"),
    member: AuthUser = Depends(require_roles(*MANAGER_ROLES)),
):
    """
    Add aircraft from a CSV file.

    Header names are aircraft column names (registrationNumber,
    manufacturer, model are required). Rows whose registration number is
    already in the fleet are reported and skipped.
    """
    content = await read_upload(file, CSV_EXTENSIONS)

    logger.info(f"Importing fleet from {file.filename} ({len(content)} bytes)")
    return await run_in_threadpool(
        AircraftService.import_csv, content, file.filename or "upload.csv", member.id
    )


@router.get("/import/template")
async def fleet_import_template(
    member: AuthUser = Depends(require_roles(*MANAGER_ROLES)),
):
    """Download an example fleet import CSV."""
    return StreamingResponse(
        iter([AircraftService.import_template()]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=fleet_import_template.csv"},
    )


# =============================================================================
# Hobbs
# =============================================================================

@router.post("/aircraft/{aircraft_id}/hobbs/recalculate")
async def recalculate_hobbs(
    aircraft_id: Annotated[UUID, Path(description="Aircraft UUID")],
    member: AuthUser = Depends(require_roles(*MANAGER_ROLES)),
):
    """
    Rebuild the hobbs reading from the latest flight log.

    Useful after correcting or deleting flights. "hobbs" is null when
    no flight of this aircraft carries an arrival reading.
    """
    AircraftService.get_aircraft(aircraft_id)
    hobbs = AircraftService.recalculate_aircraft_hobbs(aircraft_id)
    return {"aircraft_id": str(aircraft_id), "hobbs": hobbs}
