# =============================================================================
# core/services/aircraft_service.py - Fleet and Hobbs Business Logic
# =============================================================================
# Handles aircraft CRUD, CSV import and the last-known hobbs meter
# reading per aircraft.
#
# Hobbs readings arrive with flight logs, possibly out of order (a flight
# from last week logged today). A reading only replaces the stored one
# when it is at least as recent:
#   - older flight date            -> ignored
#   - same date, higher reading    -> replaces
#   - newer flight date            -> replaces
# =============================================================================

import datetime
import logging
from typing import Any
from uuid import UUID

from pydantic import ValidationError

from lib.supabase_client import SupabaseClient, SupabaseClientError
from lib.utils import normalize_uuid, to_float, utc_now_iso
from core.models.aircraft import (
    FLEET_IMPORT_COLUMNS,
    FLEET_IMPORT_REQUIRED_COLUMNS,
    AircraftCreate,
    AircraftUpdate,
)
from core.services.activity_logger import ActivityLogger
from core.services.csv_import import (
    DATABASE_ERRORS,
    database_error_detail,
    read_import_rows,
    template_csv,
)
from app.exceptions import AircraftAlreadyExistsError, AircraftNotFoundError, FlightSchoolException

logger = logging.getLogger(__name__)


def _as_date(value: str | datetime.date) -> datetime.date:
    """Parse an ISO date or timestamp string to a date."""
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(str(value)[:10])


def should_update_hobbs(
    current: dict[str, Any] | None,
    new_date: str | datetime.date,
    new_reading: float,
) -> bool:
    """
    Decide whether a flight's arrival hobbs replaces the stored reading.

    Args:
        current: Existing aircraft_hobbs row, or None
        new_date: Date of the flight carrying the reading
        new_reading: Arrival hobbs of that flight

    Returns:
        True if the stored reading should be replaced (or created)
    """
    if current is None:
        return True

    current_date = _as_date(current["last_hobbs_date"])
    flight_date = _as_date(new_date)

    if flight_date < current_date:
        return False
    if flight_date == current_date:
        return new_reading > to_float(current.get("last_hobbs_reading"))
    return True


class AircraftService:
    """
    Service for fleet management operations.

    Provides a clean interface between API routes and database.
    """

    # -------------------------------------------------------------------------
    # Aircraft CRUD
    # -------------------------------------------------------------------------

    @staticmethod
    def list_aircraft(
        status: str | None = None,
        base_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """
        List the fleet, each aircraft with its current hobbs reading.

        Args:
            status: Only aircraft in this status
            base_id: Only aircraft based at this airfield

        Returns:
            List of aircraft dicts with a "hobbs" key (None if never recorded)
        """
        filters: dict[str, Any] = {}
        if status:
            filters["status"] = status
        if base_id:
            filters["baseId"] = base_id

        aircraft = SupabaseClient.fetch_all(
            "aircraft", filters=filters, order_by="registrationNumber"
        )
        hobbs = {
            row["aircraft_id"]: row
            for row in SupabaseClient.fetch_all("aircraft_hobbs")
        }

        for plane in aircraft:
            plane["hobbs"] = hobbs.get(plane["id"])
        return aircraft

    @staticmethod
    def get_aircraft(aircraft_id: str | UUID) -> dict[str, Any]:
        """
        Get one aircraft with its hobbs reading.

        Raises:
            AircraftNotFoundError: If the aircraft doesn't exist
        """
        aircraft_id_str = normalize_uuid(aircraft_id)
        aircraft = SupabaseClient.fetch_one("aircraft", "id", aircraft_id_str)
        if not aircraft:
            raise AircraftNotFoundError(aircraft_id_str)

        aircraft["hobbs"] = AircraftService.get_hobbs(aircraft_id_str)
        return aircraft

    @staticmethod
    def create_aircraft(data: AircraftCreate, created_by: str | UUID) -> dict[str, Any]:
        """
        Add an aircraft.

        Raises:
            AircraftAlreadyExistsError: If the registration number is taken
        """
        existing = SupabaseClient.fetch_one(
            "aircraft", "registrationNumber", data.registration_number, columns="id"
        )
        if existing:
            raise AircraftAlreadyExistsError(data.registration_number)

        row = data.to_row()
        row["createdById"] = normalize_uuid(created_by)

        client = SupabaseClient.get_client()
        response = client.table("aircraft").insert(row).execute()
        if not response.data:
            raise SupabaseClientError("Insert returned no data", code="INSERT_FAILED")

        aircraft = response.data[0]
        logger.info(f"Created aircraft {aircraft['id']} ({data.registration_number})")
        return aircraft

    @staticmethod
    def update_aircraft(aircraft_id: str | UUID, data: AircraftUpdate) -> dict[str, Any]:
        """
        Update an aircraft.

        Raises:
            AircraftNotFoundError: If the aircraft doesn't exist
        """
        aircraft_id_str = normalize_uuid(aircraft_id)
        AircraftService.get_aircraft(aircraft_id_str)

        changes = data.to_row()
        if changes:
            changes["updatedAt"] = utc_now_iso()
            client = SupabaseClient.get_client()
            client.table("aircraft").update(changes).eq("id", aircraft_id_str).execute()
            logger.info(f"Updated aircraft {aircraft_id_str}: {sorted(changes)}")

        return AircraftService.get_aircraft(aircraft_id_str)

    @staticmethod
    def delete_aircraft(aircraft_id: str | UUID) -> None:
        """
        Delete an aircraft and its hobbs record.

        Raises:
            AircraftNotFoundError: If the aircraft doesn't exist
        """
        aircraft_id_str = normalize_uuid(aircraft_id)
        AircraftService.get_aircraft(aircraft_id_str)

        client = SupabaseClient.get_client()
        client.table("aircraft_hobbs").delete().eq("aircraft_id", aircraft_id_str).execute()
        client.table("aircraft").delete().eq("id", aircraft_id_str).execute()
        logger.info(f"Deleted aircraft {aircraft_id_str}")

    # -------------------------------------------------------------------------
    # Hobbs Tracking
    # -------------------------------------------------------------------------

    @staticmethod
    def get_hobbs(aircraft_id: str | UUID) -> dict[str, Any] | None:
        """Current aircraft_hobbs row, or None if never recorded."""
        return SupabaseClient.fetch_one("aircraft_hobbs", "aircraft_id", normalize_uuid(aircraft_id))

    @staticmethod
    def update_aircraft_hobbs(
        aircraft_id: str | UUID,
        flight_log_id: str | UUID,
        arrival_hobbs: float,
        flight_date: str | datetime.date,
    ) -> bool:
        """
        Record a flight's arrival hobbs if it is the most recent reading.

        Args:
            aircraft_id: Aircraft flown
            flight_log_id: Flight carrying the reading
            arrival_hobbs: Hobbs meter at arrival
            flight_date: Date of the flight

        Returns:
            True if the stored reading changed
        """
        aircraft_id_str = normalize_uuid(aircraft_id)
        current = AircraftService.get_hobbs(aircraft_id_str)

        if not should_update_hobbs(current, flight_date, arrival_hobbs):
            logger.info(
                f"Skipping hobbs update for aircraft {aircraft_id_str}: "
                f"{arrival_hobbs} on {flight_date} is not newer than "
                f"{current['last_hobbs_reading']} on {current['last_hobbs_date']}"
            )
            return False

        row = {
            "aircraft_id": aircraft_id_str,
            "last_hobbs_reading": arrival_hobbs,
            "last_hobbs_date": _as_date(flight_date).isoformat(),
            "last_flight_log_id": normalize_uuid(flight_log_id),
            "updated_at": utc_now_iso(),
        }

        client = SupabaseClient.get_client()
        if current is None:
            client.table("aircraft_hobbs").insert(row).execute()
            logger.info(f"Created hobbs record for aircraft {aircraft_id_str}: {arrival_hobbs}")
        else:
            client.table("aircraft_hobbs").update(row).eq("aircraft_id", aircraft_id_str).execute()
            logger.info(
                f"Updated hobbs for aircraft {aircraft_id_str}: "
                f"{current['last_hobbs_reading']} -> {arrival_hobbs}"
            )
        return True

    @staticmethod
    def recalculate_aircraft_hobbs(aircraft_id: str | UUID) -> dict[str, Any] | None:
        """
        Rebuild the hobbs record from the latest flight log with a reading.

        Used after deleting or editing flights. Flights are ordered by date,
        then by arrival hobbs, newest first.

        Returns:
            The new hobbs row, or None if the aircraft has no readings
        """
        aircraft_id_str = normalize_uuid(aircraft_id)
        client = SupabaseClient.get_client()

        response = (
            client.table("flight_logs")
            .select("id, date, arrivalHobbs")
            .eq("aircraftId", aircraft_id_str)
            .not_.is_("arrivalHobbs", "null")
            .order("date", desc=True)
            .order("arrivalHobbs", desc=True)
            .limit(1)
            .execute()
        )

        if not response.data:
            logger.info(f"No flight logs with hobbs for aircraft {aircraft_id_str}")
            return None

        latest = response.data[0]
        row = {
            "aircraft_id": aircraft_id_str,
            "last_hobbs_reading": to_float(latest["arrivalHobbs"]),
            "last_hobbs_date": _as_date(latest["date"]).isoformat(),
            "last_flight_log_id": latest["id"],
            "updated_at": utc_now_iso(),
        }
        client.table("aircraft_hobbs").upsert(row, on_conflict="aircraft_id").execute()

        logger.info(f"Recalculated hobbs for aircraft {aircraft_id_str}: {row['last_hobbs_reading']}")
        return row

    # -------------------------------------------------------------------------
    # CSV Import
    # -------------------------------------------------------------------------

    @staticmethod
    def import_csv(content: bytes, filename: str, created_by: str | UUID) -> dict[str, Any]:
        """
        Add aircraft from a CSV file.

        Each row goes through create_aircraft; a registration number
        already in the fleet fails that row only.

        Returns:
            {"imported": int, "failed": int, "errors": [{"row", "error"}]}

        Raises:
            FileReadError: If the CSV can't be parsed or lacks required columns
        """
        rows = read_import_rows(content, filename, FLEET_IMPORT_REQUIRED_COLUMNS)

        imported = 0
        errors: list[dict[str, Any]] = []

        for line, values in rows:
            try:
                data = AircraftCreate.model_validate(values)
                AircraftService.create_aircraft(data, created_by)
                imported += 1
            except ValidationError as e:
                error = e.errors()[0]
                field = ".".join(str(part) for part in error.get("loc", ()))
                errors.append({"row": line, "error": f"{field}: {error.get('msg')}"})
            except FlightSchoolException as e:
                errors.append({"row": line, "error": e.message})
            except DATABASE_ERRORS as e:
                logger.error(f"Database error importing row {line} of {filename}: {e}")
                errors.append({"row": line, "error": database_error_detail(e)})

        logger.info(f"Imported {imported} aircraft from {filename}, {len(errors)} failed")
        ActivityLogger.log(
            created_by,
            "FLEET_IMPORTED",
            "aircraft",
            None,
            f"Imported {imported} aircraft from {filename}",
            {"imported": imported, "failed": len(errors)},
        )

        return {"imported": imported, "failed": len(errors), "errors": errors}

    @staticmethod
    def import_template() -> str:
        """Example CSV for the fleet import."""
        return template_csv(FLEET_IMPORT_COLUMNS, [
            {
                "registrationNumber": "YR-ZCK", "manufacturer": "CSA", "model": "SportCruiser",
                "icaoType": "CRUZ", "type": "SEP", "status": "ACTIVE", "yearOfManufacture": 2021,
                "hourlyRate": 650,
            },
            {
                "registrationNumber": "YR-ABC", "manufacturer": "Cessna", "model": "172S",
                "icaoType": "C172", "type": "SEP", "status": "MAINTENANCE", "yearOfManufacture": 2008,
            },
        ])
