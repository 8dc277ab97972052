# =============================================================================
# core/services/flight_log_service.py - Flight Log Business Logic
# =============================================================================
# Handles logging flights and the bookkeeping that follows:
# - totalHours computed from block times
# - pilot's totalFlightHours kept in step with their logs
# - aircraft hobbs updated from arrival readings
# - activity log entries
#
# Also provides CSV export/import with pandas.
# =============================================================================

import datetime
import io
import logging
from typing import Any
from uuid import UUID

import pandas as pd
from pydantic import ValidationError

from lib.supabase_client import SupabaseClient, SupabaseClientError
from lib.utils import normalize_uuid, to_float, utc_now_iso
from core.models.flight_log import (
    FlightLogCreate,
    FlightLogFilters,
    FlightLogUpdate,
    IMPORT_REQUIRED_COLUMNS,
    ViewMode,
)
from core.services.activity_logger import ActivityLogger
from core.services.csv_import import DATABASE_ERRORS, database_error_detail, read_import_rows
from core.services.aircraft_service import AircraftService
from app.auth.models import AuthUser, INSTRUCTOR, MANAGER_ROLES, PILOT, STUDENT
from app.exceptions import (
    AircraftNotFoundError,
    AirfieldNotFoundError,
    FlightLogNotFoundError,
    FlightSchoolException,
    InvalidFlightTimesError,
    PermissionDeniedError,
    UserNotFoundError,
)

logger = logging.getLogger(__name__)

# Roles allowed to log flights at all
FLIGHT_LOG_ROLES = MANAGER_ROLES | {INSTRUCTOR, PILOT, STUDENT}

_TIME_FORMATS = ("%H:%M:%S", "%H:%M")

# Column order of the CSV export
EXPORT_COLUMNS = [
    "id",
    "date",
    "departureTime",
    "arrivalTime",
    "totalHours",
    "flightType",
    "aircraftId",
    "pilotId",
    "instructorId",
    "payer_id",
    "departureAirfieldId",
    "arrivalAirfieldId",
    "departureHobbs",
    "arrivalHobbs",
    "dayLandings",
    "nightLandings",
    "oilAdded",
    "fuelAdded",
    "purpose",
    "remarks",
]


def _parse_time(value: str) -> datetime.datetime | None:
    for fmt in _TIME_FORMATS:
        try:
            return datetime.datetime.strptime(value.strip(), fmt)
        except ValueError:
            continue
    return None


def calculate_flight_hours(departure_time: str, arrival_time: str) -> float:
    """
    Block time between two same-day times, in hours.

    Args:
        departure_time: "HH:MM" or "HH:MM:SS"
        arrival_time: "HH:MM" or "HH:MM:SS"

    Returns:
        Hours rounded to 2 decimals; 0 when arrival is not after departure

    Raises:
        InvalidFlightTimesError: If either time can't be parsed

    Example:
        calculate_flight_hours("09:15", "10:45")  # 1.5
    """
    departure = _parse_time(departure_time or "")
    arrival = _parse_time(arrival_time or "")
    if departure is None or arrival is None:
        raise InvalidFlightTimesError(departure_time, arrival_time)

    hours = (arrival - departure).total_seconds() / 3600
    return round(max(0.0, hours), 2)


class FlightLogService:
    """
    Service for flight log operations.

    Provides a clean interface between API routes and database.
    """

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _require_user(user_id: str | UUID) -> dict[str, Any]:
        user = SupabaseClient.fetch_one(
            "users", "id", normalize_uuid(user_id), columns="id, totalFlightHours"
        )
        if not user:
            raise UserNotFoundError(str(user_id))
        return user

    @staticmethod
    def _require_aircraft(aircraft_id: str | UUID) -> None:
        if not SupabaseClient.fetch_one("aircraft", "id", normalize_uuid(aircraft_id), columns="id"):
            raise AircraftNotFoundError(str(aircraft_id))

    @staticmethod
    def _require_airfield(airfield_id: str | UUID) -> None:
        if not SupabaseClient.fetch_one("airfields", "id", normalize_uuid(airfield_id), columns="id"):
            raise AirfieldNotFoundError(str(airfield_id))

    @staticmethod
    def _adjust_pilot_hours(pilot_id: str, delta: float) -> None:
        """Add `delta` hours to a pilot's totalFlightHours (never below zero)."""
        if not delta:
            return
        pilot = FlightLogService._require_user(pilot_id)
        new_total = round(max(0.0, to_float(pilot.get("totalFlightHours")) + delta), 2)

        client = SupabaseClient.get_client()
        client.table("users").update(
            {"totalFlightHours": new_total, "updatedAt": utc_now_iso()}
        ).eq("id", pilot_id).execute()
        logger.debug(f"Pilot {pilot_id} totalFlightHours -> {new_total}")

    @staticmethod
    def _apply_filters(query, filters: FlightLogFilters, member: AuthUser):
        """Apply query filters and the personal-view visibility rule."""
        if filters.view_mode == ViewMode.PERSONAL:
            member_id = str(member.id)
            if member.is_instructor and not member.is_manager:
                query = query.or_(f"instructorId.eq.{member_id},pilotId.eq.{member_id}")
            else:
                query = query.eq("pilotId", member_id)

        if filters.flight_type:
            query = query.eq("flightType", filters.flight_type.value)
        if filters.pilot_id:
            query = query.eq("pilotId", str(filters.pilot_id))
        if filters.aircraft_id:
            query = query.eq("aircraftId", str(filters.aircraft_id))
        if filters.instructor_id:
            query = query.eq("instructorId", str(filters.instructor_id))
        if filters.departure_airfield_id:
            query = query.eq("departureAirfieldId", str(filters.departure_airfield_id))
        if filters.arrival_airfield_id:
            query = query.eq("arrivalAirfieldId", str(filters.arrival_airfield_id))
        if filters.date_from:
            query = query.gte("date", filters.date_from.isoformat())
        if filters.date_to:
            query = query.lte("date", filters.date_to.isoformat())
        return query

    @staticmethod
    def can_modify(log: dict[str, Any], member: AuthUser) -> bool:
        """Pilot of record, instructor of record, or a manager."""
        member_id = str(member.id)
        return (
            member.is_manager
            or str(log.get("pilotId")) == member_id
            or str(log.get("instructorId")) == member_id
        )

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    @staticmethod
    def create_flight_log(
        data: FlightLogCreate,
        member: AuthUser,
        log_activity: bool = True,
    ) -> dict[str, Any]:
        """
        Log a flight.

        Args:
            data: Flight details
            member: Authenticated member creating the log
            log_activity: Write an activity_log entry

        Returns:
            Created flight log dict

        Raises:
            PermissionDeniedError: If the member may not log this flight
            AircraftNotFoundError / UserNotFoundError / AirfieldNotFoundError:
                If a referenced entity doesn't exist
            InvalidFlightTimesError: If the block times can't be parsed
        """
        member_id = str(member.id)

        if not member.has_role(*FLIGHT_LOG_ROLES):
            raise PermissionDeniedError("log flights", sorted(FLIGHT_LOG_ROLES))

        if not member.is_manager and member_id not in (
            str(data.pilot_id),
            str(data.instructor_id) if data.instructor_id else None,
        ):
            raise PermissionDeniedError("log flights for other pilots")

        total_hours = calculate_flight_hours(data.departure_time, data.arrival_time)

        FlightLogService._require_aircraft(data.aircraft_id)
        FlightLogService._require_user(data.pilot_id)
        if data.instructor_id:
            FlightLogService._require_user(data.instructor_id)
        if data.payer_id:
            FlightLogService._require_user(data.payer_id)
        FlightLogService._require_airfield(data.departure_airfield_id)
        FlightLogService._require_airfield(data.arrival_airfield_id)

        now = utc_now_iso()
        row = data.to_row()
        row.update({
            "totalHours": total_hours,
            "createdById": member_id,
            "createdAt": now,
            "updatedAt": now,
        })

        client = SupabaseClient.get_client()
        response = client.table("flight_logs").insert(row).execute()
        if not response.data:
            raise SupabaseClientError("Insert returned no data", code="INSERT_FAILED")

        flight_log = response.data[0]
        logger.info(
            f"Created flight log {flight_log['id']}: {total_hours}h on {data.aircraft_id} "
            f"by {data.pilot_id}"
        )

        FlightLogService._adjust_pilot_hours(str(data.pilot_id), total_hours)

        if data.arrival_hobbs is not None:
            AircraftService.update_aircraft_hobbs(
                data.aircraft_id, flight_log["id"], data.arrival_hobbs, data.date
            )

        if log_activity:
            ActivityLogger.flight_created(member_id, flight_log["id"], data.aircraft_id)

        return flight_log

    @staticmethod
    def get_flight_log(flight_log_id: str | UUID) -> dict[str, Any]:
        """
        Get a flight log by ID.

        Raises:
            FlightLogNotFoundError: If the log doesn't exist
        """
        log = SupabaseClient.fetch_one("flight_logs", "id", normalize_uuid(flight_log_id))
        if not log:
            raise FlightLogNotFoundError(str(flight_log_id))
        return log

    @staticmethod
    def list_flight_logs(
        filters: FlightLogFilters,
        member: AuthUser,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[dict[str, Any]], int]:
        """
        List flight logs visible to a member.

        Args:
            filters: Query filters and view mode
            member: Authenticated member
            page: Page number (1-indexed)
            limit: Items per page

        Returns:
            Tuple of (flight logs, total count under the same filters)
        """
        client = SupabaseClient.get_client()
        query = client.table("flight_logs").select("*", count="exact")
        query = FlightLogService._apply_filters(query, filters, member)

        offset = (page - 1) * limit
        response = (
            query.order("date", desc=True)
            .order("departureTime", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )

        return response.data or [], response.count or 0

    @staticmethod
    def update_flight_log(
        flight_log_id: str | UUID,
        data: FlightLogUpdate,
        member: AuthUser,
    ) -> dict[str, Any]:
        """
        Update a flight log.

        When block times change, totalHours is recomputed and the pilot's
        total adjusted by the difference. When the aircraft, date or arrival
        hobbs change, hobbs is recalculated for every aircraft involved.

        Raises:
            FlightLogNotFoundError: If the log doesn't exist
            PermissionDeniedError: If the member may not edit it
        """
        log = FlightLogService.get_flight_log(flight_log_id)
        if not FlightLogService.can_modify(log, member):
            raise PermissionDeniedError("edit this flight log")

        changes = data.to_row()
        if not changes:
            return log

        if "aircraftId" in changes:
            FlightLogService._require_aircraft(changes["aircraftId"])
        if changes.get("instructorId"):
            FlightLogService._require_user(changes["instructorId"])
        if changes.get("payer_id"):
            FlightLogService._require_user(changes["payer_id"])
        for key in ("departureAirfieldId", "arrivalAirfieldId"):
            if key in changes:
                FlightLogService._require_airfield(changes[key])

        old_hours = to_float(log.get("totalHours"))
        new_hours = old_hours
        if "departureTime" in changes or "arrivalTime" in changes:
            new_hours = calculate_flight_hours(
                changes.get("departureTime", log.get("departureTime")),
                changes.get("arrivalTime", log.get("arrivalTime")),
            )
            changes["totalHours"] = new_hours

        fields = sorted(changes)
        changes["updatedAt"] = utc_now_iso()

        client = SupabaseClient.get_client()
        response = (
            client.table("flight_logs")
            .update(changes)
            .eq("id", log["id"])
            .execute()
        )
        updated = response.data[0] if response.data else {**log, **changes}

        FlightLogService._adjust_pilot_hours(str(log["pilotId"]), new_hours - old_hours)

        if {"aircraftId", "date", "arrivalHobbs"} & set(changes):
            aircraft_ids = {str(log["aircraftId"]), str(updated.get("aircraftId", log["aircraftId"]))}
            for aircraft_id in aircraft_ids:
                AircraftService.recalculate_aircraft_hobbs(aircraft_id)

        logger.info(f"Updated flight log {log['id']}: {fields}")
        ActivityLogger.flight_updated(member.id, log["id"], fields)
        return updated

    @staticmethod
    def delete_flight_log(flight_log_id: str | UUID, member: AuthUser) -> None:
        """
        Delete a flight log (managers only).

        The pilot's total is reduced and the aircraft hobbs recalculated.

        Raises:
            FlightLogNotFoundError: If the log doesn't exist
            PermissionDeniedError: If the member is not a manager
        """
        if not member.is_manager:
            raise PermissionDeniedError("delete flight logs", sorted(MANAGER_ROLES))

        log = FlightLogService.get_flight_log(flight_log_id)

        client = SupabaseClient.get_client()
        client.table("flight_logs").delete().eq("id", log["id"]).execute()

        FlightLogService._adjust_pilot_hours(str(log["pilotId"]), -to_float(log.get("totalHours")))
        if log.get("arrivalHobbs") is not None:
            AircraftService.recalculate_aircraft_hobbs(log["aircraftId"])

        logger.info(f"Deleted flight log {log['id']}")
        ActivityLogger.flight_deleted(member.id, log["id"])

    # -------------------------------------------------------------------------
    # CSV Export / Import
    # -------------------------------------------------------------------------

    @staticmethod
    def export_csv(filters: FlightLogFilters, member: AuthUser) -> str:
        """
        Render every matching flight log as CSV.

        Returns:
            CSV text with a header row (EXPORT_COLUMNS order)
        """
        client = SupabaseClient.get_client()

        def build_query():
            query = client.table("flight_logs").select("*")
            query = FlightLogService._apply_filters(query, filters, member)
            return query.order("date", desc=True).order("departureTime", desc=True)

        rows = SupabaseClient.paginate(build_query, label="flight_logs")
        df = pd.DataFrame(rows)
        df = df.reindex(columns=EXPORT_COLUMNS)

        csv_buffer = io.StringIO()
        df.to_csv(csv_buffer, index=False)
        logger.info(f"Exported {len(df)} flight logs for {member.id}")
        return csv_buffer.getvalue()

    @staticmethod
    def import_csv(content: bytes, filename: str, member: AuthUser) -> dict[str, Any]:
        """
        Create flight logs from a CSV file.

        Each row goes through create_flight_log, so the same validation,
        pilot totals and hobbs bookkeeping apply. A failing row doesn't stop
        the import.

        Args:
            content: Raw CSV bytes (header row with database column names)
            filename: Original filename, for error messages
            member: Manager performing the import

        Returns:
            {"imported": int, "failed": int, "errors": [{"row", "error"}]}

        Raises:
            FileReadError: If the CSV can't be parsed or lacks required columns
        """
        rows = read_import_rows(content, filename, IMPORT_REQUIRED_COLUMNS)

        imported = 0
        errors: list[dict[str, Any]] = []

        for line, values in rows:
            try:
                data = FlightLogCreate.model_validate(values)
                FlightLogService.create_flight_log(data, member, log_activity=False)
                imported += 1
            except ValidationError as e:
                errors.append({"row": line, "error": str(e.errors()[0].get("msg"))})
            except FlightSchoolException as e:
                errors.append({"row": line, "error": e.message})
            except DATABASE_ERRORS as e:
                # Rows already imported stay committed; later rows are still attempted
                logger.error(f"Database error importing row {line} of {filename}: {e}")
                errors.append({"row": line, "error": database_error_detail(e)})

        logger.info(f"Imported {imported} flight logs from {filename}, {len(errors)} failed")
        ActivityLogger.log(
            member.id,
            "FLIGHT_LOGS_IMPORTED",
            "flight_log",
            None,
            f"Imported {imported} flight logs from {filename}",
            {"imported": imported, "failed": len(errors)},
        )

        return {"imported": imported, "failed": len(errors), "errors": errors}
