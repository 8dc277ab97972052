# =============================================================================
# core/models/flight_log.py - Flight Log Schemas
# =============================================================================
# These models define the API contract for flight log operations:
# - FlightType: Enum of billable/non-billable flight categories
# - FlightLogCreate: Input for logging a flight
# - FlightLogUpdate: Partial update of a logged flight
# - FlightLogFilters: Query filters shared by list and export
#
# The flight_logs table uses camelCase columns (aircraftId, departureTime...)
# except payer_id, so the models expose snake_case attributes with camelCase
# aliases and dump straight to column names.
# =============================================================================

import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class FlightType(str, Enum):
    """
    Flight categories.

    FERRY and DEMO flights never consume a client's purchased hours.
    """
    SCHOOL = "SCHOOL"
    INVOICED = "INVOICED"
    CHARTER = "CHARTER"
    DEMO = "DEMO"
    FERRY = "FERRY"
    PROMO = "PROMO"


# Flight types excluded from hour deductions
NON_DEDUCTIBLE_FLIGHT_TYPES = frozenset({FlightType.FERRY.value, FlightType.DEMO.value})


class ViewMode(str, Enum):
    """personal: logs the caller took part in; company: the whole fleet."""
    PERSONAL = "personal"
    COMPANY = "company"


class _FlightLogBase(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_row(self) -> dict[str, Any]:
        """Dump set fields using database column names."""
        return self.model_dump(by_alias=True, exclude_unset=True, mode="json")


class FlightLogCreate(_FlightLogBase):
    """
    Schema for logging a flight.

    Example:
        {
            "aircraftId": "550e8400-...",
            "pilotId": "660e8400-...",
            "date": "2024-05-02",
            "departureTime": "09:15",
            "arrivalTime": "10:45",
            "departureAirfieldId": "770e8400-...",
            "arrivalAirfieldId": "770e8400-...",
            "flightType": "SCHOOL",
            "arrivalHobbs": 1234.5
        }
    """

    # Required
    aircraft_id: UUID = Field(..., description="Aircraft flown")
    pilot_id: UUID = Field(..., description="Pilot in command (or student)")
    date: datetime.date = Field(..., description="Flight date")
    departure_time: str = Field(..., description="Block-off time, HH:MM[:SS]")
    arrival_time: str = Field(..., description="Block-on time, HH:MM[:SS]")
    departure_airfield_id: UUID = Field(..., description="Departure airfield")
    arrival_airfield_id: UUID = Field(..., description="Arrival airfield")
    flight_type: FlightType = Field(..., description="Flight category")

    # Optional people
    instructor_id: UUID | None = Field(default=None, description="Instructor on board")
    payer_id: UUID | None = Field(
        default=None,
        alias="payer_id",
        description="Who pays for the flight (defaults to the pilot)"
    )

    # Free text
    purpose: str | None = None
    remarks: str | None = None
    route: str | None = None
    conditions: str | None = None

    # Jeppesen time breakdown (hours)
    pilot_in_command: float = Field(default=0, ge=0)
    second_in_command: float = Field(default=0, ge=0)
    dual_received: float = Field(default=0, ge=0)
    dual_given: float = Field(default=0, ge=0)
    solo: float = Field(default=0, ge=0)
    cross_country: float = Field(default=0, ge=0)
    night: float = Field(default=0, ge=0)
    instrument: float = Field(default=0, ge=0)
    actual_instrument: float = Field(default=0, ge=0)
    simulated_instrument: float = Field(default=0, ge=0)

    # Landings
    day_landings: int = Field(default=0, ge=0)
    night_landings: int = Field(default=0, ge=0)

    # Hobbs readings, fuel and oil
    departure_hobbs: float | None = Field(default=None, ge=0)
    arrival_hobbs: float | None = Field(default=None, ge=0)
    oil_added: float = Field(default=0, ge=0)
    fuel_added: float = Field(default=0, ge=0)

    def to_row(self) -> dict[str, Any]:
        # Defaults are stored too, unlike partial updates
        return self.model_dump(by_alias=True, mode="json")


class FlightLogUpdate(_FlightLogBase):
    """Partial update; only the fields sent are written."""

    aircraft_id: UUID | None = None
    instructor_id: UUID | None = None
    payer_id: UUID | None = Field(default=None, alias="payer_id")
    date: datetime.date | None = None
    departure_time: str | None = None
    arrival_time: str | None = None
    departure_airfield_id: UUID | None = None
    arrival_airfield_id: UUID | None = None
    flight_type: FlightType | None = None
    purpose: str | None = None
    remarks: str | None = None
    route: str | None = None
    conditions: str | None = None
    pilot_in_command: float | None = Field(default=None, ge=0)
    second_in_command: float | None = Field(default=None, ge=0)
    dual_received: float | None = Field(default=None, ge=0)
    dual_given: float | None = Field(default=None, ge=0)
    solo: float | None = Field(default=None, ge=0)
    cross_country: float | None = Field(default=None, ge=0)
    night: float | None = Field(default=None, ge=0)
    instrument: float | None = Field(default=None, ge=0)
    actual_instrument: float | None = Field(default=None, ge=0)
    simulated_instrument: float | None = Field(default=None, ge=0)
    day_landings: int | None = Field(default=None, ge=0)
    night_landings: int | None = Field(default=None, ge=0)
    departure_hobbs: float | None = Field(default=None, ge=0)
    arrival_hobbs: float | None = Field(default=None, ge=0)
    oil_added: float | None = Field(default=None, ge=0)
    fuel_added: float | None = Field(default=None, ge=0)


class FlightLogFilters(BaseModel):
    """Filters shared by the list and CSV export endpoints."""

    flight_type: FlightType | None = None
    pilot_id: UUID | None = None
    aircraft_id: UUID | None = None
    instructor_id: UUID | None = None
    departure_airfield_id: UUID | None = None
    arrival_airfield_id: UUID | None = None
    date_from: datetime.date | None = None
    date_to: datetime.date | None = None
    view_mode: ViewMode = ViewMode.PERSONAL


# CSV columns required by the import endpoint (database column names)
IMPORT_REQUIRED_COLUMNS = [
    "aircraftId",
    "pilotId",
    "date",
    "departureTime",
    "arrivalTime",
    "departureAirfieldId",
    "arrivalAirfieldId",
    "flightType",
]
