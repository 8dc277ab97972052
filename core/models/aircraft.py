# =============================================================================
# core/models/aircraft.py - Fleet Schemas
# =============================================================================
# These models define the API contract for fleet operations:
# - AircraftCreate / AircraftUpdate: Fleet management input
# - HobbsRecord: Last known hobbs meter reading of an aircraft
# - FLEET_IMPORT_COLUMNS: Header of the fleet CSV import
#
# The aircraft table is camelCase (registrationNumber, baseId...);
# aircraft_hobbs is snake_case.
# =============================================================================

import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AircraftStatus(str, Enum):
    ACTIVE = "ACTIVE"
    MAINTENANCE = "MAINTENANCE"
    INACTIVE = "INACTIVE"


class _AircraftBase(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_row(self) -> dict[str, Any]:
        """Dump set fields using database column names."""
        return self.model_dump(by_alias=True, exclude_unset=True, mode="json")


class AircraftCreate(_AircraftBase):
    """
    Schema for adding an aircraft to the fleet.

    Example:
        {
            "registrationNumber": "YR-ABC",
            "manufacturer": "Cessna",
            "model": "172S",
            "type": "SEP"
        }
    """

    registration_number: str = Field(..., min_length=1, max_length=20)
    manufacturer: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    icao_type: str | None = None
    type: str = "UNKNOWN"
    status: AircraftStatus = AircraftStatus.ACTIVE
    base_id: str | None = Field(default=None, description="Home base (airfield) id")
    year_of_manufacture: int | None = Field(default=None, ge=1900)
    total_flight_hours: float = Field(default=0, ge=0)
    hourly_rate: float | None = Field(default=None, ge=0)
    last_maintenance_date: datetime.date | None = None
    next_maintenance_date: datetime.date | None = None
    insurance_expiry_date: datetime.date | None = None
    registration_expiry_date: datetime.date | None = None
    image_path: str | None = None

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class AircraftUpdate(_AircraftBase):
    """Partial update; only the fields sent are written."""

    registration_number: str | None = Field(default=None, min_length=1, max_length=20)
    manufacturer: str | None = None
    model: str | None = None
    icao_type: str | None = None
    type: str | None = None
    status: AircraftStatus | None = None
    base_id: str | None = None
    year_of_manufacture: int | None = Field(default=None, ge=1900)
    total_flight_hours: float | None = Field(default=None, ge=0)
    hourly_rate: float | None = Field(default=None, ge=0)
    last_maintenance_date: datetime.date | None = None
    next_maintenance_date: datetime.date | None = None
    insurance_expiry_date: datetime.date | None = None
    registration_expiry_date: datetime.date | None = None
    image_path: str | None = None


class HobbsRecord(BaseModel):
    """Row of aircraft_hobbs (one per aircraft)."""
    aircraft_id: str
    last_hobbs_reading: float
    last_hobbs_date: str = Field(..., description="ISO date of the flight that set the reading")
    last_flight_log_id: str | None = None
    updated_at: str | None = None


# Header of the fleet import CSV; the first three are required
FLEET_IMPORT_COLUMNS = [
    "registrationNumber",
    "manufacturer",
    "model",
    "icaoType",
    "type",
    "status",
    "baseId",
    "yearOfManufacture",
    "hourlyRate",
    "imagePath",
]
FLEET_IMPORT_REQUIRED_COLUMNS = ["registrationNumber", "manufacturer", "model"]
