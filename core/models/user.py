# =============================================================================
# core/models/user.py - User Profile Schemas
# =============================================================================

import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class UserUpdate(BaseModel):
    """
    Profile fields a user may change on their own account.

    Managers may additionally set `status`; the service rejects it for
    everyone else.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    phone: str | None = Field(default=None, max_length=30)
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str | None = None
    status: str | None = None

    def to_row(self) -> dict[str, Any]:
        """Dump set fields using database column names."""
        return self.model_dump(by_alias=True, exclude_unset=True, mode="json")


class RoleAssignment(BaseModel):
    """Replacement role set for a user."""
    roles: list[str] = Field(..., description="Role names, e.g. [\"PILOT\", \"INSTRUCTOR\"]")


# Header of the user import CSV; the first three are required
USER_IMPORT_COLUMNS = [
    "email",
    "firstName",
    "lastName",
    "personalNumber",
    "phone",
    "dateOfBirth",
    "address",
    "city",
    "state",
    "zipCode",
    "country",
    "status",
    "totalFlightHours",
    "licenseNumber",
    "medicalClass",
    "instructorRating",
    "role",
]
USER_IMPORT_REQUIRED_COLUMNS = ["email", "firstName", "lastName"]


class UserImportRow(BaseModel):
    """
    One row of a user import.

    Existing users (matched by email) get their profile fields
    overwritten; `role` only applies to newly created users.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    personal_number: str | None = None
    phone: str | None = Field(default=None, max_length=30)
    date_of_birth: datetime.date | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str | None = None
    status: str = "ACTIVE"
    total_flight_hours: float = Field(default=0, ge=0)
    license_number: str | None = None
    medical_class: str | None = None
    instructor_rating: str | None = None
    role: str = "PILOT"

    def profile_row(self) -> dict[str, Any]:
        """Profile columns, with every optional field written (missing ones as null)."""
        row = self.model_dump(by_alias=True, mode="json", exclude={"email", "role"})
        row["email"] = self.email.strip().lower()
        return row
