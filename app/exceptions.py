# =============================================================================
# app/exceptions.py - Custom Exception Handlers
# =============================================================================
# Centralized exception handling for the API.
# Errors should tell HOW to fix, not just WHAT failed.
# =============================================================================

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


class FlightSchoolException(Exception):
    """
    Base exception for the flight school API.

    All custom exceptions inherit from this class.
    Provides structured error responses with actionable suggestions.
    """

    def __init__(
        self,
        message: str,
        code: str = "FLIGHT_SCHOOL_ERROR",
        status_code: int = 500,
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.suggestion = suggestion
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response dict."""
        result = {
            "detail": self.message,
            "code": self.code,
        }
        if self.suggestion:
            result["suggestion"] = self.suggestion
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Lookup Exceptions
# =============================================================================

class UserNotFoundError(FlightSchoolException):
    """Raised when a user ID doesn't exist."""

    def __init__(self, user_id: str):
        super().__init__(
            message=f"User not found: {user_id}",
            code="USER_NOT_FOUND",
            status_code=404,
            suggestion="Check that the user_id is correct and the account hasn't been removed",
            details={"user_id": user_id}
        )


class AircraftNotFoundError(FlightSchoolException):
    """Raised when an aircraft ID doesn't exist."""

    def __init__(self, aircraft_id: str):
        super().__init__(
            message=f"Aircraft not found: {aircraft_id}",
            code="AIRCRAFT_NOT_FOUND",
            status_code=404,
            suggestion="List the fleet with GET /fleet/aircraft to find a valid aircraft_id",
            details={"aircraft_id": aircraft_id}
        )


class AirfieldNotFoundError(FlightSchoolException):
    """Raised when an airfield ID doesn't exist."""

    def __init__(self, airfield_id: str):
        super().__init__(
            message=f"Airfield not found: {airfield_id}",
            code="AIRFIELD_NOT_FOUND",
            status_code=404,
            suggestion="Check the departure and arrival airfield ids",
            details={"airfield_id": airfield_id}
        )


class FlightLogNotFoundError(FlightSchoolException):
    """Raised when a flight log ID doesn't exist or isn't visible to the caller."""

    def __init__(self, flight_log_id: str):
        super().__init__(
            message=f"Flight log not found: {flight_log_id}",
            code="FLIGHT_LOG_NOT_FOUND",
            status_code=404,
            suggestion="Check that the flight log id is correct",
            details={"flight_log_id": flight_log_id}
        )


class InvoiceNotFoundError(FlightSchoolException):
    """Raised when an invoice ID doesn't exist."""

    def __init__(self, invoice_id: str):
        super().__init__(
            message=f"Invoice not found: {invoice_id}",
            code="INVOICE_NOT_FOUND",
            status_code=404,
            suggestion="Check that the invoice id is correct",
            details={"invoice_id": invoice_id}
        )


class HourPackageNotFoundError(FlightSchoolException):
    """Raised when an hour package template doesn't exist or is inactive."""

    def __init__(self, package_id: str):
        super().__init__(
            message=f"Hour package not found: {package_id}",
            code="HOUR_PACKAGE_NOT_FOUND",
            status_code=404,
            suggestion="List active packages with GET /hour-packages/templates",
            details={"package_id": package_id}
        )


class AircraftAlreadyExistsError(FlightSchoolException):
    """Raised when a registration number is already in the fleet."""

    def __init__(self, registration_number: str):
        super().__init__(
            message=f"Aircraft already exists: {registration_number}",
            code="AIRCRAFT_ALREADY_EXISTS",
            status_code=409,
            suggestion="Update the existing aircraft instead of creating a new one",
            details={"registration_number": registration_number}
        )


class InvoiceAlreadyImportedError(FlightSchoolException):
    """Raised when an XML invoice is already stored."""

    def __init__(self, smartbill_id: str, invoice_id: str):
        super().__init__(
            message=f"Invoice already imported: {smartbill_id}",
            code="INVOICE_ALREADY_IMPORTED",
            status_code=409,
            suggestion="Delete the stored invoice first to import it again",
            details={"smartbill_id": smartbill_id, "invoice_id": invoice_id}
        )


# =============================================================================
# Access Exceptions
# =============================================================================

class PermissionDeniedError(FlightSchoolException):
    """Raised when the caller's roles don't allow the operation."""

    def __init__(self, action: str, required_roles: list[str] | None = None):
        details: dict[str, Any] = {"action": action}
        if required_roles:
            details["required_roles"] = sorted(required_roles)
        super().__init__(
            message=f"Insufficient permissions to {action}",
            code="PERMISSION_DENIED",
            status_code=403,
            suggestion="Ask an administrator to grant the required role",
            details=details
        )


# =============================================================================
# Validation Exceptions
# =============================================================================

class InvalidFlightTimesError(FlightSchoolException):
    """Raised when departure/arrival times can't be parsed."""

    def __init__(self, departure_time: str, arrival_time: str):
        super().__init__(
            message=f"Invalid flight times: {departure_time} -> {arrival_time}",
            code="INVALID_FLIGHT_TIMES",
            status_code=400,
            suggestion="Use HH:MM or HH:MM:SS (24h) for departureTime and arrivalTime",
            details={"departure_time": departure_time, "arrival_time": arrival_time}
        )


class InvalidRoleError(FlightSchoolException):
    """Raised when assigning a role name that doesn't exist."""

    def __init__(self, roles: list[str]):
        super().__init__(
            message=f"Unknown roles: {', '.join(roles)}",
            code="INVALID_ROLE",
            status_code=400,
            suggestion="Use one of the role names returned by the roles table",
            details={"roles": roles}
        )


# =============================================================================
# Upload Exceptions
# =============================================================================

class InvalidFileTypeError(FlightSchoolException):
    """Raised when uploaded file type is not allowed."""

    def __init__(self, filename: str, allowed: list[str]):
        super().__init__(
            message=f"Invalid file type: {filename}",
            code="INVALID_FILE_TYPE",
            status_code=400,
            suggestion=f"Only these file types are supported: {', '.join(allowed)}",
            details={"filename": filename, "allowed_types": allowed}
        )


class FileTooLargeError(FlightSchoolException):
    """Raised when uploaded file exceeds size limit."""

    def __init__(self, size_mb: float, max_mb: int):
        super().__init__(
            message=f"File too large: {size_mb:.1f}MB (max: {max_mb}MB)",
            code="FILE_TOO_LARGE",
            status_code=413,
            suggestion=f"Upload a file smaller than {max_mb}MB or split the import",
            details={"size_mb": size_mb, "max_mb": max_mb}
        )


class FileReadError(FlightSchoolException):
    """Raised when CSV file cannot be read."""

    def __init__(self, filename: str, error: str):
        super().__init__(
            message=f"Failed to read file: {error}",
            code="FILE_READ_ERROR",
            status_code=400,
            suggestion="Check that the file is a valid CSV with a header row",
            details={"filename": filename, "error": error}
        )


class InvalidInvoiceXmlError(FlightSchoolException):
    """Raised when an uploaded invoice isn't a readable e-invoice XML."""

    def __init__(self, filename: str, errors: list[str]):
        super().__init__(
            message=f"Invalid invoice XML: {'; '.join(errors)}",
            code="INVALID_INVOICE_XML",
            status_code=400,
            suggestion="Upload the UBL 2.1 XML exported by the invoicing system",
            details={"filename": filename, "errors": errors}
        )


# =============================================================================
# Upstream Exceptions
# =============================================================================

class ExchangeRateUnavailableError(FlightSchoolException):
    """Raised when no exchange rate (fresh or cached) is available."""

    def __init__(self, from_currency: str, to_currency: str, error: str):
        super().__init__(
            message=f"Exchange rate {from_currency}->{to_currency} unavailable: {error}",
            code="EXCHANGE_RATE_UNAVAILABLE",
            status_code=503,
            suggestion="The rates feed is unreachable; try again later",
            details={"from": from_currency, "to": to_currency}
        )


# =============================================================================
# Exception Handlers
# =============================================================================

async def flight_school_exception_handler(
    request: Request,
    exc: FlightSchoolException
) -> JSONResponse:
    """
    Convert FlightSchoolException to JSON response.

    Returns structured error with:
    - detail: Human-readable message
    - code: Machine-readable error code
    - suggestion: How to fix (if available)
    - details: Additional context
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict()
    )


async def validation_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """
    Handle Pydantic validation errors.

    Converts validation errors to user-friendly messages.
    """
    return JSONResponse(
        status_code=422,
        content={
            "detail": "Validation error",
            "code": "VALIDATION_ERROR",
            "errors": str(exc)
        }
    )


async def upstream_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """
    Handle errors raised by the database and verification clients.

    SupabaseClientError -> 503, anything else from lib (the verification
    provider) -> 502.
    """
    from lib.supabase_client import SupabaseClientError

    status_code = 503 if isinstance(exc, SupabaseClientError) else 502
    content = {
        "detail": getattr(exc, "message", str(exc)),
        "code": getattr(exc, "code", "UPSTREAM_ERROR"),
    }
    suggestion = getattr(exc, "suggestion", None)
    if suggestion:
        content["suggestion"] = suggestion
    return JSONResponse(status_code=status_code, content=content)
