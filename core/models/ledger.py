# =============================================================================
# core/models/ledger.py - Hour Usage Ledger Schemas
# =============================================================================
# A ledger merges purchased hours (invoice hour lines) and flown hours
# (flight logs) into one chronological list with a running balance.
#
# A package usage report splits the same hours per purchased package,
# spending the oldest package first.
# =============================================================================

from enum import Enum

from pydantic import BaseModel, Field


class LedgerEventType(str, Enum):
    INVOICE = "invoice"
    FLIGHT = "flight"


class LedgerRole(str, Enum):
    """The user's part in a flight."""
    PILOT = "PILOT"
    INSTRUCTOR = "INSTRUCTOR"
    PAYER = "PAYER"


class LedgerEntry(BaseModel):
    """
    One ledger line.

    `balance` is the running balance after this entry; positive means
    prepaid hours left, negative means hours owed.
    """
    date: str = Field(..., description="Issue date (invoice) or flight date")
    event_type: LedgerEventType
    reference: str = Field(..., description="Invoice number or F-<flight id prefix>")
    description: str
    hours_added: float = 0
    hours_deducted: float = 0
    balance: float = 0

    # Flight entries
    flight_type: str | None = None
    role: LedgerRole | None = None
    flight_id: str | None = None

    # Invoice entries
    invoice_amount: float | None = None
    currency: str | None = None


class FlightTypeTotal(BaseModel):
    hours: float = 0
    count: int = 0


class LedgerSummary(BaseModel):
    total_hours_added: float = 0
    total_hours_deducted: float = 0
    final_balance: float = 0
    entry_count: int = 0
    invoice_count: int = 0
    flight_count: int = 0
    # Keyed by lowercase flight type; hours the user flew or paid for
    hours_by_type: dict[str, FlightTypeTotal] = Field(default_factory=dict)


class Ledger(BaseModel):
    user_id: str
    entries: list[LedgerEntry]
    summary: LedgerSummary


class ClientHours(BaseModel):
    """Purchased vs. flown hours for one client."""
    user_id: str | None = None
    name: str = ""
    email: str = ""
    purchased_hours: float = 0
    flown_hours: float = 0
    remaining_hours: float = 0
    invoice_count: int = 0
    flight_count: int = 0


# =============================================================================
# Package Usage
# =============================================================================

class PackageStatus(str, Enum):
    IN_PROGRESS = "in progress"
    LOW_HOURS = "low hours"
    OVERDRAWN = "overdrawn"
    EXPIRED = "expired"


class FlightAllocation(BaseModel):
    """The part of one flight charged to one package."""
    flight_id: str
    date: str
    hours: float = Field(..., description="Hours charged to this package")
    total_flight_hours: float
    flight_type: str
    role: LedgerRole


class PackageUsage(BaseModel):
    """
    One purchased hour line and the flights charged to it.

    remaining_hours goes negative on the newest package once every
    package is used up.
    """
    id: str = Field(..., description="<invoice id>-<line id>")
    invoice_id: str = Field(..., description="Invoice number (series and number)")
    total_hours: float
    used_hours: float = 0
    chartered_hours: float = 0
    remaining_hours: float = 0
    purchase_date: str
    expiry_date: str | None = None
    status: PackageStatus = PackageStatus.IN_PROGRESS
    price: float = 0
    currency: str
    allocated_flights: list[FlightAllocation] = Field(default_factory=list)
    allocated_chartered_flights: list[FlightAllocation] = Field(default_factory=list)


class UsageStatistics(BaseModel):
    """Hours and flight counts by kind; regular excludes ferry, demo and charter."""
    regular: FlightTypeTotal = Field(default_factory=FlightTypeTotal)
    chartered: FlightTypeTotal = Field(default_factory=FlightTypeTotal)
    demo: FlightTypeTotal = Field(default_factory=FlightTypeTotal)
    ferry: FlightTypeTotal = Field(default_factory=FlightTypeTotal)
    pilot_charter: FlightTypeTotal = Field(default_factory=FlightTypeTotal)


class PackageUsageReport(BaseModel):
    user: dict
    packages: list[PackageUsage]
    total_purchased_hours: float = 0
    total_used_hours: float = 0
    total_chartered_hours: float = 0
    remaining_hours: float = 0
    flight_count: int = 0
    statistics: UsageStatistics = Field(default_factory=UsageStatistics)
