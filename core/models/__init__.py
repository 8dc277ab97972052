# =============================================================================
# core/models/ - Pydantic Data Models
# =============================================================================
# This package contains Pydantic schemas for data validation:
# - aircraft.py: Fleet and hobbs schemas
# - flight_log.py: Flight log create/update/filter schemas
# - user.py: Profile update and role assignment
# - invoice.py: Unified fiscal/proforma invoice read model
# - hour_package.py: Hour package templates and VAT breakdown
# - ppl_course.py: PPL course tranches
# - ledger.py: Hour usage ledger
# - webhook.py: Verification webhook processing and monitoring
# - reconciliation.py: Invoice client linking reports
#
# These models define the "contract" between API and clients.
# =============================================================================

from .aircraft import AircraftCreate, AircraftStatus, AircraftUpdate, HobbsRecord
from .flight_log import (
    FlightLogCreate,
    FlightLogFilters,
    FlightLogUpdate,
    FlightType,
    ViewMode,
)
from .user import RoleAssignment, UserUpdate
from .invoice import (
    InvoiceSummary,
    InvoiceType,
    InvoiceTypeFilter,
    PaymentStatus,
    UnifiedInvoice,
)
from .hour_package import HourPackageTemplateCreate, HourPackageTemplateUpdate, VatBreakdown
from .ppl_course import PPLCourseSummary, PPLCourseTranche, TrancheInfo, TrancheStatus
from .ledger import ClientHours, Ledger, LedgerEntry, LedgerSummary
from .webhook import (
    RetryReport,
    WebhookAlert,
    WebhookMetrics,
    WebhookProcessingResult,
    WebhookType,
)
from .reconciliation import LinkPlan, ReconciliationReport, UnlinkedClientGroup

__all__ = [
    # Fleet
    "AircraftCreate",
    "AircraftStatus",
    "AircraftUpdate",
    "HobbsRecord",
    # Flight logs
    "FlightLogCreate",
    "FlightLogFilters",
    "FlightLogUpdate",
    "FlightType",
    "ViewMode",
    # Users
    "RoleAssignment",
    "UserUpdate",
    # Billing
    "InvoiceSummary",
    "InvoiceType",
    "InvoiceTypeFilter",
    "PaymentStatus",
    "UnifiedInvoice",
    "HourPackageTemplateCreate",
    "HourPackageTemplateUpdate",
    "VatBreakdown",
    "PPLCourseSummary",
    "PPLCourseTranche",
    "TrancheInfo",
    "TrancheStatus",
    # Usage
    "ClientHours",
    "Ledger",
    "LedgerEntry",
    "LedgerSummary",
    # Webhooks
    "RetryReport",
    "WebhookAlert",
    "WebhookMetrics",
    "WebhookProcessingResult",
    "WebhookType",
    # Reconciliation
    "LinkPlan",
    "ReconciliationReport",
    "UnlinkedClientGroup",
]
