# =============================================================================
# core/services/__init__.py - Service Layer Exports
# =============================================================================

from .activity_logger import ActivityLogger
from .aircraft_service import AircraftService
from .exchange_rate_service import ExchangeRateService, exchange_rates
from .flight_log_service import FlightLogService
from .hour_package_service import HourPackageService
from .invoice_service import InvoiceService
from .ledger_service import LedgerService
from .ppl_course_service import PPLCourseService
from .reconciliation_service import ReconciliationService
from .user_service import UserService
from .veriff_webhook_service import VeriffWebhookService
from .webhook_monitor import WebhookMonitor

__all__ = [
    "ActivityLogger",
    "AircraftService",
    "ExchangeRateService",
    "exchange_rates",
    "FlightLogService",
    "HourPackageService",
    "InvoiceService",
    "LedgerService",
    "PPLCourseService",
    "ReconciliationService",
    "UserService",
    "VeriffWebhookService",
    "WebhookMonitor",
]
