# =============================================================================
# app/routers/ - API Route Definitions
# =============================================================================
# This package contains FastAPI routers organized by feature:
# - health.py: Health check endpoints
# - users.py: Profiles, roles and per-user invoice views
# - fleet.py: Aircraft and hobbs tracking
# - flight_logs.py: Flight logging, CSV export and import
# - invoices.py: Invoice details and payment status
# - hour_packages.py: Package templates and proforma orders
# - ppl_courses.py: PPL course tranches
# - usage.py: Hour ledger and client hours
# - veriff.py: Identity verification webhook and sessions
# - webhooks.py: Webhook monitoring (admin)
# - reconciliation.py: Invoice client linking (admin)
#
# Each router is mounted in main.py with a URL prefix.
# =============================================================================

from . import health
from . import users
from . import fleet
from . import flight_logs
from . import invoices
from . import hour_packages
from . import ppl_courses
from . import usage
from . import veriff
from . import webhooks
from . import reconciliation

__all__ = [
    "health",
    "users",
    "fleet",
    "flight_logs",
    "invoices",
    "hour_packages",
    "ppl_courses",
    "usage",
    "veriff",
    "webhooks",
    "reconciliation",
]
