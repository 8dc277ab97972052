# =============================================================================
# core/ - Business Logic Package
# =============================================================================
# This package contains the flight school's business logic:
# - models/: Pydantic schemas for request bodies and read models
# - services/: Database operations and domain rules
#
# Code in this package should NOT import FastAPI routers or Celery.
# Routes and tasks call into services, never the other way round.
# =============================================================================
