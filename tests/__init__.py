# =============================================================================
# tests/ - Test Suite
# =============================================================================
# This package contains all tests for the Flight School API:
# - test_flight_logs.py: Block time, hobbs rule, flight log create/import
# - test_invoices.py / test_ledger.py: Unified invoices and hour ledgers
# - test_hour_packages.py / test_exchange_rates.py: Proforma orders, BNR rates
# - test_ppl_courses.py: PPL tranche parsing and usage
# - test_webhooks.py / test_veriff_client.py: Identity verification
# - test_reconciliation.py: Invoice client linking
# - test_api.py: HTTP layer (routing, roles, status codes)
#
# Run tests with: pytest
# =============================================================================
