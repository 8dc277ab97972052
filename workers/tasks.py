# =============================================================================
# workers/tasks.py - Celery Task Definitions
# =============================================================================
# Defines background tasks for webhook recovery and data maintenance.
#
# Tasks:
# - retry_failed_webhooks: Re-run failed verification webhooks (beat, 15 min)
# - reconcile_invoice_clients: Link invoice clients to users by email
# - recalculate_aircraft_hobbs: Rebuild hobbs readings from flight logs
# - sync_verification: Pull verification data for one user
# - process_ppl_invoices: Detect PPL course tranches on new invoices
# =============================================================================

import logging
from typing import Any

from celery import shared_task

from lib.veriff_client import VeriffApiError

logger = logging.getLogger(__name__)


# =============================================================================
# Webhook Tasks
# =============================================================================

@shared_task(bind=True, name="workers.tasks.retry_failed_webhooks")
def retry_failed_webhooks(self) -> dict[str, Any]:
    """
    Re-run every failed webhook event that still has retries left.

    Returns:
        Dict with attempted, succeeded and failed counts
    """
    from core.services.veriff_webhook_service import VeriffWebhookService
    from core.services.webhook_monitor import WebhookMonitor

    report = WebhookMonitor.retry_failed_events(VeriffWebhookService.process)
    return report.model_dump()


@shared_task(bind=True, name="workers.tasks.sync_verification")
def sync_verification(self, user_id: str, session_id: str | None = None) -> dict[str, Any]:
    """
    Pull person and decision data from the provider into a user row.

    Transient provider failures are retried with Celery's retry policy.

    Args:
        user_id: User to sync
        session_id: Session to read (defaults to the stored one)

    Returns:
        Dict with success flag and the synced column names (or error)
    """
    from core.services.veriff_webhook_service import VeriffWebhookService

    try:
        columns = VeriffWebhookService.sync_user(user_id, session_id)
    except VeriffApiError as e:
        if e.retryable:
            logger.warning(f"Verification sync for {user_id} failed, retrying: {e.message}")
            raise self.retry(exc=e)
        logger.error(f"Verification sync for {user_id} failed: {e.message}")
        return {"success": False, "user_id": user_id, "error": e.message}

    return {"success": True, "user_id": user_id, "synced_fields": sorted(columns)}


# =============================================================================
# Data Maintenance Tasks
# =============================================================================

@shared_task(bind=True, name="workers.tasks.reconcile_invoice_clients")
def reconcile_invoice_clients(self, dry_run: bool = False) -> dict[str, Any]:
    """
    Link invoice clients without a user_id to users with the same email.

    Args:
        dry_run: Compute the report without writing

    Returns:
        ReconciliationReport as a dict
    """
    from core.services.reconciliation_service import ReconciliationService

    report = ReconciliationService.reconcile_invoice_clients(dry_run=dry_run)
    return report.model_dump()


@shared_task(bind=True, name="workers.tasks.recalculate_aircraft_hobbs")
def recalculate_aircraft_hobbs(self, aircraft_id: str | None = None) -> dict[str, Any]:
    """
    Rebuild hobbs readings from the latest flight logs.

    Args:
        aircraft_id: One aircraft, or None for the whole fleet

    Returns:
        Dict with the number of aircraft processed and updated
    """
    from core.services.aircraft_service import AircraftService

    if aircraft_id:
        aircraft_ids = [aircraft_id]
    else:
        aircraft_ids = [plane["id"] for plane in AircraftService.list_aircraft()]

    updated = 0
    for current_id in aircraft_ids:
        if AircraftService.recalculate_aircraft_hobbs(current_id) is not None:
            updated += 1

    logger.info(f"Hobbs recalculated for {len(aircraft_ids)} aircraft, {updated} with readings")
    return {"processed": len(aircraft_ids), "updated": updated}


@shared_task(bind=True, name="workers.tasks.process_ppl_invoices")
def process_ppl_invoices(self) -> dict[str, int]:
    """Store PPL course tranches for fiscal invoices not yet processed."""
    from core.services.ppl_course_service import PPLCourseService

    return PPLCourseService.process_pending_invoices()
