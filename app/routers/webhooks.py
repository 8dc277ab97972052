# =============================================================================
# app/routers/webhooks.py - Webhook Monitoring Endpoints
# =============================================================================
# Metrics, failures and alerts over recorded verification webhooks, and a
# trigger for retrying failed ones. Admin roles only.
# =============================================================================

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from app.auth import ADMIN_ROLES, require_roles
from core.models.webhook import WebhookAlert, WebhookMetrics
from core.services.webhook_monitor import WebhookMonitor

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_roles(*ADMIN_ROLES))])


@router.get("/metrics", response_model=WebhookMetrics)
async def get_metrics(
    hours: Annotated[float, Query(description="Look-back window; 0 for all events")] = 24,
):
    """Success rate, processing time and type breakdown over a time window."""
    return WebhookMonitor.get_metrics(hours)


@router.get("/failed")
async def get_failed_events():
    """Failed events that still have retries left, newest first."""
    events = WebhookMonitor.get_failed_events()
    return {"events": events, "total": len(events)}


@router.get("/alerts", response_model=list[WebhookAlert])
async def get_alerts():
    return WebhookMonitor.get_alerts()


@router.post("/retry", status_code=status.HTTP_202_ACCEPTED)
async def retry_failed_webhooks():
    """
    Queue a retry of every failed webhook event.

    The retry runs on a worker; poll /webhooks/failed to follow it.
    """
    from workers.tasks import retry_failed_webhooks as retry_task

    task = retry_task.delay()
    logger.info(f"Webhook retry queued: task {task.id}")
    return {"task_id": task.id, "status": "queued"}
