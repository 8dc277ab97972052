# =============================================================================
# core/services/webhook_monitor.py - Webhook Event Monitoring
# =============================================================================
# Every verification webhook is recorded in webhook_events:
#
#   received (pending) --process--> success
#                       \---------> error --retry (< max)--> success | error
#
# The monitor computes metrics and alerts over those rows and drives the
# retry of failed events. Recording is best effort: a failed insert never
# breaks webhook processing.
# =============================================================================

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from uuid import UUID

from lib.supabase_client import SupabaseClient
from lib.utils import utc_now_iso
from core.models.webhook import (
    AlertSeverity,
    RetryReport,
    WebhookAlert,
    WebhookEventStatus,
    WebhookEventType,
    WebhookMetrics,
    WebhookProcessingResult,
    WebhookType,
)
from app.config import settings

logger = logging.getLogger(__name__)

# Longer processing times are treated as stuck, not slow
MAX_PROCESSING_TIME_MS = 60_000


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def compute_metrics(events: list[dict[str, Any]]) -> WebhookMetrics:
    """
    Aggregate webhook_events rows.

    Args:
        events: Rows with status, webhooktype, createdat and processedat

    Returns:
        WebhookMetrics (success_rate in percent, average time in ms)
    """
    total = len(events)
    if total == 0:
        return WebhookMetrics()

    successful = sum(1 for e in events if e.get("status") == WebhookEventStatus.SUCCESS.value)
    failed = sum(1 for e in events if e.get("status") == WebhookEventStatus.ERROR.value)
    pending = sum(1 for e in events if e.get("status") == WebhookEventStatus.PENDING.value)

    durations = []
    for event in events:
        created = _parse_timestamp(event.get("createdat"))
        processed = _parse_timestamp(event.get("processedat"))
        if created is None or processed is None:
            continue
        elapsed_ms = (processed - created).total_seconds() * 1000
        durations.append(min(max(elapsed_ms, 0.0), MAX_PROCESSING_TIME_MS))

    breakdown = {t.value: 0 for t in WebhookType}
    for event in events:
        webhook_type = event.get("webhooktype")
        if webhook_type not in breakdown or webhook_type == WebhookType.UNKNOWN.value:
            webhook_type = WebhookType.UNKNOWN.value
        breakdown[webhook_type] += 1

    return WebhookMetrics(
        total=total,
        successful=successful,
        failed=failed,
        pending=pending,
        success_rate=round(successful / total * 100, 2),
        average_processing_time=round(sum(durations) / len(durations), 2) if durations else 0,
        webhook_type_breakdown=breakdown,
    )


class WebhookMonitor:
    """
    Recording and reporting of webhook_events.

    All methods are static; the table is the only state.
    """

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    @staticmethod
    def log_event(
        user_id: str | UUID | None,
        event_type: WebhookEventType,
        webhook_type: WebhookType,
        session_id: str | None,
        status: WebhookEventStatus,
        payload: dict[str, Any] | None = None,
        error: str | None = None,
        retry_count: int = 0,
    ) -> str | None:
        """
        Insert a webhook event.

        Returns:
            The new event id, or None if it couldn't be recorded
        """
        row = {
            "userid": str(user_id) if user_id else None,
            "eventtype": event_type.value,
            "webhooktype": webhook_type.value,
            "sessionid": session_id,
            "status": status.value,
            "payload": payload,
            "error": error,
            "retrycount": retry_count,
            "createdat": utc_now_iso(),
        }

        try:
            response = SupabaseClient.get_client().table("webhook_events").insert(row).execute()
        except Exception as e:
            logger.warning(f"Failed to record webhook event for session {session_id}: {e}")
            return None

        if not response.data:
            return None
        return response.data[0].get("id")

    @staticmethod
    def mark_processed(event_id: str | None, success: bool, error: str | None = None) -> None:
        """Set the final status of an event (no-op without an id)."""
        if not event_id:
            return

        status = WebhookEventStatus.SUCCESS if success else WebhookEventStatus.ERROR
        try:
            SupabaseClient.get_client().table("webhook_events").update({
                "status": status.value,
                "processedat": utc_now_iso(),
                "error": error,
            }).eq("id", event_id).execute()
        except Exception as e:
            logger.warning(f"Failed to mark webhook event {event_id} as {status.value}: {e}")

    @staticmethod
    def increment_retry_count(event_id: str) -> int:
        """
        Bump retrycount of an event.

        Returns:
            The new retry count
        """
        event = SupabaseClient.fetch_one("webhook_events", "id", event_id, columns="id, retrycount")
        count = int((event or {}).get("retrycount") or 0) + 1

        SupabaseClient.get_client().table("webhook_events").update(
            {"retrycount": count}
        ).eq("id", event_id).execute()
        return count

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    @staticmethod
    def get_events(hours: float = 24) -> list[dict[str, Any]]:
        """Events created in the last `hours` (every event when hours <= 0)."""
        client = SupabaseClient.get_client()
        columns = "id, status, webhooktype, createdat, processedat"

        def build_query():
            query = client.table("webhook_events").select(columns)
            if hours > 0:
                since = datetime.now(timezone.utc) - timedelta(hours=hours)
                query = query.gte("createdat", since.isoformat())
            return query.order("createdat", desc=True)

        return SupabaseClient.paginate(build_query, label="webhook_events")

    @staticmethod
    def get_metrics(hours: float = 24) -> WebhookMetrics:
        return compute_metrics(WebhookMonitor.get_events(hours))

    @staticmethod
    def get_failed_events() -> list[dict[str, Any]]:
        """Errored events that still have retries left, newest first."""
        client = SupabaseClient.get_client()
        response = (
            client.table("webhook_events")
            .select("*")
            .eq("status", WebhookEventStatus.ERROR.value)
            .lt("retrycount", settings.WEBHOOK_MAX_RETRIES)
            .order("createdat", desc=True)
            .execute()
        )
        return response.data or []

    @staticmethod
    def get_stale_pending_events(older_than: timedelta = timedelta(hours=1)) -> list[dict[str, Any]]:
        cutoff = datetime.now(timezone.utc) - older_than
        client = SupabaseClient.get_client()
        response = (
            client.table("webhook_events")
            .select("id, sessionid, createdat")
            .eq("status", WebhookEventStatus.PENDING.value)
            .lt("createdat", cutoff.isoformat())
            .execute()
        )
        return response.data or []

    @staticmethod
    def get_alerts() -> list[WebhookAlert]:
        """
        Current problems worth an operator's attention.

        - failure rate over the last hour above WEBHOOK_ALERT_FAILURE_RATE
        - events stuck in pending for more than an hour
        - failed events waiting for a retry
        """
        alerts: list[WebhookAlert] = []

        metrics = WebhookMonitor.get_metrics(hours=1)
        if metrics.total > 0:
            failure_rate = metrics.failed / metrics.total * 100
            if failure_rate > settings.WEBHOOK_ALERT_FAILURE_RATE:
                alerts.append(WebhookAlert(
                    type="high_failure_rate",
                    severity=AlertSeverity.CRITICAL,
                    message=f"High webhook failure rate: {failure_rate:.1f}%",
                    count=metrics.failed,
                ))

        stale = WebhookMonitor.get_stale_pending_events()
        if stale:
            alerts.append(WebhookAlert(
                type="stale_pending",
                severity=AlertSeverity.WARNING,
                message=f"{len(stale)} webhooks pending for more than 1 hour",
                count=len(stale),
            ))

        failed = WebhookMonitor.get_failed_events()
        if failed:
            alerts.append(WebhookAlert(
                type="failed_awaiting_retry",
                severity=AlertSeverity.WARNING,
                message=f"{len(failed)} failed webhooks need retry",
                count=len(failed),
            ))

        return alerts

    # -------------------------------------------------------------------------
    # Retry
    # -------------------------------------------------------------------------

    @staticmethod
    def retry_failed_events(
        process: Callable[..., WebhookProcessingResult],
    ) -> RetryReport:
        """
        Re-run failed events through a webhook processor.

        Args:
            process: Called as process(payload, event_id=...) for each
                failed event with a stored payload

        Returns:
            RetryReport with attempted/succeeded/failed counts
        """
        report = RetryReport()

        for event in WebhookMonitor.get_failed_events():
            payload = event.get("payload")
            if not isinstance(payload, dict):
                logger.warning(f"Webhook event {event['id']} has no payload to retry")
                continue

            retry_count = WebhookMonitor.increment_retry_count(event["id"])
            report.attempted += 1
            logger.info(f"Retrying webhook event {event['id']} (attempt {retry_count})")

            result = process(payload, event_id=event["id"])
            if result.success:
                report.succeeded += 1
            else:
                report.failed += 1

        logger.info(
            f"Webhook retry: {report.attempted} attempted, "
            f"{report.succeeded} succeeded, {report.failed} failed"
        )
        return report
