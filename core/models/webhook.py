# =============================================================================
# core/models/webhook.py - Verification Webhook Schemas
# =============================================================================
# Models for identity-verification webhooks and their monitoring:
# - WebhookType: Classification of an incoming callback
# - WebhookProcessingResult: Outcome of processing one callback
# - WebhookMetrics / WebhookAlert: Monitoring read models
#
# webhook_events columns are lowercase without separators (userid,
# eventtype, retrycount...), as created by the original migration.
# =============================================================================

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class WebhookType(str, Enum):
    SUBMITTED = "submitted"
    APPROVED = "approved"
    DECLINED = "declined"
    UNKNOWN = "unknown"


class WebhookEventType(str, Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    FAILED = "failed"
    RETRY = "retry"


class WebhookEventStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class WebhookProcessingResult(BaseModel):
    """
    Outcome of processing one webhook.

    `retryable` tells the HTTP layer to answer 202 so the provider
    delivers the callback again.
    """
    success: bool
    message: str
    user_id: str | None = None
    session_id: str | None = None
    action: str | None = None
    data: dict[str, Any] | None = None
    error: str | None = None
    retryable: bool = False


class WebhookMetrics(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    pending: int = 0
    success_rate: float = Field(default=0, description="Percent of events that succeeded")
    average_processing_time: float = Field(default=0, description="Milliseconds, each event capped at 60s")
    webhook_type_breakdown: dict[str, int] = Field(
        default_factory=lambda: {t.value: 0 for t in WebhookType}
    )


class AlertSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


class WebhookAlert(BaseModel):
    type: str
    severity: AlertSeverity
    message: str
    count: int = 0


class RetryReport(BaseModel):
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
