# =============================================================================
# core/services/activity_logger.py - Audit Trail
# =============================================================================
# Writes user-visible audit entries to the activity_log table.
#
# Audit logging is best effort: a failed insert is logged as a warning and
# never fails the request that triggered it.
# =============================================================================

import logging
from typing import Any
from uuid import UUID

from lib.supabase_client import SupabaseClient

logger = logging.getLogger(__name__)


class ActivityLogger:
    """Insert helpers for the activity_log table."""

    @staticmethod
    def log(
        user_id: str | UUID | None,
        action: str,
        entity_type: str,
        entity_id: str | UUID | None = None,
        description: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """
        Record one activity.

        Args:
            user_id: Who performed the action (None for system actions)
            action: Upper-case action code, e.g. FLIGHT_LOG_CREATED
            entity_type: Kind of entity touched (flight_log, user, invoice...)
            entity_id: ID of the entity touched
            description: Human-readable summary
            metadata: Extra JSON context
        """
        row = {
            "user_id": str(user_id) if user_id else None,
            "action": action,
            "entity_type": entity_type,
            "entity_id": str(entity_id) if entity_id else None,
            "description": description,
            "metadata": metadata or {},
        }

        try:
            SupabaseClient.get_client().table("activity_log").insert(row).execute()
        except Exception as e:
            logger.warning(f"Failed to log activity {action} on {entity_type}: {e}")

    # -------------------------------------------------------------------------
    # Convenience wrappers
    # -------------------------------------------------------------------------

    @classmethod
    def flight_created(cls, user_id, flight_log_id, aircraft_id) -> None:
        cls.log(
            user_id,
            "FLIGHT_LOG_CREATED",
            "flight_log",
            flight_log_id,
            "Flight log created",
            {"aircraft_id": str(aircraft_id)},
        )

    @classmethod
    def flight_updated(cls, user_id, flight_log_id, fields: list[str]) -> None:
        cls.log(
            user_id,
            "FLIGHT_LOG_UPDATED",
            "flight_log",
            flight_log_id,
            f"Flight log updated: {', '.join(fields)}",
            {"fields": fields},
        )

    @classmethod
    def flight_deleted(cls, user_id, flight_log_id) -> None:
        cls.log(user_id, "FLIGHT_LOG_DELETED", "flight_log", flight_log_id, "Flight log deleted")

    @classmethod
    def user_updated(cls, user_id, target_user_id, fields: list[str]) -> None:
        cls.log(
            user_id,
            "USER_UPDATED",
            "user",
            target_user_id,
            f"User profile updated: {', '.join(fields)}",
            {"fields": fields},
        )

    @classmethod
    def role_changed(cls, user_id, target_user_id, roles: list[str]) -> None:
        cls.log(
            user_id,
            "ROLE_CHANGED",
            "user",
            target_user_id,
            f"Roles set to {', '.join(roles) or 'none'}",
            {"roles": roles},
        )

    @classmethod
    def invoice_payment_updated(cls, user_id, invoice_id, payment_status: str) -> None:
        cls.log(
            user_id,
            "INVOICE_PAYMENT_UPDATED",
            "invoice",
            invoice_id,
            f"Payment status set to {payment_status}",
            {"payment_status": payment_status},
        )

    @classmethod
    def package_ordered(cls, user_id, invoice_id, package_name: str) -> None:
        cls.log(
            user_id,
            "HOUR_PACKAGE_ORDERED",
            "invoice",
            invoice_id,
            f"Ordered hour package {package_name}",
            {"package": package_name},
        )

    @classmethod
    def verification_event(cls, user_id, session_id, decision: str) -> None:
        cls.log(
            user_id,
            f"IDENTITY_VERIFICATION_{decision.upper()}",
            "user",
            user_id,
            f"Identity verification {decision}",
            {"session_id": session_id},
        )
