# =============================================================================
# core/services/reconciliation_service.py - Invoice Client Linking
# =============================================================================
# invoice_clients.user_id was added after years of imported invoices, so
# many client rows only carry an email. This service links them to users
# by email and reports what could not be linked.
#
# Linking only ever fills NULL user_id values; existing links are never
# overwritten.
# =============================================================================

import logging
from collections import Counter
from typing import Any

from lib.supabase_client import SupabaseClient
from lib.utils import normalize_email
from core.models.reconciliation import LinkPlan, ReconciliationReport, UnlinkedClientGroup

logger = logging.getLogger(__name__)


def plan_client_links(clients: list[dict[str, Any]], users: list[dict[str, Any]]) -> LinkPlan:
    """
    Work out which invoice client rows can be linked to which user.

    Args:
        clients: invoice_clients rows (id, email, name, vat_code, user_id)
        users: users rows (id, email)

    Returns:
        LinkPlan; emails shared by several users are reported as ambiguous
        and never linked
    """
    email_counts = Counter(normalize_email(u.get("email")) for u in users)
    ambiguous = sorted(e for e, n in email_counts.items() if e and n > 1)
    users_by_email = {
        normalize_email(u.get("email")): str(u["id"])
        for u in users
        if email_counts[normalize_email(u.get("email"))] == 1
    }

    plan = LinkPlan(ambiguous_emails=ambiguous)
    unlinked: dict[str, UnlinkedClientGroup] = {}

    for client in clients:
        if client.get("user_id"):
            plan.already_linked += 1
            continue

        email = normalize_email(client.get("email"))
        if not email:
            continue

        user_id = users_by_email.get(email)
        if user_id:
            plan.links[str(client["id"])] = user_id
            continue

        group = unlinked.get(email)
        if group is None:
            group = unlinked[email] = UnlinkedClientGroup(
                email=email,
                name=client.get("name") or "",
                vat_code=client.get("vat_code") or "",
            )
        group.row_count += 1

    plan.unlinked = sorted(unlinked.values(), key=lambda g: (-g.row_count, g.email))
    return plan


class ReconciliationService:
    """Applies LinkPlans to the database."""

    @staticmethod
    def reconcile_invoice_clients(dry_run: bool = False) -> ReconciliationReport:
        """
        Link unlinked invoice clients to users by email.

        Args:
            dry_run: Compute the report without writing

        Returns:
            ReconciliationReport
        """
        clients = SupabaseClient.fetch_all(
            "invoice_clients", columns="id, email, name, vat_code, user_id", order_by="id"
        )
        users = SupabaseClient.fetch_all("users", columns="id, email", order_by="id")
        plan = plan_client_links(clients, users)

        if plan.ambiguous_emails:
            logger.warning(f"Skipping {len(plan.ambiguous_emails)} emails shared by several users")

        report = ReconciliationReport(
            total_clients=len(clients),
            already_linked=plan.already_linked,
            dry_run=dry_run,
            unlinked=plan.unlinked,
        )

        if dry_run:
            report.linked = len(plan.links)
            logger.info(f"Dry run: {report.linked} invoice clients would be linked")
            return report

        # One update per user, restricted to rows that are still unlinked
        client_ids_by_user: dict[str, list[str]] = {}
        for client_id, user_id in plan.links.items():
            client_ids_by_user.setdefault(user_id, []).append(client_id)

        db = SupabaseClient.get_client()
        for user_id, client_ids in client_ids_by_user.items():
            try:
                response = (
                    db.table("invoice_clients")
                    .update({"user_id": user_id})
                    .in_("id", client_ids)
                    .is_("user_id", "null")
                    .execute()
                )
                report.linked += len(response.data or [])
            except Exception as e:
                report.errors += 1
                logger.error(f"Failed to link {len(client_ids)} invoice clients to {user_id}: {e}")

        logger.info(
            f"Reconciliation: {report.linked} linked, {report.already_linked} already linked, "
            f"{report.errors} errors, {len(report.unlinked)} unlinked emails"
        )
        return report
