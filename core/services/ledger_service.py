# =============================================================================
# core/services/ledger_service.py - Hour Usage Ledger
# =============================================================================
# Settles purchased hours against flown hours.
#
# Purchased hours come from hour lines (unit HUR/HOUR/H) on paid or
# imported invoices. Flown hours come from flight logs, deducted only from
# whoever pays for the flight:
#   payer = payer_id, or the pilot when no payer is set
#   FERRY and DEMO flights never deduct
#   instructors never pay for the flights they teach on
#
# The package usage report charges the same deducted hours to individual
# hour lines, oldest purchase first.
# =============================================================================

import datetime
import logging
from typing import Any
from uuid import UUID

from lib.supabase_client import SupabaseClient
from lib.utils import normalize_email, normalize_uuid, to_float
from core.models.flight_log import NON_DEDUCTIBLE_FLIGHT_TYPES, FlightType
from core.models.invoice import HOUR_UNITS
from core.models.ledger import (
    ClientHours,
    FlightAllocation,
    FlightTypeTotal,
    Ledger,
    LedgerEntry,
    LedgerEventType,
    LedgerRole,
    LedgerSummary,
    PackageStatus,
    PackageUsage,
    PackageUsageReport,
    UsageStatistics,
)
from app.auth.models import AuthUser, PILOT, STUDENT
from app.config import settings
from app.exceptions import PermissionDeniedError, UserNotFoundError

logger = logging.getLogger(__name__)

# Invoice statuses that count as purchased hours
SETTLED_INVOICE_STATUSES = ("paid", "imported")

LEDGER_INVOICE_SELECT = (
    "id, smartbill_id, issue_date, total_amount, currency, status, "
    "invoice_clients(name, email, user_id), "
    "invoice_items(line_id, name, description, quantity, unit, unit_price, total_amount, vat_rate)"
)
LEDGER_FLIGHT_COLUMNS = "id, pilotId, instructorId, payer_id, totalHours, date, flightType"

# A package with fewer hours left than this is reported as "low hours"
LOW_HOURS_THRESHOLD = 5

# Flights listed per package; hours beyond the cap are still charged
MAX_ALLOCATIONS_PER_PACKAGE = 100


def _is_hour_line(item: dict[str, Any]) -> bool:
    return (item.get("unit") or "").upper() in HOUR_UNITS


def _first(rows: Any) -> dict[str, Any]:
    if isinstance(rows, dict):
        return rows
    return rows[0] if rows else {}


def _invoice_entries(user_id: str, invoices: list[dict[str, Any]]) -> list[LedgerEntry]:
    entries = []
    for invoice in invoices:
        if invoice.get("status") not in SETTLED_INVOICE_STATUSES:
            continue
        client = _first(invoice.get("invoice_clients"))
        if str(client.get("user_id")) != user_id:
            continue

        for item in invoice.get("invoice_items") or []:
            if not _is_hour_line(item):
                continue
            quantity = to_float(item.get("quantity"))
            name = item.get("name")
            entries.append(LedgerEntry(
                date=str(invoice.get("issue_date") or ""),
                event_type=LedgerEventType.INVOICE,
                reference=invoice.get("smartbill_id") or f"INV-{invoice['id']}",
                description=f"Invoice ({quantity:g}h package)" + (f" - {name}" if name else ""),
                hours_added=quantity,
                invoice_amount=to_float(item.get("total_amount")),
                currency=invoice.get("currency") or settings.INVOICE_CURRENCY,
            ))
    return entries


def _flight_entry(user_id: str, flight: dict[str, Any]) -> LedgerEntry:
    pilot_id = str(flight.get("pilotId") or "")
    payer = flight.get("payer_id")
    payer_id = str(payer) if payer else pilot_id
    flight_type = flight.get("flightType") or "SCHOOL"

    paid_by_user_for_other = payer_id == user_id and pilot_id != user_id
    flying_for_other_payer = pilot_id == user_id and payer_id != user_id

    if str(flight.get("instructorId") or "") == user_id:
        role = LedgerRole.INSTRUCTOR
    elif paid_by_user_for_other:
        role = LedgerRole.PAYER
    else:
        role = LedgerRole.PILOT

    deducts = (
        payer_id == user_id
        and role != LedgerRole.INSTRUCTOR
        and flight_type not in NON_DEDUCTIBLE_FLIGHT_TYPES
        and not flying_for_other_payer
    )

    return LedgerEntry(
        date=str(flight.get("date") or ""),
        event_type=LedgerEventType.FLIGHT,
        reference=f"F-{str(flight['id'])[:8]}",
        description=flight_type.capitalize(),
        hours_deducted=to_float(flight.get("totalHours")) if deducts else 0.0,
        flight_type=flight_type,
        role=role,
        flight_id=str(flight["id"]),
    )


def build_ledger(
    user_id: str | UUID,
    invoices: list[dict[str, Any]],
    flights: list[dict[str, Any]],
) -> Ledger:
    """
    Build a user's chronological hour ledger.

    Args:
        user_id: Ledger owner
        invoices: Invoice rows with embedded invoice_clients and invoice_items
        flights: Flight log rows the user took part in (pilot, payer or instructor)

    Returns:
        Ledger with entries oldest first and a running balance
    """
    user_id = str(user_id)

    invoice_entries = _invoice_entries(user_id, invoices)
    flight_entries = [_flight_entry(user_id, f) for f in flights]

    # sorted() is stable, so invoices stay ahead of flights on the same date
    entries = sorted(invoice_entries + flight_entries, key=lambda e: e.date[:10])

    balance = 0.0
    for entry in entries:
        balance = round(balance + entry.hours_added - entry.hours_deducted, 2)
        entry.balance = balance

    hours_by_type: dict[str, FlightTypeTotal] = {}
    for flight in flights:
        involved = user_id in (str(flight.get("pilotId")), str(flight.get("payer_id")))
        if not involved:
            continue
        key = (flight.get("flightType") or "SCHOOL").lower()
        total = hours_by_type.setdefault(key, FlightTypeTotal())
        total.hours = round(total.hours + to_float(flight.get("totalHours")), 2)
        total.count += 1

    summary = LedgerSummary(
        total_hours_added=round(sum(e.hours_added for e in entries), 2),
        total_hours_deducted=round(sum(e.hours_deducted for e in entries), 2),
        final_balance=balance,
        entry_count=len(entries),
        invoice_count=len(invoice_entries),
        flight_count=len(flight_entries),
        hours_by_type=hours_by_type,
    )
    return Ledger(user_id=user_id, entries=entries, summary=summary)


def compute_client_hours(
    invoices: list[dict[str, Any]],
    flights: list[dict[str, Any]],
    users: list[dict[str, Any]],
    allowed_emails: set[str] | None = None,
) -> list[ClientHours]:
    """
    Purchased vs. flown hours per client, keyed by client email.

    Flown hours are the pilot's flights, excluding FERRY and DEMO.

    Args:
        invoices: Settled invoice rows with clients and items
        flights: Flight log rows
        users: User rows (id, email, firstName, lastName)
        allowed_emails: Restrict the result to these emails (None for all)

    Returns:
        Clients sorted by remaining hours, lowest first
    """
    users_by_id = {str(u["id"]): u for u in users}
    clients: dict[str, ClientHours] = {}

    for invoice in invoices:
        if invoice.get("status") not in SETTLED_INVOICE_STATUSES:
            continue
        client = _first(invoice.get("invoice_clients"))
        email = normalize_email(client.get("email"))
        if not email or email in ("undefined", "null"):
            continue

        hours = sum(
            to_float(item.get("quantity"))
            for item in invoice.get("invoice_items") or []
            if _is_hour_line(item)
        )
        if not hours:
            continue

        entry = clients.get(email)
        if entry is None:
            user = users_by_id.get(str(client.get("user_id")))
            name = (
                f"{user.get('firstName') or ''} {user.get('lastName') or ''}".strip()
                if user else client.get("name") or ""
            )
            entry = clients[email] = ClientHours(
                user_id=client.get("user_id"),
                name=name,
                email=email,
            )
        entry.purchased_hours = round(entry.purchased_hours + hours, 2)
        entry.invoice_count += 1

    for flight in flights:
        pilot = users_by_id.get(str(flight.get("pilotId")))
        email = normalize_email(pilot.get("email")) if pilot else ""
        if email not in clients:
            continue
        entry = clients[email]
        entry.flight_count += 1
        if (flight.get("flightType") or "").upper() in NON_DEDUCTIBLE_FLIGHT_TYPES:
            continue
        entry.flown_hours = round(entry.flown_hours + to_float(flight.get("totalHours")), 2)

    result = []
    for email, entry in clients.items():
        if allowed_emails is not None and email not in allowed_emails:
            continue
        entry.remaining_hours = round(entry.purchased_hours - entry.flown_hours, 2)
        result.append(entry)

    result.sort(key=lambda c: c.remaining_hours)
    return result


def _package_status(package: PackageUsage, today: datetime.date) -> PackageStatus:
    if package.expiry_date and datetime.date.fromisoformat(package.expiry_date[:10]) < today:
        return PackageStatus.EXPIRED
    if package.remaining_hours < 0:
        return PackageStatus.OVERDRAWN
    if package.remaining_hours < LOW_HOURS_THRESHOLD:
        return PackageStatus.LOW_HOURS
    return PackageStatus.IN_PROGRESS


def _charge(package: PackageUsage, allocation: FlightAllocation, chartered: bool) -> None:
    if chartered:
        package.chartered_hours = round(package.chartered_hours + allocation.hours, 2)
        allocations = package.allocated_chartered_flights
    else:
        package.used_hours = round(package.used_hours + allocation.hours, 2)
        allocations = package.allocated_flights
    if len(allocations) < MAX_ALLOCATIONS_PER_PACKAGE:
        allocations.append(allocation)


def build_packages(user_id: str | UUID, invoices: list[dict[str, Any]]) -> list[PackageUsage]:
    """
    One package per hour line on the user's settled invoices, oldest first.

    Args:
        user_id: Package owner (invoice_clients.user_id)
        invoices: Invoice rows with embedded invoice_clients and invoice_items
    """
    user_id = str(user_id)
    packages = []

    for invoice in sorted(invoices, key=lambda i: str(i.get("issue_date") or "")):
        if invoice.get("status") not in SETTLED_INVOICE_STATUSES:
            continue
        if str(_first(invoice.get("invoice_clients")).get("user_id")) != user_id:
            continue

        for item in invoice.get("invoice_items") or []:
            if not _is_hour_line(item):
                continue
            packages.append(PackageUsage(
                id=f"{invoice['id']}-{item.get('line_id')}",
                invoice_id=invoice.get("smartbill_id") or f"INV-{invoice['id']}",
                total_hours=to_float(item.get("quantity")),
                purchase_date=str(invoice.get("issue_date") or ""),
                price=to_float(item.get("total_amount")),
                currency=invoice.get("currency") or settings.INVOICE_CURRENCY,
            ))
    return packages


def allocate_packages(
    user_id: str | UUID,
    packages: list[PackageUsage],
    flights: list[dict[str, Any]],
    today: datetime.date | None = None,
) -> list[PackageUsage]:
    """
    Charge the user's paid flight hours to packages, oldest package first.

    A flight is charged only when it would deduct in the ledger. It may be
    split across packages; hours left once every package is used up go
    to the newest package, which then shows negative remaining hours.

    Args:
        user_id: Package owner
        packages: From build_packages, oldest first (updated in place)
        flights: Flight log rows the user flew or paid for
        today: Reference date for expiry (defaults to today)

    Returns:
        The packages, with used/chartered/remaining hours and status set
    """
    user_id = str(user_id)
    today = today or datetime.date.today()

    for flight in sorted(flights, key=lambda f: str(f.get("date") or "")):
        entry = _flight_entry(user_id, flight)
        hours = entry.hours_deducted
        if hours <= 0 or not packages:
            continue

        chartered = entry.role == LedgerRole.PAYER
        total = to_float(flight.get("totalHours"))

        def allocation(charged: float) -> FlightAllocation:
            return FlightAllocation(
                flight_id=str(flight["id"]),
                date=entry.date,
                hours=round(charged, 2),
                total_flight_hours=total,
                flight_type=entry.flight_type or "SCHOOL",
                role=entry.role,
            )

        for package in packages:
            if hours <= 0:
                break
            available = package.total_hours - package.used_hours - package.chartered_hours
            if available <= 0:
                continue
            charged = min(hours, available)
            hours = round(hours - charged, 2)
            _charge(package, allocation(charged), chartered)

        if hours > 0:
            _charge(packages[-1], allocation(hours), chartered)

    for package in packages:
        package.remaining_hours = round(
            package.total_hours - package.used_hours - package.chartered_hours, 2
        )
        package.status = _package_status(package, today)

    return packages


def usage_statistics(user_id: str | UUID, flights: list[dict[str, Any]]) -> UsageStatistics:
    """Hours and counts of the user's flights by kind."""
    user_id = str(user_id)
    stats = UsageStatistics()

    for flight in flights:
        pilot_id = str(flight.get("pilotId") or "")
        flight_type = (flight.get("flightType") or "SCHOOL").upper()

        if pilot_id == user_id:
            bucket = {
                FlightType.FERRY.value: stats.ferry,
                FlightType.DEMO.value: stats.demo,
                FlightType.CHARTER.value: stats.pilot_charter,
            }.get(flight_type, stats.regular)
        elif str(flight.get("payer_id") or "") == user_id:
            bucket = stats.chartered
        else:
            continue

        bucket.hours = round(bucket.hours + to_float(flight.get("totalHours")), 2)
        bucket.count += 1

    return stats


class LedgerService:
    """
    Service for hour usage reports.

    Provides a clean interface between API routes and database.
    """

    @staticmethod
    def _settled_invoices() -> list[dict[str, Any]]:
        client = SupabaseClient.get_client()

        def build_query():
            return (
                client.table("invoices")
                .select(LEDGER_INVOICE_SELECT)
                .in_("status", list(SETTLED_INVOICE_STATUSES))
                .order("issue_date")
            )

        return SupabaseClient.paginate(build_query, label="invoices")

    @staticmethod
    def get_ledger(user_id: str | UUID) -> Ledger:
        """Load a user's invoices and flights and build their ledger."""
        user_id_str = normalize_uuid(user_id)
        client = SupabaseClient.get_client()

        def build_flight_query():
            return (
                client.table("flight_logs")
                .select(LEDGER_FLIGHT_COLUMNS)
                .or_(
                    f"pilotId.eq.{user_id_str},payer_id.eq.{user_id_str},"
                    f"instructorId.eq.{user_id_str}"
                )
                .order("date")
            )

        flights = SupabaseClient.paginate(build_flight_query, label="flight_logs")
        ledger = build_ledger(user_id_str, LedgerService._settled_invoices(), flights)

        logger.info(
            f"Ledger for {user_id_str}: {ledger.summary.entry_count} entries, "
            f"balance {ledger.summary.final_balance}h"
        )
        return ledger

    @staticmethod
    def _allowed_emails(member: AuthUser) -> set[str] | None:
        """
        Emails whose hours a member may see (None means everyone).

        Raises:
            PermissionDeniedError: For prospects and members without a
                flying role
        """
        if member.is_manager:
            return None
        if member.has_role(PILOT, STUDENT):
            return {normalize_email(member.email)}
        if member.is_instructor:
            flights = SupabaseClient.fetch_all(
                "flight_logs", columns="pilotId", filters={"instructorId": str(member.id)}
            )
            pilot_ids = sorted({str(f["pilotId"]) for f in flights if f.get("pilotId")})
            if not pilot_ids:
                return set()
            client = SupabaseClient.get_client()
            response = client.table("users").select("email").in_("id", pilot_ids).execute()
            return {normalize_email(u.get("email")) for u in response.data or [] if u.get("email")}
        if member.is_prospect_only:
            raise PermissionDeniedError("view hours (prospects can only order hours)")
        raise PermissionDeniedError("view client hours")

    @staticmethod
    def get_client_hours(member: AuthUser) -> list[ClientHours]:
        """Purchased vs. flown hours for every client the member may see."""
        allowed = LedgerService._allowed_emails(member)

        invoices = LedgerService._settled_invoices()
        flights = SupabaseClient.fetch_all(
            "flight_logs", columns="id, pilotId, totalHours, flightType", order_by="date"
        )
        users = SupabaseClient.fetch_all("users", columns="id, email, firstName, lastName")

        result = compute_client_hours(invoices, flights, users, allowed)
        logger.info(f"Client hours for {member.id}: {len(result)} clients")
        return result

    @staticmethod
    def get_package_usage(user_id: str | UUID) -> PackageUsageReport:
        """
        Per-package usage of a user's purchased hours.

        Raises:
            UserNotFoundError: If the user doesn't exist
        """
        user_id_str = normalize_uuid(user_id)
        user = SupabaseClient.fetch_one(
            "users", "id", user_id_str, columns="id, email, firstName, lastName"
        )
        if not user:
            raise UserNotFoundError(user_id_str)

        packages = build_packages(user_id_str, LedgerService._settled_invoices())
        if not packages:
            return PackageUsageReport(user=user, packages=[])

        client = SupabaseClient.get_client()

        def build_flight_query():
            return (
                client.table("flight_logs")
                .select(LEDGER_FLIGHT_COLUMNS)
                .or_(f"pilotId.eq.{user_id_str},payer_id.eq.{user_id_str}")
                .order("date")
            )

        flights = SupabaseClient.paginate(build_flight_query, label="flight_logs")
        packages = allocate_packages(user_id_str, packages, flights)

        purchased = round(sum(p.total_hours for p in packages), 2)
        used = round(sum(p.used_hours for p in packages), 2)
        chartered = round(sum(p.chartered_hours for p in packages), 2)

        logger.info(f"Package usage for {user_id_str}: {len(packages)} packages, {len(flights)} flights")
        return PackageUsageReport(
            user=user,
            packages=packages,
            total_purchased_hours=purchased,
            total_used_hours=used,
            total_chartered_hours=chartered,
            remaining_hours=round(purchased - used - chartered, 2),
            flight_count=len(flights),
            statistics=usage_statistics(user_id_str, flights),
        )
