# =============================================================================
# lib/supabase_client.py - Supabase Client Wrapper
# =============================================================================
# This module provides a typed wrapper for Supabase database operations.
# It implements the singleton pattern to reuse a single client connection
# and provides the lookups shared by every service:
# - Single-row fetches (users, aircraft, airfields, invoices)
# - Full-table reads paged past the PostgREST 1000-row cap
# - User role names (user_roles -> roles)
#
# Services build their own filtered queries on top of get_client(); the
# helpers here cover the access patterns that repeat across modules.
#
# Usage:
#   from lib.supabase_client import SupabaseClient
#   user = SupabaseClient.fetch_user(user_id)
# =============================================================================

from __future__ import annotations

import logging
from typing import Any, Callable
from uuid import UUID

from supabase import create_client, Client

from app.config import settings

# Set up logging for this module
logger = logging.getLogger(__name__)

# PostgREST answers at most this many rows per request
DEFAULT_CHUNK_SIZE = 1000


class SupabaseClientError(Exception):
    """
    Error during Supabase operations.

    Errors should tell HOW to fix, not just WHAT failed.
    """

    def __init__(
        self,
        message: str,
        code: str = "SUPABASE_ERROR",
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.details = details or {}

    def __str__(self) -> str:
        result = f"[{self.code}] {self.message}"
        if self.suggestion:
            result += f" Suggestion: {self.suggestion}"
        return result


class SupabaseClient:
    """
    Typed wrapper for Supabase database operations.

    Implements singleton pattern - one client instance is shared across
    the application. All methods are class methods for easy access without
    instantiation.

    Example:
        # Fetch a pilot profile
        pilot = SupabaseClient.fetch_user("550e8400-...")

        # Read every invoice client, whatever the table size
        clients = SupabaseClient.fetch_all(
            "invoice_clients",
            columns="id, email, user_id",
        )
    """

    _instance: Client | None = None

    @classmethod
    def get_client(cls) -> Client:
        """
        Get or create the singleton Supabase client.

        Uses service_role key which bypasses Row Level Security (RLS).
        Access rules are enforced by the API layer instead.

        Returns:
            Client: Supabase client instance

        Raises:
            SupabaseClientError: If client creation fails
        """
        if cls._instance is None:
            try:
                cls._instance = create_client(
                    settings.SUPABASE_URL,
                    settings.SUPABASE_SERVICE_KEY
                )
                logger.info("Supabase client initialized successfully")
            except Exception as e:
                raise SupabaseClientError(
                    message=f"Failed to create Supabase client: {e}",
                    code="CLIENT_INIT_FAILED",
                    suggestion="Check SUPABASE_URL and SUPABASE_SERVICE_KEY in your .env file"
                )
        return cls._instance

    @classmethod
    def _normalize_uuid(cls, uuid_value: str | UUID) -> str:
        """Convert UUID to string for queries."""
        return str(uuid_value) if isinstance(uuid_value, UUID) else uuid_value

    @staticmethod
    def is_not_found(exc: Exception) -> bool:
        """True when a .single() query matched no rows."""
        return "PGRST116" in str(exc)  # PostgREST code for no rows

    # -------------------------------------------------------------------------
    # Generic Reads
    # -------------------------------------------------------------------------

    @classmethod
    def fetch_one(
        cls,
        table: str,
        column: str,
        value: Any,
        columns: str = "*",
    ) -> dict[str, Any] | None:
        """
        Fetch a single row where `column` equals `value`.

        Args:
            table: Table name
            column: Column to match on (usually "id")
            value: Value to match (UUIDs are stringified)
            columns: PostgREST select expression

        Returns:
            Row dict, or None if no row matches

        Raises:
            SupabaseClientError: If query fails for any other reason
        """
        client = cls.get_client()
        if isinstance(value, UUID):
            value = cls._normalize_uuid(value)

        try:
            response = (
                client.table(table)
                .select(columns)
                .eq(column, value)
                .single()
                .execute()
            )
            return response.data

        except Exception as e:
            if cls.is_not_found(e):
                return None
            raise SupabaseClientError(
                message=f"Failed to fetch from {table}: {e}",
                code="FETCH_ROW_FAILED",
                suggestion=f"Check that the {table} table is accessible",
                details={"table": table, "column": column, "value": str(value)}
            )

    @classmethod
    def paginate(
        cls,
        build_query: Callable[[], Any],
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        label: str = "query",
    ) -> list[dict[str, Any]]:
        """
        Run a query page by page until a short page comes back.

        PostgREST silently truncates responses at 1000 rows, so large
        tables (invoice_clients, flight_logs) must be read in pages.

        Args:
            build_query: Returns a fresh, filtered and ordered query builder
                (a builder can only be executed once)
            chunk_size: Rows per request
            label: Name used in logs and errors

        Returns:
            All rows across every page

        Raises:
            SupabaseClientError: If any page fails
        """
        rows: list[dict[str, Any]] = []
        offset = 0

        try:
            while True:
                response = build_query().range(offset, offset + chunk_size - 1).execute()
                page = response.data or []
                rows.extend(page)

                if len(page) < chunk_size:
                    break
                offset += chunk_size

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to read {label}: {e}",
                code="FETCH_ALL_FAILED",
                suggestion=f"Check that the {label} table is accessible",
                details={"query": label, "offset": offset}
            )

        logger.debug(f"Fetched {len(rows)} rows from {label}")
        return rows

    @classmethod
    def fetch_all(
        cls,
        table: str,
        columns: str = "*",
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        desc: bool = False,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> list[dict[str, Any]]:
        """
        Fetch every row of a table matching simple equality filters.

        Args:
            table: Table name
            columns: PostgREST select expression
            filters: Equality filters; a None value becomes IS NULL
            order_by: Column to order by (recommended for stable paging)
            desc: Descending order
            chunk_size: Rows per request

        Returns:
            All matching rows

        Raises:
            SupabaseClientError: If any page fails
        """
        client = cls.get_client()

        def build_query():
            query = client.table(table).select(columns)
            for column, value in (filters or {}).items():
                if value is None:
                    query = query.is_(column, "null")
                else:
                    query = query.eq(column, cls._normalize_uuid(value))
            if order_by:
                query = query.order(order_by, desc=desc)
            return query

        return cls.paginate(build_query, chunk_size=chunk_size, label=table)

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    @classmethod
    def fetch_user(cls, user_id: str | UUID) -> dict[str, Any] | None:
        """
        Fetch a user profile by ID.

        Args:
            user_id: The user UUID

        Returns:
            User row dict, or None if not found
        """
        return cls.fetch_one("users", "id", cls._normalize_uuid(user_id))

    @classmethod
    def fetch_user_roles(cls, user_id: str | UUID) -> list[str]:
        """
        Fetch the role names assigned to a user.

        Joins user_roles to roles through the roleId foreign key.

        Args:
            user_id: The user UUID

        Returns:
            List of role names (e.g. ["PILOT", "INSTRUCTOR"])

        Raises:
            SupabaseClientError: If query fails
        """
        client = cls.get_client()
        user_id_str = cls._normalize_uuid(user_id)

        try:
            response = (
                client.table("user_roles")
                .select("roles(name)")
                .eq("userId", user_id_str)
                .execute()
            )

            roles = []
            for row in response.data or []:
                role = row.get("roles") or {}
                if role.get("name"):
                    roles.append(role["name"])
            return roles

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to fetch user roles: {e}",
                code="FETCH_ROLES_FAILED",
                suggestion="Check that the user_roles and roles tables are accessible",
                details={"user_id": user_id_str}
            )

    @classmethod
    def create_auth_user(cls, email: str, metadata: dict[str, Any] | None = None) -> str:
        """
        Create a Supabase Auth account with a confirmed email and no password.

        The member sets a password through the password-recovery flow.

        Args:
            email: Login email
            metadata: user_metadata stored on the auth account

        Returns:
            The new auth user id (also the users.id of their profile)

        Raises:
            SupabaseClientError: If the account can't be created
        """
        client = cls.get_client()

        try:
            response = client.auth.admin.create_user({
                "email": email,
                "email_confirm": True,
                "user_metadata": metadata or {},
            })
            return str(response.user.id)

        except Exception as e:
            raise SupabaseClientError(
                message=f"Failed to create auth account for {email}: {e}",
                code="AUTH_USER_CREATE_FAILED",
                suggestion="Check whether an auth account already exists for this email",
                details={"email": email}
            )
