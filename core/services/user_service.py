# =============================================================================
# core/services/user_service.py - User Business Logic
# =============================================================================
# Handles user listing, profile updates, role assignment and CSV import.
# Separates HTTP concerns from database/business logic.
# =============================================================================

import logging
from typing import Any
from uuid import UUID

from pydantic import ValidationError

from lib.supabase_client import SupabaseClient
from lib.utils import normalize_uuid, utc_now_iso
from core.models.user import (
    USER_IMPORT_COLUMNS,
    USER_IMPORT_REQUIRED_COLUMNS,
    UserImportRow,
    UserUpdate,
)
from core.services.activity_logger import ActivityLogger
from core.services.csv_import import (
    DATABASE_ERRORS,
    database_error_detail,
    read_import_rows,
    template_csv,
)
from app.exceptions import (
    FlightSchoolException,
    InvalidRoleError,
    PermissionDeniedError,
    UserNotFoundError,
)

logger = logging.getLogger(__name__)

# Columns never returned by the API
_HIDDEN_COLUMNS = ("password", "veriffWebhookData")


def _sanitize_search(term: str) -> str:
    """Strip characters that carry meaning inside a PostgREST or() filter."""
    return "".join(ch for ch in term if ch not in ",()*%").strip()


def _flatten_roles(user: dict[str, Any]) -> dict[str, Any]:
    """Replace the embedded user_roles -> roles structure with a list of names."""
    user = {k: v for k, v in user.items() if k not in _HIDDEN_COLUMNS}
    embedded = user.pop("user_roles", None) or []
    user["roles"] = [
        (row.get("roles") or {}).get("name")
        for row in embedded
        if (row.get("roles") or {}).get("name")
    ]
    return user


class UserService:
    """
    Service for user management operations.

    Provides a clean interface between API routes and database.
    """

    @staticmethod
    def list_users(
        page: int = 1,
        page_size: int = 20,
        search: str | None = None,
        role: str | None = None,
        status: str | None = None,
    ) -> tuple[list[dict[str, Any]], int]:
        """
        List users with their role names.

        Args:
            page: Page number (1-indexed)
            page_size: Items per page
            search: Case-insensitive match on first name, last name or email
            role: Only users holding this role
            status: Only users with this account status

        Returns:
            Tuple of (users list, total count)
        """
        client = SupabaseClient.get_client()
        query = client.table("users").select("*, user_roles(roles(name))", count="exact")

        # Role holders are resolved separately so the embed keeps all their roles
        if role:
            holder_ids = UserService.user_ids_with_role(role)
            if not holder_ids:
                return [], 0
            query = query.in_("id", holder_ids)
        if status:
            query = query.eq("status", status)
        if search:
            term = _sanitize_search(search)
            if term:
                query = query.or_(
                    f"firstName.ilike.*{term}*,lastName.ilike.*{term}*,email.ilike.*{term}*"
                )

        offset = (page - 1) * page_size
        response = (
            query.order("createdAt", desc=True)
            .range(offset, offset + page_size - 1)
            .execute()
        )

        users = [_flatten_roles(u) for u in response.data or []]
        return users, response.count or 0

    @staticmethod
    def user_ids_with_role(role: str) -> list[str]:
        """IDs of every user holding a role."""
        rows = SupabaseClient.fetch_all(
            "user_roles", columns="userId, roles!inner(name)", filters={"roles.name": role}
        )
        return sorted({str(row["userId"]) for row in rows})

    @staticmethod
    def get_user(user_id: str | UUID) -> dict[str, Any]:
        """
        Get a user with role names.

        Raises:
            UserNotFoundError: If the user doesn't exist
        """
        user = SupabaseClient.fetch_one(
            "users", "id", normalize_uuid(user_id), columns="*, user_roles(roles(name))"
        )
        if not user:
            raise UserNotFoundError(str(user_id))
        return _flatten_roles(user)

    @staticmethod
    def update_user(
        user_id: str | UUID,
        update: UserUpdate,
        actor_id: str | UUID,
        actor_is_manager: bool,
    ) -> dict[str, Any]:
        """
        Update profile fields.

        Args:
            user_id: User being updated
            update: Fields to change (unset fields are left alone)
            actor_id: Who is making the change
            actor_is_manager: Whether the actor holds a manager role

        Returns:
            Updated user dict

        Raises:
            UserNotFoundError: If the user doesn't exist
            PermissionDeniedError: If a non-manager tries to change status
        """
        user_id_str = normalize_uuid(user_id)
        UserService.get_user(user_id_str)

        changes = update.to_row()
        if "status" in changes and not actor_is_manager:
            raise PermissionDeniedError("change account status")

        if not changes:
            return UserService.get_user(user_id_str)

        changes["updatedAt"] = utc_now_iso()
        client = SupabaseClient.get_client()
        client.table("users").update(changes).eq("id", user_id_str).execute()

        fields = sorted(k for k in changes if k != "updatedAt")
        logger.info(f"Updated user {user_id_str}: {fields}")
        ActivityLogger.user_updated(actor_id, user_id_str, fields)

        return UserService.get_user(user_id_str)

    @staticmethod
    def set_roles(
        user_id: str | UUID,
        role_names: list[str],
        actor_id: str | UUID,
    ) -> list[str]:
        """
        Replace a user's role set.

        Args:
            user_id: User whose roles change
            role_names: Complete new set of role names
            actor_id: Admin making the change

        Returns:
            The role names now assigned

        Raises:
            UserNotFoundError: If the user doesn't exist
            InvalidRoleError: If any role name is unknown
        """
        user_id_str = normalize_uuid(user_id)
        UserService.get_user(user_id_str)

        wanted = sorted(set(role_names))
        roles = SupabaseClient.fetch_all("roles", columns="id, name")
        by_name = {r["name"]: r["id"] for r in roles}

        unknown = [name for name in wanted if name not in by_name]
        if unknown:
            raise InvalidRoleError(unknown)

        client = SupabaseClient.get_client()
        client.table("user_roles").delete().eq("userId", user_id_str).execute()
        if wanted:
            client.table("user_roles").insert(
                [{"userId": user_id_str, "roleId": by_name[name]} for name in wanted]
            ).execute()

        logger.info(f"Roles for {user_id_str} set to {wanted}")
        ActivityLogger.role_changed(actor_id, user_id_str, wanted)
        return wanted

    # -------------------------------------------------------------------------
    # CSV Import
    # -------------------------------------------------------------------------

    @staticmethod
    def import_csv(content: bytes, filename: str, actor_id: str | UUID) -> dict[str, Any]:
        """
        Create or update users from a CSV file.

        Rows are matched to existing users by email. A match has its
        profile overwritten; otherwise an auth account and profile are
        created and the row's role (PILOT when blank) is assigned.

        Args:
            content: Raw CSV bytes (header in USER_IMPORT_COLUMNS names)
            filename: Original filename, for error messages
            actor_id: Admin performing the import

        Returns:
            {"created": int, "updated": int, "failed": int,
             "errors": [{"row", "email", "error"}]}

        Raises:
            FileReadError: If the CSV can't be parsed or lacks required columns
        """
        rows = read_import_rows(content, filename, USER_IMPORT_REQUIRED_COLUMNS)
        actor_id_str = normalize_uuid(actor_id)

        roles = {r["name"]: r["id"] for r in SupabaseClient.fetch_all("roles", columns="id, name")}
        client = SupabaseClient.get_client()

        created = 0
        updated = 0
        errors: list[dict[str, Any]] = []

        for line, values in rows:
            email = values.get("email")
            try:
                data = UserImportRow.model_validate(values)
                row = data.profile_row()
                existing = SupabaseClient.fetch_one("users", "email", row["email"], columns="id")

                if existing:
                    row["updatedAt"] = utc_now_iso()
                    client.table("users").update(row).eq("id", existing["id"]).execute()
                    updated += 1
                    continue

                if data.role not in roles:
                    raise InvalidRoleError([data.role])

                user_id = SupabaseClient.create_auth_user(
                    row["email"],
                    {"firstName": data.first_name, "lastName": data.last_name},
                )
                client.table("users").insert({**row, "id": user_id, "createdById": actor_id_str}).execute()
                client.table("user_roles").insert({"userId": user_id, "roleId": roles[data.role]}).execute()
                created += 1
            except ValidationError as e:
                errors.append({"row": line, "email": email, "error": str(e.errors()[0].get("msg"))})
            except FlightSchoolException as e:
                errors.append({"row": line, "email": email, "error": e.message})
            except DATABASE_ERRORS as e:
                logger.error(f"Database error importing row {line} of {filename}: {e}")
                errors.append({"row": line, "email": email, "error": database_error_detail(e)})

        logger.info(f"User import from {filename}: {created} created, {updated} updated, {len(errors)} failed")
        ActivityLogger.log(
            actor_id_str,
            "USERS_IMPORTED",
            "user",
            None,
            f"Imported users from {filename}",
            {"created": created, "updated": updated, "failed": len(errors)},
        )

        return {"created": created, "updated": updated, "failed": len(errors), "errors": errors}

    @staticmethod
    def import_template() -> str:
        """Example CSV for the user import."""
        return template_csv(USER_IMPORT_COLUMNS, [
            {
                "email": "ion.popescu@example.com", "firstName": "Ion", "lastName": "Popescu",
                "phone": "+40722000111", "dateOfBirth": "1990-01-01", "city": "Brasov",
                "country": "Romania", "status": "ACTIVE", "totalFlightHours": 12.5, "role": "STUDENT",
            },
            {
                "email": "ana.ionescu@example.com", "firstName": "Ana", "lastName": "Ionescu",
                "country": "Romania", "status": "ACTIVE", "totalFlightHours": 850,
                "licenseNumber": "RO.FCL.1234", "medicalClass": "1", "instructorRating": "FI(A)",
                "role": "INSTRUCTOR",
            },
        ])
