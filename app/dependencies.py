# =============================================================================
# app/dependencies.py - Shared Access Checks
# =============================================================================
# Checks shared by routers. Role-only checks use require_roles() from
# app.auth as a dependency; these helpers cover the "own data or a
# privileged role" cases that need a path parameter, and upload checks.
# =============================================================================

from uuid import UUID

from fastapi import UploadFile

from app.auth import ADMIN_ROLES, MANAGER_ROLES, AuthUser
from app.config import settings
from app.exceptions import FileTooLargeError, InvalidFileTypeError, PermissionDeniedError

CSV_EXTENSIONS = [".csv"]


def ensure_self_or_manager(member: AuthUser, user_id: str | UUID | None, action: str) -> None:
    """
    Allow a member to act on their own data, or any manager on anyone's.

    Raises:
        PermissionDeniedError: Otherwise
    """
    if member.is_manager or (user_id is not None and str(member.id) == str(user_id)):
        return
    raise PermissionDeniedError(action, sorted(MANAGER_ROLES))


def ensure_self_or_admin(member: AuthUser, user_id: str | UUID | None, action: str) -> None:
    """Like ensure_self_or_manager, but only admins may act for others."""
    if member.is_admin or (user_id is not None and str(member.id) == str(user_id)):
        return
    raise PermissionDeniedError(action, sorted(ADMIN_ROLES))


async def read_upload(file: UploadFile, allowed_extensions: list[str]) -> bytes:
    """
    Read an uploaded file after checking its extension and size.

    Raises:
        InvalidFileTypeError: If the extension isn't allowed
        FileTooLargeError: If larger than MAX_UPLOAD_SIZE_MB
    """
    filename = file.filename or ""
    if not any(filename.lower().endswith(ext) for ext in allowed_extensions):
        raise InvalidFileTypeError(filename, allowed_extensions)

    content = await file.read()
    if len(content) > settings.max_upload_size_bytes:
        raise FileTooLargeError(len(content) / (1024 * 1024), settings.MAX_UPLOAD_SIZE_MB)
    return content
