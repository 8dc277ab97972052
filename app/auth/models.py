# =============================================================================
# app/auth/models.py - Authentication Models
# =============================================================================
# Pydantic models for authentication data and role groups.
# =============================================================================

from pydantic import BaseModel
from uuid import UUID
from typing import Optional


# Role names as stored in the roles table
SUPER_ADMIN = "SUPER_ADMIN"
ADMIN = "ADMIN"
BASE_MANAGER = "BASE_MANAGER"
INSTRUCTOR = "INSTRUCTOR"
PILOT = "PILOT"
STUDENT = "STUDENT"
PROSPECT = "PROSPECT"

ADMIN_ROLES = frozenset({SUPER_ADMIN, ADMIN})
MANAGER_ROLES = ADMIN_ROLES | {BASE_MANAGER}


class AuthUser(BaseModel):
    """
    Authenticated user extracted from Supabase JWT.

    `roles` is empty when only the token was checked (get_current_user)
    and filled from user_roles by get_current_member.
    """
    id: UUID
    email: Optional[str] = None
    roles: tuple[str, ...] = ()

    class Config:
        frozen = True  # Make immutable

    def has_role(self, *roles: str) -> bool:
        """True if the user holds any of the given roles."""
        return any(role in self.roles for role in roles)

    @property
    def is_admin(self) -> bool:
        return self.has_role(*ADMIN_ROLES)

    @property
    def is_manager(self) -> bool:
        return self.has_role(*MANAGER_ROLES)

    @property
    def is_instructor(self) -> bool:
        return self.has_role(INSTRUCTOR)

    @property
    def is_prospect_only(self) -> bool:
        """True for accounts whose only role is PROSPECT (or no role at all)."""
        return not self.roles or set(self.roles) == {PROSPECT}


class UserResponse(BaseModel):
    """
    Full user response for API endpoints.

    Includes additional profile data from the public.users table.
    """
    id: UUID
    email: Optional[str] = None
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    phone: Optional[str] = None
    status: Optional[str] = None
    identityVerified: Optional[bool] = None
    roles: list[str] = []

