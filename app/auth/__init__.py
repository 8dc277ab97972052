# =============================================================================
# app/auth/__init__.py - Authentication Module
# =============================================================================
# Provides JWT-based authentication using Supabase Auth, and role checks
# backed by the user_roles table.
#
# Usage:
#   from app.auth import get_current_member, AuthUser
#
#   @router.get("/protected")
#   async def protected(user: AuthUser = Depends(get_current_member)):
#       return {"user_id": user.id}
# =============================================================================

from app.auth.dependencies import (
    get_current_user,
    get_current_member,
    require_roles,
)
from app.auth.models import (
    AuthUser,
    UserResponse,
    ADMIN_ROLES,
    MANAGER_ROLES,
)

__all__ = [
    "get_current_user",
    "get_current_member",
    "require_roles",
    "AuthUser",
    "UserResponse",
    "ADMIN_ROLES",
    "MANAGER_ROLES",
]
