# =============================================================================
# lib/ - Standalone Utility Modules
# =============================================================================
# This package contains reusable utilities:
# - supabase_client.py: Typed Supabase wrapper for database operations
# - veriff_client.py: Signed, retrying HTTP client for identity verification
# - utils.py: Shared utilities (error handling, UUID and value normalization)
#
# These modules are self-contained and can be tested in isolation.
# =============================================================================

from lib.supabase_client import SupabaseClient, SupabaseClientError
from lib.veriff_client import VeriffApiError, VeriffClient
from lib.utils import ApplicationError, normalize_email, normalize_uuid

__all__ = [
    # Supabase
    "SupabaseClient",
    "SupabaseClientError",
    # Verification provider
    "VeriffApiError",
    "VeriffClient",
    # Utils
    "ApplicationError",
    "normalize_email",
    "normalize_uuid",
]
