"""Bearer token verification for Supabase-issued access tokens."""

from aiscenes.auth.middleware import AuthenticatedUser, get_current_user, get_optional_user, verify_access_token

__all__ = ["AuthenticatedUser", "get_current_user", "get_optional_user", "verify_access_token"]
