"""Authentication module."""

from redetour.auth.dependencies import CurrentUser, get_current_user, require_admin
from redetour.auth.jwt import UserRole, create_access_token, verify_token

__all__ = [
    "CurrentUser",
    "UserRole",
    "create_access_token",
    "verify_token",
    "get_current_user",
    "require_admin",
]
