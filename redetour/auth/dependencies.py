"""
FastAPI dependencies for authentication.

Users live in the auth service; the verified token is the whole identity.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, status

from redetour.auth.jwt import UserRole, get_token, verify_token


@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: UserRole
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


async def get_current_user(request: Request) -> CurrentUser:
    """
    Get current authenticated user.

    Raises 401 if no valid token is present.
    """
    token = get_token(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    payload = verify_token(token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    return CurrentUser(
        id=payload["user_id"],
        role=payload["role"],
        email=payload["email"],
    )


async def require_admin(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """
    Require the current user to be an admin.

    Raises 403 otherwise.
    """
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user
