"""
Access token verification.

Tokens are issued by the hosted auth service (Supabase) and signed with
its HS256 JWT secret. They arrive in the Authorization header or in the
access_token cookie.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from jose import JWTError, jwt

from redetour.config import settings

# JWT configuration
ALGORITHM = "HS256"
COOKIE_NAME = "access_token"


class UserRole(str, Enum):
    """Marketplace roles."""
    CLIENT = "cliente"
    PARTNER = "parceiro"
    AFFILIATE = "afiliado"
    ADMIN = "admin"


def resolve_role(payload: dict[str, Any]) -> UserRole:
    """
    Role claim, looked up in app_metadata, then user_metadata, then the top level.

    The top-level 'role' of a Supabase token is the database role
    ('authenticated'), so anything unknown falls back to cliente.
    """
    candidates = (
        (payload.get("app_metadata") or {}).get("role"),
        (payload.get("user_metadata") or {}).get("role"),
        payload.get("role"),
    )
    for candidate in candidates:
        try:
            return UserRole(candidate)
        except ValueError:
            continue
    return UserRole.CLIENT


def create_access_token(
    user_id: str,
    role: UserRole = UserRole.CLIENT,
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a token shaped like the auth service's.

    Used for service-to-service calls and local development.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "role": "authenticated",
        "app_metadata": {"role": role.value},
        "iat": now,
        "exp": now + (expires_delta or timedelta(hours=1)),
    }
    if settings.jwt_audience:
        payload["aud"] = settings.jwt_audience

    return jwt.encode(payload, settings.supabase_jwt_secret, algorithm=ALGORITHM)


def verify_token(token: str) -> Optional[dict]:
    """
    Verify and decode an access token.

    Returns:
        Dict with 'user_id', 'role' and 'email',
        or None if the token is invalid/expired
    """
    options = {"verify_aud": bool(settings.jwt_audience)}
    try:
        payload = jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=[ALGORITHM],
            audience=settings.jwt_audience,
            options=options,
        )
    except JWTError:
        return None

    user_id = payload.get("sub")
    if not user_id:
        return None

    return {
        "user_id": str(user_id),
        "role": resolve_role(payload),
        "email": payload.get("email"),
    }


def get_token(request) -> Optional[str]:
    """Bearer token from the Authorization header, else the cookie."""
    authorization = request.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return request.cookies.get(COOKIE_NAME)
