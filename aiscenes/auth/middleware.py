"""
Request authentication.

Access tokens are HS256 JWTs issued by Supabase Auth. This service only
verifies them; sign-up, login and token refresh happen elsewhere.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import jwt
import structlog
from fastapi import Header

from aiscenes.config import get_settings
from aiscenes.kernel.errors import UnauthorizedError

logger = structlog.get_logger()

JWT_ALGORITHM = "HS256"


@dataclass(frozen=True)
class AuthenticatedUser:
    user_id: str
    email: str | None = None
    role: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)


def verify_access_token(token: str) -> AuthenticatedUser | None:
    """Decode and verify an access token; None when it is not acceptable."""
    settings = get_settings()
    if not settings.supabase_jwt_secret:
        logger.warning("Bearer token rejected: SUPABASE_JWT_SECRET is not configured")
        return None

    try:
        payload = jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=[JWT_ALGORITHM],
            audience=settings.supabase_jwt_audience,
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        logger.debug("Bearer token expired")
        return None
    except jwt.InvalidTokenError as exc:
        logger.debug("Bearer token invalid", error=str(exc))
        return None

    user_id = str(payload.get("sub") or "")
    if not user_id:
        return None
    return AuthenticatedUser(
        user_id=user_id,
        email=payload.get("email"),
        role=payload.get("role"),
        claims=payload,
    )


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_user(authorization: str | None = Header(None)) -> AuthenticatedUser:
    """FastAPI dependency: the authenticated user, or 401."""
    token = _bearer_token(authorization)
    if token is None:
        raise UnauthorizedError(message="Missing authorization header")

    user = verify_access_token(token)
    if user is None:
        raise UnauthorizedError(message="Invalid or expired authorization token")
    return user


async def get_optional_user(authorization: str | None = Header(None)) -> AuthenticatedUser | None:
    """Like `get_current_user`, but anonymous requests yield None.

    A token that is present but invalid is still rejected.
    """
    if not authorization:
        return None
    return await get_current_user(authorization)
