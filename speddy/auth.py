"""Authentication and authorization against Supabase-issued JWTs."""

from typing import Optional

import jwt
import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import settings
from .scheduling.filters import normalize_role

logger = structlog.get_logger(__name__)
security = HTTPBearer(auto_error=False)

DEFAULT_ROLE = "provider"
ADMIN_ROLES = ("site_admin", "district_admin")


class CurrentUser:
    """User taken from a verified access token."""

    def __init__(self, id: str, email: Optional[str], role: str):
        self.id = id
        self.email = email
        self.role = role

    def __repr__(self):
        return f"CurrentUser(id={self.id}, email={self.email}, role={self.role})"


def decode_jwt_token(token: str) -> Optional[dict]:
    """
    Decode and validate a Supabase access token.

    Args:
        token: JWT token string

    Returns:
        Decoded token payload or None if invalid
    """
    try:
        return jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
        )
    except jwt.ExpiredSignatureError:
        logger.warning("JWT token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid JWT token", error=str(e))
        return None


def role_from_claims(payload: dict) -> str:
    """Role from user metadata, then app metadata, else provider."""
    for key in ("user_metadata", "app_metadata"):
        metadata = payload.get(key) or {}
        role = normalize_role(metadata.get("role"))
        if role:
            return role
    return DEFAULT_ROLE


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """
    Get current authenticated user from the bearer token.

    Raises:
        HTTPException: 401 if token is invalid or missing
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_jwt_token(credentials.credentials)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    user = CurrentUser(id=user_id, email=payload.get("email"), role=role_from_claims(payload))
    logger.debug("User authenticated", user_id=user.id, role=user.role)
    return user


def require_roles(*roles: str):
    """
    Dependency factory restricting an endpoint to the given roles.

    Raises:
        HTTPException: 403 when the user's role is not allowed
    """
    allowed = {normalize_role(role) for role in roles}

    async def checker(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in allowed:
            logger.warning("Role not permitted", user_id=user.id, role=user.role)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return user

    return checker
