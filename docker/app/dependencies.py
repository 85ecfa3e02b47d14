"""FastAPI dependencies for authentication, authorization and error mapping."""

from typing import Optional
import uuid

from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db.models import User, UserRole
from services.jwt_service import get_jwt_service, TokenError
from services.auth_service import get_auth_service


# Security scheme for JWT bearer tokens
bearer_scheme = HTTPBearer(auto_error=False)

_NOT_FOUND_CODES = {"not_found", "invalid_invite_code", "user_not_found"}
_GONE_CODES = {"expired_invite_code", "usage_limit_exceeded", "claim_expired"}
_CONFLICT_CODES = {
    "email_exists",
    "username_exists",
    "already_registered",
    "already_claimed",
    "badge_exists",
    "title_exists",
    "case_closed",
    "too_many_codes",
}
_FORBIDDEN_CODES = {
    "registration_blocked",
    "registration_disabled",
    "user_restricted",
    "rewards_withheld",
    "self_invite_attempt",
    "badge_not_owned",
    "title_not_owned",
}


def error_status(code: str) -> int:
    """HTTP status for a service error code."""
    if code in _NOT_FOUND_CODES:
        return status.HTTP_404_NOT_FOUND
    if code in _GONE_CODES:
        return status.HTTP_410_GONE
    if code in _CONFLICT_CODES:
        return status.HTTP_409_CONFLICT
    if code in _FORBIDDEN_CODES:
        return status.HTTP_403_FORBIDDEN
    return status.HTTP_400_BAD_REQUEST


def service_http_error(error: Exception) -> HTTPException:
    """Translate a service exception carrying ``message``/``code``."""
    code = getattr(error, "code", "error")
    return HTTPException(
        status_code=error_status(code),
        detail={"message": getattr(error, "message", str(error)), "code": code},
    )


async def get_token_from_request(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    if credentials is None:
        return None
    return credentials.credentials


async def get_current_user(
    token: Optional[str] = Depends(get_token_from_request),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Get the current authenticated user.

    Raises:
        HTTPException: 401 if the token is missing or invalid, or the
            user is gone or inactive
    """
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = get_jwt_service().decode_access_token(token)
    except TokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await get_auth_service(db).get_user_by_id(uuid.UUID(payload["sub"]))

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User is inactive",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user


async def get_current_user_optional(
    token: Optional[str] = Depends(get_token_from_request),
    db: AsyncSession = Depends(get_db),
) -> Optional[User]:
    """Get the current user if authenticated, None otherwise."""
    if token is None:
        return None

    try:
        payload = get_jwt_service().decode_access_token(token)
    except TokenError:
        return None

    user = await get_auth_service(db).get_user_by_id(uuid.UUID(payload["sub"]))
    if user is None or not user.is_active:
        return None

    return user


async def require_admin(
    current_user: User = Depends(get_current_user),
) -> User:
    """Require the current user to be an admin."""
    if current_user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


def get_client_info(request: Request) -> dict:
    """User agent and client IP, honouring X-Forwarded-For behind a proxy."""
    user_agent = request.headers.get("user-agent", "")[:500]
    ip_address = request.client.host if request.client else None

    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        ip_address = forwarded_for.split(",")[0].strip()

    return {
        "user_agent": user_agent,
        "ip_address": ip_address,
    }
