"""Authentication API routes.

First-run setup, login, token refresh, logout and the caller's referral
profile.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status, Request
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db.models import User
from services.auth_service import get_auth_service, AuthError
from services.badge_service import get_badge_service
from services.fraud_service import get_fraud_service
from dependencies import get_current_user, get_client_info
from models import MessageResponse, TokenResponse, UserResponse


router = APIRouter()


class SetupRequest(BaseModel):
    """Request for initial admin setup."""
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=100, pattern=r"^[a-zA-Z0-9_-]+$")
    password: str = Field(..., min_length=8, max_length=128)


class LoginRequest(BaseModel):
    email_or_username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None


class SetupStatusResponse(BaseModel):
    setup_required: bool


class ProfileResponse(UserResponse):
    """The signed-in user plus what the referral program shows about them."""
    referral_restricted: bool = False
    active_title: Optional[str] = None
    displayed_badges: List[str] = []


def _auth_failed(e: AuthError, status_code: int = status.HTTP_401_UNAUTHORIZED) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"message": e.message, "code": e.code})


async def _issue_tokens(auth_service, user: User, request: Request) -> TokenResponse:
    client_info = get_client_info(request)
    tokens = await auth_service.create_tokens(
        user,
        user_agent=client_info["user_agent"],
        ip_address=client_info["ip_address"],
    )
    return TokenResponse(**tokens)


@router.get("/status", response_model=SetupStatusResponse)
async def get_setup_status(db: AsyncSession = Depends(get_db)):
    """Tell the frontend whether to show the first-run admin form."""
    complete = await get_auth_service(db).is_setup_complete()
    return SetupStatusResponse(setup_required=not complete)


@router.post("/setup", response_model=TokenResponse)
async def setup_admin(
    data: SetupRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Create the first admin and log them in. Only works once."""
    auth_service = get_auth_service(db)
    try:
        user = await auth_service.setup_admin(
            email=data.email,
            username=data.username,
            password=data.password,
        )
    except AuthError as e:
        raise _auth_failed(e, status.HTTP_400_BAD_REQUEST)

    return await _issue_tokens(auth_service, user, request)


@router.post("/login", response_model=TokenResponse)
async def login(
    data: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    auth_service = get_auth_service(db)
    try:
        user = await auth_service.authenticate_user(data.email_or_username, data.password)
    except AuthError as e:
        raise _auth_failed(e)

    return await _issue_tokens(auth_service, user, request)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_tokens(
    data: RefreshRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Rotate a refresh token. The presented token stops working."""
    client_info = get_client_info(request)
    try:
        tokens = await get_auth_service(db).refresh_tokens(
            refresh_token=data.refresh_token,
            user_agent=client_info["user_agent"],
            ip_address=client_info["ip_address"],
        )
    except AuthError as e:
        raise _auth_failed(e)

    return TokenResponse(**tokens)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    data: LogoutRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Revoke one refresh token, or every session when none is given."""
    auth_service = get_auth_service(db)

    if data.refresh_token:
        await auth_service.logout(data.refresh_token)
        return MessageResponse(message="Logged out")

    count = await auth_service.logout_all(current_user.id)
    return MessageResponse(message=f"Revoked {count} sessions")


@router.get("/me", response_model=ProfileResponse)
async def get_profile(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    badges = get_badge_service(db)
    title = await badges.get_active_title(current_user.id)
    displayed = [b.badge_id for b in await badges.get_user_badges(current_user.id) if b.is_displayed]

    return ProfileResponse(
        **UserResponse.from_user(current_user).model_dump(),
        referral_restricted=await get_fraud_service(db).is_restricted(current_user.id),
        active_title=title.title_id if title else None,
        displayed_badges=displayed,
    )
