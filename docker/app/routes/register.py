"""Registration API routes.

Open sign-up with optional invite code attribution, and account activation.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db.models import User
from services.auth_service import get_auth_service, AuthError
from services.fraud_service import DeviceInfo
from services.invitation_service import get_invitation_service
from dependencies import get_current_user, get_client_info, service_http_error
from models import DeviceFingerprintRequest, TokenResponse, UserResponse


router = APIRouter()


class ValidateCodeRequest(BaseModel):
    code: str


class CodeInfoResponse(BaseModel):
    """Result of validating an invite code."""
    valid: bool
    inviter_username: Optional[str] = None
    expires_at: Optional[str] = None
    code: Optional[str] = None
    message: Optional[str] = None


class RegisterRequest(BaseModel):
    """Request for user registration."""
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=100, pattern=r"^[a-zA-Z0-9_-]+$")
    password: str = Field(..., min_length=8, max_length=128)
    invite_code: Optional[str] = Field(default=None, max_length=32)
    device: Optional[DeviceFingerprintRequest] = None


@router.post("/validate", response_model=CodeInfoResponse)
async def validate_invite_code(
    data: ValidateCodeRequest,
    db: AsyncSession = Depends(get_db),
):
    """Check an invite code before showing the sign-up form."""
    validation = await get_invitation_service(db).validate_invite_code(data.code)

    if not validation.is_valid:
        return CodeInfoResponse(valid=False, code=validation.error_code, message=validation.message)

    invite_code = validation.invite_code
    inviter = await get_auth_service(db).get_user_by_id(invite_code.inviter_id)
    return CodeInfoResponse(
        valid=True,
        inviter_username=inviter.username if inviter else None,
        expires_at=invite_code.expires_at.isoformat(),
    )


@router.post("", response_model=TokenResponse)
async def register(
    data: RegisterRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Register a new user and log them in.

    Invalid codes answer 404, expired or exhausted ones 410, and attempts
    rejected by the risk checks 403.
    """
    auth_service = get_auth_service(db)
    client_info = get_client_info(request)

    device = DeviceInfo(**data.device.model_dump()) if data.device else None

    try:
        user = await auth_service.register(
            email=data.email,
            username=data.username,
            password=data.password,
            invite_code=data.invite_code or None,
            ip_address=client_info["ip_address"],
            user_agent=client_info["user_agent"],
            device=device,
        )
    except AuthError as e:
        raise service_http_error(e)

    tokens = await auth_service.create_tokens(
        user,
        user_agent=client_info["user_agent"],
        ip_address=client_info["ip_address"],
    )
    return TokenResponse(**tokens)


@router.post("/activate", response_model=UserResponse)
async def activate_account(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Mark the current user as activated. Repeated calls are no-ops."""
    user = await get_auth_service(db).activate_user(current_user)
    return UserResponse.from_user(user)
