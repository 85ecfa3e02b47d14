"""User management API routes (admin only).

Listing and updating accounts, and manual credit grants.
"""

from datetime import datetime, timedelta
from typing import Optional, List
import uuid

from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel, Field
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db.models import User, UserRole, CreditSource
from services.auth_service import get_auth_service
from services.credit_service import get_credit_service, CreditError
from services.invitation_service import get_invitation_service
from dependencies import require_admin, service_http_error
from models import UserResponse, CreditRecordResponse


router = APIRouter()


class UserListResponse(BaseModel):
    """Paginated user list response."""
    users: List[UserResponse]
    total: int
    page: int
    page_size: int


class UpdateUserRequest(BaseModel):
    is_active: Optional[bool] = None
    role: Optional[str] = Field(default=None, pattern=r"^(admin|user)$")


class GrantCreditsRequest(BaseModel):
    amount: int = Field(..., gt=0)
    description: str = Field(default="Granted by an administrator", max_length=500)
    expires_in_days: Optional[int] = Field(default=None, ge=1, le=3650)


async def _get_user_or_404(db: AsyncSession, user_id: uuid.UUID) -> User:
    user = await get_auth_service(db).get_user_by_id(user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )
    return user


@router.get("", response_model=UserListResponse)
async def list_users(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    count_result = await db.execute(select(func.count(User.id)))
    users = await get_auth_service(db).list_users(skip=(page - 1) * page_size, limit=page_size)

    return UserListResponse(
        users=[UserResponse.from_user(u) for u in users],
        total=count_result.scalar() or 0,
        page=page,
        page_size=page_size,
    )


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return UserResponse.from_user(await _get_user_or_404(db, user_id))


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: uuid.UUID,
    data: UpdateUserRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Activate/deactivate a user or change their role.

    Admins cannot deactivate or demote themselves.
    """
    user = await _get_user_or_404(db, user_id)

    if data.is_active is False and user.id == admin.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot deactivate your own account",
        )

    if data.role is not None and user.id == admin.id and data.role != UserRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot change your own role",
        )

    if data.is_active is not None:
        user.is_active = data.is_active
    if data.role is not None:
        user.role = UserRole(data.role)

    await db.commit()
    return UserResponse.from_user(user)


@router.get("/{user_id}/invite-stats")
async def get_user_invite_stats(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    await _get_user_or_404(db, user_id)
    stats = await get_invitation_service(db).get_user_invite_stats(user_id)
    return {
        "user_id": str(user_id),
        "total_invites": stats.total_invites,
        "successful_registrations": stats.successful_registrations,
        "active_invitees": stats.active_invitees,
        "total_rewards_earned": stats.total_rewards_earned,
    }


@router.post("/{user_id}/credits", response_model=CreditRecordResponse, status_code=status.HTTP_201_CREATED)
async def grant_credits(
    user_id: uuid.UUID,
    data: GrantCreditsRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Grant credits to a user by hand."""
    await _get_user_or_404(db, user_id)
    expires_at = None
    if data.expires_in_days:
        expires_at = datetime.utcnow() + timedelta(days=data.expires_in_days)

    try:
        record = await get_credit_service(db).add_credits(
            user_id,
            data.amount,
            CreditSource.ADMIN_GRANT,
            source_id=str(admin.id),
            description=data.description,
            expires_at=expires_at,
        )
    except CreditError as e:
        raise service_http_error(e)

    return CreditRecordResponse.from_record(record)
