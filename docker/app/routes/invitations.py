"""Invite code API routes for the current user.

Codes, sharing, stats, attributed registrations and reward claims.
"""

from datetime import datetime
from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db.models import User, InviteCode
from services.invitation_service import get_invitation_service, InvitationError
from services.reward_engine import get_reward_engine, RewardError
from services.email_service import EmailService
from dependencies import get_current_user, service_http_error
from models import InviteCodeResponse, RegistrationResponse, RewardRecordResponse, MessageResponse


router = APIRouter()


class InviteCodeListResponse(BaseModel):
    codes: List[InviteCodeResponse]
    total: int


class ShareByEmailRequest(BaseModel):
    """Send an invite code to a friend."""
    to_email: EmailStr
    personal_message: Optional[str] = Field(default=None, max_length=500)


class ShareResponse(BaseModel):
    success: bool
    message: str
    error: Optional[str] = None


class InviteStatsResponse(BaseModel):
    total_invites: int
    successful_registrations: int
    active_invitees: int
    total_rewards_earned: int
    last_updated: Optional[datetime] = None


class ClaimResponse(BaseModel):
    registration_id: str
    granted: List[RewardRecordResponse]
    failed: List[str]


async def _owned_code(db: AsyncSession, code_id: uuid.UUID, user: User) -> InviteCode:
    invite_code = await db.get(InviteCode, code_id)
    if invite_code is None or invite_code.inviter_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invite code not found",
        )
    return invite_code


@router.get("", response_model=InviteCodeListResponse)
async def list_invite_codes(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    codes = await get_invitation_service(db).get_user_invite_codes(current_user.id)
    return InviteCodeListResponse(
        codes=[InviteCodeResponse.from_code(c) for c in codes],
        total=len(codes),
    )


@router.post("", response_model=InviteCodeResponse, status_code=status.HTTP_201_CREATED)
async def create_invite_code(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Generate a new invite code.

    Restricted accounts get 403, and users at their active-code limit get 409.
    """
    try:
        invite_code = await get_invitation_service(db).generate_invite_code(current_user)
    except InvitationError as e:
        raise service_http_error(e)
    return InviteCodeResponse.from_code(invite_code)


@router.get("/stats", response_model=InviteStatsResponse)
async def get_invite_stats(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    stats = await get_invitation_service(db).get_user_invite_stats(current_user.id)
    return InviteStatsResponse(
        total_invites=stats.total_invites,
        successful_registrations=stats.successful_registrations,
        active_invitees=stats.active_invitees,
        total_rewards_earned=stats.total_rewards_earned,
        last_updated=stats.last_updated,
    )


@router.get("/history", response_model=List[RegistrationResponse])
async def get_invite_history(
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Registrations attributed to the current user's codes, newest first."""
    history = await get_invitation_service(db).get_invite_history(current_user.id, limit=limit)
    return [RegistrationResponse.from_registration(r) for r in history]


@router.get("/claimable", response_model=List[RegistrationResponse])
async def get_claimable_registrations(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    registrations = await get_reward_engine(db).claimable_registrations(current_user.id)
    return [RegistrationResponse.from_registration(r) for r in registrations]


@router.post("/registrations/{registration_id}/claim", response_model=ClaimResponse)
async def claim_registration_rewards(
    registration_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Claim the pending rewards of one attributed registration.

    A claim past the deadline answers 410, and a repeated claim 409.
    """
    try:
        results = await get_reward_engine(db).claim_registration_rewards(current_user.id, registration_id)
    except RewardError as e:
        raise service_http_error(e)

    return ClaimResponse(
        registration_id=str(registration_id),
        granted=[RewardRecordResponse.from_record(r.record) for r in results if r.success],
        failed=[r.error for r in results if not r.success],
    )


@router.post("/{code_id}/share", response_model=ShareResponse)
async def share_invite_code(
    code_id: uuid.UUID,
    data: ShareByEmailRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Email an invite code to a friend and count it as shared."""
    invite_code = await _owned_code(db, code_id, current_user)
    if not invite_code.is_valid:
        raise HTTPException(
            status_code=status.HTTP_410_GONE,
            detail={"message": "Invite code can no longer be used", "code": "invalid_invite_code"},
        )

    result = await EmailService(db).send_invitation_email(
        to_email=data.to_email,
        invite_code=invite_code.code,
        inviter_name=current_user.username,
        expires_at=invite_code.expires_at.strftime("%Y-%m-%d"),
        personal_message=data.personal_message,
    )
    if result.success:
        await get_invitation_service(db).record_code_shared(invite_code, channel="email")

    return ShareResponse(success=result.success, message=result.message, error=result.error)


@router.delete("/{code_id}", response_model=MessageResponse)
async def deactivate_invite_code(
    code_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if not await get_invitation_service(db).deactivate_invite_code(code_id, current_user.id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invite code not found",
        )
    return MessageResponse(message="Invite code deactivated")
