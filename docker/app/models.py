"""Pydantic models shared across API routes."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from db.models import User, InviteCode, InviteRegistration, RewardRecord, CreditRecord, Notification


class MessageResponse(BaseModel):
    """Simple message response."""
    message: str
    success: bool = True


class TokenResponse(BaseModel):
    """Response containing access and refresh tokens."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class UserResponse(BaseModel):
    """User information response."""
    id: str
    email: str
    username: str
    role: str
    is_active: bool
    is_activated: bool
    created_at: str
    last_login: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=str(user.id),
            email=user.email,
            username=user.username,
            role=user.role.value,
            is_active=user.is_active,
            is_activated=user.is_activated,
            created_at=user.created_at.isoformat(),
            last_login=user.last_login.isoformat() if user.last_login else None,
        )


class DeviceFingerprintRequest(BaseModel):
    """Browser fingerprint sent along with a registration."""
    user_agent: Optional[str] = Field(default=None, max_length=500)
    screen_resolution: Optional[str] = Field(default=None, max_length=32)
    timezone: Optional[str] = Field(default=None, max_length=64)
    language: Optional[str] = Field(default=None, max_length=32)
    platform: Optional[str] = Field(default=None, max_length=64)
    cookie_enabled: bool = True


class InviteCodeResponse(BaseModel):
    id: str
    code: str
    created_at: datetime
    expires_at: datetime
    is_active: bool
    usage_count: int
    max_usage: int
    is_valid: bool

    @classmethod
    def from_code(cls, invite_code: InviteCode) -> "InviteCodeResponse":
        return cls(
            id=str(invite_code.id),
            code=invite_code.code,
            created_at=invite_code.created_at,
            expires_at=invite_code.expires_at,
            is_active=invite_code.is_active,
            usage_count=invite_code.usage_count,
            max_usage=invite_code.max_usage,
            is_valid=invite_code.is_valid,
        )


class RegistrationResponse(BaseModel):
    """An invitee attributed to one of the current user's codes."""
    id: str
    invitee_id: str
    registered_at: datetime
    is_activated: bool
    activated_at: Optional[datetime] = None
    rewards_claimed: bool
    rewards_withheld: bool
    claim_deadline: datetime

    @classmethod
    def from_registration(cls, registration: InviteRegistration) -> "RegistrationResponse":
        return cls(
            id=str(registration.id),
            invitee_id=str(registration.invitee_id),
            registered_at=registration.registered_at,
            is_activated=registration.is_activated,
            activated_at=registration.activated_at,
            rewards_claimed=registration.rewards_claimed,
            rewards_withheld=registration.rewards_withheld,
            claim_deadline=registration.claim_deadline,
        )


class RewardRecordResponse(BaseModel):
    id: str
    reward_type: str
    amount: Optional[int] = None
    badge_id: Optional[str] = None
    title_id: Optional[str] = None
    description: str
    source_type: str
    granted_at: datetime

    @classmethod
    def from_record(cls, record: RewardRecord) -> "RewardRecordResponse":
        return cls(
            id=str(record.id),
            reward_type=record.reward_type.value,
            amount=record.amount,
            badge_id=record.badge_id,
            title_id=record.title_id,
            description=record.description,
            source_type=record.source_type.value,
            granted_at=record.granted_at,
        )


class CreditRecordResponse(BaseModel):
    id: str
    amount: int
    remaining: Optional[int] = None
    type: str
    source: str
    description: str
    expires_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_record(cls, record: CreditRecord) -> "CreditRecordResponse":
        return cls(
            id=str(record.id),
            amount=record.amount,
            remaining=record.remaining,
            type=record.type.value,
            source=record.source.value,
            description=record.description,
            expires_at=record.expires_at,
            created_at=record.created_at,
        )


class NotificationResponse(BaseModel):
    id: str
    type: str
    title: str
    content: str
    data: Optional[dict[str, Any]] = None
    status: str
    created_at: datetime
    read_at: Optional[datetime] = None

    @classmethod
    def from_notification(cls, notification: Notification) -> "NotificationResponse":
        return cls(
            id=str(notification.id),
            type=notification.type.value,
            title=notification.title,
            content=notification.content,
            data=notification.data,
            status=notification.status.value,
            created_at=notification.created_at,
            read_at=notification.read_at,
        )


class SystemHealth(BaseModel):
    """System health status."""
    status: str
    database_connected: bool
    smtp_configured: bool = False
    users_count: int = 0
    active_invite_codes: int = 0

