"""Referral database models: invite codes, registrations, events and stats."""

import enum
from datetime import datetime
from typing import Any, Optional
import uuid

from sqlalchemy import (
    String,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    JSON,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import UUID

from database import Base


class InviteEventType(str, enum.Enum):
    """Events emitted along the referral funnel."""
    CODE_GENERATED = "code_generated"
    CODE_SHARED = "code_shared"
    USER_REGISTERED = "user_registered"
    USER_ACTIVATED = "user_activated"
    REWARD_GRANTED = "reward_granted"


class InviteCode(Base):
    """A shareable referral code owned by an inviter.

    Unlike one-shot admin invitations, a code can be redeemed up to
    ``max_usage`` times before it expires.
    """

    __tablename__ = "invite_codes"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    code: Mapped[str] = mapped_column(
        String(16),
        unique=True,
        nullable=False,
        index=True,
    )
    inviter_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )
    usage_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    max_usage: Mapped[int] = mapped_column(
        Integer,
        default=100,
        nullable=False,
    )
    # Set once the owner has been warned about the upcoming expiry
    expiry_notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Relationships
    inviter: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="invite_codes",
    )

    @property
    def is_expired(self) -> bool:
        """Check if code is expired."""
        return datetime.utcnow() > self.expires_at

    @property
    def is_exhausted(self) -> bool:
        """Check if the code has hit its usage limit."""
        return self.usage_count >= self.max_usage

    @property
    def is_valid(self) -> bool:
        """Check if code can still be redeemed."""
        return self.is_active and not self.is_expired and not self.is_exhausted

    def __repr__(self) -> str:
        return f"<InviteCode {self.code} inviter={self.inviter_id} used={self.usage_count}/{self.max_usage}>"


class InviteRegistration(Base):
    """A registration attributed to an invite code.

    Each invitee can be attributed at most once.
    """

    __tablename__ = "invite_registrations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    invite_code_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("invite_codes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    inviter_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    invitee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    registered_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )
    ip_address: Mapped[Optional[str]] = mapped_column(
        String(45),
        nullable=True,
    )
    user_agent: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
    )
    is_activated: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    activated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
    )
    # Pending inviter rewards must be claimed before claim_deadline
    rewards_claimed: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    rewards_claimed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
    )
    claim_deadline: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
    )
    # Set when the inviter was banned or frozen at registration time
    rewards_withheld: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    # Relationships
    invite_code: Mapped["InviteCode"] = relationship("InviteCode")
    invitee: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[invitee_id],
    )

    @property
    def claim_expired(self) -> bool:
        return datetime.utcnow() > self.claim_deadline

    @property
    def is_claimable(self) -> bool:
        return not self.rewards_claimed and not self.rewards_withheld and not self.claim_expired

    def __repr__(self) -> str:
        return f"<InviteRegistration inviter={self.inviter_id} invitee={self.invitee_id}>"


class InviteEvent(Base):
    """Append-only funnel event log used by analytics."""

    __tablename__ = "invite_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    type: Mapped[InviteEventType] = mapped_column(
        Enum(InviteEventType, name="inviteeventtype", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    inviter_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    invitee_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    invite_code_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("invite_codes.id", ondelete="SET NULL"),
        nullable=True,
    )
    event_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<InviteEvent {self.type.value} inviter={self.inviter_id}>"


class InviteStats(Base):
    """Denormalized per-inviter counters, refreshed after funnel events."""

    __tablename__ = "invite_stats"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    total_invites: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    successful_registrations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    active_invitees: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_rewards_earned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<InviteStats user={self.user_id} registrations={self.successful_registrations}>"


Index("ix_invite_codes_inviter_active", InviteCode.inviter_id, InviteCode.is_active)
Index("ix_invite_registrations_registered", InviteRegistration.registered_at)
Index("ix_invite_events_type_timestamp", InviteEvent.type, InviteEvent.timestamp)
