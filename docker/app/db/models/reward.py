"""Reward configuration and reward ledger models."""

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
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from database import Base


class RewardType(str, enum.Enum):
    """Kinds of reward an inviter can receive."""
    AI_CREDITS = "ai_credits"
    BADGE = "badge"
    TITLE = "title"
    PREMIUM_DAYS = "premium_days"


class RewardSourceType(str, enum.Enum):
    """What triggered a reward."""
    INVITE_REGISTRATION = "invite_registration"
    INVITE_ACTIVATION = "invite_activation"
    MILESTONE = "milestone"
    ADMIN = "admin"


class RewardConfig(Base):
    """One reward line for an event type.

    Several rows may share an ``event_type``; together they form the
    reward bundle for that event.
    """

    __tablename__ = "reward_configs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    event_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
    )
    reward_type: Mapped[RewardType] = mapped_column(
        Enum(RewardType, name="rewardtype", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    badge_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    title_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    conditions: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )


class RewardRecord(Base):
    """A reward granted to a user."""

    __tablename__ = "reward_records"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    reward_type: Mapped[RewardType] = mapped_column(
        Enum(RewardType, name="rewardtype", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    badge_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    title_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    source_type: Mapped[RewardSourceType] = mapped_column(
        Enum(RewardSourceType, name="rewardsourcetype", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    source_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
    )
    granted_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<RewardRecord {self.reward_type.value} user={self.user_id} amount={self.amount}>"


class MilestoneMarker(Base):
    """Marks a milestone as already rewarded so it fires only once."""

    __tablename__ = "milestone_markers"
    __table_args__ = (
        UniqueConstraint("user_id", "kind", "milestone", name="uq_milestone_markers_user_kind_value"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)  # registration / activation / title
    milestone: Mapped[int] = mapped_column(Integer, nullable=False)
    reached_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )


Index("ix_reward_records_user_type", RewardRecord.user_id, RewardRecord.reward_type)
Index("ix_reward_records_granted", RewardRecord.granted_at)
