"""Badge and title models."""

import enum
from datetime import datetime
from typing import Optional
import uuid

from sqlalchemy import (
    String,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    JSON,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import UUID

from database import Base


class BadgeCategory(str, enum.Enum):
    INVITER = "inviter"
    ACHIEVER = "achiever"
    SPECIAL = "special"
    SEASONAL = "seasonal"


class BadgeRarity(str, enum.Enum):
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class RequirementType(str, enum.Enum):
    """Metric a badge/title requirement is evaluated against."""
    INVITE_COUNT = "invite_count"
    ACTIVE_INVITEES = "active_invitees"
    TOTAL_CREDITS = "total_credits"


class Badge(Base):
    """Badge definition. ``id`` is a stable slug (e.g. ``active_inviter_3``).

    ``requirements`` is a list of ``{"type": RequirementType, "value": int}``.
    """

    __tablename__ = "badges"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    icon_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    category: Mapped[BadgeCategory] = mapped_column(
        Enum(BadgeCategory, name="badgecategory", values_callable=lambda x: [e.value for e in x]),
        default=BadgeCategory.INVITER,
        nullable=False,
    )
    rarity: Mapped[BadgeRarity] = mapped_column(
        Enum(BadgeRarity, name="badgerarity", values_callable=lambda x: [e.value for e in x]),
        default=BadgeRarity.COMMON,
        nullable=False,
    )
    requirements: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Badge {self.id}>"


class UserBadge(Base):
    __tablename__ = "user_badges"
    __table_args__ = (
        UniqueConstraint("user_id", "badge_id", name="uq_user_badges_user_badge"),
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
        index=True,
    )
    badge_id: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("badges.id", ondelete="CASCADE"),
        nullable=False,
    )
    earned_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    is_displayed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    badge: Mapped["Badge"] = relationship("Badge", lazy="selectin")


class Title(Base):
    """Title definition, shown next to a user's name."""

    __tablename__ = "titles"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    color: Mapped[str] = mapped_column(String(20), default="#6366f1", nullable=False)
    requirements: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class UserTitle(Base):
    __tablename__ = "user_titles"
    __table_args__ = (
        UniqueConstraint("user_id", "title_id", name="uq_user_titles_user_title"),
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
        index=True,
    )
    title_id: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("titles.id", ondelete="CASCADE"),
        nullable=False,
    )
    earned_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    # At most one active title per user
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    title: Mapped["Title"] = relationship("Title", lazy="selectin")
