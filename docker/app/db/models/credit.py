"""AI-generation credit ledger models."""

import enum
from datetime import datetime
from typing import Any, Optional
import uuid

from sqlalchemy import (
    String,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from database import Base


class CreditType(str, enum.Enum):
    """Ledger entry kind. Only EARNED entries carry a positive amount."""
    EARNED = "earned"
    USED = "used"
    EXPIRED = "expired"
    REFUNDED = "refunded"


class CreditSource(str, enum.Enum):
    INVITE_REWARD = "invite_reward"
    MILESTONE_REWARD = "milestone_reward"
    ACTIVITY_REWARD = "activity_reward"
    PURCHASE = "purchase"
    ADMIN_GRANT = "admin_grant"
    SYSTEM_REFUND = "system_refund"


class CreditRecord(Base):
    """One ledger line.

    An EARNED line is open while ``used_at`` is NULL. Consumption lowers
    ``remaining`` and stamps ``used_at`` once nothing is left. USED, EXPIRED
    and REFUNDED lines carry negative or positive deltas for auditing.
    """

    __tablename__ = "credit_records"

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
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    # Unspent part of an EARNED line; NULL for other entry types
    remaining: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    type: Mapped[CreditType] = mapped_column(
        Enum(CreditType, name="credittype", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    source: Mapped[CreditSource] = mapped_column(
        Enum(CreditSource, name="creditsource", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    source_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    @property
    def is_open(self) -> bool:
        """Earned, unspent and unexpired."""
        return (
            self.type == CreditType.EARNED
            and self.used_at is None
            and (self.expires_at is None or self.expires_at > datetime.utcnow())
        )

    def __repr__(self) -> str:
        return f"<CreditRecord {self.type.value} {self.amount} user={self.user_id}>"


class CreditUsage(Base):
    """What a consumption of credits was for."""

    __tablename__ = "credit_usage"

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
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    purpose: Mapped[str] = mapped_column(String(255), nullable=False)
    usage_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )


Index("ix_credit_records_user_type_expires", CreditRecord.user_id, CreditRecord.type, CreditRecord.expires_at)
