"""Fraud detection database models."""

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
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from database import Base


class RiskLevel(str, enum.Enum):
    """Risk level enum, ordered low < medium < high."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SuspiciousActivityType(str, enum.Enum):
    IP_FREQUENCY = "ip_frequency"
    DEVICE_REUSE = "device_reuse"
    SELF_INVITATION = "self_invitation"
    BATCH_REGISTRATION = "batch_registration"
    PATTERN_ANOMALY = "pattern_anomaly"


class AlertType(str, enum.Enum):
    BEHAVIOR_ANOMALY = "behavior_anomaly"
    PATTERN_DEVIATION = "pattern_deviation"
    VELOCITY_SPIKE = "velocity_spike"
    NETWORK_ABUSE = "network_abuse"


class AlertSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertStatus(str, enum.Enum):
    PENDING = "pending"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"


class ReviewCaseType(str, enum.Enum):
    SUSPICIOUS_BEHAVIOR = "suspicious_behavior"
    FRAUD_DETECTION = "fraud_detection"
    REWARD_DISPUTE = "reward_dispute"
    ACCOUNT_VERIFICATION = "account_verification"


class ReviewCaseStatus(str, enum.Enum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"


class ReviewAction(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"
    FREEZE = "freeze"
    BAN = "ban"
    RECOVER_REWARDS = "recover_rewards"


def _enum(enum_cls, name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


class DeviceFingerprint(Base):
    """Browser/device fingerprint seen at registration."""

    __tablename__ = "device_fingerprints"

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
    fingerprint_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    screen_resolution: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    timezone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    language: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    platform: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )


class SuspiciousActivity(Base):
    """Audit record for anything the fraud checks flagged."""

    __tablename__ = "suspicious_activities"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    type: Mapped[SuspiciousActivityType] = mapped_column(
        _enum(SuspiciousActivityType, "suspiciousactivitytype"),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[RiskLevel] = mapped_column(
        _enum(RiskLevel, "risklevel"),
        nullable=False,
    )
    details: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )


class UserRiskProfile(Base):
    """Current risk level per user (one row per user)."""

    __tablename__ = "user_risk_profiles"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    risk_level: Mapped[RiskLevel] = mapped_column(
        _enum(RiskLevel, "risklevel"),
        default=RiskLevel.LOW,
        nullable=False,
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Running total of reward credits clawed back by fraud reviews
    recovered_credits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )


class UserBan(Base):
    """Ban from the referral program. ``expires_at`` NULL means permanent."""

    __tablename__ = "user_bans"

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
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def is_in_effect(self) -> bool:
        if not self.is_active:
            return False
        return self.expires_at is None or self.expires_at > datetime.utcnow()


class AnomalyAlert(Base):
    """Alert raised by behavioural anomaly detection."""

    __tablename__ = "anomaly_alerts"

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
    alert_type: Mapped[AlertType] = mapped_column(_enum(AlertType, "alerttype"), nullable=False)
    severity: Mapped[AlertSeverity] = mapped_column(_enum(AlertSeverity, "alertseverity"), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    status: Mapped[AlertStatus] = mapped_column(
        _enum(AlertStatus, "alertstatus"),
        default=AlertStatus.PENDING,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    resolved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )


class ReviewCase(Base):
    """Manual review case worked by an admin."""

    __tablename__ = "review_cases"

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
    case_type: Mapped[ReviewCaseType] = mapped_column(_enum(ReviewCaseType, "reviewcasetype"), nullable=False)
    priority: Mapped[str] = mapped_column(String(20), default="medium", nullable=False)
    status: Mapped[ReviewCaseStatus] = mapped_column(
        _enum(ReviewCaseStatus, "reviewcasestatus"),
        default=ReviewCaseStatus.PENDING,
        nullable=False,
    )
    assigned_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    evidence: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    decision_action: Mapped[Optional[ReviewAction]] = mapped_column(
        _enum(ReviewAction, "reviewaction"),
        nullable=True,
    )
    decision_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    decided_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    @property
    def is_open(self) -> bool:
        return self.status in (ReviewCaseStatus.PENDING, ReviewCaseStatus.IN_REVIEW)


class AccountFreeze(Base):
    """Freeze of a user's referral features pending review."""

    __tablename__ = "account_freezes"

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
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    frozen_features: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


Index("ix_user_bans_user_active", UserBan.user_id, UserBan.is_active)
Index("ix_suspicious_activities_created", SuspiciousActivity.created_at)
Index("ix_account_freezes_user_active", AccountFreeze.user_id, AccountFreeze.is_active)
