"""SQLAlchemy models for the Inspi referral service."""

from db.models.user import User, UserRole, RefreshToken
from db.models.invitation import (
    InviteCode,
    InviteRegistration,
    InviteEvent,
    InviteEventType,
    InviteStats,
)
from db.models.fraud import (
    RiskLevel,
    DeviceFingerprint,
    SuspiciousActivity,
    SuspiciousActivityType,
    UserRiskProfile,
    UserBan,
    AnomalyAlert,
    AlertType,
    AlertSeverity,
    AlertStatus,
    ReviewCase,
    ReviewCaseType,
    ReviewCaseStatus,
    ReviewAction,
    AccountFreeze,
)
from db.models.reward import (
    RewardType,
    RewardSourceType,
    RewardConfig,
    RewardRecord,
    MilestoneMarker,
)
from db.models.credit import CreditType, CreditSource, CreditRecord, CreditUsage
from db.models.badge import (
    Badge,
    BadgeCategory,
    BadgeRarity,
    RequirementType,
    UserBadge,
    Title,
    UserTitle,
)
from db.models.notification import (
    Notification,
    NotificationType,
    NotificationChannel,
    NotificationStatus,
    NotificationPreference,
)
from db.models.settings import SystemSettings

__all__ = [
    # User models
    "User",
    "UserRole",
    "RefreshToken",
    # Referral models
    "InviteCode",
    "InviteRegistration",
    "InviteEvent",
    "InviteEventType",
    "InviteStats",
    # Fraud models
    "RiskLevel",
    "DeviceFingerprint",
    "SuspiciousActivity",
    "SuspiciousActivityType",
    "UserRiskProfile",
    "UserBan",
    "AnomalyAlert",
    "AlertType",
    "AlertSeverity",
    "AlertStatus",
    "ReviewCase",
    "ReviewCaseType",
    "ReviewCaseStatus",
    "ReviewAction",
    "AccountFreeze",
    # Rewards
    "RewardType",
    "RewardSourceType",
    "RewardConfig",
    "RewardRecord",
    "MilestoneMarker",
    # Credits
    "CreditType",
    "CreditSource",
    "CreditRecord",
    "CreditUsage",
    # Badges
    "Badge",
    "BadgeCategory",
    "BadgeRarity",
    "RequirementType",
    "UserBadge",
    "Title",
    "UserTitle",
    # Notifications
    "Notification",
    "NotificationType",
    "NotificationChannel",
    "NotificationStatus",
    "NotificationPreference",
    # Settings
    "SystemSettings",
]
