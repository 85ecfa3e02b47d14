"""Database package for the Inspi referral service."""

from db.models import (
    User,
    UserRole,
    RefreshToken,
    InviteCode,
    InviteRegistration,
    InviteStats,
    SystemSettings,
)

__all__ = [
    "User",
    "UserRole",
    "RefreshToken",
    "InviteCode",
    "InviteRegistration",
    "InviteStats",
    "SystemSettings",
]
