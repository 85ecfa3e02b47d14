"""In-app and email notifications for the referral program."""

import logging
from datetime import datetime, timedelta
from typing import Any, List, Optional
import uuid

from sqlalchemy import select, and_, func, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import (
    Notification,
    NotificationType,
    NotificationChannel,
    NotificationStatus,
    NotificationPreference,
    InviteCode,
    InviteEvent,
    InviteEventType,
    User,
)
from services.email_service import EmailService

logger = logging.getLogger(__name__)

DEFAULT_CHANNELS = {
    NotificationChannel.IN_APP: True,
    NotificationChannel.EMAIL: False,
}


class NotificationService:
    """Creates, delivers and queries notifications.

    Delivery never raises: a failed email marks the notification FAILED
    and is logged.
    """

    def __init__(self, db: AsyncSession, email_service: Optional[EmailService] = None):
        self.db = db
        self.email_service = email_service or EmailService(db)

    async def _get_preference(
        self,
        user_id: uuid.UUID,
        notification_type: NotificationType,
    ) -> Optional[NotificationPreference]:
        result = await self.db.execute(
            select(NotificationPreference).where(
                and_(
                    NotificationPreference.user_id == user_id,
                    NotificationPreference.type == notification_type,
                )
            )
        )
        return result.scalar_one_or_none()

    async def _enabled_channels(
        self,
        user_id: uuid.UUID,
        notification_type: NotificationType,
    ) -> List[NotificationChannel]:
        pref = await self._get_preference(user_id, notification_type)
        if pref is None:
            return [c for c, enabled in DEFAULT_CHANNELS.items() if enabled]

        channels = []
        if pref.in_app_enabled:
            channels.append(NotificationChannel.IN_APP)
        if pref.email_enabled:
            channels.append(NotificationChannel.EMAIL)
        return channels

    async def send_notification(
        self,
        user_id: uuid.UUID,
        notification_type: NotificationType,
        title: str,
        content: str,
        data: Optional[dict[str, Any]] = None,
    ) -> List[Notification]:
        """Deliver a notification on every channel the user has enabled.

        Returns:
            One Notification row per channel attempted
        """
        channels = await self._enabled_channels(user_id, notification_type)
        now = datetime.utcnow()
        sent = []

        for channel in channels:
            notification = Notification(
                user_id=user_id,
                type=notification_type,
                channel=channel,
                title=title,
                content=content,
                data=data,
                status=NotificationStatus.PENDING,
                created_at=now,
            )
            self.db.add(notification)

            if channel == NotificationChannel.IN_APP:
                notification.status = NotificationStatus.SENT
                notification.sent_at = now
            else:
                await self._deliver_email(notification)

            sent.append(notification)

        await self.db.commit()
        return sent

    async def _deliver_email(self, notification: Notification) -> None:
        user = await self.db.get(User, notification.user_id)
        if user is None:
            notification.status = NotificationStatus.FAILED
            notification.error = "User not found"
            return

        if not await self.email_service.is_configured():
            notification.status = NotificationStatus.FAILED
            notification.error = "SMTP not configured"
            return

        result = await self.email_service.send_notification_email(
            user.email,
            notification.title,
            notification.content,
        )

        if result.success:
            notification.status = NotificationStatus.SENT
            notification.sent_at = datetime.utcnow()
        else:
            notification.status = NotificationStatus.FAILED
            notification.error = result.error or result.message
            logger.error(f"Email notification to user {notification.user_id} failed: {notification.error}")

    async def get_user_notifications(
        self,
        user_id: uuid.UUID,
        unread_only: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Notification]:
        conditions = [
            Notification.user_id == user_id,
            Notification.channel == NotificationChannel.IN_APP,
        ]
        if unread_only:
            conditions.append(Notification.read_at.is_(None))

        result = await self.db.execute(
            select(Notification)
            .where(and_(*conditions))
            .order_by(Notification.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def mark_as_read(self, notification_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        notification = await self.db.get(Notification, notification_id)
        if notification is None or notification.user_id != user_id:
            return False

        if notification.read_at is None:
            notification.read_at = datetime.utcnow()
            notification.status = NotificationStatus.READ
            await self.db.commit()
        return True

    async def mark_all_as_read(self, user_id: uuid.UUID) -> int:
        result = await self.db.execute(
            update(Notification)
            .where(
                and_(
                    Notification.user_id == user_id,
                    Notification.channel == NotificationChannel.IN_APP,
                    Notification.read_at.is_(None),
                )
            )
            .values(read_at=datetime.utcnow(), status=NotificationStatus.READ)
        )
        await self.db.commit()
        return result.rowcount or 0

    async def get_unread_count(self, user_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count(Notification.id)).where(
                and_(
                    Notification.user_id == user_id,
                    Notification.channel == NotificationChannel.IN_APP,
                    Notification.read_at.is_(None),
                )
            )
        )
        return result.scalar() or 0

    async def get_user_preferences(self, user_id: uuid.UUID) -> dict[str, dict[str, bool]]:
        """Effective channel settings for every notification type."""
        result = await self.db.execute(
            select(NotificationPreference).where(NotificationPreference.user_id == user_id)
        )
        stored = {p.type: p for p in result.scalars().all()}

        prefs = {}
        for notification_type in NotificationType:
            pref = stored.get(notification_type)
            prefs[notification_type.value] = {
                "in_app": pref.in_app_enabled if pref else DEFAULT_CHANNELS[NotificationChannel.IN_APP],
                "email": pref.email_enabled if pref else DEFAULT_CHANNELS[NotificationChannel.EMAIL],
            }
        return prefs

    async def update_user_preferences(
        self,
        user_id: uuid.UUID,
        preferences: dict[str, dict[str, bool]],
    ) -> dict[str, dict[str, bool]]:
        """Upsert per-type preferences.

        Args:
            preferences: ``{type: {"in_app": bool, "email": bool}}``; omitted
                channels keep their current value
        """
        for type_value, channels in preferences.items():
            notification_type = NotificationType(type_value)
            pref = await self._get_preference(user_id, notification_type)
            if pref is None:
                pref = NotificationPreference(
                    user_id=user_id,
                    type=notification_type,
                    in_app_enabled=DEFAULT_CHANNELS[NotificationChannel.IN_APP],
                    email_enabled=DEFAULT_CHANNELS[NotificationChannel.EMAIL],
                )
                self.db.add(pref)

            if "in_app" in channels:
                pref.in_app_enabled = bool(channels["in_app"])
            if "email" in channels:
                pref.email_enabled = bool(channels["email"])

        await self.db.commit()
        return await self.get_user_preferences(user_id)

    async def handle_invite_event(self, event: InviteEvent) -> List[Notification]:
        """Turn a funnel event into a notification for the inviter."""
        if event.inviter_id is None:
            return []

        meta = event.event_metadata or {}

        if event.type == InviteEventType.USER_REGISTERED:
            invitee = meta.get("invitee_name", "A friend")
            return await self.send_notification(
                event.inviter_id,
                NotificationType.INVITE_SUCCESS,
                "Invitation accepted",
                f"{invitee} signed up with your invite code. Claim your reward before it expires.",
                {"invitee_id": str(event.invitee_id) if event.invitee_id else None},
            )

        if event.type == InviteEventType.USER_ACTIVATED:
            invitee = meta.get("invitee_name", "A friend you invited")
            return await self.send_notification(
                event.inviter_id,
                NotificationType.INVITEE_ACTIVATED,
                "Your invitee is active",
                f"{invitee} is now an active user.",
                {"invitee_id": str(event.invitee_id) if event.invitee_id else None},
            )

        if event.type == InviteEventType.REWARD_GRANTED:
            description = meta.get("description", "You received a referral reward.")
            return await self.send_notification(
                event.inviter_id,
                NotificationType.REWARD_RECEIVED,
                "Reward received",
                description,
                meta,
            )

        return []

    async def notify_expiring_codes(self, days_ahead: int = 3) -> int:
        """Warn owners of active codes that expire within ``days_ahead`` days.

        Each code is warned about once.

        Returns:
            Number of codes notified about
        """
        now = datetime.utcnow()
        result = await self.db.execute(
            select(InviteCode).where(
                and_(
                    InviteCode.is_active == True,
                    InviteCode.expires_at > now,
                    InviteCode.expires_at <= now + timedelta(days=days_ahead),
                    InviteCode.expiry_notified_at.is_(None),
                )
            )
        )
        codes = result.scalars().all()

        for code in codes:
            days_left = max(0, (code.expires_at - now).days)
            await self.send_notification(
                code.inviter_id,
                NotificationType.INVITE_CODE_EXPIRING,
                "Invite code expiring soon",
                f"Your invite code {code.code} expires in {days_left} day(s).",
                {"code": code.code, "expires_at": code.expires_at.isoformat()},
            )
            code.expiry_notified_at = now

        await self.db.commit()
        logger.info(f"Sent expiry warnings for {len(codes)} invite codes")
        return len(codes)

    async def cleanup_expired_notifications(self, days_to_keep: int = 30) -> int:
        """Delete read notifications older than the cutoff."""
        cutoff = datetime.utcnow() - timedelta(days=days_to_keep)
        result = await self.db.execute(
            delete(Notification).where(
                and_(
                    Notification.read_at.is_not(None),
                    Notification.created_at < cutoff,
                )
            )
        )
        await self.db.commit()

        deleted = result.rowcount or 0
        logger.info(f"Deleted {deleted} old notifications")
        return deleted


def get_notification_service(db: AsyncSession) -> NotificationService:
    """Get a notification service instance."""
    return NotificationService(db)
