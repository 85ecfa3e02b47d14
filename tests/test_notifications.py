"""
Tests for notifications and email delivery
==========================================

In-app delivery, channel preferences, the email mirror (SMTP mocked out),
read tracking and the periodic sweeps.
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import aiosmtplib
import pytest
from sqlalchemy import select

from db.models import (
    InviteCode,
    Notification,
    NotificationChannel,
    NotificationStatus,
    NotificationType,
    SystemSettings,
)
from services.credential_service import CredentialService
from services.email_service import EmailService
from services.notification_service import NotificationService

from conftest import create_user


@pytest.fixture
async def user(db):
    return await create_user(db, "erin")


@pytest.fixture
def notifications(db) -> NotificationService:
    return NotificationService(db)


@pytest.fixture
async def smtp_settings(db):
    settings = SystemSettings(
        setup_completed=True,
        smtp_enabled=True,
        smtp_host="smtp.example.com",
        smtp_username="mailer",
        smtp_password_encrypted=CredentialService().encrypt("hunter2"),
        smtp_from_email="noreply@example.com",
    )
    db.add(settings)
    await db.commit()
    return settings


@pytest.fixture
def fake_smtp():
    smtp = MagicMock()
    smtp.send_message = AsyncMock()
    smtp.quit = AsyncMock()
    with patch.object(EmailService, "_connect", new=AsyncMock(return_value=smtp)):
        yield smtp


async def _send(notifications, user, notification_type=NotificationType.SYSTEM):
    return await notifications.send_notification(user.id, notification_type, "Hello", "Welcome aboard")


class TestDelivery:
    async def test_in_app_by_default(self, notifications, user):
        sent = await _send(notifications, user)

        assert [(n.channel, n.status) for n in sent] == [(NotificationChannel.IN_APP, NotificationStatus.SENT)]
        assert sent[0].sent_at is not None

    async def test_in_app_can_be_disabled(self, notifications, user):
        await notifications.update_user_preferences(user.id, {"system": {"in_app": False}})

        assert await _send(notifications, user) == []

    async def test_email_without_smtp_fails_softly(self, notifications, user):
        await notifications.update_user_preferences(user.id, {"system": {"email": True}})

        sent = await _send(notifications, user)

        email = next(n for n in sent if n.channel == NotificationChannel.EMAIL)
        assert email.status == NotificationStatus.FAILED
        assert email.error == "SMTP not configured"

    async def test_email_mirror(self, notifications, user, smtp_settings, fake_smtp):
        await notifications.update_user_preferences(user.id, {"system": {"email": True}})

        sent = await _send(notifications, user)

        email = next(n for n in sent if n.channel == NotificationChannel.EMAIL)
        assert email.status == NotificationStatus.SENT
        message = fake_smtp.send_message.await_args.args[0]
        assert message["To"] == user.email
        assert message["Subject"] == "Inspi - Hello"

    async def test_smtp_error_marks_failed(self, notifications, user, smtp_settings, fake_smtp):
        fake_smtp.send_message.side_effect = aiosmtplib.SMTPException("relay denied")
        await notifications.update_user_preferences(user.id, {"system": {"email": True}})

        sent = await _send(notifications, user)

        email = next(n for n in sent if n.channel == NotificationChannel.EMAIL)
        assert email.status == NotificationStatus.FAILED
        assert "relay denied" in email.error


class TestPreferences:
    async def test_defaults_cover_every_type(self, notifications, user):
        prefs = await notifications.get_user_preferences(user.id)

        assert set(prefs) == {t.value for t in NotificationType}
        assert prefs["reward_received"] == {"in_app": True, "email": False}

    async def test_partial_update_keeps_other_channel(self, notifications, user):
        await notifications.update_user_preferences(user.id, {"invite_success": {"email": True}})
        prefs = await notifications.update_user_preferences(user.id, {"invite_success": {"in_app": False}})

        assert prefs["invite_success"] == {"in_app": False, "email": True}

    async def test_unknown_type_rejected(self, notifications, user):
        with pytest.raises(ValueError):
            await notifications.update_user_preferences(user.id, {"birthday": {"email": True}})


class TestReadTracking:
    async def test_mark_one_read(self, notifications, user):
        sent = await _send(notifications, user)
        await _send(notifications, user)

        assert await notifications.mark_as_read(sent[0].id, user.id) is True
        assert await notifications.get_unread_count(user.id) == 1
        assert len(await notifications.get_user_notifications(user.id, unread_only=True)) == 1

    async def test_cannot_mark_someone_elses(self, db, notifications, user):
        sent = await _send(notifications, user)
        other = await create_user(db, "frank")

        assert await notifications.mark_as_read(sent[0].id, other.id) is False

    async def test_mark_all_read(self, notifications, user):
        for _ in range(3):
            await _send(notifications, user)

        assert await notifications.mark_all_as_read(user.id) == 3
        assert await notifications.get_unread_count(user.id) == 0


class TestSweeps:
    async def test_expiring_code_warning(self, db, notifications, user):
        now = datetime.utcnow()
        db.add(InviteCode(code="SOON0001", inviter_id=user.id, expires_at=now + timedelta(days=2), max_usage=5))
        db.add(InviteCode(code="LATE0001", inviter_id=user.id, expires_at=now + timedelta(days=20), max_usage=5))
        await db.commit()

        assert await notifications.notify_expiring_codes(days_ahead=3) == 1

        warning = (await notifications.get_user_notifications(user.id))[0]
        assert warning.type == NotificationType.INVITE_CODE_EXPIRING
        assert warning.data["code"] == "SOON0001"

    async def test_expiring_code_warned_once(self, db, notifications, user):
        db.add(
            InviteCode(
                code="SOON0002",
                inviter_id=user.id,
                expires_at=datetime.utcnow() + timedelta(days=1),
                max_usage=5,
            )
        )
        await db.commit()

        assert await notifications.notify_expiring_codes() == 1
        assert await notifications.notify_expiring_codes() == 0
        assert len(await notifications.get_user_notifications(user.id)) == 1

    async def test_cleanup_removes_old_read_notifications(self, db, notifications, user):
        old, fresh = await _send(notifications, user), await _send(notifications, user)
        await notifications.mark_all_as_read(user.id)
        await db.refresh(old[0])
        old[0].created_at = datetime.utcnow() - timedelta(days=45)
        await db.commit()

        assert await notifications.cleanup_expired_notifications(days_to_keep=30) == 1

        remaining = (await db.execute(select(Notification.id))).scalars().all()
        assert remaining == [fresh[0].id]


class TestEmailService:
    async def test_unconfigured(self, db):
        result = await EmailService(db).send_email("x@example.com", "Hi", "<p>Hi</p>")

        assert result.success is False
        assert result.message == "SMTP not configured"

    async def test_password_is_decrypted(self, db, smtp_settings):
        config = await EmailService(db).get_smtp_config()

        assert config.password == "hunter2"
        assert config.is_complete

    async def test_invitation_email(self, db, smtp_settings, fake_smtp):
        result = await EmailService(db).send_invitation_email(
            "friend@example.com", "ABCD1234", "alice", "2026-12-31", personal_message="Try it!"
        )

        assert result.success
        message = fake_smtp.send_message.await_args.args[0]
        assert message["Subject"] == "alice invited you to Inspi"
        text_part = message.get_payload()[0].get_payload()
        assert "ABCD1234" in text_part
        assert "Try it!" in text_part

    async def test_connection_failure(self, db, smtp_settings):
        with patch.object(
            EmailService, "_connect", new=AsyncMock(side_effect=aiosmtplib.SMTPConnectError("refused"))
        ):
            result = await EmailService(db).test_connection()

        assert result.success is False
        assert result.message == "Connection failed"
