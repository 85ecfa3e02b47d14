"""Email delivery over SMTP.

SMTP settings live in the ``system_settings`` row. Every send returns an
:class:`EmailResult` instead of raising, so callers on the registration
path never fail because mail is down.
"""

import logging
import re
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Optional

import aiosmtplib
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from db.models import SystemSettings
from services.credential_service import CredentialService, CredentialEncryptionError

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")


@dataclass
class SMTPConfig:
    """SMTP configuration with the password already decrypted."""

    enabled: bool
    host: Optional[str]
    port: int
    username: Optional[str]
    password: Optional[str]
    use_tls: bool
    use_ssl: bool
    from_email: Optional[str]
    from_name: str

    @property
    def is_complete(self) -> bool:
        return self.enabled and bool(self.host) and bool(self.from_email)


@dataclass
class EmailResult:
    """Result of an email send operation."""

    success: bool
    message: str
    error: Optional[str] = None


def _layout(heading: str, body_html: str, accent: str = "#6366f1") -> str:
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{escape(heading)}</title></head>
<body style="font-family: -apple-system, 'Segoe UI', Roboto, Arial, sans-serif; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: {accent}; padding: 24px; border-radius: 10px 10px 0 0; text-align: center;">
    <h1 style="color: white; margin: 0; font-size: 24px;">{escape(heading)}</h1>
  </div>
  <div style="background: #f9fafb; padding: 24px; border: 1px solid #e5e7eb; border-top: none; border-radius: 0 0 10px 10px;">
    {body_html}
  </div>
  <p style="text-align: center; color: #999; font-size: 12px;">Sent by Inspi</p>
</body>
</html>
"""


class EmailService:
    """Service for sending emails via SMTP."""

    def __init__(self, db: AsyncSession, credential_service: Optional[CredentialService] = None):
        self.db = db
        self.credential_service = credential_service or CredentialService()

    async def get_smtp_config(self) -> Optional[SMTPConfig]:
        """Read SMTP configuration from system settings."""
        result = await self.db.execute(select(SystemSettings).limit(1))
        settings = result.scalar_one_or_none()

        if settings is None:
            return None

        password = None
        if settings.smtp_password_encrypted:
            try:
                password = self.credential_service.decrypt(settings.smtp_password_encrypted)
            except CredentialEncryptionError as e:
                logger.error(f"Failed to decrypt SMTP password: {e.message}")

        return SMTPConfig(
            enabled=settings.smtp_enabled,
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=password,
            use_tls=settings.smtp_use_tls,
            use_ssl=settings.smtp_use_ssl,
            from_email=settings.smtp_from_email,
            from_name=settings.smtp_from_name,
        )

    async def is_configured(self) -> bool:
        config = await self.get_smtp_config()
        return config is not None and config.is_complete

    async def _load_usable_config(self) -> tuple[Optional[SMTPConfig], Optional[EmailResult]]:
        config = await self.get_smtp_config()
        if config is None:
            return None, EmailResult(False, "SMTP not configured", "No system settings found")
        if not config.enabled:
            return None, EmailResult(False, "SMTP is disabled", "SMTP is not enabled in settings")
        if not config.host or not config.from_email:
            return None, EmailResult(False, "SMTP configuration incomplete", "Host and from_email are required")
        return config, None

    @staticmethod
    async def _connect(config: SMTPConfig) -> aiosmtplib.SMTP:
        smtp = aiosmtplib.SMTP(
            hostname=config.host,
            port=config.port,
            use_tls=config.use_ssl,  # implicit TLS (465)
            start_tls=config.use_tls and not config.use_ssl,  # STARTTLS (587)
        )
        await smtp.connect()
        if config.username and config.password:
            await smtp.login(config.username, config.password)
        return smtp

    async def test_connection(self) -> EmailResult:
        """Connect and authenticate without sending anything."""
        config, failure = await self._load_usable_config()
        if failure:
            return failure

        try:
            smtp = await self._connect(config)
            await smtp.quit()
        except aiosmtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed: {e}")
            return EmailResult(False, "Authentication failed", str(e))
        except aiosmtplib.SMTPConnectError as e:
            logger.error(f"SMTP connection failed: {e}")
            return EmailResult(False, "Connection failed", str(e))
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP test failed: {e}")
            return EmailResult(False, "SMTP test failed", str(e))

        return EmailResult(True, "SMTP connection successful")

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> EmailResult:
        """Send an email.

        Args:
            to_email: Recipient email address
            subject: Email subject
            html_body: HTML content
            text_body: Plain text content; derived from the HTML if omitted

        Returns:
            EmailResult indicating success or failure
        """
        config, failure = await self._load_usable_config()
        if failure:
            return failure

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{config.from_name} <{config.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body or _TAG_RE.sub("", html_body), "plain"))
        msg.attach(MIMEText(html_body, "html"))

        try:
            smtp = await self._connect(config)
            await smtp.send_message(msg)
            await smtp.quit()
        except aiosmtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed: {e}")
            return EmailResult(False, "Authentication failed", str(e))
        except aiosmtplib.SMTPRecipientsRefused as e:
            logger.error(f"Recipient refused: {e}")
            return EmailResult(False, "Recipient refused", str(e))
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {to_email}: {e}")
            return EmailResult(False, "Failed to send email", str(e))

        logger.info(f"Email sent to {to_email}")
        return EmailResult(True, f"Email sent to {to_email}")

    async def send_invitation_email(
        self,
        to_email: str,
        invite_code: str,
        inviter_name: str,
        expires_at: str,
        personal_message: Optional[str] = None,
    ) -> EmailResult:
        """Share a referral code with a friend."""
        register_url = f"{get_settings().base_url}/register?invite={invite_code}"

        note = ""
        if personal_message:
            note = f'<blockquote style="border-left: 3px solid #6366f1; margin: 16px 0; padding-left: 12px;">{escape(personal_message)}</blockquote>'

        html_body = _layout(
            "You're invited to Inspi",
            f"""
    <p><strong>{escape(inviter_name)}</strong> thinks you'll like Inspi, the AI teaching-card studio.</p>
    {note}
    <p style="text-align: center; font-size: 14px; color: #666;">Your invite code</p>
    <p style="text-align: center;"><code style="font-size: 24px; letter-spacing: 3px; color: #6366f1;">{escape(invite_code)}</code></p>
    <p style="text-align: center;"><a href="{register_url}" style="background: #6366f1; color: white; padding: 12px 28px; border-radius: 8px; text-decoration: none;">Join Inspi</a></p>
    <p style="font-size: 12px; color: #999;">The code is valid until {escape(expires_at)}. Signing up with it gives you both bonus AI credits.</p>
""",
        )

        text_body = (
            f"{inviter_name} invited you to Inspi.\n\n"
            + (f"{personal_message}\n\n" if personal_message else "")
            + f"Invite code: {invite_code}\n"
            f"Sign up: {register_url}\n\n"
            f"The code is valid until {expires_at}.\n"
        )

        return await self.send_email(
            to_email=to_email,
            subject=f"{inviter_name} invited you to Inspi",
            html_body=html_body,
            text_body=text_body,
        )

    async def send_notification_email(self, to_email: str, title: str, content: str) -> EmailResult:
        """Mirror an in-app notification to email."""
        html_body = _layout(title, f'<p style="font-size: 16px;">{escape(content)}</p>')
        return await self.send_email(
            to_email=to_email,
            subject=f"Inspi - {title}",
            html_body=html_body,
            text_body=f"{title}\n\n{content}\n",
        )

    async def send_test_email(self, to_email: str) -> EmailResult:
        html_body = _layout(
            "SMTP test successful",
            "<p>Your SMTP configuration works. Inspi can now send invitations and notifications.</p>",
            accent="#10b981",
        )
        return await self.send_email(
            to_email=to_email,
            subject="Inspi - SMTP test successful",
            html_body=html_body,
        )
