"""System settings database model."""

from datetime import datetime
from typing import Optional
import uuid

from sqlalchemy import (
    String,
    Boolean,
    DateTime,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from database import Base


class SystemSettings(Base):
    """Global system settings.

    Singleton pattern: only one row should exist.
    """

    __tablename__ = "system_settings"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # Setup status
    setup_completed: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    setup_completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
    )

    # Registration settings
    registration_enabled: Mapped[bool] = mapped_column(
        Boolean,
        default=True,  # Open signup; invite codes are optional attribution
        nullable=False,
    )
    require_invite_code: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    # Referral program switch
    referral_program_enabled: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    # ==========================================================================
    # SMTP Configuration for Email Delivery
    # ==========================================================================

    smtp_enabled: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    smtp_host: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    smtp_port: Mapped[int] = mapped_column(
        default=587,
        nullable=False,
    )
    smtp_username: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    smtp_password_encrypted: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )  # Encrypted with Fernet
    smtp_use_tls: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )
    smtp_use_ssl: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    smtp_from_email: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    smtp_from_name: Mapped[str] = mapped_column(
        String(255),
        default="Inspi",
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<SystemSettings setup_completed={self.setup_completed}>"
