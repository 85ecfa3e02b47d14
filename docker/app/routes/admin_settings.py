"""Admin settings API routes.

Registration policy and SMTP configuration for email delivery.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db.models import User, SystemSettings
from dependencies import require_admin
from services.credential_service import CredentialService
from services.email_service import EmailService


router = APIRouter()

DEFAULT_FROM_NAME = "Inspi"


async def _load_settings(db: AsyncSession) -> SystemSettings:
    result = await db.execute(select(SystemSettings).limit(1))
    settings = result.scalar_one_or_none()
    if settings is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="System settings not found. Please complete setup first.",
        )
    return settings


# =============================================================================
# Registration policy
# =============================================================================


class RegistrationSettingsResponse(BaseModel):
    registration_enabled: bool
    require_invite_code: bool
    referral_program_enabled: bool


class UpdateRegistrationSettingsRequest(BaseModel):
    registration_enabled: Optional[bool] = None
    require_invite_code: Optional[bool] = None
    referral_program_enabled: Optional[bool] = None


def _registration_response(settings: SystemSettings) -> RegistrationSettingsResponse:
    return RegistrationSettingsResponse(
        registration_enabled=settings.registration_enabled,
        require_invite_code=settings.require_invite_code,
        referral_program_enabled=settings.referral_program_enabled,
    )


@router.get("/registration", response_model=RegistrationSettingsResponse)
async def get_registration_settings(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return _registration_response(await _load_settings(db))


@router.put("/registration", response_model=RegistrationSettingsResponse)
async def update_registration_settings(
    data: UpdateRegistrationSettingsRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    settings = await _load_settings(db)

    for key, value in data.model_dump(exclude_none=True).items():
        setattr(settings, key, value)

    await db.commit()
    return _registration_response(settings)


# =============================================================================
# SMTP Configuration Routes
# =============================================================================


class SMTPConfigResponse(BaseModel):
    """SMTP configuration status response. The password is never returned."""
    enabled: bool
    host: Optional[str]
    port: int
    username: Optional[str]
    has_password: bool
    use_tls: bool
    use_ssl: bool
    from_email: Optional[str]
    from_name: str


class UpdateSMTPConfigRequest(BaseModel):
    """Request to update SMTP configuration. Pass empty strings to clear."""
    enabled: Optional[bool] = None
    host: Optional[str] = None
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: Optional[bool] = None
    use_ssl: Optional[bool] = None
    from_email: Optional[str] = None
    from_name: Optional[str] = None


class TestEmailRequest(BaseModel):
    to_email: EmailStr


class SMTPTestResponse(BaseModel):
    success: bool
    message: str
    error: Optional[str] = None


def _smtp_response(settings: SystemSettings) -> SMTPConfigResponse:
    return SMTPConfigResponse(
        enabled=settings.smtp_enabled,
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_username,
        has_password=settings.smtp_password_encrypted is not None,
        use_tls=settings.smtp_use_tls,
        use_ssl=settings.smtp_use_ssl,
        from_email=settings.smtp_from_email,
        from_name=settings.smtp_from_name,
    )


@router.get("/smtp", response_model=SMTPConfigResponse)
async def get_smtp_config(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    result = await db.execute(select(SystemSettings).limit(1))
    settings = result.scalar_one_or_none()

    if settings is None:
        return SMTPConfigResponse(
            enabled=False,
            host=None,
            port=587,
            username=None,
            has_password=False,
            use_tls=True,
            use_ssl=False,
            from_email=None,
            from_name=DEFAULT_FROM_NAME,
        )

    return _smtp_response(settings)


@router.put("/smtp", response_model=SMTPConfigResponse)
async def update_smtp_config(
    data: UpdateSMTPConfigRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Update SMTP configuration.

    The password is stored Fernet-encrypted, so setting one needs
    CREDENTIAL_ENCRYPTION_KEY (503 otherwise).
    """
    settings = await _load_settings(db)

    if data.enabled is not None:
        settings.smtp_enabled = data.enabled
    if data.host is not None:
        settings.smtp_host = data.host or None
    if data.port is not None:
        settings.smtp_port = data.port
    if data.username is not None:
        settings.smtp_username = data.username or None
    if data.password is not None:
        if data.password == "":
            settings.smtp_password_encrypted = None
        else:
            credential_service = CredentialService()
            if not credential_service.is_configured:
                raise HTTPException(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    detail="Credential encryption not configured. Set CREDENTIAL_ENCRYPTION_KEY.",
                )
            settings.smtp_password_encrypted = credential_service.encrypt(data.password)
    if data.use_tls is not None:
        settings.smtp_use_tls = data.use_tls
    if data.use_ssl is not None:
        settings.smtp_use_ssl = data.use_ssl
    if data.from_email is not None:
        settings.smtp_from_email = data.from_email or None
    if data.from_name is not None:
        settings.smtp_from_name = data.from_name or DEFAULT_FROM_NAME

    await db.commit()
    return _smtp_response(settings)


@router.post("/smtp/test", response_model=SMTPTestResponse)
async def test_smtp_connection(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Connect and authenticate against the SMTP server without sending."""
    result = await EmailService(db).test_connection()
    return SMTPTestResponse(success=result.success, message=result.message, error=result.error)


@router.post("/smtp/test-email", response_model=SMTPTestResponse)
async def send_test_email(
    data: TestEmailRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    result = await EmailService(db).send_test_email(data.to_email)
    return SMTPTestResponse(success=result.success, message=result.message, error=result.error)
