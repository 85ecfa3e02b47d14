"""Authentication service: setup, sign-up, login and token rotation."""

import logging
from datetime import datetime
from typing import List, Optional
import uuid

from sqlalchemy import select, and_, func
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import User, UserRole, RefreshToken, SystemSettings
from services.fraud_service import get_fraud_service, RegistrationAttempt, DeviceInfo
from services.invitation_service import get_invitation_service, InvitationError
from services.jwt_service import get_jwt_service
from services.password_service import hash_password, verify_password, password_needs_rehash

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Exception for authentication errors."""

    def __init__(self, message: str, code: str = "auth_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class AuthService:
    """Service for handling authentication operations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.jwt_service = get_jwt_service()

    async def get_system_settings(self) -> Optional[SystemSettings]:
        result = await self.db.execute(select(SystemSettings).limit(1))
        return result.scalar_one_or_none()

    async def is_setup_complete(self) -> bool:
        """Check if initial setup has been completed."""
        settings = await self.get_system_settings()
        return settings is not None and settings.setup_completed

    async def setup_admin(
        self,
        email: str,
        username: str,
        password: str,
    ) -> User:
        """Create the initial admin user during first-run setup.

        Raises:
            AuthError: If setup is already complete or users exist
        """
        if await self.is_setup_complete():
            raise AuthError("Setup already completed", "setup_complete")

        result = await self.db.execute(select(User).limit(1))
        if result.scalar_one_or_none() is not None:
            raise AuthError("Users already exist", "users_exist")

        admin = User(
            email=email,
            username=username,
            password_hash=hash_password(password),
            role=UserRole.ADMIN,
            is_active=True,
            is_activated=True,
            activated_at=datetime.utcnow(),
        )
        self.db.add(admin)

        settings = await self.get_system_settings()
        if settings is None:
            settings = SystemSettings()
            self.db.add(settings)
        settings.setup_completed = True
        settings.setup_completed_at = datetime.utcnow()

        await self.db.commit()
        await self.db.refresh(admin)

        logger.info(f"Initial admin {username} created")
        return admin

    async def authenticate_user(
        self,
        email_or_username: str,
        password: str,
    ) -> User:
        """Authenticate a user with email/username and password.

        Raises:
            AuthError: If authentication fails
        """
        result = await self.db.execute(
            select(User).where(
                and_(
                    (User.email == email_or_username) | (User.username == email_or_username),
                    User.is_active == True,
                )
            )
        )
        user = result.scalar_one_or_none()

        if user is None or not verify_password(password, user.password_hash):
            raise AuthError("Invalid credentials", "invalid_credentials")

        # Work factor may have been raised since the hash was made
        if password_needs_rehash(user.password_hash):
            user.password_hash = hash_password(password)

        user.last_login = datetime.utcnow()
        await self.db.commit()

        return user

    async def register(
        self,
        email: str,
        username: str,
        password: str,
        invite_code: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        device: Optional[DeviceInfo] = None,
    ) -> User:
        """Open sign-up, optionally attributed to an invite code.

        The invite code is validated first, then the fraud assessment runs
        before anything is written. A blocked attempt creates no user.

        Raises:
            AuthError: If registration is closed, the code is unusable, the
                attempt is blocked, or the email/username is taken
        """
        settings = await self.get_system_settings()
        if settings is not None and not settings.registration_enabled:
            raise AuthError("Registration is disabled", "registration_disabled")
        if settings is not None and settings.require_invite_code and not invite_code:
            raise AuthError("An invite code is required", "invite_code_required")

        invitations = get_invitation_service(self.db)
        inviter_id = None
        if invite_code:
            validation = await invitations.validate_invite_code(invite_code)
            if not validation.is_valid:
                raise AuthError(validation.message, validation.error_code)
            inviter_id = validation.invite_code.inviter_id

        fraud = get_fraud_service(self.db)
        assessment = await fraud.assess_registration_risk(
            RegistrationAttempt(
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                device=device,
                invite_code=invite_code,
            ),
            inviter_id=inviter_id,
        )
        if not assessment.is_valid:
            raise AuthError("Registration blocked by risk checks", "registration_blocked")

        existing = await self.db.execute(
            select(User.id).where(func.lower(User.email) == email.lower())
        )
        if existing.scalar_one_or_none() is not None:
            raise AuthError("Email already registered", "email_exists")

        existing = await self.db.execute(select(User.id).where(User.username == username))
        if existing.scalar_one_or_none() is not None:
            raise AuthError("Username already taken", "username_exists")

        user = User(
            email=email,
            username=username,
            password_hash=hash_password(password),
            role=UserRole.USER,
            is_active=True,
            registration_ip=ip_address,
            registration_user_agent=user_agent,
        )
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)

        if device is not None:
            await fraud.record_device_fingerprint(user.id, device)

        if invite_code:
            try:
                await invitations.process_invite_registration(invite_code, user, ip_address, user_agent)
            except InvitationError as e:
                # The code was used up between validation and attribution
                logger.warning(f"Registered {username} without attribution: {e.message}")

        logger.info(f"Registered user {username} (invite code: {invite_code or 'none'})")
        return user

    async def activate_user(self, user: User) -> User:
        """Mark a user as activated and pay out the inviter, if any."""
        if user.is_activated:
            return user

        user.is_activated = True
        user.activated_at = datetime.utcnow()
        await self.db.commit()

        await get_invitation_service(self.db).process_invitee_activation(user)
        return user

    async def create_tokens(
        self,
        user: User,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> dict:
        """Issue an access token and a stored refresh token."""
        access_token = self.jwt_service.create_access_token(
            user_id=user.id,
            email=user.email,
            role=user.role.value,
        )

        raw_refresh_token, token_hash, expires_at = self.jwt_service.create_refresh_token(
            user_id=user.id,
        )

        self.db.add(
            RefreshToken(
                user_id=user.id,
                token_hash=token_hash,
                expires_at=expires_at,
                user_agent=user_agent,
                ip_address=ip_address,
            )
        )
        await self.db.commit()

        return {
            "access_token": access_token,
            "refresh_token": raw_refresh_token,
            "token_type": "bearer",
            "expires_in": self.jwt_service.access_token_expire_minutes * 60,
        }

    async def _find_refresh_token(self, refresh_token: str) -> Optional[RefreshToken]:
        result = await self.db.execute(
            select(RefreshToken).where(
                RefreshToken.token_hash == self.jwt_service.hash_token(refresh_token)
            )
        )
        return result.scalar_one_or_none()

    async def refresh_tokens(
        self,
        refresh_token: str,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> dict:
        """Rotate a refresh token: revoke it and issue a new pair.

        Raises:
            AuthError: If the refresh token is unknown, expired or revoked
        """
        stored_token = await self._find_refresh_token(refresh_token)

        if stored_token is None:
            raise AuthError("Invalid refresh token", "invalid_token")

        if not stored_token.is_valid:
            raise AuthError("Refresh token expired or revoked", "token_expired")

        user = await self.get_user_by_id(stored_token.user_id)
        if user is None or not user.is_active:
            raise AuthError("User not found or inactive", "user_inactive")

        stored_token.revoked_at = datetime.utcnow()

        return await self.create_tokens(user, user_agent, ip_address)

    async def logout(self, refresh_token: str) -> bool:
        """Revoke a refresh token. Returns False if it was unknown."""
        stored_token = await self._find_refresh_token(refresh_token)
        if stored_token is None:
            return False

        stored_token.revoked_at = datetime.utcnow()
        await self.db.commit()
        return True

    async def logout_all(self, user_id: uuid.UUID) -> int:
        """Revoke every live refresh token of a user.

        Returns:
            Number of tokens revoked
        """
        result = await self.db.execute(
            select(RefreshToken).where(
                and_(
                    RefreshToken.user_id == user_id,
                    RefreshToken.revoked_at.is_(None),
                )
            )
        )
        tokens = result.scalars().all()

        now = datetime.utcnow()
        for token in tokens:
            token.revoked_at = now

        await self.db.commit()
        return len(tokens)

    async def get_user_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        return await self.db.get(User, user_id)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def list_users(self, skip: int = 0, limit: int = 50) -> List[User]:
        result = await self.db.execute(
            select(User).order_by(User.created_at.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all())


def get_auth_service(db: AsyncSession) -> AuthService:
    """Get an auth service instance."""
    return AuthService(db)
