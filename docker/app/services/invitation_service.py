"""Invite code lifecycle and registration attribution."""

import logging
import re
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, List, Optional
import uuid

from sqlalchemy import select, and_, func
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from db.models import (
    User,
    InviteCode,
    InviteRegistration,
    InviteEvent,
    InviteEventType,
    InviteStats,
)
from services.fraud_service import get_fraud_service
from services.notification_service import get_notification_service
from services.reward_engine import get_reward_engine

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits


class InvitationError(Exception):
    """Exception for invitation errors."""

    def __init__(self, message: str, code: str = "invitation_error"):
        self.message = message
        self.code = code
        super().__init__(message)


@dataclass
class CodeValidation:
    is_valid: bool
    invite_code: Optional[InviteCode] = None
    error_code: Optional[str] = None
    message: Optional[str] = None


class InvitationService:
    """Service for invite codes and the registrations they bring in."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    @staticmethod
    def normalize_code(code: str) -> str:
        return (code or "").strip().upper()

    def _random_code(self) -> str:
        return "".join(secrets.choice(CODE_ALPHABET) for _ in range(self.settings.invite_code_length))

    async def _code_exists(self, code: str) -> bool:
        result = await self.db.execute(select(InviteCode.id).where(InviteCode.code == code))
        return result.scalar_one_or_none() is not None

    async def _count_valid_codes(self, user_id: uuid.UUID) -> int:
        now = datetime.utcnow()
        result = await self.db.execute(
            select(func.count(InviteCode.id)).where(
                and_(
                    InviteCode.inviter_id == user_id,
                    InviteCode.is_active == True,
                    InviteCode.expires_at > now,
                    InviteCode.usage_count < InviteCode.max_usage,
                )
            )
        )
        return result.scalar() or 0

    async def record_event(
        self,
        event_type: InviteEventType,
        inviter_id: Optional[uuid.UUID] = None,
        invitee_id: Optional[uuid.UUID] = None,
        invite_code_id: Optional[uuid.UUID] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> InviteEvent:
        event = InviteEvent(
            type=event_type,
            inviter_id=inviter_id,
            invitee_id=invitee_id,
            invite_code_id=invite_code_id,
            event_metadata=metadata,
        )
        self.db.add(event)
        await self.db.flush()
        return event

    async def generate_invite_code(self, user: User) -> InviteCode:
        """Create a new invite code for a user.

        Raises:
            InvitationError: If the user is restricted, already holds the
                maximum number of valid codes, or no unique code could be found
        """
        if await get_fraud_service(self.db).is_restricted(user.id):
            raise InvitationError("Invite features are disabled for this account", "user_restricted")

        if await self._count_valid_codes(user.id) >= self.settings.max_active_codes_per_user:
            raise InvitationError(
                f"You already have {self.settings.max_active_codes_per_user} active invite codes",
                "too_many_codes",
            )

        code = None
        for _ in range(self.settings.invite_code_generation_attempts):
            candidate = self._random_code()
            if not await self._code_exists(candidate):
                code = candidate
                break

        if code is None:
            logger.error(f"Could not generate a unique invite code for user {user.id}")
            raise InvitationError("Failed to generate a unique invite code", "code_generation_failed")

        invite_code = InviteCode(
            code=code,
            inviter_id=user.id,
            expires_at=datetime.utcnow() + timedelta(days=self.settings.invite_code_expiry_days),
            max_usage=self.settings.invite_code_max_usage,
        )
        self.db.add(invite_code)
        await self.db.flush()

        await self.record_event(InviteEventType.CODE_GENERATED, inviter_id=user.id, invite_code_id=invite_code.id)
        await self.update_user_stats(user.id)
        await self.db.commit()
        await self.db.refresh(invite_code)

        logger.info(f"Generated invite code {code} for user {user.id}")
        return invite_code

    async def get_invite_code(self, code: str) -> Optional[InviteCode]:
        result = await self.db.execute(select(InviteCode).where(InviteCode.code == self.normalize_code(code)))
        return result.scalar_one_or_none()

    async def validate_invite_code(self, code: str) -> CodeValidation:
        """Check whether a code can be redeemed right now."""
        code = self.normalize_code(code)

        if not re.match(self.settings.invite_code_pattern, code):
            return CodeValidation(False, error_code="invalid_invite_code", message="Invalid invite code format")

        invite_code = await self.get_invite_code(code)
        if invite_code is None:
            return CodeValidation(False, error_code="invalid_invite_code", message="Invite code not found")

        if not invite_code.is_active:
            return CodeValidation(False, invite_code, "invalid_invite_code", "Invite code is inactive")

        if invite_code.is_expired:
            return CodeValidation(False, invite_code, "expired_invite_code", "Invite code has expired")

        if invite_code.is_exhausted:
            return CodeValidation(False, invite_code, "usage_limit_exceeded", "Invite code usage limit reached")

        return CodeValidation(True, invite_code)

    async def process_invite_registration(
        self,
        code: str,
        invitee: User,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> InviteRegistration:
        """Attribute a fresh registration to an invite code.

        Rewards accrue as pending on the registration and are claimed by the
        inviter before ``claim_deadline``. A restricted inviter still gets the
        attribution but the rewards are withheld.

        Raises:
            InvitationError: If the code is unusable, the invitee is the
                inviter, or the invitee was already attributed
        """
        validation = await self.validate_invite_code(code)
        if not validation.is_valid:
            raise InvitationError(validation.message, validation.error_code)

        invite_code = validation.invite_code
        if invite_code.inviter_id == invitee.id:
            raise InvitationError("You cannot use your own invite code", "self_invite_attempt")

        existing = await self.db.execute(
            select(InviteRegistration.id).where(InviteRegistration.invitee_id == invitee.id)
        )
        if existing.scalar_one_or_none() is not None:
            raise InvitationError("User was already invited", "already_registered")

        withheld = await get_fraud_service(self.db).is_restricted(invite_code.inviter_id)

        now = datetime.utcnow()
        registration = InviteRegistration(
            invite_code_id=invite_code.id,
            inviter_id=invite_code.inviter_id,
            invitee_id=invitee.id,
            registered_at=now,
            ip_address=ip_address,
            user_agent=user_agent,
            claim_deadline=now + timedelta(days=self.settings.reward_claim_window_days),
            rewards_withheld=withheld,
        )
        self.db.add(registration)
        invite_code.usage_count += 1

        event = await self.record_event(
            InviteEventType.USER_REGISTERED,
            inviter_id=invite_code.inviter_id,
            invitee_id=invitee.id,
            invite_code_id=invite_code.id,
            metadata={"invitee_name": invitee.username, "rewards_withheld": withheld},
        )
        await self.update_user_stats(invite_code.inviter_id)
        await self.db.commit()
        await self.db.refresh(registration)

        if withheld:
            logger.warning(f"Rewards withheld for restricted inviter {invite_code.inviter_id}")
        else:
            await get_reward_engine(self.db).grant_milestone_rewards(invite_code.inviter_id)

        await get_notification_service(self.db).handle_invite_event(event)
        await get_fraud_service(self.db).detect_velocity_anomaly(invite_code.inviter_id)

        logger.info(f"Registration of {invitee.id} attributed to code {invite_code.code}")
        return registration

    async def process_invitee_activation(self, invitee: User) -> Optional[InviteRegistration]:
        """Mark an invited user's registration as activated. Idempotent."""
        result = await self.db.execute(
            select(InviteRegistration).where(InviteRegistration.invitee_id == invitee.id)
        )
        registration = result.scalar_one_or_none()
        if registration is None or registration.is_activated:
            return registration

        registration.is_activated = True
        registration.activated_at = datetime.utcnow()

        event = await self.record_event(
            InviteEventType.USER_ACTIVATED,
            inviter_id=registration.inviter_id,
            invitee_id=invitee.id,
            invite_code_id=registration.invite_code_id,
            metadata={"invitee_name": invitee.username},
        )
        await self.update_user_stats(registration.inviter_id)
        await self.db.commit()

        if not registration.rewards_withheld:
            engine = get_reward_engine(self.db)
            # Already-claimed registrations receive activation rewards directly
            if registration.rewards_claimed:
                await engine.grant_event_rewards(
                    registration.inviter_id,
                    InviteEventType.USER_ACTIVATED.value,
                    source_id=registration.id,
                )
            await engine.grant_milestone_rewards(registration.inviter_id)

        await get_notification_service(self.db).handle_invite_event(event)

        logger.info(f"Invitee {invitee.id} activated (inviter {registration.inviter_id})")
        return registration

    async def get_user_invite_codes(self, user_id: uuid.UUID) -> List[InviteCode]:
        result = await self.db.execute(
            select(InviteCode)
            .where(InviteCode.inviter_id == user_id)
            .order_by(InviteCode.created_at.desc())
        )
        return list(result.scalars().all())

    async def deactivate_invite_code(self, code_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        """Deactivate a code. Only its owner may do so."""
        invite_code = await self.db.get(InviteCode, code_id)
        if invite_code is None or invite_code.inviter_id != user_id:
            return False

        invite_code.is_active = False
        await self.db.commit()

        logger.info(f"Invite code {invite_code.code} deactivated by owner")
        return True

    async def record_code_shared(self, invite_code: InviteCode, channel: str) -> InviteEvent:
        event = await self.record_event(
            InviteEventType.CODE_SHARED,
            inviter_id=invite_code.inviter_id,
            invite_code_id=invite_code.id,
            metadata={"channel": channel},
        )
        await self.update_user_stats(invite_code.inviter_id)
        await self.db.commit()
        return event

    async def get_invite_history(self, user_id: uuid.UUID, limit: int = 50) -> List[InviteRegistration]:
        result = await self.db.execute(
            select(InviteRegistration)
            .where(InviteRegistration.inviter_id == user_id)
            .order_by(InviteRegistration.registered_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_user_invite_stats(self, user_id: uuid.UUID) -> InviteStats:
        """Stats for a user, created zeroed on first read."""
        stats = await self.db.get(InviteStats, user_id)
        if stats is None:
            stats = InviteStats(
                user_id=user_id,
                total_invites=0,
                successful_registrations=0,
                active_invitees=0,
                total_rewards_earned=0,
            )
            self.db.add(stats)
            await self.db.commit()
        return stats

    async def update_user_stats(self, user_id: uuid.UUID) -> InviteStats:
        """Recount the denormalized counters from the source tables.

        ``total_invites`` counts codes generated plus shares. Reward totals
        are maintained by the reward engine and left untouched here.
        """
        await self.db.flush()

        invites_result = await self.db.execute(
            select(func.count(InviteEvent.id)).where(
                and_(
                    InviteEvent.inviter_id == user_id,
                    InviteEvent.type.in_([InviteEventType.CODE_GENERATED, InviteEventType.CODE_SHARED]),
                )
            )
        )
        registrations_result = await self.db.execute(
            select(func.count(InviteRegistration.id)).where(InviteRegistration.inviter_id == user_id)
        )
        active_result = await self.db.execute(
            select(func.count(InviteRegistration.id)).where(
                and_(
                    InviteRegistration.inviter_id == user_id,
                    InviteRegistration.is_activated == True,
                )
            )
        )

        stats = await self.db.get(InviteStats, user_id)
        if stats is None:
            stats = InviteStats(user_id=user_id, total_rewards_earned=0)
            self.db.add(stats)

        stats.total_invites = invites_result.scalar() or 0
        stats.successful_registrations = registrations_result.scalar() or 0
        stats.active_invitees = active_result.scalar() or 0
        stats.last_updated = datetime.utcnow()
        await self.db.flush()
        return stats


def get_invitation_service(db: AsyncSession) -> InvitationService:
    """Get an invitation service instance."""
    return InvitationService(db)
