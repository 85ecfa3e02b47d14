"""Reward engine: configurable invite rewards, milestones and claims.

Reward bundles are stored per event type in ``reward_configs``. When no
active row exists for an event the built-in defaults apply (10 credits for
a registration, 5 for an activation).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional
import uuid

from sqlalchemy import select, and_, delete
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import (
    RewardConfig,
    RewardRecord,
    RewardType,
    RewardSourceType,
    MilestoneMarker,
    InviteRegistration,
    InviteEvent,
    InviteStats,
    InviteEventType,
    CreditSource,
)
from services.badge_service import (
    ACTIVATION_MILESTONES,
    SUPER_INVITER_TITLE_ID,
    activation_badge_id,
    get_badge_service,
    BadgeError,
)
from services.credit_service import get_credit_service, CreditError
from services.fraud_service import get_fraud_service
from services.notification_service import get_notification_service

logger = logging.getLogger(__name__)

REGISTRATION_MILESTONES = (5, 10, 25, 50, 100)
SUPER_INVITER_REGISTRATIONS = 50
SUPER_INVITER_ACTIVE = 40

DEFAULT_REWARDS = {
    InviteEventType.USER_REGISTERED.value: [
        {
            "reward_type": RewardType.AI_CREDITS,
            "amount": 10,
            "description": "Invite reward: a friend registered",
        },
    ],
    InviteEventType.USER_ACTIVATED.value: [
        {
            "reward_type": RewardType.AI_CREDITS,
            "amount": 5,
            "description": "Invite reward: a friend became active",
        },
    ],
}

_SOURCE_BY_EVENT = {
    InviteEventType.USER_REGISTERED.value: RewardSourceType.INVITE_REGISTRATION,
    InviteEventType.USER_ACTIVATED.value: RewardSourceType.INVITE_ACTIVATION,
}

_CREDIT_SOURCE_BY_REWARD_SOURCE = {
    RewardSourceType.INVITE_REGISTRATION: CreditSource.INVITE_REWARD,
    RewardSourceType.INVITE_ACTIVATION: CreditSource.INVITE_REWARD,
    RewardSourceType.MILESTONE: CreditSource.MILESTONE_REWARD,
    RewardSourceType.ADMIN: CreditSource.ADMIN_GRANT,
}


class RewardError(Exception):
    """Exception for reward errors."""

    def __init__(self, message: str, code: str = "reward_error"):
        self.message = message
        self.code = code
        super().__init__(message)


@dataclass
class Reward:
    """A reward to grant, before it is written to the ledger."""

    reward_type: RewardType
    description: str
    amount: Optional[int] = None
    badge_id: Optional[str] = None
    title_id: Optional[str] = None
    source_type: Optional[RewardSourceType] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reward_type": self.reward_type.value,
            "amount": self.amount,
            "badge_id": self.badge_id,
            "title_id": self.title_id,
            "description": self.description,
        }


@dataclass
class RewardResult:
    success: bool
    record: Optional[RewardRecord] = None
    error: Optional[str] = None


@dataclass
class RewardStats:
    total_credits: int
    total_badges: int
    total_titles: int
    recent_rewards: List[RewardRecord] = field(default_factory=list)


class RewardEngine:
    """Calculates and grants referral rewards."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    async def get_reward_config(self, event_type: str) -> List[Reward]:
        """Active reward bundle for an event type, falling back to defaults."""
        result = await self.db.execute(
            select(RewardConfig)
            .where(
                and_(
                    RewardConfig.event_type == event_type,
                    RewardConfig.is_active == True,
                )
            )
            .order_by(RewardConfig.created_at)
        )
        rows = result.scalars().all()

        if rows:
            return [
                Reward(
                    reward_type=row.reward_type,
                    amount=row.amount,
                    badge_id=row.badge_id,
                    title_id=row.title_id,
                    description=row.description,
                )
                for row in rows
            ]

        return [Reward(**item) for item in DEFAULT_REWARDS.get(event_type, [])]

    async def get_reward_conditions(self, event_type: str) -> dict[str, Any]:
        result = await self.db.execute(
            select(RewardConfig.conditions).where(
                and_(
                    RewardConfig.event_type == event_type,
                    RewardConfig.is_active == True,
                )
            )
        )
        conditions: dict[str, Any] = {}
        for row_conditions in result.scalars().all():
            conditions.update(row_conditions or {})
        return conditions

    async def list_reward_configs(self) -> List[RewardConfig]:
        result = await self.db.execute(
            select(RewardConfig).order_by(RewardConfig.event_type, RewardConfig.created_at)
        )
        return list(result.scalars().all())

    async def update_reward_config(
        self,
        event_type: str,
        rewards: List[Reward],
        conditions: Optional[dict[str, Any]] = None,
        is_active: bool = True,
    ) -> List[RewardConfig]:
        """Replace the reward bundle for an event type."""
        for reward in rewards:
            _check_reward_shape(reward)

        await self.db.execute(delete(RewardConfig).where(RewardConfig.event_type == event_type))

        rows = []
        for reward in rewards:
            row = RewardConfig(
                event_type=event_type,
                reward_type=reward.reward_type,
                amount=reward.amount,
                badge_id=reward.badge_id,
                title_id=reward.title_id,
                description=reward.description,
                conditions=conditions,
                is_active=is_active,
            )
            self.db.add(row)
            rows.append(row)

        await self.db.commit()
        logger.info(f"Updated reward config for {event_type}: {len(rows)} rewards")
        return rows

    async def initialize_default_configs(self) -> None:
        """Write the default bundles for event types that have no rows."""
        for event_type, items in DEFAULT_REWARDS.items():
            result = await self.db.execute(
                select(RewardConfig.id).where(RewardConfig.event_type == event_type).limit(1)
            )
            if result.scalar_one_or_none() is not None:
                continue

            for item in items:
                self.db.add(RewardConfig(event_type=event_type, is_active=True, **item))
            logger.info(f"Initialized default reward config for {event_type}")

        await self.db.commit()

    # -------------------------------------------------------------------------
    # Calculation
    # -------------------------------------------------------------------------

    async def calculate_invite_reward(self, event_type: str, inviter_id: uuid.UUID) -> List[Reward]:
        """Rewards an inviter earns for one funnel event, milestones included.

        Milestone markers are written as a side effect, so a milestone is
        only ever returned once.
        """
        return await self.calculate_event_rewards(event_type, inviter_id) + await self.check_milestones(
            inviter_id
        )

    async def calculate_event_rewards(self, event_type: str, inviter_id: uuid.UUID) -> List[Reward]:
        """Configured rewards for an event, filtered by ``min_invites``."""
        source_type = _SOURCE_BY_EVENT.get(event_type)
        if source_type is None:
            return []

        stats = await self.db.get(InviteStats, inviter_id)
        registrations = stats.successful_registrations if stats else 0

        conditions = await self.get_reward_conditions(event_type)
        min_invites = conditions.get("min_invites")
        if min_invites is not None and registrations < int(min_invites):
            return []

        rewards = await self.get_reward_config(event_type)
        for reward in rewards:
            reward.source_type = source_type

        return rewards

    async def _claim_marker(self, user_id: uuid.UUID, kind: str, milestone: int) -> bool:
        """Insert a milestone marker; False if it already existed."""
        result = await self.db.execute(
            select(MilestoneMarker.id).where(
                and_(
                    MilestoneMarker.user_id == user_id,
                    MilestoneMarker.kind == kind,
                    MilestoneMarker.milestone == milestone,
                )
            )
        )
        if result.scalar_one_or_none() is not None:
            return False

        self.db.add(MilestoneMarker(user_id=user_id, kind=kind, milestone=milestone))
        await self.db.flush()
        return True

    async def check_milestones(self, user_id: uuid.UUID) -> List[Reward]:
        """Milestone rewards newly reached by the user. Each fires once."""
        stats = await self.db.get(InviteStats, user_id)
        if stats is None:
            return []

        rewards = []

        for milestone in REGISTRATION_MILESTONES:
            if stats.successful_registrations >= milestone and await self._claim_marker(
                user_id, "registration", milestone
            ):
                rewards.append(
                    Reward(
                        reward_type=RewardType.AI_CREDITS,
                        amount=milestone * 2,
                        description=f"Milestone: {milestone} successful invitations",
                        source_type=RewardSourceType.MILESTONE,
                    )
                )

        for milestone in ACTIVATION_MILESTONES:
            if stats.active_invitees >= milestone and await self._claim_marker(
                user_id, "activation", milestone
            ):
                rewards.append(
                    Reward(
                        reward_type=RewardType.BADGE,
                        badge_id=activation_badge_id(milestone),
                        description=f"Milestone: {milestone} active invitees",
                        source_type=RewardSourceType.MILESTONE,
                    )
                )

        if (
            stats.successful_registrations >= SUPER_INVITER_REGISTRATIONS
            and stats.active_invitees >= SUPER_INVITER_ACTIVE
            and await self._claim_marker(user_id, "title", SUPER_INVITER_REGISTRATIONS)
        ):
            rewards.append(
                Reward(
                    reward_type=RewardType.TITLE,
                    title_id=SUPER_INVITER_TITLE_ID,
                    description="Title: Super Inviter",
                    source_type=RewardSourceType.MILESTONE,
                )
            )

        return rewards

    # -------------------------------------------------------------------------
    # Granting
    # -------------------------------------------------------------------------

    async def grant_reward(
        self,
        user_id: uuid.UUID,
        reward: Reward,
        source_type: Optional[RewardSourceType] = None,
        source_id: Optional[uuid.UUID] = None,
    ) -> RewardResult:
        """Write a reward record and deliver it to the credit/badge ledgers."""
        source_type = source_type or reward.source_type or RewardSourceType.ADMIN

        try:
            _check_reward_shape(reward)
        except RewardError as e:
            return RewardResult(success=False, error=e.message)

        expires_at = None
        try:
            if reward.reward_type == RewardType.AI_CREDITS:
                credit = await get_credit_service(self.db).add_credits(
                    user_id,
                    reward.amount,
                    _CREDIT_SOURCE_BY_REWARD_SOURCE[source_type],
                    source_id=str(source_id) if source_id else None,
                    description=reward.description,
                )
                expires_at = credit.expires_at
            elif reward.reward_type == RewardType.BADGE:
                await get_badge_service(self.db).award_badge(user_id, reward.badge_id)
            elif reward.reward_type == RewardType.TITLE:
                await get_badge_service(self.db).award_title(user_id, reward.title_id)
        except (CreditError, BadgeError) as e:
            logger.warning(f"Failed to grant {reward.reward_type.value} to user {user_id}: {e.message}")
            return RewardResult(success=False, error=e.message)

        record = RewardRecord(
            user_id=user_id,
            reward_type=reward.reward_type,
            amount=reward.amount,
            badge_id=reward.badge_id,
            title_id=reward.title_id,
            description=reward.description,
            source_type=source_type,
            source_id=source_id,
            expires_at=expires_at,
        )
        self.db.add(record)

        event = InviteEvent(
            type=InviteEventType.REWARD_GRANTED,
            inviter_id=user_id,
            event_metadata={**reward.to_dict(), "source_type": source_type.value},
        )
        self.db.add(event)

        if reward.reward_type == RewardType.AI_CREDITS:
            stats = await self.db.get(InviteStats, user_id)
            if stats is not None:
                stats.total_rewards_earned += reward.amount
                stats.last_updated = datetime.utcnow()

        await self.db.commit()
        await self.db.refresh(record)

        logger.info(f"Granted {reward.reward_type.value} reward to user {user_id}: {reward.description}")

        await get_notification_service(self.db).handle_invite_event(event)
        return RewardResult(success=True, record=record)

    async def _payouts_blocked(self, user_id: uuid.UUID) -> bool:
        if await get_fraud_service(self.db).is_restricted(user_id):
            logger.warning(f"Skipping reward payout for restricted user {user_id}")
            return True
        return False

    async def batch_grant_rewards(
        self,
        grants: List[tuple[uuid.UUID, Reward]],
        source_type: Optional[RewardSourceType] = None,
        source_id: Optional[uuid.UUID] = None,
    ) -> List[RewardResult]:
        """Grant several rewards; one failure doesn't stop the rest."""
        results = []
        for user_id, reward in grants:
            results.append(await self.grant_reward(user_id, reward, source_type, source_id))
        return results

    async def grant_event_rewards(
        self,
        inviter_id: uuid.UUID,
        event_type: str,
        source_id: Optional[uuid.UUID] = None,
    ) -> List[RewardResult]:
        """Grant the configured rewards for one event (milestones excluded)."""
        if await self._payouts_blocked(inviter_id):
            return []
        rewards = await self.calculate_event_rewards(event_type, inviter_id)
        return await self.batch_grant_rewards(
            [(inviter_id, reward) for reward in rewards],
            source_id=source_id,
        )

    async def grant_milestone_rewards(self, user_id: uuid.UUID) -> List[RewardResult]:
        # Markers stay unset so the milestone still fires once the restriction is lifted
        if await self._payouts_blocked(user_id):
            return []
        rewards = await self.check_milestones(user_id)
        return await self.batch_grant_rewards([(user_id, reward) for reward in rewards])

    # -------------------------------------------------------------------------
    # Claims
    # -------------------------------------------------------------------------

    async def claimable_registrations(self, user_id: uuid.UUID) -> List[InviteRegistration]:
        if await get_fraud_service(self.db).is_restricted(user_id):
            return []
        result = await self.db.execute(
            select(InviteRegistration)
            .where(
                and_(
                    InviteRegistration.inviter_id == user_id,
                    InviteRegistration.rewards_claimed == False,
                    InviteRegistration.rewards_withheld == False,
                    InviteRegistration.claim_deadline >= datetime.utcnow(),
                )
            )
            .order_by(InviteRegistration.claim_deadline.asc())
        )
        return list(result.scalars().all())

    async def claim_registration_rewards(
        self,
        user_id: uuid.UUID,
        registration_id: uuid.UUID,
    ) -> List[RewardResult]:
        """Claim the pending rewards of one attributed registration.

        Raises:
            RewardError: If the registration is unknown, not the user's,
                already claimed, withheld, past its claim deadline, or the
                inviter is currently banned or frozen
        """
        registration = await self.db.get(InviteRegistration, registration_id)
        if registration is None or registration.inviter_id != user_id:
            raise RewardError("Registration not found", "not_found")

        if registration.rewards_claimed:
            raise RewardError("Rewards already claimed", "already_claimed")

        if registration.rewards_withheld:
            raise RewardError("Rewards withheld for this registration", "rewards_withheld")

        if await get_fraud_service(self.db).is_restricted(user_id):
            raise RewardError("Referral rewards are suspended for this account", "user_restricted")

        if registration.claim_expired:
            raise RewardError("Reward claim deadline has passed", "claim_expired")

        registration.rewards_claimed = True
        registration.rewards_claimed_at = datetime.utcnow()
        await self.db.commit()

        results = await self.grant_event_rewards(
            user_id,
            InviteEventType.USER_REGISTERED.value,
            source_id=registration.id,
        )
        if registration.is_activated:
            results += await self.grant_event_rewards(
                user_id,
                InviteEventType.USER_ACTIVATED.value,
                source_id=registration.id,
            )
        return results

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_user_rewards(self, user_id: uuid.UUID, limit: int = 50) -> List[RewardRecord]:
        result = await self.db.execute(
            select(RewardRecord)
            .where(RewardRecord.user_id == user_id)
            .order_by(RewardRecord.granted_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def calculate_user_credits(self, user_id: uuid.UUID) -> int:
        """Credits granted through rewards that have not yet expired."""
        now = datetime.utcnow()
        result = await self.db.execute(
            select(RewardRecord).where(
                and_(
                    RewardRecord.user_id == user_id,
                    RewardRecord.reward_type == RewardType.AI_CREDITS,
                )
            )
        )
        return sum(
            r.amount or 0
            for r in result.scalars().all()
            if r.expires_at is None or r.expires_at > now
        )

    async def get_reward_stats(self, user_id: uuid.UUID) -> RewardStats:
        result = await self.db.execute(
            select(RewardRecord)
            .where(RewardRecord.user_id == user_id)
            .order_by(RewardRecord.granted_at.desc())
        )
        records = result.scalars().all()

        return RewardStats(
            total_credits=sum(
                r.amount or 0 for r in records if r.reward_type == RewardType.AI_CREDITS
            ),
            total_badges=sum(1 for r in records if r.reward_type == RewardType.BADGE),
            total_titles=sum(1 for r in records if r.reward_type == RewardType.TITLE),
            recent_rewards=list(records[:10]),
        )


def _check_reward_shape(reward: Reward) -> None:
    if reward.reward_type in (RewardType.AI_CREDITS, RewardType.PREMIUM_DAYS):
        if not reward.amount or reward.amount <= 0:
            raise RewardError(f"{reward.reward_type.value} reward needs a positive amount", "invalid_reward")
    elif reward.reward_type == RewardType.BADGE and not reward.badge_id:
        raise RewardError("Badge reward needs a badge_id", "invalid_reward")
    elif reward.reward_type == RewardType.TITLE and not reward.title_id:
        raise RewardError("Title reward needs a title_id", "invalid_reward")


def get_reward_engine(db: AsyncSession) -> RewardEngine:
    """Get a reward engine instance."""
    return RewardEngine(db)
