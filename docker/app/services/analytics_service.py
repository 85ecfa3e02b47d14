"""Referral analytics: reports, leaderboards and funnel statistics."""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, List, Optional
import uuid

from sqlalchemy import select, and_, func
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import (
    User,
    InviteEvent,
    InviteEventType,
    InviteRegistration,
    RewardRecord,
    RewardType,
)
from services.invitation_service import get_invitation_service


@dataclass
class TimePeriod:
    start: datetime
    end: datetime

    @classmethod
    def last_days(cls, days: int) -> "TimePeriod":
        end = datetime.utcnow()
        return cls(start=end - timedelta(days=days), end=end)

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass
class RewardSummary:
    total_credits: int = 0
    premium_days: int = 0
    badges: List[str] = field(default_factory=list)
    titles: List[str] = field(default_factory=list)


@dataclass
class LeaderboardEntry:
    rank: int
    user_id: uuid.UUID
    username: str
    invite_count: int
    total_credits: int


class AnalyticsService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def track_invite_event(
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
        await self.db.commit()
        return event

    async def _rewards_summary(self, user_id: uuid.UUID, period: TimePeriod) -> RewardSummary:
        result = await self.db.execute(
            select(RewardRecord).where(
                and_(
                    RewardRecord.user_id == user_id,
                    RewardRecord.granted_at >= period.start,
                    RewardRecord.granted_at <= period.end,
                )
            )
        )
        summary = RewardSummary()
        for record in result.scalars().all():
            if record.reward_type == RewardType.AI_CREDITS:
                summary.total_credits += record.amount or 0
            elif record.reward_type == RewardType.PREMIUM_DAYS:
                summary.premium_days += record.amount or 0
            elif record.reward_type == RewardType.BADGE and record.badge_id:
                summary.badges.append(record.badge_id)
            elif record.reward_type == RewardType.TITLE and record.title_id:
                summary.titles.append(record.title_id)
        return summary

    async def generate_invite_report(self, user_id: uuid.UUID, period: TimePeriod) -> dict[str, Any]:
        """Stats, recent invitees and rewards earned in the period."""
        invitations = get_invitation_service(self.db)
        stats = await invitations.get_user_invite_stats(user_id)
        history = await invitations.get_invite_history(user_id, limit=10)
        rewards = await self._rewards_summary(user_id, period)

        return {
            "user_id": str(user_id),
            "period": period.to_dict(),
            "stats": {
                "total_invites": stats.total_invites,
                "successful_registrations": stats.successful_registrations,
                "active_invitees": stats.active_invitees,
                "total_rewards_earned": stats.total_rewards_earned,
            },
            "recent_invitees": [
                {
                    "invitee_id": str(r.invitee_id),
                    "registered_at": r.registered_at.isoformat(),
                    "is_activated": r.is_activated,
                }
                for r in history
            ],
            "rewards_summary": rewards.__dict__,
        }

    async def get_invite_leaderboard(self, period: TimePeriod, limit: int = 10) -> List[LeaderboardEntry]:
        """Inviters ranked by registrations in the period, then credits earned."""
        invite_count = func.count(InviteRegistration.id).label("invite_count")
        registrations = await self.db.execute(
            select(InviteRegistration.inviter_id, invite_count)
            .where(
                and_(
                    InviteRegistration.registered_at >= period.start,
                    InviteRegistration.registered_at <= period.end,
                )
            )
            .group_by(InviteRegistration.inviter_id)
        )
        counts = {row.inviter_id: row.invite_count for row in registrations.all()}
        if not counts:
            return []

        credits_total = func.coalesce(func.sum(RewardRecord.amount), 0).label("credits")
        credit_rows = await self.db.execute(
            select(RewardRecord.user_id, credits_total)
            .where(
                and_(
                    RewardRecord.user_id.in_(list(counts)),
                    RewardRecord.reward_type == RewardType.AI_CREDITS,
                    RewardRecord.granted_at >= period.start,
                    RewardRecord.granted_at <= period.end,
                )
            )
            .group_by(RewardRecord.user_id)
        )
        credits = {row.user_id: int(row.credits) for row in credit_rows.all()}

        user_rows = await self.db.execute(select(User.id, User.username).where(User.id.in_(list(counts))))
        names = {row.id: row.username for row in user_rows.all()}

        ordered = sorted(counts, key=lambda uid: (-counts[uid], -credits.get(uid, 0)))[:limit]
        return [
            LeaderboardEntry(
                rank=index + 1,
                user_id=uid,
                username=names.get(uid, ""),
                invite_count=counts[uid],
                total_credits=credits.get(uid, 0),
            )
            for index, uid in enumerate(ordered)
        ]

    async def _count_events(self, event_type: InviteEventType, period: TimePeriod) -> int:
        result = await self.db.execute(
            select(func.count(InviteEvent.id)).where(
                and_(
                    InviteEvent.type == event_type,
                    InviteEvent.timestamp >= period.start,
                    InviteEvent.timestamp <= period.end,
                )
            )
        )
        return result.scalar() or 0

    async def get_platform_stats(self, period: TimePeriod) -> dict[str, Any]:
        codes_generated = await self._count_events(InviteEventType.CODE_GENERATED, period)
        registrations = await self._count_events(InviteEventType.USER_REGISTERED, period)
        activations = await self._count_events(InviteEventType.USER_ACTIVATED, period)

        credits_result = await self.db.execute(
            select(func.coalesce(func.sum(RewardRecord.amount), 0)).where(
                and_(
                    RewardRecord.reward_type == RewardType.AI_CREDITS,
                    RewardRecord.granted_at >= period.start,
                    RewardRecord.granted_at <= period.end,
                )
            )
        )

        return {
            "period": period.to_dict(),
            "total_invites": codes_generated,
            "total_registrations": registrations,
            "total_activations": activations,
            "conversion_rate": round(registrations / codes_generated * 100, 2) if codes_generated else 0.0,
            "credits_distributed": int(credits_result.scalar() or 0),
            "top_inviters": [entry.__dict__ for entry in await self.get_invite_leaderboard(period, 10)],
        }

    async def _daily_event_counts(
        self,
        period: TimePeriod,
        inviter_id: Optional[uuid.UUID] = None,
    ) -> dict[date, dict[str, int]]:
        conditions = [InviteEvent.timestamp >= period.start, InviteEvent.timestamp <= period.end]
        if inviter_id is not None:
            conditions.append(InviteEvent.inviter_id == inviter_id)

        result = await self.db.execute(
            select(InviteEvent.type, InviteEvent.timestamp).where(and_(*conditions))
        )

        days: dict[date, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        for event_type, timestamp in result.all():
            days[timestamp.date()][event_type.value] += 1
        return days

    async def get_conversion_stats(self, period: TimePeriod) -> List[dict[str, Any]]:
        """Per-day funnel counts and rates, for days with events."""
        days = await self._daily_event_counts(period)

        stats = []
        for day in sorted(days):
            counts = days[day]
            invites = counts[InviteEventType.CODE_GENERATED.value]
            registrations = counts[InviteEventType.USER_REGISTERED.value]
            activations = counts[InviteEventType.USER_ACTIVATED.value]
            stats.append(
                {
                    "date": day.isoformat(),
                    "invites": invites,
                    "registrations": registrations,
                    "activations": activations,
                    "conversion_rate": round(registrations / invites * 100, 2) if invites else 0.0,
                    "activation_rate": round(activations / registrations * 100, 2) if registrations else 0.0,
                }
            )
        return stats

    async def get_trend_data(self, user_id: uuid.UUID, days: int = 30) -> List[dict[str, Any]]:
        """Daily series for one inviter; days without events are zero."""
        period = TimePeriod.last_days(days)
        counts = await self._daily_event_counts(period, inviter_id=user_id)

        series = []
        first_day = period.end.date() - timedelta(days=days - 1)
        for offset in range(days):
            day = first_day + timedelta(days=offset)
            day_counts = counts.get(day, {})
            series.append(
                {
                    "date": day.isoformat(),
                    "invites": day_counts.get(InviteEventType.CODE_GENERATED.value, 0)
                    + day_counts.get(InviteEventType.CODE_SHARED.value, 0),
                    "registrations": day_counts.get(InviteEventType.USER_REGISTERED.value, 0),
                    "activations": day_counts.get(InviteEventType.USER_ACTIVATED.value, 0),
                    "rewards": day_counts.get(InviteEventType.REWARD_GRANTED.value, 0),
                }
            )
        return series


def get_analytics_service(db: AsyncSession) -> AnalyticsService:
    """Get an analytics service instance."""
    return AnalyticsService(db)
