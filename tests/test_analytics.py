"""
Tests for referral analytics
============================
"""

from datetime import datetime, timedelta

import pytest

from db.models import InviteEventType
from services.analytics_service import AnalyticsService, TimePeriod
from services.invitation_service import InvitationService
from services.reward_engine import RewardEngine

from conftest import create_user, attribute_invitee


@pytest.fixture
def analytics(db) -> AnalyticsService:
    return AnalyticsService(db)


class TestReport:
    async def test_report_for_inviter(self, db, analytics, inviter):
        _, registration = await attribute_invitee(db, inviter, "bob")
        await RewardEngine(db).claim_registration_rewards(inviter.id, registration.id)

        report = await analytics.generate_invite_report(inviter.id, TimePeriod.last_days(7))

        assert report["stats"]["successful_registrations"] == 1
        assert len(report["recent_invitees"]) == 1
        assert report["rewards_summary"]["total_credits"] == 10

    async def test_rewards_outside_period_excluded(self, db, analytics, inviter):
        _, registration = await attribute_invitee(db, inviter, "bob")
        await RewardEngine(db).claim_registration_rewards(inviter.id, registration.id)

        old = TimePeriod(start=datetime.utcnow() - timedelta(days=30), end=datetime.utcnow() - timedelta(days=20))
        report = await analytics.generate_invite_report(inviter.id, old)

        assert report["rewards_summary"]["total_credits"] == 0


class TestLeaderboard:
    async def test_ranked_by_registrations(self, db, analytics, inviter):
        runner_up = await create_user(db, "zoe", registration_ip="10.0.0.2")
        await attribute_invitee(db, inviter, "bob")
        await attribute_invitee(db, inviter, "ben")
        await attribute_invitee(db, runner_up, "cat")

        board = await analytics.get_invite_leaderboard(TimePeriod.last_days(1))

        assert [(e.rank, e.username, e.invite_count) for e in board] == [(1, "alice", 2), (2, "zoe", 1)]

    async def test_empty_period(self, analytics):
        assert await analytics.get_invite_leaderboard(TimePeriod.last_days(1)) == []


class TestPlatform:
    async def test_platform_stats(self, db, analytics, inviter):
        await InvitationService(db).generate_invite_code(inviter)
        await attribute_invitee(db, inviter, "bob")

        stats = await analytics.get_platform_stats(TimePeriod.last_days(1))

        assert stats["total_invites"] == 2
        assert stats["total_registrations"] == 1
        assert stats["conversion_rate"] == 50.0
        assert stats["top_inviters"][0]["username"] == "alice"

    async def test_conversion_by_day(self, db, analytics, inviter):
        invitee, _ = await attribute_invitee(db, inviter, "bob")
        await InvitationService(db).process_invitee_activation(invitee)

        days = await analytics.get_conversion_stats(TimePeriod.last_days(1))

        assert len(days) == 1
        assert days[0]["registrations"] == 1
        assert days[0]["activation_rate"] == 100.0


class TestTrends:
    async def test_series_has_one_entry_per_day(self, analytics, inviter):
        series = await analytics.get_trend_data(inviter.id, days=14)

        assert len(series) == 14
        assert all(day["registrations"] == 0 for day in series)

    async def test_today_counts_shares(self, db, analytics, inviter):
        invitations = InvitationService(db)
        code = await invitations.generate_invite_code(inviter)
        await invitations.record_code_shared(code, channel="link")

        today = (await analytics.get_trend_data(inviter.id, days=7))[-1]

        assert today["date"] == datetime.utcnow().date().isoformat()
        assert today["invites"] == 2

    async def test_tracked_events_count(self, analytics, inviter):
        await analytics.track_invite_event(InviteEventType.CODE_SHARED, inviter_id=inviter.id)

        today = (await analytics.get_trend_data(inviter.id, days=1))[-1]

        assert today["invites"] == 1
