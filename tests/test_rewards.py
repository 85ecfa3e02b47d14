"""
Tests for the reward engine
===========================

Covers the claim flow for pending registration rewards, activation payouts,
milestones, withheld rewards and the configurable reward bundles.
"""

from datetime import datetime, timedelta

import pytest

from db.models import InviteStats, RewardType, RewardSourceType, InviteEventType
from services.credit_service import CreditService
from services.fraud_service import FraudService
from services.invitation_service import InvitationService
from services.reward_engine import RewardEngine, Reward, RewardError, DEFAULT_REWARDS

from conftest import create_user, attribute_invitee


@pytest.fixture
def engine_(db) -> RewardEngine:
    return RewardEngine(db)


def _default_amount(event_type: InviteEventType) -> int:
    return DEFAULT_REWARDS[event_type.value][0]["amount"]


REGISTRATION_CREDITS = _default_amount(InviteEventType.USER_REGISTERED)
ACTIVATION_CREDITS = _default_amount(InviteEventType.USER_ACTIVATED)


# =============================================================================
# CLAIMS
# =============================================================================

class TestClaims:
    async def test_registration_rewards_start_pending(self, db, engine_, inviter):
        _, registration = await attribute_invitee(db, inviter, "bob", ip="10.0.1.1")

        assert registration.rewards_claimed is False
        assert await CreditService(db).get_available_credits(inviter.id) == 0
        assert [r.id for r in await engine_.claimable_registrations(inviter.id)] == [registration.id]

    async def test_claim_grants_registration_bundle(self, db, engine_, inviter):
        _, registration = await attribute_invitee(db, inviter, "bob", ip="10.0.1.1")

        results = await engine_.claim_registration_rewards(inviter.id, registration.id)

        assert all(r.success for r in results)
        assert [r.record.source_type for r in results] == [RewardSourceType.INVITE_REGISTRATION]
        assert await CreditService(db).get_available_credits(inviter.id) == REGISTRATION_CREDITS
        assert await engine_.claimable_registrations(inviter.id) == []

    async def test_claim_twice(self, db, engine_, inviter):
        _, registration = await attribute_invitee(db, inviter, "bob", ip="10.0.1.1")
        await engine_.claim_registration_rewards(inviter.id, registration.id)

        with pytest.raises(RewardError) as exc_info:
            await engine_.claim_registration_rewards(inviter.id, registration.id)

        assert exc_info.value.code == "already_claimed"

    async def test_claim_after_deadline(self, db, engine_, inviter):
        _, registration = await attribute_invitee(db, inviter, "bob", ip="10.0.1.1")
        registration.claim_deadline = datetime.utcnow() - timedelta(minutes=1)
        await db.commit()

        with pytest.raises(RewardError) as exc_info:
            await engine_.claim_registration_rewards(inviter.id, registration.id)

        assert exc_info.value.code == "claim_expired"
        assert await CreditService(db).get_available_credits(inviter.id) == 0

    async def test_cannot_claim_someone_elses_registration(self, db, engine_, inviter):
        _, registration = await attribute_invitee(db, inviter, "bob", ip="10.0.1.1")
        stranger = await create_user(db, "mallory")

        with pytest.raises(RewardError) as exc_info:
            await engine_.claim_registration_rewards(stranger.id, registration.id)

        assert exc_info.value.code == "not_found"

    async def test_claim_after_activation_includes_activation_bundle(self, db, engine_, inviter):
        invitee, registration = await attribute_invitee(db, inviter, "bob", ip="10.0.1.1")
        await InvitationService(db).process_invitee_activation(invitee)

        # Nothing is paid until the claim
        assert await CreditService(db).get_available_credits(inviter.id) == 0

        results = await engine_.claim_registration_rewards(inviter.id, registration.id)

        assert len(results) == 2
        assert await CreditService(db).get_available_credits(inviter.id) == (
            REGISTRATION_CREDITS + ACTIVATION_CREDITS
        )

    async def test_activation_after_claim_pays_directly(self, db, engine_, inviter):
        invitee, registration = await attribute_invitee(db, inviter, "bob", ip="10.0.1.1")
        await engine_.claim_registration_rewards(inviter.id, registration.id)

        await InvitationService(db).process_invitee_activation(invitee)

        assert await CreditService(db).get_available_credits(inviter.id) == (
            REGISTRATION_CREDITS + ACTIVATION_CREDITS
        )
        stats = await db.get(InviteStats, inviter.id)
        await db.refresh(stats)
        assert stats.total_rewards_earned == REGISTRATION_CREDITS + ACTIVATION_CREDITS

    async def test_frozen_inviter_rewards_withheld(self, db, engine_, inviter):
        code = await InvitationService(db).generate_invite_code(inviter)
        await FraudService(db).freeze_account(inviter.id, "under review")
        invitee = await create_user(db, "bob", registration_ip="10.0.1.1")

        registration = await InvitationService(db).process_invite_registration(code.code, invitee, "10.0.1.1")

        assert registration.rewards_withheld is True
        assert await engine_.claimable_registrations(inviter.id) == []
        with pytest.raises(RewardError) as exc_info:
            await engine_.claim_registration_rewards(inviter.id, registration.id)
        assert exc_info.value.code == "rewards_withheld"

    async def test_ban_after_registration_blocks_claim(self, db, engine_, inviter):
        _, registration = await attribute_invitee(db, inviter, "bob", ip="10.0.1.1")
        await FraudService(db).ban_user(inviter.id, "abuse")

        assert await engine_.claimable_registrations(inviter.id) == []
        with pytest.raises(RewardError) as exc_info:
            await engine_.claim_registration_rewards(inviter.id, registration.id)

        assert exc_info.value.code == "user_restricted"
        assert registration.rewards_claimed is False
        assert await CreditService(db).get_available_credits(inviter.id) == 0

    async def test_claim_possible_again_once_ban_lifted(self, db, engine_, inviter):
        _, registration = await attribute_invitee(db, inviter, "bob", ip="10.0.1.1")
        fraud = FraudService(db)
        await fraud.ban_user(inviter.id, "abuse")
        await fraud.lift_ban(inviter.id)

        await engine_.claim_registration_rewards(inviter.id, registration.id)

        assert await CreditService(db).get_available_credits(inviter.id) == REGISTRATION_CREDITS


class TestFrozenInviterPayouts:
    async def test_activations_while_frozen_pay_nothing(self, db, engine_, inviter, seeded_badges):
        invitees = [(await attribute_invitee(db, inviter, f"bob{i}"))[0] for i in range(5)]
        fraud = FraudService(db)
        await fraud.freeze_account(inviter.id, "under review")
        await fraud.recover_rewards(inviter.id)
        granted_before = len(await engine_.get_user_rewards(inviter.id))

        for invitee in invitees[:3]:
            await InvitationService(db).process_invitee_activation(invitee)

        assert len(await engine_.get_user_rewards(inviter.id)) == granted_before
        assert await CreditService(db).get_available_credits(inviter.id) == 0

    async def test_held_milestone_fires_after_unfreeze(self, db, engine_, inviter, seeded_badges):
        invitees = [(await attribute_invitee(db, inviter, f"bob{i}"))[0] for i in range(3)]
        fraud = FraudService(db)
        await fraud.freeze_account(inviter.id, "under review")
        for invitee in invitees:
            await InvitationService(db).process_invitee_activation(invitee)

        assert await engine_.grant_milestone_rewards(inviter.id) == []

        await fraud.unfreeze_account(inviter.id)
        results = await engine_.grant_milestone_rewards(inviter.id)

        assert [r.record.badge_id for r in results] == ["active_inviter_3"]


# =============================================================================
# MILESTONES
# =============================================================================

class TestMilestones:
    async def _stats(self, db, user, registrations: int, active: int) -> None:
        db.add(
            InviteStats(
                user_id=user.id,
                total_invites=registrations,
                successful_registrations=registrations,
                active_invitees=active,
                total_rewards_earned=0,
            )
        )
        await db.commit()

    async def test_registration_milestone_fires_once(self, db, engine_, inviter):
        await self._stats(db, inviter, registrations=5, active=0)

        first = await engine_.check_milestones(inviter.id)
        second = await engine_.check_milestones(inviter.id)

        assert [(r.reward_type, r.amount) for r in first] == [(RewardType.AI_CREDITS, 10)]
        assert second == []

    async def test_activation_milestone_awards_badge(self, db, engine_, inviter, seeded_badges):
        await self._stats(db, inviter, registrations=3, active=3)

        results = await engine_.grant_milestone_rewards(inviter.id)

        assert [r.record.badge_id for r in results] == ["active_inviter_3"]
        assert all(r.record.source_type == RewardSourceType.MILESTONE for r in results)

    async def test_super_inviter_title(self, db, engine_, inviter, seeded_badges):
        await self._stats(db, inviter, registrations=50, active=40)

        rewards = await engine_.check_milestones(inviter.id)

        titles = [r for r in rewards if r.reward_type == RewardType.TITLE]
        assert [r.title_id for r in titles] == ["super_inviter"]

    async def test_milestones_skip_users_without_stats(self, engine_, inviter):
        assert await engine_.check_milestones(inviter.id) == []


# =============================================================================
# CONFIGURATION
# =============================================================================

class TestConfiguration:
    async def test_defaults_without_rows(self, engine_):
        rewards = await engine_.get_reward_config(InviteEventType.USER_REGISTERED.value)

        assert [(r.reward_type, r.amount) for r in rewards] == [(RewardType.AI_CREDITS, REGISTRATION_CREDITS)]

    async def test_custom_bundle_replaces_defaults(self, db, engine_, inviter):
        await engine_.update_reward_config(
            InviteEventType.USER_REGISTERED.value,
            [
                Reward(reward_type=RewardType.AI_CREDITS, amount=25, description="Launch bonus"),
                Reward(reward_type=RewardType.PREMIUM_DAYS, amount=7, description="A week of premium"),
            ],
        )
        _, registration = await attribute_invitee(db, inviter, "bob", ip="10.0.1.1")

        results = await engine_.claim_registration_rewards(inviter.id, registration.id)

        assert sorted(r.record.reward_type.value for r in results) == ["ai_credits", "premium_days"]
        assert await CreditService(db).get_available_credits(inviter.id) == 25

    async def test_min_invites_condition(self, db, engine_, inviter):
        await engine_.update_reward_config(
            InviteEventType.USER_REGISTERED.value,
            [Reward(reward_type=RewardType.AI_CREDITS, amount=10, description="Bonus")],
            conditions={"min_invites": 2},
        )
        _, registration = await attribute_invitee(db, inviter, "bob", ip="10.0.1.1")

        results = await engine_.claim_registration_rewards(inviter.id, registration.id)

        assert results == []

    async def test_inactive_config_falls_back_to_defaults(self, engine_):
        await engine_.update_reward_config(
            InviteEventType.USER_ACTIVATED.value,
            [Reward(reward_type=RewardType.AI_CREDITS, amount=99, description="Paused")],
            is_active=False,
        )

        rewards = await engine_.get_reward_config(InviteEventType.USER_ACTIVATED.value)

        assert [r.amount for r in rewards] == [ACTIVATION_CREDITS]

    async def test_malformed_reward_rejected(self, engine_):
        with pytest.raises(RewardError) as exc_info:
            await engine_.update_reward_config(
                InviteEventType.USER_REGISTERED.value,
                [Reward(reward_type=RewardType.BADGE, description="Badge without id")],
            )

        assert exc_info.value.code == "invalid_reward"

    async def test_initialize_defaults_once(self, engine_):
        await engine_.initialize_default_configs()
        await engine_.initialize_default_configs()

        rows = await engine_.list_reward_configs()
        assert sorted(r.event_type for r in rows) == ["user_activated", "user_registered"]


class TestStats:
    async def test_reward_stats(self, db, engine_, inviter, seeded_badges):
        await engine_.grant_reward(
            inviter.id,
            Reward(reward_type=RewardType.AI_CREDITS, amount=12, description="Manual"),
        )
        await engine_.grant_reward(
            inviter.id,
            Reward(reward_type=RewardType.BADGE, badge_id="active_inviter_3", description="Badge"),
        )

        stats = await engine_.get_reward_stats(inviter.id)

        assert stats.total_credits == 12
        assert stats.total_badges == 1
        assert stats.total_titles == 0
        assert await engine_.calculate_user_credits(inviter.id) == 12

    async def test_failed_grant_reports_error(self, engine_, inviter):
        result = await engine_.grant_reward(
            inviter.id,
            Reward(reward_type=RewardType.BADGE, badge_id="missing", description="Badge"),
        )

        assert result.success is False
        assert "missing" in result.error

    async def test_batch_continues_past_failure(self, db, engine_, inviter):
        results = await engine_.batch_grant_rewards(
            [
                (inviter.id, Reward(reward_type=RewardType.BADGE, badge_id="missing", description="Badge")),
                (inviter.id, Reward(reward_type=RewardType.AI_CREDITS, amount=7, description="Bonus")),
            ]
        )

        assert [r.success for r in results] == [False, True]
        assert await CreditService(db).get_available_credits(inviter.id) == 7
