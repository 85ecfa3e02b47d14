"""
Tests for badges and titles
===========================

Definitions, awards, profile display limits and requirement-driven awards.
"""

import pytest

from db.models import BadgeRarity, InviteStats
from services.badge_service import (
    BadgeService,
    BadgeError,
    ACTIVATION_MILESTONES,
    SUPER_INVITER_TITLE_ID,
    activation_badge_id,
)

from conftest import create_user


@pytest.fixture
async def user(db):
    return await create_user(db, "dave")


@pytest.fixture
def badges(db) -> BadgeService:
    return BadgeService(db)


class TestDefinitions:
    async def test_builtin_catalogue(self, badges, seeded_badges):
        ids = {b.id for b in await badges.list_badges()}

        assert ids == {activation_badge_id(m) for m in ACTIVATION_MILESTONES}
        assert (await badges.get_badge("active_inviter_80")).rarity == BadgeRarity.LEGENDARY
        assert await badges.get_title(SUPER_INVITER_TITLE_ID) is not None

    async def test_seeding_twice_is_harmless(self, badges, seeded_badges):
        await badges.ensure_builtin_badges()

        assert len(await badges.list_badges()) == len(ACTIVATION_MILESTONES)

    async def test_duplicate_badge_rejected(self, badges):
        await badges.create_badge("early_bird", "Early Bird")

        with pytest.raises(BadgeError) as exc_info:
            await badges.create_badge("early_bird", "Early Bird again")

        assert exc_info.value.code == "badge_exists"

    async def test_malformed_requirement_rejected(self, badges):
        with pytest.raises(BadgeError) as exc_info:
            await badges.create_badge("broken", "Broken", requirements=[{"type": "karma", "value": 3}])

        assert exc_info.value.code == "invalid_requirement"

    async def test_inactive_badges_hidden_from_catalogue(self, badges):
        await badges.create_badge("retired", "Retired")
        await badges.update_badge("retired", is_active=False)

        assert await badges.list_badges() == []
        assert [b.id for b in await badges.list_badges(include_inactive=True)] == ["retired"]


class TestAwards:
    async def test_award_is_idempotent(self, badges, user, seeded_badges):
        first = await badges.award_badge(user.id, "active_inviter_3")
        second = await badges.award_badge(user.id, "active_inviter_3")

        assert first.id == second.id
        assert len(await badges.get_user_badges(user.id)) == 1

    async def test_unknown_badge(self, badges, user):
        with pytest.raises(BadgeError) as exc_info:
            await badges.award_badge(user.id, "nope")

        assert exc_info.value.code == "not_found"

    async def test_first_title_becomes_active(self, badges, user, seeded_badges):
        await badges.create_title("veteran", "Veteran")

        first = await badges.award_title(user.id, SUPER_INVITER_TITLE_ID)
        second = await badges.award_title(user.id, "veteran")

        assert first.is_active is True
        assert second.is_active is False

    async def test_switch_active_title(self, badges, user, seeded_badges):
        await badges.create_title("veteran", "Veteran")
        await badges.award_title(user.id, SUPER_INVITER_TITLE_ID)
        await badges.award_title(user.id, "veteran")

        await badges.set_active_title(user.id, "veteran")

        active = await badges.get_active_title(user.id)
        assert active.title_id == "veteran"

    async def test_cannot_activate_unowned_title(self, badges, user, seeded_badges):
        with pytest.raises(BadgeError) as exc_info:
            await badges.set_active_title(user.id, SUPER_INVITER_TITLE_ID)

        assert exc_info.value.code == "title_not_owned"


class TestDisplay:
    async def test_display_at_most_three(self, badges, user, seeded_badges):
        for milestone in ACTIVATION_MILESTONES[:4]:
            await badges.award_badge(user.id, activation_badge_id(milestone))

        with pytest.raises(BadgeError) as exc_info:
            await badges.set_displayed_badges(
                user.id, [activation_badge_id(m) for m in ACTIVATION_MILESTONES[:4]]
            )

        assert exc_info.value.code == "too_many_badges"

    async def test_display_selection(self, badges, user, seeded_badges):
        await badges.award_badge(user.id, "active_inviter_3")
        await badges.award_badge(user.id, "active_inviter_8")

        shown = await badges.set_displayed_badges(user.id, ["active_inviter_8"])

        assert [ub.badge_id for ub in shown] == ["active_inviter_8"]

    async def test_display_requires_ownership(self, badges, user, seeded_badges):
        with pytest.raises(BadgeError) as exc_info:
            await badges.set_displayed_badges(user.id, ["active_inviter_3"])

        assert exc_info.value.code == "badge_not_owned"


class TestRequirementChecks:
    async def test_awards_badges_whose_requirements_are_met(self, db, badges, user, seeded_badges):
        db.add(
            InviteStats(
                user_id=user.id,
                total_invites=10,
                successful_registrations=10,
                active_invitees=8,
                total_rewards_earned=0,
            )
        )
        await db.commit()

        awarded = await badges.check_and_award_badges(user.id)

        assert sorted(ub.badge_id for ub in awarded) == ["active_inviter_3", "active_inviter_8"]
        assert await badges.check_and_award_badges(user.id) == []

    async def test_title_needs_every_requirement(self, db, badges, user, seeded_badges):
        db.add(
            InviteStats(
                user_id=user.id,
                total_invites=60,
                successful_registrations=60,
                active_invitees=39,
                total_rewards_earned=0,
            )
        )
        await db.commit()

        assert await badges.check_and_award_titles(user.id) == []
