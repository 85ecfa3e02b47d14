"""
Tests for invite codes and attribution
======================================

Code generation, validation outcomes, registration attribution, activation
and the denormalized invite statistics.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from db.models import InviteEvent, InviteEventType, InviteRegistration, Notification, NotificationType
from services.fraud_service import FraudService
from services.invitation_service import InvitationService, InvitationError

from conftest import create_user, attribute_invitee


@pytest.fixture
def invitations(db) -> InvitationService:
    return InvitationService(db)


class TestCodeGeneration:
    async def test_code_shape(self, invitations, inviter):
        code = await invitations.generate_invite_code(inviter)

        assert len(code.code) == invitations.settings.invite_code_length
        assert code.code.isalnum() and code.code.upper() == code.code
        assert code.usage_count == 0
        assert code.max_usage == invitations.settings.invite_code_max_usage
        assert code.is_valid

    async def test_codes_are_unique(self, invitations, inviter):
        codes = {(await invitations.generate_invite_code(inviter)).code for _ in range(5)}

        assert len(codes) == 5

    async def test_active_code_limit(self, invitations, inviter, monkeypatch):
        monkeypatch.setattr(invitations.settings, "max_active_codes_per_user", 2)
        await invitations.generate_invite_code(inviter)
        await invitations.generate_invite_code(inviter)

        with pytest.raises(InvitationError) as exc_info:
            await invitations.generate_invite_code(inviter)

        assert exc_info.value.code == "too_many_codes"

    async def test_deactivated_codes_free_a_slot(self, invitations, inviter, monkeypatch):
        monkeypatch.setattr(invitations.settings, "max_active_codes_per_user", 1)
        code = await invitations.generate_invite_code(inviter)
        await invitations.deactivate_invite_code(code.id, inviter.id)

        assert (await invitations.generate_invite_code(inviter)).code != code.code

    async def test_restricted_user_cannot_generate(self, db, invitations, inviter):
        await FraudService(db).ban_user(inviter.id, "abuse")

        with pytest.raises(InvitationError) as exc_info:
            await invitations.generate_invite_code(inviter)

        assert exc_info.value.code == "user_restricted"

    async def test_collision_is_retried(self, invitations, inviter, monkeypatch):
        taken = await invitations.generate_invite_code(inviter)
        candidates = iter([taken.code, taken.code, "FRESH123"])
        monkeypatch.setattr(invitations, "_random_code", lambda: next(candidates))

        code = await invitations.generate_invite_code(inviter)

        assert code.code == "FRESH123"

    async def test_gives_up_after_repeated_collisions(self, invitations, inviter, monkeypatch):
        taken = await invitations.generate_invite_code(inviter)
        monkeypatch.setattr(invitations, "_random_code", lambda: taken.code)

        with pytest.raises(InvitationError) as exc_info:
            await invitations.generate_invite_code(inviter)

        assert exc_info.value.code == "code_generation_failed"
        assert len(await invitations.get_user_invite_codes(inviter.id)) == 1

    async def test_generation_is_recorded(self, db, invitations, inviter):
        code = await invitations.generate_invite_code(inviter)

        events = (await db.execute(select(InviteEvent))).scalars().all()
        assert [(e.type, e.invite_code_id) for e in events] == [(InviteEventType.CODE_GENERATED, code.id)]
        assert (await invitations.get_user_invite_stats(inviter.id)).total_invites == 1


class TestValidation:
    async def test_valid_code_case_insensitive(self, invitations, inviter):
        code = await invitations.generate_invite_code(inviter)

        validation = await invitations.validate_invite_code(f"  {code.code.lower()} ")

        assert validation.is_valid
        assert validation.invite_code.id == code.id

    @pytest.mark.parametrize("raw", ["", "ABC", "ABCDEFG!", "ABCDEFGHIJ"])
    async def test_malformed_codes(self, invitations, raw):
        validation = await invitations.validate_invite_code(raw)

        assert not validation.is_valid
        assert validation.error_code == "invalid_invite_code"

    async def test_unknown_code(self, invitations):
        validation = await invitations.validate_invite_code("ZZZZ9999")

        assert validation.error_code == "invalid_invite_code"

    async def test_inactive_code(self, invitations, inviter):
        code = await invitations.generate_invite_code(inviter)
        await invitations.deactivate_invite_code(code.id, inviter.id)

        assert (await invitations.validate_invite_code(code.code)).error_code == "invalid_invite_code"

    async def test_expired_code(self, db, invitations, inviter):
        code = await invitations.generate_invite_code(inviter)
        code.expires_at = datetime.utcnow() - timedelta(seconds=1)
        await db.commit()

        assert (await invitations.validate_invite_code(code.code)).error_code == "expired_invite_code"

    async def test_exhausted_code(self, db, invitations, inviter):
        code = await invitations.generate_invite_code(inviter)
        code.usage_count = code.max_usage
        await db.commit()

        assert (await invitations.validate_invite_code(code.code)).error_code == "usage_limit_exceeded"

    async def test_only_owner_can_deactivate(self, db, invitations, inviter):
        code = await invitations.generate_invite_code(inviter)
        other = await create_user(db, "eve")

        assert await invitations.deactivate_invite_code(code.id, other.id) is False
        assert (await invitations.validate_invite_code(code.code)).is_valid


class TestAttribution:
    async def test_registration_is_attributed(self, db, invitations, inviter):
        invitee, registration = await attribute_invitee(db, inviter, "bob", ip="10.0.1.1")

        assert registration.inviter_id == inviter.id
        assert registration.invitee_id == invitee.id
        assert registration.ip_address == "10.0.1.1"
        assert registration.claim_deadline > datetime.utcnow() + timedelta(
            days=invitations.settings.reward_claim_window_days - 1
        )

        stats = await invitations.get_user_invite_stats(inviter.id)
        assert stats.successful_registrations == 1
        assert stats.active_invitees == 0

    async def test_usage_count_increments(self, db, invitations, inviter):
        code = await invitations.generate_invite_code(inviter)
        for name in ("bob", "ben"):
            invitee = await create_user(db, name)
            await invitations.process_invite_registration(code.code, invitee)

        await db.refresh(code)
        assert code.usage_count == 2

    async def test_inviter_is_notified(self, db, inviter):
        await attribute_invitee(db, inviter, "bob", ip="10.0.1.1")

        notifications = (
            await db.execute(select(Notification).where(Notification.user_id == inviter.id))
        ).scalars().all()
        assert [n.type for n in notifications] == [NotificationType.INVITE_SUCCESS]
        assert "bob" in notifications[0].content

    async def test_own_code_rejected(self, invitations, inviter):
        code = await invitations.generate_invite_code(inviter)

        with pytest.raises(InvitationError) as exc_info:
            await invitations.process_invite_registration(code.code, inviter)

        assert exc_info.value.code == "self_invite_attempt"

    async def test_invitee_attributed_once(self, db, invitations, inviter):
        invitee, _ = await attribute_invitee(db, inviter, "bob")
        second_code = await invitations.generate_invite_code(inviter)

        with pytest.raises(InvitationError) as exc_info:
            await invitations.process_invite_registration(second_code.code, invitee)

        assert exc_info.value.code == "already_registered"

    async def test_unusable_code_rejected(self, db, invitations):
        invitee = await create_user(db, "bob")

        with pytest.raises(InvitationError) as exc_info:
            await invitations.process_invite_registration("NOPE1234", invitee)

        assert exc_info.value.code == "invalid_invite_code"


class TestActivation:
    async def test_activation_updates_registration_and_stats(self, db, invitations, inviter):
        invitee, _ = await attribute_invitee(db, inviter, "bob")

        registration = await invitations.process_invitee_activation(invitee)

        assert registration.is_activated is True
        assert registration.activated_at is not None
        assert (await invitations.get_user_invite_stats(inviter.id)).active_invitees == 1

    async def test_activation_is_idempotent(self, db, invitations, inviter):
        invitee, _ = await attribute_invitee(db, inviter, "bob")
        await invitations.process_invitee_activation(invitee)
        await invitations.process_invitee_activation(invitee)

        activations = (
            await db.execute(select(InviteEvent).where(InviteEvent.type == InviteEventType.USER_ACTIVATED))
        ).scalars().all()
        assert len(activations) == 1

    async def test_uninvited_user_activation_is_noop(self, db, invitations):
        loner = await create_user(db, "loner")

        assert await invitations.process_invitee_activation(loner) is None


class TestHistory:
    async def test_history_newest_first(self, db, invitations, inviter):
        await attribute_invitee(db, inviter, "bob")
        await attribute_invitee(db, inviter, "ben")

        history = await invitations.get_invite_history(inviter.id)

        assert len(history) == 2
        assert history[0].registered_at >= history[1].registered_at

    async def test_sharing_counts_as_an_invite(self, db, invitations, inviter):
        code = await invitations.generate_invite_code(inviter)

        await invitations.record_code_shared(code, channel="email")

        stats = await invitations.get_user_invite_stats(inviter.id)
        assert stats.total_invites == 2

    async def test_stats_created_on_first_read(self, db, invitations):
        newcomer = await create_user(db, "newcomer")

        stats = await invitations.get_user_invite_stats(newcomer.id)

        assert (stats.total_invites, stats.successful_registrations) == (0, 0)
        registrations = (await db.execute(select(InviteRegistration))).scalars().all()
        assert registrations == []
