"""
Tests for fraud detection
=========================

Registration-time checks, the combined risk verdict, bans, freezes,
reward recovery, velocity alerts and manual review cases.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from db.models import (
    AlertStatus,
    AlertType,
    CreditSource,
    Notification,
    NotificationType,
    ReviewAction,
    ReviewCaseStatus,
    ReviewCaseType,
    RiskLevel,
    SuspiciousActivity,
    User,
)
from services.credit_service import CreditService
from services.fraud_service import (
    DeviceInfo,
    FraudError,
    FraudService,
    RegistrationAttempt,
    compute_fingerprint_hash,
    emails_look_alike,
    escape_like,
    levenshtein,
)
from services.reward_engine import RewardEngine

from conftest import create_user, attribute_invitee


@pytest.fixture
def fraud(db) -> FraudService:
    return FraudService(db)


async def _signups(db, count: int, ip=None, user_agent=None, domain="example.com", age=timedelta(0)):
    created_at = datetime.utcnow() - age
    for i in range(count):
        db.add(
            User(
                email=f"burst{i}@{domain}",
                username=f"burst{i}",
                password_hash="x",
                registration_ip=ip,
                registration_user_agent=user_agent,
                created_at=created_at,
            )
        )
    await db.commit()


# =============================================================================
# HELPERS
# =============================================================================

class TestHelpers:
    def test_fingerprint_is_stable(self):
        device = DeviceInfo(user_agent="UA", screen_resolution="1920x1080", timezone="UTC")

        assert compute_fingerprint_hash(device) == compute_fingerprint_hash(
            DeviceInfo(user_agent="UA", screen_resolution="1920x1080", timezone="UTC")
        )
        assert len(compute_fingerprint_hash(device)) == 64

    def test_fingerprint_sees_cookie_flag(self):
        assert compute_fingerprint_hash(DeviceInfo(cookie_enabled=True)) != compute_fingerprint_hash(
            DeviceInfo(cookie_enabled=False)
        )

    @pytest.mark.parametrize(
        "a, b, distance",
        [("", "", 0), ("kitten", "sitting", 3), ("abc", "abc", 0), ("abc", "", 3)],
    )
    def test_levenshtein(self, a, b, distance):
        assert levenshtein(a, b) == distance

    @pytest.mark.parametrize(
        "a, b, similar",
        [
            ("bob1@example.com", "bob.2@example.com", True),
            ("alice@example.com", "alicf@example.com", True),
            ("alice@example.com", "alice@other.com", False),
            ("alice@example.com", "zachary@example.com", False),
        ],
    )
    def test_email_similarity(self, a, b, similar):
        assert emails_look_alike(a, b) is similar


# =============================================================================
# REGISTRATION CHECKS
# =============================================================================

class TestIpFrequency:
    async def test_quiet_ip(self, fraud):
        result = await fraud.check_ip_frequency("192.0.2.1")

        assert result.is_valid
        assert result.risk_level == RiskLevel.LOW

    async def test_medium_before_limit(self, db, fraud):
        await _signups(db, 3, ip="192.0.2.1")

        result = await fraud.check_ip_frequency("192.0.2.1")

        assert result.is_valid
        assert result.risk_level == RiskLevel.MEDIUM

    async def test_blocked_at_limit(self, db, fraud):
        await _signups(db, fraud.settings.fraud_ip_frequency_limit, ip="192.0.2.1")

        result = await fraud.check_ip_frequency("192.0.2.1")

        assert not result.is_valid
        assert result.risk_level == RiskLevel.HIGH
        assert result.actions[0].duration_minutes == 60

    async def test_old_signups_ignored(self, db, fraud):
        await _signups(db, 6, ip="192.0.2.1", age=timedelta(hours=2))

        assert (await fraud.check_ip_frequency("192.0.2.1")).risk_level == RiskLevel.LOW


class TestDeviceReuse:
    async def test_device_limit(self, db, fraud):
        device = DeviceInfo(user_agent="UA", platform="Linux")
        for name in ("d1", "d2", "d3"):
            user = await create_user(db, name)
            await fraud.record_device_fingerprint(user.id, device)

        result = await fraud.check_device_fingerprint(compute_fingerprint_hash(device))

        assert not result.is_valid
        assert result.risk_level == RiskLevel.HIGH

    async def test_shared_device_is_medium(self, db, fraud):
        device = DeviceInfo(user_agent="UA", platform="Linux")
        for name in ("d1", "d2"):
            user = await create_user(db, name)
            await fraud.record_device_fingerprint(user.id, device)

        result = await fraud.check_device_fingerprint(compute_fingerprint_hash(device))

        assert result.is_valid
        assert result.risk_level == RiskLevel.MEDIUM


class TestSelfInvitation:
    async def test_same_ip_blocked(self, fraud, inviter):
        result = await fraud.check_self_invitation(inviter.id, "someone@else.org", inviter.registration_ip)

        assert not result.is_valid
        assert result.risk_level == RiskLevel.HIGH

    async def test_same_email_blocked(self, fraud, inviter):
        result = await fraud.check_self_invitation(inviter.id, inviter.email.upper(), None)

        assert not result.is_valid

    async def test_similar_email_is_medium(self, fraud, inviter):
        result = await fraud.check_self_invitation(inviter.id, "alice1@example.com", "203.0.113.9")

        assert result.risk_level == RiskLevel.MEDIUM

    async def test_unrelated_invitee(self, fraud, inviter):
        result = await fraud.check_self_invitation(inviter.id, "bob@elsewhere.net", "203.0.113.9")

        assert result.is_valid
        assert result.risk_level == RiskLevel.LOW


class TestBatchRegistration:
    async def test_two_shared_signals_block(self, db, fraud):
        await _signups(db, 3, ip="198.51.100.7", user_agent="bot/1.0")

        result = await fraud.check_batch_registration(
            RegistrationAttempt(email="new@fresh.io", ip_address="198.51.100.7", user_agent="bot/1.0")
        )

        assert not result.is_valid
        assert "IP address" in result.reasons[0]

    async def test_one_shared_signal_is_medium(self, db, fraud):
        await _signups(db, 3, user_agent="bot/1.0")

        result = await fraud.check_batch_registration(
            RegistrationAttempt(email="new@fresh.io", ip_address="198.51.100.8", user_agent="bot/1.0")
        )

        assert result.is_valid
        assert result.risk_level == RiskLevel.MEDIUM

    async def test_domain_needs_double_threshold(self, db, fraud):
        await _signups(db, 5, domain="burst.io")

        result = await fraud.check_batch_registration(RegistrationAttempt(email="x@burst.io"))

        assert result.risk_level == RiskLevel.LOW

    async def test_domain_wildcards_match_literally(self, db, fraud):
        await _signups(db, 6, domain="burst.io")

        result = await fraud.check_batch_registration(RegistrationAttempt(email="x@b_rst.io"))

        assert result.risk_level == RiskLevel.LOW

    def test_escape_like(self):
        assert escape_like("50%_off\\") == "50\\%\\_off\\\\"


class TestAssessment:
    async def test_clean_attempt_records_nothing(self, db, fraud):
        result = await fraud.assess_registration_risk(
            RegistrationAttempt(email="new@fresh.io", ip_address="203.0.113.1")
        )

        assert result.is_valid
        assert (await db.execute(select(SuspiciousActivity))).scalars().all() == []

    async def test_self_invite_blocks_and_is_recorded(self, db, fraud, inviter):
        result = await fraud.assess_registration_risk(
            RegistrationAttempt(email="other@fresh.io", ip_address=inviter.registration_ip),
            inviter_id=inviter.id,
        )

        assert not result.is_valid
        activity = (await db.execute(select(SuspiciousActivity))).scalars().one()
        assert activity.severity == RiskLevel.HIGH
        assert activity.details["inviter_id"] == str(inviter.id)

    async def test_two_medium_signals_escalate(self, db, fraud, inviter):
        await _signups(db, 3, ip="203.0.113.5")

        result = await fraud.assess_registration_risk(
            RegistrationAttempt(email="alice1@example.com", ip_address="203.0.113.5"),
            inviter_id=inviter.id,
        )

        assert not result.is_valid
        assert result.risk_level == RiskLevel.HIGH


# =============================================================================
# BANS, FREEZES, RECOVERY
# =============================================================================

class TestRestrictions:
    async def test_ban_and_lift(self, fraud, inviter):
        await fraud.ban_user(inviter.id, "abuse")

        assert await fraud.is_user_banned(inviter.id)
        assert await fraud.get_user_risk_level(inviter.id) == RiskLevel.HIGH

        assert await fraud.lift_ban(inviter.id) == 1
        assert not await fraud.is_restricted(inviter.id)

    async def test_temporary_ban_lapses(self, db, fraud, inviter):
        ban = await fraud.ban_user(inviter.id, "cool down", duration_minutes=30)
        ban.expires_at = datetime.utcnow() - timedelta(minutes=1)
        await db.commit()

        assert not await fraud.is_user_banned(inviter.id)

    async def test_freeze_notifies_user(self, db, fraud, inviter):
        await fraud.freeze_account(inviter.id, "suspicious burst")

        assert await fraud.is_account_frozen(inviter.id)
        notifications = (
            await db.execute(select(Notification).where(Notification.user_id == inviter.id))
        ).scalars().all()
        assert [n.type for n in notifications] == [NotificationType.ACCOUNT_FROZEN]

        assert await fraud.unfreeze_account(inviter.id) == 1
        assert not await fraud.is_restricted(inviter.id)

    async def test_recovery_is_tracked_on_freeze(self, db, fraud, inviter):
        credits = CreditService(db)
        await credits.add_credits(inviter.id, 10, CreditSource.INVITE_REWARD)
        await credits.add_credits(inviter.id, 5, CreditSource.PURCHASE)
        await fraud.freeze_account(inviter.id, "review")

        assert await fraud.recover_rewards(inviter.id) == 10

        status = await fraud.get_account_status(inviter.id)
        assert status["is_frozen"] is True
        assert status["recovered_credits"] == 10
        assert await credits.get_available_credits(inviter.id) == 5

    async def test_recovery_without_freeze_is_reported(self, db, fraud, inviter, admin):
        _, registration = await attribute_invitee(db, inviter, "bob")
        await RewardEngine(db).claim_registration_rewards(inviter.id, registration.id)
        case = await fraud.create_review_case(inviter.id, ReviewCaseType.REWARD_DISPUTE)

        await fraud.decide_review_case(case.id, ReviewAction.RECOVER_REWARDS, "fake invitee", admin.id)

        status = await fraud.get_account_status(inviter.id)
        assert status["is_frozen"] is False
        assert status["recovered_credits"] == 10
        assert await CreditService(db).get_available_credits(inviter.id) == 0

    async def test_recoveries_accumulate(self, db, fraud, inviter):
        credits = CreditService(db)
        await credits.add_credits(inviter.id, 10, CreditSource.INVITE_REWARD)
        await fraud.recover_rewards(inviter.id)
        await credits.add_credits(inviter.id, 4, CreditSource.MILESTONE_REWARD)
        await fraud.recover_rewards(inviter.id)

        assert (await fraud.get_account_status(inviter.id))["recovered_credits"] == 14


# =============================================================================
# ALERTS AND REVIEW
# =============================================================================

class TestVelocity:
    async def test_burst_raises_alert(self, db, fraud, inviter):
        for i in range(5):
            await attribute_invitee(db, inviter, f"fast{i}")

        alerts = await fraud.list_alerts()

        assert len(alerts) == 1
        assert alerts[0].alert_type == AlertType.VELOCITY_SPIKE
        assert alerts[0].evidence["registration_count"] == 5

    async def test_few_registrations_no_alert(self, db, fraud, inviter):
        for i in range(4):
            await attribute_invitee(db, inviter, f"slow{i}")

        assert await fraud.detect_velocity_anomaly(inviter.id) is None

    async def test_resolve_alert(self, db, fraud, inviter, admin):
        for i in range(5):
            await attribute_invitee(db, inviter, f"fast{i}")
        alert = (await fraud.list_alerts())[0]

        resolved = await fraud.resolve_alert(alert.id, admin.id, false_positive=True)

        assert resolved.status == AlertStatus.FALSE_POSITIVE
        assert await fraud.list_alerts(status=AlertStatus.PENDING) == []


class TestReviewCases:
    async def test_freeze_decision(self, fraud, inviter, admin):
        case = await fraud.create_review_case(inviter.id, ReviewCaseType.FRAUD_DETECTION)
        assert (await fraud.get_account_status(inviter.id))["active_review_cases"] == 1

        decided = await fraud.decide_review_case(case.id, ReviewAction.FREEZE, "confirmed", admin.id)

        assert decided.status == ReviewCaseStatus.REJECTED
        assert await fraud.is_account_frozen(inviter.id)
        assert (await fraud.get_account_status(inviter.id))["active_review_cases"] == 0

    async def test_approve_decision(self, fraud, inviter, admin):
        case = await fraud.create_review_case(inviter.id, ReviewCaseType.REWARD_DISPUTE)

        decided = await fraud.decide_review_case(case.id, ReviewAction.APPROVE, "legit", admin.id)

        assert decided.status == ReviewCaseStatus.APPROVED
        assert not await fraud.is_restricted(inviter.id)

    async def test_case_decided_once(self, fraud, inviter, admin):
        case = await fraud.create_review_case(inviter.id, ReviewCaseType.SUSPICIOUS_BEHAVIOR)
        await fraud.decide_review_case(case.id, ReviewAction.REJECT, "no", admin.id)

        with pytest.raises(FraudError) as exc_info:
            await fraud.decide_review_case(case.id, ReviewAction.APPROVE, "changed mind", admin.id)

        assert exc_info.value.code == "case_closed"
