"""Referral fraud detection.

Registration-time checks (IP frequency, device reuse, self-invitation,
batch registration) are aggregated into a single risk verdict. The
advanced half handles velocity alerts, manual review cases, account
freezes and reward recovery.
"""

import hashlib
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, List, Optional
import uuid

from sqlalchemy import select, and_, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from db.models import (
    User,
    InviteRegistration,
    RiskLevel,
    DeviceFingerprint,
    SuspiciousActivity,
    SuspiciousActivityType,
    UserRiskProfile,
    UserBan,
    AnomalyAlert,
    AlertType,
    AlertSeverity,
    AlertStatus,
    ReviewCase,
    ReviewCaseType,
    ReviewCaseStatus,
    ReviewAction,
    AccountFreeze,
    CreditSource,
    NotificationType,
)
from services.credit_service import get_credit_service
from services.notification_service import get_notification_service

logger = logging.getLogger(__name__)

VELOCITY_MIN_REGISTRATIONS = 5
VELOCITY_MAX_PER_HOUR = 10
VELOCITY_LOOKBACK_HOURS = 24

_SIMILAR_STRIP_RE = re.compile(r"[0-9._-]")


class FraudError(Exception):
    """Exception for fraud module errors."""

    def __init__(self, message: str, code: str = "fraud_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class FraudActionType(str, Enum):
    BLOCK = "block"
    REVIEW = "review"
    WARN = "warn"
    MONITOR = "monitor"


@dataclass
class FraudAction:
    type: FraudActionType
    description: str
    duration_minutes: Optional[int] = None


@dataclass
class FraudCheckResult:
    """Outcome of one or more fraud checks."""

    is_valid: bool = True
    risk_level: RiskLevel = RiskLevel.LOW
    reasons: List[str] = field(default_factory=list)
    actions: List[FraudAction] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "risk_level": self.risk_level.value,
            "reasons": list(self.reasons),
            "actions": [
                {"type": a.type.value, "description": a.description, "duration_minutes": a.duration_minutes}
                for a in self.actions
            ],
        }


@dataclass
class DeviceInfo:
    """Client-reported device properties used for fingerprinting."""

    user_agent: str = ""
    screen_resolution: str = ""
    timezone: str = ""
    language: str = ""
    platform: str = ""
    cookie_enabled: bool = True


@dataclass
class RegistrationAttempt:
    email: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device: Optional[DeviceInfo] = None
    invite_code: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @property
    def email_domain(self) -> str:
        return self.email.rsplit("@", 1)[-1].lower()


def compute_fingerprint_hash(device: DeviceInfo) -> str:
    """SHA-256 of the canonical pipe-joined device properties."""
    canonical = "|".join(
        [
            device.user_agent or "",
            device.screen_resolution or "",
            device.timezone or "",
            device.language or "",
            device.platform or "",
            "true" if device.cookie_enabled else "false",
        ]
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def emails_look_alike(email_a: str, email_b: str) -> bool:
    """Same domain and near-identical local part (``bob1`` vs ``bob.2``)."""
    local_a, _, domain_a = email_a.lower().rpartition("@")
    local_b, _, domain_b = email_b.lower().rpartition("@")
    if domain_a != domain_b:
        return False

    stripped_a = _SIMILAR_STRIP_RE.sub("", local_a)
    stripped_b = _SIMILAR_STRIP_RE.sub("", local_b)
    if stripped_a and stripped_a == stripped_b:
        return True
    return levenshtein(local_a, local_b) <= 2


def escape_like(value: str) -> str:
    """Escape LIKE wildcards with a backslash so user input matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _medium_threshold(limit: int) -> int:
    return max(1, math.floor(limit * 0.7))


class FraudService:
    """Fraud checks, risk profiles, bans and manual review."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    # -------------------------------------------------------------------------
    # Registration checks
    # -------------------------------------------------------------------------

    async def check_ip_frequency(self, ip_address: Optional[str]) -> FraudCheckResult:
        """Registrations from one IP within the last hour."""
        result = FraudCheckResult()
        if not ip_address:
            return result

        since = datetime.utcnow() - timedelta(hours=1)
        count_result = await self.db.execute(
            select(func.count(User.id)).where(
                and_(User.registration_ip == ip_address, User.created_at >= since)
            )
        )
        count = count_result.scalar() or 0
        limit = self.settings.fraud_ip_frequency_limit

        if count >= limit:
            result.is_valid = False
            result.risk_level = RiskLevel.HIGH
            result.reasons.append(f"Too many registrations from this IP ({count} in the last hour)")
            result.actions.append(
                FraudAction(FraudActionType.BLOCK, "Block registrations from IP", duration_minutes=60)
            )
        elif count >= _medium_threshold(limit):
            result.risk_level = RiskLevel.MEDIUM
            result.reasons.append(f"Elevated registrations from this IP ({count} in the last hour)")
            result.actions.append(FraudAction(FraudActionType.MONITOR, "Monitor IP activity"))

        return result

    async def check_device_fingerprint(self, fingerprint_hash: Optional[str]) -> FraudCheckResult:
        """Distinct accounts already registered from the same device."""
        result = FraudCheckResult()
        if not fingerprint_hash:
            return result

        count_result = await self.db.execute(
            select(func.count(func.distinct(DeviceFingerprint.user_id))).where(
                DeviceFingerprint.fingerprint_hash == fingerprint_hash
            )
        )
        count = count_result.scalar() or 0
        limit = self.settings.fraud_device_reuse_limit

        if count >= limit:
            result.is_valid = False
            result.risk_level = RiskLevel.HIGH
            result.reasons.append(f"Device already used by {count} accounts")
            result.actions.append(FraudAction(FraudActionType.BLOCK, "Block registrations from device"))
        elif count >= _medium_threshold(limit):
            result.risk_level = RiskLevel.MEDIUM
            result.reasons.append(f"Device shared by {count} accounts")
            result.actions.append(FraudAction(FraudActionType.REVIEW, "Review device usage"))

        return result

    async def check_self_invitation(
        self,
        inviter_id: uuid.UUID,
        invitee_email: str,
        ip_address: Optional[str],
    ) -> FraudCheckResult:
        """Detect an inviter signing up a second account of their own."""
        result = FraudCheckResult()

        inviter = await self.db.get(User, inviter_id)
        if inviter is None:
            result.is_valid = False
            result.risk_level = RiskLevel.HIGH
            result.reasons.append("Inviter does not exist")
            return result

        if inviter.email.lower() == invitee_email.lower():
            result.is_valid = False
            result.risk_level = RiskLevel.HIGH
            result.reasons.append("Inviter and invitee share an email address")
            result.actions.append(FraudAction(FraudActionType.BLOCK, "Reject self-invitation"))
            return result

        if ip_address and inviter.registration_ip == ip_address:
            result.is_valid = False
            result.risk_level = RiskLevel.HIGH
            result.reasons.append("Inviter and invitee registered from the same IP")
            result.actions.append(FraudAction(FraudActionType.BLOCK, "Reject self-invitation"))
            return result

        if emails_look_alike(inviter.email, invitee_email):
            result.is_valid = False
            result.risk_level = RiskLevel.MEDIUM
            result.reasons.append("Invitee email closely resembles the inviter's")
            result.actions.append(FraudAction(FraudActionType.REVIEW, "Review possible self-invitation"))

        return result

    async def check_batch_registration(self, attempt: RegistrationAttempt) -> FraudCheckResult:
        """Bursts of sign-ups sharing an IP, user agent or email domain."""
        result = FraudCheckResult()
        since = attempt.timestamp - timedelta(seconds=self.settings.fraud_batch_window_seconds)
        threshold = self.settings.fraud_batch_count_threshold

        async def count_where(*conditions) -> int:
            count_result = await self.db.execute(
                select(func.count(User.id)).where(and_(User.created_at >= since, *conditions))
            )
            return count_result.scalar() or 0

        suspicious = []
        if attempt.ip_address and await count_where(User.registration_ip == attempt.ip_address) >= threshold:
            suspicious.append("IP address")
        if attempt.user_agent and await count_where(
            User.registration_user_agent == attempt.user_agent
        ) >= threshold:
            suspicious.append("user agent")
        domain_pattern = f"%@{escape_like(attempt.email_domain)}"
        if await count_where(User.email.ilike(domain_pattern, escape="\\")) >= threshold * 2:
            suspicious.append("email domain")

        if len(suspicious) >= 2:
            result.is_valid = False
            result.risk_level = RiskLevel.HIGH
            result.reasons.append(f"Batch registration detected (shared {', '.join(suspicious)})")
            result.actions.append(
                FraudAction(FraudActionType.BLOCK, "Block batch registration", duration_minutes=60)
            )
        elif suspicious:
            result.risk_level = RiskLevel.MEDIUM
            result.reasons.append(f"Possible batch registration (shared {suspicious[0]})")
            result.actions.append(FraudAction(FraudActionType.MONITOR, "Monitor registration burst"))

        return result

    async def assess_registration_risk(
        self,
        attempt: RegistrationAttempt,
        inviter_id: Optional[uuid.UUID] = None,
    ) -> FraudCheckResult:
        """Run every registration check and combine them into one verdict."""
        checks = [
            await self.check_ip_frequency(attempt.ip_address),
            await self.check_batch_registration(attempt),
        ]
        if attempt.device is not None:
            checks.append(await self.check_device_fingerprint(compute_fingerprint_hash(attempt.device)))
        if inviter_id is not None:
            checks.append(await self.check_self_invitation(inviter_id, attempt.email, attempt.ip_address))

        combined = FraudCheckResult()
        for check in checks:
            combined.reasons.extend(check.reasons)
            combined.actions.extend(check.actions)

        medium_count = sum(1 for c in checks if c.risk_level == RiskLevel.MEDIUM)
        if any(not c.is_valid or c.risk_level == RiskLevel.HIGH for c in checks) or medium_count >= 2:
            combined.is_valid = False
            combined.risk_level = RiskLevel.HIGH
        elif medium_count == 1:
            combined.risk_level = RiskLevel.MEDIUM

        if combined.risk_level != RiskLevel.LOW:
            await self.record_suspicious_activity(
                SuspiciousActivityType.PATTERN_ANOMALY,
                "; ".join(combined.reasons) or "Registration risk detected",
                combined.risk_level,
                ip_address=attempt.ip_address,
                details={
                    "email": attempt.email,
                    "invite_code": attempt.invite_code,
                    "inviter_id": str(inviter_id) if inviter_id else None,
                    "assessment": combined.to_dict(),
                },
            )
            logger.warning(
                f"Registration risk {combined.risk_level.value} for {attempt.email} "
                f"from {attempt.ip_address}: {combined.reasons}"
            )

        return combined

    async def record_device_fingerprint(self, user_id: uuid.UUID, device: DeviceInfo) -> DeviceFingerprint:
        fingerprint = DeviceFingerprint(
            user_id=user_id,
            fingerprint_hash=compute_fingerprint_hash(device),
            user_agent=device.user_agent or None,
            screen_resolution=device.screen_resolution or None,
            timezone=device.timezone or None,
            language=device.language or None,
            platform=device.platform or None,
        )
        self.db.add(fingerprint)
        await self.db.commit()
        return fingerprint

    # -------------------------------------------------------------------------
    # Risk profile and bans
    # -------------------------------------------------------------------------

    async def record_suspicious_activity(
        self,
        activity_type: SuspiciousActivityType,
        description: str,
        severity: RiskLevel,
        user_id: Optional[uuid.UUID] = None,
        ip_address: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> SuspiciousActivity:
        activity = SuspiciousActivity(
            user_id=user_id,
            ip_address=ip_address,
            type=activity_type,
            description=description,
            severity=severity,
            details=details,
        )
        self.db.add(activity)
        await self.db.commit()
        return activity

    async def list_suspicious_activities(
        self,
        user_id: Optional[uuid.UUID] = None,
        limit: int = 50,
    ) -> List[SuspiciousActivity]:
        query = select(SuspiciousActivity).order_by(SuspiciousActivity.created_at.desc()).limit(limit)
        if user_id is not None:
            query = query.where(SuspiciousActivity.user_id == user_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_user_risk_level(self, user_id: uuid.UUID) -> RiskLevel:
        profile = await self.db.get(UserRiskProfile, user_id)
        return profile.risk_level if profile else RiskLevel.LOW

    async def update_user_risk_level(
        self,
        user_id: uuid.UUID,
        risk_level: RiskLevel,
        reason: Optional[str] = None,
    ) -> UserRiskProfile:
        profile = await self.db.get(UserRiskProfile, user_id)
        if profile is None:
            profile = UserRiskProfile(user_id=user_id, risk_level=risk_level, reason=reason)
            self.db.add(profile)
        else:
            profile.risk_level = risk_level
            profile.reason = reason
            profile.updated_at = datetime.utcnow()

        await self.db.commit()
        logger.info(f"Risk level for user {user_id} set to {risk_level.value}")
        return profile

    async def is_user_banned(self, user_id: uuid.UUID) -> bool:
        now = datetime.utcnow()
        result = await self.db.execute(
            select(func.count(UserBan.id)).where(
                and_(
                    UserBan.user_id == user_id,
                    UserBan.is_active == True,
                    (UserBan.expires_at.is_(None)) | (UserBan.expires_at > now),
                )
            )
        )
        return (result.scalar() or 0) > 0

    async def ban_user(
        self,
        user_id: uuid.UUID,
        reason: str,
        duration_minutes: Optional[int] = None,
    ) -> UserBan:
        """Ban a user from the referral program; permanent without a duration."""
        expires_at = None
        if duration_minutes:
            expires_at = datetime.utcnow() + timedelta(minutes=duration_minutes)

        ban = UserBan(user_id=user_id, reason=reason, expires_at=expires_at)
        self.db.add(ban)
        await self.update_user_risk_level(user_id, RiskLevel.HIGH, reason)

        logger.warning(f"Banned user {user_id}: {reason} (until {expires_at or 'forever'})")
        return ban

    async def lift_ban(self, user_id: uuid.UUID) -> int:
        result = await self.db.execute(
            update(UserBan)
            .where(and_(UserBan.user_id == user_id, UserBan.is_active == True))
            .values(is_active=False)
        )
        await self.db.commit()

        lifted = result.rowcount or 0
        logger.info(f"Lifted {lifted} ban(s) for user {user_id}")
        return lifted

    # -------------------------------------------------------------------------
    # Anomaly alerts
    # -------------------------------------------------------------------------

    async def create_alert(
        self,
        user_id: uuid.UUID,
        alert_type: AlertType,
        severity: AlertSeverity,
        description: str,
        evidence: Optional[dict[str, Any]] = None,
    ) -> AnomalyAlert:
        alert = AnomalyAlert(
            user_id=user_id,
            alert_type=alert_type,
            severity=severity,
            description=description,
            evidence=evidence,
        )
        self.db.add(alert)
        await self.db.commit()

        logger.warning(f"{severity.value} {alert_type.value} alert for user {user_id}: {description}")
        return alert

    async def detect_velocity_anomaly(self, user_id: uuid.UUID) -> Optional[AnomalyAlert]:
        """Alert when a user's codes collect sign-ups at an inhuman rate."""
        since = datetime.utcnow() - timedelta(hours=VELOCITY_LOOKBACK_HOURS)
        result = await self.db.execute(
            select(InviteRegistration.registered_at)
            .where(
                and_(
                    InviteRegistration.inviter_id == user_id,
                    InviteRegistration.registered_at >= since,
                )
            )
            .order_by(InviteRegistration.registered_at.asc())
        )
        timestamps = list(result.scalars().all())

        if len(timestamps) < VELOCITY_MIN_REGISTRATIONS:
            return None

        # Floor the span at one minute so a same-instant burst has a finite rate
        span_seconds = max((timestamps[-1] - timestamps[0]).total_seconds(), 60.0)
        velocity = len(timestamps) / (span_seconds / 3600)

        if velocity <= VELOCITY_MAX_PER_HOUR:
            return None

        return await self.create_alert(
            user_id,
            AlertType.VELOCITY_SPIKE,
            AlertSeverity.HIGH,
            f"Unusually fast invite activity: {velocity:.2f} registrations/hour",
            {
                "velocity": round(velocity, 2),
                "registration_count": len(timestamps),
                "time_span_seconds": span_seconds,
            },
        )

    async def list_alerts(
        self,
        severity: Optional[AlertSeverity] = None,
        status: Optional[AlertStatus] = None,
        limit: int = 50,
    ) -> List[AnomalyAlert]:
        query = select(AnomalyAlert).order_by(AnomalyAlert.created_at.desc()).limit(limit)
        if severity is not None:
            query = query.where(AnomalyAlert.severity == severity)
        if status is not None:
            query = query.where(AnomalyAlert.status == status)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def resolve_alert(
        self,
        alert_id: uuid.UUID,
        resolved_by: uuid.UUID,
        false_positive: bool = False,
    ) -> AnomalyAlert:
        alert = await self.db.get(AnomalyAlert, alert_id)
        if alert is None:
            raise FraudError("Alert not found", "not_found")

        alert.status = AlertStatus.FALSE_POSITIVE if false_positive else AlertStatus.RESOLVED
        alert.resolved_at = datetime.utcnow()
        alert.resolved_by_id = resolved_by
        await self.db.commit()
        return alert

    # -------------------------------------------------------------------------
    # Manual review
    # -------------------------------------------------------------------------

    async def create_review_case(
        self,
        user_id: uuid.UUID,
        case_type: ReviewCaseType,
        evidence: Optional[List[dict[str, Any]]] = None,
        priority: str = "medium",
    ) -> ReviewCase:
        case = ReviewCase(
            user_id=user_id,
            case_type=case_type,
            priority=priority,
            evidence=evidence or [],
        )
        self.db.add(case)
        await self.db.commit()

        logger.info(f"Opened {case_type.value} review case for user {user_id}")
        return case

    async def list_review_cases(
        self,
        status: Optional[ReviewCaseStatus] = None,
        limit: int = 50,
    ) -> List[ReviewCase]:
        query = select(ReviewCase).order_by(ReviewCase.created_at.desc()).limit(limit)
        if status is not None:
            query = query.where(ReviewCase.status == status)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def decide_review_case(
        self,
        case_id: uuid.UUID,
        action: ReviewAction,
        reason: str,
        reviewer_id: uuid.UUID,
    ) -> ReviewCase:
        """Close a review case and apply the chosen action.

        Raises:
            FraudError: If the case is unknown or already decided
        """
        case = await self.db.get(ReviewCase, case_id)
        if case is None:
            raise FraudError("Review case not found", "not_found")
        if not case.is_open:
            raise FraudError("Review case already decided", "case_closed")

        if action == ReviewAction.FREEZE:
            await self.freeze_account(case.user_id, reason, reviewer_id)
        elif action == ReviewAction.BAN:
            await self.ban_user(case.user_id, reason)
        elif action == ReviewAction.RECOVER_REWARDS:
            await self.recover_rewards(case.user_id, reason)

        case.status = ReviewCaseStatus.APPROVED if action == ReviewAction.APPROVE else ReviewCaseStatus.REJECTED
        case.decision_action = action
        case.decision_reason = reason
        case.decided_by_id = reviewer_id
        case.decided_at = datetime.utcnow()
        await self.db.commit()

        logger.info(f"Review case {case_id} decided: {action.value} by {reviewer_id}")
        return case

    # -------------------------------------------------------------------------
    # Freezes and recovery
    # -------------------------------------------------------------------------

    async def get_active_freeze(self, user_id: uuid.UUID) -> Optional[AccountFreeze]:
        now = datetime.utcnow()
        result = await self.db.execute(
            select(AccountFreeze)
            .where(
                and_(
                    AccountFreeze.user_id == user_id,
                    AccountFreeze.is_active == True,
                    (AccountFreeze.expires_at.is_(None)) | (AccountFreeze.expires_at > now),
                )
            )
            .order_by(AccountFreeze.created_at.desc())
        )
        return result.scalars().first()

    async def is_account_frozen(self, user_id: uuid.UUID) -> bool:
        return await self.get_active_freeze(user_id) is not None

    async def is_restricted(self, user_id: uuid.UUID) -> bool:
        """Banned or frozen users take no part in the referral program."""
        return await self.is_user_banned(user_id) or await self.is_account_frozen(user_id)

    async def freeze_account(
        self,
        user_id: uuid.UUID,
        reason: str,
        frozen_by: Optional[uuid.UUID] = None,
        duration_days: Optional[int] = None,
    ) -> AccountFreeze:
        freeze = AccountFreeze(
            user_id=user_id,
            reason=reason,
            frozen_features=["invite", "rewards"],
            created_by_id=frozen_by,
            expires_at=datetime.utcnow() + timedelta(days=duration_days) if duration_days else None,
        )
        self.db.add(freeze)
        await self.db.commit()

        logger.warning(f"Froze referral features for user {user_id}: {reason}")

        await get_notification_service(self.db).send_notification(
            user_id,
            NotificationType.ACCOUNT_FROZEN,
            "Referral features frozen",
            f"Your invitation and reward features are frozen pending review: {reason}",
        )
        return freeze

    async def unfreeze_account(self, user_id: uuid.UUID) -> int:
        result = await self.db.execute(
            update(AccountFreeze)
            .where(and_(AccountFreeze.user_id == user_id, AccountFreeze.is_active == True))
            .values(is_active=False)
        )
        await self.db.commit()
        return result.rowcount or 0

    async def recover_rewards(self, user_id: uuid.UUID, reason: str = "Fraud review") -> int:
        """Revoke unspent invite and milestone credits.

        Returns:
            Number of credits recovered
        """
        recovered = await get_credit_service(self.db).revoke_credits(
            user_id,
            [CreditSource.INVITE_REWARD, CreditSource.MILESTONE_REWARD],
            reason,
        )

        if recovered:
            profile = await self.db.get(UserRiskProfile, user_id)
            if profile is None:
                profile = UserRiskProfile(user_id=user_id, risk_level=RiskLevel.LOW, recovered_credits=0)
                self.db.add(profile)
            profile.recovered_credits += recovered
            await self.db.commit()

        logger.warning(f"Recovered {recovered} reward credits from user {user_id}")
        return recovered

    async def get_account_status(self, user_id: uuid.UUID) -> dict[str, Any]:
        freeze = await self.get_active_freeze(user_id)

        profile = await self.db.get(UserRiskProfile, user_id)
        open_cases_result = await self.db.execute(
            select(func.count(ReviewCase.id)).where(
                and_(
                    ReviewCase.user_id == user_id,
                    ReviewCase.status.in_([ReviewCaseStatus.PENDING, ReviewCaseStatus.IN_REVIEW]),
                )
            )
        )

        return {
            "user_id": str(user_id),
            "is_frozen": freeze is not None,
            "freeze_reason": freeze.reason if freeze else None,
            "is_banned": await self.is_user_banned(user_id),
            "risk_level": (await self.get_user_risk_level(user_id)).value,
            "recovered_credits": profile.recovered_credits if profile else 0,
            "active_review_cases": open_cases_result.scalar() or 0,
        }


def get_fraud_service(db: AsyncSession) -> FraudService:
    """Get a fraud service instance."""
    return FraudService(db)
