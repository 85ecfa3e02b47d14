"""Fraud administration API routes (admin only).

Suspicious activity, risk levels, bans, anomaly alerts, review cases,
account freezes and reward recovery.
"""

from datetime import datetime
from typing import Any, List, Optional
import uuid

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db.models import (
    User,
    RiskLevel,
    AlertSeverity,
    AlertStatus,
    AnomalyAlert,
    ReviewCase,
    ReviewCaseType,
    ReviewCaseStatus,
    ReviewAction,
)
from services.fraud_service import get_fraud_service, FraudError
from dependencies import require_admin, service_http_error
from models import MessageResponse


router = APIRouter()


class SuspiciousActivityResponse(BaseModel):
    id: str
    user_id: Optional[str] = None
    ip_address: Optional[str] = None
    type: str
    description: str
    severity: str
    details: Optional[dict[str, Any]] = None
    created_at: datetime


class RiskLevelRequest(BaseModel):
    risk_level: RiskLevel
    reason: Optional[str] = Field(default=None, max_length=1000)


class BanRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)
    duration_minutes: Optional[int] = Field(default=None, ge=1)


class FreezeRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)
    duration_days: Optional[int] = Field(default=None, ge=1)


class RecoverRequest(BaseModel):
    reason: str = Field(default="Fraud review", max_length=1000)


class AlertResponse(BaseModel):
    id: str
    user_id: str
    alert_type: str
    severity: str
    description: str
    evidence: Optional[dict[str, Any]] = None
    status: str
    created_at: datetime
    resolved_at: Optional[datetime] = None

    @classmethod
    def from_alert(cls, alert: AnomalyAlert) -> "AlertResponse":
        return cls(
            id=str(alert.id),
            user_id=str(alert.user_id),
            alert_type=alert.alert_type.value,
            severity=alert.severity.value,
            description=alert.description,
            evidence=alert.evidence,
            status=alert.status.value,
            created_at=alert.created_at,
            resolved_at=alert.resolved_at,
        )


class ResolveAlertRequest(BaseModel):
    false_positive: bool = False


class ReviewCaseResponse(BaseModel):
    id: str
    user_id: str
    case_type: str
    priority: str
    status: str
    evidence: Optional[List[Any]] = None
    decision_action: Optional[str] = None
    decision_reason: Optional[str] = None
    decided_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_case(cls, case: ReviewCase) -> "ReviewCaseResponse":
        return cls(
            id=str(case.id),
            user_id=str(case.user_id),
            case_type=case.case_type.value,
            priority=case.priority,
            status=case.status.value,
            evidence=case.evidence,
            decision_action=case.decision_action.value if case.decision_action else None,
            decision_reason=case.decision_reason,
            decided_at=case.decided_at,
            created_at=case.created_at,
        )


class CreateReviewCaseRequest(BaseModel):
    user_id: uuid.UUID
    case_type: ReviewCaseType
    priority: str = Field(default="medium", pattern=r"^(low|medium|high|urgent)$")
    evidence: List[dict[str, Any]] = Field(default_factory=list)


class DecideReviewCaseRequest(BaseModel):
    action: ReviewAction
    reason: str = Field(..., min_length=1, max_length=1000)


@router.get("/activities", response_model=List[SuspiciousActivityResponse])
async def list_suspicious_activities(
    user_id: Optional[uuid.UUID] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    activities = await get_fraud_service(db).list_suspicious_activities(user_id=user_id, limit=limit)
    return [
        SuspiciousActivityResponse(
            id=str(a.id),
            user_id=str(a.user_id) if a.user_id else None,
            ip_address=a.ip_address,
            type=a.type.value,
            description=a.description,
            severity=a.severity.value,
            details=a.details,
            created_at=a.created_at,
        )
        for a in activities
    ]


@router.get("/users/{user_id}/status")
async def get_account_status(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
) -> dict[str, Any]:
    return await get_fraud_service(db).get_account_status(user_id)


@router.put("/users/{user_id}/risk", response_model=MessageResponse)
async def set_risk_level(
    user_id: uuid.UUID,
    data: RiskLevelRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    await get_fraud_service(db).update_user_risk_level(user_id, data.risk_level, data.reason)
    return MessageResponse(message=f"Risk level set to {data.risk_level.value}")


@router.post("/users/{user_id}/ban", response_model=MessageResponse)
async def ban_user(
    user_id: uuid.UUID,
    data: BanRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Ban a user from the referral program; permanent without a duration."""
    ban = await get_fraud_service(db).ban_user(user_id, data.reason, data.duration_minutes)
    until = ban.expires_at.isoformat() if ban.expires_at else "permanently"
    return MessageResponse(message=f"User banned {until}")


@router.delete("/users/{user_id}/ban", response_model=MessageResponse)
async def lift_ban(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    lifted = await get_fraud_service(db).lift_ban(user_id)
    return MessageResponse(message=f"Lifted {lifted} ban(s)")


@router.post("/users/{user_id}/freeze", response_model=MessageResponse)
async def freeze_account(
    user_id: uuid.UUID,
    data: FreezeRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    await get_fraud_service(db).freeze_account(user_id, data.reason, admin.id, data.duration_days)
    return MessageResponse(message="Referral features frozen")


@router.delete("/users/{user_id}/freeze", response_model=MessageResponse)
async def unfreeze_account(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    count = await get_fraud_service(db).unfreeze_account(user_id)
    return MessageResponse(message=f"Lifted {count} freeze(s)")


@router.post("/users/{user_id}/recover", response_model=MessageResponse)
async def recover_rewards(
    user_id: uuid.UUID,
    data: RecoverRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Take back unspent invite and milestone credits."""
    recovered = await get_fraud_service(db).recover_rewards(user_id, data.reason)
    return MessageResponse(message=f"Recovered {recovered} credits")


@router.get("/alerts", response_model=List[AlertResponse])
async def list_alerts(
    severity: Optional[AlertSeverity] = Query(None),
    alert_status: Optional[AlertStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    alerts = await get_fraud_service(db).list_alerts(severity=severity, status=alert_status, limit=limit)
    return [AlertResponse.from_alert(a) for a in alerts]


@router.post("/alerts/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(
    alert_id: uuid.UUID,
    data: ResolveAlertRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    try:
        alert = await get_fraud_service(db).resolve_alert(alert_id, admin.id, data.false_positive)
    except FraudError as e:
        raise service_http_error(e)
    return AlertResponse.from_alert(alert)


@router.get("/cases", response_model=List[ReviewCaseResponse])
async def list_review_cases(
    case_status: Optional[ReviewCaseStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    cases = await get_fraud_service(db).list_review_cases(status=case_status, limit=limit)
    return [ReviewCaseResponse.from_case(c) for c in cases]


@router.post("/cases", response_model=ReviewCaseResponse, status_code=status.HTTP_201_CREATED)
async def create_review_case(
    data: CreateReviewCaseRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    case = await get_fraud_service(db).create_review_case(
        data.user_id, data.case_type, evidence=data.evidence, priority=data.priority
    )
    return ReviewCaseResponse.from_case(case)


@router.post("/cases/{case_id}/decision", response_model=ReviewCaseResponse)
async def decide_review_case(
    case_id: uuid.UUID,
    data: DecideReviewCaseRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Close a case and apply its action (freeze, ban, recover rewards...)."""
    try:
        case = await get_fraud_service(db).decide_review_case(case_id, data.action, data.reason, admin.id)
    except FraudError as e:
        raise service_http_error(e)
    return ReviewCaseResponse.from_case(case)
