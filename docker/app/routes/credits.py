"""Credit balance and spending API routes.

Credits are spent soonest-expiring first. A spend that exceeds the
available balance is refused with 402 and leaves the ledger untouched.
"""

from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db.models import User
from services.credit_service import get_credit_service, CreditError
from dependencies import get_current_user, service_http_error
from models import CreditRecordResponse


router = APIRouter()


class BalanceResponse(BaseModel):
    total_earned: int
    total_used: int
    total_expired: int
    available_credits: int
    expiring_credits: int
    last_updated: datetime


class UsageResponse(BaseModel):
    id: str
    amount: int
    purpose: str
    metadata: Optional[dict[str, Any]] = None
    created_at: datetime


class ConsumeRequest(BaseModel):
    amount: int = Field(..., gt=0)
    purpose: str = Field(..., min_length=1, max_length=255)
    metadata: Optional[dict[str, Any]] = None


class CreditStatsResponse(BaseModel):
    total_earned: int
    total_used: int
    total_expired: int
    average_daily: float
    top_sources: List[dict]


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    balance = await get_credit_service(db).get_user_balance(current_user.id)
    return BalanceResponse(
        total_earned=balance.total_earned,
        total_used=balance.total_used,
        total_expired=balance.total_expired,
        available_credits=balance.available_credits,
        expiring_credits=balance.expiring_credits,
        last_updated=balance.last_updated,
    )


@router.get("/history", response_model=List[CreditRecordResponse])
async def get_credit_history(
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    records = await get_credit_service(db).get_user_credit_history(current_user.id, limit=limit)
    return [CreditRecordResponse.from_record(r) for r in records]


@router.get("/usage", response_model=List[UsageResponse])
async def get_usage_history(
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    usages = await get_credit_service(db).get_credit_usage_history(current_user.id, limit=limit)
    return [
        UsageResponse(
            id=str(u.id),
            amount=u.amount,
            purpose=u.purpose,
            metadata=u.usage_metadata,
            created_at=u.created_at,
        )
        for u in usages
    ]


@router.post("/consume", response_model=BalanceResponse)
async def consume_credits(
    data: ConsumeRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Spend credits and return the new balance."""
    credit_service = get_credit_service(db)

    try:
        spent = await credit_service.use_credits(current_user.id, data.amount, data.purpose, data.metadata)
    except CreditError as e:
        raise service_http_error(e)

    if not spent:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={"message": "Insufficient credits", "code": "insufficient_credits"},
        )

    return await get_balance(db, current_user)


@router.get("/expiring", response_model=List[CreditRecordResponse])
async def get_expiring_credits(
    days: Optional[int] = Query(None, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    records = await get_credit_service(db).get_expiring_credits(current_user.id, days=days)
    return [CreditRecordResponse.from_record(r) for r in records]


@router.get("/stats", response_model=CreditStatsResponse)
async def get_credit_stats(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    stats = await get_credit_service(db).get_credit_stats(current_user.id)
    return CreditStatsResponse(
        total_earned=stats.total_earned,
        total_used=stats.total_used,
        total_expired=stats.total_expired,
        average_daily=stats.average_daily,
        top_sources=stats.top_sources,
    )
