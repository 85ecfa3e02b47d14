"""Referral analytics API routes."""

from typing import Any, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db.models import User
from services.analytics_service import get_analytics_service, TimePeriod
from dependencies import get_current_user, require_admin


router = APIRouter()


class LeaderboardEntryResponse(BaseModel):
    rank: int
    user_id: str
    username: str
    invite_count: int
    total_credits: int


@router.get("/report")
async def get_my_report(
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, Any]:
    """Invite stats, recent invitees and rewards over the last ``days``."""
    return await get_analytics_service(db).generate_invite_report(current_user.id, TimePeriod.last_days(days))


@router.get("/trend")
async def get_my_trend(
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[dict[str, Any]]:
    return await get_analytics_service(db).get_trend_data(current_user.id, days=days)


@router.get("/leaderboard", response_model=List[LeaderboardEntryResponse])
async def get_leaderboard(
    days: int = Query(30, ge=1, le=365),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Public ranking of inviters by registrations brought in."""
    entries = await get_analytics_service(db).get_invite_leaderboard(TimePeriod.last_days(days), limit=limit)
    return [
        LeaderboardEntryResponse(
            rank=e.rank,
            user_id=str(e.user_id),
            username=e.username,
            invite_count=e.invite_count,
            total_credits=e.total_credits,
        )
        for e in entries
    ]


@router.get("/platform")
async def get_platform_stats(
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
) -> dict[str, Any]:
    stats = await get_analytics_service(db).get_platform_stats(TimePeriod.last_days(days))
    for entry in stats["top_inviters"]:
        entry["user_id"] = str(entry["user_id"])
    return stats


@router.get("/conversion")
async def get_conversion_stats(
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
) -> List[dict[str, Any]]:
    return await get_analytics_service(db).get_conversion_stats(TimePeriod.last_days(days))
