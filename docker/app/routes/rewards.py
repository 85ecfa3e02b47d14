"""Reward history API routes for the current user."""

from typing import List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db.models import User
from services.reward_engine import get_reward_engine
from dependencies import get_current_user
from models import RewardRecordResponse


router = APIRouter()


class RewardStatsResponse(BaseModel):
    total_credits: int
    total_badges: int
    total_titles: int
    recent_rewards: List[RewardRecordResponse]


@router.get("", response_model=List[RewardRecordResponse])
async def list_my_rewards(
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    records = await get_reward_engine(db).get_user_rewards(current_user.id, limit=limit)
    return [RewardRecordResponse.from_record(r) for r in records]


@router.get("/stats", response_model=RewardStatsResponse)
async def get_my_reward_stats(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    stats = await get_reward_engine(db).get_reward_stats(current_user.id)
    return RewardStatsResponse(
        total_credits=stats.total_credits,
        total_badges=stats.total_badges,
        total_titles=stats.total_titles,
        recent_rewards=[RewardRecordResponse.from_record(r) for r in stats.recent_rewards],
    )
