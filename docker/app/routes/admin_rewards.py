"""Reward program administration (admin only).

Reward bundles per event, the badge and title catalogue, and the periodic
maintenance sweeps a scheduler calls.
"""

from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db.models import User, RewardType, BadgeCategory, BadgeRarity, InviteEventType
from services.reward_engine import get_reward_engine, Reward, RewardError
from services.badge_service import get_badge_service, BadgeError
from services.credit_service import get_credit_service
from services.notification_service import get_notification_service
from dependencies import require_admin, service_http_error
from models import MessageResponse
from routes.badges import BadgeResponse, TitleResponse


router = APIRouter()

_CONFIGURABLE_EVENTS = (InviteEventType.USER_REGISTERED.value, InviteEventType.USER_ACTIVATED.value)


class RewardItem(BaseModel):
    reward_type: RewardType
    description: str = Field(..., min_length=1, max_length=500)
    amount: Optional[int] = Field(default=None, gt=0)
    badge_id: Optional[str] = None
    title_id: Optional[str] = None


class RewardConfigResponse(BaseModel):
    event_type: str
    rewards: List[RewardItem]
    conditions: dict[str, Any]


class UpdateRewardConfigRequest(BaseModel):
    rewards: List[RewardItem]
    conditions: Optional[dict[str, Any]] = None
    is_active: bool = True


class Requirement(BaseModel):
    type: str
    value: int = Field(..., ge=0)


class BadgeRequest(BaseModel):
    id: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9_]+$")
    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    category: BadgeCategory = BadgeCategory.INVITER
    rarity: BadgeRarity = BadgeRarity.COMMON
    requirements: List[Requirement] = Field(default_factory=list)
    icon_url: Optional[str] = None


class UpdateBadgeRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[BadgeCategory] = None
    rarity: Optional[BadgeRarity] = None
    requirements: Optional[List[Requirement]] = None
    icon_url: Optional[str] = None
    is_active: Optional[bool] = None


class TitleRequest(BaseModel):
    id: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9_]+$")
    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    color: str = Field(default="#6366f1", pattern=r"^#[0-9a-fA-F]{6}$")
    requirements: List[Requirement] = Field(default_factory=list)


class UpdateTitleRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = Field(default=None, pattern=r"^#[0-9a-fA-F]{6}$")
    requirements: Optional[List[Requirement]] = None
    is_active: Optional[bool] = None


class SweepResponse(BaseModel):
    processed: int
    message: str


def _check_event_type(event_type: str) -> None:
    if event_type not in _CONFIGURABLE_EVENTS:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown reward event '{event_type}'",
        )


async def _config_response(db: AsyncSession, event_type: str) -> RewardConfigResponse:
    engine = get_reward_engine(db)
    rewards = await engine.get_reward_config(event_type)
    return RewardConfigResponse(
        event_type=event_type,
        rewards=[
            RewardItem(
                reward_type=r.reward_type,
                description=r.description,
                amount=r.amount,
                badge_id=r.badge_id,
                title_id=r.title_id,
            )
            for r in rewards
        ],
        conditions=await engine.get_reward_conditions(event_type),
    )


# =============================================================================
# Reward configuration
# =============================================================================


@router.get("/configs", response_model=List[RewardConfigResponse])
async def list_reward_configs(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Effective reward bundle per event (defaults where nothing is stored)."""
    return [await _config_response(db, event_type) for event_type in _CONFIGURABLE_EVENTS]


@router.put("/configs/{event_type}", response_model=RewardConfigResponse)
async def update_reward_config(
    event_type: str,
    data: UpdateRewardConfigRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    _check_event_type(event_type)

    rewards = [Reward(**item.model_dump()) for item in data.rewards]
    try:
        await get_reward_engine(db).update_reward_config(
            event_type, rewards, conditions=data.conditions, is_active=data.is_active
        )
    except RewardError as e:
        raise service_http_error(e)

    return await _config_response(db, event_type)


# =============================================================================
# Badge and title catalogue
# =============================================================================


@router.get("/badges", response_model=List[BadgeResponse])
async def list_all_badges(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    badges = await get_badge_service(db).list_badges(include_inactive=True)
    return [BadgeResponse.from_badge(b) for b in badges]


@router.post("/badges", response_model=BadgeResponse, status_code=status.HTTP_201_CREATED)
async def create_badge(
    data: BadgeRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    try:
        badge = await get_badge_service(db).create_badge(
            badge_id=data.id,
            name=data.name,
            description=data.description,
            category=data.category,
            rarity=data.rarity,
            requirements=[r.model_dump() for r in data.requirements],
            icon_url=data.icon_url,
        )
    except BadgeError as e:
        raise service_http_error(e)
    return BadgeResponse.from_badge(badge)


@router.patch("/badges/{badge_id}", response_model=BadgeResponse)
async def update_badge(
    badge_id: str,
    data: UpdateBadgeRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    fields = data.model_dump(exclude_none=True)
    try:
        badge = await get_badge_service(db).update_badge(badge_id, **fields)
    except BadgeError as e:
        raise service_http_error(e)
    return BadgeResponse.from_badge(badge)


@router.delete("/badges/{badge_id}", response_model=MessageResponse)
async def delete_badge(
    badge_id: str,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    if not await get_badge_service(db).delete_badge(badge_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Badge not found",
        )
    return MessageResponse(message="Badge deleted")


@router.get("/titles", response_model=List[TitleResponse])
async def list_all_titles(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    titles = await get_badge_service(db).list_titles(include_inactive=True)
    return [TitleResponse.from_title(t) for t in titles]


@router.post("/titles", response_model=TitleResponse, status_code=status.HTTP_201_CREATED)
async def create_title(
    data: TitleRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    try:
        title = await get_badge_service(db).create_title(
            title_id=data.id,
            name=data.name,
            description=data.description,
            color=data.color,
            requirements=[r.model_dump() for r in data.requirements],
        )
    except BadgeError as e:
        raise service_http_error(e)
    return TitleResponse.from_title(title)


@router.patch("/titles/{title_id}", response_model=TitleResponse)
async def update_title(
    title_id: str,
    data: UpdateTitleRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    fields = data.model_dump(exclude_none=True)
    try:
        title = await get_badge_service(db).update_title(title_id, **fields)
    except BadgeError as e:
        raise service_http_error(e)
    return TitleResponse.from_title(title)


@router.delete("/titles/{title_id}", response_model=MessageResponse)
async def delete_title(
    title_id: str,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    if not await get_badge_service(db).delete_title(title_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Title not found",
        )
    return MessageResponse(message="Title deleted")


# =============================================================================
# Maintenance sweeps
# =============================================================================


@router.post("/sweeps/expire-credits", response_model=SweepResponse)
async def expire_credits(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    count = await get_credit_service(db).expire_credits()
    return SweepResponse(processed=count, message=f"Expired {count} credit lines")


@router.post("/sweeps/expiring-codes", response_model=SweepResponse)
async def notify_expiring_codes(
    days_ahead: int = Query(3, ge=1, le=30),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    count = await get_notification_service(db).notify_expiring_codes(days_ahead=days_ahead)
    return SweepResponse(processed=count, message=f"Sent {count} expiry reminders")


@router.post("/sweeps/cleanup-notifications", response_model=SweepResponse)
async def cleanup_notifications(
    days_to_keep: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    count = await get_notification_service(db).cleanup_expired_notifications(days_to_keep=days_to_keep)
    return SweepResponse(processed=count, message=f"Deleted {count} old notifications")
