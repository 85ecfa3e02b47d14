"""Badge and title API routes."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db.models import User, Badge, Title, UserBadge, UserTitle
from services.badge_service import get_badge_service, BadgeError, MAX_DISPLAYED_BADGES
from dependencies import get_current_user, service_http_error


router = APIRouter()


class BadgeResponse(BaseModel):
    id: str
    name: str
    description: str
    icon_url: Optional[str] = None
    category: str
    rarity: str
    requirements: List[dict]

    @classmethod
    def from_badge(cls, badge: Badge) -> "BadgeResponse":
        return cls(
            id=badge.id,
            name=badge.name,
            description=badge.description,
            icon_url=badge.icon_url,
            category=badge.category.value,
            rarity=badge.rarity.value,
            requirements=badge.requirements or [],
        )


class TitleResponse(BaseModel):
    id: str
    name: str
    description: str
    color: str
    requirements: List[dict]

    @classmethod
    def from_title(cls, title: Title) -> "TitleResponse":
        return cls(
            id=title.id,
            name=title.name,
            description=title.description,
            color=title.color,
            requirements=title.requirements or [],
        )


class UserBadgeResponse(BaseModel):
    badge: BadgeResponse
    earned_at: datetime
    is_displayed: bool

    @classmethod
    def from_user_badge(cls, user_badge: UserBadge) -> "UserBadgeResponse":
        return cls(
            badge=BadgeResponse.from_badge(user_badge.badge),
            earned_at=user_badge.earned_at,
            is_displayed=user_badge.is_displayed,
        )


class UserTitleResponse(BaseModel):
    title: TitleResponse
    earned_at: datetime
    is_active: bool

    @classmethod
    def from_user_title(cls, user_title: UserTitle) -> "UserTitleResponse":
        return cls(
            title=TitleResponse.from_title(user_title.title),
            earned_at=user_title.earned_at,
            is_active=user_title.is_active,
        )


class DisplayBadgesRequest(BaseModel):
    badge_ids: List[str] = Field(default_factory=list, max_length=MAX_DISPLAYED_BADGES)


class ActiveTitleRequest(BaseModel):
    title_id: str


class CheckResponse(BaseModel):
    new_badges: List[UserBadgeResponse]
    new_titles: List[UserTitleResponse]


@router.get("", response_model=List[BadgeResponse])
async def list_badges(
    db: AsyncSession = Depends(get_db),
):
    """Public badge catalogue."""
    badges = await get_badge_service(db).list_badges()
    return [BadgeResponse.from_badge(b) for b in badges]


@router.get("/titles", response_model=List[TitleResponse])
async def list_titles(
    db: AsyncSession = Depends(get_db),
):
    titles = await get_badge_service(db).list_titles()
    return [TitleResponse.from_title(t) for t in titles]


@router.get("/me", response_model=List[UserBadgeResponse])
async def get_my_badges(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    user_badges = await get_badge_service(db).get_user_badges(current_user.id)
    return [UserBadgeResponse.from_user_badge(ub) for ub in user_badges]


@router.put("/me/display", response_model=List[UserBadgeResponse])
async def set_displayed_badges(
    data: DisplayBadgesRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Pick up to three owned badges to show on the profile."""
    try:
        shown = await get_badge_service(db).set_displayed_badges(current_user.id, data.badge_ids)
    except BadgeError as e:
        raise service_http_error(e)
    return [UserBadgeResponse.from_user_badge(ub) for ub in shown]


@router.get("/me/titles", response_model=List[UserTitleResponse])
async def get_my_titles(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    user_titles = await get_badge_service(db).get_user_titles(current_user.id)
    return [UserTitleResponse.from_user_title(ut) for ut in user_titles]


@router.get("/me/titles/active", response_model=UserTitleResponse)
async def get_my_active_title(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    active = await get_badge_service(db).get_active_title(current_user.id)
    if active is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active title",
        )
    return UserTitleResponse.from_user_title(active)


@router.put("/me/titles/active", response_model=UserTitleResponse)
async def set_my_active_title(
    data: ActiveTitleRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        active = await get_badge_service(db).set_active_title(current_user.id, data.title_id)
    except BadgeError as e:
        raise service_http_error(e)
    return UserTitleResponse.from_user_title(active)


@router.post("/me/check", response_model=CheckResponse)
async def check_my_badges(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Award any badges and titles whose requirements are now met."""
    badge_service = get_badge_service(db)
    new_badges = await badge_service.check_and_award_badges(current_user.id)
    new_titles = await badge_service.check_and_award_titles(current_user.id)
    return CheckResponse(
        new_badges=[UserBadgeResponse.from_user_badge(ub) for ub in new_badges],
        new_titles=[UserTitleResponse.from_user_title(ut) for ut in new_titles],
    )
