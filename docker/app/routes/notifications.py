"""In-app notification API routes."""

from typing import Dict, List, Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db.models import User, NotificationType
from services.notification_service import get_notification_service
from dependencies import get_current_user
from models import MessageResponse, NotificationResponse


router = APIRouter()


class UnreadCountResponse(BaseModel):
    unread: int


class ChannelPreference(BaseModel):
    in_app: Optional[bool] = None
    email: Optional[bool] = None


class UpdatePreferencesRequest(BaseModel):
    preferences: Dict[NotificationType, ChannelPreference]


@router.get("", response_model=List[NotificationResponse])
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    notifications = await get_notification_service(db).get_user_notifications(
        current_user.id, unread_only=unread_only, limit=limit, offset=offset
    )
    return [NotificationResponse.from_notification(n) for n in notifications]


@router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return UnreadCountResponse(unread=await get_notification_service(db).get_unread_count(current_user.id))


@router.post("/read-all", response_model=MessageResponse)
async def mark_all_read(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    count = await get_notification_service(db).mark_all_as_read(current_user.id)
    return MessageResponse(message=f"Marked {count} notifications as read")


@router.get("/preferences", response_model=Dict[str, Dict[str, bool]])
async def get_preferences(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await get_notification_service(db).get_user_preferences(current_user.id)


@router.put("/preferences", response_model=Dict[str, Dict[str, bool]])
async def update_preferences(
    data: UpdatePreferencesRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Change delivery channels per notification type. Omitted channels are kept."""
    preferences = {
        notification_type.value: channels.model_dump(exclude_none=True)
        for notification_type, channels in data.preferences.items()
    }
    return await get_notification_service(db).update_user_preferences(current_user.id, preferences)


@router.post("/{notification_id}/read", response_model=MessageResponse)
async def mark_read(
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if not await get_notification_service(db).mark_as_read(notification_id, current_user.id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found",
        )
    return MessageResponse(message="Notification marked as read")
