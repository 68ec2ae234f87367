"""
Notification API Endpoints
Lists in-app notifications (drafted content announcements) and marks them read.
"""
from typing import List
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from voice_actions.dependencies.services import get_notification_store
from voice_actions.models import Notification
from voice_actions.services.notifications import NotificationStore

logger = logging.getLogger("voice_actions.notifications_api")

router = APIRouter(prefix="/v1/notifications", tags=["notifications"])


class NotificationListResponse(BaseModel):
    user_id: str
    notifications: List[Notification]


class MarkReadResponse(BaseModel):
    id: str
    read: bool


@router.get("", response_model=NotificationListResponse)
def list_notifications(
    user_id: str = Query(..., description="User identifier"),
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    store: NotificationStore = Depends(get_notification_store),
) -> NotificationListResponse:
    items = store.list_for_user(user_id, unread_only=unread_only, limit=limit)
    logger.info("[notifications.api.list] user_id=%s count=%s", user_id, len(items))
    return NotificationListResponse(user_id=user_id, notifications=items)


@router.post("/{notification_id}/read", response_model=MarkReadResponse)
def mark_read(
    notification_id: str,
    user_id: str = Query(..., description="User identifier"),
    store: NotificationStore = Depends(get_notification_store),
) -> MarkReadResponse:
    if not store.mark_read(user_id, notification_id):
        raise HTTPException(status_code=404, detail=f"Notification not found: {notification_id}")
    return MarkReadResponse(id=notification_id, read=True)
