"""
Notifications API Routes
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List

from condohub.core.database import get_db
from condohub.core.security import get_current_user
from condohub.models import User
from condohub.schemas import NotificationResponse
from condohub.services.notification_service import NotificationService

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("", response_model=List[NotificationResponse])
async def list_notifications(
    unread_only: bool = False,
    limit: int = 50,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Current user's notifications, newest first"""
    return NotificationService(db).get_for_user(current_user.id, unread_only, limit)


@router.post("/{notification_id}/read")
async def mark_notification_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    if not NotificationService(db).mark_as_read(notification_id, current_user.id):
        raise HTTPException(status_code=404, detail="Notification not found")
    db.commit()
    return {"message": "Notification marked as read"}
