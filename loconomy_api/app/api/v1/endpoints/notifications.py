"""
API endpoints for the caller's in-app notifications.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query

from loconomy_api.app.core.errors import to_http_exception
from loconomy_api.app.core.security import get_current_user
from loconomy_api.app.schemas.notification import NotificationRead, UnreadCount
from loconomy_api.app.services.notification_service import NotificationService


router = APIRouter()


@router.get("/", response_model=List[NotificationRead])
async def list_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> List[NotificationRead]:
    return await NotificationService.list_notifications(
        current_user.get("user_id"), unread_only=unread_only, limit=limit, offset=offset
    )


@router.get("/unread-count", response_model=UnreadCount)
async def unread_count(current_user: Dict[str, Any] = Depends(get_current_user)) -> UnreadCount:
    return UnreadCount(unread=await NotificationService.unread_count(current_user.get("user_id")))


@router.post("/read-all")
async def mark_all_read(current_user: Dict[str, Any] = Depends(get_current_user)) -> dict:
    return {"updated": await NotificationService.mark_all_read(current_user.get("user_id"))}


@router.post("/{notification_id}/read", response_model=NotificationRead)
async def mark_read(notification_id: int, current_user: Dict[str, Any] = Depends(get_current_user)) -> NotificationRead:
    try:
        return await NotificationService.mark_read(notification_id, current_user.get("user_id"))
    except ValueError as e:
        raise to_http_exception(e)
