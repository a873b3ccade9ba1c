"""
Notification endpoints for API v1.

Notifications are mostly created as side effects of likes, comments,
follows and orders; ``POST`` lets a user address one directly.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from honua_api.app.core.security import get_current_user
from honua_api.app.schemas.message import NotificationCreate, NotificationMarkRead
from honua_api.app.services.notification_service import NotificationService

router = APIRouter()


@router.get("")
async def list_notifications(
    tab: str = Query("all", description="all, unread, likes or follows"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    read: Optional[bool] = Query(None),
    count_only: bool = Query(False),
    current_user: dict = Depends(get_current_user),
) -> dict:
    """The caller's inbox with the unread counter.

    With ``count_only`` only ``unread_count`` is returned.
    """
    return await NotificationService.list_notifications(
        current_user,
        tab=tab,
        limit=limit,
        offset=offset,
        read=read,
        count_only=count_only,
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_notification(data: NotificationCreate, current_user: dict = Depends(get_current_user)) -> dict:
    return await NotificationService.create_notification(data, current_user)


@router.patch("")
async def mark_read(data: NotificationMarkRead, current_user: dict = Depends(get_current_user)) -> dict:
    return await NotificationService.mark_read(current_user, data.notificationId, data.markAllAsRead)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(notification_id: int, current_user: dict = Depends(get_current_user)) -> Response:
    await NotificationService.delete_notification(notification_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
