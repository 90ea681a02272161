# app/routes/notifications.py
"""
In-app notifications. Only the read flag is ever changed by these endpoints.
"""

from fastapi import APIRouter, Depends, Query, status

from app.auth.verify import auth_dependency, get_user_id
from app.dependencies import get_notification_service
from app.middleware.error_handlers import ApiError
from app.models.api.analysis_response import (
    NotificationResponse,
    NotificationsResponse,
    SuccessResponse,
    UnreadCountResponse,
)
from app.services.notification_service import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationsResponse)
async def list_notifications(
    limit: int = Query(default=20, ge=1, le=100),
    claims: dict = Depends(auth_dependency),
    notifications: NotificationService = Depends(get_notification_service),
):
    user_id = get_user_id(claims)

    items = await notifications.list_notifications(user_id, limit=limit)
    unread = await notifications.unread_count(user_id)
    return NotificationsResponse(
        notifications=[NotificationResponse.from_notification(n) for n in items],
        unread_count=unread,
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    claims: dict = Depends(auth_dependency),
    notifications: NotificationService = Depends(get_notification_service),
):
    user_id = get_user_id(claims)
    return UnreadCountResponse(count=await notifications.unread_count(user_id))


@router.post("/read-all", response_model=SuccessResponse)
async def mark_all_read(
    claims: dict = Depends(auth_dependency),
    notifications: NotificationService = Depends(get_notification_service),
):
    user_id = get_user_id(claims)

    updated = await notifications.mark_all_read(user_id)
    return SuccessResponse(message=f"{updated} notifications marked as read")


@router.post("/{notification_id}/read", response_model=SuccessResponse)
async def mark_read(
    notification_id: str,
    claims: dict = Depends(auth_dependency),
    notifications: NotificationService = Depends(get_notification_service),
):
    user_id = get_user_id(claims)

    if not await notifications.mark_read(user_id, notification_id):
        raise ApiError(status.HTTP_404_NOT_FOUND, "Notification not found", "not_found")

    return SuccessResponse()
