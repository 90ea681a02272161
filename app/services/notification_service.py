# app/services/notification_service.py
"""
User notifications.

create_notification never raises: a failed notification must not fail
the operation that triggered it.
"""

from app.infrastructure.observability.logging import get_logger
from app.models.domain.account_domain import Notification, NotificationType
from app.repositories.notification_repository import NotificationRepository

logger = get_logger(__name__)


class NotificationService:
    def __init__(self, repository=NotificationRepository):
        self.repository = repository

    async def create_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        notification_type: NotificationType = "info",
    ) -> bool:
        try:
            created = await self.repository.create(user_id, title, message, notification_type)
        except Exception as e:
            logger.warning(
                "Failed to create notification",
                user_id=user_id,
                title=title,
                notification_type=notification_type,
                error=str(e),
            )
            return False

        return created is not None

    async def list_notifications(self, user_id: str, limit: int = 20) -> list[Notification]:
        return await self.repository.list_for_user(user_id, limit=limit)

    async def unread_count(self, user_id: str) -> int:
        return await self.repository.unread_count(user_id)

    async def mark_read(self, user_id: str, notification_id: str) -> bool:
        return await self.repository.mark_read(notification_id, user_id)

    async def mark_all_read(self, user_id: str) -> int:
        return await self.repository.mark_all_read(user_id)


notification_service = NotificationService()
