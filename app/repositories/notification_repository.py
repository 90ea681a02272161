"""
Persistence for notifications. Rows are immutable apart from is_read.
"""

from app.db.helpers import execute_query, fetch_all, fetch_one, fetch_val
from app.infrastructure.observability.logging import get_logger
from app.models.domain.account_domain import Notification, NotificationType

logger = get_logger(__name__)


class NotificationRepository:
    SELECT_COLUMNS = "id, user_id, title, message, type, is_read, created_at"

    @classmethod
    def _row_to_notification(cls, row: dict) -> Notification:
        return Notification(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            title=row["title"],
            message=row["message"],
            type=row["type"],
            is_read=bool(row["is_read"]),
            created_at=row["created_at"],
        )

    @classmethod
    async def create(
        cls, user_id: str, title: str, message: str, notification_type: NotificationType
    ) -> Notification | None:
        query = f"""
            INSERT INTO notifications (user_id, title, message, type, is_read, created_at)
            VALUES (%s, %s, %s, %s, false, NOW())
            RETURNING {cls.SELECT_COLUMNS}
        """
        row = await fetch_one(query, (user_id, title, message, notification_type))
        return cls._row_to_notification(row) if row else None

    @classmethod
    async def list_for_user(cls, user_id: str, limit: int = 20) -> list[Notification]:
        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM notifications
            WHERE user_id = %s
            ORDER BY created_at DESC
            LIMIT %s
        """
        rows = await fetch_all(query, (user_id, limit))
        return [cls._row_to_notification(row) for row in rows]

    @classmethod
    async def unread_count(cls, user_id: str) -> int:
        query = "SELECT COUNT(*) FROM notifications WHERE user_id = %s AND is_read = false"
        return await fetch_val(query, (user_id,)) or 0

    @classmethod
    async def mark_read(cls, notification_id: str, user_id: str) -> bool:
        query = "UPDATE notifications SET is_read = true WHERE id = %s AND user_id = %s"
        return await execute_query(query, (notification_id, user_id)) > 0

    @classmethod
    async def mark_all_read(cls, user_id: str) -> int:
        query = "UPDATE notifications SET is_read = true WHERE user_id = %s AND is_read = false"
        return await execute_query(query, (user_id,))
