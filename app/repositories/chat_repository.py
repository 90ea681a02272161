"""
Persistence for chat_messages. Messages are ordered by creation time
within one analysis.
"""

from app.db.helpers import DatabaseError, fetch_all, fetch_one
from app.infrastructure.observability.logging import get_logger
from app.models.domain.account_domain import ChatMessage, ChatRole

logger = get_logger(__name__)


class ChatRepositoryError(DatabaseError):
    """Raised when a chat message cannot be stored."""


class ChatRepository:
    SELECT_COLUMNS = "id, analysis_id, user_id, role, content, created_at"

    @classmethod
    def _row_to_message(cls, row: dict) -> ChatMessage:
        return ChatMessage(
            id=str(row["id"]),
            analysis_id=str(row["analysis_id"]),
            user_id=str(row["user_id"]),
            role=row["role"],
            content=row["content"],
            created_at=row["created_at"],
        )

    @classmethod
    async def add_message(
        cls, analysis_id: str, user_id: str, role: ChatRole, content: str
    ) -> ChatMessage:
        query = f"""
            INSERT INTO chat_messages (analysis_id, user_id, role, content, created_at)
            VALUES (%s, %s, %s, %s, NOW())
            RETURNING {cls.SELECT_COLUMNS}
        """
        row = await fetch_one(query, (analysis_id, user_id, role, content))
        if not row:
            raise ChatRepositoryError("Failed to save chat message", operation="add_message")
        return cls._row_to_message(row)

    @classmethod
    async def list_for_analysis(cls, analysis_id: str, user_id: str) -> list[ChatMessage]:
        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM chat_messages
            WHERE analysis_id = %s AND user_id = %s
            ORDER BY created_at ASC
        """
        rows = await fetch_all(query, (analysis_id, user_id))
        return [cls._row_to_message(row) for row in rows]
