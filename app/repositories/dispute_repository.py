"""
Persistence for dispute_letters and user_notes, both scoped to an analysis
and its owner.
"""

from app.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one
from app.infrastructure.observability.logging import get_logger
from app.models.domain.account_domain import DisputeLetter, UserNote

logger = get_logger(__name__)


class DisputeRepositoryError(DatabaseError):
    """Raised when a letter or note cannot be stored."""


class DisputeLetterRepository:
    SELECT_COLUMNS = "id, user_id, analysis_id, bureau, account_name, content, created_at"

    @classmethod
    def _row_to_letter(cls, row: dict) -> DisputeLetter:
        return DisputeLetter(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            analysis_id=str(row["analysis_id"]),
            bureau=row.get("bureau") or "",
            account_name=row.get("account_name") or "",
            content=row["content"],
            created_at=row["created_at"],
        )

    @classmethod
    async def create(
        cls, user_id: str, analysis_id: str, bureau: str, account_name: str, content: str
    ) -> DisputeLetter:
        query = f"""
            INSERT INTO dispute_letters (user_id, analysis_id, bureau, account_name, content, created_at)
            VALUES (%s, %s, %s, %s, %s, NOW())
            RETURNING {cls.SELECT_COLUMNS}
        """
        row = await fetch_one(query, (user_id, analysis_id, bureau, account_name, content))
        if not row:
            raise DisputeRepositoryError(
                "Failed to store dispute letter", operation="create_letter"
            )
        return cls._row_to_letter(row)

    @classmethod
    async def list_for_user(
        cls, user_id: str, analysis_id: str | None = None
    ) -> list[DisputeLetter]:
        if analysis_id:
            query = f"""
                SELECT {cls.SELECT_COLUMNS}
                FROM dispute_letters
                WHERE user_id = %s AND analysis_id = %s
                ORDER BY created_at DESC
            """
            rows = await fetch_all(query, (user_id, analysis_id))
        else:
            query = f"""
                SELECT {cls.SELECT_COLUMNS}
                FROM dispute_letters
                WHERE user_id = %s
                ORDER BY created_at DESC
            """
            rows = await fetch_all(query, (user_id,))
        return [cls._row_to_letter(row) for row in rows]


class NoteRepository:
    SELECT_COLUMNS = "id, user_id, analysis_id, content, created_at"

    @classmethod
    def _row_to_note(cls, row: dict) -> UserNote:
        return UserNote(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            analysis_id=str(row["analysis_id"]),
            content=row["content"],
            created_at=row["created_at"],
        )

    @classmethod
    async def create(cls, user_id: str, analysis_id: str, content: str) -> UserNote:
        query = f"""
            INSERT INTO user_notes (user_id, analysis_id, content, created_at)
            VALUES (%s, %s, %s, NOW())
            RETURNING {cls.SELECT_COLUMNS}
        """
        row = await fetch_one(query, (user_id, analysis_id, content))
        if not row:
            raise DisputeRepositoryError("Failed to store note", operation="create_note")
        return cls._row_to_note(row)

    @classmethod
    async def list_for_analysis(cls, user_id: str, analysis_id: str) -> list[UserNote]:
        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM user_notes
            WHERE user_id = %s AND analysis_id = %s
            ORDER BY created_at DESC
        """
        rows = await fetch_all(query, (user_id, analysis_id))
        return [cls._row_to_note(row) for row in rows]

    @classmethod
    async def delete(cls, note_id: str, user_id: str) -> bool:
        query = "DELETE FROM user_notes WHERE id = %s AND user_id = %s"
        deleted = await execute_query(query, (note_id, user_id)) > 0
        if deleted:
            logger.info("Note deleted", note_id=note_id, user_id=user_id)
        return deleted
