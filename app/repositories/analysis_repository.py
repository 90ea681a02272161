"""
Persistence for the analyses table and the credit_scores history.

Every user-facing read filters on user_id; only the admin helpers
(get_by_id, list_all, stats, delete_cascade) ignore ownership.
"""

from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import (
    DatabaseError,
    execute_query,
    execute_transaction,
    fetch_all,
    fetch_one,
    with_db_retry,
)
from app.infrastructure.observability.logging import get_logger
from app.models.domain.analysis_domain import Analysis, CreditScoreEntry

logger = get_logger(__name__)


class AnalysisRepositoryError(DatabaseError):
    """More specific exception for analysis persistence failures."""


class AnalysisRepository:
    SELECT_COLUMNS = """
        id, user_id, status, file_name, ocr_text, result,
        error_message, created_at, updated_at, completed_at
    """

    # Dependent rows first; the analysis row goes last
    CASCADE_TABLES = ("chat_messages", "dispute_letters", "user_notes")

    @classmethod
    def _row_to_analysis(cls, row: dict | None) -> Analysis | None:
        if not row:
            return None

        return Analysis(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            status=row["status"],
            file_name=row.get("file_name"),
            ocr_text=row.get("ocr_text"),
            result=row.get("result"),
            error_message=row.get("error_message"),
            created_at=row["created_at"],
            updated_at=row.get("updated_at"),
            completed_at=row.get("completed_at"),
        )

    @classmethod
    async def create(cls, user_id: str, file_name: str | None = None) -> Analysis:
        """
        Insert a new analysis in the processing state.

        Not wrapped in with_db_retry: a replayed INSERT would duplicate the row.
        """
        query = f"""
            INSERT INTO analyses (user_id, status, file_name, created_at, updated_at)
            VALUES (%s, 'processing', %s, NOW(), NOW())
            RETURNING {cls.SELECT_COLUMNS}
        """

        row = await fetch_one(query, (user_id, file_name))
        if not row:
            raise AnalysisRepositoryError("Failed to create analysis", operation="create")

        analysis = cls._row_to_analysis(row)
        logger.info("Analysis created", analysis_id=analysis.id, user_id=user_id)
        return analysis

    @classmethod
    @with_db_retry()
    async def get_for_user(cls, analysis_id: str, user_id: str) -> Analysis | None:
        query = f"SELECT {cls.SELECT_COLUMNS} FROM analyses WHERE id = %s AND user_id = %s"
        return cls._row_to_analysis(await fetch_one(query, (analysis_id, user_id)))

    @classmethod
    @with_db_retry()
    async def get_latest_for_user(cls, user_id: str) -> Analysis | None:
        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM analyses
            WHERE user_id = %s
            ORDER BY created_at DESC
            LIMIT 1
        """
        return cls._row_to_analysis(await fetch_one(query, (user_id,)))

    @classmethod
    @with_db_retry()
    async def get_by_id(cls, analysis_id: str) -> Analysis | None:
        query = f"SELECT {cls.SELECT_COLUMNS} FROM analyses WHERE id = %s"
        return cls._row_to_analysis(await fetch_one(query, (analysis_id,)))

    @classmethod
    @with_db_retry()
    async def mark_processing(cls, analysis_id: str, file_name: str | None = None) -> None:
        query = """
            UPDATE analyses
            SET status = 'processing',
                error_message = NULL,
                file_name = COALESCE(%s, file_name),
                updated_at = NOW()
            WHERE id = %s
        """
        await execute_query(query, (file_name, analysis_id))

    @classmethod
    @with_db_retry()
    async def save_ocr_text(cls, analysis_id: str, ocr_text: str) -> None:
        query = "UPDATE analyses SET ocr_text = %s, updated_at = NOW() WHERE id = %s"
        await execute_query(query, (ocr_text, analysis_id))

    @classmethod
    @with_db_retry(max_retries=2)
    async def mark_completed(cls, analysis_id: str, result: dict[str, Any]) -> None:
        query = """
            UPDATE analyses
            SET status = 'completed',
                result = %s,
                error_message = NULL,
                completed_at = NOW(),
                updated_at = NOW()
            WHERE id = %s
        """
        updated = await execute_query(query, (Jsonb(result), analysis_id))
        if updated == 0:
            raise AnalysisRepositoryError(
                f"Analysis {analysis_id} not found", operation="mark_completed", recoverable=False
            )
        logger.info("Analysis completed", analysis_id=analysis_id)

    @classmethod
    @with_db_retry(max_retries=2)
    async def mark_error(cls, analysis_id: str, error_message: str) -> None:
        truncated_error = (error_message or "Unknown error")[:1000]
        query = """
            UPDATE analyses
            SET status = 'error',
                error_message = %s,
                completed_at = NOW(),
                updated_at = NOW()
            WHERE id = %s
        """
        await execute_query(query, (truncated_error, analysis_id))
        logger.warning("Analysis failed", analysis_id=analysis_id, error=truncated_error)

    @classmethod
    @with_db_retry()
    async def list_for_user(
        cls, user_id: str, search: str | None = None, limit: int = 50
    ) -> list[Analysis]:
        """Newest first, optionally filtered by file name or summary text."""
        if search:
            pattern = f"%{search}%"
            query = f"""
                SELECT {cls.SELECT_COLUMNS}
                FROM analyses
                WHERE user_id = %s
                  AND (file_name ILIKE %s OR result->'overview'->>'summary' ILIKE %s)
                ORDER BY created_at DESC
                LIMIT %s
            """
            rows = await fetch_all(query, (user_id, pattern, pattern, limit))
        else:
            query = f"""
                SELECT {cls.SELECT_COLUMNS}
                FROM analyses
                WHERE user_id = %s
                ORDER BY created_at DESC
                LIMIT %s
            """
            rows = await fetch_all(query, (user_id, limit))

        return [cls._row_to_analysis(row) for row in rows]

    @classmethod
    async def list_all(cls, limit: int = 50, offset: int = 0) -> list[Analysis]:
        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM analyses
            ORDER BY created_at DESC
            LIMIT %s OFFSET %s
        """
        rows = await fetch_all(query, (limit, offset))
        return [cls._row_to_analysis(row) for row in rows]

    @classmethod
    async def count_by_status(cls) -> dict[str, int]:
        query = "SELECT status, COUNT(*) AS count FROM analyses GROUP BY status"
        rows = await fetch_all(query)
        counts = {"processing": 0, "completed": 0, "error": 0}
        for row in rows:
            counts[row["status"]] = row["count"]
        return counts

    @classmethod
    async def delete_cascade(cls, analysis_id: str) -> bool:
        """Delete an analysis and its dependent rows in one transaction."""
        statements = [
            (f"DELETE FROM {table} WHERE analysis_id = %s", (analysis_id,))
            for table in cls.CASCADE_TABLES
        ]
        statements.append(("DELETE FROM analyses WHERE id = %s", (analysis_id,)))

        row_counts = await execute_transaction(statements)
        deleted = row_counts[-1] > 0

        logger.info(
            "Analysis cascade delete finished",
            analysis_id=analysis_id,
            deleted=deleted,
            dependent_rows=sum(row_counts[:-1]),
        )
        return deleted


class CreditScoreRepository:
    """Score history, one row per completed analysis with a valid score."""

    @classmethod
    async def record(cls, user_id: str, analysis_id: str, score: int) -> None:
        query = """
            INSERT INTO credit_scores (user_id, analysis_id, score, created_at)
            VALUES (%s, %s, %s, NOW())
        """
        await execute_query(query, (user_id, analysis_id, score))
        logger.info("Credit score recorded", user_id=user_id, analysis_id=analysis_id, score=score)

    @classmethod
    async def history_for_user(cls, user_id: str, limit: int = 50) -> list[CreditScoreEntry]:
        query = """
            SELECT id, user_id, analysis_id, score, created_at
            FROM credit_scores
            WHERE user_id = %s
            ORDER BY created_at DESC
            LIMIT %s
        """
        rows = await fetch_all(query, (user_id, limit))
        return [
            CreditScoreEntry(
                id=str(row["id"]),
                user_id=str(row["user_id"]),
                analysis_id=str(row["analysis_id"]),
                score=row["score"],
                created_at=row["created_at"],
            )
            for row in rows
        ]
