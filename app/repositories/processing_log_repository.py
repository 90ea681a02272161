"""
Append-only operational logs: PDF processing events, OpenAI call records
and health check snapshots.

Writers raise DatabaseError like every repository; callers on the
request path decide whether a failed log write matters (it never does).
"""

from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import execute_query, fetch_all, fetch_one
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class ProcessingLogRepository:
    PDF_LOG_COLUMNS = """
        id, processing_id, user_id, file_name, file_size,
        event, details, error_message, timestamp
    """

    @classmethod
    async def record_pdf_event(
        cls,
        processing_id: str,
        event: str,
        *,
        user_id: str | None = None,
        file_name: str | None = None,
        file_size: int | None = None,
        details: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> None:
        query = """
            INSERT INTO pdf_processing_logs (
                processing_id, user_id, file_name, file_size,
                event, details, error_message, timestamp
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, NOW())
        """
        await execute_query(
            query,
            (
                processing_id,
                user_id,
                file_name,
                file_size,
                event,
                Jsonb(details or {}),
                error_message[:1000] if error_message else None,
            ),
        )

    @classmethod
    async def get_by_processing_id(cls, processing_id: str) -> list[dict[str, Any]]:
        query = f"""
            SELECT {cls.PDF_LOG_COLUMNS}
            FROM pdf_processing_logs
            WHERE processing_id = %s
            ORDER BY timestamp ASC
        """
        return await fetch_all(query, (processing_id,))

    @classmethod
    async def get_by_user(cls, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        """Most recent processing events for one user, newest first."""
        query = f"""
            SELECT {cls.PDF_LOG_COLUMNS}
            FROM pdf_processing_logs
            WHERE user_id = %s
            ORDER BY timestamp DESC
            LIMIT %s
        """
        return await fetch_all(query, (user_id, limit))

    @classmethod
    async def record_openai_call(
        cls,
        *,
        request_id: str,
        user_id: str | None,
        model: str,
        prompt_length: int,
        success: bool,
        latency_ms: int,
        retry_count: int,
        error_type: str | None = None,
        error_message: str | None = None,
    ) -> None:
        query = """
            INSERT INTO openai_logs (
                request_id, user_id, model, prompt_length, success,
                error_type, error_message, latency_ms, retry_count, created_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, NOW())
        """
        await execute_query(
            query,
            (
                request_id,
                user_id,
                model,
                prompt_length,
                success,
                error_type,
                error_message[:1000] if error_message else None,
                latency_ms,
                retry_count,
            ),
        )

    @classmethod
    async def openai_call_stats(cls, hours: int = 24) -> dict[str, Any]:
        """Success rate and latency for recent OpenAI calls."""
        query = """
            SELECT
                COUNT(*) AS total_calls,
                COUNT(*) FILTER (WHERE success) AS successful_calls,
                COALESCE(AVG(latency_ms), 0) AS avg_latency_ms,
                COALESCE(SUM(retry_count), 0) AS total_retries
            FROM openai_logs
            WHERE created_at > NOW() - make_interval(hours => %s)
        """
        row = await fetch_one(query, (hours,)) or {}

        total = row.get("total_calls") or 0
        successful = row.get("successful_calls") or 0
        return {
            "window_hours": hours,
            "total_calls": total,
            "successful_calls": successful,
            "success_rate": round(successful / total * 100, 1) if total else None,
            "avg_latency_ms": round(float(row.get("avg_latency_ms") or 0), 1),
            "total_retries": row.get("total_retries") or 0,
        }

    @classmethod
    async def openai_error_counts(cls, hours: int = 24) -> dict[str, int]:
        query = """
            SELECT COALESCE(error_type, 'UNKNOWN') AS error_type, COUNT(*) AS calls
            FROM openai_logs
            WHERE NOT success AND created_at > NOW() - make_interval(hours => %s)
            GROUP BY 1
            ORDER BY calls DESC
        """
        rows = await fetch_all(query, (hours,))
        return {row["error_type"]: row["calls"] for row in rows}

    @classmethod
    async def record_health_check(cls, status: str, details: dict[str, Any]) -> None:
        query = """
            INSERT INTO health_checks (status, details, created_at)
            VALUES (%s, %s, NOW())
        """
        await execute_query(query, (status, Jsonb(details)))
