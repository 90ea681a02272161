# app/db/helpers.py
"""
Query helpers shared by the repositories.

Each helper borrows a pooled connection for one statement and turns
psycopg errors into DatabaseError, keeping the driver exception as
__cause__ so with_db_retry can tell connection drops from bad SQL.
"""

import asyncio
import functools
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import psycopg

from app.db.pool import get_db_connection, get_db_transaction
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """A repository operation failed; recoverable=False means retrying will not help."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


@asynccontextmanager
async def _cursor(operation: str, query: str) -> AsyncIterator[psycopg.AsyncCursor]:
    try:
        async with get_db_connection() as conn:
            async with conn.cursor() as cur:
                yield cur
    except psycopg.Error as e:
        logger.error(
            "Database query failed",
            operation=operation,
            query=" ".join(query.split())[:120],
            error=str(e),
            error_type=type(e).__name__,
        )
        raise DatabaseError(f"Query failed: {e}", operation=operation) from e


async def fetch_one(query: str, params: tuple = ()) -> dict[str, Any] | None:
    """First row as a dict, or None."""
    async with _cursor("fetch_one", query) as cur:
        await cur.execute(query, params)
        return await cur.fetchone()


async def fetch_all(query: str, params: tuple = ()) -> list[dict[str, Any]]:
    async with _cursor("fetch_all", query) as cur:
        await cur.execute(query, params)
        return await cur.fetchall()


async def fetch_val(query: str, params: tuple = ()) -> Any:
    """First column of the first row, e.g. a COUNT(*)."""
    async with _cursor("fetch_val", query) as cur:
        await cur.execute(query, params)
        row = await cur.fetchone()
        return next(iter(row.values())) if row else None


async def execute_query(query: str, params: tuple = ()) -> int:
    """Run an INSERT/UPDATE/DELETE and return the affected row count."""
    async with _cursor("execute", query) as cur:
        await cur.execute(query, params)
        return cur.rowcount


async def execute_transaction(statements: list[tuple[str, tuple]]) -> list[int]:
    """
    Run several statements atomically.

    Args:
        statements: (query, params) pairs, executed in order

    Returns:
        Affected row count per statement, in the same order

    Example:
        counts = await execute_transaction([
            ("DELETE FROM chat_messages WHERE analysis_id = %s", (analysis_id,)),
            ("DELETE FROM analyses WHERE id = %s", (analysis_id,)),
        ])
    """
    row_counts: list[int] = []
    try:
        async with get_db_transaction() as conn:
            for query, params in statements:
                cursor = await conn.execute(query, params)
                row_counts.append(cursor.rowcount)
    except psycopg.Error as e:
        logger.error("Transaction rolled back", statement_count=len(statements), error=str(e))
        raise DatabaseError(f"Transaction failed: {e}", operation="transaction") from e

    logger.debug("Transaction committed", statement_count=len(statements), row_counts=row_counts)
    return row_counts


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Retry a repository coroutine when the connection dropped mid-operation.

    Only DatabaseErrors caused by psycopg.OperationalError are retried;
    anything else (constraint violations, not-found) is raised at once.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except DatabaseError as e:
                    if not isinstance(e.__cause__, psycopg.OperationalError):
                        raise
                    if attempt >= max_retries:
                        logger.error(
                            "Database operation failed after all retries",
                            operation=func.__name__,
                            attempts=attempt + 1,
                            error=str(e),
                        )
                        raise DatabaseError(
                            f"{func.__name__} failed after {attempt + 1} attempts: {e}",
                            operation=func.__name__,
                            recoverable=False,
                        ) from e

                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Database connection lost, retrying",
                        operation=func.__name__,
                        attempt=attempt + 1,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
