# app/db/pool.py
"""
Async connection pool for the Supabase-hosted Postgres database that stores
analyses, chat history, dispute letters, notifications and operational logs.

The pool is opened in the application lifespan and closed on shutdown.
Connections come back with dict rows, autocommit on, UTC time zone and a
60 second statement timeout.
"""

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

STATEMENT_TIMEOUT = "60s"
CLOSE_TIMEOUT_SECONDS = 30.0
HIGH_UTILIZATION_PERCENT = 80
UNHEALTHY_UTILIZATION_PERCENT = 90


class DatabasePool:
    def __init__(self):
        self.pool: AsyncConnectionPool | None = None
        self._closed = False

    @property
    def initialized(self) -> bool:
        return self.pool is not None and not self._closed

    async def initialize(self) -> None:
        """Open the pool and prove one connection works."""
        if self.pool is not None:
            logger.warning("Database pool already initialized")
            return
        if self._closed:
            raise RuntimeError("Cannot reinitialize closed pool")

        config = settings.get_db_pool_config()
        pool = AsyncConnectionPool(
            conninfo=settings.SUPABASE_DB_URL,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=self._configure_connection,
            **config,
        )

        try:
            await pool.open()
            await pool.wait()
            self.pool = pool
            await self._ping()
        except Exception as e:
            logger.error("Failed to initialize database pool", error=str(e))
            self.pool = None
            try:
                await pool.close()
            except Exception as close_error:
                logger.warning("Error closing half-open pool", error=str(close_error))
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        logger.info(
            "Database pool initialized",
            min_size=config["min_size"],
            max_size=config["max_size"],
            timeout=config["timeout"],
        )

    async def _configure_connection(self, conn: psycopg.AsyncConnection) -> None:
        conn.row_factory = dict_row
        # Pooled connections must not be returned mid-transaction
        await conn.set_autocommit(True)

        app_name = f"credit-analysis-{settings.environment}"
        await conn.execute(sql.SQL("SET application_name = {}").format(sql.Literal(app_name)))
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute(
            sql.SQL("SET statement_timeout = {}").format(sql.Literal(STATEMENT_TIMEOUT))
        )

    async def _ping(self) -> None:
        async with self.connection() as conn:
            cursor = await conn.execute("SELECT 1 AS ok")
            row = await cursor.fetchone()
        if not row or row["ok"] != 1:
            raise RuntimeError(f"Database ping returned {row!r}")

    async def close(self) -> None:
        if self.pool is None or self._closed:
            return

        logger.info("Closing database connection pool")
        try:
            await asyncio.wait_for(self.pool.close(), timeout=CLOSE_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.warning("Database pool close timed out, forcing shutdown")
        finally:
            self._closed = True
            self.pool = None

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[psycopg.AsyncConnection]:
        if self._closed:
            raise RuntimeError("Database pool is closed")
        if self.pool is None:
            raise RuntimeError("Database pool not initialized. Call initialize() first.")

        async with self.pool.connection() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[psycopg.AsyncConnection]:
        """Connection inside BEGIN/COMMIT; rolls back if the block raises."""
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn

    def _utilization(self) -> dict[str, Any]:
        stats = self.pool.get_stats()
        size = stats.get("pool_size", 0)
        available = stats.get("pool_available", 0)
        return {
            "pool_size": size,
            "pool_available": available,
            "pool_utilization_percent": round((size - available) / size * 100, 2) if size else 0,
            "requests_waiting": stats.get("requests_waiting", 0),
        }

    async def health_check(self) -> dict[str, Any]:
        """
        Ping the database and report pool pressure.

        Returns:
            dict: healthy flag, ping latency and pool statistics; unhealthy
            when the ping fails or utilization reaches 90%
        """
        if not self.initialized:
            state = "closed" if self._closed else "not initialized"
            return {"healthy": False, "service": "database_pool", "error": f"Pool {state}"}

        start = time.monotonic()
        try:
            await self._ping()
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {
                "healthy": False,
                "service": "database_pool",
                "error": f"Connection test failed: {e}",
                "error_type": type(e).__name__,
            }

        stats = self._utilization()
        utilization = stats["pool_utilization_percent"]
        health = {
            "healthy": utilization < UNHEALTHY_UTILIZATION_PERCENT,
            "service": "database_pool",
            "connection_time_ms": round((time.monotonic() - start) * 1000, 2),
            "pool_stats": stats,
        }

        warnings = []
        if utilization > HIGH_UTILIZATION_PERCENT:
            warnings.append(f"High pool utilization: {utilization:.1f}%")
        if stats["requests_waiting"]:
            warnings.append(f"Requests waiting for connections: {stats['requests_waiting']}")
        if warnings:
            health["warnings"] = warnings

        return health


db_pool = DatabasePool()


def get_db_connection() -> AbstractAsyncContextManager[psycopg.AsyncConnection]:
    return db_pool.connection()


def get_db_transaction() -> AbstractAsyncContextManager[psycopg.AsyncConnection]:
    return db_pool.transaction()


async def db_health_check() -> dict[str, Any]:
    return await db_pool.health_check()
