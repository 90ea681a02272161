# app/services/diagnostics_service.py
"""
Operational diagnostics: dependency checks for the health endpoints and
the admin diagnostics report.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

from app.config import settings
from app.db.pool import db_health_check
from app.infrastructure.observability.logging import get_logger, log_health_check
from app.repositories.processing_log_repository import ProcessingLogRepository
from app.services.openai_service import LLMConfigurationError, get_credit_analysis_client
from app.services.response_cache import ResponseCache, response_cache

logger = get_logger(__name__)

TIMEFRAME_HOURS = {"day": 24, "week": 24 * 7, "month": 24 * 30}


class DiagnosticsService:
    def __init__(
        self,
        *,
        llm_client_factory: Callable = get_credit_analysis_client,
        db_check: Callable[[], Awaitable[dict[str, Any]]] = db_health_check,
        log_repository=ProcessingLogRepository,
        cache: ResponseCache | None = None,
    ):
        self.llm_client_factory = llm_client_factory
        self.db_check = db_check
        self.log_repository = log_repository
        self.cache = cache if cache is not None else response_cache

    async def check_openai(self) -> dict[str, Any]:
        try:
            client = self.llm_client_factory()
        except LLMConfigurationError as e:
            return {
                "healthy": False,
                "service": "openai",
                "error": str(e),
                "error_kind": "NOT_CONFIGURED",
                "latency_ms": 0,
            }
        return await client.health_check()

    async def check_database(self) -> dict[str, Any]:
        start = time.monotonic()
        try:
            health = await self.db_check()
        except Exception as e:
            health = {"healthy": False, "service": "database_pool", "error": str(e)}

        latency_ms = round((time.monotonic() - start) * 1000, 1)
        health["latency_ms"] = latency_ms
        log_health_check("database", bool(health.get("healthy")), latency_ms, health.get("error"))
        return health

    def configuration_summary(self) -> dict[str, Any]:
        issues = []
        if not settings.openai_configured():
            issues.append("OPENAI_API_KEY not set")
        if not settings.SUPABASE_URL:
            issues.append("SUPABASE_URL not set")
        if not settings.SUPABASE_DB_URL:
            issues.append("SUPABASE_DB_URL not set")

        return {
            "ok": not issues,
            "issues": issues or None,
            "environment": settings.environment,
            "openai_configured": settings.openai_configured(),
            "openai_model": settings.OPENAI_MODEL,
            "admin_key_configured": bool(settings.ADMIN_SECRET_KEY),
            "paypal_configured": bool(settings.PAYPAL_CLIENT_ID and settings.PAYPAL_CLIENT_SECRET),
            "pdf_max_pages": settings.PDF_MAX_PAGES,
            "max_upload_bytes": settings.MAX_UPLOAD_BYTES,
        }

    async def readiness(self) -> dict[str, Any]:
        database = await self.check_database()
        configuration = self.configuration_summary()

        checks = {
            "database": {
                "ok": bool(database.get("healthy")),
                "latency_ms": database.get("latency_ms"),
            },
            "configuration": configuration,
        }
        if not database.get("healthy"):
            checks["database"]["error"] = database.get("error", "Database unhealthy")
        if "pool_stats" in database:
            checks["database"]["pool_stats"] = database["pool_stats"]

        return {
            "overall_ok": checks["database"]["ok"] and configuration["ok"],
            "checks": checks,
            "timestamp": time.time(),
        }

    async def health_report(self) -> dict[str, Any]:
        """Check database and OpenAI, then append the outcome to health_checks."""
        database, openai_health = await asyncio.gather(self.check_database(), self.check_openai())

        services = {
            "database": {
                "status": "ok" if database.get("healthy") else "error",
                "latency_ms": database.get("latency_ms"),
                "error": None if database.get("healthy") else database.get("error"),
            },
            "openai": {
                "status": "ok" if openai_health.get("healthy") else "error",
                "latency_ms": openai_health.get("latency_ms"),
                "error": None if openai_health.get("healthy") else openai_health.get("error"),
            },
        }
        status = "ok" if all(s["status"] == "ok" for s in services.values()) else "degraded"

        report = {"status": status, "services": services, "timestamp": time.time()}

        try:
            await self.log_repository.record_health_check(status, report)
        except Exception as e:
            logger.warning("Failed to record health check", error=str(e))

        return report

    async def full_diagnostics(self) -> dict[str, Any]:
        openai_health, database = await asyncio.gather(self.check_openai(), self.check_database())

        try:
            openai_stats = await self.log_repository.openai_call_stats(hours=24)
        except Exception as e:
            logger.warning("Failed to load OpenAI call statistics", error=str(e))
            openai_stats = {"error": str(e)}

        failed = not openai_health.get("healthy") or not database.get("healthy")

        return {
            "overall_status": "error" if failed else "ok",
            "openai": openai_health,
            "database": database,
            "openai_stats": openai_stats,
            "cache": self.cache.stats(),
            "configuration": self.configuration_summary(),
            "timestamp": time.time(),
        }

    async def verification_stats(self, timeframe: str = "day") -> dict[str, Any]:
        """
        OpenAI call volume and outcomes over the last day, week or month.

        Raises:
            ValueError: unknown timeframe
        """
        if timeframe not in TIMEFRAME_HOURS:
            raise ValueError(f"Unknown timeframe: {timeframe}")

        hours = TIMEFRAME_HOURS[timeframe]
        stats = await self.log_repository.openai_call_stats(hours=hours)
        errors = await self.log_repository.openai_error_counts(hours=hours)

        return {**stats, "errors_by_type": errors, "timeframe": timeframe}
