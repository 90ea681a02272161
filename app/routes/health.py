# app/routes/health.py
"""
Health check endpoints: liveness, readiness and the dependency report.
"""

from fastapi import APIRouter, Depends

from app.dependencies import get_diagnostics_service
from app.services.diagnostics_service import DiagnosticsService

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "credit-analysis-api"}


@router.get("/readyz")
async def readyz(diagnostics: DiagnosticsService = Depends(get_diagnostics_service)):
    """Readiness: database pool and configuration, with latency per check."""
    return await diagnostics.readiness()


@router.get("/health")
async def health(diagnostics: DiagnosticsService = Depends(get_diagnostics_service)):
    """Ping database and OpenAI; the outcome is also appended to health_checks."""
    return await diagnostics.health_report()
