# app/routes/admin.py
"""
Admin API Routes
Cross-user views and maintenance operations. Every route requires the
X-Admin-Token header outside development.
"""

from fastapi import APIRouter, Depends, Query, status

from app.auth.verify import admin_dependency
from app.dependencies import get_diagnostics_service, get_pipeline, get_text_extractor
from app.infrastructure.observability.logging import get_logger
from app.middleware.error_handlers import ApiError
from app.models.api.analysis_request import ReanalyzeRequest, UpdateUserRequest
from app.models.api.analysis_response import (
    AdminAnalysesResponse,
    AdminAnalysisResponse,
    AdminStatsResponse,
    AdminUserResponse,
    AdminUsersResponse,
    AnalyzeResponse,
)
from app.repositories.analysis_repository import AnalysisRepository
from app.repositories.profile_repository import ProfileRepository
from app.routes.analysis import outcome_response
from app.services.analysis_pipeline import (
    AnalysisNotFoundError,
    AnalysisPipeline,
    PipelineInputError,
)
from app.services.diagnostics_service import DiagnosticsService
from app.services.response_cache import ResponseCache, get_response_cache
from app.services.text_extraction_service import TextExtractor

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(admin_dependency)])


@router.get("/analyses", response_model=AdminAnalysesResponse)
async def list_all_analyses(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    analyses = await AnalysisRepository.list_all(limit=limit, offset=offset)
    return AdminAnalysesResponse(
        analyses=[AdminAnalysisResponse.from_analysis(a) for a in analyses],
        limit=limit,
        offset=offset,
    )


@router.get("/stats", response_model=AdminStatsResponse)
async def get_stats(cache: ResponseCache = Depends(get_response_cache)):
    by_status = await AnalysisRepository.count_by_status()
    total_users = await ProfileRepository.count_users()
    pro_users = await ProfileRepository.count_pro_users()

    return AdminStatsResponse(
        analyses_by_status=by_status,
        total_analyses=sum(by_status.values()),
        total_users=total_users,
        pro_users=pro_users,
        cache=cache.stats(),
    )


@router.delete("/analysis/{analysis_id}")
async def delete_analysis(analysis_id: str):
    """Delete an analysis with its chat messages, letters and notes."""
    if not await AnalysisRepository.delete_cascade(analysis_id):
        raise ApiError(status.HTTP_404_NOT_FOUND, "Analysis not found", "not_found")

    logger.info("Admin deleted analysis", analysis_id=analysis_id)
    return {"success": True, "analysisId": analysis_id}


@router.post("/reanalyze", response_model=AnalyzeResponse)
async def reanalyze(body: ReanalyzeRequest, pipeline: AnalysisPipeline = Depends(get_pipeline)):
    """Re-run an analysis from its stored report text on behalf of its owner."""
    analysis = await AnalysisRepository.get_by_id(body.analysis_id)
    if analysis is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Analysis not found", "not_found")

    logger.info("Admin reanalysis requested", analysis_id=analysis.id, user_id=analysis.user_id)

    try:
        outcome = await pipeline.retry(analysis.user_id, analysis.id)
    except AnalysisNotFoundError as e:
        raise ApiError(status.HTTP_404_NOT_FOUND, str(e), "not_found") from e
    except PipelineInputError as e:
        raise ApiError(status.HTTP_400_BAD_REQUEST, str(e), e.error_code) from e

    return outcome_response(outcome)


@router.get("/processing-logs/{processing_id}")
async def get_processing_logs(
    processing_id: str, extractor: TextExtractor = Depends(get_text_extractor)
):
    logs = await extractor.get_processing_logs(processing_id)
    if not logs:
        raise ApiError(status.HTTP_404_NOT_FOUND, "No logs for this processing id", "not_found")
    return {"processingId": processing_id, "logs": logs}


@router.get("/users", response_model=AdminUsersResponse)
async def list_users(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    users = await ProfileRepository.list_users(limit=limit, offset=offset)
    return AdminUsersResponse(
        users=[AdminUserResponse.from_profile(user) for user in users],
        limit=limit,
        offset=offset,
    )


@router.put("/users/{user_id}", response_model=AdminUserResponse)
async def update_user(user_id: str, body: UpdateUserRequest):
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise ApiError(status.HTTP_400_BAD_REQUEST, "No fields to update", "no_changes")

    profile = await ProfileRepository.update_user(user_id, changes)
    if profile is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "User not found", "not_found")

    return AdminUserResponse.from_profile(profile)


@router.delete("/users/{user_id}")
async def delete_user(user_id: str):
    """Delete a user's analyses, chat, letters, notes, notifications, scores and profile."""
    if not await ProfileRepository.delete_cascade(user_id):
        raise ApiError(status.HTTP_404_NOT_FOUND, "User not found", "not_found")

    logger.info("Admin deleted user", user_id=user_id)
    return {"success": True, "userId": user_id}


@router.get("/users/{user_id}/processing-logs")
async def get_user_processing_logs(
    user_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    extractor: TextExtractor = Depends(get_text_extractor),
):
    logs = await extractor.get_user_processing_logs(user_id, limit=limit)
    return {"userId": user_id, "logs": logs}


@router.post("/cache/clear")
async def clear_cache(cache: ResponseCache = Depends(get_response_cache)):
    cleared = cache.clear()
    logger.info("Response cache cleared by admin", cleared=cleared)
    return {"success": True, "cleared": cleared}


@router.get("/diagnostics")
async def diagnostics(service: DiagnosticsService = Depends(get_diagnostics_service)):
    return await service.full_diagnostics()


@router.get("/verification-stats")
async def verification_stats(
    timeframe: str = Query(default="day", pattern="^(day|week|month)$"),
    service: DiagnosticsService = Depends(get_diagnostics_service),
):
    """OpenAI call volume, success rate and failures by type for the timeframe."""
    return {"stats": await service.verification_stats(timeframe)}
