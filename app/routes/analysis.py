# app/routes/analysis.py
"""
Analysis API Routes
Submit credit reports for analysis, poll their status and list past analyses.
"""

import json

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.datastructures import UploadFile

from app.auth.verify import auth_dependency, get_user_id
from app.config import settings
from app.dependencies import get_pipeline
from app.infrastructure.observability.logging import get_logger
from app.middleware.error_handlers import ApiError
from app.models.api.analysis_request import AnalyzeRequest
from app.models.api.analysis_response import (
    AnalysisDetailResponse,
    AnalysisListResponse,
    AnalysisSummaryResponse,
    AnalyzeResponse,
)
from app.repositories.analysis_repository import AnalysisRepository, CreditScoreRepository
from app.services.analysis_pipeline import (
    AnalysisNotFoundError,
    AnalysisPipeline,
    PipelineInputError,
    PipelineOutcome,
    UploadedDocument,
)
from app.services.result_normalizer import normalize
from app.services.text_extraction_service import SUPPORTED_MIME_TYPES, detect_mime_type

logger = get_logger(__name__)

router = APIRouter(tags=["analysis"])


def outcome_response(outcome: PipelineOutcome) -> AnalyzeResponse:
    """Map a pipeline outcome to the HTTP response, raising for failures."""
    if not outcome.success:
        raise ApiError(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            outcome.error or "Analysis failed",
            "analysis_failed",
            extra={
                "analysisId": outcome.analysis_id,
                "errorKind": outcome.error_kind.value if outcome.error_kind else None,
                "metrics": outcome.metrics,
                "persisted": outcome.persisted,
            },
        )

    return AnalyzeResponse(
        analysis_id=outcome.analysis_id,
        result=outcome.result.to_wire(),
        metrics=outcome.metrics,
        persisted=outcome.persisted,
    )


async def _read_upload(upload: UploadFile) -> UploadedDocument:
    data = await upload.read()
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise ApiError(
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            f"File exceeds the {settings.MAX_UPLOAD_BYTES // (1024 * 1024)} MB upload limit",
            "file_too_large",
        )

    mime_type = detect_mime_type(data, upload.content_type, upload.filename)
    if data and mime_type not in SUPPORTED_MIME_TYPES:
        raise ApiError(
            status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            f"Unsupported file type: {mime_type}",
            "unsupported_media_type",
        )

    return UploadedDocument(data=data, mime_type=mime_type, file_name=upload.filename)


async def _parse_submission(
    request: Request,
) -> tuple[str | None, str | None, UploadedDocument | None]:
    """Return (analysis_id, text, document) from a JSON or multipart body."""
    content_type = request.headers.get("content-type", "")

    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        upload = form.get("file")
        document = await _read_upload(upload) if isinstance(upload, UploadFile) else None
        analysis_id = form.get("analysisId") or form.get("analysis_id")
        text = form.get("text")
        return (
            analysis_id if isinstance(analysis_id, str) else None,
            text if isinstance(text, str) else None,
            document,
        )

    raw = await request.body()
    if not raw.strip():
        return None, None, None

    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ApiError(
            status.HTTP_400_BAD_REQUEST, "Invalid JSON in request body", "invalid_json"
        ) from e

    try:
        body = AnalyzeRequest.model_validate(payload)
    except ValidationError as e:
        raise ApiError(
            status.HTTP_400_BAD_REQUEST, "Invalid analysis request", "invalid_request"
        ) from e

    return body.analysis_id, body.text, None


@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze(
    request: Request,
    claims: dict = Depends(auth_dependency),
    pipeline: AnalysisPipeline = Depends(get_pipeline),
):
    """
    Analyze a credit report.

    Accepts JSON {analysisId?, text?} or a multipart upload with a `file`
    part (and optional analysisId). With an analysisId the existing analysis
    is re-run, from the stored report text when nothing new is sent.
    """
    user_id = get_user_id(claims)
    analysis_id, text, document = await _parse_submission(request)

    try:
        if analysis_id:
            outcome = await pipeline.retry(user_id, analysis_id, document, text=text)
        elif document is not None:
            outcome = await pipeline.submit_document(
                user_id, document.data, document.mime_type, document.file_name
            )
        elif text and text.strip():
            outcome = await pipeline.submit_text(user_id, text)
        else:
            raise ApiError(
                status.HTTP_400_BAD_REQUEST,
                "No text or file provided for analysis",
                "missing_input",
            )
    except AnalysisNotFoundError as e:
        raise ApiError(status.HTTP_404_NOT_FOUND, str(e), "not_found") from e
    except PipelineInputError as e:
        raise ApiError(status.HTTP_400_BAD_REQUEST, str(e), e.error_code) from e

    return outcome_response(outcome)


@router.get("/analysis/{analysis_id}")
async def get_analysis(analysis_id: str, claims: dict = Depends(auth_dependency)):
    """Owner-only fetch. 202 while processing; completed results are re-normalized on read."""
    user_id = get_user_id(claims)

    analysis = await AnalysisRepository.get_for_user(analysis_id, user_id)
    if analysis is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Analysis not found", "not_found")

    if analysis.status == "processing":
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={"id": analysis.id, "status": "processing"},
        )

    if analysis.status == "error":
        return {"id": analysis.id, "status": "error", "errorMessage": analysis.error_message}

    return AnalysisDetailResponse(
        id=analysis.id,
        status=analysis.status,
        file_name=analysis.file_name,
        result=normalize(analysis.result or {}).to_wire(),
        created_at=analysis.created_at,
        completed_at=analysis.completed_at,
    )


@router.get("/analyses", response_model=AnalysisListResponse)
async def list_analyses(
    claims: dict = Depends(auth_dependency),
    q: str | None = Query(default=None, max_length=200, description="Search file name or summary"),
    limit: int = Query(default=50, ge=1, le=100),
):
    """The caller's analyses, newest first."""
    user_id = get_user_id(claims)

    analyses = await AnalysisRepository.list_for_user(user_id, search=q or None, limit=limit)
    summaries = [AnalysisSummaryResponse.from_analysis(a) for a in analyses]
    return AnalysisListResponse(analyses=summaries, total=len(summaries))


@router.get("/credit-scores")
async def credit_score_history(
    claims: dict = Depends(auth_dependency),
    limit: int = Query(default=50, ge=1, le=100),
):
    """Score history recorded from completed analyses, newest first."""
    user_id = get_user_id(claims)

    entries = await CreditScoreRepository.history_for_user(user_id, limit=limit)
    return {
        "scores": [
            {
                "analysisId": entry.analysis_id,
                "score": entry.score,
                "createdAt": entry.created_at.isoformat(),
            }
            for entry in entries
        ]
    }
