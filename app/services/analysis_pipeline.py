# app/services/analysis_pipeline.py
"""
Credit analysis pipeline.

Sequences one analysis through extraction, the analysis model and result
normalization, persisting status as it goes:

    processing -> completed | error        (retry: completed | error -> processing)

Extraction and model failures mark the analysis as error and return a failed
outcome. Notification and score-history failures are logged and swallowed.
If the final write fails after a successful model call, the in-memory result
is still returned with persisted=False.
"""

import time
from dataclasses import dataclass, field
from typing import Any

from app.infrastructure.observability.logging import get_logger
from app.models.domain.analysis_domain import Analysis, AnalysisResult
from app.repositories.analysis_repository import AnalysisRepository, CreditScoreRepository
from app.services.notification_service import NotificationService, notification_service
from app.services.openai_service import (
    AnalysisOptions,
    CreditAnalysisClient,
    ErrorKind,
    LLMFailure,
)
from app.services.result_normalizer import normalize_with_outcome
from app.services.text_extraction_service import TextExtractor, text_extractor

logger = get_logger(__name__)


class PipelineInputError(Exception):
    """Raised when a submission has nothing to analyze."""

    def __init__(self, message: str, error_code: str = "missing_input"):
        super().__init__(message)
        self.error_code = error_code


class AnalysisNotFoundError(Exception):
    """Raised when an analysis does not exist or belongs to another user."""


@dataclass(slots=True)
class UploadedDocument:
    data: bytes
    mime_type: str | None
    file_name: str | None = None


@dataclass(slots=True)
class PipelineOutcome:
    success: bool
    analysis_id: str
    result: AnalysisResult | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    persisted: bool = True
    metrics: dict[str, Any] = field(default_factory=dict)


class AnalysisPipeline:
    def __init__(
        self,
        llm_client: CreditAnalysisClient,
        *,
        extractor: TextExtractor | None = None,
        analyses=AnalysisRepository,
        scores=CreditScoreRepository,
        notifier: NotificationService | None = None,
    ):
        self.llm_client = llm_client
        self.extractor = extractor or text_extractor
        self.analyses = analyses
        self.scores = scores
        self.notifier = notifier or notification_service

    async def submit_text(
        self, user_id: str, text: str, *, options: AnalysisOptions | None = None
    ) -> PipelineOutcome:
        """Analyze report text pasted or sent by the client."""
        if not text or not text.strip():
            raise PipelineInputError("No text provided for analysis")

        analysis = await self.analyses.create(user_id, file_name=None)
        await self._notify_started(user_id)
        await self._store_ocr_text(analysis.id, text)

        return await self._analyze(
            analysis.id, user_id, text=text, text_source="plain_text", options=options
        )

    async def submit_document(
        self,
        user_id: str,
        data: bytes,
        mime_type: str | None,
        file_name: str | None = None,
        *,
        options: AnalysisOptions | None = None,
    ) -> PipelineOutcome:
        """Analyze an uploaded PDF, image or text file."""
        if not data:
            raise PipelineInputError("Uploaded file is empty")

        analysis = await self.analyses.create(user_id, file_name=file_name)
        await self._notify_started(user_id)

        return await self._analyze(
            analysis.id,
            user_id,
            document=UploadedDocument(data=data, mime_type=mime_type, file_name=file_name),
            options=options,
        )

    async def retry(
        self,
        user_id: str,
        analysis_id: str,
        document: UploadedDocument | None = None,
        *,
        text: str | None = None,
        options: AnalysisOptions | None = None,
    ) -> PipelineOutcome:
        """
        Re-run an existing analysis.

        A fresh document or text replaces the stored report text; otherwise the
        stored ocr_text is reused without re-extracting.

        Raises:
            AnalysisNotFoundError: analysis missing or owned by someone else
            PipelineInputError: nothing to analyze
        """
        analysis: Analysis | None = await self.analyses.get_for_user(analysis_id, user_id)
        if analysis is None:
            raise AnalysisNotFoundError(f"Analysis {analysis_id} not found")

        fresh_text = text if text and text.strip() else None
        if document is None and fresh_text is None and not (analysis.ocr_text or "").strip():
            raise PipelineInputError("No OCR text available for retry")

        logger.info(
            "Retrying analysis",
            analysis_id=analysis_id,
            user_id=user_id,
            previous_status=analysis.status,
            fresh_document=document is not None,
        )

        await self.analyses.mark_processing(
            analysis_id, file_name=document.file_name if document else None
        )
        await self._notify_started(user_id)

        if document is not None:
            return await self._analyze(analysis_id, user_id, document=document, options=options)

        if fresh_text is not None:
            await self._store_ocr_text(analysis_id, fresh_text)
            return await self._analyze(
                analysis_id, user_id, text=fresh_text, text_source="plain_text", options=options
            )

        return await self._analyze(
            analysis_id, user_id, text=analysis.ocr_text, text_source="stored_text", options=options
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _analyze(
        self,
        analysis_id: str,
        user_id: str,
        *,
        text: str | None = None,
        text_source: str | None = None,
        document: UploadedDocument | None = None,
        options: AnalysisOptions | None = None,
    ) -> PipelineOutcome:
        started = time.monotonic()
        metrics: dict[str, Any] = {}

        content_kind = "text"
        content = text or ""

        if document is not None:
            extraction = await self.extractor.extract(
                document.data, document.mime_type, file_name=document.file_name, user_id=user_id
            )
            metrics.update(
                extraction_ms=extraction.duration_ms,
                extraction_method=extraction.method,
                fallback_used=extraction.fallback_used,
                processing_id=extraction.processing_id,
                page_count=extraction.page_count,
            )

            if not extraction.success:
                return await self._fail(
                    analysis_id,
                    user_id,
                    ErrorKind.EXTRACTION,
                    extraction.error or "Could not read the uploaded document",
                    metrics,
                    started,
                )

            if extraction.is_image:
                content_kind = "image"
                content = extraction.image_data_url
            else:
                content = extraction.text
                await self._store_ocr_text(analysis_id, content)
        else:
            metrics.update(extraction_ms=0, extraction_method=text_source, fallback_used=False)

        llm_outcome = await self.llm_client.analyze(
            content, content_kind, user_id, options or AnalysisOptions()
        )
        metrics["llm"] = llm_outcome.metrics.to_dict()

        if isinstance(llm_outcome, LLMFailure):
            return await self._fail(
                analysis_id, user_id, llm_outcome.kind, llm_outcome.message, metrics, started
            )

        normalized = normalize_with_outcome(llm_outcome.raw_output)
        result = normalized.result
        metrics["normalization"] = normalized.outcome.value

        persisted = True
        try:
            await self.analyses.mark_completed(analysis_id, result.to_wire())
        except Exception as e:
            persisted = False
            logger.error(
                "Failed to persist completed analysis, returning in-memory result",
                analysis_id=analysis_id,
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )

        await self._notify(
            user_id,
            "Analysis complete",
            "Your credit report analysis is ready to view.",
            "success",
        )

        if result.has_valid_score():
            await self._record_score(user_id, analysis_id, result.overview.score)

        metrics["total_processing_ms"] = int((time.monotonic() - started) * 1000)

        logger.info(
            "Analysis pipeline completed",
            analysis_id=analysis_id,
            user_id=user_id,
            score=result.overview.score,
            normalization=normalized.outcome.value,
            persisted=persisted,
            total_processing_ms=metrics["total_processing_ms"],
        )

        return PipelineOutcome(
            success=True,
            analysis_id=analysis_id,
            result=result,
            persisted=persisted,
            metrics=metrics,
        )

    async def _fail(
        self,
        analysis_id: str,
        user_id: str,
        kind: ErrorKind,
        message: str,
        metrics: dict[str, Any],
        started: float,
    ) -> PipelineOutcome:
        persisted = True
        try:
            await self.analyses.mark_error(analysis_id, message)
        except Exception as e:
            persisted = False
            logger.error(
                "Failed to persist analysis error state",
                analysis_id=analysis_id,
                error=str(e),
            )

        await self._notify(
            user_id,
            "Analysis failed",
            f"We couldn't analyze your credit report: {message}",
            "error",
        )

        metrics["total_processing_ms"] = int((time.monotonic() - started) * 1000)

        logger.warning(
            "Analysis pipeline failed",
            analysis_id=analysis_id,
            user_id=user_id,
            error_kind=kind.value,
            error=message,
        )

        return PipelineOutcome(
            success=False,
            analysis_id=analysis_id,
            error=message,
            error_kind=kind,
            persisted=persisted,
            metrics=metrics,
        )

    async def _store_ocr_text(self, analysis_id: str, text: str) -> None:
        try:
            await self.analyses.save_ocr_text(analysis_id, text)
        except Exception as e:
            logger.error("Failed to store report text", analysis_id=analysis_id, error=str(e))

    async def _record_score(self, user_id: str, analysis_id: str, score: int) -> None:
        try:
            await self.scores.record(user_id, analysis_id, score)
        except Exception as e:
            logger.warning(
                "Failed to record credit score history",
                analysis_id=analysis_id,
                score=score,
                error=str(e),
            )

    async def _notify_started(self, user_id: str) -> None:
        await self._notify(
            user_id,
            "Analysis started",
            "We're analyzing your credit report. This usually takes under a minute.",
            "info",
        )

    async def _notify(self, user_id: str, title: str, message: str, notification_type: str) -> None:
        try:
            await self.notifier.create_notification(user_id, title, message, notification_type)
        except Exception as e:
            logger.warning("Notification failed", user_id=user_id, title=title, error=str(e))
