"""
FastAPI dependencies wiring the services together.

Routes depend on these instead of module singletons so tests can swap any
collaborator through app.dependency_overrides.
"""

from fastapi import Depends, status

from app.infrastructure.observability.logging import get_logger
from app.middleware.error_handlers import ApiError
from app.services.analysis_pipeline import AnalysisPipeline
from app.services.chat_service import ChatService
from app.services.diagnostics_service import DiagnosticsService
from app.services.dispute_letter_service import DisputeLetterService
from app.services.notification_service import NotificationService, notification_service
from app.services.openai_service import (
    CreditAnalysisClient,
    LLMConfigurationError,
    get_credit_analysis_client,
)
from app.services.payment_service import PayPalService, paypal_service
from app.services.response_cache import ResponseCache, get_response_cache
from app.services.text_extraction_service import TextExtractor, text_extractor

logger = get_logger(__name__)


def get_llm_client() -> CreditAnalysisClient:
    try:
        return get_credit_analysis_client()
    except LLMConfigurationError as e:
        logger.error("LLM client unavailable", error=str(e))
        raise ApiError(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "AI analysis is not configured on this server",
            "llm_not_configured",
        ) from e


def get_text_extractor() -> TextExtractor:
    return text_extractor


def get_notification_service() -> NotificationService:
    return notification_service


def get_pipeline(
    llm_client: CreditAnalysisClient = Depends(get_llm_client),
    extractor: TextExtractor = Depends(get_text_extractor),
    notifier: NotificationService = Depends(get_notification_service),
) -> AnalysisPipeline:
    return AnalysisPipeline(llm_client, extractor=extractor, notifier=notifier)


def get_chat_service(
    llm_client: CreditAnalysisClient = Depends(get_llm_client),
    cache: ResponseCache = Depends(get_response_cache),
) -> ChatService:
    return ChatService(llm_client, cache)


def get_letter_service(
    llm_client: CreditAnalysisClient = Depends(get_llm_client),
) -> DisputeLetterService:
    return DisputeLetterService(llm_client)


def get_diagnostics_service(
    cache: ResponseCache = Depends(get_response_cache),
) -> DiagnosticsService:
    return DiagnosticsService(cache=cache)


def get_paypal_service() -> PayPalService:
    return paypal_service
