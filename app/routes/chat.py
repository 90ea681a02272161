# app/routes/chat.py
"""
Chat API Routes
Questions about a completed analysis (Pro) and the stored conversation.
"""

from fastapi import APIRouter, Depends, Query, status

from app.auth.verify import auth_dependency, get_user_id, pro_dependency
from app.dependencies import get_chat_service
from app.infrastructure.observability.logging import get_logger
from app.middleware.error_handlers import ApiError
from app.models.api.analysis_request import ChatRequest
from app.models.api.analysis_response import (
    ChatHistoryResponse,
    ChatMessageResponse,
    ChatResponse,
)
from app.services.analysis_pipeline import AnalysisNotFoundError
from app.services.chat_service import ChatService, ChatServiceError

logger = get_logger(__name__)

router = APIRouter(tags=["chat"])


@router.post("/chat", response_model=ChatResponse)
async def send_chat_message(
    body: ChatRequest,
    claims: dict = Depends(pro_dependency),
    chat_service: ChatService = Depends(get_chat_service),
):
    user_id = get_user_id(claims)

    try:
        reply = await chat_service.send_message(user_id, body.analysis_id, body.message)
    except AnalysisNotFoundError as e:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Analysis not found", "not_found") from e
    except ChatServiceError as e:
        raise ApiError(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            str(e),
            "chat_unavailable",
            extra={"errorKind": e.kind.value if e.kind else None},
        ) from e

    logger.info(
        "Chat message answered",
        user_id=user_id,
        analysis_id=body.analysis_id,
        cached=reply.cached,
        processing_ms=reply.processing_ms,
    )

    return ChatResponse(
        response=reply.response,
        messages=[ChatMessageResponse.from_message(m) for m in reply.messages],
        cached=reply.cached,
    )


@router.get("/chat-messages", response_model=ChatHistoryResponse)
async def get_chat_messages(
    analysis_id: str = Query(..., alias="analysisId", description="Analysis id or 'latest'"),
    claims: dict = Depends(auth_dependency),
    chat_service: ChatService = Depends(get_chat_service),
):
    user_id = get_user_id(claims)

    try:
        resolved_id, messages = await chat_service.get_history(user_id, analysis_id)
    except AnalysisNotFoundError as e:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Analysis not found", "not_found") from e

    return ChatHistoryResponse(
        analysis_id=resolved_id,
        messages=[ChatMessageResponse.from_message(m) for m in messages],
    )
