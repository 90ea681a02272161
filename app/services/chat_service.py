# app/services/chat_service.py
"""
Credit chat: questions about a completed analysis, answered by the chat model
with the analysis result as context.

Replies are cached per (user, analysis, message prefix) so that repeated
questions within the cache TTL do not call the model again.
"""

import json
import time
from dataclasses import dataclass

from app.infrastructure.observability.logging import get_logger
from app.models.domain.account_domain import ChatMessage
from app.repositories.analysis_repository import AnalysisRepository
from app.repositories.chat_repository import ChatRepository
from app.services.analysis_pipeline import AnalysisNotFoundError
from app.services.openai_service import CreditAnalysisClient, ErrorKind, LLMFailure
from app.services.response_cache import ResponseCache
from app.services.result_normalizer import normalize

logger = get_logger(__name__)

CACHE_KEY_MESSAGE_CHARS = 50

FRIENDLY_ERRORS = {
    ErrorKind.AUTHENTICATION: "API authentication error. Please contact support.",
    ErrorKind.RATE_LIMIT: (
        "Our AI service is experiencing high demand. Please try again in a few minutes."
    ),
    ErrorKind.QUOTA_EXCEEDED: "AI service quota exceeded. Please contact support.",
    ErrorKind.TIMEOUT: "Request timed out. Please try a shorter message.",
    ErrorKind.CONNECTION: "Connection to AI service failed. Please try again.",
}
DEFAULT_FRIENDLY_ERROR = "Failed to generate AI response. Please try again."


class ChatServiceError(Exception):
    """Raised when a chat turn cannot be answered."""

    def __init__(self, message: str, kind: ErrorKind | None = None):
        super().__init__(message)
        self.kind = kind


@dataclass(slots=True)
class ChatReply:
    response: str
    messages: list[ChatMessage]
    cached: bool
    processing_ms: int


def friendly_error_message(kind: ErrorKind) -> str:
    return FRIENDLY_ERRORS.get(kind, DEFAULT_FRIENDLY_ERROR)


def build_system_prompt(result: dict | None) -> str:
    """System prompt carrying the user's analysis into the conversation."""
    analysis = normalize(result or {})
    wire = analysis.to_wire()

    score = analysis.overview.score if analysis.overview.score is not None else "Unknown"
    summary = analysis.overview.summary or "No summary available"

    return f"""You are a helpful credit assistant. You have analyzed the user's credit report and have the following information:

Credit Score: {score}
Summary: {summary}
Positive Factors: {json.dumps(wire["overview"]["positiveFactors"])}
Negative Factors: {json.dumps(wire["overview"]["negativeFactors"])}
Disputes: {json.dumps(wire["disputes"]["items"])}
Credit Hacks: {json.dumps(wire["creditHacks"]["recommendations"])}
Side Hustles: {json.dumps(wire["sideHustles"]["recommendations"])}

Use this information to give helpful, personalized answers to the user's questions about their credit.
Be concise, friendly and informative. If you don't know something, say so rather than making it up.
"""


class ChatService:
    def __init__(
        self,
        llm_client: CreditAnalysisClient,
        cache: ResponseCache,
        *,
        analyses=AnalysisRepository,
        messages=ChatRepository,
    ):
        self.llm_client = llm_client
        self.cache = cache
        self.analyses = analyses
        self.messages = messages

    async def send_message(self, user_id: str, analysis_id: str, message: str) -> ChatReply:
        """
        Store the user's message, answer it and store the answer.

        Raises:
            AnalysisNotFoundError: analysis missing or owned by someone else
            ChatServiceError: the model could not answer; a system message
                with a user-facing explanation has been stored
        """
        started = time.monotonic()

        analysis = await self.analyses.get_for_user(analysis_id, user_id)
        if analysis is None:
            raise AnalysisNotFoundError(f"Analysis {analysis_id} not found")

        await self.messages.add_message(analysis_id, user_id, "user", message)

        cache_key = self.cache.make_key(user_id, analysis_id, message[:CACHE_KEY_MESSAGE_CHARS])
        cached_response = self.cache.get(cache_key)

        if cached_response is not None:
            logger.info("Chat response served from cache", user_id=user_id, analysis_id=analysis_id)
            response_text = cached_response
        else:
            history = await self.messages.list_for_analysis(analysis_id, user_id)
            conversation = [
                {"role": m.role, "content": m.content}
                for m in history
                if m.role in ("user", "assistant")
            ]

            outcome = await self.llm_client.chat(
                conversation, build_system_prompt(analysis.result), user_id
            )

            if isinstance(outcome, LLMFailure):
                friendly = friendly_error_message(outcome.kind)
                await self._store_system_message(analysis_id, user_id, f"Error: {friendly}")
                raise ChatServiceError(friendly, kind=outcome.kind)

            response_text = outcome.raw_output
            self.cache.put(cache_key, response_text)

        await self.messages.add_message(analysis_id, user_id, "assistant", response_text)
        updated = await self.messages.list_for_analysis(analysis_id, user_id)

        return ChatReply(
            response=response_text,
            messages=updated,
            cached=cached_response is not None,
            processing_ms=int((time.monotonic() - started) * 1000),
        )

    async def get_history(self, user_id: str, analysis_id: str) -> tuple[str, list[ChatMessage]]:
        """Ordered history for an analysis; analysis_id "latest" picks the newest one."""
        if analysis_id == "latest":
            analysis = await self.analyses.get_latest_for_user(user_id)
        else:
            analysis = await self.analyses.get_for_user(analysis_id, user_id)

        if analysis is None:
            raise AnalysisNotFoundError(f"Analysis {analysis_id} not found")

        return analysis.id, await self.messages.list_for_analysis(analysis.id, user_id)

    async def _store_system_message(self, analysis_id: str, user_id: str, content: str) -> None:
        try:
            await self.messages.add_message(analysis_id, user_id, "system", content)
        except Exception as e:
            logger.warning(
                "Failed to save chat error message", analysis_id=analysis_id, error=str(e)
            )
