# app/services/openai_service.py
"""
OpenAI Service for Credit Report Analysis
Wraps the OpenAI chat completions API for report analysis, the credit chat
and dispute letter generation.

Provider failures are never raised to callers. Every call returns either
LLMSuccess or LLMFailure, and the failure carries an ErrorKind classified
from the SDK's exception types. Transient kinds are retried with
exponential backoff inside an overall deadline that a cancel signal can
cut short.
"""

import asyncio
import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Literal

import openai
from openai import AsyncOpenAI

from app.config import settings
from app.infrastructure.observability.logging import get_logger, log_health_check
from app.repositories.processing_log_repository import ProcessingLogRepository

logger = get_logger(__name__)

Priority = Literal["high", "normal", "low"]
ContentKind = Literal["text", "image"]


class ErrorKind(str, Enum):
    AUTHENTICATION = "AUTHENTICATION"
    RATE_LIMIT = "RATE_LIMIT"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    TIMEOUT = "TIMEOUT"
    CONNECTION = "CONNECTION"
    SERVER = "SERVER"
    UNKNOWN = "UNKNOWN"
    # Set by the pipeline when the document could not be read
    EXTRACTION = "EXTRACTION"


RETRYABLE_KINDS = frozenset(
    {ErrorKind.RATE_LIMIT, ErrorKind.TIMEOUT, ErrorKind.CONNECTION, ErrorKind.SERVER}
)


class LLMConfigurationError(Exception):
    """Raised when the OpenAI client cannot be built from settings."""


@dataclass(slots=True)
class LLMMetrics:
    model: str
    priority: Priority = "normal"
    content_kind: str = "text"
    latency_ms: int = 0
    attempts: int = 0
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class LLMSuccess:
    raw_output: str
    metrics: LLMMetrics

    @property
    def success(self) -> bool:
        return True


@dataclass(slots=True)
class LLMFailure:
    kind: ErrorKind
    message: str
    metrics: LLMMetrics

    @property
    def success(self) -> bool:
        return False

    @property
    def attempts(self) -> int:
        return self.metrics.attempts


LLMOutcome = LLMSuccess | LLMFailure


@dataclass(slots=True)
class AnalysisOptions:
    priority: Priority = "normal"
    timeout: float | None = None  # seconds, overall deadline across attempts
    cancel_signal: asyncio.Event | None = field(default=None)


class _CallAborted(Exception):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def _error_code(error: Exception) -> str | None:
    code = getattr(error, "code", None)
    if code:
        return code
    body = getattr(error, "body", None)
    if isinstance(body, dict):
        nested = body.get("error")
        if isinstance(nested, dict):
            return nested.get("code")
    return None


def classify_openai_error(error: BaseException) -> ErrorKind:
    """Map an SDK exception onto ErrorKind by type and status code."""
    if isinstance(error, openai.AuthenticationError | openai.PermissionDeniedError):
        return ErrorKind.AUTHENTICATION

    if isinstance(error, openai.RateLimitError):
        if _error_code(error) == "insufficient_quota":
            return ErrorKind.QUOTA_EXCEEDED
        return ErrorKind.RATE_LIMIT

    # APITimeoutError subclasses APIConnectionError
    if isinstance(error, openai.APITimeoutError | TimeoutError):
        return ErrorKind.TIMEOUT

    if isinstance(error, openai.APIConnectionError):
        return ErrorKind.CONNECTION

    if isinstance(error, openai.InternalServerError):
        return ErrorKind.SERVER

    if isinstance(error, openai.APIStatusError) and error.status_code >= 500:
        return ErrorKind.SERVER

    return ErrorKind.UNKNOWN


ANALYSIS_SYSTEM_PROMPT = """You are an expert credit analyst with deep knowledge of credit repair, \
consumer credit law, credit card products and practical ways to earn extra income.

Analyze the credit report you are given and respond ONLY with a JSON object (no markdown, \
no prose) with exactly this structure:

{
  "overview": {
    "score": number | null,
    "summary": string,
    "positiveFactors": string[],
    "negativeFactors": string[]
  },
  "disputes": {
    "items": [
      {
        "bureau": string,
        "accountName": string,
        "accountNumber": string,
        "issueType": string,
        "recommendedAction": string
      }
    ]
  },
  "creditHacks": {
    "recommendations": [
      {
        "title": string,
        "description": string,
        "impact": "high" | "medium" | "low",
        "timeframe": string,
        "steps": string[]
      }
    ]
  },
  "creditCards": {
    "recommendations": [
      {
        "name": string,
        "issuer": string,
        "annualFee": string,
        "apr": string,
        "rewards": string,
        "approvalLikelihood": "high" | "medium" | "low",
        "bestFor": string
      }
    ]
  },
  "sideHustles": {
    "recommendations": [
      {
        "title": string,
        "description": string,
        "potentialEarnings": string,
        "startupCost": string,
        "difficulty": "easy" | "medium" | "hard",
        "timeCommitment": string,
        "skills": string[]
      }
    ]
  }
}

Rules:
- Only report a score that is explicitly printed in the report. If there is none, score is null. \
Never estimate or invent a score.
- Disputes: list items that could be disputed and say specifically why.
- Credit hacks: concrete, measurable steps with a realistic timeframe.
- Credit cards: 3-5 cards suited to this credit profile.
- Side hustles: a mix of traditional and creative options with realistic earnings and costs.
"""

VISION_INSTRUCTION = (
    "This image is a credit report. Read all of the text in it, then analyze the report "
    "and respond with the JSON structure described in your instructions."
)


class CreditAnalysisClient:
    """
    OpenAI client for credit analysis, chat and letter generation.

    Retries RATE_LIMIT, TIMEOUT, CONNECTION and SERVER failures; returns
    AUTHENTICATION, QUOTA_EXCEEDED and UNKNOWN on the first attempt.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        client: Any = None,
        model: str | None = None,
        chat_model: str | None = None,
        max_retries: int | None = None,
        retry_base_delay: float | None = None,
        max_backoff: float | None = None,
        default_timeout: float | None = None,
        log_repository=ProcessingLogRepository,
    ):
        if client is None:
            api_key = api_key or settings.OPENAI_API_KEY
            if not api_key:
                raise LLMConfigurationError("OPENAI_API_KEY not configured in settings")

            # Retries are handled here so the SDK must not add its own
            client = AsyncOpenAI(
                api_key=api_key, max_retries=0, timeout=settings.ANALYSIS_TIMEOUT_SECONDS
            )

        self.client = client
        self.model = model or settings.OPENAI_MODEL
        self.chat_model = chat_model or settings.OPENAI_CHAT_MODEL
        self.max_retries = max_retries if max_retries is not None else settings.ANALYSIS_MAX_RETRIES
        self.retry_base_delay = (
            retry_base_delay
            if retry_base_delay is not None
            else settings.ANALYSIS_RETRY_BASE_DELAY_SECONDS
        )
        self.max_backoff = (
            max_backoff if max_backoff is not None else settings.ANALYSIS_MAX_BACKOFF_SECONDS
        )
        self.default_timeout = default_timeout or settings.ANALYSIS_TIMEOUT_SECONDS
        self.log_repository = log_repository

        logger.info(
            "OpenAI client initialized",
            model=self.model,
            chat_model=self.chat_model,
            max_retries=self.max_retries,
            timeout=self.default_timeout,
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def analyze(
        self,
        content: str,
        content_kind: ContentKind = "text",
        user_id: str | None = None,
        options: AnalysisOptions | None = None,
    ) -> LLMOutcome:
        """
        Analyze a credit report.

        Args:
            content: Extracted report text, or an image data URL when content_kind is "image"
            content_kind: "text" or "image"
            user_id: Owner of the report, for the call log
            options: Priority, overall timeout and cancel signal

        Returns:
            LLMSuccess with the raw model output, or LLMFailure with its ErrorKind
        """
        options = options or AnalysisOptions()

        if content_kind == "image":
            user_content: Any = [
                {"type": "text", "text": VISION_INSTRUCTION},
                {"type": "image_url", "image_url": {"url": content}},
            ]
        else:
            text = content
            if len(text) > settings.ANALYSIS_MAX_INPUT_CHARS:
                logger.info(
                    "Report text truncated for analysis",
                    original_length=len(text),
                    max_chars=settings.ANALYSIS_MAX_INPUT_CHARS,
                )
                text = text[: settings.ANALYSIS_MAX_INPUT_CHARS]
            user_content = f"Credit report text:\n\n{text}"

        request = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT},
                {"role": "user", "content": user_content},
            ],
            "max_tokens": settings.OPENAI_MAX_TOKENS,
            "temperature": settings.OPENAI_TEMPERATURE,
            "response_format": {"type": "json_object"},
        }

        return await self._complete(
            request,
            user_id=user_id,
            max_attempts=self.max_retries,
            timeout=options.timeout or self.default_timeout,
            cancel_signal=options.cancel_signal,
            priority=options.priority,
            content_kind=content_kind,
            prompt_length=len(content) if content_kind == "text" else len(VISION_INSTRUCTION),
        )

    async def chat(
        self,
        messages: list[dict[str, str]],
        system: str,
        user_id: str | None = None,
    ) -> LLMOutcome:
        """Answer a chat turn. Uses fewer retries to keep the chat responsive."""
        request = {
            "model": self.chat_model,
            "messages": [{"role": "system", "content": system}, *messages],
            "max_tokens": 1000,
            "temperature": 0.7,
        }
        return await self._complete(
            request,
            user_id=user_id,
            max_attempts=settings.CHAT_MAX_RETRIES,
            timeout=settings.CHAT_TIMEOUT_SECONDS,
            content_kind="chat",
            prompt_length=len(system) + sum(len(m.get("content") or "") for m in messages),
        )

    async def generate_text(
        self,
        prompt: str,
        user_id: str | None = None,
        *,
        temperature: float = 0.7,
        max_tokens: int = 1500,
    ) -> LLMOutcome:
        request = {
            "model": self.chat_model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        return await self._complete(
            request,
            user_id=user_id,
            max_attempts=self.max_retries,
            timeout=self.default_timeout,
            content_kind="letter",
            prompt_length=len(prompt),
        )

    async def health_check(self) -> dict[str, Any]:
        """
        Minimal 1-token request with a 5 second deadline.

        Returns:
            dict: healthy flag, latency and, on failure, the classified error
        """
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=settings.OPENAI_HEALTH_MODEL,
                    messages=[{"role": "user", "content": "ping"}],
                    max_tokens=1,
                ),
                timeout=5,
            )
        except Exception as e:
            latency_ms = round((time.monotonic() - start) * 1000, 1)
            kind = classify_openai_error(e)
            log_health_check("openai", False, latency_ms, error=str(e) or type(e).__name__)
            return {
                "healthy": False,
                "service": "openai",
                "model": settings.OPENAI_HEALTH_MODEL,
                "latency_ms": latency_ms,
                "error": str(e) or type(e).__name__,
                "error_kind": kind.value,
            }

        latency_ms = round((time.monotonic() - start) * 1000, 1)
        log_health_check("openai", True, latency_ms)
        return {
            "healthy": True,
            "service": "openai",
            "model": settings.OPENAI_HEALTH_MODEL,
            "latency_ms": latency_ms,
            "response_id": getattr(response, "id", None),
        }

    # ------------------------------------------------------------------
    # Retry loop
    # ------------------------------------------------------------------

    async def _complete(
        self,
        request: dict[str, Any],
        *,
        user_id: str | None,
        max_attempts: int,
        timeout: float,
        cancel_signal: asyncio.Event | None = None,
        priority: Priority = "normal",
        content_kind: str = "text",
        prompt_length: int = 0,
    ) -> LLMOutcome:
        request_id = str(uuid.uuid4())
        metrics = LLMMetrics(model=request["model"], priority=priority, content_kind=content_kind)
        started = time.monotonic()

        logger.info(
            "OpenAI request started",
            request_id=request_id,
            user_id=user_id,
            model=request["model"],
            content_kind=content_kind,
            priority=priority,
            timeout=timeout,
        )

        outcome = await self._call_with_retry(
            request,
            metrics=metrics,
            max_attempts=max(1, max_attempts),
            deadline=started + timeout,
            cancel_signal=cancel_signal,
        )
        metrics.latency_ms = int((time.monotonic() - started) * 1000)

        if isinstance(outcome, LLMSuccess):
            logger.info(
                "OpenAI request succeeded",
                request_id=request_id,
                attempts=metrics.attempts,
                latency_ms=metrics.latency_ms,
                total_tokens=metrics.total_tokens,
            )
        else:
            logger.error(
                "OpenAI request failed",
                request_id=request_id,
                error_kind=outcome.kind.value,
                error=outcome.message,
                attempts=metrics.attempts,
                latency_ms=metrics.latency_ms,
            )

        await self._record_call(request_id, user_id, prompt_length, outcome)
        return outcome

    async def _call_with_retry(
        self,
        request: dict[str, Any],
        *,
        metrics: LLMMetrics,
        max_attempts: int,
        deadline: float,
        cancel_signal: asyncio.Event | None,
    ) -> LLMOutcome:
        for attempt in range(1, max_attempts + 1):
            metrics.attempts = attempt

            if cancel_signal is not None and cancel_signal.is_set():
                return LLMFailure(ErrorKind.TIMEOUT, "cancelled", metrics)

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return LLMFailure(ErrorKind.TIMEOUT, "Request deadline exceeded", metrics)

            try:
                response = await self._race(
                    self.client.chat.completions.create(**request), remaining, cancel_signal
                )

            except _CallAborted as aborted:
                logger.warning("OpenAI call aborted", attempt=attempt, reason=aborted.reason)
                return LLMFailure(ErrorKind.TIMEOUT, aborted.reason, metrics)

            except Exception as e:
                kind = classify_openai_error(e)
                message = str(e) or type(e).__name__

                if kind not in RETRYABLE_KINDS or attempt >= max_attempts:
                    return LLMFailure(kind, message, metrics)

                delay = self._backoff_delay(attempt, metrics.priority)
                if time.monotonic() + delay >= deadline:
                    return LLMFailure(kind, f"{message} (no time left to retry)", metrics)

                logger.warning(
                    "OpenAI call failed, retrying",
                    attempt=attempt,
                    max_attempts=max_attempts,
                    error_kind=kind.value,
                    wait_time=delay,
                    error=message,
                )

                if await self._sleep(delay, cancel_signal):
                    return LLMFailure(ErrorKind.TIMEOUT, "cancelled", metrics)
                continue

            if not response.choices or not response.choices[0].message.content:
                return LLMFailure(ErrorKind.UNKNOWN, "Empty response from OpenAI API", metrics)

            usage = getattr(response, "usage", None)
            if usage is not None:
                metrics.prompt_tokens = getattr(usage, "prompt_tokens", None)
                metrics.completion_tokens = getattr(usage, "completion_tokens", None)
                metrics.total_tokens = getattr(usage, "total_tokens", None)

            return LLMSuccess(response.choices[0].message.content.strip(), metrics)

        return LLMFailure(ErrorKind.UNKNOWN, "No attempts made", metrics)

    async def _race(self, coro, timeout: float, cancel_signal: asyncio.Event | None):
        """Await coro unless the timeout elapses or cancel_signal fires first."""
        call = asyncio.ensure_future(coro)
        waiters = {call}
        cancel_waiter = None
        if cancel_signal is not None:
            cancel_waiter = asyncio.ensure_future(cancel_signal.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            call.cancel()
            raise
        finally:
            if cancel_waiter is not None and not cancel_waiter.done():
                cancel_waiter.cancel()

        if call in done:
            return call.result()

        call.cancel()
        await asyncio.gather(call, return_exceptions=True)

        if cancel_signal is not None and cancel_signal.is_set():
            raise _CallAborted("cancelled")
        raise _CallAborted(f"Request exceeded the {timeout:.1f}s deadline")

    def _backoff_delay(self, attempt: int, priority: Priority) -> float:
        if priority == "high":
            return self.retry_base_delay
        return min(self.retry_base_delay * 2 ** (attempt - 1), self.max_backoff)

    async def _sleep(self, delay: float, cancel_signal: asyncio.Event | None) -> bool:
        """Sleep for delay seconds; True if the cancel signal fired meanwhile."""
        if cancel_signal is None:
            await asyncio.sleep(delay)
            return False
        try:
            await asyncio.wait_for(cancel_signal.wait(), timeout=delay)
        except TimeoutError:
            return False
        return True

    async def _record_call(
        self, request_id: str, user_id: str | None, prompt_length: int, outcome: LLMOutcome
    ) -> None:
        try:
            await self.log_repository.record_openai_call(
                request_id=request_id,
                user_id=user_id,
                model=outcome.metrics.model,
                prompt_length=prompt_length,
                success=outcome.success,
                latency_ms=outcome.metrics.latency_ms,
                retry_count=max(0, outcome.metrics.attempts - 1),
                error_type=None if outcome.success else outcome.kind.value,
                error_message=None if outcome.success else outcome.message,
            )
        except Exception as e:
            logger.warning("Failed to record OpenAI call", request_id=request_id, error=str(e))


_client: CreditAnalysisClient | None = None


def get_credit_analysis_client() -> CreditAnalysisClient:
    """
    Return the process-wide client, building it on first use.

    Raises:
        LLMConfigurationError: OPENAI_API_KEY is not set
    """
    global _client
    if _client is None:
        _client = CreditAnalysisClient()
    return _client
