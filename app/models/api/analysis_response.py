# app/models/api/analysis_response.py
"""
Response models. Serialized with camelCase keys (FastAPI dumps by alias).
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.domain.account_domain import (
    ChatMessage,
    DisputeLetter,
    Notification,
    UserNote,
    UserProfile,
)
from app.models.domain.analysis_domain import Analysis, AnalysisStatus


class CamelResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Analyses


class AnalyzeResponse(CamelResponse):
    """Response for a successful POST /analyze."""

    success: bool = True
    analysis_id: str
    result: dict[str, Any]
    metrics: dict[str, Any] = Field(default_factory=dict)
    persisted: bool = True


class AnalysisSummaryResponse(CamelResponse):
    id: str
    status: AnalysisStatus
    file_name: str | None = None
    score: int | None = None
    summary: str = ""
    created_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_analysis(cls, analysis: Analysis) -> "AnalysisSummaryResponse":
        overview = (analysis.result or {}).get("overview") or {}
        score = overview.get("score")
        return cls(
            id=analysis.id,
            status=analysis.status,
            file_name=analysis.file_name,
            score=score if isinstance(score, int) else None,
            summary=analysis.summary,
            created_at=analysis.created_at,
            completed_at=analysis.completed_at,
        )


class AnalysisListResponse(CamelResponse):
    analyses: list[AnalysisSummaryResponse]
    total: int


class AnalysisDetailResponse(CamelResponse):
    """Completed analysis with its normalized result."""

    id: str
    status: AnalysisStatus
    file_name: str | None = None
    result: dict[str, Any]
    created_at: datetime
    completed_at: datetime | None = None


# Chat


class ChatMessageResponse(CamelResponse):
    id: str
    role: str
    content: str
    created_at: datetime

    @classmethod
    def from_message(cls, message: ChatMessage) -> "ChatMessageResponse":
        return cls(
            id=message.id,
            role=message.role,
            content=message.content,
            created_at=message.created_at,
        )


class ChatResponse(CamelResponse):
    success: bool = True
    response: str
    messages: list[ChatMessageResponse]
    cached: bool = False


class ChatHistoryResponse(CamelResponse):
    analysis_id: str
    messages: list[ChatMessageResponse]


# Dispute letters and notes


class DisputeLetterResponse(CamelResponse):
    id: str
    analysis_id: str
    bureau: str
    account_name: str
    content: str
    created_at: datetime

    @classmethod
    def from_letter(cls, letter: DisputeLetter) -> "DisputeLetterResponse":
        return cls(
            id=letter.id,
            analysis_id=letter.analysis_id,
            bureau=letter.bureau,
            account_name=letter.account_name,
            content=letter.content,
            created_at=letter.created_at,
        )


class GenerateLetterResponse(CamelResponse):
    success: bool = True
    letter: str
    letter_id: str | None = None
    stored: bool


class DisputeLettersResponse(CamelResponse):
    letters: list[DisputeLetterResponse]


class NoteResponse(CamelResponse):
    id: str
    analysis_id: str
    content: str
    created_at: datetime

    @classmethod
    def from_note(cls, note: UserNote) -> "NoteResponse":
        return cls(
            id=note.id,
            analysis_id=note.analysis_id,
            content=note.content,
            created_at=note.created_at,
        )


class NotesResponse(CamelResponse):
    notes: list[NoteResponse]


# Notifications


class NotificationResponse(CamelResponse):
    id: str
    title: str
    message: str
    type: str
    is_read: bool
    created_at: datetime

    @classmethod
    def from_notification(cls, notification: Notification) -> "NotificationResponse":
        return cls(
            id=notification.id,
            title=notification.title,
            message=notification.message,
            type=notification.type,
            is_read=notification.is_read,
            created_at=notification.created_at,
        )


class NotificationsResponse(CamelResponse):
    notifications: list[NotificationResponse]
    unread_count: int


class UnreadCountResponse(CamelResponse):
    count: int


class SuccessResponse(CamelResponse):
    success: bool = True
    message: str | None = None


# Payments


class CheckoutResponse(CamelResponse):
    order_id: str
    approval_url: str


class CaptureResponse(CamelResponse):
    success: bool = True
    order_id: str
    status: str
    capture_id: str | None = None


# Admin


class AdminStatsResponse(CamelResponse):
    analyses_by_status: dict[str, int]
    total_analyses: int
    total_users: int
    pro_users: int
    cache: dict[str, Any]


class AdminAnalysisResponse(AnalysisSummaryResponse):
    user_id: str
    error_message: str | None = None

    @classmethod
    def from_analysis(cls, analysis: Analysis) -> "AdminAnalysisResponse":
        summary = AnalysisSummaryResponse.from_analysis(analysis)
        return cls(
            **summary.model_dump(),
            user_id=analysis.user_id,
            error_message=analysis.error_message,
        )


class AdminAnalysesResponse(CamelResponse):
    analyses: list[AdminAnalysisResponse]
    limit: int
    offset: int


class AdminUserResponse(CamelResponse):
    id: str
    email: str | None = None
    full_name: str | None = None
    is_pro: bool
    role: str | None = None
    created_at: datetime
    updated_at: datetime | None = None

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "AdminUserResponse":
        return cls(
            id=profile.id,
            email=profile.email,
            full_name=profile.full_name,
            is_pro=profile.is_pro,
            role=profile.role,
            created_at=profile.created_at,
            updated_at=profile.updated_at,
        )


class AdminUsersResponse(CamelResponse):
    users: list[AdminUserResponse]
    limit: int
    offset: int
