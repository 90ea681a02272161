# app/models/api/analysis_request.py
"""
Request models for the analysis, chat and dispute endpoints.
Clients send camelCase keys; snake_case is accepted too.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.domain.analysis_domain import DisputeItem


class CamelRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AnalyzeRequest(CamelRequest):
    """JSON body for POST /analyze. Multipart uploads carry the same fields as form parts."""

    analysis_id: str | None = Field(default=None, description="Existing analysis to retry")
    text: str | None = Field(default=None, description="Credit report text")


class ReanalyzeRequest(CamelRequest):
    analysis_id: str = Field(..., min_length=1)


class ChatRequest(CamelRequest):
    analysis_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1, max_length=4000)


class SenderInfoRequest(CamelRequest):
    """Consumer details printed on a dispute letter."""

    name: str | None = Field(default=None, max_length=200)
    address: str | None = Field(default=None, max_length=500)
    email: str | None = Field(default=None, max_length=200)
    phone: str | None = Field(default=None, max_length=50)


class GenerateLetterRequest(CamelRequest):
    analysis_id: str = Field(..., min_length=1)
    dispute: DisputeItem
    user_info: SenderInfoRequest | None = None


class CreateNoteRequest(CamelRequest):
    analysis_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1, max_length=5000)


class UpdateUserRequest(CamelRequest):
    """Admin edit of a profile. Only the fields sent are changed."""

    full_name: str | None = Field(default=None, max_length=200)
    is_pro: bool | None = None
    role: Literal["user", "admin"] | None = None
