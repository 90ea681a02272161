"""
Domain models for credit report analyses.

AnalysisResult mirrors the JSON the analysis prompt asks the model for, so
field aliases are camelCase on the wire and snake_case in Python.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

AnalysisStatus = Literal["processing", "completed", "error"]

SCORE_MIN = 300
SCORE_MAX = 850


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Overview(_CamelModel):
    score: int | None = None
    summary: str = ""
    positive_factors: list[str] = Field(default_factory=list)
    negative_factors: list[str] = Field(default_factory=list)


class DisputeItem(_CamelModel):
    bureau: str = ""
    account_name: str = ""
    account_number: str = ""
    issue_type: str = ""
    recommended_action: str = ""


class Disputes(_CamelModel):
    items: list[DisputeItem] = Field(default_factory=list)


class CreditHack(_CamelModel):
    title: str = ""
    description: str = ""
    impact: str = ""  # high | medium | low
    timeframe: str = ""
    steps: list[str] = Field(default_factory=list)


class CreditHacks(_CamelModel):
    recommendations: list[CreditHack] = Field(default_factory=list)


class CreditCard(_CamelModel):
    name: str = ""
    issuer: str = ""
    annual_fee: str = ""
    apr: str = ""
    rewards: str = ""
    approval_likelihood: str = ""  # high | medium | low
    best_for: str = ""


class CreditCards(_CamelModel):
    recommendations: list[CreditCard] = Field(default_factory=list)


class SideHustle(_CamelModel):
    title: str = ""
    description: str = ""
    potential_earnings: str = ""
    startup_cost: str = ""
    difficulty: str = ""  # easy | medium | hard
    time_commitment: str = ""
    skills: list[str] = Field(default_factory=list)


class SideHustles(_CamelModel):
    recommendations: list[SideHustle] = Field(default_factory=list)


class AnalysisResult(_CamelModel):
    """Structured credit analysis. Every section is always present."""

    overview: Overview = Field(default_factory=Overview)
    disputes: Disputes = Field(default_factory=Disputes)
    credit_hacks: CreditHacks = Field(default_factory=CreditHacks)
    credit_cards: CreditCards = Field(default_factory=CreditCards)
    side_hustles: SideHustles = Field(default_factory=SideHustles)

    @property
    def score(self) -> int | None:
        return self.overview.score

    def has_valid_score(self) -> bool:
        score = self.overview.score
        return score is not None and SCORE_MIN <= score <= SCORE_MAX

    def to_wire(self) -> dict[str, Any]:
        """Serialize with camelCase keys, as stored in analyses.result."""
        return self.model_dump(mode="json", by_alias=True)


@dataclass(slots=True)
class Analysis:
    """Represents an analyses row."""

    id: str
    user_id: str
    status: AnalysisStatus
    file_name: str | None
    ocr_text: str | None
    result: dict[str, Any] | None
    error_message: str | None
    created_at: datetime
    updated_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def summary(self) -> str:
        if not self.result:
            return ""
        overview = self.result.get("overview") or {}
        return overview.get("summary") or ""


@dataclass(slots=True)
class CreditScoreEntry:
    """Represents a credit_scores row (score history)."""

    id: str
    user_id: str
    analysis_id: str
    score: int
    created_at: datetime
