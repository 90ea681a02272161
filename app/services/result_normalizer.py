# app/services/result_normalizer.py
"""
Result Normalizer
Turns whatever the analysis model returned into a complete AnalysisResult.

Parsing order:
    1. the whole output as JSON (PARSED)
    2. a JSON object inside a fenced code block, then the first balanced
       {...} substring of the text (RECOVERED)
    3. a default result with a null score (DEFAULT)

normalize() never raises.
"""

import json
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from app.infrastructure.observability.logging import get_logger
from app.models.domain.analysis_domain import (
    SCORE_MAX,
    SCORE_MIN,
    AnalysisResult,
    CreditCard,
    CreditCards,
    CreditHack,
    CreditHacks,
    DisputeItem,
    Disputes,
    Overview,
    SideHustle,
    SideHustles,
)

logger = get_logger(__name__)

DEFAULT_SUMMARY = (
    "Analysis data is not available. The credit report could not be analyzed, "
    "possibly because the document was incomplete or a processing error occurred."
)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)

# Candidate start positions tried by the brace scanner before giving up
_MAX_BRACE_CANDIDATES = 25

_IMPACT_VALUES = {"high", "medium", "low"}
_DIFFICULTY_VALUES = {"easy", "medium", "hard"}


class NormalizationOutcome(str, Enum):
    PARSED = "parsed"
    RECOVERED = "recovered"
    DEFAULT = "default"


@dataclass(slots=True)
class NormalizedResult:
    result: AnalysisResult
    outcome: NormalizationOutcome


def default_result() -> AnalysisResult:
    """Result used when the model output holds nothing usable."""
    return AnalysisResult(
        overview=Overview(score=None, summary=DEFAULT_SUMMARY),
        credit_hacks=CreditHacks(
            recommendations=[
                CreditHack(
                    title="Get a free copy of your credit report",
                    description=(
                        "Request your free reports from all three bureaus and review them "
                        "for errors before uploading again."
                    ),
                    impact="medium",
                    timeframe="1-2 weeks",
                    steps=[
                        "Visit annualcreditreport.com",
                        "Request reports from Equifax, Experian and TransUnion",
                        "Review each report for inaccurate accounts or balances",
                    ],
                )
            ]
        ),
    )


def normalize(raw_output: Any) -> AnalysisResult:
    """Coerce raw model output into an AnalysisResult."""
    return normalize_with_outcome(raw_output).result


def normalize_with_outcome(raw_output: Any) -> NormalizedResult:
    """Coerce raw model output and report which parsing path produced it."""
    try:
        data, outcome = _parse(raw_output)
    except Exception as e:
        logger.error(
            "Model output parsing failed, using default result", error_type=type(e).__name__
        )
        data, outcome = None, NormalizationOutcome.DEFAULT

    if data is None:
        logger.warning(
            "Model output could not be parsed, using default result",
            output_type=type(raw_output).__name__,
            output_preview=str(raw_output)[:200] if raw_output is not None else None,
        )
        return NormalizedResult(default_result(), NormalizationOutcome.DEFAULT)

    try:
        result = _coerce_result(data)
    except Exception as e:
        # Coercion is total over dicts; this guards the never-raises contract
        logger.error("Result coercion failed, using default result", error=str(e))
        return NormalizedResult(default_result(), NormalizationOutcome.DEFAULT)

    if outcome is NormalizationOutcome.RECOVERED:
        logger.info("Recovered JSON object from wrapped model output")

    return NormalizedResult(result, outcome)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _parse(raw_output: Any) -> tuple[dict | None, NormalizationOutcome]:
    if isinstance(raw_output, dict):
        return raw_output, NormalizationOutcome.PARSED

    if isinstance(raw_output, bytes | bytearray):
        try:
            raw_output = raw_output.decode("utf-8")
        except UnicodeDecodeError:
            return None, NormalizationOutcome.DEFAULT

    if not isinstance(raw_output, str) or not raw_output.strip():
        return None, NormalizationOutcome.DEFAULT

    direct = _loads_object(raw_output.strip())
    if direct is not None:
        return direct, NormalizationOutcome.PARSED

    for block in _FENCE_RE.findall(raw_output):
        fenced = _loads_object(block.strip())
        if fenced is not None:
            return fenced, NormalizationOutcome.RECOVERED

    embedded = _first_balanced_object(raw_output)
    if embedded is not None:
        return embedded, NormalizationOutcome.RECOVERED

    return None, NormalizationOutcome.DEFAULT


def _loads_object(text: str) -> dict | None:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, ValueError, RecursionError):
        return None
    return value if isinstance(value, dict) else None


def _first_balanced_object(text: str) -> dict | None:
    """Scan for {...} spans, honouring JSON strings and escapes."""
    start = text.find("{")
    candidates = 0

    while start != -1 and candidates < _MAX_BRACE_CANDIDATES:
        candidates += 1
        end = _matching_brace(text, start)
        if end is None:
            return None

        parsed = _loads_object(text[start : end + 1])
        if parsed is not None:
            return parsed

        start = text.find("{", start + 1)

    return None


def _matching_brace(text: str, start: int) -> int | None:
    depth = 0
    in_string = False
    escaped = False

    for index in range(start, len(text)):
        char = text[index]

        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index

    return None


# ---------------------------------------------------------------------------
# Field coercion
# ---------------------------------------------------------------------------


def _coerce_result(data: dict) -> AnalysisResult:
    overview = _as_dict(_pick(data, "overview"))

    return AnalysisResult(
        overview=Overview(
            score=coerce_score(_pick(overview, "score")),
            summary=_as_str(_pick(overview, "summary")),
            positive_factors=_as_str_list(_pick(overview, "positiveFactors", "positive_factors")),
            negative_factors=_as_str_list(_pick(overview, "negativeFactors", "negative_factors")),
        ),
        disputes=Disputes(
            items=[
                DisputeItem(
                    bureau=_as_str(_pick(item, "bureau")),
                    account_name=_as_str(_pick(item, "accountName", "account_name")),
                    account_number=_as_str(_pick(item, "accountNumber", "account_number")),
                    issue_type=_as_str(_pick(item, "issueType", "issue_type")),
                    recommended_action=_as_str(
                        _pick(item, "recommendedAction", "recommended_action")
                    ),
                )
                for item in _records(_pick(data, "disputes"), "items")
            ]
        ),
        credit_hacks=CreditHacks(
            recommendations=[
                CreditHack(
                    title=_as_str(_pick(item, "title")),
                    description=_as_str(_pick(item, "description")),
                    impact=_as_choice(_pick(item, "impact"), _IMPACT_VALUES),
                    timeframe=_as_str(_pick(item, "timeframe")),
                    steps=_as_str_list(_pick(item, "steps")),
                )
                for item in _records(_pick(data, "creditHacks", "credit_hacks"), "recommendations")
            ]
        ),
        credit_cards=CreditCards(
            recommendations=[
                CreditCard(
                    name=_as_str(_pick(item, "name")),
                    issuer=_as_str(_pick(item, "issuer")),
                    annual_fee=_as_str(_pick(item, "annualFee", "annual_fee")),
                    apr=_as_str(_pick(item, "apr")),
                    rewards=_as_str(_pick(item, "rewards")),
                    approval_likelihood=_as_choice(
                        _pick(item, "approvalLikelihood", "approval_likelihood"), _IMPACT_VALUES
                    ),
                    best_for=_as_str(_pick(item, "bestFor", "best_for")),
                )
                for item in _records(_pick(data, "creditCards", "credit_cards"), "recommendations")
            ]
        ),
        side_hustles=SideHustles(
            recommendations=[
                SideHustle(
                    title=_as_str(_pick(item, "title")),
                    description=_as_str(_pick(item, "description")),
                    potential_earnings=_as_str(
                        _pick(item, "potentialEarnings", "potential_earnings")
                    ),
                    startup_cost=_as_str(_pick(item, "startupCost", "startup_cost")),
                    difficulty=_as_choice(_pick(item, "difficulty"), _DIFFICULTY_VALUES),
                    time_commitment=_as_str(_pick(item, "timeCommitment", "time_commitment")),
                    skills=_as_str_list(_pick(item, "skills")),
                )
                for item in _records(_pick(data, "sideHustles", "side_hustles"), "recommendations")
            ]
        ),
    )


def coerce_score(value: Any) -> int | None:
    """Accept a credit score only if it is numeric and within 300-850."""
    if isinstance(value, bool) or value is None:
        return None

    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None

    if not isinstance(value, int | float):
        return None

    if isinstance(value, float) and not math.isfinite(value):
        return None

    if SCORE_MIN <= value <= SCORE_MAX:
        return int(value)

    return None


def _pick(data: dict, *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return ""
    if isinstance(value, int | float):
        return str(value)
    return ""


def _as_str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [
        entry if isinstance(entry, str) else str(entry)
        for entry in value
        if isinstance(entry, str)
        or (isinstance(entry, int | float) and not isinstance(entry, bool))
    ]


def _as_choice(value: Any, allowed: set[str]) -> str:
    if not isinstance(value, str):
        return ""
    lowered = value.strip().lower()
    return lowered if lowered in allowed else ""


def _records(section: Any, list_key: str) -> list[dict]:
    """Records from {list_key: [...]} or a bare list; non-objects are dropped."""
    if isinstance(section, dict):
        section = section.get(list_key)
    if not isinstance(section, list):
        return []
    return [record for record in section if isinstance(record, dict)]
