"""
Structured output parsing for reasoning-service responses

Free-text model output is turned into a tagged result instead of an
exception path:

    result = parse_structured(response.content, MatchVerdict)
    if isinstance(result, ParseOk):
        verdict = result.value
    else:
        logger.warning("...", reason=result.reason)
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

from packages.domain.bid_comparison.errors import MalformedResponseError
from packages.domain.bid_comparison.schemas import MatchType

T = TypeVar("T", bound=BaseModel)


@dataclass
class ParseOk(Generic[T]):
    value: T


@dataclass
class ParseFailure:
    reason: str
    raw: str = ""

    def to_error(self) -> MalformedResponseError:
        return MalformedResponseError(self.reason)


ParseResult = Union[ParseOk[T], ParseFailure]


def _strip_code_fences(content: str) -> str:
    # Models sometimes wrap JSON in markdown fences
    if "```json" in content:
        return content.split("```json", 1)[1].split("```", 1)[0]
    if content.count("```") >= 2:
        return content.split("```", 1)[1].split("```", 1)[0]
    return content


def extract_json(content: str, expect: Optional[type] = None) -> Optional[Any]:
    """
    Return the first syntactically valid JSON object or array in content.

    Scans every '{' / '[' position with raw_decode, so prose before or
    after the JSON (and stray braces inside prose) is tolerated. With
    expect=dict, arrays along the way are skipped.
    """
    if not content:
        return None

    decoder = json.JSONDecoder()
    for text in (_strip_code_fences(content), content):
        for index, char in enumerate(text):
            if char not in "{[":
                continue
            try:
                value, _ = decoder.raw_decode(text, index)
            except json.JSONDecodeError:
                continue
            if expect is not None and not isinstance(value, expect):
                continue
            return value
    return None


def parse_structured(content: str, model: Type[T]) -> ParseResult:
    """Extract JSON from content and validate it against a pydantic model"""
    data = extract_json(content, expect=dict)
    if data is None:
        data = extract_json(content)
    if data is None:
        return ParseFailure(reason="no JSON found in response", raw=content or "")
    if not isinstance(data, dict):
        return ParseFailure(reason=f"expected JSON object, got {type(data).__name__}", raw=content)

    try:
        return ParseOk(model.model_validate(data))
    except ValidationError as e:
        return ParseFailure(reason=f"schema validation failed: {e.error_count()} error(s)", raw=content)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class MatchVerdict(_CamelModel):
    """Reasoning-service verdict for one (anchor, comparison item(s)) query"""
    is_match: bool
    confidence: float = Field(..., ge=0, le=100)
    match_type: MatchType = MatchType.SIMILAR
    normalized_work_type: Optional[str] = None
    normalized_materials: List[str] = Field(default_factory=list)
    quantity_variance: Optional[float] = None
    price_variance: Optional[float] = None
    notes: Optional[str] = None
    selected_item_indices: List[int] = Field(default_factory=list)

    @field_validator("match_type", mode="before")
    @classmethod
    def coerce_match_type(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            if v in {m.value for m in MatchType}:
                return v
        # Unrecognized labels on an accepted match read as "similar"
        return MatchType.SIMILAR

    @field_validator("normalized_materials", "selected_item_indices", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return [] if v is None else v


class _LenientModel(_CamelModel):
    """
    Every field falls back to its default when missing or invalid.

    The report is never partially undefined: a bad field is replaced by
    its neutral value instead of rejecting the whole object.
    """

    @field_validator("*", mode="wrap")
    @classmethod
    def default_on_error(cls, value, handler, info):
        try:
            return handler(value)
        except ValidationError:
            field = cls.model_fields[info.field_name]
            return field.get_default(call_default_factory=True)


class LenientBestValue(_LenientModel):
    bid_id: str = ""
    bidder_name: str = ""
    reasoning: str = ""


class LenientOwnerConcerns(_LenientModel):
    bid_id: str = ""
    concerns: List[str] = Field(default_factory=list)


class LenientRiskAssessment(_LenientModel):
    low_bid_risks: List[LenientOwnerConcerns] = Field(default_factory=list)
    high_bid_risks: List[LenientOwnerConcerns] = Field(default_factory=list)
    quality_indicators: Dict[str, str] = Field(default_factory=dict)


class LenientNegotiationPoint(_LenientModel):
    bid_id: str = ""
    bidder_name: str = ""
    points: List[str] = Field(default_factory=list)


class QualitativeBidAnalysis(_LenientModel):
    """Fields the reasoning service contributes to a bid-to-bid report"""
    summary: str = ""
    best_value: Optional[LenientBestValue] = None
    key_differences: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    coverage_gaps: List[str] = Field(default_factory=list)
    risk_assessment: LenientRiskAssessment = Field(default_factory=LenientRiskAssessment)
    negotiation_points: List[LenientNegotiationPoint] = Field(default_factory=list)


class LenientTakeoffRisk(_LenientModel):
    scope_gaps: List[str] = Field(default_factory=list)
    potential_change_orders: List[str] = Field(default_factory=list)
    quality_concerns: List[str] = Field(default_factory=list)


class QualitativeTakeoffAnalysis(_LenientModel):
    """Fields the reasoning service contributes to a takeoff report"""
    summary: str = ""
    key_findings: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    missing_item_reasons: Dict[str, str] = Field(default_factory=dict)
    extra_item_reasons: Dict[str, str] = Field(default_factory=dict)
    risk_assessment: LenientTakeoffRisk = Field(default_factory=LenientTakeoffRisk)
