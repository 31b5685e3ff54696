"""
Data schemas for bid line-item reconciliation

All structures are plain pydantic models so callers can persist them
verbatim with model_dump(mode="json").
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MatchType(str, Enum):
    """How a candidate relates to its anchor item"""
    EXACT = "exact"        # Near-identical description/vector
    SIMILAR = "similar"    # Same scope, different wording
    GROUPED = "grouped"    # Several comparison items jointly cover the anchor
    NONE = "none"          # No match found


class MatchSource(str, Enum):
    """Which stage produced a candidate"""
    EMBEDDING = "embedding"
    REASONING = "reasoning"


class LineItem(BaseModel):
    """
    A single cost line from a bid or takeoff.

    Owned by its source and never mutated by the engine.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str = Field(..., description="Bid or takeoff this line belongs to")
    sequence_number: int = Field(default=0, description="Caller-defined ordering")
    description: str
    category: str = ""
    quantity: Optional[float] = None
    unit: Optional[str] = None
    unit_price: Optional[float] = None
    amount: float = 0.0
    notes: Optional[str] = None

    @property
    def effective_unit_price(self) -> Optional[float]:
        """Unit price, or amount / quantity when the price column is empty"""
        if self.unit_price is not None:
            return self.unit_price
        if self.quantity:
            return self.amount / self.quantity
        return None


class TakeoffItem(BaseModel):
    """An estimator's takeoff line (quantities priced at estimated unit cost)"""
    model_config = ConfigDict(frozen=True)

    id: str
    category: str = ""
    description: str
    quantity: float = 0.0
    unit: str = "ea"
    unit_cost: Optional[float] = None

    def to_line_item(self, owner_id: str, sequence_number: int) -> LineItem:
        """Express the takeoff line as an anchor LineItem"""
        return LineItem(
            id=self.id,
            owner_id=owner_id,
            sequence_number=sequence_number,
            description=self.description,
            category=self.category,
            quantity=self.quantity,
            unit=self.unit,
            unit_price=self.unit_cost,
            amount=self.quantity * (self.unit_cost or 0.0),
        )


class BidContext(BaseModel):
    """Per-owner metadata supplied by the persistence collaborator"""
    id: str
    bidder_name: str = "Unknown"
    amount: Optional[float] = None
    timeline: Optional[str] = None
    notes: Optional[str] = None
    trade_category: Optional[str] = None


class MatchCandidate(BaseModel):
    """A proposed match for an anchor item from one comparison owner"""
    owner_id: str
    item: LineItem
    confidence: int = Field(..., ge=0, le=100)
    match_type: MatchType
    source: MatchSource = MatchSource.EMBEDDING
    notes: Optional[str] = None
    grouped_item_ids: List[str] = Field(default_factory=list)


class LineItemMatch(BaseModel):
    """An anchor item together with every candidate that shares its scope"""
    anchor_item: LineItem
    candidates: List[MatchCandidate]
    normalized_work_type: Optional[str] = None
    normalized_materials: List[str] = Field(default_factory=list)
    quantity_variance_pct: Optional[float] = None
    price_variance_pct: Optional[float] = None


class MatchingResult(BaseModel):
    """
    Full partition of a comparison run.

    matches[].anchor_item + unmatched_anchor == anchor list (disjoint);
    candidate items + unmatched_by_owner == comparison items.
    """
    matches: List[LineItemMatch] = Field(default_factory=list)
    unmatched_anchor: List[LineItem] = Field(default_factory=list)
    unmatched_by_owner: Dict[str, List[LineItem]] = Field(default_factory=dict)
    embeddings_used: bool = False


# ---- Analysis report ---------------------------------------------------------


class BestValue(BaseModel):
    bid_id: str = ""
    bidder_name: str = ""
    reasoning: str = ""


class PriceRange(BaseModel):
    min: float = 0.0
    max: float = 0.0
    variance: float = 0.0


class PriceBreakdown(BaseModel):
    total_variance: float = 0.0
    bid_totals: Dict[str, float] = Field(default_factory=dict)
    average_unit_cost: Dict[str, float] = Field(default_factory=dict)
    price_range: Dict[str, PriceRange] = Field(default_factory=dict)


class OwnerItems(BaseModel):
    bid_id: str
    items: List[str] = Field(default_factory=list)


class ScopeAnalysis(BaseModel):
    missing_items: List[OwnerItems] = Field(default_factory=list)
    extra_items: List[OwnerItems] = Field(default_factory=list)
    coverage_gaps: List[str] = Field(default_factory=list)


class ScopeCoverage(BaseModel):
    matched_items: int = 0
    missing_items: int = 0
    extra_items: int = 0
    coverage_percentage: float = 0.0


class OwnerConcerns(BaseModel):
    bid_id: str = ""
    concerns: List[str] = Field(default_factory=list)


class RiskAssessment(BaseModel):
    low_bid_risks: List[OwnerConcerns] = Field(default_factory=list)
    high_bid_risks: List[OwnerConcerns] = Field(default_factory=list)
    quality_indicators: Dict[str, str] = Field(default_factory=dict)


class NegotiationPoint(BaseModel):
    bid_id: str = ""
    bidder_name: str = ""
    points: List[str] = Field(default_factory=list)


class CostPerUnit(BaseModel):
    item: str
    prices: Dict[str, float] = Field(default_factory=dict)
    average: float = 0.0
    variance: float = 0.0


class AnalysisResult(BaseModel):
    """Structured comparative report for one bid-to-bid comparison"""
    summary: str
    best_value: BestValue
    key_differences: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    price_breakdown: PriceBreakdown = Field(default_factory=PriceBreakdown)
    scope_analysis: ScopeAnalysis = Field(default_factory=ScopeAnalysis)
    scope_coverage: ScopeCoverage = Field(default_factory=ScopeCoverage)
    risk_assessment: RiskAssessment = Field(default_factory=RiskAssessment)
    negotiation_points: List[NegotiationPoint] = Field(default_factory=list)
    cost_per_unit_analysis: Dict[str, CostPerUnit] = Field(default_factory=dict)
    generated_by_reasoning: bool = False


# ---- Takeoff comparison ------------------------------------------------------


class TakeoffPriceAnalysis(BaseModel):
    takeoff_total: float = 0.0
    bid_total: float = 0.0
    variance: float = 0.0
    variance_percentage: float = 0.0
    average_unit_cost_difference: float = 0.0


class TakeoffGap(BaseModel):
    item: LineItem
    reason: str = ""


class Discrepancy(BaseModel):
    takeoff_item: LineItem
    bid_item: LineItem
    variance: float
    impact: str = ""


class TakeoffRiskAssessment(BaseModel):
    scope_gaps: List[str] = Field(default_factory=list)
    potential_change_orders: List[str] = Field(default_factory=list)
    quality_concerns: List[str] = Field(default_factory=list)


class TakeoffAnalysisResult(BaseModel):
    """Structured report for a bid measured against an estimator's takeoff"""
    summary: str
    scope_coverage: ScopeCoverage = Field(default_factory=ScopeCoverage)
    price_analysis: TakeoffPriceAnalysis = Field(default_factory=TakeoffPriceAnalysis)
    key_findings: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    missing_items: List[TakeoffGap] = Field(default_factory=list)
    extra_items: List[TakeoffGap] = Field(default_factory=list)
    quantity_discrepancies: List[Discrepancy] = Field(default_factory=list)
    price_discrepancies: List[Discrepancy] = Field(default_factory=list)
    risk_assessment: TakeoffRiskAssessment = Field(default_factory=TakeoffRiskAssessment)
    generated_by_reasoning: bool = False


# ---- Cache payload -----------------------------------------------------------


class CachedAnalysis(BaseModel):
    """What the cache/store collaborator keeps per comparison key"""
    comparison_type: str = "bid_to_bid"
    matching: MatchingResult
    analysis: Dict
    cached_at: Optional[datetime] = None
