"""
Bid Analysis Generator - variance statistics plus a narrative report

Numbers are always computed here, deterministically. The reasoning service
only contributes qualitative fields (summary, best value, differences,
recommendations, risks, negotiation points). When that call fails the
report is still complete, with placeholder text around the numbers.
"""
from collections import defaultdict
from statistics import mean
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

import structlog

from packages.domain.bid_comparison.engine_config import AnalysisConfig
from packages.domain.bid_comparison.errors import (
    ConfigurationError,
    ProviderTransientError,
)
from packages.domain.bid_comparison.matcher import claimed_keys
from packages.domain.bid_comparison.prompts import (
    BID_ANALYSIS_SYSTEM_PROMPT,
    build_bid_analysis_prompt,
)
from packages.domain.bid_comparison.reasoner import (
    Reasoner,
    ReasonerOptions,
    complete_with_timeout,
)
from packages.domain.bid_comparison.response_parsing import (
    ParseFailure,
    QualitativeBidAnalysis,
    parse_structured,
)
from packages.domain.bid_comparison.schemas import (
    AnalysisResult,
    BestValue,
    BidContext,
    CostPerUnit,
    LineItem,
    MatchingResult,
    NegotiationPoint,
    OwnerConcerns,
    OwnerItems,
    PriceBreakdown,
    PriceRange,
    RiskAssessment,
    ScopeAnalysis,
    ScopeCoverage,
)

logger = structlog.get_logger()

UNCATEGORIZED = "Uncategorized"


def spread_pct(values: Sequence[float]) -> float:
    """(max - min) / max * 100, 0.0 when there is nothing to compare"""
    if not values:
        return 0.0
    high = max(values)
    if high <= 0:
        return 0.0
    return round((high - min(values)) / high * 100, 2)


def owner_totals(
    contexts: Sequence[BidContext],
    items_by_owner: Mapping[str, Sequence[LineItem]],
) -> Dict[str, float]:
    """Stated bid amount, or the sum of the owner's line items"""
    totals = {}
    for context in contexts:
        if context.amount is not None:
            totals[context.id] = context.amount
        else:
            totals[context.id] = sum(i.amount for i in items_by_owner.get(context.id, []))
    return totals


def scope_coverage(matching: MatchingResult) -> ScopeCoverage:
    matched = len(matching.matches)
    missing = len(matching.unmatched_anchor)
    total = matched + missing
    return ScopeCoverage(
        matched_items=matched,
        missing_items=missing,
        extra_items=sum(len(items) for items in matching.unmatched_by_owner.values()),
        coverage_percentage=round(matched / total * 100, 2) if total else 0.0,
    )


def items_from_matching(matching: MatchingResult, anchor_owner_id: str) -> Dict[str, List[LineItem]]:
    """
    Recover each owner's line items from a partition.

    Grouped candidates stay combined. A comparison item offered to several
    anchors is listed once.
    """
    items: Dict[str, List[LineItem]] = defaultdict(list)
    seen: Set[Tuple] = set()
    for match in matching.matches:
        items[anchor_owner_id].append(match.anchor_item)
        for candidate in match.candidates:
            key = tuple(claimed_keys(candidate))
            if key in seen:
                continue
            seen.add(key)
            items[candidate.owner_id].append(candidate.item)
    items[anchor_owner_id].extend(matching.unmatched_anchor)
    for owner_id, leftover in matching.unmatched_by_owner.items():
        items[owner_id].extend(leftover)
    return dict(items)


def compute_price_breakdown(
    anchor_bid: BidContext,
    matching: MatchingResult,
    bid_totals: Dict[str, float],
) -> PriceBreakdown:
    """
    Per-category price range over matched items and per-item average unit cost.

    A category's range compares, per owner, the summed amounts of the
    matched items in that category. A comparison item that is a candidate
    for several anchors of one category is summed once.
    """
    category_amounts: Dict[str, Dict[str, float]] = defaultdict(lambda: defaultdict(float))
    counted: Set[Tuple] = set()
    average_unit_cost: Dict[str, float] = {}

    for match in matching.matches:
        anchor = match.anchor_item
        category = anchor.category or UNCATEGORIZED
        category_amounts[category][anchor_bid.id] += anchor.amount
        for candidate in match.candidates:
            key = (category, *claimed_keys(candidate))
            if key in counted:
                continue
            counted.add(key)
            category_amounts[category][candidate.owner_id] += candidate.item.amount

        prices = [anchor.effective_unit_price] + [c.item.effective_unit_price for c in match.candidates]
        prices = [p for p in prices if p is not None]
        if prices:
            average_unit_cost[anchor.description] = round(mean(prices), 2)

    price_range = {}
    for category, per_owner in category_amounts.items():
        amounts = list(per_owner.values())
        price_range[category] = PriceRange(
            min=round(min(amounts), 2),
            max=round(max(amounts), 2),
            variance=spread_pct(amounts),
        )

    return PriceBreakdown(
        total_variance=spread_pct(list(bid_totals.values())),
        bid_totals=bid_totals,
        average_unit_cost=average_unit_cost,
        price_range=price_range,
    )


def compute_cost_per_unit(anchor_bid: BidContext, matching: MatchingResult) -> Dict[str, CostPerUnit]:
    analysis: Dict[str, CostPerUnit] = {}
    for match in matching.matches:
        anchor = match.anchor_item
        by_owner: Dict[str, List[float]] = defaultdict(list)
        if anchor.effective_unit_price is not None:
            by_owner[anchor_bid.id].append(anchor.effective_unit_price)
        for candidate in match.candidates:
            if candidate.item.effective_unit_price is not None:
                by_owner[candidate.owner_id].append(candidate.item.effective_unit_price)

        if not by_owner:
            continue

        prices = {owner_id: round(mean(values), 2) for owner_id, values in by_owner.items()}
        key = anchor.description if anchor.description not in analysis else f"{anchor.description} ({anchor.id})"
        analysis[key] = CostPerUnit(
            item=match.normalized_work_type or anchor.description,
            prices=prices,
            average=round(mean(prices.values()), 2),
            variance=spread_pct(list(prices.values())),
        )
    return analysis


def compute_scope_lists(
    comparison_bids: Sequence[BidContext],
    matching: MatchingResult,
) -> ScopeAnalysis:
    """Anchor items each comparison owner lacks, and what each owner adds"""
    missing_items = []
    extra_items = []
    for bid in comparison_bids:
        missing = [
            match.anchor_item.description
            for match in matching.matches
            if not any(c.owner_id == bid.id for c in match.candidates)
        ] + [item.description for item in matching.unmatched_anchor]
        if missing:
            missing_items.append(OwnerItems(bid_id=bid.id, items=missing))

        extra = [item.description for item in matching.unmatched_by_owner.get(bid.id, [])]
        if extra:
            extra_items.append(OwnerItems(bid_id=bid.id, items=extra))

    return ScopeAnalysis(missing_items=missing_items, extra_items=extra_items)


class BidAnalysisGenerator:
    """
    Build the comparative report for one anchor bid.

    Usage:
        generator = BidAnalysisGenerator(reasoner, AnalysisConfig())
        report = await generator.analyze(anchor_bid, comparison_bids, matching)
    """

    def __init__(self, reasoner: Optional[Reasoner], config: Optional[AnalysisConfig] = None):
        self.reasoner = reasoner
        self.config = config or AnalysisConfig()
        self.options = ReasonerOptions(
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            timeout_ms=self.config.timeout_ms,
        )

    async def analyze(
        self,
        anchor_bid: BidContext,
        comparison_bids: Sequence[BidContext],
        matching: MatchingResult,
        items_by_owner: Optional[Mapping[str, Sequence[LineItem]]] = None,
    ) -> AnalysisResult:
        """
        Generate the report. Never raises for provider or parsing failures.

        Args:
            items_by_owner: Full line-item lists, used for totals when a bid
                has no stated amount (defaults to the items in the partition)
        """
        if items_by_owner is None:
            items_by_owner = items_from_matching(matching, anchor_bid.id)

        contexts = [anchor_bid, *comparison_bids]
        bid_totals = owner_totals(contexts, items_by_owner)
        price_breakdown = compute_price_breakdown(anchor_bid, matching, bid_totals)
        coverage = scope_coverage(matching)
        scope = compute_scope_lists(comparison_bids, matching)
        cost_per_unit = compute_cost_per_unit(anchor_bid, matching)

        qualitative = await self._qualitative(
            anchor_bid, list(comparison_bids), matching, bid_totals,
            price_breakdown.total_variance, coverage.coverage_percentage,
        )

        if qualitative is None:
            return AnalysisResult(
                summary="Analysis generation encountered an error. Please review bids manually.",
                best_value=BestValue(
                    bid_id=anchor_bid.id,
                    bidder_name=anchor_bid.bidder_name,
                    reasoning="Unable to generate detailed analysis",
                ),
                key_differences=[f"Price variance: {price_breakdown.total_variance:.1f}%"],
                recommendations=["Review bids manually for detailed comparison"],
                price_breakdown=price_breakdown,
                scope_analysis=scope,
                scope_coverage=coverage,
                cost_per_unit_analysis=cost_per_unit,
                generated_by_reasoning=False,
            )

        names = {c.id: c.bidder_name for c in contexts}
        scope.coverage_gaps = qualitative.coverage_gaps

        return AnalysisResult(
            summary=qualitative.summary or "Analysis generated successfully.",
            best_value=self._best_value(qualitative, anchor_bid, names),
            key_differences=qualitative.key_differences,
            recommendations=qualitative.recommendations,
            price_breakdown=price_breakdown,
            scope_analysis=scope,
            scope_coverage=coverage,
            risk_assessment=RiskAssessment(
                low_bid_risks=[
                    OwnerConcerns(bid_id=r.bid_id, concerns=r.concerns)
                    for r in qualitative.risk_assessment.low_bid_risks
                ],
                high_bid_risks=[
                    OwnerConcerns(bid_id=r.bid_id, concerns=r.concerns)
                    for r in qualitative.risk_assessment.high_bid_risks
                ],
                quality_indicators=qualitative.risk_assessment.quality_indicators,
            ),
            negotiation_points=[
                NegotiationPoint(
                    bid_id=p.bid_id,
                    bidder_name=p.bidder_name or names.get(p.bid_id, ""),
                    points=p.points,
                )
                for p in qualitative.negotiation_points
            ],
            cost_per_unit_analysis=cost_per_unit,
            generated_by_reasoning=True,
        )

    def _best_value(self, qualitative: QualitativeBidAnalysis, anchor_bid: BidContext, names: Dict[str, str]) -> BestValue:
        pick = qualitative.best_value
        if pick is None or pick.bid_id not in names:
            # Unknown or missing pick falls back to the anchor bid
            return BestValue(
                bid_id=anchor_bid.id,
                bidder_name=anchor_bid.bidder_name,
                reasoning=pick.reasoning if pick and pick.reasoning else "Analysis in progress",
            )
        return BestValue(
            bid_id=pick.bid_id,
            bidder_name=pick.bidder_name or names[pick.bid_id],
            reasoning=pick.reasoning,
        )

    async def _qualitative(
        self,
        anchor_bid: BidContext,
        comparison_bids: List[BidContext],
        matching: MatchingResult,
        bid_totals: Dict[str, float],
        total_variance: float,
        coverage_percentage: float,
    ) -> Optional[QualitativeBidAnalysis]:
        if self.reasoner is None:
            logger.warning("bid_analysis_reasoner_unavailable", bid_id=anchor_bid.id)
            return None

        prompt = build_bid_analysis_prompt(
            anchor_bid, comparison_bids, matching, bid_totals, total_variance, coverage_percentage
        )
        try:
            response = await complete_with_timeout(
                self.reasoner, BID_ANALYSIS_SYSTEM_PROMPT, prompt, self.options
            )
        except (ProviderTransientError, ConfigurationError) as e:
            logger.error("bid_analysis_failed", bid_id=anchor_bid.id, error=str(e))
            return None

        result = parse_structured(response.content, QualitativeBidAnalysis)
        if isinstance(result, ParseFailure):
            logger.error("bid_analysis_response_malformed",
                         bid_id=anchor_bid.id,
                         reason=result.reason)
            return None

        logger.info("bid_analysis_generated",
                    bid_id=anchor_bid.id,
                    provider=response.provider,
                    model=response.model,
                    input_tokens=response.input_tokens,
                    output_tokens=response.output_tokens)
        return result.value
