"""
Takeoff comparison - a single bid measured against an estimator's takeoff

Takeoff lines are the anchors; the bid is the only comparison owner.
Coverage, totals, gaps and discrepancies are computed here; the reasoning
service adds findings, recommendations, gap explanations and risks.
"""
from statistics import mean
from typing import List, Optional, Sequence, Tuple

import structlog

from packages.domain.bid_comparison.analyzer import scope_coverage
from packages.domain.bid_comparison.engine_config import AnalysisConfig
from packages.domain.bid_comparison.errors import (
    ConfigurationError,
    ProviderTransientError,
)
from packages.domain.bid_comparison.prompts import (
    TAKEOFF_ANALYSIS_SYSTEM_PROMPT,
    build_takeoff_analysis_prompt,
)
from packages.domain.bid_comparison.reasoner import (
    Reasoner,
    ReasonerOptions,
    complete_with_timeout,
)
from packages.domain.bid_comparison.response_parsing import (
    ParseFailure,
    QualitativeTakeoffAnalysis,
    parse_structured,
)
from packages.domain.bid_comparison.schemas import (
    BidContext,
    Discrepancy,
    LineItem,
    MatchingResult,
    TakeoffAnalysisResult,
    TakeoffGap,
    TakeoffItem,
    TakeoffPriceAnalysis,
    TakeoffRiskAssessment,
)
from packages.domain.bid_comparison.units import units_compatible

logger = structlog.get_logger()


def takeoff_anchors(takeoff_id: str, takeoff_items: Sequence[TakeoffItem]) -> List[LineItem]:
    """Express takeoff lines as anchor LineItems owned by the takeoff"""
    return [item.to_line_item(takeoff_id, index) for index, item in enumerate(takeoff_items, start=1)]


def _pct_change(base: Optional[float], value: Optional[float]) -> Optional[float]:
    if not base or value is None:
        return None
    return round((value - base) / base * 100, 2)


def find_discrepancies(
    matching: MatchingResult,
    threshold_pct: float,
) -> Tuple[List[Discrepancy], List[Discrepancy]]:
    """
    Matched pairs whose quantity or price differs by more than threshold_pct.

    Quantities are compared only in a shared unit. Prices use effective unit
    prices in a shared unit, else line amounts.
    """
    quantity: List[Discrepancy] = []
    price: List[Discrepancy] = []

    for match in matching.matches:
        takeoff_item = match.anchor_item
        for candidate in match.candidates:
            bid_item = candidate.item
            same_unit = units_compatible(takeoff_item.unit, bid_item.unit)

            if same_unit:
                q_var = _pct_change(takeoff_item.quantity, bid_item.quantity)
                if q_var is not None and abs(q_var) > threshold_pct:
                    quantity.append(Discrepancy(
                        takeoff_item=takeoff_item,
                        bid_item=bid_item,
                        variance=q_var,
                        impact=(
                            f"Bid quantity {'exceeds' if q_var > 0 else 'is below'} "
                            f"takeoff by {abs(q_var):.1f}%"
                        ),
                    ))

            if same_unit and takeoff_item.effective_unit_price and bid_item.effective_unit_price is not None:
                p_var = _pct_change(takeoff_item.effective_unit_price, bid_item.effective_unit_price)
                basis = "unit price"
            else:
                p_var = _pct_change(takeoff_item.amount, bid_item.amount)
                basis = "amount"

            if p_var is not None and abs(p_var) > threshold_pct:
                price.append(Discrepancy(
                    takeoff_item=takeoff_item,
                    bid_item=bid_item,
                    variance=p_var,
                    impact=(
                        f"Bid {basis} {'above' if p_var > 0 else 'below'} "
                        f"takeoff estimate by {abs(p_var):.1f}%"
                    ),
                ))

    return quantity, price


def average_unit_cost_difference(matching: MatchingResult) -> float:
    """Mean of (bid unit price - takeoff unit cost) over comparable matches"""
    differences = []
    for match in matching.matches:
        anchor_price = match.anchor_item.effective_unit_price
        if anchor_price is None:
            continue
        bid_prices = [
            c.item.effective_unit_price
            for c in match.candidates
            if c.item.effective_unit_price is not None
            and units_compatible(match.anchor_item.unit, c.item.unit)
        ]
        if bid_prices:
            differences.append(mean(bid_prices) - anchor_price)
    return round(mean(differences), 2) if differences else 0.0


class TakeoffAnalysisGenerator:
    """
    Build the bid-vs-takeoff report.

    Usage:
        generator = TakeoffAnalysisGenerator(reasoner, AnalysisConfig())
        report = await generator.analyze(bid, takeoff_lines, bid_items, matching)
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
        bid: BidContext,
        takeoff_lines: Sequence[LineItem],
        bid_items: Sequence[LineItem],
        matching: MatchingResult,
    ) -> TakeoffAnalysisResult:
        """Generate the report. Never raises for provider or parsing failures."""
        takeoff_total = round(sum(i.amount for i in takeoff_lines), 2)
        bid_total = bid.amount if bid.amount is not None else round(sum(i.amount for i in bid_items), 2)
        variance = round(bid_total - takeoff_total, 2)
        variance_pct = round(variance / takeoff_total * 100, 2) if takeoff_total > 0 else 0.0

        coverage = scope_coverage(matching)
        price_analysis = TakeoffPriceAnalysis(
            takeoff_total=takeoff_total,
            bid_total=bid_total,
            variance=variance,
            variance_percentage=variance_pct,
            average_unit_cost_difference=average_unit_cost_difference(matching),
        )
        quantity_discrepancies, price_discrepancies = find_discrepancies(
            matching, self.config.discrepancy_threshold_pct
        )
        extra_bid_items = [i for items in matching.unmatched_by_owner.values() for i in items]

        qualitative = await self._qualitative(
            bid, list(takeoff_lines), list(bid_items), matching, takeoff_total, bid_total
        )

        if qualitative is None:
            return TakeoffAnalysisResult(
                summary="Analysis generation encountered an error. Please review comparison manually.",
                scope_coverage=coverage,
                price_analysis=price_analysis,
                key_findings=[
                    f"Price variance: {variance_pct:.1f}%",
                    f"Scope coverage: {coverage.matched_items}/{len(takeoff_lines)} items matched",
                ],
                recommendations=["Review comparison manually for detailed analysis"],
                missing_items=[TakeoffGap(item=i) for i in matching.unmatched_anchor],
                extra_items=[TakeoffGap(item=i) for i in extra_bid_items],
                quantity_discrepancies=quantity_discrepancies,
                price_discrepancies=price_discrepancies,
                generated_by_reasoning=False,
            )

        return TakeoffAnalysisResult(
            summary=qualitative.summary or "Analysis generated successfully.",
            scope_coverage=coverage,
            price_analysis=price_analysis,
            key_findings=qualitative.key_findings,
            recommendations=qualitative.recommendations,
            missing_items=[
                TakeoffGap(item=i, reason=qualitative.missing_item_reasons.get(i.id, ""))
                for i in matching.unmatched_anchor
            ],
            extra_items=[
                TakeoffGap(item=i, reason=qualitative.extra_item_reasons.get(i.id, ""))
                for i in extra_bid_items
            ],
            quantity_discrepancies=quantity_discrepancies,
            price_discrepancies=price_discrepancies,
            risk_assessment=TakeoffRiskAssessment(
                scope_gaps=qualitative.risk_assessment.scope_gaps,
                potential_change_orders=qualitative.risk_assessment.potential_change_orders,
                quality_concerns=qualitative.risk_assessment.quality_concerns,
            ),
            generated_by_reasoning=True,
        )

    async def _qualitative(
        self,
        bid: BidContext,
        takeoff_lines: List[LineItem],
        bid_items: List[LineItem],
        matching: MatchingResult,
        takeoff_total: float,
        bid_total: float,
    ) -> Optional[QualitativeTakeoffAnalysis]:
        if self.reasoner is None:
            logger.warning("takeoff_analysis_reasoner_unavailable", bid_id=bid.id)
            return None

        prompt = build_takeoff_analysis_prompt(
            bid, takeoff_lines, bid_items, matching, takeoff_total, bid_total
        )
        try:
            response = await complete_with_timeout(
                self.reasoner, TAKEOFF_ANALYSIS_SYSTEM_PROMPT, prompt, self.options
            )
        except (ProviderTransientError, ConfigurationError) as e:
            logger.error("takeoff_analysis_failed", bid_id=bid.id, error=str(e))
            return None

        result = parse_structured(response.content, QualitativeTakeoffAnalysis)
        if isinstance(result, ParseFailure):
            logger.error("takeoff_analysis_response_malformed",
                         bid_id=bid.id,
                         reason=result.reason)
            return None

        logger.info("takeoff_analysis_generated",
                    bid_id=bid.id,
                    provider=response.provider,
                    input_tokens=response.input_tokens,
                    output_tokens=response.output_tokens)
        return result.value
