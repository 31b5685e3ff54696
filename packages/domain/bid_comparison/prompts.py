"""
Prompt builders for line-item matching and comparative analysis
"""
from typing import Dict, Iterable, List, Optional

from packages.domain.bid_comparison.schemas import (
    BidContext,
    LineItem,
    LineItemMatch,
    MatchingResult,
)

MATCH_SYSTEM_PROMPT = """You are an expert construction bid analyst. Your task is to determine if line items from different bids represent the same work, even if they're described differently.

Analyze the items and determine:
1. Do they represent the same work? (yes/no)
2. If yes, what is the normalized work type? (e.g., "Install electrical outlets")
3. What materials are involved? (extract material types)
4. What is the confidence level? (0-100)
5. Are quantities comparable? (normalize units if needed)
6. Any notes about the match?

Return your analysis as JSON with this structure (return ONLY this JSON, no other text):
{
  "isMatch": boolean,
  "confidence": number (0-100),
  "matchType": "exact" | "similar" | "grouped",
  "normalizedWorkType": string,
  "normalizedMaterials": string[],
  "quantityVariance": number (percentage difference),
  "priceVariance": number (percentage difference),
  "notes": string
}"""

GROUP_MATCH_SYSTEM_PROMPT = """You are an expert construction bid analyst. One bidder may split a single scope of work across several line items. Your task is to decide whether some combination of the candidate items, taken together, represents the same work as the selected item.

Analyze the items and determine:
1. Which candidate items (by 1-based number) jointly cover the selected item's scope? Select only items that belong to it.
2. What is the confidence level that the selected items together are the same work? (0-100)
3. What is the normalized work type and which materials are involved?
4. Any notes about the match?

Return your analysis as JSON with this structure (return ONLY this JSON, no other text):
{
  "isMatch": boolean,
  "selectedItemIndices": number[] (1-based indices from the candidate list),
  "confidence": number (0-100),
  "matchType": "grouped" | "similar" | "exact",
  "normalizedWorkType": string,
  "normalizedMaterials": string[],
  "quantityVariance": number (percentage difference),
  "priceVariance": number (percentage difference),
  "notes": string
}"""

BID_ANALYSIS_SYSTEM_PROMPT = """You are an expert construction bid analyst with 20+ years of experience. Your task is to provide comprehensive analysis of construction bid comparisons.

The line items have already been matched and all price statistics have been computed for you. Focus on the qualitative judgement:
1. Best value identification (not just lowest price, but best overall value)
2. Key differences between bids
3. Recommendations for the general contractor
4. Scope coverage gaps
5. Risk assessment (low bid risks, high bid risks, quality indicators)
6. Negotiation points for each bidder

Consider:
- Price vs quality trade-offs
- Missing scope items that could lead to change orders
- Unusually low bids that might indicate quality concerns
- Unusually high bids that might be overpriced
- Timeline implications

Return your analysis as JSON with this exact structure (return ONLY this JSON, no other text):
{
  "summary": "Executive summary paragraph (2-3 sentences)",
  "bestValue": {"bidId": "string", "bidderName": "string", "reasoning": "Why this bid offers best value"},
  "keyDifferences": ["Array of key differences between bids"],
  "recommendations": ["Array of actionable recommendations"],
  "coverageGaps": ["Array of scope gaps identified"],
  "riskAssessment": {
    "lowBidRisks": [{"bidId": "string", "concerns": ["risk concerns"]}],
    "highBidRisks": [{"bidId": "string", "concerns": ["risk concerns"]}],
    "qualityIndicators": {"bidId": "quality assessment"}
  },
  "negotiationPoints": [{"bidId": "string", "bidderName": "string", "points": ["negotiation points"]}]
}"""

TAKEOFF_ANALYSIS_SYSTEM_PROMPT = """You are an expert construction bid analyst with 20+ years of experience. Your task is to analyze how well a bid matches the takeoff/estimate.

Matching and all totals have already been computed for you. Focus on:
1. Key findings and discrepancies
2. Recommendations for the general contractor
3. Why takeoff items might be missing from the bid, and why bid items might be extra
4. Risk assessment (scope gaps, potential change orders, quality concerns)

Return your analysis as JSON with this exact structure (return ONLY this JSON, no other text):
{
  "summary": "Executive summary paragraph (2-3 sentences)",
  "keyFindings": ["Array of key findings"],
  "recommendations": ["Array of actionable recommendations"],
  "missingItemReasons": {"takeoff item id": "why it might be missing"},
  "extraItemReasons": {"bid item id": "why it might be extra"},
  "riskAssessment": {
    "scopeGaps": ["Array of scope gaps identified"],
    "potentialChangeOrders": ["Array of potential change order items"],
    "qualityConcerns": ["Array of quality concerns"]
  }
}"""


def _money(value: Optional[float]) -> str:
    return "N/A" if value is None else f"${value:,.2f}"


def _describe_item(item: LineItem, prefix: str = "- ") -> str:
    lines = [
        f"{prefix}Description: {item.description}",
        f"{prefix}Category: {item.category or 'N/A'}",
        f"{prefix}Quantity: {item.quantity if item.quantity is not None else 'N/A'} {item.unit or ''}".rstrip(),
        f"{prefix}Unit Price: {_money(item.unit_price)}",
        f"{prefix}Amount: {_money(item.amount)}",
    ]
    if item.notes:
        lines.append(f"{prefix}Notes: {item.notes}")
    return "\n".join(lines)


def build_single_match_prompt(anchor: LineItem, candidate: LineItem, owner_id: str) -> str:
    return f"""Selected Bid Item:
{_describe_item(anchor)}

Comparison Bid Item (Bid ID: {owner_id}):
{_describe_item(candidate)}

Analyze if these represent the same work."""


def build_group_match_prompt(anchor: LineItem, candidates: List[LineItem], owner_id: str) -> str:
    listing = "\n\n".join(
        f"{index}.\n{_describe_item(item, prefix='   - ')}"
        for index, item in enumerate(candidates, start=1)
    )
    return f"""Selected Bid Item:
{_describe_item(anchor)}

Candidate Items from Bid ID {owner_id}:
{listing}

Which of these candidate items, taken together, represent the same work as the selected item?"""


def _summarize_matches(matches: Iterable[LineItemMatch]) -> str:
    blocks = []
    for match in matches:
        anchor = match.anchor_item
        comparison = "\n    ".join(
            f"{c.owner_id}: {c.item.description} - {_money(c.item.effective_unit_price)}/{c.item.unit or 'ea'} "
            f"(confidence: {c.confidence}%)"
            for c in match.candidates
        )
        blocks.append(
            f"Selected: {anchor.description} - {_money(anchor.effective_unit_price)}/{anchor.unit or 'ea'}\n"
            f"  Matches:\n    {comparison}"
        )
    return "\n\n".join(blocks)


def build_bid_analysis_prompt(
    anchor_bid: BidContext,
    comparison_bids: List[BidContext],
    matching: MatchingResult,
    bid_totals: Dict[str, float],
    total_variance: float,
    coverage_percentage: float,
) -> str:
    comparison_lines = "\n".join(
        f"- {bid.bidder_name} (Bid ID: {bid.id}): {_money(bid_totals.get(bid.id))} "
        f"(Timeline: {bid.timeline or 'Not specified'}, Trade: {bid.trade_category or 'Unknown'})"
        for bid in comparison_bids
    )

    unmatched_lines = [
        f"Selected Bid Unmatched: {', '.join(i.description for i in matching.unmatched_anchor) or 'None'}"
    ]
    for owner_id, items in matching.unmatched_by_owner.items():
        unmatched_lines.append(
            f"{owner_id} Unmatched: {', '.join(i.description for i in items) or 'None'}"
        )

    return f"""BID COMPARISON DATA

Selected Bid:
- Bidder: {anchor_bid.bidder_name} (Bid ID: {anchor_bid.id})
- Total Amount: {_money(bid_totals.get(anchor_bid.id))}
- Timeline: {anchor_bid.timeline or 'Not specified'}
- Trade: {anchor_bid.trade_category or 'Unknown'}
- Notes: {anchor_bid.notes or 'None'}

Comparison Bids:
{comparison_lines or 'None'}

COMPUTED STATISTICS:
- Total price variance across bids: {total_variance:.1f}%
- Selected bid scope coverage: {coverage_percentage:.1f}%

MATCHED LINE ITEMS:
{_summarize_matches(matching.matches) or 'No matches found'}

UNMATCHED ITEMS:
{chr(10).join(unmatched_lines)}

Please provide comprehensive analysis of these bids."""


def build_takeoff_analysis_prompt(
    bid: BidContext,
    takeoff_items: List[LineItem],
    bid_items: List[LineItem],
    matching: MatchingResult,
    takeoff_total: float,
    bid_total: float,
) -> str:
    matched_lines = "\n".join(
        f'- Takeoff: "{m.anchor_item.description}" -> Bid: "{c.item.description}" '
        f"({c.confidence}% confidence, {c.match_type.value} match)"
        for m in matching.matches
        for c in m.candidates
    )
    missing_lines = "\n".join(
        f"- [{i.id}] {i.description} ({i.quantity} {i.unit or ''})".rstrip()
        for i in matching.unmatched_anchor
    )
    extra_items = [i for items in matching.unmatched_by_owner.values() for i in items]
    extra_lines = "\n".join(
        f"- [{i.id}] {i.description} ({i.quantity if i.quantity is not None else 'N/A'} {i.unit or ''})".rstrip()
        for i in extra_items
    )

    return f"""BID vs TAKEOFF COMPARISON ANALYSIS

Selected Bid:
- Bidder: {bid.bidder_name}
- Total Amount: {_money(bid_total)}
- Timeline: {bid.timeline or 'Not specified'}
- Trade: {bid.trade_category or 'Unknown'}

Takeoff Summary:
- Total Items: {len(takeoff_items)}
- Takeoff Total: {_money(takeoff_total)}

Bid Summary:
- Total Line Items: {len(bid_items)}
- Bid Total: {_money(bid_total)}

Matching Results:
- Matched: {len(matching.matches)} items
- Missing from Bid: {len(matching.unmatched_anchor)} takeoff items
- Extra in Bid: {len(extra_items)} items not in takeoff

Matched Items with Confidence:
{matched_lines or 'None'}

Missing Items (in takeoff but not in bid):
{missing_lines or 'None'}

Extra Items (in bid but not in takeoff):
{extra_lines or 'None'}

Please provide comprehensive analysis of this comparison."""
