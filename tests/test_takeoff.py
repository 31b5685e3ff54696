import pytest

from conftest import ScriptedReasoner, make_item
from packages.domain.bid_comparison.errors import ProviderTransientError
from packages.domain.bid_comparison.schemas import (
    BidContext,
    LineItemMatch,
    MatchCandidate,
    MatchingResult,
    MatchType,
    TakeoffItem,
)
from packages.domain.bid_comparison.takeoff import (
    TakeoffAnalysisGenerator,
    average_unit_cost_difference,
    find_discrepancies,
    takeoff_anchors,
)


@pytest.fixture
def takeoff_lines():
    items = [
        TakeoffItem(id="t1", category="Framing", description="2x4 stud framing", quantity=200, unit="LF", unit_cost=5.0),
        TakeoffItem(id="t2", category="Drywall", description="Hang drywall", quantity=1000, unit="SF", unit_cost=2.0),
        TakeoffItem(id="t3", category="Paint", description="Prime and paint", quantity=1000, unit="SF", unit_cost=1.0),
    ]
    return takeoff_anchors("takeoff-1", items)


@pytest.fixture
def bid_items():
    return [
        make_item("b1", "bid-1", "Framing", amount=1300, quantity=200, unit="linear feet", unit_price=6.5),
        make_item("b2", "bid-1", "Drywall", amount=2100, quantity=1050, unit="sq ft", unit_price=2.0),
        make_item("b3", "bid-1", "Permit fees", amount=400),
    ]


@pytest.fixture
def matching(takeoff_lines, bid_items):
    return MatchingResult(
        matches=[
            LineItemMatch(anchor_item=takeoff_lines[0], candidates=[
                MatchCandidate(owner_id="bid-1", item=bid_items[0], confidence=90, match_type=MatchType.SIMILAR),
            ]),
            LineItemMatch(anchor_item=takeoff_lines[1], candidates=[
                MatchCandidate(owner_id="bid-1", item=bid_items[1], confidence=95, match_type=MatchType.EXACT),
            ]),
        ],
        unmatched_anchor=[takeoff_lines[2]],
        unmatched_by_owner={"bid-1": [bid_items[2]]},
    )


def test_takeoff_anchors_price_quantity_times_unit_cost(takeoff_lines):
    assert [t.owner_id for t in takeoff_lines] == ["takeoff-1"] * 3
    assert [t.amount for t in takeoff_lines] == [1000, 2000, 1000]
    assert [t.sequence_number for t in takeoff_lines] == [1, 2, 3]


def test_takeoff_item_without_cost_has_zero_amount():
    line, = takeoff_anchors("t", [TakeoffItem(id="x", description="Allowance", quantity=3)])
    assert line.amount == 0
    assert line.unit == "ea"


def test_discrepancies_above_threshold(matching):
    quantity, price = find_discrepancies(matching, threshold_pct=10.0)

    # Drywall quantity +5% is within threshold; framing price +30% is not
    assert quantity == []
    assert len(price) == 1
    assert price[0].takeoff_item.id == "t1"
    assert price[0].variance == pytest.approx(30.0)
    assert "unit price above" in price[0].impact


def test_quantity_discrepancy_reported_with_lower_threshold(matching):
    quantity, _ = find_discrepancies(matching, threshold_pct=4.0)

    assert [d.bid_item.id for d in quantity] == ["b2"]
    assert quantity[0].variance == pytest.approx(5.0)


def test_average_unit_cost_difference(matching):
    # framing +1.50, drywall 0.00
    assert average_unit_cost_difference(matching) == pytest.approx(0.75)


async def test_report_from_reasoning(takeoff_lines, bid_items, matching, analysis_config):
    reasoner = ScriptedReasoner(responses=[{
        "summary": "Bid covers framing and drywall but omits paint.",
        "keyFindings": ["Paint excluded"],
        "recommendations": ["Request paint pricing"],
        "missingItemReasons": {"t3": "Likely by owner"},
        "extraItemReasons": {"b3": "Permits carried by sub"},
        "riskAssessment": {"scopeGaps": ["Paint"], "potentialChangeOrders": ["Paint"], "qualityConcerns": []},
    }])
    bid = BidContext(id="bid-1", bidder_name="Acme")

    result = await TakeoffAnalysisGenerator(reasoner, analysis_config).analyze(bid, takeoff_lines, bid_items, matching)

    assert result.generated_by_reasoning
    assert result.price_analysis.takeoff_total == 4000
    assert result.price_analysis.bid_total == 3800
    assert result.price_analysis.variance == -200
    assert result.price_analysis.variance_percentage == -5.0
    assert result.scope_coverage.coverage_percentage == pytest.approx(66.67)
    assert result.missing_items[0].item.id == "t3"
    assert result.missing_items[0].reason == "Likely by owner"
    assert result.extra_items[0].reason == "Permits carried by sub"
    assert result.risk_assessment.scope_gaps == ["Paint"]
    assert len(result.price_discrepancies) == 1


async def test_fallback_report_keeps_numbers(takeoff_lines, bid_items, matching, analysis_config):
    bid = BidContext(id="bid-1", bidder_name="Acme", amount=4400)
    reasoner = ScriptedReasoner(responses=[ProviderTransientError("scripted", "timeout")])

    result = await TakeoffAnalysisGenerator(reasoner, analysis_config).analyze(bid, takeoff_lines, bid_items, matching)

    assert not result.generated_by_reasoning
    assert result.summary == "Analysis generation encountered an error. Please review comparison manually."
    assert result.price_analysis.bid_total == 4400
    assert result.key_findings == ["Price variance: 10.0%", "Scope coverage: 2/3 items matched"]
    assert result.recommendations == ["Review comparison manually for detailed analysis"]
    assert [g.item.id for g in result.missing_items] == ["t3"]
    assert [g.item.id for g in result.extra_items] == ["b3"]
    assert len(result.price_discrepancies) == 1
