#!/usr/bin/env python3
"""
Run a bid comparison end-to-end from a JSON fixture

Fixture format (see scripts/fixtures/framing_bids.json):
    {
        "anchor_bid": {"id": "bid-1", "bidder_name": "...", "amount": 1000},
        "comparison_bids": [{"id": "bid-2", ...}],
        "line_items": {"bid-1": [{...LineItem...}], "bid-2": [...]},
        "takeoff": {"id": "takeoff-1", "items": [{...TakeoffItem...}]}   # optional
    }

Usage:
    python scripts/run_comparison.py scripts/fixtures/framing_bids.json
    python scripts/run_comparison.py scripts/fixtures/framing_bids.json --takeoff
"""
import asyncio
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from packages.common.config import get_settings
from packages.common.logging_config import configure_logging
from packages.domain.bid_comparison.factory import create_comparison_service
from packages.domain.bid_comparison.schemas import BidContext, LineItem, TakeoffItem

logger = structlog.get_logger()


def load_fixture(path: Path) -> dict:
    data = json.loads(path.read_text())
    line_items = {
        owner_id: [LineItem(owner_id=owner_id, **item) for item in items]
        for owner_id, items in data.get("line_items", {}).items()
    }
    return {
        "anchor_bid": BidContext(**data["anchor_bid"]),
        "comparison_bids": [BidContext(**b) for b in data.get("comparison_bids", [])],
        "line_items": line_items,
        "takeoff": data.get("takeoff"),
    }


async def main():
    if len(sys.argv) < 2:
        print("Usage: python scripts/run_comparison.py <fixture.json> [--takeoff]")
        sys.exit(1)

    settings = get_settings()
    configure_logging(settings.log_level, json_output=settings.log_json)

    fixture = load_fixture(Path(sys.argv[1]))
    anchor_bid = fixture["anchor_bid"]
    service = await create_comparison_service(settings)

    if "--takeoff" in sys.argv[2:]:
        takeoff = fixture["takeoff"]
        if not takeoff:
            print("Fixture has no takeoff section")
            sys.exit(1)
        outcome = await service.compare_takeoff(
            bid=anchor_bid,
            bid_items=fixture["line_items"].get(anchor_bid.id, []),
            takeoff_id=takeoff["id"],
            takeoff_items=[TakeoffItem(**item) for item in takeoff["items"]],
        )
    else:
        outcome = await service.compare_bids(
            anchor_bid=anchor_bid,
            anchor_items=fixture["line_items"].get(anchor_bid.id, []),
            comparison_bids=fixture["comparison_bids"],
            comparison_items=fixture["line_items"],
        )

    matching = outcome.matching
    print("=" * 80)
    print(f"COMPARISON {outcome.comparison_type.upper()}  (cache key: {outcome.cache_key})")
    print("=" * 80)
    print(f"Embeddings used: {matching.embeddings_used}")
    print(f"Matched: {len(matching.matches)}  Unmatched anchor: {len(matching.unmatched_anchor)}")
    print()

    for match in matching.matches:
        print(f"• {match.anchor_item.description}")
        for candidate in match.candidates:
            print(f"    → [{candidate.owner_id}] {candidate.item.description} "
                  f"({candidate.match_type.value}, {candidate.confidence}%, {candidate.source.value})")
        print(f"    quantity variance: {match.quantity_variance_pct}%  "
              f"price variance: {match.price_variance_pct}%")

    print()
    print(json.dumps(outcome.analysis.model_dump(mode="json"), indent=2))


if __name__ == "__main__":
    asyncio.run(main())
