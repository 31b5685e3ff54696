"""
Comparison Service - cache-aware entry point for bid comparisons

Flow:
1. Build the deterministic cache key for the request
2. Unless force_refresh, return the cached result on a hit
3. Otherwise run matching + analysis and store the result

The cache store is a collaborator: its failures are logged and the request
proceeds as if it were a miss (or as if the write succeeded).
"""
from datetime import datetime, timezone
from typing import Mapping, Optional, Sequence, Union

import structlog
from pydantic import BaseModel, ValidationError

from packages.domain.bid_comparison.analyzer import BidAnalysisGenerator
from packages.domain.bid_comparison.cache_keys import build_cache_key
from packages.domain.bid_comparison.matcher import LineItemMatcher
from packages.domain.bid_comparison.schemas import (
    AnalysisResult,
    BidContext,
    CachedAnalysis,
    LineItem,
    MatchingResult,
    TakeoffAnalysisResult,
    TakeoffItem,
)
from packages.domain.bid_comparison.takeoff import (
    TakeoffAnalysisGenerator,
    takeoff_anchors,
)

logger = structlog.get_logger()

BID_TO_BID = "bid_to_bid"
BID_TO_TAKEOFF = "bid_to_takeoff"


class ComparisonOutcome(BaseModel):
    """Result handed back to the calling layer"""
    cache_key: str
    comparison_type: str
    matching: MatchingResult
    analysis: Union[AnalysisResult, TakeoffAnalysisResult]
    cached: bool = False
    cached_at: Optional[datetime] = None


class ComparisonService:
    """
    Orchestrates matching, analysis and the cache store.

    Usage:
        service = await create_comparison_service(get_settings())
        outcome = await service.compare_bids(
            anchor_bid=BidContext(id="bid-1", bidder_name="Acme Framing"),
            anchor_items=items_1,
            comparison_bids=[BidContext(id="bid-2", bidder_name="North Carpentry")],
            comparison_items={"bid-2": items_2},
        )
        print(outcome.analysis.summary)
    """

    def __init__(
        self,
        matcher: LineItemMatcher,
        bid_analyzer: BidAnalysisGenerator,
        takeoff_analyzer: TakeoffAnalysisGenerator,
        cache=None,
    ):
        self.matcher = matcher
        self.bid_analyzer = bid_analyzer
        self.takeoff_analyzer = takeoff_analyzer
        self.cache = cache

    async def compare_bids(
        self,
        anchor_bid: BidContext,
        anchor_items: Sequence[LineItem],
        comparison_bids: Sequence[BidContext],
        comparison_items: Mapping[str, Sequence[LineItem]],
        force_refresh: bool = False,
    ) -> ComparisonOutcome:
        """
        Compare one anchor bid against one or more comparison bids.

        Raises:
            ConfigurationError / DimensionMismatchError: only when embeddings
                are required and unavailable
        """
        cache_key = build_cache_key(anchor_bid.id, [b.id for b in comparison_bids])

        with structlog.contextvars.bound_contextvars(comparison_key=cache_key):
            logger.info("bid_comparison_started",
                        anchor_bid_id=anchor_bid.id,
                        comparison_bids=len(comparison_bids),
                        anchor_items=len(anchor_items),
                        force_refresh=force_refresh)

            if not force_refresh:
                hit = await self._cached(cache_key, BID_TO_BID, AnalysisResult)
                if hit is not None:
                    return hit

            by_owner = {b.id: list(comparison_items.get(b.id, [])) for b in comparison_bids}
            matching = await self.matcher.match(anchor_items, by_owner)
            analysis = await self.bid_analyzer.analyze(
                anchor_bid,
                comparison_bids,
                matching,
                items_by_owner={anchor_bid.id: list(anchor_items), **by_owner},
            )

            outcome = ComparisonOutcome(
                cache_key=cache_key,
                comparison_type=BID_TO_BID,
                matching=matching,
                analysis=analysis,
            )
            await self._store(outcome)

            logger.info("bid_comparison_complete",
                        matched=len(matching.matches),
                        unmatched_anchor=len(matching.unmatched_anchor),
                        generated_by_reasoning=analysis.generated_by_reasoning)
            return outcome

    async def compare_takeoff(
        self,
        bid: BidContext,
        bid_items: Sequence[LineItem],
        takeoff_id: str,
        takeoff_items: Sequence[TakeoffItem],
        force_refresh: bool = False,
    ) -> ComparisonOutcome:
        """Compare a bid against an estimator's takeoff (takeoff lines are the anchors)"""
        cache_key = build_cache_key(bid.id, [], takeoff_items)

        with structlog.contextvars.bound_contextvars(comparison_key=cache_key):
            logger.info("takeoff_comparison_started",
                        bid_id=bid.id,
                        takeoff_id=takeoff_id,
                        takeoff_items=len(takeoff_items),
                        bid_items=len(bid_items),
                        force_refresh=force_refresh)

            if not force_refresh:
                hit = await self._cached(cache_key, BID_TO_TAKEOFF, TakeoffAnalysisResult)
                if hit is not None:
                    return hit

            anchors = takeoff_anchors(takeoff_id, takeoff_items)
            matching = await self.matcher.match(anchors, {bid.id: list(bid_items)})
            analysis = await self.takeoff_analyzer.analyze(bid, anchors, bid_items, matching)

            outcome = ComparisonOutcome(
                cache_key=cache_key,
                comparison_type=BID_TO_TAKEOFF,
                matching=matching,
                analysis=analysis,
            )
            await self._store(outcome)

            logger.info("takeoff_comparison_complete",
                        matched=len(matching.matches),
                        missing=len(matching.unmatched_anchor),
                        generated_by_reasoning=analysis.generated_by_reasoning)
            return outcome

    async def _cached(self, cache_key: str, comparison_type: str, analysis_model) -> Optional[ComparisonOutcome]:
        if self.cache is None:
            return None

        try:
            entry = await self.cache.get(cache_key)
        except Exception as e:
            logger.error("comparison_cache_read_failed", error=str(e))
            return None

        if entry is None:
            return None
        if entry.comparison_type != comparison_type:
            logger.warning("comparison_cache_type_mismatch",
                           expected=comparison_type,
                           found=entry.comparison_type)
            return None

        try:
            analysis = analysis_model.model_validate(entry.analysis)
        except ValidationError as e:
            logger.warning("comparison_cache_entry_invalid", error=str(e))
            return None

        logger.info("comparison_cache_hit", cached_at=str(entry.cached_at))
        return ComparisonOutcome(
            cache_key=cache_key,
            comparison_type=comparison_type,
            matching=entry.matching,
            analysis=analysis,
            cached=True,
            cached_at=entry.cached_at,
        )

    async def _store(self, outcome: ComparisonOutcome) -> None:
        if self.cache is None:
            return

        entry = CachedAnalysis(
            comparison_type=outcome.comparison_type,
            matching=outcome.matching,
            analysis=outcome.analysis.model_dump(mode="json"),
            cached_at=datetime.now(timezone.utc),
        )
        try:
            await self.cache.put(outcome.cache_key, entry)
        except Exception as e:
            logger.error("comparison_cache_write_failed", error=str(e))
