"""
Line-Item Matcher - unified match/unmatched partition for one comparison run

Pipeline:
1. SimilarityPrematcher over every anchor (skipped when embeddings are
   unavailable)
2. FallbackReasoner over the anchors the prematcher left unmatched, against
   comparison items no accepted candidate has claimed yet
3. Partition: every anchor lands in exactly one LineItemMatch or in
   unmatched_anchor; every comparison item is a candidate or unmatched
4. Deterministic quantity/price variance per match
"""
from statistics import mean
from typing import Dict, List, Mapping, Optional, Sequence, Set

import structlog

from packages.domain.bid_comparison.embedder import Embedder
from packages.domain.bid_comparison.engine_config import MatchingConfig
from packages.domain.bid_comparison.errors import (
    ConfigurationError,
    DimensionMismatchError,
    ProviderTransientError,
)
from packages.domain.bid_comparison.fallback_reasoner import (
    AnchorResolution,
    FallbackReasoner,
    ItemKey,
)
from packages.domain.bid_comparison.prematcher import SimilarityPrematcher
from packages.domain.bid_comparison.reasoner import Reasoner
from packages.domain.bid_comparison.schemas import (
    LineItem,
    LineItemMatch,
    MatchCandidate,
    MatchingResult,
)
from packages.domain.bid_comparison.units import units_compatible

logger = structlog.get_logger()


def claimed_keys(candidate: MatchCandidate) -> List[ItemKey]:
    """(owner_id, item_id) of every source item behind a candidate"""
    item_ids = candidate.grouped_item_ids or [candidate.item.id]
    return [(candidate.owner_id, item_id) for item_id in item_ids]


def _variance_pct(anchor_value: Optional[float], values: Sequence[Optional[float]]) -> Optional[float]:
    """|anchor - mean(values)| / anchor * 100, or None when not comparable"""
    if not anchor_value or not values or any(v is None for v in values):
        return None
    return round(abs(anchor_value - mean(values)) / abs(anchor_value) * 100, 2)


def quantity_variance_pct(anchor: LineItem, candidates: Sequence[MatchCandidate]) -> Optional[float]:
    """Quantity variance, only when every unit normalizes to the same token"""
    if not candidates:
        return None
    if not units_compatible(anchor.unit, *(c.item.unit for c in candidates)):
        return None
    return _variance_pct(anchor.quantity, [c.item.quantity for c in candidates])


def price_variance_pct(anchor: LineItem, candidates: Sequence[MatchCandidate]) -> Optional[float]:
    """
    Price variance over effective unit prices.

    Unit prices are only comparable in a shared unit; otherwise (or when a
    price is missing) the line amounts are compared instead.
    """
    if not candidates:
        return None

    prices = [c.item.effective_unit_price for c in candidates]
    if (
        anchor.effective_unit_price is not None
        and all(p is not None for p in prices)
        and units_compatible(anchor.unit, *(c.item.unit for c in candidates))
    ):
        return _variance_pct(anchor.effective_unit_price, prices)

    return _variance_pct(anchor.amount, [c.item.amount for c in candidates])


class LineItemMatcher:
    """
    Match anchor items against every comparison owner's items.

    Usage:
        matcher = LineItemMatcher(embedder, reasoner, MatchingConfig())
        result = await matcher.match(anchor_items, {"bid-2": items, "bid-3": items})
    """

    def __init__(
        self,
        embedder: Optional[Embedder],
        reasoner: Optional[Reasoner],
        config: Optional[MatchingConfig] = None,
    ):
        self.config = config or MatchingConfig()
        self.embedder = embedder
        self.prematcher = SimilarityPrematcher(embedder, self.config) if embedder is not None else None
        self.fallback = FallbackReasoner(reasoner, self.config)

    async def match(
        self,
        anchors: Sequence[LineItem],
        comparison_by_owner: Mapping[str, Sequence[LineItem]],
    ) -> MatchingResult:
        """
        Build the full partition for one comparison run.

        Raises:
            ConfigurationError / DimensionMismatchError: only when
                embeddings_required is set and prematching is unavailable
        """
        prematched, embeddings_used = await self._prematch(anchors, comparison_by_owner)

        claimed: Set[ItemKey] = set()
        for candidates in prematched.values():
            for candidate in candidates:
                claimed.update(claimed_keys(candidate))

        remaining = [a for a in anchors if a.id not in prematched]
        resolutions: Dict[str, AnchorResolution] = {}
        if remaining and comparison_by_owner:
            resolutions = await self.fallback.resolve(remaining, comparison_by_owner, claimed)

        matches: List[LineItemMatch] = []
        unmatched_anchor: List[LineItem] = []
        for anchor in anchors:
            candidates = list(prematched.get(anchor.id, []))
            resolution = resolutions.get(anchor.id)
            if resolution is not None:
                candidates.extend(resolution.candidates)

            if not candidates:
                unmatched_anchor.append(anchor)
                continue

            matches.append(LineItemMatch(
                anchor_item=anchor,
                candidates=candidates,
                normalized_work_type=resolution.normalized_work_type if resolution else None,
                normalized_materials=resolution.normalized_materials if resolution else [],
                quantity_variance_pct=quantity_variance_pct(anchor, candidates),
                price_variance_pct=price_variance_pct(anchor, candidates),
            ))

        used: Set[ItemKey] = set()
        for match in matches:
            for candidate in match.candidates:
                used.update(claimed_keys(candidate))

        unmatched_by_owner: Dict[str, List[LineItem]] = {}
        for owner_id, items in comparison_by_owner.items():
            leftover = [item for item in items if (owner_id, item.id) not in used]
            if leftover:
                unmatched_by_owner[owner_id] = leftover

        logger.info("matching_complete",
                    anchors=len(anchors),
                    owners=len(comparison_by_owner),
                    matched=len(matches),
                    unmatched_anchor=len(unmatched_anchor),
                    unmatched_comparison=sum(len(v) for v in unmatched_by_owner.values()),
                    embeddings_used=embeddings_used)

        return MatchingResult(
            matches=matches,
            unmatched_anchor=unmatched_anchor,
            unmatched_by_owner=unmatched_by_owner,
            embeddings_used=embeddings_used,
        )

    async def _prematch(self, anchors, comparison_by_owner):
        if self.prematcher is None:
            if self.config.embeddings_required:
                raise ConfigurationError("Embedding provider not configured")
            logger.info("prematch_skipped", reason="no embedder configured")
            return {}, False

        try:
            return await self.prematcher.prematch(anchors, comparison_by_owner), True
        except (ConfigurationError, DimensionMismatchError) as e:
            if self.config.embeddings_required:
                raise
            logger.warning("prematch_unavailable",
                           error=str(e),
                           message="Falling back to reasoning-only matching")
        except ProviderTransientError as e:
            logger.warning("prematch_failed",
                           error=str(e),
                           message="Falling back to reasoning-only matching")
        return {}, False
