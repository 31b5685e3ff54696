"""
Fallback Reasoner - semantic comparison for anchors the prematcher missed

Protocol per (anchor, owner) pair:
1. Ask about each unclaimed comparison item of that owner in turn;
   stop at the first accepted match
2. If none is accepted, offer up to max_group_size unclaimed items at once
   and let the reasoning service pick which of them jointly cover the anchor

Pairs run concurrently, bounded by a semaphore on in-flight reasoning calls.
Ordering only matters inside a pair. Every provider error, timeout and
malformed response is logged and read as "no match" for that pair.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

import structlog

from packages.domain.bid_comparison.engine_config import MatchingConfig
from packages.domain.bid_comparison.errors import (
    ConfigurationError,
    ProviderTransientError,
)
from packages.domain.bid_comparison.prompts import (
    GROUP_MATCH_SYSTEM_PROMPT,
    MATCH_SYSTEM_PROMPT,
    build_group_match_prompt,
    build_single_match_prompt,
)
from packages.domain.bid_comparison.reasoner import (
    Reasoner,
    ReasonerOptions,
    complete_with_timeout,
)
from packages.domain.bid_comparison.response_parsing import (
    MatchVerdict,
    ParseFailure,
    parse_structured,
)
from packages.domain.bid_comparison.schemas import (
    LineItem,
    MatchCandidate,
    MatchSource,
    MatchType,
)
from packages.domain.bid_comparison.units import units_compatible

logger = structlog.get_logger()

# (owner_id, item_id); item ids are only unique within one owner
ItemKey = Tuple[str, str]


@dataclass
class AnchorResolution:
    """Accepted fallback candidates for one anchor"""
    anchor: LineItem
    candidates: List[MatchCandidate] = field(default_factory=list)
    normalized_work_type: Optional[str] = None
    normalized_materials: List[str] = field(default_factory=list)


def combine_items(items: Sequence[LineItem], owner_id: str) -> LineItem:
    """
    Synthesize one pseudo-item from several comparison items.

    Amounts are summed; descriptions are joined largest amount first;
    quantities are summed only when every unit normalizes the same.
    """
    if len(items) == 1:
        return items[0]

    by_weight = sorted(items, key=lambda i: i.amount, reverse=True)
    amount = sum(i.amount for i in items)

    quantity = None
    unit = items[0].unit
    if units_compatible(*(i.unit for i in items)) and all(i.quantity is not None for i in items):
        quantity = sum(i.quantity for i in items)
    else:
        unit = None

    notes = "; ".join(i.notes for i in items if i.notes) or None

    return LineItem(
        id="-".join(i.id for i in items),
        owner_id=owner_id,
        sequence_number=min(i.sequence_number for i in items),
        description=" + ".join(i.description for i in by_weight),
        category=items[0].category,
        quantity=quantity,
        unit=unit,
        unit_price=(amount / quantity) if quantity else None,
        amount=amount,
        notes=notes,
    )


class FallbackReasoner:
    """
    Resolve unmatched anchors through the reasoning service.

    Usage:
        fallback = FallbackReasoner(reasoner, MatchingConfig(reasoning_concurrency=4))
        resolutions = await fallback.resolve(anchors, comparison_by_owner, claimed)
    """

    def __init__(self, reasoner: Optional[Reasoner], config: MatchingConfig):
        self.reasoner = reasoner
        self.config = config
        self.options = ReasonerOptions(
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout_ms=config.timeout_ms,
        )

    @property
    def available(self) -> bool:
        return self.reasoner is not None and getattr(self.reasoner, "is_configured", True)

    async def resolve(
        self,
        anchors: Sequence[LineItem],
        comparison_by_owner: Mapping[str, Sequence[LineItem]],
        claimed: Set[ItemKey],
    ) -> Dict[str, AnchorResolution]:
        """
        Resolve anchors against comparison items not yet claimed.

        claimed holds (owner_id, item_id) keys and is updated in place as
        matches are accepted.

        Returns:
            anchor id -> resolution, only for anchors with accepted candidates
        """
        if not anchors:
            return {}
        if not self.available:
            logger.warning("fallback_reasoner_unavailable",
                           anchors=len(anchors),
                           message="No reasoning provider configured, anchors stay unmatched")
            return {}

        semaphore = asyncio.Semaphore(self.config.reasoning_concurrency)

        pairs: List[Tuple[LineItem, str]] = [
            (anchor, owner_id)
            for anchor in anchors
            for owner_id in comparison_by_owner
        ]
        tasks = [
            self._resolve_pair(anchor, owner_id, comparison_by_owner[owner_id], claimed, semaphore)
            for anchor, owner_id in pairs
        ]
        outcomes = await asyncio.gather(*tasks)

        resolutions: Dict[str, AnchorResolution] = {}
        for (anchor, _owner_id), outcome in zip(pairs, outcomes):
            if outcome is None:
                continue
            candidate, verdict = outcome
            resolution = resolutions.setdefault(anchor.id, AnchorResolution(anchor=anchor))
            resolution.candidates.append(candidate)
            if verdict.normalized_work_type and not resolution.normalized_work_type:
                resolution.normalized_work_type = verdict.normalized_work_type
            for material in verdict.normalized_materials:
                if material not in resolution.normalized_materials:
                    resolution.normalized_materials.append(material)

        logger.info("fallback_reasoning_complete",
                    anchors=len(anchors),
                    pairs=len(pairs),
                    resolved_anchors=len(resolutions))

        return resolutions

    async def _resolve_pair(
        self,
        anchor: LineItem,
        owner_id: str,
        items: Sequence[LineItem],
        claimed: Set[ItemKey],
        semaphore: asyncio.Semaphore,
    ) -> Optional[Tuple[MatchCandidate, MatchVerdict]]:
        # Step 1: single-item comparisons, in order
        for item in items:
            if (owner_id, item.id) in claimed:
                continue

            verdict = await self._ask(
                semaphore,
                MATCH_SYSTEM_PROMPT,
                build_single_match_prompt(anchor, item, owner_id),
                anchor=anchor,
                owner_id=owner_id,
                mode="single",
            )
            if verdict is None:
                continue

            # Another anchor may have claimed it while we waited
            if (owner_id, item.id) in claimed:
                logger.info("fallback_match_already_claimed",
                            anchor_id=anchor.id, owner_id=owner_id, item_id=item.id)
                continue

            claimed.add((owner_id, item.id))
            match_type = verdict.match_type
            if match_type in (MatchType.NONE, MatchType.GROUPED):
                match_type = MatchType.SIMILAR
            return self._candidate(owner_id, item, [item], verdict, match_type), verdict

        # Step 2: grouped comparison over the first few unclaimed items
        remaining = [i for i in items if (owner_id, i.id) not in claimed]
        if len(remaining) < 2:
            return None

        offered = remaining[:self.config.max_group_size]
        verdict = await self._ask(
            semaphore,
            GROUP_MATCH_SYSTEM_PROMPT,
            build_group_match_prompt(anchor, offered, owner_id),
            anchor=anchor,
            owner_id=owner_id,
            mode="grouped",
        )
        if verdict is None:
            return None

        selected = [
            offered[index - 1]
            for index in dict.fromkeys(verdict.selected_item_indices)
            if 1 <= index <= len(offered)
        ] or offered

        if any((owner_id, i.id) in claimed for i in selected):
            logger.info("fallback_group_already_claimed",
                        anchor_id=anchor.id, owner_id=owner_id,
                        item_ids=[i.id for i in selected])
            return None

        claimed.update((owner_id, i.id) for i in selected)
        combined = combine_items(selected, owner_id)
        if len(selected) > 1:
            match_type = MatchType.GROUPED
        elif verdict.match_type in (MatchType.NONE, MatchType.GROUPED):
            match_type = MatchType.SIMILAR
        else:
            match_type = verdict.match_type
        return self._candidate(owner_id, combined, selected, verdict, match_type), verdict

    def _candidate(
        self,
        owner_id: str,
        item: LineItem,
        source_items: Sequence[LineItem],
        verdict: MatchVerdict,
        match_type: MatchType,
    ) -> MatchCandidate:
        return MatchCandidate(
            owner_id=owner_id,
            item=item,
            confidence=max(0, min(100, round(verdict.confidence))),
            match_type=match_type,
            source=MatchSource.REASONING,
            notes=verdict.notes,
            grouped_item_ids=[i.id for i in source_items],
        )

    async def _ask(
        self,
        semaphore: asyncio.Semaphore,
        system_prompt: str,
        user_prompt: str,
        anchor: LineItem,
        owner_id: str,
        mode: str,
    ) -> Optional[MatchVerdict]:
        """One reasoning call; None means no match for any reason"""
        async with semaphore:
            try:
                response = await complete_with_timeout(
                    self.reasoner, system_prompt, user_prompt, self.options
                )
            except (ProviderTransientError, ConfigurationError) as e:
                logger.warning("fallback_reasoning_call_failed",
                               anchor_id=anchor.id,
                               owner_id=owner_id,
                               mode=mode,
                               error=str(e))
                return None

        result = parse_structured(response.content, MatchVerdict)
        if isinstance(result, ParseFailure):
            logger.warning("fallback_reasoning_response_malformed",
                           anchor_id=anchor.id,
                           owner_id=owner_id,
                           mode=mode,
                           reason=result.reason)
            return None

        verdict = result.value
        if not verdict.is_match or verdict.confidence < self.config.min_match_confidence:
            logger.debug("fallback_no_match",
                         anchor_id=anchor.id,
                         owner_id=owner_id,
                         mode=mode,
                         is_match=verdict.is_match,
                         confidence=verdict.confidence)
            return None

        logger.info("fallback_match_accepted",
                    anchor_id=anchor.id,
                    owner_id=owner_id,
                    mode=mode,
                    confidence=verdict.confidence,
                    match_type=verdict.match_type.value)
        return verdict
