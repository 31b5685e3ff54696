"""
Similarity Prematcher - cosine similarity over description embeddings

Not a one-to-one assignment: a comparison item may be a candidate for
several anchors, and an anchor may collect several candidates from the
same owner. Downstream code must tolerate many-to-many candidate sets.
"""
from typing import Dict, List, Mapping, Sequence

import structlog

from packages.domain.bid_comparison.embedder import Embedder, similarity_matrix
from packages.domain.bid_comparison.engine_config import MatchingConfig
from packages.domain.bid_comparison.schemas import (
    LineItem,
    MatchCandidate,
    MatchSource,
    MatchType,
)

logger = structlog.get_logger()


class SimilarityPrematcher:
    """
    Embedding-based first pass.

    Usage:
        prematcher = SimilarityPrematcher(embedder, MatchingConfig())
        candidates = await prematcher.prematch(anchor_items, {"bid-2": items})
        # {"anchor-item-id": [MatchCandidate, ...], ...}
    """

    def __init__(self, embedder: Embedder, config: MatchingConfig):
        self.embedder = embedder
        self.config = config

    def classify(self, similarity: float) -> MatchType:
        if similarity >= self.config.exact_match_threshold:
            return MatchType.EXACT
        return MatchType.SIMILAR

    async def prematch(
        self,
        anchors: Sequence[LineItem],
        comparison_by_owner: Mapping[str, Sequence[LineItem]],
    ) -> Dict[str, List[MatchCandidate]]:
        """
        Embed every description in one call and keep pairs above threshold.

        Returns:
            anchor id -> candidates, only for anchors with at least one

        Raises:
            ConfigurationError, DimensionMismatchError, ProviderTransientError
            from the embedder; the caller decides how to degrade.
        """
        owners: List[str] = []
        others: List[LineItem] = []
        for owner_id, items in comparison_by_owner.items():
            for item in items:
                owners.append(owner_id)
                others.append(item)

        if not anchors or not others:
            return {}

        texts = [item.description for item in anchors] + [item.description for item in others]
        vectors = await self.embedder.embed(texts)

        anchor_vectors = vectors[:len(anchors)]
        other_vectors = vectors[len(anchors):]
        sims = similarity_matrix(anchor_vectors, other_vectors)

        results: Dict[str, List[MatchCandidate]] = {}
        for row, anchor in enumerate(anchors):
            candidates = []
            for col, other in enumerate(others):
                similarity = float(sims[row, col])
                if similarity < self.config.similarity_threshold:
                    continue
                candidates.append(MatchCandidate(
                    owner_id=owners[col],
                    item=other,
                    confidence=max(0, min(100, round(similarity * 100))),
                    match_type=self.classify(similarity),
                    source=MatchSource.EMBEDDING,
                ))
            if candidates:
                results[anchor.id] = candidates

        logger.info("prematch_complete",
                    anchors=len(anchors),
                    comparison_items=len(others),
                    matched_anchors=len(results),
                    candidates=sum(len(c) for c in results.values()))

        return results
