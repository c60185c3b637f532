"""Hybrid recommendation module.

Combines collaborative and content-based rankings with weighted score
summation, then rescales the merged list to a fixed 0-10 range.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

from storerec.recommender.collaborative import CollaborativeScorer
from storerec.recommender.content import ContentScorer
from storerec.recommender.models import (
    InteractionProfile,
    ProductSnapshot,
    RecommendationItem,
    ScoreWeights,
)

# Configure module logger
logger = logging.getLogger(__name__)

COLLABORATIVE = "collaborative"
CONTENT_BASED = "contentBased"

DEFAULT_WEIGHTS = ScoreWeights(collaborative=0.6, content_based=0.4)
USER_COMBINED_REASON = "Recommended based on your browsing history and product features"
ITEM_COMBINED_REASON = "Frequently explored together and similar in features"
SCALE_MAX = 10.0


@dataclass
class _MergedEntry:
    product_id: str
    score: float
    reason: str
    product: Optional[ProductSnapshot]
    sources: List[str] = field(default_factory=list)
    source_scores: Dict[str, float] = field(default_factory=dict)


def _rescale(score: float, max_score: float) -> float:
    # Half-up rounding to one decimal place
    return math.floor(score / max_score * SCALE_MAX * 10 + 0.5) / 10


def merge_recommendations(
    collaborative: Sequence[RecommendationItem],
    content_based: Sequence[RecommendationItem],
    weights: ScoreWeights,
    limit: int,
    combined_reason: str = USER_COMBINED_REASON,
    rescale: bool = True,
) -> List[RecommendationItem]:
    """Fuse two ranked lists into one weighted ranking.

    Collaborative items enter with ``score * weights.collaborative``. Content
    items either add ``score * weights.content_based`` to an existing entry
    or enter on their own. The merged list is sorted by accumulated score,
    truncated to ``limit`` and, when ``rescale`` is set, mapped onto 0-10
    with the top item at exactly 10.0.

    Args:
        collaborative: Collaborative ranking.
        content_based: Content-based ranking.
        weights: Source weights, expected to be normalized.
        limit: Maximum number of items to return.
        combined_reason: Reason used for items found by both sources.
        rescale: Apply the 0-10 rescaling step.

    Returns:
        Merged recommendation items carrying their sources and raw scores.
    """
    merged: Dict[str, _MergedEntry] = {}

    for item in collaborative:
        if item.product_id in merged:
            continue
        merged[item.product_id] = _MergedEntry(
            product_id=item.product_id,
            score=item.score * weights.collaborative,
            reason=item.reason,
            product=item.product,
            sources=[COLLABORATIVE],
            source_scores={COLLABORATIVE: item.score},
        )

    for item in content_based:
        entry = merged.get(item.product_id)
        if entry is None:
            merged[item.product_id] = _MergedEntry(
                product_id=item.product_id,
                score=item.score * weights.content_based,
                reason=item.reason,
                product=item.product,
                sources=[CONTENT_BASED],
                source_scores={CONTENT_BASED: item.score},
            )
            continue
        if CONTENT_BASED in entry.sources:
            continue
        entry.score += item.score * weights.content_based
        entry.sources.append(CONTENT_BASED)
        entry.source_scores[CONTENT_BASED] = item.score
        if COLLABORATIVE in entry.sources:
            entry.reason = combined_reason
        if entry.product is None:
            entry.product = item.product

    ranked = sorted(merged.values(), key=lambda e: e.score, reverse=True)[:limit]

    max_score = max((e.score for e in ranked), default=0.0)
    if rescale and max_score > 0:
        for entry in ranked:
            entry.score = _rescale(entry.score, max_score)

    return [
        RecommendationItem(
            product_id=e.product_id,
            score=e.score,
            reason=e.reason,
            product=e.product,
            sources=tuple(e.sources),
            source_scores=dict(e.source_scores),
        )
        for e in ranked
    ]


class HybridRecommender:
    """Runs both scorers concurrently and fuses their rankings."""

    def __init__(
        self,
        collaborative: CollaborativeScorer,
        content: ContentScorer,
        default_weights: ScoreWeights = DEFAULT_WEIGHTS,
        user_pool_cap: int = 20,
        item_pool_cap: int = 10,
    ):
        self.collaborative = collaborative
        self.content = content
        self.default_weights = default_weights.normalized()
        self.user_pool_cap = user_pool_cap
        self.item_pool_cap = item_pool_cap

        logger.info(
            f"Initialized HybridRecommender: "
            f"collaborative weight={self.default_weights.collaborative:.2f}, "
            f"content weight={self.default_weights.content_based:.2f}"
        )

    def _weights(self, weights: Optional[ScoreWeights]) -> ScoreWeights:
        return weights.normalized() if weights is not None else self.default_weights

    async def recommend_for_user(
        self,
        profile: InteractionProfile,
        limit: int,
        excluded: Optional[Set[str]] = None,
        categories: Optional[Sequence[str]] = None,
        weights: Optional[ScoreWeights] = None,
        max_age_days: int = 30,
        popular_days: int = 30,
    ) -> List[RecommendationItem]:
        """Hybrid personal recommendations.

        Both source pools hold up to ``min(limit * 2, user_pool_cap)`` items.
        """
        weights = self._weights(weights)
        pool = min(limit * 2, self.user_pool_cap)

        collaborative, content_based = await asyncio.gather(
            self.collaborative.recommend_for_user(
                profile, pool, excluded, popular_days=popular_days
            ),
            self.content.recommend_for_user(
                profile.user_id, pool, excluded, categories, max_age_days
            ),
        )

        results = merge_recommendations(
            collaborative, content_based, weights, limit, USER_COMBINED_REASON
        )
        logger.debug(
            "Computed hybrid recommendations",
            extra={
                "user_id": profile.user_id,
                "collaborative_pool": len(collaborative),
                "content_pool": len(content_based),
                "num_results": len(results),
            },
        )
        return results

    async def similar_products(
        self,
        product_id: str,
        limit: int = 5,
        weights: Optional[ScoreWeights] = None,
    ) -> List[RecommendationItem]:
        """Hybrid item-to-item similarity.

        Both source pools hold up to ``min(limit * 2, item_pool_cap)`` items.
        """
        weights = self._weights(weights)
        pool = min(limit * 2, self.item_pool_cap)

        collaborative, content_based = await asyncio.gather(
            self.collaborative.similar_products(product_id, pool),
            self.content.similar_products(product_id, pool),
        )
        return merge_recommendations(
            collaborative, content_based, weights, limit, ITEM_COMBINED_REASON
        )
