"""Collaborative scorer.

Item-to-item co-occurrence: products are similar when the same users
interact with both. Personal recommendations expand a user's highest-affinity
products through the co-occurrence scorer and merge the results.
"""

import asyncio
import logging
import math
from typing import List, Optional, Set

import pandas as pd

from storerec.recommender.models import (
    PRODUCT_EVENT_TYPES,
    InteractionProfile,
    RecommendationItem,
    dedupe_first_seen,
)
from storerec.recommender.popular import PopularProductsService
from storerec.recommender.profile import top_products
from storerec.recommender.stores import Catalog, EventStore
from storerec.recommender.utils import events_to_frame

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_SIMILAR_LIMIT = 5
DEFAULT_TOP_K = 5
DEFAULT_SEED_LIMIT = 3
DEFAULT_MIN_INTERACTIONS = 5


def co_occurrence_table(events_df: pd.DataFrame, num_subject_users: int) -> pd.DataFrame:
    """Aggregate co-occurring events into ranked candidates.

    Args:
        events_df: Events of the subject's users on other products.
        num_subject_users: Number of users who interacted with the subject.

    Returns:
        Frame indexed by product_id with columns score, user_overlap and
        overlap_ratio, sorted by score then overlap_ratio (both descending),
        then product_id ascending.
    """
    columns = ["score", "user_overlap", "overlap_ratio"]
    if events_df.empty or num_subject_users <= 0:
        return pd.DataFrame(columns=columns)

    table = events_df.groupby("product_id").agg(
        score=("weight", "sum"),
        user_overlap=("user_id", "nunique"),
    )
    table["overlap_ratio"] = table["user_overlap"] / num_subject_users
    table = table.reset_index().sort_values(
        ["score", "overlap_ratio", "product_id"],
        ascending=[False, False, True],
    )
    return table.set_index("product_id")[columns]


def overlap_reason(overlap_ratio: float) -> str:
    percent = int(math.floor(overlap_ratio * 100 + 0.5))
    return (
        f"{percent}% of users who interacted with this product "
        "also interacted with this item"
    )


class CollaborativeScorer:
    """Co-occurrence based similarity between users or products and the catalog."""

    def __init__(
        self,
        event_store: EventStore,
        catalog: Catalog,
        popular: PopularProductsService,
        top_k: int = DEFAULT_TOP_K,
        seed_limit: int = DEFAULT_SEED_LIMIT,
        min_interactions: int = DEFAULT_MIN_INTERACTIONS,
    ):
        self.event_store = event_store
        self.catalog = catalog
        self.popular = popular
        self.top_k = top_k
        self.seed_limit = seed_limit
        self.min_interactions = min_interactions

    async def similar_products(
        self, product_id: str, limit: int = DEFAULT_SIMILAR_LIMIT
    ) -> List[RecommendationItem]:
        """Find products that co-occur with ``product_id`` in user histories.

        Falls back to popular products when nobody interacted with the
        subject product.

        Args:
            product_id: Subject product.
            limit: Maximum number of products to return.

        Returns:
            Ranked recommendation items with overlap reasons.
        """
        results = await self.co_occurrence(product_id, limit)
        if results is None:
            logger.info(
                "No user interactions for product, returning popular products",
                extra={"product_id": product_id, "strategy": "popular_fallback"},
            )
            return await self.popular.get_popular_products(limit)
        return results

    async def co_occurrence(
        self, product_id: str, limit: int = DEFAULT_SIMILAR_LIMIT
    ) -> Optional[List[RecommendationItem]]:
        """Rank products by co-occurrence with ``product_id``.

        Returns:
            Ranked items, or None when nobody interacted with the product.
        """
        users = await self.event_store.distinct_users(product_id)
        if not users:
            return None

        events = await self.event_store.find_events(
            user_ids=users,
            exclude_product_id=product_id,
            event_types=PRODUCT_EVENT_TYPES,
            with_product=True,
        )
        table = co_occurrence_table(events_to_frame(events), len(users))
        if table.empty:
            return []

        products = await self.catalog.get_products(table.index.tolist())

        results = []
        for candidate_id, row in table.iterrows():
            product = products.get(candidate_id)
            if product is None:
                continue
            results.append(
                RecommendationItem(
                    product_id=candidate_id,
                    score=float(row["score"]),
                    reason=overlap_reason(float(row["overlap_ratio"])),
                    product=product.snapshot(),
                )
            )
            if len(results) >= limit:
                break

        logger.debug(
            "Computed co-occurrence similar products",
            extra={
                "product_id": product_id,
                "subject_users": len(users),
                "num_candidates": len(table),
                "num_results": len(results),
            },
        )
        return results

    async def recommend_for_user(
        self,
        profile: InteractionProfile,
        limit: int,
        excluded: Optional[Set[str]] = None,
        popular_days: int = 30,
    ) -> List[RecommendationItem]:
        """Personal recommendations from the user's top affinity products.

        Args:
            profile: The user's interaction profile.
            limit: Maximum number of products to return.
            excluded: Product ids that must not be returned.
            popular_days: Window of the popularity fallback.

        Returns:
            Ranked recommendation items. An empty profile yields the popular
            products unchanged; thin profiles are topped up with popular
            products.
        """
        excluded = excluded or set()

        if profile.is_empty:
            logger.info(
                "No interaction history, returning popular products",
                extra={"user_id": profile.user_id, "strategy": "cold_start"},
            )
            return await self.popular.get_popular_products(limit, popular_days)

        seeds = top_products(profile, self.top_k)
        seed_limit = max(self.seed_limit, limit + len(excluded))
        similar_lists = await asyncio.gather(
            *(self.similar_products(seed, seed_limit) for seed in seeds)
        )

        merged = dedupe_first_seen(similar_lists, excluded)
        merged.sort(key=lambda item: item.score, reverse=True)
        results = merged[:limit]

        if profile.distinct_products < self.min_interactions and len(results) < limit:
            logger.info(
                "Insufficient interactions, supplementing with popular products",
                extra={
                    "user_id": profile.user_id,
                    "distinct_products": profile.distinct_products,
                    "min_interactions": self.min_interactions,
                },
            )
            popular = await self.popular.get_popular_products(
                limit + len(excluded) + len(results), popular_days
            )
            taken = {item.product_id for item in results} | excluded
            for item in popular:
                if len(results) >= limit:
                    break
                if item.product_id not in taken:
                    results.append(item)
                    taken.add(item.product_id)

        logger.debug(
            "Computed collaborative recommendations",
            extra={
                "user_id": profile.user_id,
                "seeds": seeds,
                "num_results": len(results),
            },
        )
        return results
