"""Content scorer.

Attribute similarity between catalog products (category, brand, price band,
shared tags), personal recommendations seeded from recently viewed products,
and category ranking for users without a viewing history.
"""

import asyncio
import logging
from datetime import timedelta
from typing import List, Optional, Sequence, Set

import numpy as np
import pandas as pd

from storerec.exceptions import ProductNotFoundError
from storerec.recommender.models import (
    Product,
    RecommendationItem,
    dedupe_first_seen,
    utc_now,
)
from storerec.recommender.profile import UserProfileService
from storerec.recommender.stores import Catalog

# Configure module logger
logger = logging.getLogger(__name__)

CATEGORY_WEIGHT = 5
BRAND_WEIGHT = 3
PRICE_WEIGHT = 2
PRICE_BAND = 0.2

DEFAULT_SIMILAR_LIMIT = 5
DEFAULT_SEEDS = 3
DEFAULT_SEED_LIMIT = 5
DEFAULT_RATING = 3.0
NEW_PRODUCT_BOOST = 2.0
DEFAULT_NEW_PRODUCT_DAYS = 30

CATEGORY_REASON = "From your preferred categories"
GENERIC_CATEGORY_REASON = "Popular product"


def _candidate_frame(products: Sequence[Product]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "product_id": [p.id for p in products],
            "category": [p.category for p in products],
            "brand": [p.brand for p in products],
            "price": np.array([p.price for p in products], dtype=float),
            "tags": [frozenset(p.tags) for p in products],
        }
    )


def _score_candidates(source: Product, candidates: pd.DataFrame) -> pd.DataFrame:
    """Score catalog rows against the source product.

    Rows sharing none of category, brand or tags are dropped, as is the
    source itself. Ties keep catalog order.
    """
    source_tags = frozenset(source.tags)
    frame = candidates[candidates["product_id"] != source.id].copy()

    if source.category is not None:
        frame["category_match"] = frame["category"] == source.category
    else:
        frame["category_match"] = False
    if source.brand is not None:
        frame["brand_match"] = frame["brand"] == source.brand
    else:
        frame["brand_match"] = False
    frame["shared_tags"] = frame["tags"].map(lambda tags: len(tags & source_tags))
    frame["price_match"] = np.abs(frame["price"] - source.price) < source.price * PRICE_BAND

    related = frame["category_match"] | frame["brand_match"] | (frame["shared_tags"] > 0)
    frame = frame[related].copy()

    frame["score"] = (
        frame["category_match"].astype(int) * CATEGORY_WEIGHT
        + frame["brand_match"].astype(int) * BRAND_WEIGHT
        + frame["price_match"].astype(int) * PRICE_WEIGHT
        + frame["shared_tags"]
    )
    return frame.sort_values("score", ascending=False, kind="mergesort")


def _similarity_reason(category_match: bool, brand_match: bool) -> str:
    if category_match and brand_match:
        return "Same category, same brand"
    if category_match:
        return "Same category"
    if brand_match:
        return "Same brand"
    return "Similar product features"


def _category_score(product: Product, now, new_product_days: int) -> float:
    rating = product.average_rating if product.average_rating is not None else DEFAULT_RATING
    created_at = product.created_at
    if created_at is not None and now - created_at <= timedelta(days=new_product_days):
        return rating + NEW_PRODUCT_BOOST
    return rating


class ContentScorer:
    """Attribute similarity between products using catalog metadata."""

    def __init__(
        self,
        catalog: Catalog,
        profiles: UserProfileService,
        seeds: int = DEFAULT_SEEDS,
        seed_limit: int = DEFAULT_SEED_LIMIT,
        recent_view_scan: int = 10,
        new_product_days: int = DEFAULT_NEW_PRODUCT_DAYS,
    ):
        self.catalog = catalog
        self.profiles = profiles
        self.seeds = seeds
        self.seed_limit = seed_limit
        self.recent_view_scan = recent_view_scan
        self.new_product_days = new_product_days

    async def similar_products(
        self, product_id: str, limit: int = DEFAULT_SIMILAR_LIMIT
    ) -> List[RecommendationItem]:
        """Find products similar to ``product_id`` by catalog attributes.

        Scoring: same category +5, same brand +3, price strictly within 20%
        of the source price +2, plus one per shared tag.

        Raises:
            ProductNotFoundError: If the source product is not in the catalog.
        """
        source = await self.catalog.get_product(product_id)
        if source is None:
            raise ProductNotFoundError(product_id)

        products = await self.catalog.list_products()
        candidates = _candidate_frame(products)
        if candidates.empty:
            return []

        scored = _score_candidates(source, candidates).head(limit)
        by_id = {p.id: p for p in products}

        return [
            RecommendationItem(
                product_id=row.product_id,
                score=float(row.score),
                reason=_similarity_reason(bool(row.category_match), bool(row.brand_match)),
                product=by_id[row.product_id].snapshot(),
            )
            for row in scored.itertuples(index=False)
        ]

    async def category_recommendations(
        self,
        categories: Optional[Sequence[str]] = None,
        limit: int = 10,
        excluded: Optional[Set[str]] = None,
    ) -> List[RecommendationItem]:
        """Rank catalog products by rating plus a boost for new arrivals.

        Args:
            categories: Restrict to these categories; all products when empty.
            limit: Maximum number of products to return.
            excluded: Product ids that must not be returned.
        """
        excluded = excluded or set()
        products = await self.catalog.list_products(list(categories) if categories else None)
        now = utc_now()

        ranked = sorted(
            (p for p in products if p.id not in excluded),
            key=lambda p: _category_score(p, now, self.new_product_days),
            reverse=True,
        )
        reason = CATEGORY_REASON if categories else GENERIC_CATEGORY_REASON

        return [
            RecommendationItem(
                product_id=p.id,
                score=_category_score(p, now, self.new_product_days),
                reason=reason,
                product=p.snapshot(),
            )
            for p in ranked[:limit]
        ]

    async def seed_products(self, user_id: str, max_age_days: int = 30) -> List[str]:
        """Most recently viewed products still in the catalog, newest first."""
        recent = await self.profiles.recent_viewed_products(
            user_id, max_age_days, self.recent_view_scan
        )
        known = await self.catalog.get_products(recent)
        return [pid for pid in recent if pid in known][: self.seeds]

    async def recommend_for_user(
        self,
        user_id: str,
        limit: int,
        excluded: Optional[Set[str]] = None,
        categories: Optional[Sequence[str]] = None,
        max_age_days: int = 30,
        seeds: Optional[Sequence[str]] = None,
    ) -> List[RecommendationItem]:
        """Personal content-based recommendations.

        Seeds are the user's most recently viewed products (newest first),
        looked up unless the caller already has them. Similar products of
        every seed are merged first-seen. Users without usable seeds get the
        category ranking instead.
        """
        excluded = excluded or set()
        if seeds is None:
            seeds = await self.seed_products(user_id, max_age_days)
        seeds = list(seeds)

        if not seeds:
            logger.info(
                "No recent product history, returning category-based recommendations",
                extra={"user_id": user_id, "categories": list(categories or [])},
            )
            return await self.category_recommendations(categories, limit, excluded)

        seed_limit = max(self.seed_limit, limit + len(excluded))
        similar_lists = await asyncio.gather(
            *(self.similar_products(seed, seed_limit) for seed in seeds)
        )
        results = dedupe_first_seen(similar_lists, excluded)[:limit]

        logger.debug(
            "Computed content-based recommendations",
            extra={"user_id": user_id, "seeds": seeds, "num_results": len(results)},
        )
        return results
