"""Recommendation engine.

Single entry point for every recommendation flavour. Each call validates its
input, consults the recommendation cache, computes on a miss and writes the
result back. Cache trouble degrades to recomputation; event store and catalog
failures surface as ``ComputationFailedError``.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from storerec.config import RecommendationConfig
from storerec.exceptions import ComputationFailedError, InvalidInputError, StoreRecException
from storerec.metrics import MetricsService
from storerec.recommender.cache import RecommendationCache, SingleFlight, cache_key
from storerec.recommender.collaborative import CollaborativeScorer
from storerec.recommender.content import ContentScorer
from storerec.recommender.hybrid import HybridRecommender
from storerec.recommender.models import (
    EventType,
    RecommendationItem,
    RecommendationOptions,
    RecommendationType,
    ScoreWeights,
    utc_now,
    validate_identifier,
    validate_positive,
)
from storerec.recommender.popular import PopularProductsService
from storerec.recommender.profile import UserProfileService
from storerec.recommender.stores import CacheStore, Catalog, EventStore

# Configure module logger
logger = logging.getLogger(__name__)


@dataclass
class ComputedRecommendations:
    """Freshly computed items and whether they may be cached."""

    items: List[RecommendationItem]
    cacheable: bool = True


Compute = Callable[[], Awaitable[ComputedRecommendations]]
OnHit = Callable[[List[RecommendationItem]], Awaitable[List[RecommendationItem]]]


def popular_subject(days: int, limit: int) -> str:
    return f"popular:{days}d:top{limit}"


def category_subject(categories: Sequence[str], limit: int) -> str:
    return "category:" + ",".join(sorted(set(categories))) + f":top{limit}"


class RecommendationEngine:
    """Read-through cached recommendation service.

    Args:
        event_store: Source of user interaction events.
        catalog: Source of product records.
        cache_store: Backing store of the recommendation cache.
        config: Engine tunables; defaults when omitted.
        metrics: Metrics sink; a private instance when omitted.
        clock: Time source for cache expiry.
    """

    def __init__(
        self,
        event_store: EventStore,
        catalog: Catalog,
        cache_store: CacheStore,
        config: Optional[RecommendationConfig] = None,
        metrics: Optional[MetricsService] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or RecommendationConfig()
        self.metrics = metrics or MetricsService()
        self.event_store = event_store
        self.catalog = catalog

        self.profiles = UserProfileService(event_store)
        self.popular = PopularProductsService(event_store, catalog)
        self.collaborative = CollaborativeScorer(
            event_store,
            catalog,
            self.popular,
            top_k=self.config.top_k_affinity,
            seed_limit=self.config.collaborative_seed_limit,
            min_interactions=self.config.min_interactions,
        )
        self.content = ContentScorer(
            catalog,
            self.profiles,
            seeds=self.config.recent_view_seeds,
            seed_limit=self.config.content_seed_limit,
            recent_view_scan=self.config.recent_view_scan,
            new_product_days=self.config.new_product_days,
        )
        self.hybrid = HybridRecommender(
            self.collaborative,
            self.content,
            default_weights=ScoreWeights(
                collaborative=self.config.collaborative_weight,
                content_based=self.config.content_weight,
            ),
            user_pool_cap=self.config.hybrid_user_pool_cap,
            item_pool_cap=self.config.hybrid_item_pool_cap,
        )
        self.clock = clock
        self.cache = RecommendationCache(cache_store, self.config.user_ttl, clock)
        self.single_flight = SingleFlight() if self.config.single_flight else None

    # ------------------------------------------------------------------
    # Read-through machinery
    # ------------------------------------------------------------------

    async def _read_through(
        self,
        endpoint: str,
        subject_key: str,
        recommendation_type: RecommendationType,
        limit: int,
        compute: Compute,
        ttl: timedelta,
        source_product_id: Optional[str] = None,
        on_hit: Optional[OnHit] = None,
    ) -> List[RecommendationItem]:
        start_time = time.time()
        cache_hit = None
        try:
            cached = await self.cache.get(subject_key, recommendation_type, source_product_id)
            if cached is not None:
                cache_hit = True
                items = await self._guarded(subject_key, self._refresh_hit(cached, on_hit))
            else:
                cache_hit = False
                items = await self._compute_and_store(
                    subject_key, recommendation_type, compute, ttl, source_product_id, on_hit
                )
            items = items[:limit]
        except Exception as e:
            latency_ms = (time.time() - start_time) * 1000
            self.metrics.record_call(endpoint, latency_ms, success=False, cache_hit=cache_hit)
            logger.error(
                "Recommendation request failed",
                extra={
                    "endpoint": endpoint,
                    "subject": subject_key,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "latency_ms": round(latency_ms, 2),
                },
            )
            raise

        latency_ms = (time.time() - start_time) * 1000
        self.metrics.record_call(endpoint, latency_ms, success=True, cache_hit=cache_hit)
        logger.info(
            "Recommendations served",
            extra={
                "endpoint": endpoint,
                "subject": subject_key,
                "cache_hit": cache_hit,
                "num_recommendations": len(items),
                "latency_ms": round(latency_ms, 2),
            },
        )
        return items

    async def _compute_and_store(
        self,
        subject_key: str,
        recommendation_type: RecommendationType,
        compute: Compute,
        ttl: timedelta,
        source_product_id: Optional[str],
        on_hit: Optional[OnHit] = None,
    ) -> List[RecommendationItem]:
        computed_here = False

        async def run() -> List[RecommendationItem]:
            nonlocal computed_here
            computed_here = True
            computed = await self._guarded(subject_key, compute())
            self.metrics.record_computation(recommendation_type.value, self.clock())
            if computed.cacheable:
                stored = await self.cache.set(
                    subject_key, recommendation_type, computed.items, source_product_id, ttl
                )
                if not stored:
                    self.metrics.record_cache_write_failure()
            return computed.items

        if self.single_flight is None:
            return await run()
        key = cache_key(subject_key, recommendation_type, source_product_id)
        items = await self.single_flight.run(key, run)
        if computed_here:
            return items
        # Joined another caller's computation, which used that caller's options
        return await self._guarded(subject_key, self._refresh_hit(items, on_hit))

    async def _guarded(self, subject_key: str, awaitable: Awaitable):
        try:
            return await awaitable
        except StoreRecException:
            raise
        except Exception as e:
            raise ComputationFailedError(subject_key, e) from e

    async def _refresh_hit(
        self, items: List[RecommendationItem], on_hit: Optional[OnHit]
    ) -> List[RecommendationItem]:
        if on_hit is not None:
            items = await on_hit(items)
        return await self._attach_products(items)

    async def _attach_products(
        self, items: List[RecommendationItem]
    ) -> List[RecommendationItem]:
        """Fill in product snapshots missing from cached items.

        Items whose product has since left the catalog are dropped.
        """
        missing = [item.product_id for item in items if item.product is None]
        if not missing:
            return items

        products = await self.catalog.get_products(missing)
        attached = []
        for item in items:
            if item.product is not None:
                attached.append(item)
                continue
            product = products.get(item.product_id)
            if product is None:
                logger.warning(
                    "Cached product no longer in catalog",
                    extra={"product_id": item.product_id},
                )
                continue
            attached.append(
                RecommendationItem(
                    product_id=item.product_id,
                    score=item.score,
                    reason=item.reason,
                    product=product.snapshot(),
                    stats=item.stats,
                    sources=item.sources,
                    source_scores=item.source_scores,
                )
            )
        return attached

    def _exclusion_filter(self, user_id: str, options: RecommendationOptions) -> OnHit:
        async def apply(items: List[RecommendationItem]) -> List[RecommendationItem]:
            profile = await self.profiles.build_profile(user_id, options.max_age_days)
            excluded = options.exclusions(profile)
            return [item for item in items if item.product_id not in excluded]

        return apply

    def _user_options(self, options: Optional[RecommendationOptions]) -> RecommendationOptions:
        if options is None:
            options = RecommendationOptions(
                limit=self.config.default_limit,
                max_age_days=self.config.max_age_days,
            )
        return options.validate()

    def _similar_limit(self, limit: Optional[int]) -> int:
        return validate_positive(self.config.similar_limit if limit is None else limit, "limit")

    # ------------------------------------------------------------------
    # User-based entry points
    # ------------------------------------------------------------------

    async def personal_recommendations(
        self, user_id: str, options: Optional[RecommendationOptions] = None
    ) -> List[RecommendationItem]:
        """Collaborative recommendations for a user.

        Users without history receive the popularity ranking, which is not
        cached under the user's key.

        Raises:
            InvalidInputError: If the user id or options are malformed.
            ComputationFailedError: If a store read fails.
        """
        user_id = validate_identifier(user_id, "user_id")
        options = self._user_options(options)

        async def compute() -> ComputedRecommendations:
            profile = await self.profiles.build_profile(user_id, options.max_age_days)
            items = await self.collaborative.recommend_for_user(
                profile,
                options.limit,
                options.exclusions(profile),
                popular_days=self.config.popular_days,
            )
            return ComputedRecommendations(items, cacheable=not profile.is_empty)

        return await self._read_through(
            "personal",
            user_id,
            RecommendationType.COLLABORATIVE,
            options.limit,
            compute,
            self.config.user_ttl,
            on_hit=self._exclusion_filter(user_id, options),
        )

    async def content_based_recommendations(
        self, user_id: str, options: Optional[RecommendationOptions] = None
    ) -> List[RecommendationItem]:
        """Content-based recommendations seeded from recent views.

        Users without recent views of products still in the catalog get the
        category ranking, which depends on the requested categories and is
        not cached.
        """
        user_id = validate_identifier(user_id, "user_id")
        options = self._user_options(options)

        async def compute() -> ComputedRecommendations:
            profile = await self.profiles.build_profile(user_id, options.max_age_days)
            seeds = await self.content.seed_products(user_id, options.max_age_days)
            items = await self.content.recommend_for_user(
                user_id,
                options.limit,
                options.exclusions(profile),
                options.categories,
                options.max_age_days,
                seeds=seeds,
            )
            return ComputedRecommendations(items, cacheable=bool(seeds))

        return await self._read_through(
            "content_based",
            user_id,
            RecommendationType.CONTENT_BASED,
            options.limit,
            compute,
            self.config.content_ttl,
            on_hit=self._exclusion_filter(user_id, options),
        )

    async def hybrid_recommendations(
        self, user_id: str, options: Optional[RecommendationOptions] = None
    ) -> List[RecommendationItem]:
        """Weighted fusion of collaborative and content-based recommendations.

        Raises:
            InvalidInputError: If the user id, options or weights are invalid.
            ComputationFailedError: If a store read fails.
        """
        user_id = validate_identifier(user_id, "user_id")
        options = self._user_options(options)

        async def compute() -> ComputedRecommendations:
            profile = await self.profiles.build_profile(user_id, options.max_age_days)
            items = await self.hybrid.recommend_for_user(
                profile,
                options.limit,
                options.exclusions(profile),
                options.categories,
                options.weights,
                options.max_age_days,
                self.config.popular_days,
            )
            return ComputedRecommendations(items, cacheable=not profile.is_empty)

        return await self._read_through(
            "hybrid",
            user_id,
            RecommendationType.HYBRID,
            options.limit,
            compute,
            self.config.user_ttl,
            on_hit=self._exclusion_filter(user_id, options),
        )

    async def category_recommendations(
        self, categories: Sequence[str], limit: Optional[int] = None
    ) -> List[RecommendationItem]:
        """Rank products of the given categories by rating and recency."""
        if not categories:
            raise InvalidInputError(
                "At least one category is required", details={"field": "categories"}
            )
        categories = [validate_identifier(c, "category") for c in categories]
        limit = validate_positive(
            self.config.default_limit if limit is None else limit, "limit"
        )
        subject = category_subject(categories, limit)

        async def compute() -> ComputedRecommendations:
            items = await self.content.category_recommendations(categories, limit)
            return ComputedRecommendations(items)

        return await self._read_through(
            "by_category",
            subject,
            RecommendationType.CONTENT_BASED,
            limit,
            compute,
            self.config.popular_ttl,
        )

    async def popular_products(
        self, limit: Optional[int] = None, days: Optional[int] = None
    ) -> List[RecommendationItem]:
        """Globally popular products over the last ``days`` days."""
        limit = validate_positive(
            self.config.default_limit if limit is None else limit, "limit"
        )
        days = validate_positive(self.config.popular_days if days is None else days, "days")

        async def compute() -> ComputedRecommendations:
            items = await self.popular.get_popular_products(limit, days)
            return ComputedRecommendations(items)

        return await self._read_through(
            "popular",
            popular_subject(days, limit),
            RecommendationType.POPULAR,
            limit,
            compute,
            self.config.popular_ttl,
        )

    # ------------------------------------------------------------------
    # Item-to-item entry points
    # ------------------------------------------------------------------

    async def similar_products(
        self, product_id: str, limit: Optional[int] = None
    ) -> List[RecommendationItem]:
        """Products frequently explored by the same users.

        Products nobody interacted with get the popularity ranking, which is
        not cached under the product's key.
        """
        product_id = validate_identifier(product_id, "product_id")
        limit = self._similar_limit(limit)

        async def compute() -> ComputedRecommendations:
            items = await self.collaborative.co_occurrence(product_id, limit)
            if items is None:
                logger.info(
                    "No user interactions for product, returning popular products",
                    extra={"product_id": product_id, "strategy": "popular_fallback"},
                )
                popular = await self.popular.get_popular_products(
                    limit, self.config.popular_days
                )
                return ComputedRecommendations(popular, cacheable=False)
            return ComputedRecommendations(items)

        return await self._read_through(
            "similar",
            product_id,
            RecommendationType.COLLABORATIVE,
            limit,
            compute,
            self.config.item_ttl,
            source_product_id=product_id,
        )

    async def similar_content_products(
        self, product_id: str, limit: Optional[int] = None
    ) -> List[RecommendationItem]:
        """Products with matching catalog attributes.

        Raises:
            ProductNotFoundError: If the product is not in the catalog.
        """
        product_id = validate_identifier(product_id, "product_id")
        limit = self._similar_limit(limit)

        async def compute() -> ComputedRecommendations:
            return ComputedRecommendations(
                await self.content.similar_products(product_id, limit)
            )

        return await self._read_through(
            "similar_content",
            product_id,
            RecommendationType.CONTENT_BASED,
            limit,
            compute,
            self.config.content_ttl,
            source_product_id=product_id,
        )

    async def similar_hybrid_products(
        self,
        product_id: str,
        limit: Optional[int] = None,
        weights: Optional[ScoreWeights] = None,
    ) -> List[RecommendationItem]:
        """Weighted fusion of co-occurrence and attribute similarity.

        Raises:
            InvalidInputError: If the weights are negative or sum to zero.
            ProductNotFoundError: If the product is not in the catalog.
        """
        product_id = validate_identifier(product_id, "product_id")
        limit = self._similar_limit(limit)
        if weights is not None:
            weights = weights.normalized()

        async def compute() -> ComputedRecommendations:
            return ComputedRecommendations(
                await self.hybrid.similar_products(product_id, limit, weights)
            )

        return await self._read_through(
            "similar_hybrid",
            product_id,
            RecommendationType.HYBRID,
            limit,
            compute,
            self.config.item_ttl,
            source_product_id=product_id,
        )

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    async def event_counts(
        self,
        user_id: Optional[str] = None,
        product_id: Optional[str] = None,
        event_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, int]:
        """Number of tracked events per event type.

        All filters are optional; naive dates are taken as UTC.

        Raises:
            InvalidInputError: If an id or the event type is malformed, or
                ``start`` is after ``end``.
            ComputationFailedError: If the event store read fails.
        """
        if user_id is not None:
            user_id = validate_identifier(user_id, "user_id")
        if product_id is not None:
            product_id = validate_identifier(product_id, "product_id")
        if event_type is not None:
            try:
                event_type = EventType(event_type)
            except ValueError:
                raise InvalidInputError(
                    f"Unknown event type '{event_type}'", details={"field": "event_type"}
                )
        start, end = _as_utc(start), _as_utc(end)
        if start is not None and end is not None and start > end:
            raise InvalidInputError(
                "start must not be after end", details={"field": "start"}
            )

        start_time = time.time()
        try:
            counts = await self._guarded(
                "event_counts",
                self.event_store.count_events(user_id, product_id, event_type, start, end),
            )
        except Exception:
            self.metrics.record_call(
                "event_counts", (time.time() - start_time) * 1000, success=False
            )
            raise

        self.metrics.record_call("event_counts", (time.time() - start_time) * 1000)
        logger.info(
            "Event counts served",
            extra={"user_id": user_id, "product_id": product_id, "counts": counts},
        )
        return counts


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def build_engine(
    event_store: EventStore,
    catalog: Catalog,
    cache_store: CacheStore,
    config: Optional[RecommendationConfig] = None,
    metrics: Optional[MetricsService] = None,
) -> RecommendationEngine:
    """Wire a RecommendationEngine from its collaborators."""
    config = config or RecommendationConfig()
    engine = RecommendationEngine(event_store, catalog, cache_store, config, metrics)
    logger.info(
        "Recommendation engine ready",
        extra={
            "single_flight": config.single_flight,
            "default_limit": config.default_limit,
            "popular_days": config.popular_days,
        },
    )
    return engine
