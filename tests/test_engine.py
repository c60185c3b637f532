"""Tests for the read-through recommendation engine."""

import asyncio
from datetime import timedelta

import pytest

from conftest import make_event

from storerec.config import RecommendationConfig
from storerec.exceptions import (
    ComputationFailedError,
    InvalidInputError,
    ProductNotFoundError,
)
from storerec.recommender.cache import cache_key
from storerec.recommender.engine import build_engine
from storerec.recommender.models import (
    RecommendationItem,
    RecommendationOptions,
    RecommendationSet,
    RecommendationType,
    ScoreWeights,
    utc_now,
)
from storerec.recommender.stores import CacheStore, InMemoryCacheStore, InMemoryEventStore


class BrokenEventStore(InMemoryEventStore):
    async def find_events(self, *args, **kwargs):
        raise ConnectionError("event store unreachable")


class SlowEventStore(InMemoryEventStore):
    """Yields to the loop on every read so concurrent requests interleave."""

    def __init__(self, events):
        super().__init__(events)
        self.reads = 0

    async def find_events(self, *args, **kwargs):
        self.reads += 1
        await asyncio.sleep(0.01)
        return await super().find_events(*args, **kwargs)


class FailingCacheStore(CacheStore):
    async def get(self, key):
        raise TimeoutError("cache read timed out")

    async def put(self, key, record):
        raise TimeoutError("cache write timed out")


def _ids(items):
    return [item.product_id for item in items]


def test_cold_start_user_gets_popular_products(engine, cache_store):
    options = RecommendationOptions(limit=3)

    personal = asyncio.run(engine.personal_recommendations("newcomer", options))
    popular = asyncio.run(engine.popular.get_popular_products(3))

    assert _ids(personal) == _ids(popular) == ["p3", "p6", "p1"]
    assert [item.score for item in personal] == [item.score for item in popular]
    # Cold-start answers are not stored under the user's key
    assert len(cache_store) == 0


@pytest.mark.parametrize(
    "method",
    ["personal_recommendations", "content_based_recommendations", "hybrid_recommendations"],
)
def test_exclusions_never_returned(engine, method):
    """u1 viewed p1 and p2 and added p1 to the cart."""
    items = asyncio.run(getattr(engine, method)("u1", RecommendationOptions(limit=10)))

    assert items
    assert not set(_ids(items)) & {"p1", "p2"}


def test_exclusion_flags_can_be_disabled(engine):
    options = RecommendationOptions(
        limit=10, exclude_viewed=False, exclude_in_cart=False, exclude_purchased=False
    )

    items = asyncio.run(engine.personal_recommendations("u1", options))

    assert _ids(items) == ["p3", "p6", "p1", "p2", "p4", "p5"]


def test_cache_hit_reapplies_current_exclusions(engine, event_store, metrics):
    """The cached list is filtered against the user's latest interactions."""
    everything = RecommendationOptions(
        limit=10, exclude_viewed=False, exclude_in_cart=False, exclude_purchased=False
    )
    asyncio.run(engine.personal_recommendations("u1", everything))

    default = asyncio.run(engine.personal_recommendations("u1", RecommendationOptions(limit=10)))
    assert _ids(default) == ["p3", "p6", "p4", "p5"]

    asyncio.run(event_store.append(make_event("u1", "view", "p3", hours_ago=0.1)))
    after_view = asyncio.run(engine.personal_recommendations("u1", RecommendationOptions(limit=2)))
    assert _ids(after_view) == ["p6", "p4"]

    stats = metrics.get_metrics()
    assert stats["cache_misses"] == 1
    assert stats["cache_hits"] == 2


def test_results_are_written_once_and_served_from_cache(engine, cache_store):
    first = asyncio.run(engine.similar_content_products("p2"))
    second = asyncio.run(engine.similar_content_products("p2"))

    assert first == second
    assert cache_store.writes == 1
    assert len(cache_store) == 1


def test_item_sets_cached_under_product_key(engine, cache_store):
    asyncio.run(engine.similar_products("p1"))

    record = asyncio.run(
        cache_store.get(cache_key("p1", RecommendationType.COLLABORATIVE, "p1"))
    )
    assert record is not None
    assert record.subject_key == "p1"
    assert record.source_product_id == "p1"
    assert record.expires_at - record.created_at == timedelta(hours=24)


def test_similar_without_interactions_is_popular_and_not_cached(engine, cache_store):
    items = asyncio.run(engine.similar_products("p-new", limit=2))

    assert _ids(items) == ["p3", "p6"]
    assert len(cache_store) == 0


def test_popular_sets_use_short_ttl(engine, cache_store):
    asyncio.run(engine.popular_products(limit=5, days=7))

    record = asyncio.run(cache_store.get(cache_key("popular:7d:top5", RecommendationType.POPULAR)))
    assert record.expires_at - record.created_at == timedelta(hours=1)


def test_cached_items_get_missing_snapshots_attached(engine, cache_store):
    now = utc_now()
    record = RecommendationSet(
        subject_key="popular:30d:top5",
        recommendation_type=RecommendationType.POPULAR,
        items=(
            RecommendationItem("p4", 3.0, "Popular product"),
            RecommendationItem("retired", 2.0, "Popular product"),
        ),
        created_at=now,
        expires_at=now + timedelta(hours=1),
    )
    key = cache_key("popular:30d:top5", RecommendationType.POPULAR)
    asyncio.run(cache_store.put(key, record))

    items = asyncio.run(engine.popular_products(limit=5, days=30))

    assert _ids(items) == ["p4"]
    assert items[0].product.name == "Novel"


def test_hybrid_scores_are_on_ten_point_scale(engine):
    items = asyncio.run(engine.hybrid_recommendations("u3", RecommendationOptions(limit=5)))

    assert items
    assert items[0].score == 10.0
    assert all(0.0 <= item.score <= 10.0 for item in items)


def test_hybrid_custom_weights_are_normalized(engine):
    options = RecommendationOptions(limit=5, weights=ScoreWeights(3, 1))

    items = asyncio.run(engine.hybrid_recommendations("u3", options))

    assert options.weights == ScoreWeights(0.75, 0.25)
    assert items[0].score == 10.0


def test_zero_sum_weights_rejected_before_computation(engine, cache_store):
    options = RecommendationOptions(weights=ScoreWeights(0, 0))

    with pytest.raises(InvalidInputError):
        asyncio.run(engine.hybrid_recommendations("u1", options))
    with pytest.raises(InvalidInputError):
        asyncio.run(engine.similar_hybrid_products("p1", weights=ScoreWeights(0, 0)))

    assert cache_store.writes == 0


@pytest.mark.parametrize("user_id", ["", "bad id", None])
def test_invalid_user_id(engine, user_id):
    with pytest.raises(InvalidInputError):
        asyncio.run(engine.personal_recommendations(user_id))


def test_invalid_limit(engine):
    with pytest.raises(InvalidInputError):
        asyncio.run(engine.popular_products(limit=0))
    with pytest.raises(InvalidInputError):
        asyncio.run(engine.similar_products("p1", limit=-1))


def test_category_requires_categories(engine):
    with pytest.raises(InvalidInputError):
        asyncio.run(engine.category_recommendations([]))


def test_category_recommendations_cached_per_category_set(engine, cache_store):
    first = asyncio.run(engine.category_recommendations(["kitchen", "books"], limit=2))
    asyncio.run(engine.category_recommendations(["books", "kitchen"], limit=2))

    assert _ids(first) == ["p4", "p5"]
    assert cache_store.writes == 1


def test_missing_product_is_not_found(engine):
    with pytest.raises(ProductNotFoundError):
        asyncio.run(engine.similar_content_products("missing"))
    with pytest.raises(ProductNotFoundError):
        asyncio.run(engine.similar_hybrid_products("missing"))


def test_event_store_failure_is_computation_failed(catalog, cache_store, metrics):
    engine = build_engine(BrokenEventStore(), catalog, cache_store, metrics=metrics)

    with pytest.raises(ComputationFailedError) as exc_info:
        asyncio.run(engine.personal_recommendations("u1"))

    assert exc_info.value.status_code == 500
    assert exc_info.value.details["error_type"] == "ConnectionError"
    assert metrics.get_metrics()["error_count"] == 1
    assert len(cache_store) == 0


def test_cache_failures_do_not_change_results(event_store, catalog, metrics):
    healthy = build_engine(event_store, catalog, InMemoryCacheStore())
    degraded = build_engine(event_store, catalog, FailingCacheStore(), metrics=metrics)

    expected = asyncio.run(healthy.similar_hybrid_products("p1"))
    actual = asyncio.run(degraded.similar_hybrid_products("p1"))

    assert actual == expected
    assert metrics.get_metrics()["cache_write_failures"] == 1
    assert metrics.get_metrics()["error_count"] == 0


def test_concurrent_misses_last_write_wins(sample_events, catalog):
    store = SlowEventStore(sample_events)
    cache_store = InMemoryCacheStore()
    engine = build_engine(store, catalog, cache_store)

    async def scenario():
        return await asyncio.gather(*(engine.similar_products("p1") for _ in range(3)))

    results = asyncio.run(scenario())

    assert results[0] == results[1] == results[2]
    assert cache_store.writes == 3
    assert len(cache_store) == 1


def test_single_flight_collapses_concurrent_misses(sample_events, catalog):
    store = SlowEventStore(sample_events)
    cache_store = InMemoryCacheStore()
    engine = build_engine(store, catalog, cache_store, RecommendationConfig(single_flight=True))

    async def scenario():
        return await asyncio.gather(*(engine.similar_products("p1") for _ in range(3)))

    results = asyncio.run(scenario())

    assert results[0] == results[1] == results[2]
    assert cache_store.writes == 1
    assert store.reads == 1


def test_single_flight_callers_keep_their_own_exclusions(sample_events, catalog):
    """A caller joining an in-flight computation filters it with its own flags."""
    engine = build_engine(
        SlowEventStore(sample_events),
        catalog,
        InMemoryCacheStore(),
        RecommendationConfig(single_flight=True),
    )
    everything = RecommendationOptions(
        limit=10, exclude_viewed=False, exclude_in_cart=False, exclude_purchased=False
    )

    async def scenario():
        return await asyncio.gather(
            engine.personal_recommendations("u1", everything),
            engine.personal_recommendations("u1", RecommendationOptions(limit=10)),
        )

    unfiltered, filtered = asyncio.run(scenario())

    assert _ids(unfiltered) == ["p3", "p6", "p1", "p2", "p4", "p5"]
    assert _ids(filtered) == ["p3", "p6", "p4", "p5"]


def test_popular_sets_are_cached_per_limit(engine, cache_store):
    asyncio.run(engine.popular_products(limit=2))

    larger = asyncio.run(engine.popular_products(limit=5))
    fresh = asyncio.run(engine.popular.get_popular_products(5))

    assert len(larger) == 5
    assert _ids(larger) == _ids(fresh)
    assert len(cache_store) == 2


def test_category_sets_are_cached_per_limit(engine):
    asyncio.run(engine.category_recommendations(["books", "kitchen"], limit=1))

    items = asyncio.run(engine.category_recommendations(["books", "kitchen"], limit=3))

    assert _ids(items) == ["p4", "p5", "p6"]


def test_content_fallback_is_not_cached_for_unknown_views(engine, event_store, cache_store):
    asyncio.run(event_store.append(make_event("u9", "view", "gone")))
    options = RecommendationOptions(limit=2, categories=["books"])

    items = asyncio.run(engine.content_based_recommendations("u9", options))

    assert _ids(items) == ["p4", "p5"]
    assert len(cache_store) == 0


def test_metrics_count_calls_per_endpoint(engine, metrics):
    asyncio.run(engine.popular_products())
    asyncio.run(engine.popular_products())
    asyncio.run(engine.similar_products("p1"))

    stats = metrics.get_metrics()
    assert stats["call_count"] == 3
    assert stats["calls_by_endpoint"] == {"popular": 2, "similar": 1}
    assert stats["cache_hit_rate"] == pytest.approx(1 / 3, abs=1e-4)


def test_fresh_computations_are_timestamped_per_type(engine, metrics):
    asyncio.run(engine.similar_hybrid_products("p1"))
    first = metrics.get_metrics()["last_computed"]

    asyncio.run(engine.similar_hybrid_products("p1"))

    assert list(first) == ["hybrid"]
    assert metrics.get_metrics()["last_computed"] == first


def test_event_counts_filter_by_user_and_window(engine):
    counts = asyncio.run(engine.event_counts(user_id="u1"))
    recent = asyncio.run(
        engine.event_counts(start=(utc_now() - timedelta(hours=4.5)).replace(tzinfo=None))
    )

    assert counts == {"add_to_cart": 1, "view": 2}
    assert recent == {"add_to_cart": 1, "view": 2}


def test_event_counts_store_failure(catalog, cache_store):
    engine = build_engine(BrokenEventStore(), catalog, cache_store)

    with pytest.raises(ComputationFailedError):
        asyncio.run(engine.event_counts())
