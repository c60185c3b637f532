"""Tests for the recommendation cache and single-flight helper."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from storerec.exceptions import CacheDegradedError
from storerec.recommender.cache import RecommendationCache, SingleFlight, cache_key
from storerec.recommender.models import RecommendationItem, RecommendationType
from storerec.recommender.stores import CacheStore, InMemoryCacheStore


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FailingCacheStore(CacheStore):
    """Cache store whose every operation raises."""

    async def get(self, key):
        raise CacheDegradedError("get", key)

    async def put(self, key, record):
        raise ConnectionError("cache unreachable")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def items():
    return [
        RecommendationItem("p2", 9.0, "Same category"),
        RecommendationItem("p1", 4.5, "Same brand"),
        RecommendationItem("p3", 4.5, "Popular product", stats={"views": 3}),
    ]


def test_cache_key_includes_source_product():
    assert cache_key("u1", RecommendationType.HYBRID) == "u1|hybrid|-"
    assert cache_key("p1", RecommendationType.COLLABORATIVE, "p1") == "p1|collaborative|p1"


def test_set_then_get_returns_identical_items(items, clock):
    cache = RecommendationCache(InMemoryCacheStore(), clock=clock)

    assert asyncio.run(cache.set("u1", RecommendationType.COLLABORATIVE, items))
    cached = asyncio.run(cache.get("u1", RecommendationType.COLLABORATIVE))

    assert cached == items


def test_get_miss_for_other_type_or_source(items, clock):
    cache = RecommendationCache(InMemoryCacheStore(), clock=clock)
    asyncio.run(cache.set("p1", RecommendationType.CONTENT_BASED, items, source_product_id="p1"))

    assert asyncio.run(cache.get("p1", RecommendationType.HYBRID, "p1")) is None
    assert asyncio.run(cache.get("p1", RecommendationType.CONTENT_BASED)) is None
    assert asyncio.run(cache.get("p1", RecommendationType.CONTENT_BASED, "p1")) == items


def test_set_overwrites_previous_entry(items, clock):
    store = InMemoryCacheStore()
    cache = RecommendationCache(store, clock=clock)

    asyncio.run(cache.set("u1", RecommendationType.HYBRID, items))
    asyncio.run(cache.set("u1", RecommendationType.HYBRID, items[:1]))

    assert len(store) == 1
    assert asyncio.run(cache.get("u1", RecommendationType.HYBRID)) == items[:1]


def test_expired_entry_is_a_miss(items, clock):
    cache = RecommendationCache(InMemoryCacheStore(), default_ttl=timedelta(hours=24), clock=clock)
    asyncio.run(cache.set("u1", RecommendationType.COLLABORATIVE, items))

    clock.advance(hours=23, minutes=59)
    assert asyncio.run(cache.get("u1", RecommendationType.COLLABORATIVE)) == items

    clock.advance(minutes=1)
    assert asyncio.run(cache.get("u1", RecommendationType.COLLABORATIVE)) is None


def test_custom_ttl(items, clock):
    cache = RecommendationCache(InMemoryCacheStore(), clock=clock)
    asyncio.run(cache.set("popular:30d", RecommendationType.POPULAR, items, ttl=timedelta(hours=1)))

    clock.advance(hours=2)

    assert asyncio.run(cache.get("popular:30d", RecommendationType.POPULAR)) is None


def test_store_failures_are_absorbed(items, clock):
    cache = RecommendationCache(FailingCacheStore(), clock=clock)

    assert asyncio.run(cache.get("u1", RecommendationType.HYBRID)) is None
    assert asyncio.run(cache.set("u1", RecommendationType.HYBRID, items)) is False


def test_single_flight_shares_one_computation():
    flight = SingleFlight()
    calls = []

    async def compute():
        calls.append(1)
        await asyncio.sleep(0.01)
        return ["result"]

    async def scenario():
        return await asyncio.gather(*(flight.run("k", compute) for _ in range(5)))

    results = asyncio.run(scenario())

    assert len(calls) == 1
    assert results == [["result"]] * 5
    assert len(flight) == 0


def test_single_flight_propagates_errors_to_all_waiters():
    flight = SingleFlight()

    async def compute():
        await asyncio.sleep(0.01)
        raise RuntimeError("boom")

    async def scenario():
        return await asyncio.gather(
            *(flight.run("k", compute) for _ in range(3)), return_exceptions=True
        )

    results = asyncio.run(scenario())

    assert all(isinstance(r, RuntimeError) for r in results)
    assert len(flight) == 0


def test_single_flight_distinct_keys_run_separately():
    flight = SingleFlight()
    calls = []

    async def compute(key):
        calls.append(key)
        await asyncio.sleep(0)
        return key

    async def scenario():
        return await asyncio.gather(
            flight.run("a", lambda: compute("a")), flight.run("b", lambda: compute("b"))
        )

    assert asyncio.run(scenario()) == ["a", "b"]
    assert sorted(calls) == ["a", "b"]
