"""Tests for the popularity ranking."""

import asyncio

from conftest import make_event

from storerec.recommender.popular import PopularProductsService, aggregate_popularity
from storerec.recommender.stores import InMemoryCatalog, InMemoryEventStore
from storerec.recommender.utils import events_to_frame


def test_aggregate_popularity_scores_and_counts():
    events = [
        make_event("u1", "view", "p1"),
        make_event("u2", "add_to_cart", "p1"),
        make_event("u3", "purchase", "p2"),
    ]

    table = aggregate_popularity(events_to_frame(events))

    assert table.index.tolist() == ["p2", "p1"]
    assert table.loc["p1", "score"] == 3
    assert table.loc["p1", "views"] == 1
    assert table.loc["p1", "added_to_cart"] == 1
    assert table.loc["p2", "purchased"] == 1


def test_aggregate_popularity_empty():
    table = aggregate_popularity(events_to_frame([]))

    assert table.empty
    assert list(table.columns) == ["score", "views", "added_to_cart", "purchased"]


def test_popular_products_ranking(event_store, catalog):
    """Equal scores are ordered by product id."""
    service = PopularProductsService(event_store, catalog)

    items = asyncio.run(service.get_popular_products(limit=3))

    assert [item.product_id for item in items] == ["p3", "p6", "p1"]
    assert [item.score for item in items] == [5.0, 5.0, 4.0]
    assert items[2].stats == {"views": 2, "added_to_cart": 1, "purchased": 0}
    assert items[2].reason == "Popular product (2 views, 1 cart adds, 0 purchases)"
    assert items[0].product.name == "Keyboard"


def test_popular_products_skip_products_missing_from_catalog(sample_events, catalog):
    ghost = [make_event("u9", "purchase", "ghost"), make_event("u8", "purchase", "ghost")]
    service = PopularProductsService(InMemoryEventStore(sample_events + ghost), catalog)

    items = asyncio.run(service.get_popular_products(limit=2))

    assert [item.product_id for item in items] == ["p3", "p6"]


def test_popular_products_window(catalog):
    store = InMemoryEventStore(
        [
            make_event("u1", "purchase", "p1", hours_ago=24 * 10),
            make_event("u1", "view", "p2", hours_ago=1),
        ]
    )
    service = PopularProductsService(store, catalog)

    items = asyncio.run(service.get_popular_products(limit=5, days=7))

    assert [item.product_id for item in items] == ["p2"]


def test_popular_products_empty_log():
    service = PopularProductsService(InMemoryEventStore(), InMemoryCatalog())

    assert asyncio.run(service.get_popular_products()) == []
