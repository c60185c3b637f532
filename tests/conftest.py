"""Shared fixtures for the StoreRec test suite."""

import logging
from datetime import timedelta
from typing import List, Optional

import pytest

from storerec.config import RecommendationConfig
from storerec.metrics import MetricsService
from storerec.recommender.engine import build_engine
from storerec.recommender.models import Event, EventType, Product, utc_now
from storerec.recommender.stores import (
    InMemoryCacheStore,
    InMemoryCatalog,
    InMemoryEventStore,
)

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)


def make_event(
    user_id: str,
    event_type: str,
    product_id: Optional[str] = None,
    hours_ago: float = 1.0,
    search_query: Optional[str] = None,
) -> Event:
    """Event timestamped ``hours_ago`` hours before now."""
    return Event(
        user_id=user_id,
        event_type=EventType(event_type),
        product_id=product_id,
        search_query=search_query,
        timestamp=utc_now() - timedelta(hours=hours_ago),
    )


def make_product(product_id: str, **overrides) -> Product:
    fields = {
        "id": product_id,
        "name": f"Product {product_id}",
        "price": 10.0,
        "category": None,
        "brand": None,
        "tags": (),
        "images": (f"https://img.example.com/{product_id}.jpg",),
    }
    fields.update(overrides)
    return Product(**fields)


@pytest.fixture
def sample_products() -> List[Product]:
    return [
        make_product("p1", name="Laptop", price=1000.0, category="electronics",
                     brand="acme", tags=("portable", "work"), average_rating=4.5),
        make_product("p2", name="Mouse", price=25.0, category="electronics",
                     brand="acme", tags=("work",), average_rating=4.0),
        make_product("p3", name="Keyboard", price=80.0, category="electronics",
                     brand="globex", tags=("work",), average_rating=3.5),
        make_product("p4", name="Novel", price=15.0, category="books",
                     brand="initech", tags=("fiction",), average_rating=4.8),
        make_product("p5", name="Cookbook", price=30.0, category="books",
                     brand="initech", tags=("food",), average_rating=4.1),
        make_product("p6", name="Pan", price=45.0, category="kitchen",
                     brand="globex", tags=("food",), average_rating=3.9),
    ]


@pytest.fixture
def sample_events() -> List[Event]:
    return [
        make_event("u1", "view", "p1", hours_ago=5),
        make_event("u1", "add_to_cart", "p1", hours_ago=4),
        make_event("u1", "view", "p2", hours_ago=3),
        make_event("u2", "view", "p1", hours_ago=6),
        make_event("u2", "purchase", "p3", hours_ago=5),
        make_event("u2", "view", "p2", hours_ago=2),
        make_event("u3", "view", "p4", hours_ago=8),
        make_event("u3", "view", "p5", hours_ago=7),
        make_event("u4", "view", "p2", hours_ago=9),
        make_event("u4", "purchase", "p6", hours_ago=8),
        make_event("u4", "search", search_query="pan", hours_ago=10),
    ]


@pytest.fixture
def event_store(sample_events) -> InMemoryEventStore:
    return InMemoryEventStore(sample_events)


@pytest.fixture
def catalog(sample_products) -> InMemoryCatalog:
    return InMemoryCatalog(sample_products)


@pytest.fixture
def cache_store() -> InMemoryCacheStore:
    return InMemoryCacheStore()


@pytest.fixture
def config() -> RecommendationConfig:
    return RecommendationConfig()


@pytest.fixture
def metrics() -> MetricsService:
    return MetricsService()


@pytest.fixture
def engine(event_store, catalog, cache_store, config, metrics):
    return build_engine(event_store, catalog, cache_store, config, metrics)
