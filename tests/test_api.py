"""Tests for the FastAPI application endpoints.

Integration tests for the health, status and recommendation endpoints,
running against an engine over the in-memory sample data.
"""

import pytest
from fastapi.testclient import TestClient

from storerec.api.main import create_app


@pytest.fixture
def client(engine):
    return TestClient(create_app(engine=engine))


def test_ping_endpoint(client):
    """Test that the /ping endpoint returns correct status and JSON."""
    response = client.get("/ping")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_status_endpoint_reports_metrics(client):
    client.get("/recommendations/popular")

    response = client.get("/status")

    assert response.status_code == 200
    data = response.json()
    assert data["single_flight"] is False
    assert data["metrics"]["call_count"] == 1
    assert data["metrics"]["calls_by_endpoint"] == {"popular": 1}
    assert list(data["metrics"]["last_computed"]) == ["popular"]


def test_request_id_header(client):
    response = client.get("/ping", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"


def test_personal_endpoint(client):
    response = client.get("/recommendations/personal/u1", params={"limit": 3})

    assert response.status_code == 200
    data = response.json()
    assert data["subject"] == "u1"
    assert data["recommendation_type"] == "collaborative"
    assert data["count"] == 3
    ids = [item["product_id"] for item in data["recommendations"]]
    assert ids == ["p3", "p6", "p4"]
    first = data["recommendations"][0]
    assert first["product"]["name"] == "Keyboard"
    assert first["reason"].endswith("also interacted with this item")


def test_personal_endpoint_exclusion_flags(client):
    response = client.get(
        "/recommendations/personal/u1",
        params={"exclude_viewed": "false", "exclude_in_cart": "false"},
    )

    ids = [item["product_id"] for item in response.json()["recommendations"]]
    assert "p1" in ids and "p2" in ids


def test_content_based_endpoint(client):
    response = client.get("/recommendations/content-based/u3")

    assert response.status_code == 200
    data = response.json()
    assert [item["product_id"] for item in data["recommendations"]] == ["p6"]


def test_content_based_cold_start_uses_categories(client):
    response = client.get(
        "/recommendations/content-based/u9", params=[("categories", "books"), ("limit", "1")]
    )

    data = response.json()
    assert [item["product_id"] for item in data["recommendations"]] == ["p4"]
    assert data["recommendations"][0]["reason"] == "From your preferred categories"


def test_hybrid_endpoint_with_weights(client):
    response = client.get(
        "/recommendations/hybrid/u3",
        params={"collaborative_weight": 1, "content_weight": 1, "limit": 5},
    )

    assert response.status_code == 200
    items = response.json()["recommendations"]
    assert items[0]["score"] == 10.0
    assert all("sources" in item and "source_scores" in item for item in items)


def test_by_category_endpoint(client):
    response = client.get(
        "/recommendations/by-category",
        params=[("categories", "books"), ("categories", "kitchen")],
    )

    assert response.status_code == 200
    ids = [item["product_id"] for item in response.json()["recommendations"]]
    assert ids == ["p4", "p5", "p6"]


def test_popular_endpoint(client):
    response = client.get("/recommendations/popular", params={"limit": 2, "days": 7})

    assert response.status_code == 200
    data = response.json()
    assert data["subject"] == "popular:7d"
    assert data["recommendations"][0]["stats"] == {
        "views": 0,
        "added_to_cart": 0,
        "purchased": 1,
    }


def test_similar_endpoints(client):
    collaborative = client.get("/recommendations/similar/p1").json()
    content = client.get("/recommendations/similar-content/p1").json()
    hybrid = client.get("/recommendations/similar-hybrid/p1").json()

    assert [i["product_id"] for i in collaborative["recommendations"]] == ["p3", "p2"]
    assert [i["product_id"] for i in content["recommendations"]] == ["p2", "p3"]
    assert hybrid["recommendation_type"] == "hybrid"
    assert hybrid["recommendations"][0]["score"] == 10.0


def test_event_analytics_counts_by_type(client):
    response = client.get("/recommendations/events/analytics")

    assert response.status_code == 200
    assert response.json() == {
        "total": 11,
        "counts": {"add_to_cart": 1, "purchase": 2, "search": 1, "view": 7},
    }


@pytest.mark.parametrize(
    "params,expected",
    [
        ({"user_id": "u4"}, {"purchase": 1, "search": 1, "view": 1}),
        ({"product_id": "p1"}, {"add_to_cart": 1, "view": 2}),
        ({"event_type": "purchase"}, {"purchase": 2}),
        ({"start": "2999-01-01T00:00:00"}, {}),
    ],
)
def test_event_analytics_filters(client, params, expected):
    response = client.get("/recommendations/events/analytics", params=params)

    assert response.status_code == 200
    assert response.json()["counts"] == expected


@pytest.mark.parametrize(
    "params",
    [
        {"event_type": "wishlist"},
        {"start": "2024-02-01T00:00:00Z", "end": "2024-01-01T00:00:00Z"},
        {"user_id": "bad id"},
    ],
)
def test_event_analytics_rejects_bad_filters(client, params):
    response = client.get("/recommendations/events/analytics", params=params)

    assert response.status_code == 400
    assert response.json()["error"] == "InvalidInputError"
