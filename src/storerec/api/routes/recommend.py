"""Recommendation endpoints for the StoreRec API.

Thin HTTP glue over ``RecommendationEngine``. Validation and error mapping
happen in the engine and the application's exception handlers.
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from storerec.recommender.engine import RecommendationEngine
from storerec.recommender.models import (
    RecommendationItem,
    RecommendationOptions,
    ScoreWeights,
)

router = APIRouter(
    prefix="/recommendations",
    tags=["recommendations"],
)


class ProductSnapshotModel(BaseModel):
    """Product fields shown next to a recommendation."""

    name: str
    price: float
    images: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    brand: Optional[str] = None


class RecommendationItemModel(BaseModel):
    """One ranked recommendation.

    Attributes:
        product_id: Recommended product.
        score: Ranking score; hybrid scores are on a 0-10 scale.
        reason: Human-readable explanation.
        product: Product snapshot.
        stats: Interaction counts for popularity results.
        sources: Scorers that contributed to a hybrid result.
        source_scores: Raw score from each contributing scorer.
    """

    product_id: str
    score: float
    reason: str
    product: Optional[ProductSnapshotModel] = None
    stats: Optional[Dict[str, int]] = None
    sources: Optional[List[str]] = None
    source_scores: Optional[Dict[str, float]] = None


class RecommendationResponse(BaseModel):
    """Response model for every recommendation endpoint."""

    subject: str = Field(..., description="User, product or category the list is for")
    recommendation_type: str = Field(..., description="Strategy that produced the list")
    count: int = Field(..., description="Number of recommendations returned")
    recommendations: List[RecommendationItemModel]


def _engine(request: Request) -> RecommendationEngine:
    return request.app.state.engine


def _response(
    subject: str, recommendation_type: str, items: Sequence[RecommendationItem]
) -> RecommendationResponse:
    return RecommendationResponse(
        subject=subject,
        recommendation_type=recommendation_type,
        count=len(items),
        recommendations=[RecommendationItemModel(**item.to_dict()) for item in items],
    )


def _weights(
    engine: RecommendationEngine,
    collaborative_weight: Optional[float],
    content_weight: Optional[float],
) -> Optional[ScoreWeights]:
    if collaborative_weight is None and content_weight is None:
        return None
    config = engine.config
    return ScoreWeights(
        collaborative=(
            config.collaborative_weight
            if collaborative_weight is None
            else collaborative_weight
        ),
        content_based=config.content_weight if content_weight is None else content_weight,
    )


def _options(
    engine: RecommendationEngine,
    limit: Optional[int],
    exclude_viewed: bool,
    exclude_in_cart: bool,
    exclude_purchased: bool,
    categories: Optional[List[str]],
    max_age_days: Optional[int],
    weights: Optional[ScoreWeights] = None,
) -> RecommendationOptions:
    config = engine.config
    return RecommendationOptions(
        limit=config.default_limit if limit is None else limit,
        exclude_viewed=exclude_viewed,
        exclude_in_cart=exclude_in_cart,
        exclude_purchased=exclude_purchased,
        categories=categories or (),
        weights=weights,
        max_age_days=config.max_age_days if max_age_days is None else max_age_days,
    )


@router.get("/personal/{user_id}", response_model=RecommendationResponse)
async def personal(
    user_id: str,
    request: Request,
    limit: Optional[int] = None,
    exclude_viewed: bool = True,
    exclude_in_cart: bool = True,
    exclude_purchased: bool = True,
    max_age_days: Optional[int] = None,
) -> RecommendationResponse:
    """Collaborative recommendations for a user.

    Example:
        GET /recommendations/personal/u42?limit=5&exclude_viewed=false
    """
    engine = _engine(request)
    options = _options(
        engine, limit, exclude_viewed, exclude_in_cart, exclude_purchased, None, max_age_days
    )
    items = await engine.personal_recommendations(user_id, options)
    return _response(user_id, "collaborative", items)


@router.get("/content-based/{user_id}", response_model=RecommendationResponse)
async def content_based(
    user_id: str,
    request: Request,
    limit: Optional[int] = None,
    exclude_viewed: bool = True,
    exclude_in_cart: bool = True,
    exclude_purchased: bool = True,
    categories: Optional[List[str]] = Query(None),
    max_age_days: Optional[int] = None,
) -> RecommendationResponse:
    """Content-based recommendations seeded from recently viewed products."""
    engine = _engine(request)
    options = _options(
        engine,
        limit,
        exclude_viewed,
        exclude_in_cart,
        exclude_purchased,
        categories,
        max_age_days,
    )
    items = await engine.content_based_recommendations(user_id, options)
    return _response(user_id, "content_based", items)


@router.get("/hybrid/{user_id}", response_model=RecommendationResponse)
async def hybrid(
    user_id: str,
    request: Request,
    limit: Optional[int] = None,
    exclude_viewed: bool = True,
    exclude_in_cart: bool = True,
    exclude_purchased: bool = True,
    categories: Optional[List[str]] = Query(None),
    max_age_days: Optional[int] = None,
    collaborative_weight: Optional[float] = None,
    content_weight: Optional[float] = None,
) -> RecommendationResponse:
    """Weighted blend of collaborative and content-based recommendations.

    Example:
        GET /recommendations/hybrid/u42?collaborative_weight=0.8&content_weight=0.2
    """
    engine = _engine(request)
    options = _options(
        engine,
        limit,
        exclude_viewed,
        exclude_in_cart,
        exclude_purchased,
        categories,
        max_age_days,
        _weights(engine, collaborative_weight, content_weight),
    )
    items = await engine.hybrid_recommendations(user_id, options)
    return _response(user_id, "hybrid", items)


@router.get("/by-category", response_model=RecommendationResponse)
async def by_category(
    request: Request,
    categories: List[str] = Query([]),
    limit: Optional[int] = None,
) -> RecommendationResponse:
    """Best rated and newest products from the given categories."""
    items = await _engine(request).category_recommendations(categories, limit)
    return _response(",".join(categories), "content_based", items)


@router.get("/popular", response_model=RecommendationResponse)
async def popular(
    request: Request,
    limit: Optional[int] = None,
    days: Optional[int] = None,
) -> RecommendationResponse:
    """Most interacted-with products over a recent window."""
    engine = _engine(request)
    items = await engine.popular_products(limit, days)
    window = engine.config.popular_days if days is None else days
    return _response(f"popular:{window}d", "popular", items)


@router.get("/similar/{product_id}", response_model=RecommendationResponse)
async def similar(
    product_id: str,
    request: Request,
    limit: Optional[int] = None,
) -> RecommendationResponse:
    """Products frequently explored by the same users."""
    items = await _engine(request).similar_products(product_id, limit)
    return _response(product_id, "collaborative", items)


@router.get("/similar-content/{product_id}", response_model=RecommendationResponse)
async def similar_content(
    product_id: str,
    request: Request,
    limit: Optional[int] = None,
) -> RecommendationResponse:
    """Products sharing category, brand, price band or tags."""
    items = await _engine(request).similar_content_products(product_id, limit)
    return _response(product_id, "content_based", items)


@router.get("/similar-hybrid/{product_id}", response_model=RecommendationResponse)
async def similar_hybrid(
    product_id: str,
    request: Request,
    limit: Optional[int] = None,
    collaborative_weight: Optional[float] = None,
    content_weight: Optional[float] = None,
) -> RecommendationResponse:
    """Weighted blend of co-occurrence and attribute similarity."""
    engine = _engine(request)
    weights = _weights(engine, collaborative_weight, content_weight)
    items = await engine.similar_hybrid_products(product_id, limit, weights)
    return _response(product_id, "hybrid", items)


class EventCountsResponse(BaseModel):
    """Tracked event totals per event type."""

    total: int
    counts: Dict[str, int] = Field(..., description="Event type to number of events")


@router.get("/events/analytics", response_model=EventCountsResponse)
async def event_analytics(
    request: Request,
    user_id: Optional[str] = None,
    product_id: Optional[str] = None,
    event_type: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> EventCountsResponse:
    """Count tracked events by type, optionally filtered."""
    counts = await _engine(request).event_counts(user_id, product_id, event_type, start, end)
    return EventCountsResponse(total=sum(counts.values()), counts=counts)
