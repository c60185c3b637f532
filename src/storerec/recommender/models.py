"""Domain models for the recommendation engine.

Events and catalog products come from external collaborators; interaction
profiles, recommendation items and recommendation sets are produced here.
"""

import math
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Set, Tuple

from storerec.exceptions import InvalidInputError

# Identifiers are opaque strings, but must look like identifiers
ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]{0,63}$")


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def validate_identifier(value: Any, kind: str = "id") -> str:
    """Check that a user or product identifier is well formed.

    Args:
        value: Candidate identifier.
        kind: Name used in the error message, e.g. "product_id".

    Returns:
        The identifier as a string.

    Raises:
        InvalidInputError: If the identifier is missing or malformed.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidInputError(f"{kind} is required", details={"field": kind})
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise InvalidInputError(
            f"Invalid {kind}: expected a string identifier",
            details={"field": kind, "value": repr(value)},
        )
    text = str(value)
    if not ID_PATTERN.match(text):
        raise InvalidInputError(
            f"Invalid {kind}: '{text}'",
            details={"field": kind, "value": text},
        )
    return text


def validate_positive(value: Any, name: str) -> int:
    """Check that a count-like parameter is a positive integer."""
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidInputError(
            f"{name} must be a positive integer",
            details={"field": name, "value": value},
        )
    return value


class EventType(str, Enum):
    """Kinds of tracked user interactions."""

    VIEW = "view"
    ADD_TO_CART = "add_to_cart"
    PURCHASE = "purchase"
    SEARCH = "search"


# Weighted contribution of each interaction to affinity and popularity
EVENT_WEIGHTS: Dict[EventType, int] = {
    EventType.VIEW: 1,
    EventType.ADD_TO_CART: 2,
    EventType.PURCHASE: 5,
}

PRODUCT_EVENT_TYPES: FrozenSet[EventType] = frozenset(EVENT_WEIGHTS)


class RecommendationType(str, Enum):
    """Kinds of cached recommendation sets."""

    COLLABORATIVE = "collaborative"
    CONTENT_BASED = "content_based"
    HYBRID = "hybrid"
    POPULAR = "popular"


@dataclass(frozen=True)
class Event:
    """A single tracked interaction. Immutable once created."""

    user_id: str
    event_type: EventType
    product_id: Optional[str] = None
    search_query: Optional[str] = None
    category_id: Optional[str] = None
    session_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self):
        try:
            event_type = EventType(self.event_type)
        except ValueError:
            raise InvalidInputError(
                f"Unknown event type '{self.event_type}'",
                details={"event_type": str(self.event_type)},
            )
        object.__setattr__(self, "event_type", event_type)

        if not self.user_id:
            raise InvalidInputError("User ID is required")
        if event_type in PRODUCT_EVENT_TYPES and not self.product_id:
            raise InvalidInputError(
                "Product ID is required for this event type",
                details={"event_type": event_type.value},
            )
        if event_type is EventType.SEARCH and not self.search_query:
            raise InvalidInputError("Search query is required for search events")
        if self.timestamp.tzinfo is None:
            object.__setattr__(
                self, "timestamp", self.timestamp.replace(tzinfo=timezone.utc)
            )

    @property
    def weight(self) -> int:
        return EVENT_WEIGHTS.get(self.event_type, 0)


@dataclass(frozen=True)
class ProductSnapshot:
    """Denormalized product fields attached to each recommendation."""

    name: str
    price: float
    images: Tuple[str, ...] = ()
    category: Optional[str] = None
    brand: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "price": self.price,
            "images": list(self.images),
            "category": self.category,
            "brand": self.brand,
        }


@dataclass(frozen=True)
class Product:
    """Catalog record, read-only for the engine."""

    id: str
    name: str
    price: float
    category: Optional[str] = None
    brand: Optional[str] = None
    tags: Tuple[str, ...] = ()
    images: Tuple[str, ...] = ()
    stock: int = 0
    average_rating: Optional[float] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is not None and self.created_at.tzinfo is None:
            object.__setattr__(
                self, "created_at", self.created_at.replace(tzinfo=timezone.utc)
            )

    def snapshot(self) -> ProductSnapshot:
        return ProductSnapshot(
            name=self.name,
            price=self.price,
            images=tuple(self.images[:1]),
            category=self.category,
            brand=self.brand,
        )


@dataclass
class InteractionProfile:
    """Weighted product affinities and exclusion sets for one user.

    Built per request and never persisted.
    """

    user_id: str
    product_scores: Dict[str, float] = field(default_factory=dict)
    viewed: Set[str] = field(default_factory=set)
    in_cart: Set[str] = field(default_factory=set)
    purchased: Set[str] = field(default_factory=set)

    @property
    def is_empty(self) -> bool:
        return not self.product_scores

    @property
    def distinct_products(self) -> int:
        return len(self.product_scores)

    def excluded_ids(
        self,
        exclude_viewed: bool = True,
        exclude_in_cart: bool = True,
        exclude_purchased: bool = True,
    ) -> Set[str]:
        """Union of the exclusion sets selected by the flags."""
        excluded: Set[str] = set()
        if exclude_viewed:
            excluded |= self.viewed
        if exclude_in_cart:
            excluded |= self.in_cart
        if exclude_purchased:
            excluded |= self.purchased
        return excluded


@dataclass(frozen=True)
class RecommendationItem:
    """One ranked recommendation."""

    product_id: str
    score: float
    reason: str
    product: Optional[ProductSnapshot] = None
    stats: Optional[Dict[str, int]] = None
    sources: Optional[Tuple[str, ...]] = None
    source_scores: Optional[Dict[str, float]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "product_id": self.product_id,
            "score": self.score,
            "reason": self.reason,
            "product": self.product.to_dict() if self.product else None,
        }
        if self.stats is not None:
            data["stats"] = dict(self.stats)
        if self.sources is not None:
            data["sources"] = list(self.sources)
            data["source_scores"] = dict(self.source_scores or {})
        return data


@dataclass(frozen=True)
class RecommendationSet:
    """A cached ranked list for one cache key."""

    subject_key: str
    recommendation_type: RecommendationType
    items: Tuple[RecommendationItem, ...]
    created_at: datetime
    expires_at: datetime
    source_product_id: Optional[str] = None

    def is_live(self, now: datetime) -> bool:
        return self.expires_at > now


@dataclass(frozen=True)
class ScoreWeights:
    """Hybrid weights for the collaborative and content lists."""

    collaborative: float = 0.6
    content_based: float = 0.4

    def normalized(self) -> "ScoreWeights":
        """Return weights divided by their sum.

        Raises:
            InvalidInputError: If a weight is negative or non-finite, or the
                weights sum to zero.
        """
        values = (self.collaborative, self.content_based)
        if any(not math.isfinite(v) or v < 0 for v in values):
            raise InvalidInputError(
                "Weights must be finite and non-negative",
                details={
                    "collaborative": self.collaborative,
                    "content_based": self.content_based,
                },
            )
        total = sum(values)
        if total <= 0:
            raise InvalidInputError(
                "Weights must not sum to zero",
                details={
                    "collaborative": self.collaborative,
                    "content_based": self.content_based,
                },
            )
        return ScoreWeights(
            collaborative=self.collaborative / total,
            content_based=self.content_based / total,
        )


@dataclass
class RecommendationOptions:
    """Per-request options for user-based recommendations."""

    limit: int = 10
    exclude_viewed: bool = True
    exclude_in_cart: bool = True
    exclude_purchased: bool = True
    categories: Sequence[str] = ()
    weights: Optional[ScoreWeights] = None
    max_age_days: int = 30

    def validate(self) -> "RecommendationOptions":
        """Check option values, raising InvalidInputError on bad input."""
        validate_positive(self.limit, "limit")
        validate_positive(self.max_age_days, "max_age_days")
        self.categories = [
            validate_identifier(category, "category") for category in self.categories
        ]
        if self.weights is not None:
            self.weights = self.weights.normalized()
        return self

    def exclusions(self, profile: InteractionProfile) -> Set[str]:
        return profile.excluded_ids(
            exclude_viewed=self.exclude_viewed,
            exclude_in_cart=self.exclude_in_cart,
            exclude_purchased=self.exclude_purchased,
        )


def dedupe_first_seen(
    ranked_lists: Sequence[Sequence[RecommendationItem]],
    excluded: Optional[Set[str]] = None,
) -> List[RecommendationItem]:
    """Flatten ranked lists keeping the first occurrence of each product.

    Products in ``excluded`` are dropped.
    """
    excluded = excluded or set()
    seen: Set[str] = set()
    merged: List[RecommendationItem] = []
    for items in ranked_lists:
        for item in items:
            if item.product_id in seen or item.product_id in excluded:
                continue
            seen.add(item.product_id)
            merged.append(item)
    return merged
