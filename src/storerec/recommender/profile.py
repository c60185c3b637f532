"""Interaction profile builder.

Turns a user's recent events into weighted product affinities plus the sets
of viewed, carted and purchased products used for exclusion.
"""

import logging
from typing import Iterable, List, Optional

from storerec.recommender.models import (
    EVENT_WEIGHTS,
    Event,
    EventType,
    InteractionProfile,
)
from storerec.recommender.stores import EventStore
from storerec.recommender.utils import window_start

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_DAYS = 30
DEFAULT_RECENT_VIEW_SCAN = 10


def build_interaction_profile(user_id: str, events: Iterable[Event]) -> InteractionProfile:
    """Aggregate events into an interaction profile.

    Each product's score is the weighted sum of its events (view=1,
    add_to_cart=2, purchase=5). Events without a product are ignored.
    """
    profile = InteractionProfile(user_id=user_id)

    for event in events:
        if not event.product_id:
            continue
        product_id = event.product_id
        profile.product_scores.setdefault(product_id, 0)

        if event.event_type is EventType.VIEW:
            profile.viewed.add(product_id)
        elif event.event_type is EventType.ADD_TO_CART:
            profile.in_cart.add(product_id)
        elif event.event_type is EventType.PURCHASE:
            profile.purchased.add(product_id)
        profile.product_scores[product_id] += EVENT_WEIGHTS.get(event.event_type, 0)

    return profile


def top_products(profile: InteractionProfile, limit: int = 5) -> List[str]:
    """Return the user's highest-affinity product ids.

    Ties keep the order in which products entered the profile (newest event
    first).
    """
    ranked = sorted(profile.product_scores.items(), key=lambda kv: kv[1], reverse=True)
    return [product_id for product_id, _ in ranked[:limit]]


class UserProfileService:
    """Builds interaction profiles from the event store."""

    def __init__(self, event_store: EventStore):
        self.event_store = event_store

    async def get_user_events(
        self, user_id: str, max_age_days: int = DEFAULT_MAX_AGE_DAYS
    ) -> List[Event]:
        """Events of a user within the window that carry a product, newest first."""
        return await self.event_store.find_events(
            user_id=user_id,
            since=window_start(max_age_days),
            with_product=True,
        )

    async def build_profile(
        self, user_id: str, max_age_days: int = DEFAULT_MAX_AGE_DAYS
    ) -> InteractionProfile:
        """Build the interaction profile of a user.

        Args:
            user_id: User to profile.
            max_age_days: Only events newer than this many days count.

        Returns:
            InteractionProfile; empty when the user has no qualifying events.
        """
        events = await self.get_user_events(user_id, max_age_days)
        profile = build_interaction_profile(user_id, events)

        logger.debug(
            "Built interaction profile",
            extra={
                "user_id": user_id,
                "num_events": len(events),
                "distinct_products": profile.distinct_products,
                "max_age_days": max_age_days,
            },
        )
        return profile

    async def recent_viewed_products(
        self,
        user_id: str,
        max_age_days: int = DEFAULT_MAX_AGE_DAYS,
        limit: Optional[int] = DEFAULT_RECENT_VIEW_SCAN,
    ) -> List[str]:
        """Distinct viewed product ids ordered by most recent view."""
        events = await self.event_store.find_events(
            user_id=user_id,
            event_types=[EventType.VIEW],
            since=window_start(max_age_days),
            with_product=True,
        )

        seen = []
        for event in sorted(events, key=lambda e: e.timestamp, reverse=True):
            if event.product_id not in seen:
                seen.append(event.product_id)
            if limit is not None and len(seen) >= limit:
                break
        return seen
