"""Popularity fallback.

Global product ranking over recent view, cart and purchase events. Used for
cold-start users, products nobody has interacted with yet, and to top up thin
personal results.
"""

import logging
from typing import List

import pandas as pd

from storerec.recommender.models import (
    PRODUCT_EVENT_TYPES,
    EventType,
    RecommendationItem,
)
from storerec.recommender.stores import Catalog, EventStore
from storerec.recommender.utils import events_to_frame, window_start

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
DEFAULT_DAYS = 30
POPULAR_REASON = "Popular product"

COUNT_COLUMNS = {
    EventType.VIEW.value: "views",
    EventType.ADD_TO_CART.value: "added_to_cart",
    EventType.PURCHASE.value: "purchased",
}


def aggregate_popularity(events_df: pd.DataFrame) -> pd.DataFrame:
    """Sum weighted scores and per-type counts by product.

    Args:
        events_df: Frame produced by ``events_to_frame``.

    Returns:
        Frame indexed by product_id with columns score, views,
        added_to_cart and purchased, sorted by score descending with
        product_id ascending as tie-break.
    """
    columns = ["score", *COUNT_COLUMNS.values()]
    if events_df.empty:
        return pd.DataFrame(columns=columns)

    counts = (
        pd.crosstab(events_df["product_id"], events_df["event_type"])
        .reindex(columns=list(COUNT_COLUMNS), fill_value=0)
        .rename(columns=COUNT_COLUMNS)
    )
    scores = events_df.groupby("product_id")["weight"].sum().rename("score")

    table = pd.concat([scores, counts], axis=1).fillna(0)
    table.index.name = "product_id"
    table = table.reset_index().sort_values(
        ["score", "product_id"], ascending=[False, True], kind="mergesort"
    )
    return table.set_index("product_id")[columns]


def popularity_reason(stats) -> str:
    return (
        f"{POPULAR_REASON} ({stats['views']} views, "
        f"{stats['added_to_cart']} cart adds, {stats['purchased']} purchases)"
    )


class PopularProductsService:
    """Ranks products by recent weighted interactions."""

    def __init__(self, event_store: EventStore, catalog: Catalog):
        self.event_store = event_store
        self.catalog = catalog

    async def get_popular_products(
        self, limit: int = DEFAULT_LIMIT, days: int = DEFAULT_DAYS
    ) -> List[RecommendationItem]:
        """Return the most popular catalog products.

        Args:
            limit: Maximum number of products to return.
            days: Lookback window in days.

        Returns:
            Ranked recommendation items carrying per-type counts in ``stats``.
            Empty event logs or catalogs yield an empty list.
        """
        events = await self.event_store.find_events(
            event_types=PRODUCT_EVENT_TYPES,
            since=window_start(days),
            with_product=True,
        )
        table = aggregate_popularity(events_to_frame(events))
        if table.empty:
            logger.info("No recent events for popularity ranking", extra={"days": days})
            return []

        products = await self.catalog.get_products(table.index.tolist())

        results = []
        for product_id, row in table.iterrows():
            product = products.get(product_id)
            # Products removed from the catalog are skipped
            if product is None:
                continue
            stats = {
                "views": int(row["views"]),
                "added_to_cart": int(row["added_to_cart"]),
                "purchased": int(row["purchased"]),
            }
            results.append(
                RecommendationItem(
                    product_id=product_id,
                    score=float(row["score"]),
                    reason=popularity_reason(stats),
                    product=product.snapshot(),
                    stats=stats,
                )
            )
            if len(results) >= limit:
                break

        logger.debug(
            "Computed popular products",
            extra={"days": days, "limit": limit, "num_results": len(results)},
        )
        return results
