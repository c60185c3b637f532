"""Prewarm the recommendation cache for the most active users and products.

Runs the cached entry points once per subject so the first real request is a
hit. With the in-memory stores the cache lives only as long as the process,
so the script then doubles as a smoke test over a data set.

Usage: python scripts/prewarm_cache.py --top 50 --limit 10
"""

import argparse
import asyncio
import logging
import time
from typing import Dict, List, Sequence

from storerec.api.logging_config import setup_logging
from storerec.config import RecommendationConfig
from storerec.exceptions import StoreRecException
from storerec.recommender.engine import RecommendationEngine, build_engine
from storerec.recommender.models import PRODUCT_EVENT_TYPES, RecommendationOptions
from storerec.recommender.stores import InMemoryCacheStore, InMemoryCatalog, InMemoryEventStore
from storerec.recommender.utils import events_to_frame, load_catalog_csv, load_events_csv

logger = logging.getLogger(__name__)


async def most_active(engine: RecommendationEngine, top: int) -> Dict[str, List[str]]:
    """Most active users and most interacted-with products, busiest first."""
    events = await engine.event_store.find_events(event_types=PRODUCT_EVENT_TYPES)
    df = events_to_frame(events)
    if df.empty:
        return {"users": [], "products": []}
    return {
        "users": df["user_id"].value_counts().nlargest(top).index.tolist(),
        "products": df["product_id"].value_counts().nlargest(top).index.tolist(),
    }


async def prewarm(
    engine: RecommendationEngine,
    user_ids: Sequence[str],
    product_ids: Sequence[str],
    limit: int,
) -> Dict[str, int]:
    """Run the cached entry points once per subject.

    Failures for a single subject are logged and counted; they do not stop
    the run.

    Returns:
        Counts of warmed and failed subjects.
    """
    warmed = 0
    failed = 0
    options = RecommendationOptions(limit=limit, max_age_days=engine.config.max_age_days)

    jobs = [engine.popular_products(limit)]
    for user_id in user_ids:
        jobs.append(engine.personal_recommendations(user_id, options))
        jobs.append(engine.hybrid_recommendations(user_id, options))
    for product_id in product_ids:
        jobs.append(engine.similar_products(product_id))
        jobs.append(engine.similar_hybrid_products(product_id))

    results = await asyncio.gather(*jobs, return_exceptions=True)
    for result in results:
        if isinstance(result, StoreRecException):
            failed += 1
            logger.warning("Prewarm failed", extra={"error": result.message})
        elif isinstance(result, BaseException):
            raise result
        else:
            warmed += 1
    return {"warmed": warmed, "failed": failed}


async def run(args: argparse.Namespace) -> Dict[str, int]:
    config = RecommendationConfig.from_env()
    engine = build_engine(
        InMemoryEventStore(load_events_csv(args.events)),
        InMemoryCatalog(load_catalog_csv(args.catalog)),
        InMemoryCacheStore(),
        config,
    )
    active = await most_active(engine, args.top)
    print(f"Top users: {len(active['users'])}, top products: {len(active['products'])}")
    return await prewarm(engine, active["users"], active["products"], args.limit)


def main() -> None:
    parser = argparse.ArgumentParser(description="Prewarm the recommendation cache")
    parser.add_argument("--top", type=int, default=50)
    parser.add_argument("--limit", type=int, default=10)
    parser.add_argument("--events", default="data/fake_events.csv")
    parser.add_argument("--catalog", default="data/fake_catalog.csv")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()

    setup_logging(args.log_level)
    start = time.time()
    counts = asyncio.run(run(args))
    print(
        f"Prewarm complete: {counts['warmed']} warmed, {counts['failed']} failed "
        f"in {time.time() - start:.2f}s"
    )


if __name__ == "__main__":
    main()
