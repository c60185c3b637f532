"""CLI script for getting product recommendations.

Loads events and a catalog from CSV, runs one engine entry point and prints
the ranked products. Useful for testing and evaluation.
"""

import argparse
import asyncio
import logging
import sys
from typing import List

from storerec.config import RecommendationConfig
from storerec.exceptions import StoreRecException
from storerec.recommender.engine import RecommendationEngine, build_engine
from storerec.recommender.models import RecommendationItem, RecommendationOptions, ScoreWeights
from storerec.recommender.stores import InMemoryCacheStore, InMemoryCatalog, InMemoryEventStore
from storerec.recommender.utils import load_catalog_csv, load_events_csv

# Setup logging
logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

USER_MODES = ("personal", "content", "hybrid")
PRODUCT_MODES = ("similar", "similar-content", "similar-hybrid")
OTHER_MODES = ("popular", "category")


async def get_recommendations(
    engine: RecommendationEngine, mode: str, subject: str, args: argparse.Namespace
) -> List[RecommendationItem]:
    """Dispatch to the engine entry point selected by ``mode``."""
    weights = None
    if args.collaborative_weight is not None or args.content_weight is not None:
        weights = ScoreWeights(
            collaborative=args.collaborative_weight
            if args.collaborative_weight is not None
            else engine.config.collaborative_weight,
            content_based=args.content_weight
            if args.content_weight is not None
            else engine.config.content_weight,
        )

    if mode in USER_MODES:
        options = RecommendationOptions(
            limit=args.limit,
            exclude_viewed=not args.include_viewed,
            exclude_in_cart=not args.include_in_cart,
            exclude_purchased=not args.include_purchased,
            categories=args.category or (),
            weights=weights,
            max_age_days=engine.config.max_age_days,
        )
        if mode == "personal":
            return await engine.personal_recommendations(subject, options)
        if mode == "content":
            return await engine.content_based_recommendations(subject, options)
        return await engine.hybrid_recommendations(subject, options)

    if mode == "similar":
        return await engine.similar_products(subject, args.limit)
    if mode == "similar-content":
        return await engine.similar_content_products(subject, args.limit)
    if mode == "similar-hybrid":
        return await engine.similar_hybrid_products(subject, args.limit, weights)
    if mode == "popular":
        return await engine.popular_products(args.limit, args.days)
    return await engine.category_recommendations(args.category or [], args.limit)


def print_recommendations(
    items: List[RecommendationItem], mode: str, subject: str, explain: bool
) -> None:
    label = f" for {subject}" if subject else ""
    print(f"\nRecommendations{label} (mode: {mode}):")
    if not items:
        print("  (none)")
    for rank, item in enumerate(items, start=1):
        name = item.product.name if item.product else "?"
        print(f"  {rank:2d}. {item.product_id:<12} {item.score:8.2f}  {name}")
        if explain:
            print(f"      reason: {item.reason}")
            if item.stats:
                print(f"      stats: {item.stats}")
            if item.source_scores:
                print(f"      source scores: {item.source_scores}")
    print()


def main() -> None:
    """Main CLI function."""
    parser = argparse.ArgumentParser(
        description="Get product recommendations from CSV data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/predict_cli.py personal u42
  python scripts/predict_cli.py hybrid u42 --limit 5 --explain
  python scripts/predict_cli.py similar-content p7
  python scripts/predict_cli.py popular --days 7
  python scripts/predict_cli.py category --category books --category toys
        """,
    )
    parser.add_argument("mode", choices=USER_MODES + PRODUCT_MODES + OTHER_MODES)
    parser.add_argument(
        "subject", nargs="?", default="", help="User id or product id, depending on mode"
    )
    parser.add_argument("--events", default="data/fake_events.csv", help="Events CSV")
    parser.add_argument("--catalog", default="data/fake_catalog.csv", help="Catalog CSV")
    parser.add_argument("--limit", type=int, default=None, help="Number of products")
    parser.add_argument("--days", type=int, default=None, help="Popularity window")
    parser.add_argument(
        "--category", action="append", help="Category filter (repeatable)"
    )
    parser.add_argument("--collaborative-weight", type=float, default=None)
    parser.add_argument("--content-weight", type=float, default=None)
    parser.add_argument("--include-viewed", action="store_true")
    parser.add_argument("--include-in-cart", action="store_true")
    parser.add_argument("--include-purchased", action="store_true")
    parser.add_argument(
        "--explain", action="store_true", help="Show reasons and score breakdown"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.INFO)

    needs_subject = args.mode in USER_MODES + PRODUCT_MODES
    if needs_subject and not args.subject:
        parser.error(f"mode '{args.mode}' requires a subject id")

    config = RecommendationConfig.from_env()
    if args.limit is None:
        args.limit = config.similar_limit if args.mode in PRODUCT_MODES else config.default_limit

    try:
        engine = build_engine(
            InMemoryEventStore(load_events_csv(args.events)),
            InMemoryCatalog(load_catalog_csv(args.catalog)),
            InMemoryCacheStore(),
            config,
        )
        items = asyncio.run(get_recommendations(engine, args.mode, args.subject, args))
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except StoreRecException as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)

    print_recommendations(items, args.mode, args.subject, args.explain)


if __name__ == "__main__":
    main()
