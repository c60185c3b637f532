"""Generate a fake catalog and interaction log for development.

Writes two CSV files that ``storerec.recommender.utils`` can load: a product
catalog and a stream of view, cart, purchase and search events.

Example:
    Run the script directly to generate default data:
        $ python scripts/generate_fake_data.py

    Then point the service at it:
        $ STOREREC_EVENTS_CSV=data/fake_events.csv \\
          STOREREC_CATALOG_CSV=data/fake_catalog.csv \\
          uvicorn storerec.api.main:app
"""

import argparse
import random
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pandas as pd

DEFAULT_NUM_USERS = 50
DEFAULT_NUM_PRODUCTS = 100
DEFAULT_NUM_EVENTS = 2000
DEFAULT_DAYS_BACK = 30
SECONDS_PER_DAY = 86400

CATEGORIES = ["electronics", "books", "kitchen", "garden", "toys", "sports"]
BRANDS = ["acme", "globex", "initech", "umbrella", "hooli"]
TAGS = ["sale", "new", "eco", "premium", "gift", "bestseller", "compact", "wireless"]
SEARCH_TERMS = ["headphones", "cookbook", "garden hose", "yoga mat", "lego"]

# Relative frequency of each event type
EVENT_MIX = {
    "view": 0.70,
    "add_to_cart": 0.18,
    "purchase": 0.08,
    "search": 0.04,
}


def generate_fake_catalog(
    num_products: int = DEFAULT_NUM_PRODUCTS,
    now: Optional[datetime] = None,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """Generate a synthetic product catalog.

    Args:
        num_products: Number of products. Must be positive.
        now: Reference time for ``created_at``; defaults to the current time.
        seed: Optional random seed for reproducible output.

    Returns:
        DataFrame with columns id, name, price, category, brand, tags,
        images, stock, average_rating and created_at. Tags and images are
        ``|``-separated.

    Raises:
        ValueError: If ``num_products`` is not positive.
    """
    if num_products <= 0:
        raise ValueError("num_products must be positive")

    rng = random.Random(seed)
    now = now or datetime.now(timezone.utc)

    rows = []
    for index in range(1, num_products + 1):
        product_id = f"p{index}"
        category = rng.choice(CATEGORIES)
        rows.append(
            {
                "id": product_id,
                "name": f"{category.title()} item {index}",
                "price": round(rng.uniform(5, 500), 2),
                "category": category,
                "brand": rng.choice(BRANDS),
                "tags": "|".join(rng.sample(TAGS, k=rng.randint(0, 3))),
                "images": f"https://img.example.com/{product_id}.jpg",
                "stock": rng.randint(0, 100),
                "average_rating": round(rng.uniform(1, 5), 1),
                "created_at": (now - timedelta(days=rng.randint(0, 365))).isoformat(),
            }
        )
    return pd.DataFrame(rows)


def generate_fake_events(
    catalog: pd.DataFrame,
    num_users: int = DEFAULT_NUM_USERS,
    num_events: int = DEFAULT_NUM_EVENTS,
    days_back: int = DEFAULT_DAYS_BACK,
    now: Optional[datetime] = None,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """Generate synthetic interaction events over a catalog.

    Each user prefers two categories and draws most of their product events
    from them, so co-occurrence and attribute similarity have signal.

    Args:
        catalog: Frame produced by ``generate_fake_catalog``.
        num_users: Number of distinct users. Must be positive.
        num_events: Number of events. Must be positive.
        days_back: Events are spread over this many past days.
        now: Reference time; defaults to the current time.
        seed: Optional random seed for reproducible output.

    Returns:
        DataFrame with columns user_id, event_type, product_id, search_query,
        session_id and timestamp, sorted by timestamp.

    Raises:
        ValueError: If a count is not positive or the catalog is empty.
    """
    if num_users <= 0 or num_events <= 0 or days_back <= 0:
        raise ValueError("num_users, num_events and days_back must be positive")
    if catalog.empty:
        raise ValueError("catalog must not be empty")

    rng = random.Random(seed)
    now = now or datetime.now(timezone.utc)

    by_category = catalog.groupby("category")["id"].apply(list).to_dict()
    all_products = catalog["id"].tolist()
    preferences = {
        f"u{user}": rng.sample(sorted(by_category), k=min(2, len(by_category)))
        for user in range(1, num_users + 1)
    }
    event_types = list(EVENT_MIX)
    event_weights = list(EVENT_MIX.values())

    rows = []
    for _ in range(num_events):
        user_id = rng.choice(sorted(preferences))
        event_type = rng.choices(event_types, weights=event_weights)[0]
        timestamp = now - timedelta(
            days=rng.randrange(days_back), seconds=rng.randrange(SECONDS_PER_DAY)
        )

        product_id = None
        search_query = None
        if event_type == "search":
            search_query = rng.choice(SEARCH_TERMS)
        elif rng.random() < 0.8:
            product_id = rng.choice(by_category[rng.choice(preferences[user_id])])
        else:
            product_id = rng.choice(all_products)

        rows.append(
            {
                "user_id": user_id,
                "event_type": event_type,
                "product_id": product_id,
                "search_query": search_query,
                "session_id": f"{user_id}-{timestamp:%Y%m%d}",
                "timestamp": timestamp.isoformat(),
            }
        )

    df = pd.DataFrame(rows)
    return df.sort_values("timestamp").reset_index(drop=True)


def main() -> None:
    """Generate the catalog and events and save them under data/."""
    parser = argparse.ArgumentParser(description="Generate fake StoreRec data")
    parser.add_argument("--users", type=int, default=DEFAULT_NUM_USERS)
    parser.add_argument("--products", type=int, default=DEFAULT_NUM_PRODUCTS)
    parser.add_argument("--events", type=int, default=DEFAULT_NUM_EVENTS)
    parser.add_argument("--days", type=int, default=DEFAULT_DAYS_BACK)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument(
        "--output-dir",
        type=str,
        default=str(Path(__file__).parent.parent / "data"),
        help="Directory for the generated CSV files",
    )
    args = parser.parse_args()

    print(f"Generating {args.products} products and {args.events} events...")
    try:
        catalog = generate_fake_catalog(args.products, seed=args.seed)
        events = generate_fake_events(
            catalog, args.users, args.events, args.days, seed=args.seed
        )
    except ValueError as e:
        print(f"Error generating data: {e}")
        return

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    catalog_path = output_dir / "fake_catalog.csv"
    events_path = output_dir / "fake_events.csv"
    catalog.to_csv(catalog_path, index=False)
    events.to_csv(events_path, index=False)

    print("\nData generated successfully!")
    print(f"Catalog saved to: {catalog_path}")
    print(f"Events saved to: {events_path}")
    print("\nEvent mix:")
    print(events["event_type"].value_counts().to_string())
    print(f"\n  Unique users: {events['user_id'].nunique()}")
    print(f"  Products with events: {events['product_id'].nunique()}")


if __name__ == "__main__":
    main()
