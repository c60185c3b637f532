"""Utility functions for the recommendation engine.

This module provides helpers for turning event records into pandas frames
used by the aggregation steps, and loaders that read event and catalog CSV
files into the in-memory collaborators.
"""

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, List, Optional

import numpy as np
import pandas as pd

from storerec.recommender.models import EVENT_WEIGHTS, Event, Product, utc_now

# Configure module logger
logger = logging.getLogger(__name__)

EVENT_COLUMNS = ["user_id", "event_type", "product_id", "timestamp", "weight"]
EVENT_CSV_COLUMNS = {"user_id", "event_type"}
CATALOG_CSV_COLUMNS = {"id", "name", "price"}
LIST_SEPARATOR = "|"


def window_start(days: int, now: Optional[datetime] = None) -> datetime:
    """Start of a lookback window of ``days`` days ending at ``now``."""
    return (now or utc_now()) - timedelta(days=days)


def events_to_frame(events: Iterable[Event]) -> pd.DataFrame:
    """Convert events to a DataFrame with a weighted score column.

    Args:
        events: Event records.

    Returns:
        DataFrame with columns user_id, event_type (string value),
        product_id, timestamp and weight. Empty input yields an empty frame
        with the same columns.
    """
    rows = [
        {
            "user_id": e.user_id,
            "event_type": e.event_type.value,
            "product_id": e.product_id,
            "timestamp": e.timestamp,
            "weight": EVENT_WEIGHTS.get(e.event_type, 0),
        }
        for e in events
    ]
    if not rows:
        return pd.DataFrame(columns=EVENT_COLUMNS)
    return pd.DataFrame(rows, columns=EVENT_COLUMNS)


def _split_list(value) -> tuple:
    if _optional(value) is None:
        return ()
    return tuple(part.strip() for part in str(value).split(LIST_SEPARATOR) if part.strip())


def _optional(value):
    # Missing CSV cells arrive as NaN or NaT
    if value is None or (np.isscalar(value) and pd.isna(value)) or value is pd.NaT:
        return None
    return value


def load_events_csv(csv_path: str) -> List[Event]:
    """Load events from a CSV file.

    Expected columns: user_id, event_type and optionally product_id,
    search_query, category_id, session_id and timestamp (ISO 8601).

    Args:
        csv_path: Path to the CSV file.

    Returns:
        List of Event records.

    Raises:
        FileNotFoundError: If the CSV file does not exist.
        ValueError: If required columns are missing.
    """
    csv_file = Path(csv_path)
    if not csv_file.exists():
        raise FileNotFoundError(f"CSV file not found: {csv_path}")

    logger.info(f"Loading events from {csv_path}")
    df = pd.read_csv(csv_path, dtype={"user_id": str, "product_id": str})

    if not EVENT_CSV_COLUMNS.issubset(df.columns):
        missing = EVENT_CSV_COLUMNS - set(df.columns)
        raise ValueError(f"CSV missing required columns: {missing}")

    if "timestamp" in df.columns:
        df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)

    events = []
    for row in df.to_dict(orient="records"):
        timestamp = _optional(row.get("timestamp"))
        events.append(
            Event(
                user_id=str(row["user_id"]),
                event_type=row["event_type"],
                product_id=_optional(row.get("product_id")),
                search_query=_optional(row.get("search_query")),
                category_id=_optional(row.get("category_id")),
                session_id=_optional(row.get("session_id")),
                timestamp=timestamp.to_pydatetime() if timestamp is not None else utc_now(),
            )
        )

    logger.info(f"Loaded {len(events)} events")
    return events


def load_catalog_csv(csv_path: str) -> List[Product]:
    """Load catalog products from a CSV file.

    Expected columns: id, name, price and optionally category, brand, tags
    and images (``|``-separated), stock, average_rating and created_at.

    Args:
        csv_path: Path to the CSV file.

    Returns:
        List of Product records in file order.

    Raises:
        FileNotFoundError: If the CSV file does not exist.
        ValueError: If required columns are missing.
    """
    csv_file = Path(csv_path)
    if not csv_file.exists():
        raise FileNotFoundError(f"CSV file not found: {csv_path}")

    logger.info(f"Loading catalog from {csv_path}")
    df = pd.read_csv(
        csv_path, dtype={"id": str, "category": str, "brand": str, "tags": str}
    )

    if not CATALOG_CSV_COLUMNS.issubset(df.columns):
        missing = CATALOG_CSV_COLUMNS - set(df.columns)
        raise ValueError(f"CSV missing required columns: {missing}")

    if "created_at" in df.columns:
        df["created_at"] = pd.to_datetime(df["created_at"], utc=True)

    products = []
    for row in df.to_dict(orient="records"):
        created_at = _optional(row.get("created_at"))
        rating = _optional(row.get("average_rating"))
        stock = _optional(row.get("stock"))
        products.append(
            Product(
                id=str(row["id"]),
                name=str(row["name"]),
                price=float(row["price"]),
                category=_optional(row.get("category")),
                brand=_optional(row.get("brand")),
                tags=_split_list(row.get("tags")),
                images=_split_list(row.get("images")),
                stock=int(stock) if stock is not None else 0,
                average_rating=float(rating) if rating is not None else None,
                created_at=created_at.to_pydatetime() if created_at is not None else None,
            )
        )

    logger.info(f"Loaded {len(products)} products")
    return products
