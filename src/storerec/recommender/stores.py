"""Collaborator interfaces and in-memory implementations.

The engine reads events and catalog records and reads/writes cached
recommendation sets through these interfaces. Production deployments plug in
document-store backed implementations; the in-memory versions back the tests,
the CLI scripts and the demo service.
"""

import logging
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from storerec.recommender.models import Event, EventType, Product, RecommendationSet

# Configure module logger
logger = logging.getLogger(__name__)


class EventStore(ABC):
    """Read access to the append-only event log."""

    @abstractmethod
    async def find_events(
        self,
        user_id: Optional[str] = None,
        user_ids: Optional[Iterable[str]] = None,
        product_id: Optional[str] = None,
        exclude_product_id: Optional[str] = None,
        event_types: Optional[Iterable[EventType]] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        with_product: bool = False,
    ) -> List[Event]:
        """Return matching events, newest first."""

    @abstractmethod
    async def distinct_users(self, product_id: str) -> List[str]:
        """Return the users who ever interacted with a product."""

    async def append(self, event: Event) -> None:
        raise NotImplementedError(f"{type(self).__name__} is read-only")

    async def count_events(
        self,
        user_id: Optional[str] = None,
        product_id: Optional[str] = None,
        event_type: Optional[EventType] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> Dict[str, int]:
        """Count matching events per event type.

        Types without matching events are left out. Backends with a native
        aggregation should override this.
        """
        events = await self.find_events(
            user_id=user_id,
            product_id=product_id,
            event_types=[event_type] if event_type is not None else None,
            since=since,
            until=until,
        )
        counts = Counter(event.event_type.value for event in events)
        return dict(sorted(counts.items()))


class Catalog(ABC):
    """Read access to catalog products."""

    @abstractmethod
    async def get_product(self, product_id: str) -> Optional[Product]:
        """Return one product or None."""

    @abstractmethod
    async def get_products(self, product_ids: Iterable[str]) -> Dict[str, Product]:
        """Return the known products among ``product_ids`` keyed by id."""

    @abstractmethod
    async def list_products(
        self, categories: Optional[Sequence[str]] = None
    ) -> List[Product]:
        """Return all products, optionally restricted to categories."""


class CacheStore(ABC):
    """Key-value store for recommendation sets with upsert-on-write."""

    @abstractmethod
    async def get(self, key: str) -> Optional[RecommendationSet]:
        """Return the stored set for ``key`` or None."""

    @abstractmethod
    async def put(self, key: str, record: RecommendationSet) -> None:
        """Store ``record`` under ``key``, replacing any previous set."""


class InMemoryEventStore(EventStore):
    """Event log held in a Python list."""

    def __init__(self, events: Optional[Iterable[Event]] = None):
        self._events: List[Event] = list(events or [])

    def __len__(self) -> int:
        return len(self._events)

    async def append(self, event: Event) -> None:
        self._events.append(event)

    async def find_events(
        self,
        user_id: Optional[str] = None,
        user_ids: Optional[Iterable[str]] = None,
        product_id: Optional[str] = None,
        exclude_product_id: Optional[str] = None,
        event_types: Optional[Iterable[EventType]] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        with_product: bool = False,
    ) -> List[Event]:
        user_set = set(user_ids) if user_ids is not None else None
        type_set = set(event_types) if event_types is not None else None

        matches = []
        for event in self._events:
            if user_id is not None and event.user_id != user_id:
                continue
            if user_set is not None and event.user_id not in user_set:
                continue
            if product_id is not None and event.product_id != product_id:
                continue
            if exclude_product_id is not None and event.product_id == exclude_product_id:
                continue
            if with_product and not event.product_id:
                continue
            if type_set is not None and event.event_type not in type_set:
                continue
            if since is not None and event.timestamp < since:
                continue
            if until is not None and event.timestamp > until:
                continue
            matches.append(event)

        matches.sort(key=lambda e: e.timestamp, reverse=True)
        return matches

    async def distinct_users(self, product_id: str) -> List[str]:
        users = {e.user_id for e in self._events if e.product_id == product_id}
        return sorted(users)


class InMemoryCatalog(Catalog):
    """Catalog held in an insertion-ordered dict."""

    def __init__(self, products: Optional[Iterable[Product]] = None):
        self._products: Dict[str, Product] = {p.id: p for p in products or []}

    def __len__(self) -> int:
        return len(self._products)

    def add(self, product: Product) -> None:
        self._products[product.id] = product

    async def get_product(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)

    async def get_products(self, product_ids: Iterable[str]) -> Dict[str, Product]:
        return {
            pid: self._products[pid] for pid in product_ids if pid in self._products
        }

    async def list_products(
        self, categories: Optional[Sequence[str]] = None
    ) -> List[Product]:
        if not categories:
            return list(self._products.values())
        wanted = set(categories)
        return [p for p in self._products.values() if p.category in wanted]


class InMemoryCacheStore(CacheStore):
    """Dict-backed cache store.

    Expired entries are left in place; liveness is decided by the cache layer.
    """

    def __init__(self):
        self._records: Dict[str, RecommendationSet] = {}
        self.writes = 0

    def __len__(self) -> int:
        return len(self._records)

    async def get(self, key: str) -> Optional[RecommendationSet]:
        return self._records.get(key)

    async def put(self, key: str, record: RecommendationSet) -> None:
        self._records[key] = record
        self.writes += 1
        logger.debug("Stored recommendation set", extra={"cache_key": key})
