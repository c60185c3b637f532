"""Recommendation cache.

TTL-keyed storage of computed rankings on top of a ``CacheStore``. Reads that
fail are treated as misses and writes that fail are logged and dropped, so
cache trouble never changes what a caller receives.

Concurrent misses on the same key all compute and the last write wins. The
optional ``SingleFlight`` helper lets concurrent callers share one in-flight
computation instead.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from storerec.recommender.models import (
    RecommendationItem,
    RecommendationSet,
    RecommendationType,
    utc_now,
)
from storerec.recommender.stores import CacheStore

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=24)
NO_SOURCE = "-"


def cache_key(
    subject_key: str,
    recommendation_type: RecommendationType,
    source_product_id: Optional[str] = None,
) -> str:
    """Composite key of subject, recommendation type and source product."""
    source = source_product_id or NO_SOURCE
    return f"{subject_key}|{RecommendationType(recommendation_type).value}|{source}"


class RecommendationCache:
    """Read-through cache of ranked recommendation lists."""

    def __init__(
        self,
        store: CacheStore,
        default_ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.default_ttl = default_ttl
        self.clock = clock

    async def get(
        self,
        subject_key: str,
        recommendation_type: RecommendationType,
        source_product_id: Optional[str] = None,
    ) -> Optional[List[RecommendationItem]]:
        """Return the live cached items for a key, or None on a miss.

        Expired entries and store failures are both misses.
        """
        key = cache_key(subject_key, recommendation_type, source_product_id)
        try:
            record = await self.store.get(key)
        except Exception as e:
            logger.error(
                "Cache read failed, treating as miss",
                extra={"cache_key": key, "error": str(e), "error_type": type(e).__name__},
            )
            return None

        if record is None:
            logger.debug("Cache miss", extra={"cache_key": key})
            return None
        if not record.is_live(self.clock()):
            logger.debug(
                "Cache entry expired",
                extra={"cache_key": key, "expires_at": record.expires_at.isoformat()},
            )
            return None

        logger.debug("Cache hit", extra={"cache_key": key, "num_items": len(record.items)})
        return list(record.items)

    async def set(
        self,
        subject_key: str,
        recommendation_type: RecommendationType,
        items: Sequence[RecommendationItem],
        source_product_id: Optional[str] = None,
        ttl: Optional[timedelta] = None,
    ) -> bool:
        """Upsert the ranked items for a key.

        Returns:
            True when the write succeeded. Failures are logged and reported
            as False, never raised.
        """
        key = cache_key(subject_key, recommendation_type, source_product_id)
        now = self.clock()
        record = RecommendationSet(
            subject_key=subject_key,
            recommendation_type=RecommendationType(recommendation_type),
            items=tuple(items),
            created_at=now,
            expires_at=now + (ttl if ttl is not None else self.default_ttl),
            source_product_id=source_product_id,
        )
        try:
            await self.store.put(key, record)
        except Exception as e:
            logger.error(
                "Failed to cache recommendations",
                extra={"cache_key": key, "error": str(e), "error_type": type(e).__name__},
            )
            return False
        return True


class SingleFlight:
    """Collapse concurrent computations for the same key into one.

    The first caller for a key runs the computation; callers arriving while
    it is in flight await the same result or exception.
    """

    def __init__(self):
        self._inflight: Dict[str, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._inflight)

    async def run(self, key: str, fn: Callable[[], Awaitable]):
        existing = self._inflight.get(key)
        if existing is not None:
            logger.debug("Joining in-flight computation", extra={"cache_key": key})
            return await asyncio.shield(existing)

        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            result = await fn()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unobserved failure does not warn
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._inflight.pop(key, None)
