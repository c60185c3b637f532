"""Metrics service for tracking recommendation performance.

Tracks calls per entry point, errors, cache hits and misses, cache write
failures, latency and when each recommendation type was last computed. Instances are created by the application and handed to
the engine; nothing here is process-global.
"""

import threading
from datetime import datetime, timezone
from typing import Dict, Optional


class MetricsService:
    """Thread-safe counters and latency tracking for recommendation calls."""

    def __init__(self):
        """Initialize metrics counters."""
        self._lock = threading.Lock()
        self.reset()

    def record_call(
        self,
        endpoint: str,
        latency_ms: float,
        success: bool = True,
        cache_hit: Optional[bool] = None,
    ) -> None:
        """Record a recommendation call.

        Args:
            endpoint: Entry point name, e.g. "personal" or "similar"
            latency_ms: Latency in milliseconds
            success: Whether the call returned a result
            cache_hit: True for hits, False for misses, None when unknown
        """
        with self._lock:
            self._call_count += 1
            self._calls_by_endpoint[endpoint] = self._calls_by_endpoint.get(endpoint, 0) + 1
            self._total_latency_ms += latency_ms

            if latency_ms < self._min_latency_ms:
                self._min_latency_ms = latency_ms

            if latency_ms > self._max_latency_ms:
                self._max_latency_ms = latency_ms

            if not success:
                self._error_count += 1

            if cache_hit is True:
                self._cache_hits += 1
            elif cache_hit is False:
                self._cache_misses += 1

    def record_cache_write_failure(self) -> None:
        with self._lock:
            self._cache_write_failures += 1

    def record_computation(
        self, recommendation_type: str, computed_at: Optional[datetime] = None
    ) -> None:
        """Remember when a recommendation type was last freshly computed."""
        computed_at = computed_at or datetime.now(timezone.utc)
        with self._lock:
            self._last_computed[recommendation_type] = computed_at

    def get_metrics(self) -> Dict:
        """Get current metrics.

        Returns:
            Dictionary with metrics including:
            - call_count: Total number of recommendation calls
            - calls_by_endpoint: Calls per entry point
            - error_count: Calls that raised
            - cache_hits / cache_misses / cache_hit_rate
            - cache_write_failures: Writes dropped at the cache boundary
            - average_latency_ms / min_latency_ms / max_latency_ms
            - last_computed: ISO timestamp of the latest computation per type
        """
        with self._lock:
            avg_latency = (
                self._total_latency_ms / self._call_count
                if self._call_count > 0
                else 0.0
            )
            lookups = self._cache_hits + self._cache_misses

            return {
                "call_count": self._call_count,
                "calls_by_endpoint": dict(self._calls_by_endpoint),
                "error_count": self._error_count,
                "cache_hits": self._cache_hits,
                "cache_misses": self._cache_misses,
                "cache_hit_rate": round(self._cache_hits / lookups, 4) if lookups else 0.0,
                "cache_write_failures": self._cache_write_failures,
                "average_latency_ms": round(avg_latency, 2),
                "min_latency_ms": round(self._min_latency_ms, 2) if self._min_latency_ms != float('inf') else 0.0,
                "max_latency_ms": round(self._max_latency_ms, 2),
                "last_computed": {
                    name: computed_at.isoformat()
                    for name, computed_at in sorted(self._last_computed.items())
                },
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._call_count = 0
            self._calls_by_endpoint: Dict[str, int] = {}
            self._error_count = 0
            self._cache_hits = 0
            self._cache_misses = 0
            self._cache_write_failures = 0
            self._total_latency_ms = 0.0
            self._min_latency_ms = float('inf')
            self._max_latency_ms = 0.0
            self._last_computed: Dict[str, datetime] = {}
