"""Configuration for the recommendation engine.

All tunables live on a single dataclass so services receive their settings
explicitly. Values can be overridden from ``STOREREC_*`` environment variables.
"""

import logging
import os
from dataclasses import dataclass, fields
from datetime import timedelta
from typing import Optional

# Configure module logger
logger = logging.getLogger(__name__)

ENV_PREFIX = "STOREREC_"


@dataclass
class RecommendationConfig:
    """Engine configuration.

    Attributes:
        default_limit: Result size for user-based entry points.
        similar_limit: Result size for item-to-item entry points.
        max_age_days: Window used when building interaction profiles.
        popular_days: Lookback window of the popularity ranking.
        min_interactions: Distinct products below which personal results are
            topped up with popular products.
        top_k_affinity: Affinity products used as collaborative seeds.
        recent_view_seeds: Recently viewed products used as content seeds.
        recent_view_scan: Recently viewed products read from the event store.
        content_seed_limit: Minimum similar products fetched per content seed.
        collaborative_seed_limit: Minimum similar products fetched per
            collaborative seed.
        hybrid_user_pool_cap: Upper bound on each source pool for user hybrids.
        hybrid_item_pool_cap: Upper bound on each source pool for item hybrids.
        collaborative_weight: Default hybrid weight of the collaborative list.
        content_weight: Default hybrid weight of the content list.
        user_ttl_hours: TTL of user-based sets.
        item_ttl_hours: TTL of item-to-item collaborative and hybrid sets.
        content_ttl_hours: TTL of content-based sets.
        popular_ttl_hours: TTL of popularity and category sets.
        new_product_days: Age under which a product gets the recency boost.
        single_flight: Share one in-flight computation per cache key.
        log_level: Root logging level for the service.
        events_csv: Optional CSV of events loaded by the demo service.
        catalog_csv: Optional CSV of products loaded by the demo service.
    """

    default_limit: int = 10
    similar_limit: int = 5
    max_age_days: int = 30
    popular_days: int = 30
    min_interactions: int = 5
    top_k_affinity: int = 5
    recent_view_seeds: int = 3
    recent_view_scan: int = 10
    content_seed_limit: int = 5
    collaborative_seed_limit: int = 3
    hybrid_user_pool_cap: int = 20
    hybrid_item_pool_cap: int = 10
    collaborative_weight: float = 0.6
    content_weight: float = 0.4
    user_ttl_hours: float = 24.0
    item_ttl_hours: float = 24.0
    content_ttl_hours: float = 24.0
    popular_ttl_hours: float = 1.0
    new_product_days: int = 30
    single_flight: bool = False
    log_level: str = "INFO"
    events_csv: Optional[str] = None
    catalog_csv: Optional[str] = None

    @property
    def user_ttl(self) -> timedelta:
        return timedelta(hours=self.user_ttl_hours)

    @property
    def item_ttl(self) -> timedelta:
        return timedelta(hours=self.item_ttl_hours)

    @property
    def content_ttl(self) -> timedelta:
        return timedelta(hours=self.content_ttl_hours)

    @property
    def popular_ttl(self) -> timedelta:
        return timedelta(hours=self.popular_ttl_hours)

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> "RecommendationConfig":
        """Build a config from environment variables.

        Each field maps to ``<prefix><FIELD_NAME>``, e.g.
        ``STOREREC_DEFAULT_LIMIT=20``. Unset variables keep their defaults.

        Args:
            prefix: Environment variable prefix.

        Returns:
            RecommendationConfig with overrides applied.

        Raises:
            ValueError: If a variable cannot be converted to the field type.
        """
        overrides = {}
        for field in fields(cls):
            raw = os.getenv(f"{prefix}{field.name.upper()}")
            if raw is None:
                continue
            default = field.default
            if isinstance(default, bool):
                value = raw.strip().lower() in {"1", "true", "yes", "on"}
            elif isinstance(default, int):
                value = int(raw)
            elif isinstance(default, float):
                value = float(raw)
            else:
                value = raw
            overrides[field.name] = value

        if overrides:
            logger.info(
                "Loaded configuration overrides from environment",
                extra={"overrides": sorted(overrides)},
            )
        return cls(**overrides)
