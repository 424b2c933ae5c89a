"""
Runtime configuration for aggregators and source routers.

Settings come from keyword arguments or environment variables. Defaults match
the weather aggregation policy; the flight policy is exposed separately.
"""
import logging
import os
from dataclasses import dataclass, replace
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: int = logging.INFO) -> None:
    """Configure the root logger with the platform format (no-op if already configured)."""
    logging.basicConfig(level=level, format=LOG_FORMAT)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class AggregatorSettings:
    """Aggregation policy knobs.

    Attributes:
        max_sources: Candidates queried per request after routing
        source_timeout_sec: Per-source fetch timeout
        cache_max_age_sec: Max age of a cached observation before it is evicted on read
        health_check_interval_sec: Router re-checks source availability after this long
        health_check_timeout_sec: Timeout around each availability probe
        redis_url: Redis URL for the shared cache store, in-memory cache when None
        cache_key_prefix: Prefix for keys written by ``RedisCacheStore``
    """
    max_sources: int = 2
    source_timeout_sec: float = 20.0
    cache_max_age_sec: float = 30 * 60
    health_check_interval_sec: float = 10 * 60
    health_check_timeout_sec: float = 5.0
    redis_url: Optional[str] = None
    cache_key_prefix: str = "obsagg"

    def __post_init__(self):
        if self.max_sources < 1:
            raise ValueError("max_sources must be at least 1")
        if self.source_timeout_sec <= 0:
            raise ValueError("source_timeout_sec must be positive")
        if self.cache_max_age_sec < 0:
            raise ValueError("cache_max_age_sec must not be negative")
        if self.health_check_interval_sec < 0:
            raise ValueError("health_check_interval_sec must not be negative")
        if self.health_check_timeout_sec <= 0:
            raise ValueError("health_check_timeout_sec must be positive")

    @classmethod
    def from_env(cls, base: Optional["AggregatorSettings"] = None) -> "AggregatorSettings":
        """Load settings from environment variables, falling back to ``base``."""
        base = base or cls()
        return cls(
            max_sources=_env_int("AGGREGATOR_MAX_SOURCES", base.max_sources),
            source_timeout_sec=_env_float("AGGREGATOR_SOURCE_TIMEOUT_SEC", base.source_timeout_sec),
            cache_max_age_sec=_env_float("AGGREGATOR_CACHE_MAX_AGE_SEC", base.cache_max_age_sec),
            health_check_interval_sec=_env_float(
                "ROUTER_HEALTH_CHECK_INTERVAL_SEC", base.health_check_interval_sec
            ),
            health_check_timeout_sec=_env_float(
                "ROUTER_HEALTH_CHECK_TIMEOUT_SEC", base.health_check_timeout_sec
            ),
            redis_url=os.getenv("REDIS_URL", base.redis_url),
            cache_key_prefix=os.getenv("CACHE_KEY_PREFIX", base.cache_key_prefix),
        )

    def with_overrides(self, **changes) -> "AggregatorSettings":
        return replace(self, **changes)


WEATHER_SETTINGS = AggregatorSettings()

FLIGHT_SETTINGS = AggregatorSettings(
    max_sources=3,
    source_timeout_sec=15.0,
    cache_max_age_sec=5 * 60,
    health_check_interval_sec=5 * 60,
)
