"""
Observation Aggregator

Overview
--------
Multi-source aggregation engine for weather and flight observations. For one
logical request it queries several unreliable providers concurrently under
per-source timeouts, tracks provider health to steer future routing, merges
disagreeing answers field by field using source confidence, scores the result
and caches it with staleness rules.

Exports
-------
- ``WeatherAggregator`` / ``FlightAggregator``: main entry points
- ``PolicyDataRouter``: flight plus weather collection for a policy
- ``SourceRouter``, ``ConflictResolver``: building blocks
- ``SourceClient`` / ``HttpSourceClient``: provider client SDK
- Cache stores, Pydantic models and the exception hierarchy rooted at
  ``AggregationError``
"""
from .aggregator import FlightAggregator, ObservationAggregator, WeatherAggregator
from .cache import CacheStore, InMemoryCacheStore, RedisCacheStore, generate_cache_key
from .config import AggregatorSettings, configure_logging
from .conflict_resolver import ConflictResolver
from .exceptions import (
    AggregationError,
    AllSourcesFailed,
    CacheWriteFailure,
    MergeContractViolation,
    NoSourcesAvailable,
    PolicyDataError,
    SourceClientError,
    SourceTimeout,
)
from .metrics import AggregationMetrics
from .models import (
    AggregationResult,
    CanonicalFlightData,
    CanonicalObservation,
    CanonicalWeatherObservation,
    ConflictField,
    Coordinates,
    FlightIdentifier,
    FlightStatus,
    ResolutionMethod,
    SourceContribution,
    WeatherCondition,
    WeatherIdentifier,
)
from .policy_data import PolicyDataRequest, PolicyDataResponse, PolicyDataRouter
from .profiles import FLIGHT_PROFILE, WEATHER_PROFILE, FieldProfile, MergeField
from .source_router import SourceRouter
from .sources import HttpSourceClient, OpenWeatherMapClient, SourceClient

# Package semantic version. Keep in sync with packaging config in setup.py
__version__ = "1.0.0"
# Public API surface intended for ``from obsagg import *`` consumers.
__all__ = [
    "WeatherAggregator",
    "FlightAggregator",
    "ObservationAggregator",
    "PolicyDataRouter",
    "PolicyDataRequest",
    "PolicyDataResponse",
    "SourceRouter",
    "ConflictResolver",
    "SourceClient",
    "HttpSourceClient",
    "OpenWeatherMapClient",
    "CacheStore",
    "InMemoryCacheStore",
    "RedisCacheStore",
    "generate_cache_key",
    "AggregatorSettings",
    "configure_logging",
    "AggregationMetrics",
    "FieldProfile",
    "MergeField",
    "WEATHER_PROFILE",
    "FLIGHT_PROFILE",
    "AggregationResult",
    "CanonicalObservation",
    "CanonicalWeatherObservation",
    "CanonicalFlightData",
    "ConflictField",
    "Coordinates",
    "FlightIdentifier",
    "FlightStatus",
    "ResolutionMethod",
    "SourceContribution",
    "WeatherCondition",
    "WeatherIdentifier",
    "AggregationError",
    "NoSourcesAvailable",
    "AllSourcesFailed",
    "SourceTimeout",
    "CacheWriteFailure",
    "MergeContractViolation",
    "PolicyDataError",
    "SourceClientError",
]
