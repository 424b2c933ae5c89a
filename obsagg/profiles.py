"""
Field profiles describing how each observation type is merged and scored.

A profile fixes, per observation type:
- the mergeable fields, each paired with its resolution strategy
  (numeric fields are averaged by confidence, categorical fields take the
  highest-confidence value)
- the required and important fields used for completeness scoring

Fields outside ``merge_fields`` are never merged; they are carried over from the
first (structural base) observation.
"""
from dataclasses import dataclass
from typing import Tuple

from .models import ResolutionMethod


@dataclass(frozen=True)
class MergeField:
    """A mergeable field and the strategy used when sources disagree."""
    name: str
    strategy: ResolutionMethod


@dataclass(frozen=True)
class FieldProfile:
    """Merge and quality rules for one canonical observation type."""
    name: str
    merge_fields: Tuple[MergeField, ...]
    required_fields: Tuple[str, ...]
    important_fields: Tuple[str, ...]
    required_weight: int = 2
    important_weight: int = 1


def _numeric(name: str) -> MergeField:
    return MergeField(name, ResolutionMethod.AVERAGE)


def _categorical(name: str) -> MergeField:
    return MergeField(name, ResolutionMethod.HIGHEST_CONFIDENCE)


WEATHER_PROFILE = FieldProfile(
    name="weather",
    merge_fields=(
        _numeric("temperature"),
        _numeric("humidity"),
        _numeric("wind_speed"),
        _numeric("wind_direction"),
        _numeric("pressure"),
        _numeric("visibility"),
        _categorical("weather_condition"),
        _numeric("precipitation"),
    ),
    required_fields=(
        "airport_iata_code",
        "observation_timestamp_utc",
        "temperature",
        "weather_condition",
    ),
    important_fields=(
        "humidity",
        "wind_speed",
        "precipitation",
    ),
)

FLIGHT_PROFILE = FieldProfile(
    name="flight",
    merge_fields=(
        _categorical("flight_status"),
        _categorical("actual_departure_timestamp_utc"),
        _categorical("actual_arrival_timestamp_utc"),
        _numeric("departure_delay_minutes"),
        _numeric("arrival_delay_minutes"),
        _categorical("cancelled_at"),
        _categorical("diverted_to"),
    ),
    required_fields=(
        "flight_number",
        "origin_airport_iata_code",
        "destination_airport_iata_code",
        "scheduled_departure_timestamp_utc",
    ),
    important_fields=(
        "flight_status",
        "actual_departure_timestamp_utc",
        "actual_arrival_timestamp_utc",
        "airline_icao_code",
    ),
)
