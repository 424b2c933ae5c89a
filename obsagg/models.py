"""
Data models for the observation aggregator.

Canonical observations are Pydantic models so that provider payloads and cached
JSON are validated on the way in. Records that only live for the duration of a
single aggregation call (conflicts, resolution and aggregation results) are
plain dataclasses.
"""
from dataclasses import dataclass, field
from datetime import date as date_type, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

# Static per-provider reliability used to weight field merges.
SOURCE_RELIABILITY_SCORES: Dict[str, float] = {
    "flightaware": 0.95,
    "aviationstack": 0.85,
    "opensky": 0.75,
    "weatherapi": 0.90,
    "openweather": 0.80,
}

DEFAULT_SOURCE_CONFIDENCE = 0.5


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ResolutionMethod(str, Enum):
    """How a conflicting field was resolved."""
    AVERAGE = "average"
    HIGHEST_CONFIDENCE = "highest_confidence"


class WeatherCondition(str, Enum):
    """Standardized weather conditions across providers."""
    CLEAR = "CLEAR"
    PARTLY_CLOUDY = "PARTLY_CLOUDY"
    CLOUDY = "CLOUDY"
    OVERCAST = "OVERCAST"
    RAIN = "RAIN"
    HEAVY_RAIN = "HEAVY_RAIN"
    SNOW = "SNOW"
    FOG = "FOG"
    THUNDERSTORM = "THUNDERSTORM"
    UNKNOWN = "UNKNOWN"


class FlightStatus(str, Enum):
    """Standardized flight status across providers."""
    SCHEDULED = "SCHEDULED"
    ACTIVE = "ACTIVE"
    DEPARTED = "DEPARTED"
    LANDED = "LANDED"
    CANCELLED = "CANCELLED"
    DELAYED = "DELAYED"
    DIVERTED = "DIVERTED"
    UNKNOWN = "UNKNOWN"


class SourceContribution(BaseModel):
    """Provenance entry: which source supplied which fields, and how far to trust it."""
    source: str
    fields: List[str] = Field(default_factory=list)
    timestamp: datetime
    confidence: float = Field(ge=0.0, le=1.0)
    source_id: Optional[str] = None
    api_version: Optional[str] = None
    response_time_ms: Optional[int] = None
    cost: Optional[float] = None

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class CanonicalObservation(BaseModel):
    """Base for every merged, typed record of one subject.

    ``data_quality_score`` is always recomputed by the engine; whatever a
    provider puts there is overwritten before the record leaves the resolver.
    """
    source_contributions: List[SourceContribution] = Field(default_factory=list)
    data_quality_score: float = Field(default=0.0, ge=0.0, le=1.0)
    last_updated_utc: datetime = Field(default_factory=utcnow)

    @field_validator("last_updated_utc")
    @classmethod
    def _last_updated_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def primary_source(self) -> str:
        """Name of the first contributing source, ``"unknown"`` if there is none."""
        if self.source_contributions:
            return self.source_contributions[0].source
        return "unknown"


class CanonicalWeatherObservation(CanonicalObservation):
    """Weather observation at an airport or coordinate on a given date.

    Units: temperature and dew point in Celsius, wind in km/h, visibility in
    kilometres, pressure in hPa, precipitation in mm.
    """
    airport_iata_code: Optional[str] = None
    observation_timestamp_utc: Optional[datetime] = None
    temperature: Optional[float] = None
    temperature_fahrenheit: Optional[float] = None
    humidity: Optional[float] = None
    wind_speed: Optional[float] = None
    wind_direction: Optional[float] = None
    wind_gust: Optional[float] = None
    visibility: Optional[float] = None
    pressure: Optional[float] = None
    dew_point: Optional[float] = None
    weather_condition: Optional[WeatherCondition] = None
    cloud_cover: Optional[str] = None
    precipitation: Optional[float] = None
    precipitation_type: Optional[str] = None
    uv_index: Optional[float] = None


class CanonicalFlightData(CanonicalObservation):
    """Flight status record for one flight on one date."""
    flight_number: str
    airline_icao_code: Optional[str] = None
    airline_iata_code: Optional[str] = None
    origin_airport_iata_code: Optional[str] = None
    origin_airport_icao_code: Optional[str] = None
    destination_airport_iata_code: Optional[str] = None
    destination_airport_icao_code: Optional[str] = None
    aircraft_type_icao_code: Optional[str] = None
    scheduled_departure_timestamp_utc: Optional[datetime] = None
    scheduled_arrival_timestamp_utc: Optional[datetime] = None
    actual_departure_timestamp_utc: Optional[datetime] = None
    actual_arrival_timestamp_utc: Optional[datetime] = None
    estimated_departure_timestamp_utc: Optional[datetime] = None
    estimated_arrival_timestamp_utc: Optional[datetime] = None
    flight_status: Optional[FlightStatus] = None
    departure_delay_minutes: Optional[float] = None
    arrival_delay_minutes: Optional[float] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    diverted_to: Optional[str] = None
    diverted_at: Optional[datetime] = None
    gate: Optional[str] = None
    terminal: Optional[str] = None


def _today_iso() -> str:
    return utcnow().date().isoformat()


class Coordinates(BaseModel):
    """WGS84 latitude/longitude pair."""
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)

    def as_key(self) -> str:
        return f"{self.latitude},{self.longitude}"


class WeatherIdentifier(BaseModel):
    """Logical identity of a weather request.

    The airport code is preferred as the subject key because it is stable;
    raw coordinates are only used when no airport is known.
    """
    coordinates: Coordinates
    airport_code: Optional[str] = None
    date: Optional[date_type] = None

    @property
    def subject_key(self) -> str:
        if self.airport_code and self.airport_code.strip():
            return self.airport_code.strip().upper()
        return self.coordinates.as_key()

    @property
    def date_str(self) -> str:
        return self.date.isoformat() if self.date else _today_iso()


class FlightIdentifier(BaseModel):
    """Logical identity of a flight status request."""
    flight_number: str = Field(min_length=1)
    date: Optional[date_type] = None

    @property
    def subject_key(self) -> str:
        return self.flight_number.strip().upper()

    @property
    def date_str(self) -> str:
        return self.date.isoformat() if self.date else _today_iso()


@dataclass
class ConflictValue:
    """One source's value for a field that is being merged."""
    source: str
    value: Any
    confidence: float
    timestamp: datetime


@dataclass
class ConflictField:
    """Disagreement on one field and how it was resolved."""
    field: str
    values: List[ConflictValue]
    resolved_value: Any
    resolution_method: ResolutionMethod

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "values": [
                {
                    "source": v.source,
                    "value": v.value,
                    "confidence": v.confidence,
                    "timestamp": v.timestamp.isoformat(),
                }
                for v in self.values
            ],
            "resolved_value": self.resolved_value,
            "resolution_method": self.resolution_method.value,
        }


@dataclass
class ResolutionResult:
    """Output of the conflict resolver."""
    resolved_data: CanonicalObservation
    conflicts: List[ConflictField] = field(default_factory=list)
    quality_score: float = 0.0


@dataclass
class AggregationResult:
    """Envelope returned by ``aggregate()``."""
    data: CanonicalObservation
    from_cache: bool
    sources_used: List[str]
    conflict_count: int
    quality_score: float
    processing_time_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data.model_dump(mode="json"),
            "from_cache": self.from_cache,
            "sources_used": list(self.sources_used),
            "conflict_count": self.conflict_count,
            "quality_score": self.quality_score,
            "processing_time_ms": self.processing_time_ms,
        }
