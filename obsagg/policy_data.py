"""
Policy data router.

Collects everything needed to evaluate a flight policy in one call: the
flight's status from the flight aggregator (mandatory) and weather at the
relevant locations from the weather aggregator (optional).

Weather locations are chosen in this order:
1. Explicit coordinates on the request
2. Explicit airport codes on the request
3. The flight's origin and destination airports

Weather requests run in batches of ``max_concurrent_weather_requests``. A
weather failure only drops that location; a flight failure fails the request.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date as date_type
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, Field

from .aggregator import FlightAggregator, WeatherAggregator
from .airports import AIRPORT_COORDINATES
from .exceptions import PolicyDataError
from .models import (
    AggregationResult,
    CanonicalFlightData,
    CanonicalObservation,
    Coordinates,
    FlightIdentifier,
    WeatherIdentifier,
)

logger = logging.getLogger(__name__)

LOW_QUALITY_THRESHOLD = 0.3


class NamedCoordinates(Coordinates):
    name: Optional[str] = None


class PolicyDataRequest(BaseModel):
    """Inputs for collecting policy data."""
    flight_number: str = Field(min_length=1)
    date: date_type
    airports: Optional[List[str]] = None
    include_weather: Optional[bool] = None
    weather_coordinates: Optional[List[NamedCoordinates]] = None


@dataclass
class WeatherLocation:
    coordinates: Coordinates
    name: str
    airport_code: Optional[str] = None


@dataclass
class SourceMetadata:
    """Provenance summary of one aggregation used in a policy response."""
    from_cache: bool
    sources_used: List[str]
    quality_score: float
    processing_time_ms: int
    location: Optional[str] = None

    @classmethod
    def from_result(cls, result: AggregationResult, location: Optional[str] = None) -> "SourceMetadata":
        return cls(
            from_cache=result.from_cache,
            sources_used=list(result.sources_used),
            quality_score=result.quality_score,
            processing_time_ms=result.processing_time_ms,
            location=location,
        )


@dataclass
class PolicyDataResponse:
    flight: CanonicalFlightData
    weather: List[CanonicalObservation]
    flight_data_source: SourceMetadata
    weather_data_sources: List[SourceMetadata] = field(default_factory=list)
    total_processing_time_ms: int = 0


class PolicyDataRouter:
    """Coordinates flight and weather aggregation for policy evaluation."""

    def __init__(
        self,
        flight_aggregator: FlightAggregator,
        weather_aggregator: WeatherAggregator,
        max_concurrent_weather_requests: int = 3,
        default_include_weather: bool = True,
        timeout_sec: float = 45.0,
        airport_coordinates: Optional[Mapping[str, Coordinates]] = None,
        log: Optional[logging.Logger] = None,
    ):
        if max_concurrent_weather_requests < 1:
            raise ValueError("max_concurrent_weather_requests must be at least 1")
        self.flight_aggregator = flight_aggregator
        self.weather_aggregator = weather_aggregator
        self.max_concurrent_weather_requests = max_concurrent_weather_requests
        self.default_include_weather = default_include_weather
        self.timeout_sec = timeout_sec
        self.airport_coordinates: Dict[str, Coordinates] = dict(
            AIRPORT_COORDINATES if airport_coordinates is None else airport_coordinates
        )
        self.log = log or logger

    async def get_data_for_policy(self, request: PolicyDataRequest) -> PolicyDataResponse:
        """
        Collect flight and weather data for a policy.

        Raises:
            PolicyDataError: Flight data could not be collected
        """
        started = time.monotonic()
        include_weather = (
            self.default_include_weather if request.include_weather is None else request.include_weather
        )
        self.log.info(
            f"Collecting policy data for flight {request.flight_number} on {request.date.isoformat()}"
        )

        flight_result = await self._get_flight_data(request.flight_number, request.date)
        self.log.info(
            f"Flight data collected from {', '.join(flight_result.sources_used) or 'cache'} "
            f"(quality: {flight_result.quality_score:.3f})"
        )

        weather_results: List[Tuple[WeatherLocation, AggregationResult]] = []
        if include_weather:
            weather_results = await self._get_weather_data(
                flight_result.data, request.airports, request.weather_coordinates, request.date
            )
            self.log.info(f"Weather data collected for {len(weather_results)} locations")

        total_ms = int((time.monotonic() - started) * 1000)
        return PolicyDataResponse(
            flight=flight_result.data,
            weather=[r.data for _, r in weather_results],
            flight_data_source=SourceMetadata.from_result(flight_result),
            weather_data_sources=[
                SourceMetadata.from_result(r, location.name) for location, r in weather_results
            ],
            total_processing_time_ms=total_ms,
        )

    async def _get_flight_data(self, flight_number: str, flight_date: date_type) -> AggregationResult:
        identifier = FlightIdentifier(flight_number=flight_number, date=flight_date)
        try:
            result = await asyncio.wait_for(
                self.flight_aggregator.get_flight_status(identifier), timeout=self.timeout_sec
            )
        except asyncio.TimeoutError as e:
            raise PolicyDataError(
                f"Policy data collection failed for {flight_number}: "
                f"flight data collection timeout after {self.timeout_sec:g}s",
                identifier.subject_key,
            ) from e
        except Exception as e:
            raise PolicyDataError(
                f"Policy data collection failed for {flight_number}: {e}", identifier.subject_key
            ) from e

        if result.quality_score < LOW_QUALITY_THRESHOLD:
            self.log.warning(
                f"Flight data quality is low ({result.quality_score:.3f}), but proceeding"
            )
        return result

    def determine_weather_locations(
        self,
        flight: CanonicalFlightData,
        airports: Optional[List[str]] = None,
        coordinates: Optional[List[NamedCoordinates]] = None,
    ) -> List[WeatherLocation]:
        """Pick weather locations from coordinates, airports, or the flight's route."""
        if coordinates:
            return [
                WeatherLocation(
                    coordinates=Coordinates(latitude=c.latitude, longitude=c.longitude),
                    name=c.name or f"Location {i + 1}",
                )
                for i, c in enumerate(coordinates)
            ]

        locations = []
        if airports:
            for airport in airports:
                code = airport.strip().upper()
                coords = self.airport_coordinates.get(code)
                if coords is None:
                    self.log.warning(f"No coordinates found for airport {code}")
                    continue
                locations.append(WeatherLocation(coordinates=coords, name=code, airport_code=code))
            return locations

        origin = flight.origin_airport_iata_code
        destination = flight.destination_airport_iata_code
        for code, role in ((origin, "Origin"), (destination, "Destination")):
            if not code or code == "UNKNOWN":
                continue
            if role == "Destination" and code == origin:
                continue
            coords = self.airport_coordinates.get(code.upper())
            if coords is None:
                self.log.warning(f"No coordinates found for airport {code}")
                continue
            locations.append(
                WeatherLocation(coordinates=coords, name=f"{code} ({role})", airport_code=code.upper())
            )
        return locations

    async def _get_weather_data(
        self,
        flight: CanonicalFlightData,
        airports: Optional[List[str]],
        coordinates: Optional[List[NamedCoordinates]],
        weather_date: Optional[date_type],
    ) -> List[Tuple[WeatherLocation, AggregationResult]]:
        """Fetch weather per location; failed locations are dropped."""
        locations = self.determine_weather_locations(flight, airports, coordinates)
        if not locations:
            self.log.warning(f"No weather locations determined for flight {flight.flight_number}")
            return []

        self.log.info(
            f"Collecting weather for {len(locations)} locations: {', '.join(loc.name for loc in locations)}"
        )
        results: List[Tuple[WeatherLocation, AggregationResult]] = []
        batch_size = self.max_concurrent_weather_requests
        for i in range(0, len(locations), batch_size):
            batch = locations[i:i + batch_size]
            outcomes = await asyncio.gather(
                *(self._fetch_location(location, weather_date) for location in batch),
                return_exceptions=True,
            )
            for location, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    self.log.warning(f"Weather request failed for {location.name}: {outcome}")
                    continue
                results.append((location, outcome))

        if not results:
            self.log.warning("No successful weather data collection for any location")
        return results

    async def _fetch_location(
        self, location: WeatherLocation, weather_date: Optional[date_type]
    ) -> AggregationResult:
        identifier = WeatherIdentifier(
            coordinates=location.coordinates,
            airport_code=location.airport_code,
            date=weather_date,
        )
        return await self.weather_aggregator.get_weather_data(identifier)

    async def get_health_status(self) -> Dict[str, Any]:
        flight = await self.flight_aggregator.get_health_status()
        weather = await self.weather_aggregator.get_health_status()
        return {
            "flight": flight,
            "weather": weather,
            "overall": flight["is_healthy"] and weather["is_healthy"],
        }

    async def clear_all_caches(self) -> None:
        await self.flight_aggregator.clear_cache()
        await self.weather_aggregator.clear_cache()

    def add_airport_coordinates(self, airport_code: str, coordinates: Coordinates) -> None:
        code = airport_code.strip().upper()
        self.airport_coordinates[code] = coordinates
        self.log.info(f"Added coordinates for airport {code}")

    def available_airports(self) -> List[str]:
        return sorted(self.airport_coordinates)
