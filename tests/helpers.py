"""
Test doubles shared across the aggregator test suite.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Tuple

from obsagg.models import (
    CanonicalFlightData,
    CanonicalWeatherObservation,
    SourceContribution,
    WeatherCondition,
)
from obsagg.sources import SourceClient

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeSourceClient(SourceClient):
    """Scriptable source client recording every call."""

    def __init__(
        self,
        name: str,
        observation: Any = None,
        priority: int = 0,
        error: Optional[Exception] = None,
        delay: float = 0.0,
        available: bool = True,
        availability_error: Optional[Exception] = None,
        availability_delay: float = 0.0,
    ):
        super().__init__(name, priority=priority)
        self.observation = observation
        self.error = error
        self.delay = delay
        self.available = available
        self.availability_error = availability_error
        self.availability_delay = availability_delay
        self.fetch_calls: List[Tuple[str, Optional[str]]] = []
        self.availability_calls = 0
        self.cancelled = False

    async def fetch(self, subject_key, date=None):
        self.fetch_calls.append((subject_key, date))
        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        if self.error is not None:
            raise self.error
        return self.observation

    async def is_available(self):
        self.availability_calls += 1
        if self.availability_delay:
            await asyncio.sleep(self.availability_delay)
        if self.availability_error is not None:
            raise self.availability_error
        return self.available


def contribution(source: str, confidence: float = 0.8, fields=None, timestamp: datetime = NOW):
    return SourceContribution(
        source=source,
        fields=list(fields or []),
        timestamp=timestamp,
        confidence=confidence,
    )


def make_weather(
    source: str = "weatherapi",
    confidence: float = 0.9,
    last_updated: datetime = NOW,
    **fields,
) -> CanonicalWeatherObservation:
    """Weather observation from one source; unspecified core fields get defaults."""
    values = {
        "airport_iata_code": "JFK",
        "observation_timestamp_utc": NOW,
        "temperature": 20.0,
        "weather_condition": WeatherCondition.CLEAR,
    }
    values.update(fields)
    return CanonicalWeatherObservation(
        **values,
        source_contributions=[contribution(source, confidence, fields=list(values))],
        last_updated_utc=last_updated,
    )


def make_flight(
    source: str = "flightaware",
    confidence: float = 0.95,
    last_updated: datetime = NOW,
    **fields,
) -> CanonicalFlightData:
    values = {
        "flight_number": "BT318",
        "origin_airport_iata_code": "RIX",
        "destination_airport_iata_code": "LHR",
        "scheduled_departure_timestamp_utc": NOW,
    }
    values.update(fields)
    return CanonicalFlightData(
        **values,
        source_contributions=[contribution(source, confidence, fields=list(values))],
        last_updated_utc=last_updated,
    )
