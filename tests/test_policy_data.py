"""
Tests for collecting flight and weather data for a policy.
"""
from datetime import date

import pytest

from helpers import FakeSourceClient, make_flight, make_weather
from obsagg.aggregator import FlightAggregator, WeatherAggregator
from obsagg.airports import AIRPORT_COORDINATES
from obsagg.cache import InMemoryCacheStore
from obsagg.exceptions import NoSourcesAvailable, PolicyDataError
from obsagg.metrics import AggregationMetrics
from obsagg.models import Coordinates
from obsagg.policy_data import NamedCoordinates, PolicyDataRequest, PolicyDataRouter

FLIGHT_DATE = date(2025, 1, 15)


class EchoWeatherSource(FakeSourceClient):
    """Returns an observation for whatever airport is asked; fails for ``failing`` ones."""

    def __init__(self, failing=()):
        super().__init__("weatherapi")
        self.failing = set(failing)

    async def fetch(self, subject_key, date=None):
        self.fetch_calls.append((subject_key, date))
        if subject_key in self.failing:
            raise RuntimeError(f"no weather for {subject_key}")
        airport = None if "," in subject_key else subject_key
        return make_weather("weatherapi", airport_iata_code=airport)


def build_router(clock, flight_source=None, weather_source=None, **kwargs):
    flight_source = flight_source or FakeSourceClient("flightaware", make_flight())
    weather_source = weather_source or EchoWeatherSource()
    flights = FlightAggregator(
        [flight_source], cache_store=InMemoryCacheStore(), metrics=AggregationMetrics(), clock=clock
    )
    weather = WeatherAggregator(
        [weather_source], cache_store=InMemoryCacheStore(), metrics=AggregationMetrics(), clock=clock
    )
    return PolicyDataRouter(flights, weather, **kwargs)


def request(**kwargs):
    return PolicyDataRequest(flight_number="BT318", date=FLIGHT_DATE, **kwargs)


class TestGetDataForPolicy:

    @pytest.mark.asyncio
    async def test_flight_and_route_weather(self, clock):
        weather_source = EchoWeatherSource()
        router = build_router(clock, weather_source=weather_source)

        response = await router.get_data_for_policy(request())

        assert response.flight.flight_number == "BT318"
        assert response.flight_data_source.sources_used == ["flightaware"]
        assert response.flight_data_source.from_cache is False
        assert weather_source.fetch_calls == [("RIX", "2025-01-15"), ("LHR", "2025-01-15")]
        assert [w.airport_iata_code for w in response.weather] == ["RIX", "LHR"]
        assert [m.location for m in response.weather_data_sources] == ["RIX (Origin)", "LHR (Destination)"]
        assert response.total_processing_time_ms >= 0

    @pytest.mark.asyncio
    async def test_weather_can_be_skipped(self, clock):
        weather_source = EchoWeatherSource()
        router = build_router(clock, weather_source=weather_source)

        response = await router.get_data_for_policy(request(include_weather=False))

        assert response.weather == []
        assert response.weather_data_sources == []
        assert weather_source.fetch_calls == []

    @pytest.mark.asyncio
    async def test_router_default_for_weather(self, clock):
        weather_source = EchoWeatherSource()
        router = build_router(clock, weather_source=weather_source, default_include_weather=False)

        await router.get_data_for_policy(request())
        assert weather_source.fetch_calls == []

        await router.get_data_for_policy(request(include_weather=True))
        assert len(weather_source.fetch_calls) == 2

    @pytest.mark.asyncio
    async def test_explicit_airports(self, clock):
        weather_source = EchoWeatherSource()
        router = build_router(clock, weather_source=weather_source)

        response = await router.get_data_for_policy(request(airports=["jfk", "XXX"]))

        assert weather_source.fetch_calls == [("JFK", "2025-01-15")]
        assert [w.airport_iata_code for w in response.weather] == ["JFK"]

    @pytest.mark.asyncio
    async def test_explicit_coordinates(self, clock):
        weather_source = EchoWeatherSource()
        router = build_router(clock, weather_source=weather_source)
        coords = [NamedCoordinates(latitude=57.0, longitude=24.0, name="Farm")]

        response = await router.get_data_for_policy(request(weather_coordinates=coords))

        assert weather_source.fetch_calls == [("57.0,24.0", "2025-01-15")]
        assert [m.location for m in response.weather_data_sources] == ["Farm"]

    @pytest.mark.asyncio
    async def test_failed_weather_location_dropped(self, clock):
        router = build_router(clock, weather_source=EchoWeatherSource(failing={"LHR"}))

        response = await router.get_data_for_policy(request())

        assert [w.airport_iata_code for w in response.weather] == ["RIX"]
        assert [m.location for m in response.weather_data_sources] == ["RIX (Origin)"]

    @pytest.mark.asyncio
    async def test_labels_follow_requested_location_after_failure(self, clock):
        """When the first location fails, the survivor keeps its own label."""
        router = build_router(clock, weather_source=EchoWeatherSource(failing={"57.0,24.0"}))
        coords = [
            NamedCoordinates(latitude=57.0, longitude=24.0, name="Farm A"),
            NamedCoordinates(latitude=58.0, longitude=25.0, name="Farm B"),
        ]

        response = await router.get_data_for_policy(request(weather_coordinates=coords))

        assert len(response.weather) == 1
        assert [m.location for m in response.weather_data_sources] == ["Farm B"]

    @pytest.mark.asyncio
    async def test_failed_origin_keeps_destination_label(self, clock):
        router = build_router(clock, weather_source=EchoWeatherSource(failing={"RIX"}))

        response = await router.get_data_for_policy(request())

        assert [w.airport_iata_code for w in response.weather] == ["LHR"]
        assert [m.location for m in response.weather_data_sources] == ["LHR (Destination)"]

    @pytest.mark.asyncio
    async def test_weather_requests_batched(self, clock):
        weather_source = EchoWeatherSource()
        router = build_router(clock, weather_source=weather_source, max_concurrent_weather_requests=1)

        response = await router.get_data_for_policy(request(airports=["JFK", "LAX", "SFO"]))

        assert [c[0] for c in weather_source.fetch_calls] == ["JFK", "LAX", "SFO"]
        assert len(response.weather) == 3

    @pytest.mark.asyncio
    async def test_flight_failure_raises(self, clock):
        router = build_router(clock, flight_source=FakeSourceClient("flightaware"))

        with pytest.raises(PolicyDataError) as exc_info:
            await router.get_data_for_policy(request())

        assert exc_info.value.subject_key == "BT318"
        assert "BT318" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_flight_failure_keeps_cause(self, clock):
        flights = FlightAggregator([], cache_store=InMemoryCacheStore(), clock=clock)
        weather = WeatherAggregator([], cache_store=InMemoryCacheStore(), clock=clock)
        router = PolicyDataRouter(flights, weather)

        with pytest.raises(PolicyDataError) as exc_info:
            await router.get_data_for_policy(request())

        assert isinstance(exc_info.value.__cause__, NoSourcesAvailable)

    @pytest.mark.asyncio
    async def test_flight_timeout(self, clock):
        slow = FakeSourceClient("flightaware", make_flight(), delay=5.0)
        router = build_router(clock, flight_source=slow, timeout_sec=0.05)

        with pytest.raises(PolicyDataError) as exc_info:
            await router.get_data_for_policy(request())

        assert "timeout" in str(exc_info.value)


class TestWeatherLocations:

    def test_route_skips_unknown_and_duplicate_airports(self, clock):
        router = build_router(clock)

        same = make_flight(origin_airport_iata_code="RIX", destination_airport_iata_code="RIX")
        unknown = make_flight(origin_airport_iata_code="UNKNOWN", destination_airport_iata_code="LHR")

        assert [loc.name for loc in router.determine_weather_locations(same)] == ["RIX (Origin)"]
        assert [loc.name for loc in router.determine_weather_locations(unknown)] == ["LHR (Destination)"]

    def test_coordinates_take_precedence(self, clock):
        router = build_router(clock)
        coords = [NamedCoordinates(latitude=1.0, longitude=2.0)]

        locations = router.determine_weather_locations(make_flight(), ["JFK"], coords)

        assert [loc.name for loc in locations] == ["Location 1"]
        assert locations[0].airport_code is None

    def test_airport_table_is_per_router(self, clock):
        router = build_router(clock)

        router.add_airport_coordinates(" xyz ", Coordinates(latitude=10.0, longitude=20.0))

        assert "XYZ" in router.available_airports()
        assert "XYZ" not in AIRPORT_COORDINATES
        locations = router.determine_weather_locations(make_flight(), ["XYZ"])
        assert locations[0].coordinates.latitude == 10.0

    def test_invalid_batch_size(self, clock):
        with pytest.raises(ValueError):
            build_router(clock, max_concurrent_weather_requests=0)


class TestMaintenance:

    @pytest.mark.asyncio
    async def test_health_status(self, clock):
        router = build_router(clock)
        router.weather_aggregator.source_router.mark_unhealthy("weatherapi")

        status = await router.get_health_status()

        assert status["flight"]["is_healthy"] is True
        assert status["weather"]["is_healthy"] is False
        assert status["overall"] is False

    @pytest.mark.asyncio
    async def test_clear_all_caches(self, clock):
        router = build_router(clock)
        await router.get_data_for_policy(request())

        await router.clear_all_caches()

        assert (await router.flight_aggregator.get_health_status())["cache_size"] == 0
        assert (await router.weather_aggregator.get_health_status())["cache_size"] == 0
