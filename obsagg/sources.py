"""
Source client SDK for observation providers.

Overview
--------
Defines the ``SourceClient`` abstract base class that every data provider
client must implement. A client is responsible for:
- Fetching one observation for a subject key (airport, coordinates, flight)
- Mapping the provider payload to a canonical observation
- Answering a cheap availability probe

The aggregator and source router only depend on this interface; concrete
clients are supplied by the caller. ``HttpSourceClient`` is a helper base for
providers reachable over HTTP via httpx, and ``OpenWeatherMapClient`` is a
concrete weather provider built on it.

Contract
--------
- ``fetch`` returns ``None`` when the provider has no data for the subject;
  any raised exception is treated as a source failure by the aggregator.
- ``is_available`` must not block indefinitely; the router wraps it in its own
  timeout regardless.
"""
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from .exceptions import (
    SourceAuthenticationError,
    SourceClientError,
    SourceNotFoundError,
    SourceRateLimitError,
)
from .models import (
    CanonicalObservation,
    CanonicalWeatherObservation,
    SourceContribution,
    WeatherCondition,
    utcnow,
)

logger = logging.getLogger(__name__)


class SourceClient(ABC):
    """Base class for all observation provider clients."""

    def __init__(self, name: str, priority: int = 0, reliability: float = 0.5):
        """
        Initialize client metadata.

        Args:
            name: Provider name, also the key into the reliability table
            priority: Routing tie-break, higher first
            reliability: Informational 0-1 reliability estimate
        """
        self.name = name
        self.priority = priority
        self.reliability = reliability

    @abstractmethod
    async def fetch(self, subject_key: str, date: Optional[str] = None) -> Optional[CanonicalObservation]:
        """
        Fetch the observation for a subject.

        Args:
            subject_key: Airport code, ``"lat,lon"`` string or flight number
            date: ISO date string, provider default when None

        Returns:
            Canonical observation, or None if the provider has no data
        """
        pass

    @abstractmethod
    async def is_available(self) -> bool:
        """Cheap health probe."""
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.priority})"


class HttpSourceClient(SourceClient):
    """Source client backed by an ``httpx.AsyncClient``.

    Subclasses implement ``build_request`` and ``map_to_observation``; this
    class handles the HTTP round trip and maps error status codes to the
    ``SourceClientError`` hierarchy.
    """

    health_path = "/"

    def __init__(
        self,
        name: str,
        base_url: str,
        api_key: Optional[str] = None,
        priority: int = 0,
        reliability: float = 0.5,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(name, priority=priority, reliability=reliability)
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self._get_headers(),
            transport=transport,
        )

    def _get_headers(self) -> Dict[str, str]:
        return {
            "User-Agent": "observation-aggregator/1.0.0",
            "Accept": "application/json",
        }

    def _handle_response(self, response: httpx.Response) -> Any:
        """Return the decoded JSON body or raise a rich exception."""
        if response.status_code == 200:
            return response.json()
        elif response.status_code in (401, 403):
            raise SourceAuthenticationError(
                f"{self.name}: invalid API key or access forbidden", response.status_code
            )
        elif response.status_code == 404:
            raise SourceNotFoundError(f"{self.name}: resource not found", response.status_code)
        elif response.status_code == 429:
            raise SourceRateLimitError(f"{self.name}: rate limit exceeded", response.status_code)
        raise SourceClientError(
            f"{self.name}: API error ({response.status_code}): {response.text[:200]}",
            response.status_code,
        )

    @abstractmethod
    def build_request(self, subject_key: str, date: Optional[str]) -> Dict[str, Any]:
        """Return ``{"path": ..., "params": {...}}`` for the provider call."""
        pass

    @abstractmethod
    def map_to_observation(
        self,
        payload: Dict[str, Any],
        subject_key: str,
        response_time_ms: int,
    ) -> Optional[CanonicalObservation]:
        """Map a provider payload to a canonical observation."""
        pass

    async def fetch(self, subject_key: str, date: Optional[str] = None) -> Optional[CanonicalObservation]:
        try:
            request = self.build_request(subject_key, date)
        except SourceNotFoundError as e:
            logger.info(str(e))
            return None
        started = time.monotonic()
        response = await self._client.get(request["path"], params=request.get("params"))
        elapsed_ms = int((time.monotonic() - started) * 1000)
        try:
            payload = self._handle_response(response)
        except SourceNotFoundError:
            logger.info(f"{self.name} has no data for {subject_key}")
            return None
        return self.map_to_observation(payload, subject_key, elapsed_ms)

    async def is_available(self) -> bool:
        try:
            response = await self._client.get(self.health_path)
        except httpx.HTTPError as e:
            logger.warning(f"{self.name} availability probe failed: {e}")
            return False
        return response.status_code < 500

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()


# OpenWeatherMap condition group (first digit of the condition id) -> canonical condition
_OWM_CONDITION_GROUPS = {
    2: WeatherCondition.THUNDERSTORM,
    3: WeatherCondition.RAIN,
    5: WeatherCondition.RAIN,
    6: WeatherCondition.SNOW,
    7: WeatherCondition.FOG,
}


def map_owm_condition(condition_id: Optional[int]) -> WeatherCondition:
    """Map an OpenWeatherMap condition id to a canonical weather condition."""
    if condition_id is None:
        return WeatherCondition.UNKNOWN
    if condition_id in (502, 503, 504, 522):
        return WeatherCondition.HEAVY_RAIN
    if condition_id == 800:
        return WeatherCondition.CLEAR
    if condition_id in (801, 802):
        return WeatherCondition.PARTLY_CLOUDY
    if condition_id == 803:
        return WeatherCondition.CLOUDY
    if condition_id == 804:
        return WeatherCondition.OVERCAST
    return _OWM_CONDITION_GROUPS.get(condition_id // 100, WeatherCondition.UNKNOWN)


class OpenWeatherMapClient(HttpSourceClient):
    """OpenWeatherMap current-weather client.

    Portal: https://openweathermap.org/api
    Subject keys must be ``"lat,lon"`` strings or airport codes resolvable by
    the caller-supplied ``airport_coordinates`` mapping.
    """

    health_path = "/weather"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openweathermap.org/data/2.5",
        airport_coordinates: Optional[Dict[str, Any]] = None,
        priority: int = 80,
        reliability: float = 0.8,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            "openweather",
            base_url,
            api_key=api_key,
            priority=priority,
            reliability=reliability,
            timeout=timeout,
            transport=transport,
        )
        self.airport_coordinates = airport_coordinates or {}

    def _resolve_coordinates(self, subject_key: str):
        if "," in subject_key:
            lat, lon = subject_key.split(",", 1)
            return float(lat), float(lon), None
        coords = self.airport_coordinates.get(subject_key.upper())
        if coords is None:
            raise SourceNotFoundError(f"{self.name}: no coordinates for {subject_key}")
        return coords.latitude, coords.longitude, subject_key.upper()

    def build_request(self, subject_key: str, date: Optional[str]) -> Dict[str, Any]:
        lat, lon, _ = self._resolve_coordinates(subject_key)
        return {
            "path": "/weather",
            "params": {"lat": lat, "lon": lon, "appid": self.api_key, "units": "metric"},
        }

    def map_to_observation(
        self,
        payload: Dict[str, Any],
        subject_key: str,
        response_time_ms: int,
    ) -> Optional[CanonicalWeatherObservation]:
        main = payload.get("main")
        if not main:
            return None
        wind = payload.get("wind", {})
        conditions = payload.get("weather") or [{}]
        rain = payload.get("rain", {})
        now = utcnow()

        observed_at = now
        if payload.get("dt") is not None:
            observed_at = datetime.fromtimestamp(payload["dt"], tz=timezone.utc)

        airport_code = None if "," in subject_key else subject_key.upper()
        temperature = main.get("temp")
        visibility_m = payload.get("visibility")
        wind_ms = wind.get("speed")
        gust_ms = wind.get("gust")

        fields = {
            "airport_iata_code": airport_code,
            "observation_timestamp_utc": observed_at,
            "temperature": temperature,
            "temperature_fahrenheit": temperature * 9 / 5 + 32 if temperature is not None else None,
            "humidity": main.get("humidity"),
            "pressure": main.get("pressure"),
            "wind_speed": wind_ms * 3.6 if wind_ms is not None else None,
            "wind_direction": wind.get("deg"),
            "wind_gust": gust_ms * 3.6 if gust_ms is not None else None,
            "visibility": visibility_m / 1000 if visibility_m is not None else None,
            "weather_condition": map_owm_condition(conditions[0].get("id")),
            "cloud_cover": conditions[0].get("description"),
            "precipitation": rain.get("1h"),
        }
        provided = [k for k, v in fields.items() if v is not None]

        return CanonicalWeatherObservation(
            **fields,
            source_contributions=[
                SourceContribution(
                    source=self.name,
                    fields=provided,
                    timestamp=now,
                    confidence=self.reliability,
                    source_id=str(payload.get("id")) if payload.get("id") is not None else None,
                    api_version="2.5",
                    response_time_ms=response_time_ms,
                )
            ],
            last_updated_utc=now,
        )
