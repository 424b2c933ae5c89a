"""
Observation aggregators: cache, route, fan out, resolve, cache again.

One ``aggregate()`` call:

1. Derives the cache key from the request's subject (airport or flight code
   preferred over raw coordinates) and date.
2. Returns a cached observation if it is no older than the max age; a stale
   entry is evicted and treated as a miss.
3. Asks the source router for candidates and keeps the first ``max_sources``.
4. Fetches from every candidate concurrently, each raced against its own
   timeout. A timeout or error marks that source unhealthy; there is no retry
   within a request.
5. Waits for every fetch to settle, keeps the non-empty results in candidate
   order, and fails with ``NoSourcesAvailable`` / ``AllSourcesFailed`` when
   there is nothing to merge.
6. Merges through the conflict resolver, writes the result to the cache
   (best effort) and returns an ``AggregationResult`` envelope.

``WeatherAggregator`` and ``FlightAggregator`` bind the generic engine to a
field profile, a model class, a cache namespace and their default policy.
"""
import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Type

from pydantic import ValidationError

from .cache import CacheStore, InMemoryCacheStore, RedisCacheStore, generate_cache_key
from .config import FLIGHT_SETTINGS, WEATHER_SETTINGS, AggregatorSettings
from .conflict_resolver import ConflictResolver
from .exceptions import (
    AggregationError,
    AllSourcesFailed,
    CacheWriteFailure,
    NoSourcesAvailable,
    SourceTimeout,
)
from .metrics import AggregationMetrics
from .models import (
    AggregationResult,
    CanonicalFlightData,
    CanonicalObservation,
    CanonicalWeatherObservation,
    FlightIdentifier,
    WeatherIdentifier,
    utcnow,
)
from .profiles import FLIGHT_PROFILE, WEATHER_PROFILE, FieldProfile
from .source_router import SourceRouter
from .sources import SourceClient

logger = logging.getLogger(__name__)


def _discard_late_result(task: "asyncio.Task") -> None:
    # Retrieve the abandoned fetch's outcome so it is dropped silently.
    if not task.cancelled():
        task.exception()


def default_cache_store(settings: AggregatorSettings) -> CacheStore:
    if settings.redis_url:
        return RedisCacheStore(settings.redis_url, prefix=settings.cache_key_prefix)
    return InMemoryCacheStore()


class ObservationAggregator:
    """Profile-driven multi-source aggregation engine."""

    def __init__(
        self,
        clients: Iterable[SourceClient],
        profile: FieldProfile,
        model_cls: Type[CanonicalObservation],
        namespace: str,
        settings: AggregatorSettings = WEATHER_SETTINGS,
        cache_store: Optional[CacheStore] = None,
        source_router: Optional[SourceRouter] = None,
        conflict_resolver: Optional[ConflictResolver] = None,
        metrics: Optional[AggregationMetrics] = None,
        log: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the aggregator.

        Args:
            clients: Source clients, used when no ``source_router`` is given
            profile: Merge and quality rules for ``model_cls``
            model_cls: Canonical model cached values are validated into
            namespace: Cache key namespace and metrics label
            settings: Aggregation policy
            cache_store: Store for merged observations (default from settings)
            source_router: Router to use instead of one built from ``clients``
            conflict_resolver: Resolver to use instead of one built from ``profile``
            metrics: Prometheus metrics sink
            log: Logger to use instead of the module logger
            clock: Returns the current aware UTC datetime
        """
        clients = list(clients)
        self.profile = profile
        self.model_cls = model_cls
        self.namespace = namespace
        self.settings = settings
        self.clock = clock
        self.log = log or logger
        self.metrics = metrics or AggregationMetrics()
        self.cache_store = cache_store if cache_store is not None else default_cache_store(settings)
        self.source_router = source_router or SourceRouter(
            clients,
            health_check_interval_sec=settings.health_check_interval_sec,
            health_check_timeout_sec=settings.health_check_timeout_sec,
            clock=clock,
            log=self.log,
            metrics=self.metrics,
        )
        self.conflict_resolver = conflict_resolver or ConflictResolver(
            profile, clock=clock, log=self.log
        )

        self.log.info(
            f"{self.namespace} aggregator initialized with {len(self.source_router.sources)} sources, "
            f"max sources: {self.settings.max_sources}"
        )

    @property
    def max_sources(self) -> int:
        return self.settings.max_sources

    @property
    def timeout_sec(self) -> float:
        return self.settings.source_timeout_sec

    async def aggregate(self, request: Any) -> AggregationResult:
        """
        Aggregate one observation.

        Args:
            request: Identifier exposing ``subject_key`` and ``date_str``

        Returns:
            AggregationResult envelope

        Raises:
            NoSourcesAvailable: The router returned no candidates
            AllSourcesFailed: No candidate produced data
        """
        started = time.monotonic()
        subject_key = request.subject_key
        date_str = request.date_str
        cache_key = generate_cache_key(self.namespace, subject_key, date_str)

        self.log.info(f"Starting {self.namespace} aggregation for {subject_key} on {date_str}")

        try:
            cached = await self._check_cache(cache_key)
            if cached is not None:
                elapsed = time.monotonic() - started
                self.log.info(f"Cache HIT for {subject_key} ({int(elapsed * 1000)}ms)")
                self.metrics.record_request(self.namespace, "cache_hit")
                self.metrics.record_latency(self.namespace, True, elapsed)
                return AggregationResult(
                    data=cached,
                    from_cache=True,
                    sources_used=[],
                    conflict_count=0,
                    quality_score=cached.data_quality_score,
                    processing_time_ms=int(elapsed * 1000),
                )

            candidates = await self.source_router.get_sources(subject_key)
            if not candidates:
                raise NoSourcesAvailable(
                    f"No available {self.namespace} data sources for {subject_key}", subject_key
                )

            selected = candidates[: self.max_sources]
            responses = await self._fetch_from_sources(selected, subject_key, date_str)
            if not responses:
                raise AllSourcesFailed(
                    f"No successful responses from any {self.namespace} data source "
                    f"for {subject_key} ({len(selected)} attempted)",
                    subject_key,
                    attempted=len(selected),
                )

            resolution = self.conflict_resolver.resolve(responses)
            await self._cache_result(cache_key, resolution.resolved_data)
        except AggregationError as e:
            self.log.error(f"{self.namespace} aggregation failed for {subject_key}: {e}")
            self.metrics.record_request(self.namespace, type(e).__name__)
            raise

        elapsed = time.monotonic() - started
        self.metrics.record_request(self.namespace, "success")
        self.metrics.record_latency(self.namespace, False, elapsed)
        self.metrics.record_resolution(
            self.namespace, len(resolution.conflicts), resolution.quality_score
        )
        self.log.info(
            f"Aggregated {self.namespace} data for {subject_key} from {len(responses)} sources "
            f"({int(elapsed * 1000)}ms)"
        )

        return AggregationResult(
            data=resolution.resolved_data,
            from_cache=False,
            sources_used=[r.primary_source for r in responses],
            conflict_count=len(resolution.conflicts),
            quality_score=resolution.quality_score,
            processing_time_ms=int(elapsed * 1000),
        )

    def is_stale(self, observation: CanonicalObservation) -> bool:
        age = (self.clock() - observation.last_updated_utc).total_seconds()
        return age > self.settings.cache_max_age_sec

    async def _check_cache(self, cache_key: str) -> Optional[CanonicalObservation]:
        try:
            value = await self.cache_store.get(cache_key)
        except Exception as e:
            self.log.warning(f"Cache read failed for {cache_key}, treating as miss: {e}")
            self.metrics.record_cache_lookup(self.namespace, "error")
            return None

        if value is None:
            self.metrics.record_cache_lookup(self.namespace, "miss")
            return None

        try:
            if isinstance(value, self.model_cls):
                observation = value.model_copy(deep=True)
            else:
                observation = self.model_cls.model_validate(value)
        except ValidationError as e:
            self.log.warning(f"Evicting invalid cache entry {cache_key}: {e}")
            await self._evict(cache_key)
            self.metrics.record_cache_lookup(self.namespace, "invalid")
            return None

        if self.is_stale(observation):
            self.log.info(f"Cache entry {cache_key} is stale, evicting")
            await self._evict(cache_key)
            self.metrics.record_cache_lookup(self.namespace, "stale")
            return None

        self.metrics.record_cache_lookup(self.namespace, "hit")
        return observation

    async def _evict(self, cache_key: str) -> None:
        try:
            await self.cache_store.delete(cache_key)
        except Exception as e:
            self.log.warning(f"Cache delete failed for {cache_key}: {e}")

    async def _fetch_with_timeout(
        self, source: SourceClient, subject_key: str, date_str: str
    ) -> Optional[CanonicalObservation]:
        task = asyncio.ensure_future(source.fetch(subject_key, date_str))
        try:
            done, _ = await asyncio.wait({task}, timeout=self.timeout_sec)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task not in done:
            # Abandon the loser: cancel it and drop whatever it eventually yields.
            task.cancel()
            task.add_done_callback(_discard_late_result)
            raise SourceTimeout(source.name, self.timeout_sec, subject_key)
        return task.result()

    async def _fetch_one(
        self, source: SourceClient, subject_key: str, date_str: str
    ) -> Optional[CanonicalObservation]:
        started = time.monotonic()
        try:
            data = await self._fetch_with_timeout(source, subject_key, date_str)
        except SourceTimeout as e:
            elapsed = time.monotonic() - started
            self.log.warning(f"{source.name} timed out ({int(elapsed * 1000)}ms): {e}")
            self.metrics.record_source_fetch(self.namespace, source.name, "timeout", elapsed)
            self.source_router.mark_unhealthy(source.name, str(e))
            return None
        except Exception as e:
            elapsed = time.monotonic() - started
            self.log.warning(f"{source.name} failed ({int(elapsed * 1000)}ms): {e}")
            self.metrics.record_source_fetch(self.namespace, source.name, "error", elapsed)
            self.source_router.mark_unhealthy(source.name, str(e))
            return None

        elapsed = time.monotonic() - started
        if data is None:
            self.log.info(f"{source.name} returned no data for {subject_key} ({int(elapsed * 1000)}ms)")
            self.metrics.record_source_fetch(self.namespace, source.name, "empty", elapsed)
            return None

        self.log.debug(f"{source.name} responded successfully ({int(elapsed * 1000)}ms)")
        self.metrics.record_source_fetch(self.namespace, source.name, "success", elapsed)
        return data

    async def _fetch_from_sources(
        self, sources: List[SourceClient], subject_key: str, date_str: str
    ) -> List[CanonicalObservation]:
        self.log.info(
            f"Fetching {subject_key} from {len(sources)} sources: {', '.join(s.name for s in sources)}"
        )
        results = await asyncio.gather(
            *(self._fetch_one(source, subject_key, date_str) for source in sources)
        )
        return [r for r in results if r is not None]

    async def _cache_result(self, cache_key: str, data: CanonicalObservation) -> None:
        try:
            await self.cache_store.set(cache_key, data)
        except Exception as e:
            failure = CacheWriteFailure(f"Failed to cache {cache_key}: {e}")
            failure.__cause__ = e
            self.log.warning(str(failure), exc_info=failure)
            self.metrics.record_cache_write_failure(self.namespace)

    async def get_health_status(self) -> Dict[str, Any]:
        """
        Report source health and cache size.

        Returns:
            ``{"sources": {name: healthy}, "is_healthy": bool, "cache_size": int | None}``
            where ``is_healthy`` is true iff at least one source is healthy and
            ``cache_size`` is None when the store cannot report its size.
        """
        sources = self.source_router.get_health_status()
        cache_size = None
        size = getattr(self.cache_store, "size", None)
        if size is not None:
            try:
                cache_size = await size()
            except Exception as e:
                self.log.warning(f"Cache size unavailable: {e}")
        return {
            "sources": sources,
            "is_healthy": any(sources.values()),
            "cache_size": cache_size,
        }

    async def clear_cache(self) -> None:
        await self.cache_store.clear()
        self.log.info(f"{self.namespace} cache cleared")


class WeatherAggregator(ObservationAggregator):
    """Aggregates weather observations by airport or coordinates."""

    def __init__(
        self,
        clients: Iterable[SourceClient],
        settings: AggregatorSettings = WEATHER_SETTINGS,
        **kwargs,
    ):
        super().__init__(
            clients,
            profile=WEATHER_PROFILE,
            model_cls=CanonicalWeatherObservation,
            namespace="weather",
            settings=settings,
            **kwargs,
        )

    async def get_weather_data(self, identifier: WeatherIdentifier) -> AggregationResult:
        return await self.aggregate(identifier)


class FlightAggregator(ObservationAggregator):
    """Aggregates flight status by flight number."""

    def __init__(
        self,
        clients: Iterable[SourceClient],
        settings: AggregatorSettings = FLIGHT_SETTINGS,
        **kwargs,
    ):
        super().__init__(
            clients,
            profile=FLIGHT_PROFILE,
            model_cls=CanonicalFlightData,
            namespace="flight",
            settings=settings,
            **kwargs,
        )

    async def get_flight_status(self, identifier: FlightIdentifier) -> AggregationResult:
        return await self.aggregate(identifier)
