"""
Health-aware source routing.

The router owns the set of source clients and one health flag per source. For
every request it returns all configured sources ordered by
``(healthy desc, priority desc)``: unhealthy sources are demoted, never
excluded, since a degraded provider may still be the only one with data.

Health state changes in two ways:
- Availability sweeps (``refresh_health`` / ``refresh_if_stale``) probe each
  source's ``is_available()`` under a timeout; a failing or hanging probe marks
  the source unhealthy instead of raising.
- ``mark_unhealthy`` is called by the aggregator after an observed fetch
  failure or timeout.

All reads and writes of the health map go through a lock so concurrent requests
never observe a partially updated entry; concurrent writers are last-writer-wins.
"""
import asyncio
import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from .metrics import AggregationMetrics
from .models import utcnow
from .sources import SourceClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceHealthState:
    """Health flag of one source and when it was last set."""
    healthy: bool = True
    last_checked_at: Optional[datetime] = None
    reason: Optional[str] = None


class SourceRouter:
    """Returns a prioritized, health-ordered candidate list for each request."""

    def __init__(
        self,
        clients: Iterable[SourceClient],
        health_check_interval_sec: float = 10 * 60,
        health_check_timeout_sec: float = 5.0,
        clock: Callable[[], datetime] = utcnow,
        log: Optional[logging.Logger] = None,
        metrics: Optional[AggregationMetrics] = None,
    ):
        """
        Initialize the router.

        Args:
            clients: Source clients; sorted by priority (higher first)
            health_check_interval_sec: Age after which a source's health is re-probed
            health_check_timeout_sec: Timeout around each ``is_available()`` call
            clock: Returns the current aware UTC datetime
            log: Logger to use instead of the module logger
            metrics: Optional metrics sink for the source health gauge
        """
        self._sources: List[SourceClient] = sorted(clients, key=lambda c: c.priority, reverse=True)
        self.health_check_interval_sec = health_check_interval_sec
        self.health_check_timeout_sec = health_check_timeout_sec
        self.clock = clock
        self.log = log or logger
        self.metrics = metrics

        self._lock = threading.Lock()
        self._health: Dict[str, SourceHealthState] = {
            source.name: SourceHealthState() for source in self._sources
        }

        self.log.info(
            f"Source router initialized with {len(self._sources)} sources: "
            f"{', '.join(f'{s.name}({s.priority})' for s in self._sources)}"
        )

    @property
    def sources(self) -> List[SourceClient]:
        return list(self._sources)

    def _set_health(self, source_name: str, healthy: bool, reason: Optional[str] = None) -> None:
        with self._lock:
            self._health[source_name] = SourceHealthState(
                healthy=healthy, last_checked_at=self.clock(), reason=reason
            )
        if self.metrics is not None:
            self.metrics.set_source_health(source_name, healthy)

    def get_health_state(self, source_name: str) -> Optional[SourceHealthState]:
        with self._lock:
            state = self._health.get(source_name)
            return replace(state) if state is not None else None

    def get_health_status(self) -> Dict[str, bool]:
        """Snapshot of ``source name -> healthy``."""
        with self._lock:
            return {source.name: self._health[source.name].healthy for source in self._sources}

    def mark_unhealthy(self, source_name: str, reason: Optional[str] = None) -> None:
        """Flag a source unhealthy after an observed failure. Idempotent."""
        if source_name not in self._health:
            self.log.warning(f"Ignoring health update for unknown source: {source_name}")
            return
        self.log.warning(f"Marking source as unhealthy: {source_name}")
        self._set_health(source_name, False, reason)

    def needs_refresh(self, source_name: str) -> bool:
        state = self.get_health_state(source_name)
        if state is None or state.last_checked_at is None:
            return True
        age = (self.clock() - state.last_checked_at).total_seconds()
        return age > self.health_check_interval_sec

    async def check_source(self, source: SourceClient) -> bool:
        """Probe one source and record the result; never raises on probe failure."""
        try:
            healthy = bool(
                await asyncio.wait_for(source.is_available(), timeout=self.health_check_timeout_sec)
            )
            reason = None if healthy else "availability check returned false"
        except asyncio.TimeoutError:
            healthy = False
            reason = f"availability check timed out after {self.health_check_timeout_sec:g}s"
        except Exception as e:
            healthy = False
            reason = f"availability check error: {e}"

        if not healthy:
            self.log.warning(f"Health check failed for {source.name}: {reason}")
        self._set_health(source.name, healthy, reason)
        return healthy

    async def refresh_health(self, force: bool = True) -> Dict[str, bool]:
        """
        Re-probe source availability.

        Args:
            force: Probe every source; otherwise only those whose last check is
                older than the health-check interval

        Returns:
            Health snapshot after the sweep
        """
        due = [s for s in self._sources if force or self.needs_refresh(s.name)]
        if due:
            self.log.debug(f"Refreshing health for: {', '.join(s.name for s in due)}")
            await asyncio.gather(*(self.check_source(s) for s in due))
        return self.get_health_status()

    async def refresh_if_stale(self) -> Dict[str, bool]:
        return await self.refresh_health(force=False)

    async def get_sources(self, request_key: Optional[str] = None) -> List[SourceClient]:
        """
        Get the prioritized candidate list for a request.

        Health is refreshed first for sources whose last check is stale.

        Args:
            request_key: Subject key of the request, used for logging

        Returns:
            All configured sources, healthy first, then by priority
        """
        status = await self.refresh_if_stale()
        ordered = sorted(
            self._sources,
            key=lambda s: (0 if status.get(s.name, True) else 1, -s.priority),
        )
        demoted = [s.name for s in ordered if not status.get(s.name, True)]
        if demoted:
            self.log.info(f"Deprioritizing unhealthy sources for {request_key}: {', '.join(demoted)}")
        self.log.debug(
            f"Selected {len(ordered)} sources for {request_key}: {', '.join(s.name for s in ordered)}"
        )
        return ordered
