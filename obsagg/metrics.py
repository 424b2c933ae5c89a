"""
Prometheus metrics collection for the observation aggregator.

Each ``AggregationMetrics`` instance owns its collectors. Pass a shared
``CollectorRegistry`` to expose them from a service; the default is a private
registry per instance so that several aggregators (and tests) can coexist
without duplicate-registration errors.
"""
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram


class AggregationMetrics:
    """Counters, gauges and histograms for aggregation requests and sources."""

    def __init__(self, registry: Optional[CollectorRegistry] = None, namespace: str = "obsagg"):
        self.registry = registry if registry is not None else CollectorRegistry()

        # Counters
        self.requests_total = Counter(
            'aggregation_requests_total',
            'Total aggregation requests by outcome',
            ['aggregator', 'outcome'],
            namespace=namespace,
            registry=self.registry
        )

        self.cache_lookups_total = Counter(
            'cache_lookups_total',
            'Cache lookups by result (hit, miss, stale)',
            ['aggregator', 'result'],
            namespace=namespace,
            registry=self.registry
        )

        self.source_fetches_total = Counter(
            'source_fetches_total',
            'Source fetches by outcome (success, empty, error, timeout)',
            ['aggregator', 'source', 'outcome'],
            namespace=namespace,
            registry=self.registry
        )

        self.conflicts_resolved_total = Counter(
            'conflicts_resolved_total',
            'Field conflicts resolved during merges',
            ['aggregator'],
            namespace=namespace,
            registry=self.registry
        )

        self.cache_write_failures_total = Counter(
            'cache_write_failures_total',
            'Cache writes that failed and were skipped',
            ['aggregator'],
            namespace=namespace,
            registry=self.registry
        )

        # Gauges
        self.source_health = Gauge(
            'source_health',
            'Source health flag (1=healthy, 0=unhealthy)',
            ['source'],
            namespace=namespace,
            registry=self.registry
        )

        # Histograms
        self.quality_score = Histogram(
            'quality_score',
            'Quality score of aggregated observations',
            ['aggregator'],
            buckets=(0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0),
            namespace=namespace,
            registry=self.registry
        )

        self.processing_latency = Histogram(
            'processing_latency_seconds',
            'End-to-end aggregation latency',
            ['aggregator', 'from_cache'],
            namespace=namespace,
            registry=self.registry
        )

        self.source_latency = Histogram(
            'source_latency_seconds',
            'Latency of individual source fetches',
            ['aggregator', 'source'],
            namespace=namespace,
            registry=self.registry
        )

    def record_request(self, aggregator: str, outcome: str) -> None:
        self.requests_total.labels(aggregator=aggregator, outcome=outcome).inc()

    def record_cache_lookup(self, aggregator: str, result: str) -> None:
        self.cache_lookups_total.labels(aggregator=aggregator, result=result).inc()

    def record_source_fetch(self, aggregator: str, source: str, outcome: str, latency_sec: float) -> None:
        self.source_fetches_total.labels(aggregator=aggregator, source=source, outcome=outcome).inc()
        self.source_latency.labels(aggregator=aggregator, source=source).observe(latency_sec)

    def record_resolution(self, aggregator: str, conflicts: int, quality_score: float) -> None:
        if conflicts:
            self.conflicts_resolved_total.labels(aggregator=aggregator).inc(conflicts)
        self.quality_score.labels(aggregator=aggregator).observe(quality_score)

    def record_cache_write_failure(self, aggregator: str) -> None:
        self.cache_write_failures_total.labels(aggregator=aggregator).inc()

    def record_latency(self, aggregator: str, from_cache: bool, seconds: float) -> None:
        self.processing_latency.labels(
            aggregator=aggregator, from_cache=str(from_cache).lower()
        ).observe(seconds)

    def set_source_health(self, source: str, healthy: bool) -> None:
        self.source_health.labels(source=source).set(1 if healthy else 0)
