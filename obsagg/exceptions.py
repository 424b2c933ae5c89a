"""
Exception classes for the observation aggregator.

The engine raises a small hierarchy of exceptions so that callers can handle
request-level failures in one place. Catch ``AggregationError`` to handle every
engine failure, or catch specific subclasses for finer control.

Per-source failures (timeouts, client errors) never reach the caller of
``aggregate()`` individually: they are absorbed into routing health and only
surface as ``AllSourcesFailed`` when no source produced data.

Typical usage:
    >>> from obsagg import WeatherAggregator, AllSourcesFailed, NoSourcesAvailable
    >>> try:
    ...     result = await aggregator.get_weather_data(identifier)
    ... except NoSourcesAvailable:
    ...     print("No weather providers configured")
    ... except AllSourcesFailed:
    ...     print("Every provider failed, retry later")
"""
from typing import Optional


class AggregationError(Exception):
    """Base exception for aggregation failures.

    ``subject_key`` identifies the logical request (airport code, flight number
    or coordinate string) the failure belongs to, when known.
    """

    def __init__(self, message: str, subject_key: Optional[str] = None):
        super().__init__(message)
        self.subject_key = subject_key


class NoSourcesAvailable(AggregationError):
    """The source router returned no candidate sources for the request."""
    pass


class AllSourcesFailed(AggregationError):
    """Candidates existed but every fetch failed, timed out or returned no data."""

    def __init__(self, message: str, subject_key: Optional[str] = None, attempted: int = 0):
        super().__init__(message, subject_key)
        self.attempted = attempted


class SourceTimeout(AggregationError):
    """A single source did not answer within its per-source timeout."""

    def __init__(self, source_name: str, timeout_sec: float, subject_key: Optional[str] = None):
        super().__init__(
            f"{source_name} request timeout after {timeout_sec:g}s", subject_key
        )
        self.source_name = source_name
        self.timeout_sec = timeout_sec


class CacheWriteFailure(AggregationError):
    """Writing a merged observation to the cache store failed."""
    pass


class MergeContractViolation(AggregationError, ValueError):
    """The conflict resolver was called with zero observations.

    This indicates a bug in the caller, not a recoverable runtime condition.
    """
    pass


class PolicyDataError(AggregationError):
    """Mandatory flight data for a policy request could not be collected."""
    pass


class SourceClientError(AggregationError):
    """An HTTP source client received a non-success response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SourceAuthenticationError(SourceClientError):
    """The provider rejected the API key (HTTP 401/403)."""
    pass


class SourceRateLimitError(SourceClientError):
    """The provider rate limit was exceeded (HTTP 429)."""
    pass


class SourceNotFoundError(SourceClientError):
    """The provider has no resource for the requested subject (HTTP 404)."""
    pass
