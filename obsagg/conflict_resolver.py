"""
Conflict resolution between observations of the same subject.

When the aggregator receives the same observation from two or more providers
their values may disagree (one says 20.0C, another 24.0C; one says CLEAR,
another PARTLY_CLOUDY). The resolver merges them field by field:

1. The first observation is the structural base.
2. For each mergeable field of the profile, values are collected from every
   observation where the field is set, weighted by the static reliability of
   that observation's primary source.
3. Agreeing values are taken as-is. Disagreeing numeric fields are blended
   with a confidence-weighted average; disagreeing categorical fields take the
   highest-confidence value (ties keep input order).
4. Source contributions are deduplicated per source (highest confidence wins)
   and sorted by confidence.

Quality
-------
Per-observation score: weighted completeness (required fields count double)
plus ``0.1 * confidence`` per contribution, clamped to [0, 1].

Overall score: mean per-input score, minus a conflict penalty capped at 0.3,
plus a multi-source bonus capped at 0.1, clamped to [0, 1].
"""
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .exceptions import MergeContractViolation
from .models import (
    DEFAULT_SOURCE_CONFIDENCE,
    SOURCE_RELIABILITY_SCORES,
    CanonicalObservation,
    ConflictField,
    ConflictValue,
    ResolutionMethod,
    ResolutionResult,
    SourceContribution,
    utcnow,
)
from .profiles import FieldProfile, MergeField

logger = logging.getLogger(__name__)

SOURCE_BONUS_FACTOR = 0.1
CONFLICT_PENALTY_PER_FIELD = 0.05
MAX_CONFLICT_PENALTY = 0.3
MULTI_SOURCE_BONUS_PER_SOURCE = 0.02
MAX_MULTI_SOURCE_BONUS = 0.1


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _is_present(value: Any) -> bool:
    # Empty strings count as missing for every profile.
    return value is not None and value != ""


class ConflictResolver:
    """Merges N observations of one subject into a single canonical observation."""

    def __init__(
        self,
        profile: FieldProfile,
        reliability_scores: Optional[Mapping[str, float]] = None,
        default_confidence: float = DEFAULT_SOURCE_CONFIDENCE,
        clock: Callable = utcnow,
        log: Optional[logging.Logger] = None,
    ):
        """
        Initialize the resolver.

        Args:
            profile: Mergeable fields and quality rules for the observation type
            reliability_scores: Static source -> confidence table
            default_confidence: Confidence used for sources missing from the table
            clock: Returns the current aware UTC datetime
            log: Logger to use instead of the module logger
        """
        self.profile = profile
        self.reliability_scores = dict(
            SOURCE_RELIABILITY_SCORES if reliability_scores is None else reliability_scores
        )
        self.default_confidence = default_confidence
        self.clock = clock
        self.log = log or logger

    def source_confidence(self, source: str) -> float:
        return self.reliability_scores.get(source, self.default_confidence)

    def resolve(self, responses: Sequence[CanonicalObservation]) -> ResolutionResult:
        """
        Resolve conflicts between observations of the same subject.

        Args:
            responses: Observations in source-router order

        Returns:
            ResolutionResult with merged data, recorded conflicts and overall quality

        Raises:
            MergeContractViolation: If ``responses`` is empty
        """
        if not responses:
            raise MergeContractViolation("Cannot resolve conflicts with zero responses")

        if len(responses) == 1:
            only = responses[0]
            score = self.calculate_quality_score(only)
            self.log.debug(
                f"Single {self.profile.name} response from {only.primary_source}, nothing to resolve"
            )
            return ResolutionResult(
                resolved_data=only.model_copy(update={"data_quality_score": score}, deep=True),
                conflicts=[],
                quality_score=score,
            )

        conflicts: List[ConflictField] = []
        merged = self._merge(responses, conflicts)
        quality_score = self.calculate_overall_quality(responses, conflicts)

        self.log.info(
            f"Resolved {len(responses)} {self.profile.name} responses: "
            f"{len(conflicts)} conflicts, quality score {quality_score:.3f}"
        )
        return ResolutionResult(
            resolved_data=merged,
            conflicts=conflicts,
            quality_score=quality_score,
        )

    def _merge(
        self,
        responses: Sequence[CanonicalObservation],
        conflicts: List[ConflictField],
    ) -> CanonicalObservation:
        updates: Dict[str, Any] = {}

        for merge_field in self.profile.merge_fields:
            values = self.extract_field_values(responses, merge_field.name)
            if not values:
                continue
            if self.has_conflict(values):
                conflict = self.resolve_field_conflict(merge_field, values)
                conflicts.append(conflict)
                updates[merge_field.name] = conflict.resolved_value
            else:
                updates[merge_field.name] = values[0].value

        updates["source_contributions"] = self.merge_source_contributions(responses)
        updates["last_updated_utc"] = self.clock()

        merged = responses[0].model_copy(update=updates, deep=True)
        merged.data_quality_score = self.calculate_quality_score(merged)
        return merged

    def extract_field_values(
        self,
        responses: Sequence[CanonicalObservation],
        field_name: str,
    ) -> List[ConflictValue]:
        """Collect every set value of ``field_name`` with its source confidence."""
        values = []
        for response in responses:
            value = getattr(response, field_name, None)
            if value is None:
                continue
            source = response.primary_source
            values.append(
                ConflictValue(
                    source=source,
                    value=value,
                    confidence=self.source_confidence(source),
                    timestamp=response.last_updated_utc,
                )
            )
        return values

    @staticmethod
    def has_conflict(values: Sequence[ConflictValue]) -> bool:
        if len(values) <= 1:
            return False
        first = values[0].value
        return any(v.value != first for v in values[1:])

    def resolve_field_conflict(
        self,
        merge_field: MergeField,
        values: List[ConflictValue],
    ) -> ConflictField:
        """Resolve one conflicting field using the strategy its profile assigns."""
        if merge_field.strategy is ResolutionMethod.AVERAGE:
            total_confidence = sum(v.confidence for v in values)
            if total_confidence > 0:
                resolved = sum(v.value * v.confidence for v in values) / total_confidence
            else:
                resolved = values[0].value
        else:
            # sorted() is stable, so equal confidences keep input order
            ranked = sorted(values, key=lambda v: v.confidence, reverse=True)
            resolved = ranked[0].value

        self.log.debug(
            f"Conflict on {merge_field.name}: "
            f"{[(v.source, v.value) for v in values]} -> {resolved!r} ({merge_field.strategy.value})"
        )
        return ConflictField(
            field=merge_field.name,
            values=values,
            resolved_value=resolved,
            resolution_method=merge_field.strategy,
        )

    @staticmethod
    def merge_source_contributions(
        responses: Sequence[CanonicalObservation],
    ) -> List[SourceContribution]:
        """Keep the highest-confidence contribution per source, sorted by confidence."""
        best: Dict[str, SourceContribution] = {}
        for response in responses:
            for contribution in response.source_contributions:
                existing = best.get(contribution.source)
                if existing is None or contribution.confidence > existing.confidence:
                    best[contribution.source] = contribution
        return sorted(
            (c.model_copy() for c in best.values()),
            key=lambda c: c.confidence,
            reverse=True,
        )

    def calculate_quality_score(self, observation: CanonicalObservation) -> float:
        """Weighted completeness of one observation plus a source confidence bonus."""
        earned = 0
        possible = 0
        for name in self.profile.required_fields:
            possible += self.profile.required_weight
            if _is_present(getattr(observation, name, None)):
                earned += self.profile.required_weight
        for name in self.profile.important_fields:
            possible += self.profile.important_weight
            if _is_present(getattr(observation, name, None)):
                earned += self.profile.important_weight

        completeness = earned / possible if possible else 0.0
        source_bonus = sum(
            c.confidence * SOURCE_BONUS_FACTOR for c in observation.source_contributions
        )
        return _clamp(completeness + source_bonus)

    def calculate_overall_quality(
        self,
        responses: Sequence[CanonicalObservation],
        conflicts: Sequence[ConflictField],
    ) -> float:
        """Mean input quality, penalized for conflicts and rewarded for more sources."""
        average_quality = sum(self.calculate_quality_score(r) for r in responses) / len(responses)
        conflict_penalty = min(MAX_CONFLICT_PENALTY, len(conflicts) * CONFLICT_PENALTY_PER_FIELD)
        source_bonus = min(
            MAX_MULTI_SOURCE_BONUS, (len(responses) - 1) * MULTI_SOURCE_BONUS_PER_SOURCE
        )
        return _clamp(average_quality - conflict_penalty + source_bonus)
