"""
Alternative Generator Service - One-Field Variations of a Campaign Setup

Given the current setup (a ProjectionQuery) and a target metric, this module
varies one field at a time, projects the target metric for each variant with
the same matching and prediction pipeline as project_field, and ranks the
variants by expected improvement over the current setup.

Variations:
- timing: best weekday (moves dispatchDate) and best time slot (moves
  dispatchTime), from per-weekday / per-slot means of the records sharing the
  current setup's dimensions
- channel, offer, journey: every other value observed in the business unit
  (the setup must name businessUnit and segment)
- segment: every other segment observed in the business unit (the setup must
  name businessUnit)

Gating:
- The current setup must have a projection from history; otherwise there is
  nothing to improve on and no alternative is offered.
- A new value (weekday, time slot) needs min_alternative_sample records
  carrying it and the metric.
- The improvement must exceed the type's threshold: timing 2%, channel 2%,
  offer 3%, segment 3%, journey 5%.

Improvement is relative: (expected - baseline) / baseline * 100, sign flipped
for cost metrics where lower is better. For timing the baseline is the mean
over every weekday (or slot) and the expected value scales the current
projection by the best bucket's multiplier.

Expected gains are associations observed in historical campaigns, not
guaranteed effects.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence, Tuple, Union

import pandas as pd

from campaign_projection.core.config import ProjectionSettings, get_settings
from campaign_projection.models.enums import (
    AlternativeType,
    Dimension,
    ProjectableMetric,
    ProjectionMethod,
    RiskLevel,
)
from campaign_projection.models.schemas import Alternative, FieldProjection, ProjectionQuery
from campaign_projection.services.data_processor import (
    DAY_OF_WEEK_FEATURE,
    TIME_SLOT_FEATURE,
    ProcessedRecord,
    get_time_slot,
    parse_dispatch_date,
    parse_hour,
)
from campaign_projection.services.explanation import format_metric_value
from campaign_projection.services.prediction import project_metric, select_query_population
from campaign_projection.services.similarity import (
    EXACT_MATCH_SCORE,
    MatchGroup,
    compare_values,
    find_similar_records,
    select_best_match_group,
)

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

# Minimum relative improvement (percent) before an alternative is offered
IMPROVEMENT_THRESHOLDS: Dict[AlternativeType, float] = {
    AlternativeType.TIMING: 2.0,
    AlternativeType.CHANNEL: 2.0,
    AlternativeType.OFFER: 3.0,
    AlternativeType.SEGMENT: 3.0,
    AlternativeType.JOURNEY: 5.0,
}

LOWER_IS_BETTER = frozenset({ProjectableMetric.TOTAL_COST, ProjectableMetric.CAC})

HISTORICAL_METHODS = frozenset({
    ProjectionMethod.WEIGHTED_SIMILARITY,
    ProjectionMethod.POPULATION_AVERAGE,
})

TIMING_CONFIDENCE_CAP: int = 85

# Indexed by the dayOfWeek feature (Sunday = 0)
DAY_NAMES: Tuple[str, ...] = (
    "Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday",
)

# Representative dispatch time proposed for each time slot
SLOT_TIMES: Dict[str, str] = {
    "morning": "09:00",
    "afternoon": "14:00",
    "night": "19:00",
}


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class DimensionVariation:
    """A categorical field varied by the generator and the fields it needs."""
    type: AlternativeType
    dimension: Dimension
    requires: Tuple[Dimension, ...]


DIMENSION_VARIATIONS: Tuple[DimensionVariation, ...] = (
    DimensionVariation(AlternativeType.CHANNEL, Dimension.CHANNEL,
                       (Dimension.BUSINESS_UNIT, Dimension.SEGMENT)),
    DimensionVariation(AlternativeType.OFFER, Dimension.OFFER,
                       (Dimension.BUSINESS_UNIT, Dimension.SEGMENT)),
    DimensionVariation(AlternativeType.JOURNEY, Dimension.JOURNEY,
                       (Dimension.BUSINESS_UNIT, Dimension.SEGMENT)),
    DimensionVariation(AlternativeType.SEGMENT, Dimension.SEGMENT,
                       (Dimension.BUSINESS_UNIT,)),
)


@dataclass
class TemporalBucket:
    """Best weekday or time slot of a record population."""
    key: Union[int, str]
    mean: float
    count: int
    overall_mean: float

    @property
    def multiplier(self) -> float:
        return self.mean / self.overall_mean


# =============================================================================
# HELPERS
# =============================================================================

def calculate_improvement(baseline: float, expected: float, metric: ProjectableMetric) -> float:
    """
    Relative improvement in percent; positive means better.

    Example:
        >>> calculate_improvement(5.0, 10.0, ProjectableMetric.CONVERSION_RATE)
        100.0
        >>> calculate_improvement(4.0, 3.0, ProjectableMetric.CAC)
        25.0
    """
    if baseline <= 0:
        return 0.0
    change = (expected - baseline) / baseline * 100.0
    return -change if metric in LOWER_IS_BETTER else change


def determine_risk_level(sample_size: int) -> RiskLevel:
    if sample_size >= 10:
        return RiskLevel.LOW
    if sample_size >= 5:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


def normalized_id(value: str) -> str:
    return "-".join(value.lower().split())


def _is_historical(projection: FieldProjection) -> bool:
    return projection.method in HISTORICAL_METHODS and projection.projectedValue > 0


def _same_value(record_value: Optional[str], query_value: str) -> bool:
    return bool(record_value) and compare_values(query_value, record_value) == EXACT_MATCH_SCORE


def _select_group(
    records: Sequence[ProcessedRecord],
    query: ProjectionQuery,
    settings: ProjectionSettings
) -> MatchGroup:
    matches = find_similar_records(records, query, settings)
    return select_best_match_group(matches, settings.min_sample_size)


def observed_values(
    records: Sequence[ProcessedRecord],
    dimension: Dimension,
    business_unit: Optional[str] = None
) -> Dict[str, str]:
    """Normalized value -> first raw spelling, for every value seen in the business unit."""
    values: Dict[str, str] = {}
    for record in records:
        if business_unit and not _same_value(record.feature(Dimension.BUSINESS_UNIT), business_unit):
            continue
        normalized = record.feature(dimension)
        raw = record.source.dimension_value(dimension)
        if normalized and raw:
            values.setdefault(normalized, raw)
    return values


def _support(
    records: Sequence[ProcessedRecord],
    dimension: Dimension,
    value: str,
    business_unit: str,
    metric: ProjectableMetric
) -> int:
    return sum(
        1 for r in records
        if r.feature(dimension) == value
        and _same_value(r.feature(Dimension.BUSINESS_UNIT), business_unit)
        and (r.metrics.get(metric) or 0) > 0
    )


def best_temporal_bucket(
    records: Sequence[ProcessedRecord],
    feature: str,
    metric: ProjectableMetric,
    min_sample: int
) -> Optional[TemporalBucket]:
    """
    Weekday or time slot with the best mean of the metric.

    Only buckets with at least `min_sample` records compete; ties go to the
    smallest key.
    """
    rows = [
        (r.features[feature], r.metrics[metric])
        for r in records
        if feature in r.features and (r.metrics.get(metric) or 0) > 0
    ]
    if not rows:
        return None

    frame = pd.DataFrame(rows, columns=["bucket", "value"])
    overall = float(frame["value"].mean())
    buckets = frame.groupby("bucket", sort=True)["value"].agg(["mean", "count"])
    buckets = buckets[buckets["count"] >= min_sample]
    if buckets.empty or overall <= 0:
        return None

    ranked = buckets["mean"].sort_values(ascending=metric in LOWER_IS_BETTER, kind="mergesort")
    key = ranked.index[0]
    row = buckets.loc[key]
    return TemporalBucket(
        key=key if isinstance(key, str) else int(key),
        mean=float(row["mean"]),
        count=int(row["count"]),
        overall_mean=overall,
    )


# =============================================================================
# TIMING ALTERNATIVES
# =============================================================================

def generate_weekday_alternative(
    population: Sequence[ProcessedRecord],
    query: ProjectionQuery,
    metric: ProjectableMetric,
    baseline: FieldProjection,
    reference_date: date,
    settings: ProjectionSettings
) -> Optional[Alternative]:
    """Move the dispatch date to the next occurrence of the best weekday."""
    bucket = best_temporal_bucket(population, DAY_OF_WEEK_FEATURE, metric, settings.min_alternative_sample)
    if bucket is None:
        return None

    improvement = calculate_improvement(bucket.overall_mean, bucket.mean, metric)
    if improvement <= IMPROVEMENT_THRESHOLDS[AlternativeType.TIMING]:
        return None

    current = parse_dispatch_date(query.dispatchDate) or reference_date
    current_weekday = (current.weekday() + 1) % 7
    days_ahead = (bucket.key - current_weekday) % 7
    if days_ahead == 0:
        return None

    day_name = DAY_NAMES[bucket.key]
    new_date = (current + timedelta(days=days_ahead)).isoformat()
    expected = baseline.projectedValue * bucket.multiplier

    return Alternative(
        id=f"timing-{day_name.lower()}",
        type=AlternativeType.TIMING,
        title=f"Dispatch on {day_name}",
        description=f"{day_name} dispatches show {improvement:.0f}% better {metric.label}",
        changedField="dispatchDate",
        previousValue=current.isoformat() if query.dispatchDate else None,
        newValue=new_date,
        improvementPercent=round(improvement, 2),
        metric=metric,
        baselineValue=baseline.projectedValue,
        expectedValue=round(expected, 2),
        confidence=min(baseline.confidence, TIMING_CONFIDENCE_CAP),
        riskLevel=determine_risk_level(bucket.count),
        sampleSize=bucket.count,
        appliedChanges={"dispatchDate": new_date},
        reason=(
            f"{day_name} averaged {format_metric_value(bucket.mean, metric)} over {bucket.count} "
            f"similar dispatches vs {format_metric_value(bucket.overall_mean, metric)} overall"
        ),
    )


def generate_time_slot_alternative(
    population: Sequence[ProcessedRecord],
    query: ProjectionQuery,
    metric: ProjectableMetric,
    baseline: FieldProjection,
    settings: ProjectionSettings
) -> Optional[Alternative]:
    """Move the dispatch time into the best time slot."""
    bucket = best_temporal_bucket(population, TIME_SLOT_FEATURE, metric, settings.min_alternative_sample)
    if bucket is None:
        return None

    improvement = calculate_improvement(bucket.overall_mean, bucket.mean, metric)
    if improvement <= IMPROVEMENT_THRESHOLDS[AlternativeType.TIMING]:
        return None

    hour = parse_hour(query.dispatchTime)
    if hour is not None and get_time_slot(hour) == bucket.key:
        return None

    new_time = SLOT_TIMES[bucket.key]
    expected = baseline.projectedValue * bucket.multiplier

    return Alternative(
        id=f"timing-{bucket.key}",
        type=AlternativeType.TIMING,
        title=f"Dispatch in the {bucket.key}",
        description=f"{bucket.key.capitalize()} dispatches show {improvement:.0f}% better {metric.label}",
        changedField="dispatchTime",
        previousValue=query.dispatchTime,
        newValue=new_time,
        improvementPercent=round(improvement, 2),
        metric=metric,
        baselineValue=baseline.projectedValue,
        expectedValue=round(expected, 2),
        confidence=min(baseline.confidence, TIMING_CONFIDENCE_CAP),
        riskLevel=determine_risk_level(bucket.count),
        sampleSize=bucket.count,
        appliedChanges={"dispatchTime": new_time},
        reason=(
            f"{bucket.key.capitalize()} dispatches averaged {format_metric_value(bucket.mean, metric)} "
            f"over {bucket.count} similar campaigns vs {format_metric_value(bucket.overall_mean, metric)} overall"
        ),
    )


# =============================================================================
# DIMENSION ALTERNATIVES
# =============================================================================

def generate_dimension_alternative(
    records: Sequence[ProcessedRecord],
    query: ProjectionQuery,
    metric: ProjectableMetric,
    baseline: FieldProjection,
    variation: DimensionVariation,
    settings: ProjectionSettings
) -> Optional[Alternative]:
    """
    Best other observed value of one categorical field.

    Each candidate value is projected with the full query (only the varied
    field changed); the best projection wins when it clears the threshold.
    """
    specified = query.specified_dimensions()
    if any(d not in specified for d in variation.requires):
        return None

    dimension = variation.dimension
    current = specified.get(dimension)
    business_unit = specified[Dimension.BUSINESS_UNIT]

    best: Optional[Tuple[float, str, FieldProjection, int]] = None
    for normalized, raw in sorted(observed_values(records, dimension, business_unit).items()):
        if current and compare_values(current, normalized) == EXACT_MATCH_SCORE:
            continue
        support = _support(records, dimension, normalized, business_unit, metric)
        if support < settings.min_alternative_sample:
            continue

        variant = query.model_copy(update={dimension.value: raw})
        projection = project_metric(metric, _select_group(records, variant, settings), variant, settings)
        if not _is_historical(projection):
            continue

        improvement = calculate_improvement(baseline.projectedValue, projection.projectedValue, metric)
        if best is None or improvement > best[0]:
            best = (improvement, raw, projection, support)

    if best is None or best[0] <= IMPROVEMENT_THRESHOLDS[variation.type]:
        return None

    improvement, raw, projection, support = best
    field_name = dimension.value
    return Alternative(
        id=f"{variation.type.value}-{normalized_id(raw)}",
        type=variation.type,
        title=f"Switch {field_name} to {raw}",
        description=f"{raw} projects {improvement:.0f}% better {metric.label} than {current or 'the current setup'}",
        changedField=field_name,
        previousValue=current,
        newValue=raw,
        improvementPercent=round(improvement, 2),
        metric=metric,
        baselineValue=baseline.projectedValue,
        expectedValue=projection.projectedValue,
        confidence=projection.confidence,
        riskLevel=determine_risk_level(support),
        sampleSize=support,
        appliedChanges={field_name: raw},
        reason=(
            f"{support} campaigns with {field_name} {raw} project "
            f"{format_metric_value(projection.projectedValue, metric)} vs "
            f"{format_metric_value(baseline.projectedValue, metric)}"
        ),
    )


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

def generate_alternatives(
    records: Sequence[ProcessedRecord],
    query: ProjectionQuery,
    metric: ProjectableMetric = ProjectableMetric.CONVERSION_RATE,
    settings: Optional[ProjectionSettings] = None,
    reference_date: Optional[date] = None,
    max_alternatives: Optional[int] = None
) -> List[Alternative]:
    """
    Rank one-field variations of a campaign setup by expected improvement.

    Args:
        records: Processed historical records
        query: Current setup
        metric: Metric the alternatives are ranked on
        settings: Engine settings
        reference_date: Date used when the setup has no dispatchDate
        max_alternatives: Cap on the result (defaults to settings.max_alternatives)

    Returns:
        Alternatives sorted by improvementPercent descending (id breaks ties);
        empty when the current setup has no projection from history
    """
    settings = settings or get_settings()
    # Attribution is not needed to rank variants
    settings = settings.model_copy(update={"enable_causal_analysis": False})
    reference_date = reference_date or date.today()

    group = _select_group(records, query, settings)
    baseline = project_metric(metric, group, query, settings)
    if not _is_historical(baseline):
        logger.debug(f"No historical {metric.value} projection for the current setup; no alternatives")
        return []

    population = select_query_population(group, query, metric, settings).records

    candidates = [
        generate_weekday_alternative(population, query, metric, baseline, reference_date, settings),
        generate_time_slot_alternative(population, query, metric, baseline, settings),
    ]
    candidates.extend(
        generate_dimension_alternative(records, query, metric, baseline, variation, settings)
        for variation in DIMENSION_VARIATIONS
    )

    alternatives = [a for a in candidates if a is not None]
    alternatives.sort(key=lambda a: (-a.improvementPercent, a.id))

    limit = max_alternatives or settings.max_alternatives
    logger.debug(
        f"{len(alternatives)} alternatives for {metric.value} "
        f"(baseline {baseline.projectedValue}); returning {min(limit, len(alternatives))}"
    )
    return alternatives[:limit]
