"""
Prediction Engine Service - Metric Projection and Funnel Consistency

This module turns a selected match group into per-metric projections:
point estimate, confidence interval, method tag, confidence score, similar
campaign references and explanation.

Method selection:
- weighted_similarity: the group is exact/high and at least min_sample_size
  records carry the metric. Mean weighted by match score x temporal weight.
- population_average: otherwise. A 10% trimmed mean over the group records
  that share every dimension the query specifies. When that population is
  too small, the lowest-weight query dimension is dropped and the search
  repeats; with no dimensions left the whole group is used.

Confidence:
    base      = calculate_confidence_score(group, level)
    coverage  = +3 per query dimension every population record matches
                beyond the dimensions the level already requires (max +9)
    dispersion = -min(10, 10 * coefficient_of_variation)
    confidence = clip(base + coverage + dispersion, 0, 100)

Interval: value +/- z * sigma / sqrt(n), clipped to the metric's domain.

Metric ceilings: open rate is capped by channel (E-mail 50, SMS 80,
WhatsApp 90) and conversion rate at 20. With no CAC history and a known
channel, CAC is estimated from the channel unit cost (method derived).

Funnel consistency: after every metric is projected independently, the count
metrics are re-derived from the sent volume and the projected stage ratios so
that generated <= approvals <= proposals <= deliverable <= sent holds among
the stages that carry a projection. This is a repair step applied after
estimation, not during it. A stage with no history becomes a derived
projection with its own confidence; it is never left half-populated.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from campaign_projection.core.config import ProjectionSettings, get_settings
from campaign_projection.models.enums import (
    FUNNEL_STAGES,
    MATCH_LEVEL_REQUIREMENTS,
    Dimension,
    MatchLevel,
    MetricKind,
    ProjectableMetric,
    ProjectionMethod,
)
from campaign_projection.models.schemas import (
    CampaignReference,
    CausalAnalysisResult,
    FieldProjection,
    ProjectionInterval,
    ProjectionMetadata,
    ProjectionQuery,
)
from campaign_projection.services.causal_analysis import perform_causal_analysis
from campaign_projection.services.data_processor import (
    MetricStats,
    ProcessedRecord,
    calculate_metric_stats,
)
from campaign_projection.services.explanation import (
    derived_explanation,
    empty_explanation,
    generate_explanation,
    unit_cost_explanation,
    user_input_explanation,
)
from campaign_projection.services.similarity import (
    EXACT_MATCH_SCORE,
    MatchGroup,
    calculate_confidence_score,
    compare_values,
    comparison_key,
)

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

# Unit costs per dispatched message, keyed by comparison_key(channel)
CHANNEL_UNIT_COSTS: Dict[str, float] = {
    "email": 0.001,
    "push": 0.001,
    "sms": 0.064,
    "whatsapp": 0.420,
}
DEFAULT_CHANNEL_UNIT_COST: float = 0.01

# Unit costs per generated unit, keyed by comparison_key(offer)
OFFER_UNIT_COSTS: Dict[str, float] = {
    "padrao": 0.00,
    "limite": 1.00,
    "vibe": 2.00,
    "anuidade": 76.50,
}

# Stage ratios used when history carries no data for the stage
FALLBACK_APPROVAL_RATIO: float = 0.65
FALLBACK_FINALIZATION_RATIO: float = 0.85

# Confidence scale applied to a derived value that rests on a default assumption
ASSUMPTION_CONFIDENCE_FACTOR: float = 0.8

# Open rate ceilings (percentage points) by comparison_key(channel)
OPEN_RATE_CEILINGS: Dict[str, float] = {
    "email": 50.0,
    "sms": 80.0,
    "whatsapp": 90.0,
}
CONVERSION_RATE_CEILING: float = 20.0

# CAC estimate used when no record in the group carries a CAC
ASSUMED_CONVERSION: float = 0.02
DEFAULT_ESTIMATE_VOLUME: float = 10000.0
UNIT_COST_ESTIMATE_CONFIDENCE: int = 25

WEIGHTED_METHOD_LEVELS = frozenset({MatchLevel.EXACT, MatchLevel.HIGH})

COVERAGE_BONUS_PER_DIMENSION: float = 3.0
MAX_COVERAGE_BONUS: float = 9.0
MAX_DISPERSION_PENALTY: float = 10.0

# Relative interval half-width when a single observation gives no dispersion
SINGLE_OBSERVATION_MARGIN: float = 0.2

PROJECTION_VERSION: str = "2.0"


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class PopulationEstimate:
    """Records and statistics a projected value was computed from."""
    method: ProjectionMethod
    records: List[ProcessedRecord]
    stats: MetricStats
    value: float
    covered_dimensions: List[Dimension] = field(default_factory=list)


# =============================================================================
# VALUE DOMAIN HELPERS
# =============================================================================

def clip_to_domain(value: float, metric: ProjectableMetric) -> float:
    """Clip a value to the metric's valid range (rates [0, 100], others >= 0)."""
    if value is None or math.isnan(value):
        return 0.0
    if metric.kind is MetricKind.RATE:
        return min(100.0, max(0.0, value))
    return max(0.0, value)


def round_value(value: float, metric: ProjectableMetric) -> float:
    """Counts to whole units; rates and currency to 2 decimals."""
    if metric.kind is MetricKind.COUNT:
        return float(round(value))
    return round(value, 2)


def calculate_confidence_interval(
    value: float,
    stats: MetricStats,
    metric: ProjectableMetric,
    z: float = 1.96
) -> ProjectionInterval:
    """
    value +/- z * sigma / sqrt(n), clipped and rounded for the metric.

    A single observation has no dispersion estimate; its interval is
    +/- 20% of the value.
    """
    if stats.count >= 2:
        margin = z * stats.std_dev / math.sqrt(stats.count)
    else:
        margin = abs(value) * SINGLE_OBSERVATION_MARGIN

    low = round_value(clip_to_domain(value - margin, metric), metric)
    high = round_value(clip_to_domain(value + margin, metric), metric)
    return ProjectionInterval(min=low, max=max(low, high))


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# POPULATION SELECTION
# =============================================================================

def _matches_all(record: ProcessedRecord, dimensions: Dict[Dimension, str]) -> bool:
    for dimension, query_value in dimensions.items():
        record_value = record.feature(dimension)
        if not record_value or compare_values(query_value, record_value) != EXACT_MATCH_SCORE:
            return False
    return True


def _metric_count(records: Sequence[ProcessedRecord], metric: ProjectableMetric) -> int:
    return sum(1 for r in records if (r.metrics.get(metric) or 0) > 0)


def select_query_population(
    group: MatchGroup,
    query: ProjectionQuery,
    metric: ProjectableMetric,
    settings: ProjectionSettings
) -> PopulationEstimate:
    """
    Coarsest-adequate population sharing the query's specified dimensions.

    Dimensions are dropped lowest similarity weight first (declaration order
    breaks ties, later dimensions dropped first) until at least
    min_sample_size records carry the metric.
    """
    specified = query.specified_dimensions()
    order = {d: i for i, d in enumerate(specified)}
    active = sorted(specified, key=lambda d: (-settings.weight_for(d), order[d]))

    population = group.records
    while active:
        required = {d: specified[d] for d in active}
        candidate = [r for r in group.records if _matches_all(r, required)]
        if _metric_count(candidate, metric) >= settings.min_sample_size:
            population = candidate
            break
        active.pop()

    stats = calculate_metric_stats(population, metric)
    return PopulationEstimate(
        method=ProjectionMethod.POPULATION_AVERAGE,
        records=population,
        stats=stats,
        value=stats.trimmed_mean,
        covered_dimensions=list(active),
    )


def estimate_population(
    group: MatchGroup,
    query: ProjectionQuery,
    metric: ProjectableMetric,
    settings: ProjectionSettings
) -> PopulationEstimate:
    """Choose the projection method and compute the point estimate."""
    if group.level in WEIGHTED_METHOD_LEVELS:
        weights = [m.score * m.record.temporal_weight for m in group.matches]
        stats = calculate_metric_stats(group.records, metric, weights)
        if stats.count >= settings.min_sample_size:
            specified = query.specified_dimensions()
            covered = [
                d for d in specified
                if all(d in m.matched_dimensions for m in group.matches)
            ]
            return PopulationEstimate(
                method=ProjectionMethod.WEIGHTED_SIMILARITY,
                records=group.records,
                stats=stats,
                value=stats.weighted_mean,
                covered_dimensions=covered,
            )

    return select_query_population(group, query, metric, settings)


def calculate_projection_confidence(
    group: MatchGroup,
    estimate: PopulationEstimate
) -> int:
    """Group confidence adjusted for query coverage and metric dispersion."""
    base = calculate_confidence_score(group.matches, group.level)
    if base == 0:
        return 0

    required = MATCH_LEVEL_REQUIREMENTS[group.level]
    extra = [d for d in estimate.covered_dimensions if d not in required]
    coverage = min(MAX_COVERAGE_BONUS, COVERAGE_BONUS_PER_DIMENSION * len(extra))
    dispersion = min(MAX_DISPERSION_PENALTY, estimate.stats.coefficient_of_variation * 10.0)

    return int(round(min(100.0, max(0.0, base + coverage - dispersion))))


# =============================================================================
# PROJECTIONS
# =============================================================================

def create_empty_projection(
    metric: ProjectableMetric,
    computed_at: Optional[datetime] = None
) -> FieldProjection:
    """The defined zero-confidence projection used when no data is available."""
    return FieldProjection(
        field=metric,
        projectedValue=0.0,
        confidence=0,
        interval=ProjectionInterval(min=0.0, max=0.0),
        method=ProjectionMethod.FALLBACK,
        explanation=empty_explanation(metric),
        similarCampaigns=[],
        metadata=ProjectionMetadata(computedAt=computed_at or _now(), version=PROJECTION_VERSION),
    )


def create_user_input_projection(
    metric: ProjectableMetric,
    value: float,
    computed_at: Optional[datetime] = None
) -> FieldProjection:
    """Projection echoing a caller-supplied value."""
    value = round_value(clip_to_domain(value, metric), metric)
    return FieldProjection(
        field=metric,
        projectedValue=value,
        confidence=100 if value > 0 else 0,
        interval=ProjectionInterval(min=value, max=value),
        method=ProjectionMethod.USER_INPUT,
        explanation=user_input_explanation(metric, value),
        similarCampaigns=[],
        metadata=ProjectionMetadata(computedAt=computed_at or _now(), version=PROJECTION_VERSION),
    )


def estimate_cac_from_unit_cost(
    query: ProjectionQuery,
    computed_at: Optional[datetime] = None
) -> FieldProjection:
    """
    CAC estimate for a channel with no CAC history.

    cac = channel unit cost x volume / max(1, volume x 2%), with volume the
    query's baseVolume (10,000 when absent). Interval is +/- 20%.
    """
    metric = ProjectableMetric.CAC
    volume = query.baseVolume or DEFAULT_ESTIMATE_VOLUME
    channel_cost = _unit_cost(CHANNEL_UNIT_COSTS, query.channel, DEFAULT_CHANNEL_UNIT_COST)
    value = round_value(channel_cost * volume / max(1.0, volume * ASSUMED_CONVERSION), metric)
    margin = value * SINGLE_OBSERVATION_MARGIN

    return FieldProjection(
        field=metric,
        projectedValue=value,
        confidence=UNIT_COST_ESTIMATE_CONFIDENCE,
        interval=ProjectionInterval(
            min=round_value(clip_to_domain(value - margin, metric), metric),
            max=round_value(value + margin, metric),
        ),
        method=ProjectionMethod.DERIVED,
        explanation=unit_cost_explanation(metric, query.channel, ASSUMED_CONVERSION),
        similarCampaigns=[],
        metadata=ProjectionMetadata(computedAt=computed_at or _now(), version=PROJECTION_VERSION),
    )


def _projection_without_history(
    metric: ProjectableMetric,
    query: ProjectionQuery,
    computed_at: datetime
) -> FieldProjection:
    if metric is ProjectableMetric.CAC and query.channel:
        return estimate_cac_from_unit_cost(query, computed_at)
    return create_empty_projection(metric, computed_at)


def metric_ceiling(metric: ProjectableMetric, query: ProjectionQuery) -> Optional[float]:
    """
    Upper bound on a projected value beyond the metric's domain.

    Open rate is capped per channel (E-mail 50, SMS 80, WhatsApp 90) and
    conversion rate at 20 percentage points.
    """
    if metric is ProjectableMetric.OPEN_RATE and query.channel:
        return OPEN_RATE_CEILINGS.get(comparison_key(query.channel))
    if metric is ProjectableMetric.CONVERSION_RATE:
        return CONVERSION_RATE_CEILING
    return None


def apply_metric_ceiling(
    value: float,
    interval: ProjectionInterval,
    metric: ProjectableMetric,
    query: ProjectionQuery
) -> Tuple[float, ProjectionInterval]:
    """Clamp an estimated value and its interval to the metric's ceiling."""
    ceiling = metric_ceiling(metric, query)
    if ceiling is None:
        return value, interval

    if value > ceiling:
        logger.debug(f"{metric.value}: {value} capped at {ceiling}")
        value = ceiling
    return value, ProjectionInterval(min=min(interval.min, value), max=min(interval.max, ceiling))


def extract_similar_campaigns(
    group: MatchGroup,
    metric: ProjectableMetric,
    limit: int
) -> List[CampaignReference]:
    """Top matches of the group as reference campaigns."""
    ranked = sorted(group.matches, key=lambda m: m.score, reverse=True)
    return [
        CampaignReference(
            id=match.record.id,
            name=match.record.name,
            dispatchDate=match.record.dispatch_date,
            metricValue=match.record.metrics.get(metric),
            similarityScore=match.score,
        )
        for match in ranked[:limit]
    ]


def project_metric(
    metric: ProjectableMetric,
    group: MatchGroup,
    query: ProjectionQuery,
    settings: Optional[ProjectionSettings] = None,
    causal: Optional[CausalAnalysisResult] = None,
    computed_at: Optional[datetime] = None
) -> FieldProjection:
    """
    Project one metric from a selected match group.

    Args:
        metric: Metric to project
        group: Selected match group (see select_best_match_group)
        query: Projection query
        settings: Engine settings
        causal: Precomputed causal analysis for this metric and group; run
            here when omitted and causal analysis is enabled
        computed_at: Timestamp stamped on the result

    Returns:
        The full FieldProjection, or the empty projection when the group is
        empty or no record in it carries the metric
    """
    settings = settings or get_settings()
    computed_at = computed_at or _now()

    if not group.matches:
        logger.debug(f"{metric.value}: no matches available")
        return _projection_without_history(metric, query, computed_at)

    estimate = estimate_population(group, query, metric, settings)
    if estimate.stats.count == 0:
        logger.debug(f"{metric.value}: no record in the {group.level.value} group carries the metric")
        return _projection_without_history(metric, query, computed_at)

    value = round_value(clip_to_domain(estimate.value, metric), metric)
    interval = calculate_confidence_interval(value, estimate.stats, metric, settings.confidence_z)
    value, interval = apply_metric_ceiling(value, interval, metric, query)
    confidence = calculate_projection_confidence(group, estimate)

    if causal is None and settings.enable_causal_analysis:
        causal = perform_causal_analysis(group.records, metric, query, settings)
    causal_factors = causal.causalFactors if causal is not None else []
    correlations = causal.correlations if causal is not None else {}

    explanation = generate_explanation(
        metric,
        estimate.stats.count,
        group.level,
        causal_factors,
        estimate.stats,
        settings,
        correlations,
    )

    logger.debug(
        f"{metric.value}: level={group.level.value}, group={len(group)}, "
        f"population={estimate.stats.count}, method={estimate.method.value}, "
        f"value={value}, confidence={confidence}"
    )

    return FieldProjection(
        field=metric,
        projectedValue=value,
        confidence=confidence,
        interval=interval,
        method=estimate.method,
        explanation=explanation,
        similarCampaigns=extract_similar_campaigns(group, metric, settings.max_similar_campaigns),
        metadata=ProjectionMetadata(computedAt=computed_at, version=PROJECTION_VERSION),
    )


def project_all_metrics(
    group: MatchGroup,
    query: ProjectionQuery,
    settings: Optional[ProjectionSettings] = None,
    computed_at: Optional[datetime] = None
) -> Dict[ProjectableMetric, FieldProjection]:
    """
    Project every metric, then apply the funnel-consistency pass.

    Volume echoes query.baseVolume when the caller supplies one; otherwise it
    is projected from the group like the other count metrics.
    """
    settings = settings or get_settings()
    computed_at = computed_at or _now()

    projections: Dict[ProjectableMetric, FieldProjection] = {}
    for metric in ProjectableMetric:
        if metric is ProjectableMetric.VOLUME and query.baseVolume:
            projections[metric] = create_user_input_projection(metric, query.baseVolume, computed_at)
        else:
            projections[metric] = project_metric(metric, group, query, settings, computed_at=computed_at)

    return apply_funnel_consistency(projections, query, settings)


# =============================================================================
# FUNNEL CONSISTENCY
# =============================================================================

def _is_empty(projection: FieldProjection) -> bool:
    """The defined empty projection (or a zero user input)."""
    return projection.method is ProjectionMethod.FALLBACK or projection.confidence == 0


def _has_estimate(projection: FieldProjection) -> bool:
    return not _is_empty(projection) and projection.projectedValue > 0


def _stage_ratio(
    projections: Dict[ProjectableMetric, FieldProjection],
    rate_metric: ProjectableMetric,
    numerator: ProjectableMetric,
    denominator: ProjectableMetric,
    fallback: Optional[float]
) -> Tuple[Optional[float], List[FieldProjection]]:
    """
    Stage conversion ratio in [0, 1] and the projections it was read from.

    Projected rate first, then the ratio of the projected counts, then the
    fallback ratio (with no source projections).
    """
    rate = projections[rate_metric]
    if _has_estimate(rate):
        return min(1.0, rate.projectedValue / 100.0), [rate]
    top = projections[numerator]
    bottom = projections[denominator]
    if _has_estimate(top) and _has_estimate(bottom):
        return min(1.0, top.projectedValue / bottom.projectedValue), [top, bottom]
    return fallback, []


def _relative_margin(projection: FieldProjection) -> float:
    if projection.projectedValue <= 0:
        return 0.0
    return (projection.interval.max - projection.interval.min) / (2.0 * projection.projectedValue)


def create_derived_projection(
    metric: ProjectableMetric,
    value: float,
    sources: Sequence[FieldProjection],
    assumption: Optional[str] = None
) -> FieldProjection:
    """
    Projection of a metric computed from other projections.

    Confidence is that of the least confident source, scaled down when a
    default assumption stands in for missing history. The interval's relative
    half-width is the sum of the sources' relative half-widths.
    """
    value = round_value(clip_to_domain(value, metric), metric)
    basis = min(sources, key=lambda p: p.confidence)

    confidence = float(basis.confidence)
    if assumption is not None:
        confidence *= ASSUMPTION_CONFIDENCE_FACTOR

    margin = sum(_relative_margin(p) for p in sources)
    low = round_value(clip_to_domain(value * (1.0 - margin), metric), metric)
    high = round_value(clip_to_domain(value * (1.0 + margin), metric), metric)

    return FieldProjection(
        field=metric,
        projectedValue=value,
        confidence=int(round(min(100.0, max(1.0, confidence)))),
        interval=ProjectionInterval(min=min(low, value), max=max(high, value)),
        method=ProjectionMethod.DERIVED,
        explanation=derived_explanation(metric, [p.field for p in sources], basis.explanation, assumption),
        similarCampaigns=[],
        metadata=ProjectionMetadata(
            computedAt=basis.metadata.computedAt,
            version=PROJECTION_VERSION,
            funnelAdjusted=True,
        ),
    )


def _adjust(projection: FieldProjection, new_value: float) -> FieldProjection:
    """Copy of a projection with a new value, rescaled interval and funnel flag."""
    metric = projection.field
    new_value = round_value(clip_to_domain(new_value, metric), metric)
    if new_value == projection.projectedValue:
        return projection

    old = projection.projectedValue
    if old > 0:
        scale = new_value / old
        low = round_value(clip_to_domain(projection.interval.min * scale, metric), metric)
        high = round_value(clip_to_domain(projection.interval.max * scale, metric), metric)
    else:
        low = high = new_value

    return projection.model_copy(update={
        "projectedValue": new_value,
        "interval": ProjectionInterval(min=min(low, new_value), max=max(high, new_value)),
        "metadata": projection.metadata.model_copy(update={"funnelAdjusted": True}),
    })


def _set_stage(
    result: Dict[ProjectableMetric, FieldProjection],
    metric: ProjectableMetric,
    value: float,
    sources: Sequence[FieldProjection],
    assumption: Optional[str] = None
) -> None:
    """
    Write a re-derived value.

    Empty and previously derived projections are rebuilt as derived ones
    (left empty when the value is not positive); historical projections keep
    their method and confidence and are only rescaled.
    """
    target = result[metric]
    if _is_empty(target) or target.method is ProjectionMethod.DERIVED:
        if value > 0:
            result[metric] = create_derived_projection(metric, value, sources, assumption)
        return
    result[metric] = _adjust(target, value)


def _unit_cost(table: Dict[str, float], value: Optional[str], default: float) -> float:
    if not value:
        return default
    return table.get(comparison_key(value), default)


def _ratio_assumption(ratio: float) -> str:
    return f"a {ratio:.0%} stage conversion where history has none"


def apply_funnel_consistency(
    projections: Dict[ProjectableMetric, FieldProjection],
    query: ProjectionQuery,
    settings: Optional[ProjectionSettings] = None
) -> Dict[ProjectableMetric, FieldProjection]:
    """
    Re-derive funnel counts so downstream stages never exceed upstream ones.

    Steps, each run only when its upstream stage holds a projection:
        deliverable = sent x deliveryRate (default delivery rate when unknown)
        proposals   = deliverable x proposal ratio (skipped when unknown)
        approvals   = proposals x approval ratio (65% when unknown)
        generated   = approvals x finalization ratio (85% when unknown)
    Ratios are clipped to <= 1. A stage that was the empty projection becomes
    a derived projection (method derived, confidence from its sources). A
    final monotone clamp enforces the order against the nearest upstream
    stage that holds a projection; empty stages are neither clamped nor used
    as a ceiling. When the channel is known and volume is projected, total
    cost and CAC are recomputed from the channel and offer unit cost tables.

    Args:
        projections: Independently projected metrics (all ProjectableMetric keys)
        query: Projection query (channel and offer for unit costs)
        settings: Engine settings

    Returns:
        New projection dict; rewritten projections carry metadata.funnelAdjusted
    """
    settings = settings or get_settings()
    result = dict(projections)
    m = ProjectableMetric

    sent = result[m.VOLUME]
    if not _is_empty(sent):
        delivery = result[m.DELIVERY_RATE]
        if _has_estimate(delivery):
            _set_stage(result, m.DELIVERABLE_BASE, sent.projectedValue * min(1.0, delivery.projectedValue / 100.0),
                       [sent, delivery])
        else:
            rate = settings.default_delivery_rate
            _set_stage(result, m.DELIVERABLE_BASE, sent.projectedValue * min(1.0, rate / 100.0),
                       [sent], f"the default {rate:g}% delivery rate")

    ratios = [
        (m.PROPOSALS, m.DELIVERABLE_BASE,
         _stage_ratio(result, m.PROPOSAL_RATE, m.PROPOSALS, m.DELIVERABLE_BASE, None)),
        (m.APPROVALS, m.PROPOSALS,
         _stage_ratio(result, m.APPROVAL_RATE, m.APPROVALS, m.PROPOSALS, FALLBACK_APPROVAL_RATIO)),
        (m.UNITS_GENERATED, m.APPROVALS,
         _stage_ratio(result, m.FINALIZATION_RATE, m.UNITS_GENERATED, m.APPROVALS, FALLBACK_FINALIZATION_RATIO)),
    ]
    for stage, upstream_metric, (ratio, ratio_sources) in ratios:
        upstream = result[upstream_metric]
        if ratio is None or _is_empty(upstream):
            continue
        assumption = None if ratio_sources else _ratio_assumption(ratio)
        sources = [upstream] + [p for p in ratio_sources if p.field is not upstream_metric]
        _set_stage(result, stage, upstream.projectedValue * ratio, sources, assumption)

    # Monotone clamp in funnel order
    ceiling: Optional[float] = None
    for stage in FUNNEL_STAGES:
        projection = result[stage]
        if _is_empty(projection):
            continue
        if ceiling is not None and projection.projectedValue > ceiling:
            result[stage] = _adjust(projection, ceiling)
        ceiling = result[stage].projectedValue

    sent = result[m.VOLUME]
    if query.channel and _has_estimate(sent):
        channel_cost = _unit_cost(CHANNEL_UNIT_COSTS, query.channel, DEFAULT_CHANNEL_UNIT_COST)
        offer_cost = _unit_cost(OFFER_UNIT_COSTS, query.offer, 0.0)
        generated = result[m.UNITS_GENERATED]
        generated_value = generated.projectedValue if _has_estimate(generated) else 0.0
        total_cost = sent.projectedValue * channel_cost + generated_value * offer_cost

        cost_sources = [sent] + ([generated] if generated_value > 0 and offer_cost > 0 else [])
        _set_stage(result, m.TOTAL_COST, total_cost, cost_sources, "the channel and offer unit cost tables")
        if generated_value > 0 and not _is_empty(result[m.TOTAL_COST]):
            _set_stage(result, m.CAC, total_cost / generated_value, [result[m.TOTAL_COST], generated])

    logger.debug(
        "Funnel pass: " + ", ".join(
            f"{stage.value}={result[stage].projectedValue:g}/{result[stage].method.value}"
            for stage in FUNNEL_STAGES
        )
    )
    return result
