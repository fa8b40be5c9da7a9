"""
Explanation Generator Service

Renders a projection's statistics, match level and causal factors into the
structured, human-readable ProjectionExplanation handed to the UI consumer,
plus the display formatters the UI uses for tooltips.

Data quality scoring:
- Sample size:  >= 50 -> 3 pts, >= 20 -> 2 pts, >= 5 -> 1 pt
- Match level:  exact 3, high 2, medium 1, low 0, fallback 0
- Consistency:  coefficient of variation < 0.3 -> 2 pts, < 0.5 -> 1 pt
- Tier:         >= 6 high, >= 3 medium, otherwise low
"""

import math
from typing import Dict, List, Mapping, Optional, Sequence

from campaign_projection.core.config import ProjectionSettings, get_settings
from campaign_projection.models.enums import (
    DataQuality,
    MatchLevel,
    MetricKind,
    ProjectableMetric,
)
from campaign_projection.models.schemas import (
    CausalFactor,
    CorrelationFactor,
    ProjectionExplanation,
)
from campaign_projection.services.data_processor import MetricStats


# =============================================================================
# Scoring Tables
# =============================================================================

MATCH_LEVEL_QUALITY_POINTS: Dict[MatchLevel, int] = {
    MatchLevel.EXACT: 3,
    MatchLevel.HIGH: 2,
    MatchLevel.MEDIUM: 1,
    MatchLevel.LOW: 0,
    MatchLevel.FALLBACK: 0,
}

HIGH_QUALITY_SCORE: int = 6
MEDIUM_QUALITY_SCORE: int = 3

MATCH_DESCRIPTIONS: Dict[MatchLevel, str] = {
    MatchLevel.EXACT: "identical campaigns",
    MatchLevel.HIGH: "very similar campaigns",
    MatchLevel.MEDIUM: "similar campaigns",
    MatchLevel.LOW: "campaigns from the same business unit",
    MatchLevel.FALLBACK: "general historical campaigns",
}

QUALITY_DESCRIPTIONS: Dict[DataQuality, str] = {
    DataQuality.HIGH: "High confidence",
    DataQuality.MEDIUM: "Moderate confidence",
    DataQuality.LOW: "Low confidence",
}

MAX_CORRELATION_FACTORS: int = 3


# =============================================================================
# Explanation Building Blocks
# =============================================================================

def determine_data_quality(sample_size: int, match_level: MatchLevel, stats: MetricStats) -> DataQuality:
    """
    Score the data behind a projection.

    Args:
        sample_size: Number of records contributing a value
        match_level: Level of the selected match group
        stats: Statistics of the projected metric

    Returns:
        DataQuality tier
    """
    score = 0

    if sample_size >= 50:
        score += 3
    elif sample_size >= 20:
        score += 2
    elif sample_size >= 5:
        score += 1

    score += MATCH_LEVEL_QUALITY_POINTS[match_level]

    if stats.mean > 0:
        cv = stats.coefficient_of_variation
        if cv < 0.3:
            score += 2
        elif cv < 0.5:
            score += 1

    if score >= HIGH_QUALITY_SCORE:
        return DataQuality.HIGH
    if score >= MEDIUM_QUALITY_SCORE:
        return DataQuality.MEDIUM
    return DataQuality.LOW


def generate_summary(
    metric: ProjectableMetric,
    sample_size: int,
    match_level: MatchLevel,
    data_quality: DataQuality
) -> str:
    """Summary sentence: quality tier + match description + sample size."""
    if sample_size == 0:
        return no_data_summary(metric)

    noun = MATCH_DESCRIPTIONS[match_level]
    if sample_size == 1:
        noun = noun.replace("campaigns", "campaign")
    return f"{QUALITY_DESCRIPTIONS[data_quality]}: based on {sample_size} {noun}."


def no_data_summary(metric: ProjectableMetric) -> str:
    return f"No historical data available to project {metric.label}."


def describe_time_decay(settings: ProjectionSettings, sample_size: int) -> str:
    """
    Plain-language temporal weighting policy.

    Example (90-day window, 0.5 decay):
        "Campaigns from the last 30 days weigh most; weight decays
        exponentially to 50% at 90 days and older campaigns are excluded."
    """
    if sample_size <= 0:
        return "N/A"

    window = settings.temporal_window_days
    recent = max(1, window // 3)
    return (
        f"Campaigns from the last {recent} days weigh most; weight decays "
        f"exponentially to {settings.temporal_decay_factor:.0%} at {window} days "
        f"and older campaigns are excluded."
    )


def generate_correlation_factors(
    causal_factors: Sequence[CausalFactor],
    correlations: Optional[Mapping[str, float]] = None
) -> List[CorrelationFactor]:
    """
    Signed association strength for the top causal factors.

    Uses the correlation ratio computed by the causal analysis; its sign
    follows the factor's direction.
    """
    correlations = correlations or {}
    factors: List[CorrelationFactor] = []
    for factor in causal_factors[:MAX_CORRELATION_FACTORS]:
        strength = min(1.0, abs(correlations.get(factor.feature, 0.0)))
        signed = strength if factor.impactPercent > 0 else -strength
        factors.append(CorrelationFactor(feature=factor.feature, correlation=round(signed, 4)))
    return factors


# =============================================================================
# Explanation Assembly
# =============================================================================

def generate_explanation(
    metric: ProjectableMetric,
    sample_size: int,
    match_level: MatchLevel,
    causal_factors: Sequence[CausalFactor],
    stats: MetricStats,
    settings: Optional[ProjectionSettings] = None,
    correlations: Optional[Mapping[str, float]] = None
) -> ProjectionExplanation:
    """
    Build the full explanation of a projection.

    Args:
        metric: Projected metric
        sample_size: Records contributing a value
        match_level: Level of the selected match group
        causal_factors: Factors from the causal analysis (already capped)
        stats: Statistics the projection was computed from
        settings: Engine settings (temporal policy text)
        correlations: Signed correlation ratios keyed by dimension

    Returns:
        ProjectionExplanation
    """
    settings = settings or get_settings()
    data_quality = determine_data_quality(sample_size, match_level, stats)

    return ProjectionExplanation(
        summary=generate_summary(metric, sample_size, match_level, data_quality),
        causalFactors=list(causal_factors),
        correlationFactors=generate_correlation_factors(causal_factors, correlations),
        timeDecay=describe_time_decay(settings, sample_size),
        sampleSize=sample_size,
        dataQuality=data_quality,
        matchLevel=match_level,
        matchPercentage=match_level.match_percentage,
    )


def empty_explanation(metric: ProjectableMetric) -> ProjectionExplanation:
    """Explanation attached to the empty projection."""
    return ProjectionExplanation(
        summary=no_data_summary(metric),
        timeDecay="N/A",
        sampleSize=0,
        dataQuality=DataQuality.LOW,
        matchLevel=MatchLevel.FALLBACK,
        matchPercentage=0,
    )


def user_input_explanation(metric: ProjectableMetric, value: float) -> ProjectionExplanation:
    """Explanation for a value supplied by the caller."""
    return ProjectionExplanation(
        summary=f"{metric.label} provided as input ({format_metric_value(value, metric)}).",
        timeDecay="N/A",
        sampleSize=0,
        dataQuality=DataQuality.HIGH,
        matchLevel=MatchLevel.FALLBACK,
        matchPercentage=0,
    )


def derived_explanation(
    metric: ProjectableMetric,
    sources: Sequence[ProjectableMetric],
    basis: ProjectionExplanation,
    assumption: Optional[str] = None
) -> ProjectionExplanation:
    """
    Explanation for a value derived from other projections.

    Sample size, quality and match level are those of `basis`, the
    explanation of the least confident source projection.

    Example:
        'Approvals derived from the projected Proposals.
        Assumes the default 65% approval rate.'
    """
    names = " and ".join(source.label for source in sources)
    summary = f"{metric.label} derived from the projected {names}."
    if assumption:
        summary += f" Assumes {assumption}."

    return basis.model_copy(update={
        "summary": summary,
        "causalFactors": [],
        "correlationFactors": [],
    })


def unit_cost_explanation(
    metric: ProjectableMetric,
    channel: str,
    assumed_conversion: float
) -> ProjectionExplanation:
    """Explanation for a cost metric estimated from the channel unit cost table."""
    return ProjectionExplanation(
        summary=(
            f"No historical {metric.label}; estimated from the {channel} unit cost "
            f"assuming {assumed_conversion:.0%} conversion."
        ),
        timeDecay="N/A",
        sampleSize=0,
        dataQuality=DataQuality.LOW,
        matchLevel=MatchLevel.FALLBACK,
        matchPercentage=0,
    )


# =============================================================================
# Display Formatters
# =============================================================================

def format_metric_value(value: float, metric: ProjectableMetric) -> str:
    """
    Format a metric value for display.

    Example:
        >>> format_metric_value(9.5, ProjectableMetric.CONVERSION_RATE)
        '9.50%'
        >>> format_metric_value(1234.5, ProjectableMetric.CAC)
        'R$ 1,234.50'
        >>> format_metric_value(15234.4, ProjectableMetric.PROPOSALS)
        '15,234'
    """
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return "-"
    if metric.kind is MetricKind.RATE:
        return f"{value:.2f}%"
    if metric.kind is MetricKind.CURRENCY:
        return f"R$ {value:,.2f}"
    return f"{int(round(value)):,}"


def format_causal_factor(factor: CausalFactor) -> str:
    """
    Example:
        'channel = "sms": +33.3%'
    """
    return f'{factor.feature} = "{factor.value}": {format_signed_percent(factor.impactPercent)}'


def format_signed_percent(value: float) -> str:
    """
    Signed one-decimal percentage; anything that rounds to zero is "0.0%".

    Example:
        >>> format_signed_percent(12.25)
        '+12.2%'
        >>> format_signed_percent(-0.01)
        '0.0%'
    """
    text = f"{abs(value):.1f}"
    if float(text) == 0:
        return "0.0%"
    return f"{'+' if value > 0 else '-'}{text}%"


def format_tooltip_title(metric: ProjectableMetric) -> str:
    """Tooltip header for a projected field, e.g. 'Projection: Cost per Acquisition'."""
    return f"Projection: {metric.label}"


def format_confidence_interval(low: float, high: float, metric: ProjectableMetric) -> str:
    return f"{format_metric_value(low, metric)} - {format_metric_value(high, metric)}"


def format_confidence_level(confidence: int) -> str:
    """Verbal confidence tier: High (>= 80), Moderate (>= 60), Low (>= 40), Very Low."""
    if confidence >= 80:
        return "High"
    if confidence >= 60:
        return "Moderate"
    if confidence >= 40:
        return "Low"
    return "Very Low"
