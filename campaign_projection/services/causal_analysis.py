"""
Causal Analysis Service - Driver Attribution Within a Match Group

This module estimates which campaign dimensions drive a target metric inside
an already selected match group, flags confounders and estimates the effect of
switching the top driver to another observed value.

The analysis is associational. Historical campaigns were not randomized, so
every number produced here describes how the metric differed between groups
of past campaigns; none of it is a guaranteed causal effect. Results carry
that disclaimer in CausalAnalysisResult.note.

Algorithm Overview:
- Value function: v(S) = eta^2 of the metric grouped by the dimension set S
  (between-group sum of squares / total sum of squares; missing values form
  their own category). Grouping by more dimensions refines the partition, so
  v is monotone and every marginal contribution is >= 0.
- Attribution: Shapley share of v(N) per candidate dimension.
  * Exact enumeration over all coalitions when there are at most
    shapley_exact_max_features candidates
  * Otherwise the mean marginal contribution over shapley_permutations
    permutations drawn from np.random.default_rng(shapley_seed), so repeated
    calls return identical values
  These are approximate attributions of explained variance, not formal
  Shapley values of a predictive model.
- Raw impact: (partition mean - group mean) / group mean * 100, for the
  query's value when the query specifies the dimension, else for the
  partition with the largest absolute impact.
- Confounder: a dimension ranked below an already causal dimension whose
  values are strongly associated with it (Cramer's V >= 0.3) and that still
  shifts the metric by >= 10% on average when the causal dimension is held
  fixed.
- Intervention: for the top dimension, compare the current value's
  subpopulation with each alternate value's subpopulation (other query
  dimensions held fixed where the sample allows), stratified by the first
  confounder when there is one.

Only the reduced match group is analyzed, never the full corpus.
"""

import itertools
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Sequence

import numpy as np
import pandas as pd
from scipy import stats

from campaign_projection.core.config import ProjectionSettings, get_settings
from campaign_projection.models.enums import (
    CATEGORICAL_DIMENSIONS,
    Dimension,
    ImpactDirection,
    ProjectableMetric,
)
from campaign_projection.models.schemas import (
    CausalAnalysisResult,
    CausalFactor,
    FeatureImportance,
    InterventionEffect,
    ProjectionQuery,
)
from campaign_projection.services.data_processor import ProcessedRecord, records_to_frame
from campaign_projection.services.similarity import EXACT_MATCH_SCORE, compare_values

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

VALUE_COLUMN: str = "value"
MISSING_CATEGORY: str = "undefined"

# Minimum rows a partition needs before its mean is reported as an impact
MIN_PARTITION_SIZE: int = 2

# Causal factor thresholds
MIN_FACTOR_IMPACT_PERCENT: float = 5.0
MIN_FACTOR_IMPORTANCE: float = 1.0  # percent of explained variance

# Confounder thresholds
CONFOUNDER_ASSOCIATION_THRESHOLD: float = 0.3  # Cramer's V
CONFOUNDER_SHIFT_THRESHOLD: float = 0.10       # mean relative spread within strata

# Intervention thresholds
MIN_INTERVENTION_SAMPLE: int = 3
MIN_STRATUM_SAMPLE: int = 2
MIN_STRATA: int = 2
MIN_INTERVENTION_CHANGE: float = 5.0
MAX_INTERVENTIONS: int = 5


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class DimensionImpact:
    """Raw impact of one dimension within the analyzed group."""
    dimension: Dimension
    value: Optional[str] = None
    impact_percent: float = 0.0
    partition_size: int = 0
    shapley_value: float = 0.0
    correlation_ratio: float = 0.0

    @property
    def importance(self) -> float:
        return self.shapley_value * 100.0


@dataclass
class VarianceDecomposition:
    """Memoized eta^2 value function over a tabulated match group."""
    frame: pd.DataFrame
    _cache: Dict[FrozenSet[str], float] = field(default_factory=dict)

    def __post_init__(self):
        values = self.frame[VALUE_COLUMN].to_numpy(dtype=float)
        self.mean = float(values.mean()) if len(values) else 0.0
        self.total_ss = float(((values - self.mean) ** 2).sum()) if len(values) else 0.0

    def value(self, coalition: FrozenSet[str]) -> float:
        """eta^2 of the metric grouped by `coalition` (0 for the empty set)."""
        if not coalition or self.total_ss <= 0:
            return 0.0
        if coalition in self._cache:
            return self._cache[coalition]

        grouped = self.frame.groupby(sorted(coalition), sort=False)[VALUE_COLUMN].agg(["mean", "size"])
        between_ss = float((grouped["size"] * (grouped["mean"] - self.mean) ** 2).sum())
        eta_squared = min(1.0, max(0.0, between_ss / self.total_ss))

        self._cache[coalition] = eta_squared
        return eta_squared


# =============================================================================
# ATTRIBUTION
# =============================================================================

def exact_shapley(decomposition: VarianceDecomposition, features: Sequence[str]) -> Dict[str, float]:
    """
    Shapley share of every feature by full coalition enumeration.

    phi_i = sum over S in N minus {i} of |S|! (n - |S| - 1)! / n! * (v(S + i) - v(S))
    """
    n = len(features)
    shares: Dict[str, float] = {f: 0.0 for f in features}
    if n == 0:
        return shares

    n_factorial = math.factorial(n)
    for feature in features:
        others = [f for f in features if f != feature]
        for size in range(len(others) + 1):
            coefficient = math.factorial(size) * math.factorial(n - size - 1) / n_factorial
            for subset in itertools.combinations(others, size):
                base = frozenset(subset)
                marginal = decomposition.value(base | {feature}) - decomposition.value(base)
                shares[feature] += coefficient * marginal
    return shares


def sampled_shapley(
    decomposition: VarianceDecomposition,
    features: Sequence[str],
    permutations: int,
    seed: int
) -> Dict[str, float]:
    """
    Shapley share estimated from a fixed-seed sample of feature orderings.

    Deterministic for a given (features, permutations, seed).
    """
    shares: Dict[str, float] = {f: 0.0 for f in features}
    if not features or permutations <= 0:
        return shares

    rng = np.random.default_rng(seed)
    ordered = list(features)
    for _ in range(permutations):
        coalition: FrozenSet[str] = frozenset()
        previous = 0.0
        for index in rng.permutation(len(ordered)):
            feature = ordered[int(index)]
            coalition = coalition | {feature}
            current = decomposition.value(coalition)
            shares[feature] += current - previous
            previous = current

    return {f: total / permutations for f, total in shares.items()}


def calculate_shapley_values(
    decomposition: VarianceDecomposition,
    features: Sequence[str],
    settings: ProjectionSettings
) -> Dict[str, float]:
    """Exact shares for small feature sets, sampled shares otherwise; clipped to [0, 1]."""
    if len(features) <= settings.shapley_exact_max_features:
        shares = exact_shapley(decomposition, features)
    else:
        shares = sampled_shapley(
            decomposition,
            features,
            settings.shapley_permutations,
            settings.shapley_seed,
        )
    return {f: min(1.0, max(0.0, s)) for f, s in shares.items()}


# =============================================================================
# RAW IMPACTS
# =============================================================================

def _find_partition(partitions: pd.DataFrame, query_value: str) -> Optional[str]:
    """Partition label matching a query value, using the similarity comparison."""
    for label in partitions.index:
        if label != MISSING_CATEGORY and compare_values(query_value, str(label)) == EXACT_MATCH_SCORE:
            return str(label)
    return None


def calculate_dimension_impact(
    frame: pd.DataFrame,
    dimension: Dimension,
    group_mean: float,
    query_value: Optional[str] = None
) -> DimensionImpact:
    """
    Raw impact of a dimension.

    Uses the query's partition when the query specifies the dimension and the
    partition is large enough; otherwise the partition with the largest
    absolute impact (ties: larger partition, then label order).
    """
    impact = DimensionImpact(dimension=dimension)
    if group_mean <= 0:
        return impact

    partitions = frame.groupby(dimension.value, sort=True)[VALUE_COLUMN].agg(["mean", "size"])
    partitions = partitions[partitions["size"] >= MIN_PARTITION_SIZE]
    partitions = partitions[partitions.index != MISSING_CATEGORY]
    if partitions.empty:
        return impact

    chosen: Optional[str] = None
    if query_value:
        chosen = _find_partition(partitions, query_value)

    if chosen is None:
        ranked = sorted(
            (
                (-abs(row["mean"] - group_mean), -int(row["size"]), str(label))
                for label, row in partitions.iterrows()
            )
        )
        chosen = ranked[0][2]

    row = partitions.loc[chosen]
    impact.value = chosen
    impact.partition_size = int(row["size"])
    impact.impact_percent = float((row["mean"] - group_mean) / group_mean * 100.0)
    return impact


# =============================================================================
# CONFOUNDERS
# =============================================================================

def cramers_v(frame: pd.DataFrame, first: str, second: str) -> float:
    """Cramer's V association between two categorical columns, in [0, 1]."""
    table = pd.crosstab(frame[first], frame[second])
    n = table.to_numpy().sum()
    rows, cols = table.shape
    if n <= 0 or min(rows, cols) < 2:
        return 0.0

    chi2, _, _, _ = stats.chi2_contingency(table, correction=False)
    return float(min(1.0, math.sqrt(chi2 / (n * (min(rows, cols) - 1)))))


def within_stratum_shift(frame: pd.DataFrame, dimension: str, held_fixed: str) -> Optional[float]:
    """
    Average relative spread of the metric across `dimension` values while
    `held_fixed` is held at each of its values.

    Returns:
        Mean of (max - min) / stratum mean over strata where `dimension`
        takes at least two values, or None when no stratum qualifies.
    """
    shifts: List[float] = []
    for _, stratum in frame.groupby(held_fixed, sort=True):
        stratum_mean = stratum[VALUE_COLUMN].mean()
        if stratum_mean <= 0:
            continue
        means = stratum.groupby(dimension, sort=True)[VALUE_COLUMN].mean()
        if len(means) < 2:
            continue
        shifts.append(float((means.max() - means.min()) / stratum_mean))
    if not shifts:
        return None
    return float(np.mean(shifts))


def detect_confounders(frame: pd.DataFrame, ranked: Sequence[DimensionImpact]) -> List[str]:
    """
    Flag dimensions confounded with a higher-ranked causal dimension.

    Args:
        frame: Tabulated match group
        ranked: Dimension impacts in rank order

    Returns:
        Confounder dimension names in rank order
    """
    confounders: List[str] = []
    causal_above: List[str] = []

    for impact in ranked:
        name = impact.dimension.value
        for anchor in causal_above:
            if cramers_v(frame, anchor, name) < CONFOUNDER_ASSOCIATION_THRESHOLD:
                continue
            shift = within_stratum_shift(frame, name, anchor)
            if shift is not None and shift >= CONFOUNDER_SHIFT_THRESHOLD:
                confounders.append(name)
                break
        if _is_causal(impact):
            causal_above.append(name)

    return confounders


def _is_causal(impact: DimensionImpact) -> bool:
    return (
        impact.value is not None
        and abs(impact.impact_percent) >= MIN_FACTOR_IMPACT_PERCENT
        and impact.importance >= MIN_FACTOR_IMPORTANCE
    )


# =============================================================================
# INTERVENTIONS
# =============================================================================

def _relative_change(from_mean: float, to_mean: float) -> Optional[float]:
    if from_mean <= 0:
        return None
    return (to_mean - from_mean) / from_mean * 100.0


def calculate_intervention_effect(
    frame: pd.DataFrame,
    dimension: str,
    from_value: str,
    to_value: str,
    confounders: Sequence[str] = ()
) -> Optional[InterventionEffect]:
    """
    Expected relative change when `dimension` switches from one value to another.

    Stratified by the first confounder when at least two strata hold both
    values; the confidence grows with the number of usable strata, or with
    the sample size when there are no confounders.

    Returns:
        InterventionEffect, or None when either side has fewer than 3 records
    """
    from_rows = frame[frame[dimension] == from_value]
    to_rows = frame[frame[dimension] == to_value]
    if len(from_rows) < MIN_INTERVENTION_SAMPLE or len(to_rows) < MIN_INTERVENTION_SAMPLE:
        return None

    raw_effect = _relative_change(from_rows[VALUE_COLUMN].mean(), to_rows[VALUE_COLUMN].mean())
    if raw_effect is None:
        return None

    effect = raw_effect
    confidence = 0.5

    if confounders:
        stratum_effects: List[float] = []
        for _, stratum in frame.groupby(confounders[0], sort=True):
            s_from = stratum[stratum[dimension] == from_value][VALUE_COLUMN]
            s_to = stratum[stratum[dimension] == to_value][VALUE_COLUMN]
            if len(s_from) < MIN_STRATUM_SAMPLE or len(s_to) < MIN_STRATUM_SAMPLE:
                continue
            change = _relative_change(s_from.mean(), s_to.mean())
            if change is not None:
                stratum_effects.append(change)

        if len(stratum_effects) >= MIN_STRATA:
            effect = float(np.mean(stratum_effects))
            confidence = 0.7 + 0.3 * min(1.0, len(stratum_effects) / 5.0)
    else:
        total = len(from_rows) + len(to_rows)
        confidence = min(0.9, 0.4 + (total / 100.0) * 0.5)

    return InterventionEffect(
        feature=dimension,
        fromValue=from_value,
        toValue=to_value,
        expectedChange=round(effect, 2),
        confidence=round(confidence, 2),
        sampleSizeFrom=len(from_rows),
        sampleSizeTo=len(to_rows),
    )


def _intervention_scope(frame: pd.DataFrame, query: ProjectionQuery, target: str) -> pd.DataFrame:
    """Rows sharing the query's other specified dimensions, when enough remain."""
    scope = frame
    for dimension, query_value in query.specified_dimensions().items():
        if dimension.value == target:
            continue
        labels = scope[dimension.value].unique()
        matching = [
            label for label in labels
            if label != MISSING_CATEGORY and compare_values(query_value, str(label)) == EXACT_MATCH_SCORE
        ]
        narrowed = scope[scope[dimension.value].isin(matching)]
        if len(narrowed) >= 2 * MIN_INTERVENTION_SAMPLE:
            scope = narrowed
    return scope


def calculate_intervention_effects(
    frame: pd.DataFrame,
    target: DimensionImpact,
    query: ProjectionQuery,
    confounders: Sequence[str]
) -> List[InterventionEffect]:
    """Interventions on the top dimension, largest expected change first."""
    name = target.dimension.value
    scope = _intervention_scope(frame, query, name)

    query_value = query.specified_dimensions().get(target.dimension)
    current: Optional[str] = None
    if query_value:
        for label in scope[name].unique():
            if label != MISSING_CATEGORY and compare_values(query_value, str(label)) == EXACT_MATCH_SCORE:
                current = str(label)
                break
    if current is None:
        observed = scope[scope[name] != MISSING_CATEGORY][name]
        if observed.empty:
            return []
        # Most frequent value; ties resolve alphabetically
        counts = observed.value_counts()
        current = sorted(counts[counts == counts.max()].index)[0]

    effects: List[InterventionEffect] = []
    for alternative in sorted(scope[name].unique()):
        if alternative in (current, MISSING_CATEGORY):
            continue
        effect = calculate_intervention_effect(scope, name, current, alternative, confounders)
        if effect is not None and abs(effect.expectedChange) > MIN_INTERVENTION_CHANGE:
            effects.append(effect)

    effects.sort(key=lambda e: abs(e.expectedChange), reverse=True)
    return effects[:MAX_INTERVENTIONS]


# =============================================================================
# CAUSAL FACTORS
# =============================================================================

def generate_factor_explanation(
    dimension: str,
    value: str,
    impact_percent: float,
    metric: ProjectableMetric
) -> str:
    """One-line, explicitly associational reason for a factor."""
    comparison = "higher" if impact_percent > 0 else "lower"
    return (
        f'{dimension} "{value}" is associated with {abs(impact_percent):.1f}% '
        f"{comparison} {metric.label} than the matched group average"
    )


def build_causal_factors(
    ranked: Sequence[DimensionImpact],
    confounders: Sequence[str],
    metric: ProjectableMetric,
    limit: int
) -> List[CausalFactor]:
    factors: List[CausalFactor] = []
    for impact in ranked:
        if not _is_causal(impact):
            continue
        factors.append(CausalFactor(
            feature=impact.dimension.value,
            value=impact.value,
            direction=ImpactDirection.POSITIVE if impact.impact_percent > 0 else ImpactDirection.NEGATIVE,
            impactPercent=round(impact.impact_percent, 1),
            explanation=generate_factor_explanation(
                impact.dimension.value, impact.value, impact.impact_percent, metric
            ),
            shapleyValue=round(impact.shapley_value, 4),
            isConfounder=impact.dimension.value in confounders,
        ))
        if len(factors) >= limit:
            break
    return factors


# =============================================================================
# FULL ANALYSIS
# =============================================================================

def empty_analysis(metric: ProjectableMetric, sample_size: int = 0) -> CausalAnalysisResult:
    return CausalAnalysisResult(targetMetric=metric, sampleSize=sample_size)


def perform_causal_analysis(
    records: Sequence[ProcessedRecord],
    metric: ProjectableMetric,
    query: Optional[ProjectionQuery] = None,
    settings: Optional[ProjectionSettings] = None
) -> CausalAnalysisResult:
    """
    Run the full attribution pipeline over a match group.

    Args:
        records: Records of the selected match group (already reduced)
        metric: Target metric
        query: Projection query (selects the reported partitions and the
            current value for interventions)
        settings: Engine settings

    Returns:
        CausalAnalysisResult; empty (no factors) when the group is too small,
        the metric is absent, or no dimension varies within the group
    """
    settings = settings or get_settings()
    query = query or ProjectionQuery()

    frame = records_to_frame(records, metric)
    min_rows = max(MIN_INTERVENTION_SAMPLE, settings.min_sample_size)
    if len(frame) < min_rows:
        logger.debug(f"Causal analysis skipped for {metric.value}: {len(frame)} usable records")
        return empty_analysis(metric, len(frame))

    decomposition = VarianceDecomposition(frame=frame)
    if decomposition.mean <= 0:
        return empty_analysis(metric, len(frame))

    candidates = [
        d for d in CATEGORICAL_DIMENSIONS
        if frame[d.value].nunique(dropna=False) >= 2
    ]
    if not candidates:
        return empty_analysis(metric, len(frame))

    shares = calculate_shapley_values(decomposition, [d.value for d in candidates], settings)
    specified = query.specified_dimensions()

    impacts: List[DimensionImpact] = []
    for dimension in candidates:
        impact = calculate_dimension_impact(frame, dimension, decomposition.mean, specified.get(dimension))
        impact.shapley_value = shares.get(dimension.value, 0.0)
        eta = math.sqrt(decomposition.value(frozenset({dimension.value})))
        impact.correlation_ratio = eta if impact.impact_percent >= 0 else -eta
        impacts.append(impact)

    ranked = sorted(
        impacts,
        key=lambda i: (-abs(i.impact_percent), -i.shapley_value, i.dimension.value),
    )

    confounders = detect_confounders(frame, ranked)

    interventions: List[InterventionEffect] = []
    if ranked and ranked[0].value is not None:
        interventions = calculate_intervention_effects(frame, ranked[0], query, confounders)

    importance = [
        FeatureImportance(
            feature=impact.dimension.value,
            value=impact.value,
            impactPercent=round(impact.impact_percent, 2),
            importance=round(min(100.0, impact.importance), 2),
            rank=position,
        )
        for position, impact in enumerate(ranked, start=1)
    ]

    logger.debug(
        f"Causal analysis for {metric.value}: n={len(frame)}, "
        f"candidates={len(candidates)}, top={ranked[0].dimension.value}, "
        f"confounders={confounders}"
    )

    return CausalAnalysisResult(
        targetMetric=metric,
        sampleSize=len(frame),
        shapleyValues={name: round(share, 4) for name, share in shares.items()},
        featureImportance=importance,
        confounders=confounders,
        interventionEffects=interventions,
        causalFactors=build_causal_factors(ranked, confounders, metric, settings.max_causal_factors),
        correlations={i.dimension.value: round(i.correlation_ratio, 4) for i in ranked},
    )
