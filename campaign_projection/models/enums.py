"""
Enumeration definitions for the campaign projection engine.

All enums inherit from both `str` and `Enum` so they serialize as plain strings
inside the Pydantic contract models handed to the UI consumer.

Enums:
- Dimension: Categorical campaign attributes compared by the similarity engine
- ProjectableMetric / MetricKind: Outcome metrics and their value domain
- MatchLevel: Ordered specificity tiers of a similarity match
- ProjectionMethod: How a projected value was estimated
- DataQuality: Explanation-level data quality tier
- ImpactDirection: Sign of a causal factor
- AlternativeType / RiskLevel: Kind and risk tier of a suggested setup change
"""

from enum import Enum
from typing import Dict, FrozenSet, List, Tuple


class Dimension(str, Enum):
    """
    Categorical dimensions used for similarity comparison.

    Values are the camelCase keys used in ProjectionQuery and in
    ProcessedRecord.features. TEMPORAL is not a record attribute; it is the
    recency component of the similarity score.
    """
    BUSINESS_UNIT = "businessUnit"
    SEGMENT = "segment"
    CHANNEL = "channel"
    JOURNEY = "journey"
    CREDIT_PROFILE = "creditProfile"
    OFFER = "offer"
    PROMOTIONAL = "promotional"
    PARTNER = "partner"
    SUBGROUP = "subgroup"
    ACQUISITION_STAGE = "acquisitionStage"
    PRODUCT = "product"
    TEMPORAL = "temporal"


# Dimensions read from records and queries (everything except TEMPORAL).
CATEGORICAL_DIMENSIONS: Tuple[Dimension, ...] = tuple(
    d for d in Dimension if d is not Dimension.TEMPORAL
)


class MetricKind(str, Enum):
    """
    Value domain of a projectable metric.

    - count: Non-negative integer volumes (rounded to whole units)
    - rate: Percentage points, bounded to [0, 100], two decimals
    - currency: Non-negative money amounts, two decimals
    """
    COUNT = "count"
    RATE = "rate"
    CURRENCY = "currency"


class ProjectableMetric(str, Enum):
    """
    Campaign outcome metrics the engine can project.

    Funnel order (upstream to downstream):
        volume (sent) >= deliverableBase >= proposals >= approvals >= unitsGenerated
    """
    VOLUME = "volume"
    DELIVERABLE_BASE = "deliverableBase"
    DELIVERY_RATE = "deliveryRate"
    OPEN_RATE = "openRate"
    PROPOSALS = "proposals"
    APPROVALS = "approvals"
    UNITS_GENERATED = "unitsGenerated"
    PROPOSAL_RATE = "proposalRate"
    APPROVAL_RATE = "approvalRate"
    FINALIZATION_RATE = "finalizationRate"
    CONVERSION_RATE = "conversionRate"
    TOTAL_COST = "totalCost"
    CAC = "cac"

    @property
    def kind(self) -> MetricKind:
        """Value domain used for bounds and rounding."""
        return METRIC_KINDS[self]

    @property
    def label(self) -> str:
        """Human-readable metric name."""
        return METRIC_LABELS[self]


METRIC_KINDS: Dict[ProjectableMetric, MetricKind] = {
    ProjectableMetric.VOLUME: MetricKind.COUNT,
    ProjectableMetric.DELIVERABLE_BASE: MetricKind.COUNT,
    ProjectableMetric.DELIVERY_RATE: MetricKind.RATE,
    ProjectableMetric.OPEN_RATE: MetricKind.RATE,
    ProjectableMetric.PROPOSALS: MetricKind.COUNT,
    ProjectableMetric.APPROVALS: MetricKind.COUNT,
    ProjectableMetric.UNITS_GENERATED: MetricKind.COUNT,
    ProjectableMetric.PROPOSAL_RATE: MetricKind.RATE,
    ProjectableMetric.APPROVAL_RATE: MetricKind.RATE,
    ProjectableMetric.FINALIZATION_RATE: MetricKind.RATE,
    ProjectableMetric.CONVERSION_RATE: MetricKind.RATE,
    ProjectableMetric.TOTAL_COST: MetricKind.CURRENCY,
    ProjectableMetric.CAC: MetricKind.CURRENCY,
}

METRIC_LABELS: Dict[ProjectableMetric, str] = {
    ProjectableMetric.VOLUME: "Base Volume",
    ProjectableMetric.DELIVERABLE_BASE: "Deliverable Base",
    ProjectableMetric.DELIVERY_RATE: "Delivery Rate",
    ProjectableMetric.OPEN_RATE: "Open Rate",
    ProjectableMetric.PROPOSALS: "Proposals",
    ProjectableMetric.APPROVALS: "Approvals",
    ProjectableMetric.UNITS_GENERATED: "Units Generated",
    ProjectableMetric.PROPOSAL_RATE: "Proposal Rate",
    ProjectableMetric.APPROVAL_RATE: "Approval Rate",
    ProjectableMetric.FINALIZATION_RATE: "Finalization Rate",
    ProjectableMetric.CONVERSION_RATE: "Conversion Rate",
    ProjectableMetric.TOTAL_COST: "Total Cost",
    ProjectableMetric.CAC: "Cost per Acquisition",
}

# Count metrics in funnel order; each stage can never exceed the previous one.
FUNNEL_STAGES: Tuple[ProjectableMetric, ...] = (
    ProjectableMetric.VOLUME,
    ProjectableMetric.DELIVERABLE_BASE,
    ProjectableMetric.PROPOSALS,
    ProjectableMetric.APPROVALS,
    ProjectableMetric.UNITS_GENERATED,
)


class MatchLevel(str, Enum):
    """
    Specificity tier of a similarity match, decided by dimension coverage.

    - exact: Every primary dimension matched
    - high: businessUnit + segment + channel + creditProfile matched
    - medium: businessUnit + segment matched
    - low: businessUnit matched
    - fallback: businessUnit not matched

    Ordering is total: exact > high > medium > low > fallback. Comparison
    operators follow specificity, not string order.
    """
    EXACT = "exact"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    FALLBACK = "fallback"

    @property
    def specificity(self) -> int:
        """Integer rank; higher is more specific."""
        return MATCH_LEVEL_SPECIFICITY[self]

    @property
    def match_percentage(self) -> int:
        """Nominal match percentage reported in explanations."""
        return MATCH_LEVEL_PERCENTAGE[self]

    def __lt__(self, other):
        if not isinstance(other, MatchLevel):
            return NotImplemented
        return self.specificity < other.specificity

    def __le__(self, other):
        if not isinstance(other, MatchLevel):
            return NotImplemented
        return self.specificity <= other.specificity

    def __gt__(self, other):
        if not isinstance(other, MatchLevel):
            return NotImplemented
        return self.specificity > other.specificity

    def __ge__(self, other):
        if not isinstance(other, MatchLevel):
            return NotImplemented
        return self.specificity >= other.specificity


MATCH_LEVEL_SPECIFICITY: Dict[MatchLevel, int] = {
    MatchLevel.EXACT: 4,
    MatchLevel.HIGH: 3,
    MatchLevel.MEDIUM: 2,
    MatchLevel.LOW: 1,
    MatchLevel.FALLBACK: 0,
}

MATCH_LEVEL_PERCENTAGE: Dict[MatchLevel, int] = {
    MatchLevel.EXACT: 100,
    MatchLevel.HIGH: 80,
    MatchLevel.MEDIUM: 60,
    MatchLevel.LOW: 40,
    MatchLevel.FALLBACK: 20,
}

# Most specific first; the scan order used when selecting a match group.
MATCH_LEVELS_BY_SPECIFICITY: List[MatchLevel] = sorted(
    MatchLevel, key=lambda level: MATCH_LEVEL_SPECIFICITY[level], reverse=True
)

# Dimensions that must all match for each level. FALLBACK requires nothing.
PRIMARY_DIMENSIONS: FrozenSet[Dimension] = frozenset({
    Dimension.BUSINESS_UNIT,
    Dimension.SEGMENT,
    Dimension.CHANNEL,
    Dimension.JOURNEY,
    Dimension.CREDIT_PROFILE,
    Dimension.OFFER,
    Dimension.PARTNER,
    Dimension.SUBGROUP,
    Dimension.ACQUISITION_STAGE,
    Dimension.PRODUCT,
})

MATCH_LEVEL_REQUIREMENTS: Dict[MatchLevel, FrozenSet[Dimension]] = {
    MatchLevel.EXACT: PRIMARY_DIMENSIONS,
    MatchLevel.HIGH: frozenset({
        Dimension.BUSINESS_UNIT,
        Dimension.SEGMENT,
        Dimension.CHANNEL,
        Dimension.CREDIT_PROFILE,
    }),
    MatchLevel.MEDIUM: frozenset({Dimension.BUSINESS_UNIT, Dimension.SEGMENT}),
    MatchLevel.LOW: frozenset({Dimension.BUSINESS_UNIT}),
    MatchLevel.FALLBACK: frozenset(),
}


class ProjectionMethod(str, Enum):
    """
    How a projected value was produced.

    - weighted_similarity: Mean weighted by matchScore x temporalWeight over an
      exact/high match group of adequate size
    - population_average: Robust mean over the records that share the
      dimensions the query specifies (coarsened until the sample is adequate)
    - user_input: Value supplied by the caller (base volume)
    - derived: Computed from other projections (funnel stage ratios, unit cost
      tables) rather than from the metric's own history
    - fallback: No usable data; empty projection
    """
    WEIGHTED_SIMILARITY = "weighted_similarity"
    POPULATION_AVERAGE = "population_average"
    USER_INPUT = "user_input"
    DERIVED = "derived"
    FALLBACK = "fallback"


class DataQuality(str, Enum):
    """
    Data quality tier reported in projection explanations.

    Scored from sample size (0-3 pts), match level (0-3 pts) and metric
    consistency (0-2 pts): 6+ high, 3+ medium, otherwise low.
    """
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ImpactDirection(str, Enum):
    """Sign of a causal factor's impact on the target metric."""
    POSITIVE = "positive"
    NEGATIVE = "negative"


class AlternativeType(str, Enum):
    """Which part of a campaign setup an alternative changes."""
    TIMING = "timing"
    CHANNEL = "channel"
    OFFER = "offer"
    JOURNEY = "journey"
    SEGMENT = "segment"


class RiskLevel(str, Enum):
    """
    Risk of acting on an alternative, from the size of its supporting sample.

    - low: 10 or more supporting records
    - medium: 5 to 9
    - high: fewer than 5
    """
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
