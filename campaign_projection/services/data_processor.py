"""
Data Processor Service - Historical Record Normalization

This module turns raw historical campaign records into analyzable
ProcessedRecord instances. It is the only place raw input is validated; every
downstream component (similarity, causal attribution, prediction) works on the
fully typed ProcessedRecord.

Pipeline per record:
1. Validate the raw mapping into a CampaignRecord (pydantic, lenient parsing)
2. Parse the dispatch date (ISO or DD/MM/YYYY); drop the record when missing
3. Extract normalized categorical features (case and diacritic insensitive)
   plus temporal sub-features (day of week, month, quarter, hour, time slot)
4. Extract metrics and derive the absent ones from the present ones
5. Compute the temporal weight:
       weight = exp(-lambda * days_since_dispatch)
       lambda = -ln(decay_factor) / window_days
   with weight 1 for dispatches on/after the reference date and 0 beyond
   the window

Malformed records are dropped and counted, never raised. Only records inside
the temporal window are returned.
"""

import logging
import math
import unicodedata
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
from pydantic import ValidationError

from campaign_projection.core.config import ProjectionSettings, get_settings
from campaign_projection.models.enums import (
    CATEGORICAL_DIMENSIONS,
    Dimension,
    ProjectableMetric,
)
from campaign_projection.models.schemas import CampaignRecord

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

# Temporal sub-feature keys stored next to the dimension features
DAY_OF_WEEK_FEATURE: str = "dayOfWeek"
MONTH_FEATURE: str = "month"
QUARTER_FEATURE: str = "quarter"
HOUR_FEATURE: str = "hour"
TIME_SLOT_FEATURE: str = "timeSlot"

# Date formats accepted besides ISO 8601
FALLBACK_DATE_FORMATS: tuple = ("%d/%m/%Y", "%d/%m/%Y %H:%M", "%d/%m/%Y %H:%M:%S", "%d-%m-%Y")

RawRecord = Union[CampaignRecord, Mapping[str, Any]]
FeatureValue = Union[str, int]


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class ProcessedRecord:
    """
    A historical record prepared for analysis.

    Attributes:
        id: Record id (falls back to the campaign name, then a positional id)
        source: The validated CampaignRecord the record was built from
        features: Normalized dimension values keyed by Dimension value, plus
            temporal sub-features (dayOfWeek, month, quarter, hour, timeSlot)
        metrics: Metric values present on or derived for the record
        temporal_weight: Recency weight in [0, 1]
        dispatch_date: Parsed dispatch date
    """
    id: str
    source: CampaignRecord
    features: Dict[str, FeatureValue]
    metrics: Dict[ProjectableMetric, float]
    temporal_weight: float
    dispatch_date: date

    @property
    def name(self) -> str:
        return self.source.name or self.id

    def feature(self, dimension: Dimension) -> Optional[str]:
        """Normalized value of a categorical dimension, or None if absent."""
        value = self.features.get(dimension.value)
        return value if isinstance(value, str) else None

    def metric(self, metric: ProjectableMetric) -> Optional[float]:
        return self.metrics.get(metric)


@dataclass
class ProcessingResult:
    """Outcome of a processing pass over a raw record batch."""
    records: List[ProcessedRecord] = field(default_factory=list)
    raw_count: int = 0
    dropped_count: int = 0
    out_of_window_count: int = 0
    reference_date: Optional[date] = None


@dataclass
class MetricStats:
    """
    Descriptive statistics of one metric over a record group.

    Only strictly positive values are counted; zero and negative values are
    treated as missing.
    """
    mean: float = 0.0
    median: float = 0.0
    std_dev: float = 0.0
    min: float = 0.0
    max: float = 0.0
    count: int = 0
    weighted_mean: float = 0.0
    trimmed_mean: float = 0.0

    @property
    def coefficient_of_variation(self) -> float:
        """std_dev / mean, or 0 when the mean is 0."""
        if self.mean <= 0:
            return 0.0
        return self.std_dev / self.mean


# =============================================================================
# PARSING HELPERS
# =============================================================================

def normalize_value(value: Any) -> str:
    """
    Normalize a categorical value for comparison.

    Lowercases, strips diacritics and surrounding whitespace, and collapses
    inner runs of whitespace.

    Example:
        >>> normalize_value("  Crédito  Pessoal ")
        'credito pessoal'
    """
    text = unicodedata.normalize("NFD", str(value))
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return " ".join(text.lower().split())


def parse_dispatch_date(value: Any) -> Optional[date]:
    """
    Parse a dispatch date.

    Accepts date/datetime objects, ISO 8601 strings (optionally with a time
    part) and DD/MM/YYYY strings.

    Returns:
        The date, or None when the value is missing or unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass

    for fmt in FALLBACK_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_hour(value: Optional[str]) -> Optional[int]:
    """Hour component of an HH:MM dispatch time, or None."""
    if not value:
        return None
    head = value.split(":")[0].strip()
    try:
        hour = int(head)
    except ValueError:
        return None
    return hour if 0 <= hour <= 23 else None


def get_time_slot(hour: int) -> str:
    """Bucket an hour into morning (6-11), afternoon (12-17) or night."""
    if 6 <= hour < 12:
        return "morning"
    if 12 <= hour < 18:
        return "afternoon"
    return "night"


def _present(value: Optional[float]) -> bool:
    return value is not None and value > 0


# =============================================================================
# FEATURE AND METRIC EXTRACTION
# =============================================================================

def extract_features(record: CampaignRecord, dispatch_date: date) -> Dict[str, FeatureValue]:
    """
    Extract normalized categorical and temporal features.

    Blank dimensions are left out of the map, so "missing" is always
    represented by absence.
    """
    features: Dict[str, FeatureValue] = {}

    for dimension in CATEGORICAL_DIMENSIONS:
        raw = record.dimension_value(dimension)
        if raw:
            normalized = normalize_value(raw)
            if normalized:
                features[dimension.value] = normalized

    # Python weekday is Monday=0; stored as Sunday=0 to match calendar exports
    features[DAY_OF_WEEK_FEATURE] = (dispatch_date.weekday() + 1) % 7
    features[MONTH_FEATURE] = dispatch_date.month
    features[QUARTER_FEATURE] = (dispatch_date.month - 1) // 3 + 1

    hour = parse_hour(record.dispatchTime)
    if hour is not None:
        features[HOUR_FEATURE] = hour
        features[TIME_SLOT_FEATURE] = get_time_slot(hour)

    return features


def extract_metrics(
    record: CampaignRecord,
    default_delivery_rate: float = 78.0
) -> Dict[ProjectableMetric, float]:
    """
    Extract metrics from a record and derive the absent ones.

    Rates are percentage points. Derivations only fill metrics that are
    absent (or non-positive); present values are never overwritten.

    Derivations:
        conversionRate   = unitsGenerated / volume * 100
        totalCost        = offerCost + channelCost
        cac              = totalCost / unitsGenerated
        deliveryRate     = deliverableBase / volume * 100
        deliverableBase  = volume * deliveryRate / 100
                           (default_delivery_rate when no delivery data)
        proposalRate     = proposals / deliverableBase * 100
        approvalRate     = approvals / proposals * 100
        finalizationRate = unitsGenerated / approvals * 100

    Args:
        record: Validated campaign record
        default_delivery_rate: Delivery rate (percent) assumed when the record
            carries no delivery data

    Returns:
        Dict of metric -> value for every metric present or derivable
    """
    metrics: Dict[ProjectableMetric, float] = {}
    for metric in ProjectableMetric:
        value = getattr(record, metric.value, None)
        if value is not None:
            metrics[metric] = float(value)

    m = ProjectableMetric
    volume = metrics.get(m.VOLUME)
    generated = metrics.get(m.UNITS_GENERATED)

    if not _present(metrics.get(m.CONVERSION_RATE)) and _present(generated) and _present(volume):
        metrics[m.CONVERSION_RATE] = generated / volume * 100.0

    if not _present(metrics.get(m.TOTAL_COST)):
        cost = (record.offerCost or 0.0) + (record.channelCost or 0.0)
        if cost > 0:
            metrics[m.TOTAL_COST] = cost

    if not _present(metrics.get(m.CAC)) and _present(generated) and _present(metrics.get(m.TOTAL_COST)):
        metrics[m.CAC] = metrics[m.TOTAL_COST] / generated

    deliverable = metrics.get(m.DELIVERABLE_BASE)
    if not _present(metrics.get(m.DELIVERY_RATE)) and _present(deliverable) and _present(volume):
        metrics[m.DELIVERY_RATE] = deliverable / volume * 100.0

    if not _present(deliverable) and _present(volume):
        rate = metrics.get(m.DELIVERY_RATE)
        rate = rate if _present(rate) else default_delivery_rate
        deliverable = volume * rate / 100.0
        metrics[m.DELIVERABLE_BASE] = deliverable

    proposals = metrics.get(m.PROPOSALS)
    approvals = metrics.get(m.APPROVALS)

    if not _present(metrics.get(m.PROPOSAL_RATE)) and _present(proposals) and _present(deliverable):
        metrics[m.PROPOSAL_RATE] = proposals / deliverable * 100.0

    if not _present(metrics.get(m.APPROVAL_RATE)) and _present(approvals) and _present(proposals):
        metrics[m.APPROVAL_RATE] = approvals / proposals * 100.0

    if not _present(metrics.get(m.FINALIZATION_RATE)) and _present(generated) and _present(approvals):
        metrics[m.FINALIZATION_RATE] = generated / approvals * 100.0

    return metrics


def calculate_temporal_weight(
    dispatch_date: date,
    reference_date: date,
    decay_factor: float,
    window_days: int
) -> float:
    """
    Exponential recency weight of a dispatch.

    Args:
        dispatch_date: Dispatch date of the record
        reference_date: "Now" for the processing pass
        decay_factor: Weight reached exactly at window_days (0 < f < 1)
        window_days: Look-back window in days

    Returns:
        1.0 for dispatches on or after the reference date, 0.0 beyond the
        window, exp(-lambda * days) in between.

    Example:
        >>> round(calculate_temporal_weight(date(2024, 1, 1), date(2024, 3, 31), 0.5, 90), 6)
        0.5
    """
    days = (reference_date - dispatch_date).days
    if days <= 0:
        return 1.0
    if days > window_days:
        return 0.0
    decay_lambda = -math.log(decay_factor) / window_days
    return float(min(1.0, max(0.0, math.exp(-decay_lambda * days))))


# =============================================================================
# RECORD PROCESSING
# =============================================================================

def _coerce_record(raw: RawRecord) -> CampaignRecord:
    if isinstance(raw, CampaignRecord):
        return raw
    return CampaignRecord.model_validate(dict(raw))


def process_record(
    raw: RawRecord,
    reference_date: date,
    settings: ProjectionSettings,
    position: int = 0
) -> Optional[ProcessedRecord]:
    """
    Process a single raw record.

    Returns:
        The ProcessedRecord, or None when the record is malformed (failed
        validation or no parseable dispatch date).
    """
    try:
        record = _coerce_record(raw)
    except (ValidationError, TypeError, ValueError) as e:
        logger.debug(f"Dropping record #{position}: validation failed ({e.__class__.__name__})")
        return None

    dispatch_date = parse_dispatch_date(record.dispatchDate)
    if dispatch_date is None:
        logger.debug(f"Dropping record #{position}: missing or unparseable dispatch date")
        return None

    weight = calculate_temporal_weight(
        dispatch_date,
        reference_date,
        settings.temporal_decay_factor,
        settings.temporal_window_days,
    )

    return ProcessedRecord(
        id=record.id or record.name or f"record-{position}",
        source=record,
        features=extract_features(record, dispatch_date),
        metrics=extract_metrics(record, settings.default_delivery_rate),
        temporal_weight=weight,
        dispatch_date=dispatch_date,
    )


def process_records(
    raw_records: Iterable[RawRecord],
    reference_date: Optional[Union[date, datetime]] = None,
    settings: Optional[ProjectionSettings] = None
) -> ProcessingResult:
    """
    Process a batch of raw records and keep those inside the temporal window.

    Args:
        raw_records: CampaignRecord instances or raw mappings (camelCase keys
            or spreadsheet headers)
        reference_date: "Now" for temporal weighting (defaults to today)
        settings: Engine settings (defaults to get_settings())

    Returns:
        ProcessingResult with the kept records and drop counters
    """
    settings = settings or get_settings()
    if reference_date is None:
        reference_date = date.today()
    elif isinstance(reference_date, datetime):
        reference_date = reference_date.date()

    result = ProcessingResult(reference_date=reference_date)

    for position, raw in enumerate(raw_records):
        result.raw_count += 1
        processed = process_record(raw, reference_date, settings, position)
        if processed is None:
            result.dropped_count += 1
            continue
        if (reference_date - processed.dispatch_date).days > settings.temporal_window_days:
            result.out_of_window_count += 1
            continue
        result.records.append(processed)

    if result.dropped_count:
        logger.debug(f"Dropped {result.dropped_count} malformed records of {result.raw_count}")

    return result


# =============================================================================
# AGGREGATION HELPERS
# =============================================================================

def group_by_dimension(
    records: Sequence[ProcessedRecord],
    dimension: Union[Dimension, str]
) -> Dict[str, List[ProcessedRecord]]:
    """Group records by a feature value; missing values group under 'undefined'."""
    key = dimension.value if isinstance(dimension, Dimension) else dimension
    groups: Dict[str, List[ProcessedRecord]] = {}
    for record in records:
        value = record.features.get(key)
        groups.setdefault("undefined" if value is None else str(value), []).append(record)
    return groups


def get_feature_distribution(
    records: Sequence[ProcessedRecord],
    feature: Union[Dimension, str]
) -> Dict[str, int]:
    """Value counts of a feature, most frequent first."""
    key = feature.value if isinstance(feature, Dimension) else feature
    if not records:
        return {}
    series = pd.Series(
        ["undefined" if r.features.get(key) is None else str(r.features.get(key)) for r in records]
    )
    return {str(k): int(v) for k, v in series.value_counts().items()}


def filter_by_period(
    records: Sequence[ProcessedRecord],
    start: date,
    end: date
) -> List[ProcessedRecord]:
    """Records dispatched within [start, end]."""
    return [r for r in records if start <= r.dispatch_date <= end]


def _trimmed_mean(values: np.ndarray, proportion: float = 0.1) -> float:
    """Mean after cutting `proportion` of the values from each tail."""
    n = len(values)
    if n == 0:
        return 0.0
    cut = int(math.floor(n * proportion))
    ordered = np.sort(values)
    if cut > 0 and n - 2 * cut > 0:
        ordered = ordered[cut:n - cut]
    return float(ordered.mean())


def calculate_metric_stats(
    records: Sequence[ProcessedRecord],
    metric: ProjectableMetric,
    weights: Optional[Sequence[float]] = None
) -> MetricStats:
    """
    Descriptive statistics of a metric over a record group.

    Args:
        records: Record group
        metric: Metric to summarize
        weights: Optional per-record weights for weighted_mean (aligned with
            records); defaults to each record's temporal weight

    Returns:
        MetricStats (all zeros when no record carries a positive value)
    """
    if weights is None:
        weights = [r.temporal_weight for r in records]

    pairs = [
        (r.metrics[metric], w)
        for r, w in zip(records, weights)
        if r.metrics.get(metric) is not None and r.metrics[metric] > 0
    ]
    if not pairs:
        return MetricStats()

    values = np.array([p[0] for p in pairs], dtype=float)
    w = np.array([p[1] for p in pairs], dtype=float)

    mean = float(values.mean())
    total_weight = float(w.sum())
    weighted_mean = float(np.dot(values, w) / total_weight) if total_weight > 0 else mean

    return MetricStats(
        mean=mean,
        median=float(np.median(values)),
        std_dev=float(values.std()),
        min=float(values.min()),
        max=float(values.max()),
        count=len(values),
        weighted_mean=weighted_mean,
        trimmed_mean=_trimmed_mean(values),
    )


def records_to_frame(
    records: Sequence[ProcessedRecord],
    metric: ProjectableMetric,
    dimensions: Sequence[Dimension] = CATEGORICAL_DIMENSIONS
) -> pd.DataFrame:
    """
    Tabulate a record group for attribution.

    One row per record carrying a positive value of `metric`; one column per
    dimension (missing values as the category "undefined") plus `value`.
    """
    rows = []
    for record in records:
        value = record.metrics.get(metric)
        if value is None or value <= 0:
            continue
        row = {d.value: record.feature(d) or "undefined" for d in dimensions}
        row["value"] = value
        rows.append(row)
    columns = [d.value for d in dimensions] + ["value"]
    return pd.DataFrame(rows, columns=columns)
