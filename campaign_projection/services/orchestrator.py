"""
Projection Orchestrator - Facade over the projection engine

The ProjectionOrchestrator owns the processed dataset and is the only surface
callers use:

- initialize(records): rebuild the processed dataset wholesale
- is_ready(): initialized with a non-empty processed dataset
- project_field(field, query) / project_all_fields(query)
- suggest_field_value(field_name, query)
- get_causal_analysis(metric, query)
- generate_alternatives(query, metric)
- get_dataset_stats()

Each orchestrator is a caller-owned instance; there is no module-level engine
state. The processed dataset lives in an immutable DatasetSnapshot that
initialize() replaces with a single reference assignment, and every read
takes the snapshot reference once, so a projection running concurrently with
a re-initialization sees either the old or the new dataset in full.

Error policy:
- Malformed records are dropped during initialize (counted in the stats)
- Not ready / no match: the defined empty projection, never an exception
- Unknown metric or suggestion field: ValueError
"""

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from campaign_projection.core.config import ProjectionSettings, get_settings
from campaign_projection.models.enums import (
    CATEGORICAL_DIMENSIONS,
    Dimension,
    MatchLevel,
    ProjectableMetric,
)
from campaign_projection.models.schemas import (
    AllProjectionsResult,
    Alternative,
    CausalAnalysisResult,
    DatasetStats,
    DateRange,
    FieldProjection,
    FieldSuggestion,
    ProjectionQuery,
)
from campaign_projection.services.alternatives import generate_alternatives
from campaign_projection.services.causal_analysis import empty_analysis, perform_causal_analysis
from campaign_projection.services.data_processor import (
    ProcessedRecord,
    RawRecord,
    get_feature_distribution,
    process_records,
)
from campaign_projection.services.prediction import (
    create_empty_projection,
    project_all_metrics,
    project_metric,
)
from campaign_projection.services.similarity import (
    MatchGroup,
    find_similar_records,
    rank_dimension_values,
    select_best_match_group,
)

logger = logging.getLogger(__name__)

QueryInput = Union[ProjectionQuery, Mapping[str, Any], None]


@dataclass(frozen=True)
class DatasetSnapshot:
    """Immutable processed dataset produced by one initialize() call."""
    records: Tuple[ProcessedRecord, ...]
    raw_count: int
    dropped_count: int
    reference_date: date
    initialized_at: datetime


def _coerce_metric(field: Union[ProjectableMetric, str]) -> ProjectableMetric:
    if isinstance(field, ProjectableMetric):
        return field
    try:
        return ProjectableMetric(field)
    except ValueError:
        valid = ", ".join(m.value for m in ProjectableMetric)
        raise ValueError(f"Unknown metric {field!r}. Expected one of: {valid}") from None


def _coerce_dimension(field_name: Union[Dimension, str]) -> Dimension:
    try:
        dimension = field_name if isinstance(field_name, Dimension) else Dimension(field_name)
    except ValueError:
        dimension = None
    if dimension not in CATEGORICAL_DIMENSIONS:
        valid = ", ".join(d.value for d in CATEGORICAL_DIMENSIONS)
        raise ValueError(f"Cannot suggest values for {field_name!r}. Expected one of: {valid}")
    return dimension


def _coerce_query(query: QueryInput) -> ProjectionQuery:
    if isinstance(query, ProjectionQuery):
        return query
    return ProjectionQuery.model_validate(dict(query or {}))


class ProjectionOrchestrator:
    """
    Facade coordinating processing, matching, attribution and prediction.

    Args:
        settings: Engine settings (defaults to get_settings())
        reference_date: Fixed "now" for temporal weighting; today when omitted

    Usage:
        engine = ProjectionOrchestrator()
        engine.initialize(records)
        projection = engine.project_field(
            "conversionRate", {"businessUnit": "B2C", "channel": "SMS"}
        )
    """

    def __init__(
        self,
        settings: Optional[ProjectionSettings] = None,
        reference_date: Optional[date] = None
    ):
        self._settings = settings or get_settings()
        self._reference_date = reference_date
        self._snapshot: Optional[DatasetSnapshot] = None
        self._init_lock = threading.Lock()

    @property
    def settings(self) -> ProjectionSettings:
        return self._settings

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def initialize(
        self,
        records: Iterable[RawRecord],
        reference_date: Optional[date] = None
    ) -> None:
        """
        Rebuild the processed dataset from raw historical records.

        Idempotent: the same records and reference date always produce the
        same state. Any previous dataset is replaced atomically.
        """
        reference = reference_date or self._reference_date or date.today()
        raw = list(records)

        result = process_records(raw, reference, self._settings)
        snapshot = DatasetSnapshot(
            records=tuple(result.records),
            raw_count=result.raw_count,
            dropped_count=result.dropped_count,
            reference_date=reference,
            initialized_at=datetime.now(timezone.utc),
        )

        with self._init_lock:
            self._snapshot = snapshot

        logger.info(
            f"Projection engine initialized: {len(snapshot.records)} of {snapshot.raw_count} "
            f"records inside the {self._settings.temporal_window_days}-day window "
            f"({snapshot.dropped_count} dropped as malformed)"
        )

    def is_ready(self) -> bool:
        snapshot = self._snapshot
        return snapshot is not None and len(snapshot.records) > 0

    def _ready_snapshot(self) -> Optional[DatasetSnapshot]:
        snapshot = self._snapshot
        if snapshot is None or not snapshot.records:
            return None
        return snapshot

    def _select_group(self, snapshot: DatasetSnapshot, query: ProjectionQuery) -> MatchGroup:
        matches = find_similar_records(snapshot.records, query, self._settings)
        return select_best_match_group(matches, self._settings.min_sample_size)

    # =========================================================================
    # Projections
    # =========================================================================

    def project_field(
        self,
        field: Union[ProjectableMetric, str],
        query: QueryInput = None
    ) -> FieldProjection:
        """
        Project a single metric for a query.

        Raises:
            ValueError: If `field` is not a projectable metric.
        """
        metric = _coerce_metric(field)
        query = _coerce_query(query)

        snapshot = self._ready_snapshot()
        if snapshot is None:
            logger.debug(f"project_field({metric.value}) called before the engine is ready")
            return create_empty_projection(metric)

        group = self._select_group(snapshot, query)
        return project_metric(metric, group, query, self._settings)

    def project_all_fields(self, query: QueryInput = None) -> AllProjectionsResult:
        """Project every metric and reconcile the funnel."""
        query = _coerce_query(query)
        computed_at = datetime.now(timezone.utc)

        snapshot = self._ready_snapshot()
        if snapshot is None:
            return AllProjectionsResult(
                projections={m: create_empty_projection(m, computed_at) for m in ProjectableMetric},
                overallConfidence=0,
                totalSampleSize=0,
                matchLevel=MatchLevel.FALLBACK,
                computedAt=computed_at,
            )

        group = self._select_group(snapshot, query)
        projections = project_all_metrics(group, query, self._settings, computed_at)

        confidences = [p.confidence for p in projections.values()]
        overall = int(round(sum(confidences) / len(confidences))) if confidences else 0

        return AllProjectionsResult(
            projections=projections,
            overallConfidence=overall,
            totalSampleSize=len(group),
            matchLevel=group.level,
            computedAt=computed_at,
        )

    # =========================================================================
    # Analysis and Suggestions
    # =========================================================================

    def get_causal_analysis(
        self,
        metric: Union[ProjectableMetric, str],
        query: QueryInput = None
    ) -> CausalAnalysisResult:
        """
        Full associational driver analysis of a metric over the query's
        selected match group.

        Raises:
            ValueError: If `metric` is not a projectable metric.
        """
        metric = _coerce_metric(metric)
        query = _coerce_query(query)

        snapshot = self._ready_snapshot()
        if snapshot is None:
            return empty_analysis(metric)

        group = self._select_group(snapshot, query)
        return perform_causal_analysis(group.records, metric, query, self._settings)

    def generate_alternatives(
        self,
        query: QueryInput = None,
        metric: Union[ProjectableMetric, str] = ProjectableMetric.CONVERSION_RATE,
        max_alternatives: Optional[int] = None
    ) -> List[Alternative]:
        """
        One-field variations of the setup ranked by expected improvement
        of `metric`.

        Returns:
            Up to max_alternatives alternatives; empty when the engine is not
            ready or the setup has no projection from history

        Raises:
            ValueError: If `metric` is not a projectable metric.
        """
        metric = _coerce_metric(metric)
        query = _coerce_query(query)

        snapshot = self._ready_snapshot()
        if snapshot is None:
            return []

        return generate_alternatives(
            snapshot.records,
            query,
            metric,
            self._settings,
            reference_date=snapshot.reference_date,
            max_alternatives=max_alternatives,
        )

    def suggest_field_value(
        self,
        field_name: Union[Dimension, str],
        query: QueryInput = None
    ) -> List[FieldSuggestion]:
        """
        Suggest values for a categorical form field.

        Candidate values are ranked by similarity-weighted frequency among
        the records most similar to the rest of the query. Independent of
        metric projection.

        Returns:
            Up to max_suggestions suggestions, highest confidence first; empty
            when the engine is not ready or nothing matches

        Raises:
            ValueError: If `field_name` is not a categorical dimension.
        """
        dimension = _coerce_dimension(field_name)
        query = _coerce_query(query).without(dimension)

        snapshot = self._ready_snapshot()
        if snapshot is None:
            return []

        matches = find_similar_records(
            snapshot.records,
            query,
            self._settings,
            limit=self._settings.suggestion_match_limit,
        )
        if not matches:
            return []

        # Display the first raw spelling seen for each normalized value
        display: Dict[str, str] = {}
        for match in matches:
            normalized = match.record.feature(dimension)
            raw = match.record.source.dimension_value(dimension)
            if normalized and raw:
                display.setdefault(normalized, raw)

        source = f"{len(matches)} similar campaigns"
        return [
            FieldSuggestion(
                value=display.get(value, value),
                confidence=int(round(share * 100)),
                source=source,
            )
            for value, share in rank_dimension_values(matches, dimension, self._settings.max_suggestions)
        ]

    # =========================================================================
    # Diagnostics
    # =========================================================================

    def get_dataset_stats(self) -> DatasetStats:
        """Totals, date range, per-dimension distributions and metric coverage."""
        snapshot = self._snapshot
        if snapshot is None:
            return DatasetStats(totalRecords=0)

        records = snapshot.records
        dates = sorted(r.dispatch_date for r in records)
        coverage = {
            metric.value: sum(1 for r in records if metric in r.metrics)
            for metric in ProjectableMetric
        }

        return DatasetStats(
            totalRecords=len(records),
            rawRecords=snapshot.raw_count,
            droppedRecords=snapshot.dropped_count,
            dateRange=DateRange(start=dates[0], end=dates[-1]) if dates else DateRange(),
            distributions={
                d.value: get_feature_distribution(records, d)
                for d in CATEGORICAL_DIMENSIONS
            } if records else {},
            metricCoverage=coverage,
        )
