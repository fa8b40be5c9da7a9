"""
Test suite for the Prediction Engine.

Verifies:
1. Value domain helpers (clipping, rounding) and confidence intervals
2. Empty and user-input projections
3. Method selection (weighted similarity vs population average)
4. Query-coverage confidence adjustments
5. Funnel consistency: downstream counts never exceed upstream counts
6. Unit cost derivation of total cost and CAC
7. Derived projections for stages with no history of their own
8. Per-metric ceilings and the unit cost CAC estimate
"""

from datetime import datetime, timezone

import numpy as np
import pytest

from campaign_projection.core.config import ProjectionSettings
from campaign_projection.models.enums import (
    FUNNEL_STAGES,
    MatchLevel,
    ProjectableMetric,
    ProjectionMethod,
)
from campaign_projection.models.schemas import ProjectionInterval, ProjectionQuery
from campaign_projection.services.data_processor import MetricStats, process_records
from campaign_projection.services.prediction import (
    ASSUMPTION_CONFIDENCE_FACTOR,
    apply_funnel_consistency,
    apply_metric_ceiling,
    calculate_confidence_interval,
    clip_to_domain,
    create_derived_projection,
    create_empty_projection,
    create_user_input_projection,
    estimate_cac_from_unit_cost,
    metric_ceiling,
    project_all_metrics,
    project_metric,
    round_value,
)
from campaign_projection.services.similarity import (
    MatchGroup,
    find_similar_records,
    select_best_match_group,
)
from campaign_projection.tests.conftest import REFERENCE_DATE


COMPUTED_AT = datetime(2024, 6, 30, 12, 0, tzinfo=timezone.utc)


def select_group(records, query, settings):
    matches = find_similar_records(records, query, settings)
    return select_best_match_group(matches, settings.min_sample_size)


def projections_from_values(values):
    """Projection dict with the given values (every other metric at 0)."""
    return {
        metric: create_user_input_projection(metric, values.get(metric, 0.0), COMPUTED_AT)
        for metric in ProjectableMetric
    }


def assert_no_partial_projection(projections):
    """A projection with zero confidence never carries a value."""
    for metric, projection in projections.items():
        if projection.confidence == 0:
            assert projection.projectedValue == 0.0, f"{metric.value} has a value but no confidence"
        if projection.method is ProjectionMethod.FALLBACK:
            assert projection.confidence == 0, f"{metric.value} is a fallback with confidence"


def assert_funnel_ordered(projections):
    for upstream, downstream in zip(FUNNEL_STAGES, FUNNEL_STAGES[1:]):
        assert projections[downstream].projectedValue <= projections[upstream].projectedValue, \
            f'{downstream.value} exceeds {upstream.value}'


# =============================================================================
# VALUE DOMAIN HELPERS
# =============================================================================


class TestValueDomain:

    def test_clip_rate(self):
        assert clip_to_domain(120.0, ProjectableMetric.CONVERSION_RATE) == 100.0
        assert clip_to_domain(-5.0, ProjectableMetric.OPEN_RATE) == 0.0

    def test_clip_count_and_currency(self):
        assert clip_to_domain(-3.0, ProjectableMetric.PROPOSALS) == 0.0
        assert clip_to_domain(1e9, ProjectableMetric.CAC) == 1e9

    def test_clip_nan(self):
        assert clip_to_domain(float('nan'), ProjectableMetric.CAC) == 0.0

    def test_rounding(self):
        assert round_value(12.6, ProjectableMetric.APPROVALS) == 13.0
        assert round_value(9.456, ProjectableMetric.CONVERSION_RATE) == 9.46
        assert round_value(3.14159, ProjectableMetric.CAC) == 3.14


class TestConfidenceInterval:

    def test_standard_error_margin(self):
        stats = MetricStats(mean=10.0, std_dev=2.0, count=4)
        interval = calculate_confidence_interval(10.0, stats, ProjectableMetric.CONVERSION_RATE, 1.96)
        assert interval.min == pytest.approx(8.04)
        assert interval.max == pytest.approx(11.96)

    def test_single_observation_margin(self):
        stats = MetricStats(mean=10.0, count=1)
        interval = calculate_confidence_interval(10.0, stats, ProjectableMetric.CONVERSION_RATE)
        assert (interval.min, interval.max) == (8.0, 12.0)

    def test_interval_clipped_to_domain(self):
        stats = MetricStats(mean=99.0, std_dev=10.0, count=2)
        interval = calculate_confidence_interval(99.0, stats, ProjectableMetric.DELIVERY_RATE)
        assert interval.max == 100.0
        assert interval.min <= 99.0 <= interval.max


# =============================================================================
# EMPTY AND USER-INPUT PROJECTIONS
# =============================================================================


class TestSpecialProjections:

    def test_empty_projection(self):
        projection = create_empty_projection(ProjectableMetric.CONVERSION_RATE, COMPUTED_AT)
        assert projection.projectedValue == 0.0
        assert projection.confidence == 0
        assert projection.method is ProjectionMethod.FALLBACK
        assert projection.similarCampaigns == []
        assert 'No historical data' in projection.explanation.summary

    def test_user_input_projection(self):
        projection = create_user_input_projection(ProjectableMetric.VOLUME, 50000.4, COMPUTED_AT)
        assert projection.projectedValue == 50000.0
        assert projection.confidence == 100
        assert projection.method is ProjectionMethod.USER_INPUT
        assert (projection.interval.min, projection.interval.max) == (50000.0, 50000.0)

    def test_empty_group(self, settings):
        group = MatchGroup(matches=[], level=MatchLevel.FALLBACK)
        projection = project_metric(
            ProjectableMetric.CONVERSION_RATE, group, ProjectionQuery(), settings
        )
        assert projection.confidence == 0
        assert projection.method is ProjectionMethod.FALLBACK

    def test_metric_absent_from_group(self, settings, processed_channel_split):
        query = ProjectionQuery(businessUnit='B2C')
        group = select_group(processed_channel_split, query, settings)
        projection = project_metric(ProjectableMetric.CAC, group, query, settings)
        assert projection.projectedValue == 0.0
        assert projection.confidence == 0


# =============================================================================
# METHOD SELECTION
# =============================================================================


class TestProjectMetric:

    def test_population_average_restricted_to_query_dimensions(self, settings, processed_channel_split):
        query = ProjectionQuery(businessUnit='B2C', channel='SMS')
        group = select_group(processed_channel_split, query, settings)
        projection = project_metric(ProjectableMetric.CONVERSION_RATE, group, query, settings)

        assert group.level is MatchLevel.LOW
        assert projection.method is ProjectionMethod.POPULATION_AVERAGE
        assert projection.projectedValue == pytest.approx(10.0)
        assert projection.explanation.sampleSize == 10
        assert projection.interval.min <= projection.projectedValue <= projection.interval.max

    def test_coverage_raises_confidence(self, settings, processed_channel_split):
        narrow = ProjectionQuery(businessUnit='B2C', channel='SMS')
        broad = ProjectionQuery(businessUnit='B2C')

        narrow_projection = project_metric(
            ProjectableMetric.CONVERSION_RATE,
            select_group(processed_channel_split, narrow, settings), narrow, settings,
        )
        broad_projection = project_metric(
            ProjectableMetric.CONVERSION_RATE,
            select_group(processed_channel_split, broad, settings), broad, settings,
        )

        assert broad_projection.projectedValue == pytest.approx(7.5, abs=0.1)
        assert narrow_projection.confidence > broad_projection.confidence

    def test_similar_campaigns_ranked_and_capped(self, settings, processed_channel_split):
        query = ProjectionQuery(businessUnit='B2C', channel='SMS')
        group = select_group(processed_channel_split, query, settings)
        projection = project_metric(ProjectableMetric.CONVERSION_RATE, group, query, settings)

        references = projection.similarCampaigns
        assert len(references) == settings.max_similar_campaigns
        assert all(ref.metricValue == 10.0 for ref in references)
        scores = [ref.similarityScore for ref in references]
        assert scores == sorted(scores, reverse=True)

    def test_weighted_similarity_for_high_match(self, settings, record_factory):
        values = [4.0, 5.0, 6.0, 4.0, 5.0, 6.0]
        raw = [
            record_factory(
                i, days_ago=i * 5, segment='Retention', channel='SMS',
                creditProfile='Prime', conversionRate=v,
            )
            for i, v in enumerate(values)
        ]
        records = process_records(raw, REFERENCE_DATE, settings).records
        query = ProjectionQuery(
            businessUnit='B2C', segment='Retention', channel='SMS', creditProfile='Prime'
        )
        group = select_group(records, query, settings)
        projection = project_metric(ProjectableMetric.CONVERSION_RATE, group, query, settings)

        assert group.level is MatchLevel.HIGH
        assert projection.method is ProjectionMethod.WEIGHTED_SIMILARITY
        assert 4.0 <= projection.projectedValue <= 6.0
        assert projection.explanation.matchPercentage == 80

    def test_causal_factors_attached_when_enabled(self, settings, processed_channel_split):
        query = ProjectionQuery(businessUnit='B2C')
        group = select_group(processed_channel_split, query, settings)
        projection = project_metric(ProjectableMetric.CONVERSION_RATE, group, query, settings)
        assert projection.explanation.causalFactors[0].feature == 'channel'

    def test_causal_factors_skipped_when_disabled(self, processed_channel_split):
        settings = ProjectionSettings(enable_causal_analysis=False)
        query = ProjectionQuery(businessUnit='B2C')
        group = select_group(processed_channel_split, query, settings)
        projection = project_metric(ProjectableMetric.CONVERSION_RATE, group, query, settings)
        assert projection.explanation.causalFactors == []


# =============================================================================
# FUNNEL CONSISTENCY
# =============================================================================


class TestFunnelConsistency:

    def test_inconsistent_counts_repaired(self, settings):
        m = ProjectableMetric
        projections = projections_from_values({
            m.VOLUME: 1000, m.DELIVERABLE_BASE: 2000, m.PROPOSALS: 3000,
            m.APPROVALS: 50, m.UNITS_GENERATED: 4000,
        })
        result = apply_funnel_consistency(projections, ProjectionQuery(), settings)

        assert_funnel_ordered(result)
        assert result[m.DELIVERABLE_BASE].projectedValue == 780.0
        assert result[m.DELIVERABLE_BASE].metadata.funnelAdjusted is True
        assert result[m.VOLUME].metadata.funnelAdjusted is False

    def test_stage_rates_drive_counts(self, settings):
        m = ProjectableMetric
        projections = projections_from_values({
            m.VOLUME: 1000, m.DELIVERY_RATE: 80, m.PROPOSAL_RATE: 50,
            m.APPROVAL_RATE: 50, m.FINALIZATION_RATE: 50,
        })
        result = apply_funnel_consistency(projections, ProjectionQuery(), settings)

        assert result[m.DELIVERABLE_BASE].projectedValue == 800.0
        assert result[m.PROPOSALS].projectedValue == 400.0
        assert result[m.APPROVALS].projectedValue == 200.0
        assert result[m.UNITS_GENERATED].projectedValue == 100.0

    def test_fallback_ratios(self, settings):
        m = ProjectableMetric
        projections = projections_from_values({
            m.VOLUME: 1000, m.DELIVERY_RATE: 100, m.PROPOSAL_RATE: 10,
        })
        result = apply_funnel_consistency(projections, ProjectionQuery(), settings)

        assert result[m.PROPOSALS].projectedValue == 100.0
        assert result[m.APPROVALS].projectedValue == 65.0
        assert result[m.UNITS_GENERATED].projectedValue == 55.0

    def test_unit_costs(self, settings):
        m = ProjectableMetric
        projections = projections_from_values({
            m.VOLUME: 1000, m.DELIVERY_RATE: 80, m.PROPOSAL_RATE: 50,
            m.APPROVAL_RATE: 50, m.FINALIZATION_RATE: 50,
        })
        query = ProjectionQuery(channel='SMS', offer='Limite')
        result = apply_funnel_consistency(projections, query, settings)

        # 1000 sent x 0.064 + 100 generated x 1.00
        assert result[m.TOTAL_COST].projectedValue == pytest.approx(164.0)
        assert result[m.CAC].projectedValue == pytest.approx(1.64)

    def test_no_cost_rewrite_without_channel(self, settings):
        m = ProjectableMetric
        projections = projections_from_values({m.VOLUME: 1000, m.TOTAL_COST: 77.0})
        result = apply_funnel_consistency(projections, ProjectionQuery(), settings)
        assert result[m.TOTAL_COST].projectedValue == 77.0

    def test_adjusted_interval_contains_value(self, settings):
        m = ProjectableMetric
        projections = projections_from_values({m.VOLUME: 1000, m.UNITS_GENERATED: 5000})
        result = apply_funnel_consistency(projections, ProjectionQuery(), settings)
        generated = result[m.UNITS_GENERATED]
        assert generated.interval.min <= generated.projectedValue <= generated.interval.max

    def test_project_all_metrics_with_base_volume(self, settings, funnel_records):
        records = process_records(funnel_records, REFERENCE_DATE, settings).records
        query = ProjectionQuery(
            businessUnit='B2C', segment='Retention', channel='SMS',
            creditProfile='Prime', offer='Limite', baseVolume=50000,
        )
        group = select_group(records, query, settings)
        result = project_all_metrics(group, query, settings, COMPUTED_AT)
        m = ProjectableMetric

        assert result[m.VOLUME].method is ProjectionMethod.USER_INPUT
        assert result[m.VOLUME].projectedValue == 50000.0
        assert result[m.DELIVERABLE_BASE].projectedValue == pytest.approx(40000, abs=1)
        assert result[m.PROPOSALS].projectedValue == pytest.approx(4000, abs=1)
        assert result[m.APPROVALS].projectedValue == pytest.approx(2000, abs=1)
        assert result[m.UNITS_GENERATED].projectedValue == pytest.approx(1600, abs=1)
        assert result[m.TOTAL_COST].projectedValue == pytest.approx(4800, abs=2)
        assert result[m.CAC].projectedValue == pytest.approx(3.0, abs=0.01)
        assert_funnel_ordered(result)

    @pytest.mark.slow
    def test_ordering_holds_on_noisy_history(self, settings, record_factory):
        """Independently drawn stage counts still project in funnel order."""
        rng = np.random.default_rng(42)
        raw = []
        for i in range(40):
            raw.append(record_factory(
                i,
                days_ago=int(rng.integers(0, 80)),
                channel=['SMS', 'Email', 'Push'][i % 3],
                segment=['Retention', 'Growth'][i % 2],
                volume=float(rng.integers(1000, 20000)),
                deliverableBase=float(rng.integers(500, 25000)),
                proposals=float(rng.integers(10, 3000)),
                approvals=float(rng.integers(10, 3000)),
                unitsGenerated=float(rng.integers(10, 3000)),
            ))
        records = process_records(raw, REFERENCE_DATE, settings).records

        queries = [
            ProjectionQuery(businessUnit='B2C'),
            ProjectionQuery(businessUnit='B2C', channel='SMS'),
            ProjectionQuery(businessUnit='B2C', channel='Push', segment='Growth', baseVolume=1234),
            ProjectionQuery(businessUnit='B2B', baseVolume=10),
        ]
        for query in queries:
            group = select_group(records, query, settings)
            assert_funnel_ordered(project_all_metrics(group, query, settings, COMPUTED_AT))


# =============================================================================
# DERIVED PROJECTIONS
# =============================================================================


class TestDerivedProjections:

    def test_derived_projection_from_one_source(self):
        proposals = create_user_input_projection(ProjectableMetric.PROPOSALS, 500, COMPUTED_AT)
        derived = create_derived_projection(
            ProjectableMetric.APPROVALS, 325.0, [proposals], 'the default 65% approval rate'
        )

        assert derived.method is ProjectionMethod.DERIVED
        assert derived.projectedValue == 325.0
        assert derived.confidence == 80
        assert (derived.interval.min, derived.interval.max) == (325.0, 325.0)
        assert derived.metadata.funnelAdjusted is True
        assert 'derived from the projected' in derived.explanation.summary
        assert 'Assumes the default 65% approval rate.' in derived.explanation.summary

    def test_least_confident_source_and_summed_margins(self):
        m = ProjectableMetric
        sent = create_user_input_projection(m.VOLUME, 1000, COMPUTED_AT)
        rate = create_user_input_projection(m.DELIVERY_RATE, 80, COMPUTED_AT).model_copy(update={
            'confidence': 60,
            'interval': ProjectionInterval(min=72.0, max=88.0),
        })
        derived = create_derived_projection(m.DELIVERABLE_BASE, 800.0, [sent, rate])

        assert derived.confidence == 60
        # relative half-widths 0 (volume) + 0.10 (rate)
        assert (derived.interval.min, derived.interval.max) == (720.0, 880.0)

    def test_empty_downstream_stages_stay_empty(self, settings):
        m = ProjectableMetric
        result = apply_funnel_consistency(
            projections_from_values({m.VOLUME: 1000}), ProjectionQuery(), settings
        )

        deliverable = result[m.DELIVERABLE_BASE]
        assert deliverable.projectedValue == 780.0
        assert deliverable.method is ProjectionMethod.DERIVED
        assert deliverable.confidence == int(round(100 * ASSUMPTION_CONFIDENCE_FACTOR))
        # No proposal history: nothing below the deliverable base can be derived
        for stage in (m.PROPOSALS, m.APPROVALS, m.UNITS_GENERATED):
            assert result[stage].projectedValue == 0.0
            assert result[stage].confidence == 0
        assert_no_partial_projection(result)

    def test_fallback_ratio_stages_lose_confidence(self, settings):
        m = ProjectableMetric
        result = apply_funnel_consistency(
            projections_from_values({m.VOLUME: 1000, m.PROPOSALS: 100}), ProjectionQuery(), settings
        )

        assert result[m.PROPOSALS].projectedValue == 100.0
        assert result[m.PROPOSALS].method is ProjectionMethod.USER_INPUT
        assert result[m.APPROVALS].projectedValue == 65.0
        assert result[m.APPROVALS].confidence == 80
        assert result[m.UNITS_GENERATED].projectedValue == 55.0
        assert result[m.UNITS_GENERATED].confidence == 64
        assert_no_partial_projection(result)
        assert_funnel_ordered(result)

    def test_stages_without_history_are_derived(self, settings, record_factory):
        raw = [
            record_factory(i, days_ago=i * 3, channel='SMS', volume=10000.0, proposals=500.0)
            for i in range(10)
        ]
        records = process_records(raw, REFERENCE_DATE, settings).records
        query = ProjectionQuery(businessUnit='B2C', channel='SMS', baseVolume=10000)
        result = project_all_metrics(select_group(records, query, settings), query, settings, COMPUTED_AT)
        m = ProjectableMetric

        proposals = result[m.PROPOSALS]
        approvals = result[m.APPROVALS]
        generated = result[m.UNITS_GENERATED]
        assert result[m.DELIVERABLE_BASE].projectedValue == pytest.approx(7800, abs=1)
        assert proposals.projectedValue == pytest.approx(500, abs=1)

        assert approvals.method is ProjectionMethod.DERIVED
        assert approvals.projectedValue == pytest.approx(325, abs=1)
        assert approvals.confidence == int(round(max(1.0, proposals.confidence * ASSUMPTION_CONFIDENCE_FACTOR)))
        assert 'derived from the projected' in approvals.explanation.summary
        assert generated.method is ProjectionMethod.DERIVED
        assert generated.projectedValue == pytest.approx(276, abs=1)
        assert 0 < generated.confidence <= approvals.confidence

        assert result[m.TOTAL_COST].method is ProjectionMethod.DERIVED
        assert result[m.TOTAL_COST].projectedValue == pytest.approx(640.0)
        assert result[m.TOTAL_COST].confidence == 80
        assert result[m.CAC].method is ProjectionMethod.DERIVED
        assert result[m.CAC].projectedValue == pytest.approx(2.32)

        assert_no_partial_projection(result)
        assert_funnel_ordered(result)

    def test_missing_volume_does_not_zero_the_funnel(self, settings, record_factory):
        raw = [
            record_factory(
                i, days_ago=i * 3, channel='SMS', deliverableBase=8000.0,
                proposals=800.0, approvals=400.0, unitsGenerated=320.0,
            )
            for i in range(10)
        ]
        records = process_records(raw, REFERENCE_DATE, settings).records
        query = ProjectionQuery(businessUnit='B2C', channel='SMS')
        result = project_all_metrics(select_group(records, query, settings), query, settings, COMPUTED_AT)
        m = ProjectableMetric

        assert result[m.VOLUME].method is ProjectionMethod.FALLBACK
        assert result[m.VOLUME].projectedValue == 0.0
        assert result[m.DELIVERABLE_BASE].projectedValue == pytest.approx(8000)
        assert result[m.PROPOSALS].projectedValue == pytest.approx(800)
        assert result[m.APPROVALS].projectedValue == pytest.approx(400)
        assert result[m.UNITS_GENERATED].projectedValue == pytest.approx(320)
        for stage in (m.DELIVERABLE_BASE, m.PROPOSALS, m.APPROVALS, m.UNITS_GENERATED):
            assert result[stage].confidence > 0
        assert_no_partial_projection(result)

    def test_empty_upstream_is_not_a_ceiling(self, settings):
        m = ProjectableMetric
        result = apply_funnel_consistency(
            projections_from_values({m.PROPOSALS: 300, m.APPROVALS: 120}), ProjectionQuery(), settings
        )
        assert result[m.PROPOSALS].projectedValue == 300.0
        assert result[m.APPROVALS].projectedValue == 120.0
        assert result[m.VOLUME].projectedValue == 0.0


# =============================================================================
# METRIC CEILINGS AND COST ESTIMATES
# =============================================================================


class TestMetricCeilings:

    @pytest.mark.parametrize('channel, expected', [
        ('Email', 50.0),
        ('SMS', 80.0),
        ('WhatsApp', 90.0),
        (None, None),
        ('Push', None),
    ])
    def test_open_rate_ceiling_by_channel(self, channel, expected):
        query = ProjectionQuery(channel=channel)
        assert metric_ceiling(ProjectableMetric.OPEN_RATE, query) == expected

    def test_conversion_rate_ceiling(self):
        assert metric_ceiling(ProjectableMetric.CONVERSION_RATE, ProjectionQuery()) == 20.0
        assert metric_ceiling(ProjectableMetric.CAC, ProjectionQuery(channel='SMS')) is None

    def test_value_and_interval_capped(self):
        value, interval = apply_metric_ceiling(
            95.0, ProjectionInterval(min=90.0, max=99.0),
            ProjectableMetric.OPEN_RATE, ProjectionQuery(channel='SMS'),
        )
        assert value == 80.0
        assert (interval.min, interval.max) == (80.0, 80.0)

    def test_value_below_ceiling_untouched(self):
        value, interval = apply_metric_ceiling(
            12.0, ProjectionInterval(min=10.0, max=25.0),
            ProjectableMetric.CONVERSION_RATE, ProjectionQuery(),
        )
        assert value == 12.0
        assert (interval.min, interval.max) == (10.0, 20.0)

    @pytest.mark.parametrize('channel, metric, observed, ceiling', [
        ('SMS', ProjectableMetric.OPEN_RATE, 95.0, 80.0),
        ('Email', ProjectableMetric.OPEN_RATE, 95.0, 50.0),
        ('SMS', ProjectableMetric.CONVERSION_RATE, 30.0, 20.0),
    ])
    def test_projection_capped(self, settings, record_factory, channel, metric, observed, ceiling):
        raw = [
            record_factory(i, days_ago=i * 3, channel=channel, **{metric.value: observed})
            for i in range(6)
        ]
        records = process_records(raw, REFERENCE_DATE, settings).records
        query = ProjectionQuery(businessUnit='B2C', channel=channel)
        projection = project_metric(metric, select_group(records, query, settings), query, settings)

        assert projection.projectedValue == ceiling
        assert projection.interval.max <= ceiling
        assert projection.interval.min <= projection.projectedValue


class TestUnitCostEstimate:

    def test_sms_estimate(self):
        projection = estimate_cac_from_unit_cost(ProjectionQuery(channel='SMS'), COMPUTED_AT)

        # 0.064 x 10000 / (10000 x 2%)
        assert projection.projectedValue == pytest.approx(3.2)
        assert projection.method is ProjectionMethod.DERIVED
        assert projection.confidence == 25
        assert projection.interval.min == pytest.approx(2.56)
        assert projection.interval.max == pytest.approx(3.84)
        assert 'sms unit cost' in projection.explanation.summary.lower()

    def test_tiny_volume_uses_unit_divisor(self):
        projection = estimate_cac_from_unit_cost(ProjectionQuery(channel='SMS', baseVolume=10), COMPUTED_AT)
        assert projection.projectedValue == pytest.approx(0.64)

    def test_used_when_cac_has_no_history(self, settings, processed_channel_split):
        query = ProjectionQuery(businessUnit='B2C', channel='SMS')
        projection = project_metric(
            ProjectableMetric.CAC, select_group(processed_channel_split, query, settings), query, settings
        )
        assert projection.method is ProjectionMethod.DERIVED
        assert projection.projectedValue == pytest.approx(3.2)

    def test_empty_without_channel(self, settings):
        group = MatchGroup(matches=[], level=MatchLevel.FALLBACK)
        projection = project_metric(ProjectableMetric.CAC, group, ProjectionQuery(), settings)
        assert projection.method is ProjectionMethod.FALLBACK
        assert projection.confidence == 0
