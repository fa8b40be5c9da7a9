"""
Test suite for the Alternative Generator.

Verifies:
1. Improvement and risk helpers
2. Channel and segment alternatives projected with the full pipeline
3. Timing alternatives from the best weekday and time slot
4. Gating: no history for the current setup, thin buckets, thresholds
5. Ranking and the max_alternatives cap
"""

import pytest

from campaign_projection.models.enums import AlternativeType, ProjectableMetric, RiskLevel
from campaign_projection.models.schemas import ProjectionQuery
from campaign_projection.services.alternatives import (
    best_temporal_bucket,
    calculate_improvement,
    determine_risk_level,
    generate_alternatives,
    normalized_id,
)
from campaign_projection.services.data_processor import DAY_OF_WEEK_FEATURE, process_records
from campaign_projection.tests.conftest import REFERENCE_DATE, make_record


CURRENT_SETUP = {'businessUnit': 'B2C', 'segment': 'Retention', 'channel': 'Email'}


# =============================================================================
# SYNTHETIC DATA HELPER FUNCTIONS
# =============================================================================


def build_channel_records():
    """10 Email at 5% and 10 SMS at 10% conversion, all B2C Retention."""
    records = []
    for i in range(20):
        is_sms = i % 2 == 1
        records.append(make_record(
            index=i,
            days_ago=i // 2,
            segment='Retention',
            channel='SMS' if is_sms else 'Email',
            conversionRate=10.0 if is_sms else 5.0,
        ))
    return records


def build_segment_records():
    """build_channel_records plus 10 Growth Email campaigns at 8% conversion."""
    records = build_channel_records()
    for i in range(20, 30):
        records.append(make_record(
            index=i,
            days_ago=i - 20,
            segment='Growth',
            channel='Email',
            conversionRate=8.0,
        ))
    return records


def build_weekday_records():
    """
    21 identical setups over three weeks; Tuesday dispatches convert at 12%,
    every other weekday at 6%. REFERENCE_DATE is a Sunday, so
    days_ago % 7 == 5 falls on a Tuesday.
    """
    return [
        make_record(
            index=i,
            days_ago=i,
            segment='Retention',
            channel='Email',
            conversionRate=12.0 if i % 7 == 5 else 6.0,
        )
        for i in range(21)
    ]


def build_time_slot_records():
    """6 morning dispatches at 6% and 6 night dispatches at 9%."""
    return [
        make_record(
            index=i,
            days_ago=i,
            segment='Retention',
            channel='Email',
            dispatchTime='09:30' if i % 2 == 0 else '20:00',
            conversionRate=6.0 if i % 2 == 0 else 9.0,
        )
        for i in range(12)
    ]


def process(raw, settings):
    return process_records(raw, REFERENCE_DATE, settings).records


# =============================================================================
# HELPERS
# =============================================================================


class TestImprovement:

    @pytest.mark.parametrize('baseline, expected, metric, improvement', [
        (5.0, 10.0, ProjectableMetric.CONVERSION_RATE, 100.0),
        (10.0, 9.0, ProjectableMetric.CONVERSION_RATE, -10.0),
        (4.0, 3.0, ProjectableMetric.CAC, 25.0),
        (100.0, 120.0, ProjectableMetric.TOTAL_COST, -20.0),
        (0.0, 5.0, ProjectableMetric.CONVERSION_RATE, 0.0),
    ])
    def test_calculate_improvement(self, baseline, expected, metric, improvement):
        assert calculate_improvement(baseline, expected, metric) == pytest.approx(improvement)

    @pytest.mark.parametrize('sample_size, risk', [
        (25, RiskLevel.LOW),
        (10, RiskLevel.LOW),
        (9, RiskLevel.MEDIUM),
        (5, RiskLevel.MEDIUM),
        (4, RiskLevel.HIGH),
        (0, RiskLevel.HIGH),
    ])
    def test_determine_risk_level(self, sample_size, risk):
        assert determine_risk_level(sample_size) is risk

    def test_normalized_id(self):
        assert normalized_id('Cartao  Gold Plus') == 'cartao-gold-plus'


class TestTemporalBucket:

    def test_best_weekday(self, settings):
        records = process(build_weekday_records(), settings)
        bucket = best_temporal_bucket(records, DAY_OF_WEEK_FEATURE, ProjectableMetric.CONVERSION_RATE, 3)

        assert bucket.key == 2
        assert bucket.count == 3
        assert bucket.mean == pytest.approx(12.0)
        assert bucket.multiplier == pytest.approx(1.75)

    def test_thin_buckets_do_not_compete(self, settings):
        records = process(build_weekday_records(), settings)
        assert best_temporal_bucket(records, DAY_OF_WEEK_FEATURE, ProjectableMetric.CONVERSION_RATE, 4) is None

    def test_metric_absent(self, settings):
        records = process(build_weekday_records(), settings)
        assert best_temporal_bucket(records, DAY_OF_WEEK_FEATURE, ProjectableMetric.CAC, 3) is None


# =============================================================================
# DIMENSION ALTERNATIVES
# =============================================================================


@pytest.mark.scenario
class TestDimensionAlternatives:

    def test_better_channel_offered(self, settings):
        records = process(build_channel_records(), settings)
        alternatives = generate_alternatives(
            records, ProjectionQuery(**CURRENT_SETUP), settings=settings, reference_date=REFERENCE_DATE,
        )

        assert len(alternatives) == 1
        alternative = alternatives[0]
        assert alternative.id == 'channel-sms'
        assert alternative.type is AlternativeType.CHANNEL
        assert alternative.changedField == 'channel'
        assert alternative.previousValue == 'Email'
        assert alternative.newValue == 'SMS'
        assert alternative.appliedChanges == {'channel': 'SMS'}
        assert alternative.baselineValue == pytest.approx(5.0)
        assert alternative.expectedValue == pytest.approx(10.0)
        assert alternative.improvementPercent == pytest.approx(100.0)
        assert alternative.sampleSize == 10
        assert alternative.riskLevel is RiskLevel.LOW
        assert alternative.metric is ProjectableMetric.CONVERSION_RATE

    def test_worse_channel_not_offered(self, settings):
        records = process(build_channel_records(), settings)
        query = ProjectionQuery(businessUnit='B2C', segment='Retention', channel='SMS')
        alternatives = generate_alternatives(records, query, settings=settings, reference_date=REFERENCE_DATE)
        assert all(a.type is not AlternativeType.CHANNEL for a in alternatives)

    def test_channel_needs_segment(self, settings):
        records = process(build_channel_records(), settings)
        query = ProjectionQuery(businessUnit='B2C', channel='Email')
        alternatives = generate_alternatives(records, query, settings=settings, reference_date=REFERENCE_DATE)
        assert alternatives == []

    def test_thinly_supported_value_skipped(self, settings):
        raw = build_channel_records()[::2] + [
            make_record(index=100 + i, segment='Retention', channel='SMS', conversionRate=10.0)
            for i in range(2)
        ]
        records = process(raw, settings)
        alternatives = generate_alternatives(
            records, ProjectionQuery(**CURRENT_SETUP), settings=settings, reference_date=REFERENCE_DATE,
        )
        assert alternatives == []

    def test_ranked_by_improvement_and_capped(self, settings):
        records = process(build_segment_records(), settings)
        query = ProjectionQuery(**CURRENT_SETUP)
        alternatives = generate_alternatives(records, query, settings=settings, reference_date=REFERENCE_DATE)

        assert [a.id for a in alternatives] == ['channel-sms', 'segment-growth']
        assert alternatives[1].improvementPercent == pytest.approx(60.0)
        assert alternatives[1].appliedChanges == {'segment': 'Growth'}

        capped = generate_alternatives(
            records, query, settings=settings, reference_date=REFERENCE_DATE, max_alternatives=1,
        )
        assert [a.id for a in capped] == ['channel-sms']

    def test_cost_metric_prefers_lower_values(self, settings):
        raw = [
            make_record(
                index=i, days_ago=i // 2, segment='Retention',
                channel='SMS' if i % 2 else 'Email',
                cac=2.0 if i % 2 else 4.0,
            )
            for i in range(20)
        ]
        records = process(raw, settings)
        alternatives = generate_alternatives(
            records, ProjectionQuery(**CURRENT_SETUP), ProjectableMetric.CAC,
            settings=settings, reference_date=REFERENCE_DATE,
        )

        assert [a.id for a in alternatives] == ['channel-sms']
        assert alternatives[0].improvementPercent == pytest.approx(50.0)
        assert alternatives[0].expectedValue == pytest.approx(2.0)


# =============================================================================
# TIMING ALTERNATIVES
# =============================================================================


@pytest.mark.scenario
class TestTimingAlternatives:

    def test_best_weekday_moves_dispatch_date(self, settings):
        records = process(build_weekday_records(), settings)
        query = ProjectionQuery(**CURRENT_SETUP, dispatchDate='2024-07-01')
        alternatives = generate_alternatives(records, query, settings=settings, reference_date=REFERENCE_DATE)

        assert [a.id for a in alternatives] == ['timing-tuesday']
        alternative = alternatives[0]
        assert alternative.type is AlternativeType.TIMING
        assert alternative.changedField == 'dispatchDate'
        assert alternative.previousValue == '2024-07-01'
        assert alternative.newValue == '2024-07-02'
        assert alternative.appliedChanges == {'dispatchDate': '2024-07-02'}
        assert alternative.improvementPercent == pytest.approx(75.0)
        assert alternative.expectedValue == pytest.approx(round(alternative.baselineValue * 1.75, 2))
        assert alternative.sampleSize == 3
        assert alternative.riskLevel is RiskLevel.HIGH
        assert alternative.confidence <= 85

    def test_reference_date_used_without_dispatch_date(self, settings):
        records = process(build_weekday_records(), settings)
        alternatives = generate_alternatives(
            records, ProjectionQuery(**CURRENT_SETUP), settings=settings, reference_date=REFERENCE_DATE,
        )

        assert alternatives[0].previousValue is None
        assert alternatives[0].newValue == '2024-07-02'

    def test_already_on_best_weekday(self, settings):
        records = process(build_weekday_records(), settings)
        query = ProjectionQuery(**CURRENT_SETUP, dispatchDate='2024-07-09')
        alternatives = generate_alternatives(records, query, settings=settings, reference_date=REFERENCE_DATE)
        assert alternatives == []

    def test_best_time_slot_moves_dispatch_time(self, settings):
        records = process(build_time_slot_records(), settings)
        query = ProjectionQuery(**CURRENT_SETUP, dispatchTime='10:00')
        alternatives = generate_alternatives(records, query, settings=settings, reference_date=REFERENCE_DATE)

        slot = [a for a in alternatives if a.changedField == 'dispatchTime']
        assert len(slot) == 1
        assert slot[0].id == 'timing-night'
        assert slot[0].previousValue == '10:00'
        assert slot[0].newValue == '19:00'
        assert slot[0].improvementPercent == pytest.approx(20.0)
        assert slot[0].riskLevel is RiskLevel.MEDIUM

    def test_already_in_best_time_slot(self, settings):
        records = process(build_time_slot_records(), settings)
        query = ProjectionQuery(**CURRENT_SETUP, dispatchTime='21:15')
        alternatives = generate_alternatives(records, query, settings=settings, reference_date=REFERENCE_DATE)
        assert all(a.changedField != 'dispatchTime' for a in alternatives)


# =============================================================================
# GATING
# =============================================================================


class TestGating:

    def test_no_history_for_metric(self, settings):
        records = process(build_channel_records(), settings)
        alternatives = generate_alternatives(
            records, ProjectionQuery(**CURRENT_SETUP), ProjectableMetric.OPEN_RATE,
            settings=settings, reference_date=REFERENCE_DATE,
        )
        assert alternatives == []

    def test_unit_cost_estimate_is_not_a_baseline(self, settings):
        records = process(build_channel_records(), settings)
        alternatives = generate_alternatives(
            records, ProjectionQuery(**CURRENT_SETUP), ProjectableMetric.CAC,
            settings=settings, reference_date=REFERENCE_DATE,
        )
        assert alternatives == []

    def test_no_records(self, settings):
        assert generate_alternatives([], ProjectionQuery(**CURRENT_SETUP), settings=settings) == []

    def test_query_not_mutated(self, settings):
        records = process(build_segment_records(), settings)
        query = ProjectionQuery(**CURRENT_SETUP)
        before = query.model_dump()
        generate_alternatives(records, query, settings=settings, reference_date=REFERENCE_DATE)
        assert query.model_dump() == before
