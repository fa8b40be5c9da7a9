"""
Pytest Configuration and Shared Fixtures for the Campaign Projection Tests.

This module provides:
- A fixed reference date so temporal weights are reproducible
- Synthetic raw record factories (dicts shaped like record store rows)
- Scenario datasets used across modules:
  * channel_split_records: 20 B2C records, 10 Email at 5% conversion and
    10 SMS at 10% conversion
  * funnel_records: records carrying every funnel count
- Settings and orchestrator fixtures with explicit (injected) settings
"""

from datetime import date, timedelta
from typing import Any, Callable, Dict, List

import pytest

from campaign_projection.core.config import ProjectionSettings, get_settings
from campaign_projection.services.data_processor import ProcessedRecord, process_records
from campaign_projection.services.orchestrator import ProjectionOrchestrator


REFERENCE_DATE: date = date(2024, 6, 30)


# ============================================================
# PYTEST HOOKS
# ============================================================

def pytest_configure(config) -> None:
    """
    Register custom markers.

    - slow: Marks tests as slow (deselect with -m "not slow")
    - scenario: End-to-end behavioral scenarios over synthetic datasets
    """
    config.addinivalue_line(
        'markers',
        'slow: marks tests as slow (deselect with -m "not slow")'
    )
    config.addinivalue_line(
        'markers',
        'scenario: end-to-end behavioral scenarios over synthetic datasets'
    )


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Ensure no test leaks a cached settings instance into another."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ============================================================
# RECORD FACTORIES
# ============================================================

def make_record(index: int = 0, days_ago: int = 0, **overrides: Any) -> Dict[str, Any]:
    """
    Build one raw record as the record store would hand it over.

    Args:
        index: Used for the id and name
        days_ago: Dispatch date offset from REFERENCE_DATE
        **overrides: Any CampaignRecord field (camelCase) or extra column

    Returns:
        Dict suitable for ProjectionOrchestrator.initialize
    """
    record: Dict[str, Any] = {
        'id': f'cmp-{index:04d}',
        'name': f'CAMPAIGN_{index:04d}',
        'dispatchDate': (REFERENCE_DATE - timedelta(days=days_ago)).isoformat(),
        'businessUnit': 'B2C',
    }
    record.update(overrides)
    return record


@pytest.fixture
def record_factory() -> Callable[..., Dict[str, Any]]:
    """Expose make_record to tests."""
    return make_record


def build_channel_split_records() -> List[Dict[str, Any]]:
    """20 B2C records: 10 Email at 5% conversion, 10 SMS at 10% conversion."""
    records = []
    for i in range(20):
        is_sms = i % 2 == 1
        records.append(make_record(
            index=i,
            days_ago=i % 10,
            channel='SMS' if is_sms else 'Email',
            conversionRate=10.0 if is_sms else 5.0,
        ))
    return records


def build_funnel_records(count: int = 12) -> List[Dict[str, Any]]:
    """Records carrying every funnel count (80% delivery, 10/50/80% stage ratios)."""
    records = []
    for i in range(count):
        volume = 10000 + 500 * i
        deliverable = volume * 0.8
        proposals = deliverable * 0.10
        approvals = proposals * 0.50
        generated = approvals * 0.80
        records.append(make_record(
            index=i,
            days_ago=i * 3,
            segment='Retention',
            channel='SMS',
            creditProfile='Prime',
            offer='Limite',
            volume=volume,
            deliverableBase=deliverable,
            proposals=proposals,
            approvals=approvals,
            unitsGenerated=generated,
            channelCost=volume * 0.064,
            offerCost=generated * 1.0,
        ))
    return records


@pytest.fixture
def channel_split_records() -> List[Dict[str, Any]]:
    return build_channel_split_records()


@pytest.fixture
def funnel_records() -> List[Dict[str, Any]]:
    return build_funnel_records()


# ============================================================
# ENGINE FIXTURES
# ============================================================

@pytest.fixture
def settings() -> ProjectionSettings:
    """Default settings, independent of the environment cache."""
    return ProjectionSettings()


@pytest.fixture
def processed_channel_split(settings) -> List[ProcessedRecord]:
    return process_records(build_channel_split_records(), REFERENCE_DATE, settings).records


@pytest.fixture
def orchestrator(settings) -> ProjectionOrchestrator:
    """An uninitialized orchestrator pinned to REFERENCE_DATE."""
    return ProjectionOrchestrator(settings=settings, reference_date=REFERENCE_DATE)


@pytest.fixture
def channel_split_engine(orchestrator, channel_split_records) -> ProjectionOrchestrator:
    orchestrator.initialize(channel_split_records)
    return orchestrator
