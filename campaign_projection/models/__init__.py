"""
Models package for the campaign projection engine.

Exports:
- Enums from enums.py: Dimension, ProjectableMetric, MetricKind, MatchLevel,
  ProjectionMethod, DataQuality, ImpactDirection, AlternativeType, RiskLevel
- Pydantic models from schemas.py: input records and queries, projection,
  causal analysis, suggestion, alternative and dataset statistics contracts

Usage:
    from campaign_projection.models import ProjectionQuery, FieldProjection
    from campaign_projection.models import MatchLevel, ProjectableMetric
"""

# =============================================================================
# Enum Exports
# =============================================================================
from campaign_projection.models.enums import (
    CATEGORICAL_DIMENSIONS,
    FUNNEL_STAGES,
    MATCH_LEVEL_REQUIREMENTS,
    MATCH_LEVELS_BY_SPECIFICITY,
    PRIMARY_DIMENSIONS,
    AlternativeType,
    DataQuality,
    Dimension,
    ImpactDirection,
    MatchLevel,
    MetricKind,
    ProjectableMetric,
    ProjectionMethod,
    RiskLevel,
)

# =============================================================================
# Schema Exports
# =============================================================================
from campaign_projection.models.schemas import (
    AllProjectionsResult,
    Alternative,
    CampaignRecord,
    CampaignReference,
    CausalAnalysisResult,
    CausalFactor,
    CorrelationFactor,
    DatasetStats,
    DateRange,
    FeatureImportance,
    FieldProjection,
    FieldSuggestion,
    InterventionEffect,
    ProjectionExplanation,
    ProjectionInterval,
    ProjectionMetadata,
    ProjectionQuery,
    parse_number,
)

__all__ = [
    # Enums
    'CATEGORICAL_DIMENSIONS',
    'FUNNEL_STAGES',
    'MATCH_LEVEL_REQUIREMENTS',
    'MATCH_LEVELS_BY_SPECIFICITY',
    'PRIMARY_DIMENSIONS',
    'AlternativeType',
    'DataQuality',
    'Dimension',
    'ImpactDirection',
    'MatchLevel',
    'MetricKind',
    'ProjectableMetric',
    'ProjectionMethod',
    'RiskLevel',
    # Input models
    'CampaignRecord',
    'ProjectionQuery',
    'parse_number',
    # Projection output
    'AllProjectionsResult',
    'CampaignReference',
    'CausalFactor',
    'CorrelationFactor',
    'FieldProjection',
    'ProjectionExplanation',
    'ProjectionInterval',
    'ProjectionMetadata',
    # Causal analysis output
    'CausalAnalysisResult',
    'FeatureImportance',
    'InterventionEffect',
    # Suggestions and diagnostics
    'DatasetStats',
    'DateRange',
    'FieldSuggestion',
    # Alternatives
    'Alternative',
]
