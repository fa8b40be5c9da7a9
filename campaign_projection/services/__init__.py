"""
Services Module

Business logic of the campaign projection engine. Every service is a set of
stateless functions over typed inputs; the only stateful object is the
caller-owned ProjectionOrchestrator facade.

Services:
- data_processor: Raw record validation, feature/metric extraction, temporal weighting
- similarity: Weighted multi-dimensional matching and match-level selection
- causal_analysis: Shapley-style attribution, confounders, interventions
- prediction: Metric projection, confidence, intervals, funnel consistency
- explanation: Human-readable rationale and display formatters
- alternatives: One-field setup variations ranked by expected improvement
- orchestrator: ProjectionOrchestrator facade
"""

# =============================================================================
# Data Processor Exports
# =============================================================================

from campaign_projection.services.data_processor import (
    MetricStats,
    ProcessedRecord,
    ProcessingResult,
    calculate_metric_stats,
    calculate_temporal_weight,
    get_feature_distribution,
    group_by_dimension,
    normalize_value,
    parse_dispatch_date,
    process_records,
)

# =============================================================================
# Similarity Engine Exports
# =============================================================================

from campaign_projection.services.similarity import (
    MatchGroup,
    SimilarityMatch,
    calculate_confidence_score,
    calculate_similarity,
    compare_values,
    determine_match_level,
    filter_by_match_level,
    find_similar_records,
    group_by_match_level,
    select_best_match_group,
)

# =============================================================================
# Causal Analysis Exports
# =============================================================================

from campaign_projection.services.causal_analysis import (
    calculate_intervention_effect,
    cramers_v,
    perform_causal_analysis,
)

# =============================================================================
# Prediction Engine Exports
# =============================================================================

from campaign_projection.services.prediction import (
    CHANNEL_UNIT_COSTS,
    OFFER_UNIT_COSTS,
    apply_funnel_consistency,
    create_derived_projection,
    create_empty_projection,
    estimate_cac_from_unit_cost,
    project_all_metrics,
    project_metric,
)

# =============================================================================
# Explanation Exports
# =============================================================================

from campaign_projection.services.explanation import (
    determine_data_quality,
    format_causal_factor,
    format_confidence_interval,
    format_confidence_level,
    format_metric_value,
    format_tooltip_title,
    generate_explanation,
)

# =============================================================================
# Alternative Generator Exports
# =============================================================================

from campaign_projection.services.alternatives import (
    calculate_improvement,
    generate_alternatives,
)

# =============================================================================
# Orchestrator Exports
# =============================================================================

from campaign_projection.services.orchestrator import (
    DatasetSnapshot,
    ProjectionOrchestrator,
)

__all__ = [
    # Data processor
    'MetricStats',
    'ProcessedRecord',
    'ProcessingResult',
    'calculate_metric_stats',
    'calculate_temporal_weight',
    'get_feature_distribution',
    'group_by_dimension',
    'normalize_value',
    'parse_dispatch_date',
    'process_records',
    # Similarity
    'MatchGroup',
    'SimilarityMatch',
    'calculate_confidence_score',
    'calculate_similarity',
    'compare_values',
    'determine_match_level',
    'filter_by_match_level',
    'find_similar_records',
    'group_by_match_level',
    'select_best_match_group',
    # Causal analysis
    'calculate_intervention_effect',
    'cramers_v',
    'perform_causal_analysis',
    # Prediction
    'CHANNEL_UNIT_COSTS',
    'OFFER_UNIT_COSTS',
    'apply_funnel_consistency',
    'create_derived_projection',
    'create_empty_projection',
    'estimate_cac_from_unit_cost',
    'project_all_metrics',
    'project_metric',
    # Explanation
    'determine_data_quality',
    'format_causal_factor',
    'format_confidence_interval',
    'format_confidence_level',
    'format_metric_value',
    'format_tooltip_title',
    'generate_explanation',
    # Alternatives
    'calculate_improvement',
    'generate_alternatives',
    # Orchestrator
    'DatasetSnapshot',
    'ProjectionOrchestrator',
]
