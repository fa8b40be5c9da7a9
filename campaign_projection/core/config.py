"""
Settings and environment management module for the campaign projection engine.

This module provides centralized configuration management using pydantic-settings,
which automatically loads settings from environment variables and .env files.

Key Features:
- Environment variable validation and type coercion
- Sensible defaults matching the historical projection engine
- Singleton pattern via @lru_cache for callers that do not inject settings
- Fail-fast validation: invalid values raise pydantic.ValidationError at
  construction instead of surfacing later as odd projections

Environment Variables (all optional, prefix PROJECTION_):
- PROJECTION_TEMPORAL_WINDOW_DAYS: Look-back window in days (default: 90)
- PROJECTION_TEMPORAL_DECAY_FACTOR: Weight left at the window edge (default: 0.5)
- PROJECTION_MIN_SAMPLE_SIZE: Minimum group size for a match level (default: 5)
- PROJECTION_MATCH_LIMIT: Cap on the ranked match list (default: 100)
- PROJECTION_ENABLE_CAUSAL_ANALYSIS: Toggle causal factor attribution (default: true)

Usage:
    from campaign_projection.core.config import get_settings

    settings = get_settings()
    window = settings.temporal_window_days
    weights = settings.similarity_weights
"""

from functools import lru_cache
from typing import Dict

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from campaign_projection.models.enums import Dimension


# =============================================================================
# Default Similarity Weights
# Relative importance of each dimension in the aggregate similarity score.
# Values are relative (they need not sum to 100); the score is a weighted mean.
# =============================================================================

DEFAULT_SIMILARITY_WEIGHTS: Dict[str, float] = {
    Dimension.BUSINESS_UNIT.value: 15.0,
    Dimension.SEGMENT.value: 15.0,
    Dimension.CHANNEL.value: 12.0,
    Dimension.JOURNEY.value: 10.0,
    Dimension.CREDIT_PROFILE.value: 10.0,
    Dimension.OFFER.value: 8.0,
    Dimension.PROMOTIONAL.value: 5.0,
    Dimension.PARTNER.value: 5.0,
    Dimension.SUBGROUP.value: 5.0,
    Dimension.ACQUISITION_STAGE.value: 5.0,
    Dimension.PRODUCT.value: 5.0,
    Dimension.TEMPORAL.value: 5.0,
}


class ProjectionSettings(BaseSettings):
    """
    Projection engine settings loaded from environment variables.

    Attributes:
        temporal_window_days: Records older than this are excluded entirely.
        temporal_decay_factor: Temporal weight reached at the window edge.
        min_sample_size: Minimum matches a level needs to be selected.
        match_limit: Maximum number of ranked matches kept per query.
        suggestion_match_limit: Matches considered for field suggestions.
        similarity_weights: Per-dimension weights; partial overrides are merged
            over DEFAULT_SIMILARITY_WEIGHTS.
        confidence_z: z multiplier for projection intervals (1.96 = 95%).
        default_delivery_rate: Delivery rate (percent) assumed when a record
            has no delivery data.
        enable_causal_analysis: Whether projections attribute causal factors.
        shapley_exact_max_features: Up to this many candidate dimensions the
            attribution enumerates every coalition; above it, permutations
            are sampled.
        shapley_permutations: Number of sampled permutations.
        shapley_seed: Seed for the permutation sampler (deterministic output).
        max_causal_factors: Causal factors listed per explanation.
        max_similar_campaigns: Reference campaigns listed per projection.
        max_suggestions: Values returned by field suggestions.
        max_alternatives: Alternatives returned per setup.
        min_alternative_sample: Records a varied value (or weekday, time slot)
            needs before an alternative built on it is offered.
    """

    model_config = SettingsConfigDict(
        env_prefix='PROJECTION_',
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore',
        case_sensitive=False,
    )

    # =========================================================================
    # Temporal Weighting
    # =========================================================================

    # weight = exp(-lambda * days), lambda = -ln(decay_factor) / window_days
    temporal_window_days: int = Field(default=90, gt=0)
    temporal_decay_factor: float = Field(default=0.5, gt=0.0, lt=1.0)

    # =========================================================================
    # Similarity and Match Selection
    # =========================================================================

    min_sample_size: int = Field(default=5, ge=1)
    match_limit: int = Field(default=100, ge=1)
    suggestion_match_limit: int = Field(default=50, ge=1)
    similarity_weights: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_SIMILARITY_WEIGHTS)
    )

    # =========================================================================
    # Prediction
    # =========================================================================

    confidence_z: float = Field(default=1.96, gt=0.0)
    default_delivery_rate: float = Field(default=78.0, gt=0.0, le=100.0)

    # =========================================================================
    # Causal Attribution
    # =========================================================================

    enable_causal_analysis: bool = True
    shapley_exact_max_features: int = Field(default=6, ge=1, le=10)
    shapley_permutations: int = Field(default=32, ge=1)
    shapley_seed: int = 42

    # =========================================================================
    # Output Sizes
    # =========================================================================

    max_causal_factors: int = Field(default=5, ge=0)
    max_similar_campaigns: int = Field(default=5, ge=0)
    max_suggestions: int = Field(default=5, ge=1)

    # =========================================================================
    # Alternative Generation
    # =========================================================================

    max_alternatives: int = Field(default=5, ge=1)
    min_alternative_sample: int = Field(default=3, ge=1)

    @field_validator('similarity_weights')
    @classmethod
    def merge_similarity_weights(cls, value: Dict[str, float]) -> Dict[str, float]:
        """
        Merge partial weight overrides over the defaults.

        Raises:
            ValueError: If a key is not a known dimension or a weight is negative.
        """
        known = {d.value for d in Dimension}
        unknown = sorted(set(value) - known)
        if unknown:
            raise ValueError(
                f"Unknown similarity dimensions: {unknown}. "
                f"Expected a subset of {sorted(known)}"
            )

        merged = dict(DEFAULT_SIMILARITY_WEIGHTS)
        for key, weight in value.items():
            if weight < 0:
                raise ValueError(f"Similarity weight for {key!r} must be >= 0, got {weight}")
            merged[key] = float(weight)
        return merged

    def weight_for(self, dimension: Dimension) -> float:
        """Return the similarity weight for a dimension."""
        return self.similarity_weights.get(dimension.value, 0.0)


@lru_cache()
def get_settings() -> ProjectionSettings:
    """
    Get the projection settings singleton.

    Environment variables are only read once per process. Orchestrators accept
    an explicit ProjectionSettings instance; this accessor is their default.

    Returns:
        ProjectionSettings: The cached settings instance.

    Raises:
        pydantic.ValidationError: If an environment override is invalid
            (e.g. PROJECTION_TEMPORAL_DECAY_FACTOR=1.5).

    Note:
        To refresh settings in tests, clear the cache:
        >>> get_settings.cache_clear()
    """
    return ProjectionSettings()
