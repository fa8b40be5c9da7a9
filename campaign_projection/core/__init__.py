"""
Core infrastructure package for the campaign projection engine.

Provides:
- Configuration management via pydantic-settings

This module re-exports key components so callers can write:

    from campaign_projection.core import get_settings, ProjectionSettings

Instead of:

    from campaign_projection.core.config import get_settings, ProjectionSettings
"""

# =============================================================================
# Re-exports from campaign_projection.core.config
# =============================================================================
from campaign_projection.core.config import (
    DEFAULT_SIMILARITY_WEIGHTS,
    ProjectionSettings,
    get_settings,
)

__all__ = [
    'DEFAULT_SIMILARITY_WEIGHTS',
    'ProjectionSettings',
    'get_settings',
]
