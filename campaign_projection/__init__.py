"""
Campaign Projection Engine Package.

Similarity-based projection of marketing campaign outcomes. Given a partially
specified new campaign and a corpus of historical dispatches, the engine
estimates performance metrics, explains the contributing factors and reports
a calibrated confidence.

Subpackages:
    - core: Configuration (pydantic-settings)
    - models: Pydantic contract models and enums
    - services: Data processing, similarity, causal attribution, prediction,
      explanation, alternative generation and the ProjectionOrchestrator
      facade

Typical use:

    from campaign_projection.services import ProjectionOrchestrator

    engine = ProjectionOrchestrator()
    engine.initialize(records)
    projection = engine.project_field("conversionRate", {"businessUnit": "B2C"})
"""

__version__ = "1.0.0"
