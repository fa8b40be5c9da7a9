'''
Campaign Projection Test Suite

Test Modules:
-------------
- test_config.py: Settings defaults, weight merging, env overrides
- test_data_processor.py: Record validation, date parsing, metric
  derivation, temporal weighting, dropped-record accounting
- test_similarity.py: Value comparison, match levels, group selection,
  confidence monotonicity, field value ranking
- test_causal_analysis.py: Variance attribution, confounders, interventions,
  top driver detection
- test_prediction.py: Projection methods, intervals, funnel consistency,
  unit cost derivation
- test_explanation.py: Data quality tiers, summaries, display formatters
- test_orchestrator.py: Facade behavior end to end (readiness, empty
  projections, scenario checks, suggestions, re-initialization)

Running Tests:
--------------
    pip install -e ".[test]"
    pytest campaign_projection/tests -v
'''

__all__ = []
