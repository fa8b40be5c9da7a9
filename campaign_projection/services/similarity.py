"""
Similarity Engine Service - Multi-Dimensional Campaign Matching

This module scores historical records against a projection query, classifies
each match into a discrete specificity tier and selects the group of matches
a projection is based on.

Per-dimension score (query-specified dimensions only):
- 1.0  exact normalized match
- 0.7  one value contains the other
- 0.5  Levenshtein similarity ratio > 0.8
- 0.0  otherwise, and when the record lacks the dimension (the dimension's
       weight is still counted, so sparse records get no free pass)

Aggregate score:
    score = 100 * sum(weight_d * score_d) / sum(weight_d)
over the evaluated dimensions plus a temporal dimension scored with the
record's temporal weight.

Match levels are decided by dimension coverage, never by the numeric score:
- exact:    every primary dimension matched
- high:     businessUnit + segment + channel + creditProfile matched
- medium:   businessUnit + segment matched
- low:      businessUnit matched
- fallback: otherwise

Group selection scans levels from most to least specific and returns the
first group with at least min_sample_size matches; if none qualifies, all
matches are returned tagged fallback, so a non-empty match list always yields
a non-empty group.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from campaign_projection.core.config import ProjectionSettings, get_settings
from campaign_projection.models.enums import (
    MATCH_LEVEL_REQUIREMENTS,
    MATCH_LEVELS_BY_SPECIFICITY,
    Dimension,
    MatchLevel,
)
from campaign_projection.models.schemas import ProjectionQuery
from campaign_projection.services.data_processor import ProcessedRecord, normalize_value


# =============================================================================
# CONSTANTS
# =============================================================================

EXACT_MATCH_SCORE: float = 1.0
CONTAINMENT_SCORE: float = 0.7
FUZZY_MATCH_SCORE: float = 0.5
FUZZY_RATIO_THRESHOLD: float = 0.8

# Base confidence per match level (before sample and score bonuses)
LEVEL_BASE_CONFIDENCE: Dict[MatchLevel, int] = {
    MatchLevel.EXACT: 95,
    MatchLevel.HIGH: 80,
    MatchLevel.MEDIUM: 65,
    MatchLevel.LOW: 45,
    MatchLevel.FALLBACK: 25,
}

MAX_SAMPLE_BONUS: float = 15.0
MAX_SCORE_BONUS: float = 10.0

_NON_ALNUM = re.compile(r"[^a-z0-9]")


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class SimilarityMatch:
    """
    A historical record scored against a query.

    Attributes:
        record: The processed record
        score: Aggregate similarity in [0, 100]
        level: Specificity tier by dimension coverage
        matched_dimensions: Dimensions with an exact normalized match
        dimension_scores: Per-dimension score in [0, 1] (includes TEMPORAL)
    """
    record: ProcessedRecord
    score: float
    level: MatchLevel
    matched_dimensions: FrozenSet[Dimension] = frozenset()
    dimension_scores: Mapping[Dimension, float] = field(default_factory=dict)


@dataclass
class MatchGroup:
    """The match group selected as the basis for a projection."""
    matches: List[SimilarityMatch]
    level: MatchLevel

    @property
    def records(self) -> List[ProcessedRecord]:
        return [m.record for m in self.matches]

    def __len__(self) -> int:
        return len(self.matches)


# =============================================================================
# VALUE COMPARISON
# =============================================================================

def levenshtein_distance(s1: str, s2: str) -> int:
    """
    Levenshtein edit distance between two strings.

    Two-row dynamic programming, O(min(m, n)) space.

    Returns:
        Minimum number of single-character insertions, deletions and
        substitutions turning s1 into s2.
    """
    if s1 == s2:
        return 0
    if not s1:
        return len(s2)
    if not s2:
        return len(s1)

    if len(s1) > len(s2):
        s1, s2 = s2, s1

    prev_row = list(range(len(s1) + 1))
    for j, c2 in enumerate(s2, start=1):
        curr_row = [j] + [0] * len(s1)
        for i, c1 in enumerate(s1, start=1):
            cost = 0 if c1 == c2 else 1
            curr_row[i] = min(
                prev_row[i] + 1,         # deletion
                curr_row[i - 1] + 1,     # insertion
                prev_row[i - 1] + cost,  # substitution
            )
        prev_row = curr_row

    return prev_row[len(s1)]


def string_similarity(s1: str, s2: str) -> float:
    """1 - distance / max_len, in [0, 1]."""
    if not s1 and not s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    return 1.0 - levenshtein_distance(s1, s2) / max(len(s1), len(s2))


def comparison_key(value: str) -> str:
    """Normalized value with everything but letters and digits removed."""
    return _NON_ALNUM.sub("", normalize_value(value))


def compare_values(query_value: str, record_value: str) -> float:
    """
    Score two categorical values.

    Both values are normalized (case, diacritics, punctuation and spacing are
    ignored) before comparison.

    Returns:
        1.0 exact, 0.7 containment, 0.5 near-identical spelling, else 0.0

    Example:
        >>> compare_values("E-mail", "email")
        1.0
        >>> compare_values("Cartão Gold", "cartao")
        0.7
    """
    key1 = comparison_key(query_value)
    key2 = comparison_key(record_value)

    if not key1 or not key2:
        return EXACT_MATCH_SCORE if normalize_value(query_value) == normalize_value(record_value) else 0.0

    if key1 == key2:
        return EXACT_MATCH_SCORE
    if key1 in key2 or key2 in key1:
        return CONTAINMENT_SCORE
    if string_similarity(key1, key2) > FUZZY_RATIO_THRESHOLD:
        return FUZZY_MATCH_SCORE
    return 0.0


# =============================================================================
# SCORING
# =============================================================================

def determine_match_level(matched_dimensions: FrozenSet[Dimension]) -> MatchLevel:
    """
    Classify a match by the dimensions it matched exactly.

    Monotonic in coverage: adding a matched dimension never lowers the level.
    """
    for level in MATCH_LEVELS_BY_SPECIFICITY:
        if MATCH_LEVEL_REQUIREMENTS[level] <= matched_dimensions:
            return level
    return MatchLevel.FALLBACK


def calculate_similarity(
    record: ProcessedRecord,
    query: ProjectionQuery,
    weights: Mapping[str, float]
) -> SimilarityMatch:
    """
    Score a record against a query.

    Args:
        record: Processed historical record
        query: Projection query; only its specified dimensions are evaluated
        weights: Similarity weights keyed by Dimension value

    Returns:
        SimilarityMatch with the aggregate score rounded to 2 decimals
    """
    dimension_scores: Dict[Dimension, float] = {}
    matched = set()
    total_score = 0.0
    total_weight = 0.0

    for dimension, query_value in query.specified_dimensions().items():
        weight = weights.get(dimension.value, 0.0)
        record_value = record.feature(dimension)

        if record_value:
            score = compare_values(query_value, record_value)
            if score == EXACT_MATCH_SCORE:
                matched.add(dimension)
        else:
            # Record lacks the dimension: zero score, weight still counted
            score = 0.0

        dimension_scores[dimension] = score
        total_score += score * weight
        total_weight += weight

    temporal_weight = weights.get(Dimension.TEMPORAL.value, 0.0)
    dimension_scores[Dimension.TEMPORAL] = record.temporal_weight
    total_score += record.temporal_weight * temporal_weight
    total_weight += temporal_weight

    normalized = (total_score / total_weight) * 100.0 if total_weight > 0 else 0.0
    matched_dimensions = frozenset(matched)

    return SimilarityMatch(
        record=record,
        score=round(min(100.0, max(0.0, normalized)), 2),
        level=determine_match_level(matched_dimensions),
        matched_dimensions=matched_dimensions,
        dimension_scores=dimension_scores,
    )


def find_similar_records(
    records: Sequence[ProcessedRecord],
    query: ProjectionQuery,
    settings: Optional[ProjectionSettings] = None,
    limit: Optional[int] = None
) -> List[SimilarityMatch]:
    """
    Rank records by similarity to a query.

    Records scoring 0 are discarded. Ties keep the input order.

    Args:
        records: Processed records
        query: Projection query
        settings: Engine settings (weights and default limit)
        limit: Cap on the returned list (defaults to settings.match_limit)

    Returns:
        Matches sorted by score descending, at most `limit` long
    """
    settings = settings or get_settings()
    limit = settings.match_limit if limit is None else limit
    weights = settings.similarity_weights

    matches = [calculate_similarity(r, query, weights) for r in records]
    matches = [m for m in matches if m.score > 0]
    matches.sort(key=lambda m: m.score, reverse=True)
    return matches[:limit]


# =============================================================================
# GROUPING AND SELECTION
# =============================================================================

def group_by_match_level(matches: Sequence[SimilarityMatch]) -> Dict[MatchLevel, List[SimilarityMatch]]:
    """Bucket matches by level; every level is present in the result."""
    groups: Dict[MatchLevel, List[SimilarityMatch]] = {level: [] for level in MATCH_LEVELS_BY_SPECIFICITY}
    for match in matches:
        groups[match.level].append(match)
    return groups


def filter_by_match_level(
    matches: Sequence[SimilarityMatch],
    min_level: MatchLevel
) -> List[SimilarityMatch]:
    """Matches at `min_level` or more specific."""
    return [m for m in matches if m.level >= min_level]


def select_best_match_group(
    matches: Sequence[SimilarityMatch],
    min_sample_size: int = 5
) -> MatchGroup:
    """
    Select the most specific group with an adequate sample.

    Args:
        matches: Ranked matches
        min_sample_size: Minimum group size for a level to qualify

    Returns:
        The first qualifying level's group, scanning exact -> fallback. When
        none qualifies, every match tagged FALLBACK (empty input gives an
        empty FALLBACK group).
    """
    groups = group_by_match_level(matches)
    for level in MATCH_LEVELS_BY_SPECIFICITY:
        if len(groups[level]) >= min_sample_size:
            return MatchGroup(matches=groups[level], level=level)
    return MatchGroup(matches=list(matches), level=MatchLevel.FALLBACK)


def calculate_confidence_score(
    matches: Sequence[SimilarityMatch],
    level: MatchLevel
) -> int:
    """
    Confidence of a match group.

    confidence = base(level) + min(15, 10 * log10(n + 1)) + 10 * avg_score / 100
    capped at 100; 0 for an empty group.

    Base per level: exact 95, high 80, medium 65, low 45, fallback 25.

    Returns:
        Integer confidence in [0, 100]
    """
    if not matches:
        return 0

    base = LEVEL_BASE_CONFIDENCE[level]
    sample_bonus = min(MAX_SAMPLE_BONUS, math.log10(len(matches) + 1) * 10.0)
    avg_score = sum(m.score for m in matches) / len(matches)
    score_bonus = (avg_score / 100.0) * MAX_SCORE_BONUS

    return int(min(100, round(base + sample_bonus + score_bonus)))


# =============================================================================
# FIELD SUGGESTIONS
# =============================================================================

def rank_dimension_values(
    matches: Sequence[SimilarityMatch],
    dimension: Dimension,
    top_n: int = 5
) -> List[Tuple[str, float]]:
    """
    Rank values of a dimension by score-weighted frequency among matches.

    Returns:
        List of (value, share) with share in [0, 1] relative to the returned
        values, highest first. Ties are broken alphabetically.
    """
    totals: Dict[str, float] = {}
    for match in matches:
        value = match.record.feature(dimension)
        if value:
            totals[value] = totals.get(value, 0.0) + match.score

    ranked = sorted(totals.items(), key=lambda item: (-item[1], item[0]))[:top_n]
    total = sum(weight for _, weight in ranked)
    if total <= 0:
        return []
    return [(value, weight / total) for value, weight in ranked]


