"""Scoring algorithms"""

from concierge.algorithms.recommendation_scorer import (
    RecommendationScore,
    ScoredCandidate,
    score_title,
    matched_preferences,
    build_reason,
    series_root,
    diversity_pick,
    MAX_RECOMMENDATIONS,
    NEUTRAL_REASON,
)

__all__ = [
    "RecommendationScore", "ScoredCandidate", "score_title", "matched_preferences",
    "build_reason", "series_root", "diversity_pick", "MAX_RECOMMENDATIONS", "NEUTRAL_REASON",
]
