"""
Recommendation Score Algorithm
Ranks candidate titles for a profile and picks a diverse final set

Algorithm Components:
1. Availability (+2.5) - streamable on a subscribed service in the region
2. Rating (0-1, x1.5 cold start) - vote average / 10
3. Critics (0-1, x2 cold start) - IMDb 60% / Rotten Tomatoes 30% / Metacritic 10%
4. Popularity (0-0.1, x2 cold start) - min(popularity, 1000) / 10000
5. Trending (x1.5 cold start, x0.8 otherwise) - day/week signal blend
6. Preferences (+0.5 each) - genre and mood overlap
7. Avoidance (-1.0 each) - avoided genres, dominates the positives above
8. Recency (0-0.1) - years after 2000 / 200
9. Imagery (+0.2) - has a poster or backdrop
10. Quality blend (0-0.5, cold start only) - lets ratings lead when there is
    no personalisation signal

Total is clamped to a finite, non-negative number. Diversity sampling keeps
at most one title per series family and at most 6 titles overall.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, NamedTuple, Optional

from loguru import logger

from concierge.schemas import (
    AvailabilityResult,
    ExternalRatings,
    TitleResult,
    TrendingSignal,
    UserPreferences,
)


MAX_RECOMMENDATIONS = 6

AVAILABILITY_BOOST = 2.5
GENRE_MATCH_BOOST = 0.5
MOOD_MATCH_BOOST = 0.5
AVOID_GENRE_PENALTY = 1.0
IMAGERY_BOOST = 0.2
QUALITY_BLEND_WEIGHT = 0.5

CRITIC_WEIGHTS = {"imdb": 0.6, "rotten_tomatoes": 0.3, "metacritic": 0.1}

NEUTRAL_REASON = "From the catalog's popular picks"


class RecommendationScore(NamedTuple):
    """
    Breakdown of a candidate's score
    """
    availability: float
    rating: float
    critics: float
    popularity: float
    trending: float
    preference: float
    avoidance: float      # <= 0
    recency: float
    imagery: float
    quality_blend: float  # cold start only
    total: float

    def __repr__(self) -> str:
        return (
            f"RecommendationScore(total={self.total:.2f}, "
            f"avail={self.availability:.2f}, rating={self.rating:.2f}, "
            f"critics={self.critics:.2f}, pref={self.preference:.2f}, "
            f"avoid={self.avoidance:.2f}, blend={self.quality_blend:.2f})"
        )


@dataclass
class ScoredCandidate:
    """A title with its score; lives only for one orchestration pass"""
    title: TitleResult
    score: float
    reason: str
    breakdown: Optional[RecommendationScore] = None
    availability: List[AvailabilityResult] = field(default_factory=list)
    matched_preferences: List[str] = field(default_factory=list)
    quality_fallback: bool = False


# ============================================
# Scoring
# ============================================

def _clamp(value: Optional[float], low: float, high: float) -> float:
    if value is None or not math.isfinite(value):
        return low
    return min(max(value, low), high)


def critics_composite(ratings: Optional[ExternalRatings]) -> Optional[float]:
    """Weighted 0-1 critic score, or None when no source has a value"""
    if ratings is None:
        return None
    total = 0.0
    weight = 0.0
    for source, w in CRITIC_WEIGHTS.items():
        value = getattr(ratings, source)
        if value is not None and math.isfinite(value):
            total += _clamp(value, 0, 100) * w
            weight += w
    if weight == 0:
        return None
    return total / weight / 100


def score_title(
    title: TitleResult,
    availability: Iterable[AvailabilityResult],
    subscriptions: List[str],
    region: str,
    preferences: Optional[UserPreferences],
    cold_start: bool,
    ratings: Optional[ExternalRatings] = None,
    trending: Optional[TrendingSignal] = None,
    requested_genres: Optional[List[str]] = None,
    requested_moods: Optional[List[str]] = None,
) -> RecommendationScore:
    """
    Score a title for a profile

    Args:
        title: Candidate title
        availability: Availability rows for the title
        subscriptions: Services the profile subscribes to
        region: Region the profile watches in
        preferences: Explicit or inferred preferences (None = unknown)
        cold_start: True when the profile has no subscriptions
        ratings: External critic ratings (0-100)
        trending: Trending signal (0-1)
        requested_genres: Genres named in the current message
        requested_moods: Moods named in the current message

    Returns:
        RecommendationScore: Detailed score breakdown

    Example:
        >>> score = score_title(
        ...     TitleResult(id="t1", name="Arrival", genres=["Science Fiction"], vote_average=8.0),
        ...     availability=[], subscriptions=[], region="US",
        ...     preferences=None, cold_start=True,
        ... )
        >>> round(score.rating, 2)
        1.2
    """
    subscribed = set(subscriptions)
    available_here = any(a.service in subscribed and a.region == region for a in availability)
    availability_score = AVAILABILITY_BOOST if available_here else 0.0

    rating_score = 0.0
    if title.vote_average is not None:
        rating_score = _clamp(title.vote_average, 0, 10) / 10 * (1.5 if cold_start else 1.0)

    critics = critics_composite(ratings)
    critics_score = critics * (2.0 if cold_start else 1.0) if critics is not None else 0.0

    popularity_score = 0.0
    if title.popularity is not None:
        popularity_score = _clamp(title.popularity, 0, 1000) / 10000 * (2.0 if cold_start else 1.0)

    trending_score = 0.0
    if trending is not None:
        composite = _clamp(trending.day, 0, 1) * 0.5 + _clamp(trending.week, 0, 1) * 0.5
        trending_score = composite * (1.5 if cold_start else 0.8)

    liked_genres = set(preferences.genres if preferences else []) | set(requested_genres or [])
    liked_moods = set(preferences.moods if preferences else []) | set(requested_moods or [])
    avoided = set(preferences.avoid_genres if preferences else [])

    preference_score = (
        sum(GENRE_MATCH_BOOST for g in title.genres if g in liked_genres and g not in avoided)
        + sum(MOOD_MATCH_BOOST for m in title.moods if m in liked_moods)
    )
    avoidance_score = -sum(AVOID_GENRE_PENALTY for g in title.genres if g in avoided)

    recency_score = 0.0
    if title.release_year:
        recency_score = max(0, title.release_year - 2000) / 200

    imagery_score = IMAGERY_BOOST if (title.poster_url or title.backdrop_url) else 0.0

    quality_blend = 0.0
    if cold_start:
        signals = []
        if title.vote_average is not None:
            signals.append(_clamp(title.vote_average, 0, 10) / 10)
        if critics is not None:
            signals.append(critics)
        if signals:
            quality_blend = QUALITY_BLEND_WEIGHT * (sum(signals) / len(signals))

    raw_total = (
        availability_score + rating_score + critics_score + popularity_score
        + trending_score + preference_score + avoidance_score + recency_score
        + imagery_score + quality_blend
    )
    total = raw_total if math.isfinite(raw_total) and raw_total > 0 else 0.0

    return RecommendationScore(
        availability=availability_score,
        rating=rating_score,
        critics=critics_score,
        popularity=popularity_score,
        trending=trending_score,
        preference=preference_score,
        avoidance=avoidance_score,
        recency=recency_score,
        imagery=imagery_score,
        quality_blend=quality_blend,
        total=total,
    )


def matched_preferences(
    title: TitleResult,
    preferences: Optional[UserPreferences],
    requested_genres: Optional[List[str]] = None,
    requested_moods: Optional[List[str]] = None,
) -> List[str]:
    liked_genres = set(preferences.genres if preferences else []) | set(requested_genres or [])
    liked_moods = set(preferences.moods if preferences else []) | set(requested_moods or [])
    matched = [f"genre:{g}" for g in title.genres if g in liked_genres]
    matched.extend(f"mood:{m}" for m in title.moods if m in liked_moods)
    return matched


# ============================================
# Reasons
# ============================================

def _highlights(
    title: TitleResult,
    ratings: Optional[ExternalRatings],
    trending: Optional[TrendingSignal],
    current_year: int,
) -> List[str]:
    bits = []
    if title.vote_average is not None and title.vote_average >= 8.5:
        bits.append("highly rated")
    best_critic = max(
        (v for v in ((ratings.imdb, ratings.rotten_tomatoes, ratings.metacritic) if ratings else ()) if v is not None),
        default=0,
    )
    if best_critic >= 85:
        bits.append("critically acclaimed")
    elif best_critic >= 75:
        bits.append("well reviewed")
    if title.popularity is not None and title.popularity >= 300:
        bits.append("popular now")
    if trending is not None and trending.day >= 0.6:
        bits.append("trending today")
    elif trending is not None and trending.week >= 0.6:
        bits.append("trending")
    if title.release_year and title.release_year >= current_year - 1:
        bits.append("new")
    return bits


def build_reason(
    title: TitleResult,
    breakdown: RecommendationScore,
    region: str,
    cold_start: bool,
    availability: Iterable[AvailabilityResult] = (),
    subscriptions: Optional[List[str]] = None,
    matched: Optional[List[str]] = None,
    ratings: Optional[ExternalRatings] = None,
    trending: Optional[TrendingSignal] = None,
    current_year: Optional[int] = None,
) -> str:
    """
    Summarise the dominant scoring factor as a short sentence

    Cold-start reasons always lead with "Quality blend pick".
    """
    current_year = current_year or datetime.now(timezone.utc).year
    bits = _highlights(title, ratings, trending, current_year)

    if cold_start:
        if bits:
            return f"Quality blend pick: {', '.join(bits[:3])}"
        return "Quality blend pick"

    factors = {
        "availability": breakdown.availability,
        "rating": breakdown.rating + breakdown.critics,
        "preference": breakdown.preference,
        "popularity": breakdown.popularity + breakdown.trending,
        "recency": breakdown.recency,
    }
    dominant = max(factors, key=lambda name: factors[name])
    if factors[dominant] <= 0:
        return NEUTRAL_REASON

    if dominant == "availability":
        subscribed = set(subscriptions or [])
        service = next((a.service for a in availability if a.service in subscribed and a.region == region), None)
        lead = f"Streaming on {service} in {region}" if service else f"Available on your services in {region}"
    elif dominant == "rating":
        lead = "Highly rated by audiences and critics"
    elif dominant == "preference":
        liked = [m.split(":", 1)[1] for m in (matched or [])]
        lead = f"Matches your taste for {', '.join(liked[:3])}" if liked else "Matches your taste"
    elif dominant == "popularity":
        lead = "Popular right now"
    else:
        lead = f"A recent release from {title.release_year}"

    extras = [b for b in bits if b not in lead.lower()]
    if extras:
        return f"{lead} ({', '.join(extras[:2])})"
    return lead


# ============================================
# Series diversity
# ============================================

_SEQUEL_MARKER = re.compile(
    r"\s+(?:part|season|volume|vol\.?|chapter|episode|book)\s*(?:\d+|[ivx]+|one|two|three|four|five)\b.*$",
    re.IGNORECASE,
)
_TRAILING_NUMBER = re.compile(r"\s+(?:\d{1,2}|[ivx]{1,4})$", re.IGNORECASE)
_LEADING_ARTICLE = re.compile(r"^(?:the|a|an)\s+", re.IGNORECASE)
_NON_WORD = re.compile(r"[^\w\s]+")


def series_root(name: str) -> str:
    """
    Reduce a title name to its series family key.

    Examples:
        >>> series_root("Dune: Part Two")
        'dune'
        >>> series_root("Toy Story 3")
        'toy story'
        >>> series_root("The Godfather Part II")
        'godfather'
    """
    root = (name or "").strip().lower()
    root = root.split(":", 1)[0]
    root = _SEQUEL_MARKER.sub("", root)
    root = _NON_WORD.sub(" ", root)
    root = " ".join(root.split())
    root = _TRAILING_NUMBER.sub("", root)
    root = _LEADING_ARTICLE.sub("", root).strip()
    return root or "unknown"


def diversity_pick(candidates: List[ScoredCandidate], limit: int = MAX_RECOMMENDATIONS) -> List[ScoredCandidate]:
    """
    Select up to `limit` candidates with at most one per series family.

    Candidates are visited by score (desc, stable), so the member kept for
    each family is its highest-scored one.
    """
    ordered = sorted(candidates, key=lambda c: c.score, reverse=True)
    selected: List[ScoredCandidate] = []
    seen: Dict[str, str] = {}

    for candidate in ordered:
        if len(selected) >= limit:
            break
        family = series_root(candidate.title.name)
        if family in seen:
            logger.debug(f"Diversity: skipping {candidate.title.name!r} (family {family!r} kept {seen[family]!r})")
            continue
        seen[family] = candidate.title.name
        selected.append(candidate)

    return selected
