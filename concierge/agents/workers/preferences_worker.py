# agents/workers/preferences_worker.py
"""
Preferences worker: loads profile preferences, subscriptions, region and
recent feedback. Profiles without subscriptions are flagged cold start.
"""

import asyncio
import re
from collections import Counter
from typing import Any, Dict, List, Optional

from loguru import logger

from concierge.agents.workers.base import WorkerDeps, WorkerInput, run_worker
from concierge.schemas import (
    FeedbackEntry,
    IntentClassification,
    ProfilePreferences,
    ProfileRecord,
    UserPreferences,
    WorkerResult,
    WorkerType,
)


FEEDBACK_WEIGHTS = {"LIKE": 1, "SAVE": 1, "DISLIKE": -1}
MAX_INFERRED_GENRES = 5
RECENT_FEEDBACK_LIMIT = 20

NEGATIVE_PREFERENCE = re.compile(
    r"\b(?:hate|hates|dislike|dislikes|don'?t\s+(?:like|want|enjoy)|can'?t\s+stand|not\s+into|no\s+more|avoid)\b",
    re.IGNORECASE,
)


def infer_genres_from_feedback(feedback: List[FeedbackEntry]) -> List[str]:
    """Net genre counts from likes/saves minus dislikes; top positive genres"""
    counts: Counter = Counter()
    for entry in feedback:
        weight = FEEDBACK_WEIGHTS.get(entry.action.upper(), 0)
        for genre in entry.genres:
            counts[genre] += weight
    ranked = [genre for genre, count in counts.most_common() if count > 0]
    return ranked[:MAX_INFERRED_GENRES]


def derive_region(profile: Optional[ProfileRecord], fallback: str = "US") -> str:
    """Profile region, else the country part of the locale (en-GB -> GB), else fallback"""
    if profile is not None:
        if profile.region:
            return profile.region.upper()
        if profile.locale:
            parts = re.split(r"[-_]", profile.locale)
            if len(parts) > 1 and len(parts[-1]) == 2:
                return parts[-1].upper()
    return fallback


def stated_preferences(classification: IntentClassification) -> UserPreferences:
    """
    Preferences the user stated in this message.

    Genres named in a negative phrasing ("I hate horror") are avoided;
    otherwise named genres and moods are liked.
    """
    entities = classification.entities
    genres = list(entities.genres or [])
    if NEGATIVE_PREFERENCE.search(classification.raw_query):
        return UserPreferences(avoid_genres=genres)
    return UserPreferences(genres=genres, moods=list(entities.moods or []))


async def load_preferences(worker_input: WorkerInput, deps: WorkerDeps) -> Dict[str, Any]:
    snapshot = worker_input.context
    default_region = snapshot.region or deps.config.DEFAULT_REGION

    if not snapshot.profile_id:
        result = ProfilePreferences(
            preferences=snapshot.preferences,
            subscriptions=list(snapshot.subscriptions),
            region=default_region,
            cold_start=not snapshot.subscriptions,
        )
        return result.model_dump(mode="json", by_alias=True)

    profile = await deps.catalog.get_profile(snapshot.profile_id)
    if profile is None:
        logger.info(f"Profile {snapshot.profile_id} not found, using cold start")
        result = ProfilePreferences(preferences=snapshot.preferences, region=default_region, cold_start=True)
        return result.model_dump(mode="json", by_alias=True)

    subscriptions, feedback = await asyncio.gather(
        deps.catalog.list_active_subscriptions(profile.id),
        deps.catalog.list_recent_feedback(profile.id, limit=RECENT_FEEDBACK_LIMIT),
    )

    preferences = profile.preferences
    if not preferences.genres:
        inferred = infer_genres_from_feedback(feedback)
        if inferred:
            preferences = preferences.model_copy(update={"genres": inferred})
    preferences = preferences.merged(snapshot.preferences)

    result = ProfilePreferences(
        preferences=preferences,
        subscriptions=subscriptions,
        region=derive_region(profile, default_region),
        recent_feedback=feedback,
        cold_start=not subscriptions,
    )
    logger.debug(
        f"Profile {profile.id}: {len(subscriptions)} subscriptions, "
        f"{len(preferences.genres)} genres, cold_start={result.cold_start}"
    )
    return result.model_dump(mode="json", by_alias=True)


async def execute_preferences(worker_input: WorkerInput, deps: WorkerDeps) -> WorkerResult:
    return await run_worker(WorkerType.PREFERENCES, load_preferences, worker_input, deps)
