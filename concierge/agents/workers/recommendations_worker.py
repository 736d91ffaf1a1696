# agents/workers/recommendations_worker.py
"""
Recommendations worker.

Ranks the search results from this turn when there are any, otherwise the
catalog's popular picks, against the caller's preferences and services.
Runs after the preferences and search workers and reads their results.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List

from loguru import logger

from concierge.agents.workers.base import WorkerDeps, WorkerInput, run_worker
from concierge.algorithms.recommendation_scorer import (
    ScoredCandidate,
    build_reason,
    diversity_pick,
    matched_preferences,
    score_title,
)
from concierge.safety.filters import sanitize_reason
from concierge.schemas import (
    ProfilePreferences,
    RecommendationResult,
    TitleResult,
    WorkerResult,
    WorkerType,
)


CANDIDATE_POOL_SIZE = 200


def _search_candidates(worker_input: WorkerInput) -> List[TitleResult]:
    search = worker_input.result_for(WorkerType.SEARCH)
    if search is None or not search.data:
        return []
    return [TitleResult.model_validate(item) for item in search.data.get("items", [])]


def _profile(worker_input: WorkerInput) -> ProfilePreferences:
    prefs = worker_input.result_for(WorkerType.PREFERENCES)
    if prefs is not None and prefs.data:
        return ProfilePreferences.model_validate(prefs.data)
    snapshot = worker_input.context
    return ProfilePreferences(
        preferences=snapshot.preferences,
        subscriptions=list(snapshot.subscriptions),
        region=snapshot.region,
        cold_start=not snapshot.subscriptions,
    )


async def recommend_titles(worker_input: WorkerInput, deps: WorkerDeps) -> Dict[str, Any]:
    profile = _profile(worker_input)
    entities = worker_input.intent.entities
    region = profile.region
    cold_start = not profile.subscriptions

    candidates = _search_candidates(worker_input)
    source = "search"
    if not candidates:
        candidates = await deps.catalog.list_candidate_titles(limit=CANDIDATE_POOL_SIZE)
        source = "picks"
    if not candidates:
        return {"items": [], "source": source, "coldStart": cold_start}

    title_ids = [t.id for t in candidates]
    ratings, availability_rows, trending = await asyncio.gather(
        deps.catalog.list_external_ratings(title_ids),
        deps.catalog.list_availability(title_ids, region),
        deps.catalog.list_trending(title_ids),
    )
    availability_by_title: Dict[str, list] = {}
    for row in availability_rows:
        availability_by_title.setdefault(row.title_id, []).append(row)

    current_year = datetime.now(timezone.utc).year
    scored: List[ScoredCandidate] = []
    for title in candidates:
        offers = availability_by_title.get(title.id, [])
        breakdown = score_title(
            title,
            offers,
            profile.subscriptions,
            region,
            profile.preferences,
            cold_start,
            ratings=ratings.get(title.id),
            trending=trending.get(title.id),
            requested_genres=entities.genres,
            requested_moods=entities.moods,
        )
        matched = matched_preferences(title, profile.preferences, entities.genres, entities.moods)
        reason = build_reason(
            title, breakdown, region, cold_start,
            availability=offers,
            subscriptions=profile.subscriptions,
            matched=matched,
            ratings=ratings.get(title.id),
            trending=trending.get(title.id),
            current_year=current_year,
        )
        scored.append(ScoredCandidate(
            title=title,
            score=breakdown.total,
            reason=reason,
            breakdown=breakdown,
            availability=offers,
            matched_preferences=matched,
            quality_fallback=cold_start,
        ))

    picked = diversity_pick(scored, limit=deps.config.MAX_RECOMMENDATIONS)
    for candidate in picked:
        logger.debug(f"{candidate.title.name}: {candidate.breakdown!r}")

    items = [
        RecommendationResult(
            title=c.title,
            score=round(c.score, 4),
            reason=sanitize_reason(c.reason),
            availability=c.availability or None,
            matched_preferences=c.matched_preferences or None,
            quality_fallback=c.quality_fallback,
        ).model_dump(mode="json", by_alias=True)
        for c in picked
    ]
    logger.info(f"Ranked {len(scored)} {source} candidates -> {len(items)} recommendations (cold_start={cold_start})")
    return {"items": items, "source": source, "coldStart": cold_start}


async def execute_recommendations(worker_input: WorkerInput, deps: WorkerDeps) -> WorkerResult:
    return await run_worker(WorkerType.RECOMMENDATIONS, recommend_titles, worker_input, deps)
