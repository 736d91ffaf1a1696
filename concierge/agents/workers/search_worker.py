# agents/workers/search_worker.py
"""
Search worker: entities -> structured query -> full-text index, with a
catalog name lookup as fallback and a short-TTL result cache.
"""

import re
from typing import Any, Dict, List, Tuple

from loguru import logger

from concierge.agents.workers.base import WorkerDeps, WorkerInput, run_worker
from concierge.cache.search_cache import cache_key, store_cache, try_cache
from concierge.errors import CacheUnavailableError
from concierge.interfaces.search_index import SearchIndexError, SearchParams
from concierge.nlu.entity_extractor import strip_entities
from concierge.schemas import IntentClassification, TitleResult, WorkerResult, WorkerType


# Words that carry no title signal once entities are gone
FILLER_WORDS = {
    "a", "an", "the", "some", "any", "me", "i", "to", "for", "of", "and", "or", "with",
    "movie", "movies", "film", "films", "show", "shows", "series", "tv", "something",
    "anything", "watch", "stream", "find", "search", "good", "great", "new", "please",
    "want", "looking", "like", "is", "are", "there", "what", "can", "you",
}
WORD = re.compile(r"[\w'+-]+")


def _free_text(raw_query: str) -> str:
    stripped = strip_entities(raw_query)
    words = [w for w in WORD.findall(stripped) if w.lower() not in FILLER_WORDS]
    return " ".join(words)


def build_search_params(classification: IntentClassification, page_size: int = 20) -> SearchParams:
    """
    Structured query from entities.

    Free text is the message with entity phrases and filler removed; genre
    names stand in when nothing is left, and a quoted title overrides both.
    """
    entities = classification.entities
    params = SearchParams(q=_free_text(classification.raw_query), size=page_size)

    if entities.genres:
        params.genres = list(entities.genres)
        if not params.q:
            params.q = " ".join(entities.genres)
    if entities.services:
        params.services = list(entities.services)
    if entities.region:
        params.regions = [entities.region]
    if entities.duration:
        params.runtime_min = entities.duration.min
        params.runtime_max = entities.duration.max
    if entities.release_year:
        params.year_min = entities.release_year.min
        params.year_max = entities.release_year.max
    if entities.titles:
        params.q = entities.titles[0]

    return params


def _within_filters(title: TitleResult, params: SearchParams) -> bool:
    year = title.release_year
    runtime = title.runtime_min
    if year is not None:
        if params.year_min is not None and year < params.year_min:
            return False
        if params.year_max is not None and year > params.year_max:
            return False
    if runtime is not None:
        if params.runtime_min is not None and runtime < params.runtime_min:
            return False
        if params.runtime_max is not None and runtime > params.runtime_max:
            return False
    return True


async def _compute(params: SearchParams, deps: WorkerDeps) -> Tuple[List[TitleResult], str]:
    if deps.search_index is not None:
        try:
            return await deps.search_index.search(params), "index"
        except SearchIndexError as e:
            logger.warning(f"Search index unavailable, falling back to catalog: {e}")

    if not params.q:
        return [], "catalog"
    rows = await deps.catalog.find_titles_by_name(params.q, limit=params.size)
    return [t for t in rows if _within_filters(t, params)], "catalog"


async def search_titles(worker_input: WorkerInput, deps: WorkerDeps) -> Dict[str, Any]:
    params = build_search_params(worker_input.intent, deps.config.SEARCH_PAGE_SIZE)
    key = cache_key(params.to_dict())

    try:
        cached = await try_cache(deps.kv, key)
    except CacheUnavailableError as e:
        logger.warning(f"Search cache unavailable, computing: {e}")
        cached = None

    if cached is not None:
        items = [TitleResult.model_validate(item) for item in cached]
        source = "cache"
    else:
        items, source = await _compute(params, deps)
        if source == "index":
            await store_cache(
                deps.kv, key,
                [t.model_dump(mode="json", by_alias=True) for t in items],
                ttl_seconds=deps.config.SEARCH_CACHE_TTL_SECONDS,
            )

    logger.info(f"Search '{params.q}' -> {len(items)} results ({source})")
    return {
        "items": [t.model_dump(mode="json", by_alias=True) for t in items],
        "total": len(items),
        "query": params.to_dict(),
        "source": source,
    }


async def execute_search(worker_input: WorkerInput, deps: WorkerDeps) -> WorkerResult:
    return await run_worker(WorkerType.SEARCH, search_titles, worker_input, deps)
