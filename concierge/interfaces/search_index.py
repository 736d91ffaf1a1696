# interfaces/search_index.py
"""
Full-text search index client (OpenSearch-compatible `_search` API).

Every request carries a bounded timeout. Non-2xx responses and transport
errors raise SearchIndexError so the search worker can fall back to the
catalog.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from concierge.schemas import TitleResult


class SearchIndexError(Exception):
    """The index answered with an error or could not be reached"""


@dataclass
class SearchParams:
    """Structured query built from extracted entities"""
    q: str = ""
    size: int = 20
    offset: int = 0
    services: Optional[List[str]] = None
    regions: Optional[List[str]] = None
    types: Optional[List[str]] = None
    genres: Optional[List[str]] = None
    year_min: Optional[int] = None
    year_max: Optional[int] = None
    runtime_min: Optional[int] = None
    runtime_max: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


def build_query(params: SearchParams) -> Dict[str, Any]:
    """Translate SearchParams into an OpenSearch bool query"""
    filters: List[Dict[str, Any]] = []
    if params.services:
        filters.append({"terms": {"availabilityServices": params.services}})
    if params.regions:
        filters.append({"terms": {"availabilityRegions": params.regions}})
    if params.types:
        filters.append({"terms": {"type": params.types}})
    if params.genres and not params.q:
        filters.append({"terms": {"genres": params.genres}})
    if params.year_min is not None or params.year_max is not None:
        filters.append({"range": {"releaseYear": _range(params.year_min, params.year_max)}})
    if params.runtime_min is not None or params.runtime_max is not None:
        filters.append({"range": {"runtimeMin": _range(params.runtime_min, params.runtime_max)}})

    should: List[Dict[str, Any]] = []
    if params.q:
        should = [
            {"match": {"name": {"query": params.q, "boost": 3}}},
            {"match_phrase_prefix": {"name": {"query": params.q, "boost": 2, "slop": 2}}},
            {"match": {"name": {"query": params.q, "fuzziness": "AUTO", "prefix_length": 1}}},
            {"match": {"name.ngrams": {"query": params.q, "boost": 2}}},
        ]

    return {
        "track_total_hits": True,
        "size": params.size,
        "from": params.offset,
        "query": {
            "bool": {
                "must": [] if params.q else [{"match_all": {}}],
                "filter": filters,
                "should": should + [
                    {"exists": {"field": "posterUrl"}},
                    {"exists": {"field": "backdropUrl"}},
                ],
                "minimum_should_match": 1 if should else 0,
            }
        },
    }


def _range(low: Optional[int], high: Optional[int]) -> Dict[str, int]:
    bounds = {}
    if low is not None:
        bounds["gte"] = low
    if high is not None:
        bounds["lte"] = high
    return bounds


def _hit_to_title(hit: Dict[str, Any]) -> TitleResult:
    source = hit.get("_source") or {}
    return TitleResult(
        id=str(hit.get("_id")),
        name=source.get("name", ""),
        type=source.get("type") or "movie",
        genres=source.get("genres") or [],
        moods=source.get("moods") or [],
        release_year=source.get("releaseYear"),
        runtime_min=source.get("runtimeMin"),
        vote_average=source.get("voteAverage"),
        popularity=source.get("popularity"),
        poster_url=source.get("posterUrl"),
        backdrop_url=source.get("backdropUrl"),
        tmdb_id=source.get("tmdbId"),
        imdb_id=source.get("imdbId"),
    )


class SearchIndex:
    """Interface: query in, ranked titles out"""

    async def search(self, params: SearchParams) -> List[TitleResult]:
        raise NotImplementedError


class OpenSearchIndex(SearchIndex):
    def __init__(self, base_url: str, index: str = "titles", timeout: float = 3.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.index = index
        self.timeout = timeout
        self.client = client

    async def search(self, params: SearchParams) -> List[TitleResult]:
        if not self.base_url:
            raise SearchIndexError("Search index URL is not configured")

        url = f"{self.base_url}/{self.index}/_search"
        body = build_query(params)
        try:
            if self.client is not None:
                response = await self.client.post(url, json=body, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=body)
        except httpx.HTTPError as e:
            raise SearchIndexError(f"Search index unreachable: {e}") from e

        if response.status_code >= 400:
            logger.warning(f"Search index returned {response.status_code}")
            raise SearchIndexError(f"Search index returned {response.status_code}")

        try:
            hits = response.json().get("hits", {}).get("hits", [])
        except ValueError as e:
            raise SearchIndexError(f"Search index returned invalid JSON: {e}") from e
        return [_hit_to_title(hit) for hit in hits]
