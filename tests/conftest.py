"""Shared fixtures: in-memory stores, a small catalog and collaborator doubles."""

import asyncio
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from concierge.config import Settings
from concierge.interfaces.availability_provider import AvailabilityProvider, AvailabilityProviderError
from concierge.interfaces.catalog_store import MemoryCatalogStore
from concierge.interfaces.kv_store import MemoryKeyValueStore
from concierge.interfaces.search_index import SearchIndex, SearchParams
from concierge.main import ConciergeServices, create_app
from concierge.schemas import (
    AvailabilityResult,
    ExternalRatings,
    FeedbackEntry,
    PlanTier,
    ProfileRecord,
    TitleResult,
    TrendingSignal,
    UserPreferences,
)


class FakeClock:
    """Manually advanced epoch-seconds clock"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSearchIndex(SearchIndex):
    def __init__(self, titles: Optional[List[TitleResult]] = None, error: Optional[Exception] = None,
                 delay: float = 0.0):
        self.titles = titles or []
        self.error = error
        self.delay = delay
        self.calls: List[SearchParams] = []

    async def search(self, params: SearchParams) -> List[TitleResult]:
        self.calls.append(params)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.titles)


class FakeAvailabilityProvider(AvailabilityProvider):
    source = "JUSTWATCH"

    def __init__(self, rows: Optional[List[AvailabilityResult]] = None, fail: bool = False):
        self.rows = rows or []
        self.fail = fail
        self.calls = []

    async def lookup(self, title, region, services=None):
        self.calls.append((title, region, services))
        if self.fail:
            raise AvailabilityProviderError("provider down")
        return [r for r in self.rows if r.region == region and (not services or r.service in services)]


def make_title(title_id: str, name: str, genres=(), moods=(), year=None, vote=None, popularity=None,
               poster: bool = True) -> TitleResult:
    return TitleResult(
        id=title_id,
        name=name,
        genres=list(genres),
        moods=list(moods),
        release_year=year,
        runtime_min=110,
        vote_average=vote,
        popularity=popularity,
        poster_url=f"https://img.example/{title_id}.jpg" if poster else None,
        imdb_id=f"tt{title_id}",
    )


CATALOG_TITLES = [
    make_title("1", "Dune", ["Science Fiction", "Adventure"], ["epic"], 2021, 8.0, 500),
    make_title("2", "Dune: Part Two", ["Science Fiction", "Adventure"], ["epic"], 2024, 8.5, 900),
    make_title("3", "Galaxy Quest", ["Comedy", "Science Fiction"], ["comedy"], 1999, 7.4, 60),
    make_title("4", "Spaceballs", ["Comedy", "Science Fiction"], ["comedy"], 1987, 7.1, 40),
    make_title("5", "Hereditary", ["Horror"], ["horror"], 2018, 7.3, 80),
    make_title("6", "Alien", ["Horror", "Science Fiction"], ["horror"], 1979, 8.5, 150),
    make_title("7", "Toy Story", ["Animation", "Family"], ["lighthearted"], 1995, 8.3, 200),
    make_title("8", "Toy Story 3", ["Animation", "Family"], ["emotional"], 2010, 8.3, 180),
    make_title("9", "The Godfather", ["Crime", "Drama"], ["dark"], 1972, 9.2, 300),
    make_title("10", "The Godfather Part II", ["Crime", "Drama"], ["dark"], 1974, 9.0, 250),
    make_title("11", "Paddington 2", ["Family", "Comedy"], ["feel-good"], 2017, 7.8, 90),
    make_title("12", "Superbad", ["Comedy"], ["comedy"], 2007, 7.6, 70),
]


def _offer(title_id: str, service: str, region: str = "US", offer_type: str = "flatrate") -> AvailabilityResult:
    return AvailabilityResult(title_id=title_id, service=service, region=region, offer_type=offer_type)


CATALOG_AVAILABILITY = [
    _offer("1", "HBO Max"),
    _offer("1", "Netflix", region="GB"),
    _offer("2", "HBO Max"),
    _offer("3", "Netflix"),
    _offer("4", "Netflix"),
    _offer("4", "Amazon Prime Video", offer_type="rent"),
    _offer("5", "Netflix"),
    _offer("6", "Hulu"),
    _offer("7", "Disney Plus"),
    _offer("8", "Disney Plus"),
    _offer("9", "Paramount Plus"),
    _offer("10", "Paramount Plus"),
    _offer("11", "Netflix"),
    _offer("12", "Netflix"),
]


@pytest.fixture
def config() -> Settings:
    """Settings with every switch the tests rely on pinned"""
    cfg = Settings()
    cfg.AI_CONCIERGE_ENABLED = True
    cfg.NLU_ENABLED = True
    cfg.CHAT_SAFETY_FILTER = True
    cfg.CHAT_PROMPT_REDACTION = True
    cfg.CHAT_MAX_INPUT_LENGTH = 2000
    cfg.CHAT_MAX_MESSAGE_LENGTH = 1000
    cfg.CHAT_SPECIAL_CHAR_RATIO = 0.5
    cfg.CHAT_MAX_HISTORY = 20
    cfg.CHAT_SESSION_TTL_SECONDS = 1800
    cfg.CHAT_TURN_LOCK_SECONDS = 30
    cfg.CHAT_MAX_TURNS = 20
    cfg.CHAT_RATE_LIMIT_WINDOW_SECONDS = 60
    cfg.CHAT_RATE_LIMIT_FREE = 5
    cfg.CHAT_RATE_LIMIT_PREMIUM = 30
    cfg.LLM_DAILY_LIMIT_FREE = 10
    cfg.LLM_DAILY_LIMIT_PREMIUM = 1000
    cfg.LLM_PROVIDER = "none"
    cfg.OPENAI_API_KEY = ""
    cfg.SEARCH_CACHE_TTL_SECONDS = 60
    cfg.SEARCH_PAGE_SIZE = 20
    cfg.WORKER_TIMEOUT_SECONDS = 2
    cfg.MAX_RECOMMENDATIONS = 6
    cfg.AVAILABILITY_SOURCE = "LOCAL"
    cfg.DEFAULT_REGION = "US"
    cfg.REDIS_HOST = ""
    cfg.CATALOG_BACKEND = "memory"
    cfg.CATALOG_SEED_PATH = ""
    cfg.CORS_ORIGINS = "http://localhost:3000"
    return cfg


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv(clock) -> MemoryKeyValueStore:
    return MemoryKeyValueStore(clock=clock)


@pytest.fixture
def catalog() -> MemoryCatalogStore:
    return MemoryCatalogStore(
        titles=CATALOG_TITLES,
        availability=CATALOG_AVAILABILITY,
        profiles=[
            ProfileRecord(id="p-premium", tier=PlanTier.PREMIUM, region="US",
                          preferences=UserPreferences(genres=["Science Fiction"], avoid_genres=["Horror"])),
            ProfileRecord(id="p-locale", locale="en-GB"),
            ProfileRecord(id="p-feedback", region="US"),
            ProfileRecord(id="p-cold", region="US"),
        ],
        subscriptions={
            "p-premium": ["Netflix", "HBO Max"],
            "p-locale": ["Netflix"],
            "p-feedback": ["Netflix"],
        },
        feedback={
            "p-feedback": [
                FeedbackEntry(title_id="3", action="LIKE", genres=["Comedy", "Science Fiction"]),
                FeedbackEntry(title_id="12", action="SAVE", genres=["Comedy"]),
                FeedbackEntry(title_id="5", action="DISLIKE", genres=["Horror"]),
                FeedbackEntry(title_id="6", action="LIKE", genres=["Horror"]),
            ],
        },
        ratings={
            "9": ExternalRatings(imdb=92, rotten_tomatoes=97, metacritic=100),
            "2": ExternalRatings(imdb=85, rotten_tomatoes=92, metacritic=79),
            "11": ExternalRatings(imdb=78, rotten_tomatoes=99, metacritic=88),
        },
        trending={
            "2": TrendingSignal(day=0.9, week=0.8),
            "12": TrendingSignal(day=0.1, week=0.2),
        },
    )


@pytest.fixture
def services(config, kv, catalog) -> ConciergeServices:
    return ConciergeServices.build(config, kv, catalog)


@pytest.fixture
def orchestrator(services):
    return services.orchestrator


@pytest.fixture
def client(services):
    app = create_app(services)
    with TestClient(app) as test_client:
        yield test_client
