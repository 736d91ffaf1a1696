"""
Catalog Interface - Relational Store Access Layer
Profiles, subscriptions, feedback, titles, availability and ratings

MySQLCatalogStore reads the catalog database through a mysql-connector pool;
queries are synchronous and run in a worker thread so they never block the
event loop. MemoryCatalogStore serves the same reads from seeded data.
"""

import asyncio
import json
from typing import Any, Dict, Iterable, List, Optional

from mysql.connector import pooling, Error as MySQLError
from loguru import logger

from concierge.config import Settings
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


RATING_SOURCES = {"IMDB": "imdb", "ROTTEN_TOMATOES": "rotten_tomatoes", "METACRITIC": "metacritic"}


class CatalogStore:
    """Read operations the concierge needs from the relational store"""

    async def get_profile(self, profile_id: str) -> Optional[ProfileRecord]:
        raise NotImplementedError

    async def list_active_subscriptions(self, profile_id: str) -> List[str]:
        raise NotImplementedError

    async def list_recent_feedback(self, profile_id: str, limit: int = 20) -> List[FeedbackEntry]:
        raise NotImplementedError

    async def find_titles_by_name(self, query: str, limit: int = 20) -> List[TitleResult]:
        raise NotImplementedError

    async def find_title_by_name(self, name: str) -> Optional[TitleResult]:
        """Exact (case-insensitive) name match first, then the most popular partial match"""
        matches = await self.find_titles_by_name(name, limit=20)
        if not matches:
            return None
        wanted = name.strip().lower()
        return next((t for t in matches if t.name.lower() == wanted), matches[0])

    async def list_availability(
        self,
        title_ids: List[str],
        region: str,
        services: Optional[List[str]] = None,
    ) -> List[AvailabilityResult]:
        raise NotImplementedError

    async def list_candidate_titles(self, limit: int = 200) -> List[TitleResult]:
        """Popular titles used when there are no search results to rank"""
        raise NotImplementedError

    async def list_external_ratings(self, title_ids: List[str]) -> Dict[str, ExternalRatings]:
        raise NotImplementedError

    async def list_trending(self, title_ids: List[str]) -> Dict[str, TrendingSignal]:
        return {}

    async def ping(self) -> bool:
        return True


def _json_list(value: Any) -> List[str]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, list):
        return [v for v in value if isinstance(v, str)]
    return []


def _parse_preferences(raw: Any) -> UserPreferences:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            raw = {}
    if not isinstance(raw, dict):
        raw = {}
    duration = raw.get("preferredDuration")
    return UserPreferences(
        genres=_json_list(raw.get("genres")),
        moods=_json_list(raw.get("moods")),
        avoid_genres=_json_list(raw.get("avoidGenres")),
        min_rating=raw.get("minRating") if isinstance(raw.get("minRating"), (int, float)) else None,
        preferred_duration=duration if isinstance(duration, dict) else None,
    )


def _title_from_row(row: Dict[str, Any]) -> TitleResult:
    return TitleResult(
        id=str(row["id"]),
        name=row["name"],
        type=row.get("type") or "movie",
        genres=_json_list(row.get("genres")),
        moods=_json_list(row.get("moods")),
        release_year=row.get("release_year"),
        runtime_min=row.get("runtime_min"),
        vote_average=row.get("vote_average"),
        popularity=row.get("popularity"),
        poster_url=row.get("poster_url"),
        backdrop_url=row.get("backdrop_url"),
        tmdb_id=row.get("tmdb_id"),
        imdb_id=row.get("imdb_id"),
    )


_TITLE_COLUMNS = """
    id, name, type, genres, moods, release_year, runtime_min, vote_average,
    popularity, poster_url, backdrop_url, tmdb_id, imdb_id
"""


class MySQLCatalogStore(CatalogStore):
    """
    Catalog reads against MySQL.

    Note: a failed query raises; the calling worker turns that into a failed
    WorkerResult.
    """

    def __init__(self, config: Settings):
        self.config = config
        self._pool: Optional[pooling.MySQLConnectionPool] = None

    def _ensure_connected(self):
        """Ensure the connection pool is initialized"""
        if self._pool is not None:
            return
        try:
            self._pool = pooling.MySQLConnectionPool(
                pool_name="catalog_pool",
                pool_size=self.config.DB_POOL_SIZE,
                **self.config.get_mysql_config()
            )
            logger.info("CatalogStore connected to MySQL")
        except MySQLError as e:
            logger.error(f"Failed to connect to MySQL: {e}")
            raise

    def _fetch_all(self, query: str, params: Iterable[Any] = ()) -> List[Dict[str, Any]]:
        self._ensure_connected()
        conn = self._pool.get_connection()
        try:
            cursor = conn.cursor(dictionary=True)
            try:
                cursor.execute(query, tuple(params))
                return cursor.fetchall()
            finally:
                cursor.close()
        finally:
            conn.close()

    async def _query(self, query: str, params: Iterable[Any] = ()) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._fetch_all, query, list(params))

    @staticmethod
    def _placeholders(values: List[Any]) -> str:
        return ", ".join(["%s"] * len(values))

    async def get_profile(self, profile_id: str) -> Optional[ProfileRecord]:
        rows = await self._query(
            """
            SELECT p.id, p.locale, p.preferences, u.region, u.plan_tier
            FROM profiles p
            LEFT JOIN users u ON u.id = p.user_id
            WHERE p.id = %s
            """,
            (profile_id,),
        )
        if not rows:
            return None
        row = rows[0]
        tier = PlanTier.PREMIUM if (row.get("plan_tier") or "").lower() == "premium" else PlanTier.FREE
        return ProfileRecord(
            id=str(row["id"]),
            tier=tier,
            locale=row.get("locale"),
            region=row.get("region"),
            preferences=_parse_preferences(row.get("preferences")),
        )

    async def list_active_subscriptions(self, profile_id: str) -> List[str]:
        rows = await self._query(
            "SELECT service FROM subscriptions WHERE profile_id = %s AND active = 1",
            (profile_id,),
        )
        return [row["service"] for row in rows]

    async def list_recent_feedback(self, profile_id: str, limit: int = 20) -> List[FeedbackEntry]:
        rows = await self._query(
            """
            SELECT f.title_id, f.action, t.name, t.genres
            FROM feedback f
            LEFT JOIN titles t ON t.id = f.title_id
            WHERE f.profile_id = %s
            ORDER BY f.ts DESC
            LIMIT %s
            """,
            (profile_id, limit),
        )
        return [
            FeedbackEntry(
                title_id=str(row["title_id"]),
                action=(row.get("action") or "").upper(),
                title_name=row.get("name"),
                genres=_json_list(row.get("genres")),
            )
            for row in rows
        ]

    async def find_titles_by_name(self, query: str, limit: int = 20) -> List[TitleResult]:
        if not query:
            return []
        rows = await self._query(
            f"SELECT {_TITLE_COLUMNS} FROM titles WHERE LOWER(name) LIKE %s "
            "ORDER BY popularity DESC, created_at DESC LIMIT %s",
            (f"%{query.lower()}%", limit),
        )
        return [_title_from_row(row) for row in rows]

    async def list_availability(
        self,
        title_ids: List[str],
        region: str,
        services: Optional[List[str]] = None,
    ) -> List[AvailabilityResult]:
        if not title_ids:
            return []
        query = (
            "SELECT title_id, service, region, offer_type, deep_link FROM availability "
            f"WHERE title_id IN ({self._placeholders(title_ids)}) AND region = %s"
        )
        params: List[Any] = list(title_ids) + [region]
        if services:
            query += f" AND service IN ({self._placeholders(services)})"
            params.extend(services)
        rows = await self._query(query, params)
        return [
            AvailabilityResult(
                title_id=str(row["title_id"]),
                service=row["service"],
                region=row["region"],
                offer_type=(row.get("offer_type") or "flatrate").lower(),
                deep_link=row.get("deep_link"),
            )
            for row in rows
        ]

    async def list_candidate_titles(self, limit: int = 200) -> List[TitleResult]:
        rows = await self._query(
            f"SELECT {_TITLE_COLUMNS} FROM titles "
            "WHERE imdb_id IS NOT NULL OR popularity > 0 "
            "ORDER BY popularity DESC, created_at DESC LIMIT %s",
            (limit,),
        )
        return [_title_from_row(row) for row in rows]

    async def list_external_ratings(self, title_ids: List[str]) -> Dict[str, ExternalRatings]:
        if not title_ids:
            return {}
        rows = await self._query(
            "SELECT title_id, source, value_num FROM external_ratings "
            f"WHERE title_id IN ({self._placeholders(title_ids)})",
            title_ids,
        )
        ratings: Dict[str, Dict[str, float]] = {}
        for row in rows:
            field = RATING_SOURCES.get((row.get("source") or "").upper())
            if field and row.get("value_num") is not None:
                ratings.setdefault(str(row["title_id"]), {})[field] = float(row["value_num"])
        return {title_id: ExternalRatings(**values) for title_id, values in ratings.items()}

    async def list_trending(self, title_ids: List[str]) -> Dict[str, TrendingSignal]:
        if not title_ids:
            return {}
        rows = await self._query(
            "SELECT title_id, source, value FROM trending_signals "
            f"WHERE title_id IN ({self._placeholders(title_ids)})",
            title_ids,
        )
        signals: Dict[str, TrendingSignal] = {}
        for row in rows:
            signal = signals.setdefault(str(row["title_id"]), TrendingSignal())
            source = (row.get("source") or "").upper()
            if source == "TMDB_DAY":
                signal.day = float(row["value"])
            elif source == "TMDB_WEEK":
                signal.week = float(row["value"])
        return signals

    async def ping(self) -> bool:
        try:
            await self._query("SELECT 1 AS ok")
            return True
        except MySQLError as e:
            logger.warning(f"MySQL health check failed: {e}")
            return False


class MemoryCatalogStore(CatalogStore):
    """Catalog held in memory; used for local development and tests"""

    def __init__(
        self,
        titles: Optional[List[TitleResult]] = None,
        availability: Optional[List[AvailabilityResult]] = None,
        profiles: Optional[List[ProfileRecord]] = None,
        subscriptions: Optional[Dict[str, List[str]]] = None,
        feedback: Optional[Dict[str, List[FeedbackEntry]]] = None,
        ratings: Optional[Dict[str, ExternalRatings]] = None,
        trending: Optional[Dict[str, TrendingSignal]] = None,
    ):
        self.titles = {t.id: t for t in titles or []}
        self.availability = list(availability or [])
        self.profiles = {p.id: p for p in profiles or []}
        self.subscriptions = dict(subscriptions or {})
        self.feedback = dict(feedback or {})
        self.ratings = dict(ratings or {})
        self.trending = dict(trending or {})

    @classmethod
    def from_json(cls, path: str) -> "MemoryCatalogStore":
        """
        Load a seed file.

        Expected keys: titles, availability, profiles, subscriptions
        ({profileId: [service]}), feedback ({profileId: [entry]}), ratings
        ({titleId: {...}}), trending ({titleId: {...}}).
        """
        with open(path, "r", encoding="utf-8") as f:
            seed = json.load(f)
        store = cls(
            titles=[TitleResult.model_validate(t) for t in seed.get("titles", [])],
            availability=[AvailabilityResult.model_validate(a) for a in seed.get("availability", [])],
            profiles=[ProfileRecord.model_validate(p) for p in seed.get("profiles", [])],
            subscriptions=seed.get("subscriptions", {}),
            feedback={
                pid: [FeedbackEntry.model_validate(e) for e in entries]
                for pid, entries in seed.get("feedback", {}).items()
            },
            ratings={tid: ExternalRatings.model_validate(r) for tid, r in seed.get("ratings", {}).items()},
            trending={tid: TrendingSignal.model_validate(s) for tid, s in seed.get("trending", {}).items()},
        )
        logger.info(f"Loaded catalog seed from {path}: {len(store.titles)} titles")
        return store

    async def get_profile(self, profile_id: str) -> Optional[ProfileRecord]:
        return self.profiles.get(profile_id)

    async def list_active_subscriptions(self, profile_id: str) -> List[str]:
        return list(self.subscriptions.get(profile_id, []))

    async def list_recent_feedback(self, profile_id: str, limit: int = 20) -> List[FeedbackEntry]:
        return list(self.feedback.get(profile_id, []))[:limit]

    async def find_titles_by_name(self, query: str, limit: int = 20) -> List[TitleResult]:
        if not query:
            return []
        needle = query.lower()
        matches = [t for t in self.titles.values() if needle in t.name.lower()]
        matches.sort(key=lambda t: t.popularity or 0, reverse=True)
        return matches[:limit]

    async def list_availability(
        self,
        title_ids: List[str],
        region: str,
        services: Optional[List[str]] = None,
    ) -> List[AvailabilityResult]:
        wanted = set(title_ids)
        return [
            a for a in self.availability
            if a.title_id in wanted and a.region == region and (not services or a.service in services)
        ]

    async def list_candidate_titles(self, limit: int = 200) -> List[TitleResult]:
        candidates = [t for t in self.titles.values() if t.imdb_id or (t.popularity or 0) > 0]
        candidates.sort(key=lambda t: t.popularity or 0, reverse=True)
        return candidates[:limit]

    async def list_external_ratings(self, title_ids: List[str]) -> Dict[str, ExternalRatings]:
        return {tid: self.ratings[tid] for tid in title_ids if tid in self.ratings}

    async def list_trending(self, title_ids: List[str]) -> Dict[str, TrendingSignal]:
        return {tid: self.trending[tid] for tid in title_ids if tid in self.trending}


def create_catalog_store(config: Settings) -> CatalogStore:
    """Build the catalog store selected by CATALOG_BACKEND"""
    if config.CATALOG_BACKEND == "memory":
        if config.CATALOG_SEED_PATH:
            return MemoryCatalogStore.from_json(config.CATALOG_SEED_PATH)
        logger.warning("CATALOG_BACKEND=memory without CATALOG_SEED_PATH, catalog is empty")
        return MemoryCatalogStore()
    return MySQLCatalogStore(config)
