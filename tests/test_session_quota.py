"""Tests for conversation sessions, turn locks and daily quotas."""

from datetime import datetime, timedelta, timezone

import pytest

from concierge.errors import QuotaExceededError, RateLimitExceededError, SessionBusyError
from concierge.interfaces.kv_store import MemoryKeyValueStore
from concierge.interfaces.quota_manager import QuotaManager, next_utc_midnight, quota_subject
from concierge.interfaces.session_store import SessionStore
from concierge.schemas import Intent, PlanTier, Role, UserPreferences


class FakeNow:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def sessions(kv, config):
    return SessionStore(kv, config)


@pytest.fixture
def now():
    return FakeNow(datetime(2025, 5, 31, 15, 30, tzinfo=timezone.utc))


@pytest.fixture
def quotas(kv, config, now):
    return QuotaManager(kv, config, clock=now)


class TestSessionStore:
    async def test_create_and_load(self, sessions):
        context = await sessions.create_session(profile_id="p-premium")
        loaded = await sessions.load_session(context.conversation_id)

        assert context.conversation_id.startswith("chat_")
        assert loaded.conversation_id == context.conversation_id
        assert loaded.profile_id == "p-premium"
        assert loaded.region == "US"
        assert loaded.turn_number == 0

    async def test_get_or_create_continues(self, sessions):
        first = await sessions.get_or_create(None)
        again = await sessions.get_or_create(first.session_id)
        assert first.is_new is True
        assert again.is_new is False
        assert again.session_id == first.session_id
        assert again.context.conversation_id == first.session_id

    async def test_unknown_id_starts_new_session(self, sessions):
        session = await sessions.get_or_create("chat_missing")
        assert session.is_new
        assert session.session_id != "chat_missing"

    async def test_idle_session_expires(self, sessions, clock):
        context = await sessions.create_session()
        clock.advance(1801)

        assert await sessions.load_session(context.conversation_id) is None
        replacement = await sessions.get_or_create(context.conversation_id)
        assert replacement.is_new
        assert replacement.session_id != context.conversation_id

    async def test_activity_refreshes_ttl(self, sessions, clock):
        context = await sessions.create_session()
        clock.advance(1500)
        await sessions.append_turn(context, "hi", "hello")
        clock.advance(1500)
        assert await sessions.load_session(context.conversation_id) is not None

    async def test_append_turn_records_both_roles(self, sessions):
        context = await sessions.create_session()
        await sessions.append_turn(context, "find sci-fi", "Found 2 results", intent=Intent.SEARCH,
                                   recommendation_ids=["1", "2"])

        loaded = await sessions.load_session(context.conversation_id)
        assert loaded.turn_number == 1
        assert [t.role for t in loaded.history] == [Role.USER, Role.ASSISTANT]
        assert loaded.history[1].recommendations == ["1", "2"]
        assert loaded.history[0].intent == Intent.SEARCH

    async def test_history_is_trimmed(self, sessions):
        context = await sessions.create_session()
        for i in range(11):
            context = await sessions.append_turn(context, f"message {i}", f"answer {i}")

        loaded = await sessions.load_session(context.conversation_id)
        assert loaded.turn_number == 11
        assert len(loaded.history) == 20
        assert loaded.history[-1].text == "answer 10"
        assert loaded.history[0].turn_number == 2

    async def test_update_preferences(self, sessions):
        context = await sessions.create_session()
        context.preferences = UserPreferences(genres=["Horror"])
        await sessions.append_turn(context, "hi", "hello")

        updated = await sessions.update_preferences(
            context.conversation_id, UserPreferences(avoid_genres=["Horror"], genres=["Comedy"]),
        )
        assert updated.preferences.genres == ["Comedy"]
        assert updated.preferences.avoid_genres == ["Horror"]
        assert await sessions.update_preferences("chat_missing", UserPreferences()) is None

    async def test_turn_cap(self, kv, config):
        config.CHAT_MAX_TURNS = 2
        sessions = SessionStore(kv, config)
        context = await sessions.create_session()

        await sessions.append_turn(context, "one", "first answer")
        assert not sessions.is_exhausted(context)
        await sessions.append_turn(context, "two", "second answer")
        assert sessions.is_exhausted(context)

    async def test_turn_cap_disabled(self, kv, config):
        config.CHAT_MAX_TURNS = 0
        sessions = SessionStore(kv, config)
        context = await sessions.create_session()
        context.turn_number = 500
        assert not sessions.is_exhausted(context)

    async def test_end_session_is_idempotent(self, sessions):
        context = await sessions.create_session()
        assert await sessions.end_session(context.conversation_id) is True
        assert await sessions.end_session(context.conversation_id) is True
        assert await sessions.end_session("never-existed") is True
        assert await sessions.load_session(context.conversation_id) is None


class TestTurnLock:
    async def test_concurrent_turn_is_rejected(self, sessions):
        async with sessions.turn_lock("chat_a"):
            with pytest.raises(SessionBusyError):
                async with sessions.turn_lock("chat_a"):
                    pass
            # other sessions are independent
            async with sessions.turn_lock("chat_b"):
                pass

    async def test_lock_released_after_turn(self, sessions):
        async with sessions.turn_lock("chat_a"):
            pass
        async with sessions.turn_lock("chat_a"):
            pass

    async def test_lock_released_on_error(self, sessions):
        with pytest.raises(ValueError):
            async with sessions.turn_lock("chat_a"):
                raise ValueError("worker blew up")
        async with sessions.turn_lock("chat_a"):
            pass

    async def test_stale_lock_expires(self, sessions, kv, clock):
        await kv.set_if_absent("chat:lock:chat_a", "crashed-process", ttl_seconds=30)
        with pytest.raises(SessionBusyError):
            async with sessions.turn_lock("chat_a"):
                pass
        clock.advance(31)
        async with sessions.turn_lock("chat_a"):
            pass

    async def test_new_conversations_are_not_locked(self, sessions):
        async with sessions.turn_lock(None):
            async with sessions.turn_lock(None):
                pass


class TestQuotaManager:
    async def test_free_tier_limit(self, quotas):
        for i in range(10):
            status = await quotas.increment_quota("anon:1.2.3.4")
            assert status.allowed
        assert status.used == 10
        assert status.remaining == 0

        with pytest.raises(QuotaExceededError) as exc:
            await quotas.increment_quota("anon:1.2.3.4")
        assert exc.value.resets_at == "2025-06-01T00:00:00Z"
        assert exc.value.limit == 10
        assert exc.value.status_code == 429
        assert exc.value.to_dict()["code"] == "DAILY_LIMIT_EXCEEDED"

    async def test_resets_at_utc_midnight(self, quotas, now):
        for _ in range(10):
            await quotas.increment_quota("profile:p1")

        now.now = datetime(2025, 5, 31, 23, 59, 59, tzinfo=timezone.utc)
        with pytest.raises(QuotaExceededError):
            await quotas.increment_quota("profile:p1")

        now.now = datetime(2025, 6, 1, 0, 0, 1, tzinfo=timezone.utc)
        status = await quotas.increment_quota("profile:p1")
        assert status.used == 1
        assert status.resets_at == "2025-06-02T00:00:00Z"

    async def test_subjects_and_tiers_are_separate(self, quotas):
        for _ in range(10):
            await quotas.increment_quota("anon:a")
        status = await quotas.increment_quota("anon:b")
        premium = await quotas.increment_quota("anon:a", PlanTier.PREMIUM)
        assert status.used == 1
        assert premium.used == 1
        assert premium.limit == 1000

    async def test_non_positive_limit_is_unlimited(self, quotas, config):
        config.LLM_DAILY_LIMIT_PREMIUM = 0
        for _ in range(50):
            status = await quotas.increment_quota("profile:p-premium", PlanTier.PREMIUM)
        assert status.allowed
        assert status.remaining == -1
        assert status.limit == 0

    async def test_check_consumes_nothing(self, quotas):
        await quotas.increment_quota("anon:x")
        first = await quotas.check_quota("anon:x")
        second = await quotas.check_quota("anon:x")
        assert first.used == second.used == 1
        assert first.remaining == 9
        assert first.tier == PlanTier.FREE

    async def test_check_after_exhaustion(self, quotas):
        for _ in range(10):
            await quotas.increment_quota("anon:x")
        status = await quotas.check_quota("anon:x")
        assert status.allowed is False
        assert status.remaining == 0


class TestQuotaHelpers:
    def test_next_utc_midnight(self):
        local = datetime(2025, 5, 31, 22, 0, tzinfo=timezone(timedelta(hours=-5)))
        assert next_utc_midnight(local) == datetime(2025, 6, 2, tzinfo=timezone.utc)

    def test_quota_subject(self):
        assert quota_subject("p1", "10.0.0.1") == "profile:p1"
        assert quota_subject(None, "10.0.0.1") == "anon:10.0.0.1"
        assert quota_subject(None, None) == "anon:unknown"


class FailingIncrStore(MemoryKeyValueStore):
    async def incr(self, key, ttl_seconds=None):
        raise ConnectionError("redis down")


class TestRateLimit:
    async def test_free_window(self, quotas):
        remaining = [await quotas.consume_rate_limit("p1") for _ in range(5)]
        assert remaining == [4, 3, 2, 1, 0]

        with pytest.raises(RateLimitExceededError) as exc:
            await quotas.consume_rate_limit("p1")
        assert exc.value.status_code == 429
        assert exc.value.to_dict() == {
            "error": "Rate limit exceeded. Please try again later.",
            "code": "RATE_LIMIT_EXCEEDED",
            "limit": 5,
            "remaining": 0,
        }

    async def test_window_expires(self, quotas, clock):
        for _ in range(5):
            await quotas.consume_rate_limit("p1")
        clock.advance(61)
        assert await quotas.consume_rate_limit("p1") == 4

    async def test_profiles_are_separate(self, quotas):
        for _ in range(5):
            await quotas.consume_rate_limit("p1")
        assert await quotas.consume_rate_limit("p2") == 4

    async def test_premium_allowance(self, quotas):
        for _ in range(30):
            await quotas.consume_rate_limit("p-premium", PlanTier.PREMIUM)
        with pytest.raises(RateLimitExceededError) as exc:
            await quotas.consume_rate_limit("p-premium", PlanTier.PREMIUM)
        assert exc.value.limit == 30

    async def test_non_positive_limit_is_unlimited(self, quotas, config, kv):
        config.CHAT_RATE_LIMIT_FREE = 0
        for _ in range(20):
            assert await quotas.consume_rate_limit("p1") == -1
        assert kv._data == {}

    async def test_store_failure_allows(self, config, now):
        quotas = QuotaManager(FailingIncrStore(), config, clock=now)
        assert await quotas.consume_rate_limit("p1") == -1
