# interfaces/quota_manager.py
"""
Per-tier daily chat quotas and the short-window per-profile rate limit.

Counters live in the shared key-value store under
chat:quota:{tier}:{subject}:{YYYY-MM-DD} (UTC) and expire at the next UTC
midnight, so the counter only ever resets at the day boundary. Increments
are a single atomic INCR.

Rate-limit counters live under chat:ratelimit:{profileId} and expire when
their fixed window closes.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from loguru import logger

from concierge.config import Settings
from concierge.errors import QuotaExceededError, RateLimitExceededError
from concierge.interfaces.kv_store import KeyValueStore
from concierge.schemas import PlanTier, QuotaStatus


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def next_utc_midnight(now: datetime) -> datetime:
    day_start = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return day_start + timedelta(days=1)


class QuotaManager:
    """Checks and consumes daily allowances"""

    KEY_PREFIX = "chat:quota:"
    RATE_PREFIX = "chat:ratelimit:"

    def __init__(self, store: KeyValueStore, config: Settings, clock: Callable[[], datetime] = _utc_now):
        self.store = store
        self.config = config
        self.clock = clock

    def _key(self, subject: str, tier: PlanTier, now: datetime) -> str:
        return f"{self.KEY_PREFIX}{tier.value}:{subject}:{now.strftime('%Y-%m-%d')}"

    def _status(self, used: int, tier: PlanTier, now: datetime) -> QuotaStatus:
        limit = self.config.daily_limit(tier.value)
        unlimited = limit <= 0
        return QuotaStatus(
            used=used,
            limit=limit,
            remaining=-1 if unlimited else max(limit - used, 0),
            tier=tier,
            resets_at=next_utc_midnight(now).isoformat().replace("+00:00", "Z"),
            allowed=unlimited or used < limit,
        )

    async def check_quota(self, subject: str, tier: PlanTier = PlanTier.FREE) -> QuotaStatus:
        """Current usage without consuming anything"""
        now = self.clock()
        raw = await self.store.get(self._key(subject, tier, now))
        return self._status(int(raw or 0), tier, now)

    async def increment_quota(self, subject: str, tier: PlanTier = PlanTier.FREE) -> QuotaStatus:
        """
        Consume one request.

        Raises:
            QuotaExceededError: the allowance was already used up today
        """
        now = self.clock()
        limit = self.config.daily_limit(tier.value)
        ttl = max(int((next_utc_midnight(now) - now).total_seconds()), 1)

        used = await self.store.incr(self._key(subject, tier, now), ttl_seconds=ttl)
        status = self._status(used, tier, now)

        if limit > 0 and used > limit:
            logger.info(f"Daily quota exceeded for {tier.value}:{subject} ({limit}/day)")
            raise QuotaExceededError(resets_at=status.resets_at, limit=limit, tier=tier.value)

        # The request that just consumed a slot is allowed even when it was the last one
        return status.model_copy(update={"allowed": True})

    async def consume_rate_limit(self, profile_id: str, tier: PlanTier = PlanTier.FREE) -> int:
        """
        Count one request against the profile's fixed window.

        Returns:
            Requests left in the current window, -1 when unlimited or unknown

        Raises:
            RateLimitExceededError: the window's allowance is already used up
        """
        limit = self.config.rate_limit(tier.value)
        if limit <= 0:
            return -1

        key = f"{self.RATE_PREFIX}{profile_id}"
        try:
            used = await self.store.incr(key, ttl_seconds=max(self.config.CHAT_RATE_LIMIT_WINDOW_SECONDS, 1))
        except Exception as e:
            logger.warning(f"Rate limit check failed for {profile_id}, allowing request: {e}")
            return -1

        if used > limit:
            logger.info(f"Rate limit exceeded for {profile_id} ({limit}/{self.config.CHAT_RATE_LIMIT_WINDOW_SECONDS}s)")
            raise RateLimitExceededError(limit=limit)
        return limit - used


def quota_subject(profile_id: Optional[str], client_host: Optional[str]) -> str:
    """Profiles are metered by id, anonymous callers by address"""
    if profile_id:
        return f"profile:{profile_id}"
    return f"anon:{client_host or 'unknown'}"
