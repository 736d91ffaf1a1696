# interfaces/session_store.py
"""
Conversation Session Management
Keeps multi-turn context so a follow-up message continues the same conversation

Contexts are stored as JSON under chat:session:{id} with an idle TTL that is
refreshed on every write. A session that has idled out is simply gone: the
next message transparently starts a new one.
"""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from loguru import logger

from concierge.config import Settings
from concierge.errors import SessionBusyError
from concierge.interfaces.kv_store import KeyValueStore
from concierge.schemas import (
    ChatSession,
    ConversationContext,
    ConversationTurn,
    Intent,
    Role,
    UserPreferences,
    utc_now,
)


class SessionStore:
    """
    Owns ConversationContext persistence.
    Workers never see this object; they get a WorkerSnapshot.
    """

    KEY_PREFIX = "chat:session:"
    LOCK_PREFIX = "chat:lock:"

    def __init__(self, store: KeyValueStore, config: Settings):
        self.store = store
        self.ttl_seconds = config.CHAT_SESSION_TTL_SECONDS
        self.max_history = config.CHAT_MAX_HISTORY
        self.max_turns = config.CHAT_MAX_TURNS
        self.lock_seconds = config.CHAT_TURN_LOCK_SECONDS
        self.default_region = config.DEFAULT_REGION

    def _get_key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}{session_id}"

    @staticmethod
    def new_session_id() -> str:
        return f"chat_{uuid.uuid4().hex}"

    async def _save(self, context: ConversationContext) -> None:
        context.last_active_at = utc_now()
        await self.store.set(
            self._get_key(context.conversation_id),
            context.model_dump_json(by_alias=True),
            ttl_seconds=self.ttl_seconds,
        )

    async def create_session(
        self,
        profile_id: Optional[str] = None,
        region: Optional[str] = None,
        subscriptions: Optional[List[str]] = None,
    ) -> ConversationContext:
        """Create and persist an empty conversation"""
        context = ConversationContext(
            conversation_id=self.new_session_id(),
            profile_id=profile_id,
            region=region or self.default_region,
            subscriptions=subscriptions or [],
        )
        await self._save(context)
        logger.info(f"Created new session: {context.conversation_id}")
        return context

    async def load_session(self, session_id: str) -> Optional[ConversationContext]:
        """Load a session; None when unknown or idled out"""
        if not session_id:
            return None
        raw = await self.store.get(self._get_key(session_id))
        if not raw:
            return None
        return ConversationContext.model_validate_json(raw)

    async def get_or_create(
        self,
        session_id: Optional[str] = None,
        profile_id: Optional[str] = None,
    ) -> ChatSession:
        """
        Continue an existing conversation or start a new one.

        Returns:
            ChatSession with is_new set when a fresh conversation was started
        """
        if session_id:
            context = await self.load_session(session_id)
            if context is not None:
                if profile_id and not context.profile_id:
                    context.profile_id = profile_id
                return ChatSession(session_id=context.conversation_id, context=context)
            logger.info(f"Session {session_id} not found or expired, starting a new one")
        context = await self.create_session(profile_id=profile_id)
        return ChatSession(session_id=context.conversation_id, context=context, is_new=True)

    def is_exhausted(self, context: ConversationContext) -> bool:
        """True once a conversation has used its turn cap (<= 0 means no cap)"""
        return 0 < self.max_turns <= context.turn_number

    async def append_turn(
        self,
        context: ConversationContext,
        user_text: str,
        assistant_text: str,
        intent: Optional[Intent] = None,
        recommendation_ids: Optional[List[str]] = None,
    ) -> ConversationContext:
        """
        Record a completed turn (user + assistant messages) and persist.

        turn_number only ever moves forward; history keeps the newest
        max_history entries.
        """
        turn_number = context.turn_number + 1
        context.history.append(ConversationTurn(
            turn_number=turn_number, role=Role.USER, text=user_text, intent=intent,
        ))
        context.history.append(ConversationTurn(
            turn_number=turn_number, role=Role.ASSISTANT, text=assistant_text, intent=intent,
            recommendations=recommendation_ids or [],
        ))
        if len(context.history) > self.max_history:
            context.history = context.history[-self.max_history:]
        context.turn_number = turn_number

        await self._save(context)
        logger.info(f"Updated session {context.conversation_id}, turn {turn_number}")
        return context

    def merge_preferences(self, context: ConversationContext, stated: UserPreferences) -> ConversationContext:
        """Fold preferences stated in conversation into the context"""
        context.preferences = context.preferences.merged(stated)
        return context

    async def update_preferences(self, session_id: str, stated: UserPreferences) -> Optional[ConversationContext]:
        """Merge stated preferences into a stored session; None when it is gone"""
        context = await self.load_session(session_id)
        if context is None:
            return None
        self.merge_preferences(context, stated)
        await self._save(context)
        return context

    async def end_session(self, session_id: str) -> bool:
        """Delete a session. Idempotent: unknown ids succeed too."""
        deleted = await self.store.delete(self._get_key(session_id))
        logger.info(f"Ended session {session_id} (existed={bool(deleted)})")
        return True

    @asynccontextmanager
    async def turn_lock(self, session_id: Optional[str]) -> AsyncIterator[None]:
        """
        Serialise turns for one session across processes.

        A second message arriving while a turn is in flight is rejected with
        SessionBusyError rather than interleaved.
        """
        if not session_id:
            yield
            return

        key = f"{self.LOCK_PREFIX}{session_id}"
        token = uuid.uuid4().hex
        acquired = await self.store.set_if_absent(key, token, ttl_seconds=self.lock_seconds)
        if not acquired:
            logger.warning(f"Session {session_id} busy, rejecting concurrent turn")
            raise SessionBusyError()
        try:
            yield
        finally:
            if await self.store.get(key) == token:
                await self.store.delete(key)
