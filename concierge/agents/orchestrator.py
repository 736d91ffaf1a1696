# agents/orchestrator.py
"""
Concierge Orchestrator

Drives one conversational turn:

    VALIDATING -> CLASSIFYING -> CONTEXT_LOADED -> WORKERS_RUNNING
      -> AGGREGATING -> SANITIZING -> PERSISTED -> RESPONDED

1. Feature gate and input safety (rejected before any session access)
2. Rule-based intent classification and entity extraction
3. Per-session turn lock, per-profile rate limit, session turn cap, quota
   consumption, context load-or-create
4. Preferences worker alongside the intent's primary worker, then
   Recommendations with both results
5. Reasoning, alternatives and follow-up questions
6. Output safety and reason sanitisation
7. History append and persistence, telemetry (a stream persists only after
   its last recommendation event was taken by the client)

Worker failures degrade the answer; they never fail the turn. Unexpected
errors after validation return an INTERNAL_ERROR envelope.
"""

import asyncio
import dataclasses
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from loguru import logger

from concierge.agents.telemetry import TelemetryAggregator
from concierge.agents.workers import (
    WorkerDeps,
    WorkerInput,
    execute_availability,
    execute_preferences,
    execute_recommendations,
    execute_search,
    stated_preferences,
)
from concierge.config import Settings
from concierge.errors import (
    ConciergeDisabledError,
    ConciergeError,
    ErrorCode,
    InputRejectedError,
    InvalidRequestError,
    MessageTooLongError,
    SessionExhaustedError,
)
from concierge.interfaces.quota_manager import QuotaManager, quota_subject
from concierge.interfaces.session_store import SessionStore
from concierge.llm.reasoning import ReasoningGenerator
from concierge.nlu import classify_intent
from concierge.safety.filters import (
    check_input_safety,
    check_output_safety,
    redact_prompt,
    sanitize_reason,
)
from concierge.schemas import (
    ChatResponse,
    ConversationContext,
    Intent,
    IntentClassification,
    PlanTier,
    QuotaStatus,
    RecommendationResult,
    StreamEvent,
    StreamEventType,
    TitleResult,
    TurnState,
    WorkerResult,
    WorkerSnapshot,
    WorkerType,
)


# ============================================
# Dispatch
# ============================================

PRIMARY_WORKER: Dict[Intent, Optional[WorkerType]] = {
    Intent.SEARCH: WorkerType.SEARCH,
    Intent.AVAILABILITY: WorkerType.AVAILABILITY,
    Intent.RECOMMENDATIONS: None,
    Intent.PREFERENCES: None,
    Intent.SOCIAL: None,
}

WORKER_HANDLERS: Dict[WorkerType, Callable[[WorkerInput, WorkerDeps], Awaitable[WorkerResult]]] = {
    WorkerType.SEARCH: execute_search,
    WorkerType.AVAILABILITY: execute_availability,
    WorkerType.PREFERENCES: execute_preferences,
    WorkerType.RECOMMENDATIONS: execute_recommendations,
}

MAX_ALTERNATIVES = 4
MIN_FOLLOW_UPS = 2
MAX_FOLLOW_UPS = 4

INTERNAL_ERROR_REASONING = "Sorry, something went wrong on my side. Please try again in a moment."

COLD_START_QUESTIONS = [
    "What genres do you enjoy most?",
    "Which streaming services do you subscribe to?",
]

FOLLOW_UP_QUESTIONS: Dict[Intent, List[str]] = {
    Intent.SEARCH: [
        "Would you like me to filter by a specific streaming service?",
        "Any preference for movies or TV shows?",
    ],
    Intent.AVAILABILITY: [
        "Would you like recommendations for similar titles?",
    ],
    Intent.RECOMMENDATIONS: [
        "Want more recommendations like these?",
        "Should I narrow down by a specific mood or genre?",
    ],
    Intent.PREFERENCES: [
        "Now that I know your preferences, would you like some recommendations?",
    ],
}

GENERIC_QUESTIONS = [
    "What kind of movies or shows are you in the mood for?",
    "Do you prefer something new or a classic?",
    "How much time do you have to watch tonight?",
]


class TurnCancelled(Exception):
    """The caller cancelled the turn before it was persisted"""


class TurnStateMachine:
    """Tracks a turn's state; transitions only move forward"""

    ORDER = list(TurnState)

    def __init__(self, label: str):
        self.label = label
        self.state = TurnState.VALIDATING
        self.history: List[TurnState] = [self.state]

    def advance(self, state: TurnState) -> None:
        if self.ORDER.index(state) <= self.ORDER.index(self.state):
            raise RuntimeError(f"Illegal turn transition {self.state.value} -> {state.value}")
        logger.debug(f"[{self.label}] {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)


@dataclass
class TurnResult:
    """Everything a transport needs to answer one turn"""
    session_id: str
    reasoning: str
    recommendations: List[RecommendationResult] = field(default_factory=list)
    alternatives: List[TitleResult] = field(default_factory=list)
    follow_up_questions: List[str] = field(default_factory=list)
    intent: Optional[Intent] = None
    turn_number: int = 0
    fallback_used: bool = True
    quota: Optional[QuotaStatus] = None
    code: Optional[str] = None
    worker_results: List[WorkerResult] = field(default_factory=list)

    def to_response(self) -> ChatResponse:
        return ChatResponse(
            session_id=self.session_id,
            reasoning=self.reasoning,
            recommendations=self.recommendations,
            alternatives=self.alternatives,
            follow_up_questions=self.follow_up_questions,
            intent=self.intent,
            turn_number=self.turn_number,
            fallback_used=self.fallback_used,
            quota=self.quota,
            code=self.code,
        )


# ============================================
# Aggregation helpers
# ============================================

def _result(results: List[WorkerResult], worker: WorkerType) -> Optional[WorkerResult]:
    for result in results:
        if result.worker == worker:
            return result
    return None


def _items(result: Optional[WorkerResult]) -> List[Dict[str, Any]]:
    if result is None or not result.success or not result.data:
        return []
    return list(result.data.get("items", []))


def build_reasoning(
    classification: IntentClassification,
    results: List[WorkerResult],
    recommendations: List[RecommendationResult],
) -> str:
    """Rule-template reasoning for the turn"""
    intent = classification.intent
    entities = classification.entities

    if intent == Intent.SEARCH:
        total = len(_items(_result(results, WorkerType.SEARCH)))
        text = f"Found {total} results matching your search." if total else "No results found for your search."
    elif intent == Intent.AVAILABILITY:
        availability = _result(results, WorkerType.AVAILABILITY)
        offers = _items(availability)
        if offers:
            services = list(dict.fromkeys(o.get("service") for o in offers if o.get("service")))
            region = availability.data.get("region", "")
            text = f"Available on {', '.join(services)} in {region}."
        else:
            text = "Could not find availability information."
    elif intent == Intent.RECOMMENDATIONS:
        if recommendations:
            text = f"Here are {len(recommendations)} personalized recommendations based on your preferences."
        else:
            text = ("I couldn't generate recommendations right now. "
                    "Try telling me what genres or moods you enjoy.")
    elif intent == Intent.PREFERENCES:
        text = "I've noted your preferences."
    else:
        text = "Social features are coming soon! In the meantime, here are some recommendations."

    if entities.genres:
        text += f" Filtered by genres: {', '.join(entities.genres)}."
    if entities.moods:
        text += f" Focusing on: {', '.join(entities.moods)}."
    return text


def build_follow_ups(intent: Intent, cold_start: bool) -> List[str]:
    """Two to four follow-up questions"""
    questions: List[str] = []
    if cold_start:
        questions.extend(COLD_START_QUESTIONS)
    questions.extend(FOLLOW_UP_QUESTIONS.get(intent, []))
    questions = list(dict.fromkeys(questions))
    for generic in GENERIC_QUESTIONS:
        if len(questions) >= MIN_FOLLOW_UPS:
            break
        if generic not in questions:
            questions.append(generic)
    return questions[:MAX_FOLLOW_UPS]


def build_alternatives(results: List[WorkerResult], recommendations: List[RecommendationResult]) -> List[TitleResult]:
    """Search hits that did not make the recommendation list"""
    chosen = {r.title.id for r in recommendations}
    alternatives = []
    for item in _items(_result(results, WorkerType.SEARCH)):
        title = TitleResult.model_validate(item)
        if title.id in chosen:
            continue
        alternatives.append(title)
        if len(alternatives) >= MAX_ALTERNATIVES:
            break
    return alternatives


# ============================================
# Orchestrator
# ============================================

class ConciergeOrchestrator:
    """
    Coordinates classification, workers, persistence and telemetry.

    Example:
        orchestrator = ConciergeOrchestrator(settings, sessions, quotas, deps, telemetry)
        result = await orchestrator.handle_turn("funny sci-fi on Netflix")
    """

    def __init__(
        self,
        config: Settings,
        sessions: SessionStore,
        quotas: QuotaManager,
        deps: WorkerDeps,
        telemetry: TelemetryAggregator,
        reasoning: Optional[ReasoningGenerator] = None,
    ):
        self.config = config
        self.sessions = sessions
        self.quotas = quotas
        self.deps = deps
        self.telemetry = telemetry
        self.reasoning = reasoning or ReasoningGenerator(config)

    # ---------- validation ----------

    def validate_message(self, message: Optional[str]) -> str:
        """Gate, length and input safety checks. Raises ConciergeError."""
        if not self.config.AI_CONCIERGE_ENABLED:
            raise ConciergeDisabledError()
        if message is None or not message.strip():
            raise InvalidRequestError()
        if len(message) > self.config.CHAT_MAX_MESSAGE_LENGTH:
            raise MessageTooLongError(
                f"Message exceeds {self.config.CHAT_MAX_MESSAGE_LENGTH} characters"
            )
        safety = check_input_safety(message, self.config)
        if not safety.safe:
            raise InputRejectedError(safety.reason, category=safety.category)
        return message.strip()

    async def resolve_tier(self, profile_id: Optional[str]) -> PlanTier:
        if not profile_id:
            return PlanTier.FREE
        try:
            profile = await self.deps.catalog.get_profile(profile_id)
        except Exception as e:
            logger.warning(f"Could not resolve plan tier for profile {profile_id}: {e}")
            return PlanTier.FREE
        return profile.tier if profile is not None else PlanTier.FREE

    # ---------- workers ----------

    async def run_workers(self, worker_input: WorkerInput) -> List[WorkerResult]:
        """Preferences + primary worker concurrently, then Recommendations"""
        primary = PRIMARY_WORKER[worker_input.intent.intent]
        jobs = [WORKER_HANDLERS[WorkerType.PREFERENCES](worker_input, self.deps)]
        if primary is not None:
            jobs.append(WORKER_HANDLERS[primary](worker_input, self.deps))
        first = list(await asyncio.gather(*jobs))

        ranked_input = dataclasses.replace(worker_input, previous_results=tuple(first))
        recommendations = await WORKER_HANDLERS[WorkerType.RECOMMENDATIONS](ranked_input, self.deps)

        for result in first + [recommendations]:
            if not result.success:
                logger.warning(f"{result.worker.value} worker degraded: {result.error}")
        return first + [recommendations]

    # ---------- turn ----------

    async def handle_turn(
        self,
        message: Optional[str],
        session_id: Optional[str] = None,
        profile_id: Optional[str] = None,
        client_host: Optional[str] = None,
        cancel: Optional[asyncio.Event] = None,
        publish: Optional[Callable[[TurnResult], Awaitable[None]]] = None,
    ) -> TurnResult:
        """
        Process one user message.

        `publish` receives the sanitised result while the turn lock is still
        held and before anything is persisted; a cancellation observed after it
        returns discards the turn.

        Raises:
            ConciergeError: validation, quota or busy-session rejections
            TurnCancelled: the cancellation token fired before persistence

        Returns:
            TurnResult (code=INTERNAL_ERROR on unexpected failure)
        """
        start = time.perf_counter()
        machine = TurnStateMachine(session_id or "new")

        try:
            text = self.validate_message(message)
        except ConciergeError as e:
            logger.info(f"Turn rejected: {e.code}")
            self.telemetry.record_chat_error(e.code)
            raise

        prompt = redact_prompt(text, self.config)
        logger.info(f"Turn received hash={prompt.hash} length={prompt.length} preview={prompt.redacted!r}")

        try:
            return await self._process(
                text, session_id, profile_id, client_host, cancel, publish, machine, start,
            )
        except (ConciergeError, TurnCancelled) as e:
            if isinstance(e, ConciergeError):
                self.telemetry.record_chat_error(e.code, self._elapsed(start))
            raise
        except Exception as e:
            logger.error(f"Turn failed in state {machine.state.value}: {e}")
            self.telemetry.record_chat_error(ErrorCode.INTERNAL_ERROR, self._elapsed(start))
            return TurnResult(
                session_id=session_id or "",
                reasoning=INTERNAL_ERROR_REASONING,
                follow_up_questions=list(GENERIC_QUESTIONS[:MIN_FOLLOW_UPS]),
                code=ErrorCode.INTERNAL_ERROR,
            )

    async def _process(
        self,
        text: str,
        session_id: Optional[str],
        profile_id: Optional[str],
        client_host: Optional[str],
        cancel: Optional[asyncio.Event],
        publish: Optional[Callable[[TurnResult], Awaitable[None]]],
        machine: TurnStateMachine,
        start: float,
    ) -> TurnResult:
        machine.advance(TurnState.CLASSIFYING)
        classification = classify_intent(text)
        logger.info(
            f"Intent {classification.intent.value} ({classification.confidence}) "
            f"entities={classification.entities.to_dict()}"
        )

        tier = await self.resolve_tier(profile_id)
        subject = quota_subject(profile_id, client_host)

        async with self.sessions.turn_lock(session_id):
            if profile_id:
                await self.quotas.consume_rate_limit(profile_id, tier)
            if session_id:
                existing = await self.sessions.load_session(session_id)
                if existing is not None and self.sessions.is_exhausted(existing):
                    logger.info(f"Session {session_id} reached {existing.turn_number} turns")
                    raise SessionExhaustedError(session_id)
            quota = await self.quotas.increment_quota(subject, tier)
            session = await self.sessions.get_or_create(session_id, profile_id)
            session.quota = quota
            context = session.context
            machine.label = session.session_id
            machine.advance(TurnState.CONTEXT_LOADED)

            if classification.intent == Intent.PREFERENCES:
                self.sessions.merge_preferences(context, stated_preferences(classification))

            worker_input = WorkerInput(
                intent=classification,
                context=WorkerSnapshot.from_context(context),
                cancel=cancel,
            )
            machine.advance(TurnState.WORKERS_RUNNING)
            results = await self.run_workers(worker_input)

            machine.advance(TurnState.AGGREGATING)
            result = await self._aggregate(text, classification, context, results, session.quota)

            machine.advance(TurnState.SANITIZING)
            result = self._sanitize(result)

            if publish is not None:
                await publish(result)

            if cancel is not None and cancel.is_set():
                logger.info(f"Turn cancelled for {context.conversation_id}, not persisting")
                raise TurnCancelled()

            await self.sessions.append_turn(
                context,
                user_text=text,
                assistant_text=result.reasoning,
                intent=classification.intent,
                recommendation_ids=[r.title.id for r in result.recommendations],
            )
            result.turn_number = context.turn_number
            machine.advance(TurnState.PERSISTED)

        self.telemetry.record_chat_event(
            classification.intent.value,
            self._elapsed(start),
            fallback_used=result.fallback_used,
            recommendation_count=len(result.recommendations),
        )
        machine.advance(TurnState.RESPONDED)
        return result

    async def _aggregate(
        self,
        text: str,
        classification: IntentClassification,
        context: ConversationContext,
        results: List[WorkerResult],
        quota: QuotaStatus,
    ) -> TurnResult:
        recommendations = [
            RecommendationResult.model_validate(item)
            for item in _items(_result(results, WorkerType.RECOMMENDATIONS))
        ]
        prefs = _result(results, WorkerType.PREFERENCES)
        if prefs is not None and prefs.success and prefs.data:
            cold_start = bool(prefs.data.get("coldStart", True))
        else:
            cold_start = not context.subscriptions

        draft = build_reasoning(classification, results, recommendations)
        reasoning, used_llm = await self.reasoning.phrase(text, classification.intent, draft, recommendations)

        return TurnResult(
            session_id=context.conversation_id,
            reasoning=reasoning,
            recommendations=recommendations,
            alternatives=build_alternatives(results, recommendations),
            follow_up_questions=build_follow_ups(classification.intent, cold_start),
            intent=classification.intent,
            turn_number=context.turn_number,
            fallback_used=not used_llm,
            quota=quota,
            worker_results=results,
        )

    def _sanitize(self, result: TurnResult) -> TurnResult:
        check = check_output_safety(result.reasoning, self.config)
        if not check.safe:
            logger.warning(f"Output safety replaced reasoning ({check.category})")
            result.reasoning = check.filtered or result.reasoning
        result.recommendations = [
            r.model_copy(update={"reason": sanitize_reason(r.reason)}) for r in result.recommendations
        ]
        return result

    @staticmethod
    def _elapsed(start: float) -> float:
        return (time.perf_counter() - start) * 1000

    # ---------- streaming ----------

    async def stream_turn(
        self,
        message: Optional[str],
        session_id: Optional[str] = None,
        profile_id: Optional[str] = None,
        client_host: Optional[str] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Incremental form of handle_turn.

        Yields a `message` event, one `recommendation` event per pick, then a
        single `done` event; rejections and internal errors yield one `error`
        event instead. Recommendations pass through a bounded channel while the
        turn is still open, and the turn is persisted only once the client has
        taken the last one. Setting `cancel` or closing the generator before
        that point stops the turn and nothing is persisted.
        """
        cancel = cancel or asyncio.Event()
        channel: asyncio.Queue = asyncio.Queue(maxsize=1)

        async def publish(result: TurnResult) -> None:
            for recommendation in result.recommendations:
                await channel.put(recommendation)
            await channel.join()

        yield StreamEvent(type=StreamEventType.MESSAGE, data={"status": "processing"})

        task = asyncio.ensure_future(
            self.handle_turn(message, session_id, profile_id, client_host, cancel, publish=publish)
        )
        stop = asyncio.ensure_future(cancel.wait())
        try:
            while True:
                receive = asyncio.ensure_future(channel.get())
                done, _ = await asyncio.wait({task, stop, receive}, return_when=asyncio.FIRST_COMPLETED)
                if receive in done and not cancel.is_set():
                    recommendation = receive.result()
                    yield StreamEvent(
                        type=StreamEventType.RECOMMENDATION,
                        data=recommendation.model_dump(mode="json", by_alias=True),
                    )
                    channel.task_done()
                    if cancel.is_set():
                        await self._abandon(task)
                        return
                    continue
                receive.cancel()
                if cancel.is_set():
                    await self._abandon(task)
                    return
                break

            try:
                result = task.result()
            except TurnCancelled:
                return
            except ConciergeError as e:
                yield StreamEvent(type=StreamEventType.ERROR, data=e.to_dict())
                return

            if result.code:
                yield StreamEvent(
                    type=StreamEventType.ERROR,
                    data={"error": result.reasoning, "code": result.code, "sessionId": result.session_id},
                )
                return

            response = result.to_response().model_dump(mode="json", by_alias=True, exclude={"recommendations"})
            response["totalRecommendations"] = len(result.recommendations)
            yield StreamEvent(type=StreamEventType.DONE, data=response)
        finally:
            for pending in (task, stop):
                if not pending.done():
                    pending.cancel()

    @staticmethod
    async def _abandon(task: "asyncio.Future[TurnResult]") -> None:
        if task.done():
            logger.info("Stream cancelled after the turn completed")
        else:
            task.cancel()
            logger.info("Stream cancelled by the client, turn not persisted")
        await asyncio.gather(task, return_exceptions=True)
