# schemas/concierge_schemas.py
"""
Pydantic v2 schemas for the conversational concierge
Covers NLU output, conversation state, worker results and API envelopes
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
from enum import Enum


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Snake-case attributes, camelCase on the wire"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================
# Enums
# ============================================

class Intent(str, Enum):
    SEARCH = "search"
    AVAILABILITY = "availability"
    RECOMMENDATIONS = "recommendations"
    PREFERENCES = "preferences"
    SOCIAL = "social"


class WorkerType(str, Enum):
    SEARCH = "search"
    AVAILABILITY = "availability"
    PREFERENCES = "preferences"
    RECOMMENDATIONS = "recommendations"


class TurnState(str, Enum):
    VALIDATING = "validating"
    CLASSIFYING = "classifying"
    CONTEXT_LOADED = "context_loaded"
    WORKERS_RUNNING = "workers_running"
    AGGREGATING = "aggregating"
    SANITIZING = "sanitizing"
    PERSISTED = "persisted"
    RESPONDED = "responded"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class PlanTier(str, Enum):
    FREE = "free"
    PREMIUM = "premium"


class OfferType(str, Enum):
    FLATRATE = "flatrate"
    RENT = "rent"
    BUY = "buy"
    FREE = "free"
    ADS = "ads"


class StreamEventType(str, Enum):
    MESSAGE = "message"
    RECOMMENDATION = "recommendation"
    DONE = "done"
    ERROR = "error"


# ============================================
# NLU
# ============================================

class RangeFilter(CamelModel):
    """Inclusive numeric bounds; either side may be open"""
    min: Optional[int] = None
    max: Optional[int] = None


class ExtractedEntities(CamelModel):
    """Structured constraints pulled out of a message. None means unconstrained."""
    genres: Optional[List[str]] = None
    services: Optional[List[str]] = None
    moods: Optional[List[str]] = None
    duration: Optional[RangeFilter] = None
    release_year: Optional[RangeFilter] = None
    region: Optional[str] = None
    titles: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def is_empty(self) -> bool:
        return not self.to_dict()


class IntentClassification(CamelModel):
    model_config = ConfigDict(frozen=True)

    intent: Intent
    confidence: float = Field(..., ge=0.0, le=1.0)
    entities: ExtractedEntities = Field(default_factory=ExtractedEntities)
    raw_query: str = ""


# ============================================
# Conversation state
# ============================================

class UserPreferences(CamelModel):
    genres: List[str] = Field(default_factory=list)
    moods: List[str] = Field(default_factory=list)
    avoid_genres: List[str] = Field(default_factory=list)
    min_rating: Optional[float] = None
    preferred_duration: Optional[RangeFilter] = None

    def merged(self, stated: "UserPreferences") -> "UserPreferences":
        """
        Fold newer preferences into these.
        Liking a genre removes it from the avoid list and vice versa.
        """
        genres = [g for g in self.genres if g not in stated.avoid_genres]
        genres += [g for g in stated.genres if g not in genres]
        avoid = [g for g in self.avoid_genres if g not in stated.genres]
        avoid += [g for g in stated.avoid_genres if g not in avoid]
        moods = list(self.moods) + [m for m in stated.moods if m not in self.moods]
        return self.model_copy(update={"genres": genres, "moods": moods, "avoid_genres": avoid})


class ConversationTurn(CamelModel):
    turn_number: int
    role: Role
    text: str
    intent: Optional[Intent] = None
    recommendations: List[str] = Field(default_factory=list)  # title ids
    timestamp: datetime = Field(default_factory=utc_now)


class ConversationContext(CamelModel):
    """Per-conversation state owned by the session store"""
    conversation_id: str
    turn_number: int = 0
    profile_id: Optional[str] = None
    region: str = "US"
    subscriptions: List[str] = Field(default_factory=list)
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    history: List[ConversationTurn] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    last_active_at: datetime = Field(default_factory=utc_now)


class WorkerSnapshot(CamelModel):
    """Read-only view of the context handed to workers for one turn"""
    model_config = ConfigDict(frozen=True)

    conversation_id: str
    turn_number: int
    profile_id: Optional[str] = None
    region: str = "US"
    subscriptions: List[str] = Field(default_factory=list)
    preferences: UserPreferences = Field(default_factory=UserPreferences)

    @classmethod
    def from_context(cls, context: ConversationContext) -> "WorkerSnapshot":
        return cls(
            conversation_id=context.conversation_id,
            turn_number=context.turn_number + 1,
            profile_id=context.profile_id,
            region=context.region,
            subscriptions=list(context.subscriptions),
            preferences=context.preferences.model_copy(deep=True),
        )


class WorkerResult(CamelModel):
    worker: WorkerType
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    latency_ms: float = 0.0


# ============================================
# Catalog
# ============================================

class TitleResult(CamelModel):
    id: str
    name: str
    type: str = "movie"  # movie | tv
    genres: List[str] = Field(default_factory=list)
    moods: List[str] = Field(default_factory=list)
    release_year: Optional[int] = None
    runtime_min: Optional[int] = None
    vote_average: Optional[float] = None
    popularity: Optional[float] = None
    poster_url: Optional[str] = None
    backdrop_url: Optional[str] = None
    tmdb_id: Optional[int] = None
    imdb_id: Optional[str] = None


class AvailabilityResult(CamelModel):
    title_id: str
    service: str
    region: str
    offer_type: OfferType = OfferType.FLATRATE
    deep_link: Optional[str] = None


class ExternalRatings(CamelModel):
    """Critic/audience scores on a 0-100 scale"""
    imdb: Optional[float] = None
    rotten_tomatoes: Optional[float] = None
    metacritic: Optional[float] = None


class TrendingSignal(CamelModel):
    """Normalised 0-1 trending strength"""
    day: float = 0.0
    week: float = 0.0


class FeedbackEntry(CamelModel):
    title_id: str
    action: str  # LIKE | DISLIKE | SAVE
    title_name: Optional[str] = None
    genres: List[str] = Field(default_factory=list)


class ProfileRecord(CamelModel):
    id: str
    tier: PlanTier = PlanTier.FREE
    locale: Optional[str] = None
    region: Optional[str] = None
    preferences: UserPreferences = Field(default_factory=UserPreferences)


class ProfilePreferences(CamelModel):
    """Preferences worker output"""
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    subscriptions: List[str] = Field(default_factory=list)
    region: str = "US"
    recent_feedback: List[FeedbackEntry] = Field(default_factory=list)
    cold_start: bool = True


class RecommendationResult(CamelModel):
    title: TitleResult
    score: float = Field(..., ge=0.0)
    reason: str = Field(..., max_length=500)
    availability: Optional[List[AvailabilityResult]] = None
    matched_preferences: Optional[List[str]] = None
    quality_fallback: bool = False


# ============================================
# Quota & Session
# ============================================

class QuotaStatus(CamelModel):
    used: int
    limit: int  # <= 0 means unlimited
    remaining: int
    tier: PlanTier
    resets_at: str
    allowed: bool


class ChatSession(CamelModel):
    session_id: str
    context: ConversationContext
    quota: Optional[QuotaStatus] = None
    is_new: bool = False


# ============================================
# API: Chat
# ============================================

class ChatRequest(CamelModel):
    """Chat API request"""
    message: str = Field(..., description="User message")
    session_id: Optional[str] = Field(None, description="Continue an existing conversation")
    profile_id: Optional[str] = Field(None, description="Profile used for personalisation")


class ChatResponse(CamelModel):
    """Chat API response"""
    session_id: str
    reasoning: str
    recommendations: List[RecommendationResult] = Field(default_factory=list)
    alternatives: List[TitleResult] = Field(default_factory=list)
    follow_up_questions: List[str] = Field(default_factory=list)
    intent: Optional[Intent] = None
    turn_number: int = 0
    fallback_used: bool = True
    quota: Optional[QuotaStatus] = None
    code: Optional[str] = None  # set on the internal-error envelope


class StreamEvent(CamelModel):
    type: StreamEventType
    data: Dict[str, Any] = Field(default_factory=dict)

    def to_sse(self) -> str:
        return f"data: {self.model_dump_json(by_alias=True)}\n\n"


class ErrorResponse(BaseModel):
    """{error, code}; some codes add fields such as limit, resetsAt or sessionId"""
    model_config = ConfigDict(extra="allow")

    error: str
    code: str


class HealthResponse(CamelModel):
    enabled: bool
    status: str  # ready | degraded | disabled
    llm_provider: str
    version: str


class ParseResponse(CamelModel):
    original_query: str
    clean_query: str
    entities: Dict[str, Any]
