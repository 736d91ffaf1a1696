# schemas/__init__.py
"""
Pydantic Schemas Package

Contains all Pydantic v2 models for:
- NLU output (entities, intent classification)
- Conversation context and worker results
- API requests/responses and stream events
"""

from concierge.schemas.concierge_schemas import (
    # Enums
    Intent, WorkerType, TurnState, Role, PlanTier, OfferType, StreamEventType,
    # NLU
    RangeFilter, ExtractedEntities, IntentClassification,
    # Conversation
    UserPreferences, ConversationTurn, ConversationContext, WorkerSnapshot, WorkerResult,
    # Catalog
    TitleResult, AvailabilityResult, ExternalRatings, TrendingSignal,
    FeedbackEntry, ProfileRecord, ProfilePreferences, RecommendationResult,
    # Quota & Session
    QuotaStatus, ChatSession,
    # API
    ChatRequest, ChatResponse, StreamEvent, ErrorResponse, HealthResponse, ParseResponse,
    utc_now,
)

__all__ = [
    "Intent", "WorkerType", "TurnState", "Role", "PlanTier", "OfferType", "StreamEventType",
    "RangeFilter", "ExtractedEntities", "IntentClassification",
    "UserPreferences", "ConversationTurn", "ConversationContext", "WorkerSnapshot", "WorkerResult",
    "TitleResult", "AvailabilityResult", "ExternalRatings", "TrendingSignal",
    "FeedbackEntry", "ProfileRecord", "ProfilePreferences", "RecommendationResult",
    "QuotaStatus", "ChatSession",
    "ChatRequest", "ChatResponse", "StreamEvent", "ErrorResponse", "HealthResponse", "ParseResponse",
    "utc_now",
]
