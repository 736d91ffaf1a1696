# nlu/intent_classifier.py
"""
Rules-based intent classification.

Rules are checked in priority order and the first match wins:
availability > recommendations > preferences > social > search.
Each rule carries a fixed confidence. The numbers are ordinal (explicit
phrasing ranks above the generic fallback) and are not calibrated
probabilities.
"""

import re
from typing import List, Pattern, Tuple

from loguru import logger

from concierge.nlu.entity_extractor import extract_entities
from concierge.schemas import ExtractedEntities, Intent, IntentClassification


_SERVICE_WORDS = r"(?:netflix|hulu|disney\+?|amazon|prime|hbo|max|apple\s+tv\+?|paramount\+?|peacock|crunchyroll)"

AVAILABILITY_PATTERNS: List[Pattern] = [re.compile(p, re.IGNORECASE) for p in (
    r"\bwhere\s+(?:can|could|do)\s+i\s+(?:watch|stream|find|see)\b",
    r"\bwhere\s+(?:is|are)\s+.+\s+(?:streaming|available|playing)\b",
    r"\bavailable\s+(?:on|to\s+stream)\b",
    r"\bstreaming\s+on\b",
    r"\bis\s+.+\s+on\s+" + _SERVICE_WORDS + r"\b",
    r"\bwhich\s+(?:service|platform|app)\b",
    r"\bwhat\s+(?:service|platform|app)\b",
    r"\bcan\s+i\s+(?:watch|stream)\s+.+\s+on\b",
)]

RECOMMENDATION_PATTERNS: List[Pattern] = [re.compile(p, re.IGNORECASE) for p in (
    r"\brecommend",
    r"\bsuggest",
    r"\bwhat\s+should\s+i\s+(?:watch|see|stream)\b",
    r"\bsomething\s+(?:like|similar)\b",
    r"\b(?:i'?m|i\s+am)\s+(?:in\s+the\s+)?mood\s+for\b",
    r"\bin\s+the\s+mood\s+for\b",
    r"\bshow\s+me\b",
    r"\bfind\s+me\b",
    r"\blooking\s+for\b",
    r"\bwhat'?s\s+good\b",
    r"\b(?:best|top)\s+(?:movies?|films?|shows?|series)\b",
)]

PREFERENCES_PATTERNS: List[Pattern] = [re.compile(p, re.IGNORECASE) for p in (
    r"\bi\s+(?:really\s+)?(?:like|love|enjoy|prefer|adore)\b",
    r"\bi\s+(?:really\s+)?(?:hate|dislike|can'?t\s+stand)\b",
    r"\bi\s+don'?t\s+(?:like|want|enjoy)\b",
    r"\bmy\s+favou?rite\b",
    r"\b(?:i'?m|i\s+am)\s+(?:really\s+)?into\b",
    r"\b(?:change|update)\s+my\s+(?:preferences|taste)\b",
)]

SOCIAL_PATTERNS: List[Pattern] = [re.compile(p, re.IGNORECASE) for p in (
    r"\bfriends?(?:'s?|\s+are)?\s+(?:watching|liked|saved|picks)\b",
    r"\bwhat\s+are\s+my\s+friends\b",
    r"\bmy\s+friends\b",
    r"\bsocial\s+feed\b",
)]

# (intent, patterns, confidence) in priority order
INTENT_RULES: List[Tuple[Intent, List[Pattern], float]] = [
    (Intent.AVAILABILITY, AVAILABILITY_PATTERNS, 0.85),
    (Intent.RECOMMENDATIONS, RECOMMENDATION_PATTERNS, 0.8),
    (Intent.PREFERENCES, PREFERENCES_PATTERNS, 0.8),
    (Intent.SOCIAL, SOCIAL_PATTERNS, 0.8),
]

SEARCH_WITH_ENTITIES_CONFIDENCE = 0.6
SEARCH_FALLBACK_CONFIDENCE = 0.4


def _matches_any(text: str, patterns: List[Pattern]) -> bool:
    return any(p.search(text) for p in patterns)


def _has_search_signal(entities: ExtractedEntities) -> bool:
    return bool(entities.titles or entities.genres or entities.moods or entities.services)


def classify_intent(text: str) -> IntentClassification:
    """
    Classify a message into one of the five intents.

    Args:
        text: Raw user text

    Returns:
        IntentClassification with entities and the trimmed raw query
    """
    trimmed = (text or "").strip()
    entities = extract_entities(trimmed)

    for intent, patterns, confidence in INTENT_RULES:
        if _matches_any(trimmed, patterns):
            logger.debug(f"Intent rule matched: {intent.value} ({confidence})")
            return IntentClassification(
                intent=intent,
                confidence=confidence,
                entities=entities,
                raw_query=trimmed,
            )

    confidence = SEARCH_WITH_ENTITIES_CONFIDENCE if _has_search_signal(entities) else SEARCH_FALLBACK_CONFIDENCE
    return IntentClassification(
        intent=Intent.SEARCH,
        confidence=confidence,
        entities=entities,
        raw_query=trimmed,
    )
