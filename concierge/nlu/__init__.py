# nlu/__init__.py
"""
Rules-based NLU

- entity_extractor: text -> ExtractedEntities, plus strip_entities for clean search text
- intent_classifier: text -> IntentClassification
"""

from concierge.nlu.entity_extractor import extract_entities, strip_entities, resolve_region
from concierge.nlu.intent_classifier import classify_intent

__all__ = ["extract_entities", "strip_entities", "resolve_region", "classify_intent"]
