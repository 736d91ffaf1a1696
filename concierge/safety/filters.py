# safety/filters.py
"""
Input/output safety filters for the concierge.

- check_input_safety: rejects empty, oversized, injection-shaped or
  symbol-obfuscated messages before any session state is touched
- check_output_safety: flags model self-reference, instruction leakage and
  PII-shaped substrings in user-facing text
- sanitize_reason: strips markup from recommendation reasons and bounds them
- redact_prompt: masks PII for audit logging and returns a stable hash

Input and output checks pass everything through when CHAT_SAFETY_FILTER is
off; redaction is controlled by CHAT_PROMPT_REDACTION.
"""

import hashlib
import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Tuple

from loguru import logger

from concierge.config import Settings, settings as default_settings


MAX_REASON_LENGTH = 500
REDACTED_PREVIEW_LENGTH = 200
SPECIAL_CHAR_MIN_LENGTH = 20
FALLBACK_OUTPUT = "I can help you find movies and shows to watch. What are you in the mood for?"

# Punctuation that counts as ordinary text
ALLOWED_PUNCTUATION = set(" ',.!?-\"")


class SafetyCategory:
    EMPTY = "empty"
    TOO_LONG = "too_long"
    INJECTION = "injection"
    SPECIAL_CHARS = "special_chars"
    LEAKAGE = "leakage"
    PII = "pii"


INJECTION_PATTERNS: List[Pattern] = [re.compile(p, re.IGNORECASE) for p in (
    r"ignore\s+(?:all\s+)?(?:previous|prior|above|all)\s+(?:instructions|prompts|rules)",
    r"disregard\s+(?:all\s+)?(?:previous|prior|your)\s+(?:instructions|rules)",
    r"you\s+are\s+now\s+(?:a|an|in)\b",
    r"\bsystem\s*:\s*",
    r"\bsystem\s+prompt\b",
    r"\[/?INST\]",
    r"<\|im_(?:start|end)\|>",
    r"<<\s*SYS\s*>>",
    r"pretend\s+(?:that\s+)?you(?:'re|\s+are)\s+not",
    r"bypass\s+(?:your|the)\s+(?:rules|restrictions|filters)",
    r"act\s+as\s+if\s+you\s+have\s+no\s+(?:restrictions|rules)",
    r"\bjailbreak\b",
    r"\bDAN\s+mode\b",
)]

LEAKAGE_PATTERNS: List[Pattern] = [re.compile(p, re.IGNORECASE) for p in (
    r"(?:you|i)\s+am\s+an?\s+AI\s+(?:language\s+)?model",
    r"you\s+are\s+an?\s+AI\s+(?:language\s+)?model",
    r"as\s+an?\s+AI\s+(?:language\s+)?model",
    r"my\s+(?:system\s+)?instructions\s+(?:are|say|tell)",
    r"my\s+system\s+prompt",
)]

PII_OUTPUT_PATTERNS: List[Tuple[Pattern, str]] = [
    (re.compile(r"\b\d{3}[-.]?\d{2}[-.]?\d{4}\b"), "[SSN]"),
    (re.compile(r"\b\d{16}\b"), "[CARD]"),
]

REDACTION_PATTERNS: List[Tuple[Pattern, str]] = [
    (re.compile(r"\b[\w.+-]+@[\w-]+(?:\.[\w-]+)*\.\w{2,}\b"), "[EMAIL]"),
    (re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "[SSN]"),
    (re.compile(r"(?:\+?\d{1,2}[\s.-]?)?\(?\b\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}\b"), "[PHONE]"),
]

HTML_TAG = re.compile(r"<[^>]*>")
MARKDOWN_LINK = re.compile(r"\[([^\]]*)\]\([^)]*\)")


@dataclass
class SafetyCheckResult:
    """Outcome of a safety check"""
    safe: bool
    reason: Optional[str] = None
    category: Optional[str] = None
    filtered: Optional[str] = None  # replacement text for rejected output


@dataclass
class RedactedPrompt:
    """Audit-safe view of a prompt"""
    hash: str
    length: int
    redacted: str


def hash_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


def special_char_ratio(text: str) -> float:
    """Share of characters that are neither alphanumeric nor ordinary punctuation"""
    if not text:
        return 0.0
    special = sum(1 for ch in text if not ch.isalnum() and ch not in ALLOWED_PUNCTUATION)
    return special / len(text)


# ============================================
# Input
# ============================================

def check_input_safety(text: Optional[str], config: Optional[Settings] = None) -> SafetyCheckResult:
    """
    Validate a user message before it is processed.

    Args:
        text: Raw user message
        config: Settings to read switches and limits from (global settings by default)

    Returns:
        SafetyCheckResult; on rejection `category` names the triggering rule
    """
    config = config or default_settings
    if not config.CHAT_SAFETY_FILTER:
        return SafetyCheckResult(safe=True)

    text = text or ""
    if not text.strip():
        return SafetyCheckResult(safe=False, reason="Message is empty", category=SafetyCategory.EMPTY)

    if len(text) > config.CHAT_MAX_INPUT_LENGTH:
        return SafetyCheckResult(
            safe=False,
            reason="Message exceeds maximum length",
            category=SafetyCategory.TOO_LONG,
        )

    for pattern in INJECTION_PATTERNS:
        if pattern.search(text):
            logger.warning(f"Blocked input: injection pattern {pattern.pattern!r} (hash={hash_text(text)})")
            return SafetyCheckResult(
                safe=False,
                reason="Your message contains a pattern that cannot be processed",
                category=SafetyCategory.INJECTION,
            )

    ratio = special_char_ratio(text)
    if len(text) > SPECIAL_CHAR_MIN_LENGTH and ratio > config.CHAT_SPECIAL_CHAR_RATIO:
        logger.warning(f"Blocked input: special character ratio {ratio:.2f} (hash={hash_text(text)})")
        return SafetyCheckResult(
            safe=False,
            reason="Your message contains too many special characters",
            category=SafetyCategory.SPECIAL_CHARS,
        )

    return SafetyCheckResult(safe=True)


# ============================================
# Output
# ============================================

def check_output_safety(text: str, config: Optional[Settings] = None) -> SafetyCheckResult:
    """
    Check user-facing text before it leaves the service.

    Leakage returns the canned fallback as `filtered`; PII returns the text
    with the offending substrings masked. The caller decides what to show.
    """
    config = config or default_settings
    if not config.CHAT_SAFETY_FILTER or not text:
        return SafetyCheckResult(safe=True)

    for pattern in LEAKAGE_PATTERNS:
        if pattern.search(text):
            logger.warning(f"Filtered output: leakage pattern detected (hash={hash_text(text)})")
            return SafetyCheckResult(
                safe=False,
                reason="Response contained filtered content",
                category=SafetyCategory.LEAKAGE,
                filtered=FALLBACK_OUTPUT,
            )

    masked = text
    for pattern, replacement in PII_OUTPUT_PATTERNS:
        masked = pattern.sub(replacement, masked)
    if masked != text:
        logger.warning(f"Filtered output: PII-shaped content masked (hash={hash_text(text)})")
        return SafetyCheckResult(
            safe=False,
            reason="Response contained filtered content",
            category=SafetyCategory.PII,
            filtered=masked,
        )

    return SafetyCheckResult(safe=True)


def sanitize_reason(reason: Optional[str]) -> str:
    """
    Strip HTML tags and markdown links from a reason and cap its length.

    Idempotent on text that is already clean and within the limit.

    Example:
        >>> sanitize_reason('<b>Great</b> on [Netflix](https://netflix.com)')
        'Great on Netflix'
    """
    sanitized = HTML_TAG.sub("", reason or "")
    sanitized = MARKDOWN_LINK.sub(r"\1", sanitized)
    if len(sanitized) > MAX_REASON_LENGTH:
        sanitized = sanitized[:MAX_REASON_LENGTH - 3] + "..."
    return sanitized


# ============================================
# Audit redaction
# ============================================

def redact_prompt(text: str, config: Optional[Settings] = None) -> RedactedPrompt:
    """
    Build an audit-log view of a prompt.

    Hash and original length are always returned so entries can be
    correlated without storing raw text.
    """
    config = config or default_settings
    text = text or ""
    digest = hash_text(text)

    if not config.CHAT_PROMPT_REDACTION:
        return RedactedPrompt(hash=digest, length=len(text), redacted=text)

    redacted = text
    for pattern, replacement in REDACTION_PATTERNS:
        redacted = pattern.sub(replacement, redacted)

    if len(redacted) > REDACTED_PREVIEW_LENGTH:
        redacted = redacted[:REDACTED_PREVIEW_LENGTH - 3] + "..."

    return RedactedPrompt(hash=digest, length=len(text), redacted=redacted)
