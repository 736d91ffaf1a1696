"""Safety filters for concierge input and output"""

from concierge.safety.filters import (
    SafetyCategory,
    SafetyCheckResult,
    RedactedPrompt,
    FALLBACK_OUTPUT,
    MAX_REASON_LENGTH,
    check_input_safety,
    check_output_safety,
    sanitize_reason,
    redact_prompt,
)

__all__ = [
    "SafetyCategory", "SafetyCheckResult", "RedactedPrompt", "FALLBACK_OUTPUT", "MAX_REASON_LENGTH",
    "check_input_safety", "check_output_safety", "sanitize_reason", "redact_prompt",
]
