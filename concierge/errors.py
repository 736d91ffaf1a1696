"""
Concierge error types

Every outcome that reaches a caller as "failed" carries a stable machine code,
an HTTP status and a human message. Worker failures never use these; they are
recovered inside the orchestrator.
"""

from typing import Any, Dict, Optional


class ErrorCode:
    INVALID_REQUEST = "INVALID_REQUEST"
    MESSAGE_TOO_LONG = "MESSAGE_TOO_LONG"
    UNSAFE_INPUT = "UNSAFE_INPUT"
    CONCIERGE_DISABLED = "CONCIERGE_DISABLED"
    NLU_DISABLED = "NLU_DISABLED"
    DAILY_LIMIT_EXCEEDED = "DAILY_LIMIT_EXCEEDED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    SESSION_EXHAUSTED = "SESSION_EXHAUSTED"
    SESSION_BUSY = "SESSION_BUSY"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ConciergeError(Exception):
    """Base error surfaced to API callers"""

    code: str = ErrorCode.INTERNAL_ERROR
    status_code: int = 500
    default_message: str = "Something went wrong. Please try again."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code}


class InvalidRequestError(ConciergeError):
    code = ErrorCode.INVALID_REQUEST
    status_code = 400
    default_message = "Message is required"


class MessageTooLongError(ConciergeError):
    code = ErrorCode.MESSAGE_TOO_LONG
    status_code = 400
    default_message = "Message is too long"


class InputRejectedError(ConciergeError):
    """Raised when the input safety check rejects a message"""

    code = ErrorCode.UNSAFE_INPUT
    status_code = 400
    default_message = "Message could not be processed"

    def __init__(self, message: Optional[str] = None, category: Optional[str] = None):
        super().__init__(message)
        self.category = category

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.category:
            payload["category"] = self.category
        return payload


class ConciergeDisabledError(ConciergeError):
    code = ErrorCode.CONCIERGE_DISABLED
    status_code = 503
    default_message = "AI concierge is not enabled"


class NLUDisabledError(ConciergeError):
    code = ErrorCode.NLU_DISABLED
    status_code = 503
    default_message = "Natural language parsing is not enabled"


class QuotaExceededError(ConciergeError):
    """Daily allowance used up; carries the reset time for a countdown"""

    code = ErrorCode.DAILY_LIMIT_EXCEEDED
    status_code = 429
    default_message = "Daily chat limit reached"

    def __init__(self, resets_at: str, limit: int, tier: str = "free", message: Optional[str] = None):
        super().__init__(message)
        self.resets_at = resets_at
        self.limit = limit
        self.tier = tier

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload.update({"resetsAt": self.resets_at, "limit": self.limit, "tier": self.tier})
        return payload


class SessionBusyError(ConciergeError):
    code = ErrorCode.SESSION_BUSY
    status_code = 409
    default_message = "A message for this session is still being processed"


class RateLimitExceededError(ConciergeError):
    """Too many messages from one profile inside the rate-limit window"""

    code = ErrorCode.RATE_LIMIT_EXCEEDED
    status_code = 429
    default_message = "Rate limit exceeded. Please try again later."

    def __init__(self, limit: int, message: Optional[str] = None):
        super().__init__(message)
        self.limit = limit

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload.update({"limit": self.limit, "remaining": 0})
        return payload


class SessionExhaustedError(ConciergeError):
    """The conversation reached its turn cap; the caller should start a new one"""

    code = ErrorCode.SESSION_EXHAUSTED
    status_code = 429
    default_message = "Session has reached maximum turns. Start a new conversation."

    def __init__(self, session_id: str, message: Optional[str] = None):
        super().__init__(message)
        self.session_id = session_id

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["sessionId"] = self.session_id
        return payload


class CacheUnavailableError(Exception):
    """The key-value store could not be reached for a cache read"""
