"""Closed error taxonomy for AI generation failures.

Raw failures from providers, parsers or the dispatch layer are mapped onto a
fixed set of codes. Each code carries a retryable flag plus the text shown to
end users; the operator-facing ``message`` is kept separate and goes to logs.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    AI_SERVICE_TIMEOUT = "AI_SERVICE_TIMEOUT"
    AI_SERVICE_RATE_LIMIT = "AI_SERVICE_RATE_LIMIT"
    AI_SERVICE_UNAVAILABLE = "AI_SERVICE_UNAVAILABLE"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    INSUFFICIENT_CONTEXT = "INSUFFICIENT_CONTEXT"
    GENERATION_FAILED = "GENERATION_FAILED"


class BlueprintError(Exception):
    """A classified failure. Raised by the retry engine and carried in envelopes."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        user_message: str,
        retryable: bool,
        suggestions: Optional[List[str]] = None,
        detail: Optional[str] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.user_message = user_message
        self.retryable = retryable
        self.suggestions = list(suggestions or [])
        # Raw text of the underlying failure, for operators only
        self.detail = detail

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, BlueprintError):
            return NotImplemented
        return (
            self.code == other.code
            and self.message == other.message
            and self.user_message == other.user_message
            and self.retryable == other.retryable
            and self.suggestions == other.suggestions
        )

    def __hash__(self) -> int:
        return hash((self.code, self.message))

    def __repr__(self) -> str:
        return f"BlueprintError(code={self.code.value}, retryable={self.retryable})"

    def with_detail(self, detail: str) -> "BlueprintError":
        return BlueprintError(
            code=self.code,
            message=self.message,
            user_message=self.user_message,
            retryable=self.retryable,
            suggestions=self.suggestions,
            detail=detail,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "user_message": self.user_message,
            "retryable": self.retryable,
            "suggestions": list(self.suggestions),
        }


ERROR_MAPPINGS: Dict[ErrorCode, Dict[str, Any]] = {
    ErrorCode.AI_SERVICE_TIMEOUT: {
        "message": "AI service request timed out",
        "user_message": "The AI service is taking longer than expected. Please try again.",
        "retryable": True,
        "suggestions": [
            "Try again in a few minutes",
            "Simplify your idea description",
            "Check your internet connection",
        ],
    },
    ErrorCode.AI_SERVICE_RATE_LIMIT: {
        "message": "AI service rate limit exceeded",
        "user_message": "Too many requests. Please wait a moment before trying again.",
        "retryable": True,
        "suggestions": [
            "Wait 1-2 minutes before retrying",
            "Consider upgrading your plan for higher limits",
        ],
    },
    ErrorCode.AI_SERVICE_UNAVAILABLE: {
        "message": "AI service is temporarily unavailable",
        "user_message": "The AI service is temporarily unavailable. We'll try again automatically.",
        "retryable": True,
        "suggestions": [
            "We'll automatically retry with a backup service",
            "Check our status page for updates",
        ],
    },
    ErrorCode.INVALID_RESPONSE: {
        "message": "AI service returned invalid response",
        "user_message": "The AI generated an invalid response. Trying again with improved prompts.",
        "retryable": True,
        "suggestions": [
            "Provide more specific details about your idea",
            "Try rephrasing your idea description",
        ],
    },
    ErrorCode.CIRCUIT_OPEN: {
        "message": "Circuit breaker is open for the selected provider",
        "user_message": "The AI service is recovering from errors. We'll route your request elsewhere.",
        "retryable": True,
        "suggestions": [
            "We'll automatically retry with a backup service",
            "Try again in a minute",
        ],
    },
    ErrorCode.INSUFFICIENT_CONTEXT: {
        "message": "Insufficient context for blueprint generation",
        "user_message": "Your idea needs more details for a comprehensive blueprint.",
        "retryable": False,
        "suggestions": [
            "Add more details about your target users",
            "Describe the main features you envision",
            "Explain the problem you're solving",
        ],
    },
    ErrorCode.GENERATION_FAILED: {
        "message": "Blueprint generation failed",
        "user_message": "We encountered an error generating your blueprint. Our team has been notified.",
        "retryable": True,
        "suggestions": [
            "Try again in a few minutes",
            "Contact support if the problem persists",
        ],
    },
}

# Codes raised by provider clients that map onto the taxonomy directly
_CODE_ALIASES = {
    "TIMEOUT": ErrorCode.AI_SERVICE_TIMEOUT,
    "RATE_LIMIT": ErrorCode.AI_SERVICE_RATE_LIMIT,
    "RATE_LIMITED": ErrorCode.AI_SERVICE_RATE_LIMIT,
    "SERVICE_UNAVAILABLE": ErrorCode.AI_SERVICE_UNAVAILABLE,
    "PARSE_ERROR": ErrorCode.INVALID_RESPONSE,
    "CIRCUIT_BREAKER_OPEN": ErrorCode.CIRCUIT_OPEN,
}


def make_error(code: ErrorCode, detail: Optional[str] = None) -> BlueprintError:
    mapping = ERROR_MAPPINGS[code]
    return BlueprintError(
        code=code,
        message=mapping["message"],
        user_message=mapping["user_message"],
        retryable=mapping["retryable"],
        suggestions=mapping["suggestions"],
        detail=detail,
    )


def _lookup_code(raw_code: Any) -> Optional[ErrorCode]:
    if raw_code is None:
        return None
    value = raw_code.value if isinstance(raw_code, Enum) else str(raw_code)
    try:
        return ErrorCode(value)
    except ValueError:
        return _CODE_ALIASES.get(value.upper())


def classify(error: BaseException) -> BlueprintError:
    """Map any raised failure onto the closed taxonomy.

    Already classified errors pass through untouched. Otherwise an explicit
    ``code`` attribute wins, then message patterns are tried in a fixed order:
    timeout, rate limit, unavailable, parse/invalid. Anything else is
    ``GENERATION_FAILED``.
    """
    if isinstance(error, BlueprintError):
        return error

    detail = str(error) or type(error).__name__

    code = _lookup_code(getattr(error, "code", None))
    if code is not None:
        return make_error(code, detail)

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return make_error(ErrorCode.AI_SERVICE_TIMEOUT, detail)

    text = str(error).lower()

    if "timeout" in text or "timed out" in text:
        return make_error(ErrorCode.AI_SERVICE_TIMEOUT, detail)

    if "rate limit" in text or "rate_limit" in text:
        return make_error(ErrorCode.AI_SERVICE_RATE_LIMIT, detail)

    if "unavailable" in text:
        return make_error(ErrorCode.AI_SERVICE_UNAVAILABLE, detail)

    if "parse" in text or "invalid" in text:
        return make_error(ErrorCode.INVALID_RESPONSE, detail)

    return make_error(ErrorCode.GENERATION_FAILED, detail)


def should_retry(error: BlueprintError, attempt: int, max_retries: int) -> bool:
    return error.retryable and attempt < max_retries


def create_user_feedback(
    error: BlueprintError,
    generation_id: Optional[str] = None,
    section: Optional[str] = None,
) -> Dict[str, Any]:
    """Build the block a client renders for a failed generation."""
    actions: List[Dict[str, Any]] = []

    if error.retryable:
        actions.append({"label": "Try Again", "action": "retry", "primary": True})
    if generation_id and section:
        actions.append({"label": "Regenerate Section", "action": "regenerate-section"})
    actions.append({"label": "Edit Idea", "action": "edit-idea"})
    if error.suggestions:
        actions.append({"label": "View Suggestions", "action": "show-suggestions"})
    actions.append({"label": "Contact Support", "action": "contact-support"})

    return {
        "title": "Generation Delayed" if error.retryable else "Generation Failed",
        "message": error.user_message,
        "type": "warning" if error.retryable else "error",
        "suggestions": list(error.suggestions),
        "actions": actions,
    }


def log_error(error: BlueprintError, **context: Any) -> None:
    """Log a classified error with operator context (generation, section, attempt)."""
    details = ", ".join(f"{key}={value}" for key, value in context.items() if value is not None)
    logger.error(
        f"Blueprint generation error [{error.code.value}] {error.message}"
        f" (retryable={error.retryable}; {details}; detail={error.detail})"
    )
