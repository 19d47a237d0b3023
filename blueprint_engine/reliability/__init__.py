from .cancellation import CancellationToken, GenerationCancelled
from .circuit_breaker import Admission, CircuitBreaker, CircuitBreakerManager, CircuitState
from .errors import BlueprintError, ErrorCode, classify, create_user_feedback
from .retry_strategy import FallbackStrategy, RetryOptions, RetryStrategy, with_retry

__all__ = [
    "CancellationToken",
    "GenerationCancelled",
    "Admission",
    "CircuitBreaker",
    "CircuitBreakerManager",
    "CircuitState",
    "BlueprintError",
    "ErrorCode",
    "classify",
    "create_user_feedback",
    "FallbackStrategy",
    "RetryOptions",
    "RetryStrategy",
    "with_retry"
]
