import random
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from ..config import ConfigurationError
from .cancellation import CancellationToken, GenerationCancelled, cancellable_sleep
from .errors import BlueprintError, classify, log_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRY_DELAY = 30.0
MAX_JITTER = 1.0


class FallbackStrategy(str, Enum):
    SIMPLIFIED = "simplified"  # later attempts use a condensed prompt
    NONE = "none"              # every attempt repeats the same request


@dataclass(frozen=True)
class RetryOptions:
    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    fallback_strategy: FallbackStrategy = FallbackStrategy.SIMPLIFIED
    max_delay: float = MAX_RETRY_DELAY
    max_jitter: float = MAX_JITTER


def get_retry_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_jitter: float = MAX_JITTER,
    max_delay: float = MAX_RETRY_DELAY
) -> float:
    """Exponential backoff with up to ``max_jitter`` seconds of random jitter."""
    exponential_delay = base_delay * (2 ** attempt)
    jitter = random.uniform(0, max_jitter) if max_jitter > 0 else 0.0
    return min(exponential_delay + jitter, max_delay)


def _is_retryable(exception: BaseException) -> bool:
    if isinstance(exception, (GenerationCancelled, ConfigurationError)):
        return False
    return classify(exception).retryable


class RetryStrategy:
    """Runs an operation until it succeeds, fails permanently or exhausts retries.

    Failures are classified after every attempt. Non-retryable errors stop
    immediately; retryable ones back off before the next attempt. Whatever
    finally escapes is always a ``BlueprintError``. ``GenerationCancelled`` and
    ``ConfigurationError`` are never retried and propagate unchanged.
    """

    def __init__(
        self,
        options: Optional[RetryOptions] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None
    ):
        self.options = options or RetryOptions()
        self._sleep = sleep

    def _calculate_delay(self, retry_state: RetryCallState) -> float:
        return get_retry_delay(
            retry_state.attempt_number - 1,
            self.options.base_delay,
            self.options.max_jitter,
            self.options.max_delay,
        )

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        token: Optional[CancellationToken] = None,
        on_retry: Optional[Callable[[int, BlueprintError, float], None]] = None,
        **context: Any
    ) -> T:
        async def sleep(delay: float):
            if self._sleep is not None:
                if token is not None:
                    token.raise_if_cancelled()
                await self._sleep(delay)
            else:
                await cancellable_sleep(delay, token)

        def before_sleep(retry_state: RetryCallState):
            error = classify(retry_state.outcome.exception())
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                f"Attempt {retry_state.attempt_number}/{self.options.max_retries + 1} failed "
                f"with {error.code.value}. Retrying in {delay:.2f}s"
            )
            if on_retry:
                on_retry(retry_state.attempt_number, error, delay)

        async def attempt() -> T:
            if token is not None:
                token.raise_if_cancelled()
            return await operation()

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.options.max_retries + 1),
            wait=self._calculate_delay,
            retry=retry_if_exception(_is_retryable),
            sleep=sleep,
            before_sleep=before_sleep,
            reraise=True,
        )

        try:
            return await retrying(attempt)
        except (GenerationCancelled, ConfigurationError):
            raise
        except Exception as e:
            error = classify(e)
            log_error(error, **context)
            if error is e:
                raise
            raise error from e


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    options: Optional[RetryOptions] = None,
    token: Optional[CancellationToken] = None,
    on_retry: Optional[Callable[[int, BlueprintError, float], None]] = None,
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    **context: Any
) -> T:
    return await RetryStrategy(options, sleep=sleep).execute(
        operation, token=token, on_retry=on_retry, **context
    )
