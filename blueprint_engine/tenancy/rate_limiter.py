import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable
import logging

from ..config import ProviderConfig, ProviderName

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0


@dataclass
class RateWindow:
    """Fixed-window counters for one provider."""

    window_start: float
    requests: int = 0
    tokens: int = 0


class RateLimiter:
    """Per-provider request and token budget over a fixed one-minute window.

    ``allow`` both checks and reserves budget using the caller's token
    estimate, so two concurrent callers can never both take the last slot.
    A denied call leaves the window untouched. Actual usage reported after
    the call is tracked separately for accounting and does not gate.
    """

    def __init__(
        self,
        providers: Iterable[ProviderConfig],
        window_seconds: float = WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        self.window_seconds = window_seconds
        self._clock = clock
        self._limits = {p.name: p.rate_limits for p in providers}
        now = clock()
        self._windows: Dict[ProviderName, RateWindow] = {
            name: RateWindow(window_start=now) for name in self._limits
        }
        self._actual_tokens: Dict[ProviderName, int] = {name: 0 for name in self._limits}
        # One lock per provider so unrelated providers never contend
        self._locks: Dict[ProviderName, threading.Lock] = {
            name: threading.Lock() for name in self._limits
        }

    def _current_window(self, provider: ProviderName) -> RateWindow:
        window = self._windows[provider]
        now = self._clock()
        elapsed = now - window.window_start
        if elapsed >= self.window_seconds:
            # Align to the boundary so windows never drift
            boundaries = int(elapsed // self.window_seconds)
            window = RateWindow(window_start=window.window_start + boundaries * self.window_seconds)
            self._windows[provider] = window
            self._actual_tokens[provider] = 0
        return window

    def allow(self, provider: ProviderName, estimated_tokens: int = 0) -> bool:
        limits = self._limits[provider]
        with self._locks[provider]:
            window = self._current_window(provider)

            if window.requests + 1 > limits.requests_per_minute:
                logger.debug(f"{provider.value}: request budget exhausted for this window")
                return False

            if window.tokens + estimated_tokens > limits.tokens_per_minute:
                logger.debug(f"{provider.value}: token budget exhausted for this window")
                return False

            window.requests += 1
            window.tokens += max(0, estimated_tokens)
            return True

    def release(self, provider: ProviderName, estimated_tokens: int = 0):
        """Refund a reservation that never reached the provider."""
        with self._locks[provider]:
            window = self._current_window(provider)
            window.requests = max(0, window.requests - 1)
            window.tokens = max(0, window.tokens - max(0, estimated_tokens))

    def record_usage(self, provider: ProviderName, total_tokens: int):
        with self._locks[provider]:
            self._current_window(provider)
            self._actual_tokens[provider] += total_tokens

    def is_limited(self, provider: ProviderName) -> bool:
        limits = self._limits[provider]
        with self._locks[provider]:
            window = self._current_window(provider)
            return (
                window.requests >= limits.requests_per_minute
                or window.tokens >= limits.tokens_per_minute
            )

    def seconds_until_reset(self, provider: ProviderName) -> float:
        with self._locks[provider]:
            window = self._current_window(provider)
            return max(0.0, window.window_start + self.window_seconds - self._clock())

    def get_stats(self) -> Dict[str, Dict[str, float]]:
        stats = {}
        for provider, limits in self._limits.items():
            with self._locks[provider]:
                window = self._current_window(provider)
                stats[provider.value] = {
                    "requests": window.requests,
                    "tokens_reserved": window.tokens,
                    "tokens_used": self._actual_tokens[provider],
                    "requests_per_minute": limits.requests_per_minute,
                    "tokens_per_minute": limits.tokens_per_minute,
                }
        return stats
