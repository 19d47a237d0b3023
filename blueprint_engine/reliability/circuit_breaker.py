import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional
from enum import Enum
import logging

from ..config import CircuitBreakerConfig, ProviderName
from ..monitoring.metrics import circuit_transitions

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class Admission:
    """Ticket handed out by ``allow_request``.

    Outcomes are reported with the ticket so a call admitted before the
    circuit tripped cannot close, re-open or free the probe slot of a later
    HALF_OPEN period.
    """
    is_probe: bool
    epoch: int


class CircuitBreaker:
    """Per-provider failure gate.

    CLOSED lets traffic through. ``failure_threshold`` consecutive failures
    move it to OPEN, which rejects everything until ``recovery_timeout``
    seconds have passed. It then turns HALF_OPEN and admits exactly one probe:
    success closes the circuit, failure re-opens it and restarts the timer.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        name: Optional[str] = None,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name or "CircuitBreaker"
        self.enabled = enabled
        self._clock = clock
        self._lock = threading.Lock()

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at: Optional[float] = None
        self.success_count = 0
        self.total_calls = 0
        self.rejected_calls = 0
        self._probe_in_flight = False
        # Bumped every time the circuit opens
        self._epoch = 0

    def _transition(self, new_state: CircuitState):
        if new_state == self.state:
            return
        logger.info(f"{self.name}: {self.state.value} -> {new_state.value}")
        circuit_transitions.labels(provider=self.name, state=new_state.value).inc()
        if new_state == CircuitState.OPEN:
            self._epoch += 1
        self.state = new_state

    def _should_attempt_reset(self) -> bool:
        if self.opened_at is None:
            return False
        return self._clock() - self.opened_at >= self.recovery_timeout

    def _refresh(self):
        if self.state == CircuitState.OPEN and self._should_attempt_reset():
            self._transition(CircuitState.HALF_OPEN)
            self._probe_in_flight = False

    def _is_current_probe(self, ticket: Optional[Admission]) -> bool:
        """Unattributed reports (no ticket) are treated as the probe's."""
        if self.state != CircuitState.HALF_OPEN:
            return False
        if ticket is None:
            return True
        return ticket.is_probe and ticket.epoch == self._epoch

    def allow_request(self) -> Optional[Admission]:
        """Admit a call. In HALF_OPEN only the first caller gets the probe slot.

        Returns an ``Admission`` ticket, or None when the call is rejected.
        """
        if not self.enabled:
            return Admission(is_probe=False, epoch=self._epoch)

        with self._lock:
            self._refresh()

            if self.state == CircuitState.CLOSED:
                self.total_calls += 1
                return Admission(is_probe=False, epoch=self._epoch)

            if self.state == CircuitState.HALF_OPEN and not self._probe_in_flight:
                self._probe_in_flight = True
                self.total_calls += 1
                logger.info(f"{self.name}: Admitting probe request (HALF_OPEN)")
                return Admission(is_probe=True, epoch=self._epoch)

            self.rejected_calls += 1
            return None

    def is_open(self) -> bool:
        """True when a request would be rejected right now. Does not take the probe slot."""
        if not self.enabled:
            return False
        with self._lock:
            self._refresh()
            if self.state == CircuitState.OPEN:
                return True
            return self.state == CircuitState.HALF_OPEN and self._probe_in_flight

    def record_success(self, ticket: Optional[Admission] = None):
        if not self.enabled:
            return
        with self._lock:
            self.success_count += 1
            if self.state == CircuitState.CLOSED:
                self.failure_count = 0
            elif self._is_current_probe(ticket):
                self.failure_count = 0
                self._probe_in_flight = False
                self.opened_at = None
                self._transition(CircuitState.CLOSED)
                logger.info(f"{self.name}: Circuit reset to CLOSED")

    def record_failure(self, ticket: Optional[Admission] = None):
        if not self.enabled:
            return
        with self._lock:
            if self.state == CircuitState.HALF_OPEN:
                if not self._is_current_probe(ticket):
                    return
                self.failure_count += 1
                self._probe_in_flight = False
                self.opened_at = self._clock()
                self._transition(CircuitState.OPEN)
                logger.warning(f"{self.name}: Probe failed, circuit OPEN again")
                return

            self.failure_count += 1
            if self.state == CircuitState.CLOSED and self.failure_count >= self.failure_threshold:
                self.opened_at = self._clock()
                self._transition(CircuitState.OPEN)
                logger.warning(f"{self.name}: Circuit OPEN after {self.failure_count} failures")

    def release_probe(self, ticket: Optional[Admission] = None):
        """Give back an admitted probe that never reached the provider."""
        with self._lock:
            if self._is_current_probe(ticket):
                self._probe_in_flight = False

    def reset(self):
        with self._lock:
            self.failure_count = 0
            self.opened_at = None
            self._probe_in_flight = False
            self._transition(CircuitState.CLOSED)
        logger.info(f"{self.name}: Manually reset to CLOSED")

    def get_state(self) -> CircuitState:
        with self._lock:
            self._refresh()
            return self.state

    def get_stats(self) -> dict:
        with self._lock:
            self._refresh()
            success_rate = (self.success_count / self.total_calls * 100) if self.total_calls > 0 else 0

            return {
                "name": self.name,
                "state": self.state.value,
                "failure_count": self.failure_count,
                "success_count": self.success_count,
                "total_calls": self.total_calls,
                "rejected_calls": self.rejected_calls,
                "success_rate": f"{success_rate:.2f}%",
            }


class CircuitBreakerManager:
    """Owns one breaker per provider. Breakers are created up front, never lazily."""

    def __init__(
        self,
        providers: Iterable[ProviderName],
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        config = config or CircuitBreakerConfig()
        self.breakers: Dict[ProviderName, CircuitBreaker] = {
            provider: CircuitBreaker(
                failure_threshold=config.failure_threshold,
                recovery_timeout=config.recovery_timeout,
                name=provider.value,
                enabled=config.enabled,
                clock=clock
            )
            for provider in providers
        }

    def get(self, provider: ProviderName) -> CircuitBreaker:
        return self.breakers[provider]

    def get_all_stats(self) -> dict:
        return {
            provider.value: breaker.get_stats()
            for provider, breaker in self.breakers.items()
        }

    def reset_all(self):
        for breaker in self.breakers.values():
            breaker.reset()
        logger.info("All circuit breakers reset")
