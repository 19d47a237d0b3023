import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Deque, Dict, List, Optional, Tuple
import logging

from prometheus_client import Counter, Histogram

from ..config import AlertThresholds

logger = logging.getLogger(__name__)

# Define metrics
ai_requests = Counter(
    'blueprint_ai_requests_total',
    'Total AI requests dispatched to providers',
    ['provider', 'status']
)

tokens_used = Counter(
    'blueprint_tokens_total',
    'Total tokens used',
    ['model', 'provider']
)

api_cost = Counter(
    'blueprint_api_cost_dollars',
    'Total API cost in dollars',
    ['model', 'provider']
)

cache_hits = Counter(
    'blueprint_cache_hits_total',
    'Total response cache hits',
    ['provider']
)

cache_misses = Counter(
    'blueprint_cache_misses_total',
    'Total response cache misses',
    ['provider']
)

model_latency = Histogram(
    'blueprint_model_latency_seconds',
    'Provider response latency',
    ['model', 'provider'],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0]
)

error_count = Counter(
    'blueprint_errors_total',
    'Total classified errors',
    ['error_code', 'provider']
)

circuit_transitions = Counter(
    'blueprint_circuit_transitions_total',
    'Circuit breaker state transitions',
    ['provider', 'state']
)

generation_duration = Histogram(
    'blueprint_generation_duration_seconds',
    'Wall-clock time of full blueprint generations',
    buckets=[5.0, 15.0, 30.0, 60.0, 120.0, 300.0]
)

# Error rate is only meaningful after a handful of requests
MIN_ERROR_RATE_SAMPLE = 10


@dataclass
class ProviderUsage:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    cache_hits: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    average_latency: float = 0.0
    last_updated: Optional[datetime] = None

    @property
    def error_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.failed_requests / self.total_requests


@dataclass
class Alert:
    metric: str
    provider: str
    value: float
    threshold: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def message(self) -> str:
        return (
            f"Threshold exceeded for {self.provider}: "
            f"{self.metric} = {self.value:.4f} (threshold: {self.threshold})"
        )


class UsageTracker:
    """Post-hoc usage and cost accounting from provider-reported usage."""

    def __init__(
        self,
        thresholds: Optional[AlertThresholds] = None,
        metrics_enabled: bool = True,
        clock: Callable[[], float] = time.time
    ):
        self.thresholds = thresholds or AlertThresholds()
        self.metrics_enabled = metrics_enabled
        self._clock = clock
        self._lock = threading.Lock()
        self._usage: Dict[str, ProviderUsage] = {}
        self._cost_window: Deque[Tuple[float, float]] = deque()
        self.alerts: Deque[Alert] = deque(maxlen=100)

    def _get(self, provider: str) -> ProviderUsage:
        if provider not in self._usage:
            self._usage[provider] = ProviderUsage()
        return self._usage[provider]

    def record_success(
        self,
        provider: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        cost: float,
        latency: float
    ) -> List[Alert]:
        with self._lock:
            usage = self._get(provider)
            usage.total_requests += 1
            usage.successful_requests += 1
            usage.prompt_tokens += prompt_tokens
            usage.completion_tokens += completion_tokens
            usage.total_tokens += prompt_tokens + completion_tokens
            usage.total_cost += cost
            self._update_latency(usage, latency)
            usage.last_updated = datetime.now(timezone.utc)
            self._cost_window.append((self._clock(), cost))
            alerts = self._check_thresholds(provider, usage, latency)

        if self.metrics_enabled:
            ai_requests.labels(provider=provider, status="success").inc()
            tokens_used.labels(model=model, provider=provider).inc(prompt_tokens + completion_tokens)
            api_cost.labels(model=model, provider=provider).inc(cost)
            model_latency.labels(model=model, provider=provider).observe(latency)
        return alerts

    def record_failure(self, provider: str, error_code: str, latency: float = 0.0) -> List[Alert]:
        with self._lock:
            usage = self._get(provider)
            usage.total_requests += 1
            usage.failed_requests += 1
            usage.last_updated = datetime.now(timezone.utc)
            alerts = self._check_thresholds(provider, usage, latency)

        if self.metrics_enabled:
            ai_requests.labels(provider=provider, status="failure").inc()
            error_count.labels(error_code=error_code, provider=provider).inc()
        return alerts

    def record_cache_hit(self, provider: str):
        """Cache hits are counted but add no marginal cost or tokens."""
        with self._lock:
            usage = self._get(provider)
            usage.cache_hits += 1
            usage.last_updated = datetime.now(timezone.utc)

        if self.metrics_enabled:
            cache_hits.labels(provider=provider).inc()

    def record_cache_miss(self, provider: str):
        if self.metrics_enabled:
            cache_misses.labels(provider=provider).inc()

    @staticmethod
    def _update_latency(usage: ProviderUsage, latency: float):
        # Exponential moving average, same smoothing as the provider metrics
        if usage.average_latency == 0:
            usage.average_latency = latency
        else:
            usage.average_latency = usage.average_latency * 0.9 + latency * 0.1

    def _hourly_cost(self) -> float:
        cutoff = self._clock() - 3600
        while self._cost_window and self._cost_window[0][0] < cutoff:
            self._cost_window.popleft()
        return sum(cost for _, cost in self._cost_window)

    def _check_thresholds(self, provider: str, usage: ProviderUsage, latency: float) -> List[Alert]:
        alerts = []

        if latency > self.thresholds.latency:
            alerts.append(Alert("latency", provider, latency, self.thresholds.latency))

        if usage.total_requests >= MIN_ERROR_RATE_SAMPLE and usage.error_rate > self.thresholds.error_rate:
            alerts.append(Alert("error_rate", provider, usage.error_rate, self.thresholds.error_rate))

        hourly_cost = self._hourly_cost()
        if hourly_cost > self.thresholds.cost_per_hour:
            alerts.append(Alert("cost_per_hour", provider, hourly_cost, self.thresholds.cost_per_hour))

        for alert in alerts:
            logger.warning(alert.message)
            self.alerts.append(alert)
        return alerts

    def get_usage(self, provider: str) -> ProviderUsage:
        with self._lock:
            usage = self._get(provider)
            return ProviderUsage(**usage.__dict__)

    def get_stats(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            return {
                provider: {
                    "total_requests": usage.total_requests,
                    "successful_requests": usage.successful_requests,
                    "failed_requests": usage.failed_requests,
                    "cache_hits": usage.cache_hits,
                    "total_tokens": usage.total_tokens,
                    "total_cost": round(usage.total_cost, 6),
                    "average_latency": round(usage.average_latency, 4),
                    "error_rate": round(usage.error_rate, 4),
                }
                for provider, usage in self._usage.items()
            }
