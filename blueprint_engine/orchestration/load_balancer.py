from typing import Dict, List, Optional, Any
import random
import threading
import logging

from ..config import LoadBalancingConfig, LoadBalancingStrategy, ProviderName

logger = logging.getLogger(__name__)


class LoadBalancer:
    """Picks one provider out of the currently eligible candidates.

    Eligibility (model support, circuit state) is decided by the caller; the
    balancer only spreads load across what it is given.
    """

    def __init__(self, providers: List[ProviderName], config: Optional[LoadBalancingConfig] = None):
        config = config or LoadBalancingConfig()
        self.providers = list(providers)
        self.strategy = config.strategy
        self.weights = dict(config.weights)
        self.provider_stats: Dict[ProviderName, Dict[str, Any]] = {}
        self.current_index = 0
        self._lock = threading.Lock()
        self._init_stats()

    def _init_stats(self):
        for provider in self.providers:
            self.provider_stats[provider] = {
                "requests": 0,
                "active_connections": 0,
                "total_latency": 0.0,
                "error_count": 0,
                "weight": self.weights.get(provider, 1.0)
            }

    def select(self, candidates: List[ProviderName]) -> Optional[ProviderName]:
        if not candidates:
            logger.error("No eligible providers available")
            return None

        with self._lock:
            if self.strategy == LoadBalancingStrategy.ROUND_ROBIN:
                return self._round_robin_select(candidates)
            elif self.strategy == LoadBalancingStrategy.LEAST_CONNECTIONS:
                return self._least_connections_select(candidates)
            elif self.strategy == LoadBalancingStrategy.WEIGHTED:
                return self._weighted_select(candidates)
            elif self.strategy == LoadBalancingStrategy.LATENCY_BASED:
                return self._latency_based_select(candidates)
            else:
                return random.choice(candidates)

    def _round_robin_select(self, providers: List[ProviderName]) -> ProviderName:
        provider = providers[self.current_index % len(providers)]
        self.current_index += 1
        return provider

    def _least_connections_select(self, providers: List[ProviderName]) -> ProviderName:
        return min(providers, key=lambda p: self.provider_stats[p]["active_connections"])

    def _weighted_select(self, providers: List[ProviderName]) -> ProviderName:
        weights = [self.provider_stats[p]["weight"] for p in providers]
        if not any(w > 0 for w in weights):
            return providers[0]
        return random.choices(providers, weights=weights, k=1)[0]

    def _latency_based_select(self, providers: List[ProviderName]) -> ProviderName:
        # Untried providers are measured first
        for provider in providers:
            if self.provider_stats[provider]["requests"] == 0:
                return provider

        return min(
            providers,
            key=lambda p: self.provider_stats[p]["total_latency"] / self.provider_stats[p]["requests"]
        )

    def mark_request_start(self, provider: ProviderName):
        with self._lock:
            self.provider_stats[provider]["active_connections"] += 1
            self.provider_stats[provider]["requests"] += 1

    def mark_request_end(self, provider: ProviderName, latency: float, success: bool = True):
        with self._lock:
            stats = self.provider_stats[provider]
            stats["active_connections"] = max(0, stats["active_connections"] - 1)
            stats["total_latency"] += latency
            if not success:
                stats["error_count"] += 1

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "strategy": self.strategy.value,
                "providers": {p.value: dict(s) for p, s in self.provider_stats.items()},
                "total_providers": len(self.providers)
            }
