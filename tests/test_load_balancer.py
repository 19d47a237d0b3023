"""Load balancer tests."""
from blueprint_engine.config import LoadBalancingConfig, LoadBalancingStrategy, ProviderName
from blueprint_engine.orchestration.fallback_manager import FallbackChain
from blueprint_engine.orchestration.load_balancer import LoadBalancer

OPENAI = ProviderName.OPENAI
ANTHROPIC = ProviderName.ANTHROPIC
LOCAL = ProviderName.LOCAL
PROVIDERS = [OPENAI, ANTHROPIC, LOCAL]


def make_balancer(strategy, weights=None):
    return LoadBalancer(PROVIDERS, LoadBalancingConfig(strategy=strategy, weights=weights or {}))


def test_round_robin_rotates_through_candidates():
    """Round robin cycles through the eligible providers."""
    balancer = make_balancer(LoadBalancingStrategy.ROUND_ROBIN)

    assert [balancer.select([OPENAI, ANTHROPIC]) for _ in range(4)] == [OPENAI, ANTHROPIC, OPENAI, ANTHROPIC]


def test_no_candidates_returns_none():
    """An empty candidate list selects nothing."""
    assert make_balancer(LoadBalancingStrategy.ROUND_ROBIN).select([]) is None


def test_least_connections_prefers_idle_provider():
    """The provider with fewest active requests wins."""
    balancer = make_balancer(LoadBalancingStrategy.LEAST_CONNECTIONS)
    balancer.mark_request_start(OPENAI)
    balancer.mark_request_start(ANTHROPIC)

    assert balancer.select(PROVIDERS) == LOCAL

    balancer.mark_request_end(OPENAI, latency=0.1)
    assert balancer.select([OPENAI, ANTHROPIC]) == OPENAI


def test_weighted_never_picks_zero_weight():
    """A zero-weight provider is never selected while others have weight."""
    balancer = make_balancer(LoadBalancingStrategy.WEIGHTED, {OPENAI: 0.0, ANTHROPIC: 1.0})

    assert {balancer.select([OPENAI, ANTHROPIC]) for _ in range(50)} == {ANTHROPIC}


def test_latency_based_measures_untried_first_then_fastest():
    """Untried providers are picked first, then the lowest average latency."""
    balancer = make_balancer(LoadBalancingStrategy.LATENCY_BASED)

    for provider, latency in [(OPENAI, 2.0), (ANTHROPIC, 0.5)]:
        assert balancer.select([OPENAI, ANTHROPIC]) == provider
        balancer.mark_request_start(provider)
        balancer.mark_request_end(provider, latency)

    assert balancer.select([OPENAI, ANTHROPIC]) == ANTHROPIC


def test_stats_track_errors():
    """Failed requests are counted per provider."""
    balancer = make_balancer(LoadBalancingStrategy.ROUND_ROBIN)
    balancer.mark_request_start(OPENAI)
    balancer.mark_request_end(OPENAI, latency=1.0, success=False)

    stats = balancer.get_stats()
    assert stats["strategy"] == "round_robin"
    assert stats["providers"]["openai"]["error_count"] == 1
    assert stats["providers"]["openai"]["active_connections"] == 0


def test_fallback_chain_orders_primary_first():
    """The chosen provider leads, followed by chain order restricted to eligible ones."""
    chain = FallbackChain([OPENAI, ANTHROPIC, LOCAL])

    assert chain.candidates(ANTHROPIC, [OPENAI, ANTHROPIC, LOCAL]) == [ANTHROPIC, OPENAI, LOCAL]
    assert chain.candidates(None, [ANTHROPIC, LOCAL]) == [ANTHROPIC, LOCAL]
    assert chain.candidates(LOCAL, [LOCAL]) == [LOCAL]


def test_fallback_chain_counts_fallbacks():
    """Each fallback hop is counted for the receiving provider."""
    chain = FallbackChain([OPENAI, ANTHROPIC])
    chain.record_fallback(OPENAI, ANTHROPIC)

    assert chain.get_stats()["fallbacks_served"] == {"openai": 0, "anthropic": 1}
