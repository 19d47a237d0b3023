"""Single entry point for "make one AI request".

Wraps every provider client with the response cache, the rate limiter and
the circuit breaker, picks a provider through the load balancer and walks
the fallback chain when the chosen one fails.
"""

import asyncio
import time
from typing import Callable, Dict, List, Mapping, Optional, Union
import logging

from ..cache.cache_manager import ResponseCache
from ..config import AIServiceConfig, ConfigurationError, ProviderName, get_default_model
from ..models.ai import RequestSpec, ResponseEnvelope, ResponseMetadata, Usage
from ..monitoring.metrics import UsageTracker
from ..providers.base_provider import ProviderClient, ProviderRegistry
from ..reliability.cancellation import CancellationToken, GenerationCancelled, run_cancellable
from ..reliability.circuit_breaker import CircuitBreakerManager
from ..reliability.errors import BlueprintError, ErrorCode, classify, make_error
from ..tenancy.rate_limiter import RateLimiter
from .fallback_manager import FallbackChain
from .load_balancer import LoadBalancer

logger = logging.getLogger(__name__)

CONNECTION_TEST_TIMEOUT = 10.0


class AIServiceManager:
    def __init__(
        self,
        config: AIServiceConfig,
        clients: Union[Mapping[ProviderName, ProviderClient], List[ProviderClient]],
        rate_limiter: Optional[RateLimiter] = None,
        circuit_breakers: Optional[CircuitBreakerManager] = None,
        cache: Optional[ResponseCache] = None,
        usage: Optional[UsageTracker] = None,
        load_balancer: Optional[LoadBalancer] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.config = config
        self.registry = ProviderRegistry(config, clients)
        self.rate_limiter = rate_limiter or RateLimiter(config.providers, clock=clock)
        self.circuit_breakers = circuit_breakers or CircuitBreakerManager(
            config.provider_names, config.circuit_breaker, clock=clock
        )
        self.cache = cache or ResponseCache.from_config(config.caching, clock=clock)
        self.usage = usage or UsageTracker(
            config.monitoring.alert_thresholds,
            metrics_enabled=config.monitoring.metrics_enabled
        )
        self.load_balancer = load_balancer or LoadBalancer(config.provider_names, config.load_balancing)
        self.fallback_chain = FallbackChain(config.effective_fallback_chain)
        self.provider_timeout = config.provider_timeout
        self._clock = clock

    async def dispatch(self, request: RequestSpec, token: Optional[CancellationToken] = None) -> ResponseEnvelope:
        """Run one request and return an envelope.

        Ordinary failures come back as failed envelopes carrying the last
        classified error. Only wiring mistakes (unregistered provider, a
        model no provider serves) raise ``ConfigurationError``, and
        cancellation raises ``GenerationCancelled``.
        """
        candidates = self._plan(request)
        attempted: List[ProviderName] = []
        last_error: Optional[BlueprintError] = None

        for provider in candidates:
            if token is not None:
                token.raise_if_cancelled()

            if attempted:
                self.fallback_chain.record_fallback(attempted[-1], provider)
            attempted.append(provider)

            envelope = await self._attempt(provider, request, token, tuple(attempted))
            if envelope.success:
                return envelope

            last_error = envelope.error
            logger.warning(
                f"Provider {provider.value} failed with {last_error.code.value}: {last_error.detail}"
            )

        if last_error is None:
            last_error = make_error(ErrorCode.AI_SERVICE_UNAVAILABLE, "No provider attempted")

        logger.error(
            f"All providers failed for request "
            f"(tried: {', '.join(p.value for p in attempted)}); last error {last_error.code.value}"
        )
        return ResponseEnvelope.failure(
            last_error,
            provider=attempted[-1] if attempted else request.provider,
            model=request.model,
            attempted_providers=tuple(attempted),
        )

    def _plan(self, request: RequestSpec) -> List[ProviderName]:
        if request.model is not None:
            eligible = self.registry.supporting(request.model)
        else:
            eligible = self.registry.names()

        if request.provider is not None:
            if request.provider not in self.registry:
                raise ConfigurationError(f"No client available for provider: {request.provider.value}")
            if request.model is not None and request.provider not in eligible:
                raise ConfigurationError(
                    f"Provider {request.provider.value} does not support model {request.model}"
                )
            primary = request.provider
        else:
            if not eligible:
                raise ConfigurationError(f"No configured provider supports model {request.model}")
            closed = [p for p in eligible if not self.circuit_breakers.get(p).is_open()]
            primary = self.load_balancer.select(closed)

        return self.fallback_chain.candidates(primary, eligible)

    async def _attempt(
        self,
        provider: ProviderName,
        request: RequestSpec,
        token: Optional[CancellationToken],
        attempted: tuple
    ) -> ResponseEnvelope:
        provider_config = self.registry.get_config(provider)
        model = request.model or get_default_model(provider_config)
        max_tokens = min(request.max_tokens, provider_config.max_tokens)

        cache_key = None
        if request.cache:
            cache_key = ResponseCache.generate_key(request, provider.value, model)
            cached = await self.cache.get(cache_key)
            if cached is not None:
                self.usage.record_cache_hit(provider.value)
                logger.debug(f"Cache hit for {provider.value}/{model}")
                return cached.model_copy(update={
                    "usage": cached.usage.model_copy(update={"cost": 0.0}),
                    "metadata": cached.metadata.model_copy(update={
                        "cached": True,
                        "attempted_providers": attempted,
                    }),
                })
            self.usage.record_cache_miss(provider.value)

        estimated_tokens = request.estimated_tokens(max_tokens)
        if not self.rate_limiter.allow(provider, estimated_tokens):
            logger.info(f"Local rate limit reached for {provider.value}")
            return ResponseEnvelope.failure(
                make_error(ErrorCode.AI_SERVICE_RATE_LIMIT, f"Local rate limit reached for {provider.value}"),
                provider=provider, model=model, attempted_providers=attempted,
            )

        breaker = self.circuit_breakers.get(provider)
        admission = breaker.allow_request()
        if admission is None:
            self.rate_limiter.release(provider, estimated_tokens)
            return ResponseEnvelope.failure(
                make_error(ErrorCode.CIRCUIT_OPEN, f"Circuit breaker is open for provider: {provider.value}"),
                provider=provider, model=model, attempted_providers=attempted,
            )

        client = self.registry.get_client(provider)
        self.load_balancer.mark_request_start(provider)
        start_time = self._clock()

        try:
            completion = await run_cancellable(
                asyncio.wait_for(
                    client.complete(
                        model=model,
                        prompt=request.prompt,
                        system_prompt=request.system_prompt,
                        temperature=request.temperature,
                        max_tokens=max_tokens,
                    ),
                    timeout=self.provider_timeout,
                ),
                token,
            )
            if not completion.text or not completion.text.strip():
                raise ValueError("Provider returned an invalid empty completion")
        except GenerationCancelled:
            breaker.release_probe(admission)
            self.load_balancer.mark_request_end(provider, self._clock() - start_time, success=False)
            raise
        except Exception as e:
            latency = self._clock() - start_time
            error = classify(e)
            breaker.record_failure(admission)
            self.load_balancer.mark_request_end(provider, latency, success=False)
            self.usage.record_failure(provider.value, error.code.value, latency)
            return ResponseEnvelope.failure(
                error, provider=provider, model=model, attempted_providers=attempted,
            )

        latency = self._clock() - start_time
        total_tokens = completion.prompt_tokens + completion.completion_tokens
        cost = completion.cost if completion.cost is not None else total_tokens * provider_config.cost_per_token

        breaker.record_success(admission)
        self.load_balancer.mark_request_end(provider, latency, success=True)
        self.rate_limiter.record_usage(provider, total_tokens)
        self.usage.record_success(
            provider.value, model, completion.prompt_tokens, completion.completion_tokens, cost, latency
        )

        envelope = ResponseEnvelope(
            success=True,
            text=completion.text,
            usage=Usage(
                prompt_tokens=completion.prompt_tokens,
                completion_tokens=completion.completion_tokens,
                total_tokens=total_tokens,
                cost=cost,
            ),
            metadata=ResponseMetadata(
                provider=provider,
                model=model,
                latency=latency,
                attempted_providers=attempted,
            ),
        )

        if cache_key is not None:
            await self.cache.put(cache_key, envelope)

        return envelope

    async def generate_text(
        self,
        prompt: str,
        provider: Optional[ProviderName] = None,
        model: Optional[str] = None,
        token: Optional[CancellationToken] = None,
        **kwargs
    ) -> str:
        """Convenience wrapper: returns the text or raises the classified error."""
        response = await self.dispatch(
            RequestSpec(provider=provider, model=model, prompt=prompt, **kwargs),
            token=token,
        )
        if response.success:
            return response.text
        raise response.error

    async def test_connections(self) -> Dict[str, bool]:
        async def probe(provider: ProviderName) -> bool:
            client = self.registry.get_client(provider)
            try:
                return bool(await asyncio.wait_for(
                    client.test_connection(),
                    timeout=min(self.provider_timeout, CONNECTION_TEST_TIMEOUT)
                ))
            except Exception as e:
                logger.warning(f"Connection test failed for {provider.value}: {e}")
                return False

        providers = self.registry.names()
        results = await asyncio.gather(*(probe(p) for p in providers))
        return {provider.value: result for provider, result in zip(providers, results)}

    def get_available_providers(self) -> List[ProviderName]:
        return self.registry.names()

    def get_provider_status(self, provider: ProviderName) -> Dict[str, bool]:
        if provider not in self.registry:
            return {"available": False, "rate_limited": False, "circuit_breaker_open": False}

        return {
            "available": True,
            "rate_limited": self.rate_limiter.is_limited(provider),
            "circuit_breaker_open": self.circuit_breakers.get(provider).is_open(),
        }

    def get_stats(self) -> Dict[str, object]:
        return {
            "circuit_breakers": self.circuit_breakers.get_all_stats(),
            "rate_limits": self.rate_limiter.get_stats(),
            "load_balancer": self.load_balancer.get_stats(),
            "fallback": self.fallback_chain.get_stats(),
            "cache": self.cache.get_stats(),
            "usage": self.usage.get_stats(),
        }
