"""Configuration for the blueprint engine.

Process settings come from the environment (``BLUEPRINT_`` prefix or a
``.env`` file). They are turned once into an immutable ``AIServiceConfig``
that every component receives at construction time.
"""

from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when the engine is wired with an invalid configuration."""


class ProviderName(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    LOCAL = "local"


class LoadBalancingStrategy(str, Enum):
    ROUND_ROBIN = "round_robin"
    WEIGHTED = "weighted"
    LEAST_CONNECTIONS = "least_connections"
    LATENCY_BASED = "latency_based"


class RateLimits(BaseModel):
    model_config = ConfigDict(frozen=True)

    requests_per_minute: int = Field(gt=0)
    tokens_per_minute: int = Field(gt=0)


class ProviderConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: ProviderName
    models: List[str] = Field(min_length=1)
    max_tokens: int = Field(gt=0)
    cost_per_token: float = Field(ge=0)
    rate_limits: RateLimits

    def supports(self, model: str) -> bool:
        return model in self.models


class LoadBalancingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    strategy: LoadBalancingStrategy = LoadBalancingStrategy.ROUND_ROBIN
    weights: Dict[ProviderName, float] = Field(default_factory=dict)


class CircuitBreakerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    failure_threshold: int = Field(default=5, gt=0)
    recovery_timeout: float = Field(default=60.0, gt=0)  # seconds


class CachingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    ttl: float = Field(default=3600.0, gt=0)  # seconds
    max_entries: int = Field(default=1000, gt=0)
    key_strategy: Literal["prompt_hash"] = "prompt_hash"
    backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379"


class AlertThresholds(BaseModel):
    model_config = ConfigDict(frozen=True)

    latency: float = 30.0  # seconds
    error_rate: float = 0.1
    cost_per_hour: float = 50.0  # dollars


class MonitoringConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    metrics_enabled: bool = True
    alert_thresholds: AlertThresholds = Field(default_factory=AlertThresholds)


class RetryConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=0)
    base_delay: float = Field(default=1.0, ge=0)  # seconds
    fallback_strategy: Literal["simplified", "none"] = "simplified"


class AIServiceConfig(BaseModel):
    """Immutable configuration object for the process lifetime."""

    model_config = ConfigDict(frozen=True)

    providers: List[ProviderConfig] = Field(min_length=1)
    load_balancing: LoadBalancingConfig = Field(default_factory=LoadBalancingConfig)
    fallback_chain: List[ProviderName] = Field(default_factory=list)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    caching: CachingConfig = Field(default_factory=CachingConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    provider_timeout: float = Field(default=60.0, gt=0)  # seconds per provider call

    @model_validator(mode="after")
    def _check_provider_references(self) -> "AIServiceConfig":
        configured = [p.name for p in self.providers]
        if len(set(configured)) != len(configured):
            raise ValueError("Each provider may only be configured once")

        for name in self.fallback_chain:
            if name not in configured:
                raise ValueError(f"Fallback chain names unconfigured provider: {name.value}")

        for name in self.load_balancing.weights:
            if name not in configured:
                raise ValueError(f"Load balancing weight for unconfigured provider: {name.value}")

        return self

    @property
    def provider_names(self) -> List[ProviderName]:
        return [p.name for p in self.providers]

    @property
    def effective_fallback_chain(self) -> List[ProviderName]:
        return list(self.fallback_chain) or self.provider_names


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BLUEPRINT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    # Providers
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    local_endpoint: Optional[str] = None
    local_models: List[str] = ["llama3"]

    # Dispatch
    load_balancing_strategy: LoadBalancingStrategy = LoadBalancingStrategy.ROUND_ROBIN
    fallback_chain: List[ProviderName] = []
    provider_timeout: float = 60.0

    # Circuit breaker
    circuit_breaker_enabled: bool = True
    failure_threshold: int = 5
    recovery_timeout: float = 60.0

    # Caching
    cache_enabled: bool = True
    cache_ttl: float = 3600.0
    cache_max_entries: int = 1000
    cache_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379"

    # Retries
    retry_max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_fallback_strategy: Literal["simplified", "none"] = "simplified"

    # Progress tracking
    progress_max_age: float = 3600.0
    progress_sweep_interval: float = 60.0

    # Monitoring
    enable_metrics: bool = True
    alert_latency: float = 30.0
    alert_error_rate: float = 0.1
    alert_cost_per_hour: float = 50.0


settings = Settings()


DEFAULT_MODELS = {
    ProviderName.OPENAI: "gpt-4-turbo",
    ProviderName.ANTHROPIC: "claude-3-sonnet-20240229",
}


def get_default_model(provider: ProviderConfig) -> str:
    model = DEFAULT_MODELS.get(provider.name)
    if model and provider.supports(model):
        return model
    return provider.models[0]


def create_ai_service_config(source: Optional[Settings] = None) -> AIServiceConfig:
    """Build the immutable service configuration from process settings."""
    source = source or settings
    providers: List[ProviderConfig] = []

    if source.openai_api_key:
        providers.append(ProviderConfig(
            name=ProviderName.OPENAI,
            models=["gpt-4", "gpt-4-turbo", "gpt-3.5-turbo"],
            max_tokens=8192,
            cost_per_token=0.00003,
            rate_limits=RateLimits(requests_per_minute=500, tokens_per_minute=150000),
        ))

    if source.anthropic_api_key:
        providers.append(ProviderConfig(
            name=ProviderName.ANTHROPIC,
            models=[
                "claude-3-opus-20240229",
                "claude-3-sonnet-20240229",
                "claude-3-haiku-20240307",
            ],
            max_tokens=4096,
            cost_per_token=0.000015,
            rate_limits=RateLimits(requests_per_minute=1000, tokens_per_minute=200000),
        ))

    if source.local_endpoint:
        providers.append(ProviderConfig(
            name=ProviderName.LOCAL,
            models=source.local_models,
            max_tokens=4096,
            cost_per_token=0.0,
            rate_limits=RateLimits(requests_per_minute=60, tokens_per_minute=100000),
        ))

    if not providers:
        raise ConfigurationError(
            "No AI service providers configured. Set BLUEPRINT_OPENAI_API_KEY, "
            "BLUEPRINT_ANTHROPIC_API_KEY or BLUEPRINT_LOCAL_ENDPOINT."
        )

    return AIServiceConfig(
        providers=providers,
        load_balancing=LoadBalancingConfig(strategy=source.load_balancing_strategy),
        fallback_chain=source.fallback_chain or [p.name for p in providers],
        circuit_breaker=CircuitBreakerConfig(
            enabled=source.circuit_breaker_enabled,
            failure_threshold=source.failure_threshold,
            recovery_timeout=source.recovery_timeout,
        ),
        caching=CachingConfig(
            enabled=source.cache_enabled,
            ttl=source.cache_ttl,
            max_entries=source.cache_max_entries,
            backend=source.cache_backend,
            redis_url=source.redis_url,
        ),
        monitoring=MonitoringConfig(
            metrics_enabled=source.enable_metrics,
            alert_thresholds=AlertThresholds(
                latency=source.alert_latency,
                error_rate=source.alert_error_rate,
                cost_per_hour=source.alert_cost_per_hour,
            ),
        ),
        retry=RetryConfig(
            max_retries=source.retry_max_retries,
            base_delay=source.retry_base_delay,
            fallback_strategy=source.retry_fallback_strategy,
        ),
        provider_timeout=source.provider_timeout,
    )
