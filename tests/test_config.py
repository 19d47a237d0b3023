"""Configuration tests."""
import pytest
from pydantic import ValidationError

from blueprint_engine.config import (
    ConfigurationError,
    LoadBalancingConfig,
    LoadBalancingStrategy,
    ProviderName,
    Settings,
    create_ai_service_config,
    get_default_model
)

from conftest import make_provider_config, make_service_config


def test_config_from_settings_includes_configured_providers():
    """Only providers with credentials become ProviderConfigs."""
    source = Settings(_env_file=None, openai_api_key="sk-test", local_endpoint="http://localhost:11434")
    config = create_ai_service_config(source)

    assert config.provider_names == [ProviderName.OPENAI, ProviderName.LOCAL]
    assert config.effective_fallback_chain == [ProviderName.OPENAI, ProviderName.LOCAL]
    assert config.circuit_breaker.failure_threshold == 5
    assert config.caching.ttl == 3600.0
    assert config.retry.fallback_strategy == "simplified"


def test_config_without_providers_fails():
    """No credentials at all is a configuration error."""
    with pytest.raises(ConfigurationError):
        create_ai_service_config(Settings(_env_file=None))


def test_fallback_chain_must_name_configured_providers():
    """Fallback chain entries must reference configured providers."""
    with pytest.raises(ValidationError):
        make_service_config(fallback_chain=[ProviderName.LOCAL])


def test_weights_must_name_configured_providers():
    """Load balancing weights must reference configured providers."""
    with pytest.raises(ValidationError):
        make_service_config(load_balancing=LoadBalancingConfig(
            strategy=LoadBalancingStrategy.WEIGHTED,
            weights={ProviderName.LOCAL: 2.0}
        ))


def test_duplicate_providers_rejected():
    """A provider may only be configured once."""
    with pytest.raises(ValidationError):
        make_service_config(providers=[
            make_provider_config(ProviderName.OPENAI),
            make_provider_config(ProviderName.OPENAI),
        ])


def test_config_is_immutable(service_config):
    """The service config cannot be changed after construction."""
    with pytest.raises(ValidationError):
        service_config.provider_timeout = 10.0


def test_default_model_selection():
    """Preset default is used when supported, else the first listed model."""
    assert get_default_model(make_provider_config(ProviderName.OPENAI, ["gpt-4", "gpt-4-turbo"])) == "gpt-4-turbo"
    assert get_default_model(make_provider_config(ProviderName.OPENAI, ["gpt-4"])) == "gpt-4"
    assert get_default_model(make_provider_config(ProviderName.LOCAL, ["llama3", "mistral"])) == "llama3"
