"""Engine wiring tests."""
import logging

import pytest

from blueprint_engine.config import ConfigurationError, ProviderName, Settings
from blueprint_engine.main import BlueprintEngine, configure_logging
from blueprint_engine.models.blueprint import BlueprintRequest
from blueprint_engine.reliability.retry_strategy import FallbackStrategy

from conftest import ScriptedProvider, blueprint_script


def make_settings(**kwargs):
    kwargs.setdefault("openai_api_key", "sk-test")
    return Settings(_env_file=None, **kwargs)


def test_engine_wires_components_from_settings():
    """Settings flow into the manager, tracker and retry options."""
    engine = BlueprintEngine(
        [ScriptedProvider(ProviderName.OPENAI)],
        make_settings(retry_max_retries=1, retry_fallback_strategy="none", progress_max_age=120)
    )

    assert engine.manager.get_available_providers() == [ProviderName.OPENAI]
    assert engine.orchestrator.progress is engine.progress
    assert engine.orchestrator.retry_options.max_retries == 1
    assert engine.orchestrator.retry_options.fallback_strategy == FallbackStrategy.NONE
    assert engine.progress.max_age == 120


def test_engine_requires_clients_for_configured_providers():
    """A configured provider without a client fails construction."""
    with pytest.raises(ConfigurationError):
        BlueprintEngine([ScriptedProvider(ProviderName.OPENAI)], make_settings(anthropic_api_key="sk-ant"))


@pytest.mark.asyncio
async def test_engine_lifecycle_runs_generation(idea):
    """The engine starts the sweeper, generates a blueprint and shuts down cleanly."""
    client = ScriptedProvider(ProviderName.OPENAI, script=blueprint_script())
    engine = BlueprintEngine([client], make_settings())

    async with engine:
        assert engine.progress.is_running
        blueprint = await engine.orchestrator.generate_blueprint(BlueprintRequest(idea=idea))

    assert not engine.progress.is_running
    assert blueprint.validation.score == 100


def test_configure_logging_tolerates_level_names():
    """Lowercase and unknown level names do not break logging setup."""
    configure_logging(make_settings(log_level="debug"))
    configure_logging(make_settings(log_level="verbose"))

    logging.getLogger("blueprint_engine").info("logging configured")


def test_engine_stats_include_progress():
    """Engine stats combine dispatch stats with progress tracking."""
    engine = BlueprintEngine([ScriptedProvider(ProviderName.OPENAI)], make_settings())
    engine.progress.update_progress("gen-1", percentage=10)

    stats = engine.get_stats()

    assert "circuit_breakers" in stats
    assert stats["progress"]["active_generations"] == ["gen-1"]
