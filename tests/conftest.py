"""Global test configuration and fixtures."""
import json
from typing import List, Optional, Union

import pytest

from blueprint_engine.config import (
    AIServiceConfig,
    CachingConfig,
    CircuitBreakerConfig,
    ProviderConfig,
    ProviderName,
    RateLimits
)
from blueprint_engine.models.ai import Completion
from blueprint_engine.providers.base_provider import ProviderClient


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class ScriptedProvider(ProviderClient):
    """Provider client that replays a script of completions and exceptions.

    Once the script is exhausted the ``default`` reply is returned forever.
    """

    def __init__(
        self,
        name: ProviderName,
        script: Optional[List[Union[str, Completion, Exception]]] = None,
        default: Union[str, Completion, Exception, None] = "ok",
        connected: bool = True
    ):
        self._name = name
        self.script = list(script or [])
        self.default = default
        self.connected = connected
        self.calls: List[dict] = []

    @property
    def name(self) -> ProviderName:
        return self._name

    async def complete(self, model, prompt, system_prompt=None, temperature=0.7, max_tokens=1000):
        self.calls.append({
            "model": model,
            "prompt": prompt,
            "system_prompt": system_prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        reply = self.script.pop(0) if self.script else self.default
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, Completion):
            return reply
        return Completion(text=reply, prompt_tokens=10, completion_tokens=20)

    async def test_connection(self) -> bool:
        if isinstance(self.connected, Exception):
            raise self.connected
        return self.connected


class CodedError(Exception):
    """Transport error carrying a vendor error code."""

    def __init__(self, message: str, code: str):
        super().__init__(message)
        self.code = code


def make_provider_config(
    name: ProviderName,
    models: Optional[List[str]] = None,
    requests_per_minute: int = 1000,
    tokens_per_minute: int = 1_000_000,
    cost_per_token: float = 0.001
) -> ProviderConfig:
    return ProviderConfig(
        name=name,
        models=models or [f"{name.value}-model"],
        max_tokens=4096,
        cost_per_token=cost_per_token,
        rate_limits=RateLimits(
            requests_per_minute=requests_per_minute,
            tokens_per_minute=tokens_per_minute
        ),
    )


def make_service_config(**overrides) -> AIServiceConfig:
    data = {
        "providers": [
            make_provider_config(ProviderName.OPENAI, ["gpt-4-turbo", "gpt-4"]),
            make_provider_config(ProviderName.ANTHROPIC, ["claude-3-sonnet-20240229"]),
        ],
        "fallback_chain": [ProviderName.OPENAI, ProviderName.ANTHROPIC],
        "circuit_breaker": CircuitBreakerConfig(failure_threshold=3, recovery_timeout=30.0),
        "caching": CachingConfig(enabled=True, ttl=60.0),
        "provider_timeout": 5.0,
    }
    data.update(overrides)
    return AIServiceConfig(**data)


SECTION_PAYLOADS = {
    "product_plan": {
        "target_audience": {"primary": "Freelance designers"},
        "core_features": [
            {"name": "AI portfolio review", "description": "Uses AI to critique portfolios"},
            {"name": "Client CRM", "description": "Track leads and invoices"},
        ],
        "monetization": {"primary_model": "subscription"},
    },
    "tech_stack": {
        "frontend": [{"name": "React"}],
        "backend": [{"name": "FastAPI"}],
        "database": [{"name": "PostgreSQL"}],
    },
    "ai_workflow": {
        "nodes": [{"id": "n1", "type": "input"}, {"id": "n2", "type": "ai-model"}],
        "edges": [{"id": "e1", "source": "n1", "target": "n2"}],
    },
    "roadmap": {
        "phases": [{"name": "MVP", "tasks": [{"name": "Auth"}]}],
        "milestones": [{"name": "Launch"}],
    },
    "financial_model": {
        "costs": {"infrastructure": [{"item": "Hosting", "monthly_amount": 100}]},
        "revenue": {"projections": [{"month": 1, "revenue": 1000}]},
    },
}

SECTION_SEQUENCE = ["product_plan", "tech_stack", "ai_workflow", "roadmap", "financial_model"]


def section_reply(section: str, cost: float = 0.01) -> Completion:
    return Completion(
        text=json.dumps(SECTION_PAYLOADS[section]),
        prompt_tokens=100,
        completion_tokens=200,
        cost=cost,
    )


def blueprint_script() -> List[Completion]:
    return [section_reply(section) for section in SECTION_SEQUENCE]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service_config():
    return make_service_config()


@pytest.fixture
def openai_client():
    return ScriptedProvider(ProviderName.OPENAI)


@pytest.fixture
def anthropic_client():
    return ScriptedProvider(ProviderName.ANTHROPIC)


@pytest.fixture
def idea():
    return "A marketplace that matches freelance designers with small businesses needing branding"
