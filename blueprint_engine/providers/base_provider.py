"""Uniform provider capability and the typed registry that holds the clients."""

from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Mapping, Optional, Tuple, Union

from ..config import AIServiceConfig, ConfigurationError, ProviderConfig, ProviderName
from ..models.ai import Completion


class ProviderClient(ABC):
    """Abstract base class for AI completion vendors.

    Implementations wrap one vendor API and raise on transport or provider
    errors. An exception with a ``code`` attribute (``TIMEOUT``,
    ``RATE_LIMIT``, ``SERVICE_UNAVAILABLE``...) is classified by code,
    anything else by message.
    """

    @property
    @abstractmethod
    def name(self) -> ProviderName:
        """Return provider name."""
        pass

    @abstractmethod
    async def complete(
        self,
        model: str,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000
    ) -> Completion:
        """Generate a completion for the prompt."""
        pass

    async def test_connection(self) -> bool:
        """Lightweight, no-cost reachability probe (e.g. listing models)."""
        return True

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name.value})"


class ProviderRegistry:
    """Maps each configured provider to its config and client.

    Built once from the service config; a configured provider without a client,
    or a client for a provider that is not configured, fails construction.
    """

    def __init__(self, config: AIServiceConfig, clients: Union[Mapping[ProviderName, ProviderClient], List[ProviderClient]]):
        if not isinstance(clients, Mapping):
            clients = {client.name: client for client in clients}

        self._entries: Dict[ProviderName, Tuple[ProviderConfig, ProviderClient]] = {}

        for name, client in clients.items():
            name = self.coerce(name)
            if client.name != name:
                raise ConfigurationError(
                    f"Client {client!r} registered under mismatched provider {name.value}"
                )
            if name not in config.provider_names:
                raise ConfigurationError(f"Client supplied for unconfigured provider: {name.value}")

        for provider in config.providers:
            client = clients.get(provider.name)
            if client is None:
                raise ConfigurationError(f"No client available for provider: {provider.name.value}")
            self._entries[provider.name] = (provider, client)

    @staticmethod
    def coerce(name: Union[str, ProviderName]) -> ProviderName:
        try:
            return ProviderName(name)
        except ValueError:
            raise ConfigurationError(f"Unknown provider: {name}") from None

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[ProviderName]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def names(self) -> List[ProviderName]:
        return list(self._entries)

    def get_config(self, name: ProviderName) -> ProviderConfig:
        return self._lookup(name)[0]

    def get_client(self, name: ProviderName) -> ProviderClient:
        return self._lookup(name)[1]

    def _lookup(self, name: Union[str, ProviderName]) -> Tuple[ProviderConfig, ProviderClient]:
        name = self.coerce(name)
        if name not in self._entries:
            raise ConfigurationError(f"Provider not registered: {name.value}")
        return self._entries[name]

    def supporting(self, model: str) -> List[ProviderName]:
        return [name for name, (config, _) in self._entries.items() if config.supports(model)]
