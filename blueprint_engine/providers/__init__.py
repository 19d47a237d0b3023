from .base_provider import ProviderClient, ProviderRegistry

__all__ = [
    "ProviderClient",
    "ProviderRegistry"
]
