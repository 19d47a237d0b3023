from typing import Dict, List, Optional
import logging

from ..config import ProviderName

logger = logging.getLogger(__name__)


class FallbackChain:
    """Ordered list of providers tried after the chosen one fails."""

    def __init__(self, chain: List[ProviderName]):
        self.chain = list(chain)
        self.fallback_counts: Dict[ProviderName, int] = {p: 0 for p in self.chain}

    def candidates(self, primary: Optional[ProviderName], eligible: List[ProviderName]) -> List[ProviderName]:
        """The primary provider first, then chain order, restricted to ``eligible``."""
        ordered: List[ProviderName] = []
        if primary is not None:
            ordered.append(primary)

        for provider in self.chain:
            if provider in eligible and provider not in ordered:
                ordered.append(provider)

        return ordered

    def record_fallback(self, from_provider: ProviderName, to_provider: ProviderName):
        self.fallback_counts[to_provider] = self.fallback_counts.get(to_provider, 0) + 1
        logger.info(f"Falling back from {from_provider.value} to {to_provider.value}")

    def get_stats(self) -> Dict[str, object]:
        return {
            "chain": [p.value for p in self.chain],
            "fallbacks_served": {p.value: count for p, count in self.fallback_counts.items()},
        }
