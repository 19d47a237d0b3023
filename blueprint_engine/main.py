import logging
from typing import Dict, List, Mapping, Optional, Union

from .cache.cache_manager import RedisCacheStore
from .config import ProviderName, Settings, create_ai_service_config, settings
from .monitoring.progress import ProgressTracker
from .orchestration.blueprint_orchestrator import BlueprintOrchestrator
from .orchestration.service_manager import AIServiceManager
from .providers.base_provider import ProviderClient
from .reliability.retry_strategy import FallbackStrategy, RetryOptions

logger = logging.getLogger(__name__)


def configure_logging(source: Optional[Settings] = None):
    source = source or settings
    logging.basicConfig(
        level=getattr(logging, source.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


class BlueprintEngine:
    """Wires the service manager, progress tracker and orchestrator together.

    Use as an async context manager (or call ``start``/``stop``) so the
    progress sweeper and the Redis cache connection are managed.
    """

    def __init__(
        self,
        clients: Union[Mapping[ProviderName, ProviderClient], List[ProviderClient]],
        source: Optional[Settings] = None
    ):
        source = source or settings
        self.config = create_ai_service_config(source)
        self.manager = AIServiceManager(self.config, clients)
        self.progress = ProgressTracker(
            max_age=source.progress_max_age,
            sweep_interval=source.progress_sweep_interval
        )
        self.orchestrator = BlueprintOrchestrator(
            self.manager,
            progress_tracker=self.progress,
            retry_options=RetryOptions(
                max_retries=self.config.retry.max_retries,
                base_delay=self.config.retry.base_delay,
                fallback_strategy=FallbackStrategy(self.config.retry.fallback_strategy),
            ),
        )

    async def start(self):
        logger.info("Starting blueprint engine")

        store = self.manager.cache.store
        if isinstance(store, RedisCacheStore):
            await store.initialize()

        await self.progress.start_sweeper()

        connections = await self.manager.test_connections()
        for provider, ok in connections.items():
            if not ok:
                logger.warning(f"Provider {provider} failed its connection test")

    async def stop(self):
        logger.info("Shutting down blueprint engine")
        await self.progress.stop_sweeper()

        store = self.manager.cache.store
        if isinstance(store, RedisCacheStore):
            await store.close()

    def get_stats(self) -> Dict[str, object]:
        stats = self.manager.get_stats()
        stats["progress"] = self.progress.get_stats()
        return stats

    async def __aenter__(self) -> "BlueprintEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()
