from .load_balancer import LoadBalancer
from .fallback_manager import FallbackChain
from .service_manager import AIServiceManager
from .blueprint_orchestrator import BlueprintOrchestrator

__all__ = [
    "LoadBalancer",
    "FallbackChain",
    "AIServiceManager",
    "BlueprintOrchestrator"
]
