from .metrics import Alert, ProviderUsage, UsageTracker
from .progress import GenerationProgress, GenerationStatus, ProgressTracker

__all__ = [
    "Alert",
    "ProviderUsage",
    "UsageTracker",
    "GenerationProgress",
    "GenerationStatus",
    "ProgressTracker"
]
