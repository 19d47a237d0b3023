from .ai import Completion, RequestSpec, ResponseEnvelope, ResponseMetadata, Usage
from .blueprint import (
    Blueprint,
    BlueprintRequest,
    BlueprintSection,
    GenerationMetadata,
    OptimizationCriteria,
    SectionName,
    ValidationIssue,
    ValidationResult,
)

__all__ = [
    "Completion",
    "RequestSpec",
    "ResponseEnvelope",
    "ResponseMetadata",
    "Usage",
    "Blueprint",
    "BlueprintRequest",
    "BlueprintSection",
    "GenerationMetadata",
    "OptimizationCriteria",
    "SectionName",
    "ValidationIssue",
    "ValidationResult",
]
