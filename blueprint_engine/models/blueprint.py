from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
import uuid

from pydantic import BaseModel, Field

from ..config import ProviderName


class SectionName(str, Enum):
    PRODUCT_PLAN = "product_plan"
    TECH_STACK = "tech_stack"
    AI_WORKFLOW = "ai_workflow"
    ROADMAP = "roadmap"
    FINANCIAL_MODEL = "financial_model"


class BlueprintRequest(BaseModel):
    idea: str
    industry: Optional[str] = None
    target_audience: Optional[str] = None
    constraints: List[str] = Field(default_factory=list)
    budget: Optional[str] = None
    timeline: Optional[str] = None
    team_size: Optional[int] = None
    provider: Optional[ProviderName] = None
    generation_id: str = Field(default_factory=lambda: str(uuid.uuid4()))


class OptimizationCriteria(BaseModel):
    focus: Literal["cost", "time", "quality", "risk", "innovation"]
    constraints: Dict[str, Any] = Field(default_factory=dict)
    priorities: List[str] = Field(default_factory=list)


class BlueprintSection(BaseModel):
    name: SectionName
    content: Dict[str, Any]
    raw_text: str
    provider: Optional[ProviderName] = None
    model: Optional[str] = None
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class GenerationMetadata(BaseModel):
    total_time: float = 0.0  # seconds
    steps_completed: List[str] = Field(default_factory=list)
    ai_calls_used: int = 0
    total_cost: float = 0.0


class ValidationIssue(BaseModel):
    severity: Literal["error", "warning"]
    category: str
    message: str
    field: str


class ValidationResult(BaseModel):
    is_valid: bool = True
    score: int = Field(default=0, ge=0, le=100)
    issues: List[ValidationIssue] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)

    @property
    def warnings(self) -> List[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]


class Blueprint(BaseModel):
    """The composite artifact. Sections can later be replaced one at a time."""

    id: str = Field(default_factory=lambda: f"blueprint_{uuid.uuid4().hex}")
    idea: str
    request: Optional[BlueprintRequest] = None
    sections: Dict[SectionName, BlueprintSection]
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    generation_metadata: GenerationMetadata = Field(default_factory=GenerationMetadata)
    validation: ValidationResult = Field(default_factory=ValidationResult)

    def section_content(self, name: SectionName) -> Dict[str, Any]:
        section = self.sections.get(name)
        return section.content if section else {}
