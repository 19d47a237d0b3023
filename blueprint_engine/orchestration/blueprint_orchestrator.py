"""Multi-section blueprint generation.

Sections are generated one after another because later prompts consume the
content of earlier ones. Each section call runs under the retry engine; a
section that still fails aborts the whole run, there is no partial result.
"""

import json
import re
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from ..models.ai import RequestSpec, ResponseEnvelope
from ..models.blueprint import (
    Blueprint,
    BlueprintRequest,
    BlueprintSection,
    GenerationMetadata,
    OptimizationCriteria,
    SectionName,
    ValidationIssue,
    ValidationResult
)
from ..monitoring.metrics import generation_duration
from ..monitoring.progress import GenerationStatus, ProgressTracker
from ..reliability.cancellation import CancellationToken, GenerationCancelled
from ..reliability.errors import BlueprintError, ErrorCode, classify, log_error, make_error
from ..reliability.retry_strategy import FallbackStrategy, RetryOptions, RetryStrategy
from .prompt_templates import build_prompt, build_simplified_prompt, get_prompt_template
from .service_manager import AIServiceManager

logger = logging.getLogger(__name__)

SECTION_ORDER: Tuple[SectionName, ...] = (
    SectionName.PRODUCT_PLAN,
    SectionName.TECH_STACK,
    SectionName.AI_WORKFLOW,
    SectionName.ROADMAP,
    SectionName.FINANCIAL_MODEL,
)

# Progress milestones
PROGRESS_INITIALIZING = 5
PROGRESS_ANALYZING = 15
PROGRESS_SECTIONS_START = 30
PROGRESS_VALIDATING = 90
PROGRESS_COMPLETE = 100

MIN_IDEA_LENGTH = 10
MIN_IDEA_WORDS = 5

# Retry attempts with a simplified prompt run cooler
SIMPLIFIED_TEMPERATURE_DROP = 0.2

OPTIMIZATION_SYSTEM_PROMPT = "You are an expert consultant specializing in startup optimization and efficiency."
OPTIMIZATION_TEMPERATURE = 0.3
OPTIMIZATION_MAX_TOKENS = 4000

_JSON_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)
_AI_WORD = re.compile(r"\b(ai|ml|machine learning|llm|gpt)\b", re.IGNORECASE)


def parse_section_json(text: str, section: SectionName) -> Dict[str, Any]:
    """Extract the JSON object from a model response.

    Accepts bare JSON, fenced ```json blocks, or an object surrounded by
    prose. Anything that is not a JSON object raises ``INVALID_RESPONSE``.
    """
    candidate = text.strip()
    fenced = _JSON_FENCE.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()
    elif not candidate.startswith("{"):
        start, end = candidate.find("{"), candidate.rfind("}")
        if start != -1 and end > start:
            candidate = candidate[start:end + 1]

    try:
        content = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise make_error(
            ErrorCode.INVALID_RESPONSE,
            f"Failed to parse {section.value} JSON response: {e}"
        ) from e

    if not isinstance(content, dict):
        raise make_error(
            ErrorCode.INVALID_RESPONSE,
            f"Expected a JSON object for {section.value}, got {type(content).__name__}"
        )
    return content


def build_optimization_prompt(blueprint: Blueprint, criteria: OptimizationCriteria) -> str:
    current = {
        "idea": blueprint.idea,
        "sections": {name.value: section.content for name, section in blueprint.sections.items()},
    }
    return (
        f"Optimize the following startup blueprint based on the criteria: {criteria.focus}\n\n"
        f"CURRENT BLUEPRINT:\n{json.dumps(current, indent=2, default=str)}\n\n"
        f"OPTIMIZATION CRITERIA:\n"
        f"- Focus: {criteria.focus}\n"
        f"- Constraints: {json.dumps(criteria.constraints, default=str)}\n"
        f"- Priorities: {', '.join(criteria.priorities)}\n\n"
        "Please provide an optimized version of the blueprint in the same JSON format, "
        "with explanations for key changes made."
    )


def _section_label(section: SectionName) -> str:
    return get_prompt_template(section).title


class BlueprintOrchestrator:
    def __init__(
        self,
        manager: AIServiceManager,
        progress_tracker: Optional[ProgressTracker] = None,
        retry_options: Optional[RetryOptions] = None,
        retry_sleep: Optional[Callable[[float], Any]] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.manager = manager
        self.progress = progress_tracker or ProgressTracker()
        self.retry_options = retry_options or RetryOptions()
        self.retry = RetryStrategy(self.retry_options, sleep=retry_sleep)
        self._clock = clock

    async def generate_blueprint(
        self,
        request: BlueprintRequest,
        token: Optional[CancellationToken] = None
    ) -> Blueprint:
        generation_id = request.generation_id
        start_time = self._clock()
        metadata = GenerationMetadata()
        sections: Dict[SectionName, BlueprintSection] = {}

        self.progress.update_progress(
            generation_id,
            status=GenerationStatus.RUNNING,
            current_step="Initializing generation",
            percentage=PROGRESS_INITIALIZING
        )

        try:
            self.check_idea_sufficiency(request.idea)
            self.progress.update_progress(
                generation_id, current_step="Analyzing idea", percentage=PROGRESS_ANALYZING
            )

            step = (PROGRESS_VALIDATING - PROGRESS_SECTIONS_START) / len(SECTION_ORDER)
            for index, section in enumerate(SECTION_ORDER):
                if token is not None:
                    token.raise_if_cancelled()

                label = _section_label(section)
                self.progress.update_progress(
                    generation_id,
                    current_step=f"Generating {label}",
                    percentage=round(PROGRESS_SECTIONS_START + index * step)
                )

                variables = self._section_variables(section, request, sections)
                sections[section] = await self._generate_section(
                    section, variables, request, metadata, token
                )
                metadata.steps_completed.append(f"Generated {label}")

                self.progress.update_progress(
                    generation_id,
                    current_step=f"Generated {label}",
                    percentage=round(PROGRESS_SECTIONS_START + (index + 1) * step)
                )

            self.progress.update_progress(
                generation_id, current_step="Validating blueprint", percentage=PROGRESS_VALIDATING
            )
            blueprint = Blueprint(idea=request.idea, request=request, sections=sections)
            validation = self.validate_blueprint(blueprint)

        except GenerationCancelled:
            logger.info(f"Generation {generation_id} cancelled")
            self.progress.update_progress(
                generation_id, status=GenerationStatus.FAILED, current_step="Generation cancelled"
            )
            raise
        except BlueprintError as e:
            log_error(e, generation_id=generation_id)
            self.progress.update_progress(
                generation_id,
                status=GenerationStatus.FAILED,
                current_step="Generation failed",
                error=e
            )
            raise
        except Exception as e:
            error = classify(e)
            log_error(error, generation_id=generation_id)
            self.progress.update_progress(
                generation_id,
                status=GenerationStatus.FAILED,
                current_step="Generation failed",
                error=error
            )
            raise

        metadata.total_time = self._clock() - start_time
        generation_duration.observe(metadata.total_time)
        blueprint = blueprint.model_copy(update={
            "generation_metadata": metadata,
            "validation": validation,
        })

        self.progress.update_progress(
            generation_id,
            status=GenerationStatus.COMPLETED,
            current_step="Blueprint complete",
            percentage=PROGRESS_COMPLETE
        )
        logger.info(
            f"Generated blueprint {blueprint.id} for {generation_id} in {metadata.total_time:.2f}s "
            f"({metadata.ai_calls_used} AI calls, ${metadata.total_cost:.4f}, score {validation.score})"
        )
        return blueprint

    def check_idea_sufficiency(self, idea: str):
        text = (idea or "").strip()
        if len(text) < MIN_IDEA_LENGTH or len(text.split()) < MIN_IDEA_WORDS:
            raise make_error(
                ErrorCode.INSUFFICIENT_CONTEXT,
                f"Idea has {len(text)} characters and {len(text.split())} words"
            )

    async def _generate_section(
        self,
        section: SectionName,
        variables: Dict[str, Any],
        request: BlueprintRequest,
        metadata: GenerationMetadata,
        token: Optional[CancellationToken]
    ) -> BlueprintSection:
        template = get_prompt_template(section)
        attempts = 0

        async def operation() -> BlueprintSection:
            nonlocal attempts
            attempts += 1
            simplified = attempts > 1 and self.retry_options.fallback_strategy == FallbackStrategy.SIMPLIFIED

            if simplified:
                prompt = build_simplified_prompt(section, variables)
                temperature = max(0.0, template.temperature - SIMPLIFIED_TEMPERATURE_DROP)
            else:
                prompt = build_prompt(section, variables)
                temperature = template.temperature

            spec = RequestSpec(
                provider=request.provider,
                prompt=prompt,
                system_prompt=template.system_prompt,
                temperature=temperature,
                max_tokens=template.max_tokens,
            )

            metadata.ai_calls_used += 1
            response = await self.manager.dispatch(spec, token=token)
            if not response.success:
                raise response.error

            metadata.total_cost += response.usage.cost
            content = parse_section_json(response.text, section)
            return BlueprintSection(
                name=section,
                content=content,
                raw_text=response.text,
                provider=response.metadata.provider,
                model=response.metadata.model,
            )

        def on_retry(attempt: int, error: BlueprintError, delay: float):
            log_error(error, generation_id=request.generation_id, section=section.value, attempt=attempt)
            self.progress.update_progress(
                request.generation_id,
                current_step=f"Retrying {template.title} (attempt {attempt + 1})"
            )

        return await self.retry.execute(
            operation,
            token=token,
            on_retry=on_retry,
            generation_id=request.generation_id,
            section=section.value,
        )

    def _section_variables(
        self,
        section: SectionName,
        request: BlueprintRequest,
        sections: Dict[SectionName, BlueprintSection]
    ) -> Dict[str, Any]:
        def content(name: SectionName) -> Dict[str, Any]:
            return sections[name].content if name in sections else {}

        product_plan = content(SectionName.PRODUCT_PLAN)
        tech_stack = content(SectionName.TECH_STACK)
        features = _feature_names(product_plan)

        if section == SectionName.PRODUCT_PLAN:
            return {
                "idea": request.idea,
                "industry": request.industry or "Not specified",
                "target_audience": request.target_audience or "Not specified",
                "constraints": request.constraints or ["None specified"],
            }

        if section == SectionName.TECH_STACK:
            return {
                "features": features or [request.idea],
                "scale": "medium",
                "budget": request.budget or "medium",
                "team_experience": "mixed",
            }

        if section == SectionName.AI_WORKFLOW:
            ai_features = [
                feature.get("name", "")
                for feature in _features(product_plan)
                if _AI_WORD.search(f"{feature.get('name', '')} {feature.get('description', '')}")
            ]
            return {
                "ai_features": ai_features or ["AI-powered recommendations"],
                "constraints": "; ".join(request.constraints) or "Standard web application constraints",
                "data_sources": ["user data", "application data"],
            }

        if section == SectionName.ROADMAP:
            return {
                "features": features or [request.idea],
                "tech_stack": tech_stack,
                "team_size": request.team_size or 3,
                "timeline": request.timeline or "6 months",
            }

        monetization = product_plan.get("monetization") or {}
        return {
            "product_plan": product_plan,
            "tech_stack": tech_stack,
            "market_size": request.industry or "Medium-sized market",
            "business_model": (monetization.get("primary_model") if isinstance(monetization, dict) else None)
            or "subscription",
        }

    async def regenerate_section(
        self,
        blueprint: Blueprint,
        section: SectionName,
        feedback: Optional[str] = None,
        token: Optional[CancellationToken] = None
    ) -> ResponseEnvelope:
        """Regenerate one section in place with a single AI call.

        On success only ``blueprint.sections[section]`` and
        ``blueprint.generated_at`` change. The blueprint is not re-validated.
        """
        section = SectionName(section)
        template = get_prompt_template(section)
        request = blueprint.request or BlueprintRequest(idea=blueprint.idea)

        prompt = build_prompt(section, self._section_variables(section, request, blueprint.sections))
        previous = blueprint.sections.get(section)
        if previous is not None:
            prompt += f"\n\nCURRENT VERSION OF THIS SECTION:\n{json.dumps(previous.content, indent=2, default=str)}"
        if feedback:
            prompt += f"\n\nUSER FEEDBACK: {feedback}"
        prompt += f"\n\nRevise the {template.title} accordingly and return the complete JSON object."

        response = await self.manager.dispatch(
            RequestSpec(
                provider=request.provider,
                prompt=prompt,
                system_prompt=template.system_prompt,
                temperature=template.temperature,
                max_tokens=template.max_tokens,
            ),
            token=token,
        )
        if not response.success:
            log_error(response.error, blueprint_id=blueprint.id, section=section.value)
            return response

        try:
            content = parse_section_json(response.text, section)
        except BlueprintError as e:
            log_error(e, blueprint_id=blueprint.id, section=section.value)
            return ResponseEnvelope.failure(
                e,
                provider=response.metadata.provider,
                model=response.metadata.model,
                attempted_providers=response.metadata.attempted_providers,
            )

        regenerated_at = datetime.now(timezone.utc)
        blueprint.sections[section] = BlueprintSection(
            name=section,
            content=content,
            raw_text=response.text,
            provider=response.metadata.provider,
            model=response.metadata.model,
            generated_at=regenerated_at,
        )
        blueprint.generated_at = regenerated_at
        logger.info(f"Regenerated {section.value} for blueprint {blueprint.id}")
        return response

    async def optimize_blueprint(
        self,
        blueprint: Blueprint,
        criteria: OptimizationCriteria,
        token: Optional[CancellationToken] = None
    ) -> ResponseEnvelope:
        """Ask for an optimized version of the whole blueprint.

        A single AI call. The envelope is returned as is; the blueprint
        itself is left untouched.
        """
        request = blueprint.request
        response = await self.manager.dispatch(
            RequestSpec(
                provider=request.provider if request else None,
                prompt=build_optimization_prompt(blueprint, criteria),
                system_prompt=OPTIMIZATION_SYSTEM_PROMPT,
                temperature=OPTIMIZATION_TEMPERATURE,
                max_tokens=OPTIMIZATION_MAX_TOKENS,
            ),
            token=token,
        )
        if not response.success:
            log_error(response.error, blueprint_id=blueprint.id, focus=criteria.focus)
        else:
            logger.info(f"Optimized blueprint {blueprint.id} for {criteria.focus}")
        return response

    def validate_blueprint(self, blueprint: Blueprint) -> ValidationResult:
        validators = {
            SectionName.PRODUCT_PLAN: _validate_product_plan,
            SectionName.TECH_STACK: _validate_tech_stack,
            SectionName.AI_WORKFLOW: _validate_ai_workflow,
            SectionName.ROADMAP: _validate_roadmap,
            SectionName.FINANCIAL_MODEL: _validate_financial_model,
        }

        issues: List[ValidationIssue] = []
        suggestions: List[str] = []
        total_score = 0

        for section in SECTION_ORDER:
            if section not in blueprint.sections:
                issues.append(ValidationIssue(
                    severity="error",
                    category=_category(section),
                    message=f"Missing {_section_label(section)} section",
                    field=section.value,
                ))
                suggestions.append(f"Regenerate the {_section_label(section)} section")
                continue

            score, section_issues, section_suggestions = validators[section](blueprint.section_content(section))
            total_score += score
            issues.extend(section_issues)
            suggestions.extend(section_suggestions)

        return ValidationResult(
            is_valid=not any(issue.severity == "error" for issue in issues),
            score=round(total_score / len(SECTION_ORDER)),
            issues=issues,
            suggestions=suggestions,
        )


def _category(section: SectionName) -> str:
    return section.value.replace("_", "-")


def _features(product_plan: Dict[str, Any]) -> List[Dict[str, Any]]:
    features = product_plan.get("core_features") or []
    if not isinstance(features, list):
        return []
    return [f if isinstance(f, dict) else {"name": str(f)} for f in features]


def _feature_names(product_plan: Dict[str, Any]) -> List[str]:
    return [f["name"] for f in _features(product_plan) if f.get("name")]


def _nested(content: Dict[str, Any], key: str, field: str) -> Any:
    value = content.get(key)
    return value.get(field) if isinstance(value, dict) else None


ValidatorResult = Tuple[int, List[ValidationIssue], List[str]]


def _validate_product_plan(content: Dict[str, Any]) -> ValidatorResult:
    issues: List[ValidationIssue] = []
    suggestions: List[str] = []
    score = 100

    if not _nested(content, "target_audience", "primary"):
        issues.append(ValidationIssue(
            severity="error", category="product-plan",
            message="Missing primary target audience", field="target_audience.primary",
        ))
        suggestions.append("Describe who the primary users of the product are")
        score -= 20

    if not _features(content):
        issues.append(ValidationIssue(
            severity="error", category="product-plan",
            message="No core features defined", field="core_features",
        ))
        suggestions.append("List the core features the product needs at launch")
        score -= 30

    if not _nested(content, "monetization", "primary_model"):
        issues.append(ValidationIssue(
            severity="warning", category="product-plan",
            message="Monetization model not clearly defined", field="monetization.primary_model",
        ))
        suggestions.append("Choose a primary monetization model")
        score -= 10

    return max(0, score), issues, suggestions


def _validate_tech_stack(content: Dict[str, Any]) -> ValidatorResult:
    issues: List[ValidationIssue] = []
    suggestions: List[str] = []
    score = 100

    if not content.get("frontend"):
        issues.append(ValidationIssue(
            severity="error", category="tech-stack",
            message="No frontend technologies specified", field="frontend",
        ))
        score -= 25

    if not content.get("backend"):
        issues.append(ValidationIssue(
            severity="error", category="tech-stack",
            message="No backend technologies specified", field="backend",
        ))
        score -= 25

    if not content.get("database"):
        suggestions.append("Consider specifying a primary database")

    return max(0, score), issues, suggestions


def _validate_ai_workflow(content: Dict[str, Any]) -> ValidatorResult:
    issues: List[ValidationIssue] = []
    suggestions: List[str] = []
    score = 100

    nodes = content.get("nodes")
    if not nodes:
        issues.append(ValidationIssue(
            severity="warning", category="ai-workflow",
            message="No workflow nodes defined", field="nodes",
        ))
        suggestions.append("Add at least one processing node to the AI workflow")
        score -= 20
    elif isinstance(nodes, list) and len(nodes) > 1 and not content.get("edges"):
        issues.append(ValidationIssue(
            severity="warning", category="ai-workflow",
            message="Workflow nodes are not connected", field="edges",
        ))
        score -= 10

    return max(0, score), issues, suggestions


def _validate_roadmap(content: Dict[str, Any]) -> ValidatorResult:
    issues: List[ValidationIssue] = []
    suggestions: List[str] = []
    score = 100

    phases = content.get("phases")
    if not phases or not isinstance(phases, list):
        issues.append(ValidationIssue(
            severity="warning", category="roadmap",
            message="No development phases defined", field="phases",
        ))
        suggestions.append("Break the roadmap into phases with concrete tasks")
        score -= 20
    elif not any(isinstance(phase, dict) and phase.get("tasks") for phase in phases):
        issues.append(ValidationIssue(
            severity="warning", category="roadmap",
            message="Roadmap phases have no tasks", field="phases.tasks",
        ))
        score -= 10

    if not content.get("milestones"):
        suggestions.append("Add milestones with target dates")

    return max(0, score), issues, suggestions


def _validate_financial_model(content: Dict[str, Any]) -> ValidatorResult:
    issues: List[ValidationIssue] = []
    suggestions: List[str] = []
    score = 100

    if not content.get("costs"):
        issues.append(ValidationIssue(
            severity="warning", category="financial-model",
            message="No cost breakdown provided", field="costs",
        ))
        suggestions.append("Estimate infrastructure and team costs")
        score -= 20

    if not _nested(content, "revenue", "projections"):
        issues.append(ValidationIssue(
            severity="warning", category="financial-model",
            message="No revenue projections provided", field="revenue.projections",
        ))
        suggestions.append("Add monthly revenue projections")
        score -= 20

    return max(0, score), issues, suggestions
