"""Prompt templates for each blueprint section.

Templates use ``{{name}}`` placeholders. Values are rendered by their
declared type: arrays become a comma-separated list, objects are pretty
printed JSON, numbers and booleans are stringified.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List

from ..models.blueprint import SectionName


class PromptTemplateError(ValueError):
    """Raised when a template is rendered with missing or mistyped variables."""


@dataclass(frozen=True)
class TemplateVariable:
    name: str
    type: str  # string | number | boolean | array | object
    required: bool = True
    description: str = ""


@dataclass(frozen=True)
class PromptTemplate:
    """Template plus the request parameters it is sent with."""
    section: SectionName
    title: str
    template: str
    simplified_template: str
    variables: List[TemplateVariable]
    system_prompt: str
    temperature: float = 0.7
    max_tokens: int = 3000


@dataclass
class PromptValidation:
    valid: bool
    errors: List[str]


PRODUCT_PLAN_TEMPLATE = """You are an expert product strategist. Based on the following idea, create a comprehensive product plan.

IDEA: {{idea}}
INDUSTRY: {{industry}}
TARGET AUDIENCE: {{target_audience}}
CONSTRAINTS: {{constraints}}

Please provide a detailed product plan in the following JSON format:

{
  "target_audience": {
    "primary": "Primary target audience description",
    "secondary": "Secondary target audience description",
    "demographics": ["demographic1", "demographic2"],
    "pain_points": ["pain point 1", "pain point 2"],
    "motivations": ["motivation 1", "motivation 2"]
  },
  "core_features": [
    {
      "name": "Feature Name",
      "description": "Feature description",
      "priority": "high|medium|low",
      "user_value": "Value proposition for users",
      "complexity": "simple|moderate|complex"
    }
  ],
  "differentiators": ["Unique selling point 1", "Unique selling point 2"],
  "monetization": {
    "primary_model": "subscription|freemium|one-time|marketplace|advertising",
    "pricing_strategy": "Pricing strategy description",
    "revenue_streams": ["stream1", "stream2"]
  },
  "gtm_strategy": {
    "launch_strategy": "Go-to-market approach",
    "marketing_channels": ["channel1", "channel2"],
    "timeline": "Launch timeline and milestones"
  }
}

Focus on creating a realistic, actionable plan that addresses real market needs."""

TECH_STACK_TEMPLATE = """You are a senior software architect. Based on the product requirements, recommend a comprehensive tech stack.

PRODUCT FEATURES: {{features}}
SCALE REQUIREMENTS: {{scale}}
BUDGET CONSTRAINTS: {{budget}}
TEAM EXPERIENCE: {{team_experience}}

Please provide a detailed tech stack recommendation in the following JSON format:

{
  "frontend": [
    {
      "name": "Technology Name",
      "category": "framework|library|tool",
      "reasoning": "Why this choice",
      "alternatives": ["alternative1"],
      "cost": 0
    }
  ],
  "backend": [
    {"name": "Technology Name", "category": "framework|runtime|service", "reasoning": "Why this choice", "alternatives": ["alternative1"], "cost": 100}
  ],
  "database": [
    {"name": "Database Name", "category": "sql|nosql|cache|search", "reasoning": "Why this choice", "alternatives": ["alternative1"], "cost": 50}
  ],
  "ai_services": [
    {"name": "AI Service", "category": "llm|vision|speech|embedding", "reasoning": "Why needed", "alternatives": ["alternative1"], "cost": 200}
  ],
  "deployment": [
    {"name": "Platform Name", "category": "cloud|serverless|container", "reasoning": "Why this choice", "alternatives": ["alternative1"], "cost": 150}
  ],
  "security": ["Security guideline 1", "Security guideline 2"]
}

Consider modern best practices, scalability, and cost-effectiveness."""

AI_WORKFLOW_TEMPLATE = """You are an AI systems architect. Design a comprehensive AI workflow for the given features.

FEATURES REQUIRING AI: {{ai_features}}
TECHNICAL CONSTRAINTS: {{constraints}}
DATA SOURCES: {{data_sources}}

Please provide a detailed AI workflow in the following JSON format:

{
  "nodes": [
    {
      "id": "node1",
      "type": "input|processing|ai-model|output|decision",
      "label": "Node Label",
      "configuration": {"model": "Model name if applicable", "input_format": "text|image|audio|structured", "output_format": "text|json|binary"},
      "inputs": ["input1"],
      "outputs": ["output1"]
    }
  ],
  "edges": [
    {"id": "edge1", "source": "node1", "target": "node2", "label": "Data flow description"}
  ],
  "modules": [
    {"name": "Module Name", "description": "What this module does", "nodes": ["node1", "node2"], "optional": false}
  ],
  "configuration": {
    "parallel_processing": true,
    "error_handling": "retry|fallback|fail",
    "monitoring": true,
    "caching": true
  }
}

Design for scalability, reliability, and maintainability."""

ROADMAP_TEMPLATE = """You are a technical project manager. Create a detailed development roadmap based on the product plan and tech stack.

PRODUCT FEATURES: {{features}}
TECH STACK: {{tech_stack}}
TEAM SIZE: {{team_size}}
TIMELINE: {{timeline}}

Please provide a detailed roadmap in the following JSON format:

{
  "phases": [
    {
      "name": "Phase Name",
      "description": "Phase description",
      "duration": "Duration in weeks",
      "priority": "critical|high|medium|low",
      "tasks": [
        {"name": "Task Name", "description": "Task description", "estimated_hours": 40, "dependencies": ["task1"], "skills": ["skill1"]}
      ]
    }
  ],
  "milestones": [
    {"name": "Milestone Name", "description": "What will be achieved", "target_date": "Week X", "deliverables": ["deliverable1"]}
  ],
  "risks": [
    {"risk": "Risk description", "impact": "high|medium|low", "probability": "high|medium|low", "mitigation": "Mitigation strategy"}
  ],
  "resources": {
    "total_estimated_hours": 1000,
    "team_requirements": ["role1", "role2"],
    "external_dependencies": ["dependency1"]
  }
}

Prioritize MVP features and ensure realistic timelines."""

FINANCIAL_MODEL_TEMPLATE = """You are a financial analyst specializing in tech startups. Create a comprehensive financial model.

PRODUCT PLAN: {{product_plan}}
TECH STACK: {{tech_stack}}
MARKET SIZE: {{market_size}}
BUSINESS MODEL: {{business_model}}

Please provide a detailed financial model in the following JSON format:

{
  "costs": {
    "infrastructure": [
      {"item": "Cost item", "monthly_amount": 100, "yearly_amount": 1200, "category": "hosting|database|ai-services|tools"}
    ],
    "team": [
      {"role": "Developer", "monthly_amount": 8000, "yearly_amount": 96000, "quantity": 2}
    ],
    "tools": [
      {"tool": "Tool name", "monthly_amount": 50, "yearly_amount": 600, "category": "development|design|analytics|marketing"}
    ]
  },
  "revenue": {
    "projections": [
      {"month": 1, "users": 100, "revenue": 1000, "churn": 0.05, "acquisition_cost": 50}
    ],
    "assumptions": {
      "conversion_rate": 0.02,
      "average_revenue_per_user": 10,
      "growth_rate": 0.15,
      "churn_rate": 0.05
    }
  },
  "metrics": {
    "break_even_month": 18,
    "total_funding_needed": 500000,
    "ltv": 200,
    "cac": 50,
    "gross_margin": 0.8
  },
  "scenarios": {
    "conservative": {"revenue": 100000, "costs": 80000},
    "realistic": {"revenue": 250000, "costs": 150000},
    "optimistic": {"revenue": 500000, "costs": 200000}
  }
}

Base projections on realistic market assumptions and industry benchmarks."""

# Condensed prompts used when retrying after a failed attempt
SIMPLIFIED_SUFFIX = """

Respond with a single valid JSON object and nothing else. Keep every list short (at most 3 items)."""

PROMPT_TEMPLATES: Dict[SectionName, PromptTemplate] = {
    SectionName.PRODUCT_PLAN: PromptTemplate(
        section=SectionName.PRODUCT_PLAN,
        title="product plan",
        template=PRODUCT_PLAN_TEMPLATE,
        simplified_template=(
            "Create a concise product plan for this idea: {{idea}}\n"
            "Return JSON with keys: target_audience (with primary), core_features "
            "(list of objects with name and description), monetization (with primary_model)."
            + SIMPLIFIED_SUFFIX
        ),
        variables=[
            TemplateVariable("idea", "string", True, "The startup or product idea to analyze"),
            TemplateVariable("industry", "string", False, "Industry or market vertical"),
            TemplateVariable("target_audience", "string", False, "Who the product is for"),
            TemplateVariable("constraints", "array", False, "Known constraints"),
        ],
        system_prompt="You are an expert product strategist with 15+ years of experience in startup product development.",
        temperature=0.7,
    ),
    SectionName.TECH_STACK: PromptTemplate(
        section=SectionName.TECH_STACK,
        title="tech stack",
        template=TECH_STACK_TEMPLATE,
        simplified_template=(
            "Recommend a tech stack for a product with these features: {{features}}\n"
            "Budget: {{budget}}. Return JSON with keys: frontend, backend, database "
            "(each a list of objects with name and reasoning)."
            + SIMPLIFIED_SUFFIX
        ),
        variables=[
            TemplateVariable("features", "array", True, "List of product features"),
            TemplateVariable("scale", "string", True, "Expected scale (small, medium, large)"),
            TemplateVariable("budget", "string", True, "Budget constraints (low, medium, high)"),
            TemplateVariable("team_experience", "string", True, "Team experience level (junior, mixed, senior)"),
        ],
        system_prompt="You are a senior software architect with expertise in modern web technologies and scalable systems.",
        temperature=0.5,
    ),
    SectionName.AI_WORKFLOW: PromptTemplate(
        section=SectionName.AI_WORKFLOW,
        title="AI workflow",
        template=AI_WORKFLOW_TEMPLATE,
        simplified_template=(
            "Design a minimal AI workflow for these features: {{ai_features}}\n"
            "Return JSON with keys: nodes (list of objects with id, type, label) and "
            "edges (list of objects with source and target)."
            + SIMPLIFIED_SUFFIX
        ),
        variables=[
            TemplateVariable("ai_features", "array", True, "Features that require AI processing"),
            TemplateVariable("constraints", "string", False, "Technical constraints and requirements"),
            TemplateVariable("data_sources", "array", False, "Available data sources"),
        ],
        system_prompt="You are an AI systems architect specializing in production AI workflows and MLOps.",
        temperature=0.5,
    ),
    SectionName.ROADMAP: PromptTemplate(
        section=SectionName.ROADMAP,
        title="development roadmap",
        template=ROADMAP_TEMPLATE,
        simplified_template=(
            "Create a short development roadmap for these features: {{features}}\n"
            "Team size: {{team_size}}. Timeline: {{timeline}}.\n"
            "Return JSON with keys: phases (list of objects with name, duration and tasks) and milestones."
            + SIMPLIFIED_SUFFIX
        ),
        variables=[
            TemplateVariable("features", "array", True, "Product features to implement"),
            TemplateVariable("tech_stack", "object", True, "Selected technology stack"),
            TemplateVariable("team_size", "number", True, "Number of team members"),
            TemplateVariable("timeline", "string", True, "Target timeline for completion"),
        ],
        system_prompt="You are a technical project manager with expertise in agile development and startup execution.",
        temperature=0.6,
    ),
    SectionName.FINANCIAL_MODEL: PromptTemplate(
        section=SectionName.FINANCIAL_MODEL,
        title="financial model",
        template=FINANCIAL_MODEL_TEMPLATE,
        simplified_template=(
            "Create a simple financial model for a {{business_model}} business.\n"
            "Return JSON with keys: costs (infrastructure and team lists with monthly_amount) "
            "and revenue (with a projections list of month and revenue)."
            + SIMPLIFIED_SUFFIX
        ),
        variables=[
            TemplateVariable("product_plan", "object", True, "Product plan with monetization strategy"),
            TemplateVariable("tech_stack", "object", True, "Technology stack with cost implications"),
            TemplateVariable("market_size", "string", False, "Target market size and characteristics"),
            TemplateVariable("business_model", "string", True, "Business model type"),
        ],
        system_prompt="You are a financial analyst specializing in tech startup financial modeling and projections.",
        temperature=0.4,
    ),
}


def get_prompt_template(section: SectionName) -> PromptTemplate:
    try:
        return PROMPT_TEMPLATES[SectionName(section)]
    except (KeyError, ValueError):
        raise PromptTemplateError(f"Template not found: {section}")


def format_variable_value(value: Any, type_: str) -> str:
    if value is None:
        return ""

    if type_ == "array":
        if isinstance(value, (list, tuple)):
            return ", ".join(
                json.dumps(item) if isinstance(item, (dict, list)) else str(item)
                for item in value
            )
        return str(value)
    if type_ == "object":
        if isinstance(value, (dict, list)):
            return json.dumps(value, indent=2, default=str)
        return str(value)
    if type_ == "boolean":
        return "true" if value else "false"
    return str(value)


def validate_prompt_variables(section: SectionName, variables: Dict[str, Any]) -> PromptValidation:
    """Report missing required variables and values of the wrong type."""
    try:
        template = get_prompt_template(section)
    except PromptTemplateError as e:
        return PromptValidation(valid=False, errors=[str(e)])

    errors: List[str] = []
    for variable in template.variables:
        value = variables.get(variable.name)

        if value is None:
            if variable.required:
                errors.append(f"Required variable missing: {variable.name}")
            continue

        if variable.type == "number":
            try:
                float(value)
            except (TypeError, ValueError):
                errors.append(f"Variable {variable.name} must be a number")
        elif variable.type == "boolean":
            if not isinstance(value, bool) and value not in ("true", "false"):
                errors.append(f"Variable {variable.name} must be a boolean")
        elif variable.type == "array":
            if not isinstance(value, (list, tuple, str)):
                errors.append(f"Variable {variable.name} must be an array or string")
        elif variable.type == "object":
            if not isinstance(value, (dict, list)):
                errors.append(f"Variable {variable.name} must be an object")

    return PromptValidation(valid=not errors, errors=errors)


def _render(text: str, template: PromptTemplate, variables: Dict[str, Any]) -> str:
    validation = validate_prompt_variables(template.section, variables)
    if not validation.valid:
        raise PromptTemplateError(f"Invalid variables: {', '.join(validation.errors)}")

    for variable in template.variables:
        placeholder = "{{" + variable.name + "}}"
        text = text.replace(placeholder, format_variable_value(variables.get(variable.name), variable.type))
    return text


def build_prompt(section: SectionName, variables: Dict[str, Any]) -> str:
    template = get_prompt_template(section)
    return _render(template.template, template, variables)


def build_simplified_prompt(section: SectionName, variables: Dict[str, Any]) -> str:
    template = get_prompt_template(section)
    return _render(template.simplified_template, template, variables)
