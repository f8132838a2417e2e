"""
Operation schema table.

A single place that says, for each generation operation, which payload
fields are required, which quota metric and rate-limit bucket it draws
from, which providers serve it by default, and how long a provider call
may take. Adding an operation or provider is an edit to this table.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel


class Operation(str, Enum):
    BIO = "bio"
    IMAGE = "image"
    IMAGE_VARIATIONS = "image_variations"
    PROMPT_REWRITE = "prompt_rewrite"
    PROMPT_ANALYSIS = "prompt_analysis"
    PROMPT_VARIATIONS = "prompt_variations"
    DESCRIPTION = "description"


class OperationClass(str, Enum):
    """Rate-limit buckets."""
    BIO = "ai-bio"
    IMAGE = "ai-image"
    PROMPT = "ai-prompt"


class MetricType(str, Enum):
    """Quota ledger dimensions."""
    AI_GENERATIONS = "ai_generations"
    TRACK_UPLOADS = "track_uploads"
    PROMPT_REFINEMENTS = "prompt_refinements"
    STORAGE_USAGE = "storage_usage"


MAX_VARIATIONS = 8


class PayloadModel(BaseModel):
    """Accepts camelCase (route layer) or snake_case keys; trims strings."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


class BioPayload(PayloadModel):
    name: str = Field(..., min_length=1, max_length=100)
    genre: str = Field(..., min_length=1)
    personality_traits: List[str] = Field(..., min_length=1)
    visual_style: str = Field(..., min_length=1)
    speaking_style: str = Field(..., min_length=1)
    backstory: Optional[str] = None
    influences: Optional[str] = None
    unique_elements: Optional[str] = None
    template: str = "default"
    complexity: Literal["simple", "standard", "detailed", "professional"] = "standard"
    target_audience: str = "general"


class DescriptionPayload(PayloadModel):
    name: str = Field(..., min_length=1, max_length=100)
    genre: str = Field(..., min_length=1)
    style: Optional[str] = None
    achievements: Optional[str] = None
    target_audience: Optional[str] = None
    description_type: Literal["short", "long"] = "short"


class ImagePayload(PayloadModel):
    name: str = Field(..., min_length=1, max_length=100)
    visual_style: str = Field(..., min_length=1)
    genre: Optional[str] = None
    personality_traits: Optional[List[str]] = None
    prompt: Optional[str] = None
    width: int = Field(512, ge=256, le=2048)
    height: int = Field(512, ge=256, le=2048)


class PromptRewritePayload(PayloadModel):
    base_prompt: str = Field(..., min_length=1, max_length=4000)
    genre: str = Field(..., min_length=1)
    mood: str = Field(..., min_length=1)
    tempo: Optional[str] = None
    instrumentation: Optional[List[str]] = None
    style: Optional[str] = None
    optimization_level: Literal["basic", "standard", "advanced", "expert"] = "standard"


class PromptAnalysisPayload(PayloadModel):
    prompt: str = Field(..., min_length=1, max_length=4000)


class PromptVariationsPayload(PayloadModel):
    base_prompt: str = Field(..., min_length=1, max_length=4000)
    genre: Optional[str] = None
    mood: Optional[str] = None
    style: Optional[str] = None


@dataclass(frozen=True)
class OperationSpec:
    operation: Operation
    payload_model: Type[PayloadModel]
    metric_type: MetricType
    operation_class: OperationClass
    default_providers: Tuple[str, ...]
    timeout_class: str  # text|image
    user_scoped: bool = False
    supports_variations: bool = False


OPERATION_SPECS: Dict[Operation, OperationSpec] = {
    Operation.BIO: OperationSpec(
        operation=Operation.BIO,
        payload_model=BioPayload,
        metric_type=MetricType.AI_GENERATIONS,
        operation_class=OperationClass.BIO,
        default_providers=("gemini", "openai"),
        timeout_class="text",
    ),
    Operation.DESCRIPTION: OperationSpec(
        operation=Operation.DESCRIPTION,
        payload_model=DescriptionPayload,
        metric_type=MetricType.AI_GENERATIONS,
        operation_class=OperationClass.BIO,
        default_providers=("gemini", "openai"),
        timeout_class="text",
    ),
    Operation.IMAGE: OperationSpec(
        operation=Operation.IMAGE,
        payload_model=ImagePayload,
        metric_type=MetricType.AI_GENERATIONS,
        operation_class=OperationClass.IMAGE,
        default_providers=("nanobanana", "seedance"),
        timeout_class="image",
    ),
    Operation.IMAGE_VARIATIONS: OperationSpec(
        operation=Operation.IMAGE_VARIATIONS,
        payload_model=ImagePayload,
        metric_type=MetricType.AI_GENERATIONS,
        operation_class=OperationClass.IMAGE,
        default_providers=("nanobanana", "seedance"),
        timeout_class="image",
        supports_variations=True,
    ),
    Operation.PROMPT_REWRITE: OperationSpec(
        operation=Operation.PROMPT_REWRITE,
        payload_model=PromptRewritePayload,
        metric_type=MetricType.PROMPT_REFINEMENTS,
        operation_class=OperationClass.PROMPT,
        default_providers=("openai", "gemini"),
        timeout_class="text",
    ),
    Operation.PROMPT_ANALYSIS: OperationSpec(
        operation=Operation.PROMPT_ANALYSIS,
        payload_model=PromptAnalysisPayload,
        metric_type=MetricType.PROMPT_REFINEMENTS,
        operation_class=OperationClass.PROMPT,
        default_providers=("openai",),
        timeout_class="text",
    ),
    Operation.PROMPT_VARIATIONS: OperationSpec(
        operation=Operation.PROMPT_VARIATIONS,
        payload_model=PromptVariationsPayload,
        metric_type=MetricType.PROMPT_REFINEMENTS,
        operation_class=OperationClass.PROMPT,
        default_providers=("openai",),
        timeout_class="text",
        supports_variations=True,
    ),
}


def get_operation_spec(operation: Operation) -> OperationSpec:
    return OPERATION_SPECS[Operation(operation)]


def format_violations(error: PydanticValidationError) -> List[str]:
    """Flatten a pydantic error into 'field: message' strings, keeping all of them."""
    violations = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "payload"
        violations.append(f"{location}: {item.get('msg', 'invalid value')}")
    return violations


def parse_payload(spec: OperationSpec, payload: Dict[str, Any]) -> Tuple[Optional[PayloadModel], List[str]]:
    """
    Validate a raw payload against the operation's model.

    Returns:
        (model, []) on success, (None, violations) otherwise
    """
    if not isinstance(payload, dict):
        return None, ["payload: must be an object"]

    try:
        return spec.payload_model.model_validate(payload), []
    except PydanticValidationError as e:
        return None, format_violations(e)
