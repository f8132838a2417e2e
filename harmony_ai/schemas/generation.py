from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from harmony_ai.models.generation import GenerationStatus
from harmony_ai.schemas.operations import Operation


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerationOptions(CamelModel):
    """Knobs that shape the output. Only timeout_seconds leaves content untouched."""

    quality: Optional[str] = None
    variation_count: int = 3
    target_platforms: List[str] = Field(default_factory=lambda: ["suno"])
    complexity: Optional[str] = None
    length: Optional[str] = None
    timeout_seconds: Optional[float] = None

    def content_fields(self, supports_variations: bool) -> Dict[str, Any]:
        """Options that change what a provider produces, in canonical form."""
        fields: Dict[str, Any] = {
            "quality": self.quality,
            "target_platforms": sorted({p.strip().lower() for p in self.target_platforms if p.strip()}),
            "complexity": self.complexity,
            "length": self.length,
        }
        if supports_variations:
            fields["variation_count"] = self.variation_count
        return {k: v for k, v in fields.items() if v is not None}


class GenerationRequest(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    operation: Operation
    user_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    preferred_providers: Tuple[str, ...] = ()
    options: GenerationOptions = Field(default_factory=GenerationOptions)
    artist_id: Optional[str] = None


class ProviderAttempt(BaseModel):
    provider: str
    outcome: str  # success|failed|timeout|skipped|cancelled
    error_type: Optional[str] = None
    error: Optional[str] = None
    duration_ms: int = 0


class GenerationResult(BaseModel):
    operation: Operation
    output: Dict[str, Any]
    provider: str
    from_cache: bool = False
    degraded: bool = False
    coalesced: bool = False
    generation_id: Optional[str] = None
    attempts: List[ProviderAttempt] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class GenerationRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    artist_id: Optional[str] = None
    operation: str
    status: GenerationStatus
    fingerprint: Optional[str] = None
    input_snapshot: Dict[str, Any] = Field(default_factory=dict)
    refined_output: Optional[Dict[str, Any]] = None
    provider_used: Optional[str] = None
    degraded: bool = False
    attempts: List[Dict[str, Any]] = Field(default_factory=list)
    error_message: Optional[str] = None
    processing_time_ms: int = 0
    created_at: datetime
    completed_at: Optional[datetime] = None


class HistoryFilters(BaseModel):
    operation: Optional[Operation] = None
    provider: Optional[str] = None
    status: Optional[GenerationStatus] = None


class HistoryPage(BaseModel):
    items: List[GenerationRecord]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0
