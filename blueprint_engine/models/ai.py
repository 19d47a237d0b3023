from datetime import datetime, timezone
from typing import Optional, Tuple
import uuid

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..config import ProviderName
from ..reliability.errors import BlueprintError


class RequestSpec(BaseModel):
    """One AI request. ``provider=None`` lets the manager choose."""

    model_config = ConfigDict(frozen=True)

    provider: Optional[ProviderName] = None
    model: Optional[str] = None
    prompt: str
    system_prompt: Optional[str] = None
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, gt=0)
    cache: bool = False
    cache_key: Optional[str] = None

    def estimated_tokens(self, max_tokens: Optional[int] = None) -> int:
        # Rough pre-flight estimate: ~4 characters per token plus the completion budget
        prompt_chars = len(self.prompt) + len(self.system_prompt or "")
        return prompt_chars // 4 + (max_tokens if max_tokens is not None else self.max_tokens)


class Completion(BaseModel):
    """What a provider client returns for one successful call."""

    model_config = ConfigDict(frozen=True)

    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: Optional[float] = None


class Usage(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0


class ResponseMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: Optional[ProviderName] = None
    model: Optional[str] = None
    latency: float = 0.0  # seconds
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    request_id: str = Field(default_factory=lambda: f"req_{uuid.uuid4().hex}")
    cached: bool = False
    attempted_providers: Tuple[ProviderName, ...] = ()


class ResponseEnvelope(BaseModel):
    """Outcome of one dispatch: either text and usage, or a classified error."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    success: bool
    text: Optional[str] = None
    usage: Usage = Field(default_factory=Usage)
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)
    error: Optional[BlueprintError] = Field(default=None, exclude=True)

    @model_validator(mode="after")
    def _success_xor_failure(self) -> "ResponseEnvelope":
        if self.success and (self.error is not None or self.text is None):
            raise ValueError("A successful envelope carries text and no error")
        if not self.success and self.error is None:
            raise ValueError("A failed envelope must carry a classified error")
        return self

    @classmethod
    def failure(
        cls,
        error: BlueprintError,
        provider: Optional[ProviderName] = None,
        model: Optional[str] = None,
        attempted_providers: Tuple[ProviderName, ...] = ()
    ) -> "ResponseEnvelope":
        return cls(
            success=False,
            error=error,
            metadata=ResponseMetadata(
                provider=provider,
                model=model,
                attempted_providers=attempted_providers,
            ),
        )
