"""Models exchanged with remote scoring providers."""

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

Placement = Literal["PORTFOLIO", "STORE", "BOTH", "ARCHIVE", "PRACTICE"]


class EvaluationPayload(BaseModel):
    """Structured rubric output returned by the model."""

    composition_score: float = Field(ge=0.0, le=10.0)
    quality_score: float = Field(ge=0.0, le=10.0)
    sellability_score: float = Field(ge=0.0, le=10.0)
    artistic_score: float = Field(ge=0.0, le=10.0)
    overall_weighted_score: float = Field(ge=0.0, le=10.0)
    primary_placement: Placement
    strengths: list[str] = Field(min_length=1)
    improvements: list[str] = Field(min_length=1)
    market_comparison: str
    technical_innovations: list[str] | None = None
    print_size_recommendation: str | None = None
    price_tier_suggestion: str | None = None
    title: str | None = None
    description: str | None = None
    keywords: list[str] | None = None
    alt_text: str | None = None
    suggested_categories: list[str] | None = None
    best_use_cases: list[str] | None = None
    suggested_price_tier: str | None = None


@dataclass(frozen=True)
class RateLimitInfo:
    """Rate-limit telemetry read from provider response headers."""

    requests_remaining: int | None = None
    input_tokens_remaining: int | None = None
    output_tokens_remaining: int | None = None
    requests_reset: datetime | None = None
    tokens_reset: datetime | None = None
    retry_after: float | None = None


@dataclass(frozen=True)
class ProviderResponse:
    """Successful provider call."""

    evaluation: EvaluationPayload
    input_tokens: int
    output_tokens: int
    raw_response: str
    rate_limit: RateLimitInfo | None = None


@dataclass(frozen=True)
class ProviderInfo:
    """Identifies the provider/model pair used for a run."""

    identifier: str
    display_name: str
    model: str
    api_version: str | None = None


@dataclass(frozen=True)
class EncodedArtifact:
    """Image bytes prepared for transport."""

    data: str
    media_type: str

    @property
    def data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.data}"
