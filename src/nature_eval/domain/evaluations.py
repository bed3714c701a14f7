"""Domain records for images, evaluation results and sessions."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from uuid import UUID

from nature_eval.domain.analysis import SaliencySummary, TechnicalMetrics


class ResultStatus(StrEnum):
    COMPLETED = "completed"
    FAILED = "failed"


class ScoreTrend(StrEnum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


@dataclass(frozen=True)
class ImageRecord:
    """An imported image tracked across repeated evaluations."""

    id: UUID
    created_at: datetime
    processed_path: str | None
    original_filename: str | None = None
    evaluation_count: int = 0
    first_evaluated_at: datetime | None = None
    last_evaluated_at: datetime | None = None
    current_result_id: UUID | None = None
    is_favorite: bool = False
    notes: str | None = None
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class EvaluationResult:
    """One evaluation attempt. Only ``is_current`` changes after creation."""

    id: UUID
    image_id: UUID
    evaluated_at: datetime
    status: ResultStatus
    is_current: bool
    composition_score: float = 0.0
    quality_score: float = 0.0
    sellability_score: float = 0.0
    artistic_score: float = 0.0
    overall_weighted_score: float = 0.0
    primary_placement: str | None = None
    strengths: tuple[str, ...] = ()
    improvements: tuple[str, ...] = ()
    market_comparison: str | None = None
    technical_innovations: tuple[str, ...] = ()
    print_size_recommendation: str | None = None
    price_tier_suggestion: str | None = None
    title: str | None = None
    description: str | None = None
    keywords: tuple[str, ...] = ()
    alt_text: str | None = None
    suggested_categories: tuple[str, ...] = ()
    best_use_cases: tuple[str, ...] = ()
    suggested_price_tier: str | None = None
    provider: str | None = None
    model_identifier: str | None = None
    model_display_name: str | None = None
    api_version: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost: float = 0.0
    raw_response: str | None = None
    evaluation_index: int = 1
    evaluation_source: str = "manual"
    prompt_version: str | None = None
    image_resolution: int | None = None
    processing_time_seconds: float = 0.0
    error_code: str | None = None
    error_message: str | None = None
    retry_count: int = 0
    parent_result_id: UUID | None = None
    session_id: UUID | None = None
    technical: TechnicalMetrics | None = None
    saliency: SaliencySummary | None = None

    @property
    def is_successful(self) -> bool:
        return self.status is ResultStatus.COMPLETED

    @property
    def is_retry(self) -> bool:
        return self.parent_result_id is not None


@dataclass(frozen=True)
class EvaluationSession:
    """Aggregate record of one batch run."""

    id: UUID
    started_at: datetime
    total_subjects: int
    session_type: str = "batch"
    ended_at: datetime | None = None
    success_count: int = 0
    failure_count: int = 0
    total_cost: float = 0.0
    average_processing_time: float = 0.0
    providers: tuple[str, ...] = ()

    @property
    def processed_count(self) -> int:
        return self.success_count + self.failure_count


@dataclass(frozen=True)
class UsageStats:
    """Process-wide running API usage totals."""

    total_tokens: int = 0
    total_cost: float = 0.0
    total_images_evaluated: int = 0
    last_reset_at: datetime | None = None


@dataclass(frozen=True)
class UsageDelta:
    tokens: int
    cost: float
    images: int = 1


@dataclass(frozen=True)
class RecordChange:
    """Everything one recorded outcome writes, committed as a unit."""

    image: ImageRecord
    result: EvaluationResult
    demoted_result_id: UUID | None = None
    session: EvaluationSession | None = None
    usage: UsageDelta | None = None
