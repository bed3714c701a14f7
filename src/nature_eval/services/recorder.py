"""Records evaluation outcomes against the persistent entity graph."""

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol
from uuid import UUID, uuid4

from nature_eval.domain.analysis import SaliencySummary, TechnicalMetrics
from nature_eval.domain.errors import EvaluationError, PersistenceError
from nature_eval.domain.evaluations import (
    EvaluationResult,
    EvaluationSession,
    ImageRecord,
    RecordChange,
    ResultStatus,
    UsageDelta,
    UsageStats,
)
from nature_eval.domain.provider import ProviderInfo, ProviderResponse
from nature_eval.services.provider import redact_secrets

if TYPE_CHECKING:
    from nature_eval.services.sessions import SessionTracker

_logger = logging.getLogger(__name__)


class EvaluationStore(Protocol):
    """Persistence interface for images, results, sessions and usage."""

    def create_image(
        self, processed_path: str | None, original_filename: str | None = None
    ) -> ImageRecord:
        """Create an image record and return it."""

    def get_image(self, image_id: UUID) -> ImageRecord | None:
        """Return an image by id, if present."""

    def list_images(self) -> list[ImageRecord]:
        """Return all images, oldest first."""

    def delete_image(self, image_id: UUID) -> None:
        """Delete an image and every result it owns."""

    def get_result(self, result_id: UUID) -> EvaluationResult | None:
        """Return a result by id, if present."""

    def list_results(self, image_id: UUID) -> list[EvaluationResult]:
        """Return an image's results ordered by evaluation time."""

    def create_session(self, session: EvaluationSession) -> EvaluationSession:
        """Persist a new session."""

    def get_session(self, session_id: UUID) -> EvaluationSession | None:
        """Return a session by id, if present."""

    def update_session(self, session: EvaluationSession) -> None:
        """Overwrite a session's aggregate fields."""

    def list_session_results(self, session_id: UUID) -> list[EvaluationResult]:
        """Return results attached to a session."""

    def delete_session(self, session_id: UUID) -> None:
        """Delete a session, detaching its results."""

    def get_usage_stats(self) -> UsageStats:
        """Return the process-wide usage totals."""

    def commit_record(self, change: RecordChange) -> None:
        """Apply one recorded outcome atomically or not at all."""


@dataclass(frozen=True)
class EvaluationSuccess:
    """A completed provider call ready to be recorded."""

    response: ProviderResponse
    provider: ProviderInfo
    cost: float
    processing_time_seconds: float = 0.0
    technical: TechnicalMetrics | None = None
    saliency: SaliencySummary | None = None
    prompt_version: str | None = None
    image_resolution: int | None = None


@dataclass(frozen=True)
class EvaluationFailure:
    """A terminal failure after the retry policy was exhausted."""

    error: BaseException
    provider: ProviderInfo | None = None
    retry_count: int = 0
    processing_time_seconds: float = 0.0
    prompt_version: str | None = None
    image_resolution: int | None = None

    @property
    def code(self) -> str:
        if isinstance(self.error, EvaluationError):
            provider_code = getattr(self.error, "provider_code", None)
            return provider_code or self.error.code
        return "unexpected_error"

    @property
    def message(self) -> str:
        return redact_secrets(str(self.error) or type(self.error).__name__)


Outcome = EvaluationSuccess | EvaluationFailure


@dataclass
class ResultRecorder:
    """Single writer for the image/result/session graph.

    Every outcome becomes one ``RecordChange`` committed in a single store
    call. A success always becomes the current result; a failure becomes
    current only when the image has no current result yet.
    """

    store: EvaluationStore
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(
        self,
        image_id: UUID,
        outcome: Outcome,
        tracker: "SessionTracker | None" = None,
    ) -> EvaluationResult:
        """Persist an outcome and return the created result."""
        with self._lock:
            image = self.store.get_image(image_id)
            if image is None:
                raise PersistenceError(f"Image {image_id} does not exist")
            change = self._build_change(image, outcome, tracker)
            try:
                self.store.commit_record(change)
            except PersistenceError:
                _logger.exception("Failed to record result for image %s", image_id)
                raise
            if tracker is not None and change.session is not None:
                tracker.accept(change.session)
        if change.demoted_result_id is not None:
            _logger.info(
                "Image %s re-evaluated, result %s replaces %s",
                image_id,
                change.result.id,
                change.demoted_result_id,
            )
        return change.result

    def _build_change(
        self,
        image: ImageRecord,
        outcome: Outcome,
        tracker: "SessionTracker | None",
    ) -> RecordChange:
        now = datetime.now(tz=UTC)
        succeeded = isinstance(outcome, EvaluationSuccess)
        previous = (
            self.store.get_result(image.current_result_id)
            if image.current_result_id
            else None
        )
        becomes_current = succeeded or previous is None
        session = tracker.counted(succeeded) if tracker is not None else None

        result = _base_result(image, previous, now, becomes_current, session)
        if isinstance(outcome, EvaluationSuccess):
            result = _apply_success(result, outcome)
            usage = UsageDelta(
                tokens=outcome.response.input_tokens + outcome.response.output_tokens,
                cost=outcome.cost,
            )
        else:
            result = _apply_failure(result, outcome, previous)
            usage = None

        updated_image = replace(
            image,
            evaluation_count=image.evaluation_count + 1,
            last_evaluated_at=now,
            first_evaluated_at=image.first_evaluated_at or now,
            current_result_id=result.id if becomes_current else image.current_result_id,
        )
        return RecordChange(
            image=updated_image,
            result=result,
            demoted_result_id=previous.id if previous and becomes_current else None,
            session=session,
            usage=usage,
        )


def _base_result(
    image: ImageRecord,
    previous: EvaluationResult | None,
    now: datetime,
    is_current: bool,
    session: EvaluationSession | None,
) -> EvaluationResult:
    return EvaluationResult(
        id=uuid4(),
        image_id=image.id,
        evaluated_at=now,
        status=ResultStatus.FAILED,
        is_current=is_current,
        evaluation_index=image.evaluation_count + 1,
        evaluation_source="re-evaluation" if previous is not None else "manual",
        session_id=session.id if session is not None else None,
    )


def _apply_success(
    result: EvaluationResult, outcome: EvaluationSuccess
) -> EvaluationResult:
    evaluation = outcome.response.evaluation
    return replace(
        result,
        status=ResultStatus.COMPLETED,
        composition_score=evaluation.composition_score,
        quality_score=evaluation.quality_score,
        sellability_score=evaluation.sellability_score,
        artistic_score=evaluation.artistic_score,
        overall_weighted_score=evaluation.overall_weighted_score,
        primary_placement=evaluation.primary_placement,
        strengths=tuple(evaluation.strengths),
        improvements=tuple(evaluation.improvements),
        market_comparison=evaluation.market_comparison,
        technical_innovations=tuple(evaluation.technical_innovations or ()),
        print_size_recommendation=evaluation.print_size_recommendation,
        price_tier_suggestion=evaluation.price_tier_suggestion,
        title=evaluation.title,
        description=evaluation.description,
        keywords=tuple(evaluation.keywords or ()),
        alt_text=evaluation.alt_text,
        suggested_categories=tuple(evaluation.suggested_categories or ()),
        best_use_cases=tuple(evaluation.best_use_cases or ()),
        suggested_price_tier=evaluation.suggested_price_tier,
        input_tokens=outcome.response.input_tokens,
        output_tokens=outcome.response.output_tokens,
        estimated_cost=outcome.cost,
        raw_response=outcome.response.raw_response,
        processing_time_seconds=outcome.processing_time_seconds,
        technical=outcome.technical,
        saliency=outcome.saliency,
        prompt_version=outcome.prompt_version,
        image_resolution=outcome.image_resolution,
        **_provider_fields(outcome.provider),
    )


def _apply_failure(
    result: EvaluationResult,
    outcome: EvaluationFailure,
    previous: EvaluationResult | None,
) -> EvaluationResult:
    retries_failure = previous is not None and not previous.is_successful
    return replace(
        result,
        status=ResultStatus.FAILED,
        error_code=outcome.code,
        error_message=outcome.message,
        retry_count=outcome.retry_count,
        parent_result_id=previous.id if retries_failure else None,
        evaluation_source="retry" if retries_failure else result.evaluation_source,
        processing_time_seconds=outcome.processing_time_seconds,
        prompt_version=outcome.prompt_version,
        image_resolution=outcome.image_resolution,
        **_provider_fields(outcome.provider),
    )


def _provider_fields(info: ProviderInfo | None) -> dict[str, object]:
    if info is None:
        return {}
    return {
        "provider": info.identifier,
        "model_identifier": info.model,
        "model_display_name": info.display_name,
        "api_version": info.api_version,
    }
