"""Read-side queries over results, sessions and usage totals."""

from dataclasses import dataclass
from uuid import UUID

from nature_eval.domain.evaluations import (
    EvaluationResult,
    EvaluationSession,
    ImageRecord,
    ResultStatus,
    ScoreTrend,
    UsageStats,
)
from nature_eval.services.recorder import EvaluationStore

TREND_THRESHOLD = 0.5


@dataclass(frozen=True)
class ImageHistory:
    """An image with its results, newest first."""

    image: ImageRecord
    results: list[EvaluationResult]

    @property
    def current(self) -> EvaluationResult | None:
        return next((result for result in self.results if result.is_current), None)

    @property
    def latest(self) -> EvaluationResult | None:
        return self.results[0] if self.results else None

    @property
    def has_failed_evaluations(self) -> bool:
        return any(result.status is ResultStatus.FAILED for result in self.results)

    @property
    def average_score(self) -> float | None:
        completed = self._completed()
        if not completed:
            return None
        return sum(result.overall_weighted_score for result in completed) / len(
            completed
        )

    @property
    def score_trend(self) -> ScoreTrend:
        completed = self._completed()
        if len(completed) < 2:  # noqa: PLR2004
            return ScoreTrend.STABLE
        recent = completed[0].overall_weighted_score
        previous = completed[1].overall_weighted_score
        if recent > previous + TREND_THRESHOLD:
            return ScoreTrend.IMPROVING
        if recent < previous - TREND_THRESHOLD:
            return ScoreTrend.DECLINING
        return ScoreTrend.STABLE

    def from_provider(self, provider: str) -> list[EvaluationResult]:
        return [result for result in self.results if result.provider == provider]

    def _completed(self) -> list[EvaluationResult]:
        return [result for result in self.results if result.is_successful]


@dataclass
class UsageService:
    """Queries exposed to callers of the evaluation engine."""

    store: EvaluationStore

    def get_usage_stats(self) -> UsageStats:
        return self.store.get_usage_stats()

    def get_session(self, session_id: UUID) -> EvaluationSession | None:
        return self.store.get_session(session_id)

    def get_history(self, image_id: UUID) -> ImageHistory | None:
        """Return an image's history sorted newest first."""
        image = self.store.get_image(image_id)
        if image is None:
            return None
        results = sorted(
            self.store.list_results(image_id),
            key=lambda result: (result.evaluated_at, result.evaluation_index),
            reverse=True,
        )
        return ImageHistory(image=image, results=results)
