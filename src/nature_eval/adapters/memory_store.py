"""Process-local evaluation store."""

import threading
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from uuid import UUID, uuid4

from nature_eval.domain.errors import PersistenceError
from nature_eval.domain.evaluations import (
    EvaluationResult,
    EvaluationSession,
    ImageRecord,
    RecordChange,
    UsageStats,
)
from nature_eval.services.recorder import EvaluationStore


@dataclass
class InMemoryEvaluationStore(EvaluationStore):
    """Dict-backed store.

    ``commit_record`` validates the whole change before applying any of it,
    so a rejected change leaves nothing behind.
    """

    images: dict[UUID, ImageRecord] = field(default_factory=dict)
    results: dict[UUID, EvaluationResult] = field(default_factory=dict)
    sessions: dict[UUID, EvaluationSession] = field(default_factory=dict)
    usage: UsageStats = field(default_factory=UsageStats)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def create_image(
        self, processed_path: str | None, original_filename: str | None = None
    ) -> ImageRecord:
        image = ImageRecord(
            id=uuid4(),
            created_at=datetime.now(tz=UTC),
            processed_path=processed_path,
            original_filename=original_filename,
        )
        with self._lock:
            self.images[image.id] = image
        return image

    def get_image(self, image_id: UUID) -> ImageRecord | None:
        return self.images.get(image_id)

    def list_images(self) -> list[ImageRecord]:
        with self._lock:
            return sorted(self.images.values(), key=lambda image: image.created_at)

    def delete_image(self, image_id: UUID) -> None:
        with self._lock:
            self.images.pop(image_id, None)
            for result_id in [
                result.id
                for result in self.results.values()
                if result.image_id == image_id
            ]:
                del self.results[result_id]

    def get_result(self, result_id: UUID) -> EvaluationResult | None:
        return self.results.get(result_id)

    def list_results(self, image_id: UUID) -> list[EvaluationResult]:
        with self._lock:
            owned = [r for r in self.results.values() if r.image_id == image_id]
        return sorted(
            owned, key=lambda result: (result.evaluated_at, result.evaluation_index)
        )

    def create_session(self, session: EvaluationSession) -> EvaluationSession:
        with self._lock:
            if session.id in self.sessions:
                raise PersistenceError(f"Session {session.id} already exists")
            self.sessions[session.id] = session
        return session

    def get_session(self, session_id: UUID) -> EvaluationSession | None:
        return self.sessions.get(session_id)

    def update_session(self, session: EvaluationSession) -> None:
        with self._lock:
            if session.id not in self.sessions:
                raise PersistenceError(f"Session {session.id} does not exist")
            self.sessions[session.id] = session

    def list_session_results(self, session_id: UUID) -> list[EvaluationResult]:
        with self._lock:
            attached = [
                r for r in self.results.values() if r.session_id == session_id
            ]
        return sorted(attached, key=lambda result: result.evaluated_at)

    def delete_session(self, session_id: UUID) -> None:
        with self._lock:
            self.sessions.pop(session_id, None)
            for result in list(self.results.values()):
                if result.session_id == session_id:
                    self.results[result.id] = replace(result, session_id=None)

    def get_usage_stats(self) -> UsageStats:
        return self.usage

    def commit_record(self, change: RecordChange) -> None:
        with self._lock:
            self._validate(change)
            if change.demoted_result_id is not None:
                demoted = self.results[change.demoted_result_id]
                self.results[demoted.id] = replace(demoted, is_current=False)
            self.results[change.result.id] = change.result
            self.images[change.image.id] = change.image
            if change.session is not None:
                self.sessions[change.session.id] = change.session
            if change.usage is not None:
                self.usage = replace(
                    self.usage,
                    total_tokens=self.usage.total_tokens + change.usage.tokens,
                    total_cost=self.usage.total_cost + change.usage.cost,
                    total_images_evaluated=(
                        self.usage.total_images_evaluated + change.usage.images
                    ),
                )

    def _validate(self, change: RecordChange) -> None:
        if change.image.id not in self.images:
            raise PersistenceError(f"Image {change.image.id} does not exist")
        if change.result.id in self.results:
            raise PersistenceError(f"Result {change.result.id} already exists")
        if change.result.image_id != change.image.id:
            raise PersistenceError("Result does not belong to the image")
        if change.demoted_result_id is not None:
            demoted = self.results.get(change.demoted_result_id)
            if demoted is None or demoted.image_id != change.image.id:
                raise PersistenceError(
                    f"Cannot demote result {change.demoted_result_id}"
                )
        if change.session is not None and change.session.id not in self.sessions:
            raise PersistenceError(f"Session {change.session.id} does not exist")
