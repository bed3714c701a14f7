"""Progress and run status values published by the orchestrator."""

from dataclasses import dataclass
from enum import StrEnum
from uuid import UUID


class RunStatus(StrEnum):
    IDLE = "idle"
    QUEUED = "queued"
    EVALUATING = "evaluating"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class ProgressEvent:
    """Emitted by the scheduler after each subject."""

    batch_index: int
    total_batches: int
    subject_index: int
    total_subjects: int
    succeeded: bool

    @property
    def progress(self) -> float:
        if self.total_subjects == 0:
            return 0.0
        return self.subject_index / self.total_subjects


@dataclass(frozen=True)
class StatusSnapshot:
    """Read-only view of orchestrator state."""

    status: RunStatus
    status_message: str
    queued: int
    current_batch: int
    total_batches: int
    current_index: int
    total_subjects: int
    progress: float
    successes: int
    failures: int
    session_id: UUID | None
    failure_reason: str | None
