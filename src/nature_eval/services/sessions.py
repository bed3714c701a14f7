"""Session tracking for batch evaluation runs."""

import logging
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import StrEnum
from uuid import uuid4

from nature_eval.domain.errors import OrchestrationStateError
from nature_eval.domain.evaluations import EvaluationSession
from nature_eval.services.recorder import EvaluationStore

_logger = logging.getLogger(__name__)


class SessionState(StrEnum):
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass
class SessionTracker:
    """Opens a session when a run starts and closes it with totals at the end."""

    store: EvaluationStore
    session: EvaluationSession | None = None
    state: SessionState = SessionState.NOT_STARTED

    def open(
        self,
        total_subjects: int,
        providers: tuple[str, ...] = (),
        session_type: str = "batch",
    ) -> EvaluationSession:
        """Create the session record for a run."""
        if self.state is not SessionState.NOT_STARTED:
            raise OrchestrationStateError(f"Session already {self.state}")
        session = EvaluationSession(
            id=uuid4(),
            started_at=datetime.now(tz=UTC),
            total_subjects=total_subjects,
            session_type=session_type,
            providers=providers,
        )
        self.session = self.store.create_session(session)
        self.state = SessionState.ACTIVE
        _logger.info(
            "Session %s opened for %s images", self.session.id, total_subjects
        )
        return self.session

    def counted(self, succeeded: bool) -> EvaluationSession | None:
        """Return the session with one more outcome counted, without storing it."""
        if self.state is not SessionState.ACTIVE or self.session is None:
            return None
        if succeeded:
            return replace(self.session, success_count=self.session.success_count + 1)
        return replace(self.session, failure_count=self.session.failure_count + 1)

    def accept(self, session: EvaluationSession) -> None:
        """Adopt counters that the recorder committed."""
        if self.state is not SessionState.ACTIVE:
            raise OrchestrationStateError("Session is not active")
        self.session = session

    def close(self) -> EvaluationSession:
        """Stamp the end time and recompute cost and timing aggregates."""
        if self.state is SessionState.CLOSED and self.session is not None:
            return self.session
        if self.state is SessionState.NOT_STARTED or self.session is None:
            raise OrchestrationStateError("Session was never opened")
        results = self.store.list_session_results(self.session.id)
        total_cost = sum(result.estimated_cost for result in results)
        average_time = (
            sum(result.processing_time_seconds for result in results) / len(results)
            if results
            else 0.0
        )
        closed = replace(
            self.session,
            ended_at=datetime.now(tz=UTC),
            total_cost=total_cost,
            average_processing_time=average_time,
        )
        self.store.update_session(closed)
        self.session = closed
        self.state = SessionState.CLOSED
        _logger.info(
            "Session %s closed: %s succeeded, %s failed, cost $%.4f",
            closed.id,
            closed.success_count,
            closed.failure_count,
            closed.total_cost,
        )
        return closed
