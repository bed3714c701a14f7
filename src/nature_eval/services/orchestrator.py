"""Public entry point for queueing and running evaluations."""

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from functools import partial
from uuid import UUID

from nature_eval.domain.errors import (
    ConfigurationError,
    OrchestrationStateError,
    PersistenceError,
    UnsupportedProviderError,
)
from nature_eval.domain.evaluations import ImageRecord
from nature_eval.domain.progress import ProgressEvent, RunStatus, StatusSnapshot
from nature_eval.domain.provider import ProviderInfo
from nature_eval.services.failures import FailureClassifier
from nature_eval.services.pipeline import (
    ArtifactStore,
    CredentialStore,
    EvaluationPipeline,
    PromptSource,
    SaliencyAnalyzer,
    TechnicalAnalyzer,
)
from nature_eval.services.provider import ProviderClient
from nature_eval.services.recorder import ResultRecorder
from nature_eval.services.scheduler import (
    BatchScheduler,
    CancellationToken,
    SleepFn,
    total_batches,
)
from nature_eval.services.sessions import SessionTracker

_logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressEvent], None]


@dataclass
class OrchestrationState:
    """Mutable run state; written only by the task driving the run."""

    status: RunStatus = RunStatus.IDLE
    status_message: str = "Ready to evaluate images"
    queue: list[ImageRecord] = field(default_factory=list)
    current_batch: int = 0
    total_batches: int = 0
    current_index: int = 0
    total_subjects: int = 0
    progress: float = 0.0
    successes: int = 0
    failures: int = 0
    session_id: UUID | None = None
    failure_reason: str | None = None

    def reset_counters(self, total: int, batch_size: int) -> None:
        self.current_batch = 0
        self.current_index = 0
        self.progress = 0.0
        self.successes = 0
        self.failures = 0
        self.failure_reason = None
        self.total_subjects = total
        self.total_batches = total_batches(total, batch_size)

    def apply(self, event: ProgressEvent) -> None:
        self.current_batch = event.batch_index
        self.total_batches = event.total_batches
        self.current_index = event.subject_index
        self.total_subjects = event.total_subjects
        self.progress = event.progress
        if event.succeeded:
            self.successes += 1
        else:
            self.failures += 1

    def snapshot(self) -> StatusSnapshot:
        return StatusSnapshot(
            status=self.status,
            status_message=self.status_message,
            queued=len(self.queue),
            current_batch=self.current_batch,
            total_batches=self.total_batches,
            current_index=self.current_index,
            total_subjects=self.total_subjects,
            progress=self.progress,
            successes=self.successes,
            failures=self.failures,
            session_id=self.session_id,
            failure_reason=self.failure_reason,
        )


@dataclass
class RunSettings:
    provider_id: str = "anthropic"
    batch_size: int = 15
    request_delay_seconds: float = 2.0
    image_resolution: int | None = None


@dataclass
class EvaluationOrchestrator:
    """Composes recorder, pipeline, scheduler and session tracking.

    States: idle -> queued -> evaluating -> completed | cancelled | failed.
    One run at a time; a run is a single asyncio task.
    """

    recorder: ResultRecorder
    providers: Mapping[str, tuple[ProviderClient, ProviderInfo]]
    credential_store: CredentialStore
    prompt_source: PromptSource
    artifact_store: ArtifactStore
    technical_analyzer: TechnicalAnalyzer
    saliency_analyzer: SaliencyAnalyzer
    run_settings: RunSettings = field(default_factory=RunSettings)
    classifier: FailureClassifier = field(default_factory=FailureClassifier)
    sleep: SleepFn = asyncio.sleep
    state: OrchestrationState = field(default_factory=OrchestrationState)
    listeners: list[ProgressListener] = field(default_factory=list)
    _cancellation: CancellationToken | None = field(default=None, repr=False)
    _task: "asyncio.Task[RunStatus] | None" = field(default=None, repr=False)

    def enqueue(self, images: Iterable[ImageRecord]) -> int:
        """Add images to the queue and return the queue length."""
        if self.state.status is RunStatus.EVALUATING:
            raise OrchestrationStateError("Cannot enqueue while evaluating")
        queued_ids = {image.id for image in self.state.queue}
        for image in images:
            if image.id not in queued_ids:
                self.state.queue.append(image)
                queued_ids.add(image.id)
        if self.state.queue:
            self.state.status = RunStatus.QUEUED
            self.state.status_message = (
                f"Added {len(self.state.queue)} images to queue"
            )
        return len(self.state.queue)

    def clear_queue(self) -> None:
        if self.state.status is RunStatus.EVALUATING:
            raise OrchestrationStateError("Cannot clear the queue while evaluating")
        self.state.queue.clear()
        self.state.progress = 0.0
        self.state.status = RunStatus.IDLE
        self.state.status_message = "Queue cleared"

    async def start(self) -> RunStatus:
        """Run every queued image to completion and return the final status."""
        task = self.launch()
        if task is None:
            return self.state.status
        return await task

    def launch(self) -> "asyncio.Task[RunStatus] | None":
        """Validate configuration and start the run as a background task.

        Returns ``None`` when the queue is empty.
        """
        if self.state.status is RunStatus.EVALUATING:
            raise OrchestrationStateError("An evaluation is already running")
        if not self.state.queue:
            self.state.status_message = "No images to evaluate"
            return None

        try:
            provider, info = self._resolve_provider()
            credential = self.credential_store.get_credential(info.identifier)
        except ConfigurationError as exc:
            self.state.status = RunStatus.FAILED
            self.state.failure_reason = exc.message
            self.state.status_message = exc.message
            _logger.error("Cannot start evaluation: %s", exc.message)
            raise

        prompt = self.prompt_source.load_evaluation_prompt()
        subjects = list(self.state.queue)
        tracker = SessionTracker(self.recorder.store)
        try:
            session = tracker.open(len(subjects), providers=(info.identifier,))
        except PersistenceError as exc:
            self.state.status = RunStatus.FAILED
            self.state.failure_reason = f"Persistence failure: {exc}"
            self.state.status_message = (
                f"Evaluation failed: {self.state.failure_reason}"
            )
            _logger.exception("Could not open an evaluation session")
            raise

        pipeline = EvaluationPipeline(
            artifact_store=self.artifact_store,
            technical_analyzer=self.technical_analyzer,
            saliency_analyzer=self.saliency_analyzer,
            provider=provider,
            provider_info=info,
            recorder=self.recorder,
            tracker=tracker,
            image_resolution=self.run_settings.image_resolution,
        )
        self._cancellation = CancellationToken()
        scheduler = BatchScheduler(
            evaluate=partial(pipeline.evaluate, prompt=prompt, credential=credential),
            record_failure=pipeline.record_failure,
            classifier=self.classifier,
            cancellation=self._cancellation,
            sleep=self.sleep,
            on_status=self._set_status_message,
        )

        self.state.reset_counters(len(subjects), self.run_settings.batch_size)
        self.state.session_id = session.id
        self.state.status = RunStatus.EVALUATING
        _logger.info(
            "Starting evaluation of %s images with %s (%s)",
            len(subjects),
            info.display_name,
            info.model,
        )
        self._task = asyncio.create_task(self._run(scheduler, tracker, subjects))
        return self._task

    def cancel(self) -> None:
        """Request cancellation; takes effect before the next image."""
        if self.state.status is not RunStatus.EVALUATING or self._cancellation is None:
            raise OrchestrationStateError("No evaluation is running")
        self._cancellation.cancel()
        self.state.status_message = "Cancelling after the current image..."

    async def wait(self) -> RunStatus:
        if self._task is None:
            return self.state.status
        return await self._task

    def add_listener(self, listener: ProgressListener) -> None:
        self.listeners.append(listener)

    def _resolve_provider(self) -> tuple[ProviderClient, ProviderInfo]:
        provider_id = self.run_settings.provider_id
        if provider_id not in self.providers:
            raise UnsupportedProviderError(provider_id)
        return self.providers[provider_id]

    def _set_status_message(self, message: str) -> None:
        self.state.status_message = message

    async def _run(
        self,
        scheduler: BatchScheduler,
        tracker: SessionTracker,
        subjects: list[ImageRecord],
    ) -> RunStatus:
        status = RunStatus.FAILED
        try:
            async for event in scheduler.run(
                subjects,
                batch_size=self.run_settings.batch_size,
                inter_request_delay=self.run_settings.request_delay_seconds,
            ):
                self.state.apply(event)
                for listener in self.listeners:
                    listener(event)
            if scheduler.cancellation.cancelled:
                status = RunStatus.CANCELLED
            else:
                status = RunStatus.COMPLETED
        except PersistenceError as exc:
            self.state.failure_reason = f"Persistence failure: {exc}"
            _logger.exception("Evaluation aborted by a persistence failure")
        finally:
            del self.state.queue[: scheduler.tally.processed]
            try:
                tracker.close()
            except PersistenceError as exc:
                status = RunStatus.FAILED
                self.state.failure_reason = f"Could not close session: {exc}"
                _logger.exception("Failed to close session %s", self.state.session_id)
            self._finish(status, scheduler)
        return status

    def _finish(self, status: RunStatus, scheduler: BatchScheduler) -> None:
        tally = scheduler.tally
        self.state.status = status
        if status is RunStatus.COMPLETED:
            self.state.progress = 1.0
            self.state.status_message = (
                f"Evaluation complete: {tally.successes} successful, "
                f"{tally.failures} failed"
            )
        elif status is RunStatus.CANCELLED:
            self.state.status_message = (
                f"Evaluation cancelled: {tally.successes} successful, "
                f"{tally.failures} failed, {len(self.state.queue)} still queued"
            )
        else:
            if self.state.failure_reason is None:
                self.state.failure_reason = "Unexpected error"
            self.state.status_message = (
                f"Evaluation failed: {self.state.failure_reason}"
            )
        _logger.info(self.state.status_message)
