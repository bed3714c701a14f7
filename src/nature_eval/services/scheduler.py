"""Batch scheduling with inter-request delay and retry handling."""

import asyncio
import logging
import math
import threading
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from nature_eval.domain.errors import PersistenceError
from nature_eval.domain.evaluations import EvaluationResult, ImageRecord
from nature_eval.domain.progress import ProgressEvent
from nature_eval.services.failures import FailureClassifier, RetryKind, RetryPolicy

_logger = logging.getLogger(__name__)

EvaluateFn = Callable[[ImageRecord], Awaitable[EvaluationResult]]
RecordFailureFn = Callable[[ImageRecord, BaseException, int], EvaluationResult]
SleepFn = Callable[[float], Awaitable[None]]


class CancellationToken:
    """Cooperative cancellation flag, settable from any thread."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class RunTally:
    """Outcome counts, updated once per subject after retries resolve."""

    successes: int = 0
    failures: int = 0

    @property
    def processed(self) -> int:
        return self.successes + self.failures


def partition_batches(
    subjects: Sequence[ImageRecord], batch_size: int
) -> list[list[ImageRecord]]:
    """Split subjects into ordered batches of at most ``batch_size``."""
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    return [
        list(subjects[start : start + batch_size])
        for start in range(0, len(subjects), batch_size)
    ]


def total_batches(total_subjects: int, batch_size: int) -> int:
    return math.ceil(total_subjects / batch_size) if total_subjects else 0


def _ignore_status(_message: str) -> None:
    return None


@dataclass
class BatchScheduler:
    """Drives subjects through the pipeline one at a time.

    Cancellation is checked before every batch and every subject; an
    in-flight call always finishes and is recorded. Persistence errors abort
    the run, every other failure is classified and recorded per subject.
    """

    evaluate: EvaluateFn
    record_failure: RecordFailureFn
    classifier: FailureClassifier = field(default_factory=FailureClassifier)
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    sleep: SleepFn = asyncio.sleep
    on_status: Callable[[str], None] = _ignore_status
    tally: RunTally = field(default_factory=RunTally)

    async def run(
        self,
        subjects: Sequence[ImageRecord],
        batch_size: int,
        inter_request_delay: float,
    ) -> AsyncIterator[ProgressEvent]:
        """Process subjects in batches, yielding progress after each one."""
        batches = partition_batches(subjects, batch_size)
        batch_count = len(batches)
        total = len(subjects)
        position = 0

        for batch_number, batch in enumerate(batches, start=1):
            if self.cancellation.cancelled:
                break
            self.on_status(f"Processing batch {batch_number} of {batch_count}...")

            for offset, subject in enumerate(batch):
                if self.cancellation.cancelled:
                    break
                position += 1
                self.on_status(
                    f"Evaluating image {position} of {total} "
                    f"(batch {batch_number}/{batch_count})..."
                )
                succeeded = await self._process(subject)
                yield ProgressEvent(
                    batch_index=batch_number,
                    total_batches=batch_count,
                    subject_index=position,
                    total_subjects=total,
                    succeeded=succeeded,
                )

                is_last = batch_number == batch_count and offset == len(batch) - 1
                if not is_last and not self.cancellation.cancelled:
                    self.on_status(
                        f"Waiting {inter_request_delay:g} seconds "
                        "before next request..."
                    )
                    await self.sleep(inter_request_delay)

    async def _process(self, subject: ImageRecord) -> bool:
        try:
            await self.evaluate(subject)
        except PersistenceError:
            raise
        except Exception as exc:  # noqa: BLE001
            _logger.warning("Evaluation of image %s failed: %s", subject.id, exc)
            policy = self.classifier.classify(exc)
            attempts, error = await self._retry(subject, policy, exc)
            if error is None:
                self.tally.successes += 1
                return True
            self.on_status(f"Evaluation failed: {error}")
            self.record_failure(subject, error, attempts)
            self.tally.failures += 1
            return False
        self.tally.successes += 1
        return True

    async def _retry(
        self, subject: ImageRecord, policy: RetryPolicy, error: Exception
    ) -> tuple[int, Exception | None]:
        """Apply a retry policy; returns attempts made and the final error."""
        attempts = 0
        for attempt, delay in enumerate(policy.delays, start=1):
            if policy.kind is RetryKind.RATE_LIMIT:
                self.on_status(f"Rate limit hit. Waiting {delay:g} seconds...")
            else:
                self.on_status(
                    f"API overloaded. Retry {attempt}/{policy.max_attempts} "
                    f"in {delay:g} seconds..."
                )
            _logger.info(
                "Retrying image %s (%s, attempt %s/%s) after %ss",
                subject.id,
                policy.kind,
                attempt,
                policy.max_attempts,
                delay,
            )
            await self.sleep(delay)
            attempts = attempt
            try:
                await self.evaluate(subject)
            except PersistenceError:
                raise
            except Exception as exc:  # noqa: BLE001
                _logger.warning(
                    "Retry %s/%s for image %s failed: %s",
                    attempt,
                    policy.max_attempts,
                    subject.id,
                    exc,
                )
                error = exc
                if not self.classifier.classify(exc).retryable:
                    break
            else:
                if policy.kind is RetryKind.BACKOFF:
                    self.on_status("Retry successful. Continuing...")
                return attempts, None
        if policy.kind is RetryKind.BACKOFF and attempts == policy.max_attempts:
            self.on_status(
                f"Failed after {policy.max_attempts} retries. Skipping image."
            )
        return attempts, error
