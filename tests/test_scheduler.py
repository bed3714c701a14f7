"""Tests for batch scheduling and retries."""

import asyncio
from datetime import UTC, datetime
from uuid import uuid4

import pytest

from nature_eval.domain.errors import (
    AuthenticationError,
    PersistenceError,
    ProviderOverloadedError,
    RateLimitError,
)
from nature_eval.domain.evaluations import ImageRecord
from nature_eval.domain.progress import ProgressEvent
from nature_eval.services.failures import FailureClassifier
from nature_eval.services.scheduler import (
    BatchScheduler,
    CancellationToken,
    partition_batches,
    total_batches,
)
from tests.conftest import RecordingSleep


def _images(count: int) -> list[ImageRecord]:
    now = datetime.now(tz=UTC)
    return [
        ImageRecord(id=uuid4(), created_at=now, processed_path=f"{index}.jpg")
        for index in range(count)
    ]


class ScriptedEvaluate:
    """Raises scripted errors per image, succeeding otherwise."""

    def __init__(self, errors: dict[str, list[Exception]] | None = None) -> None:
        self.errors = errors or {}
        self.calls: list[str] = []

    async def __call__(self, image: ImageRecord) -> None:
        self.calls.append(image.processed_path)
        queue = self.errors.get(image.processed_path, [])
        if queue:
            raise queue.pop(0)


class FailureLog:
    def __init__(self) -> None:
        self.entries: list[tuple[str, str, int]] = []

    def __call__(
        self, image: ImageRecord, error: BaseException, retry_count: int
    ) -> None:
        self.entries.append((image.processed_path, type(error).__name__, retry_count))


def _run(
    scheduler: BatchScheduler,
    images: list[ImageRecord],
    batch_size: int = 15,
    delay: float = 2.0,
) -> list[ProgressEvent]:
    async def collect() -> list[ProgressEvent]:
        return [
            event
            async for event in scheduler.run(
                images, batch_size=batch_size, inter_request_delay=delay
            )
        ]

    return asyncio.run(collect())


def test_partition_batches_keeps_order() -> None:
    images = _images(37)

    batches = partition_batches(images, 15)

    assert [len(batch) for batch in batches] == [15, 15, 7]
    assert [image for batch in batches for image in batch] == images
    assert total_batches(37, 15) == 3
    assert total_batches(0, 15) == 0


def test_partition_batches_rejects_zero_size() -> None:
    with pytest.raises(ValueError):
        partition_batches(_images(1), 0)


def test_run_reports_progress_and_delays_between_requests() -> None:
    sleep = RecordingSleep()
    evaluate = ScriptedEvaluate()
    scheduler = BatchScheduler(
        evaluate=evaluate, record_failure=FailureLog(), sleep=sleep
    )
    images = _images(37)

    events = _run(scheduler, images)

    assert len(events) == 37
    assert [event.batch_index for event in events[:16:15]] == [1, 2]
    assert events[-1].batch_index == 3
    assert events[-1].progress == 1.0
    assert evaluate.calls == [image.processed_path for image in images]
    assert sleep.delays == [2.0] * 36
    assert scheduler.tally.successes == 37


def test_overload_retries_with_exponential_backoff() -> None:
    sleep = RecordingSleep()
    failures = FailureLog()
    evaluate = ScriptedEvaluate({"0.jpg": [ProviderOverloadedError()] * 4})
    scheduler = BatchScheduler(evaluate=evaluate, record_failure=failures, sleep=sleep)

    events = _run(scheduler, _images(1))

    assert sleep.delays == [60.0, 120.0, 240.0]
    assert evaluate.calls == ["0.jpg"] * 4
    assert failures.entries == [("0.jpg", "ProviderOverloadedError", 3)]
    assert events[0].succeeded is False
    assert scheduler.tally.failures == 1


def test_overload_recovers_on_retry() -> None:
    sleep = RecordingSleep()
    failures = FailureLog()
    evaluate = ScriptedEvaluate({"0.jpg": [ProviderOverloadedError()]})
    scheduler = BatchScheduler(evaluate=evaluate, record_failure=failures, sleep=sleep)

    events = _run(scheduler, _images(1))

    assert sleep.delays == [60.0]
    assert failures.entries == []
    assert events[0].succeeded is True
    assert scheduler.tally.successes == 1
    assert scheduler.tally.failures == 0


def test_rate_limit_retries_once_after_advised_wait() -> None:
    sleep = RecordingSleep()
    failures = FailureLog()
    evaluate = ScriptedEvaluate(
        {"0.jpg": [RateLimitError(retry_after=7), RateLimitError(retry_after=7)]}
    )
    scheduler = BatchScheduler(evaluate=evaluate, record_failure=failures, sleep=sleep)

    _run(scheduler, _images(1))

    assert sleep.delays == [7]
    assert evaluate.calls == ["0.jpg", "0.jpg"]
    assert failures.entries == [("0.jpg", "RateLimitError", 1)]


def test_terminal_failure_is_recorded_without_retry() -> None:
    sleep = RecordingSleep()
    failures = FailureLog()
    evaluate = ScriptedEvaluate({"0.jpg": [AuthenticationError()]})
    scheduler = BatchScheduler(evaluate=evaluate, record_failure=failures, sleep=sleep)

    events = _run(scheduler, _images(2))

    assert failures.entries == [("0.jpg", "AuthenticationError", 0)]
    assert [event.succeeded for event in events] == [False, True]
    assert sleep.delays == [2.0]


def test_terminal_error_during_backoff_stops_retrying() -> None:
    sleep = RecordingSleep()
    failures = FailureLog()
    evaluate = ScriptedEvaluate(
        {"0.jpg": [ProviderOverloadedError(), AuthenticationError()]}
    )
    scheduler = BatchScheduler(evaluate=evaluate, record_failure=failures, sleep=sleep)

    _run(scheduler, _images(1))

    assert sleep.delays == [60.0]
    assert failures.entries == [("0.jpg", "AuthenticationError", 1)]


def test_cancellation_stops_before_next_subject() -> None:
    token = CancellationToken()
    evaluate = ScriptedEvaluate()
    sleep = RecordingSleep()
    scheduler = BatchScheduler(
        evaluate=evaluate,
        record_failure=FailureLog(),
        cancellation=token,
        sleep=sleep,
    )
    images = _images(10)

    async def collect() -> list[ProgressEvent]:
        events = []
        async for event in scheduler.run(images, batch_size=5, inter_request_delay=2):
            events.append(event)
            if event.subject_index == 3:
                token.cancel()
        return events

    events = asyncio.run(collect())

    assert len(events) == 3
    assert evaluate.calls == [image.processed_path for image in images[:3]]
    assert sleep.delays == [2, 2]
    assert scheduler.tally.processed == 3


def test_persistence_error_aborts_run() -> None:
    failures = FailureLog()
    evaluate = ScriptedEvaluate({"1.jpg": [PersistenceError("disk full")]})
    scheduler = BatchScheduler(
        evaluate=evaluate, record_failure=failures, sleep=RecordingSleep()
    )

    with pytest.raises(PersistenceError):
        _run(scheduler, _images(3))

    assert evaluate.calls == ["0.jpg", "1.jpg"]
    assert failures.entries == []
    assert scheduler.tally.processed == 1


def test_custom_classifier_limits_retries() -> None:
    sleep = RecordingSleep()
    evaluate = ScriptedEvaluate({"0.jpg": [ProviderOverloadedError()] * 3})
    scheduler = BatchScheduler(
        evaluate=evaluate,
        record_failure=FailureLog(),
        classifier=FailureClassifier(overload_base_seconds=1, max_retries=2),
        sleep=sleep,
    )

    _run(scheduler, _images(1))

    assert sleep.delays == [1, 2]
