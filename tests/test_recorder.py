"""Tests for result recording."""

from datetime import UTC, datetime
from uuid import uuid4

import pytest

from nature_eval.adapters.memory_store import InMemoryEvaluationStore
from nature_eval.domain.errors import (
    AuthenticationError,
    PersistenceError,
    ProviderOverloadedError,
)
from nature_eval.domain.evaluations import ResultStatus
from nature_eval.services.recorder import (
    EvaluationFailure,
    EvaluationSuccess,
    ResultRecorder,
)
from nature_eval.services.sessions import SessionTracker
from tests.conftest import ANTHROPIC_INFO, FlakyStore, make_response


def _success(score: float = 7.5) -> EvaluationSuccess:
    return EvaluationSuccess(
        response=make_response(score), provider=ANTHROPIC_INFO, cost=0.0175
    )


def test_first_success_becomes_current(store: InMemoryEvaluationStore) -> None:
    image = store.create_image("processed/a.jpg")
    recorder = ResultRecorder(store)

    result = recorder.record(image.id, _success())

    stored = store.get_image(image.id)
    assert result.is_current
    assert result.status is ResultStatus.COMPLETED
    assert result.evaluation_index == 1
    assert result.evaluation_source == "manual"
    assert stored.current_result_id == result.id
    assert stored.evaluation_count == 1
    assert stored.first_evaluated_at == stored.last_evaluated_at
    assert store.get_usage_stats().total_tokens == 1500
    assert store.get_usage_stats().total_images_evaluated == 1


def test_reevaluation_demotes_previous_result(store: InMemoryEvaluationStore) -> None:
    image = store.create_image("processed/a.jpg")
    recorder = ResultRecorder(store)

    first = recorder.record(image.id, _success(6.0))
    second = recorder.record(image.id, _success(8.0))

    results = store.list_results(image.id)
    assert [result.is_current for result in results] == [False, True]
    assert store.get_result(first.id).is_current is False
    assert second.evaluation_index == 2
    assert second.evaluation_source == "re-evaluation"
    assert store.get_image(image.id).current_result_id == second.id


def test_failure_does_not_replace_successful_current(
    store: InMemoryEvaluationStore,
) -> None:
    image = store.create_image("processed/a.jpg")
    recorder = ResultRecorder(store)
    success = recorder.record(image.id, _success())

    failure = recorder.record(
        image.id,
        EvaluationFailure(error=AuthenticationError(), provider=ANTHROPIC_INFO),
    )

    assert failure.is_current is False
    assert failure.status is ResultStatus.FAILED
    assert failure.error_code == "authentication_failed"
    assert failure.parent_result_id is None
    assert store.get_image(image.id).current_result_id == success.id
    assert store.get_image(image.id).evaluation_count == 2
    assert store.get_usage_stats().total_images_evaluated == 1


def test_first_failure_becomes_current(store: InMemoryEvaluationStore) -> None:
    image = store.create_image("processed/a.jpg")
    recorder = ResultRecorder(store)

    result = recorder.record(
        image.id, EvaluationFailure(error=ProviderOverloadedError(), retry_count=3)
    )

    assert result.is_current
    assert result.retry_count == 3
    assert result.error_code == "provider_overloaded"
    assert store.get_image(image.id).current_result_id == result.id


def test_failure_after_failure_links_parent(store: InMemoryEvaluationStore) -> None:
    image = store.create_image("processed/a.jpg")
    recorder = ResultRecorder(store)
    first = recorder.record(
        image.id, EvaluationFailure(error=ProviderOverloadedError())
    )

    second = recorder.record(image.id, EvaluationFailure(error=AuthenticationError()))

    assert second.parent_result_id == first.id
    assert second.evaluation_source == "retry"
    assert second.is_retry
    assert store.get_image(image.id).current_result_id == first.id


def test_success_after_failure_takes_over(store: InMemoryEvaluationStore) -> None:
    image = store.create_image("processed/a.jpg")
    recorder = ResultRecorder(store)
    failed = recorder.record(
        image.id, EvaluationFailure(error=ProviderOverloadedError())
    )

    succeeded = recorder.record(image.id, _success())

    assert store.get_result(failed.id).is_current is False
    assert succeeded.is_current
    current = [result for result in store.list_results(image.id) if result.is_current]
    assert current == [store.get_result(succeeded.id)]


def test_unexpected_error_is_recorded_with_generic_code(
    store: InMemoryEvaluationStore,
) -> None:
    image = store.create_image("processed/a.jpg")

    result = ResultRecorder(store).record(
        image.id, EvaluationFailure(error=RuntimeError("sk-ant-secret123 leaked"))
    )

    assert result.error_code == "unexpected_error"
    assert "sk-ant" not in result.error_message


def test_session_counters_commit_with_result(store: InMemoryEvaluationStore) -> None:
    image = store.create_image("processed/a.jpg")
    tracker = SessionTracker(store)
    session = tracker.open(2)
    recorder = ResultRecorder(store)

    recorder.record(image.id, _success(), tracker)
    recorder.record(image.id, EvaluationFailure(error=AuthenticationError()), tracker)

    stored = store.get_session(session.id)
    assert stored.success_count == 1
    assert stored.failure_count == 1
    assert tracker.session == stored
    assert len(store.list_session_results(session.id)) == 2


def test_failed_commit_leaves_store_untouched() -> None:
    store = FlakyStore(fail_after=1)
    image = store.create_image("processed/a.jpg")
    tracker = SessionTracker(store)
    session = tracker.open(2)
    recorder = ResultRecorder(store)
    first = recorder.record(image.id, _success(), tracker)

    with pytest.raises(PersistenceError):
        recorder.record(image.id, _success(9.0), tracker)

    assert store.list_results(image.id) == [store.get_result(first.id)]
    assert store.get_image(image.id).evaluation_count == 1
    assert store.get_session(session.id).success_count == 1
    assert tracker.session.success_count == 1
    assert store.get_usage_stats().total_images_evaluated == 1


def test_recording_for_unknown_image_fails(store: InMemoryEvaluationStore) -> None:
    with pytest.raises(PersistenceError):
        ResultRecorder(store).record(uuid4(), _success())


def test_results_are_time_ordered(store: InMemoryEvaluationStore) -> None:
    image = store.create_image("processed/a.jpg")
    recorder = ResultRecorder(store)
    for score in (5.0, 6.0, 7.0):
        recorder.record(image.id, _success(score))

    results = store.list_results(image.id)

    assert [result.overall_weighted_score for result in results] == [5.0, 6.0, 7.0]
    assert all(result.evaluated_at <= datetime.now(tz=UTC) for result in results)
