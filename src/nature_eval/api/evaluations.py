"""Evaluation API endpoints with simple token auth."""

from __future__ import annotations

from dataclasses import asdict
from typing import TYPE_CHECKING
from uuid import UUID  # noqa: TC003

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from nature_eval.api.models import QueueRequest, SubjectCreate  # noqa: TC001
from nature_eval.domain.errors import (
    ConfigurationError,
    OrchestrationStateError,
    PersistenceError,
)

if TYPE_CHECKING:
    from nature_eval.containers import AppContainer

router = APIRouter()


def _get_api_token(request: Request) -> str:
    container: AppContainer = request.app.state.container
    return container.settings.api_token


async def require_token(
    x_api_token: str | None = Header(default=None),
    api_token: str = Depends(_get_api_token),
) -> None:
    """Ensure requests include a valid API token."""
    if not x_api_token or x_api_token != api_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


@router.post(
    "/subjects",
    dependencies=[Depends(require_token)],
    status_code=status.HTTP_201_CREATED,
)
async def create_subject(payload: SubjectCreate, request: Request) -> dict[str, object]:
    """Register a processed image for evaluation."""
    container: AppContainer = request.app.state.container
    image = container.store.create_image(
        payload.processed_path, payload.original_filename
    )
    return asdict(image)


@router.get("/subjects/{image_id}/results", dependencies=[Depends(require_token)])
async def subject_results(image_id: UUID, request: Request) -> dict[str, object]:
    """Return an image's evaluation history, newest first."""
    container: AppContainer = request.app.state.container
    history = container.usage_service.get_history(image_id)
    if history is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    current = history.current
    return {
        "image": asdict(history.image),
        "current_result_id": current.id if current else None,
        "average_score": history.average_score,
        "score_trend": history.score_trend,
        "has_failed_evaluations": history.has_failed_evaluations,
        "results": [asdict(result) for result in history.results],
    }


@router.post("/evaluations/queue", dependencies=[Depends(require_token)])
async def queue_subjects(payload: QueueRequest, request: Request) -> dict[str, object]:
    """Add images to the evaluation queue."""
    container: AppContainer = request.app.state.container
    images = []
    for image_id in payload.image_ids:
        image = container.store.get_image(image_id)
        if image is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Image {image_id} not found",
            )
        images.append(image)
    try:
        queued = container.orchestrator.enqueue(images)
    except OrchestrationStateError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=str(exc)
        ) from exc
    return {"queued": queued}


@router.post("/evaluations/start", dependencies=[Depends(require_token)])
async def start_evaluation(request: Request) -> dict[str, object]:
    """Start evaluating the queue in the background."""
    container: AppContainer = request.app.state.container
    try:
        container.orchestrator.launch()
    except ConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message
        ) from exc
    except PersistenceError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc
    except OrchestrationStateError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=str(exc)
        ) from exc
    return asdict(container.orchestrator.state.snapshot())


@router.post("/evaluations/cancel", dependencies=[Depends(require_token)])
async def cancel_evaluation(request: Request) -> dict[str, object]:
    """Request cancellation of the running evaluation."""
    container: AppContainer = request.app.state.container
    try:
        container.orchestrator.cancel()
    except OrchestrationStateError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=str(exc)
        ) from exc
    return asdict(container.orchestrator.state.snapshot())


@router.get("/evaluations/status", dependencies=[Depends(require_token)])
async def evaluation_status(request: Request) -> dict[str, object]:
    container: AppContainer = request.app.state.container
    return asdict(container.orchestrator.state.snapshot())


@router.get("/usage", dependencies=[Depends(require_token)])
async def usage(request: Request) -> dict[str, object]:
    """Return running API usage totals."""
    container: AppContainer = request.app.state.container
    return asdict(container.usage_service.get_usage_stats())


@router.get("/sessions/{session_id}", dependencies=[Depends(require_token)])
async def session_detail(session_id: UUID, request: Request) -> dict[str, object]:
    container: AppContainer = request.app.state.container
    session = container.usage_service.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    return asdict(session)
