"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from nature_eval.api.evaluations import router as evaluations_router
from nature_eval.app_logging import configure_logging
from nature_eval.containers import AppContainer
from nature_eval.domain.progress import RunStatus


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "Evaluation API ready (provider=%s, environment=%s)",
            container.settings.provider,
            container.settings.environment,
        )
        yield
        orchestrator = app.state.container.orchestrator
        if orchestrator.state.status is RunStatus.EVALUATING:
            orchestrator.cancel()
            await orchestrator.wait()
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(evaluations_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    return app
