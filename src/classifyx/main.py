"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware

from classifyx.api.routes import router
from classifyx.config import get_settings
from classifyx.pipeline import PipelineOrchestrator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting ClassifyX (device=%s, model=%s/%s, policy=%s, eager_load=%s)",
        settings.device,
        settings.models_dir,
        settings.model_filename,
        settings.request_policy,
        settings.eager_load,
    )

    pipeline = PipelineOrchestrator(settings)
    app.state.pipeline = pipeline

    if settings.eager_load:
        init = await run_in_threadpool(pipeline.initialize)
        if not init.ok:
            logger.error("Model failed to load at startup; classification disabled: %s", init.error)

    logger.info("ClassifyX ready")
    yield

    logger.info("Shutting down ClassifyX")
    pipeline.shutdown()
    logger.info("ClassifyX shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="ClassifyX",
        description="Single-model image classification service",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn using the configured host and port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("classifyx.main:app", host=settings.host, port=settings.port)
