"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from leafcheck.api.routes import router
from leafcheck.config import get_settings
from leafcheck.ml.classifier import ClassificationService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: start the classifier on startup, release it on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting LeafCheck (device=%s, max_concurrent=%s, model=%s, labels=%s)",
        settings.device,
        settings.max_concurrent,
        settings.model_path,
        settings.labels_path,
    )

    async with ClassificationService(settings) as classifier:
        app.state.classifier = classifier
        if settings.preload_model:
            classifier.start()

        logger.info("LeafCheck ready")
        yield
        logger.info("Shutting down LeafCheck")

    logger.info("LeafCheck shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="LeafCheck",
        description="On-device plant disease classification API",
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
