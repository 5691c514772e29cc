"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI

from imgcls.api.routes import router
from imgcls.config import get_settings
from imgcls.ml.classifier import Classifier
from imgcls.ml.inference import InferencePool

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Load the classifier on startup and release it on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting imgcls (model=%s, layout=%s, size=%d, max_concurrent=%d)",
        settings.model_path or f"{settings.model_repo_id}/{settings.model_filename}",
        settings.layout,
        settings.image_size,
        settings.max_concurrent,
    )

    classifier = Classifier.from_settings(settings)
    inference_pool = InferencePool(classifier, settings)
    app.state.inference_pool = inference_pool

    logger.info("imgcls ready")
    yield

    logger.info("Shutting down imgcls")
    inference_pool.shutdown()
    logger.info("imgcls shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="imgcls",
        description="Batch image classification over ONNX Runtime",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.include_router(router)
    return application


app = create_app()
