"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from edgeclassify.api.routes import router
from edgeclassify.config import get_settings
from edgeclassify.ml.image_classifier import Classifier
from edgeclassify.ml.inference import InferencePool

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: load the classifier on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting edgeclassify (device=%s, max_concurrent=%s, model=%s, labels=%s)",
        settings.device,
        settings.max_concurrent,
        settings.model_file,
        settings.labels_file,
    )

    classifier = Classifier.load_with(settings.labels_file, settings.model_file, settings)
    if classifier is None:
        logger.warning("Classifier unavailable; /classify-image will answer 503")
    app.state.classifier = classifier

    inference_pool = InferencePool(settings)
    app.state.inference_pool = inference_pool

    logger.info("edgeclassify ready")
    yield

    logger.info("Shutting down edgeclassify")
    inference_pool.shutdown()
    app.state.classifier = None
    logger.info("edgeclassify shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="edgeclassify",
        description="Single-image classification with a local ONNX model",
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
    """Serve the app with uvicorn using the configured host and port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("edgeclassify.main:app", host=settings.host, port=settings.port)
