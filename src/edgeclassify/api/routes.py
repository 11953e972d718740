"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Query, Request, UploadFile, status
from fastapi.responses import JSONResponse

from edgeclassify.api.middleware import get_settings_from_request, verify_api_key
from edgeclassify.api.schemas import (
    ClassifyImageResponse,
    ErrorResponse,
    HealthResponse,
    ImageTag,
    ModelInfo,
    ModelsResponse,
    TensorInfo,
)
from edgeclassify.ml.errors import ShapeMismatchError
from edgeclassify.ml.inference import PoolBusyError
from edgeclassify.ml.preprocessing import decode_image

if TYPE_CHECKING:
    from edgeclassify.ml.image_classifier import Classifier
    from edgeclassify.ml.inference import InferencePool
    from edgeclassify.ml.model_handle import TensorContract

logger = logging.getLogger(__name__)

# Starlette renamed the 422 constant between releases.
HTTP_UNPROCESSABLE = 422

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_classifier(request: Request) -> Classifier | None:
    classifier: Classifier | None = request.app.state.classifier
    return classifier


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


def _tensor_info(contract: TensorContract) -> TensorInfo:
    return TensorInfo(name=contract.name, shape=list(contract.shape), dtype=str(contract.dtype))


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        HTTP_UNPROCESSABLE: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify an image with tags",
)
async def classify_image(
    request: Request,
    file: UploadFile,
    top_k: Annotated[int | None, Query(ge=1)] = None,
) -> ClassifyImageResponse | JSONResponse:
    """Classify an uploaded image and return ranked tags."""
    classifier = _get_classifier(request)
    if classifier is None:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Classifier unavailable")

    settings = get_settings_from_request(request)
    payload = await file.read()
    try:
        image = decode_image(payload, settings.max_image_pixels, settings.max_file_size)
    except ValueError as exc:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    pool = _get_inference_pool(request)
    try:
        categories = await pool.run(classifier.classify, image, top_k or settings.default_top_k)
    except PoolBusyError as exc:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc))
    except ShapeMismatchError as exc:
        logger.warning("Rejected %s: %s", file.filename, exc)
        return _error(HTTP_UNPROCESSABLE, str(exc))

    return ClassifyImageResponse(
        tags=[ImageTag(label=category.label, confidence=category.score) for category in categories]
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = get_settings_from_request(request)
    classifier = _get_classifier(request)
    pool = _get_inference_pool(request)
    return HealthResponse(
        status="ok" if classifier is not None else "degraded",
        classifier_loaded=classifier is not None,
        model=classifier.model.name if classifier is not None else None,
        gpu=settings.device == "cuda",
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="Describe the loaded model",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return the loaded model's tensor contracts (empty when nothing is loaded)."""
    classifier = _get_classifier(request)
    if classifier is None:
        return ModelsResponse(models=[])

    model = classifier.model
    return ModelsResponse(
        models=[
            ModelInfo(
                name=model.name,
                layout=model.layout,
                input=_tensor_info(model.input),
                output=_tensor_info(model.output),
                num_labels=len(classifier.labels),
            )
        ]
    )
