"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status

from leafcheck.api.dependencies import get_app_settings, get_classifier, verify_api_key
from leafcheck.api.schemas import (
    ClassifyImageResponse,
    DiseaseTag,
    ErrorResponse,
    HealthResponse,
    ModelInfoResponse,
    TensorInfo,
)
from leafcheck.errors import LeafCheckError, ModelLoadError, ResourceError
from leafcheck.ml.acquisition import ImageSource
from leafcheck.ml.classifier import ClassificationStatus

if TYPE_CHECKING:
    from leafcheck.config import Settings
    from leafcheck.ml.classifier import ClassificationOutcome
    from leafcheck.ml.model_handle import TensorDescriptor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_CLASSIFY_RESPONSES: dict[int | str, dict[str, object]] = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def _to_response(outcome: ClassificationOutcome, settings: Settings) -> ClassifyImageResponse:
    if outcome.status is ClassificationStatus.FAILED:
        raise HTTPException(
            status_code=422,
            detail=f"Image could not be classified: {outcome.error}",
        )

    tags = [DiseaseTag(label=result.label, confidence=result.confidence) for result in outcome.results or []]
    return ClassifyImageResponse(
        status=str(outcome.status),
        tags=tags,
        top=tags[0] if tags else None,
        confident=outcome.is_confident(settings.confidence_threshold),
    )


def _unavailable(exc: LeafCheckError) -> HTTPException:
    logger.error("Classifier unavailable: %s", exc)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"Classifier unavailable: {exc}",
    )


def _tensor_info(descriptor: TensorDescriptor) -> TensorInfo:
    return TensorInfo(
        name=descriptor.name,
        shape=list(descriptor.shape),
        element_type=str(descriptor.element_type),
    )


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses=_CLASSIFY_RESPONSES,
    summary="Classify an uploaded plant photo",
)
async def classify_image(file: UploadFile, request: Request) -> ClassifyImageResponse:
    """Classify an uploaded image and return ranked disease labels."""
    settings = get_app_settings(request)
    classifier = get_classifier(request)

    try:
        contents = await file.read(settings.max_file_size + 1)
    finally:
        await file.close()

    if not contents:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File is empty")
    if len(contents) > settings.max_file_size:
        raise HTTPException(
            status_code=413,
            detail=f"File exceeds {settings.max_file_size} bytes",
        )

    logger.info("Received file: %s (%s, %d bytes)", file.filename, file.content_type, len(contents))
    try:
        outcome = await classifier.classify_bytes(contents)
    except (ResourceError, ModelLoadError) as exc:
        raise _unavailable(exc) from exc
    return _to_response(outcome, settings)


@router.post(
    "/classify/{source}",
    response_model=ClassifyImageResponse,
    responses=_CLASSIFY_RESPONSES,
    summary="Classify the latest photo from the camera or gallery",
)
async def classify_from_source(source: ImageSource, request: Request) -> ClassifyImageResponse:
    """Pick a photo from ``source`` and classify it."""
    settings = get_app_settings(request)
    classifier = get_classifier(request)
    try:
        outcome = await classifier.classify_outcome(source)
    except (ResourceError, ModelLoadError) as exc:
        raise _unavailable(exc) from exc
    return _to_response(outcome, settings)


@router.get(
    "/model",
    response_model=ModelInfoResponse,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse}},
    summary="Describe the loaded model",
)
async def model_info(request: Request) -> ModelInfoResponse:
    """Return the loaded model's tensor contract and label catalog."""
    classifier = get_classifier(request)
    model = classifier.model
    try:
        input_descriptor = model.input_descriptor()
        output_descriptor = model.output_descriptor()
    except LeafCheckError as exc:
        raise _unavailable(exc) from exc

    return ModelInfoResponse(
        state=str(model.state),
        input=_tensor_info(input_descriptor),
        output=_tensor_info(output_descriptor),
        labels=list(classifier.labels),
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = get_app_settings(request)
    classifier = get_classifier(request)
    pool = classifier.pool
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        model_state=str(classifier.model.state),
        labels_loaded=len(classifier.labels),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )
