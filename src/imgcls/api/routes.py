"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status

from imgcls.api.middleware import verify_api_key
from imgcls.api.schemas import (
    ClassifyResponse,
    ErrorResponse,
    HeadPrediction,
    HealthResponse,
    ImagePrediction,
    LabelScore,
    ModelInfoResponse,
    OutputInfo,
)
from imgcls.errors import InferenceError, PreprocessError
from imgcls.ml.image import decode_image

if TYPE_CHECKING:
    from imgcls.ml.inference import InferencePool
    from imgcls.ml.results import ClassificationResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _head_prediction(result: ClassificationResult, filenames: list[str | None]) -> HeadPrediction:
    tops = result.top1() if result.has_labels else [None] * len(result)
    ranked = result.ranked() if result.has_labels else [[] for _ in range(len(result))]
    predictions = [
        ImagePrediction(
            filename=filename,
            probabilities=[float(p) for p in probs],
            top=LabelScore(label=top.label, probability=top.probability) if top is not None else None,
            ranked=[LabelScore(label=p.label, probability=p.probability) for p in pairs],
        )
        for filename, probs, top, pairs in zip(filenames, result.raw, tops, ranked, strict=True)
    ]
    return HeadPrediction(output=result.name, predictions=predictions)


@router.post(
    "/classify",
    response_model=ClassifyResponse,
    responses={
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify a batch of images",
)
async def classify(request: Request, files: list[UploadFile]) -> ClassifyResponse:
    """Classify every uploaded image in one batch and return per-head predictions."""
    pool = _get_inference_pool(request)

    images = []
    for idx, upload in enumerate(files):
        try:
            images.append(decode_image(await upload.read()))
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"File {idx} ({upload.filename}): {exc}",
            ) from exc

    try:
        results = await pool.classify(images)
    except PreprocessError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except InferenceError as exc:
        logger.exception("Inference failed for %d images", len(images))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    except TimeoutError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Inference queue is full, try again later",
        ) from exc

    filenames = [upload.filename for upload in files]
    return ClassifyResponse(heads=[_head_prediction(result, filenames) for result in results])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    pool = _get_inference_pool(request)
    return HealthResponse(
        status="ok",
        model_loaded=not pool.classifier.closed,
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/model",
    response_model=ModelInfoResponse,
    summary="Describe the served model",
)
async def model_info(request: Request) -> ModelInfoResponse:
    """Return the resolved tensor names, output heads and preprocessing geometry."""
    classifier = _get_inference_pool(request).classifier
    model = classifier.model
    layout = classifier.pipeline_config.layout
    return ModelInfoResponse(
        input_name=model.input_name or "",
        layout=str(layout.layout),
        image_size=layout.size,
        outputs=[
            OutputInfo(
                name=o.name or "",
                dimension=o.dimension or 0,
                labels=list(o.labels) if o.labels is not None else None,
            )
            for o in model.outputs
        ],
    )
