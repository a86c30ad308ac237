"""API route definitions.

``/health`` is always public. Classification routes require the API key when
one is configured.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from classifyx.api.dependencies import app_pipeline, app_settings, require_api_key
from classifyx.api.schemas import (
    ClassificationResultModel,
    ClassifyAcceptedResponse,
    ErrorResponse,
    HealthResponse,
    ModelInfoResponse,
    PipelineStateResponse,
)
from classifyx.errors import EngineUnavailableError, RequestRejectedError
from classifyx.ml.inference import InferenceEngine
from classifyx.ml.preprocessing import ImageReference

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")
protected = APIRouter(dependencies=[Depends(require_api_key)])


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


@protected.post(
    "/classify",
    response_model=ClassifyAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_413_CONTENT_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify an uploaded image",
)
async def classify(request: Request, file: UploadFile) -> ClassifyAcceptedResponse | JSONResponse:
    """Start classifying an uploaded image; poll /result for the outcome."""
    settings = app_settings(request)
    pipeline = app_pipeline(request)

    data = await file.read(settings.max_file_size + 1)
    if not data:
        return _error(status.HTTP_400_BAD_REQUEST, "Uploaded file is empty")
    if len(data) > settings.max_file_size:
        return _error(
            status.HTTP_413_CONTENT_TOO_LARGE,
            f"File exceeds {settings.max_file_size} bytes",
        )

    reference = ImageReference.from_bytes(data, name=file.filename or "upload")
    try:
        # First use may load the model, which blocks.
        pending = await run_in_threadpool(pipeline.classify, reference)
    except EngineUnavailableError as exc:
        logger.warning("Rejecting classification: %s", exc)
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc))
    except RequestRejectedError as exc:
        return _error(status.HTTP_409_CONFLICT, str(exc))

    if pending is None:
        return _error(status.HTTP_400_BAD_REQUEST, "No image selected")
    return ClassifyAcceptedResponse(request_id=pending.request_id)


@protected.get(
    "/result",
    response_model=PipelineStateResponse,
    summary="Latest classification outcome",
)
async def get_result(request: Request) -> PipelineStateResponse:
    """Return the most recently published pipeline state."""
    state = app_pipeline(request).state.current
    return PipelineStateResponse(
        status=state.status.value,
        result=(
            ClassificationResultModel(
                predicted_class_index=state.result.predicted_class_index,
                score=state.result.score,
                display_text=state.result.display_text,
                label=state.result.label,
            )
            if state.result is not None
            else None
        ),
        error=state.error,
        request_id=state.request_id,
        version=state.version,
        updated_at=state.updated_at,
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = app_settings(request)
    pipeline = app_pipeline(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        engine_ready=pipeline.engine is not None,
        in_flight=pipeline.in_flight,
        request_policy=settings.request_policy,
    )


@protected.get(
    "/model",
    response_model=ModelInfoResponse,
    summary="Configured model",
)
async def model_info(request: Request) -> ModelInfoResponse:
    """Describe the configured model. Does not trigger loading."""
    settings = app_settings(request)
    pipeline = app_pipeline(request)
    init = pipeline.init_result
    engine = pipeline.engine
    labels = pipeline.labels

    info = ModelInfoResponse(
        name=settings.model_filename,
        loaded=engine is not None,
        error=init.error if init is not None else None,
        labels=len(labels) if labels is not None else None,
    )
    if isinstance(engine, InferenceEngine):
        info.input_shape = engine.input_shape
        info.output_shape = engine.output_shape
        info.num_classes = engine.num_classes
    return info


router.include_router(protected)
