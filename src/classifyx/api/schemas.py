"""Pydantic request/response schemas for the ClassifyX API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ClassificationResultModel(BaseModel):
    """Top prediction for a classified image."""

    predicted_class_index: int = Field(ge=0)
    score: float = Field(description="Raw model output for the predicted class")
    display_text: str
    label: str | None = None


class PipelineStateResponse(BaseModel):
    """The most recently published pipeline state."""

    status: str = Field(description="'idle', 'running', 'completed', or 'failed'")
    result: ClassificationResultModel | None = None
    error: str | None = None
    request_id: int | None = None
    version: int = Field(description="Increments on every publish; lets clients detect stale reads")
    updated_at: float


class ClassifyAcceptedResponse(BaseModel):
    """Response for an accepted classification request."""

    request_id: int
    status: str = "running"


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    engine_ready: bool
    in_flight: int
    request_policy: str


class ModelInfoResponse(BaseModel):
    """Information about the configured model."""

    name: str
    loaded: bool
    error: str | None = None
    input_shape: list[int | str | None] | None = None
    output_shape: list[int | str | None] | None = None
    num_classes: int | None = None
    labels: int | None = Field(default=None, description="Number of class labels loaded, if any")


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
