"""Pydantic request/response schemas for the imgcls API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class LabelScore(BaseModel):
    """A single label with its probability."""

    label: str
    probability: float


class ImagePrediction(BaseModel):
    """One output head's prediction for one uploaded image."""

    filename: str | None = None
    probabilities: list[float] = Field(description="Raw output vector in label order")
    top: LabelScore | None = Field(default=None, description="Most probable label; null for unlabeled heads")
    ranked: list[LabelScore] = Field(default_factory=list, description="Labels by descending probability")


class HeadPrediction(BaseModel):
    """Predictions of one model output head for the whole batch."""

    output: str
    predictions: list[ImagePrediction]


class ClassifyResponse(BaseModel):
    """Response for the classification endpoint."""

    heads: list[HeadPrediction]


class OutputInfo(BaseModel):
    name: str
    dimension: int
    labels: list[str] | None = None


class ModelInfoResponse(BaseModel):
    """Tensor bindings and preprocessing of the served model."""

    input_name: str
    layout: str
    image_size: int
    outputs: list[OutputInfo]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    model_loaded: bool
    concurrent_requests: int
    queue_depth: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
