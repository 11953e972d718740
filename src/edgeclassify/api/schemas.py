"""Pydantic request/response schemas for the edgeclassify API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ImageTag(BaseModel):
    """A single classification tag with confidence score."""

    label: str
    confidence: float


class ClassifyImageResponse(BaseModel):
    """Response for image classification endpoint."""

    tags: list[ImageTag] = Field(description="Categories ranked by descending confidence")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    classifier_loaded: bool
    model: str | None
    gpu: bool
    concurrent_requests: int
    queue_depth: int


class TensorInfo(BaseModel):
    """Declared contract of one model tensor."""

    name: str
    shape: list[int]
    dtype: str


class ModelInfo(BaseModel):
    """Information about the loaded model."""

    name: str
    layout: str = Field(description="Input layout: 'NHWC' or 'NCHW'")
    input: TensorInfo
    output: TensorInfo
    num_labels: int


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
