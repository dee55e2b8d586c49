"""Pydantic request/response schemas for the LeafCheck API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class DiseaseTag(BaseModel):
    """A single disease label with its model confidence."""

    label: str
    confidence: float = Field(description="Raw output channel value (not guaranteed to be normalized)")


class ClassifyImageResponse(BaseModel):
    """Response for the classification endpoints."""

    status: str = Field(description="'classified' or 'no_image'")
    tags: list[DiseaseTag]
    top: DiseaseTag | None = None
    confident: bool = Field(description="Top confidence is above the configured threshold")


class TensorInfo(BaseModel):
    """Declared shape and element type of a model tensor."""

    name: str
    shape: list[int]
    element_type: str


class ModelInfoResponse(BaseModel):
    """Response for the model introspection endpoint."""

    state: str
    input: TensorInfo
    output: TensorInfo
    labels: list[str]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    model_state: str
    labels_loaded: int
    concurrent_requests: int
    queue_depth: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
