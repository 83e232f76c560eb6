"""Pydantic request/response schemas for the Terrain Fire Risk Analyzer API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PredictionTag(BaseModel):
    """A single ranked label with its confidence score."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)


class AnalyzeResponse(BaseModel):
    """Result of analyzing one terrain image."""

    request_id: int
    label: str = Field(description="Top risk label, e.g. 'Highrisk'")
    confidence: float = Field(ge=0.0, le=1.0)
    confidence_percent: int = Field(description="Confidence truncated to an integer percentage")
    risk_level: str = Field(description="Display summary, e.g. 'Highrisk - 87% confidence'")
    recommendation: str
    predictions: list[PredictionTag] = Field(description="All labels sorted by confidence (descending)")
    applied: bool = Field(description="False if a newer request superseded this one before it finished")


class DisplayResponse(BaseModel):
    """The currently displayed result (blank until the first successful analysis)."""

    image_name: str | None
    risk_level: str
    recommendation: str
    request_id: int | None


class RecommendationResponse(BaseModel):
    """Advisory text for a risk label."""

    label: str
    recommendation: str
    known: bool


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about a registered classifier."""

    name: str
    labels: list[str]
    input_size: int
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
