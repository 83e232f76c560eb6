"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, UploadFile, status

from terrainrisk.api.dependencies import (
    AnalyzerDep,
    DisplayDep,
    ModelManagerDep,
    PoolDep,
    SettingsDep,
    verify_api_key,
)
from terrainrisk.api.schemas import (
    AnalyzeResponse,
    DisplayResponse,
    ErrorResponse,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
    PredictionTag,
    RecommendationResponse,
)
from terrainrisk.ml.model_manager import MODEL_REGISTRY
from terrainrisk.ml.recommendations import KNOWN_LABELS, get_recommendation

if TYPE_CHECKING:
    from terrainrisk.display import DisplayState
    from terrainrisk.ml.analysis import AnalysisResult, FireRiskAnalyzer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

ANALYSIS_FAILED_DETAIL = "Analysis did not produce a result"


def _analyze_with_ticket(
    display: DisplayState, analyzer: FireRiskAnalyzer, image_bytes: bytes
) -> tuple[int, AnalysisResult | None]:
    """Take the display ticket once a pool slot is held, then analyze."""
    request_id = display.begin_request()
    return request_id, analyzer.analyze_bytes(image_bytes)


@router.post(
    "/analyze",
    response_model=AnalyzeResponse,
    responses={
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Analyze the fire risk of a terrain image",
)
async def analyze(
    file: UploadFile,
    analyzer: AnalyzerDep,
    pool: PoolDep,
    display: DisplayDep,
) -> AnalyzeResponse:
    """Classify an uploaded terrain photo and update the displayed result."""
    image_bytes = await file.read()

    try:
        request_id, result = await pool.run(_analyze_with_ticket, display, analyzer, image_bytes)
    except TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Analysis queue is full, try again later",
        ) from None

    if result is None:
        logger.info("Request %s (%s) produced no result", request_id, file.filename)
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=ANALYSIS_FAILED_DETAIL,
        )

    applied = display.deliver(request_id, file.filename, result)
    return AnalyzeResponse(
        request_id=request_id,
        label=result.label,
        confidence=result.confidence,
        confidence_percent=result.confidence_percent,
        risk_level=result.risk_level,
        recommendation=result.recommendation,
        predictions=[PredictionTag(label=p.label, confidence=p.confidence) for p in result.predictions],
        applied=applied,
    )


@router.get(
    "/display",
    response_model=DisplayResponse,
    summary="Currently displayed result",
)
async def current_display(display: DisplayDep) -> DisplayResponse:
    """Return the result of the newest successful analysis, blank if none yet."""
    snapshot = display.snapshot()
    return DisplayResponse(
        image_name=snapshot.image_name,
        risk_level=snapshot.risk_level,
        recommendation=snapshot.recommendation,
        request_id=snapshot.request_id,
    )


@router.get(
    "/recommendations/{label}",
    response_model=RecommendationResponse,
    summary="Advisory text for a risk label",
)
async def recommendation(label: str) -> RecommendationResponse:
    return RecommendationResponse(
        label=label,
        recommendation=get_recommendation(label),
        known=label in KNOWN_LABELS,
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(settings: SettingsDep, pool: PoolDep, model_manager: ModelManagerDep) -> HealthResponse:
    """Return service health status."""
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=model_manager.loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List registered classifiers",
)
async def list_models(settings: SettingsDep) -> ModelsResponse:
    """Return registered classifiers, marking the configured one as active."""
    models = [
        ModelInfo(
            name=spec.name,
            labels=list(spec.labels),
            input_size=spec.input_size,
            status="active" if spec.name == settings.classifier_model else "available",
            license=spec.license,
        )
        for spec in MODEL_REGISTRY.values()
    ]
    return ModelsResponse(models=models)
