"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from terrainrisk.config import Settings
    from terrainrisk.ml.model_manager import SessionProvider

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from terrainrisk.api.routes import router
from terrainrisk.config import get_settings
from terrainrisk.display import DisplayState
from terrainrisk.ml.analysis import FireRiskAnalyzer
from terrainrisk.ml.image_classifier import OnnxImageClassifier
from terrainrisk.ml.inference import InferencePool
from terrainrisk.ml.model_manager import OnnxModelManager, evict_idle_periodically, get_model_spec
from terrainrisk.ml.preprocessing import PillowPreprocessor

logger = logging.getLogger(__name__)


def build_analyzer(settings: Settings, model_manager: SessionProvider) -> FireRiskAnalyzer:
    """Wire the Pillow preprocessor to the configured ONNX classifier."""
    spec = get_model_spec(settings.classifier_model)
    if spec.input_size != settings.target_size:
        logger.warning(
            "target_size=%s does not match %s input size %s; analyses will fail",
            settings.target_size,
            spec.name,
            spec.input_size,
        )
    return FireRiskAnalyzer(
        preprocessor=PillowPreprocessor(settings),
        classifier=OnnxImageClassifier(model_manager, spec.name),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting Terrain Fire Risk Analyzer (device=%s, model=%s, target_size=%s, letterbox=%s)",
        settings.device,
        settings.classifier_model,
        settings.target_size,
        settings.letterbox_anchor,
    )

    model_manager = OnnxModelManager(settings)
    inference_pool = InferencePool(settings)
    app.state.model_manager = model_manager
    app.state.inference_pool = inference_pool
    app.state.analyzer = build_analyzer(settings, model_manager)
    app.state.display = DisplayState()

    eviction_task: asyncio.Task[None] | None = None
    if settings.model_ttl > 0:
        eviction_task = asyncio.create_task(evict_idle_periodically(model_manager, settings.eviction_interval))
    app.state.eviction_task = eviction_task

    logger.info("Terrain Fire Risk Analyzer ready")
    yield

    logger.info("Shutting down Terrain Fire Risk Analyzer")
    if eviction_task is not None:
        eviction_task.cancel()
        with suppress(asyncio.CancelledError):
            await eviction_task
    inference_pool.shutdown()
    model_manager.shutdown()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="Terrain Fire Risk Analyzer",
        description="Classifies terrain photos into fire-risk levels and returns recommendations",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the API with uvicorn using TERRAINRISK_HOST/TERRAINRISK_PORT."""
    settings = get_settings()
    uvicorn.run("terrainrisk.main:app", host=settings.host, port=settings.port)
