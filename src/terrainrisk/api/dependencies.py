"""Request dependencies: app-state accessors and API key authentication."""

from __future__ import annotations

import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from terrainrisk.config import Settings
from terrainrisk.display import DisplayState
from terrainrisk.ml.analysis import FireRiskAnalyzer
from terrainrisk.ml.inference import InferencePool
from terrainrisk.ml.model_manager import OnnxModelManager

_bearer_scheme = HTTPBearer(auto_error=False)


def get_app_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def get_model_manager(request: Request) -> OnnxModelManager:
    manager: OnnxModelManager = request.app.state.model_manager
    return manager


def get_analyzer(request: Request) -> FireRiskAnalyzer:
    analyzer: FireRiskAnalyzer = request.app.state.analyzer
    return analyzer


def get_display_state(request: Request) -> DisplayState:
    display: DisplayState = request.app.state.display
    return display


SettingsDep = Annotated[Settings, Depends(get_app_settings)]
PoolDep = Annotated[InferencePool, Depends(get_inference_pool)]
ModelManagerDep = Annotated[OnnxModelManager, Depends(get_model_manager)]
AnalyzerDep = Annotated[FireRiskAnalyzer, Depends(get_analyzer)]
DisplayDep = Annotated[DisplayState, Depends(get_display_state)]


async def verify_api_key(
    settings: SettingsDep,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Check the Bearer token against the configured API key.

    With TERRAINRISK_API_KEY unset every request passes; otherwise requests
    must send 'Authorization: Bearer <key>'.
    """
    if settings.api_key is None:
        return

    if credentials is None or not secrets.compare_digest(credentials.credentials.encode(), settings.api_key.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
