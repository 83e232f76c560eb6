"""Environment-based configuration for the Terrain Fire Risk Analyzer."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from TERRAINRISK_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TERRAINRISK_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection
    classifier_model: str = "fire_risk_image_ml"
    models_dir: str = "models"

    # Preprocessing
    target_size: int = Field(default=224, ge=1)
    letterbox_anchor: Literal["center", "origin"] = "center"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=1, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=52_428_800, ge=1)

    # Model management
    model_ttl: int = Field(default=300, ge=0)
    eviction_interval: float = Field(default=60.0, gt=0)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
