"""ONNX classifier sessions: resolve model files, load them once, drop idle ones.

Model files are looked up in the local models directory first and fetched
from the HuggingFace Hub otherwise. A loaded session stays in memory until it
has gone unused for longer than ``model_ttl`` seconds; the sweep runs as a
background task started by the application lifespan.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import GraphOptimizationLevel, InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

if TYPE_CHECKING:
    from terrainrisk.config import Settings

logger = logging.getLogger(__name__)

ProviderList = list[str | tuple[str, dict[str, object]]]


class SessionProvider(Protocol):
    """Hands out an InferenceSession for a registered classifier."""

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a ready session, loading the model on first use."""
        ...


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX classifier."""

    name: str
    repo_id: str
    filename: str
    labels: tuple[str, ...]
    input_size: int
    pixel_scale: float
    license: str


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "fire_risk_image_ml": ModelSpec(
        name="fire_risk_image_ml",
        repo_id="terrainrisk/fire-risk-image-ml",
        filename="fire_risk_image_ml.onnx",
        labels=("Highrisk", "Lowrisk", "Mediumrisk"),
        input_size=224,
        pixel_scale=1.0,
        license="MIT",
    ),
}


def get_model_spec(model_name: str) -> ModelSpec:
    """Look up a registry entry by name."""
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        raise KeyError(f"Unknown model: {model_name}") from None


def execution_providers(settings: Settings) -> ProviderList:
    """Providers for the configured device, always ending with the CPU fallback."""
    fallback = "CPUExecutionProvider"
    if settings.device == "cuda":
        cuda_options: dict[str, object] = {
            "device_id": 0,
            "gpu_mem_limit": settings.gpu_mem_limit,
            "arena_extend_strategy": "kSameAsRequested",
        }
        return [("CUDAExecutionProvider", cuda_options), fallback]
    if settings.device == "openvino":
        return [("OpenVINOExecutionProvider", {"device_type": "CPU"}), fallback]
    return [fallback]


def session_options(settings: Settings) -> SessionOptions:
    """Threading and memory options shared by every classifier session."""
    opts = SessionOptions()
    opts.intra_op_num_threads = settings.intra_op_threads
    opts.inter_op_num_threads = settings.inter_op_threads
    opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
    opts.enable_mem_pattern = True
    opts.enable_mem_reuse = True
    if settings.device == "openvino":
        # OpenVINO optimizes the graph itself.
        opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
    return opts


@dataclass
class _LoadedModel:
    session: InferenceSession
    last_used: float = field(default_factory=time.monotonic)

    def touch(self) -> InferenceSession:
        self.last_used = time.monotonic()
        return self.session


class OnnxModelManager:
    """Keeps one InferenceSession per classifier and unloads the idle ones."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._models_dir.mkdir(parents=True, exist_ok=True)

        self._providers = execution_providers(settings)
        self._options = session_options(settings)

        self._lock = threading.Lock()
        self._loaded: dict[str, _LoadedModel] = {}
        self._paths: dict[str, Path] = {}

    def locate(self, model_name: str) -> Path:
        """Return the model file on disk, fetching it from the Hub when missing."""
        spec = get_model_spec(model_name)

        known = self._paths.get(model_name)
        if known is not None and known.exists():
            return known

        path = self._models_dir / spec.filename
        if path.exists():
            logger.info("Using local model file %s for %s", path, model_name)
        else:
            path = Path(
                hf_hub_download(
                    repo_id=spec.repo_id,
                    filename=spec.filename,
                    local_dir=str(self._models_dir),
                )
            )
            logger.info("Fetched %s from %s into %s", model_name, spec.repo_id, path)

        self._paths[model_name] = path
        return path

    def get_session(self, model_name: str) -> InferenceSession:
        with self._lock:
            loaded = self._loaded.get(model_name)
            if loaded is not None:
                return loaded.touch()

        session = InferenceSession(
            str(self.locate(model_name)),
            sess_options=self._options,
            providers=self._providers,
        )

        with self._lock:
            # A concurrent load may have finished first; keep its session.
            loaded = self._loaded.setdefault(model_name, _LoadedModel(session))
            if loaded.session is session:
                logger.info("Loaded %s on %s", model_name, self._settings.device)
            return loaded.touch()

    def loaded_models(self) -> list[str]:
        with self._lock:
            return list(self._loaded)

    def evict_idle(self) -> list[str]:
        """Unload sessions unused for longer than ``model_ttl``; 0 keeps them forever.

        Returns:
            Names of the models that were unloaded.
        """
        ttl = self._settings.model_ttl
        if ttl == 0:
            return []

        cutoff = time.monotonic() - ttl
        with self._lock:
            idle = [name for name, loaded in self._loaded.items() if loaded.last_used < cutoff]
            for name in idle:
                del self._loaded[name]

        for name in idle:
            logger.info("Unloaded %s after %ss idle", name, ttl)
        return idle

    def shutdown(self) -> None:
        with self._lock:
            count = len(self._loaded)
            self._loaded.clear()
        logger.info("Released %s model session(s)", count)


async def evict_idle_periodically(manager: OnnxModelManager, interval: float) -> None:
    """Run :meth:`OnnxModelManager.evict_idle` every ``interval`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        manager.evict_idle()
