"""Image classification: the fire-risk classifier protocol and its ONNX implementation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np
from onnxruntime.capi.onnxruntime_pybind11_state import (
    EngineError,
    EPFail,
    Fail,
    InvalidArgument,
    InvalidGraph,
    InvalidProtobuf,
    ModelLoaded,
    NoModel,
    NoSuchFile,
    RuntimeException,
)
from onnxruntime.capi.onnxruntime_pybind11_state import NotImplemented as OrtNotImplemented

from terrainrisk.ml.model_manager import get_model_spec

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

    from terrainrisk.ml.model_manager import SessionProvider

logger = logging.getLogger(__name__)

# onnxruntime reports load and run failures with these, none of which derive
# from a builtin exception other than Exception.
_ORT_ERRORS: tuple[type[Exception], ...] = (
    EngineError,
    EPFail,
    Fail,
    InvalidArgument,
    InvalidGraph,
    InvalidProtobuf,
    ModelLoaded,
    NoModel,
    NoSuchFile,
    OrtNotImplemented,
    RuntimeException,
)


class ClassificationError(RuntimeError):
    """Raised when the classifier cannot be loaded or cannot produce predictions."""


@dataclass(frozen=True)
class ClassificationResult:
    """A single classification prediction."""

    label: str
    confidence: float


class ImageClassifier(Protocol):
    """Protocol for image classification models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def classify(self, image: NDArray[np.uint8]) -> list[ClassificationResult]:
        """Classify an image and return ranked labels.

        Args:
            image: HxWx3 RGB uint8 array with the model's input dimensions.

        Returns:
            List of classification results sorted by confidence (descending).

        Raises:
            ClassificationError: If the model cannot be loaded or inference fails.
        """
        ...


class OnnxImageClassifier:
    """Runs a registered ONNX classifier through the model manager's session cache."""

    def __init__(self, model_manager: SessionProvider, model_name: str) -> None:
        self._model_manager = model_manager
        self._spec = get_model_spec(model_name)

    @property
    def model_name(self) -> str:
        return self._spec.name

    @property
    def labels(self) -> tuple[str, ...]:
        return self._spec.labels

    def classify(self, image: NDArray[np.uint8]) -> list[ClassificationResult]:
        size = self._spec.input_size
        if image.shape != (size, size, 3):
            raise ClassificationError(f"Pixel buffer shape {image.shape} does not match model input {size}x{size}x3")

        try:
            session = self._model_manager.get_session(self._spec.name)
        except (*_ORT_ERRORS, OSError, RuntimeError, ValueError) as exc:
            raise ClassificationError(f"Failed to load model {self._spec.name}: {exc}") from exc

        try:
            model_input = session.get_inputs()[0]
            tensor = _to_model_input(image, model_input.shape, self._spec.pixel_scale)
            outputs = session.run(None, {model_input.name: tensor})
        except (*_ORT_ERRORS, IndexError, RuntimeError, ValueError) as exc:
            raise ClassificationError(f"Inference failed for {self._spec.name}: {exc}") from exc

        scores = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
        if scores.size != len(self._spec.labels):
            raise ClassificationError(
                f"Model {self._spec.name} returned {scores.size} scores for {len(self._spec.labels)} labels"
            )

        probabilities = _as_probabilities(scores)
        results = [
            ClassificationResult(label=label, confidence=float(probability))
            for label, probability in zip(self._spec.labels, probabilities, strict=True)
        ]
        results.sort(key=lambda result: result.confidence, reverse=True)
        logger.debug("Classified image as %s (%.4f)", results[0].label, results[0].confidence)
        return results


def _to_model_input(
    image: NDArray[np.uint8], input_shape: Sequence[int | str | None], pixel_scale: float
) -> NDArray[np.float32]:
    """Convert an HWC uint8 buffer to a batched float32 tensor in the model's layout."""
    tensor = image.astype(np.float32) * np.float32(pixel_scale)
    if len(input_shape) == 4 and input_shape[1] == 3:
        tensor = tensor.transpose(2, 0, 1)
    return np.ascontiguousarray(tensor[np.newaxis, ...])


def _as_probabilities(scores: NDArray[np.float32]) -> NDArray[np.float32]:
    """Return ``scores`` unchanged if already a distribution, otherwise their softmax."""
    if np.all(scores >= 0.0) and np.all(scores <= 1.0) and np.isclose(scores.sum(), 1.0, atol=1e-3):
        return scores
    shifted = np.exp(scores - scores.max())
    return shifted / shifted.sum()
