"""Single-shot fire-risk analysis: preprocess, classify, resolve a recommendation.

Every failure along the way is logged and turned into "no result"; callers
never see an exception from :meth:`FireRiskAnalyzer.analyze`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from terrainrisk.ml.image_classifier import ClassificationError, ClassificationResult
from terrainrisk.ml.preprocessing import PreprocessingError
from terrainrisk.ml.recommendations import get_recommendation

if TYPE_CHECKING:
    from PIL import Image

    from terrainrisk.ml.image_classifier import ImageClassifier
    from terrainrisk.ml.preprocessing import ImagePreprocessor

logger = logging.getLogger(__name__)


def confidence_percent(confidence: float) -> int:
    """Truncate a [0, 1] confidence to an integer percentage."""
    return int(confidence * 100)


def format_risk_level(label: str, confidence: float) -> str:
    """Build the display summary, e.g. ``"Highrisk - 87% confidence"``."""
    return f"{label} - {confidence_percent(confidence)}% confidence"


@dataclass(frozen=True)
class AnalysisResult:
    """Outcome of one successful analysis."""

    label: str
    confidence: float
    risk_level: str
    recommendation: str
    predictions: tuple[ClassificationResult, ...]

    @property
    def confidence_percent(self) -> int:
        return confidence_percent(self.confidence)


class FireRiskAnalyzer:
    """Runs the preprocess -> classify -> resolve pipeline for one image."""

    def __init__(self, preprocessor: ImagePreprocessor, classifier: ImageClassifier) -> None:
        self._preprocessor = preprocessor
        self._classifier = classifier

    @property
    def model_name(self) -> str:
        return self._classifier.model_name

    def analyze_bytes(self, image_bytes: bytes) -> AnalysisResult | None:
        """Decode an uploaded file and analyze it. Returns None on any failure."""
        try:
            image = self._preprocessor.decode_image(image_bytes)
        except PreprocessingError:
            logger.warning("Failed to decode image", exc_info=True)
            return None
        return self.analyze(image)

    def analyze(self, image: Image.Image) -> AnalysisResult | None:
        """Analyze a decoded image. Returns None on any failure."""
        try:
            pixels = self._preprocessor.preprocess(image)
        except PreprocessingError:
            logger.warning("Failed to resize or convert image to pixel buffer", exc_info=True)
            return None

        try:
            predictions = self._classifier.classify(pixels)
        except ClassificationError:
            logger.warning("Classification with %s failed", self._classifier.model_name, exc_info=True)
            return None

        if not predictions:
            logger.warning("No results found for %s", self._classifier.model_name)
            return None

        top = predictions[0]
        logger.info("Top prediction: %s (%.4f)", top.label, top.confidence)
        return AnalysisResult(
            label=top.label,
            confidence=top.confidence,
            risk_level=format_risk_level(top.label, top.confidence),
            recommendation=get_recommendation(top.label),
            predictions=tuple(predictions),
        )
