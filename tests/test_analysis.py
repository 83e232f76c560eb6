"""Tests for the preprocess -> classify -> recommend pipeline."""

from __future__ import annotations

import io
import logging
import random

import numpy as np
import pytest
from PIL import Image

from terrainrisk.config import Settings
from terrainrisk.ml.analysis import FireRiskAnalyzer, format_risk_level
from terrainrisk.ml.image_classifier import ClassificationError, ClassificationResult
from terrainrisk.ml.preprocessing import PillowPreprocessor

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class StubClassifier:
    """Returns canned predictions and records the buffers it was given."""

    def __init__(self, results: list[ClassificationResult] | None = None, error: Exception | None = None) -> None:
        self._results = results if results is not None else []
        self._error = error
        self.seen: list[np.ndarray] = []

    @property
    def model_name(self) -> str:
        return "stub"

    def classify(self, image: np.ndarray) -> list[ClassificationResult]:
        self.seen.append(image)
        if self._error is not None:
            raise self._error
        return list(self._results)


def _make_analyzer(classifier: StubClassifier) -> FireRiskAnalyzer:
    return FireRiskAnalyzer(PillowPreprocessor(Settings()), classifier)


def _png(size: tuple[int, int]) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, (90, 140, 60)).save(buf, format="PNG")
    return buf.getvalue()


HIGH = [
    ClassificationResult("Highrisk", 0.8734),
    ClassificationResult("Mediumrisk", 0.1),
    ClassificationResult("Lowrisk", 0.0266),
]


# ---------------------------------------------------------------------------
# format_risk_level
# ---------------------------------------------------------------------------


class TestFormatRiskLevel:
    def test_truncates_confidence(self) -> None:
        assert format_risk_level("Highrisk", 0.8734) == "Highrisk - 87% confidence"

    def test_does_not_round_up(self) -> None:
        assert format_risk_level("Lowrisk", 0.999) == "Lowrisk - 99% confidence"

    def test_full_confidence(self) -> None:
        assert format_risk_level("Mediumrisk", 1.0) == "Mediumrisk - 100% confidence"


# ---------------------------------------------------------------------------
# FireRiskAnalyzer
# ---------------------------------------------------------------------------


class TestFireRiskAnalyzer:
    def test_successful_analysis(self) -> None:
        classifier = StubClassifier(HIGH)
        result = _make_analyzer(classifier).analyze(Image.new("RGB", (640, 480)))

        assert result is not None
        assert result.label == "Highrisk"
        assert result.confidence_percent == 87
        assert result.risk_level == "Highrisk - 87% confidence"
        assert result.recommendation.startswith("Take immediate action!")
        assert [p.label for p in result.predictions] == ["Highrisk", "Mediumrisk", "Lowrisk"]

    def test_classifier_receives_target_shape(self) -> None:
        classifier = StubClassifier(HIGH)
        _make_analyzer(classifier).analyze(Image.new("RGB", (1000, 30)))

        assert len(classifier.seen) == 1
        assert classifier.seen[0].shape == (224, 224, 3)

    def test_unknown_label_gets_default_recommendation(self) -> None:
        classifier = StubClassifier([ClassificationResult("Unknown", 0.5)])
        result = _make_analyzer(classifier).analyze(Image.new("RGB", (224, 224)))

        assert result is not None
        assert result.recommendation == "No recommendations available."

    def test_zero_dimension_image_yields_no_result(self, caplog: pytest.LogCaptureFixture) -> None:
        classifier = StubClassifier(HIGH)
        with caplog.at_level(logging.WARNING):
            result = _make_analyzer(classifier).analyze(Image.new("RGB", (0, 0)))

        assert result is None
        assert classifier.seen == []
        assert "pixel buffer" in caplog.text

    def test_classifier_failure_yields_no_result(self) -> None:
        classifier = StubClassifier(error=ClassificationError("Failed to load model stub"))
        assert _make_analyzer(classifier).analyze(Image.new("RGB", (224, 224))) is None

    def test_empty_results_yield_no_result(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            result = _make_analyzer(StubClassifier([])).analyze(Image.new("RGB", (224, 224)))
        assert result is None
        assert "No results found" in caplog.text

    def test_analyze_bytes(self) -> None:
        result = _make_analyzer(StubClassifier(HIGH)).analyze_bytes(_png((300, 200)))
        assert result is not None
        assert result.label == "Highrisk"

    def test_analyze_bytes_undecodable(self) -> None:
        classifier = StubClassifier(HIGH)
        assert _make_analyzer(classifier).analyze_bytes(b"\x89PNG garbage") is None
        assert classifier.seen == []

    @pytest.mark.parametrize("fmt", ["PNG", "GIF"])
    def test_corrupted_uploads_never_raise(self, fmt: str) -> None:
        source = Image.effect_noise((48, 32), 60).convert("RGB")
        if fmt == "GIF":
            source = source.convert("P")
        buf = io.BytesIO()
        source.save(buf, format=fmt)
        original = buf.getvalue()

        analyzer = _make_analyzer(StubClassifier(HIGH))
        rng = random.Random(fmt)
        for _ in range(200):
            data = bytearray(original)
            for _ in range(rng.randint(1, 4)):
                data[rng.randrange(len(data))] = rng.randrange(256)
            result = analyzer.analyze_bytes(bytes(data))
            assert result is None or result.label == "Highrisk"
