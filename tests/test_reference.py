"""
Unit tests for portion_analyzer.detection.reference module.
"""
import cv2
import numpy as np
import pytest

from conftest import draw_bar
from portion_analyzer.core.types import (
    DetectionMode,
    ReferenceFound,
    ReferenceNotFound,
)
from portion_analyzer.detection import reference as reference_module
from portion_analyzer.detection.reference import (
    CARD_WIDTH_CM,
    DEFAULT_SYRINGE_LENGTH_CM,
    ReferenceObjectDetector,
    parallel_line_score,
    reference_confidence,
)


@pytest.fixture
def detector():
    det = ReferenceObjectDetector()
    assert det.initialize()
    return det


class TestReferenceConfidence:
    """Tests for the confidence blend."""

    def test_ideal_shape(self):
        """Perfect aspect ratio and rectangle with no line evidence."""
        assert reference_confidence(10.0, 1.0, 0.0) == pytest.approx(0.8)

    def test_aspect_penalty_is_clamped(self):
        """Very elongated shapes contribute nothing from the aspect term."""
        assert reference_confidence(30.0, 0.5, 1.0) == pytest.approx(0.4)


class TestParallelLineScore:
    """Tests for the straight-edge score."""

    SEGMENTS = [[0, 0, 100, 0], [0, 20, 100, 20], [0, 0, 50, 50]]

    @pytest.mark.parametrize("shape", [(3, 1, 4), (3, 4)])
    def test_segment_layouts(self, monkeypatch, shape):
        """Both HoughLinesP output layouts score the same."""
        lines = np.array(self.SEGMENTS, dtype=np.int32).reshape(shape)
        monkeypatch.setattr(reference_module.cv2, "HoughLinesP", lambda *a, **k: lines)
        gray = np.full((200, 200), 20, dtype=np.uint8)

        score = parallel_line_score(gray, ((100.0, 100.0), (120.0, 20.0), 0.0))

        assert score == pytest.approx(2.0 / 3.0)

    def test_single_segment(self, monkeypatch):
        """One segment is not enough evidence."""
        lines = np.array([[0, 0, 100, 0]], dtype=np.int32)
        monkeypatch.setattr(reference_module.cv2, "HoughLinesP", lambda *a, **k: lines)
        gray = np.full((200, 200), 20, dtype=np.uint8)

        assert parallel_line_score(gray, ((100.0, 100.0), (120.0, 20.0), 0.0)) == 0.0


class TestDetectReferenceObject:
    """Tests for ReferenceObjectDetector.detect_reference_object."""

    def test_requires_initialization(self, syringe_image):
        """An uninitialized detector reports NotFound."""
        result = ReferenceObjectDetector().detect_reference_object(syringe_image)

        assert isinstance(result, ReferenceNotFound)
        assert "not initialized" in result.reason

    def test_finds_bar_with_known_length(self, detector, syringe_image):
        """A 10:1 bar of 200 px at 12 cm gives about 0.06 cm per pixel."""
        result = detector.detect_reference_object(syringe_image)

        assert isinstance(result, ReferenceFound)
        assert result.pixel_to_cm_ratio == pytest.approx(12.0 / 200.0, rel=0.03)
        assert result.length_pixels == pytest.approx(200, abs=4)
        assert 0.0 < result.confidence <= 1.0
        assert result.mode is DetectionMode.STRICT
        assert result.center[0] == pytest.approx(180, abs=3)

    def test_calibrated_length_changes_ratio(self, detector, syringe_image):
        """The ratio follows the configured physical length."""
        detector.set_expected_dimensions(15.0)
        result = detector.detect_reference_object(syringe_image)

        assert isinstance(result, ReferenceFound)
        assert result.pixel_to_cm_ratio == pytest.approx(15.0 / 200.0, rel=0.03)

    def test_right_side_bar(self, detector):
        """Bars in the right half are accepted with the relaxed thresholds."""
        image = draw_bar(top_left=(360, 150), size=(180, 30))
        result = detector.detect_reference_object(image)

        assert isinstance(result, ReferenceFound)
        assert result.center[0] > 300

    def test_blank_image(self, detector, blank_image):
        """No contours means NotFound."""
        result = detector.detect_reference_object(blank_image)

        assert isinstance(result, ReferenceNotFound)
        assert result.reason == "No valid reference object found"

    def test_per_call_length(self, detector, syringe_image):
        """A length passed to one call sizes that call only."""
        result = detector.detect_reference_object(
            syringe_image, DetectionMode.FLEXIBLE, known_length_cm=21.0
        )

        assert isinstance(result, ReferenceFound)
        assert result.pixel_to_cm_ratio == pytest.approx(21.0 / 200.0, rel=0.03)
        assert detector.expected_dimensions.length_cm == DEFAULT_SYRINGE_LENGTH_CM

    def test_failing_candidate_is_skipped(self, detector, syringe_image, monkeypatch):
        """A candidate whose evaluation fails is skipped with a warning."""

        def broken(*args, **kwargs):
            raise TypeError("cannot unpack")

        monkeypatch.setattr(reference_module, "parallel_line_score", broken)
        with pytest.warns(UserWarning, match="Skipping reference candidate"):
            result = detector.detect_reference_object(syringe_image)

        assert isinstance(result, ReferenceNotFound)

    def test_circle_is_rejected(self, detector):
        """Round shapes fail the aspect-ratio check."""
        image = np.full((400, 600, 3), 20, dtype=np.uint8)
        cv2.circle(image, (300, 200), 60, (240, 240, 240), -1)
        result = detector.detect_reference_object(image)

        assert isinstance(result, ReferenceNotFound)
        assert "ratio=1" in result.debug_info

    def test_invalid_length(self, detector):
        """Non-positive calibration lengths are rejected."""
        with pytest.raises(ValueError):
            detector.set_expected_dimensions(0)
        assert detector.expected_dimensions.length_cm == DEFAULT_SYRINGE_LENGTH_CM


class TestCardMode:
    """Tests for credit-card detection and mode fallback."""

    def test_card_found_in_card_mode(self, detector, card_image):
        """A card-shaped rectangle yields a ratio from the 8.56 cm edge."""
        result = detector.detect_reference_object(card_image, DetectionMode.CARD)

        assert isinstance(result, ReferenceFound)
        assert result.mode is DetectionMode.CARD
        assert result.pixel_to_cm_ratio == pytest.approx(CARD_WIDTH_CM / 214.0, rel=0.03)
        assert result.confidence >= 0.95

    def test_card_not_found_in_strict_mode(self, detector, card_image):
        """A card is too stubby for the syringe thresholds."""
        result = detector.detect_reference_object(card_image, DetectionMode.STRICT)
        assert isinstance(result, ReferenceNotFound)

    def test_fallback_reports_alternative_mode(self, detector, card_image):
        """Fallback finds the card and flags it as an alternative mode."""
        outcome = detector.detect_with_fallback(card_image, DetectionMode.STRICT)

        assert isinstance(outcome.result, ReferenceFound)
        assert outcome.detected_mode is DetectionMode.CARD
        assert outcome.is_alternative

    def test_fallback_primary_hit(self, detector, syringe_image):
        """When the selected mode works it is not marked as alternative."""
        outcome = detector.detect_with_fallback(syringe_image, DetectionMode.STRICT)

        assert isinstance(outcome.result, ReferenceFound)
        assert outcome.detected_mode is DetectionMode.STRICT
        assert not outcome.is_alternative

    def test_fallback_nothing_found(self, detector, blank_image):
        """All modes failing gives NotFound and no mode."""
        outcome = detector.detect_with_fallback(blank_image, DetectionMode.FLEXIBLE)

        assert isinstance(outcome.result, ReferenceNotFound)
        assert outcome.detected_mode is None
        assert not outcome.is_alternative
