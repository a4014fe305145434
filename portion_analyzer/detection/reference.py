"""Reference object (syringe / pen / cutlery / card) detection for image scale.

The detected object's pixel length against its known physical length gives
the pixel-to-centimetre ratio used to size the plate.

Objects whose centre lies in the right half of the frame are judged with
looser thresholds than those on the left: users are asked to place the
reference object to the right of the plate.
"""

from __future__ import annotations

import math
import warnings
from dataclasses import dataclass
from typing import List, Tuple

import cv2
import numpy as np

from ..core.image import load_image, to_gray
from ..core.types import (
    BoundingBox,
    DetectionMode,
    FallbackDetectionResult,
    ImageInput,
    ReferenceDetectionResult,
    ReferenceFound,
    ReferenceNotFound,
)
from .shapes import rectangularity


DEFAULT_SYRINGE_LENGTH_CM = 12.0
CARD_WIDTH_CM = 8.56  # ID-1 long side
CARD_HEIGHT_CM = 5.398  # ID-1 short side


@dataclass(frozen=True)
class ReferenceDetectionSettings:
    min_contour_area: float = 500.0
    max_contour_area: float = 50000.0
    max_aspect_ratio: float = 50.0
    left_min_aspect_ratio: float = 4.0
    left_min_rectangularity: float = 0.7
    right_min_aspect_ratio: float = 3.5
    right_min_rectangularity: float = 0.6
    min_parallel_line_score: float = 0.2
    right_fallback_rectangularity: float = 0.65
    left_fallback_aspect_ratio: float = 6.0
    left_fallback_rectangularity: float = 0.75
    ideal_aspect_ratio: float = 10.0
    line_angle_tolerance_deg: float = 10.0
    roi_padding_px: int = 4
    flexible_min_aspect_ratio: float = 2.0
    card_aspect_tolerance: float = 0.2
    card_min_rectangularity: float = 0.85
    card_min_thickness_fraction: float = 0.05
    card_max_contour_area: float = 300000.0
    card_length_cm: float = CARD_WIDTH_CM
    card_width_cm: float = CARD_HEIGHT_CM


@dataclass(frozen=True)
class ReferenceDimensions:
    length_cm: float
    width_cm: float | None = None
    height_cm: float | None = None


@dataclass
class _ScanStats:
    total: int = 0
    too_small: int = 0
    too_large: int = 0
    bad_ratio: int = 0
    bad_rectangularity: int = 0
    no_straight_edges: int = 0
    candidates: int = 0

    def __str__(self) -> str:
        return (
            f"contours={self.total} small={self.too_small} large={self.too_large} "
            f"ratio={self.bad_ratio} rect={self.bad_rectangularity} "
            f"lines={self.no_straight_edges} candidates={self.candidates}"
        )


def reference_confidence(
    aspect_ratio: float,
    rect_score: float,
    line_score: float,
    ideal_aspect_ratio: float = 10.0,
) -> float:
    """Blend of aspect-ratio fit, rectangularity and straight-edge score."""
    ratio_score = 1.0 - abs(aspect_ratio - ideal_aspect_ratio) / ideal_aspect_ratio
    ratio_score = min(max(ratio_score, 0.0), 1.0)
    return round(ratio_score * 0.4 + rect_score * 0.4 + line_score * 0.2, 2)


def parallel_line_score(
    gray: np.ndarray,
    rotated_rect: Tuple[Tuple[float, float], Tuple[float, float], float],
    padding: int = 4,
    angle_tolerance_deg: float = 10.0,
) -> float:
    """Fraction of line segments in the de-rotated crop aligned with its axes."""
    (cx, cy), (width, height), angle = rotated_rect
    rotation = cv2.getRotationMatrix2D((cx, cy), angle, 1.0)
    rotated = cv2.warpAffine(
        gray, rotation, (gray.shape[1], gray.shape[0]), flags=cv2.INTER_LINEAR
    )
    patch = (int(round(width)) + 2 * padding, int(round(height)) + 2 * padding)
    if patch[0] <= 0 or patch[1] <= 0:
        return 0.0
    crop = cv2.getRectSubPix(rotated, patch, (float(cx), float(cy)))
    if crop is None or crop.size == 0:
        return 0.0

    edges = cv2.Canny(crop, 50, 150)
    lines = cv2.HoughLinesP(
        edges, 1, np.pi / 180, 20, minLineLength=30, maxLineGap=10
    )
    if lines is None:
        return 0.0

    # (N, 1, 4) on OpenCV 4.x, (N, 4) on 5.x
    segments = np.asarray(lines).reshape(-1, 4)
    if len(segments) < 2:
        return 0.0

    aligned = 0
    for x1, y1, x2, y2 in segments:
        seg_angle = abs(math.degrees(math.atan2(float(y2 - y1), float(x2 - x1))))
        if (
            seg_angle < angle_tolerance_deg
            or seg_angle > 180.0 - angle_tolerance_deg
            or abs(seg_angle - 90.0) < angle_tolerance_deg
        ):
            aligned += 1
    return aligned / float(len(segments))


class ReferenceObjectDetector:
    """Finds an elongated object of known length and derives cm-per-pixel."""

    def __init__(
        self,
        settings: ReferenceDetectionSettings | None = None,
        expected_length_cm: float = DEFAULT_SYRINGE_LENGTH_CM,
    ) -> None:
        self.settings = settings or ReferenceDetectionSettings()
        self._dimensions = ReferenceDimensions(length_cm=float(expected_length_cm))
        self._initialized = False

    def initialize(self) -> bool:
        """Check that the OpenCV build supports the operations used here."""
        try:
            probe = np.array([[[0, 0]], [[10, 0]], [[10, 2]], [[0, 2]]], dtype=np.int32)
            cv2.minAreaRect(probe)
            cv2.HoughLinesP(
                np.zeros((8, 8), dtype=np.uint8), 1, np.pi / 180, 1, minLineLength=1
            )
            self._initialized = True
        except cv2.error as exc:
            warnings.warn(f"OpenCV unavailable for reference detection: {exc}")
            self._initialized = False
        return self._initialized

    @property
    def is_ready(self) -> bool:
        return self._initialized

    @property
    def expected_dimensions(self) -> ReferenceDimensions:
        return self._dimensions

    def set_expected_dimensions(
        self,
        length_cm: float,
        width_cm: float | None = None,
        height_cm: float | None = None,
    ) -> None:
        if not length_cm or length_cm <= 0:
            raise ValueError(f"Reference length must be positive, got {length_cm}")
        self._dimensions = ReferenceDimensions(
            length_cm=float(length_cm),
            width_cm=float(width_cm) if width_cm else None,
            height_cm=float(height_cm) if height_cm else None,
        )

    def detect_reference_object(
        self,
        image: ImageInput,
        mode: DetectionMode = DetectionMode.STRICT,
        known_length_cm: float | None = None,
    ) -> ReferenceDetectionResult:
        """Scan for the reference object.

        ``known_length_cm`` sizes this call only; without it the configured
        dimensions are used.
        """
        if not self._initialized:
            return ReferenceNotFound("Reference detector not initialized")
        length_cm = known_length_cm or self._dimensions.length_cm
        gray = to_gray(load_image(image))
        return self._detect(gray, mode, float(length_cm))

    def detect_with_fallback(
        self, image: ImageInput, selected_mode: DetectionMode
    ) -> FallbackDetectionResult:
        """Try ``selected_mode`` first, then every other mode in declaration order."""
        if not self._initialized:
            return FallbackDetectionResult(
                ReferenceNotFound("Reference detector not initialized"), None, False
            )
        gray = to_gray(load_image(image))

        primary = self._detect(gray, selected_mode, self._dimensions.length_cm)
        if isinstance(primary, ReferenceFound):
            return FallbackDetectionResult(primary, selected_mode, False)

        for mode in DetectionMode:
            if mode is selected_mode:
                continue
            # Alternative modes assume the stock object rather than the user's calibration
            result = self._detect(gray, mode, DEFAULT_SYRINGE_LENGTH_CM)
            if isinstance(result, ReferenceFound):
                return FallbackDetectionResult(result, mode, True)

        return FallbackDetectionResult(
            ReferenceNotFound("No reference object found in any mode"), None, False
        )

    # -----------------------------
    # Contour scan
    # -----------------------------
    def _detect(
        self, gray: np.ndarray, mode: DetectionMode, known_length_cm: float
    ) -> ReferenceDetectionResult:
        blurred = cv2.GaussianBlur(gray, (5, 5), 0)
        edges = cv2.Canny(blurred, 50, 150)
        # Seal single-pixel corner gaps so outlines come back as closed contours
        edges = cv2.morphologyEx(edges, cv2.MORPH_CLOSE, np.ones((3, 3), np.uint8))
        contours, _ = cv2.findContours(edges, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

        stats = _ScanStats(total=len(contours))
        candidates: List[ReferenceFound] = []
        for contour in contours:
            try:
                found = self._evaluate(gray, contour, mode, known_length_cm, stats)
            except (cv2.error, ValueError, TypeError) as exc:
                warnings.warn(f"Skipping reference candidate: {exc}")
                continue
            if found is not None:
                candidates.append(found)

        stats.candidates = len(candidates)
        if not candidates:
            return ReferenceNotFound("No valid reference object found", str(stats))
        best = max(candidates, key=lambda c: c.confidence)
        return ReferenceFound(
            bounding_box=best.bounding_box,
            center=best.center,
            angle_degrees=best.angle_degrees,
            length_pixels=best.length_pixels,
            pixel_to_cm_ratio=best.pixel_to_cm_ratio,
            confidence=best.confidence,
            mode=best.mode,
            debug_info=str(stats),
        )

    def _evaluate(
        self,
        gray: np.ndarray,
        contour: np.ndarray,
        mode: DetectionMode,
        known_length_cm: float,
        stats: _ScanStats,
    ) -> ReferenceFound | None:
        s = self.settings
        max_area = s.card_max_contour_area if mode is DetectionMode.CARD else s.max_contour_area
        area = float(cv2.contourArea(contour))
        if area < s.min_contour_area:
            stats.too_small += 1
            return None
        if area > max_area:
            stats.too_large += 1
            return None

        rotated_rect = cv2.minAreaRect(contour)
        (cx, cy), (width, height), angle = rotated_rect
        length = max(width, height)
        thickness = min(width, height)
        if thickness <= 0:
            return None
        aspect = length / thickness
        rect_score = rectangularity(area, width, height)
        on_right = cx > gray.shape[1] / 2.0

        if mode is DetectionMode.CARD:
            return self._evaluate_card(
                gray, contour, rotated_rect, aspect, rect_score, stats
            )

        if mode is DetectionMode.FLEXIBLE:
            min_aspect = s.flexible_min_aspect_ratio
        else:
            min_aspect = s.right_min_aspect_ratio if on_right else s.left_min_aspect_ratio
        min_rect = s.right_min_rectangularity if on_right else s.left_min_rectangularity

        if aspect < min_aspect or aspect > s.max_aspect_ratio:
            stats.bad_ratio += 1
            return None
        if rect_score < min_rect:
            stats.bad_rectangularity += 1
            return None

        line_score = parallel_line_score(
            gray, rotated_rect, s.roi_padding_px, s.line_angle_tolerance_deg
        )
        if mode is DetectionMode.STRICT and line_score <= s.min_parallel_line_score:
            if on_right:
                strong_shape = rect_score > s.right_fallback_rectangularity
            else:
                strong_shape = (
                    aspect > s.left_fallback_aspect_ratio
                    and rect_score > s.left_fallback_rectangularity
                )
            if not strong_shape:
                stats.no_straight_edges += 1
                return None

        return ReferenceFound(
            bounding_box=_rotated_bounds(rotated_rect, gray.shape),
            center=(float(cx), float(cy)),
            angle_degrees=float(angle),
            length_pixels=float(length),
            pixel_to_cm_ratio=known_length_cm / float(length),
            confidence=reference_confidence(
                aspect, min(rect_score, 1.0), line_score, s.ideal_aspect_ratio
            ),
            mode=mode,
        )

    def _evaluate_card(
        self,
        gray: np.ndarray,
        contour: np.ndarray,
        rotated_rect,
        aspect: float,
        rect_score: float,
        stats: _ScanStats,
    ) -> ReferenceFound | None:
        s = self.settings
        expected = s.card_length_cm / s.card_width_cm
        if abs(aspect - expected) > s.card_aspect_tolerance:
            stats.bad_ratio += 1
            return None
        if rect_score <= s.card_min_rectangularity:
            stats.bad_rectangularity += 1
            return None
        (cx, cy), (width, height), angle = rotated_rect
        # A card's short edge is substantial; this rejects thin syringes
        if min(width, height) < gray.shape[1] * s.card_min_thickness_fraction:
            stats.bad_rectangularity += 1
            return None

        length = max(width, height)
        ratio = s.card_length_cm / float(length)
        confidence = 0.95
        corrected = _card_corner_ratio(contour, s.card_length_cm)
        if corrected is not None:
            ratio = corrected
            confidence = 0.97
        return ReferenceFound(
            bounding_box=_rotated_bounds(rotated_rect, gray.shape),
            center=(float(cx), float(cy)),
            angle_degrees=float(angle),
            length_pixels=float(length),
            pixel_to_cm_ratio=ratio,
            confidence=confidence,
            mode=DetectionMode.CARD,
        )


def _rotated_bounds(rotated_rect, shape: Tuple[int, ...]) -> BoundingBox:
    points = cv2.boxPoints(rotated_rect)
    x, y, w, h = cv2.boundingRect(points.astype(np.float32))
    return BoundingBox.from_xywh(x, y, max(w, 1), max(h, 1)).clipped(shape[1], shape[0])


def _card_corner_ratio(contour: np.ndarray, card_length_cm: float) -> float | None:
    """Perspective-aware ratio from the card's four corners.

    Averages the two long edges of the quadrilateral so a card seen at an
    angle is not sized from its foreshortened near or far edge alone.
    """
    peri = cv2.arcLength(contour, True)
    approx = cv2.approxPolyDP(contour, 0.02 * peri, True)
    if len(approx) != 4:
        return None
    corners = approx.reshape(4, 2).astype(np.float64)
    sides = [
        float(np.linalg.norm(corners[(i + 1) % 4] - corners[i])) for i in range(4)
    ]
    pair_a = (sides[0] + sides[2]) / 2.0
    pair_b = (sides[1] + sides[3]) / 2.0
    long_edge = max(pair_a, pair_b)
    if long_edge < 10.0:
        return None
    return card_length_cm / long_edge


__all__ = [
    "CARD_HEIGHT_CM",
    "CARD_WIDTH_CM",
    "DEFAULT_SYRINGE_LENGTH_CM",
    "ReferenceDetectionSettings",
    "ReferenceDimensions",
    "ReferenceObjectDetector",
    "parallel_line_score",
    "reference_confidence",
]
