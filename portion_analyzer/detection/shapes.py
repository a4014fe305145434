"""Contour geometry helpers: circularity, shape classification and plate scoring."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

import cv2
import numpy as np

from ..core.types import BoundingBox, ShapeType


def circularity(contour: np.ndarray) -> float:
    """Return ``4*pi*area / perimeter**2``; 1.0 for a perfect circle."""
    area = float(cv2.contourArea(contour))
    perimeter = float(cv2.arcLength(contour, True))
    if perimeter <= 0:
        return 0.0
    return (4.0 * math.pi * area) / (perimeter * perimeter)


def rectangularity(contour_area: float, rect_width: float, rect_height: float) -> float:
    rect_area = rect_width * rect_height
    if rect_area <= 0:
        return 0.0
    return contour_area / rect_area


class ShapeClassifier:
    """Classifies a closed contour from its ellipse fit and polygon approximation."""

    def __init__(
        self,
        circular_max_axis_ratio: float = 1.2,
        oval_max_axis_ratio: float = 2.0,
        polygon_epsilon: float = 0.02,
    ) -> None:
        self.circular_max_axis_ratio = circular_max_axis_ratio
        self.oval_max_axis_ratio = oval_max_axis_ratio
        self.polygon_epsilon = polygon_epsilon

    def classify(self, contour: np.ndarray) -> ShapeType:
        # fitEllipse needs at least five points
        if len(contour) >= 5:
            (_, _), (axis_a, axis_b), _ = cv2.fitEllipse(contour)
            minor, major = sorted((float(axis_a), float(axis_b)))
            if minor > 0:
                ratio = major / minor
                if ratio < self.circular_max_axis_ratio:
                    return ShapeType.CIRCULAR
                if ratio <= self.oval_max_axis_ratio:
                    return ShapeType.OVAL
        peri = cv2.arcLength(contour, True)
        approx = cv2.approxPolyDP(contour, self.polygon_epsilon * peri, True)
        if len(approx) == 4:
            return ShapeType.RECTANGULAR
        return ShapeType.UNKNOWN


@dataclass(frozen=True)
class PlateCandidate:
    """Best contour found by :class:`ContourScorer`, in working-image pixels."""

    bounds: BoundingBox
    area: float
    circularity: float
    shape: ShapeType


class ContourScorer:
    """Picks the largest sufficiently circular contour within an area window.

    Contours whose area is at or below ``min_area_ratio`` or at or above
    ``max_area_ratio`` of the image are rejected, as are contours whose
    circularity does not exceed the threshold passed to :meth:`best_candidate`.
    """

    def __init__(
        self,
        min_area_ratio: float = 0.04,
        max_area_ratio: float = 0.90,
        classifier: ShapeClassifier | None = None,
    ) -> None:
        self.min_area_ratio = min_area_ratio
        self.max_area_ratio = max_area_ratio
        self.classifier = classifier or ShapeClassifier()

    def best_candidate(
        self,
        contours: Sequence[np.ndarray],
        image_area: float,
        circularity_threshold: float,
    ) -> PlateCandidate | None:
        min_area = image_area * self.min_area_ratio
        max_area = image_area * self.max_area_ratio

        best: np.ndarray | None = None
        best_area = 0.0
        best_circ = 0.0
        for contour in contours:
            area = float(cv2.contourArea(contour))
            if area <= min_area or area >= max_area:
                continue
            circ = circularity(contour)
            if circ <= circularity_threshold:
                continue
            if area > best_area:
                best, best_area, best_circ = contour, area, circ

        if best is None:
            return None
        x, y, w, h = cv2.boundingRect(best)
        return PlateCandidate(
            bounds=BoundingBox.from_xywh(x, y, max(w, 1), max(h, 1)),
            area=best_area,
            circularity=min(best_circ, 1.0),
            shape=self.classifier.classify(best),
        )


__all__ = [
    "circularity",
    "rectangularity",
    "ShapeClassifier",
    "PlateCandidate",
    "ContourScorer",
]
