"""Plate / container detection from a single photograph.

Five independent strategies are tried in a fixed priority order and the first
one that yields a plate wins:

1. adaptive local threshold
2. bilateral filter + low-threshold Canny + morphological close
3. Hough circle transform (moderate, then sensitive)
4. Otsu threshold + heavy morphology
5. Sobel gradient magnitude ring

Each strategy is a plain function ``(WorkingImage, PlateDetectionSettings) ->
PlateCandidate | None`` so it can be exercised on its own.
"""

from __future__ import annotations

import math
import warnings
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Sequence, Tuple

import cv2
import numpy as np

from ..core.image import WorkingImage, load_image, prepare_working_image
from ..core.types import BoundingBox, ImageInput, PlateDetectionResult, ShapeType
from .shapes import ContourScorer, PlateCandidate


@dataclass(frozen=True)
class PlateDetectionSettings:
    """Tunables for plate detection; thresholds apply at ``working_width``."""

    working_width: int = 640
    clahe_clip_limit: float = 2.0
    clahe_tile_grid: int = 8
    min_area_ratio: float = 0.04
    max_area_ratio: float = 0.90
    circularity_primary: float = 0.7
    circularity_relaxed: float = 0.5
    circularity_last_resort: float = 0.3
    hough_min_radius_fraction: float = 0.10
    hough_max_radius_fraction: float = 0.48
    hough_max_center_offset_fraction: float = 0.40
    morph_kernel_size: int = 15


Strategy = Callable[[WorkingImage, PlateDetectionSettings], "PlateCandidate | None"]


def _external_contours(binary: np.ndarray) -> Sequence[np.ndarray]:
    contours, _ = cv2.findContours(binary, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    return contours


def _score_in_order(
    contours: Sequence[np.ndarray],
    work: WorkingImage,
    settings: PlateDetectionSettings,
    thresholds: Sequence[float],
) -> PlateCandidate | None:
    scorer = ContourScorer(settings.min_area_ratio, settings.max_area_ratio)
    for threshold in thresholds:
        candidate = scorer.best_candidate(contours, work.area, threshold)
        if candidate is not None:
            return candidate
    return None


def _kernel(size: int) -> np.ndarray:
    size = max(1, int(size))
    return cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (size, size))


def detect_by_adaptive_threshold(
    work: WorkingImage, settings: PlateDetectionSettings
) -> PlateCandidate | None:
    blurred = cv2.GaussianBlur(work.gray, (9, 9), 2.0)
    thresh = cv2.adaptiveThreshold(
        blurred, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY_INV, 11, 2
    )
    contours = _external_contours(thresh)
    return _score_in_order(
        contours,
        work,
        settings,
        (settings.circularity_primary, settings.circularity_relaxed),
    )


def detect_by_edges(
    work: WorkingImage, settings: PlateDetectionSettings
) -> PlateCandidate | None:
    smoothed = cv2.bilateralFilter(work.gray, 9, 75, 75)
    # Low thresholds so faint rims against the table still register
    edges = cv2.Canny(smoothed, 20, 60)
    closed = cv2.morphologyEx(
        edges, cv2.MORPH_CLOSE, _kernel(settings.morph_kernel_size), iterations=2
    )
    contours = _external_contours(closed)
    return _score_in_order(
        contours,
        work,
        settings,
        (settings.circularity_primary, settings.circularity_relaxed),
    )


# (param1, param2) per pass: moderate first, then high sensitivity
_HOUGH_PASSES: Tuple[Tuple[float, float], ...] = ((100.0, 50.0), (60.0, 30.0))


def detect_by_hough_circles(
    work: WorkingImage, settings: PlateDetectionSettings
) -> PlateCandidate | None:
    minor = min(work.width, work.height)
    min_radius = max(1, int(minor * settings.hough_min_radius_fraction))
    max_radius = max(min_radius + 1, int(minor * settings.hough_max_radius_fraction))
    max_offset = minor * settings.hough_max_center_offset_fraction
    image_cx, image_cy = work.width / 2.0, work.height / 2.0

    blurred = cv2.GaussianBlur(work.gray, (9, 9), 2.0)
    for param1, param2 in _HOUGH_PASSES:
        circles = cv2.HoughCircles(
            blurred,
            cv2.HOUGH_GRADIENT,
            dp=1.2,
            minDist=max(1.0, minor / 2.0),
            param1=param1,
            param2=param2,
            minRadius=min_radius,
            maxRadius=max_radius,
        )
        if circles is None:
            continue

        best: Tuple[float, float, float, float] | None = None
        best_score = 0.0
        for cx, cy, radius in circles[0]:
            offset = math.hypot(float(cx) - image_cx, float(cy) - image_cy)
            # Circles hugging the frame border are usually edge artifacts
            if offset > max_offset:
                continue
            proximity = 1.0 - offset / max_offset if max_offset > 0 else 1.0
            score = float(radius) * (0.5 + 0.5 * proximity)
            if score > best_score:
                best_score = score
                best = (float(cx), float(cy), float(radius), proximity)

        if best is None:
            continue
        cx, cy, radius, proximity = best
        bounds = BoundingBox(
            int(round(cx - radius)),
            int(round(cy - radius)),
            int(round(cx + radius)),
            int(round(cy + radius)),
        ).clipped(work.width, work.height)
        return PlateCandidate(
            bounds=bounds,
            area=math.pi * radius * radius,
            circularity=round(0.5 + 0.5 * proximity, 2),
            shape=ShapeType.CIRCULAR,
        )
    return None


def detect_by_otsu_morphology(
    work: WorkingImage, settings: PlateDetectionSettings
) -> PlateCandidate | None:
    blurred = cv2.GaussianBlur(work.gray, (5, 5), 0)
    _, binary = cv2.threshold(blurred, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
    big = _kernel(settings.morph_kernel_size + 6)
    small = _kernel(5)
    merged = cv2.morphologyEx(binary, cv2.MORPH_CLOSE, big, iterations=2)
    merged = cv2.dilate(merged, small, iterations=2)
    merged = cv2.erode(merged, small, iterations=2)
    contours = _external_contours(merged)
    return _score_in_order(
        contours,
        work,
        settings,
        (
            settings.circularity_primary,
            settings.circularity_relaxed,
            settings.circularity_last_resort,
        ),
    )


def detect_by_gradient_ring(
    work: WorkingImage, settings: PlateDetectionSettings
) -> PlateCandidate | None:
    blurred = cv2.GaussianBlur(work.gray, (5, 5), 0)
    grad_x = cv2.Sobel(blurred, cv2.CV_32F, 1, 0, ksize=3)
    grad_y = cv2.Sobel(blurred, cv2.CV_32F, 0, 1, ksize=3)
    magnitude = cv2.magnitude(grad_x, grad_y)
    magnitude = cv2.normalize(magnitude, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)
    _, ring = cv2.threshold(magnitude, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
    ring = cv2.morphologyEx(
        ring, cv2.MORPH_CLOSE, _kernel(settings.morph_kernel_size), iterations=2
    )
    small = _kernel(5)
    ring = cv2.dilate(ring, small, iterations=2)
    ring = cv2.erode(ring, small, iterations=2)
    contours = _external_contours(ring)
    return _score_in_order(
        contours,
        work,
        settings,
        (settings.circularity_relaxed, settings.circularity_last_resort),
    )


STRATEGIES: Tuple[Tuple[str, Strategy], ...] = (
    ("adaptive_threshold", detect_by_adaptive_threshold),
    ("edge_morphology", detect_by_edges),
    ("hough_circles", detect_by_hough_circles),
    ("otsu_morphology", detect_by_otsu_morphology),
    ("gradient_ring", detect_by_gradient_ring),
)


class PlateDetector:
    """Finds the plate or bowl in a photo and classifies its outline.

    Args:
        settings: Detection tunables; defaults are used when omitted.
        strategies: Ordered ``(name, function)`` pairs. Earlier entries always
            win over later ones.
        max_workers: When greater than one, strategies run on a thread pool.
            Only latency changes; the winner is still chosen by priority.
    """

    def __init__(
        self,
        settings: PlateDetectionSettings | None = None,
        strategies: Sequence[Tuple[str, Strategy]] | None = None,
        max_workers: int = 1,
    ) -> None:
        self.settings = settings or PlateDetectionSettings()
        self.strategies = tuple(strategies) if strategies is not None else STRATEGIES
        self.max_workers = max(1, int(max_workers))

    def __call__(self, image: ImageInput) -> PlateDetectionResult:
        return self.detect_plate(image)

    def detect_plate(self, image: ImageInput) -> PlateDetectionResult:
        rgb = load_image(image)
        work = prepare_working_image(
            rgb,
            working_width=self.settings.working_width,
            clahe_clip_limit=self.settings.clahe_clip_limit,
            clahe_tile_grid=self.settings.clahe_tile_grid,
        )

        if self.max_workers > 1:
            name, candidate = self._run_concurrently(work)
        else:
            name, candidate = self._run_sequentially(work)

        if candidate is None:
            return PlateDetectionResult.not_found()

        bounds = candidate.bounds
        if work.scale != 1.0:
            bounds = bounds.scaled(1.0 / work.scale)
        width, height = work.original_size
        return PlateDetectionResult(
            found=True,
            bounds=bounds.clipped(width, height),
            confidence=round(min(max(candidate.circularity, 0.0), 1.0), 2),
            shape=candidate.shape,
            strategy=name,
        )

    def _run_strategy(
        self, name: str, strategy: Strategy, work: WorkingImage
    ) -> PlateCandidate | None:
        try:
            return strategy(work, self.settings)
        except cv2.error as exc:
            warnings.warn(f"Plate strategy '{name}' failed: {exc}")
            return None

    def _run_sequentially(
        self, work: WorkingImage
    ) -> Tuple[str | None, PlateCandidate | None]:
        for name, strategy in self.strategies:
            candidate = self._run_strategy(name, strategy, work)
            if candidate is not None:
                return name, candidate
        return None, None

    def _run_concurrently(
        self, work: WorkingImage
    ) -> Tuple[str | None, PlateCandidate | None]:
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = [
                (name, pool.submit(self._run_strategy, name, strategy, work))
                for name, strategy in self.strategies
            ]
            # Walk in priority order; later futures are ignored once one wins
            for name, future in futures:
                candidate = future.result()
                if candidate is not None:
                    for _, pending in futures:
                        pending.cancel()
                    return name, candidate
        return None, None


__all__ = [
    "PlateDetectionSettings",
    "PlateDetector",
    "STRATEGIES",
    "detect_by_adaptive_threshold",
    "detect_by_edges",
    "detect_by_hough_circles",
    "detect_by_otsu_morphology",
    "detect_by_gradient_ring",
]
