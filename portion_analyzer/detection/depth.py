"""Depth (fill height) estimation for plates and bowls.

Real depth samples are preferred: the rim of the container sits farther from
the camera than the peak of the food pile, so ``mean(rim) - center`` is the
height of the food. Without samples the estimate falls back to a fixed depth
per container type with low confidence.
"""

from __future__ import annotations

import math
import warnings
from dataclasses import dataclass
from typing import List, Tuple

from ..core.types import (
    BoundingBox,
    CameraIntrinsics,
    ContainerType,
    DepthFrame,
    DepthResult,
    ExternalMeasurement,
    PlateDetectionResult,
)


@dataclass(frozen=True)
class DepthSettings:
    min_depth_cm: float = 0.3
    max_depth_cm: float = 15.0
    rim_samples: int = 8
    flat_plate_max_cm: float = 1.5
    regular_bowl_max_cm: float = 5.0
    default_flat_plate_cm: float = 2.5
    default_regular_bowl_cm: float = 5.0
    default_deep_bowl_cm: float = 8.0
    default_unknown_cm: float = 3.0
    wide_aspect_ratio: float = 1.3
    tall_aspect_ratio: float = 0.8
    min_plate_diameter_cm: float = 5.0
    max_plate_diameter_cm: float = 60.0
    fallback_fov_degrees: float = 60.0


# (sensor available but no usable sample, sensor unavailable)
_FALLBACK_CONFIDENCE = {
    ContainerType.FLAT_PLATE: (0.20, 0.15),
    ContainerType.REGULAR_BOWL: (0.15, 0.10),
    ContainerType.DEEP_BOWL: (0.15, 0.10),
    ContainerType.UNKNOWN: (0.10, 0.05),
}


@dataclass(frozen=True)
class RimSample:
    """Center and rim readings in millimetres taken from a depth frame."""

    center_mm: float
    rim_mm: List[float]
    rim_points: int

    @property
    def valid_rim(self) -> List[float]:
        return [value for value in self.rim_mm if value > 0]

    @property
    def is_usable(self) -> bool:
        return self.center_mm > 0 and bool(self.valid_rim)

    @property
    def mean_rim_mm(self) -> float:
        valid = self.valid_rim
        return float(sum(valid) / len(valid)) if valid else 0.0


class DepthEstimator:
    """Derives food height from depth samples or container-type heuristics."""

    def __init__(self, settings: DepthSettings | None = None) -> None:
        self.settings = settings or DepthSettings()

    # -----------------------------
    # Container type
    # -----------------------------
    def detect_container_type(
        self,
        plate_result: PlateDetectionResult,
        measurement: ExternalMeasurement | None = None,
    ) -> ContainerType:
        """Guess the container type from the plate outline.

        A measurement hint wins because it comes from real depth. Otherwise a
        wide box suggests a flat plate seen at an angle and a tall box a deep
        bowl seen from the side.
        """
        if measurement is not None:
            return measurement.container_type_hint
        if not plate_result.found or plate_result.bounds is None:
            return ContainerType.UNKNOWN
        aspect = plate_result.bounds.aspect_ratio
        if aspect > self.settings.wide_aspect_ratio:
            return ContainerType.FLAT_PLATE
        if aspect < self.settings.tall_aspect_ratio:
            return ContainerType.DEEP_BOWL
        return ContainerType.REGULAR_BOWL

    def classify_by_height(self, depth_cm: float) -> ContainerType:
        if depth_cm < self.settings.flat_plate_max_cm:
            return ContainerType.FLAT_PLATE
        if depth_cm < self.settings.regular_bowl_max_cm:
            return ContainerType.REGULAR_BOWL
        return ContainerType.DEEP_BOWL

    # -----------------------------
    # Depth
    # -----------------------------
    def estimate_depth(
        self,
        container_type: ContainerType,
        depth_frame: DepthFrame | None = None,
        plate_bounds: BoundingBox | None = None,
        image_size: Tuple[int, int] | None = None,
        measurement: ExternalMeasurement | None = None,
        sensor_available: bool = False,
    ) -> DepthResult:
        if depth_frame is not None and plate_bounds is not None and image_size is not None:
            sample = self.sample_rim(depth_frame, plate_bounds, image_size)
            if sample.is_usable:
                depth_cm = self._clamp((sample.mean_rim_mm - sample.center_mm) / 10.0)
                confidence = len(sample.valid_rim) / float(sample.rim_points)
                return DepthResult(
                    depth_cm=depth_cm,
                    confidence=min(max(confidence, 0.5), 1.0),
                    is_from_sensor=True,
                    container_type=self.classify_by_height(depth_cm),
                )
            warnings.warn("Depth frame had no valid center/rim samples; using heuristic depth")

        if measurement is not None:
            return DepthResult(
                depth_cm=self._clamp(measurement.depth_cm),
                confidence=min(max(measurement.confidence, 0.0), 1.0),
                is_from_sensor=True,
                container_type=measurement.container_type_hint,
            )

        return self.fallback_depth(
            container_type, sensor_available=sensor_available or depth_frame is not None
        )

    def fallback_depth(
        self, container_type: ContainerType, sensor_available: bool = False
    ) -> DepthResult:
        s = self.settings
        defaults = {
            ContainerType.FLAT_PLATE: s.default_flat_plate_cm,
            ContainerType.REGULAR_BOWL: s.default_regular_bowl_cm,
            ContainerType.DEEP_BOWL: s.default_deep_bowl_cm,
            ContainerType.UNKNOWN: s.default_unknown_cm,
        }
        with_sensor, without_sensor = _FALLBACK_CONFIDENCE[container_type]
        return DepthResult(
            depth_cm=defaults[container_type],
            confidence=with_sensor if sensor_available else without_sensor,
            is_from_sensor=False,
            container_type=container_type,
        )

    def sample_rim(
        self,
        depth_frame: DepthFrame,
        plate_bounds: BoundingBox,
        image_size: Tuple[int, int],
    ) -> RimSample:
        """Read the plate center and points spaced evenly on the inscribed ellipse."""
        depth = depth_frame.depth_mm
        frame_w, frame_h = depth_frame.width, depth_frame.height
        image_w, image_h = image_size
        scale_x = frame_w / float(max(image_w, 1))
        scale_y = frame_h / float(max(image_h, 1))

        center_x, center_y = plate_bounds.center
        cx, cy = center_x * scale_x, center_y * scale_y
        rx, ry = plate_bounds.width / 2.0 * scale_x, plate_bounds.height / 2.0 * scale_y

        def read(x: float, y: float) -> float:
            px = min(max(int(x), 0), frame_w - 1)
            py = min(max(int(y), 0), frame_h - 1)
            value = float(depth[py, px])
            return value if math.isfinite(value) else 0.0

        count = max(1, int(self.settings.rim_samples))
        rim = [
            read(
                cx + rx * math.cos(2.0 * math.pi * i / count),
                cy + ry * math.sin(2.0 * math.pi * i / count),
            )
            for i in range(count)
        ]
        return RimSample(center_mm=read(cx, cy), rim_mm=rim, rim_points=count)

    # -----------------------------
    # Projection
    # -----------------------------
    def measure_plate(
        self,
        depth_frame: DepthFrame,
        plate_bounds: BoundingBox,
        image_size: Tuple[int, int],
        intrinsics: CameraIntrinsics | None = None,
    ) -> ExternalMeasurement | None:
        """Build a real-world measurement from depth samples and camera geometry.

        Returns ``None`` when the frame has no usable center/rim samples.
        """
        sample = self.sample_rim(depth_frame, plate_bounds, image_size)
        if not sample.is_usable:
            return None
        depth_cm = self._clamp((sample.mean_rim_mm - sample.center_mm) / 10.0)
        surface_mm = sample.mean_rim_mm
        diameter_cm = self.project_plate_diameter(
            plate_bounds, surface_mm / 10.0, image_size, intrinsics
        )
        confidence = len(sample.valid_rim) / float(sample.rim_points)
        return ExternalMeasurement(
            depth_cm=depth_cm,
            plate_diameter_cm=diameter_cm,
            surface_distance_cm=surface_mm / 10.0,
            container_type_hint=self.classify_by_height(depth_cm),
            confidence=min(max(confidence, 0.5), 1.0),
        )

    def project_plate_diameter(
        self,
        plate_bounds: BoundingBox,
        surface_distance_cm: float,
        image_size: Tuple[int, int],
        intrinsics: CameraIntrinsics | None = None,
    ) -> float:
        """Pinhole projection ``real = pixels * distance / focal_length``.

        The larger of the projected width and height is used so an angled
        view of a round plate is not under-sized. Without intrinsics a
        horizontal field of view of ``fallback_fov_degrees`` is assumed.
        """
        s = self.settings
        image_w, image_h = image_size
        if intrinsics is not None and intrinsics.fx > 0 and intrinsics.fy > 0:
            fx = intrinsics.fx * image_w / float(max(intrinsics.width, 1))
            fy = intrinsics.fy * image_h / float(max(intrinsics.height, 1))
            real_w = plate_bounds.width * surface_distance_cm / fx
            real_h = plate_bounds.height * surface_distance_cm / fy
            diameter = max(real_w, real_h)
        else:
            fov = math.radians(s.fallback_fov_degrees)
            frame_width_cm = 2.0 * surface_distance_cm * math.tan(fov / 2.0)
            diameter = frame_width_cm * plate_bounds.width / float(max(image_w, 1))
        return min(max(diameter, s.min_plate_diameter_cm), s.max_plate_diameter_cm)

    def _clamp(self, depth_cm: float) -> float:
        return min(max(float(depth_cm), self.settings.min_depth_cm), self.settings.max_depth_cm)


__all__ = ["DepthEstimator", "DepthSettings", "RimSample"]
