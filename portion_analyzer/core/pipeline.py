"""High-level orchestration wiring plate, reference, depth and volume estimation."""

from __future__ import annotations

import threading
import warnings
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import List

import cv2

from ..detection.depth import DepthEstimator
from ..detection.plate import PlateDetector
from ..detection.reference import ReferenceObjectDetector
from ..volume.geometry import cylinder_volume_cm3, plate_diameter_cm, plate_width_pixels
from .errors import EstimationCancelled, ImageReadError
from .image import load_image
from .types import (
    ContainerType,
    DepthFrame,
    ExternalMeasurement,
    ImageInput,
    NoScale,
    PortionError,
    PortionResult,
    PortionSuccess,
    ProjectionScale,
    ReferenceDetectionResult,
    ReferenceFound,
    ReferenceNotFound,
    ReferenceObjectType,
    ReferenceScale,
    ScaleSource,
)


NO_SCALE_WARNING = (
    "No reference object or depth measurement available; "
    "portion size could not be measured."
)


@dataclass(frozen=True)
class InitializationResult:
    is_ready: bool
    opencv_version: str | None


def resolve_scale_source(
    reference: ReferenceDetectionResult | None,
    measurement: ExternalMeasurement | None,
) -> ScaleSource:
    """Pick the scale source: reference object, then external projection, then none."""
    if isinstance(reference, ReferenceFound):
        return ReferenceScale(ratio=reference.pixel_to_cm_ratio, confidence=reference.confidence)
    if reference is not None and not isinstance(reference, ReferenceNotFound):
        raise TypeError(f"Unexpected reference result: {reference!r}")
    if measurement is not None:
        return ProjectionScale(measurement=measurement)
    return NoScale()


class PortionEstimator:
    """Orchestrates plate -> reference -> scale -> depth -> volume for one photo.

    The estimator holds no per-image state; only the reference calibration is
    kept between calls.
    """

    def __init__(
        self,
        plate_detector: PlateDetector | None = None,
        reference_detector: ReferenceObjectDetector | None = None,
        depth_estimator: DepthEstimator | None = None,
        plate_width_fallback_fraction: float = 0.45,
        scale_weight: float = 0.6,
        depth_weight: float = 0.4,
        external_confidence_factor: float = 0.9,
        no_scale_confidence: float = 0.05,
        food_density_g_cm3: float = 0.65,
    ) -> None:
        self.plate_detector = plate_detector or PlateDetector()
        self.reference_detector = reference_detector or ReferenceObjectDetector()
        self.depth_estimator = depth_estimator or DepthEstimator()
        self.plate_width_fallback_fraction = plate_width_fallback_fraction
        self.scale_weight = scale_weight
        self.depth_weight = depth_weight
        self.external_confidence_factor = external_confidence_factor
        self.no_scale_confidence = no_scale_confidence
        # Reported on every result for the dosing collaborator
        self.food_density_g_cm3 = food_density_g_cm3
        self._calibrated_length_cm: float | None = None
        self._initialized = False

    def initialize(self) -> InitializationResult:
        ready = self.reference_detector.initialize()
        self._initialized = ready
        return InitializationResult(is_ready=ready, opencv_version=getattr(cv2, "__version__", None))

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def configure_reference_length(self, length_cm: float) -> None:
        """Pin the reference length, overriding the per-type default on every call."""
        self.reference_detector.set_expected_dimensions(length_cm)
        self._calibrated_length_cm = float(length_cm)

    def reference_length_for(self, reference_type: ReferenceObjectType) -> float:
        return self._calibrated_length_cm or reference_type.length_cm

    def estimate_portion(
        self,
        image: ImageInput,
        reference_type: ReferenceObjectType = ReferenceObjectType.INSULIN_SYRINGE,
        external_measurement: ExternalMeasurement | None = None,
        depth_frame: DepthFrame | None = None,
        cancel_event: threading.Event | None = None,
    ) -> PortionResult:
        if not self._initialized:
            return PortionError("System not initialized")
        try:
            rgb = load_image(image)
        except ImageReadError as exc:
            return PortionError(str(exc))

        height, width = rgb.shape[:2]

        def checkpoint() -> None:
            if cancel_event is not None and cancel_event.is_set():
                raise EstimationCancelled("Portion estimation cancelled")

        checkpoint()
        plate = self.plate_detector.detect_plate(rgb)
        plate_bounds = plate.bounds if plate.found else None

        checkpoint()
        reference: ReferenceDetectionResult | None = None
        if reference_type.mode is not None:
            reference = self.reference_detector.detect_reference_object(
                rgb,
                reference_type.mode,
                known_length_cm=self.reference_length_for(reference_type),
            )

        scale = resolve_scale_source(reference, external_measurement)
        if isinstance(scale, NoScale):
            return PortionSuccess(
                volume_cm3=0.0,
                plate_diameter_cm=0.0,
                depth_cm=0.0,
                container_type=ContainerType.UNKNOWN,
                confidence=self.no_scale_confidence,
                reference_object_detected=False,
                external_measurement_used=False,
                warning=NO_SCALE_WARNING,
                scale_source=scale,
                plate=plate,
                food_density_g_cm3=self.food_density_g_cm3,
            )

        checkpoint()
        container_type = self.depth_estimator.detect_container_type(plate, external_measurement)
        depth = self.depth_estimator.estimate_depth(
            container_type,
            depth_frame=depth_frame,
            plate_bounds=plate_bounds,
            image_size=(width, height),
            measurement=external_measurement,
            sensor_available=depth_frame is not None or external_measurement is not None,
        )
        # Measured depth is authoritative over the outline heuristic
        if depth.is_from_sensor:
            container_type = depth.container_type

        warnings_list: List[str] = []
        if isinstance(scale, ReferenceScale):
            width_px = plate_width_pixels(
                plate_bounds, width, self.plate_width_fallback_fraction
            )
            diameter_cm = plate_diameter_cm(width_px, scale.ratio)
            scale_confidence = scale.confidence
            if plate_bounds is None:
                warnings_list.append(
                    "Plate not detected; assumed it spans "
                    f"{self.plate_width_fallback_fraction:.0%} of the image width."
                )
        elif isinstance(scale, ProjectionScale):
            diameter_cm = scale.measurement.plate_diameter_cm
            scale_confidence = self.external_confidence_factor * scale.measurement.confidence
        else:
            raise TypeError(f"Unexpected scale source: {scale!r}")

        if not depth.is_from_sensor:
            warnings_list.append(
                f"Depth estimated from container type ({container_type.value}); "
                "volume may be inaccurate."
            )

        checkpoint()
        volume = cylinder_volume_cm3(diameter_cm, depth.depth_cm)
        confidence = self.scale_weight * scale_confidence + self.depth_weight * depth.confidence

        return PortionSuccess(
            volume_cm3=volume,
            plate_diameter_cm=diameter_cm,
            depth_cm=depth.depth_cm,
            container_type=container_type,
            confidence=min(max(confidence, 0.0), 1.0),
            reference_object_detected=isinstance(scale, ReferenceScale),
            external_measurement_used=isinstance(scale, ProjectionScale),
            warning=" ".join(warnings_list) or None,
            scale_source=scale,
            plate=plate,
            food_density_g_cm3=self.food_density_g_cm3,
        )

    def estimate_portion_with_timeout(
        self,
        image: ImageInput,
        timeout: float,
        reference_type: ReferenceObjectType = ReferenceObjectType.INSULIN_SYRINGE,
        external_measurement: ExternalMeasurement | None = None,
        depth_frame: DepthFrame | None = None,
    ) -> PortionResult:
        """Run :meth:`estimate_portion` on a worker thread with a time budget.

        On expiry the worker is told to stop at its next checkpoint and
        :class:`EstimationCancelled` is raised; no partial result is returned.
        """
        cancel_event = threading.Event()
        pool = ThreadPoolExecutor(max_workers=1)
        try:
            future = pool.submit(
                self.estimate_portion,
                image,
                reference_type,
                external_measurement,
                depth_frame,
                cancel_event,
            )
            try:
                return future.result(timeout=timeout)
            except FutureTimeoutError as exc:
                cancel_event.set()
                warnings.warn(f"Portion estimation exceeded {timeout}s and was cancelled")
                raise EstimationCancelled(
                    f"Portion estimation exceeded {timeout}s"
                ) from exc
        finally:
            pool.shutdown(wait=False)


__all__ = [
    "InitializationResult",
    "NO_SCALE_WARNING",
    "PortionEstimator",
    "resolve_scale_source",
]
