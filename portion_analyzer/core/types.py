"""Shared dataclasses and type aliases used across portion analyzer components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np
from PIL import Image


ImageInput = Union[str, Path, Image.Image, np.ndarray]


class ShapeType(str, Enum):
    CIRCULAR = "circular"
    OVAL = "oval"
    RECTANGULAR = "rectangular"
    UNKNOWN = "unknown"


class ContainerType(str, Enum):
    FLAT_PLATE = "flat_plate"
    REGULAR_BOWL = "regular_bowl"
    DEEP_BOWL = "deep_bowl"
    UNKNOWN = "unknown"


class DetectionMode(str, Enum):
    """How strictly a reference object must match an elongated, straight shape."""

    STRICT = "strict"  # syringe / pen
    FLEXIBLE = "flexible"  # cutlery
    CARD = "card"  # ID-1 card


class ReferenceObjectType(Enum):
    """Reference objects a user can place next to the plate."""

    INSULIN_SYRINGE = ("insulin_syringe", 13.0, DetectionMode.STRICT)
    SYRINGE_KNIFE = ("syringe_knife", 21.0, DetectionMode.FLEXIBLE)
    CARD = ("card", 8.56, DetectionMode.CARD)
    NONE = ("none", 0.0, None)

    def __init__(
        self, key: str, length_cm: float, mode: Optional[DetectionMode]
    ) -> None:
        self.key = key
        self.length_cm = length_cm
        self.mode = mode

    @classmethod
    def from_value(cls, value: str | None) -> "ReferenceObjectType | None":
        if value is None:
            return None
        wanted = str(value).strip().lower()
        for member in cls:
            if member.key == wanted or member.name.lower() == wanted:
                return member
        return None


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned pixel rectangle as (left, top, right, bottom)."""

    left: int
    top: int
    right: int
    bottom: int

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.left + self.right) / 2.0, (self.top + self.bottom) / 2.0)

    @property
    def aspect_ratio(self) -> float:
        return self.width / max(self.height, 1)

    @classmethod
    def from_xywh(cls, x: int, y: int, w: int, h: int) -> "BoundingBox":
        return cls(int(x), int(y), int(x + w), int(y + h))

    def scaled(self, factor: float) -> "BoundingBox":
        """Multiply every coordinate by ``factor``; keeps the box at least 1x1."""
        left = int(round(self.left * factor))
        top = int(round(self.top * factor))
        right = max(int(round(self.right * factor)), left + 1)
        bottom = max(int(round(self.bottom * factor)), top + 1)
        return BoundingBox(left, top, right, bottom)

    def clipped(self, width: int, height: int) -> "BoundingBox":
        left = min(max(self.left, 0), max(width - 1, 0))
        top = min(max(self.top, 0), max(height - 1, 0))
        right = min(max(self.right, left + 1), width)
        bottom = min(max(self.bottom, top + 1), height)
        return BoundingBox(left, top, max(right, left + 1), max(bottom, top + 1))

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return (self.left, self.top, self.right, self.bottom)


@dataclass(frozen=True)
class PlateDetectionResult:
    """Outcome of plate detection for a single image."""

    found: bool
    bounds: BoundingBox | None = None
    confidence: float = 0.0
    shape: ShapeType = ShapeType.UNKNOWN
    strategy: str | None = None

    @classmethod
    def not_found(cls) -> "PlateDetectionResult":
        return cls(found=False, bounds=None, confidence=0.0, shape=ShapeType.UNKNOWN)


@dataclass(frozen=True)
class ReferenceFound:
    bounding_box: BoundingBox
    center: Tuple[float, float]
    angle_degrees: float
    length_pixels: float
    pixel_to_cm_ratio: float  # cm per pixel
    confidence: float
    mode: DetectionMode = DetectionMode.STRICT
    debug_info: str = ""

    def __post_init__(self) -> None:
        if not self.pixel_to_cm_ratio > 0:
            raise ValueError("pixel_to_cm_ratio must be positive")


@dataclass(frozen=True)
class ReferenceNotFound:
    reason: str
    debug_info: str = ""


ReferenceDetectionResult = Union[ReferenceFound, ReferenceNotFound]


@dataclass(frozen=True)
class FallbackDetectionResult:
    """Reference detection result plus the mode that actually matched."""

    result: ReferenceDetectionResult
    detected_mode: DetectionMode | None
    is_alternative: bool


@dataclass(frozen=True)
class ExternalMeasurement:
    """Real-world measurement supplied by a depth sensor / AR collaborator."""

    depth_cm: float
    plate_diameter_cm: float
    surface_distance_cm: float
    container_type_hint: ContainerType
    confidence: float


@dataclass(frozen=True, eq=False)
class DepthFrame:
    """Depth samples in millimetres; zero marks an invalid sample."""

    depth_mm: np.ndarray = field(repr=False)

    @property
    def width(self) -> int:
        return int(self.depth_mm.shape[1])

    @property
    def height(self) -> int:
        return int(self.depth_mm.shape[0])


@dataclass(frozen=True)
class CameraIntrinsics:
    """Pinhole focal lengths in pixels for an image of ``width`` x ``height``."""

    fx: float
    fy: float
    width: int
    height: int


@dataclass(frozen=True)
class DepthResult:
    depth_cm: float
    confidence: float
    is_from_sensor: bool
    container_type: ContainerType


@dataclass(frozen=True)
class ReferenceScale:
    ratio: float
    confidence: float

    def __post_init__(self) -> None:
        if not self.ratio > 0:
            raise ValueError("ratio must be positive")


@dataclass(frozen=True)
class ProjectionScale:
    measurement: ExternalMeasurement


@dataclass(frozen=True)
class NoScale:
    pass


ScaleSource = Union[ReferenceScale, ProjectionScale, NoScale]


@dataclass(frozen=True)
class PortionSuccess:
    volume_cm3: float
    plate_diameter_cm: float
    depth_cm: float
    container_type: ContainerType
    confidence: float
    reference_object_detected: bool
    external_measurement_used: bool
    warning: str | None = None
    scale_source: ScaleSource = field(default_factory=NoScale)
    plate: PlateDetectionResult | None = None
    food_density_g_cm3: float | None = None


@dataclass(frozen=True)
class PortionError:
    message: str


PortionResult = Union[PortionSuccess, PortionError]


@dataclass(frozen=True)
class FoodItem:
    """A recognised food item with a bounding box given in percent of the image."""

    name: str
    bbox_x_pct: float | None = None
    bbox_y_pct: float | None = None
    bbox_w_pct: float | None = None
    bbox_h_pct: float | None = None

    @property
    def has_bbox(self) -> bool:
        return (
            self.bbox_x_pct is not None
            and self.bbox_y_pct is not None
            and self.bbox_w_pct is not None
            and self.bbox_h_pct is not None
            and self.bbox_w_pct > 0
            and self.bbox_h_pct > 0
        )


@dataclass(frozen=True)
class FoodRegion:
    food_name: str
    area_cm2: float
    height_cm: float
