"""Core orchestration and shared types for the portion analyzer."""

from .errors import EstimationCancelled, ImageReadError
from .image import load_image
from .types import (
    BoundingBox,
    ContainerType,
    DepthFrame,
    ExternalMeasurement,
    FoodItem,
    FoodRegion,
    ImageInput,
    PlateDetectionResult,
    PortionError,
    PortionResult,
    PortionSuccess,
    ReferenceFound,
    ReferenceNotFound,
    ReferenceObjectType,
    ShapeType,
)
from .pipeline import PortionEstimator
from .validation import ImageInvalid, ImageValid, validate_image

__all__ = [
    "BoundingBox",
    "ContainerType",
    "DepthFrame",
    "EstimationCancelled",
    "ExternalMeasurement",
    "FoodItem",
    "FoodRegion",
    "ImageInput",
    "ImageInvalid",
    "ImageReadError",
    "ImageValid",
    "PlateDetectionResult",
    "PortionError",
    "PortionEstimator",
    "PortionResult",
    "PortionSuccess",
    "ReferenceFound",
    "ReferenceNotFound",
    "ReferenceObjectType",
    "ShapeType",
    "load_image",
    "validate_image",
]
