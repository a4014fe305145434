"""Food portion estimation from a single plate photo using classical computer vision."""

from .core import (
    ContainerType,
    ExternalMeasurement,
    FoodItem,
    ImageInput,
    PortionError,
    PortionEstimator,
    PortionSuccess,
    ReferenceObjectType,
)
from .detection import DepthEstimator, FoodRegionAnalyzer, PlateDetector, ReferenceObjectDetector
from .utils import load_config

__all__ = [
    "ContainerType",
    "DepthEstimator",
    "ExternalMeasurement",
    "FoodItem",
    "FoodRegionAnalyzer",
    "ImageInput",
    "PlateDetector",
    "PortionError",
    "PortionEstimator",
    "PortionSuccess",
    "ReferenceObjectDetector",
    "ReferenceObjectType",
    "load_config",
]
