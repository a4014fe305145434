"""Classical OpenCV detectors for plates, reference objects, depth and food regions.

Quick Start:
    from portion_analyzer.detection import PlateDetector, ReferenceObjectDetector
    plate = PlateDetector()(image)

    reference = ReferenceObjectDetector()
    reference.initialize()
    result = reference.detect_reference_object(image)
"""

from .depth import DepthEstimator, DepthSettings
from .plate import PlateDetectionSettings, PlateDetector
from .reference import ReferenceDetectionSettings, ReferenceObjectDetector
from .regions import FoodRegionAnalyzer, to_food_regions_json
from .shapes import ContourScorer, ShapeClassifier

__all__ = [
    "ContourScorer",
    "DepthEstimator",
    "DepthSettings",
    "FoodRegionAnalyzer",
    "PlateDetectionSettings",
    "PlateDetector",
    "ReferenceDetectionSettings",
    "ReferenceObjectDetector",
    "ShapeClassifier",
    "to_food_regions_json",
]
