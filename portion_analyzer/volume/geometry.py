"""Geometry for turning plate measurements into a raw portion volume."""

from __future__ import annotations

import math

from ..core.types import BoundingBox


def plate_width_pixels(
    bounds: BoundingBox | None, image_width: int, fallback_fraction: float = 0.45
) -> float:
    """Width of the detected plate, or ``fallback_fraction`` of the frame when unknown."""
    if bounds is not None:
        return float(bounds.width)
    return image_width * fallback_fraction


def plate_diameter_cm(width_pixels: float, pixel_to_cm_ratio: float) -> float:
    return width_pixels * pixel_to_cm_ratio


def cylinder_volume_cm3(diameter_cm: float, depth_cm: float) -> float:
    """Raw ``pi * r^2 * h``; fill and shape corrections are left to the caller."""
    radius = diameter_cm / 2.0
    return math.pi * radius * radius * depth_cm


__all__ = ["plate_width_pixels", "plate_diameter_cm", "cylinder_volume_cm3"]
