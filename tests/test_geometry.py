"""
Unit tests for portion_analyzer.volume.geometry module.
"""
import math

import pytest

from portion_analyzer.core.types import BoundingBox
from portion_analyzer.volume.geometry import (
    cylinder_volume_cm3,
    plate_diameter_cm,
    plate_width_pixels,
)


class TestGeometry:
    """Tests for plate width, diameter and volume helpers."""

    def test_detected_width(self):
        """Detected bounds give the plate width directly."""
        assert plate_width_pixels(BoundingBox(100, 100, 500, 350), 640) == 400.0

    def test_fallback_width(self):
        """Without bounds the plate is assumed to span 45% of the frame."""
        assert plate_width_pixels(None, 640) == pytest.approx(288.0)
        assert plate_width_pixels(None, 1000, fallback_fraction=0.5) == 500.0

    def test_diameter(self):
        """Pixel width times ratio."""
        assert plate_diameter_cm(400.0, 0.05) == pytest.approx(20.0)

    def test_cylinder_volume(self):
        """A 20 cm plate at 2.5 cm depth holds pi * 100 * 2.5 cm3."""
        assert cylinder_volume_cm3(20.0, 2.5) == pytest.approx(math.pi * 100 * 2.5)

    def test_zero_depth(self):
        """No depth means no volume."""
        assert cylinder_volume_cm3(20.0, 0.0) == 0.0
