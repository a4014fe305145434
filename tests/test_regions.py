"""
Unit tests for portion_analyzer.detection.regions module.
"""
import json
from unittest.mock import patch

import cv2
import numpy as np
import pytest

from portion_analyzer.core.types import BoundingBox, FoodItem, FoodRegion
from portion_analyzer.detection.regions import (
    FoodRegionAnalyzer,
    food_regions_payload,
    to_food_regions_json,
)


@pytest.fixture
def food_image():
    """200x200 noisy gray plate with a red 60x60 food patch in the centre."""
    rng = np.random.default_rng(7)
    image = rng.integers(150, 170, size=(200, 200, 3), dtype=np.uint8)
    cv2.rectangle(image, (70, 70), (129, 129), (200, 30, 30), -1)
    return image


def full_mask(bgr, rect):
    return np.full(bgr.shape[:2], 255, dtype=np.uint8)


class TestAnalyzeSkips:
    """Inputs that produce no regions without segmenting."""

    def test_no_items(self, food_image):
        """An empty item list returns no regions and never runs GrabCut."""
        with patch("portion_analyzer.detection.regions.cv2.grabCut") as grab_cut:
            assert FoodRegionAnalyzer().analyze(food_image, [], 0.1) == []
        grab_cut.assert_not_called()

    def test_items_without_boxes(self, food_image):
        """Items without a bounding box are ignored."""
        with patch("portion_analyzer.detection.regions.cv2.grabCut") as grab_cut:
            result = FoodRegionAnalyzer().analyze(food_image, [FoodItem("rice")], 0.1)
        assert result == []
        grab_cut.assert_not_called()

    def test_non_positive_ratio(self, food_image):
        """A missing scale skips analysis."""
        item = FoodItem("rice", 20, 20, 60, 60)
        with patch("portion_analyzer.detection.regions.cv2.grabCut") as grab_cut:
            assert FoodRegionAnalyzer().analyze(food_image, [item], 0.0) == []
        grab_cut.assert_not_called()

    def test_tiny_box_warns(self, food_image):
        """Boxes under 10x10 px are skipped with a warning."""
        item = FoodItem("pea", 50, 50, 2, 2)
        with pytest.warns(UserWarning, match="too small"):
            assert FoodRegionAnalyzer().analyze(food_image, [item], 0.1) == []


class TestAnalyzeAreas:
    """Area computation and plate clipping."""

    def test_area_uses_square_of_ratio(self, food_image):
        """Foreground pixels times ratio squared."""
        item = FoodItem("rice", 0, 0, 100, 100)
        mask = np.zeros((200, 200), dtype=np.uint8)
        mask[0:50, 0:40] = 255  # 2000 px
        with patch.object(FoodRegionAnalyzer, "segment", return_value=mask):
            regions = FoodRegionAnalyzer().analyze(food_image, [item], 0.1)

        assert len(regions) == 1
        assert regions[0].food_name == "rice"
        assert regions[0].area_cm2 == pytest.approx(20.0)
        assert regions[0].height_cm == 1.5

    def test_mask_clipped_to_plate(self, food_image):
        """Foreground outside the plate rectangle is discarded."""
        item = FoodItem("rice", 0, 0, 100, 100)
        with patch.object(FoodRegionAnalyzer, "segment", side_effect=full_mask):
            regions = FoodRegionAnalyzer(default_height_cm=2.0).analyze(
                food_image, [item], 0.1, plate_bounds=BoundingBox(50, 50, 150, 100)
            )

        assert regions[0].area_cm2 == pytest.approx(100 * 50 * 0.01)
        assert regions[0].height_cm == 2.0

    def test_failed_item_is_isolated(self, food_image):
        """A segmentation error skips that item only."""
        items = [FoodItem("bad", 0, 0, 50, 50), FoodItem("good", 50, 50, 50, 50)]
        calls = {"n": 0}

        def flaky(bgr, rect):
            calls["n"] += 1
            if calls["n"] == 1:
                raise cv2.error("grabCut failed")
            return full_mask(bgr, rect)

        with patch.object(FoodRegionAnalyzer, "segment", side_effect=flaky):
            with pytest.warns(UserWarning, match="bad"):
                regions = FoodRegionAnalyzer().analyze(food_image, items, 0.1)

        assert [r.food_name for r in regions] == ["good"]

    def test_grabcut_finds_food_patch(self, food_image):
        """Real GrabCut keeps the red patch inside its seeding rectangle."""
        item = FoodItem("tomato", 25, 25, 50, 50)
        regions = FoodRegionAnalyzer().analyze(food_image, [item], 0.1)

        assert len(regions) == 1
        # 60x60 patch inside a 100x100 seed: 36 cm2 at 0.1 cm/px
        assert 0.0 < regions[0].area_cm2 <= 100.0

    def test_item_rect_clamped(self):
        """Percent boxes are converted and clamped to the image."""
        rect = FoodRegionAnalyzer().item_rect(FoodItem("x", 90, 90, 50, 50), 200, 100)
        assert rect.as_tuple() == (180, 90, 200, 100)


class TestFoodRegionsJson:
    """Tests for the compact JSON summary."""

    def test_rounding_and_keys(self):
        """Values are rounded to one decimal with camelCase keys."""
        regions = [FoodRegion("rice", 12.345, 1.5), FoodRegion("peas", 3.06, 0.96)]
        payload = json.loads(to_food_regions_json(regions))

        assert payload == [
            {"areaCm2": 12.3, "heightCm": 1.5},
            {"areaCm2": 3.1, "heightCm": 1.0},
        ]

    def test_empty(self):
        """No regions serialise to an empty list."""
        assert to_food_regions_json([]) == "[]"
        assert food_regions_payload([]) == []
