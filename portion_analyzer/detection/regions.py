"""Per-food-item area measurement with rectangle-seeded GrabCut."""

from __future__ import annotations

import json
import warnings
from typing import Iterable, List, Sequence

import cv2
import numpy as np

from ..core.image import load_image
from ..core.types import BoundingBox, FoodItem, FoodRegion, ImageInput


class FoodRegionAnalyzer:
    """Turns percentage bounding boxes into measured food areas in cm².

    Each box seeds a GrabCut segmentation; pixels marked definite or probable
    foreground are counted and converted with the square of the image scale.

    ``default_height_cm`` stands in for a per-food height until a height
    signal from food recognition is available.
    """

    def __init__(
        self,
        iterations: int = 3,
        min_box_px: int = 10,
        default_height_cm: float = 1.5,
    ) -> None:
        self.iterations = max(1, int(iterations))
        self.min_box_px = max(1, int(min_box_px))
        self.default_height_cm = float(default_height_cm)

    def analyze(
        self,
        image: ImageInput,
        food_items: Sequence[FoodItem],
        pixel_to_cm_ratio: float,
        plate_bounds: BoundingBox | None = None,
    ) -> List[FoodRegion]:
        items = [item for item in food_items if item.has_bbox]
        if not items or pixel_to_cm_ratio <= 0:
            return []

        rgb = load_image(image)
        bgr = cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)
        cm2_per_pixel = pixel_to_cm_ratio * pixel_to_cm_ratio

        regions: List[FoodRegion] = []
        for item in items:
            try:
                region = self._analyze_item(bgr, item, cm2_per_pixel, plate_bounds)
            except (cv2.error, ValueError) as exc:
                warnings.warn(f"Segmentation failed for {item.name}: {exc}")
                continue
            if region is not None:
                regions.append(region)
        return regions

    def item_rect(self, item: FoodItem, width: int, height: int) -> BoundingBox:
        """Convert an item's percentage box into a pixel box clamped to the image."""
        x = min(max(int(item.bbox_x_pct / 100.0 * width), 0), width - 1)
        y = min(max(int(item.bbox_y_pct / 100.0 * height), 0), height - 1)
        w = min(max(int(item.bbox_w_pct / 100.0 * width), 1), width - x)
        h = min(max(int(item.bbox_h_pct / 100.0 * height), 1), height - y)
        return BoundingBox.from_xywh(x, y, w, h)

    def _analyze_item(
        self,
        bgr: np.ndarray,
        item: FoodItem,
        cm2_per_pixel: float,
        plate_bounds: BoundingBox | None,
    ) -> FoodRegion | None:
        height, width = bgr.shape[:2]
        rect = self.item_rect(item, width, height)
        if rect.width < self.min_box_px or rect.height < self.min_box_px:
            warnings.warn(
                f"{item.name}: bounding box too small ({rect.width}x{rect.height})"
            )
            return None

        fg_mask = self.segment(bgr, rect)
        if plate_bounds is not None:
            plate_mask = np.zeros_like(fg_mask)
            plate = plate_bounds.clipped(width, height)
            plate_mask[plate.top:plate.bottom, plate.left:plate.right] = 255
            fg_mask = cv2.bitwise_and(fg_mask, plate_mask)

        fg_pixels = int(cv2.countNonZero(fg_mask))
        return FoodRegion(
            food_name=item.name,
            area_cm2=fg_pixels * cm2_per_pixel,
            height_cm=self.default_height_cm,
        )

    def segment(self, bgr: np.ndarray, rect: BoundingBox) -> np.ndarray:
        """Run GrabCut seeded with ``rect``; returns a 0/255 foreground mask."""
        mask = np.zeros(bgr.shape[:2], dtype=np.uint8)
        bg_model = np.zeros((1, 65), dtype=np.float64)
        fg_model = np.zeros((1, 65), dtype=np.float64)
        cv2.grabCut(
            bgr,
            mask,
            (rect.left, rect.top, rect.width, rect.height),
            bg_model,
            fg_model,
            self.iterations,
            cv2.GC_INIT_WITH_RECT,
        )
        foreground = (mask == cv2.GC_FGD) | (mask == cv2.GC_PR_FGD)
        return np.where(foreground, 255, 0).astype(np.uint8)


def food_regions_payload(regions: Iterable[FoodRegion]) -> List[dict]:
    return [
        {"areaCm2": round(float(r.area_cm2), 1), "heightCm": round(float(r.height_cm), 1)}
        for r in regions
    ]


def to_food_regions_json(regions: Iterable[FoodRegion]) -> str:
    """Serialise regions as ``[{"areaCm2": x.x, "heightCm": y.y}, ...]``."""
    return json.dumps(food_regions_payload(regions), separators=(",", ":"))


__all__ = ["FoodRegionAnalyzer", "food_regions_payload", "to_food_regions_json"]
