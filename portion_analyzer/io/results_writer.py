"""Utility for writing portion estimates to disk.

This module centralizes all filesystem operations related to saving results
so `main.py` and other callers can remain focused on orchestration.
"""

from __future__ import annotations

import json
import warnings
from pathlib import Path
from typing import Dict, Sequence

from PIL import Image, ImageDraw, UnidentifiedImageError

from ..core.types import (
    FoodRegion,
    NoScale,
    PortionError,
    PortionResult,
    PortionSuccess,
    ProjectionScale,
    ReferenceScale,
    ScaleSource,
)
from ..detection.regions import food_regions_payload


def scale_source_payload(scale: ScaleSource) -> Dict[str, object]:
    if isinstance(scale, ReferenceScale):
        return {"kind": "reference", "ratio": scale.ratio, "confidence": scale.confidence}
    if isinstance(scale, ProjectionScale):
        m = scale.measurement
        return {
            "kind": "projection",
            "depth_cm": m.depth_cm,
            "plate_diameter_cm": m.plate_diameter_cm,
            "surface_distance_cm": m.surface_distance_cm,
            "confidence": m.confidence,
        }
    if isinstance(scale, NoScale):
        return {"kind": "none"}
    raise TypeError(f"Unexpected scale source: {scale!r}")


def portion_result_payload(result: PortionResult) -> Dict[str, object]:
    """Flatten a portion result into JSON-compatible primitives."""
    if isinstance(result, PortionError):
        return {"status": "error", "message": result.message}
    if not isinstance(result, PortionSuccess):
        raise TypeError(f"Unexpected portion result: {result!r}")

    plate = None
    if result.plate is not None:
        plate = {
            "found": result.plate.found,
            "bounds": list(result.plate.bounds.as_tuple()) if result.plate.bounds else None,
            "confidence": result.plate.confidence,
            "shape": result.plate.shape.value,
            "strategy": result.plate.strategy,
        }
    return {
        "status": "success",
        "volume_cm3": round(result.volume_cm3, 2),
        "plate_diameter_cm": round(result.plate_diameter_cm, 2),
        "depth_cm": round(result.depth_cm, 2),
        "container_type": result.container_type.value,
        "confidence": round(result.confidence, 3),
        "reference_object_detected": result.reference_object_detected,
        "external_measurement_used": result.external_measurement_used,
        "warning": result.warning,
        "scale_source": scale_source_payload(result.scale_source),
        "plate": plate,
        "food_density_g_cm3": result.food_density_g_cm3,
    }


class ResultsWriter:
    """Writes per-image JSON payloads and optional plate overlays.

    Callers hand over finished results; the writer owns the file layout:
    ``<results_dir>/<stem>.json`` and ``<results_dir>/overlays/<stem>_overlay.png``.
    """

    def __init__(self, results_dir: Path | str, save_overlays: bool = False) -> None:
        self.results_dir = Path(results_dir)
        self.save_overlays = bool(save_overlays)
        # Ensure base directory exists right away
        self.results_dir.mkdir(parents=True, exist_ok=True)

    def write_result(
        self,
        image_path: Path,
        result: PortionResult,
        regions: Sequence[FoodRegion] = (),
    ) -> Path | None:
        """Write ``<stem>.json``; returns the path or ``None`` when writing failed."""
        payload = {
            "image": str(image_path),
            "portion": portion_result_payload(result),
            "food_regions": [
                dict(food=r.food_name, **entry)
                for r, entry in zip(regions, food_regions_payload(regions))
            ],
        }
        output_path = self.results_dir / f"{image_path.stem}.json"
        try:
            with output_path.open("w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
        except OSError as exc:
            warnings.warn(f"Failed to write results JSON for {image_path}: {exc}")
            return None
        return output_path

    def save_overlay(self, image_path: Path, result: PortionResult) -> Path | None:
        """Draw the detected plate box and the volume on a copy of the photo."""
        if not self.save_overlays or not isinstance(result, PortionSuccess):
            return None
        try:
            image = Image.open(image_path).convert("RGB")
        except UnidentifiedImageError:
            warnings.warn(f"File is not a valid image: {image_path}")
            return None
        except OSError as exc:
            warnings.warn(f"Failed to open image {image_path}: {exc}")
            return None

        overlays_dir = self.results_dir / "overlays"
        overlays_dir.mkdir(parents=True, exist_ok=True)

        base = image.convert("RGBA")
        overlay = Image.new("RGBA", image.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(overlay, "RGBA")

        label = f"{result.volume_cm3:.0f} cm3 ({result.confidence:.2f})"
        plate = result.plate
        if plate is not None and plate.found and plate.bounds is not None:
            left, top, right, bottom = plate.bounds.as_tuple()
            draw.rectangle(
                [(left, top), (right, bottom)], outline=(0, 200, 0, 220), width=3
            )
            anchor = (left, top)
        else:
            anchor = (0, 16)
        th = 12
        tw = draw.textlength(label)
        draw.rectangle(
            [(anchor[0], max(0, anchor[1] - th - 4)), (anchor[0] + int(tw) + 6, anchor[1])],
            fill=(0, 200, 0, 220),
        )
        draw.text(
            (anchor[0] + 3, max(0, anchor[1] - th - 2)), label, fill=(255, 255, 255, 255)
        )

        composed = Image.alpha_composite(base, overlay)
        output_path = overlays_dir / f"{image_path.stem}_overlay.png"
        try:
            composed.save(output_path)
        except OSError as exc:
            warnings.warn(f"Failed to save overlay image for {image_path}: {exc}")
            return None
        return output_path


__all__ = ["ResultsWriter", "portion_result_payload", "scale_source_payload"]
