"""Batch portion estimation over a directory of photos."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Iterable, List, Set

from portion_analyzer.core.errors import EstimationCancelled, ImageReadError
from portion_analyzer.core.pipeline import PortionEstimator
from portion_analyzer.core.types import (
    FoodItem,
    FoodRegion,
    PortionError,
    PortionResult,
    PortionSuccess,
    ProjectionScale,
    ReferenceObjectType,
    ReferenceScale,
)
from portion_analyzer.core.validation import (
    ImageInvalid,
    has_reference_object_hint,
    validate_image,
)
from portion_analyzer.detection.depth import DepthEstimator, DepthSettings
from portion_analyzer.detection.plate import PlateDetectionSettings, PlateDetector
from portion_analyzer.detection.reference import (
    ReferenceDetectionSettings,
    ReferenceObjectDetector,
)
from portion_analyzer.detection.regions import FoodRegionAnalyzer
from portion_analyzer.io.results_writer import ResultsWriter
from portion_analyzer.utils.config import (
    resolve_path_relative_to_project,
    settings_from_section,
)


def iter_image_paths(directory: Path, extensions: Set[str]) -> Iterable[Path]:
    """Iterate over image files in a directory."""
    for path in sorted(directory.rglob("*")):
        if path.is_file() and path.suffix.lower() in extensions:
            yield path


def format_result_row(image_path: Path, result: PortionResult) -> str:
    """Format a single portion result for console output."""
    if isinstance(result, PortionError):
        return f"{image_path.name:<28} | error: {result.message}"
    return (
        f"{image_path.name:<28} | {result.volume_cm3:>8.1f} cm3 | "
        f"{result.plate_diameter_cm:>5.1f} cm | {result.depth_cm:>4.1f} cm | "
        f"{result.container_type.value:<12} | {result.confidence:>4.2f}"
    )


def resolve_reference_type(cfg: dict) -> ReferenceObjectType:
    value = cfg.get("reference", {}).get("type")
    reference_type = ReferenceObjectType.from_value(value)
    if reference_type is None:
        raise ValueError(f"Unknown reference object type: {value!r}")
    return reference_type


def build_estimator_from_config(cfg: dict) -> PortionEstimator:
    """Build an initialized estimator from a configuration dict."""
    plate_cfg = cfg.get("plate", {})
    reference_cfg = cfg.get("reference", {})
    portion_cfg = cfg.get("portion", {})

    plate_detector = PlateDetector(
        settings=settings_from_section(PlateDetectionSettings, plate_cfg),
        max_workers=int(plate_cfg.get("max_workers", 1)),
    )
    reference_detector = ReferenceObjectDetector(
        settings=settings_from_section(ReferenceDetectionSettings, reference_cfg),
    )
    depth_estimator = DepthEstimator(
        settings=settings_from_section(DepthSettings, cfg.get("depth", {}))
    )

    estimator = PortionEstimator(
        plate_detector=plate_detector,
        reference_detector=reference_detector,
        depth_estimator=depth_estimator,
        plate_width_fallback_fraction=float(
            portion_cfg.get("plate_width_fallback_fraction", 0.45)
        ),
        scale_weight=float(portion_cfg.get("scale_weight", 0.6)),
        depth_weight=float(portion_cfg.get("depth_weight", 0.4)),
        external_confidence_factor=float(portion_cfg.get("external_confidence_factor", 0.9)),
        no_scale_confidence=float(portion_cfg.get("no_scale_confidence", 0.05)),
        food_density_g_cm3=float(portion_cfg.get("food_density_g_cm3", 0.65)),
    )
    estimator.initialize()

    reference_type = resolve_reference_type(cfg)
    length_cm = reference_cfg.get("length_cm") or reference_type.length_cm
    if reference_type.mode is not None and length_cm:
        estimator.configure_reference_length(float(length_cm))
    return estimator


def build_region_analyzer_from_config(cfg: dict) -> FoodRegionAnalyzer | None:
    regions_cfg = cfg.get("regions", {})
    if not bool(regions_cfg.get("enabled", True)):
        return None
    return FoodRegionAnalyzer(
        iterations=int(regions_cfg.get("iterations", 3)),
        min_box_px=int(regions_cfg.get("min_box_px", 10)),
        default_height_cm=float(regions_cfg.get("default_height_cm", 1.5)),
    )


def load_food_items(regions_file: Path | None) -> Dict[str, List[FoodItem]]:
    """Load per-image food boxes.

    The file maps an image file name (or stem) to a list of objects with
    ``name`` and ``bbox_x_pct``/``bbox_y_pct``/``bbox_w_pct``/``bbox_h_pct``.
    """
    if regions_file is None:
        return {}
    with Path(regions_file).open("r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Regions file {regions_file} must map image names to item lists")

    items: Dict[str, List[FoodItem]] = {}
    for image_name, entries in data.items():
        items[str(image_name)] = [
            FoodItem(
                name=str(entry.get("name", "food")),
                bbox_x_pct=entry.get("bbox_x_pct"),
                bbox_y_pct=entry.get("bbox_y_pct"),
                bbox_w_pct=entry.get("bbox_w_pct"),
                bbox_h_pct=entry.get("bbox_h_pct"),
            )
            for entry in entries or []
            if isinstance(entry, dict)
        ]
    return items


def pixel_to_cm_for(result: PortionResult) -> float | None:
    """Image scale implied by a successful result, if one can be derived."""
    if not isinstance(result, PortionSuccess):
        return None
    scale = result.scale_source
    if isinstance(scale, ReferenceScale):
        return scale.ratio
    if isinstance(scale, ProjectionScale):
        plate = result.plate
        if plate is not None and plate.found and plate.bounds is not None:
            return scale.measurement.plate_diameter_cm / float(plate.bounds.width)
    return None


def run_estimation(
    target_dir: Path,
    cfg: dict,
    regions_file: Path | None = None,
    validate: bool | None = None,
) -> List[PortionResult]:
    """Run portion estimation on images in a directory.

    Args:
        target_dir: Directory containing images
        cfg: Configuration dictionary
        regions_file: Optional JSON file with food boxes per image
        validate: Run capture checks first; defaults to ``validation.enabled``
    """
    estimator = build_estimator_from_config(cfg)
    reference_type = resolve_reference_type(cfg)
    region_analyzer = build_region_analyzer_from_config(cfg)
    food_items = load_food_items(resolve_path_relative_to_project(
        str(regions_file) if regions_file else None
    ))

    io_cfg = cfg.get("io", {})
    exts = {e.lower() for e in io_cfg.get("image_extensions", [".jpg", ".jpeg", ".png"])}
    writer = ResultsWriter(
        results_dir=Path(io_cfg.get("results_dir", "results")),
        save_overlays=bool(io_cfg.get("save_overlays", False)),
    )

    validation_cfg = dict(cfg.get("validation", {}))
    if validate is None:
        validate = bool(validation_cfg.get("enabled", False))
    validation_cfg.pop("enabled", None)

    timeout = cfg.get("portion", {}).get("timeout_s")

    images = list(iter_image_paths(target_dir, exts))
    if not images:
        print(f"No images found in {target_dir}")
        return []

    print(f"Reference object: {reference_type.key}")
    print(f"{'Image':<28} |   Volume     | Plate    | Depth   | Container    | Conf.")
    results: List[PortionResult] = []
    for image_path in images:
        if validate:
            try:
                check = validate_image(image_path, **validation_cfg)
            except ImageReadError as exc:
                print(f"{image_path.name:<28} | skipped: {exc}")
                continue
            if isinstance(check, ImageInvalid):
                print(f"{image_path.name:<28} | capture issues: {'; '.join(check.issues)}")
            if reference_type.mode is not None and not has_reference_object_hint(image_path):
                print(f"{image_path.name:<28} | no bright reference object visible")

        try:
            if timeout:
                result = estimator.estimate_portion_with_timeout(
                    image_path, float(timeout), reference_type=reference_type
                )
            else:
                result = estimator.estimate_portion(image_path, reference_type=reference_type)
        except EstimationCancelled as exc:
            print(f"{image_path.name:<28} | cancelled: {exc}")
            continue

        print(format_result_row(image_path, result))
        if isinstance(result, PortionSuccess) and result.warning:
            print(f"{'':<28}   warning: {result.warning}")

        regions: List[FoodRegion] = []
        items = food_items.get(image_path.name) or food_items.get(image_path.stem) or []
        ratio = pixel_to_cm_for(result)
        if region_analyzer is not None and items and ratio:
            plate = result.plate if isinstance(result, PortionSuccess) else None
            regions = region_analyzer.analyze(
                image_path,
                items,
                ratio,
                plate_bounds=plate.bounds if plate is not None and plate.found else None,
            )
            for region in regions:
                print(
                    f"{'':<28}   - {region.food_name}: {region.area_cm2:.1f} cm2, "
                    f"{region.height_cm:.1f} cm"
                )

        writer.write_result(image_path, result, regions)
        writer.save_overlay(image_path, result)
        results.append(result)

    return results
