"""Configuration loader for the portion-analyzer project.

- JSON or YAML files, merged over built-in defaults
- Section names mirror the pipeline stages
- Settings dataclasses are built from sections, ignoring unknown keys
"""

from __future__ import annotations

import json
import warnings
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar

import yaml

DEFAULTS: Dict[str, Any] = {
    "plate": {
        "working_width": 640,
        "clahe_clip_limit": 2.0,
        "clahe_tile_grid": 8,
        "min_area_ratio": 0.04,
        "max_area_ratio": 0.90,
        "circularity_primary": 0.7,
        "circularity_relaxed": 0.5,
        "circularity_last_resort": 0.3,
        "max_workers": 1,
    },
    "reference": {
        "type": "insulin_syringe",  # insulin_syringe | syringe_knife | card | none
        "length_cm": None,  # overrides the per-type default length
        "min_contour_area": 500.0,
        "max_contour_area": 50000.0,
        "left_min_aspect_ratio": 4.0,
        "left_min_rectangularity": 0.7,
        "right_min_aspect_ratio": 3.5,
        "right_min_rectangularity": 0.6,
        "min_parallel_line_score": 0.2,
    },
    "depth": {
        "min_depth_cm": 0.3,
        "max_depth_cm": 15.0,
        "default_flat_plate_cm": 2.5,
        "default_regular_bowl_cm": 5.0,
        "default_deep_bowl_cm": 8.0,
        "default_unknown_cm": 3.0,
    },
    "regions": {
        "enabled": True,
        "iterations": 3,
        "min_box_px": 10,
        "default_height_cm": 1.5,
    },
    "portion": {
        "plate_width_fallback_fraction": 0.45,
        "scale_weight": 0.6,
        "depth_weight": 0.4,
        "external_confidence_factor": 0.9,
        "no_scale_confidence": 0.05,
        "food_density_g_cm3": 0.65,
        "timeout_s": None,
    },
    "validation": {
        "enabled": False,
        "min_width": 1920,
        "min_height": 1080,
        "min_brightness": 40,
        "max_brightness": 220,
        "min_sharpness": 100.0,
    },
    "io": {
        "image_extensions": [".jpg", ".jpeg", ".png", ".bmp"],
        "results_dir": "results",
        "save_overlays": False,
    },
}

T = TypeVar("T")


def _deep_update(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            base[k] = _deep_update(base[k], v)  # type: ignore[index]
        else:
            base[k] = v
    return base


def _load_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def load_config(path: Optional[str | Path] = None) -> Dict[str, Any]:
    """Load configuration from a JSON or YAML file and merge it with defaults.

    Lookup order:
    1) Explicit path if provided
    2) ./config.json in project root if present
    3) ./config.yaml or ./config.yml if present
    4) Defaults
    """
    merged = json.loads(json.dumps(DEFAULTS))  # deep copy via JSON round-trip

    candidates: list[Path] = []
    if path is not None:
        explicit = Path(path)
        if not explicit.exists():
            warnings.warn(f"Config file not found: {explicit}")
        candidates.append(explicit)
    # Project root assumed as CWD
    candidates.extend([Path("config.json"), Path("config.yaml"), Path("config.yml")])

    chosen: Optional[Path] = next((p for p in candidates if p.exists()), None)
    if not chosen:
        return merged

    try:
        if chosen.suffix.lower() == ".json":
            data = _load_json(chosen)
        elif chosen.suffix.lower() in {".yaml", ".yml"}:
            data = _load_yaml(chosen)
        else:
            warnings.warn(f"Unsupported config format: {chosen.suffix}. Using defaults.")
            data = {}
    except (OSError, ValueError, yaml.YAMLError) as exc:
        warnings.warn(f"Failed to load config from {chosen}: {exc}. Using defaults.")
        data = {}

    if isinstance(data, dict):
        _deep_update(merged, data)
    else:
        warnings.warn(f"Config at {chosen} is not a mapping. Using defaults.")

    return merged


def settings_from_section(cls: Type[T], section: Dict[str, Any] | None) -> T:
    """Build a settings dataclass from the keys of ``section`` it declares."""
    names = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    kwargs = {k: v for k, v in (section or {}).items() if k in names and v is not None}
    return cls(**kwargs)


def resolve_path_relative_to_project(path_str: str | None) -> Optional[Path]:
    if not path_str:
        return None
    p = Path(path_str)
    if p.exists():
        return p
    # Try relative to project root (CWD)
    cwd_p = Path.cwd() / p
    if cwd_p.exists():
        return cwd_p
    return p  # caller decides what a missing file means
