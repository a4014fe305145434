"""CLI entry point for estimating food portions over images with configurable settings.

This is a thin main module that delegates to the estimation command module.
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from portion_analyzer.cli import run_estimation
from portion_analyzer.utils.config import load_config

REFERENCE_CHOICES = ["insulin_syringe", "syringe_knife", "card", "none"]


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Estimate the volume of food on a plate from photos."
    )
    parser.add_argument(
        "directory",
        nargs="?",
        default="data",
        help="Directory containing images to analyze",
    )
    parser.add_argument(
        "--config", dest="config", default=None,
        help="Path to JSON/YAML config file"
    )
    parser.add_argument(
        "--reference",
        choices=REFERENCE_CHOICES,
        default=None,
        help="Reference object placed next to the plate",
    )
    parser.add_argument(
        "--reference-length",
        type=float,
        default=None,
        help="Physical length of the reference object in cm",
    )
    parser.add_argument(
        "--regions",
        default=None,
        help="JSON file mapping image names to food boxes in percent",
    )
    parser.add_argument(
        "--results-dir",
        default=None,
        help="Where to write JSON outputs (overrides config)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-image time budget in seconds",
    )
    parser.add_argument(
        "--validate",
        action="store_true",
        help="Check capture quality before estimating",
    )
    parser.add_argument(
        "--save-overlays",
        action="store_true",
        help="Save plate overlays next to the JSON results",
    )
    return parser.parse_args(argv)


def apply_overrides(cfg: dict, args: argparse.Namespace) -> dict:
    """Apply command line overrides to configuration."""
    cfg = json.loads(json.dumps(cfg))  # deep copy

    if args.reference is not None:
        cfg.setdefault("reference", {})["type"] = args.reference
    if args.reference_length is not None:
        cfg.setdefault("reference", {})["length_cm"] = float(args.reference_length)
    if args.results_dir is not None:
        cfg.setdefault("io", {})["results_dir"] = str(args.results_dir)
    if args.save_overlays:
        cfg.setdefault("io", {})["save_overlays"] = True
    if args.timeout is not None:
        cfg.setdefault("portion", {})["timeout_s"] = float(args.timeout)
    if args.validate:
        cfg.setdefault("validation", {})["enabled"] = True

    return cfg


def main(argv: list[str]) -> int:
    """Main entry point."""
    args = parse_args(argv)

    target = Path(args.directory)
    if not target.exists():
        print(f"Directory not found: {target}")
        return 1

    regions_file = Path(args.regions) if args.regions else None
    if regions_file is not None and not regions_file.exists():
        print(f"Regions file not found: {regions_file}")
        return 1

    cfg = load_config(args.config)
    cfg = apply_overrides(cfg, args)

    try:
        run_estimation(target, cfg, regions_file=regions_file)
    except ValueError as exc:
        print(f"Error: {exc}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
