"""
Unit tests for the batch CLI (portion_analyzer.cli.estimate and main).
"""
import json
from pathlib import Path

import pytest

import main
from portion_analyzer.core.types import (
    ContainerType,
    PortionError,
    PortionSuccess,
    ReferenceObjectType,
    ReferenceScale,
)
from portion_analyzer.cli.estimate import (
    build_estimator_from_config,
    format_result_row,
    iter_image_paths,
    load_food_items,
    pixel_to_cm_for,
    resolve_reference_type,
    run_estimation,
)
from portion_analyzer.utils.config import DEFAULTS, load_config


def default_cfg():
    return json.loads(json.dumps(DEFAULTS))


class TestBuildEstimator:
    """Tests for building the estimator from configuration."""

    def test_defaults(self):
        """The default configuration yields an initialized estimator."""
        estimator = build_estimator_from_config(default_cfg())

        assert estimator.is_initialized
        assert estimator.reference_detector.expected_dimensions.length_cm == 13.0
        assert estimator.plate_detector.settings.working_width == 640

    def test_explicit_reference_length(self):
        """reference.length_cm overrides the per-type length."""
        cfg = default_cfg()
        cfg["reference"]["length_cm"] = 15.5
        estimator = build_estimator_from_config(cfg)
        assert estimator.reference_detector.expected_dimensions.length_cm == 15.5

    def test_plate_settings_from_config(self):
        """Plate tunables and worker count come from the plate section."""
        cfg = default_cfg()
        cfg["plate"]["working_width"] = 800
        cfg["plate"]["max_workers"] = 3
        estimator = build_estimator_from_config(cfg)

        assert estimator.plate_detector.settings.working_width == 800
        assert estimator.plate_detector.max_workers == 3

    def test_unknown_reference_type(self):
        """An unsupported reference name is rejected."""
        cfg = default_cfg()
        cfg["reference"]["type"] = "spoon"
        with pytest.raises(ValueError):
            resolve_reference_type(cfg)


class TestHelpers:
    """Tests for CLI helper functions."""

    def test_iter_image_paths(self, tmp_path):
        """Only files with known extensions are listed, sorted."""
        (tmp_path / "b.png").write_bytes(b"")
        (tmp_path / "a.JPG").write_bytes(b"")
        (tmp_path / "notes.txt").write_text("x")
        paths = list(iter_image_paths(tmp_path, {".png", ".jpg"}))
        assert [p.name for p in paths] == ["a.JPG", "b.png"]

    def test_load_food_items(self, tmp_path):
        """Regions files map image names to food boxes."""
        path = tmp_path / "regions.json"
        path.write_text(
            json.dumps(
                {
                    "plate.png": [
                        {"name": "rice", "bbox_x_pct": 10, "bbox_y_pct": 20,
                         "bbox_w_pct": 30, "bbox_h_pct": 40},
                        {"name": "sauce"},
                    ]
                }
            )
        )
        items = load_food_items(path)

        assert [i.name for i in items["plate.png"]] == ["rice", "sauce"]
        assert items["plate.png"][0].has_bbox
        assert not items["plate.png"][1].has_bbox

    def test_load_food_items_rejects_lists(self, tmp_path):
        """The top level must be a mapping."""
        path = tmp_path / "regions.json"
        path.write_text("[]")
        with pytest.raises(ValueError):
            load_food_items(path)

    def test_format_rows(self):
        """Success and error rows both start with the file name."""
        ok = PortionSuccess(100.0, 20.0, 2.5, ContainerType.FLAT_PLATE, 0.5, True, False)
        assert format_result_row(Path("a.png"), ok).startswith("a.png")
        assert "error: bad" in format_result_row(Path("a.png"), PortionError("bad"))

    def test_pixel_to_cm_for(self):
        """Only successful reference-scaled results expose a ratio directly."""
        ok = PortionSuccess(
            100.0, 20.0, 2.5, ContainerType.FLAT_PLATE, 0.5, True, False,
            scale_source=ReferenceScale(0.05, 0.8),
        )
        assert pixel_to_cm_for(ok) == 0.05
        assert pixel_to_cm_for(PortionError("x")) is None


class TestRunEstimation:
    """End-to-end batch runs over a temporary directory."""

    def test_writes_json_per_image(self, tmp_path, plate_image_path, monkeypatch):
        """Each image gets a JSON result in the results directory."""
        monkeypatch.chdir(tmp_path)
        cfg = load_config()
        cfg["io"]["results_dir"] = str(tmp_path / "out")

        results = run_estimation(tmp_path, cfg)

        assert len(results) == 1
        assert isinstance(results[0], PortionSuccess)
        data = json.loads((tmp_path / "out" / "plate.json").read_text(encoding="utf-8"))
        assert data["portion"]["status"] == "success"
        assert data["portion"]["plate"]["found"] is True

    def test_empty_directory(self, tmp_path, capsys):
        """A directory without images prints a notice."""
        cfg = default_cfg()
        cfg["io"]["results_dir"] = str(tmp_path / "out")
        (tmp_path / "photos").mkdir()

        assert run_estimation(tmp_path / "photos", cfg) == []
        assert "No images found" in capsys.readouterr().out


class TestMain:
    """Tests for argument parsing and overrides in main.py."""

    def test_overrides(self):
        """CLI flags land in the matching config sections."""
        args = main.parse_args(
            ["photos", "--reference", "card", "--reference-length", "8.5",
             "--results-dir", "out", "--timeout", "2", "--validate", "--save-overlays"]
        )
        cfg = main.apply_overrides(default_cfg(), args)

        assert cfg["reference"]["type"] == "card"
        assert cfg["reference"]["length_cm"] == 8.5
        assert cfg["io"]["results_dir"] == "out"
        assert cfg["io"]["save_overlays"] is True
        assert cfg["portion"]["timeout_s"] == 2.0
        assert cfg["validation"]["enabled"] is True
        assert ReferenceObjectType.from_value(cfg["reference"]["type"]) is ReferenceObjectType.CARD

    def test_missing_directory(self, tmp_path, capsys):
        """A missing directory exits with status 1."""
        assert main.main([str(tmp_path / "missing")]) == 1
        assert "Directory not found" in capsys.readouterr().out

    def test_invalid_reference_choice(self):
        """argparse rejects unknown reference objects."""
        with pytest.raises(SystemExit):
            main.parse_args(["photos", "--reference", "spoon"])
