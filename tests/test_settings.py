"""Tests for persistent settings.

Verifies that:
- A missing or unreadable file yields the defaults
- Settings round-trip through save/load
- Unknown keys are ignored and wrongly typed values keep their default
- Legacy camelCase files are migrated
- ROIs are clamped into the unit square
"""

import json
from pathlib import Path

import pytest

from zensolver.core.logging import Logger, LogLevel
from zensolver.core.model import DetectorConfig, Difficulty, Rect
from zensolver.core.settings import (
    DEFAULT_ROI,
    Settings,
    camel_to_snake,
    load_settings,
    migrate_legacy,
    sanitize_roi,
    save_settings,
    settings_from_dict,
)


def write_json(path: Path, data) -> Path:
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def warnings(logger: Logger) -> list[str]:
    return [e.message for e in logger.buffer.get_all() if e.level is LogLevel.WARNING]


class TestSanitizeRoi:
    """Tests for sanitize_roi()."""

    def test_valid_roi_unchanged(self) -> None:
        roi = Rect(0.1, 0.2, 0.3, 0.4)
        assert sanitize_roi(roi) == roi

    def test_clamps_and_shifts_inside(self) -> None:
        """Oversized ROIs are shifted back; tiny ones get the minimum size."""
        roi = sanitize_roi(Rect(0.9, 0.9, 0.5, 0.01))
        assert roi.x == pytest.approx(0.5)
        assert roi.y == pytest.approx(0.9)
        assert roi.width == pytest.approx(0.5)
        assert roi.height == pytest.approx(0.05)
        assert roi.is_valid()

    def test_negative_origin(self) -> None:
        roi = sanitize_roi(Rect(-0.5, -0.1, 2.0, 0.5))
        assert roi == Rect(0.0, 0.0, 1.0, 0.5)


class TestLoadSave:
    """Tests for load_settings() and save_settings()."""

    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        settings = load_settings(tmp_path / "missing.json", Logger())
        assert settings == Settings()
        assert settings.difficulty is Difficulty.EXPERT
        assert settings.roi == DEFAULT_ROI

    def test_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "settings.json"
        settings = Settings(difficulty=Difficulty.MEDIUM, monitor_index=2, tick_hz=30.0)
        settings = settings.with_roi(Rect(0.1, 0.1, 0.4, 0.4))
        settings.detector = DetectorConfig(thr_high=14.0, hold_frames=2)

        assert save_settings(settings, path, Logger())
        loaded = load_settings(path, Logger())

        assert loaded == settings
        assert loaded.roi == Rect(0.1, 0.1, 0.4, 0.4)
        assert loaded.rois[Difficulty.EASY] == DEFAULT_ROI

    def test_invalid_json_gives_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        path.write_text("{not json", encoding="utf-8")
        logger = Logger()

        assert load_settings(path, logger) == Settings()
        assert len(warnings(logger)) == 1

    def test_non_object_gives_defaults(self, tmp_path: Path) -> None:
        logger = Logger()
        path = write_json(tmp_path / "settings.json", [1, 2, 3])
        assert load_settings(path, logger) == Settings()
        assert len(warnings(logger)) == 1

    def test_unwritable_path(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("x", encoding="utf-8")
        logger = Logger()

        assert not save_settings(Settings(), blocker / "settings.json", logger)


class TestMerge:
    """Tests for merging stored values over defaults."""

    def test_unknown_keys_ignored(self) -> None:
        logger = Logger()
        settings = settings_from_dict(
            {"version": 2, "theme": "dark", "detector": {"thr_high": 12, "bogus": 1}},
            logger,
        )
        assert settings.detector.thr_high == 12.0
        assert isinstance(settings.detector.thr_high, float)
        assert warnings(logger) == []

    def test_wrong_type_keeps_default(self) -> None:
        logger = Logger()
        settings = settings_from_dict(
            {"version": 2, "detector": {"thr_low": "high", "hold_frames": 3}}, logger
        )
        assert settings.detector.thr_low == DetectorConfig().thr_low
        assert settings.detector.hold_frames == 3
        assert len(warnings(logger)) == 1

    def test_bool_rejected_for_int(self) -> None:
        logger = Logger()
        settings = settings_from_dict({"version": 2, "detector": {"hold_frames": True}}, logger)
        assert settings.detector.hold_frames == DetectorConfig().hold_frames
        assert len(warnings(logger)) == 1

    def test_unknown_difficulty(self) -> None:
        logger = Logger()
        settings = settings_from_dict({"version": 2, "difficulty": "nightmare"}, logger)
        assert settings.difficulty is Difficulty.EXPERT
        assert len(warnings(logger)) == 1

    def test_stored_roi_is_sanitized(self) -> None:
        settings = settings_from_dict(
            {
                "version": 2,
                "difficulty": "hard",
                "rois": {"hard": {"x": 0.9, "y": 0.0, "width": 0.5, "height": 0.5}},
            },
            Logger(),
        )
        assert settings.roi == Rect(0.5, 0.0, 0.5, 0.5)


class TestLegacyMigration:
    """Tests for version-less camelCase files."""

    def test_camel_to_snake(self) -> None:
        assert camel_to_snake("thrHigh") == "thr_high"
        assert camel_to_snake("colorMinFracReveal") == "color_min_frac_reveal"
        assert camel_to_snake("revealMaxISI") == "reveal_max_isi_ms"

    def test_migrate_layout(self) -> None:
        migrated = migrate_legacy(
            {"difficulty": "easy", "roi": {"easy": {}}, "config": {"holdFrames": 2}}
        )
        assert migrated["version"] == 2
        assert migrated["rois"] == {"easy": {}}
        assert migrated["detector"] == {"hold_frames": 2}

    def test_legacy_file(self, tmp_path: Path) -> None:
        path = write_json(
            tmp_path / "settings.json",
            {
                "difficulty": "easy",
                "roi": {"easy": {"x": 0.1, "y": 0.1, "width": 0.8, "height": 0.8}},
                "config": {"thrHigh": 12, "revealMaxISI": 700, "quickFlashEnabled": False},
            },
        )

        settings = load_settings(path, Logger())

        assert settings.version == 2
        assert settings.difficulty is Difficulty.EASY
        assert settings.roi == Rect(0.1, 0.1, 0.8, 0.8)
        assert settings.detector.thr_high == 12.0
        assert settings.detector.reveal_max_isi_ms == 700.0
        assert settings.detector.quick_flash_enabled is False
        assert settings.detector.thr_low == DetectorConfig().thr_low
