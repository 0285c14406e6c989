"""Tests for the shared data model.

Verifies that:
- DetectorConfig.sanitized() clamps out-of-range values
- Thresholds keep thr_high strictly above thr_low
- Rect and GridConfig index helpers agree
"""

import pytest

from zensolver.core.model import DetectorConfig, GridConfig, Rect


class TestDetectorConfig:
    """Tests for DetectorConfig.sanitized()."""

    def test_defaults_unchanged(self) -> None:
        assert DetectorConfig().sanitized() == DetectorConfig()

    def test_thr_high_not_above_thr_low(self) -> None:
        config = DetectorConfig(thr_high=5.0, thr_low=6.0).sanitized()
        assert config.thr_low == 6.0
        assert config.thr_high == 7.0

        equal = DetectorConfig(thr_high=6.0, thr_low=6.0).sanitized()
        assert equal.thr_high == 7.0

    def test_negative_thr_low(self) -> None:
        config = DetectorConfig(thr_low=-3.0).sanitized()
        assert config.thr_low == 0.0
        assert config.thr_high == 10.0

    def test_energy_window_minimum(self) -> None:
        assert DetectorConfig(energy_window=1).sanitized().energy_window == 2
        assert DetectorConfig(energy_window=-4).sanitized().energy_window == 2

    def test_hold_frames_minimum(self) -> None:
        assert DetectorConfig(hold_frames=0).sanitized().hold_frames == 1

    @pytest.mark.parametrize("alpha,expected", [
        (0.0, 0.01),
        (-1.0, 0.01),
        (1.0, 0.99),
        (5.0, 0.99),
        (0.3, 0.3),
    ])
    def test_ema_alpha_clamped(self, alpha: float, expected: float) -> None:
        assert DetectorConfig(ema_alpha=alpha).sanitized().ema_alpha == pytest.approx(expected)

    def test_input_timeout_floor(self) -> None:
        assert DetectorConfig(input_timeout_ms=500.0).sanitized().input_timeout_ms == 2000.0

    def test_padding_and_colour_ranges(self) -> None:
        config = DetectorConfig(
            padding_pct=120.0,
            color_hue_tol=400.0,
            color_min_frac_reveal=-0.5,
            color_min_frac_input=2.0,
        ).sanitized()
        assert config.padding_pct == 90.0
        assert config.color_hue_tol == 180.0
        assert config.color_min_frac_reveal == 0.0
        assert config.color_min_frac_input == 1.0

    def test_energy_threshold(self) -> None:
        assert DetectorConfig().energy_threshold == pytest.approx(10.0)


class TestGeometry:
    """Tests for Rect and GridConfig helpers."""

    def test_grid_index_round_trip(self) -> None:
        grid = GridConfig(3, 4)
        assert grid.cell_count == 12
        assert grid.index_of(2, 1) == 9
        assert grid.cell_of(9) == (2, 1)

    def test_rect_validity(self) -> None:
        assert Rect(0.0, 0.0, 1.0, 1.0).is_valid()
        assert not Rect(0.5, 0.0, 0.6, 1.0).is_valid()
        assert not Rect(0.0, 0.0, 0.0, 1.0).is_valid()
