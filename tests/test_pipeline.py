"""Tests for the headless detection pipeline.

Verifies that:
- A flashing cell is recorded as a step and starts the reveal
- Uniform brightness drift produces no events
- stop/start keep the per-cell and round state
- Missing frames leave the baseline untouched
- Calibration seeds the baseline and re-arms every cell
- Grid and energy window changes reinitialize the right state
"""

import numpy as np
import pytest

from zensolver.core.logging import Logger
from zensolver.core.model import DetectorConfig, GridConfig, Phase, Rect
from zensolver.core.pipeline import SequenceDetector

FULL = Rect(0.0, 0.0, 1.0, 1.0)
GRID = GridConfig(3, 3)


def frame(value: int = 50, lit: tuple[int, int] = None, lit_value: int = 255) -> np.ndarray:
    """A 90x90 BGR frame, optionally with one 30x30 cell lit."""
    img = np.full((90, 90, 3), value, dtype=np.uint8)
    if lit is not None:
        row, col = lit
        img[row * 30:(row + 1) * 30, col * 30:(col + 1) * 30] = lit_value
    return img


@pytest.fixture
def logger() -> Logger:
    return Logger()


@pytest.fixture
def detector(logger: Logger) -> SequenceDetector:
    d = SequenceDetector(FULL, GRID, DetectorConfig(color_gate_enabled=False), logger=logger)
    d.start()
    return d


class TestDetection:
    """Tests for the per-frame detection path."""

    def test_flash_records_step(self, detector: SequenceDetector) -> None:
        """A bright centre cell becomes r2c2 and starts the reveal."""
        detector.process_frame(frame(), 0.0)
        result = detector.process_frame(frame(lit=(1, 1)), 20.0)

        assert [d.index for d in result.detections] == [4]
        assert [s.label for s in result.steps] == ["r2c2"]
        assert result.steps[0].frame == 2
        assert result.steps[0].t == 20.0
        assert result.round_state.phase is Phase.Reveal
        assert result.hot_index == 4
        assert result.hot_confidence == pytest.approx(1.0)
        assert [s.label for s in detector.steps] == ["r2c2"]

    def test_sustained_flash_records_once(self, detector: SequenceDetector) -> None:
        detector.process_frame(frame(), 0.0)
        for i in range(1, 20):
            detector.process_frame(frame(lit=(0, 2)), i * 20.0)

        assert [s.label for s in detector.steps] == ["r1c3"]

    def test_held_flash_then_idle_records_once(self, detector: SequenceDetector) -> None:
        """The decay of a held flash through thr_low does not record it again."""
        t = 0.0
        for _ in range(20):
            detector.process_frame(frame(), t)
            t += 20.0
        for _ in range(12):
            detector.process_frame(frame(lit=(1, 1)), t)
            t += 20.0
        for _ in range(60):
            detector.process_frame(frame(), t)
            t += 20.0

        assert [s.label for s in detector.steps] == ["r2c2"]

    def test_uniform_drift_is_ignored(self, detector: SequenceDetector) -> None:
        detector.process_frame(frame(50), 0.0)
        result = detector.process_frame(frame(90), 20.0)

        assert result.detections == []
        assert detector.round_state.phase is Phase.Idle

    def test_detection_is_logged(self, detector: SequenceDetector, logger: Logger) -> None:
        detector.process_frame(frame(), 0.0)
        detector.process_frame(frame(lit=(1, 1)), 20.0)

        messages = [e.message for e in logger.buffer.get_all()]
        assert "flash r2c2" in messages

    def test_reveal_silence_via_frames(self, detector: SequenceDetector) -> None:
        """Round timers are driven by the frame timestamps."""
        detector.process_frame(frame(), 0.0)
        detector.process_frame(frame(lit=(1, 1)), 20.0)

        detector.process_frame(frame(), 919.0)
        assert detector.round_state.phase is Phase.Reveal

        detector.process_frame(frame(), 920.0)
        assert detector.round_state.phase is Phase.WaitingInput

    def test_fps(self, detector: SequenceDetector) -> None:
        for i in range(10):
            detector.process_frame(frame(), i * 20.0)
        assert detector.fps == pytest.approx(50.0)


class TestRunControl:
    """Tests for start/stop and missing frames."""

    def test_stopped_pipeline_ignores_frames(self, detector: SequenceDetector) -> None:
        detector.process_frame(frame(), 0.0)
        detector.stop()

        result = detector.process_frame(frame(lit=(1, 1)), 20.0)

        assert not detector.running
        assert result.detections == []
        assert detector.frame_index == 1

    def test_stop_start_keeps_state(self, detector: SequenceDetector) -> None:
        detector.process_frame(frame(), 0.0)
        detector.process_frame(frame(lit=(1, 1)), 20.0)
        baseline = detector.tracker.baseline

        detector.stop()
        detector.start()

        assert detector.round_state.phase is Phase.Reveal
        assert len(detector.steps) == 1
        np.testing.assert_allclose(detector.tracker.baseline, baseline)

    def test_round_timers_frozen_while_stopped(self, detector: SequenceDetector) -> None:
        """Time spent stopped does not count toward the round timers."""
        detector.process_frame(frame(), 0.0)
        detector.process_frame(frame(lit=(1, 1)), 20.0)  # silence due at 920

        detector.stop()
        detector.process_frame(frame(), 20000.0)
        assert detector.round_state.phase is Phase.Reveal
        assert detector.round_state.reveal_indices == (4,)

        # 900 ms were left; they restart on the first tick after start()
        detector.start()
        detector.process_frame(frame(), 20020.0)
        detector.process_frame(frame(), 20919.0)
        assert detector.round_state.phase is Phase.Reveal

        detector.process_frame(frame(), 20920.0)
        assert detector.round_state.phase is Phase.WaitingInput

    def test_missing_frame_is_a_no_op(self, detector: SequenceDetector) -> None:
        detector.process_frame(frame(60), 0.0)
        baseline = detector.tracker.baseline

        result = detector.process_frame(None, 20.0)

        assert result.detections == []
        assert detector.frame_index == 1
        np.testing.assert_allclose(detector.tracker.baseline, baseline)

    def test_undo_and_reset(self, detector: SequenceDetector) -> None:
        detector.process_frame(frame(), 0.0)
        detector.process_frame(frame(lit=(1, 1)), 20.0)

        step = detector.undo()
        assert step is not None and step.label == "r2c2"
        assert detector.steps == []
        assert detector.undo() is None

        detector.reset()
        assert detector.round_state.phase is Phase.Idle

    def test_manual_arm(self, detector: SequenceDetector) -> None:
        detector.arm()
        assert detector.round_state.phase is Phase.Armed


class TestCalibration:
    """Tests for calibration inside the frame tick."""

    def test_calibration_completes_and_rearms(self, detector: SequenceDetector) -> None:
        detector.begin_calibration(0.0, window_ms=520.0)
        assert detector.calibrating

        result = None
        for t in range(0, 700, 100):
            result = detector.process_frame(frame(60), float(t))
            if t < 600:
                assert result.calibrating
                assert result.calibration is None

        assert result.calibration is not None
        assert result.calibration.frames == 7
        assert not detector.calibrating
        np.testing.assert_allclose(detector.tracker.baseline, 60.0, atol=0.01)
        assert detector.cells.below_low.all()
        assert detector.last_calibration is result.calibration

    def test_calibration_runs_while_stopped(self, detector: SequenceDetector) -> None:
        detector.stop()
        detector.begin_calibration(0.0, window_ms=100.0)
        detector.process_frame(frame(60), 0.0)
        result = detector.process_frame(frame(60), 100.0)

        assert result.calibration is not None
        assert detector.tracker.seeded

    def test_calibration_skips_detection(self, detector: SequenceDetector) -> None:
        detector.process_frame(frame(), 0.0)
        detector.begin_calibration(20.0)

        result = detector.process_frame(frame(lit=(1, 1)), 40.0)

        assert result.detections == []
        assert detector.steps == []

    def test_cancel_calibration(self, detector: SequenceDetector) -> None:
        detector.begin_calibration(0.0)
        detector.cancel_calibration()
        assert not detector.calibrating
        assert not detector.tracker.seeded


class TestConfigure:
    """Tests for configure()."""

    def test_grid_change_reinitializes(self, detector: SequenceDetector) -> None:
        detector.process_frame(frame(), 0.0)
        detector.process_frame(frame(lit=(1, 1)), 20.0)

        detector.configure(grid=GridConfig(4, 4))

        assert detector.grid == GridConfig(4, 4)
        assert detector.tracker.cell_count == 16
        assert detector.cells.cell_count == 16
        assert not detector.tracker.seeded
        assert detector.round_state.phase is Phase.Idle
        assert detector.steps == []

    def test_energy_window_change_keeps_history(self, detector: SequenceDetector) -> None:
        detector.process_frame(frame(), 0.0)
        detector.process_frame(frame(lit=(1, 1)), 20.0)

        detector.configure(config=DetectorConfig(color_gate_enabled=False, energy_window=8))

        assert detector.cells.energy_window == 8
        assert detector.round_state.phase is Phase.Idle
        assert len(detector.steps) == 1

    def test_roi_change(self, detector: SequenceDetector) -> None:
        roi = Rect(0.1, 0.1, 0.5, 0.5)
        detector.configure(roi=roi)
        assert detector.roi == roi
