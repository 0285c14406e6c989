"""Headless detection pipeline.

SequenceDetector runs one tick per delivered frame:
sample → baseline/drift → per-cell confirmation → round state machine,
and accepts the outside commands (start/stop, calibrate, reset, arm,
undo, configure). It has no Qt dependency; DetectionEngine drives it
from a QTimer and scripts or tests drive it with explicit timestamps.
"""

from typing import Optional

import numpy as np

from .baseline import BaselineTracker, clamp
from .calibration import CalibrationSession
from .constants import CALIB_WINDOW_MS, FPS_EMA_KEEP
from .detector import CellState, ColorFractions, detect_events
from .logging import Logger, get_logger
from .model import (
    CalibrationStats,
    DetectorConfig,
    GridConfig,
    Rect,
    RoundState,
    Step,
    TickResult,
)
from .rounds import RoundFSM
from .sampler import ColorTargets, GridSampler
from .timers import ManualScheduler, Scheduler


class SequenceDetector:
    """Turns a stream of frames into a recorded flash sequence.

    Per-cell state is owned here and mutated only inside process_frame()
    and the commands, all from one thread of control.
    """

    def __init__(
        self,
        roi: Rect,
        grid: GridConfig,
        config: Optional[DetectorConfig] = None,
        scheduler: Optional[Scheduler] = None,
        logger: Optional[Logger] = None,
        sampler: Optional[GridSampler] = None,
    ) -> None:
        """Initialize the pipeline, stopped and idle.

        Args:
            roi: Normalized ROI containing the grid (already sanitized)
            grid: Grid shape
            config: Detector config (defaults if None)
            scheduler: Backs the round timers. If None a ManualScheduler is
                used and advanced to each frame's timestamp.
            logger: Logger instance (uses global if None)
            sampler: Grid sampler (default resolution cap if None)
        """
        self._logger = logger or get_logger()
        self._roi = roi
        self._grid = grid
        self._config = (config or DetectorConfig()).sanitized()
        self._colors = self._color_targets(self._config)
        self._sampler = sampler or GridSampler()

        self._manual: Optional[ManualScheduler] = None
        if scheduler is None:
            self._manual = ManualScheduler()
            scheduler = self._manual

        n = grid.cell_count
        self._tracker = BaselineTracker(n)
        self._cells = CellState.create(n, self._config.energy_window)
        self._fsm = RoundFSM(self._config, scheduler, self._logger)

        self._running = False
        self._calibration: Optional[CalibrationSession] = None
        self._last_calibration: Optional[CalibrationStats] = None

        self._frame_index = 0
        self._last_tick_ms: Optional[float] = None
        self._fps = 0.0
        self._hot_index: Optional[int] = None
        self._hot_confidence = 0.0

    # Accessors

    @property
    def roi(self) -> Rect:
        return self._roi

    @property
    def grid(self) -> GridConfig:
        return self._grid

    @property
    def config(self) -> DetectorConfig:
        return self._config

    @property
    def running(self) -> bool:
        return self._running

    @property
    def calibrating(self) -> bool:
        return self._calibration is not None

    @property
    def round_state(self) -> RoundState:
        return self._fsm.state

    @property
    def steps(self) -> list[Step]:
        return self._fsm.steps

    @property
    def fsm(self) -> RoundFSM:
        """The round state machine, for listener registration."""
        return self._fsm

    @property
    def tracker(self) -> BaselineTracker:
        return self._tracker

    @property
    def cells(self) -> CellState:
        return self._cells

    @property
    def fps(self) -> float:
        return self._fps

    @property
    def frame_index(self) -> int:
        return self._frame_index

    @property
    def last_calibration(self) -> Optional[CalibrationStats]:
        return self._last_calibration

    @property
    def scheduler(self) -> Optional[ManualScheduler]:
        """The internal ManualScheduler, or None if one was injected."""
        return self._manual

    # Commands

    def start(self) -> None:
        """Resume detection where it left off.

        Round timers frozen by stop() restart on the next tick with the
        time they had left.
        """
        if not self._running:
            self._running = True
            self._logger.info("detection started")

    def stop(self) -> None:
        """Pause detection; per-cell and round state are kept.

        The round timers are frozen so nothing moves the round while
        stopped.
        """
        if self._running:
            self._running = False
            self._fsm.suspend()
            self._logger.info("detection stopped")

    def begin_calibration(self, now_ms: float, window_ms: float = CALIB_WINDOW_MS) -> None:
        """Start an idle-window calibration.

        Frames delivered until the window elapses feed the calibration
        instead of detection; the result is applied on the tick that
        completes it.
        """
        self._calibration = CalibrationSession(self._grid.cell_count, now_ms, window_ms)
        self._logger.info("calibration started", window_ms=window_ms)

    def cancel_calibration(self) -> None:
        """Abandon a pending calibration; the baseline is left as it was."""
        if self._calibration is not None:
            self._calibration = None
            self._logger.warning("calibration cancelled")

    def apply_calibration(self, stats: CalibrationStats) -> None:
        """Seed the baseline and re-arm every cell from a calibration result."""
        self._tracker.seed(stats.baseline)
        self._cells.rearm_all()
        self._last_calibration = stats
        self._logger.calibration_result(stats.frames, stats.noise, stats.warning)

    def reset(self) -> None:
        """Clear the round and the step history."""
        self._fsm.reset(clear_history=True)

    def arm(self) -> None:
        """Start a round manually."""
        self._fsm.arm()

    def undo(self) -> Optional[Step]:
        """Drop the last recorded step."""
        step = self._fsm.undo()
        if step is not None:
            self._logger.info(f"undo {step.label}")
        return step

    def configure(
        self,
        roi: Optional[Rect] = None,
        grid: Optional[GridConfig] = None,
        config: Optional[DetectorConfig] = None,
    ) -> None:
        """Apply new ROI, grid or config from the next tick on.

        A grid change reinitializes all per-cell state and the round,
        clearing history. An energy window change reinitializes the
        per-cell confirmation state and the round, keeping history.
        """
        if roi is not None:
            self._roi = roi

        old_window = self._cells.energy_window
        if config is not None:
            self._config = config.sanitized()
            self._colors = self._color_targets(self._config)
            self._fsm.update_config(self._config)

        if grid is not None and grid != self._grid:
            self._grid = grid
            n = grid.cell_count
            self._tracker.reset(n)
            self._cells = CellState.create(n, self._config.energy_window)
            self._calibration = None
            self._hot_index = None
            self._hot_confidence = 0.0
            self._fsm.reset(clear_history=True)
            self._logger.info(f"grid changed to {grid.rows}x{grid.cols}")
        elif self._config.energy_window != old_window:
            self._cells = CellState.create(self._grid.cell_count, self._config.energy_window)
            self._fsm.reset(clear_history=False)
            self._logger.info("energy window changed", window=self._config.energy_window)

    # Tick

    def process_frame(self, frame: Optional[np.ndarray], now_ms: float) -> TickResult:
        """Run one tick.

        Args:
            frame: BGR/BGRA frame, or None if the source has no frame
            now_ms: Monotonic timestamp of the tick in milliseconds

        Returns:
            TickResult with this tick's detections and the state after it
        """
        if self._manual is not None:
            self._manual.advance_to(now_ms)
        if self._running and self._fsm.suspended:
            self._fsm.resume()
        self._update_fps(now_ms)

        if self._calibration is not None:
            return self._calibration_tick(frame, now_ms)

        if not self._running:
            return self._result()

        # No pixels yet: a zero-signal tick that leaves the baseline alone
        if frame is None or frame.size == 0:
            return self._result()

        self._frame_index += 1
        config = self._config

        sample = self._sampler.sample(
            frame, self._roi, self._grid, config.padding_pct, self._colors
        )
        update = self._tracker.update(sample.luminance, config.ema_alpha)

        self._hot_index = update.hot_index
        if update.hot_value > 0:
            self._hot_confidence = clamp(update.hot_value / max(config.thr_high, 1.0), 0.0, 1.0)
        else:
            self._hot_confidence = 0.0

        colors = None
        if sample.has_color:
            colors = ColorFractions(reveal=sample.reveal_frac, input=sample.input_frac)

        detections = detect_events(
            self._cells, update.delta_smooth, config, self._fsm.phase, colors
        )

        steps: list[Step] = []
        for detection in detections:
            row, col = self._grid.cell_of(detection.index)
            step = Step(
                row=row,
                col=col,
                frame=self._frame_index,
                t=now_ms,
                confidence=detection.confidence,
                kind=detection.kind,
            )
            self._logger.detection(
                step.label, detection.kind.value, detection.confidence, detection.via_energy
            )
            self._fsm.handle_event(step, detection.index)
            steps.append(step)

        return self._result(detections=detections, steps=steps)

    def _calibration_tick(self, frame: Optional[np.ndarray], now_ms: float) -> TickResult:
        session = self._calibration
        if frame is None or frame.size == 0:
            session.add(None, now_ms)
        else:
            lums = self._sampler.sample_luminance(
                frame, self._roi, self._grid, self._config.padding_pct
            )
            session.add(lums, now_ms)

        if not session.is_done(now_ms):
            return self._result(calibrating=True)

        self._calibration = None
        stats = session.finish()
        self.apply_calibration(stats)
        return self._result(calibration=stats)

    def _update_fps(self, now_ms: float) -> None:
        if self._last_tick_ms is not None:
            dt = now_ms - self._last_tick_ms
            if dt > 0:
                inst = 1000.0 / dt
                self._fps = inst if self._fps == 0 else FPS_EMA_KEEP * self._fps + (1 - FPS_EMA_KEEP) * inst
        self._last_tick_ms = now_ms

    def _result(self, **kwargs) -> TickResult:
        return TickResult(
            frame=self._frame_index,
            round_state=self._fsm.state,
            hot_index=self._hot_index,
            hot_confidence=self._hot_confidence,
            fps=self._fps,
            **kwargs,
        )

    @staticmethod
    def _color_targets(config: DetectorConfig) -> Optional[ColorTargets]:
        if not config.color_gate_enabled:
            return None
        return ColorTargets.from_config(config)
