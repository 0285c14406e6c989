"""Qt detection engine.

Drives SequenceDetector from a QTimer on the GUI thread: every tick
grabs a frame from the screen source, runs the pipeline and forwards
the results as Qt signals. Round timers run on single-shot QTimers.
"""

import time
from typing import Callable, Optional

from PySide6.QtCore import QObject, Qt, QTimer, Signal

from .capture import CaptureError, ScreenFrameSource
from .constants import CALIB_WINDOW_MS, CAPTURE_RETRY_N, TICK_HZ_DEFAULT
from .logging import Logger, get_logger
from .model import (
    CalibrationStats,
    DetectorConfig,
    GridConfig,
    Rect,
    RoundState,
    TickResult,
)
from .pipeline import SequenceDetector


class QtTimerHandle:
    """Cancelable handle around a single-shot QTimer."""

    def __init__(self, timer: QTimer) -> None:
        self._timer: Optional[QTimer] = timer

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.stop()
            self._timer.deleteLater()
            self._timer = None

    def remaining_ms(self) -> Optional[float]:
        if self._timer is None or not self._timer.isActive():
            return None
        return float(max(0, self._timer.remainingTime()))


class QtScheduler:
    """Scheduler backed by single-shot QTimers on the owner's thread."""

    def __init__(self, parent: QObject) -> None:
        self._parent = parent

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> QtTimerHandle:
        timer = QTimer(self._parent)
        timer.setSingleShot(True)
        timer.setTimerType(Qt.TimerType.PreciseTimer)
        handle = QtTimerHandle(timer)

        def fire() -> None:
            handle.cancel()
            callback()

        timer.timeout.connect(fire)
        timer.start(max(0, int(round(delay_ms))))
        return handle


class DetectionEngine(QObject):
    """Main detection engine.

    Provides the interface for the UI: start/stop, calibrate, reset,
    arm, undo and configuration changes.
    """

    round_changed = Signal(RoundState)
    steps_changed = Signal(list)  # list[Step]
    tick_update = Signal(object)  # TickResult
    calibration_completed = Signal(CalibrationStats)
    running_changed = Signal(bool)
    capture_failed = Signal(str)  # error message

    def __init__(
        self,
        roi: Rect,
        grid: GridConfig,
        config: Optional[DetectorConfig] = None,
        source: Optional[ScreenFrameSource] = None,
        tick_hz: float = TICK_HZ_DEFAULT,
        parent: Optional[QObject] = None,
    ) -> None:
        """Initialize the engine, stopped.

        Args:
            roi: Normalized ROI of the grid
            grid: Grid shape
            config: Detector config (defaults if None)
            source: Frame source (primary monitor if None)
            tick_hz: Target tick rate
            parent: Parent QObject
        """
        super().__init__(parent)

        self._logger: Logger = get_logger()
        self._source = source or ScreenFrameSource()
        self._detector = SequenceDetector(
            roi,
            grid,
            config,
            scheduler=QtScheduler(self),
            logger=self._logger,
        )
        self._detector.fsm.add_listener(self._on_round_changed)
        self._detector.fsm.add_steps_listener(self.steps_changed.emit)

        self._timer = QTimer(self)
        self._timer.setTimerType(Qt.TimerType.PreciseTimer)
        self._timer.timeout.connect(self._tick)
        self.set_tick_rate(tick_hz)

        self._capture_failures = 0
        self._clock_origin = time.monotonic()

    @property
    def detector(self) -> SequenceDetector:
        return self._detector

    @property
    def source(self) -> ScreenFrameSource:
        return self._source

    @property
    def is_running(self) -> bool:
        return self._detector.running

    @property
    def is_calibrating(self) -> bool:
        return self._detector.calibrating

    def now_ms(self) -> float:
        """Monotonic milliseconds since the engine was created."""
        return (time.monotonic() - self._clock_origin) * 1000.0

    def set_tick_rate(self, tick_hz: float) -> None:
        hz = tick_hz if tick_hz > 0 else TICK_HZ_DEFAULT
        self._timer.setInterval(max(1, int(round(1000.0 / hz))))

    # Commands

    def start(self) -> None:
        """Start (or resume) detection."""
        if self._detector.running:
            return
        self._capture_failures = 0
        self._detector.start()
        self._timer.start()
        self.running_changed.emit(True)

    def stop(self) -> None:
        """Stop ticking immediately; all state is kept."""
        if not self._detector.running:
            return
        self._detector.stop()
        if not self._detector.calibrating:
            self._timer.stop()
        self.running_changed.emit(False)

    def calibrate(self, window_ms: float = CALIB_WINDOW_MS) -> None:
        """Start an idle-window calibration.

        Completion is reported through calibration_completed. While
        stopped, the tick timer runs only for the calibration window.
        """
        self._detector.begin_calibration(self.now_ms(), window_ms)
        if not self._timer.isActive():
            self._timer.start()

    def reset(self) -> None:
        self._detector.reset()

    def arm(self) -> None:
        self._detector.arm()

    def undo(self) -> None:
        self._detector.undo()

    def configure(
        self,
        roi: Optional[Rect] = None,
        grid: Optional[GridConfig] = None,
        config: Optional[DetectorConfig] = None,
    ) -> None:
        self._detector.configure(roi=roi, grid=grid, config=config)

    def set_monitor(self, index: int) -> None:
        self._source.monitor_index = index

    def shutdown(self) -> None:
        """Stop everything before the application exits."""
        self._timer.stop()
        self._detector.fsm.cancel_timers()
        self._source.close()

    # Tick

    def _tick(self) -> None:
        now = self.now_ms()
        try:
            frame = self._source.grab()
            self._capture_failures = 0
        except CaptureError as e:
            self._capture_failures += 1
            self._logger.warning(f"capture failed ({self._capture_failures}/{CAPTURE_RETRY_N})")
            if self._capture_failures >= CAPTURE_RETRY_N:
                self._logger.error(f"capture failed repeatedly, stopping: {e}")
                self._abort_on_capture_failure(str(e))
                return
            frame = None

        result: TickResult = self._detector.process_frame(frame, now)

        if result.calibration is not None:
            self.calibration_completed.emit(result.calibration)
            if not self._detector.running:
                self._timer.stop()

        self.tick_update.emit(result)

    def _abort_on_capture_failure(self, message: str) -> None:
        self._timer.stop()
        was_running = self._detector.running
        self._detector.stop()
        self._detector.cancel_calibration()
        self._capture_failures = 0
        if was_running:
            self.running_changed.emit(False)
        self.capture_failed.emit(message)

    def _on_round_changed(self, old: RoundState, new: RoundState) -> None:
        self.round_changed.emit(new)
