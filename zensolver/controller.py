"""Application controller that wires the UI to the detection engine.

Handles all signal connections between MainWindow and DetectionEngine
and persists settings when the user changes them.
"""

from pathlib import Path
from typing import Optional

from PySide6.QtCore import QObject, Slot

from zensolver.core.capture import list_monitors
from zensolver.core.engine import DetectionEngine
from zensolver.core.logging import get_logger
from zensolver.core.model import CalibrationStats, DetectorConfig, Difficulty, Rect
from zensolver.core.settings import DEFAULT_SETTINGS_PATH, Settings, save_settings
from zensolver.ui.main_window import MainWindow


class ApplicationController(QObject):
    """Controller that connects the UI to the detection engine.

    Responsibilities:
    - Wire signals between MainWindow and DetectionEngine
    - Apply difficulty, monitor, ROI and detector changes to the engine
    - Save settings after every change
    - Show capture error dialogs and offer a retry
    """

    def __init__(
        self,
        window: MainWindow,
        settings: Settings,
        settings_path: Path = DEFAULT_SETTINGS_PATH,
        parent: Optional[QObject] = None,
    ) -> None:
        """Initialize the controller.

        Args:
            window: Main application window
            settings: Settings loaded at startup
            settings_path: Where settings are saved
            parent: Parent QObject
        """
        super().__init__(parent)

        self._window = window
        self._settings = settings
        self._settings_path = settings_path
        self._logger = get_logger()

        self._engine = DetectionEngine(
            settings.roi,
            settings.difficulty.grid,
            settings.detector,
            tick_hz=settings.tick_hz,
            parent=self,
        )
        self._engine.set_monitor(settings.monitor_index)

        self._init_window()
        self._connect_signals()

    @property
    def engine(self) -> DetectionEngine:
        return self._engine

    @property
    def settings(self) -> Settings:
        return self._settings

    def _init_window(self) -> None:
        self._window.set_difficulty(self._settings.difficulty)
        self._window.set_roi(self._settings.roi)
        self._window.set_detector_config(self._settings.detector)
        try:
            monitors = list_monitors()
        except Exception as e:
            self._logger.warning(f"cannot enumerate monitors: {e}")
            monitors = []
        self._window.set_monitors(monitors, self._settings.monitor_index)
        self._window.update_round(self._engine.detector.round_state)

    def _connect_signals(self) -> None:
        # Window -> Engine
        self._window.start_requested.connect(self._engine.start)
        self._window.stop_requested.connect(self._engine.stop)
        self._window.calibrate_requested.connect(self._on_calibrate_requested)
        self._window.arm_requested.connect(self._engine.arm)
        self._window.reset_requested.connect(self._engine.reset)
        self._window.undo_requested.connect(self._engine.undo)
        self._window.difficulty_changed.connect(self._on_difficulty_changed)
        self._window.monitor_changed.connect(self._on_monitor_changed)
        self._window.roi_changed.connect(self._on_roi_changed)
        self._window.detector_config_changed.connect(self._on_detector_config_changed)

        # Engine -> Window
        self._engine.round_changed.connect(self._window.update_round)
        self._engine.steps_changed.connect(self._window.update_steps)
        self._engine.tick_update.connect(self._window.update_tick)
        self._engine.running_changed.connect(self._window.set_running)
        self._engine.calibration_completed.connect(self._on_calibration_completed)
        self._engine.capture_failed.connect(self._on_capture_failed)

    # Settings changes

    @Slot(Difficulty)
    def _on_difficulty_changed(self, difficulty: Difficulty) -> None:
        self._settings.difficulty = difficulty
        grid = difficulty.grid
        self._engine.configure(roi=self._settings.roi, grid=grid)
        self._window.set_grid(grid)
        self._window.set_roi(self._settings.roi)
        self._logger.info(f"difficulty: {difficulty.value}")
        self._save()

    @Slot(int)
    def _on_monitor_changed(self, index: int) -> None:
        self._settings.monitor_index = index
        self._engine.set_monitor(index)
        self._logger.info(f"capturing monitor {index}")
        self._save()

    @Slot(Rect)
    def _on_roi_changed(self, roi: Rect) -> None:
        self._settings = self._settings.with_roi(roi)
        sanitized = self._settings.roi
        self._window.set_roi(sanitized)
        self._engine.configure(roi=sanitized)
        self._save()

    @Slot(DetectorConfig)
    def _on_detector_config_changed(self, config: DetectorConfig) -> None:
        sanitized = config.sanitized()
        self._settings.detector = sanitized
        if sanitized != config:
            self._window.set_detector_config(sanitized)
        self._engine.configure(config=sanitized)
        self._save()

    def _save(self) -> None:
        save_settings(self._settings, self._settings_path)

    # Engine events

    @Slot()
    def _on_calibrate_requested(self) -> None:
        if self._engine.is_calibrating:
            return
        self._engine.calibrate()

    @Slot(CalibrationStats)
    def _on_calibration_completed(self, stats: CalibrationStats) -> None:
        self._window.show_calibration_result(stats)

    @Slot(str)
    def _on_capture_failed(self, message: str) -> None:
        if self._window.show_capture_error_dialog(message):
            self._logger.info("retrying capture")
            self._engine.start()

    def shutdown(self) -> None:
        """Stop the engine and save settings."""
        self._engine.shutdown()
        self._save()
