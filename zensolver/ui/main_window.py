"""Main window for zensolver.

Combines all UI components into the main application window:
- Phase indicator, round progress and tick rate
- Pattern grid and sequence text
- Controls, difficulty/monitor/ROI selection
- Live detector tuning
- Log view
"""

from typing import Optional

from PySide6.QtCore import Qt, Signal, Slot
from PySide6.QtGui import QKeySequence, QShortcut
from PySide6.QtWidgets import (
    QApplication,
    QComboBox,
    QFrame,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QMainWindow,
    QMessageBox,
    QPushButton,
    QVBoxLayout,
    QWidget,
)

from zensolver.core.capture import MonitorInfo
from zensolver.core.logging import LogBuffer, LogEntry, get_logger
from zensolver.core.model import (
    CalibrationStats,
    DetectorConfig,
    Difficulty,
    GridConfig,
    Rect,
    RoundState,
    Step,
    TickResult,
    sequence_text,
)

from .widgets import (
    ControlButtons,
    DetectorTuningPanel,
    LogView,
    PatternGrid,
    RoiInput,
    RoundProgressDisplay,
    StatusIndicator,
    WarningBanner,
)


class MainWindow(QMainWindow):
    """Main application window.

    Stateless with respect to detection: it renders what the engine
    reports and turns user actions into signals.
    """

    start_requested = Signal()
    stop_requested = Signal()
    calibrate_requested = Signal()
    arm_requested = Signal()
    reset_requested = Signal()
    undo_requested = Signal()
    difficulty_changed = Signal(Difficulty)
    monitor_changed = Signal(int)
    roi_changed = Signal(Rect)
    detector_config_changed = Signal(DetectorConfig)

    def __init__(self, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)

        self.setWindowTitle("zensolver - memory grid sequence detector")
        self.setMinimumSize(560, 820)

        self._logger = get_logger()
        self._running = False
        self._calibrating = False
        self._steps: list[Step] = []
        self._log_buffer: Optional[LogBuffer] = None

        self._setup_ui()
        self._setup_shortcuts()
        self.set_log_buffer(self._logger.buffer)

    def _setup_ui(self) -> None:
        central = QWidget()
        self.setCentralWidget(central)

        layout = QVBoxLayout(central)
        layout.setSpacing(8)

        # Warning banner (DPI / permissions)
        self._banner = WarningBanner("", dismissible=True)
        self._banner.hide()
        layout.addWidget(self._banner)

        # Status row
        status_frame = QFrame()
        status_frame.setFrameStyle(QFrame.Shape.StyledPanel)
        status_layout = QHBoxLayout(status_frame)

        self._status = StatusIndicator()
        status_layout.addWidget(self._status)
        status_layout.addStretch()

        self._progress = RoundProgressDisplay()
        status_layout.addWidget(self._progress)

        self._fps_label = QLabel("0.0 fps")
        self._fps_label.setStyleSheet("color: #666;")
        status_layout.addWidget(self._fps_label)

        layout.addWidget(status_frame)

        # Pattern grid
        self._pattern = PatternGrid()
        layout.addWidget(self._pattern, 1)

        # Sequence text
        seq_layout = QHBoxLayout()
        self._sequence = QLineEdit()
        self._sequence.setReadOnly(True)
        self._sequence.setPlaceholderText("No steps recorded")
        self._sequence.setStyleSheet("font-family: Consolas, Monaco, monospace;")
        seq_layout.addWidget(self._sequence, 1)

        self._play_btn = QPushButton("Play")
        self._play_btn.setToolTip("Replay the recorded sequence on the grid")
        self._play_btn.clicked.connect(self._toggle_playback)
        self._pattern.playing_changed.connect(self._on_playing_changed)
        seq_layout.addWidget(self._play_btn)

        copy_btn = QPushButton("Copy")
        copy_btn.clicked.connect(self._copy_sequence)
        seq_layout.addWidget(copy_btn)
        layout.addLayout(seq_layout)

        # Controls
        self._controls = ControlButtons()
        self._controls.start_clicked.connect(self.start_requested.emit)
        self._controls.stop_clicked.connect(self.stop_requested.emit)
        self._controls.calibrate_clicked.connect(self.calibrate_requested.emit)
        self._controls.arm_clicked.connect(self.arm_requested.emit)
        self._controls.reset_clicked.connect(self.reset_requested.emit)
        self._controls.undo_clicked.connect(self.undo_requested.emit)
        layout.addWidget(self._controls)

        # Source selection
        source_layout = QHBoxLayout()
        source_layout.addWidget(QLabel("Difficulty:"))
        self._difficulty = QComboBox()
        for difficulty in Difficulty:
            grid = difficulty.grid
            self._difficulty.addItem(
                f"{difficulty.value} ({grid.rows}x{grid.cols})", difficulty
            )
        self._difficulty.currentIndexChanged.connect(self._on_difficulty_index)
        source_layout.addWidget(self._difficulty)

        source_layout.addWidget(QLabel("Monitor:"))
        self._monitor = QComboBox()
        self._monitor.currentIndexChanged.connect(self._on_monitor_index)
        source_layout.addWidget(self._monitor, 1)
        layout.addLayout(source_layout)

        self._roi_input = RoiInput()
        self._roi_input.value_changed.connect(self.roi_changed.emit)
        layout.addWidget(self._roi_input)

        # Detector tuning
        self._tuning = DetectorTuningPanel()
        self._tuning.config_changed.connect(self.detector_config_changed.emit)
        layout.addWidget(self._tuning)

        # Log
        log_label = QLabel("Log")
        log_label.setStyleSheet("font-weight: bold;")
        layout.addWidget(log_label)

        self._log_view = LogView()
        self._log_view.setMinimumHeight(120)
        layout.addWidget(self._log_view, 1)

    def _setup_shortcuts(self) -> None:
        """Space start/stop, C calibrate, A arm, R reset, Backspace undo."""
        bindings = (
            (Qt.Key.Key_Space, self._toggle_running),
            (Qt.Key.Key_C, self.calibrate_requested.emit),
            (Qt.Key.Key_A, self.arm_requested.emit),
            (Qt.Key.Key_R, self.reset_requested.emit),
            (Qt.Key.Key_Backspace, self.undo_requested.emit),
        )
        for key, slot in bindings:
            shortcut = QShortcut(QKeySequence(key), self)
            shortcut.activated.connect(slot)

    # User actions

    def _toggle_running(self) -> None:
        if self._running:
            self.stop_requested.emit()
        else:
            self.start_requested.emit()

    def _toggle_playback(self) -> None:
        self._pattern.set_playing(not self._pattern.is_playing)

    @Slot(bool)
    def _on_playing_changed(self, playing: bool) -> None:
        self._play_btn.setText("Pause" if playing else "Play")

    def _copy_sequence(self) -> None:
        QApplication.clipboard().setText(sequence_text(self._steps))

    @Slot(int)
    def _on_difficulty_index(self, index: int) -> None:
        difficulty = self._difficulty.itemData(index)
        if difficulty is not None:
            self.difficulty_changed.emit(difficulty)

    @Slot(int)
    def _on_monitor_index(self, index: int) -> None:
        monitor = self._monitor.itemData(index)
        if monitor is not None:
            self.monitor_changed.emit(monitor)

    # Setters used by the controller (no signals emitted)

    def set_difficulty(self, difficulty: Difficulty) -> None:
        index = self._difficulty.findData(difficulty)
        self._difficulty.blockSignals(True)
        self._difficulty.setCurrentIndex(index)
        self._difficulty.blockSignals(False)
        self._pattern.set_grid(difficulty.grid)

    def set_grid(self, grid: GridConfig) -> None:
        self._pattern.set_grid(grid)

    def set_monitors(self, monitors: list[MonitorInfo], current: int) -> None:
        self._monitor.blockSignals(True)
        self._monitor.clear()
        for monitor in monitors:
            self._monitor.addItem(monitor.label, monitor.index)
        index = self._monitor.findData(current)
        self._monitor.setCurrentIndex(max(0, index))
        self._monitor.blockSignals(False)

    def set_roi(self, roi: Rect) -> None:
        self._roi_input.set_value(roi)

    def set_detector_config(self, config: DetectorConfig) -> None:
        self._tuning.set_config(config)

    # Updates from the engine

    @Slot(bool)
    def set_running(self, running: bool) -> None:
        self._running = running
        self._controls.set_running(running)

    @Slot(RoundState)
    def update_round(self, state: RoundState) -> None:
        self._status.set_phase(state.phase, self._calibrating)
        self._progress.set_round(state)

    @Slot(list)
    def update_steps(self, steps: list[Step]) -> None:
        self._steps = list(steps)
        self._pattern.set_steps(self._steps)
        self._sequence.setText(sequence_text(self._steps))

    @Slot(object)
    def update_tick(self, result: TickResult) -> None:
        if result.calibrating != self._calibrating:
            self._calibrating = result.calibrating
            self._controls.set_calibrating(result.calibrating)
            self._status.set_phase(result.round_state.phase, result.calibrating)
        self._pattern.set_hot(result.hot_index, result.hot_confidence)
        self._fps_label.setText(f"{result.fps:.1f} fps")

    @Slot(CalibrationStats)
    def show_calibration_result(self, stats: CalibrationStats) -> None:
        if stats.warning:
            QMessageBox.warning(
                self,
                "Calibration warning",
                f"{stats.warning}\n\nFrames: {stats.frames}, noise: {stats.noise:.2f}",
            )

    # Banner and dialogs

    def set_warning(self, warning: str) -> None:
        if warning:
            self._banner.set_message(warning)
            self._banner.show()

    def show_error_dialog(self, title: str, message: str) -> None:
        QMessageBox.critical(self, title, message)

    def show_capture_error_dialog(self, message: str) -> bool:
        """Show the capture failure dialog.

        Returns:
            True if the user asked to retry
        """
        result = QMessageBox.critical(
            self,
            "Screen capture failed",
            f"{message}\n\n"
            "Possible causes:\n"
            "- Screen recording permission revoked (macOS)\n"
            "- Display configuration changed\n\n"
            "Detection has been stopped.",
            QMessageBox.StandardButton.Retry | QMessageBox.StandardButton.Close,
            QMessageBox.StandardButton.Close,
        )
        return result == QMessageBox.StandardButton.Retry

    # Logging

    def add_log_entry(self, entry: LogEntry) -> None:
        self._log_view.add_entry(entry)

    def set_log_buffer(self, buffer: LogBuffer) -> None:
        """Show existing entries of a buffer and follow new ones."""
        if self._log_buffer is not None:
            self._log_buffer.remove_listener(self.add_log_entry)
        self._log_buffer = buffer
        self._log_view.set_entries(buffer.get_all())
        buffer.add_listener(self.add_log_entry)

    def closeEvent(self, event) -> None:
        if self._log_buffer is not None:
            self._log_buffer.remove_listener(self.add_log_entry)
        if self._running:
            self.stop_requested.emit()
        event.accept()
