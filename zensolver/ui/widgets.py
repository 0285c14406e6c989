"""Common UI widgets for zensolver.

Provides reusable UI components used across the application.
"""

from dataclasses import replace
from typing import Optional

from PySide6.QtCore import QRectF, Qt, QTimer, Signal
from PySide6.QtGui import QColor, QFont, QPainter, QPalette, QPen
from PySide6.QtWidgets import (
    QCheckBox,
    QDoubleSpinBox,
    QFrame,
    QGridLayout,
    QGroupBox,
    QHBoxLayout,
    QLabel,
    QPlainTextEdit,
    QPushButton,
    QSlider,
    QVBoxLayout,
    QWidget,
)

from zensolver.core.constants import LOG_BUFFER_SIZE, ROI_MIN_SIZE
from zensolver.core.logging import LogEntry
from zensolver.core.model import DetectorConfig, GridConfig, Phase, Rect, RoundState, Step


class WarningBanner(QFrame):
    """A dismissible warning banner with yellow background.

    Used for DPI and permission warnings.
    """

    dismissed = Signal()

    def __init__(
        self,
        message: str,
        dismissible: bool = True,
        parent: Optional[QWidget] = None,
    ) -> None:
        super().__init__(parent)

        self.setAutoFillBackground(True)
        self.setFrameStyle(QFrame.Shape.StyledPanel)

        palette = self.palette()
        palette.setColor(QPalette.ColorRole.Window, QColor(255, 243, 205))
        palette.setColor(QPalette.ColorRole.WindowText, QColor(133, 100, 4))
        self.setPalette(palette)

        layout = QHBoxLayout(self)
        layout.setContentsMargins(12, 8, 12, 8)

        self._label = QLabel(message)
        self._label.setWordWrap(True)
        layout.addWidget(self._label, 1)

        if dismissible:
            close_btn = QPushButton("×")
            close_btn.setFixedSize(24, 24)
            close_btn.setFlat(True)
            close_btn.clicked.connect(self._on_dismiss)
            layout.addWidget(close_btn)

    def _on_dismiss(self) -> None:
        self.hide()
        self.dismissed.emit()

    def set_message(self, message: str) -> None:
        """Update the warning message."""
        self._label.setText(message)


class StatusIndicator(QWidget):
    """Coloured dot plus the current round phase."""

    PHASE_COLORS = {
        Phase.Idle: QColor(128, 128, 128),          # Gray
        Phase.Armed: QColor(255, 193, 7),           # Yellow
        Phase.Reveal: QColor(26, 160, 133),         # Teal (reveal colour)
        Phase.WaitingInput: QColor(39, 173, 97),    # Green (input colour)
        Phase.Rearming: QColor(23, 162, 184),       # Cyan
    }

    def __init__(self, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)

        layout = QHBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)
        layout.setSpacing(8)

        self._dot = QLabel("●")
        self._dot.setFixedWidth(20)
        layout.addWidget(self._dot)

        self._text = QLabel()
        layout.addWidget(self._text, 1)

        self.set_phase(Phase.Idle)

    def set_phase(self, phase: Phase, calibrating: bool = False) -> None:
        """Update the displayed phase.

        Args:
            phase: Current round phase
            calibrating: Show "calibrating" instead of the phase
        """
        if calibrating:
            self._text.setText("calibrating")
            self._dot.setStyleSheet("color: #ff9800;")
            return
        self._text.setText(phase.value)
        color = self.PHASE_COLORS.get(phase, QColor(128, 128, 128))
        self._dot.setStyleSheet(f"color: {color.name()};")


class RoundProgressDisplay(QWidget):
    """Round number and input progress, e.g. 'Round 2  ·  3/4'."""

    def __init__(self, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)

        layout = QHBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)

        self._label = QLabel()
        self._label.setStyleSheet("font-size: 18px; font-weight: bold;")
        layout.addWidget(self._label)

        self.set_round(RoundState())

    def set_round(self, state: RoundState) -> None:
        self._label.setText(
            f"Round {state.round_index + 1}  ·  {state.input_progress}/{state.reveal_len}"
        )


class PatternGrid(QWidget):
    """Grid preview with the order number of every recorded step.

    A cell flashed more than once shows its latest order number. The
    hot cell (largest current signal) is outlined. Playback steps
    through the recorded sequence, highlighting one step at a time.
    """

    PLAYBACK_INTERVAL_MS = 600

    playing_changed = Signal(bool)

    def __init__(self, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)
        self.setMinimumSize(180, 180)

        self._grid = GridConfig(rows=6, cols=6)
        self._steps: list[Step] = []
        self._hot_index: Optional[int] = None
        self._hot_confidence = 0.0

        self._play_index = -1
        self._play_timer = QTimer(self)
        self._play_timer.setInterval(self.PLAYBACK_INTERVAL_MS)
        self._play_timer.timeout.connect(self._advance_playback)

    @property
    def is_playing(self) -> bool:
        return self._play_timer.isActive()

    def set_grid(self, grid: GridConfig) -> None:
        self._grid = grid
        self._steps = []
        self._hot_index = None
        self.set_playing(False)
        self.update()

    def set_steps(self, steps: list[Step]) -> None:
        if len(steps) != len(self._steps):
            self._play_index = -1
        self._steps = list(steps)
        self.update()

    def set_hot(self, index: Optional[int], confidence: float) -> None:
        if index == self._hot_index and abs(confidence - self._hot_confidence) < 0.01:
            return
        self._hot_index = index
        self._hot_confidence = confidence
        self.update()

    def set_playing(self, playing: bool) -> None:
        """Start or stop looping over the recorded steps."""
        if playing == self.is_playing:
            return
        self._play_index = -1
        if playing:
            self._play_timer.start()
        else:
            self._play_timer.stop()
        self.update()
        self.playing_changed.emit(playing)

    def _advance_playback(self) -> None:
        self._play_index = (self._play_index + 1) % max(1, len(self._steps))
        self.update()

    def _playback_cell(self) -> Optional[tuple[int, int]]:
        if not self.is_playing or not 0 <= self._play_index < len(self._steps):
            return None
        step = self._steps[self._play_index]
        return step.row, step.col

    def paintEvent(self, event) -> None:
        painter = QPainter(self)
        painter.setRenderHint(QPainter.RenderHint.Antialiasing)

        side = min(self.width(), self.height())
        cell = side / max(self._grid.rows, self._grid.cols)
        left = (self.width() - cell * self._grid.cols) / 2
        top = (self.height() - cell * self._grid.rows) / 2

        order: dict[tuple[int, int], int] = {}
        for n, step in enumerate(self._steps, start=1):
            order[(step.row, step.col)] = n
        last = (self._steps[-1].row, self._steps[-1].col) if self._steps else None
        active = self._playback_cell()

        font = QFont(painter.font())
        font.setPointSizeF(max(8.0, cell * 0.28))
        font.setBold(True)
        painter.setFont(font)

        for row in range(self._grid.rows):
            for col in range(self._grid.cols):
                rect = QRectF(left + col * cell + 2, top + row * cell + 2, cell - 4, cell - 4)
                n = order.get((row, col))
                if active is not None:
                    # Playback dims everything but the current step
                    if (row, col) == active:
                        fill = QColor(255, 193, 7)
                    elif n is not None:
                        fill = QColor(26, 160, 133, 90)
                    else:
                        fill = QColor(40, 44, 52)
                elif (row, col) == last:
                    fill = QColor(39, 173, 97)
                elif n is not None:
                    fill = QColor(26, 160, 133, 160)
                else:
                    fill = QColor(40, 44, 52)
                painter.setPen(Qt.PenStyle.NoPen)
                painter.setBrush(fill)
                painter.drawRoundedRect(rect, 6, 6)

                if self._grid.index_of(row, col) == self._hot_index and self._hot_confidence > 0:
                    pen = QPen(QColor(255, 193, 7))
                    pen.setWidthF(1.0 + 3.0 * self._hot_confidence)
                    painter.setPen(pen)
                    painter.setBrush(Qt.BrushStyle.NoBrush)
                    painter.drawRoundedRect(rect, 6, 6)

                if n is not None:
                    painter.setPen(QColor(255, 255, 255))
                    painter.drawText(rect, Qt.AlignmentFlag.AlignCenter, str(n))

        painter.end()


class ControlButtons(QWidget):
    """Start/Stop, Calibrate, Arm, Reset and Undo buttons."""

    start_clicked = Signal()
    stop_clicked = Signal()
    calibrate_clicked = Signal()
    arm_clicked = Signal()
    reset_clicked = Signal()
    undo_clicked = Signal()

    def __init__(self, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)

        layout = QHBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)
        layout.setSpacing(8)

        self._start_btn = QPushButton("Start")
        self._start_btn.setStyleSheet(
            "background-color: #28a745; color: white; font-weight: bold;"
        )
        self._start_btn.clicked.connect(self.start_clicked.emit)
        layout.addWidget(self._start_btn)

        self._stop_btn = QPushButton("Stop")
        self._stop_btn.setStyleSheet("background-color: #dc3545; color: white;")
        self._stop_btn.clicked.connect(self.stop_clicked.emit)
        self._stop_btn.hide()
        layout.addWidget(self._stop_btn)

        self._calibrate_btn = QPushButton("Calibrate")
        self._calibrate_btn.setToolTip("Sample the idle board for ~0.5 s as baseline")
        self._calibrate_btn.clicked.connect(self.calibrate_clicked.emit)
        layout.addWidget(self._calibrate_btn)

        self._arm_btn = QPushButton("Arm")
        self._arm_btn.setToolTip("Start a round manually")
        self._arm_btn.clicked.connect(self.arm_clicked.emit)
        layout.addWidget(self._arm_btn)

        self._reset_btn = QPushButton("Reset")
        self._reset_btn.clicked.connect(self.reset_clicked.emit)
        layout.addWidget(self._reset_btn)

        self._undo_btn = QPushButton("Undo")
        self._undo_btn.clicked.connect(self.undo_clicked.emit)
        layout.addWidget(self._undo_btn)

    def set_running(self, running: bool) -> None:
        """Swap Start/Stop visibility."""
        self._start_btn.setVisible(not running)
        self._stop_btn.setVisible(running)

    def set_calibrating(self, calibrating: bool) -> None:
        self._calibrate_btn.setEnabled(not calibrating)


class RoiInput(QWidget):
    """Numeric editor for the normalized ROI of the grid."""

    value_changed = Signal(Rect)

    def __init__(self, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)

        layout = QHBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)
        layout.setSpacing(4)

        layout.addWidget(QLabel("ROI:"))
        self._boxes: list[QDoubleSpinBox] = []
        for name in ("x", "y", "w", "h"):
            box = QDoubleSpinBox()
            box.setPrefix(f"{name} ")
            box.setDecimals(3)
            box.setSingleStep(0.005)
            box.setRange(ROI_MIN_SIZE if name in ("w", "h") else 0.0, 1.0)
            box.editingFinished.connect(self._emit_value)
            layout.addWidget(box)
            self._boxes.append(box)

    def value(self) -> Rect:
        x, y, w, h = (box.value() for box in self._boxes)
        return Rect(x=x, y=y, width=w, height=h)

    def set_value(self, roi: Rect) -> None:
        for box, v in zip(self._boxes, (roi.x, roi.y, roi.width, roi.height)):
            box.blockSignals(True)
            box.setValue(v)
            box.blockSignals(False)

    def _emit_value(self) -> None:
        self.value_changed.emit(self.value())


class LabeledSlider(QWidget):
    """Horizontal slider over a float range with a live value label."""

    value_changed = Signal(float)

    def __init__(
        self,
        title: str,
        minimum: float,
        maximum: float,
        step: float = 1.0,
        decimals: int = 0,
        parent: Optional[QWidget] = None,
    ) -> None:
        super().__init__(parent)

        self._title = title
        self._step = step
        self._decimals = decimals

        layout = QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)
        layout.setSpacing(2)

        self._label = QLabel()
        layout.addWidget(self._label)

        self._slider = QSlider(Qt.Orientation.Horizontal)
        self._slider.setRange(int(round(minimum / step)), int(round(maximum / step)))
        self._slider.valueChanged.connect(self._on_slider)
        layout.addWidget(self._slider)

        self._update_label()

    def value(self) -> float:
        return round(self._slider.value() * self._step, self._decimals)

    def set_value(self, value: float) -> None:
        """Move the slider without emitting value_changed."""
        self._slider.blockSignals(True)
        self._slider.setValue(int(round(value / self._step)))
        self._slider.blockSignals(False)
        self._update_label()

    def _on_slider(self, _: int) -> None:
        self._update_label()
        self.value_changed.emit(self.value())

    def _update_label(self) -> None:
        self._label.setText(f"{self._title}: {self.value():.{self._decimals}f}")


class DetectorTuningPanel(QGroupBox):
    """Live detector tuning: thresholds, debounce and round options.

    Every edit emits the complete updated DetectorConfig.
    """

    config_changed = Signal(DetectorConfig)

    # field, title, min, max, step, decimals
    SLIDERS = (
        ("thr_high", "High threshold", 5, 80, 1.0, 0),
        ("thr_low", "Low threshold", 2, 60, 1.0, 0),
        ("padding_pct", "Padding %", 0, 30, 1.0, 0),
        ("hold_frames", "Hold frames", 1, 8, 1.0, 0),
        ("refractory_frames", "Refractory frames", 2, 20, 1.0, 0),
        ("ema_alpha", "EMA α", 0.05, 0.5, 0.01, 2),
    )
    INT_FIELDS = ("hold_frames", "refractory_frames")

    def __init__(self, parent: Optional[QWidget] = None) -> None:
        super().__init__("Detector", parent)

        self._config = DetectorConfig()

        layout = QGridLayout(self)
        layout.setHorizontalSpacing(16)

        self._sliders: dict[str, LabeledSlider] = {}
        for n, (name, title, lo, hi, step, decimals) in enumerate(self.SLIDERS):
            slider = LabeledSlider(title, lo, hi, step, decimals)
            slider.value_changed.connect(
                lambda value, name=name: self._on_slider(name, value)
            )
            layout.addWidget(slider, n // 2, n % 2)
            self._sliders[name] = slider

        row = (len(self.SLIDERS) + 1) // 2
        self._manual_arm = QCheckBox("Manual arm (A starts each round)")
        self._manual_arm.toggled.connect(self._on_toggles)
        layout.addWidget(self._manual_arm, row, 0)

        self._auto_reset = QCheckBox("Auto-reset between rounds")
        self._auto_reset.toggled.connect(self._on_toggles)
        layout.addWidget(self._auto_reset, row, 1)

        self._quick_flash = QCheckBox("Recover short flashes")
        self._quick_flash.toggled.connect(self._on_toggles)
        layout.addWidget(self._quick_flash, row + 1, 0)

        self._color_gate = QCheckBox("Colour gate")
        self._color_gate.toggled.connect(self._on_toggles)
        layout.addWidget(self._color_gate, row + 1, 1)

        self.set_config(self._config)

    def config(self) -> DetectorConfig:
        return self._config

    def set_config(self, config: DetectorConfig) -> None:
        """Show a config without emitting config_changed."""
        self._config = config
        for name, slider in self._sliders.items():
            slider.set_value(getattr(config, name))

        toggles = (
            (self._manual_arm, not config.auto_round_detect),
            (self._auto_reset, not config.append_across_rounds),
            (self._quick_flash, config.quick_flash_enabled),
            (self._color_gate, config.color_gate_enabled),
        )
        for box, checked in toggles:
            box.blockSignals(True)
            box.setChecked(checked)
            box.blockSignals(False)

    def _on_slider(self, name: str, value: float) -> None:
        if name in self.INT_FIELDS:
            value = int(value)
        self._config = replace(self._config, **{name: value})
        self.config_changed.emit(self._config)

    def _on_toggles(self, _: bool) -> None:
        self._config = replace(
            self._config,
            auto_round_detect=not self._manual_arm.isChecked(),
            append_across_rounds=not self._auto_reset.isChecked(),
            quick_flash_enabled=self._quick_flash.isChecked(),
            color_gate_enabled=self._color_gate.isChecked(),
        )
        self.config_changed.emit(self._config)


class LogView(QPlainTextEdit):
    """Log viewer with circular buffer display."""

    def __init__(self, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)
        self.setReadOnly(True)
        self.setMaximumBlockCount(LOG_BUFFER_SIZE)
        self.setLineWrapMode(QPlainTextEdit.LineWrapMode.WidgetWidth)
        self.setStyleSheet(
            "font-family: Consolas, Monaco, monospace; font-size: 11px;"
        )

    def add_entry(self, entry: LogEntry) -> None:
        self.appendPlainText(entry.format())

    def set_entries(self, entries: list[LogEntry]) -> None:
        self.clear()
        for entry in entries:
            self.appendPlainText(entry.format())
