"""UI components for zensolver.

This package provides PySide6-based UI components:
- MainWindow: Main application window
- Common widgets: Banner, indicators, pattern grid, buttons, log view
"""

from .main_window import MainWindow
from .widgets import (
    ControlButtons,
    LogView,
    PatternGrid,
    RoiInput,
    RoundProgressDisplay,
    StatusIndicator,
    WarningBanner,
)

__all__ = [
    "MainWindow",
    "WarningBanner",
    "StatusIndicator",
    "RoundProgressDisplay",
    "PatternGrid",
    "ControlButtons",
    "RoiInput",
    "LogView",
]
