"""Core detection pipeline and utilities.

This package provides the core functionality for zensolver:
- Data models (Rect, GridConfig, DetectorConfig, Step, RoundState, etc.)
- Grid sampling, baseline tracking and per-cell flash confirmation
- Idle-window calibration
- Round state machine with deadline timers
- Headless pipeline and the Qt detection engine
- Screen capture, settings and logging
- Platform-specific adapters
"""

from .constants import (
    CALIB_WINDOW_MS,
    CAPTURE_RETRY_INTERVAL_MS,
    CAPTURE_RETRY_N,
    INPUT_TIMEOUT_MIN_MS,
    LOG_BUFFER_SIZE,
    SAMPLE_MAX_SIDE_PX,
    TICK_HZ_DEFAULT,
)
from .model import (
    CalibrationStats,
    Detection,
    DetectorConfig,
    Difficulty,
    EventKind,
    GridConfig,
    Phase,
    Rect,
    RevealEnd,
    RoundState,
    Step,
    TickResult,
)
from .pipeline import SequenceDetector
from .timers import ManualScheduler

__all__ = [
    # Constants
    "CALIB_WINDOW_MS",
    "CAPTURE_RETRY_N",
    "CAPTURE_RETRY_INTERVAL_MS",
    "INPUT_TIMEOUT_MIN_MS",
    "LOG_BUFFER_SIZE",
    "SAMPLE_MAX_SIDE_PX",
    "TICK_HZ_DEFAULT",
    # Models
    "Phase",
    "EventKind",
    "RevealEnd",
    "Difficulty",
    "Rect",
    "GridConfig",
    "DetectorConfig",
    "Detection",
    "Step",
    "RoundState",
    "CalibrationStats",
    "TickResult",
    # Pipeline
    "SequenceDetector",
    "ManualScheduler",
]
